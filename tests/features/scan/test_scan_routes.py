"""
HTTP surface of the scan feature, with auth swapped for a fixed user.
"""
import pytest

from app.features.auth.routes.auth import get_current_user
from app.features.scan.models.url_scan import ScanStatus
from app.main import app
from app.platform.metrics import get_metrics

SCANS = "/api/v1/scans"


@pytest.fixture
def login_as(client):
    def _login(user):
        app.dependency_overrides[get_current_user] = lambda: user

    return _login


@pytest.fixture
def as_alice(login_as, alice):
    login_as(alice)
    return alice


def _create(client, url="https://example.com"):
    return client.post(SCANS, json={"url": url})


class TestCreateScan:
    def test_create_returns_submitted_scan(self, client, as_alice):
        response = _create(client)

        assert response.status_code == 200
        payload = response.json()
        assert payload["status"] == "success"
        assert payload["message"] == "Scan accepted"
        assert payload["data"]["status"] == "SUBMITTED"
        assert payload["data"]["user_id"] == as_alice.id
        assert payload["data"]["url"] == "https://example.com"

    def test_resubmitting_returns_the_same_scan(self, client, as_alice):
        first = _create(client).json()["data"]
        second = _create(client).json()["data"]

        assert second["id"] == first["id"]

    @pytest.mark.parametrize("url", ["", "example.com", "ftp://example.com", "https://", "https://" + "a" * 2048])
    def test_invalid_url_is_rejected(self, client, as_alice, url):
        response = _create(client, url)

        assert response.status_code == 400
        payload = response.json()
        assert payload["status"] == "error"
        assert payload["message"] == "Validation failed"
        assert "url" in payload["data"]["errors"]

    def test_missing_url_is_rejected(self, client, as_alice):
        response = client.post(SCANS, json={})

        assert response.status_code == 400
        assert "url" in response.json()["data"]["errors"]

    def test_requires_authentication(self, client):
        response = _create(client)

        assert response.status_code in (401, 403)


class TestReadScans:
    def test_get_own_scan(self, client, as_alice):
        scan_id = _create(client).json()["data"]["id"]

        response = client.get(f"{SCANS}/{scan_id}")

        assert response.status_code == 200
        assert response.json()["data"]["id"] == scan_id

    def test_other_users_scan_is_not_found(self, client, login_as, alice, bob):
        login_as(alice)
        scan_id = _create(client).json()["data"]["id"]

        login_as(bob)
        response = client.get(f"{SCANS}/{scan_id}")

        assert response.status_code == 404
        assert response.json()["message"] == "Scan not found"

    def test_unknown_scan_is_not_found(self, client, as_alice):
        assert client.get(f"{SCANS}/does-not-exist").status_code == 404

    def test_list_is_scoped_and_paginated(self, client, login_as, alice, bob):
        login_as(alice)
        for i in range(3):
            _create(client, f"https://example.com/{i}")
        login_as(bob)
        _create(client, "https://bob.example")

        login_as(alice)
        response = client.get(SCANS, params={"page": 1, "size": 2})

        assert response.status_code == 200
        payload = response.json()
        assert len(payload["data"]) == 2
        assert payload["meta"] == {"page": 1, "size": 2, "total": 3, "pages": 2}
        assert all("result" in item for item in payload["data"])

    def test_list_includes_cached_results(self, client, seed_session, scan_factory, as_alice):
        scan_factory(
            seed_session,
            user_id="user-bob",
            status=ScanStatus.done,
            external_scan_id="ext-bob",
            result='{"verdicts": {"overall": {"malicious": false}}}',
            minutes_ago=30,
        )
        seed_session.commit()
        _create(client)

        response = client.get(SCANS)

        [item] = response.json()["data"]
        assert item["status"] == "DONE"
        assert item["external_scan_id"] == "ext-bob"
        assert item["result"] == {"verdicts": {"overall": {"malicious": False}}}


class TestDeleteScan:
    def test_delete_own_scan(self, client, as_alice):
        scan_id = _create(client).json()["data"]["id"]

        response = client.delete(f"{SCANS}/{scan_id}")

        assert response.status_code == 204
        assert client.get(f"{SCANS}/{scan_id}").status_code == 404

    def test_cannot_delete_other_users_scan(self, client, login_as, alice, bob):
        login_as(alice)
        scan_id = _create(client).json()["data"]["id"]

        login_as(bob)
        assert client.delete(f"{SCANS}/{scan_id}").status_code == 404

        login_as(alice)
        assert client.get(f"{SCANS}/{scan_id}").status_code == 200


class TestMetrics:
    def test_metrics_reports_counters_and_backlog(self, client, as_alice):
        get_metrics().reset()
        _create(client, "https://one.example")
        _create(client, "https://one.example")
        _create(client, "https://two.example")

        response = client.get(f"{SCANS}/metrics")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["pending"] == 2
        assert data["counters"]["scans.submitted{type=new}"] == 2
        assert data["counters"]["scans.cache.hit{type=user}"] == 1
