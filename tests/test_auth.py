import pytest

SIGNUP = "/api/v1/auth/signup"
LOGIN = "/api/v1/auth/login"
ME = "/api/v1/auth/me"


@pytest.fixture
def user_data():
    return {"email": "scanner@example.com", "username": "scanner", "password": "TestPassword123"}


@pytest.fixture
def registered(client, user_data):
    response = client.post(SIGNUP, json=user_data)
    assert response.status_code == 201, response.json()
    return response.json()["data"]


def test_signup_returns_token_and_user(registered, user_data):
    assert registered["access_token"]
    assert registered["token_type"] == "bearer"
    assert registered["user"]["email"] == user_data["email"]


def test_signup_rejects_duplicate_email(client, registered, user_data):
    response = client.post(SIGNUP, json=user_data)

    assert response.status_code == 400
    assert "already exists" in response.json()["message"]


def test_signup_rejects_weak_password(client):
    response = client.post(SIGNUP, json={"email": "a@example.com", "username": "weak", "password": "password"})

    assert response.status_code == 400
    assert "password" in response.json()["data"]["errors"]


def test_login_success(client, registered, user_data):
    response = client.post(LOGIN, json={"email": user_data["email"], "password": user_data["password"]})

    assert response.status_code == 200
    assert response.json()["data"]["user"]["id"] == registered["user"]["id"]


def test_login_wrong_password(client, registered, user_data):
    response = client.post(LOGIN, json={"email": user_data["email"], "password": "WrongPassword1"})

    assert response.status_code == 401
    assert response.json()["message"] == "Invalid email or password"


def test_me_with_token(client, registered):
    headers = {"Authorization": f"Bearer {registered['access_token']}"}

    response = client.get(ME, headers=headers)

    assert response.status_code == 200
    assert response.json()["data"]["id"] == registered["user"]["id"]


def test_invalid_token_is_rejected(client):
    response = client.get(ME, headers={"Authorization": "Bearer not-a-token"})

    assert response.status_code == 401


def test_scan_flow_with_real_token(client, registered):
    headers = {"Authorization": f"Bearer {registered['access_token']}"}

    response = client.post("/api/v1/scans", json={"url": "https://example.com"}, headers=headers)

    assert response.status_code == 200
    assert response.json()["data"]["user_id"] == registered["user"]["id"]
