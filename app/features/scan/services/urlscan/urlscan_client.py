"""
Client for the urlscan.io submit/result API.

Neither call raises: every failure resolves to None so the worker can treat
"no value" uniformly as not ready / failed.
"""
import json
import time
from typing import Optional

import requests

from app.platform.config import settings
from app.platform.logger import get_logger

logger = get_logger("urlscan_client")


class UrlScanClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        max_retries: Optional[int] = None,
        retry_initial_delay_ms: Optional[int] = None,
        connect_timeout: Optional[float] = None,
        read_timeout: Optional[float] = None,
        visibility: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.URLSCAN_API_KEY
        self.base_url = (base_url or settings.URLSCAN_API_URL).rstrip("/")
        self.max_retries = max_retries if max_retries is not None else settings.URLSCAN_MAX_RETRIES
        self.retry_initial_delay_ms = (
            retry_initial_delay_ms
            if retry_initial_delay_ms is not None
            else settings.URLSCAN_RETRY_INITIAL_DELAY_MS
        )
        self.timeout = (
            connect_timeout if connect_timeout is not None else settings.URLSCAN_CONNECT_TIMEOUT_SECONDS,
            read_timeout if read_timeout is not None else settings.URLSCAN_READ_TIMEOUT_SECONDS,
        )
        self.visibility = visibility or settings.URLSCAN_VISIBILITY
        self.session = session or requests.Session()

    def _headers(self) -> dict:
        return {
            "API-Key": self.api_key or "",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def submit_scan(self, url: str) -> Optional[str]:
        """
        POST {base}/scan/ and return the provider uuid.

        429 is retried up to max_retries attempts with exponential backoff
        (initial delay, doubled each time). Any other 4xx/5xx, a network error
        or an unreadable body gives up immediately.
        """
        submit_url = f"{self.base_url}/scan/"
        payload = {"url": url, "visibility": self.visibility}
        delay_ms = self.retry_initial_delay_ms

        for attempt in range(1, self.max_retries + 1):
            logger.info(f"Attempt {attempt} to submit scan for URL: {url}")
            try:
                response = self.session.post(
                    submit_url,
                    json=payload,
                    headers=self._headers(),
                    timeout=self.timeout,
                )
            except requests.exceptions.RequestException as e:
                logger.error(f"Network error submitting scan for URL: {url}: {e}")
                return None

            if response.status_code == 429:
                if attempt < self.max_retries:
                    logger.warning(
                        f"Rate limit hit for URL: {url}. Retrying in {delay_ms}ms "
                        f"(Attempt {attempt}/{self.max_retries})"
                    )
                    time.sleep(delay_ms / 1000)
                    delay_ms *= 2
                    continue
                logger.error(f"Max retries reached for URL: {url} due to rate limiting.")
                return None

            if not response.ok:
                # Don't retry on other client/server errors
                logger.error(
                    f"HTTP error submitting scan for URL: {url}. "
                    f"Status: {response.status_code}. Body: {response.text[:500]}"
                )
                return None

            try:
                body = response.json()
            except ValueError as e:
                logger.error(f"Unreadable submit response for URL: {url}: {e}")
                return None

            external_id = body.get("uuid") if isinstance(body, dict) else None
            if not external_id:
                logger.error(f"Submit response for URL: {url} has no uuid")
                return None

            logger.info(f"Scan submitted successfully for URL: {url}, UUID: {external_id}")
            return external_id

        return None

    def get_scan_result(self, external_scan_id: str) -> Optional[str]:
        """
        GET {base}/result/{id}/ and return the payload re-serialized as JSON text.

        404 means the provider hasn't finished yet and is not an error.
        """
        result_url = f"{self.base_url}/result/{external_scan_id}/"

        try:
            response = self.session.get(result_url, headers=self._headers(), timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error(f"Network error fetching result for scan ID: {external_scan_id}: {e}")
            return None

        if response.status_code == 404:
            logger.info(f"Scan result for {external_scan_id} not yet available (404).")
            return None

        if not response.ok:
            logger.error(
                f"HTTP error fetching result for scan ID: {external_scan_id}. "
                f"Status: {response.status_code}. Body: {response.text[:500]}"
            )
            return None

        try:
            payload = response.json()
            if payload is None:
                logger.error(f"Empty result body for scan ID: {external_scan_id}")
                return None
            return json.dumps(payload)
        except (ValueError, TypeError) as e:
            logger.error(f"Error serializing scan result for ID: {external_scan_id}: {e}")
            return None
