import logging
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from licensing import connect_codec


logger = logging.getLogger(__name__)


class ConnectClientError(Exception):
    def __init__(self, reason, status_code=None):
        super().__init__(reason)
        self.reason = reason
        self.status_code = status_code


class ConnectClient:
    """Client side of /api/connect/<username>, as a game/mod loader would call it."""

    def __init__(self, base_url, username, api_key, secret_key, timeout=15, session=None):
        self.base_url = base_url.rstrip("/")
        self.username = username
        self.api_key = api_key
        self.secret_key = secret_key
        self.timeout = timeout
        self.session = session or self._build_session()

    @staticmethod
    def _build_session():
        session = requests.Session()
        retry_strategy = Retry(
            total=3,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["POST"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    @property
    def url(self):
        return f"{self.base_url}/api/connect/{self.username}"

    def connect(self, key, device_uuid):
        """Returns the decoded response data; raises ConnectClientError on refusal."""
        body = {"encryptedData": connect_codec.encode_request(key, device_uuid, self.secret_key)}
        response = self.session.post(
            self.url,
            json=body,
            headers={"X-API-Key": self.api_key, "Content-Type": "application/json"},
            timeout=self.timeout,
        )
        try:
            result = response.json()
        except ValueError:
            raise ConnectClientError(f"Non-JSON response ({response.status_code})", response.status_code)

        if not response.ok or not result.get("status"):
            logger.warning(f"Connect refused for {self.username}: {result.get('reason')}")
            raise ConnectClientError(result.get("reason") or "Connect failed", response.status_code)

        payload = connect_codec.decode_response(result["encryptedData"], self.secret_key)
        return payload["data"]
