"""
Backend REST client for the signage device client.

Every call returns a parsed response or raises one of three errors.
Callers branch on the error class, never on the HTTP status:

- LicenseExpiredError: the backend refused because the license ran out (403)
- DeviceDeregisteredError: the device record is gone (410 on timeline)
- ApiError: anything else (network, timeout, bad status, bad body)
"""

from typing import Any, Dict, Optional

import requests

from .models import (
    InitRegistrationResponse,
    LicenseInfo,
    RegisterResponse,
    TimelineResponse,
)
from src.common.logger import setup_logger

logger = setup_logger(__name__)


class ApiError(Exception):
    """Generic backend failure; the caller falls back to cached data."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class LicenseExpiredError(ApiError):
    """Backend reports the license as expired; ``license`` is whatever the body carried."""

    def __init__(self, message: str, license_info: Optional[LicenseInfo] = None):
        super().__init__(message, status_code=403)
        self.license = license_info

    @property
    def license_expiry(self) -> Optional[str]:
        return self.license.raw_expiry if self.license else None


class DeviceDeregisteredError(ApiError):
    """The backend no longer knows this device."""

    def __init__(self, message: str = "Device has been deregistered"):
        super().__init__(message, status_code=410)


class BackendClient:
    """Typed wrapper over the signage backend REST API."""

    REGISTER_PATH = "playlists/device/register"
    TIMELINE_PATH = "api/playlists/{playlist_id}/timeline"
    INIT_REGISTRATION_PATH = "api/device/init-registration"
    DEREGISTER_PATH = "api/device/deregister/{uid}"

    # Request timeout in seconds
    REQUEST_TIMEOUT = 15

    def __init__(
        self,
        base_url: str,
        timeout: float = REQUEST_TIMEOUT,
        device_info: Optional[Dict[str, Any]] = None
    ):
        """
        Args:
            base_url: Backend base URL
            timeout: Per-request timeout in seconds
            device_info: Host description sent with registration
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.device_info = device_info or {}

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path}"

    def _send(self, method: str, path: str, **kwargs) -> requests.Response:
        url = self._url(path)
        try:
            return requests.request(method, url, timeout=self.timeout, **kwargs)
        except requests.Timeout as e:
            logger.warning("Timeout calling %s %s", method, url)
            raise ApiError(f"Request timed out: {method} {path}") from e
        except requests.RequestException as e:
            logger.warning("Request failed %s %s: %s", method, url, e)
            raise ApiError(f"Connection error: {e}") from e

    @staticmethod
    def _json_body(response: requests.Response) -> Dict[str, Any]:
        """Decode a success body. Empty or non-object bodies are generic failures."""
        try:
            body = response.json()
        except ValueError as e:
            raise ApiError("Invalid JSON in response body", response.status_code) from e
        if not isinstance(body, dict):
            raise ApiError("Empty response body", response.status_code)
        return body

    @staticmethod
    def _error_body(response: requests.Response) -> Optional[Dict[str, Any]]:
        """Best-effort decode of an error body."""
        try:
            body = response.json()
        except ValueError:
            return None
        return body if isinstance(body, dict) else None

    @staticmethod
    def _status_error(response: requests.Response) -> ApiError:
        return ApiError(
            f"Error: {response.status_code} {response.reason or ''}".strip(),
            response.status_code
        )

    def init_registration(self, device_id: str) -> InitRegistrationResponse:
        """
        Start a QR registration session.

        Raises:
            ApiError: On any failure
        """
        logger.info("Initializing registration for device: %s", device_id)
        response = self._send("POST", self.INIT_REGISTRATION_PATH, json={"deviceId": device_id})

        if not response.ok:
            logger.error("Init registration failed - status: %d", response.status_code)
            raise self._status_error(response)

        return InitRegistrationResponse.from_dict(self._json_body(response))

    def register_device(self, playlist_code: str, uid: str) -> RegisterResponse:
        """
        Bind this device to the playlist identified by ``playlist_code``.

        Raises:
            LicenseExpiredError: On 403
            ApiError: On any other failure
        """
        logger.info("Registering device %s with code %s", uid, playlist_code)
        response = self._send(
            "POST",
            self.REGISTER_PATH,
            json={
                "playlistCode": playlist_code,
                "uid": uid,
                "deviceInfo": self.device_info,
            }
        )
        logger.debug("Register response code: %d", response.status_code)

        if response.status_code == 403:
            body = self._error_body(response)
            license_info = RegisterResponse.from_dict(body).license if body else None
            logger.warning("Register refused: license expired (%s)", body)
            raise LicenseExpiredError(response.reason or "License expired", license_info)

        if not response.ok:
            logger.error("Register failed - status: %d", response.status_code)
            raise self._status_error(response)

        return RegisterResponse.from_dict(self._json_body(response))

    def get_timeline(self, playlist_id: str, uid: Optional[str] = None) -> TimelineResponse:
        """
        Fetch the current timeline of a playlist.

        Raises:
            LicenseExpiredError: On 403
            DeviceDeregisteredError: On 410
            ApiError: On any other failure
        """
        logger.debug("Fetching timeline for %s (device %s)", playlist_id, uid)
        params = {"deviceUID": uid} if uid else None
        response = self._send(
            "GET",
            self.TIMELINE_PATH.format(playlist_id=playlist_id),
            params=params
        )

        if response.status_code == 403:
            body = self._error_body(response)
            license_info = TimelineResponse.from_dict(body).license if body else None
            logger.warning("Timeline refused: license expired (%s)", body)
            raise LicenseExpiredError(response.reason or "License expired", license_info)

        if response.status_code == 410:
            logger.warning("Device deregistered (410 Gone)")
            raise DeviceDeregisteredError()

        if not response.ok:
            logger.error("Timeline failed - status: %d", response.status_code)
            raise self._status_error(response)

        return TimelineResponse.from_dict(self._json_body(response))

    def deregister_device(self, uid: str) -> bool:
        """
        Tell the backend this device is leaving.

        Raises:
            ApiError: On any failure
        """
        logger.info("Deregistering device from server: %s", uid)
        response = self._send("DELETE", self.DEREGISTER_PATH.format(uid=uid))

        if not response.ok:
            logger.error("Deregistration failed - status: %d", response.status_code)
            raise self._status_error(response)

        return True

    def __repr__(self) -> str:
        return f"BackendClient(base_url={self.base_url})"
