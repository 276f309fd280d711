"""Base HTTP Client for the Kogno jobs API"""

import time
from http.cookiejar import Cookie
from typing import Any
from urllib.parse import urlparse

import httpx

from ..config.logging import get_logger
from ..core.exceptions import APIError, TransportError

logger = get_logger(__name__)

ASYNC_DISABLED_HINT = "async job processing is disabled"
ASYNC_DISABLED_MESSAGE = "Job processing is temporarily unavailable. Please try again soon."


def extract_error_message(data: Any) -> str | None:
    """Pick the first usable message out of an error body"""
    if not isinstance(data, dict):
        return None
    candidates = [data.get("error"), data.get("message"), data.get("detail"), data.get("details")]
    error = data.get("error")
    if isinstance(error, dict):
        candidates.insert(0, error.get("message"))
    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return None


def async_disabled_message(status_code: int, data: Any) -> str | None:
    """Friendly message for a 503 saying background processing is switched off"""
    if status_code != 503:
        return None
    raw = extract_error_message(data)
    if raw and ASYNC_DISABLED_HINT in raw.lower():
        return ASYNC_DISABLED_MESSAGE
    return None


class APIResponse:
    """Unwrapped response body together with the transport status"""

    def __init__(self, status_code: int, data: Any, headers: httpx.Headers | None = None):
        self.status_code = status_code
        self.data = data
        self.headers = headers or httpx.Headers()

    @property
    def is_accepted(self) -> bool:
        return self.status_code == 202


class APIClient:
    """Async HTTP client for the Kogno jobs API"""

    def __init__(
        self,
        base_url: str = "http://localhost:3000",
        timeout: float = 30,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.default_headers = headers or {}
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers=self.default_headers,
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    # Credentials

    def set_bearer_token(self, token: str | None) -> None:
        """Authenticate subsequent requests, or drop the credential with None"""
        if token:
            self.client.headers["Authorization"] = f"Bearer {token}"
        else:
            self.client.headers.pop("Authorization", None)

    @property
    def is_authenticated(self) -> bool:
        return "Authorization" in self.client.headers

    # Cookies

    def _cookie_domain(self) -> str:
        # The cookie jar matches dotless hosts as "<host>.local"
        host = urlparse(self.base_url).hostname or ""
        return host if "." in host else f"{host}.local"

    def set_cookie(self, name: str, value: str, max_age: int, path: str = "/") -> None:
        """Store a cookie for the API host that expires after ``max_age`` seconds"""
        domain = self._cookie_domain()
        cookie = Cookie(
            version=0,
            name=name,
            value=value,
            port=None,
            port_specified=False,
            domain=domain,
            domain_specified=False,
            domain_initial_dot=False,
            path=path,
            path_specified=True,
            secure=False,
            expires=int(time.time()) + max_age,
            discard=False,
            comment=None,
            comment_url=None,
            rest={"SameSite": "Lax"},
        )
        self.client.cookies.jar.set_cookie(cookie)

    def delete_cookie(self, name: str, path: str = "/") -> None:
        try:
            self.client.cookies.jar.clear(self._cookie_domain(), path, name)
        except KeyError:
            # The jar never held it, e.g. a fresh client
            pass

    def get_cookie(self, name: str) -> str | None:
        # Expired cookies stay in the jar until it is cleaned
        self.client.cookies.jar.clear_expired_cookies()
        return self.client.cookies.get(name)

    # Requests

    def _handle_response(self, response: httpx.Response) -> APIResponse:
        """Handle API response and extract data"""
        try:
            data = response.json() if response.content else {}
        except ValueError:
            logger.warning(
                "Failed to parse response",
                status_code=response.status_code,
                body=response.text[:200],
            )
            raise APIError(
                f"Invalid JSON response: {response.status_code}", response.status_code
            ) from None

        if response.status_code >= 400:
            error_msg = (
                async_disabled_message(response.status_code, data)
                or extract_error_message(data)
                or f"Request failed ({response.status_code})"
            )
            raise APIError(error_msg, response.status_code, details={"body": data})

        # Handle envelope format (with "ok" field)
        if isinstance(data, dict) and "ok" in data:
            if not data.get("ok", False):
                error_msg = extract_error_message(data) or "Request failed"
                raise APIError(error_msg, response.status_code, details={"body": data})
            return APIResponse(response.status_code, data.get("data", {}), response.headers)

        # Handle direct response format (no envelope)
        return APIResponse(response.status_code, data, response.headers)

    async def get(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> APIResponse:
        """Make GET request"""
        try:
            response = await self.client.get(path, params=params, headers=headers)
        except httpx.RequestError as e:
            raise TransportError(f"Connection failed: {e}") from e
        return self._handle_response(response)

    async def post(
        self,
        path: str,
        json: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> APIResponse:
        """Make POST request"""
        try:
            response = await self.client.post(path, json=json, headers=headers)
        except httpx.RequestError as e:
            raise TransportError(f"Connection failed: {e}") from e
        return self._handle_response(response)
