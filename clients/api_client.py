"""
Portfolio Live API Client.

Async HTTP client for the REST surface, used by the edit and viewer sessions
in `clients.sessions` and usable on its own from scripts.

Transport Contract:
- One `aiohttp.ClientSession` per client, with a cookie jar so the session
  cookie set by register/login is sent on later requests. The token from the
  response body is also kept so the WebSocket subscriber can authenticate its
  handshake with an `Authorization` header.
- Every request has a total timeout.
- Transient failures (connection errors, timeouts, 429/502/503/504) are
  retried up to `max_retries` attempts with exponential backoff and full
  jitter, capped at `max_delay_ms`. Anything else fails immediately.
- Error responses raise `APIRequestError` carrying the status and the
  server's error `code`, so callers can tell `TOKEN_EXPIRED` from
  `INVALID_CREDENTIALS` or `PORTFOLIO_NOT_FOUND`.
"""

import asyncio
import json
import logging
import random
from typing import Any, Callable, Dict, Optional

import aiohttp

from providers.asset_provider import AssetFile

logger = logging.getLogger(__name__)

TRANSIENT_STATUSES = (429, 502, 503, 504)
JSON_FIELDS = ("contacts", "skills", "projects", "testimonials")


class APIRequestError(Exception):
    """Non-success response or exhausted retries"""

    def __init__(
        self,
        status: int,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.status = status
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(f"{status} {code}: {message}")

    @property
    def transient(self) -> bool:
        return self.status in TRANSIENT_STATUSES or self.status == 0


class PortfolioAPIClient:
    """REST client with cookie session, timeouts and bounded retries"""

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 10,
        max_retries: int = 3,
        base_delay_ms: int = 500,
        max_delay_ms: int = 8000,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.token: Optional[str] = None
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "PortfolioAPIClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=self.timeout,
                # Accept cookies from IP-address hosts (local development)
                cookie_jar=aiohttp.CookieJar(unsafe=True),
            )
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    def backoff_delay(self, attempt: int) -> float:
        """Full-jitter exponential backoff, in seconds"""
        delay_ms = min(self.base_delay_ms * (2 ** (attempt - 1)), self.max_delay_ms)
        return random.uniform(0, delay_ms) / 1000.0

    async def _send(
        self,
        method: str,
        path: str,
        json_body: Optional[Dict[str, Any]],
        data_factory: Optional[Callable[[], Any]],
    ) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {}
        if json_body is not None:
            kwargs["json"] = json_body
        if data_factory is not None:
            # FormData can only be sent once, so every attempt builds its own
            kwargs["data"] = data_factory()

        async with self.session.request(
            method, f"{self.base_url}{path}", **kwargs
        ) as response:
            try:
                body = await response.json(content_type=None)
            except ValueError:
                body = None

            if response.status >= 400:
                error = (body or {}).get("error", {}) if isinstance(body, dict) else {}
                raise APIRequestError(
                    response.status,
                    error.get("code", f"HTTP_{response.status}"),
                    error.get("message", response.reason or "Request failed"),
                    error.get("details"),
                )
            return body if isinstance(body, dict) else {}

    async def request(
        self,
        method: str,
        path: str,
        json_body: Optional[Dict[str, Any]] = None,
        data_factory: Optional[Callable[[], Any]] = None,
    ) -> Dict[str, Any]:
        """Send a request, retrying transient failures with backoff"""
        for attempt in range(1, self.max_retries + 1):
            try:
                return await self._send(method, path, json_body, data_factory)
            except APIRequestError as e:
                last_error = e
            except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as e:
                last_error = APIRequestError(0, "NETWORK_ERROR", str(e) or type(e).__name__)

            if attempt < self.max_retries and last_error.transient:
                delay_s = self.backoff_delay(attempt)
                logger.warning(
                    f"Transient error on {method} {path} attempt {attempt}/{self.max_retries}, "
                    f"retrying in {delay_s:.2f}s: {last_error}"
                )
                await asyncio.sleep(delay_s)
                continue

            raise last_error

        raise APIRequestError(0, "NETWORK_ERROR", "No attempts were made")

    def _remember_session(self, body: Dict[str, Any]) -> Dict[str, Any]:
        if body.get("token"):
            self.token = body["token"]
        return body.get("user", {})

    # Accounts

    async def register(
        self, username: str, email: str, password: str, display_name: Optional[str] = None
    ) -> Dict[str, Any]:
        payload = {"username": username, "email": email, "password": password}
        if display_name is not None:
            payload["displayName"] = display_name
        return self._remember_session(await self.request("POST", "/auth/register", payload))

    async def login(self, email: str, password: str) -> Dict[str, Any]:
        body = await self.request("POST", "/auth/login", {"email": email, "password": password})
        return self._remember_session(body)

    async def logout(self) -> None:
        await self.request("POST", "/auth/logout")
        self.token = None
        self.session.cookie_jar.clear()

    async def me(self) -> Dict[str, Any]:
        return (await self.request("GET", "/auth/me"))["user"]

    async def forgot_password(self, email: str) -> None:
        await self.request("POST", "/auth/forgot-password", {"email": email})

    async def reset_password(self, token: str, new_password: str) -> None:
        await self.request(
            "POST", "/auth/reset-password", {"token": token, "newPassword": new_password}
        )

    # Portfolios

    async def get_public_portfolio(self, username: str) -> Optional[Dict[str, Any]]:
        """Published document, or None when it is unpublished or unknown"""
        try:
            return await self.request("GET", f"/portfolio/{username}")
        except APIRequestError as e:
            if e.status == 404:
                return None
            raise

    async def get_my_portfolio(self) -> Dict[str, Any]:
        return await self.request("GET", "/portfolio")

    async def save_portfolio(
        self,
        document: Dict[str, Any],
        files: Optional[Dict[str, AssetFile]] = None,
    ) -> Dict[str, Any]:
        """
        Replace the caller's document. `document` uses the camelCase wire keys;
        `files` maps `profilePicture` / `resumeFile` to binary attachments.
        """

        def build_form() -> aiohttp.FormData:
            form = aiohttp.FormData()
            for key, value in document.items():
                if value is None or (files and key in files):
                    continue
                if key in JSON_FIELDS:
                    form.add_field(key, json.dumps(value))
                elif isinstance(value, bool):
                    form.add_field(key, "true" if value else "false")
                elif isinstance(value, (str, int, float)):
                    form.add_field(key, str(value))
            for key, file in (files or {}).items():
                form.add_field(
                    key, file.content, filename=file.filename, content_type=file.content_type
                )
            return form

        body = await self.request("PUT", "/portfolio/update", data_factory=build_form)
        return body["portfolio"]

    async def upload_image(self, image: AssetFile) -> str:
        def build_form() -> aiohttp.FormData:
            form = aiohttp.FormData()
            form.add_field(
                "image", image.content, filename=image.filename, content_type=image.content_type
            )
            return form

        body = await self.request("POST", "/portfolio/upload-image", data_factory=build_form)
        return body["imageUrl"]
