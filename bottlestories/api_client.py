from __future__ import annotations

from typing import Any, Callable, Dict, Optional, Tuple

import requests

from .config import settings
from .storage import CART_KEY, TOKEN_KEY, USER_KEY, KeyValueStorage

SESSION_EXPIRED_MESSAGE = "Session expired. Please login again."


class ApiError(RuntimeError):
    """A failed API call; ``message`` is the API's own text where it sent one."""

    def __init__(self, message: str, status_code: int | None = None, payload: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload


class SessionExpiredError(ApiError):
    """HTTP 401 on an authenticated request. Local session state has been cleared."""


class ApiClient:
    """Issue JSON and multipart requests against the storefront REST API."""

    _DEFAULT_HEADERS: Dict[str, str] = {"X-Requested-With": "XMLHttpRequest"}

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        storage: Optional[KeyValueStorage] = None,
        session: Optional[requests.Session] = None,
        on_unauthorized: Optional[Callable[[], None]] = None,
    ) -> None:
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.request_timeout
        self.storage = storage
        self.on_unauthorized = on_unauthorized
        self._session = session or requests.Session()

    # -- public verbs -------------------------------------------------------

    def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self.request("GET", endpoint, params=params)

    def post(self, endpoint: str, data: Any = None, auth: bool = False) -> Any:
        return self.request("POST", endpoint, json=data, auth=auth)

    def put(self, endpoint: str, data: Any = None) -> Any:
        return self.request("PUT", endpoint, json=data)

    def patch(self, endpoint: str, data: Any = None) -> Any:
        return self.request("PATCH", endpoint, json=data)

    def delete(self, endpoint: str) -> Any:
        return self.request("DELETE", endpoint)

    def post_form(
        self,
        endpoint: str,
        data: Optional[Dict[str, Any]] = None,
        files: Optional[Dict[str, str]] = None,
    ) -> Any:
        """POST multipart form data. ``files`` maps field name -> local file path."""
        request_kwargs, cleanup_handles = self._prepare_form_kwargs(data, files)
        try:
            return self.request("POST", endpoint, **request_kwargs)
        finally:
            for handle in cleanup_handles:
                handle.close()

    # -- core ---------------------------------------------------------------

    def request(
        self,
        method: str,
        endpoint: str,
        *,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        files: Optional[Dict[str, Any]] = None,
        auth: bool = False,
    ) -> Any:
        """Send one request and return the decoded body.

        ``auth=True`` marks login/registration calls: no bearer token is sent
        and a 401 is reported as a plain ``ApiError`` (wrong password), not as
        an expired session.
        """
        url = self._build_url(endpoint)
        headers = self._build_headers(auth=auth, is_json=files is None and data is None)

        kwargs: Dict[str, Any] = {"headers": headers, "timeout": self.timeout}
        if params:
            kwargs["params"] = {k: v for k, v in params.items() if v not in (None, "")}
        if json is not None:
            kwargs["json"] = json
        if data is not None:
            kwargs["data"] = data
        if files is not None:
            kwargs["files"] = files

        try:
            response = self._session.request(method=method, url=url, **kwargs)
        except requests.RequestException as exc:
            raise ApiError(f"HTTP_ERROR: {exc}") from exc

        if response.status_code == 401 and not auth:
            self._handle_unauthorized()
            raise SessionExpiredError(SESSION_EXPIRED_MESSAGE, status_code=401)

        return self._parse_response(response)

    def _build_url(self, target: str) -> str:
        if target.startswith(("http://", "https://")):
            return target
        if not target.startswith("/"):
            target = f"/{target}"
        return f"{self.base_url}{target}"

    def _build_headers(self, auth: bool, is_json: bool) -> Dict[str, str]:
        headers = dict(self._DEFAULT_HEADERS)
        if is_json:
            headers["Content-Type"] = "application/json"
        if not auth and self.storage is not None:
            token = self.storage.get_item(TOKEN_KEY)
            if token:
                headers["Authorization"] = f"Bearer {token}"
        return headers

    def _handle_unauthorized(self) -> None:
        if self.storage is not None:
            for key in (TOKEN_KEY, USER_KEY, CART_KEY):
                self.storage.remove_item(key)
        if self.on_unauthorized is not None:
            self.on_unauthorized()

    @staticmethod
    def _prepare_form_kwargs(
        data: Optional[Dict[str, Any]], files: Optional[Dict[str, str]]
    ) -> Tuple[dict[str, Any], list[Any]]:
        kwargs: dict[str, Any] = {"data": {k: v for k, v in (data or {}).items() if v is not None}}
        cleanup: list[Any] = []
        opened: dict[str, Any] = {}
        try:
            for field_name, file_path in (files or {}).items():
                handle = open(file_path, "rb")
                cleanup.append(handle)
                opened[field_name] = handle
        except OSError:
            for handle in cleanup:
                handle.close()
            raise
        # requests only switches to multipart when ``files`` is present
        kwargs["files"] = opened
        return kwargs, cleanup

    @staticmethod
    def _parse_response(response: requests.Response) -> Any:
        if response.status_code == 204:
            return None
        try:
            body = response.json()
        except ValueError:
            body = response.text

        if not response.ok:
            message = None
            if isinstance(body, dict):
                message = body.get("msg") or body.get("message")
            raise ApiError(
                message or f"API Error: {response.status_code}",
                status_code=response.status_code,
                payload=body,
            )
        return body
