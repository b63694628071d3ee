"""
Authenticated JSON-over-HTTPS Client

Thin wrapper around httpx.Client holding a base URL, a bearer token and a
per-call timeout. Callers interpret status codes themselves and translate
httpx.RequestError into their own domain error.
"""

from typing import Any, Dict, Optional

import httpx


class ApiClient:
    """Bearer-token API client bound to one backend."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/") + "/"
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )
        if token:
            self.set_token(token)

    def set_token(self, token: str) -> None:
        self._client.headers["Authorization"] = f"Bearer {token}"

    def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        return self._client.request(method, path.lstrip("/"), **kwargs)

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        return self.request("GET", path, params=params)

    def post(self, path: str, json: Any = None, **kwargs: Any) -> httpx.Response:
        return self.request("POST", path, json=json, **kwargs)

    def put(self, path: str, json: Any = None) -> httpx.Response:
        return self.request("PUT", path, json=json)

    def delete(self, path: str) -> httpx.Response:
        return self.request("DELETE", path)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "ApiClient":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()


def response_json(response: httpx.Response) -> Any:
    """Decoded body, or None for empty / non-JSON bodies."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None
