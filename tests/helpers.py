"""HTTP test doubles."""

from __future__ import annotations

from typing import Any

import requests


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(
        self,
        status_code: int = 200,
        json_data: Any = None,
        headers: dict[str, str] | None = None,
        text: str = "",
    ) -> None:
        self.status_code = status_code
        self._json = json_data
        self.headers = headers or {}
        self.text = text

    def json(self) -> Any:
        if self._json is None:
            raise ValueError("No JSON object could be decoded")
        return self._json


class FakeHttp:
    """Answers requests.get by URL prefix; unknown URLs fail to connect."""

    def __init__(self) -> None:
        self.routes: list[tuple[str, Any]] = []
        self.calls: list[tuple[str, dict[str, Any] | None]] = []

    def add(self, prefix: str, response: Any) -> None:
        self.routes.append((prefix, response))

    def __call__(self, url: str, params: dict[str, Any] | None = None, **kwargs: Any) -> FakeResponse:
        self.calls.append((url, params))
        for prefix, response in self.routes:
            if url.startswith(prefix):
                if isinstance(response, Exception):
                    raise response
                return response
        raise requests.ConnectionError(f"No route to {url}")

    @property
    def urls(self) -> list[str]:
        return [url for url, _ in self.calls]

