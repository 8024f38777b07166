"""Shared mock issuer for the kubed tests."""
from __future__ import annotations

from typing import Any, Dict, Optional

import requests

ISSUER = "https://issuer.example"


class MockResponse:
    def __init__(self, json_data: Any = None, status_code: int = 200, text: Optional[str] = None):
        self._json = json_data
        self.status_code = status_code
        self.text = text if text is not None else ""

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"HTTP {self.status_code}")

    def json(self):
        if self._json is None:
            raise ValueError("not JSON")
        return self._json


class MockIssuerSession:
    """Mock requests.Session answering by URL; values may be exceptions."""

    def __init__(self, routes: Dict[str, Any]):
        self.routes = routes
        self.calls = []
        self.closed = False

    def get(self, url: str, headers=None, timeout=None):
        self.calls.append({"url": url, "headers": headers or {}, "timeout": timeout})
        answer = self.routes.get(url)
        if answer is None:
            return MockResponse(status_code=404)
        if isinstance(answer, Exception):
            raise answer
        return answer

    def close(self):
        self.closed = True


def issuer_session(jwt: str = "abc.def.ghi", ca: Any = None) -> MockIssuerSession:
    """Issuer serving ``jwt`` at /token and ``ca`` (text or exception) at /ca."""
    routes: Dict[str, Any] = {f"{ISSUER}/token": MockResponse({"token": jwt})}
    if ca is not None:
        routes[f"{ISSUER}/ca"] = ca if isinstance(ca, Exception) else MockResponse(text=ca)
    return MockIssuerSession(routes)
