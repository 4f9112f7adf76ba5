from __future__ import annotations

import threading
import time
from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest
import requests


class InFlightTracker:
    """Counts responses that are open at the same time."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.current = 0
        self.peak = 0

    def enter(self) -> None:
        with self._lock:
            self.current += 1
            self.peak = max(self.peak, self.current)

    def exit(self) -> None:
        with self._lock:
            self.current -= 1


class FakeResponse:
    def __init__(
        self,
        body: bytes,
        status_code: int = 200,
        headers: Optional[Dict[str, str]] = None,
        delay: float = 0.0,
        error: Optional[Exception] = None,
        tracker: Optional[InFlightTracker] = None,
    ) -> None:
        self.body = body
        self.status_code = status_code
        self.headers = headers if headers is not None else {"Content-Length": str(len(body))}
        self.delay = delay
        self.error = error
        self.tracker = tracker
        if tracker is not None:
            tracker.enter()

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Client Error")

    def iter_content(self, chunk_size: int = 1):
        if self.delay:
            time.sleep(self.delay)
        for start in range(0, len(self.body), chunk_size):
            yield self.body[start : start + chunk_size]
        if self.error is not None:
            raise self.error

    def close(self) -> None:
        if self.tracker is not None:
            self.tracker.exit()
            self.tracker = None


class FakeSession:
    """Minimal stand-in for requests.Session serving canned responses."""

    def __init__(self, routes: Optional[Dict[str, dict]] = None, tracker: Optional[InFlightTracker] = None) -> None:
        self.routes = routes or {}
        self.tracker = tracker
        self.requested: List[str] = []
        self._lock = threading.Lock()

    def add(self, url: str, body: bytes, **kwargs) -> None:
        self.routes[url] = {"body": body, **kwargs}

    def get(self, url: str, stream: bool = False, timeout: Optional[float] = None) -> FakeResponse:
        with self._lock:
            self.requested.append(url)
        route = self.routes.get(url)
        if route is None:
            raise requests.ConnectionError(f"No route to {url}")
        return FakeResponse(tracker=self.tracker, **route)

    def close(self) -> None:
        pass


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def stamps():
    creation = datetime(2020, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    modification = datetime(2021, 6, 7, 8, 9, 10, tzinfo=timezone.utc)
    return creation, modification
