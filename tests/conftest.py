"""Shared fixtures: a scripted transport, a collector and seeded RNGs."""

# gevent must patch the standard library before requests/urllib3 are
# imported (locust patches on import, too late otherwise).
from gevent import monkey

monkey.patch_all()

import json
import random
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import gevent
import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from collectors.metrics import MetricCollector  # noqa: E402
from engine.errors import NetworkError  # noqa: E402
from engine.runner import VUState  # noqa: E402
from scenarios.transport import HttpResponse  # noqa: E402


@dataclass
class Call:
    """One request seen by FakeTransport."""
    method: str
    path: str
    json_body: Any = None
    params: Optional[Dict[str, Any]] = None


class FakeTransport:
    """In-memory stand-in for HttpTransport.

    Routes map (method, path regex) to a status/body pair, a callable
    returning one, or an exception instance to raise. Unknown routes
    answer 404.
    """

    def __init__(self, latency_ms: float = 5.0, delay: float = 0.0):
        self.latency_ms = latency_ms
        self.delay = delay
        self.routes: List[tuple] = []
        self.calls: List[Call] = []
        self.closed = False

    def route(self, method: str, pattern: str, status: int = 200, body: Any = None,
              handler=None, error: Optional[Exception] = None):
        self.routes.append((method, re.compile(pattern), status, body, handler, error))
        return self

    def request(self, method, path, json_body=None, params=None) -> HttpResponse:
        self.calls.append(Call(method, path, json_body, dict(params) if params else None))
        if self.delay:
            gevent.sleep(self.delay)

        for route_method, pattern, status, body, handler, error in self.routes:
            if route_method != method or not pattern.fullmatch(path):
                continue
            if error is not None:
                raise error
            if handler is not None:
                status, body = handler(self.calls[-1])
            text = body if isinstance(body, str) else json.dumps(body)
            return HttpResponse(method, path, status, text, self.latency_ms)

        return HttpResponse(method, path, 404, '{"error": "not found"}', self.latency_ms)

    def get(self, path, params=None):
        return self.request('GET', path, params=params)

    def post(self, path, json_body=None, params=None):
        return self.request('POST', path, json_body=json_body, params=params)

    def paths(self, method: Optional[str] = None) -> List[str]:
        return [c.path for c in self.calls if method is None or c.method == method]

    def close(self):
        self.closed = True


@pytest.fixture
def collector():
    return MetricCollector()


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def make_state(transport, collector, rng):
    """Build a VUState over the shared fixtures."""
    def _make(shared=None, think_time_scale: float = 1.0, **data):
        return VUState(
            vu_id=1,
            iteration=0,
            transport=transport,
            metrics=collector,
            rng=rng,
            shared=shared or {},
            data=dict(data),
            think_time_scale=think_time_scale,
        )
    return _make


@pytest.fixture
def network_error():
    return NetworkError("GET /down: connection refused")
