"""Tests for the readiness prober."""
from __future__ import annotations

import threading
from pathlib import Path

import httpx

import sys
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from suparr.converge.probe import ProbeStatus, ServiceEndpoint, probe


def _endpoint(**overrides) -> ServiceEndpoint:
    values = dict(
        name="radarr",
        base_url="http://media.lan:7878/",
        health_path="/ping",
        max_attempts=3,
        interval=0,
    )
    values.update(overrides)
    return ServiceEndpoint(**values)


def _sequence(*statuses):
    """Transport answering with ``statuses`` in turn; None raises ConnectError."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        status = statuses[min(len(calls), len(statuses) - 1)]
        calls.append(str(request.url))
        if status is None:
            raise httpx.ConnectError("Connection refused", request=request)
        return httpx.Response(status)

    return httpx.MockTransport(handler), calls


class TestProbe:
    """Tests for bounded readiness polling."""

    def test_health_url(self):
        assert _endpoint().health_url == "http://media.lan:7878/ping"

    def test_ready_first_attempt(self):
        transport, calls = _sequence(200)
        result = probe(_endpoint(), transport=transport)
        assert result.ready
        assert result.attempts == 1
        assert calls == ["http://media.lan:7878/ping"]

    def test_auth_failure_counts_as_ready(self):
        """A 401 still proves the service is listening."""
        transport, _ = _sequence(401)
        assert probe(_endpoint(), transport=transport).ready

    def test_recovers_after_errors(self):
        transport, calls = _sequence(None, 503, 200)
        result = probe(_endpoint(), transport=transport)
        assert result.status is ProbeStatus.ready
        assert result.attempts == 3
        assert len(calls) == 3

    def test_times_out_after_max_attempts(self):
        transport, calls = _sequence(None)
        result = probe(_endpoint(), transport=transport)
        assert result.status is ProbeStatus.timed_out
        assert result.attempts == 3
        assert len(calls) == 3
        assert "not ready after 3 attempts" in result.detail

    def test_override_attempts(self):
        transport, calls = _sequence(502)
        result = probe(_endpoint(), max_attempts=1, transport=transport)
        assert result.status is ProbeStatus.timed_out
        assert len(calls) == 1
        assert "HTTP 502" in result.detail

    def test_cancel_before_start(self):
        cancel = threading.Event()
        cancel.set()
        transport, calls = _sequence(200)
        result = probe(_endpoint(), cancel=cancel, transport=transport)
        assert result.status is ProbeStatus.cancelled
        assert calls == []

    def test_cancel_interrupts_wait(self):
        """A long interval never delays cancellation."""
        cancel = threading.Event()
        transport, calls = _sequence(None)
        timer = threading.Timer(0.1, cancel.set)
        timer.start()
        try:
            result = probe(_endpoint(interval=30), cancel=cancel, transport=transport)
        finally:
            timer.cancel()
        assert result.status is ProbeStatus.cancelled
        assert len(calls) == 1
