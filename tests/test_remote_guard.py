import threading
import time

import httpx
import pytest

from provisioner.clients.http import RemoteCallGuard, request_json
from provisioner.errors import (
    ControlPlaneError,
    NotFoundError,
    RemoteTimeoutError,
    RequestCancelledError,
)


def test_guard_returns_result():
    guard = RemoteCallGuard(timeout_sec=1.0, poll_interval_sec=0.01)
    assert guard.run("lookup", lambda: 42) == 42


def test_guard_times_out_slow_call():
    release = threading.Event()
    guard = RemoteCallGuard(timeout_sec=0.05, poll_interval_sec=0.01)
    started = time.monotonic()
    with pytest.raises(RemoteTimeoutError) as excinfo:
        guard.run("lookup", lambda: release.wait(2))
    release.set()
    assert time.monotonic() - started < 1.0
    assert excinfo.value.kind == "timeout"
    assert excinfo.value.timeout_sec == 0.05


def test_guard_does_not_start_when_already_cancelled():
    calls = []
    cancel = threading.Event()
    cancel.set()
    guard = RemoteCallGuard(timeout_sec=1.0, poll_interval_sec=0.01)
    with pytest.raises(RequestCancelledError):
        guard.run("lookup", lambda: calls.append(1), cancel)
    assert calls == []


def test_guard_observes_cancellation_during_call():
    release = threading.Event()
    cancel = threading.Event()
    guard = RemoteCallGuard(timeout_sec=5.0, poll_interval_sec=0.01)
    timer = threading.Timer(0.05, cancel.set)
    timer.start()
    started = time.monotonic()
    with pytest.raises(RequestCancelledError):
        guard.run("lookup", lambda: release.wait(5), cancel)
    release.set()
    assert time.monotonic() - started < 1.0


def test_guard_propagates_typed_errors():
    def missing():
        raise NotFoundError("datacenter")

    guard = RemoteCallGuard(timeout_sec=1.0, poll_interval_sec=0.01)
    with pytest.raises(NotFoundError):
        guard.run("lookup", missing)


def test_request_json_converts_status_errors():
    transport = httpx.MockTransport(
        lambda request: httpx.Response(status_code=500, text="boom", request=request)
    )
    client = httpx.Client(transport=transport, base_url="http://vcenter.test")
    with pytest.raises(ControlPlaneError) as excinfo:
        request_json(client, "GET", "/VirtualMachine/vm-1/datastore")
    assert excinfo.value.status_code == 500
    assert "boom" in str(excinfo.value)


def test_request_json_converts_timeouts():
    def handler(request):
        raise httpx.ReadTimeout("read timed out", request=request)

    client = httpx.Client(
        transport=httpx.MockTransport(handler), base_url="http://vcenter.test", timeout=3.0
    )
    with pytest.raises(RemoteTimeoutError):
        request_json(client, "GET", "/VirtualMachine/vm-1/datastore")


def test_request_json_converts_transport_errors():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = httpx.Client(transport=httpx.MockTransport(handler), base_url="http://vcenter.test")
    with pytest.raises(ControlPlaneError) as excinfo:
        request_json(client, "GET", "/VirtualMachine/vm-1/datastore")
    assert excinfo.value.error_type == "ConnectError"
    assert excinfo.value.status_code is None
