import asyncio
import logging
import threading
from functools import lru_cache
from typing import Any, Callable, TypeVar

from fastapi import APIRouter, Depends, Header, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from provisioner.clients.http import RemoteCallGuard
from provisioner.clients.vsphere import VSphereClient
from provisioner.config import get_settings
from provisioner.errors import CompileError
from provisioner.logging_config import compile_logger
from provisioner.metrics import metrics
from provisioner.schemas import CompileErrorRead, DeployRead
from provisioner.services.compiler import build_compiler
from provisioner.services.deploy import compile_spec, deploy_spec


logger = logging.getLogger(__name__)
router = APIRouter()

T = TypeVar("T")

DISCONNECT_POLL_SEC = 0.25
ERROR_STATUS = {
    "decode": 400,
    "validation": 422,
    "unsupported": 422,
    "range": 422,
    "not_found": 404,
    "timeout": 504,
    "cancelled": 499,
    "remote": 502,
    "store": 503,
}


@lru_cache(maxsize=1)
def get_remote_guard() -> RemoteCallGuard:
    settings = get_settings()
    return RemoteCallGuard(
        timeout_sec=settings.remote_call_timeout_sec,
        poll_interval_sec=settings.remote_poll_interval_sec,
        max_workers=settings.remote_max_workers,
    )


@lru_cache(maxsize=1)
def get_control_plane() -> VSphereClient:
    settings = get_settings()
    return VSphereClient(
        base_url=settings.vsphere_url,
        release=settings.vsphere_release,
        user=settings.vsphere_user,
        password=settings.vsphere_password,
        timeout_sec=settings.remote_call_timeout_sec,
        session_id=settings.vsphere_session_id,
        verify_tls=settings.vsphere_verify_tls,
    )


def _error_response(exc: CompileError) -> JSONResponse:
    body = CompileErrorRead(**exc.to_dict())
    return JSONResponse(
        status_code=ERROR_STATUS.get(exc.kind, 500), content=body.model_dump()
    )


async def _run_until_disconnect(
    request: Request, fn: Callable[[threading.Event], T]
) -> T:
    """Run blocking compile work, setting its cancel event if the client leaves."""
    cancel = threading.Event()
    task = asyncio.ensure_future(run_in_threadpool(fn, cancel))
    while True:
        done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_SEC)
        if done:
            return task.result()
        if not cancel.is_set() and await request.is_disconnected():
            logger.info("client disconnected, cancelling compile path=%s", request.url.path)
            cancel.set()


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/metrics")
def metrics_endpoint() -> dict[str, int]:
    return metrics.snapshot()


@router.post("/v1/vms/compile")
async def compile_vm(
    request: Request,
    x_request_id: str | None = Header(default=None),
    client: Any = Depends(get_control_plane),
    guard: RemoteCallGuard = Depends(get_remote_guard),
):
    raw = await request.body()
    log = compile_logger("provisioner.compile", x_request_id)
    compiler = build_compiler(get_settings(), client, guard, log=log)
    try:
        result = await _run_until_disconnect(
            request, lambda cancel: compile_spec(raw, compiler, cancel)
        )
    except CompileError as exc:
        return _error_response(exc)
    return result.to_payload()


@router.put("/v1/vms/deploy", response_model=DeployRead)
async def deploy_vm(
    request: Request,
    x_request_id: str | None = Header(default=None),
    client: Any = Depends(get_control_plane),
    guard: RemoteCallGuard = Depends(get_remote_guard),
):
    raw = await request.body()
    log = compile_logger("provisioner.deploy", x_request_id)
    compiler = build_compiler(get_settings(), client, guard, log=log)
    try:
        outcome = await _run_until_disconnect(
            request,
            lambda cancel: deploy_spec(raw, compiler, client, guard, cancel, log=log),
        )
    except CompileError as exc:
        return _error_response(exc)
    return DeployRead(
        vm_id=outcome.result.vm_id,
        reconfigure_task=outcome.reconfigure_task.value,
        customize_task=outcome.customize_task.value,
    )
