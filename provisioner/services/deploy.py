import logging
import threading
from dataclasses import dataclass
from typing import Protocol

from provisioner.clients.http import RemoteCallGuard
from provisioner.db import session_scope
from provisioner.errors import CompileError, ProvisioningError, Stage
from provisioner.metrics import metrics
from provisioner.repositories import mark_deployed, write_event
from provisioner.services.compiler import ProvisioningCompiler, ProvisioningResult
from provisioner.services.spec_decoder import decode_spec
from provisioner.vim import ManagedObjectRef


logger = logging.getLogger(__name__)


class VmConfigurator(Protocol):
    def reconfigure_vm(self, vm: ManagedObjectRef, config_spec: dict) -> ManagedObjectRef: ...

    def customize_vm(self, vm: ManagedObjectRef, customization_spec: dict) -> ManagedObjectRef: ...


@dataclass(frozen=True)
class DeployOutcome:
    result: ProvisioningResult
    reconfigure_task: ManagedObjectRef
    customize_task: ManagedObjectRef


def compile_spec(
    raw: bytes | str,
    compiler: ProvisioningCompiler,
    cancel: threading.Event | None = None,
) -> ProvisioningResult:
    try:
        spec = decode_spec(raw)
    except ProvisioningError as exc:
        metrics.inc(f"compile_failed_{Stage.DECODE.value}_total")
        raise CompileError(Stage.DECODE, exc) from exc
    try:
        result = compiler.compile(spec, cancel)
    except CompileError as exc:
        metrics.inc(f"compile_failed_{exc.stage.value}_total")
        raise
    metrics.inc("compile_success_total")
    return result


def deploy_spec(
    raw: bytes | str,
    compiler: ProvisioningCompiler,
    configurator: VmConfigurator,
    guard: RemoteCallGuard,
    cancel: threading.Event | None = None,
    log: logging.Logger | logging.LoggerAdapter = logger,
) -> DeployOutcome:
    """Compile a specification and apply it to the already-initialized VM.

    The config spec is applied before the guest customization, since the
    customization expects the disk and network devices to be in place.
    """
    result = compile_spec(raw, compiler, cancel)
    vm = result.storage.vm
    try:
        reconfigure_task = guard.run(
            "reconfigure virtual machine",
            lambda: configurator.reconfigure_vm(vm, result.config_spec),
            cancel,
        )
        customize_task = guard.run(
            "customize virtual machine",
            lambda: configurator.customize_vm(vm, result.customization_spec),
            cancel,
        )
    except ProvisioningError as exc:
        metrics.inc(f"deploy_failed_{exc.kind}_total")
        log.warning("deploy failed vm_id=%s kind=%s detail=%s", result.vm_id, exc.kind, exc.detail)
        raise CompileError(Stage.DEPLOY, exc) from exc

    with session_scope() as session:
        mark_deployed(session, result.vm_id)
        write_event(
            session,
            "vm.deployed",
            {
                "vm": vm.value,
                "datastore": result.storage.datastore.value,
                "family": result.guest.family,
                "reconfigure_task": reconfigure_task.value,
                "customize_task": customize_task.value,
            },
            result.vm_id,
        )
    metrics.inc("deploy_success_total")
    log.info(
        "deploy submitted vm_id=%s reconfigure_task=%s customize_task=%s",
        result.vm_id,
        reconfigure_task.value,
        customize_task.value,
    )
    return DeployOutcome(
        result=result, reconfigure_task=reconfigure_task, customize_task=customize_task
    )
