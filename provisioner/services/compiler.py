"""Compiles one customer specification into vSphere configuration artifacts.

Stage order follows the dependencies between stages:

1. resources, host system and disk capacity are local checks and run first,
   so trivially invalid input never costs a remote call;
2. the datacenter lookup gates every later stage;
3. network identity is validated and defaulted;
4. storage runs last since it needs the VM to exist already and is the most
   expensive lookup.

The first failing stage aborts the compile. Its error is wrapped in
CompileError with the stage identity and everything computed so far is
dropped.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from provisioner import vim
from provisioner.clients.http import RemoteCallGuard
from provisioner.config import Settings
from provisioner.errors import CompileError, ProvisioningError, Stage
from provisioner.schemas import ProvisioningSpec
from provisioner.services.datacenter import DatacenterRef, DatacenterResolver
from provisioner.services.host_system import CustomizationOptions, HostSystemCustomizer
from provisioner.services.network import (
    NetworkCustomizer,
    NetworkDescriptor,
    build_adapter_mapping,
    default_field_rules,
)
from provisioner.services.resources import ResourceAllocator, ResourceDescriptor
from provisioner.services.storage import (
    StorageDescriptor,
    StorageProvisioner,
    VmPathLookup,
    lookup_owned_vm_path,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ProvisioningResult:
    vm_id: str
    owner_id: str
    datacenter: DatacenterRef
    guest: CustomizationOptions
    network: NetworkDescriptor
    storage: StorageDescriptor
    resources: ResourceDescriptor
    customization_spec: dict[str, Any]
    config_spec: dict[str, Any]

    def to_payload(self) -> dict[str, Any]:
        return {
            "vmId": self.vm_id,
            "datacenter": {"path": self.datacenter.path, "ref": self.datacenter.ref.to_json()},
            "vm": self.storage.vm.to_json(),
            "hostSystem": {
                "family": self.guest.family,
                "systemName": self.guest.host_system.system_name,
                "bit": self.guest.host_system.word_size,
            },
            "network": self.network.to_dict(),
            "resources": {
                "cpuCount": self.resources.cpu_count,
                "memoryMB": self.resources.memory_mb,
            },
            "storage": self.storage.to_dict(),
            "customizationSpec": self.customization_spec,
            "configSpec": self.config_spec,
        }


class ProvisioningCompiler:
    def __init__(
        self,
        *,
        resources: ResourceAllocator,
        host_system: HostSystemCustomizer,
        datacenter: DatacenterResolver,
        network: NetworkCustomizer,
        storage: StorageProvisioner,
        default_datacenter_path: str,
        boot_delay_ms: int = 10000,
        boot_retry_delay_ms: int = 10000,
        log: logging.Logger | logging.LoggerAdapter = logger,
    ):
        self.resources = resources
        self.host_system = host_system
        self.datacenter = datacenter
        self.network = network
        self.storage = storage
        self.default_datacenter_path = default_datacenter_path
        self.boot_delay_ms = boot_delay_ms
        self.boot_retry_delay_ms = boot_retry_delay_ms
        self.log = log

    def _stage(self, stage: Stage, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except ProvisioningError as exc:
            self.log.info(
                "compile failed stage=%s kind=%s detail=%s", stage.value, exc.kind, exc.detail
            )
            raise CompileError(stage, exc) from exc

    def compile(
        self, spec: ProvisioningSpec, cancel: threading.Event | None = None
    ) -> ProvisioningResult:
        self.log.info(
            "compile started vm_id=%s distribution=%s",
            spec.metadata.vm_id,
            spec.host_system.distribution_name,
        )
        resources = self._stage(
            Stage.RESOURCES,
            lambda: self.resources.allocate(spec.resources.cpu_count, spec.resources.memory_mb),
        )
        guest = self._stage(
            Stage.HOST_SYSTEM,
            lambda: self.host_system.derive_options(
                spec.host_system.distribution_name, spec.host_system.word_size
            ),
        )
        self._stage(Stage.STORAGE, lambda: self.storage.check_capacity(spec.disk.capacity_kb))

        datacenter_path = (
            spec.datacenter.item_path if spec.datacenter else self.default_datacenter_path
        )
        datacenter = self._stage(
            Stage.DATACENTER, lambda: self.datacenter.resolve(datacenter_path, cancel)
        )
        network = self._stage(
            Stage.NETWORK,
            lambda: self.network.customize(spec.network, spec.metadata.vm_id),
        )
        storage = self._stage(
            Stage.STORAGE,
            lambda: self.storage.provision(
                spec.metadata.vm_id,
                spec.metadata.owner_id,
                spec.disk.capacity_kb,
                cancel,
            ),
        )

        hostname = network.hostname.value or spec.metadata.vm_id
        customization_spec = vim.customization_spec(
            options=guest.options(),
            identity=guest.identity(hostname),
            nic_setting_map=[build_adapter_mapping(network)],
        )
        config_spec = vim.vm_config_spec(
            num_cpus=resources.cpu_count,
            memory_mb=resources.memory_mb,
            device_change=[self.storage.disk_device_change(storage)],
            boot_delay_ms=self.boot_delay_ms,
            boot_retry_delay_ms=self.boot_retry_delay_ms,
        )
        self.log.info(
            "compile succeeded vm_id=%s family=%s datastore=%s",
            spec.metadata.vm_id,
            guest.family,
            storage.datastore.value,
        )
        return ProvisioningResult(
            vm_id=spec.metadata.vm_id,
            owner_id=spec.metadata.owner_id,
            datacenter=datacenter,
            guest=guest,
            network=network,
            storage=storage,
            resources=resources,
            customization_spec=customization_spec,
            config_spec=config_spec,
        )


def build_compiler(
    settings: Settings,
    client: Any,
    guard: RemoteCallGuard,
    *,
    log: logging.Logger | logging.LoggerAdapter = logger,
    vm_lookup: VmPathLookup = lookup_owned_vm_path,
) -> ProvisioningCompiler:
    """Wire every stage from settings, sharing one logger for correlation."""
    rules = default_field_rules(
        ip_generator=settings.network_ip_generator,
        pool_cidr=settings.network_pool_cidr,
        gateway=settings.network_gateway,
        hostname_prefix=settings.hostname_prefix,
    )
    return ProvisioningCompiler(
        resources=ResourceAllocator(settings.max_cpu_count, settings.max_memory_mb, log=log),
        host_system=HostSystemCustomizer(
            settings.linux_distributions,
            settings.windows_distributions,
            linux_domain=settings.linux_domain,
            linux_time_zone=settings.linux_time_zone,
            windows_full_name=settings.windows_full_name,
            windows_org_name=settings.windows_org_name,
            windows_product_key=settings.windows_product_key,
            windows_time_zone=settings.windows_time_zone,
            windows_workgroup=settings.windows_workgroup,
            log=log,
        ),
        datacenter=DatacenterResolver(client, guard, log=log),
        network=NetworkCustomizer(rules, log=log),
        storage=StorageProvisioner(
            client,
            guard,
            max_capacity_kb=settings.max_disk_capacity_kb,
            controller_key=settings.disk_controller_key,
            thin_provisioned=settings.disk_thin_provisioned,
            vm_lookup=vm_lookup,
            log=log,
        ),
        default_datacenter_path=settings.default_datacenter_path,
        boot_delay_ms=settings.boot_delay_ms,
        boot_retry_delay_ms=settings.boot_retry_delay_ms,
        log=log,
    )
