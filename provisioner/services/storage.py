import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from sqlalchemy.exc import SQLAlchemyError

from provisioner import vim
from provisioner.clients.http import RemoteCallGuard
from provisioner.db import read_scope
from provisioner.errors import NotFoundError, RangeError, StoreError
from provisioner.repositories import get_owned_vm
from provisioner.vim import ManagedObjectRef


logger = logging.getLogger(__name__)

VmPathLookup = Callable[[str, str], str | None]


class VmInventory(Protocol):
    def find_by_inventory_path(self, inventory_path: str) -> ManagedObjectRef | None: ...

    def get_datastores(self, vm: ManagedObjectRef) -> list[ManagedObjectRef]: ...


def lookup_owned_vm_path(vm_id: str, owner_id: str) -> str | None:
    try:
        with read_scope() as session:
            record = get_owned_vm(session, vm_id, owner_id)
            return record.item_path if record else None
    except SQLAlchemyError as exc:
        logger.warning("ownership lookup failed error=%s", exc.__class__.__name__)
        raise StoreError("ownership lookup", exc.__class__.__name__) from exc


@dataclass(frozen=True)
class StorageDescriptor:
    capacity_kb: int
    datastore: ManagedObjectRef
    vm: ManagedObjectRef

    def to_dict(self) -> dict[str, Any]:
        return {
            "capacityInKB": self.capacity_kb,
            "datastore": self.datastore.to_json(),
            "vm": self.vm.to_json(),
        }


class StorageProvisioner:
    def __init__(
        self,
        inventory: VmInventory,
        guard: RemoteCallGuard,
        *,
        max_capacity_kb: int,
        controller_key: int = 1000,
        thin_provisioned: bool = True,
        vm_lookup: VmPathLookup = lookup_owned_vm_path,
        log: logging.Logger | logging.LoggerAdapter = logger,
    ):
        self.inventory = inventory
        self.guard = guard
        self.max_capacity_kb = max_capacity_kb
        self.controller_key = controller_key
        self.thin_provisioned = thin_provisioned
        self.vm_lookup = vm_lookup
        self.log = log

    def check_capacity(self, capacity_kb: int) -> None:
        if not 1 <= capacity_kb <= self.max_capacity_kb:
            raise RangeError("CapacityInKB", capacity_kb, 1, self.max_capacity_kb)

    def provision(
        self,
        vm_id: str,
        owner_id: str,
        capacity_kb: int,
        cancel: threading.Event | None = None,
    ) -> StorageDescriptor:
        self.check_capacity(capacity_kb)
        item_path = self.vm_lookup(vm_id, owner_id)
        if item_path is None:
            raise NotFoundError("virtual_machine")

        def locate() -> tuple[ManagedObjectRef | None, list[ManagedObjectRef]]:
            vm = self.inventory.find_by_inventory_path(item_path)
            if vm is None or vm.type != "VirtualMachine":
                return None, []
            return vm, self.inventory.get_datastores(vm)

        vm, datastores = self.guard.run("virtual machine datastore lookup", locate, cancel)
        if vm is None:
            self.log.info("virtual machine missing on control plane vm_id=%s", vm_id)
            raise NotFoundError("virtual_machine")
        if not datastores:
            raise NotFoundError("datastore", "virtual machine has no attached datastore")
        datastore = datastores[0]
        self.log.debug(
            "storage target selected vm=%s datastore=%s capacity_kb=%s",
            vm.value,
            datastore.value,
            capacity_kb,
        )
        return StorageDescriptor(capacity_kb=capacity_kb, datastore=datastore, vm=vm)

    def disk_device_change(self, storage: StorageDescriptor) -> dict[str, Any]:
        return vim.virtual_disk_add(
            capacity_kb=storage.capacity_kb,
            datastore=storage.datastore,
            controller_key=self.controller_key,
            thin_provisioned=self.thin_provisioned,
        )
