import logging
import threading
from dataclasses import dataclass
from typing import Protocol

from provisioner.clients.http import RemoteCallGuard
from provisioner.errors import NotFoundError
from provisioner.vim import ManagedObjectRef


logger = logging.getLogger(__name__)


class InventorySearch(Protocol):
    def find_by_inventory_path(self, inventory_path: str) -> ManagedObjectRef | None: ...


@dataclass(frozen=True)
class DatacenterRef:
    """Snapshot of a datacenter lookup; not re-validated afterwards."""

    path: str
    ref: ManagedObjectRef


class DatacenterResolver:
    def __init__(
        self,
        inventory: InventorySearch,
        guard: RemoteCallGuard,
        log: logging.Logger | logging.LoggerAdapter = logger,
    ):
        self.inventory = inventory
        self.guard = guard
        self.log = log

    def resolve(self, path: str, cancel: threading.Event | None = None) -> DatacenterRef:
        ref = self.guard.run(
            "datacenter lookup",
            lambda: self.inventory.find_by_inventory_path(path),
            cancel,
        )
        if ref is None or ref.type != "Datacenter":
            self.log.info("datacenter not found path=%s", path)
            raise NotFoundError("datacenter", f"datacenter {path!r} not found")
        self.log.debug("datacenter resolved path=%s ref=%s", path, ref.value)
        return DatacenterRef(path=path, ref=ref)
