import logging
import threading
from typing import Any

import httpx

from provisioner.clients.http import request_json
from provisioner.errors import ControlPlaneError
from provisioner.vim import ManagedObjectRef


logger = logging.getLogger(__name__)

SESSION_HEADER = "vmware-api-session-id"


class VSphereClient:
    """Minimal client for the vCenter VI/JSON API.

    The instance holds no per-request state and may be shared across
    concurrent compiles; the session id is established once under a lock.
    """

    def __init__(
        self,
        base_url: str,
        release: str,
        user: str,
        password: str,
        *,
        timeout_sec: float,
        session_id: str | None = None,
        verify_tls: bool = True,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = f"{base_url.rstrip('/')}/sdk/vim25/{release}"
        self.user = user
        self.password = password
        self._session_id = session_id
        self._session_lock = threading.Lock()
        self.client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout_sec,
            verify=verify_tls,
            transport=transport,
        )

    def _session(self) -> str:
        with self._session_lock:
            if self._session_id is None:
                response = request_json(
                    self.client,
                    "POST",
                    "/SessionManager/SessionManager/Login",
                    json={"userName": self.user, "password": self.password},
                )
                session_id = response.headers.get(SESSION_HEADER)
                if not session_id:
                    raise ControlPlaneError(
                        method="POST",
                        path="/SessionManager/SessionManager/Login",
                        error_type="MissingSession",
                        detail=f"response carried no {SESSION_HEADER} header",
                    )
                self._session_id = session_id
                logger.info("vsphere session established user=%s", self.user)
            return self._session_id

    def _invalidate_session(self, session_id: str) -> None:
        with self._session_lock:
            # another thread may already have logged in again
            if self._session_id == session_id:
                self._session_id = None

    def _call(self, method: str, path: str, **kwargs: Any) -> Any:
        session_id = self._session()
        try:
            response = request_json(
                self.client, method, path, headers={SESSION_HEADER: session_id}, **kwargs
            )
        except ControlPlaneError as exc:
            if exc.status_code != 401:
                raise
            logger.info("vsphere session rejected, logging in again path=%s", path)
            self._invalidate_session(session_id)
            response = request_json(
                self.client, method, path, headers={SESSION_HEADER: self._session()}, **kwargs
            )
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ControlPlaneError(
                method=method,
                path=path,
                error_type="InvalidJSON",
                detail=f"response is not JSON: {response.text[:120]!r}",
                status_code=response.status_code,
            ) from exc

    def find_by_inventory_path(self, inventory_path: str) -> ManagedObjectRef | None:
        data = self._call(
            "POST",
            "/SearchIndex/SearchIndex/FindByInventoryPath",
            json={"inventoryPath": inventory_path},
        )
        return ManagedObjectRef.from_json(data)

    def get_datastores(self, vm: ManagedObjectRef) -> list[ManagedObjectRef]:
        data = self._call("GET", f"/VirtualMachine/{vm.value}/datastore")
        refs: list[ManagedObjectRef] = []
        for item in data or []:
            ref = ManagedObjectRef.from_json(item)
            if ref is not None:
                refs.append(ref)
        return refs

    def reconfigure_vm(self, vm: ManagedObjectRef, config_spec: dict) -> ManagedObjectRef:
        return self._task("ReconfigVM_Task", vm, config_spec)

    def customize_vm(
        self, vm: ManagedObjectRef, customization_spec: dict
    ) -> ManagedObjectRef:
        return self._task("CustomizeVM_Task", vm, customization_spec)

    def _task(self, method: str, vm: ManagedObjectRef, spec: dict) -> ManagedObjectRef:
        path = f"/VirtualMachine/{vm.value}/{method}"
        task = ManagedObjectRef.from_json(self._call("POST", path, json={"spec": spec}))
        if task is None:
            raise ControlPlaneError(
                method="POST",
                path=path,
                error_type="MissingTask",
                detail="response carried no task reference",
            )
        return task

    def close(self) -> None:
        self.client.close()
