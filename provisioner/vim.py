"""vim25 data objects as plain dicts, in the shape the VI/JSON API accepts.

Each object carries its ``_typeName`` discriminator. Optional properties are
left out rather than sent as null.
"""

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ManagedObjectRef:
    type: str
    value: str

    @classmethod
    def from_json(cls, data: Any) -> "ManagedObjectRef | None":
        if not isinstance(data, dict):
            return None
        ref_type = data.get("type")
        value = data.get("value")
        if not isinstance(ref_type, str) or not isinstance(value, str):
            return None
        return cls(type=ref_type, value=value)

    def to_json(self) -> dict[str, str]:
        return {"_typeName": "ManagedObjectReference", "type": self.type, "value": self.value}


def data_object(type_name: str, **properties: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {"_typeName": type_name}
    payload.update({key: value for key, value in properties.items() if value is not None})
    return payload


def fixed_name(name: str) -> dict[str, Any]:
    return data_object("CustomizationFixedName", name=name)


def fixed_ip(address: str) -> dict[str, Any]:
    return data_object("CustomizationFixedIp", ipAddress=address)


def dhcp_ip() -> dict[str, Any]:
    return data_object("CustomizationDhcpIpGenerator")


def unknown_ip() -> dict[str, Any]:
    return data_object("CustomizationUnknownIpGenerator")


def auto_ipv6() -> dict[str, Any]:
    return data_object("CustomizationAutoIpV6Generator")


def customization_spec(
    *,
    options: dict[str, Any],
    identity: dict[str, Any],
    nic_setting_map: list[dict[str, Any]],
    dns_suffix_list: list[str] | None = None,
) -> dict[str, Any]:
    return data_object(
        "CustomizationSpec",
        options=options,
        identity=identity,
        globalIPSettings=data_object(
            "CustomizationGlobalIPSettings", dnsSuffixList=dns_suffix_list
        ),
        nicSettingMap=nic_setting_map,
    )


def virtual_disk_add(
    *,
    capacity_kb: int,
    datastore: ManagedObjectRef,
    controller_key: int,
    thin_provisioned: bool,
) -> dict[str, Any]:
    backing = data_object(
        "VirtualDiskFlatVer2BackingInfo",
        fileName="",
        diskMode="persistent",
        thinProvisioned=thin_provisioned,
        datastore=datastore.to_json(),
    )
    device = data_object(
        "VirtualDisk",
        key=-1,
        controllerKey=controller_key,
        capacityInKB=capacity_kb,
        backing=backing,
    )
    return data_object(
        "VirtualDeviceConfigSpec",
        operation="add",
        fileOperation="create",
        device=device,
    )


def vm_config_spec(
    *,
    num_cpus: int,
    memory_mb: int,
    device_change: list[dict[str, Any]],
    boot_delay_ms: int,
    boot_retry_delay_ms: int,
) -> dict[str, Any]:
    return data_object(
        "VirtualMachineConfigSpec",
        numCPUs=num_cpus,
        memoryMB=memory_mb,
        deviceChange=device_change,
        bootOptions=data_object(
            "VirtualMachineBootOptions",
            bootDelay=boot_delay_ms,
            bootRetryEnabled=True,
            bootRetryDelay=boot_retry_delay_ms,
        ),
    )
