from pydantic import BaseModel, ConfigDict, Field


class _SpecSection(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")


class MetadataSection(_SpecSection):
    vm_id: str = Field(alias="VirtualMachineId")
    owner_id: str = Field(alias="VmOwnerId")


class HostSystemSection(_SpecSection):
    distribution_name: str = Field(alias="DistributionName")
    word_size: int = Field(alias="Bit")


class NetworkSection(_SpecSection):
    ip: str | None = Field(default=None, alias="IP")
    netmask: str | None = Field(default=None, alias="Netmask")
    gateway: str | None = Field(default=None, alias="Gateway")
    hostname: str | None = Field(default=None, alias="Hostname")
    enable_v4: bool | None = Field(default=None, alias="Enablev4")
    enable_v6: bool | None = Field(default=None, alias="Enablev6")


class ResourcesSection(_SpecSection):
    cpu_count: int = Field(alias="CpuNum")
    memory_mb: int = Field(alias="MemoryInMegabytes")


class DiskSection(_SpecSection):
    capacity_kb: int = Field(alias="CapacityInKB")


class DatacenterSection(_SpecSection):
    item_path: str = Field(alias="ItemPath")


class ProvisioningSpec(_SpecSection):
    metadata: MetadataSection = Field(alias="Metadata")
    host_system: HostSystemSection = Field(alias="HostSystem")
    network: NetworkSection = Field(default_factory=NetworkSection, alias="Network")
    resources: ResourcesSection = Field(alias="Resources")
    disk: DiskSection = Field(alias="Disk")
    datacenter: DatacenterSection | None = Field(default=None, alias="Datacenter")


class CompileErrorRead(BaseModel):
    stage: str
    kind: str
    detail: str
    fields: list[str] = Field(default_factory=list)


class DeployRead(BaseModel):
    vm_id: str
    reconfigure_task: str
    customize_task: str
