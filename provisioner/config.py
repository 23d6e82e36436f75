from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    vsphere_url: str = Field(default="https://vcenter.local")
    vsphere_release: str = Field(default="8.0.2.0")
    vsphere_user: str = Field(default="administrator@vsphere.local")
    vsphere_password: str = Field(default="")
    vsphere_session_id: str | None = Field(default=None)
    vsphere_verify_tls: bool = Field(default=True)

    database_url: str = Field(default="sqlite:///./provisioner.db")
    log_level: str = Field(default="INFO")

    remote_call_timeout_sec: float = Field(default=30.0, gt=0, le=300)
    remote_poll_interval_sec: float = Field(default=0.1, gt=0)
    remote_max_workers: int = Field(default=16, ge=1)

    default_datacenter_path: str = Field(default="/Datacenter")

    linux_distributions: list[str] = Field(
        default_factory=lambda: [
            "ubuntu",
            "debian",
            "centos",
            "rhel",
            "fedora",
            "rocky",
            "almalinux",
            "sles",
            "opensuse",
        ]
    )
    windows_distributions: list[str] = Field(
        default_factory=lambda: [
            "windows",
            "windows10",
            "windows11",
            "windows2019",
            "windows2022",
        ]
    )

    max_cpu_count: int = Field(default=64, ge=1)
    max_memory_mb: int = Field(default=524288, ge=4)
    max_disk_capacity_kb: int = Field(default=62 * 1024**3, ge=1)

    network_ip_generator: Literal["fixed", "dhcp"] = Field(default="fixed")
    network_pool_cidr: str = Field(default="10.20.0.0/24")
    network_gateway: str | None = Field(default=None)
    hostname_prefix: str = Field(default="vm")

    linux_domain: str = Field(default="localdomain")
    linux_time_zone: str = Field(default="Etc/UTC")
    windows_org_name: str = Field(default="Customer")
    windows_full_name: str = Field(default="Administrator")
    windows_product_key: str = Field(default="")
    windows_time_zone: int = Field(default=85, ge=0)
    windows_workgroup: str = Field(default="WORKGROUP")

    disk_controller_key: int = Field(default=1000, ge=0)
    disk_thin_provisioned: bool = Field(default=True)
    boot_delay_ms: int = Field(default=10000, ge=0)
    boot_retry_delay_ms: int = Field(default=10000, ge=0)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
