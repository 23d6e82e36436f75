"""Guest OS family resolution.

The distribution name selects one of two structurally different customization
payloads. The variant is decided here once; later stages only call the
variant's builders and never look at the distribution name again.
"""

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Literal

from provisioner import vim
from provisioner.errors import UnsupportedOSError


logger = logging.getLogger(__name__)

SUPPORTED_WORD_SIZES = frozenset({32, 64})


@dataclass(frozen=True)
class HostSystemDescriptor:
    system_name: str
    word_size: int

    @classmethod
    def normalized(cls, distribution_name: str, word_size: int) -> "HostSystemDescriptor":
        return cls(system_name=distribution_name.strip().lower(), word_size=word_size)


@dataclass(frozen=True)
class LinuxCustomization:
    host_system: HostSystemDescriptor
    domain: str
    time_zone: str
    family: Literal["linux"] = "linux"

    def options(self) -> dict[str, Any]:
        return vim.data_object("CustomizationLinuxOptions")

    def identity(self, hostname: str) -> dict[str, Any]:
        return vim.data_object(
            "CustomizationLinuxPrep",
            hostName=vim.fixed_name(hostname),
            domain=self.domain,
            timeZone=self.time_zone,
            hwClockUTC=True,
        )


@dataclass(frozen=True)
class WindowsCustomization:
    host_system: HostSystemDescriptor
    full_name: str
    org_name: str
    product_key: str
    time_zone: int
    workgroup: str
    family: Literal["windows"] = "windows"

    def options(self) -> dict[str, Any]:
        return vim.data_object(
            "CustomizationWinOptions", changeSID=True, deleteAccounts=False
        )

    def identity(self, hostname: str) -> dict[str, Any]:
        return vim.data_object(
            "CustomizationSysprep",
            guiUnattended=vim.data_object(
                "CustomizationGuiUnattended",
                autoLogon=False,
                autoLogonCount=0,
                timeZone=self.time_zone,
            ),
            userData=vim.data_object(
                "CustomizationUserData",
                fullName=self.full_name,
                orgName=self.org_name,
                computerName=vim.fixed_name(hostname),
                productId=self.product_key,
            ),
            identification=vim.data_object(
                "CustomizationIdentification", joinWorkgroup=self.workgroup
            ),
        )


CustomizationOptions = LinuxCustomization | WindowsCustomization


class HostSystemCustomizer:
    def __init__(
        self,
        linux_distributions: Iterable[str],
        windows_distributions: Iterable[str],
        *,
        linux_domain: str = "localdomain",
        linux_time_zone: str = "Etc/UTC",
        windows_full_name: str = "Administrator",
        windows_org_name: str = "Customer",
        windows_product_key: str = "",
        windows_time_zone: int = 85,
        windows_workgroup: str = "WORKGROUP",
        log: logging.Logger | logging.LoggerAdapter = logger,
    ):
        self.linux_distributions = frozenset(n.strip().lower() for n in linux_distributions)
        self.windows_distributions = frozenset(
            n.strip().lower() for n in windows_distributions
        )
        overlap = self.linux_distributions & self.windows_distributions
        if overlap:
            raise ValueError(
                f"distribution sets overlap: {sorted(overlap)}; each name needs one guest family"
            )
        self.linux_domain = linux_domain
        self.linux_time_zone = linux_time_zone
        self.windows_full_name = windows_full_name
        self.windows_org_name = windows_org_name
        self.windows_product_key = windows_product_key
        self.windows_time_zone = windows_time_zone
        self.windows_workgroup = windows_workgroup
        self.log = log

    def derive_options(self, distribution_name: str, word_size: int) -> CustomizationOptions:
        host_system = HostSystemDescriptor.normalized(distribution_name, word_size)
        if word_size not in SUPPORTED_WORD_SIZES:
            raise UnsupportedOSError(distribution_name, word_size)
        if host_system.system_name in self.linux_distributions:
            self.log.debug("host system resolved family=linux name=%s", host_system.system_name)
            return LinuxCustomization(
                host_system=host_system,
                domain=self.linux_domain,
                time_zone=self.linux_time_zone,
            )
        if host_system.system_name in self.windows_distributions:
            self.log.debug("host system resolved family=windows name=%s", host_system.system_name)
            return WindowsCustomization(
                host_system=host_system,
                full_name=self.windows_full_name,
                org_name=self.windows_org_name,
                product_key=self.windows_product_key,
                time_zone=self.windows_time_zone,
                workgroup=self.windows_workgroup,
            )
        raise UnsupportedOSError(distribution_name, word_size)
