"""Network identity validation and defaulting.

Each identity field has its own rule: a validator and, optionally, a
generator that produces a replacement when the customer value is missing or
invalid. The rule table is plain data so supported defaults can be audited
and changed without touching the control flow below. Generators are field
specific; an address generator is never reused for a netmask or a name.
"""

import hashlib
import ipaddress
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Mapping, Protocol

from provisioner import vim
from provisioner.errors import ValidationError
from provisioner.schemas import NetworkSection


logger = logging.getLogger(__name__)

HOSTNAME_PATTERN = re.compile(r"^(?!-)[A-Za-z0-9-]{1,63}(?<!-)$")
LIMITED_BROADCAST = ipaddress.IPv4Address("255.255.255.255")


@dataclass(frozen=True)
class FieldValue:
    value: str | None
    generator: str | None = None

    @property
    def generated(self) -> bool:
        return self.generator is not None

    def to_dict(self) -> dict[str, Any]:
        return {"value": self.value, "generator": self.generator}


@dataclass(frozen=True)
class NetworkDescriptor:
    hostname: FieldValue
    ip: FieldValue | None = None
    netmask: FieldValue | None = None
    gateway: FieldValue | None = None
    enable_v4: bool = True
    enable_v6: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "IP": self.ip.to_dict() if self.ip else None,
            "Netmask": self.netmask.to_dict() if self.netmask else None,
            "Gateway": self.gateway.to_dict() if self.gateway else None,
            "Hostname": self.hostname.to_dict(),
            "Enablev4": self.enable_v4,
            "Enablev6": self.enable_v6,
        }


@dataclass(frozen=True)
class GeneratorContext:
    vm_id: str
    resolved: Mapping[str, FieldValue] = field(default_factory=dict)

    def value_of(self, field_name: str) -> FieldValue | None:
        return self.resolved.get(field_name)


class Generator(Protocol):
    name: str

    def __call__(self, context: GeneratorContext) -> FieldValue: ...


Validator = Callable[[str | None, Mapping[str, str | None]], bool]


def _parse_ipv4(value: str | None) -> ipaddress.IPv4Address | None:
    if not value:
        return None
    try:
        return ipaddress.IPv4Address(value)
    except ValueError:
        return None


def _prefix_length(netmask: str | None) -> int | None:
    mask = _parse_ipv4(netmask)
    if mask is None:
        return None
    bits = int(mask)
    inverted = ~bits & 0xFFFFFFFF
    if inverted & (inverted + 1):
        return None
    prefix = 32 - inverted.bit_length()
    if not 1 <= prefix <= 30:
        return None
    return prefix


def _is_host_address(address: ipaddress.IPv4Address | None) -> bool:
    if address is None:
        return False
    return not (
        address.is_unspecified
        or address.is_multicast
        or address.is_loopback
        or address == LIMITED_BROADCAST
    )


def _subnet_of(ip: str | None, netmask: str | None) -> ipaddress.IPv4Network | None:
    address = _parse_ipv4(ip)
    prefix = _prefix_length(netmask)
    if address is None or prefix is None:
        return None
    return ipaddress.IPv4Network(f"{address}/{prefix}", strict=False)


def valid_ipv4_host(value: str | None, fields: Mapping[str, str | None]) -> bool:
    address = _parse_ipv4(value)
    if not _is_host_address(address):
        return False
    subnet = _subnet_of(value, fields.get("Netmask"))
    if subnet is None:
        return True
    return address not in (subnet.network_address, subnet.broadcast_address)


def valid_netmask(value: str | None, fields: Mapping[str, str | None]) -> bool:
    return _prefix_length(value) is not None


def valid_gateway(value: str | None, fields: Mapping[str, str | None]) -> bool:
    address = _parse_ipv4(value)
    if not _is_host_address(address):
        return False
    if not valid_ipv4_host(fields.get("IP"), fields):
        return True
    subnet = _subnet_of(fields.get("IP"), fields.get("Netmask"))
    if subnet is None:
        return True
    if address in (subnet.network_address, subnet.broadcast_address):
        return False
    return address in subnet and address != _parse_ipv4(fields.get("IP"))


def valid_hostname(value: str | None, fields: Mapping[str, str | None]) -> bool:
    return bool(value) and HOSTNAME_PATTERN.match(value) is not None


def _address_pool(pool_cidr: str) -> ipaddress.IPv4Network:
    pool = ipaddress.IPv4Network(pool_cidr, strict=False)
    if pool.prefixlen > 29:
        raise ValueError(f"address pool {pool_cidr} too small, need at most /29")
    return pool


class FixedIpGenerator:
    """Deterministic address from the pool, seeded by the VM id.

    The first host of the pool is left for the gateway, as is every reserved
    address. A VM id hashing onto a reserved address takes the next free one.
    """

    name = "fixed_ip"

    def __init__(self, pool_cidr: str, reserved: tuple[str, ...] = ()):
        self.pool = _address_pool(pool_cidr)
        self.reserved = {ipaddress.IPv4Address(address) for address in reserved if address}

    def __call__(self, context: GeneratorContext) -> FieldValue:
        first = int(self.pool.network_address) + 2
        count = self.pool.num_addresses - 3
        digest = hashlib.sha256(context.vm_id.encode("utf-8")).hexdigest()
        offset = int(digest, 16) % count
        for step in range(count):
            address = ipaddress.IPv4Address(first + (offset + step) % count)
            if address not in self.reserved:
                return FieldValue(str(address), self.name)
        raise ValueError(f"address pool {self.pool} has no free address")


class DhcpIpGenerator:
    name = "dhcp"

    def __call__(self, context: GeneratorContext) -> FieldValue:
        return FieldValue(None, self.name)


def _assigned_by_dhcp(context: GeneratorContext) -> bool:
    ip = context.value_of("IP")
    return ip is not None and ip.generator == DhcpIpGenerator.name


class SubnetMaskGenerator:
    name = "subnet"

    def __init__(self, pool_cidr: str):
        self.pool = _address_pool(pool_cidr)

    def __call__(self, context: GeneratorContext) -> FieldValue:
        if _assigned_by_dhcp(context):
            return FieldValue(None, DhcpIpGenerator.name)
        return FieldValue(str(self.pool.netmask), self.name)


class GatewayGenerator:
    name = "gateway"

    def __init__(self, configured_gateway: str | None = None):
        self.configured_gateway = configured_gateway

    def __call__(self, context: GeneratorContext) -> FieldValue:
        if _assigned_by_dhcp(context):
            return FieldValue(None, DhcpIpGenerator.name)
        if self.configured_gateway:
            return FieldValue(self.configured_gateway, self.name)
        ip = context.value_of("IP")
        netmask = context.value_of("Netmask")
        subnet = _subnet_of(ip.value if ip else None, netmask.value if netmask else None)
        if subnet is None:
            return FieldValue(None, self.name)
        candidate = subnet.network_address + 1
        if ip is not None and str(candidate) == ip.value:
            candidate = subnet.broadcast_address - 1
        return FieldValue(str(candidate), self.name)


class HostnameGenerator:
    name = "vm_name"

    def __init__(self, prefix: str = "vm"):
        self.prefix = prefix

    def __call__(self, context: GeneratorContext) -> FieldValue:
        label = re.sub(r"[^a-z0-9-]+", "-", f"{self.prefix}-{context.vm_id}".lower())
        label = label.strip("-")[:63].rstrip("-")
        return FieldValue(label or self.prefix, self.name)


@dataclass(frozen=True)
class FieldRule:
    field: str
    attribute: str
    family: Literal["ipv4", "identity"]
    validator: Validator
    generator: Generator | None = None


def default_field_rules(
    *,
    ip_generator: Literal["fixed", "dhcp"],
    pool_cidr: str,
    gateway: str | None = None,
    hostname_prefix: str = "vm",
) -> tuple[FieldRule, ...]:
    address_generator: Generator = (
        DhcpIpGenerator()
        if ip_generator == "dhcp"
        else FixedIpGenerator(pool_cidr, reserved=(gateway,) if gateway else ())
    )
    # order matters: netmask and gateway generators read the resolved IP
    return (
        FieldRule("IP", "ip", "ipv4", valid_ipv4_host, address_generator),
        FieldRule("Netmask", "netmask", "ipv4", valid_netmask, SubnetMaskGenerator(pool_cidr)),
        FieldRule("Gateway", "gateway", "ipv4", valid_gateway, GatewayGenerator(gateway)),
        FieldRule("Hostname", "hostname", "identity", valid_hostname, HostnameGenerator(hostname_prefix)),
    )


class NetworkCustomizer:
    def __init__(
        self,
        rules: tuple[FieldRule, ...],
        log: logging.Logger | logging.LoggerAdapter = logger,
    ):
        if not any(rule.attribute == "hostname" for rule in rules):
            raise ValueError("field rules must cover the hostname")
        self.rules = rules
        self.log = log

    def customize(self, network: NetworkSection, vm_id: str) -> NetworkDescriptor:
        enable_v4 = True if network.enable_v4 is None else network.enable_v4
        enable_v6 = bool(network.enable_v6)
        if not enable_v4 and not enable_v6:
            raise ValidationError(["Enablev4", "Enablev6"])

        raw: dict[str, str | None] = {
            rule.field: getattr(network, rule.attribute) for rule in self.rules
        }
        active = [rule for rule in self.rules if enable_v4 or rule.family != "ipv4"]
        invalid = [rule for rule in active if not rule.validator(raw[rule.field], raw)]

        without_generator = [rule.field for rule in invalid if rule.generator is None]
        if without_generator:
            self.log.info("network validation failed fields=%s", without_generator)
            raise ValidationError(without_generator)

        resolved: dict[str, FieldValue] = {}
        invalid_fields = {rule.field for rule in invalid}
        for rule in active:
            # kept literals are checked again against the values resolved so
            # far, which may have been generated after the first pass
            known = {name: value.value for name, value in resolved.items()}
            literal = raw[rule.field]
            if rule.field not in invalid_fields and rule.validator(literal, known):
                resolved[rule.field] = FieldValue(literal)
                continue
            if rule.generator is None:
                self.log.info("network validation failed fields=%s", [rule.field])
                raise ValidationError([rule.field])
            if literal:
                self.log.warning(
                    "replacing invalid network field=%s generator=%s",
                    rule.field,
                    rule.generator.name,
                )
            generated = rule.generator(GeneratorContext(vm_id=vm_id, resolved=dict(resolved)))
            if generated.value is not None and not rule.validator(generated.value, known):
                raise ValidationError([rule.field])
            resolved[rule.field] = generated
            self.log.debug(
                "network field generated field=%s generator=%s",
                rule.field,
                generated.generator,
            )

        final = {name: value.value for name, value in resolved.items()}
        inconsistent = [
            rule.field
            for rule in active
            if resolved[rule.field].value is not None
            and not rule.validator(resolved[rule.field].value, final)
        ]
        if inconsistent:
            self.log.info("network fields inconsistent fields=%s", inconsistent)
            raise ValidationError(inconsistent)

        by_attribute = {
            rule.attribute: resolved[rule.field] for rule in active
        }
        return NetworkDescriptor(
            ip=by_attribute.get("ip"),
            netmask=by_attribute.get("netmask"),
            gateway=by_attribute.get("gateway"),
            hostname=by_attribute["hostname"],
            enable_v4=enable_v4,
            enable_v6=enable_v6,
        )


def build_adapter_mapping(network: NetworkDescriptor) -> dict[str, Any]:
    if not network.enable_v4 or network.ip is None:
        ip = vim.unknown_ip()
    elif network.ip.value is None:
        ip = vim.dhcp_ip()
    else:
        ip = vim.fixed_ip(network.ip.value)
    subnet_mask = network.netmask.value if network.netmask else None
    gateways = [network.gateway.value] if network.gateway and network.gateway.value else None
    ipv6_spec = None
    if network.enable_v6:
        ipv6_spec = vim.data_object(
            "CustomizationIPSettingsIpV6AddressSpec", ip=[vim.auto_ipv6()]
        )
    adapter = vim.data_object(
        "CustomizationIPSettings",
        ip=ip,
        subnetMask=subnet_mask,
        gateway=gateways,
        ipV6Spec=ipv6_spec,
    )
    return vim.data_object("CustomizationAdapterMapping", adapter=adapter)
