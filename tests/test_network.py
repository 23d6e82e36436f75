import ipaddress

import pytest

from provisioner.errors import ValidationError
from provisioner.schemas import NetworkSection
from provisioner.services.network import (
    FieldRule,
    FieldValue,
    FixedIpGenerator,
    GeneratorContext,
    HostnameGenerator,
    NetworkCustomizer,
    build_adapter_mapping,
    default_field_rules,
    valid_gateway,
    valid_hostname,
    valid_ipv4_host,
    valid_netmask,
)


POOL = "10.20.0.0/24"


def _customizer(ip_generator="fixed", gateway=None) -> NetworkCustomizer:
    return NetworkCustomizer(
        default_field_rules(ip_generator=ip_generator, pool_cidr=POOL, gateway=gateway)
    )


def _network(**overrides) -> NetworkSection:
    values = {
        "IP": "10.20.0.10",
        "Netmask": "255.255.255.0",
        "Gateway": "10.20.0.1",
        "Hostname": "web-01",
    }
    values.update(overrides)
    return NetworkSection.model_validate(values)


def test_fully_populated_fields_are_returned_unchanged():
    descriptor = _customizer().customize(_network(), "vm-1")
    assert descriptor.ip == FieldValue("10.20.0.10")
    assert descriptor.netmask == FieldValue("255.255.255.0")
    assert descriptor.gateway == FieldValue("10.20.0.1")
    assert descriptor.hostname == FieldValue("web-01")
    assert not any(
        value.generated
        for value in (descriptor.ip, descriptor.netmask, descriptor.gateway, descriptor.hostname)
    )


def test_empty_ip_uses_fixed_ip_generator():
    descriptor = _customizer().customize(_network(IP=""), "vm-1")
    assert descriptor.ip.generator == "fixed_ip"
    address = ipaddress.IPv4Address(descriptor.ip.value)
    pool = ipaddress.IPv4Network(POOL)
    assert address in pool
    assert address not in (pool.network_address, pool.network_address + 1, pool.broadcast_address)
    assert descriptor.gateway == FieldValue("10.20.0.1")


def test_every_empty_field_is_generated():
    descriptor = _customizer().customize(NetworkSection(), "vm-7")
    assert descriptor.ip.generator == "fixed_ip"
    assert descriptor.netmask == FieldValue("255.255.255.0", "subnet")
    assert descriptor.gateway == FieldValue("10.20.0.1", "gateway")
    assert descriptor.hostname == FieldValue("vm-vm-7", "vm_name")
    assert all(
        value.value for value in (descriptor.ip, descriptor.netmask, descriptor.gateway, descriptor.hostname)
    )


def test_dhcp_generator_leaves_placeholders():
    descriptor = _customizer(ip_generator="dhcp").customize(
        _network(IP=None, Netmask=None, Gateway=None), "vm-1"
    )
    assert descriptor.ip == FieldValue(None, "dhcp")
    assert descriptor.netmask == FieldValue(None, "dhcp")
    assert descriptor.gateway == FieldValue(None, "dhcp")
    mapping = build_adapter_mapping(descriptor)
    assert mapping["adapter"] == {
        "_typeName": "CustomizationIPSettings",
        "ip": {"_typeName": "CustomizationDhcpIpGenerator"},
    }


def test_fields_without_generator_are_all_reported():
    rules = (
        FieldRule("IP", "ip", "ipv4", valid_ipv4_host, FixedIpGenerator(POOL)),
        FieldRule("Netmask", "netmask", "ipv4", valid_netmask),
        FieldRule("Gateway", "gateway", "ipv4", valid_gateway),
        FieldRule("Hostname", "hostname", "identity", valid_hostname),
    )
    customizer = NetworkCustomizer(rules)
    with pytest.raises(ValidationError) as excinfo:
        customizer.customize(
            _network(IP="", Netmask="255.0.255.0", Gateway="", Hostname="-bad-"), "vm-1"
        )
    assert excinfo.value.fields == ["Netmask", "Gateway", "Hostname"]


def test_configured_gateway_takes_precedence():
    descriptor = _customizer(gateway="10.20.0.254").customize(_network(Gateway=""), "vm-1")
    assert descriptor.gateway == FieldValue("10.20.0.254", "gateway")


def test_gateway_outside_subnet_is_regenerated():
    descriptor = _customizer().customize(_network(Gateway="192.168.1.1"), "vm-1")
    assert descriptor.gateway == FieldValue("10.20.0.1", "gateway")


def test_generated_gateway_avoids_the_vm_address():
    descriptor = _customizer().customize(_network(IP="10.20.0.1", Gateway=""), "vm-1")
    assert descriptor.gateway == FieldValue("10.20.0.254", "gateway")


def test_invalid_netmask_is_replaced_by_subnet_generator():
    descriptor = _customizer().customize(_network(Netmask="255.0.255.0"), "vm-1")
    assert descriptor.netmask == FieldValue("255.255.255.0", "subnet")


def test_generators_are_field_specific():
    rules = default_field_rules(ip_generator="fixed", pool_cidr=POOL)
    names = {rule.field: rule.generator.name for rule in rules}
    assert names == {
        "IP": "fixed_ip",
        "Netmask": "subnet",
        "Gateway": "gateway",
        "Hostname": "vm_name",
    }


def test_fixed_ip_generator_is_deterministic_per_vm():
    generator = FixedIpGenerator(POOL)
    first = generator(GeneratorContext(vm_id="vm-1"))
    assert first == generator(GeneratorContext(vm_id="vm-1"))
    assert first.generator == "fixed_ip"


def test_fixed_ip_generator_rejects_tiny_pool():
    with pytest.raises(ValueError):
        FixedIpGenerator("10.0.0.0/30")


def test_hostname_generator_sanitizes_vm_id():
    value = HostnameGenerator("vm")(GeneratorContext(vm_id="VM_01.prod"))
    assert value == FieldValue("vm-vm-01-prod", "vm_name")
    assert valid_hostname(value.value, {})


def test_ipv6_only_skips_ipv4_fields():
    descriptor = _customizer().customize(
        NetworkSection(Hostname="v6-host", Enablev4=False, Enablev6=True), "vm-1"
    )
    assert descriptor.ip is None
    assert descriptor.hostname == FieldValue("v6-host")
    mapping = build_adapter_mapping(descriptor)
    assert mapping["adapter"]["ip"] == {"_typeName": "CustomizationUnknownIpGenerator"}
    assert mapping["adapter"]["ipV6Spec"]["ip"] == [
        {"_typeName": "CustomizationAutoIpV6Generator"}
    ]


def test_disabling_both_families_is_invalid():
    with pytest.raises(ValidationError) as excinfo:
        _customizer().customize(NetworkSection(Enablev4=False, Enablev6=False), "vm-1")
    assert excinfo.value.fields == ["Enablev4", "Enablev6"]


def test_fixed_adapter_mapping_shape():
    descriptor = _customizer().customize(_network(), "vm-1")
    assert build_adapter_mapping(descriptor) == {
        "_typeName": "CustomizationAdapterMapping",
        "adapter": {
            "_typeName": "CustomizationIPSettings",
            "ip": {"_typeName": "CustomizationFixedIp", "ipAddress": "10.20.0.10"},
            "subnetMask": "255.255.255.0",
            "gateway": ["10.20.0.1"],
        },
    }


def test_input_section_is_not_modified():
    network = _network(IP="")
    before = network.model_dump()
    _customizer().customize(network, "vm-1")
    assert network.model_dump() == before


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("255.255.255.0", True),
        ("255.255.252.0", True),
        ("255.0.255.0", False),
        ("0.0.0.0", False),
        ("255.255.255.255", False),
        ("24", False),
        ("", False),
    ],
)
def test_netmask_rule(value, expected):
    assert valid_netmask(value, {}) is expected


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("10.20.0.10", True),
        ("0.0.0.0", False),
        ("127.0.0.1", False),
        ("224.0.0.1", False),
        ("10.20.0.300", False),
        (None, False),
    ],
)
def test_ip_rule(value, expected):
    assert valid_ipv4_host(value, {}) is expected


def test_literal_gateway_is_checked_against_generated_ip():
    descriptor = _customizer().customize(_network(IP="", Gateway="192.168.1.1"), "vm-1")
    assert descriptor.ip.generator == "fixed_ip"
    assert descriptor.gateway == FieldValue("10.20.0.1", "gateway")
    subnet = ipaddress.IPv4Network(f"{descriptor.ip.value}/24", strict=False)
    assert ipaddress.IPv4Address(descriptor.gateway.value) in subnet


def test_literal_gateway_colliding_with_generated_ip_is_regenerated():
    generated = FixedIpGenerator(POOL)(GeneratorContext(vm_id="vm-1")).value
    descriptor = _customizer().customize(_network(IP="", Gateway=generated), "vm-1")
    assert descriptor.ip == FieldValue(generated, "fixed_ip")
    assert descriptor.gateway == FieldValue("10.20.0.1", "gateway")


def test_literal_gateway_without_generator_fails_against_generated_ip():
    rules = (
        FieldRule("IP", "ip", "ipv4", valid_ipv4_host, FixedIpGenerator(POOL)),
        FieldRule("Netmask", "netmask", "ipv4", valid_netmask),
        FieldRule("Gateway", "gateway", "ipv4", valid_gateway),
        FieldRule("Hostname", "hostname", "identity", valid_hostname),
    )
    with pytest.raises(ValidationError) as excinfo:
        NetworkCustomizer(rules).customize(_network(IP="", Gateway="192.168.1.1"), "vm-1")
    assert excinfo.value.fields == ["Gateway"]


def test_fixed_ip_skips_configured_gateway():
    taken = FixedIpGenerator(POOL)(GeneratorContext(vm_id="vm-1")).value
    descriptor = _customizer(gateway=taken).customize(NetworkSection(Hostname="web"), "vm-1")
    assert descriptor.gateway == FieldValue(taken, "gateway")
    assert descriptor.ip.generator == "fixed_ip"
    assert descriptor.ip.value != taken
    assert ipaddress.IPv4Address(descriptor.ip.value) in ipaddress.IPv4Network(POOL)


def test_fixed_ip_takes_next_free_address_on_collision():
    base = FixedIpGenerator(POOL)(GeneratorContext(vm_id="vm-3")).value
    shifted = FixedIpGenerator(POOL, reserved=(base,))(GeneratorContext(vm_id="vm-3")).value
    pool = ipaddress.IPv4Network(POOL)
    expected = ipaddress.IPv4Address(base) + 1
    if expected == pool.broadcast_address:
        expected = pool.network_address + 2
    assert shifted == str(expected)


def test_fixed_ip_fails_when_pool_is_fully_reserved():
    reserved = tuple(str(ipaddress.IPv4Address("10.0.0.0") + offset) for offset in range(2, 7))
    generator = FixedIpGenerator("10.0.0.0/29", reserved=reserved)
    with pytest.raises(ValueError):
        generator(GeneratorContext(vm_id="vm-1"))


def test_padded_literal_is_regenerated_not_stripped():
    descriptor = _customizer().customize(_network(IP=" 10.20.0.10 "), "vm-1")
    assert descriptor.ip.generator == "fixed_ip"
    unchanged = _customizer().customize(_network(Hostname="Web-01"), "vm-1")
    assert unchanged.hostname == FieldValue("Web-01")
