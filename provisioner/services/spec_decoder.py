"""Structural decoding of customer provisioning specifications.

JSON is the primary format and is validated strictly, so ``"CpuNum": "2"`` is
a type mismatch rather than a silently coerced value. XML documents use the
same element names as the JSON keys; their text nodes are coerced to the
declared scalar types.
"""

from typing import Any
from xml.etree import ElementTree

from pydantic import ValidationError as PydanticValidationError

from provisioner.errors import DecodeError
from provisioner.schemas import ProvisioningSpec


SECTION_TAGS = {
    field.alias
    for field in ProvisioningSpec.model_fields.values()
    if field.alias is not None
}


def _locations(exc: PydanticValidationError) -> list[str]:
    locations: list[str] = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "<root>"
        if location not in locations:
            locations.append(location)
    return locations


def _element_to_value(element: ElementTree.Element) -> Any:
    children = list(element)
    if not children:
        if element.tag in SECTION_TAGS:
            return {}
        return (element.text or "").strip()
    value: dict[str, Any] = {}
    for child in children:
        if child.tag in value:
            raise DecodeError(f"duplicate element <{child.tag}>", [child.tag])
        value[child.tag] = _element_to_value(child)
    return value


def _decode_xml(text: str) -> ProvisioningSpec:
    try:
        root = ElementTree.fromstring(text)
    except ElementTree.ParseError as exc:
        raise DecodeError(f"malformed XML: {exc}") from exc
    document = _element_to_value(root)
    if not isinstance(document, dict):
        raise DecodeError("XML root element has no sections")
    try:
        return ProvisioningSpec.model_validate(document)
    except PydanticValidationError as exc:
        locations = _locations(exc)
        raise DecodeError(
            "specification does not match schema: " + ", ".join(locations), locations
        ) from exc


def _decode_json(text: str) -> ProvisioningSpec:
    try:
        return ProvisioningSpec.model_validate_json(text, strict=True)
    except PydanticValidationError as exc:
        locations = _locations(exc)
        raise DecodeError(
            "specification does not match schema: " + ", ".join(locations), locations
        ) from exc


def decode_spec(raw: bytes | str) -> ProvisioningSpec:
    if isinstance(raw, bytes):
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodeError("specification is not valid UTF-8") from exc
    else:
        text = raw
    stripped = text.lstrip("\ufeff \t\r\n")
    if not stripped:
        raise DecodeError("empty specification")
    if stripped.startswith("<"):
        return _decode_xml(stripped)
    return _decode_json(stripped)


def encode_spec(spec: ProvisioningSpec) -> str:
    return spec.model_dump_json(by_alias=True)
