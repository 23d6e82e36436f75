"""
Error taxonomy for the provisioning compiler.

Every failure is scoped to one compile request. Stages raise the specific
error; the compiler wraps it in CompileError together with the stage that
failed, so callers always see both where and what.
"""

from enum import Enum


class Stage(str, Enum):
    DECODE = "decode"
    RESOURCES = "resources"
    HOST_SYSTEM = "host_system"
    DATACENTER = "datacenter"
    NETWORK = "network"
    STORAGE = "storage"
    DEPLOY = "deploy"


class ProvisioningError(RuntimeError):
    kind = "error"

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(detail)

    @property
    def fields(self) -> list[str]:
        return []


class DecodeError(ProvisioningError):
    kind = "decode"

    def __init__(self, detail: str, locations: list[str] | None = None):
        self.locations = list(locations or [])
        super().__init__(detail)

    @property
    def fields(self) -> list[str]:
        return list(self.locations)


class ValidationError(ProvisioningError):
    kind = "validation"

    def __init__(self, invalid_fields: list[str]):
        self.invalid_fields = list(invalid_fields)
        super().__init__(
            "invalid fields without generator: " + ", ".join(self.invalid_fields)
        )

    @property
    def fields(self) -> list[str]:
        return list(self.invalid_fields)


class UnsupportedOSError(ProvisioningError):
    kind = "unsupported"

    def __init__(self, distribution_name: str, word_size: int):
        self.distribution_name = distribution_name
        self.word_size = word_size
        super().__init__(
            f"unsupported host system distribution={distribution_name!r} bit={word_size}"
        )


class RangeError(ProvisioningError):
    kind = "range"

    def __init__(self, field: str, value: int, minimum: int, maximum: int):
        self.field = field
        self.value = value
        self.minimum = minimum
        self.maximum = maximum
        super().__init__(f"{field}={value} outside allowed range [{minimum}, {maximum}]")

    @property
    def fields(self) -> list[str]:
        return [self.field]


class NotFoundError(ProvisioningError):
    """Referenced resource is absent.

    For ownership-scoped lookups the detail never mentions the requested id,
    so a record owned by someone else looks exactly like a missing one.
    """

    kind = "not_found"

    def __init__(self, resource: str, detail: str | None = None):
        self.resource = resource
        super().__init__(detail or f"{resource} not found")


class RemoteTimeoutError(ProvisioningError):
    kind = "timeout"

    def __init__(self, operation: str, timeout_sec: float):
        self.operation = operation
        self.timeout_sec = timeout_sec
        super().__init__(f"{operation} did not complete within {timeout_sec:g}s")


class RequestCancelledError(ProvisioningError):
    kind = "cancelled"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"{operation} cancelled by caller")


class ControlPlaneError(ProvisioningError):
    kind = "remote"

    def __init__(
        self,
        *,
        method: str,
        path: str,
        error_type: str,
        detail: str,
        status_code: int | None = None,
    ):
        self.method = method
        self.path = path
        self.error_type = error_type
        self.status_code = status_code
        super().__init__(f"{method} {path} failed ({error_type}: {detail})")


class StoreError(ProvisioningError):
    """The ownership store could not be read."""

    kind = "store"

    def __init__(self, operation: str, error_type: str):
        self.operation = operation
        self.error_type = error_type
        super().__init__(f"{operation} failed ({error_type})")


class CompileError(ProvisioningError):
    def __init__(self, stage: Stage, cause: ProvisioningError):
        self.stage = stage
        self.cause = cause
        super().__init__(f"stage={stage.value} kind={cause.kind}: {cause.detail}")

    @property
    def kind(self) -> str:  # type: ignore[override]
        return self.cause.kind

    @property
    def fields(self) -> list[str]:
        return self.cause.fields

    def to_dict(self) -> dict:
        return {
            "stage": self.stage.value,
            "kind": self.kind,
            "detail": self.cause.detail,
            "fields": self.fields,
        }
