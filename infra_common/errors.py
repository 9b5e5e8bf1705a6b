"""Exception types shared by the registration helpers and service contexts."""


class InfraCommonError(Exception):
    """Base exception for infra-common errors."""

    pass


class ConfigurationError(InfraCommonError):
    """Raised at startup when a required configuration section is absent or invalid."""

    pass


class ServiceNotRegisteredError(InfraCommonError, LookupError):
    """Raised when a required service cannot be resolved from the registry."""

    def __init__(self, service_type: object, name: object = None) -> None:
        self.service_type = service_type
        self.name = name
        label = getattr(service_type, "__qualname__", repr(service_type))
        if name is not None:
            label = f"{label} (name={name!r})"
        super().__init__(f"Service {label} is not registered")


__all__ = [
    "ConfigurationError",
    "InfraCommonError",
    "ServiceNotRegisteredError",
]
