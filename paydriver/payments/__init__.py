from .base import BackendResult, Conn, PaymentBackend, PaymentDriver
from .registry import DriverRegistry
from .mock import MockBackend, MockDriver
from .stripe import StripeBackend, StripeDriver


def register_builtin_drivers(registry: DriverRegistry) -> DriverRegistry:
    registry.register("stripe", StripeDriver())
    registry.register("mock", MockDriver())
    # Add more drivers here as needed
    return registry
