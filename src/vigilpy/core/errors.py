"""Exception types raised by the core."""


class VigilError(Exception):
    """Base class for all vigilpy errors."""


class ConfigurationError(VigilError):
    """Raised at construction or dispatch time for a deployment defect."""


class CircuitOpenError(VigilError):
    """Raised when a circuit is OPEN and no fallback was supplied."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Circuit breaker {name} is OPEN")
        self.name = name


class OperationTimeoutError(VigilError, TimeoutError):
    """Raised by ``with_timeout`` when the timer wins the race."""

    def __init__(self, message: str, timeout: float) -> None:
        super().__init__(message)
        self.timeout = timeout


class AllFallbacksFailedError(VigilError):
    """Raised when the primary and every eligible fallback failed."""

    def __init__(self, service_name: str) -> None:
        super().__init__(f"All functions failed for service: {service_name}")
        self.service_name = service_name
