"""Custom exceptions for the pulse metrics pipeline."""


class PulseError(Exception):
    """Base exception for all pipeline errors."""


class ProviderApiError(PulseError):
    """Raised for provider API errors (HTTP 4xx/5xx, unexpected bodies)."""

    def __init__(self, source: str, status: int, body: str = ""):
        self.source = source
        self.status = status
        self.body = body
        super().__init__(f"{source} API request failed: HTTP {status}")


class ProviderConfigError(PulseError):
    """Raised when configured credentials cannot be used (bad key material)."""


class StorageError(PulseError):
    """Raised for writes against unknown tables or invalid log transitions."""


class UnknownSourceError(PulseError):
    """Raised when an ingestion source name is not registered."""

    def __init__(self, source: str):
        self.source = source
        super().__init__(f"Unknown ingestion source: {source}")


class NotificationDeliveryError(PulseError):
    """Raised when the delivery channel rejects a message."""

    def __init__(self, status: int, body: str):
        self.status = status
        self.body = body
        super().__init__(f"Notification delivery failed: HTTP {status}, body={body[:200]}")
