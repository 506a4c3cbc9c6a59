#Marks api as a package.
#Re-exports the REST adapter so other modules import from api without knowing internal file names.
#No business logic.

from .client import (
    DeliveryApiClient,
    DeliveryApiError,
    NetworkError,
    ResponseFormatError,
    TrackingConfig,
    VerificationResult,
    default_socket_url,
    friendly_error_message,
)

__all__ = [
    "DeliveryApiClient",
    "DeliveryApiError",
    "NetworkError",
    "ResponseFormatError",
    "TrackingConfig",
    "VerificationResult",
    "default_socket_url",
    "friendly_error_message",
]
