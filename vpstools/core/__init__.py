from vpstools.core.exceptions import (
    CollectionError,
    ConnectionFailedError,
    DuplicateServiceError,
    ExportFailedError,
    InvalidConfigurationError,
    MissingFieldError,
    NotConnectedError,
    UnknownConfigurationError,
    UnknownInstanceError,
    UnsupportedCombinationError,
    UnsupportedProtocolError,
    VPSToolsError,
)

__all__ = [
    "CollectionError",
    "ConnectionFailedError",
    "DuplicateServiceError",
    "ExportFailedError",
    "InvalidConfigurationError",
    "MissingFieldError",
    "NotConnectedError",
    "UnknownConfigurationError",
    "UnknownInstanceError",
    "UnsupportedCombinationError",
    "UnsupportedProtocolError",
    "VPSToolsError",
]
