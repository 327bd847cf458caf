"""Domain-specific errors for pulsectl."""


class PulsectlError(Exception):
    """Base error for pulsectl."""


class ConfigError(PulsectlError):
    """Base configuration error."""


class ConfigLoadError(ConfigError):
    """Raised when a configuration file cannot be read."""


class ConfigValidationError(ConfigError):
    """Raised when configuration does not conform to schema or semantics."""


class PermissionDeniedError(PulsectlError):
    """Raised when a required runtime permission is not granted."""


class RadioError(PulsectlError):
    """Base radio stack error."""


class AdapterUnavailableError(RadioError):
    """Raised when the adapter is off, missing, or not authorized."""


class ScanCallbackError(RadioError):
    """Raised for a single discovery callback that could not be handled."""


class ConnectionFailureError(RadioError):
    """Raised when connecting to or discovering a peripheral fails."""


class DecodeFailureError(PulsectlError):
    """Raised when a notification payload cannot be decoded."""
