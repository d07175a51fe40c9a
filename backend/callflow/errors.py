class CallflowError(Exception):
    """Base class for errors that abort a webhook invocation."""


class ConfigurationError(CallflowError):
    """Required server configuration (store credentials) is missing."""


class AgencyResolutionError(CallflowError):
    """No owning agency could be resolved for the call and no fallback is allowed."""
