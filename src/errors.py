"""Error taxonomy shared by the relay components."""


class RelayError(Exception):
    """Base class for errors raised by the relay."""


class AuthError(RelayError):
    """Missing or expired session, or a token could not be acquired."""


class ProviderError(RelayError):
    """A Microsoft Graph call failed. Carries the upstream status, code and message."""

    def __init__(self, message: str, status_code: int | None = None, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


class ValidationError(RelayError):
    """Malformed inbound payload (webhook body or notification)."""


class ConfigError(RelayError):
    """A required setting is missing."""

    def __init__(self, setting: str):
        super().__init__(f"Missing required setting: {setting}")
        self.setting = setting
