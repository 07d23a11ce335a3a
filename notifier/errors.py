"""Error taxonomy for the notification dispatch engine."""


class NotifierError(Exception):
    """Base class for every error raised by the notifier package."""


class ConfigurationError(NotifierError):
    """A required field or setting is missing or malformed.

    Fails the invocation immediately; nothing is recorded.
    """


class AuthorizationError(NotifierError):
    """The caller is unauthenticated or lacks an operator role."""

    def __init__(self, message, status=401):
        super().__init__(message)
        self.status = status


class ResolutionError(NotifierError):
    """Reading one recipient's data failed. The recipient is skipped."""

    def __init__(self, user_id, cause=None):
        super().__init__(f'could not resolve recipient {user_id}: {cause}')
        self.user_id = user_id
        self.cause = cause


class TransportError(NotifierError):
    """A whole push-transport call failed or timed out."""
