"""Exception types for Roleplay State."""


class RoleplayError(Exception):
    """Base class for all engine errors."""


class SessionNotActiveError(RoleplayError):
    """A turn operation was attempted before a character was activated."""


class SnapshotError(RoleplayError, ValueError):
    """An engine snapshot failed structural validation."""

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        if path:
            message = f"{path}: {message}"
        super().__init__(message)


class ProviderError(RoleplayError):
    """The external completion provider failed to produce a usable reply."""


class EmptyReplyError(ProviderError):
    """The completion provider returned an empty reply."""


class NoPreparedTurnError(RoleplayError):
    """A reply was validated or processed with no turn prepared for it."""
