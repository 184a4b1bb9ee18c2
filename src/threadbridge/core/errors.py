"""Bridge domain exceptions."""

from __future__ import annotations


class BridgeError(Exception):
    """Base for bridge domain errors."""

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: dict[str, object] | None = None,
        original_error: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.details = details or {}
        self.original_error = original_error


class BridgeConfigurationError(BridgeError):
    """Config validation or load failure."""


class UserStateError(BridgeError):
    """Command not legal in the user's current state (no session, not in a channel thread).

    ``reply`` holds the guidance text sent back to the user.
    """

    def __init__(self, reply: str, **kwargs) -> None:
        super().__init__(reply, code="user_state", **kwargs)
        self.reply = reply


class LookupMiss(BridgeError):
    """Directory has no session or binding for the requested key."""


class TransportError(BridgeError):
    """An IRC or platform call failed."""


class CredentialError(BridgeError):
    """User settings could not be read or the stored password could not be decrypted."""
