"""Event types and dispatcher (typed events, central dispatcher)."""

from __future__ import annotations

import functools
from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(frozen=True)
class ThreadRef:
    """Platform item anchoring a reply thread."""

    conv_id: str
    item_id: str


# -- platform side ----------------------------------------------------------


@dataclass
class ItemAdded:
    """A conversation item was posted on the platform."""

    item_id: str
    conv_id: str
    creator_id: str
    item_type: str
    content: str
    parent_item_id: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def thread(self) -> ThreadRef:
        """Thread a reply to this item belongs in."""
        return ThreadRef(self.conv_id, self.parent_item_id or self.item_id)

    @property
    def is_threaded(self) -> bool:
        return bool(self.parent_item_id)


@dataclass
class ConnectionStateChanged:
    """Bot's own platform connection changed state."""

    state: str


@dataclass
class UserEnabled:
    """A user configured the extension and should be greeted."""

    user_id: str


# -- IRC side -----------------------------------------------------------------


@dataclass
class Registered:
    """IRC server accepted the session's registration (RPL_WELCOME)."""

    session_id: str
    text: str


@dataclass
class Motd:
    """IRC server message of the day."""

    session_id: str
    text: str


@dataclass
class ChannelMessage:
    """PRIVMSG received by a session, to a channel or to us directly."""

    session_id: str
    channel: str
    sender: str
    content: str
    private: bool = False


@dataclass
class SelfJoin:
    """The session's own nick joined a channel. ``channel`` may be unknown."""

    session_id: str
    nick: str
    channel: str | None = None


@dataclass
class SelfPart:
    """The session's own nick left a channel."""

    session_id: str
    nick: str
    channel: str


@dataclass
class RelayError:
    """IRC error numeric or connection failure."""

    session_id: str
    message: str


@dataclass
class RelayDisconnected:
    """Session's IRC connection closed. ``expected`` is False for fatal drops."""

    session_id: str
    expected: bool


@dataclass
class ConfigReload:
    """Config was reloaded (e.g. SIGHUP)."""

    pass


class EventTarget(Protocol):
    """Target interface: accept_event + push_event."""

    def accept_event(self, source: str, evt: object) -> bool:
        """Return True if this target wants the event."""
        ...

    def push_event(self, source: str, evt: object) -> None:
        """Handle the event (may be async via queue)."""
        ...


def event(type_name: str):
    """Decorator to mark a factory as producing an event with a given type."""

    def decorator(f: Any) -> Any:
        @functools.wraps(f)
        def wrapper(*args: Any, **kwargs: Any) -> tuple[str, object]:
            evt = f(*args, **kwargs)
            return (type_name, evt)

        wrapper.TYPE = type_name
        return wrapper

    return decorator


@event("item_added")
def item_added(
    item_id: str,
    conv_id: str,
    creator_id: str,
    content: str,
    *,
    item_type: str = "TEXT",
    parent_item_id: str | None = None,
    raw: dict[str, Any] | None = None,
) -> ItemAdded:
    return ItemAdded(
        item_id=item_id,
        conv_id=conv_id,
        creator_id=creator_id,
        item_type=item_type,
        content=content,
        parent_item_id=parent_item_id,
        raw=raw or {},
    )


@event("connection_state_changed")
def connection_state_changed(state: str) -> ConnectionStateChanged:
    return ConnectionStateChanged(state=state)


@event("user_enabled")
def user_enabled(user_id: str) -> UserEnabled:
    return UserEnabled(user_id=user_id)


@event("registered")
def registered(session_id: str, text: str) -> Registered:
    return Registered(session_id=session_id, text=text)


@event("motd")
def motd(session_id: str, text: str) -> Motd:
    return Motd(session_id=session_id, text=text)


@event("channel_message")
def channel_message(
    session_id: str,
    channel: str,
    sender: str,
    content: str,
    *,
    private: bool = False,
) -> ChannelMessage:
    return ChannelMessage(
        session_id=session_id,
        channel=channel,
        sender=sender,
        content=content,
        private=private,
    )


@event("self_join")
def self_join(session_id: str, nick: str, channel: str | None = None) -> SelfJoin:
    return SelfJoin(session_id=session_id, nick=nick, channel=channel)


@event("self_part")
def self_part(session_id: str, nick: str, channel: str) -> SelfPart:
    return SelfPart(session_id=session_id, nick=nick, channel=channel)


@event("relay_error")
def relay_error(session_id: str, message: str) -> RelayError:
    return RelayError(session_id=session_id, message=message)


@event("relay_disconnected")
def relay_disconnected(session_id: str, *, expected: bool) -> RelayDisconnected:
    return RelayDisconnected(session_id=session_id, expected=expected)


@event("config_reload")
def config_reload() -> ConfigReload:
    return ConfigReload()


RELAY_EVENTS = (Registered, Motd, ChannelMessage, SelfJoin, SelfPart, RelayError, RelayDisconnected)
PLATFORM_EVENTS = (ItemAdded, ConnectionStateChanged, UserEnabled)


class Dispatcher:
    """Central event dispatcher; targets filter by type and receive events."""

    def __init__(self) -> None:
        self._targets: list[EventTarget] = []

    def register(self, target: EventTarget) -> None:
        """Register an event target."""
        self._targets.append(target)

    def unregister(self, target: EventTarget) -> None:
        """Unregister an event target."""
        if target in self._targets:
            self._targets.remove(target)

    def dispatch(self, source: str, evt: object) -> None:
        """Dispatch event to all targets that accept it."""
        from loguru import logger

        for target in self._targets:
            try:
                if target.accept_event(source, evt):
                    target.push_event(source, evt)
            except Exception as exc:
                logger.exception("Failed to pass event to target {}: {}", target, exc)
