"""Directory: registry of users, IRC sessions and channel thread bindings.

The Directory is the only state shared between event-handling tasks. Every
public coroutine is atomic; access is serialized per key (one lock per user,
one per session), so work on different sessions never contends.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from loguru import logger

from threadbridge.events import ThreadRef

if TYPE_CHECKING:
    from threadbridge.adapters.irc import RelayHandle


def normalize_channel(channel: str) -> str:
    """Case-normalize an IRC channel name."""
    return channel.strip().lower()


class BindingState(Enum):
    """PENDING until the IRC server confirms our JOIN."""

    PENDING = "pending"
    CONFIRMED = "confirmed"


@dataclass
class ChannelBinding:
    """A joined (or joining) IRC channel and the platform thread representing it."""

    channel: str
    thread: ThreadRef
    joined_at: float = field(default_factory=time.time)
    state: BindingState = BindingState.PENDING

    @property
    def confirmed(self) -> bool:
        return self.state is BindingState.CONFIRMED


@dataclass
class Session:
    """One IRC login for one platform user."""

    user_id: str
    network: str
    nick: str
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    client: RelayHandle | None = None
    created_at: float = field(default_factory=time.time)

    def __hash__(self) -> int:
        return hash(self.session_id)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Session) and other.session_id == self.session_id


@dataclass
class _SessionState:
    origin: ThreadRef | None = None
    bindings: dict[str, ChannelBinding] = field(default_factory=dict)
    by_thread: dict[ThreadRef, str] = field(default_factory=dict)
    most_recent: str | None = None


class Directory:
    """In-memory bidirectional registry: user -> session -> channel <-> thread."""

    def __init__(self) -> None:
        self._by_user: dict[str, Session] = {}
        self._by_id: dict[str, Session] = {}
        self._state: dict[str, _SessionState] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def _user_lock(self, user_id: str) -> asyncio.Lock:
        return self._lock(f"user:{user_id}")

    def _session_lock(self, session: Session) -> asyncio.Lock:
        return self._lock(f"session:{session.session_id}")

    def _release_lock(self, key: str) -> None:
        lock = self._locks.get(key)
        if lock is not None and not lock.locked():
            del self._locks[key]

    # -- users and sessions --------------------------------------------------

    async def session_for_user(self, user_id: str) -> Session | None:
        async with self._user_lock(user_id):
            session = self._by_user.get(user_id)
        if session is None:
            self._release_lock(f"user:{user_id}")
        return session

    async def session_by_id(self, session_id: str) -> Session | None:
        """Resolve the session an IRC event belongs to."""
        return self._by_id.get(session_id)

    async def create_session(self, user_id: str, session: Session) -> None:
        """Insert a session for user, replacing any existing one."""
        async with self._user_lock(user_id):
            previous = self._by_user.get(user_id)
            if previous is not None and previous != session:
                logger.warning("Directory: replacing session {} for user {}", previous.nick, user_id)
                self._by_id.pop(previous.session_id, None)
            self._by_user[user_id] = session
            self._by_id[session.session_id] = session

    async def create_session_if_absent(self, user_id: str, session: Session) -> bool:
        """Insert session only when user has none. Returns False if one already exists."""
        async with self._user_lock(user_id):
            if user_id in self._by_user:
                return False
            self._by_user[user_id] = session
            self._by_id[session.session_id] = session
            logger.debug("Directory: session {} created for user {}", session.session_id, user_id)
            return True

    async def bind_originating_thread(self, session: Session, thread: ThreadRef) -> None:
        """Attach the thread receiving login feedback; start with no channel bindings."""
        async with self._session_lock(session):
            self._state[session.session_id] = _SessionState(origin=thread)

    async def originating_thread(self, session: Session) -> ThreadRef | None:
        async with self._session_lock(session):
            state = self._state.get(session.session_id)
            return state.origin if state else None

    # -- channels -----------------------------------------------------------

    async def bind_channel(self, session: Session, channel: str, thread: ThreadRef) -> ChannelBinding:
        """Insert or replace the binding for channel and mark it most recently joined."""
        name = normalize_channel(channel)
        async with self._session_lock(session):
            state = self._state.setdefault(session.session_id, _SessionState())
            old = state.bindings.get(name)
            if old is not None:
                state.by_thread.pop(old.thread, None)
            stale = state.by_thread.get(thread)
            if stale is not None and stale != name:
                state.bindings.pop(stale, None)
            binding = ChannelBinding(channel=name, thread=thread)
            state.bindings[name] = binding
            state.by_thread[thread] = name
            state.most_recent = name
            return binding

    async def confirm_channel(self, session: Session, channel: str) -> ChannelBinding | None:
        """Mark a pending binding confirmed. None if the channel is not bound."""
        name = normalize_channel(channel)
        async with self._session_lock(session):
            state = self._state.get(session.session_id)
            binding = state.bindings.get(name) if state else None
            if binding is not None:
                binding.state = BindingState.CONFIRMED
            return binding

    async def unbind_channel(self, session: Session, channel: str) -> ChannelBinding | None:
        name = normalize_channel(channel)
        async with self._session_lock(session):
            state = self._state.get(session.session_id)
            if state is None:
                return None
            binding = state.bindings.pop(name, None)
            if binding is not None:
                state.by_thread.pop(binding.thread, None)
                if state.most_recent == name:
                    state.most_recent = None
            return binding

    async def binding_for_channel(self, session: Session, channel: str) -> ChannelBinding | None:
        async with self._session_lock(session):
            state = self._state.get(session.session_id)
            return state.bindings.get(normalize_channel(channel)) if state else None

    async def thread_for_channel(self, session: Session, channel: str) -> ThreadRef | None:
        binding = await self.binding_for_channel(session, channel)
        return binding.thread if binding else None

    async def channel_for_thread(self, session: Session, thread: ThreadRef) -> str | None:
        async with self._session_lock(session):
            state = self._state.get(session.session_id)
            return state.by_thread.get(thread) if state else None

    async def most_recent_channel(self, session: Session) -> str | None:
        async with self._session_lock(session):
            state = self._state.get(session.session_id)
            return state.most_recent if state else None

    # -- teardown -----------------------------------------------------------

    async def clear_session(self, user_id: str, session: Session) -> None:
        """Remove channel bindings, then the session entry, then the user entry."""
        async with self._session_lock(session):
            state = self._state.get(session.session_id)
            if state is not None:
                state.bindings.clear()
                state.by_thread.clear()
                state.most_recent = None
            self._state.pop(session.session_id, None)
            self._by_id.pop(session.session_id, None)
        async with self._user_lock(user_id):
            # A newer session may already own the user key
            if self._by_user.get(user_id) == session:
                del self._by_user[user_id]
        self._release_lock(f"session:{session.session_id}")
        self._release_lock(f"user:{user_id}")
        logger.debug("Directory: session {} cleared for user {}", session.session_id, user_id)

    def sessions(self) -> list[Session]:
        """Snapshot of live sessions."""
        return list(self._by_user.values())

    def stats(self) -> dict[str, Any]:
        return {
            "sessions": len(self._by_user),
            "bindings": sum(len(s.bindings) for s in self._state.values()),
        }

    async def shutdown(self) -> list[Session]:
        """Drop every session and return what was still live."""
        remaining = self.sessions()
        for session in remaining:
            logger.info(
                "Directory: dropping session {} ({}@{}) for user {}",
                session.session_id,
                session.nick,
                session.network,
                session.user_id,
            )
            await self.clear_session(session.user_id, session)
        self._locks.clear()
        return remaining
