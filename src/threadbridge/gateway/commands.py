"""Command dispatcher: leading-slash verbs typed in the platform conversation."""

from __future__ import annotations

import re
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from loguru import logger

from threadbridge.core.errors import BridgeError

if TYPE_CHECKING:
    from threadbridge.events import ItemAdded

Handler = Callable[["ItemAdded", str], Awaitable[None]]

_COMMAND_RE = re.compile(r"^\s*/(\w+)\s*")
_JOIN_RE = re.compile(r"^\s*/(\w+)\s+([+\-#\w.]+)\s*")
_ARGUMENT_RE = re.compile(r"^\s*/\w+\s?", re.DOTALL)


class CommandDispatcher:
    """Static verb -> handler table. Populated at startup, frozen afterwards."""

    def __init__(self) -> None:
        self._commands: dict[str, Handler] = {}
        self._frozen = False

    def register(self, verb: str, handler: Handler) -> None:
        if self._frozen:
            raise BridgeError(f"cannot register /{verb}: command table is frozen", code="frozen")
        if verb in self._commands:
            raise BridgeError(f"/{verb} is already registered", code="duplicate")
        self._commands[verb] = handler

    def freeze(self) -> None:
        self._frozen = True
        logger.debug("Commands: {}", ", ".join(f"/{v}" for v in self._commands))

    def verbs(self) -> list[str]:
        return list(self._commands)

    def dispatch(self, text: str) -> Handler | None:
        """Handler for the leading /verb of text, or None for ordinary chat."""
        match = _COMMAND_RE.match(text)
        if not match:
            return None
        handler = self._commands.get(match.group(1))
        if handler is None:
            logger.debug("Commands: unknown verb /{}", match.group(1))
        return handler


def parse_join_argument(text: str) -> str | None:
    """Channel name from ``/join <channel>``; None when malformed."""
    match = _JOIN_RE.match(text)
    return match.group(2) if match else None


def strip_verb(text: str) -> str:
    """Remainder of a command line after its verb (``/send hi there`` -> ``hi there``)."""
    return _ARGUMENT_RE.sub("", text, count=1)
