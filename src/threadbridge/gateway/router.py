"""Event router: bus events from the platform and from IRC sessions -> controller.

IRC events are queued per session and consumed by one worker per session, so
a session's events are handled in the order its connection emitted them.
Platform events each run in their own task with no ordering between them.
"""

from __future__ import annotations

import asyncio
import contextlib

from loguru import logger

from threadbridge.core.constants import TEXT_ITEM_TYPE
from threadbridge.core.errors import LookupMiss
from threadbridge.events import (
    PLATFORM_EVENTS,
    RELAY_EVENTS,
    ChannelMessage,
    ConfigReload,
    ConnectionStateChanged,
    ItemAdded,
    Motd,
    Registered,
    RelayDisconnected,
    RelayError,
    SelfJoin,
    SelfPart,
    UserEnabled,
)
from threadbridge.gateway.bus import Bus
from threadbridge.gateway.controller import BridgeController
from threadbridge.gateway.directory import Directory


class EventRouter:
    """Routes bus events to the controller. Register on the bus with ``bus.register``."""

    def __init__(self, bus: Bus, directory: Directory, controller: BridgeController) -> None:
        self._bus = bus
        self._directory = directory
        self._controller = controller
        self._queues: dict[str, asyncio.Queue[object]] = {}
        self._workers: dict[str, asyncio.Task] = {}
        self._tasks: set[asyncio.Task] = set()

    @property
    def name(self) -> str:
        return "router"

    def accept_event(self, source: str, evt: object) -> bool:
        return isinstance(evt, (*RELAY_EVENTS, *PLATFORM_EVENTS, ConfigReload))

    def push_event(self, source: str, evt: object) -> None:
        if isinstance(evt, RELAY_EVENTS):
            self._enqueue(evt.session_id, evt)
            return
        task = asyncio.create_task(self._route_platform(evt))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # -- IRC ----------------------------------------------------------------

    def _enqueue(self, session_id: str, evt: object) -> None:
        queue = self._queues.get(session_id)
        if queue is None:
            queue = self._queues[session_id] = asyncio.Queue()
        queue.put_nowait(evt)
        worker = self._workers.get(session_id)
        if worker is None or worker.done():
            self._workers[session_id] = asyncio.create_task(self._consume(session_id, queue))

    async def _consume(self, session_id: str, queue: asyncio.Queue[object]) -> None:
        """Handle one session's events in order; exit once the session is gone."""
        while True:
            evt = await queue.get()
            try:
                await self._route_relay(evt)
            except asyncio.CancelledError:
                raise
            except LookupMiss as exc:
                logger.debug("Session {}: {} dropped, {}", session_id, type(evt).__name__, exc)
            except Exception as exc:
                logger.exception("Failed to route IRC event {}: {}", type(evt).__name__, exc)
            finally:
                queue.task_done()
            if isinstance(evt, RelayDisconnected) and queue.empty():
                if await self._directory.session_by_id(session_id) is None:
                    self._queues.pop(session_id, None)
                    self._workers.pop(session_id, None)
                    return

    async def _route_relay(self, evt: object) -> None:
        session = await self._directory.session_by_id(evt.session_id)
        if session is None:
            if isinstance(evt, RelayDisconnected) and evt.expected:
                # Logoff clears the session before the close is reported
                logger.debug("Session {} closed after logoff", evt.session_id)
            else:
                logger.warning("Dropping {} for unknown session {}", type(evt).__name__, evt.session_id)
            return
        controller = self._controller
        if isinstance(evt, Registered):
            await controller.on_registered(session, evt)
        elif isinstance(evt, Motd):
            await controller.on_motd(session, evt)
        elif isinstance(evt, ChannelMessage):
            await controller.on_message(session, evt)
        elif isinstance(evt, SelfJoin):
            await controller.on_self_join(session, evt)
        elif isinstance(evt, SelfPart):
            await controller.on_self_part(session, evt)
        elif isinstance(evt, RelayError):
            await controller.on_relay_error(session, evt)
        elif isinstance(evt, RelayDisconnected):
            await controller.on_disconnected(session, evt)

    # -- platform -----------------------------------------------------------

    async def _route_platform(self, evt: object) -> None:
        try:
            if isinstance(evt, ItemAdded):
                await self.route_item(evt)
            elif isinstance(evt, ConnectionStateChanged):
                await self._controller.on_connection_state(evt)
            elif isinstance(evt, UserEnabled):
                await self._controller.welcome(evt.user_id)
            elif isinstance(evt, ConfigReload):
                await self._controller.on_config_reload()
        except Exception as exc:
            logger.exception("Failed to route platform event {}: {}", type(evt).__name__, exc)

    async def route_item(self, item: ItemAdded) -> None:
        """Run the command in item, or forward it to its channel when it is a threaded reply."""
        if item.item_type != TEXT_ITEM_TYPE or item.creator_id == self._controller.bot_user_id:
            logger.debug("Skip item {}: not text or sent by the bot", item.item_id)
            return
        if not item.content:
            logger.debug("Skip item {}: no text", item.item_id)
            return
        handler = self._controller.commands.dispatch(item.content)
        if handler is not None:
            # An explicit command is never also forwarded to the channel
            await self._controller.run_command(handler, item, item.content)
        elif item.is_threaded:
            await self._controller.forward(item)

    # -- lifecycle ----------------------------------------------------------

    async def join(self) -> None:
        """Wait until every queued and in-flight event has been handled."""
        while True:
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            for queue in list(self._queues.values()):
                await queue.join()
            await self._controller.drain()
            if not self._tasks and all(q.empty() for q in self._queues.values()):
                return

    async def stop(self) -> None:
        self._bus.unregister(self)
        for task in [*self._workers.values(), *self._tasks]:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._workers.clear()
        self._queues.clear()
        self._tasks.clear()
