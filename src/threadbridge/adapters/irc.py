"""IRC adapter: one pydle connection per platform user session."""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
from typing import TYPE_CHECKING, ClassVar, Protocol

import pydle
from loguru import logger

from threadbridge.core.constants import IRC_REGISTERED_TEXT
from threadbridge.events import (
    channel_message,
    motd,
    registered,
    relay_disconnected,
    relay_error,
    self_join,
    self_part,
)
from threadbridge.formatting.irc_lines import split_irc_lines

if TYPE_CHECKING:
    from threadbridge.gateway import Bus
    from threadbridge.gateway.directory import Session


class RelayHandle(Protocol):
    """What the controller needs from a live IRC connection."""

    nickname: str

    async def join(self, channel: str, password: str | None = None) -> None: ...

    async def part(self, channel: str, message: str | None = None) -> None: ...

    async def say(self, channel: str, text: str) -> None: ...

    async def disconnect(self, expected: bool = True) -> None: ...


@dataclass
class NetworkAddress:
    hostname: str
    port: int
    tls: bool


def parse_network(network: str, *, default_port: int = 6667, default_tls: bool = False) -> NetworkAddress:
    """Parse ``host``, ``host:port`` or ``host:+port`` (``+`` means TLS)."""
    network = network.strip()
    for scheme, tls in (("ircs://", True), ("irc://", False)):
        if network.startswith(scheme):
            network = network[len(scheme) :]
            default_tls = tls
    host, sep, port_str = network.rpartition(":")
    if not sep or not host:
        return NetworkAddress(network.rstrip("/"), default_port, default_tls)
    port_str = port_str.rstrip("/")
    tls = default_tls
    if port_str.startswith("+"):
        tls = True
        port_str = port_str[1:]
    try:
        port = int(port_str)
    except ValueError:
        return NetworkAddress(network, default_port, default_tls)
    return NetworkAddress(host, port, tls)


class RelayClient(pydle.Client):
    """pydle client bound to one session; publishes its events to the bus."""

    # A dropped user session is not retried; the user logs on again
    RECONNECT_ON_ERROR: ClassVar[bool] = False

    def __init__(self, bus: Bus, session_id: str, nick: str, **kwargs) -> None:
        super().__init__(nick, **kwargs)
        self._bus = bus
        self.session_id = session_id

    def _publish(self, evt_pair: tuple[str, object]) -> None:
        _, evt = evt_pair
        self._bus.publish("irc", evt)

    async def on_raw_001(self, message) -> None:
        """RPL_WELCOME: registration accepted."""
        await super().on_raw_001(message)
        params = getattr(message, "params", []) or []
        text = params[1] if len(params) >= 2 else IRC_REGISTERED_TEXT
        logger.info("IRC {} registered as {}", self.session_id, self.nickname)
        self._publish(registered(self.session_id, text))

    async def on_raw_376(self, message) -> None:
        """End of MOTD."""
        await super().on_raw_376(message)
        text = getattr(self, "motd", None)
        if text:
            self._publish(motd(self.session_id, text))

    async def on_channel_message(self, target: str, by: str, message: str) -> None:
        await super().on_channel_message(target, by, message)
        self._publish(channel_message(self.session_id, target.lower(), by, message))

    async def on_private_message(self, target: str, by: str, message: str) -> None:
        await super().on_private_message(target, by, message)
        self._publish(channel_message(self.session_id, by.lower(), by, message, private=True))

    async def on_join(self, channel: str, user: str) -> None:
        await super().on_join(channel, user)
        if self.is_same_nick(user, self.nickname):
            self._publish(self_join(self.session_id, user, channel.lower()))

    async def on_part(self, channel: str, user: str, message: str | None = None) -> None:
        await super().on_part(channel, user, message)
        if self.is_same_nick(user, self.nickname):
            self._publish(self_part(self.session_id, user, channel.lower()))

    async def on_raw(self, message) -> None:
        await super().on_raw(message)
        command = str(getattr(message, "command", ""))
        if command.isdigit() and 400 <= int(command) < 600:
            params = getattr(message, "params", []) or []
            text = " ".join(str(p) for p in params[1:]) or command
            logger.warning("IRC {} error {}: {}", self.session_id, command, text)
            self._publish(relay_error(self.session_id, f"{command} {text}"))

    async def on_disconnect(self, expected: bool) -> None:
        await super().on_disconnect(expected)
        logger.info("IRC {} disconnected (expected={})", self.session_id, expected)
        self._publish(relay_disconnected(self.session_id, expected=expected))

    async def say(self, channel: str, text: str) -> None:
        """Send text to channel, one PRIVMSG per line."""
        for line in split_irc_lines(text):
            await self.message(channel, line)


class IRCConnector:
    """Opens RelayClient connections. Connecting runs in the background."""

    def __init__(
        self,
        bus: Bus,
        *,
        default_port: int = 6667,
        tls: bool = False,
        tls_verify: bool = True,
        sasl: bool = True,
    ) -> None:
        self._bus = bus
        self._default_port = default_port
        self._tls = tls
        self._tls_verify = tls_verify
        self._sasl = sasl
        self._tasks: set[asyncio.Task] = set()

    def connect(self, session: Session, password: str | None) -> RelayClient:
        """Create the client for session and start connecting. Returns immediately."""
        address = parse_network(session.network, default_port=self._default_port, default_tls=self._tls)
        kwargs: dict = {}
        if self._sasl and password:
            kwargs["sasl_username"] = session.nick
            kwargs["sasl_password"] = password
        client = RelayClient(self._bus, session.session_id, session.nick, **kwargs)
        task = asyncio.create_task(self._run(client, address))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info(
            "IRC connecting {} to {}:{} (tls={})",
            session.nick,
            address.hostname,
            address.port,
            address.tls,
        )
        return client

    async def _run(self, client: RelayClient, address: NetworkAddress) -> None:
        try:
            await client.connect(
                hostname=address.hostname,
                port=address.port,
                tls=address.tls,
                tls_verify=self._tls_verify,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("IRC connect to {} failed: {}", address.hostname, exc)
            _, err = relay_error(client.session_id, f"could not connect to {address.hostname}: {exc}")
            self._bus.publish("irc", err)
            _, gone = relay_disconnected(client.session_id, expected=False)
            self._bus.publish("irc", gone)

    async def stop(self) -> None:
        for task in list(self._tasks):
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()
