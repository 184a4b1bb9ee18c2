"""Bridge controller: per-user state machine behind the slash commands.

States per user: no session -> logged on -> (per channel) joined. Commands
that are illegal in the current state are answered with guidance text
(UserStateError) and change nothing. IRC calls are fire-and-forget; their
outcome arrives later as IRC events routed back here by the EventRouter.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine
from typing import TYPE_CHECKING, Any, Protocol

from loguru import logger

from threadbridge.adapters.platform import BotCredentials, PlatformClient, call_platform
from threadbridge.core.constants import (
    DISCONNECTED_STATE,
    DISCONNECTED_TEXT,
    EXTENSION_TYPE,
    JOIN_USAGE_TEXT,
    JOINED_TEXT,
    LEAVE_FROM_CHANNEL_THREAD_TEXT,
    LEFT_CHANNEL_TEXT,
    LEFT_SESSION_TEXT,
    LOGON_FIRST_TEXT,
    NEW_JOIN_TEXT,
    NEW_SESSION_TEXT,
    PLEASE_CONFIGURE_EXTENSION_TEXT,
    SEND_FROM_CHANNEL_THREAD_TEXT,
    SESSION_EXISTS_TEXT,
    TRANSPORT_ERROR_TEXT,
    USER_SETTINGS_ERROR_TEXT,
)
from threadbridge.core.errors import CredentialError, LookupMiss, TransportError, UserStateError
from threadbridge.events import (
    ChannelMessage,
    ConnectionStateChanged,
    ItemAdded,
    Motd,
    Registered,
    RelayDisconnected,
    RelayError,
    SelfJoin,
    SelfPart,
    ThreadRef,
)
from threadbridge.gateway.commands import CommandDispatcher, Handler, parse_join_argument, strip_verb
from threadbridge.gateway.directory import Directory, Session

if TYPE_CHECKING:
    from threadbridge.adapters.irc import RelayHandle
    from threadbridge.credentials import UserSettings


class Connector(Protocol):
    def connect(self, session: Session, password: str | None) -> RelayHandle: ...


class SettingsSource(Protocol):
    async def get_user_settings(self, user_id: str, ext_type: str) -> list[UserSettings]: ...


class PasswordDecryptor(Protocol):
    async def decrypt(self, token: str) -> str: ...


class BridgeController:
    """Executes commands against the Directory and posts replies to the platform."""

    def __init__(
        self,
        directory: Directory,
        platform: PlatformClient,
        connector: Connector,
        settings: SettingsSource,
        decryptor: PasswordDecryptor | None,
        *,
        help_text: str,
        channel_list_text: str,
        extension_type: str = EXTENSION_TYPE,
        bot_credentials: Callable[[], BotCredentials] | None = None,
    ) -> None:
        self._directory = directory
        self._platform = platform
        self._connector = connector
        self._settings = settings
        self._decryptor = decryptor
        self._help_text = help_text
        self._channel_list_text = channel_list_text
        self._extension_type = extension_type
        self._bot_credentials = bot_credentials
        self._tasks: set[asyncio.Task] = set()
        self.bot_user_id: str | None = None

        self.commands = CommandDispatcher()
        self.commands.register("help", self.help)
        self.commands.register("logon", self.logon)
        self.commands.register("logoff", self.logoff)
        self.commands.register("join", self.join)
        self.commands.register("leave", self.leave)
        self.commands.register("send", self.send)
        self.commands.register("list", self.list_channels)
        self.commands.freeze()

    @property
    def directory(self) -> Directory:
        return self._directory

    # -- plumbing ---------------------------------------------------------

    async def reply(self, thread: ThreadRef, text: str) -> bool:
        """Post text into thread. Failures are logged, never raised."""
        try:
            await call_platform(
                self._platform.add_text_item(thread.conv_id, text, parent_id=thread.item_id),
                "add_text_item",
            )
            return True
        except TransportError as exc:
            logger.warning("Reply to {} failed: {}", thread.item_id, exc)
            return False

    def _spawn(self, coro: Coroutine[Any, Any, Any], what: str, notify: ThreadRef | None = None) -> None:
        """Run an IRC call in the background; report failure to notify thread if given."""

        async def runner() -> None:
            try:
                await coro
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.exception("IRC {} failed: {}", what, exc)
                if notify is not None:
                    await self.reply(notify, TRANSPORT_ERROR_TEXT)

        task = asyncio.create_task(runner())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for background IRC calls to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def run_command(self, handler: Handler, item: ItemAdded, text: str) -> None:
        """Run a command handler; state errors become guidance replies."""
        logger.info("Command {} from {}", text.split()[0], item.creator_id)
        try:
            await handler(item, text)
        except UserStateError as exc:
            await self.reply(item.thread, exc.reply)
        except TransportError as exc:
            logger.exception("Command from {} failed: {}", item.creator_id, exc)
            await self.reply(item.thread, TRANSPORT_ERROR_TEXT)

    async def _require_session(self, item: ItemAdded) -> Session:
        session = await self._directory.session_for_user(item.creator_id)
        if session is None or session.client is None:
            raise UserStateError(LOGON_FIRST_TEXT)
        return session

    async def _require_channel(self, item: ItemAdded, session: Session, guidance: str) -> str:
        if not item.is_threaded:
            raise UserStateError(guidance)
        channel = await self._directory.channel_for_thread(session, item.thread)
        if channel is None:
            raise UserStateError(guidance)
        return channel

    # -- commands ---------------------------------------------------------

    async def help(self, item: ItemAdded, text: str) -> None:
        await self.reply(item.thread, self._help_text)

    async def list_channels(self, item: ItemAdded, text: str) -> None:
        await self.reply(item.thread, self._channel_list_text)

    async def logon(self, item: ItemAdded, text: str) -> None:
        user_id = item.creator_id
        if await self._directory.session_for_user(user_id) is not None:
            await self.reply(item.thread, SESSION_EXISTS_TEXT)
            return

        try:
            settings = await self._settings.get_user_settings(user_id, self._extension_type)
            if not settings:
                logger.debug("No {} settings for user {}", self._extension_type, user_id)
                await self.reply(item.thread, PLEASE_CONFIGURE_EXTENSION_TEXT)
                return
            account = settings[0]
            password = await self._decrypt(account.encrypted_password)
        except CredentialError as exc:
            logger.error("Could not read user settings for {}: {}", user_id, exc)
            await self.reply(item.thread, USER_SETTINGS_ERROR_TEXT)
            return

        session = Session(user_id=user_id, network=account.network, nick=account.nick)
        await self._directory.bind_originating_thread(session, item.thread)
        if not await self._directory.create_session_if_absent(user_id, session):
            # Lost a race against a concurrent /logon
            await self._directory.clear_session(user_id, session)
            await self.reply(item.thread, SESSION_EXISTS_TEXT)
            return
        try:
            session.client = self._connector.connect(session, password)
        except Exception as exc:
            await self._directory.clear_session(user_id, session)
            raise TransportError(f"could not start IRC session: {exc}", original_error=exc) from exc
        logger.info("User {} logging on to {} as {}", user_id, session.network, session.nick)
        await self.reply(item.thread, NEW_SESSION_TEXT)

    async def _decrypt(self, token: str) -> str | None:
        if not token:
            return None
        if self._decryptor is None:
            raise CredentialError("no decryption key configured")
        return await self._decryptor.decrypt(token)

    async def join(self, item: ItemAdded, text: str) -> None:
        channel = parse_join_argument(text)
        if not channel:
            await self.reply(item.thread, JOIN_USAGE_TEXT)
            return
        session = await self._require_session(item)

        # Thread and binding exist before the JOIN goes out so the confirmation has a home
        thread_item = await call_platform(
            self._platform.add_text_item(item.conv_id, NEW_JOIN_TEXT, subject=channel),
            "add_text_item",
        )
        thread = ThreadRef(thread_item.conv_id or item.conv_id, thread_item.item_id)
        await self._directory.bind_channel(session, channel, thread)
        logger.info("User {} joining {}", item.creator_id, channel)
        self._spawn(session.client.join(channel), f"join {channel}", notify=thread)

    async def leave(self, item: ItemAdded, text: str) -> None:
        session = await self._require_session(item)
        channel = await self._require_channel(item, session, LEAVE_FROM_CHANNEL_THREAD_TEXT)
        logger.info("User {} leaving {}", item.creator_id, channel)
        self._spawn(session.client.part(channel), f"part {channel}", notify=item.thread)

    async def send(self, item: ItemAdded, text: str) -> None:
        session = await self._require_session(item)
        channel = await self._require_channel(item, session, SEND_FROM_CHANNEL_THREAD_TEXT)
        body = strip_verb(text)
        if body.strip():
            self._spawn(session.client.say(channel, body), f"say {channel}", notify=item.thread)

    async def logoff(self, item: ItemAdded, text: str) -> None:
        session = await self._require_session(item)
        try:
            await session.client.disconnect(expected=True)
        except Exception as exc:
            logger.warning("IRC disconnect for {} failed: {}", session.nick, exc)
        await self._directory.clear_session(item.creator_id, session)
        logger.info("User {} logged off {}", item.creator_id, session.network)
        await self.reply(item.thread, LEFT_SESSION_TEXT)

    async def forward(self, item: ItemAdded) -> bool:
        """Relay a plain threaded reply to the channel bound to its thread."""
        session = await self._directory.session_for_user(item.creator_id)
        if session is None or session.client is None:
            return False
        channel = await self._directory.channel_for_thread(session, item.thread)
        if channel is None:
            return False
        self._spawn(session.client.say(channel, item.content), f"say {channel}", notify=item.thread)
        return True

    # -- IRC events -------------------------------------------------------

    async def _origin(self, session: Session) -> ThreadRef | None:
        thread = await self._directory.originating_thread(session)
        if thread is None:
            logger.warning("No origin thread for session {}", session.session_id)
        return thread

    async def on_registered(self, session: Session, evt: Registered) -> None:
        thread = await self._origin(session)
        if thread is not None:
            await self.reply(thread, evt.text)

    async def on_motd(self, session: Session, evt: Motd) -> None:
        thread = await self._origin(session)
        if thread is not None:
            await self.reply(thread, evt.text)

    async def on_message(self, session: Session, evt: ChannelMessage) -> None:
        if evt.private:
            raise LookupMiss(f"private message from {evt.sender} has no channel thread", code="no_binding")
        thread = await self._directory.thread_for_channel(session, evt.channel)
        if thread is None:
            raise LookupMiss(f"no thread for {evt.channel}", code="no_binding")
        await self.reply(thread, f"{evt.sender} : {evt.content}")

    async def on_self_join(self, session: Session, evt: SelfJoin) -> None:
        channel = evt.channel or await self._directory.most_recent_channel(session)
        if not channel:
            raise LookupMiss(f"join by {evt.nick} with no channel to attribute", code="no_binding")
        binding = await self._directory.confirm_channel(session, channel)
        if binding is None:
            raise LookupMiss(f"{evt.nick} joined {channel} without a thread", code="no_binding")
        await self.reply(binding.thread, f"{evt.nick} : {JOINED_TEXT}")

    async def on_self_part(self, session: Session, evt: SelfPart) -> None:
        binding = await self._directory.unbind_channel(session, evt.channel)
        if binding is None:
            raise LookupMiss(f"{evt.nick} left unbound channel {evt.channel}", code="no_binding")
        await self.reply(binding.thread, LEFT_CHANNEL_TEXT + evt.channel)

    async def on_relay_error(self, session: Session, evt: RelayError) -> None:
        logger.error("IRC error for {}@{}: {}", session.nick, session.network, evt.message)

    async def on_disconnected(self, session: Session, evt: RelayDisconnected) -> None:
        if evt.expected:
            return
        thread = await self._origin(session)
        await self._directory.clear_session(session.user_id, session)
        logger.warning("Session {} for user {} dropped by {}", session.nick, session.user_id, session.network)
        if thread is not None:
            await self.reply(thread, DISCONNECTED_TEXT + session.network)

    # -- platform ---------------------------------------------------------

    async def logon_bot(self) -> None:
        """(Re)authenticate the bot's own platform identity."""
        if self._bot_credentials is None:
            logger.warning("No bot credentials configured; skipping platform logon")
            return
        credentials = self._bot_credentials()
        logger.info("Logging on bot {}", credentials.client_id)
        await call_platform(self._platform.authenticate(credentials), "authenticate")
        self.bot_user_id = await call_platform(self._platform.get_logged_on_user(), "get_logged_on_user")
        logger.debug("Bot user id {}", self.bot_user_id)

    async def on_connection_state(self, evt: ConnectionStateChanged) -> None:
        logger.info("Platform connection state: {}", evt.state)
        if evt.state != DISCONNECTED_STATE:
            return
        try:
            await self.logon_bot()
        except TransportError as exc:
            logger.error("Failed to logon after disconnect: {}", exc)

    async def on_config_reload(self) -> None:
        """Account settings may have changed: log the bot on again."""
        try:
            await self.logon_bot()
        except TransportError as exc:
            logger.error("Failed to logon after config reload: {}", exc)

    async def welcome(self, user_id: str) -> None:
        """Greet a user who enabled the extension with the help text."""
        try:
            conversation = await call_platform(
                self._platform.get_direct_conversation_with_user(user_id),
                "get_direct_conversation_with_user",
            )
            if conversation is None:
                logger.info("No direct conversation with {}; creating one", user_id)
                conversation = await call_platform(
                    self._platform.create_direct_conversation(user_id),
                    "create_direct_conversation",
                )
            await call_platform(
                self._platform.add_text_item(conversation.conv_id, self._help_text),
                "add_text_item",
            )
        except TransportError as exc:
            logger.error("Welcome message to {} failed: {}", user_id, exc)

    # -- lifecycle --------------------------------------------------------

    async def shutdown(self) -> None:
        """Disconnect every live session and empty the Directory."""
        for session in self._directory.sessions():
            if session.client is None:
                continue
            try:
                await session.client.disconnect(expected=True)
            except Exception as exc:
                logger.warning("IRC disconnect for {} failed: {}", session.nick, exc)
        await self.drain()
        await self._directory.shutdown()


__all__ = ["BridgeController", "Connector", "PasswordDecryptor", "SettingsSource"]