"""Tests for the bridge controller state machine, driven through the harness."""

from __future__ import annotations

import pytest

from threadbridge.adapters.platform import BotCredentials
from threadbridge.core.constants import (
    JOIN_USAGE_TEXT,
    LEAVE_FROM_CHANNEL_THREAD_TEXT,
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
from threadbridge.core.errors import LookupMiss
from threadbridge.credentials import UserSettings
from threadbridge.events import channel_message, connection_state_changed, self_join, self_part, user_enabled

from tests.harness import CHANNEL_LIST_TEXT, CONV, HELP_TEXT, BridgeHarness
from tests.mocks import FakeSettings


@pytest.fixture
def harness():
    return BridgeHarness()


class TestHelpAndList:
    @pytest.mark.asyncio
    async def test_help_replies_in_thread(self, harness: BridgeHarness):
        # Act
        item_id = await harness.say("alice", "/help")

        # Assert
        assert harness.platform.replies_in(item_id) == [HELP_TEXT]

    @pytest.mark.asyncio
    async def test_list_replies_with_channel_list(self, harness: BridgeHarness):
        # Act
        item_id = await harness.say("alice", "/list")

        # Assert
        assert harness.platform.replies_in(item_id) == [CHANNEL_LIST_TEXT]


class TestLogon:
    @pytest.mark.asyncio
    async def test_logon_creates_session_and_connects(self, harness: BridgeHarness):
        # Act
        item_id = await harness.say("alice", "/logon")

        # Assert
        session = await harness.session("alice")
        assert session is not None
        assert session.nick == "alice_irc"
        assert session.network == "irc.example.net"
        assert harness.connector.clients[0].password == "secret"
        assert harness.platform.replies_in(item_id) == [NEW_SESSION_TEXT]

    @pytest.mark.asyncio
    async def test_logon_binds_originating_thread(self, harness: BridgeHarness):
        # Act
        item_id = await harness.say("alice", "/logon")

        # Assert
        session = await harness.session("alice")
        origin = await harness.directory.originating_thread(session)
        assert origin is not None
        assert (origin.conv_id, origin.item_id) == (CONV, item_id)

    @pytest.mark.asyncio
    async def test_logon_without_password_skips_decrypt(self, harness: BridgeHarness):
        # Act
        await harness.say("bob", "/logon")

        # Assert
        assert harness.connector.clients[0].password is None
        assert harness.decryptor.decrypted == []

    @pytest.mark.asyncio
    async def test_second_logon_reports_existing_session(self, harness: BridgeHarness):
        # Arrange
        session, _ = await harness.logon("alice")

        # Act
        item_id = await harness.say("alice", "/logon")
        again_id = await harness.say("alice", "/logon")

        # Assert
        assert harness.platform.replies_in(item_id) == [SESSION_EXISTS_TEXT]
        assert harness.platform.replies_in(again_id) == [SESSION_EXISTS_TEXT]
        assert await harness.session("alice") is session
        assert len(harness.connector.clients) == 1

    @pytest.mark.asyncio
    async def test_concurrent_logons_create_one_session(self):
        # Arrange
        settings = FakeSettings(
            {"alice": [UserSettings("irc.example.net", "alice_irc", "")]},
            delay=0.01,
        )
        harness = BridgeHarness(settings=settings)

        # Act
        ids = [harness.publish_item("alice", "/logon") for _ in range(5)]
        await harness.router.join()

        # Assert
        assert len(harness.connector.clients) == 1
        assert len(harness.directory.sessions()) == 1
        replies = [r for item_id in ids for r in harness.platform.replies_in(item_id)]
        assert replies.count(NEW_SESSION_TEXT) == 1
        assert replies.count(SESSION_EXISTS_TEXT) == 4

    @pytest.mark.asyncio
    async def test_logon_without_settings_asks_to_configure(self, harness: BridgeHarness):
        # Act
        item_id = await harness.say("carol", "/logon")

        # Assert
        assert harness.platform.replies_in(item_id) == [PLEASE_CONFIGURE_EXTENSION_TEXT]
        assert await harness.session("carol") is None

    @pytest.mark.asyncio
    async def test_logon_settings_failure(self, harness: BridgeHarness):
        # Arrange
        harness.settings.fail = True

        # Act
        item_id = await harness.say("alice", "/logon")

        # Assert
        assert harness.platform.replies_in(item_id) == [USER_SETTINGS_ERROR_TEXT]
        assert await harness.session("alice") is None
        assert harness.connector.clients == []

    @pytest.mark.asyncio
    async def test_logon_decrypt_failure(self, harness: BridgeHarness):
        # Arrange
        harness.settings.settings["alice"] = [UserSettings("irc.example.net", "alice_irc", "garbage")]

        # Act
        item_id = await harness.say("alice", "/logon")

        # Assert
        assert harness.platform.replies_in(item_id) == [USER_SETTINGS_ERROR_TEXT]
        assert await harness.session("alice") is None


class TestJoin:
    @pytest.mark.asyncio
    async def test_join_without_session(self, harness: BridgeHarness):
        # Act
        item_id = await harness.say("alice", "/join #x")

        # Assert
        assert harness.platform.replies_in(item_id) == [LOGON_FIRST_TEXT]
        assert harness.directory.stats()["bindings"] == 0

    @pytest.mark.asyncio
    async def test_join_usage(self, harness: BridgeHarness):
        # Arrange
        await harness.logon("alice")

        # Act
        item_id = await harness.say("alice", "/join")

        # Assert
        assert harness.platform.replies_in(item_id) == [JOIN_USAGE_TEXT]

    @pytest.mark.asyncio
    async def test_join_creates_thread_and_binds(self, harness: BridgeHarness):
        # Arrange
        session, relay = await harness.logon("alice")
        harness.platform.clear()

        # Act
        await harness.say("alice", "/join #News")

        # Assert
        thread_post = harness.platform.posts[0]
        assert thread_post.parent_id is None
        assert thread_post.subject == "#News"
        assert thread_post.content == NEW_JOIN_TEXT
        binding = await harness.directory.binding_for_channel(session, "#news")
        assert binding is not None and not binding.confirmed
        assert binding.thread.item_id == thread_post.item_id
        assert relay.joins == ["#News"]

    @pytest.mark.asyncio
    async def test_join_platform_failure_issues_no_join(self, harness: BridgeHarness):
        # Arrange
        session, relay = await harness.logon("alice")
        harness.platform.fail_posts = True

        # Act
        await harness.say("alice", "/join #a")

        # Assert
        assert relay.joins == []
        assert await harness.directory.thread_for_channel(session, "#a") is None

    @pytest.mark.asyncio
    async def test_failed_irc_join_is_reported_in_thread(self, harness: BridgeHarness):
        # Arrange
        _, relay = await harness.logon("alice")
        relay.fail = True

        # Act
        thread_id = await harness.join_channel("alice", "#a")

        # Assert
        assert harness.platform.replies_in(thread_id) == [TRANSPORT_ERROR_TEXT]


class TestLeave:
    @pytest.mark.asyncio
    async def test_leave_without_session(self, harness: BridgeHarness):
        # Act
        item_id = await harness.say("alice", "/leave")

        # Assert
        assert harness.platform.replies_in(item_id) == [LOGON_FIRST_TEXT]

    @pytest.mark.asyncio
    async def test_leave_outside_thread(self, harness: BridgeHarness):
        # Arrange
        _, relay = await harness.logon("alice")
        await harness.join_channel("alice", "#a")

        # Act
        item_id = await harness.say("alice", "/leave")

        # Assert
        assert harness.platform.replies_in(item_id) == [LEAVE_FROM_CHANNEL_THREAD_TEXT]
        assert relay.parts == []

    @pytest.mark.asyncio
    async def test_leave_in_unbound_thread(self, harness: BridgeHarness):
        # Arrange
        _, relay = await harness.logon("alice")

        # Act
        await harness.say("alice", "/leave", parent="some-other-thread")

        # Assert
        assert harness.platform.replies_in("some-other-thread") == [LEAVE_FROM_CHANNEL_THREAD_TEXT]
        assert relay.parts == []

    @pytest.mark.asyncio
    async def test_leave_in_channel_thread_parts(self, harness: BridgeHarness):
        # Arrange
        _, relay = await harness.logon("alice")
        thread_id = await harness.join_channel("alice", "#a")

        # Act
        await harness.say("alice", "/leave", parent=thread_id)

        # Assert
        assert relay.parts == ["#a"]


class TestSend:
    @pytest.mark.asyncio
    async def test_send_outside_thread(self, harness: BridgeHarness):
        # Arrange
        _, relay = await harness.logon("alice")

        # Act
        item_id = await harness.say("alice", "/send hello")

        # Assert
        assert harness.platform.replies_in(item_id) == [SEND_FROM_CHANNEL_THREAD_TEXT]
        assert relay.said == []

    @pytest.mark.asyncio
    async def test_send_in_channel_thread_is_sent_once(self, harness: BridgeHarness):
        # Arrange
        _, relay = await harness.logon("alice")
        thread_id = await harness.join_channel("alice", "#a")

        # Act
        await harness.say("alice", "/send hello world", parent=thread_id)

        # Assert
        assert relay.said == [("#a", "hello world")]

    @pytest.mark.asyncio
    async def test_plain_threaded_reply_is_forwarded(self, harness: BridgeHarness):
        # Arrange
        _, relay = await harness.logon("alice")
        thread_id = await harness.join_channel("alice", "#a")

        # Act
        await harness.say("alice", "just chatting", parent=thread_id)

        # Assert
        assert relay.said == [("#a", "just chatting")]

    @pytest.mark.asyncio
    async def test_unknown_slash_text_in_thread_is_forwarded(self, harness: BridgeHarness):
        # Arrange
        _, relay = await harness.logon("alice")
        thread_id = await harness.join_channel("alice", "#a")

        # Act
        await harness.say("alice", "/shrug", parent=thread_id)

        # Assert
        assert relay.said == [("#a", "/shrug")]

    @pytest.mark.asyncio
    async def test_help_in_channel_thread_is_not_forwarded(self, harness: BridgeHarness):
        # Arrange
        _, relay = await harness.logon("alice")
        thread_id = await harness.join_channel("alice", "#a")

        # Act
        await harness.say("alice", "/help", parent=thread_id)

        # Assert
        assert relay.said == []
        assert HELP_TEXT in harness.platform.replies_in(thread_id)

    @pytest.mark.asyncio
    async def test_plain_text_outside_thread_is_ignored(self, harness: BridgeHarness):
        # Arrange
        _, relay = await harness.logon("alice")
        harness.platform.clear()

        # Act
        await harness.say("alice", "hello?")

        # Assert
        assert relay.said == []
        assert harness.platform.posts == []

    @pytest.mark.asyncio
    async def test_other_users_reply_in_thread_is_not_forwarded(self, harness: BridgeHarness):
        # Arrange
        _, relay = await harness.logon("alice")
        thread_id = await harness.join_channel("alice", "#a")

        # Act
        await harness.say("bob", "hi", parent=thread_id)

        # Assert
        assert relay.said == []


class TestLogoff:
    @pytest.mark.asyncio
    async def test_logoff_without_session(self, harness: BridgeHarness):
        # Act
        item_id = await harness.say("alice", "/logoff")

        # Assert
        assert harness.platform.replies_in(item_id) == [LOGON_FIRST_TEXT]

    @pytest.mark.asyncio
    async def test_logoff_disconnects_and_clears(self, harness: BridgeHarness):
        # Arrange
        session, relay = await harness.logon("alice")
        await harness.join_channel("alice", "#a")

        # Act
        item_id = await harness.say("alice", "/logoff")

        # Assert
        assert relay.disconnects == 1
        assert harness.platform.replies_in(item_id) == [LEFT_SESSION_TEXT]
        assert await harness.session("alice") is None
        assert await harness.directory.thread_for_channel(session, "#a") is None

    @pytest.mark.asyncio
    async def test_logon_after_logoff_creates_new_session(self, harness: BridgeHarness):
        # Arrange
        first, _ = await harness.logon("alice")
        await harness.say("alice", "/logoff")

        # Act
        second, _ = await harness.logon("alice")

        # Assert
        assert second != first
        assert len(harness.connector.clients) == 2


class TestPlatformConnectivity:
    @pytest.mark.asyncio
    async def test_disconnect_reauthenticates_bot(self, harness: BridgeHarness):
        # Arrange
        harness.controller._bot_credentials = lambda: BotCredentials("id", "secret")
        harness.controller.bot_user_id = None
        session, _ = await harness.logon("alice")

        # Act
        _, evt = connection_state_changed("Disconnected")
        harness.bus.publish("platform", evt)
        await harness.router.join()

        # Assert
        assert [c.client_id for c in harness.platform.authenticated] == ["id"]
        assert harness.controller.bot_user_id == "bot"
        assert await harness.session("alice") is session

    @pytest.mark.asyncio
    async def test_connected_state_does_nothing(self, harness: BridgeHarness):
        # Act
        _, evt = connection_state_changed("Connected")
        harness.bus.publish("platform", evt)
        await harness.router.join()

        # Assert
        assert harness.platform.authenticated == []

    @pytest.mark.asyncio
    async def test_welcome_creates_conversation_and_posts_help(self, harness: BridgeHarness):
        # Act
        _, evt = user_enabled("dave")
        harness.bus.publish("main", evt)
        await harness.router.join()

        # Assert
        assert harness.platform.created == ["dave"]
        post = harness.platform.posts[-1]
        assert (post.conv_id, post.content, post.parent_id) == ("conv-dave", HELP_TEXT, None)

    @pytest.mark.asyncio
    async def test_welcome_reuses_existing_conversation(self, harness: BridgeHarness):
        # Arrange
        harness.platform.conversations["dave"] = "conv-existing"

        # Act
        await harness.controller.welcome("dave")

        # Assert
        assert harness.platform.created == []
        assert harness.platform.posts[-1].conv_id == "conv-existing"


class TestShutdown:
    @pytest.mark.asyncio
    async def test_shutdown_disconnects_all_sessions(self, harness: BridgeHarness):
        # Arrange
        _, alice = await harness.logon("alice")
        _, bob = await harness.logon("bob")

        # Act
        await harness.controller.shutdown()

        # Assert
        assert alice.disconnects == 1
        assert bob.disconnects == 1
        assert harness.directory.sessions() == []


class TestUnroutableEvents:
    @pytest.mark.asyncio
    async def test_message_without_binding_is_lookup_miss(self, harness: BridgeHarness):
        # Arrange
        session, _ = await harness.logon("alice")
        _, evt = channel_message(session.session_id, "#nowhere", "x", "y")

        # Act & Assert
        with pytest.raises(LookupMiss):
            await harness.controller.on_message(session, evt)

    @pytest.mark.asyncio
    async def test_part_without_binding_is_lookup_miss(self, harness: BridgeHarness):
        # Arrange
        session, _ = await harness.logon("alice")
        _, evt = self_part(session.session_id, "alice_irc", "#nowhere")

        # Act & Assert
        with pytest.raises(LookupMiss):
            await harness.controller.on_self_part(session, evt)

    @pytest.mark.asyncio
    async def test_join_with_nothing_pending_is_lookup_miss(self, harness: BridgeHarness):
        # Arrange
        session, _ = await harness.logon("alice")
        _, evt = self_join(session.session_id, "alice_irc")

        # Act & Assert
        with pytest.raises(LookupMiss):
            await harness.controller.on_self_join(session, evt)

    @pytest.mark.asyncio
    async def test_private_message_is_lookup_miss(self, harness: BridgeHarness):
        # Arrange
        session, _ = await harness.logon("alice")
        _, evt = channel_message(session.session_id, "bob", "bob", "hi", private=True)

        # Act & Assert
        with pytest.raises(LookupMiss):
            await harness.controller.on_message(session, evt)
