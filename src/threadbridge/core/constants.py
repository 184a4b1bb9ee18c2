"""User-facing reply texts and protocol constants."""

# Extension type under which IRC settings are stored per user
EXTENSION_TYPE = "irc"

SESSION_EXISTS_TEXT = "logon session exists"
NEW_SESSION_TEXT = "logging in ..."
IRC_REGISTERED_TEXT = "logged in"
JOIN_USAGE_TEXT = "use /join channel"
LOGON_FIRST_TEXT = "please login before joining a channel"
NEW_JOIN_TEXT = "joining ..."
JOINED_TEXT = "joined"
PLEASE_CONFIGURE_EXTENSION_TEXT = "please configure the extension in settings under the extensions tab"
LEAVE_FROM_CHANNEL_THREAD_TEXT = "please leave a channel from the channel thread"
SEND_FROM_CHANNEL_THREAD_TEXT = "please send a message from a channel thread"
LEFT_CHANNEL_TEXT = "left channel "
LEFT_SESSION_TEXT = "logged off"
DISCONNECTED_TEXT = "disconnected from "
USER_SETTINGS_ERROR_TEXT = "error: could not read user settings"
TRANSPORT_ERROR_TEXT = "error: the request could not be completed, please try again"

# Platform item fields
TEXT_ITEM_TYPE = "TEXT"
DISCONNECTED_STATE = "Disconnected"
