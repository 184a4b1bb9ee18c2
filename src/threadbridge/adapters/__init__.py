"""Protocol adapters: IRC sessions and the messaging platform."""

from threadbridge.adapters.irc import IRCConnector, RelayClient
from threadbridge.adapters.platform import PlatformAdapter, RestPlatformClient

__all__ = ["IRCConnector", "PlatformAdapter", "RelayClient", "RestPlatformClient"]
