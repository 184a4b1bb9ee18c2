"""Gateway: event bus, directory, command dispatcher, controller, event router."""

from threadbridge.gateway.bus import Bus
from threadbridge.gateway.commands import CommandDispatcher
from threadbridge.gateway.controller import BridgeController
from threadbridge.gateway.directory import Directory
from threadbridge.gateway.router import EventRouter

__all__ = ["BridgeController", "Bus", "CommandDispatcher", "Directory", "EventRouter"]
