"""Bridge entrypoint. Loads config, logs the bot on, starts the platform event stream."""

from __future__ import annotations

import argparse
import asyncio
import getpass
import signal
import sys
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from threadbridge import __version__
from threadbridge.adapters.irc import IRCConnector
from threadbridge.adapters.platform import BotCredentials, PlatformAdapter, RestPlatformClient
from threadbridge.config import Config, cfg, load_config_with_env, read_text_file
from threadbridge.core.errors import BridgeError
from threadbridge.credentials import Decryptor, SettingsStore
from threadbridge.events import config_reload, user_enabled
from threadbridge.gateway import BridgeController, Bus, Directory, EventRouter

DEFAULT_HELP_TEXT = "commands: /help /logon /logoff /join <channel> /leave /send <text> /list"


def setup_logging(verbose: bool = False) -> None:
    """Configure loguru. Replace default logging."""
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else "INFO",
        format=(
            "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
            "<cyan>{name}</cyan> | {message}"
        ),
    )


def reload_config(config_path: Path) -> Config:
    """Load config from path and update global cfg."""
    data = load_config_with_env(config_path)
    cfg.reload(data)
    return cfg


def bot_credentials() -> BotCredentials:
    """Bot credentials from the current config (re-read on every logon)."""
    return BotCredentials(
        client_id=cfg.platform_client_id,
        client_secret=cfg.platform_client_secret,
    )


def encrypt_password() -> None:
    """Print a Fernet token for a password read from the terminal."""
    token = Decryptor().encrypt(getpass.getpass("IRC password: "))
    print(token)


@dataclass
class Bridge:
    """Everything _run starts and stops."""

    bus: Bus
    controller: BridgeController
    router: EventRouter
    connector: IRCConnector
    platform: RestPlatformClient
    settings: SettingsStore


def build(config: Config, bus: Bus) -> Bridge:
    """Wire directory, controller and router onto the bus."""
    directory = Directory()
    platform = RestPlatformClient(config.platform_base_url)
    connector = IRCConnector(
        bus,
        default_port=config.irc_default_port,
        tls=config.irc_tls,
        tls_verify=config.irc_tls_verify,
        sasl=config.irc_sasl,
    )
    settings = SettingsStore(config.settings_path, ttl=config.settings_cache_ttl_seconds)
    try:
        decryptor: Decryptor | None = Decryptor()
    except BridgeError as exc:
        logger.warning("{}; stored IRC passwords cannot be used", exc)
        decryptor = None
    controller = BridgeController(
        directory,
        platform,
        connector,
        settings,
        decryptor,
        help_text=read_text_file(config.help_text_path, DEFAULT_HELP_TEXT),
        channel_list_text=read_text_file(config.channel_list_path, ""),
        extension_type=config.extension_type,
        bot_credentials=bot_credentials,
    )
    router = EventRouter(bus, directory, controller)
    bus.register(router)
    return Bridge(bus, controller, router, connector, platform, settings)


def main() -> None:
    """Main entrypoint."""
    parser = argparse.ArgumentParser(description="threadbridge: IRC sessions driven from platform threads")
    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--encrypt-password",
        action="store_true",
        help="Encrypt an IRC password for the settings file and exit",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    args = parser.parse_args()

    setup_logging(args.verbose)

    if args.encrypt_password:
        try:
            encrypt_password()
        except BridgeError as exc:
            logger.error("{}", exc)
            sys.exit(1)
        return

    if not args.config.exists():
        logger.error("Config file not found: {}", args.config)
        sys.exit(1)

    config = reload_config(args.config)
    logger.info("Config loaded from {}", args.config)

    try:
        asyncio.run(_run(config, args.config))
    except BridgeError as exc:
        logger.error("{}", exc)
        sys.exit(1)


async def _run(config: Config, config_path: Path) -> None:
    """Async run loop. Log the bot on, follow the event stream, wait."""
    bus = Bus()
    bridge = build(config, bus)
    settings = bridge.settings
    settings.reload()

    def on_sighup() -> None:
        reload_config(config_path)
        for user_id in sorted(settings.reload()):
            _, evt = user_enabled(user_id)
            bus.publish("main", evt)
        _, evt = config_reload()
        bus.publish("main", evt)
        logger.info("Config reloaded (SIGHUP)")

    asyncio.get_running_loop().add_signal_handler(signal.SIGHUP, on_sighup)

    await bridge.controller.logon_bot()
    adapter = PlatformAdapter(bus, bridge.platform, config.platform_events_url)
    await adapter.start()
    logger.info("Bridge ready, commands {}", ", ".join(bridge.controller.commands.verbs()))

    try:
        while True:
            await asyncio.sleep(60)
    except asyncio.CancelledError:
        logger.info("Bridge shutting down")
        await adapter.stop()
        await bridge.router.stop()
        await bridge.controller.shutdown()
        await bridge.connector.stop()


if __name__ == "__main__":
    main()
