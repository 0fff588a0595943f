"""MineChat client - Main entry point."""

import argparse
import asyncio
import functools
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from . import __version__
from .channel import ChannelFactory, open_tcp_channel
from .commands import CommandRegistry
from .config import ClientSettings, Config
from .console import ChatConsole
from .errors import MineChatError, NotLinked
from .link import LinkFlow
from .logger import setup_logging
from .registry import JsonFileStore, ServerRegistry
from .session import ChatSession

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="minechat", description="CLI client for MineChat"
    )
    parser.add_argument(
        "-s", "--server", required=True, help="The MineChat server address (host:port)"
    )
    parser.add_argument(
        "--link", metavar="CODE", help="Link account using the provided code"
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable verbose logging"
    )
    parser.add_argument(
        "--config-dir",
        type=Path,
        help="Directory holding settings.json and servers.json",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    args = parser.parse_args(argv)
    if args.link is not None and not args.link.strip():
        parser.error("--link code must not be empty")
    return args


async def dispatch(
    args: argparse.Namespace,
    config: Config,
    console: ChatConsole,
    settings: Optional[ClientSettings] = None,
    channel_factory: Optional[ChannelFactory] = None,
) -> None:
    """Run the link flow when a code is given, otherwise a chat session."""
    if settings is None:
        settings = config.load()
    registry = ServerRegistry.load(JsonFileStore(config.registry_file))
    if channel_factory is None:
        channel_factory = functools.partial(
            open_tcp_channel, timeout=settings.connect_timeout
        )

    if args.link is not None:
        flow = LinkFlow(registry, channel_factory, timeout=settings.link_timeout)
        entry = await flow.run(args.server, args.link)
        console.show_notice(f"Linked with {entry.address}", style="bold green")
        return

    if registry.find(args.server) is None:
        raise NotLinked(args.server)

    # Set up local commands and register them with the console for completion
    commands = CommandRegistry(console)
    for cmd_name, cmd_info in commands.commands.items():
        console.register_command(cmd_name, cmd_info["help"])

    session = ChatSession(
        args.server,
        registry,
        channel_factory,
        line_source=console,
        output=console,
        settings=settings,
        commands=commands,
    )
    console.show_banner(args.server)
    with console.live():
        await session.run()


async def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    config = Config(args.config_dir)
    console = ChatConsole()
    try:
        settings = config.load()
        setup_logging(verbose=args.verbose, log_file=settings.log_file)
        logger.info("MineChat client started", extra={"version": __version__})
        await dispatch(args, config, console, settings=settings)
    except MineChatError as e:
        logger.debug(f"{type(e).__name__}: {e}", exc_info=True)
        console.show_error(str(e))
        return e.exit_code
    except Exception as e:
        logger.exception("Unexpected error")
        console.show_error(str(e))
        return 1
    return 0


def run_app():
    """Entry point for the application when called as a script."""
    try:
        return asyncio.run(main())
    except KeyboardInterrupt:
        print("\nShutting down...")
        return 0


if __name__ == "__main__":
    sys.exit(run_app())
