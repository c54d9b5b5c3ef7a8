"""Entry point for the realtime chat client.

This module provides a small command line front end. It handles:
- Configuration loading and validation
- Logging setup with secret sanitization
- Session creation and sign-in
- Watching one conversation until interrupted
"""

import argparse
import asyncio
import signal
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from realtime_chat._version import __version__
from realtime_chat.utils.security import masked_settings, preview_message

if TYPE_CHECKING:
    from realtime_chat.core.session import ChatSession
    from realtime_chat.core.store import ClientStore

log = structlog.get_logger()


def setup_logging(
    debug: bool = False,
    log_format: str = "console",
    file_path: Path | None = None,
    file_enabled: bool = False,
) -> None:
    """Configure structured logging with secret sanitization.

    Args:
        debug: Enable debug logging if True
        log_format: Output format ("json" or "console")
        file_path: Path to log file (if file logging enabled)
        file_enabled: Whether to enable file logging
    """
    from realtime_chat.utils.logging import LogFormat, LogLevel, configure_logging

    level = LogLevel.DEBUG if debug else LogLevel.INFO
    fmt = LogFormat(log_format.lower()) if isinstance(log_format, str) else log_format

    configure_logging(
        level=level,
        log_format=fmt,
        file_path=file_path,
        file_enabled=file_enabled,
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments.

    Returns:
        Parsed argument namespace
    """
    parser = argparse.ArgumentParser(
        prog="realtime-chat",
        description="Realtime chat client - live conversations with optimistic sends",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (default: $REALTIME_CHAT_CONFIG or config/config.yaml)",
    )

    parser.add_argument(
        "-d",
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Parse and validate config without connecting",
    )

    parser.add_argument(
        "--format",
        choices=["json", "console"],
        default="console",
        help="Log output format (default: console)",
    )

    parser.add_argument(
        "--conversation",
        metavar="ID",
        help="Open this conversation and log its activity until interrupted",
    )

    return parser.parse_args(argv)


async def watch_conversation(session: "ChatSession", conversation_id: str) -> int:
    """Open a conversation and log its messages and connection status.

    Blocks until SIGINT or SIGTERM.

    Returns:
        Exit code (0 for success, non-zero if the conversation is unknown)
    """
    conversation = next(
        (c for c in session.store.conversations if c.id == conversation_id), None
    )
    if conversation is None and conversation_id == session.assistant_conversation().id:
        conversation = session.assistant_conversation()
    if conversation is None:
        log.error("conversation_not_found", conversation_id=conversation_id)
        return 1

    seen: set[str] = set()
    last_status = None

    def on_change(store: "ClientStore") -> None:
        nonlocal last_status
        if store.connection_status != last_status:
            last_status = store.connection_status
            log.info("connection_status", status=str(last_status) if last_status else None)
        for message in store.messages:
            if message.client_id in seen:
                continue
            seen.add(message.client_id)
            log.info(
                "message",
                author=message.author.full_name if message.author else message.author_id,
                status=message.status.value,
                body=preview_message(message.body),
            )

    unsubscribe = session.store.subscribe(on_change)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop.set)
        log.debug("signal_handler_registered", signal=sig.name)

    try:
        await session.open_conversation(conversation)
        if session.store.load_error:
            log.warning("messages_unavailable", error=session.store.load_error)
        await stop.wait()
        log.info("received_shutdown_signal")
    finally:
        unsubscribe()
    return 0


async def run_client(
    config_path: Path,
    dry_run: bool = False,
    conversation_id: str | None = None,
) -> int:
    """Run the realtime chat client.

    Args:
        config_path: Path to configuration file
        dry_run: If True, only validate config without connecting
        conversation_id: Conversation to watch after signing in

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    log.info(
        "starting_realtime_chat",
        version=__version__,
        config_path=str(config_path),
    )

    try:
        from realtime_chat.config.loader import load_config

        log.info("loading_configuration", path=str(config_path))
        config = load_config(config_path)
        log.info("configuration_loaded")

        # Reconfigure logging from config file settings
        from realtime_chat.utils.logging import configure_logging

        configure_logging(
            level=config.logging.level,
            log_format=config.logging.format,
            file_path=config.logging.file.path if config.logging.file.enabled else None,
            file_enabled=config.logging.file.enabled,
        )

        if dry_run:
            log.info(
                "dry_run_mode_config_valid",
                settings=masked_settings(config.model_dump(mode="json")),
            )
            return 0

        from realtime_chat.core.session import create_session

        session = await create_session(config)
        async with session:
            log.info(
                "conversations_loaded",
                count=len(session.store.conversations),
                user=session.user.full_name if session.user else None,
            )
            if conversation_id is None:
                return 0
            return await watch_conversation(session, conversation_id)

    except FileNotFoundError as e:
        log.error("configuration_file_not_found", path=str(config_path), error=str(e))
        return 1
    except ValueError as e:
        log.error("configuration_invalid", error=str(e))
        return 1
    except KeyboardInterrupt:
        log.info("keyboard_interrupt_received")
        return 0
    except Exception as e:
        log.exception("fatal_error", error=str(e))
        return 1


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    setup_logging(
        debug=args.debug,
        log_format=args.format,
    )

    from realtime_chat.config.loader import resolve_config_path

    config_path = resolve_config_path(args.config)
    try:
        return asyncio.run(run_client(config_path, args.dry_run, args.conversation))
    except KeyboardInterrupt:
        log.info("shutting_down_gracefully")
        return 0


if __name__ == "__main__":
    sys.exit(main())
