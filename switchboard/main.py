"""Main entry point for switchboard.

Initializes logging in two phases (defaults then config-driven), installs
the crash handlers, creates the SwitchboardBot, and runs the async event
loop with graceful shutdown on SIGTERM/SIGINT.

Key functions:
    main: Async entry point -- sets up logging, config, bot, and
        signal handlers, then runs the bot until a shutdown signal.
    run: Synchronous wrapper that calls asyncio.run(main()).
"""

import asyncio
import signal
import sys

import structlog

from . import __version__
from .logging_config import setup_logging


async def main():
    """Main async entry point."""
    # Phase 1: defaults, cache_logger_on_first_use=False
    setup_logging()
    logger = structlog.get_logger("switchboard.bot")

    logger.info("switchboard_starting", version=__version__)

    # Import here to ensure logging is configured first
    from .bot import SwitchboardBot
    from .config import get_config
    from .crash import install_crash_handlers

    config = get_config()
    config.validate()

    # Phase 2: reconfigure with real config, cache_logger_on_first_use=True
    setup_logging(config)

    loop = asyncio.get_running_loop()
    install_crash_handlers(loop, config.log_dir / "crashes")

    bot = SwitchboardBot(config)

    shutdown_event = asyncio.Event()

    def handle_shutdown(sig):
        logger.info("shutdown_signal_received", signal=sig.name)
        shutdown_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, handle_shutdown, sig)
        except NotImplementedError:
            # Windows: add_signal_handler not supported.
            if sig == signal.SIGINT:
                signal.signal(
                    signal.SIGINT,
                    lambda s, f: handle_shutdown(signal.SIGINT),
                )

    bot_task = asyncio.create_task(bot.run())
    stop_task = asyncio.create_task(shutdown_event.wait())
    try:
        done, _ = await asyncio.wait(
            {bot_task, stop_task}, return_when=asyncio.FIRST_COMPLETED
        )
        if bot_task in done:
            # Startup failure (e.g. commands directory unusable) or gateway exit
            stop_task.cancel()
            bot_task.result()
        else:
            bot_task.cancel()
            try:
                await bot_task
            except asyncio.CancelledError:
                pass

    except Exception as e:
        logger.error("bot_error", error=str(e), exc_type=type(e).__name__)
        raise
    finally:
        await bot.stop()
        logger.info("switchboard_stopped")


def run():
    """Synchronous entry point for the ``switchboard`` console script."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
    except SystemExit as e:
        sys.exit(e.code)


if __name__ == "__main__":
    run()
