"""
Main entry point for the relay bot.

Opens the session store, pairs or reconnects the Matrix device, then relays
messages to Gemini until SIGINT/SIGTERM. Fatal startup errors exit with 1.
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from relaybot.config import AppConfig, settings
from relaybot.core import BotOrchestrator
from relaybot.exceptions import RelayBotBaseException
from relaybot.integrations.gemini_client import GeminiClient
from relaybot.integrations.matrix import MatrixChatClient
from relaybot.store import SessionStore
from relaybot.utils.logging_config import setup_logging

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1


class RelayBotApp:
    """Owns the orchestrator's lifecycle and the process-level concerns around it."""

    def __init__(self, config: AppConfig):
        self.config = config
        self.orchestrator: Optional[BotOrchestrator] = None
        self.text_client: Optional[GeminiClient] = None
        self._stop_event: Optional[asyncio.Event] = None

    async def setup_orchestrator(self) -> None:
        """Build the store and both clients, then hand them to the orchestrator."""
        self.config.validate_required()

        store = SessionStore(self.config.session_db_path)
        await store.initialize()
        device = await store.get_first_device(self.config.matrix.homeserver)

        self.text_client = GeminiClient(self.config.gemini)
        chat_client = MatrixChatClient(
            self.config.matrix,
            self.config.pairing,
            device,
            store,
            store_path=self.config.matrix_store_path,
        )
        self.orchestrator = BotOrchestrator(chat_client, self.text_client, self.config.relay)
        logger.info("Orchestrator configured successfully")

    async def _startup(self) -> None:
        await self.setup_orchestrator()
        await self.orchestrator.start()
        if self.config.gemini.verify_on_startup:
            await self.text_client.verify()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()

        def request_stop(signum=None, frame=None):
            logger.info("Received shutdown signal, shutting down gracefully...")
            loop.call_soon_threadsafe(self._stop_event.set)

        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, request_stop)
            except NotImplementedError:
                # Event loops without add_signal_handler (Windows)
                signal.signal(signum, request_stop)

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(signum)
            except NotImplementedError:
                signal.signal(signum, signal.SIG_DFL)

    async def _run_until_stopped(self, coro) -> bool:
        """Run `coro` until it finishes or a stop is requested. True if it finished."""
        task = asyncio.create_task(coro)
        stop_task = asyncio.create_task(self._stop_event.wait())
        done, _ = await asyncio.wait({task, stop_task}, return_when=asyncio.FIRST_COMPLETED)

        if task in done:
            stop_task.cancel()
            task.result()
            return True

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        return False

    async def run(self) -> int:
        """Main run loop; returns the process exit code."""
        setup_logging(
            log_level=self.config.log_level,
            log_format=self.config.log_format,
            log_file=self.config.log_file,
        )
        self._stop_event = asyncio.Event()
        self._install_signal_handlers()

        try:
            if not await self._run_until_stopped(self._startup()):
                return EXIT_OK

            logger.info("Relay bot started. Press Ctrl+C to stop.")
            if not await self._run_until_stopped(self.orchestrator.run()):
                return EXIT_OK

            logger.error("Sync loop ended unexpectedly")
            return EXIT_FATAL

        except RelayBotBaseException as e:
            logger.error(f"Fatal error: {e}")
            return EXIT_FATAL
        except Exception as e:
            logger.error(f"Application error: {e}", exc_info=True)
            return EXIT_FATAL
        finally:
            if self.orchestrator:
                await self.orchestrator.stop()
            self._remove_signal_handlers()
            logger.debug("Application shutdown complete")


def parse_arguments(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Relaybot - answers Matrix messages with Gemini",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  relaybot                              # Run with settings from the environment / .env
  relaybot --log-level DEBUG            # Verbose logging
  relaybot --db-path /var/lib/relay.db  # Use another session database
        """,
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Override log level from configuration",
    )

    parser.add_argument(
        "--db-path",
        help="Override the session database path (SESSION_DB_PATH)",
    )

    return parser.parse_args(argv)


async def main(argv: Optional[List[str]] = None) -> int:
    """Main application entry point."""
    args = parse_arguments(argv)

    if args.log_level:
        settings.log_level = args.log_level
    if args.db_path:
        settings.session_db_path = args.db_path

    app = RelayBotApp(settings)
    return await app.run()


def cli() -> None:
    """Console script entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
