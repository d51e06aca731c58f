#!/usr/bin/env python3
"""
Live Fantasy Events Service - Main Entry Point

Polls live NFL play-by-play, attributes scoring plays to the tracked fantasy
rosters and keeps a deduplicated feed of fantasy events, with an optional
diagnostics API served in the same process.
"""

import asyncio
import contextlib
import logging
import signal
import sys
from pathlib import Path

# Load .env from backend directory before Config() is used
from dotenv import load_dotenv
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent))

import uvicorn

from api.main import create_app
from config import Config
from live_events.orchestrator import LiveEventsOrchestrator
from utils.logger import setup_logging

logger = logging.getLogger(__name__)


class EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the service."""

    def install_signal_handlers(self):
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


class LiveEventsService:
    """Main service class for the live events pipeline."""

    def __init__(self, config: Config = None):
        self.config = config or Config()
        self.orchestrator = None
        self.api_server = None
        self.running = False

    async def start(self):
        """Start the live events service."""
        logger.info("Starting Live Fantasy Events Service", extra={
            "version": "1.0.0",
            "environment": self.config.environment,
            "leagues": len(self.config.leagues)
        })

        try:
            # Initialize orchestrator
            self.orchestrator = LiveEventsOrchestrator(self.config)
            await self.orchestrator.initialize()

            # Set up signal handlers for graceful shutdown
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, self._handle_shutdown, sig)

            self.running = True

            tasks = [self.orchestrator.run()]
            if self.config.api_enabled:
                self.api_server = EmbeddedServer(uvicorn.Config(
                    create_app(self.orchestrator),
                    host=self.config.api_host,
                    port=self.config.api_port,
                    log_config=None,
                ))
                tasks.append(self.api_server.serve())
                logger.info("Diagnostics API enabled", extra={
                    "host": self.config.api_host,
                    "port": self.config.api_port
                })

            await asyncio.gather(*tasks)

        except Exception as e:
            logger.error("Fatal error in live events service", extra={
                "error": str(e),
                "error_type": type(e).__name__
            }, exc_info=True)
            raise

    def _handle_shutdown(self, signum):
        """Handle shutdown signals gracefully."""
        logger.info("Received shutdown signal", extra={"signal": signum})
        self.running = False
        if self.api_server:
            self.api_server.should_exit = True
        if self.orchestrator:
            asyncio.create_task(self.orchestrator.shutdown())


async def main():
    """Main entry point."""
    config = Config()
    setup_logging(config)

    service = LiveEventsService(config)
    try:
        await service.start()
    except KeyboardInterrupt:
        logger.info("Service interrupted by user")
    except Exception as e:
        logger.error("Service crashed", extra={"error": str(e)}, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
