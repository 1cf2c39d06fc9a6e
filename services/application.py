"""
Sentinel Application
"""

import sys
import signal
import logging
import logging.handlers
import asyncio
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from core import ConfigurationManager, ConfigurationError
from .security_manager import SecurityManager

logger = logging.getLogger('sentinel.services.application')

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class SentinelApplication:
    """
    Process runner for the Sentinel controller.

    Loads ``.env``, configures logging, starts the security manager and
    keeps it running until SIGINT or SIGTERM.
    """

    def __init__(self, base_path: Optional[Path] = None):
        self.base_path = base_path or Path.cwd()

        # Load environment variables
        load_dotenv(self.base_path / ".env")

        self.config_manager = ConfigurationManager(self.base_path)
        self.security_manager: Optional[SecurityManager] = None
        self._shutdown_event: Optional[asyncio.Event] = None

        logger.info("SentinelApplication initialized")

    async def run(self) -> None:
        """Run until a shutdown signal arrives"""
        config = self.config_manager.get_configuration()
        self._setup_logging(config.log_level, config.log_file_path,
                            config.log_max_bytes, config.log_backup_count)

        self._shutdown_event = asyncio.Event()
        self._install_signal_handlers()

        self.security_manager = SecurityManager(self.config_manager, base_path=self.base_path)
        try:
            await self.security_manager.start()
            logger.info("Sentinel is watching. Press Ctrl+C to stop.")
            await self._shutdown_event.wait()
        finally:
            await self.shutdown()

    def request_shutdown(self) -> None:
        if self._shutdown_event and not self._shutdown_event.is_set():
            logger.info("Shutdown requested")
            self._shutdown_event.set()

    async def shutdown(self) -> None:
        """Gracefully shutdown the application"""
        try:
            if self.security_manager:
                await self.security_manager.stop()
            logger.info("SentinelApplication shutdown complete")
        except Exception as e:
            logger.error(f"Error during shutdown: {e}")

    def run_sync(self) -> None:
        """Run the application synchronously (for main entry point)"""
        try:
            asyncio.run(self.run())
        except KeyboardInterrupt:
            logger.info("Sentinel shutdown requested")

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown)
            except (NotImplementedError, RuntimeError):
                # add_signal_handler is unavailable on Windows event loops
                logger.debug(f"Signal handler for {sig.name} not installed")

    def _setup_logging(self, log_level: str, log_file_path: str,
                       max_bytes: int, backup_count: int) -> None:
        """Set up logging configuration"""
        sentinel_logger = logging.getLogger('sentinel')
        sentinel_logger.setLevel(log_level)

        formatter = logging.Formatter(LOG_FORMAT)

        # Console handler
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        sentinel_logger.addHandler(console_handler)

        # File handler with rotation
        if log_file_path:
            log_path = Path(log_file_path)
            if not log_path.is_absolute():
                log_path = self.base_path / log_path
            try:
                log_path.parent.mkdir(parents=True, exist_ok=True)
                file_handler = logging.handlers.RotatingFileHandler(
                    filename=log_path,
                    encoding='utf-8',
                    maxBytes=max_bytes,
                    backupCount=backup_count
                )
                file_handler.setFormatter(formatter)
                sentinel_logger.addHandler(file_handler)
            except OSError as e:
                logger.error(f"Failed to open log file {log_path}: {e}")

        sentinel_logger.propagate = False
        logger.debug("Logging configured")


# Factory function for creating the application
def create_application(base_path: Optional[Path] = None) -> SentinelApplication:
    """Create and configure a new SentinelApplication instance"""
    return SentinelApplication(base_path)


def main() -> None:
    """Main entry point for the ``sentinel`` command"""
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)

    try:
        logger.info("Starting Sentinel...")
        create_application().run_sync()
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)
    except Exception as e:
        logger.error(f"Application failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
