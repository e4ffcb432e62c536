"""Main application entry point for the database metadata agent."""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from .collectors.base import BaseCollector
from .collectors.factory import create_collector
from .config.loader import ConfigLoader
from .config.models import AgentConfig
from .errors import AgentError, CollectorError, ConfigError, UploadError
from .payload.models import AGENT_VERSION
from .scheduler import Scheduler
from .services.uploader import Uploader
from .utils.logger import setup_logger
from .utils.urls import redact_url


class MetadataAgent:
    """
    Main agent application.

    Builds the collector once at startup, then hands it to the scheduler
    together with the uploader. Startup failures are fatal; failures inside
    a cycle are not.
    """

    def __init__(self, config: AgentConfig, logger: logging.Logger):
        """
        Initialize agent.

        Args:
            config: Validated configuration
            logger: Logger instance
        """
        self.config = config
        self.logger = logger
        self.collector: Optional[BaseCollector] = None
        self.scheduler: Optional[Scheduler] = None

    async def _connect(self) -> BaseCollector:
        """Create the collector; raises on unsupported engine or unreachable DB."""
        database = self.config.database
        self.logger.info(
            f"Connecting to {redact_url(database.url)}",
            extra={"engine": database.database_type.value, "provider_override": database.provider.value}
        )
        collector = await create_collector(
            database.url,
            provider=database.provider,
            pool=database.pool,
            metrics=self.config.collection.metrics,
            logger=self.logger,
        )
        self.logger.info(
            "Database connection established",
            extra={
                "engine": collector.database_type.value,
                "version": collector.version,
                "provider": collector.provider,
                "provider_metadata": dict(collector.provider_info.metadata),
            }
        )
        self.collector = collector
        return collector

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self._signal_handler, sig)
            except NotImplementedError:
                signal.signal(
                    sig, lambda signum, frame: loop.call_soon_threadsafe(self._signal_handler, signum)
                )

    def _remove_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.remove_signal_handler(sig)
            except NotImplementedError:
                signal.signal(sig, signal.SIG_DFL)

    def _signal_handler(self, signum) -> None:
        """
        Handle shutdown signals.

        Args:
            signum: Signal number
        """
        signal_name = signal.Signals(signum).name
        self.logger.info(f"Received {signal_name}, initiating graceful shutdown...")
        if self.scheduler is not None:
            self.scheduler.request_shutdown()

    async def run(self) -> int:
        """
        Run the collection loop until a shutdown signal arrives.

        Returns:
            int: Process exit code
        """
        try:
            collector = await self._connect()
        except (ConfigError, CollectorError) as e:
            self.logger.error(f"Startup failed: {e}", extra={"error_type": type(e).__name__})
            return 1

        loop = asyncio.get_running_loop()
        try:
            async with Uploader(self.config.cloud, self.logger) as uploader:
                self.scheduler = Scheduler(
                    collector,
                    uploader,
                    interval=self.config.collection.interval_secs,
                    logger=self.logger,
                    grace_period=self.config.collection.shutdown_grace_secs,
                )
                self._install_signal_handlers(loop)
                try:
                    await self.scheduler.run()
                finally:
                    self._remove_signal_handlers(loop)
        finally:
            collector.close()

        self.logger.info("Agent stopped")
        return 0

    async def dry_run(self) -> int:
        """
        Collect once and print the payload instead of uploading it.

        Returns:
            int: Process exit code
        """
        try:
            collector = await self._connect()
        except (ConfigError, CollectorError) as e:
            self.logger.error(f"Startup failed: {e}", extra={"error_type": type(e).__name__})
            return 1

        try:
            scheduler = Scheduler(
                collector,
                None,
                interval=self.config.collection.interval_secs,
                logger=self.logger,
            )
            await scheduler.run_once()
        except CollectorError as e:
            self.logger.error(f"Collection failed: {e}", extra={"error_type": type(e).__name__})
            return 1
        finally:
            collector.close()
        return 0

    async def test_connection(self) -> int:
        """
        Verify database and ingestion endpoint connectivity.

        Returns:
            int: 0 when both checks pass, 1 otherwise
        """
        exit_code = 0

        try:
            collector = await self._connect()
        except (ConfigError, CollectorError) as e:
            self.logger.error(f"Database check failed: {e}")
            exit_code = 1
        else:
            try:
                await collector.test_connection()
                self.logger.info("Database check passed")
            except CollectorError as e:
                self.logger.error(f"Database check failed: {e}")
                exit_code = 1
            finally:
                collector.close()

        async with Uploader(self.config.cloud, self.logger) as uploader:
            try:
                await uploader.test_connection()
                self.logger.info("Ingestion endpoint check passed")
            except UploadError as e:
                self.logger.error(f"Ingestion endpoint check failed: {e}")
                exit_code = 1

        return exit_code


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='metadata-agent',
        description='Database metadata agent: periodic snapshots of database statistics',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with configuration from environment variables
  DATABASE_URL=postgres://... METADATA_AGENT_API_KEY=... metadata-agent

  # Use a configuration file
  metadata-agent --config /etc/metadata-agent/config.yaml

  # Collect once and print the payload without uploading
  metadata-agent --config config.yaml --dry-run

  # Check database and endpoint connectivity
  metadata-agent --config config.yaml --test-connection
        """
    )

    parser.add_argument(
        '--config',
        help='Path to configuration file (default: read environment variables)'
    )

    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Collect once, print the payload and exit without uploading'
    )

    parser.add_argument(
        '--test-connection',
        action='store_true',
        help='Check database and ingestion endpoint connectivity, then exit'
    )

    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Logging level (overrides configuration)'
    )

    parser.add_argument(
        '--json-logs',
        action='store_true',
        help='Force JSON log output'
    )

    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Shorthand for --log-level DEBUG'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {AGENT_VERSION}'
    )

    return parser


def load_config(config_path: Optional[str]) -> AgentConfig:
    """Load configuration from a file, or from the environment when no path is given."""
    if config_path:
        return ConfigLoader.load_from_file(config_path)
    return ConfigLoader.load_from_env()


def main(argv: Optional[List[str]] = None):
    """
    CLI entry point.

    Parses command-line arguments, loads configuration and runs the agent.
    """
    args = build_parser().parse_args(argv)

    bootstrap_level = 'DEBUG' if args.verbose else (args.log_level or 'INFO')
    logger = setup_logger(level=bootstrap_level)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        logger.error(f"Failed to load configuration: {e}")
        sys.exit(1)

    level = 'DEBUG' if args.verbose else (args.log_level or config.logging.level)
    fmt = 'json' if args.json_logs else config.logging.format
    logger = setup_logger(level=level, fmt=fmt)
    logger.info(f"Database metadata agent v{AGENT_VERSION}")
    logger.debug("Effective configuration", extra={"config": config.redacted()})

    agent = MetadataAgent(config, logger)
    try:
        if args.test_connection:
            exit_code = asyncio.run(agent.test_connection())
        elif args.dry_run:
            exit_code = asyncio.run(agent.dry_run())
        else:
            exit_code = asyncio.run(agent.run())
    except AgentError as e:
        logger.error(f"Agent failed: {e}", exc_info=True)
        exit_code = 1
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
        exit_code = 0

    sys.exit(exit_code)


if __name__ == '__main__':
    main()
