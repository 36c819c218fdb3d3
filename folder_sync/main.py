"""Main entry point for the folder sync service."""

import argparse
import signal
import sys
import threading
from pathlib import Path
from typing import Optional

from folder_sync.config_loader import Config, ConfigError, load_config, load_config_from_env
from folder_sync.logging_setup import get_logger, parse_severities, setup_logging
from folder_sync.sync_service import FileSyncService, StartupError

logger = get_logger()


class SyncRunner:
    """Hosts a FileSyncService until it is asked to stop."""

    def __init__(self, config: Config):
        """Initialize sync runner.

        Args:
            config: Loaded configuration
        """
        self.config = config
        setup_logging(
            self.config.log_file_path,
            self.config.log_level,
            max_bytes=self.config.log_max_size_mb * 1024 * 1024,
            backup_count=self.config.log_backup_count,
            rotation_enabled=self.config.log_rotation_enabled,
            console=self.config.log_console,
            muted_levels=parse_severities(self.config.log_mute),
        )
        self.service = FileSyncService.from_config(self.config, logger=logger)
        self._stop_event = threading.Event()

    def request_stop(self, *_args) -> None:
        """Ask run() to return; safe to call from a signal handler."""
        self._stop_event.set()

    def _on_pause(self, *_args) -> None:
        self.service.pause()

    def _on_continue(self, *_args) -> None:
        self.service.continue_()

    def install_signal_handlers(self) -> None:
        """Map SIGINT/SIGTERM to stop and, on POSIX, SIGUSR1/SIGUSR2 to pause/continue."""
        signal.signal(signal.SIGINT, self.request_stop)
        signal.signal(signal.SIGTERM, self.request_stop)
        if hasattr(signal, "SIGUSR1"):
            signal.signal(signal.SIGUSR1, self._on_pause)
            signal.signal(signal.SIGUSR2, self._on_continue)

    def run(self, timeout: Optional[float] = None) -> bool:
        """Start the service and block until a stop is requested.

        Args:
            timeout: Stop on its own after this many seconds (None = never)

        Returns:
            True if the service started and stopped cleanly
        """
        try:
            self.service.start()
        except StartupError as e:
            logger.error(f"Service failed to start: {e}")
            return False

        try:
            self._stop_event.wait(timeout)
        finally:
            self.service.stop()
        return True


def main(argv: Optional[list] = None) -> int:
    """Main entry point.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    parser = argparse.ArgumentParser(
        description="Folder Sync - keeps two local folders synchronized"
    )
    parser.add_argument(
        "--config",
        type=str,
        help="Path to config.yaml file",
    )
    parser.add_argument(
        "--use-env",
        action="store_true",
        help="Load config from FOLDER_SYNC_CONFIG environment variable",
    )

    args = parser.parse_args(argv)

    try:
        if args.use_env:
            logger.info("Loading config from environment variable")
            config = load_config_from_env()
        elif args.config:
            config = load_config(args.config)
        else:
            default_config = "config.yaml"
            if not Path(default_config).exists():
                parser.print_help()
                logger.error(
                    "No config file specified. Use --config or --use-env, "
                    "or place config.yaml in current directory"
                )
                return 1
            config = load_config(default_config)

        runner = SyncRunner(config)
        runner.install_signal_handlers()
        return 0 if runner.run() else 1
    except ConfigError as e:
        logger.error(f"Config error: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Sync interrupted by user")
        return 130
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
