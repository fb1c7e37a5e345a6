"""
SLA External Service Integrations
==================================

External services for the SLA engine:
- YAML config file watcher
- APScheduler for the background sweep
"""

import threading
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from src.core.exceptions import ConfigurationException
from src.shared.infrastructure.logging import get_logger
from src.sla.domain.value_objects import SLAConfigDocument

logger = get_logger(__name__)


class ConfigFileHandler(FileSystemEventHandler):
    """Watchdog event handler for SLA config file changes."""

    def __init__(self, config_manager: "SLAConfigManager", config_path: Path):
        self.config_manager = config_manager
        self.config_path = config_path
        super().__init__()

    def on_modified(self, event):
        """Handle file modification event."""
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.config_path.resolve():
            logger.info(f"Config file changed: {event.src_path}")
            self.config_manager.reload()

    on_created = on_modified


class SLAConfigManager:
    """
    Thread-safe SLA configuration manager with hot-reload support.

    Uses watchdog to monitor file changes and reload configuration
    without restarting the service. A document that fails to parse on
    reload is rejected and the previous one stays active.
    """

    def __init__(self):
        self._config: Optional[SLAConfigDocument] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None
        self._listeners: List[Callable[[SLAConfigDocument], None]] = []

    def load(self, path: Path) -> SLAConfigDocument:
        """
        Initial configuration load.

        Raises:
            ConfigurationException: If the file exists but is invalid
        """
        self._path = Path(path)
        config = self._load_from_file(self._path)
        with self._lock:
            self._config = config
        logger.info(
            "SLA configuration loaded",
            extra={"path": str(self._path), "scopes": sorted(config.scopes)}
        )
        return config

    def _load_from_file(self, path: Path) -> SLAConfigDocument:
        """Load and parse YAML config file."""
        if not path.exists():
            logger.warning(f"SLA config file not found: {path}, no scopes configured")
            return SLAConfigDocument()

        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
            config = SLAConfigDocument(**data)
            # Surface ladder/threshold/calendar errors at load time.
            for scope in config.scopes.values():
                if scope.calendar is not None:
                    scope.calendar.to_calendar()
                if scope.escalation is not None:
                    scope.escalation.to_policy()
                for row in scope.sla.values():
                    row.to_target()
        except (yaml.YAMLError, ValidationError, TypeError) as e:
            raise ConfigurationException(
                f"Invalid SLA configuration file: {path}", {"error": str(e)}
            ) from e
        return config

    def reload(self) -> bool:
        """Reload configuration from file."""
        if self._path is None:
            return False

        try:
            new_config = self._load_from_file(self._path)
        except ConfigurationException as e:
            logger.error(
                "Failed to reload SLA config, keeping previous configuration",
                extra={"path": str(self._path), "error": e.details.get("error", e.message)}
            )
            return False

        with self._lock:
            self._config = new_config
        logger.info("SLA configuration reloaded successfully")

        for listener in list(self._listeners):
            listener(new_config)
        return True

    def add_reload_listener(self, listener: Callable[[SLAConfigDocument], None]) -> None:
        """Register a callback invoked after every successful reload."""
        self._listeners.append(listener)

    def start_watching(self) -> None:
        """
        Start watching configuration file for changes.

        Skips watching if:
        - File doesn't exist
        - Running in a containerized environment where inotify doesn't work
        """
        if self._path is None:
            raise RuntimeError("Config not loaded. Call load() first.")

        if not self._path.exists():
            logger.info(f"Config file doesn't exist, skipping file watch: {self._path}")
            return

        try:
            self._observer = Observer()
            handler = ConfigFileHandler(self, self._path)
            self._observer.schedule(
                handler,
                str(self._path.parent),
                recursive=False
            )
            self._observer.start()
            logger.info(f"Started watching config file: {self._path}")
        except OSError as e:
            # File watching not supported (e.g., in Docker containers)
            logger.warning(
                f"File watching not available, using static config: {e}"
            )
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching configuration file (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    def get_config(self) -> SLAConfigDocument:
        """Get current configuration."""
        with self._lock:
            if self._config is None:
                raise RuntimeError("SLA configuration not loaded")
            return self._config

    @property
    def config(self) -> SLAConfigDocument:
        return self.get_config()


class SLAScheduler:
    """
    Wrapper for APScheduler driving the background SLA sweep.

    Manages the lifecycle of the scheduler and jobs. At most one sweep runs
    at a time; a tick that is still running when the next one is due makes
    the scheduler skip that next tick.
    """

    def __init__(self, interval_seconds: int = 60):
        self.interval_seconds = interval_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(self, job_func: Callable[[], Awaitable[None]]) -> None:
        """Start the scheduler with the given job function."""
        if self._running:
            logger.warning("SLA scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()

        self._scheduler.add_job(
            job_func,
            "interval",
            seconds=self.interval_seconds,
            id="sla_sweep",
            name="SLA Sweep Job",
            misfire_grace_time=self.interval_seconds,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )

        self._scheduler.start()
        self._running = True

        logger.info(
            "SLA scheduler started",
            extra={"interval_seconds": self.interval_seconds}
        )

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)

        self._running = False
        logger.info("SLA scheduler stopped")

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running
