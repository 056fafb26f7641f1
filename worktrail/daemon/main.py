"""Main daemon process for worktrail."""

import asyncio
import signal
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

import yaml
from loguru import logger

from .analysis import GeminiAnalyzer
from .config import Config, LoggingConfig
from .error_handling import ConfigError
from .evidence import ScreenshotEvidenceSource
from .gate import ScheduleGate
from .registry import ClassificationRegistry
from .scheduler import TierScheduler
from .store import JsonRecordStore
from .taxonomy import JsonTaxonomyStore
from .usage import UsageTracker


LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def setup_logging(settings: LoggingConfig) -> None:
    logger.remove()
    if settings.console:
        logger.add(sys.stderr, format=LOG_FORMAT, level=settings.level)
    if settings.file:
        settings.file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            settings.file,
            rotation=settings.rotation,
            retention=settings.retention,
            level="DEBUG",
        )


class WorktrailDaemon:
    """Wires the collaborators together and owns the scheduler."""

    def __init__(self, config: Config, analyzer: Optional[GeminiAnalyzer] = None):
        self.config = config
        self.start_time = datetime.now()

        self.store = JsonRecordStore(config.summary.directory)
        self.evidence_source = ScreenshotEvidenceSource(config.screenshot.directory, config.screenshot.format)
        self.gate = ScheduleGate(config.schedule)
        self.usage = UsageTracker(config.summary.directory)
        self.analyzer = analyzer or GeminiAnalyzer.from_config(config.gemini)

        taxonomy_store = JsonTaxonomyStore(config.taxonomy.directory) if config.taxonomy.directory else None
        self.registry = ClassificationRegistry(
            taxonomy_store,
            self.store,
            behavior_recent_days=config.taxonomy.behavior_recent_days,
        )

        self.scheduler = TierScheduler(
            config,
            self.evidence_source,
            self.store,
            self.analyzer,
            gate=self.gate,
            registry=self.registry,
            usage=self.usage,
        )

        self._stopped = asyncio.Event()
        self._stop_timer: Optional[asyncio.Task] = None
        self._stopping = False

    async def start(self) -> None:
        logger.info("Starting worktrail daemon...")
        logger.info(f"Screenshot directory: {self.config.screenshot.directory}")
        logger.info(f"Summary directory: {self.config.summary.directory}")
        logger.info(f"Gemini model: {self.config.gemini.model}")

        schedule = self.config.schedule
        if schedule.enabled:
            logger.info(f"Allowed hours: {schedule.start_time}-{schedule.end_time} on {', '.join(schedule.days)}")
        else:
            logger.info("Allowed hours: not restricted")

        await self.scheduler.start()
        self._arm_stop_timer()
        logger.info("worktrail daemon started successfully")

    async def stop(self, reason: str = "shutdown") -> None:
        if self._stopping:
            return
        self._stopping = True
        logger.info(f"Stopping worktrail daemon ({reason})...")

        if self._stop_timer and self._stop_timer is not asyncio.current_task():
            self._stop_timer.cancel()
        self._stop_timer = None

        await self.scheduler.stop()
        await self.analyzer.close()

        logger.info("worktrail daemon stopped")
        self._stopped.set()

    async def wait_stopped(self) -> None:
        await self._stopped.wait()

    def _arm_stop_timer(self) -> None:
        next_stop = self.gate.next_stop_time()
        if next_stop is None:
            if self.config.schedule.stop_times:
                logger.warning("No upcoming stop time found, automatic stop disabled")
            return

        logger.info(
            f"Stop times: {', '.join(self.config.schedule.stop_times)}, "
            f"next stop: {next_stop:%Y-%m-%d %H:%M}"
        )
        self._stop_timer = asyncio.create_task(self._stop_at(next_stop))

    async def _stop_at(self, when: datetime) -> None:
        await asyncio.sleep(max(0.0, (when - datetime.now()).total_seconds()))
        logger.info(f"Reached stop time {when:%Y-%m-%d %H:%M}, stopping")
        await self.stop("stop time")

    def get_status(self) -> dict:
        uptime = (datetime.now() - self.start_time).total_seconds()
        status = {
            "status": "stopping" if self._stopping else "running",
            "uptime": f"{uptime:.0f}s",
            "config": {
                "screenshot_directory": str(self.config.screenshot.directory),
                "summary_directory": str(self.config.summary.directory),
                "model": self.config.gemini.model,
            },
        }
        status.update(self.scheduler.get_status())
        return status


async def main(config_path: Optional[str] = None) -> int:
    """Main entry point for the daemon."""
    try:
        config = Config.load(Path(config_path) if config_path else None)
        config.require_api_key()
    except (FileNotFoundError, ConfigError, ValueError, yaml.YAMLError) as e:
        logger.error(f"Configuration error: {e}")
        return 1

    setup_logging(config.logging)
    daemon = WorktrailDaemon(config)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda s=sig: asyncio.create_task(daemon.stop(s.name)))
        except NotImplementedError:
            # Windows event loops have no signal handlers
            signal.signal(sig, lambda s, frame: loop.call_soon_threadsafe(
                lambda: asyncio.create_task(daemon.stop(signal.Signals(s).name))
            ))

    try:
        await daemon.start()
        await daemon.wait_stopped()
    except Exception as e:
        logger.exception(f"Daemon error: {e}")
        await daemon.stop("error")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
