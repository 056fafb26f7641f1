"""Tier scheduler: three independent periodic loops, one per tier.

Each tick runs one tier's pipeline. A tier never runs twice at once: a tick
that arrives while the previous execution is still in flight is dropped,
not queued. ``stop()`` stops future ticks and waits for in-flight
executions to finish so no write is interrupted.

Pipelines:
    2min  screenshots -> identical? placeholder : gap check + analyze
    10min 2min records -> all unchanged? placeholder : timeline + analyze
    1h    10min records -> all unchanged? placeholder : distribution + analyze
"""

import asyncio
import math
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

from loguru import logger

from .analysis import AnalysisRequest, AnalysisResult
from .change_detector import ChangeDetector
from .config import Config
from .gap_detector import GapDetector
from .gate import ScheduleGate
from .models import BaseSummary, MidSummary, SummaryRecord, Tier, TopSummary
from .prompts import PromptBuilder
from .registry import ClassificationRegistry
from .response_parser import parse_response
from .store import JsonRecordStore
from .timeline import TimelineAggregator
from .usage import UsageTracker


@dataclass
class TierStats:
    count: int = 0
    errors: int = 0
    skipped: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class TierState:
    """Per-tier scheduling state owned by one scheduler instance."""
    tier: Tier
    enabled: bool
    interval_seconds: float
    is_executing: bool = False
    ticker: Optional[asyncio.Task] = None
    last_run: Optional[datetime] = None
    stats: TierStats = field(default_factory=TierStats)


class TierScheduler:
    """Owns the 2min, 10min and 1h loops and their statistics."""

    def __init__(
        self,
        config: Config,
        evidence_source,
        record_store: JsonRecordStore,
        analyzer,
        gate: Optional[ScheduleGate] = None,
        registry: Optional[ClassificationRegistry] = None,
        usage: Optional[UsageTracker] = None,
        context_source=None,
        prompt_builder: Optional[PromptBuilder] = None,
        clock: Optional[Callable[[], datetime]] = None,
        tick_seconds: Optional[Dict[Tier, float]] = None,
        drain_poll_seconds: float = 0.1,
    ):
        """
        Args:
            config: Loaded configuration
            evidence_source: Provides ``get_recent_evidence(window_minutes, max_count)``
            record_store: Summary record store
            analyzer: Provides ``analyze(request) -> AnalysisResult``
            gate: Allowed-time gate; always allowed when omitted
            registry: Taxonomy read/write-back; skipped when omitted
            usage: Token usage tracker
            context_source: Optional ``get_context_in_range(start, end)`` focus-window text
            prompt_builder: Request builder
            clock: Returns the current local time
            tick_seconds: Per-tier tick interval overrides
            drain_poll_seconds: How often ``stop()`` checks for in-flight executions
        """
        self.config = config
        self.evidence_source = evidence_source
        self.store = record_store
        self.analyzer = analyzer
        self.gate = gate or ScheduleGate(config.schedule)
        self.registry = registry
        self.usage = usage
        self.context_source = context_source
        self.prompts = prompt_builder or PromptBuilder()
        self.clock = clock or datetime.now
        self.drain_poll_seconds = drain_poll_seconds

        self.change_detector = ChangeDetector()
        self.gap_detector = GapDetector()
        self.aggregator = TimelineAggregator()

        enabled = {
            Tier.BASE: config.summary.base.enabled,
            Tier.MID: config.summary.mid.enabled,
            Tier.TOP: config.summary.top.enabled,
        }
        overrides = tick_seconds or {}
        self.states: Dict[Tier, TierState] = {
            tier: TierState(
                tier=tier,
                enabled=enabled[tier],
                interval_seconds=overrides.get(tier, tier.window_minutes * 60),
            )
            for tier in Tier
        }
        self._pipelines = {
            Tier.BASE: self._run_base,
            Tier.MID: self._run_mid,
            Tier.TOP: self._run_top,
        }
        self._inflight: Set[asyncio.Task] = set()
        self.running = False

    async def start(self) -> None:
        """Arm one repeating tick per enabled tier."""
        if self.running:
            logger.warning("Tier scheduler is already running")
            return

        self.running = True
        for state in self.states.values():
            if not state.enabled:
                logger.info(f"{state.tier.tag} Disabled")
                continue
            state.ticker = asyncio.create_task(self._tick_loop(state))
            logger.info(f"{state.tier.tag} Enabled, interval: {state.interval_seconds:g}s")
        logger.info("Tier scheduler started")

    async def stop(self) -> None:
        """Stop ticking, then wait until no tier is executing."""
        if not self.running:
            return

        logger.info("Stopping tier scheduler...")
        self.running = False

        for state in self.states.values():
            if state.ticker:
                state.ticker.cancel()
                try:
                    await state.ticker
                except asyncio.CancelledError:
                    pass
                state.ticker = None

        while any(state.is_executing for state in self.states.values()):
            await asyncio.sleep(self.drain_poll_seconds)

        summary = ", ".join(
            f"{s.tier.value}={s.stats.count} ({s.stats.errors} errors, {s.stats.skipped} skipped)"
            for s in self.states.values()
        )
        logger.info(f"Tier scheduler stopped. Stats: {summary}")

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "tiers": {
                tier.value: {
                    "enabled": state.enabled,
                    "is_executing": state.is_executing,
                    "last_run": state.last_run.isoformat(timespec="seconds") if state.last_run else None,
                    "stats": state.stats.to_dict(),
                }
                for tier, state in self.states.items()
            },
            "usage": self.usage.summary() if self.usage else {},
        }

    async def _tick_loop(self, state: TierState) -> None:
        while self.running:
            await asyncio.sleep(state.interval_seconds)
            if not self.running:
                break
            self._fire(state)

    def _fire(self, state: TierState) -> None:
        if state.is_executing:
            logger.debug(f"{state.tier.tag} Previous execution still running, tick dropped")
            return
        task = asyncio.create_task(self._scheduled_run(state.tier))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _scheduled_run(self, tier: Tier) -> None:
        # A tick queued just before stop() must not start a new execution.
        if not self.running:
            return
        await self.run_tier(tier)

    async def run_tier(self, tier: Tier) -> bool:
        """Run one execution of ``tier``'s pipeline.

        Every failure is contained here: it is logged, counted in
        ``stats.errors`` and never reaches the loop that ticks the tier.

        Returns:
            True if a record was persisted
        """
        state = self.states[tier]
        if state.is_executing:
            logger.debug(f"{tier.tag} Previous execution still running, tick dropped")
            return False
        if not self.gate.is_allowed_now():
            logger.debug(f"{tier.tag} Outside allowed hours, skipped")
            return False

        state.is_executing = True
        try:
            logger.info(f"{tier.tag} Starting summary...")
            return await self._pipelines[tier](state)
        except Exception as e:
            state.stats.errors += 1
            logger.error(f"{tier.tag} Summary failed: {e}")
            return False
        finally:
            state.last_run = self.clock()
            state.is_executing = False

    async def _run_base(self, state: TierState) -> bool:
        tier = Tier.BASE
        now = self.clock()
        window = tier.window_minutes
        base = self.config.summary.base

        per_minute = base.screenshots_per_minute or max(1, 60 // self.config.screenshot.interval)
        evidence = await self.evidence_source.get_recent_evidence(window, max(1, per_minute * window))
        if not evidence:
            logger.warning(f"{tier.tag} No screenshots available, skipped")
            return False

        focus_text = await self._focus_text(tier, now)

        if self.change_detector.all_identical(evidence):
            record = self.change_detector.build_no_change_record(tier, evidence, now, focus_text)
            return await self._save_placeholder(state, now, record)

        # Gap detection needs the newest record even when no history is sent.
        history_count = max(1, math.ceil(base.history_minutes / window))
        history = await self.store.get_recent(tier, history_count)
        gap = self.gap_detector.detect_gap(history, now, window)
        if gap:
            logger.info(
                f"{tier.tag} Gap detected: last summary at {gap.last_record_time:%H:%M:%S}, "
                f"about {gap.gap_minutes} minutes ago"
            )

        request = self.prompts.build_base(
            evidence,
            history if base.history_minutes > 0 else [],
            gap=gap,
            taxonomy_text=await self._taxonomy_text(),
            focus_text=focus_text,
        )
        parsed = await self._analyze(tier, request)

        record = BaseSummary.from_analysis(now, parsed)
        await self.store.save(tier, now, record)
        state.stats.count += 1

        if self.registry is not None:
            await self.registry.write_back(record)

        logger.info(f"{tier.tag} Summary complete")
        return True

    async def _run_mid(self, state: TierState) -> bool:
        tier = Tier.MID
        now = self.clock()
        child_count = tier.window_minutes // tier.child.window_minutes

        children = self._in_window(await self.store.get_recent(tier.child, child_count), tier, now)
        if not children:
            logger.warning(f"{tier.tag} No 2min summaries available, skipped")
            return False

        if self.change_detector.all_no_change(children):
            record = self.change_detector.build_no_change_record(tier, children, now)
            return await self._save_placeholder(state, now, record)

        timeline = self.aggregator.aggregate_mid(children)
        history = await self.store.get_recent(tier, self.config.summary.mid.history_count)

        request = self.prompts.build_mid(
            children,
            history,
            timeline=timeline,
            taxonomy_text=await self._taxonomy_text(),
            focus_text=await self._focus_text(tier, now),
        )
        parsed = await self._analyze(tier, request)

        await self.store.save(tier, now, MidSummary.from_analysis(now, parsed, timeline))
        state.stats.count += 1
        logger.info(f"{tier.tag} Summary complete ({len(timeline)} timeline entries)")
        return True

    async def _run_top(self, state: TierState) -> bool:
        tier = Tier.TOP
        now = self.clock()
        settings = self.config.summary.top

        fetched = await self.store.get_recent(tier.child, settings.recent_count)
        recent = self._in_window(fetched, tier, now)
        if not recent:
            logger.warning(f"{tier.tag} No 10min summaries available, skipped")
            return False

        if self.change_detector.all_no_change(recent):
            record = self.change_detector.build_no_change_record(tier, recent, now)
            return await self._save_placeholder(state, now, record)

        distribution, miscellaneous = self.aggregator.aggregate_top(recent)
        earlier = await self.store.get_earlier(tier.child, settings.earlier_count, len(fetched))

        request = self.prompts.build_top(
            recent,
            earlier,
            distribution=distribution,
            miscellaneous=miscellaneous,
            taxonomy_text=await self._taxonomy_text(),
            focus_text=await self._focus_text(tier, now),
        )
        parsed = await self._analyze(tier, request)

        record = TopSummary.from_analysis(now, parsed, distribution, miscellaneous)
        await self.store.save(tier, now, record)
        state.stats.count += 1
        logger.info(f"{tier.tag} Summary complete ({len(distribution)} activities)")
        return True

    async def _save_placeholder(self, state: TierState, now: datetime, record: SummaryRecord) -> bool:
        await self.store.save(state.tier, now, record)
        state.stats.skipped += 1
        logger.info(f"{state.tier.tag} No change, placeholder saved without analysis")
        return True

    async def _analyze(self, tier: Tier, request: AnalysisRequest) -> Dict[str, Any]:
        result: AnalysisResult = await self.analyzer.analyze(request)
        if self.usage is not None:
            await self.usage.record(tier, result.usage)
        return parse_response(result.text)

    def _in_window(self, records: Sequence[SummaryRecord], tier: Tier, now: datetime) -> List[SummaryRecord]:
        """Children whose window end falls inside this tier's window."""
        start = now - timedelta(minutes=tier.window_minutes)
        return [r for r in records if r.timestamp is not None and start < r.timestamp <= now]

    async def _taxonomy_text(self) -> str:
        if self.registry is None:
            return ""
        return await self.registry.render_context()

    async def _focus_text(self, tier: Tier, now: datetime) -> str:
        if self.context_source is None:
            return ""
        start = now - timedelta(minutes=tier.window_minutes)
        try:
            return await self.context_source.get_context_in_range(start, now) or ""
        except Exception as e:
            logger.warning(f"{tier.tag} Focus-window context unavailable: {e}")
            return ""
