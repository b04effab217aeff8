"""
Tracker Monitor Manager - Independent Whale Trackers per Category

Each category (politics, crypto, ...) gets its own tracker:

    STOPPED --start()--> RUNNING --stop()--> STOPPED

A running tracker scans immediately, then every 30 seconds on its own
APScheduler job. Scans for one category are throttled to one per 5 seconds.
A failed scan keeps the last good results.

After every scan the global alert feed is rebuilt from scratch across all
running trackers, so concurrent scans on different categories can't leave
it half-updated.

Each TrackerState carries a generation number. A scan compares it before
applying results, so a scan that finishes after stop() (or after a
stop/start cycle) is discarded.

The set of running categories, the minimum score and the auto-trade flag
are saved after every change and resumed on the next start.

Auto-trade only writes "would copy" entries to the activity log. No
orders are ever placed.
"""
import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Deque, Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from .categories import TRACKER_CATEGORIES, require_category
from .config import settings
from .database import StateStore, TrackerSettingsState
from .formatting import format_wallet
from .whale_scanner import WhaleEvent, WhaleScanner, rank_events
from .whale_scorer import round_half_up


SCAN_INTERVAL_SECONDS = 30
SCAN_THROTTLE_SECONDS = 5
HIGH_SCORE_THRESHOLD = 85

CATEGORY_DISPLAY_LIMIT = 5
ALERT_FEED_LIMIT = 20
ACTIVITY_LOG_LIMIT = 20

RESUME_JOB_ID = "tracker_resume"


# =========================================
# TRACKER STATE
# =========================================

@dataclass(frozen=True)
class CategoryStats:
    count: int = 0
    avg_score: int = 0
    volume_usd: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {"count": self.count, "avgScore": self.avg_score, "volumeUSD": self.volume_usd}


def calculate_stats(whales: List[WhaleEvent]) -> CategoryStats:
    if not whales:
        return CategoryStats()
    total_score = sum(w.whale_score for w in whales)
    return CategoryStats(
        count=len(whales),
        avg_score=round_half_up(total_score / len(whales)),
        volume_usd=sum(w.bet_size for w in whales),
    )


@dataclass
class TrackerState:
    """Live state of one running tracker. Dropped when the tracker stops."""
    category: str
    generation: int
    is_active: bool = True
    last_scan_at: Optional[float] = None
    whales: List[WhaleEvent] = field(default_factory=list)  # Ranked
    stats: CategoryStats = field(default_factory=CategoryStats)


class TrackerRegistry:
    """
    Owns the category -> TrackerState mapping.

    Only running trackers have an entry. Generations increase across the
    whole registry, so a restarted tracker never reuses an old number.
    """

    def __init__(self):
        self._states: Dict[str, TrackerState] = {}
        self._generation = 0

    def get(self, category: str) -> Optional[TrackerState]:
        return self._states.get(category)

    def is_active(self, category: str) -> bool:
        state = self._states.get(category)
        return state is not None and state.is_active

    def create(self, category: str) -> TrackerState:
        self._generation += 1
        state = TrackerState(category=category, generation=self._generation)
        self._states[category] = state
        return state

    def remove(self, category: str) -> Optional[TrackerState]:
        state = self._states.pop(category, None)
        if state is not None:
            state.is_active = False
            state.whales = []
            state.stats = CategoryStats()
        return state

    def active_categories(self) -> List[str]:
        return [c for c, s in self._states.items() if s.is_active]

    def active_states(self) -> List[TrackerState]:
        return [s for s in self._states.values() if s.is_active]


# =========================================
# ACTIVITY LOG
# =========================================

ACTIVITY_LEVELS = ("info", "whale", "success", "error")


@dataclass(frozen=True)
class ActivityEntry:
    timestamp: float
    message: str
    level: str

    def to_dict(self) -> Dict[str, Any]:
        moment = datetime.fromtimestamp(self.timestamp)
        return {
            "time": moment.strftime("%H:%M"),
            "timestamp": moment.isoformat(),
            "message": self.message,
            "level": self.level,
        }


class ActivityLog:
    """Operator-facing log of the most recent events, newest first."""

    def __init__(self, limit: int = ACTIVITY_LOG_LIMIT, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._entries: Deque[ActivityEntry] = deque(maxlen=limit)

    def add(self, message: str, level: str = "info") -> ActivityEntry:
        if level not in ACTIVITY_LEVELS:
            raise ValueError(f"Unknown activity level: {level}")
        entry = ActivityEntry(timestamp=self.clock(), message=message, level=level)
        self._entries.appendleft(entry)

        if level == "error":
            logger.error(message)
        else:
            logger.info(message)
        return entry

    def entries(self) -> List[ActivityEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


@dataclass(frozen=True)
class AlertFeed:
    """Global ranked feed across running trackers. Rebuilt, never patched."""
    total_alert_count: int = 0
    alerts: List[WhaleEvent] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalAlertCount": self.total_alert_count,
            "alerts": [a.to_dict() for a in self.alerts],
        }


# =========================================
# MANAGER
# =========================================

class TrackerMonitorManager:
    """
    Runs one whale tracker per category.

    Usage:
        manager = TrackerMonitorManager(client, store=StateStore())
        await manager.initialize()  # Load saved state, schedule resume
        await manager.start("crypto")
        feed = manager.alert_feed()
        await manager.shutdown()
    """

    def __init__(
        self,
        client,
        store: Optional[StateStore] = None,
        scanner: Optional[WhaleScanner] = None,
        min_score: int = None,
        auto_trade: bool = None,
        scan_interval_seconds: float = SCAN_INTERVAL_SECONDS,
        throttle_seconds: float = SCAN_THROTTLE_SECONDS,
        resume_delay_seconds: float = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.store = store
        if scanner is None and client is not None:
            scanner = WhaleScanner(client)
        self.scanner = scanner

        self.min_score = min_score if min_score is not None else settings.DEFAULT_MIN_SCORE
        self.auto_trade = auto_trade if auto_trade is not None else settings.DEFAULT_AUTO_TRADE
        self.scan_interval_seconds = scan_interval_seconds
        self.throttle_seconds = throttle_seconds
        self.resume_delay_seconds = (
            resume_delay_seconds if resume_delay_seconds is not None
            else settings.RESUME_DELAY_SECONDS
        )
        self.clock = clock

        self.registry = TrackerRegistry()
        self.activity = ActivityLog()
        self._feed = AlertFeed()
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._closed = False

        # One save at a time, snapshot taken inside the lock
        self._save_lock = asyncio.Lock()

        # Stats
        self.total_scans = 0
        self.total_throttled = 0

    # =========================================
    # LIFECYCLE
    # =========================================

    def _ensure_scheduler(self) -> AsyncIOScheduler:
        """Create and start the scheduler on the running event loop."""
        if self.scheduler is None:
            self.scheduler = AsyncIOScheduler(event_loop=asyncio.get_running_loop())
        if not self.scheduler.running:
            self.scheduler.start()
        return self.scheduler

    async def initialize(self) -> List[str]:
        """
        Load saved settings and schedule the resume of saved trackers.

        Returns the categories scheduled for resume.
        """
        self._closed = False
        saved = await self._load_state()
        pending: List[str] = []
        if saved is not None:
            self.min_score = saved.min_score
            self.auto_trade = saved.auto_trade
            pending = list(saved.active_categories)

        scheduler = self._ensure_scheduler()
        if pending:
            logger.info(f"🔄 Auto-resuming {len(pending)} monitors...")
            scheduler.add_job(
                self.resume_trackers,
                DateTrigger(run_date=datetime.now(timezone.utc) + timedelta(seconds=self.resume_delay_seconds)),
                args=[pending],
                id=RESUME_JOB_ID,
                name="Resume saved trackers",
                replace_existing=True,
            )
        return pending

    async def resume_trackers(self, categories: List[str]) -> None:
        """Start saved trackers one after another."""
        for category in categories:
            if category not in TRACKER_CATEGORIES:
                logger.warning(f"Skipping unknown saved tracker: {category}")
                continue
            await self.start(category)

    async def shutdown(self) -> None:
        """
        Stop all scan jobs without stopping the trackers.

        The saved active set is left alone so the next process resumes it.
        """
        self._closed = True
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.scheduler = None
        logger.info(f"🛑 Tracker manager stopped ({self.total_scans} scans, {self.total_throttled} throttled)")

    # =========================================
    # START / STOP
    # =========================================

    @staticmethod
    def _job_id(category: str) -> str:
        return f"tracker_scan_{category}"

    def is_running(self, category: str) -> bool:
        return self.registry.is_active(category)

    async def start(self, category: str) -> None:
        """Start a tracker. No-op if it is already running."""
        require_category(category)
        if self.registry.is_active(category):
            logger.info(f"Tracker {category} already running")
            return

        state = self.registry.create(category)
        logger.info(f"🚀 Starting {category} tracker...")
        self.activity.add(f"▶ Started monitoring {category}")

        await self.scan(category)

        # Stopped while the initial scan was in flight
        if self.registry.get(category) is not state:
            return
        if self._closed:
            logger.info(f"Manager shut down during {category} start, not scheduling")
            return

        self._ensure_scheduler().add_job(
            self.scan,
            IntervalTrigger(seconds=self.scan_interval_seconds),
            args=[category],
            id=self._job_id(category),
            name=f"Scan {category}",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        await self._save_state()

    async def stop(self, category: str) -> None:
        """Stop a tracker and drop its whales. No-op if it is not running."""
        require_category(category)
        if not self.registry.is_active(category):
            return

        if self.scheduler is not None and self.scheduler.get_job(self._job_id(category)):
            self.scheduler.remove_job(self._job_id(category))

        self.registry.remove(category)
        self._recompute_feed()

        self.activity.add(f"⏸ Stopped monitoring {category}")
        logger.info(f"⏸ Stopped {category} tracker")
        await self._save_state()

    async def start_all(self) -> None:
        # Sequential to spread the initial API load
        for category in TRACKER_CATEGORIES:
            await self.start(category)

    async def stop_all(self) -> None:
        for category in TRACKER_CATEGORIES:
            await self.stop(category)

    # =========================================
    # SCANNING
    # =========================================

    async def scan(self, category: str) -> bool:
        """
        Run one scan cycle for a running tracker.

        Returns True if new results were applied. Throttled cycles, failed
        scans and results for a tracker stopped mid-scan return False.
        """
        state = self.registry.get(category)
        if state is None or not state.is_active:
            logger.debug(f"{category} is not running, skipping scan")
            return False

        now = self.clock()
        if state.last_scan_at is not None and now - state.last_scan_at < self.throttle_seconds:
            self.total_throttled += 1
            logger.debug(f"⏳ {category} scan throttled")
            return False

        state.last_scan_at = now
        generation = state.generation
        self.total_scans += 1

        try:
            if self.scanner is None:
                raise RuntimeError("Polymarket API not initialized")

            category_id = TRACKER_CATEGORIES[category]
            logger.debug(f"🔍 Scanning {category} (tag: {category_id or 'ALL (keyword filter)'})")
            whales = await self.scanner.scan(
                category_id,
                self.min_score,
                keyword_category=category if category_id is None else None,
            )
        except Exception as e:
            logger.exception(f"Scan failed for {category}")
            self.activity.add(f"❌ Error scanning {category}: {e}", "error")
            return False

        current = self.registry.get(category)
        if current is None or current.generation != generation or not current.is_active:
            logger.debug(f"Discarding {category} results, tracker stopped during scan")
            return False

        whales = [w.with_category(category) for w in whales]
        current.whales = whales
        current.stats = calculate_stats(whales)
        self._recompute_feed()

        logger.info(f"✅ Found {len(whales)} whales in {category}")
        self._report_high_scores(category, whales)
        return True

    def _report_high_scores(self, category: str, whales: List[WhaleEvent]) -> None:
        high = [w for w in whales if w.whale_score >= HIGH_SCORE_THRESHOLD]
        if not high:
            return

        self.activity.add(f"🚨 {len(high)} high-score whale(s) in {category}!", "whale")
        if self.auto_trade:
            for whale in high:
                self.activity.add(
                    f"⚡ Would copy {format_wallet(whale.wallet)} - Score {whale.whale_score} (not executed)",
                    "success"
                )

    def _recompute_feed(self) -> None:
        pooled = [w for state in self.registry.active_states() for w in state.whales]
        ranked = rank_events(pooled)
        self._feed = AlertFeed(total_alert_count=len(ranked), alerts=ranked[:ALERT_FEED_LIMIT])

    # =========================================
    # SETTINGS
    # =========================================

    async def set_min_score(self, min_score: int) -> None:
        """Applies from the next scan cycle."""
        if not 0 <= min_score <= 100:
            raise ValueError("min_score must be between 0 and 100")
        self.min_score = min_score
        await self._save_state()

    async def set_auto_trade(self, enabled: bool) -> None:
        self.auto_trade = enabled
        self.activity.add(f"Auto-trade logging {'enabled' if enabled else 'disabled'}")
        await self._save_state()

    # =========================================
    # PERSISTENCE
    # =========================================

    def current_state(self) -> TrackerSettingsState:
        return TrackerSettingsState(
            min_score=self.min_score,
            auto_trade=self.auto_trade,
            active_categories=self.registry.active_categories(),
            last_update=time.time(),
        )

    async def _save_state(self) -> None:
        if self.store is None:
            return
        async with self._save_lock:
            try:
                await self.store.save(self.current_state())
            except SQLAlchemyError as e:
                logger.error(f"Error saving state: {e}")

    async def _load_state(self) -> Optional[TrackerSettingsState]:
        if self.store is None:
            return None
        try:
            return await self.store.load()
        except SQLAlchemyError as e:
            logger.error(f"Error loading state: {e}")
            return None

    # =========================================
    # PRESENTATION DATA
    # =========================================

    def category_view(self, category: str) -> Dict[str, Any]:
        require_category(category)
        state = self.registry.get(category)
        if state is None:
            return {
                "category": category,
                "isActive": False,
                "stats": CategoryStats().to_dict(),
                "whales": [],
            }
        return {
            "category": category,
            "isActive": state.is_active,
            "stats": state.stats.to_dict(),
            "whales": [w.to_dict() for w in state.whales[:CATEGORY_DISPLAY_LIMIT]],
        }

    def all_category_views(self) -> List[Dict[str, Any]]:
        return [self.category_view(c) for c in TRACKER_CATEGORIES]

    def alert_feed(self) -> AlertFeed:
        return self._feed

    def activity_entries(self) -> List[ActivityEntry]:
        return self.activity.entries()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "running_trackers": len(self.registry.active_categories()),
            "total_scans": self.total_scans,
            "throttled_scans": self.total_throttled,
            "total_alerts": self._feed.total_alert_count,
            "min_score": self.min_score,
            "auto_trade": self.auto_trade,
        }
