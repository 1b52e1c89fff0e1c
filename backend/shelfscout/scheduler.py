"""
Background scheduler for recommendation regeneration.

Uses APScheduler's AsyncIOScheduler so jobs run on the application's event
loop. Each user has at most one pending regeneration job; scheduling again
replaces it, which debounces bursts of collection changes.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from sqlalchemy.orm import Session, sessionmaker

from shelfscout.core.config import settings
from shelfscout.schemas.collection import CollectionItem
from shelfscout.schemas.recommendation import Recommendation
from shelfscout.services.action_tracker import ActionTracker
from shelfscout.services.recommendation_service import RecommendationService

logger = logging.getLogger(__name__)

PEAK_LEAD_TIME = timedelta(minutes=15)
CLEANUP_JOB_ID = "cleanup_expired_sessions"

RecommendationsListener = Callable[[str, List[Recommendation], str], None]
CollectionLoader = Callable[[str], List[CollectionItem]]


@dataclass
class ActivityPattern:
    peak_hours: List[int] = field(default_factory=list)  # local hours 0-23


@dataclass
class ScheduleEntry:
    run_at: datetime
    reason: str  # peak_usage | routine


def peak_hours_policy(activity: ActivityPattern, now: datetime) -> List[ScheduleEntry]:
    """Refresh shortly before each upcoming peak hour, or once after the routine interval."""
    if not activity.peak_hours:
        return [ScheduleEntry(run_at=now + timedelta(hours=settings.SMART_UPDATE_INTERVAL_HOURS), reason="routine")]

    entries = []
    for hour in sorted(set(activity.peak_hours)):
        run_at = now.replace(hour=hour % 24, minute=0, second=0, microsecond=0) - PEAK_LEAD_TIME
        if run_at <= now:
            run_at += timedelta(days=1)
        entries.append(ScheduleEntry(run_at=run_at, reason="peak_usage"))
    return entries


def job_id_for(user_id: str) -> str:
    return f"recommendations:{user_id}"


def smart_job_prefix(user_id: str) -> str:
    return f"smart:{user_id}:"


class RecommendationScheduler:
    def __init__(
        self,
        service: RecommendationService,
        collection_loader: Optional[CollectionLoader] = None,
        session_factory: Optional[sessionmaker] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.service = service
        self.collection_loader = collection_loader
        self.session_factory = session_factory
        self.scheduler = scheduler
        self.clock = clock
        self._listeners: List[RecommendationsListener] = []

    def start(self) -> None:
        """Call this from the FastAPI startup event."""
        if self.scheduler is None:
            self.scheduler = AsyncIOScheduler(event_loop=asyncio.get_running_loop())
        if self.scheduler.running:
            logger.warning("Scheduler already running")
            return

        logger.info("Starting recommendation scheduler")
        if self.session_factory is not None:
            self.scheduler.add_job(
                self.cleanup_sessions_job,
                trigger=CronTrigger(hour=3, minute=0),
                id=CLEANUP_JOB_ID,
                name="Delete expired recommendation sessions",
                replace_existing=True,
            )
        self.scheduler.start()

    def shutdown(self) -> None:
        """Call this from the FastAPI shutdown event."""
        if self.scheduler is not None and self.scheduler.running:
            logger.info("Stopping recommendation scheduler")
            self.scheduler.shutdown(wait=False)

    def _jobs(self) -> AsyncIOScheduler:
        if self.scheduler is None:
            raise RuntimeError("RecommendationScheduler.start() has not been called")
        return self.scheduler

    def add_listener(self, callback: RecommendationsListener) -> None:
        self._listeners.append(callback)

    def remove_listener(self, callback: RecommendationsListener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def schedule(
        self,
        user_id: str,
        collection: Optional[Sequence[CollectionItem]] = None,
        delay: Optional[float] = None,
        priority: str = "low",
        trigger: str = "periodic",
    ) -> str:
        """Queue a regeneration for user_id, replacing any pending one. Returns the job id."""
        if delay is None:
            delay = settings.BACKGROUND_DEFAULT_DELAY_SECONDS
        job_id = job_id_for(user_id)
        snapshot = list(collection) if collection else None
        self._jobs().add_job(
            self.run_job,
            trigger=DateTrigger(run_date=self.clock() + timedelta(seconds=delay)),
            args=[user_id, snapshot, trigger],
            id=job_id,
            name=f"Regenerate recommendations ({priority})",
            replace_existing=True,
        )
        logger.debug(
            f"[BackgroundRecommendations] Scheduled user_id={user_id} in {delay}s "
            f"(priority={priority}, trigger={trigger})"
        )
        return job_id

    def cancel(self, user_id: str) -> bool:
        job = self._jobs().get_job(job_id_for(user_id))
        if job is None:
            return False
        job.remove()
        return True

    async def run_job(
        self,
        user_id: str,
        collection: Optional[List[CollectionItem]] = None,
        trigger: str = "periodic",
    ) -> None:
        try:
            if collection is None:
                if self.collection_loader is None:
                    logger.warning(f"[BackgroundRecommendations] No collection for user_id={user_id}, skipping")
                    return
                collection = self.collection_loader(user_id)
            recommendations = await self.service.generate_in_background(user_id, collection, trigger)
        except Exception:
            logger.exception(f"[BackgroundRecommendations] Generation failed for user_id={user_id}")
            return

        logger.info(
            f"[BackgroundRecommendations] Generated {len(recommendations)} recommendations "
            f"for user_id={user_id} (trigger={trigger})"
        )
        for listener in list(self._listeners):
            try:
                listener(user_id, recommendations, trigger)
            except Exception:
                logger.exception("[BackgroundRecommendations] Listener failed")

    def schedule_smart_updates(
        self,
        user_id: str,
        activity: ActivityPattern,
        policy: Optional[Callable[[ActivityPattern, datetime], List[ScheduleEntry]]] = None,
    ) -> List[ScheduleEntry]:
        now = self.clock()
        entries = (policy or peak_hours_policy)(activity, now)
        jobs = self._jobs()
        prefix = smart_job_prefix(user_id)
        for job in jobs.get_jobs():
            if job.id.startswith(prefix):
                jobs.remove_job(job.id)

        scheduled = []
        for index, entry in enumerate(entries):
            if entry.run_at <= now:
                continue
            jobs.add_job(
                self.run_smart_update,
                trigger=DateTrigger(run_date=entry.run_at),
                kwargs={
                    "user_id": user_id,
                    "priority": "high" if entry.reason == "peak_usage" else "low",
                    "trigger": "periodic",
                },
                id=f"{prefix}{index}",
                name=f"Smart update ({entry.reason})",
                replace_existing=True,
            )
            scheduled.append(entry)
        logger.info(f"[BackgroundRecommendations] {len(scheduled)} smart updates scheduled for user_id={user_id}")
        return scheduled

    async def run_smart_update(self, user_id: str, priority: str = "low", trigger: str = "periodic") -> None:
        """Fires at a smart-update time and queues the regeneration on the event loop."""
        self.schedule(user_id, priority=priority, trigger=trigger)

    def cleanup_sessions_job(self) -> None:
        logger.info("Running expired session cleanup job")
        db: Session = self.session_factory()
        try:
            deleted = ActionTracker(db).cleanup_expired_sessions()
            logger.info(f"Session cleanup job completed: {deleted} removed")
        except Exception as e:
            logger.exception(f"Session cleanup job failed: {e}")
        finally:
            db.close()
