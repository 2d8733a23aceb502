import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from config import get_settings
from database import SessionLocal, session_scope
from models import Account
from workers import RegenerationPool


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    """Periodic regeneration of every account.

    Closed cycles only change when the local date crosses a statement anchor,
    so one run shortly after midnight is enough; the hourly run picks up
    accounts whose webhook-triggered regeneration failed.
    """

    def __init__(
        self, pool: RegenerationPool, session_factory: Optional[sessionmaker] = None
    ) -> None:
        settings = get_settings()
        self.pool = pool
        self.session_factory = session_factory or SessionLocal
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _account_ids(self) -> list[int]:
        with session_scope(self.session_factory) as session:
            return list(session.scalars(select(Account.id).order_by(Account.id)).all())

    def run_once(self, source: str = "manual") -> dict[int, object]:
        account_ids = self._account_ids()
        logger.info(f"scheduler_run: source={source} accounts={len(account_ids)}")
        results = self.pool.regenerate_many(account_ids)
        failed = [
            account_id
            for account_id, result in results.items()
            if isinstance(result, Exception)
        ]
        logger.info(
            f"scheduler_done: source={source} accounts={len(account_ids)} "
            f"failed={failed}"
        )
        return results

    def start(self) -> None:
        self.run_once("startup")

        self.scheduler.add_job(
            self.run_once,
            CronTrigger(hour=0, minute=15),
            args=["daily_00:15"],
            id="cycles_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )
        self.scheduler.add_job(
            self.run_once,
            IntervalTrigger(hours=1),
            args=["hourly_safety_net"],
            id="cycles_hourly_safety",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info("Scheduler started with daily 00:15 and hourly safety net")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
