import logging
import threading
import time
from collections import OrderedDict
from concurrent.futures import Future
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from models import Account
from schemas import WebhookIn
from workers import RegenerationPool


logger = logging.getLogger(__name__)

# Webhook types that change data the cycles are computed from.
REGENERATING_WEBHOOKS = frozenset({"TRANSACTIONS", "LIABILITIES"})


class WebhookDeduplicator:
    """Bounded table of recently seen ``(event_type, account_id)`` keys.

    Aggregators fire bursts of identical webhooks; only the first one inside
    ``window_secs`` is let through. The oldest keys are evicted once the table
    holds ``max_entries``.
    """

    def __init__(
        self,
        window_secs: float,
        max_entries: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window_secs = window_secs
        self.max_entries = max_entries
        self._clock = clock
        self._seen: OrderedDict[tuple[str, int], float] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._seen)

    def _evict(self, now: float) -> None:
        while self._seen:
            _key, seen_at = next(iter(self._seen.items()))
            if now - seen_at < self.window_secs and len(self._seen) <= self.max_entries:
                break
            self._seen.popitem(last=False)

    def should_process(self, event_type: str, account_id: int) -> bool:
        key = (event_type, account_id)
        with self._lock:
            now = self._clock()
            self._evict(now)
            seen_at = self._seen.get(key)
            if seen_at is not None and now - seen_at < self.window_secs:
                return False
            self._seen[key] = now
            self._seen.move_to_end(key)
            self._evict(now)
            return True


def _log_failure(account_id: int) -> Callable[[Future], None]:
    def on_done(future: Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error(
                f"webhook_regenerate_failed: account_id={account_id} error={exc!r}",
                exc_info=exc,
            )

    return on_done


class WebhookIngestor:
    def __init__(
        self,
        pool: RegenerationPool,
        deduplicator: WebhookDeduplicator,
    ) -> None:
        self.pool = pool
        self.deduplicator = deduplicator

    def _target_accounts(self, session: Session, payload: WebhookIn) -> list[int]:
        if payload.account_id is not None:
            return [payload.account_id]
        stmt = select(Account.id).where(Account.item_id == payload.item_id)
        return list(session.scalars(stmt).all())

    def handle(self, session: Session, payload: WebhookIn) -> dict[str, object]:
        event_type = payload.webhook_type.upper()
        if event_type not in REGENERATING_WEBHOOKS:
            logger.info(f"webhook_ignored: type={event_type} code={payload.webhook_code}")
            return {"received": True, "scheduled": [], "deduplicated": []}

        scheduled: list[int] = []
        deduplicated: list[int] = []
        for account_id in self._target_accounts(session, payload):
            if not self.deduplicator.should_process(event_type, account_id):
                deduplicated.append(account_id)
                continue
            self.pool.submit(account_id, on_done=_log_failure(account_id))
            scheduled.append(account_id)
        logger.info(
            f"webhook_received: type={event_type} code={payload.webhook_code} "
            f"scheduled={scheduled} deduplicated={deduplicated}"
        )
        return {"received": True, "scheduled": scheduled, "deduplicated": deduplicated}


def build_ingestor(pool: Optional[RegenerationPool] = None) -> WebhookIngestor:
    from config import get_settings

    settings = get_settings()
    return WebhookIngestor(
        pool or RegenerationPool(),
        WebhookDeduplicator(settings.webhook_dedup_secs, settings.webhook_dedup_max),
    )
