import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import date
from typing import Callable, Iterable, Optional

from sqlalchemy.orm import sessionmaker

from config import get_settings


logger = logging.getLogger(__name__)


class AccountLocks:
    """One lock per account so a regeneration never interleaves with another
    regeneration of the same account."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[int, threading.Lock] = {}

    def lock_for(self, account_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(account_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[account_id] = lock
            return lock


account_locks = AccountLocks()


class RegenerationPool:
    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        max_workers: Optional[int] = None,
    ) -> None:
        self.session_factory = session_factory
        self.max_workers = max_workers or get_settings().regeneration_workers
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_guard = threading.Lock()

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._executor_guard:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_workers,
                    thread_name_prefix="cycle-regen",
                )
            return self._executor

    def _factory(self) -> sessionmaker:
        if self.session_factory is not None:
            return self.session_factory
        from database import SessionLocal

        return SessionLocal

    def _regenerate(self, account_id: int, today: Optional[date], reconfigure: bool):
        from database import session_scope
        from services import CycleService

        with session_scope(self._factory()) as session:
            return CycleService(session).regenerate(
                account_id, today=today, reconfigure=reconfigure
            )

    def submit(
        self,
        account_id: int,
        *,
        today: Optional[date] = None,
        reconfigure: bool = False,
        on_done: Optional[Callable[[Future], None]] = None,
    ) -> Future:
        future = self._get_executor().submit(
            self._regenerate, account_id, today, reconfigure
        )
        if on_done is not None:
            future.add_done_callback(on_done)
        return future

    def regenerate_many(
        self, account_ids: Iterable[int], *, today: Optional[date] = None
    ) -> dict[int, object]:
        """Regenerate several accounts in parallel.

        A failing account does not stop the others; its exception is returned
        in place of a result.
        """
        futures = {
            account_id: self.submit(account_id, today=today)
            for account_id in account_ids
        }
        results: dict[int, object] = {}
        for account_id, future in futures.items():
            try:
                results[account_id] = future.result()
            except Exception as exc:
                logger.exception(f"regenerate_failed: account_id={account_id}")
                results[account_id] = exc
        return results

    def shutdown(self, wait: bool = True) -> None:
        with self._executor_guard:
            if self._executor is not None:
                self._executor.shutdown(wait=wait)
                self._executor = None
