"""
State store client.

Durable StageState records plus per-stage leased locks. A lock is held for
exactly one stage apply or destroy, renewed by a heartbeat thread, and taken
over by another run only after its lease has expired.
"""

import getpass
import os
import socket
import threading
import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterator, List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, OperationalError

from stackup.constants import LOCK_LEASE_SECONDS
from stackup.database import (
    Base,
    StageLock,
    StageStateRecord,
    create_state_engine,
    get_session_factory,
    utcnow,
)
from stackup.exceptions import LockBusy, StateNotFound, StoreUnavailable
from stackup.models.stage import StageState
from stackup.utils import retry_with_backoff


def default_owner() -> str:
    """Identify this run as user@host:pid:nonce."""
    return f"{getpass.getuser()}@{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class LeaseHeartbeat(threading.Thread):
    """Renews a stage lock until stopped."""

    def __init__(self, store: "StateStoreClient", stage: str, interval: float):
        super().__init__(name=f"lease-{stage}", daemon=True)
        self.store = store
        self.stage = stage
        self.interval = interval
        self.lost = False
        self.failure: Optional[Exception] = None
        self._stop_event = threading.Event()

    def run(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                if not self.store.renew_lock(self.stage):
                    self.lost = True
                    return
            except StoreUnavailable as e:
                self.failure = e
                return

    def stop(self) -> None:
        self._stop_event.set()
        if self.is_alive():
            self.join(timeout=self.interval)


class StateStoreClient:
    """Reads and writes StageState records and stage locks."""

    def __init__(
        self,
        db_url: str,
        lease_seconds: int = LOCK_LEASE_SECONDS,
        owner: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize state store client.

        Args:
            db_url: SQLAlchemy database URL
            lease_seconds: Lock lease duration
            owner: Lock owner identity (defaults to user@host:pid:nonce)
            clock: Source of naive UTC timestamps
        """
        self.db_url = db_url
        self.lease_seconds = lease_seconds
        self.owner = owner or default_owner()
        self.clock = clock
        self.engine = create_state_engine(db_url)
        self.Session = get_session_factory(self.engine)
        self._schema_ready = False

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def _ensure_schema(self) -> None:
        if self._schema_ready:
            return
        try:
            Base.metadata.create_all(self.engine)
        except OperationalError as e:
            raise StoreUnavailable(
                "State store is unreachable", context=f"{self._safe_url()}: {e.orig}"
            )
        self._schema_ready = True

    @contextmanager
    def session(self) -> Iterator[Any]:
        """Transactional session; connection failures become StoreUnavailable."""
        self._ensure_schema()
        db = self.Session()
        try:
            yield db
            db.commit()
        except OperationalError as e:
            db.rollback()
            raise StoreUnavailable(
                "State store is unreachable", context=f"{self._safe_url()}: {e.orig}"
            )
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _safe_url(self) -> str:
        return self.engine.url.render_as_string(hide_password=True)

    # ------------------------------------------------------------------
    # Stage state
    # ------------------------------------------------------------------

    def load(self, stage: str) -> StageState:
        """
        Load the recorded state of a stage.

        Raises:
            StateNotFound: If the stage has never been applied
        """
        with self.session() as db:
            record = db.get(StageStateRecord, stage)
            if record is None:
                raise StateNotFound(stage)
            return self._to_state(record)

    def exists(self, stage: str) -> bool:
        with self.session() as db:
            return db.get(StageStateRecord, stage) is not None

    def list_stages(self) -> List[str]:
        """Names of all stages with recorded state."""
        with self.session() as db:
            return list(db.scalars(select(StageStateRecord.stage)).all())

    def save(self, stage: str, state: StageState) -> StageState:
        """
        Insert or update the state of a stage, bumping its version.

        Raises:
            LockBusy: If another run holds the stage lock
        """
        with self.session() as db:
            lock = db.get(StageLock, stage)
            if lock is not None and lock.owner != self.owner:
                raise LockBusy(stage, lock.owner, lock.expires_at)

            now = self.clock()
            record = db.get(StageStateRecord, stage)
            if record is None:
                record = StageStateRecord(stage=stage, version=1)
                db.add(record)
            else:
                record.version = record.version + 1

            record.inputs = state.inputs
            record.outputs = state.outputs
            record.resources = list(state.resources)
            record.applied_at = state.applied_at or now
            record.updated_at = now
            db.flush()
            return self._to_state(record)

    def delete(self, stage: str) -> bool:
        """Remove the state of a stage. Returns False if there was none."""
        with self.session() as db:
            result = db.execute(
                delete(StageStateRecord).where(StageStateRecord.stage == stage)
            )
            return result.rowcount > 0

    def is_satisfied(self, stage: str, desired_inputs: Dict[str, Any]) -> bool:
        """True if the stage was applied with exactly these inputs."""
        try:
            state = self.load(stage)
        except StateNotFound:
            return False
        return state.inputs == desired_inputs

    @staticmethod
    def _to_state(record: StageStateRecord) -> StageState:
        return StageState(
            stage=record.stage,
            inputs=record.inputs or {},
            outputs=record.outputs or {},
            resources=list(record.resources or []),
            version=record.version,
            applied_at=record.applied_at,
        )

    # ------------------------------------------------------------------
    # Locks
    # ------------------------------------------------------------------

    def acquire_lock(self, stage: str) -> None:
        """
        Acquire the stage lock, taking over an expired lease.

        Raises:
            LockBusy: If another run holds an unexpired lease
        """
        for _ in range(2):
            now = self.clock()
            expires_at = now + timedelta(seconds=self.lease_seconds)
            try:
                with self.session() as db:
                    db.add(
                        StageLock(
                            stage=stage,
                            owner=self.owner,
                            acquired_at=now,
                            expires_at=expires_at,
                        )
                    )
                return
            except IntegrityError:
                pass

            with self.session() as db:
                lock = db.get(StageLock, stage)
                if lock is None:
                    # Released between our insert and read
                    continue
                if lock.owner == self.owner:
                    lock.expires_at = expires_at
                    return
                if lock.expires_at > now:
                    raise LockBusy(stage, lock.owner, lock.expires_at)

                # Stale lease: compare-and-swap on the old owner and expiry
                result = db.execute(
                    update(StageLock)
                    .where(
                        StageLock.stage == stage,
                        StageLock.owner == lock.owner,
                        StageLock.expires_at == lock.expires_at,
                    )
                    .values(owner=self.owner, acquired_at=now, expires_at=expires_at)
                )
                if result.rowcount == 1:
                    return
                raise LockBusy(stage, lock.owner, lock.expires_at)

        raise LockBusy(stage, "unknown")

    def renew_lock(self, stage: str) -> bool:
        """Extend our lease. Returns False if we no longer hold the lock."""
        expires_at = self.clock() + timedelta(seconds=self.lease_seconds)
        with self.session() as db:
            result = db.execute(
                update(StageLock)
                .where(StageLock.stage == stage, StageLock.owner == self.owner)
                .values(expires_at=expires_at)
            )
            return result.rowcount == 1

    def release_lock(self, stage: str) -> bool:
        """Release our lock. Returns False if we did not hold it."""
        with self.session() as db:
            result = db.execute(
                delete(StageLock).where(
                    StageLock.stage == stage, StageLock.owner == self.owner
                )
            )
            return result.rowcount == 1

    def lock_holder(self, stage: str) -> Optional[str]:
        with self.session() as db:
            lock = db.get(StageLock, stage)
            return lock.owner if lock else None

    @contextmanager
    def lock(
        self,
        stage: str,
        heartbeat: bool = True,
        attempts: int = 1,
        base_delay: float = 0.0,
        max_delay: float = 0.0,
        on_retry: Optional[Callable[[int, Exception, float], None]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> Iterator[None]:
        """
        Hold the stage lock for the duration of the block.

        Acquisition is retried with backoff while the lock is busy; the lock
        is released on every exit path, including exceptions.

        Raises:
            LockBusy: If the lock is still held after all attempts, or the
                lease was lost while the block ran
            StoreUnavailable: If the heartbeat could not reach the store
        """
        retry_with_backoff(
            lambda: self.acquire_lock(stage),
            retry_on=(LockBusy,),
            attempts=attempts,
            base_delay=base_delay,
            max_delay=max_delay,
            on_retry=on_retry,
            sleep=sleep,
        )
        beat = None
        if heartbeat:
            beat = LeaseHeartbeat(self, stage, interval=max(self.lease_seconds / 3, 1))
            beat.start()
        try:
            yield
        finally:
            if beat:
                beat.stop()
            self.release_lock(stage)

        if beat and beat.failure:
            raise beat.failure
        if beat and beat.lost:
            raise LockBusy(stage, self.lock_holder(stage) or "unknown")
