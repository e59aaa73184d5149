"""SQLite-backed entity store for users, tasks, bids, payments and messages."""

from __future__ import annotations

import contextlib
import json
import sqlite3
from decimal import Decimal
from pathlib import Path
from threading import RLock
from typing import TYPE_CHECKING, Any

from task_bidder_service.core.exceptions import ServiceError
from task_bidder_service.models import (
    Acceptance,
    Bid,
    BidWithWorker,
    Message,
    Payment,
    Task,
    User,
    WorkerStats,
)
from task_bidder_service.services.state_machine import (
    ACCEPTANCE_TRANSITION,
    BID_TRANSITIONS,
    PAYMENT_TRANSITIONS,
    BidStatus,
    PaymentStatus,
    TaskCategory,
    TaskStatus,
    Urgency,
    source_statuses,
)

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping
    from enum import StrEnum


class StoreUnavailableError(ServiceError):
    """Raised when the database lock or file cannot be obtained in time."""

    def __init__(self, message: str) -> None:
        super().__init__("UNAVAILABLE", "Entity store is temporarily unavailable", 503, {})
        self.reason = message


class StaleStateError(Exception):
    """Raised when a conditional update finds the row in an unexpected state."""

    def __init__(self, message: str, current_status: str | None = None) -> None:
        super().__init__(message)
        self.current_status = current_status


class DuplicateBidError(Exception):
    """Raised when a worker already holds a pending bid on the task."""


class DuplicatePaymentError(Exception):
    """Raised when a payment record already exists for the task."""


_TASK_SELECT_SQL = (
    "SELECT t.task_id, t.customer_id, t.worker_id, t.title, t.description, t.category, "
    "t.location, t.budget_min, t.budget_max, t.final_price, t.urgency, t.status, t.photos, "
    "t.completion_photos, t.due_date, t.completed_at, t.created_at, t.updated_at, "
    "(SELECT COUNT(*) FROM bids b WHERE b.task_id = t.task_id) AS bid_count "
    "FROM tasks t"
)
_BID_COLUMNS_SQL = (
    "bid_id, task_id, worker_id, amount, message, estimated_duration, status, "
    "created_at, updated_at"
)
_USER_COLUMNS_SQL = (
    "user_id, display_name, is_worker, rating, completed_tasks, created_at, updated_at"
)
_PAYMENT_COLUMNS_SQL = (
    "payment_id, task_id, customer_id, worker_id, amount, platform_fee, "
    "processor_reference, status, created_at, updated_at"
)


def _status_guard(
    transitions: Mapping[Any, frozenset[Any]], target: StrEnum
) -> tuple[str, list[str]]:
    """SQL condition and parameters matching rows allowed to move to ``target``."""
    sources = source_statuses(transitions, target)
    placeholders = ", ".join("?" for _ in sources)
    return f"status IN ({placeholders})", sources


def _optional_decimal(value: str | None) -> Decimal | None:
    return Decimal(value) if value is not None else None


def _row_to_user(row: sqlite3.Row) -> User:
    return User(
        user_id=row["user_id"],
        display_name=row["display_name"],
        is_worker=bool(row["is_worker"]),
        rating=_optional_decimal(row["rating"]),
        completed_tasks=int(row["completed_tasks"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_task(row: sqlite3.Row) -> Task:
    return Task(
        task_id=row["task_id"],
        customer_id=row["customer_id"],
        worker_id=row["worker_id"],
        title=row["title"],
        description=row["description"],
        category=TaskCategory(row["category"]),
        location=row["location"],
        budget_min=Decimal(row["budget_min"]),
        budget_max=Decimal(row["budget_max"]),
        final_price=_optional_decimal(row["final_price"]),
        urgency=Urgency(row["urgency"]),
        status=TaskStatus(row["status"]),
        photos=json.loads(row["photos"]),
        completion_photos=json.loads(row["completion_photos"]),
        due_date=row["due_date"],
        completed_at=row["completed_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        bid_count=int(row["bid_count"]),
    )


def _row_to_bid(row: sqlite3.Row) -> Bid:
    return Bid(
        bid_id=row["bid_id"],
        task_id=row["task_id"],
        worker_id=row["worker_id"],
        amount=Decimal(row["amount"]),
        message=row["message"],
        estimated_duration=row["estimated_duration"],
        status=BidStatus(row["status"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_payment(row: sqlite3.Row) -> Payment:
    return Payment(
        payment_id=row["payment_id"],
        task_id=row["task_id"],
        customer_id=row["customer_id"],
        worker_id=row["worker_id"],
        amount=Decimal(row["amount"]),
        platform_fee=Decimal(row["platform_fee"]),
        processor_reference=row["processor_reference"],
        status=PaymentStatus(row["status"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_message(row: sqlite3.Row) -> Message:
    return Message(
        message_id=row["message_id"],
        task_id=row["task_id"],
        sender_id=row["sender_id"],
        receiver_id=row["receiver_id"],
        content=row["content"],
        attachments=json.loads(row["attachments"]),
        created_at=row["created_at"],
    )


class EntityStore:
    """
    Repository over a single SQLite database.

    Every public method is synchronous and thread-safe. Writes that touch
    more than one row run inside ``BEGIN IMMEDIATE`` so they either fully
    commit or leave the database untouched. Waiting for the process lock
    or the database file is bounded by ``lock_timeout_seconds``.
    """

    def __init__(self, db_path: str, lock_timeout_seconds: float) -> None:
        self._lock = RLock()
        self._lock_timeout = lock_timeout_seconds
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(
            db_path,
            check_same_thread=False,
            isolation_level=None,
            timeout=lock_timeout_seconds,
        )
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA foreign_keys=ON")
        self._db.execute(f"PRAGMA busy_timeout={int(lock_timeout_seconds * 1000)}")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._locked():
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    user_id TEXT PRIMARY KEY,
                    display_name TEXT,
                    is_worker INTEGER NOT NULL DEFAULT 0,
                    rating TEXT,
                    completed_tasks INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS tasks (
                    task_id TEXT PRIMARY KEY,
                    customer_id TEXT NOT NULL REFERENCES users(user_id),
                    worker_id TEXT REFERENCES users(user_id),
                    title TEXT NOT NULL,
                    description TEXT NOT NULL,
                    category TEXT NOT NULL,
                    location TEXT NOT NULL,
                    budget_min TEXT NOT NULL,
                    budget_max TEXT NOT NULL,
                    final_price TEXT,
                    urgency TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'open',
                    photos TEXT NOT NULL DEFAULT '[]',
                    completion_photos TEXT NOT NULL DEFAULT '[]',
                    due_date TEXT,
                    completed_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    CHECK ((worker_id IS NULL) = (final_price IS NULL))
                );

                CREATE TABLE IF NOT EXISTS bids (
                    bid_id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES tasks(task_id),
                    worker_id TEXT NOT NULL REFERENCES users(user_id),
                    amount TEXT NOT NULL,
                    message TEXT,
                    estimated_duration INTEGER,
                    status TEXT NOT NULL DEFAULT 'pending',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE UNIQUE INDEX IF NOT EXISTS ux_pending_bid_per_worker
                    ON bids(task_id, worker_id)
                    WHERE status = 'pending';

                CREATE UNIQUE INDEX IF NOT EXISTS ux_accepted_bid_per_task
                    ON bids(task_id)
                    WHERE status = 'accepted';

                CREATE TABLE IF NOT EXISTS payments (
                    payment_id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL UNIQUE REFERENCES tasks(task_id),
                    customer_id TEXT NOT NULL REFERENCES users(user_id),
                    worker_id TEXT NOT NULL REFERENCES users(user_id),
                    amount TEXT NOT NULL,
                    platform_fee TEXT NOT NULL,
                    processor_reference TEXT,
                    status TEXT NOT NULL DEFAULT 'pending',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS messages (
                    message_id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES tasks(task_id),
                    sender_id TEXT NOT NULL REFERENCES users(user_id),
                    receiver_id TEXT NOT NULL REFERENCES users(user_id),
                    content TEXT NOT NULL,
                    attachments TEXT NOT NULL DEFAULT '[]',
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS ix_tasks_status_created
                    ON tasks(status, created_at);
                CREATE INDEX IF NOT EXISTS ix_bids_task ON bids(task_id);
                CREATE INDEX IF NOT EXISTS ix_messages_task ON messages(task_id, created_at);
                """
            )

    # ------------------------------------------------------------------
    # Locking and transactions
    # ------------------------------------------------------------------

    @contextlib.contextmanager
    def _locked(self) -> Iterator[None]:
        """Hold the process lock for the block, translating database timeouts."""
        if not self._lock.acquire(timeout=self._lock_timeout):
            msg = "Timed out waiting for the entity store lock"
            raise StoreUnavailableError(msg)
        try:
            yield
        except sqlite3.OperationalError as exc:
            raise StoreUnavailableError(str(exc)) from exc
        finally:
            self._lock.release()

    @contextlib.contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the block inside BEGIN IMMEDIATE; roll back on any exception."""
        with self._locked():
            self._db.execute("BEGIN IMMEDIATE")
            try:
                yield self._db
            except BaseException:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise
            self._db.execute("COMMIT")

    def _fetch_task(self, task_id: str) -> Task | None:
        row = self._db.execute(_TASK_SELECT_SQL + " WHERE t.task_id = ?", (task_id,)).fetchone()
        return _row_to_task(row) if row is not None else None

    def _fetch_bid(self, bid_id: str) -> Bid | None:
        row = self._db.execute(
            f"SELECT {_BID_COLUMNS_SQL} FROM bids WHERE bid_id = ?",  # nosec B608
            (bid_id,),
        ).fetchone()
        return _row_to_bid(row) if row is not None else None

    def _fetch_user(self, user_id: str) -> User | None:
        row = self._db.execute(
            f"SELECT {_USER_COLUMNS_SQL} FROM users WHERE user_id = ?",  # nosec B608
            (user_id,),
        ).fetchone()
        return _row_to_user(row) if row is not None else None

    def _fetch_payment_for_task(self, task_id: str) -> Payment | None:
        row = self._db.execute(
            f"SELECT {_PAYMENT_COLUMNS_SQL} FROM payments WHERE task_id = ?",  # nosec B608
            (task_id,),
        ).fetchone()
        return _row_to_payment(row) if row is not None else None

    def _current_task_status(self, task_id: str) -> str | None:
        row = self._db.execute("SELECT status FROM tasks WHERE task_id = ?", (task_id,)).fetchone()
        return str(row["status"]) if row is not None else None

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def upsert_user(self, user_id: str, display_name: str | None, now: str) -> User:
        """Create the user on first sight; refresh the display name when supplied."""
        with self._transaction() as db:
            db.execute(
                """
                INSERT INTO users (user_id, display_name, is_worker, rating, completed_tasks,
                                   created_at, updated_at)
                VALUES (?, ?, 0, NULL, 0, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    display_name = COALESCE(excluded.display_name, users.display_name),
                    updated_at = excluded.updated_at
                """,
                (user_id, display_name, now, now),
            )
            user = self._fetch_user(user_id)
        if user is None:
            msg = f"User {user_id} not found after upsert"
            raise RuntimeError(msg)
        return user

    def get_user(self, user_id: str) -> User | None:
        with self._locked():
            return self._fetch_user(user_id)

    def update_user_profile(
        self,
        user_id: str,
        *,
        display_name: str | None,
        is_worker: bool | None,
        now: str,
    ) -> User | None:
        """Update the mutable profile fields; None leaves a field unchanged."""
        with self._transaction() as db:
            db.execute(
                """
                UPDATE users SET
                    display_name = COALESCE(?, display_name),
                    is_worker = COALESCE(?, is_worker),
                    updated_at = ?
                WHERE user_id = ?
                """,
                (display_name, None if is_worker is None else int(is_worker), now, user_id),
            )
            return self._fetch_user(user_id)

    def worker_stats(self) -> WorkerStats:
        with self._locked():
            workers = self._db.execute("SELECT COUNT(*) FROM users WHERE is_worker = 1").fetchone()
            completed = self._db.execute(
                "SELECT COUNT(*) FROM tasks WHERE status = ?",
                (TaskStatus.COMPLETED.value,),
            ).fetchone()
            ratings = self._db.execute(
                "SELECT rating FROM users WHERE is_worker = 1 AND rating IS NOT NULL"
            ).fetchall()
        average: Decimal | None = None
        if ratings:
            total = sum((Decimal(row["rating"]) for row in ratings), Decimal(0))
            average = (total / len(ratings)).quantize(Decimal("0.01"))
        return WorkerStats(
            active_workers=int(workers[0]),
            completed_tasks=int(completed[0]),
            average_rating=average,
        )

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def insert_task(self, task: Task) -> Task:
        """Insert a new task row and return it as stored."""
        with self._transaction() as db:
            db.execute(
                """
                INSERT INTO tasks (
                    task_id, customer_id, worker_id, title, description, category, location,
                    budget_min, budget_max, final_price, urgency, status, photos,
                    completion_photos, due_date, completed_at, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task.task_id,
                    task.customer_id,
                    task.worker_id,
                    task.title,
                    task.description,
                    task.category.value,
                    task.location,
                    str(task.budget_min),
                    str(task.budget_max),
                    None if task.final_price is None else str(task.final_price),
                    task.urgency.value,
                    task.status.value,
                    json.dumps(task.photos),
                    json.dumps(task.completion_photos),
                    task.due_date,
                    task.completed_at,
                    task.created_at,
                    task.updated_at,
                ),
            )
            stored = self._fetch_task(task.task_id)
        if stored is None:
            msg = f"Task {task.task_id} not found after insert"
            raise RuntimeError(msg)
        return stored

    def get_task(self, task_id: str) -> Task | None:
        with self._locked():
            return self._fetch_task(task_id)

    def find_tasks_by_customer(self, customer_id: str) -> list[Task]:
        with self._locked():
            rows = self._db.execute(
                _TASK_SELECT_SQL + " WHERE t.customer_id = ? ORDER BY t.created_at DESC",
                (customer_id,),
            ).fetchall()
        return [_row_to_task(row) for row in rows]

    def find_tasks_by_worker(self, worker_id: str) -> list[Task]:
        with self._locked():
            rows = self._db.execute(
                _TASK_SELECT_SQL + " WHERE t.worker_id = ? ORDER BY t.created_at DESC",
                (worker_id,),
            ).fetchall()
        return [_row_to_task(row) for row in rows]

    def find_open_tasks(self, limit: int) -> list[Task]:
        with self._locked():
            rows = self._db.execute(
                _TASK_SELECT_SQL + " WHERE t.status = ? ORDER BY t.created_at DESC LIMIT ?",
                (TaskStatus.OPEN.value, limit),
            ).fetchall()
        return [_row_to_task(row) for row in rows]

    def transition_task(
        self,
        task_id: str,
        *,
        expected_status: TaskStatus,
        new_status: TaskStatus,
        updated_at: str,
        completed_at: str | None = None,
        clear_assignment: bool = False,
        payment_status: PaymentStatus | None = None,
    ) -> Task:
        """
        Move a task from ``expected_status`` to ``new_status`` in one transaction.

        On completion the assigned worker's completed-task count is incremented.
        When ``payment_status`` is given, the task's payment (if any) moves to it
        from whichever statuses allow that move.

        Raises:
            StaleStateError: the task is missing or no longer in ``expected_status``
        """
        assignments = ["status = ?", "updated_at = ?"]
        params: list[object] = [new_status.value, updated_at]
        if completed_at is not None:
            assignments.append("completed_at = ?")
            params.append(completed_at)
        if clear_assignment:
            assignments.extend(["worker_id = NULL", "final_price = NULL"])

        query = (
            "UPDATE tasks SET " + ", ".join(assignments) + " WHERE task_id = ? AND status = ?"
        )  # nosec B608
        params.extend([task_id, expected_status.value])

        with self._transaction() as db:
            previous = self._fetch_task(task_id)
            cursor = db.execute(query, params)
            if cursor.rowcount != 1 or previous is None:
                raise StaleStateError(
                    f"Task {task_id} is no longer '{expected_status.value}'",
                    self._current_task_status(task_id),
                )

            if new_status == TaskStatus.COMPLETED and previous.worker_id is not None:
                db.execute(
                    "UPDATE users SET completed_tasks = completed_tasks + 1, updated_at = ? "
                    "WHERE user_id = ?",
                    (updated_at, previous.worker_id),
                )

            if payment_status is not None:
                guard, sources = _status_guard(PAYMENT_TRANSITIONS, payment_status)
                db.execute(
                    "UPDATE payments SET status = ?, updated_at = ? "  # nosec B608
                    f"WHERE task_id = ? AND {guard}",
                    (payment_status.value, updated_at, task_id, *sources),
                )

            updated = self._fetch_task(task_id)
        if updated is None:
            msg = f"Task {task_id} not found after update"
            raise RuntimeError(msg)
        return updated

    def set_completion_photos(self, task_id: str, photos: list[str], updated_at: str) -> Task:
        """
        Append completion photos to a completed task.

        Raises:
            StaleStateError: the task is missing or not completed
        """
        with self._transaction() as db:
            task = self._fetch_task(task_id)
            if task is None or task.status != TaskStatus.COMPLETED:
                raise StaleStateError(
                    f"Task {task_id} is not completed",
                    None if task is None else task.status.value,
                )
            db.execute(
                "UPDATE tasks SET completion_photos = ?, updated_at = ? WHERE task_id = ?",
                (json.dumps([*task.completion_photos, *photos]), updated_at, task_id),
            )
            updated = self._fetch_task(task_id)
        if updated is None:
            msg = f"Task {task_id} not found after update"
            raise RuntimeError(msg)
        return updated

    def count_tasks_by_status(self) -> dict[str, int]:
        with self._locked():
            rows = self._db.execute("SELECT status, COUNT(*) FROM tasks GROUP BY status").fetchall()
        return {str(row[0]): int(row[1]) for row in rows}

    # ------------------------------------------------------------------
    # Bids
    # ------------------------------------------------------------------

    def insert_bid(self, bid: Bid) -> Bid:
        """
        Insert a pending bid, provided the task is still open.

        The status check and the insert share one transaction, so a bid can
        never land on a task that an acceptance has already assigned.

        Raises:
            StaleStateError: the task is missing or not open
            DuplicateBidError: the worker already has a pending bid on the task
        """
        with self._transaction() as db:
            status = self._current_task_status(bid.task_id)
            if status != TaskStatus.OPEN.value:
                raise StaleStateError(f"Task {bid.task_id} is not open", status)
            try:
                db.execute(
                    f"INSERT INTO bids ({_BID_COLUMNS_SQL}) "  # nosec B608
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        bid.bid_id,
                        bid.task_id,
                        bid.worker_id,
                        str(bid.amount),
                        bid.message,
                        bid.estimated_duration,
                        bid.status.value,
                        bid.created_at,
                        bid.updated_at,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                if "unique" in str(exc).lower():
                    raise DuplicateBidError(
                        "This worker already has a pending bid on this task"
                    ) from exc
                raise
            stored = self._fetch_bid(bid.bid_id)
        if stored is None:
            msg = f"Bid {bid.bid_id} not found after insert"
            raise RuntimeError(msg)
        return stored

    def get_bid(self, bid_id: str) -> Bid | None:
        with self._locked():
            return self._fetch_bid(bid_id)

    def find_bids_for_task(self, task_id: str) -> list[BidWithWorker]:
        """Bids for a task, cheapest first, joined with the bidder's user record."""
        bid_columns = ", ".join(f"b.{column.strip()}" for column in _BID_COLUMNS_SQL.split(","))
        user_columns = ", ".join(
            f"u.{column.strip()} AS u_{column.strip()}" for column in _USER_COLUMNS_SQL.split(",")
        )
        with self._locked():
            rows = self._db.execute(
                f"SELECT {bid_columns}, {user_columns} FROM bids b "  # nosec B608
                "LEFT JOIN users u ON u.user_id = b.worker_id "
                "WHERE b.task_id = ? "
                "ORDER BY CAST(b.amount AS REAL) ASC, b.created_at ASC, b.bid_id ASC",
                (task_id,),
            ).fetchall()

        result: list[BidWithWorker] = []
        for row in rows:
            worker = None
            if row["u_user_id"] is not None:
                worker = User(
                    user_id=row["u_user_id"],
                    display_name=row["u_display_name"],
                    is_worker=bool(row["u_is_worker"]),
                    rating=_optional_decimal(row["u_rating"]),
                    completed_tasks=int(row["u_completed_tasks"]),
                    created_at=row["u_created_at"],
                    updated_at=row["u_updated_at"],
                )
            result.append(BidWithWorker(bid=_row_to_bid(row), worker=worker))
        return result

    def find_bids_by_worker(self, worker_id: str) -> list[Bid]:
        with self._locked():
            rows = self._db.execute(
                f"SELECT {_BID_COLUMNS_SQL} FROM bids "  # nosec B608
                "WHERE worker_id = ? ORDER BY created_at DESC",
                (worker_id,),
            ).fetchall()
        return [_row_to_bid(row) for row in rows]

    def withdraw_bid(self, bid_id: str, updated_at: str) -> Bid:
        """
        Move a pending bid to withdrawn.

        Raises:
            StaleStateError: the bid is missing or no longer pending
        """
        guard, sources = _status_guard(BID_TRANSITIONS, BidStatus.WITHDRAWN)
        with self._transaction() as db:
            cursor = db.execute(
                "UPDATE bids SET status = ?, updated_at = ? "  # nosec B608
                f"WHERE bid_id = ? AND {guard}",
                (BidStatus.WITHDRAWN.value, updated_at, bid_id, *sources),
            )
            bid = self._fetch_bid(bid_id)
            if cursor.rowcount != 1 or bid is None:
                raise StaleStateError(
                    f"Bid {bid_id} is no longer pending",
                    None if bid is None else bid.status.value,
                )
        return bid

    def accept_bid(self, bid_id: str, payment: Payment, updated_at: str) -> Acceptance:
        """
        Accept one bid and settle the task in a single transaction.

        Steps, all or nothing:
        1. task open -> assigned with worker and final price from the bid
        2. target bid pending -> accepted
        3. every other pending bid on the task -> rejected
        4. insert the pending payment record

        Raises:
            StaleStateError: the bid is not pending or the task is not open
            DuplicatePaymentError: a payment already exists for the task
        """
        from_status, to_status = ACCEPTANCE_TRANSITION
        accept_guard, accept_sources = _status_guard(BID_TRANSITIONS, BidStatus.ACCEPTED)
        reject_guard, reject_sources = _status_guard(BID_TRANSITIONS, BidStatus.REJECTED)
        with self._transaction() as db:
            bid = self._fetch_bid(bid_id)
            if bid is None:
                raise StaleStateError(f"Bid {bid_id} not found")

            task_cursor = db.execute(
                "UPDATE tasks SET status = ?, worker_id = ?, final_price = ?, updated_at = ? "
                "WHERE task_id = ? AND status = ?",
                (
                    to_status.value,
                    bid.worker_id,
                    str(bid.amount),
                    updated_at,
                    bid.task_id,
                    from_status.value,
                ),
            )
            if task_cursor.rowcount != 1:
                raise StaleStateError(
                    f"Task {bid.task_id} is no longer open",
                    self._current_task_status(bid.task_id),
                )

            bid_cursor = db.execute(
                "UPDATE bids SET status = ?, updated_at = ? "  # nosec B608
                f"WHERE bid_id = ? AND {accept_guard}",
                (BidStatus.ACCEPTED.value, updated_at, bid_id, *accept_sources),
            )
            if bid_cursor.rowcount != 1:
                raise StaleStateError(f"Bid {bid_id} is no longer pending", bid.status.value)

            rejected_rows = db.execute(
                "SELECT bid_id FROM bids "  # nosec B608
                f"WHERE task_id = ? AND bid_id != ? AND {reject_guard} ORDER BY created_at",
                (bid.task_id, bid_id, *reject_sources),
            ).fetchall()
            db.execute(
                "UPDATE bids SET status = ?, updated_at = ? "  # nosec B608
                f"WHERE task_id = ? AND bid_id != ? AND {reject_guard}",
                (BidStatus.REJECTED.value, updated_at, bid.task_id, bid_id, *reject_sources),
            )

            try:
                db.execute(
                    f"INSERT INTO payments ({_PAYMENT_COLUMNS_SQL}) "  # nosec B608
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        payment.payment_id,
                        payment.task_id,
                        payment.customer_id,
                        payment.worker_id,
                        str(payment.amount),
                        str(payment.platform_fee),
                        payment.processor_reference,
                        payment.status.value,
                        payment.created_at,
                        payment.updated_at,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                if "unique" in str(exc).lower():
                    raise DuplicatePaymentError(
                        f"A payment already exists for task {payment.task_id}"
                    ) from exc
                raise

            accepted = self._fetch_bid(bid_id)
            task = self._fetch_task(bid.task_id)
            stored_payment = self._fetch_payment_for_task(bid.task_id)

        if accepted is None or task is None or stored_payment is None:
            msg = f"Acceptance of bid {bid_id} not visible after commit"
            raise RuntimeError(msg)
        return Acceptance(
            bid=accepted,
            task=task,
            payment=stored_payment,
            rejected_bid_ids=[str(row["bid_id"]) for row in rejected_rows],
        )

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def get_payment_for_task(self, task_id: str) -> Payment | None:
        with self._locked():
            return self._fetch_payment_for_task(task_id)

    def record_processor_reference(
        self,
        payment_id: str,
        processor_reference: str,
        updated_at: str,
    ) -> Payment:
        """
        Attach the processor reference and move the payment pending -> held.

        Raises:
            StaleStateError: the payment is missing or no longer pending
        """
        guard, sources = _status_guard(PAYMENT_TRANSITIONS, PaymentStatus.HELD)
        with self._transaction() as db:
            cursor = db.execute(
                "UPDATE payments "  # nosec B608
                "SET processor_reference = ?, status = ?, updated_at = ? "
                f"WHERE payment_id = ? AND {guard}",
                (processor_reference, PaymentStatus.HELD.value, updated_at, payment_id, *sources),
            )
            row = db.execute(
                f"SELECT {_PAYMENT_COLUMNS_SQL} FROM payments WHERE payment_id = ?",  # nosec B608
                (payment_id,),
            ).fetchone()
            if cursor.rowcount != 1 or row is None:
                raise StaleStateError(
                    f"Payment {payment_id} is no longer pending",
                    None if row is None else str(row["status"]),
                )
        return _row_to_payment(row)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def insert_message(self, message: Message) -> Message:
        with self._transaction() as db:
            db.execute(
                """
                INSERT INTO messages (
                    message_id, task_id, sender_id, receiver_id, content, attachments, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    message.message_id,
                    message.task_id,
                    message.sender_id,
                    message.receiver_id,
                    message.content,
                    json.dumps(message.attachments),
                    message.created_at,
                ),
            )
        return message

    def find_messages_for_task(self, task_id: str) -> list[Message]:
        with self._locked():
            rows = self._db.execute(
                "SELECT message_id, task_id, sender_id, receiver_id, content, attachments, "
                "created_at FROM messages WHERE task_id = ? ORDER BY created_at, message_id",
                (task_id,),
            ).fetchall()
        return [_row_to_message(row) for row in rows]

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
