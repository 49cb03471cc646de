"""SQLite-backed store for payment notifications keyed by tracking key."""

from __future__ import annotations

import sqlite3
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Optional

from payhook.models.payment import ParseFailure, PaymentRecord, PaymentStatus
from payhook.utils.datetimes import utcnow


class DuplicatePaymentError(Exception):
    """Raised when a tracking key is already stored."""

    def __init__(self, tracking_key: str) -> None:
        super().__init__(f"Payment with tracking key {tracking_key} already stored.")
        self.tracking_key = tracking_key


_PAYMENT_COLUMNS = (
    "id",
    "tracking_key",
    "payer_account",
    "payer_name",
    "payment_concept",
    "reference",
    "issuing_institution",
    "amount",
    "applied_at",
    "received_at",
    "status",
    "status_detail",
    "source_message_id",
    "updated_at",
)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


class SQLitePaymentStore:
    """Persist payment records; uniqueness of the tracking key is enforced by SQLite."""

    def __init__(self, db_path: str) -> None:
        self._db_path = Path(db_path)
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS payment_notifications (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    tracking_key TEXT NOT NULL,
                    payer_account TEXT,
                    payer_name TEXT,
                    payment_concept TEXT,
                    reference TEXT,
                    issuing_institution TEXT,
                    amount TEXT,
                    applied_at TEXT,
                    received_at TEXT NOT NULL,
                    status TEXT NOT NULL,
                    status_detail TEXT,
                    source_message_id TEXT,
                    updated_at TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS ux_payment_notifications_tracking_key
                ON payment_notifications (tracking_key)
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS payment_parse_failures (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    message_id TEXT NOT NULL UNIQUE,
                    reason TEXT NOT NULL,
                    body_excerpt TEXT,
                    recorded_at TEXT NOT NULL
                )
                """
            )

    def insert(self, record: PaymentRecord) -> PaymentRecord:
        """Insert a new record, raising ``DuplicatePaymentError`` on a known key."""
        values = (
            record.tracking_key,
            record.payer_account,
            record.payer_name,
            record.payment_concept,
            record.reference,
            record.issuing_institution,
            str(record.amount) if record.amount is not None else None,
            _iso(record.applied_at),
            _iso(record.received_at),
            record.status.value,
            record.status_detail,
            record.source_message_id,
            _iso(record.updated_at),
        )
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO payment_notifications (
                        tracking_key, payer_account, payer_name, payment_concept,
                        reference, issuing_institution, amount, applied_at,
                        received_at, status, status_detail, source_message_id,
                        updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    values,
                )
        except sqlite3.IntegrityError as exc:
            raise DuplicatePaymentError(record.tracking_key) from exc
        return record.model_copy(update={"id": cursor.lastrowid})

    def get_by_tracking_key(self, tracking_key: str) -> Optional[PaymentRecord]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {', '.join(_PAYMENT_COLUMNS)} FROM payment_notifications "
                "WHERE tracking_key = ?",
                (tracking_key,),
            ).fetchone()
        if not row:
            return None
        return self._to_record(row)

    def exists(self, tracking_key: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM payment_notifications WHERE tracking_key = ?",
                (tracking_key,),
            ).fetchone()
        return row is not None

    def update_status(
        self,
        tracking_key: str,
        status: PaymentStatus,
        *,
        detail: Optional[str] = None,
    ) -> None:
        now = utcnow().isoformat()
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE payment_notifications
                SET status = ?, status_detail = ?, updated_at = ?
                WHERE tracking_key = ?
                """,
                (status.value, detail, now, tracking_key),
            )

    def list_payments(
        self, *, status: Optional[PaymentStatus] = None, limit: int = 50
    ) -> list[PaymentRecord]:
        query = f"SELECT {', '.join(_PAYMENT_COLUMNS)} FROM payment_notifications"
        params: tuple = ()
        if status is not None:
            query += " WHERE status = ?"
            params = (status.value,)
        query += " ORDER BY id DESC LIMIT ?"
        with self._connect() as conn:
            rows = conn.execute(query, (*params, limit)).fetchall()
        return [self._to_record(row) for row in rows]

    def count(self, tracking_key: Optional[str] = None) -> int:
        query = "SELECT COUNT(*) FROM payment_notifications"
        params: tuple = ()
        if tracking_key is not None:
            query += " WHERE tracking_key = ?"
            params = (tracking_key,)
        with self._connect() as conn:
            (total,) = conn.execute(query, params).fetchone()
        return int(total)

    def record_parse_failure(self, failure: ParseFailure) -> bool:
        """Store a parse failure once per message; returns False if already known."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO payment_parse_failures
                    (message_id, reason, body_excerpt, recorded_at)
                VALUES (?, ?, ?, ?)
                """,
                (
                    failure.message_id,
                    failure.reason,
                    failure.body_excerpt,
                    failure.recorded_at.isoformat(),
                ),
            )
        return cursor.rowcount == 1

    def list_parse_failures(self, *, limit: int = 50) -> list[ParseFailure]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT message_id, reason, body_excerpt, recorded_at
                FROM payment_parse_failures
                ORDER BY id DESC LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [
            ParseFailure(
                message_id=row["message_id"],
                reason=row["reason"],
                body_excerpt=row["body_excerpt"],
                recorded_at=datetime.fromisoformat(row["recorded_at"]),
            )
            for row in rows
        ]

    @staticmethod
    def _to_record(row: sqlite3.Row) -> PaymentRecord:
        def _dt(value: Optional[str]) -> Optional[datetime]:
            return datetime.fromisoformat(value) if value else None

        return PaymentRecord(
            id=row["id"],
            tracking_key=row["tracking_key"],
            payer_account=row["payer_account"],
            payer_name=row["payer_name"],
            payment_concept=row["payment_concept"],
            reference=row["reference"],
            issuing_institution=row["issuing_institution"],
            amount=Decimal(row["amount"]) if row["amount"] is not None else None,
            applied_at=_dt(row["applied_at"]),
            received_at=_dt(row["received_at"]),
            status=PaymentStatus(row["status"]),
            status_detail=row["status_detail"],
            source_message_id=row["source_message_id"],
            updated_at=_dt(row["updated_at"]),
        )


__all__ = ["DuplicatePaymentError", "SQLitePaymentStore"]
