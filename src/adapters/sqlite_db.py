"""
SQLite Database Adapter.

Implements the payment record, entitlement and post repository ports using
SQLite. Every write is a single statement inside its own transaction, so a
record is either fully written or not written at all.

Operational failures (database locked, unreadable file, disk errors) are
raised as StorageUnavailableError; constraint violations are programming
errors and propagate unchanged.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any

from src.components.entitlements.models import EntitlementRecord
from src.components.payments.models import PaymentRecord, PaymentState
from src.core.ports.db import StorageUnavailableError
from src.domain.entities import Post

# -----------------------------------------------------------------------------
# Helper functions
# -----------------------------------------------------------------------------


def dict_factory(cursor: sqlite3.Cursor, row: tuple[Any, ...]) -> dict[str, Any]:
    """Convert SQLite row to dictionary."""
    return {col[0]: row[idx] for idx, col in enumerate(cursor.description)}


def parse_decimal(s: str | None) -> Decimal | None:
    """Parse a decimal stored as text."""
    return Decimal(s) if s is not None else None


# -----------------------------------------------------------------------------
# Base SQLite Repository
# -----------------------------------------------------------------------------


class SQLiteRepoBase:
    """Base class for SQLite repositories."""

    def __init__(
        self,
        db_path: str,
        connection: sqlite3.Connection | None = None,
        busy_timeout: float = 5.0,
    ):
        self.db_path = db_path
        self.busy_timeout = busy_timeout
        self._external_conn = connection

    @contextmanager
    def _connect(self, operation: str) -> Iterator[sqlite3.Connection]:
        """
        Yield a connection and commit on success.

        An external connection is used as-is and left for its owner to
        commit and close.
        """
        if self._external_conn is not None:
            try:
                yield self._external_conn
            except sqlite3.OperationalError as e:
                raise StorageUnavailableError(str(e), operation) from e
            return

        try:
            conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout)
        except sqlite3.Error as e:
            raise StorageUnavailableError(str(e), operation) from e

        conn.row_factory = dict_factory
        try:
            yield conn
            conn.commit()
        except sqlite3.OperationalError as e:
            conn.rollback()
            raise StorageUnavailableError(str(e), operation) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()


# -----------------------------------------------------------------------------
# Payment Record Repository
# -----------------------------------------------------------------------------


class SQLitePaymentRecordRepo(SQLiteRepoBase):
    """SQLite implementation of PaymentRecordRepoPort."""

    _COLUMNS = (
        "payment_id, user_id, content_id, amount, memo, state, "
        "transaction_id, created_at, updated_at"
    )

    def get(self, payment_id: str) -> PaymentRecord | None:
        with self._connect("payments.get") as conn:
            row = conn.execute(
                "SELECT * FROM payments WHERE payment_id = ?", (payment_id,)
            ).fetchone()
            return self._map_row(row) if row else None

    def upsert(self, record: PaymentRecord) -> PaymentRecord:
        with self._connect("payments.upsert") as conn:
            conn.execute(
                f"""
                INSERT INTO payments ({self._COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(payment_id) DO UPDATE SET
                    user_id=excluded.user_id,
                    content_id=excluded.content_id,
                    amount=excluded.amount,
                    memo=excluded.memo,
                    state=excluded.state,
                    transaction_id=excluded.transaction_id,
                    updated_at=excluded.updated_at
                """,
                self._params(record),
            )
        return record

    def create_if_absent(self, record: PaymentRecord) -> bool:
        with self._connect("payments.create_if_absent") as conn:
            cursor = conn.execute(
                f"""
                INSERT INTO payments ({self._COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(payment_id) DO NOTHING
                """,
                self._params(record),
            )
            return cursor.rowcount == 1

    def list_for_user(self, user_id: str) -> list[PaymentRecord]:
        with self._connect("payments.list_for_user") as conn:
            rows = conn.execute(
                "SELECT * FROM payments WHERE user_id = ? ORDER BY created_at DESC",
                (user_id,),
            ).fetchall()
            return [self._map_row(r) for r in rows]

    def _params(self, record: PaymentRecord) -> tuple[Any, ...]:
        return (
            record.payment_id,
            record.user_id,
            record.content_id,
            str(record.amount) if record.amount is not None else None,
            record.memo,
            record.state.value,
            record.transaction_id,
            record.created_at.isoformat(),
            record.updated_at.isoformat(),
        )

    def _map_row(self, row: dict[str, Any]) -> PaymentRecord:
        return PaymentRecord(
            payment_id=row["payment_id"],
            user_id=row["user_id"],
            content_id=row["content_id"],
            amount=parse_decimal(row["amount"]),
            memo=row["memo"] or "",
            state=PaymentState(row["state"]),
            transaction_id=row["transaction_id"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )


# -----------------------------------------------------------------------------
# Entitlement Repository
# -----------------------------------------------------------------------------


class SQLiteEntitlementRepo(SQLiteRepoBase):
    """SQLite implementation of EntitlementRepoPort (insert-only)."""

    def get(self, user_id: str, content_id: str) -> EntitlementRecord | None:
        with self._connect("entitlements.get") as conn:
            row = conn.execute(
                "SELECT * FROM entitlements WHERE user_id = ? AND content_id = ?",
                (user_id, content_id),
            ).fetchone()
            return self._map_row(row) if row else None

    def create_if_absent(self, record: EntitlementRecord) -> bool:
        with self._connect("entitlements.create_if_absent") as conn:
            cursor = conn.execute(
                """
                INSERT INTO entitlements (user_id, content_id, granted_at, source_payment_id)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id, content_id) DO NOTHING
                """,
                (
                    record.user_id,
                    record.content_id,
                    record.granted_at.isoformat(),
                    record.source_payment_id,
                ),
            )
            return cursor.rowcount == 1

    def list_for_user(self, user_id: str) -> list[EntitlementRecord]:
        with self._connect("entitlements.list_for_user") as conn:
            rows = conn.execute(
                "SELECT * FROM entitlements WHERE user_id = ? ORDER BY granted_at DESC",
                (user_id,),
            ).fetchall()
            return [self._map_row(r) for r in rows]

    def _map_row(self, row: dict[str, Any]) -> EntitlementRecord:
        return EntitlementRecord(
            user_id=row["user_id"],
            content_id=row["content_id"],
            granted_at=datetime.fromisoformat(row["granted_at"]),
            source_payment_id=row["source_payment_id"],
        )


# -----------------------------------------------------------------------------
# Post Repository
# -----------------------------------------------------------------------------


class SQLitePostRepo(SQLiteRepoBase):
    """SQLite implementation of PostRepoPort."""

    def get_by_id(self, post_id: str) -> Post | None:
        with self._connect("posts.get_by_id") as conn:
            row = conn.execute("SELECT * FROM posts WHERE id = ?", (post_id,)).fetchone()
            return self._map_row(row) if row else None

    def is_creator(self, user_id: str, post_id: str) -> bool:
        with self._connect("posts.is_creator") as conn:
            row = conn.execute(
                "SELECT 1 FROM posts WHERE id = ? AND creator_id = ?", (post_id, user_id)
            ).fetchone()
            return row is not None

    def get_price(self, post_id: str) -> Decimal | None:
        with self._connect("posts.get_price") as conn:
            row = conn.execute("SELECT price FROM posts WHERE id = ?", (post_id,)).fetchone()
            return parse_decimal(row["price"]) if row else None

    def save(self, post: Post) -> Post:
        with self._connect("posts.save") as conn:
            conn.execute(
                """
                INSERT INTO posts (
                    id, creator_id, creator_name, title, description, price,
                    content_type, thumbnail_url, full_content, full_content_url,
                    tags_json, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    title=excluded.title,
                    description=excluded.description,
                    price=excluded.price,
                    content_type=excluded.content_type,
                    thumbnail_url=excluded.thumbnail_url,
                    full_content=excluded.full_content,
                    full_content_url=excluded.full_content_url,
                    tags_json=excluded.tags_json
                """,
                (
                    post.id,
                    post.creator_id,
                    post.creator_name,
                    post.title,
                    post.description,
                    str(post.price),
                    post.content_type,
                    post.thumbnail_url,
                    post.full_content,
                    post.full_content_url,
                    json.dumps(post.tags),
                    post.created_at.isoformat(),
                ),
            )
        return post

    def list_recent(self, limit: int = 50) -> list[Post]:
        with self._connect("posts.list_recent") as conn:
            rows = conn.execute(
                "SELECT * FROM posts ORDER BY created_at DESC LIMIT ?", (limit,)
            ).fetchall()
            return [self._map_row(r) for r in rows]

    def _map_row(self, row: dict[str, Any]) -> Post:
        return Post(
            id=row["id"],
            creator_id=row["creator_id"],
            creator_name=row["creator_name"],
            title=row["title"],
            description=row["description"],
            price=Decimal(row["price"]),
            content_type=row["content_type"],
            thumbnail_url=row["thumbnail_url"],
            full_content=row["full_content"],
            full_content_url=row["full_content_url"],
            tags=json.loads(row["tags_json"] or "[]"),
            created_at=datetime.fromisoformat(row["created_at"]),
        )
