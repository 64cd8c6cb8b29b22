from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from src.schemas import CommitResult, Credential, ExtractedRecord
from .base import merge_recipient, needs_unmask

DDL_STATEMENTS = [
    "PRAGMA journal_mode=WAL",
    "PRAGMA synchronous=NORMAL",
    """
    CREATE TABLE IF NOT EXISTS credentials (
      id TEXT PRIMARY KEY,
      email TEXT NOT NULL,
      shop_name TEXT
    )
    """.strip(),
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_credentials_email ON credentials (lower(email))
    """.strip(),
    """
    CREATE TABLE IF NOT EXISTS orders (
      order_id TEXT PRIMARY KEY,
      credential_id TEXT,
      order_data TEXT NOT NULL,
      customer_name TEXT,
      customer_phone TEXT,
      customer_address TEXT,
      is_unmasked INTEGER NOT NULL DEFAULT 0 CHECK (is_unmasked IN (0, 1)),
      updated_at TEXT
    )
    """.strip(),
    """
    CREATE INDEX IF NOT EXISTS idx_orders_credential ON orders (credential_id, is_unmasked)
    """.strip(),
]

UPSERT_ORDER_SQL = (
    """
    INSERT INTO orders (order_id, credential_id, order_data, is_unmasked, updated_at)
    VALUES (:order_id, :credential_id, :order_data, :is_unmasked, :updated_at)
    ON CONFLICT(order_id)
    DO UPDATE SET
      credential_id = excluded.credential_id,
      order_data = excluded.order_data,
      is_unmasked = excluded.is_unmasked,
      updated_at = excluded.updated_at
    """
).strip()

COMMIT_SQL = (
    """
    UPDATE orders SET
      customer_name = :customer_name,
      customer_phone = :customer_phone,
      customer_address = :customer_address,
      order_data = :order_data,
      is_unmasked = :is_unmasked,
      updated_at = :updated_at
    WHERE order_id = :order_id
    """
).strip()


def ensure_schema(conn: sqlite3.Connection) -> None:
    for stmt in DDL_STATEMENTS:
        conn.execute(stmt)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SqliteStore:
    """Local result store with the same contract as the Supabase one.

    Opens a short-lived connection per call, so it can be used from the
    orchestrator's worker thread and the caller's thread alike.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = str(db_path)
        conn = sqlite3.connect(self.db_path)
        try:
            with conn:
                ensure_schema(conn)
        finally:
            conn.close()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def add_credential(self, credential_id: str, email: str, shop_name: Optional[str] = None) -> None:
        conn = self._connect()
        try:
            with conn:
                conn.execute(
                    "INSERT OR REPLACE INTO credentials (id, email, shop_name) VALUES (?, ?, ?)",
                    (str(credential_id), email, shop_name),
                )
        finally:
            conn.close()

    def upsert_orders(self, orders: List[Dict[str, Any]]) -> int:
        """Load orders (``order_id``, ``credential_id``, ``order_data``, ``is_unmasked``)."""
        if not orders:
            return 0
        rows = [{
            "order_id": str(o["order_id"]),
            "credential_id": str(o["credential_id"]) if o.get("credential_id") is not None else None,
            "order_data": json.dumps(o.get("order_data") or {}, ensure_ascii=False),
            "is_unmasked": 1 if o.get("is_unmasked") else 0,
            "updated_at": _now(),
        } for o in orders]
        conn = self._connect()
        try:
            with conn:  # transactional batch
                conn.executemany(UPSERT_ORDER_SQL, rows)
            return len(rows)
        finally:
            conn.close()

    def get_order(self, order_id: str) -> Optional[Dict[str, Any]]:
        conn = self._connect()
        try:
            row = conn.execute("SELECT * FROM orders WHERE order_id = ?", (order_id,)).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        out = dict(row)
        out["order_data"] = json.loads(out["order_data"] or "{}")
        out["is_unmasked"] = bool(out["is_unmasked"])
        return out

    def lookup_credential(self, account_key: str) -> Optional[Credential]:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT id, shop_name FROM credentials WHERE lower(email) = lower(?)", (account_key,)
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        return Credential(id=row["id"], display_name=row["shop_name"])

    def list_pending_items(self, credential_id: str) -> List[str]:
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT order_id, order_data, is_unmasked FROM orders WHERE credential_id = ? ORDER BY rowid",
                (str(credential_id),),
            ).fetchall()
        finally:
            conn.close()
        out: List[str] = []
        for r in rows:
            order = {"order_id": r["order_id"], "order_data": json.loads(r["order_data"] or "{}"),
                     "is_unmasked": bool(r["is_unmasked"])}
            if needs_unmask(order):
                out.append(r["order_id"])
        return out

    def commit_result(self, item_id: str, record: ExtractedRecord) -> CommitResult:
        existing = self.get_order(item_id)
        if existing is None:
            return CommitResult(ok=False, error=f"order {item_id} not found")
        merged, resolved = merge_recipient(existing["order_data"], record)
        recipient = merged["recipient_address"]
        conn = self._connect()
        try:
            with conn:
                conn.execute(COMMIT_SQL, {
                    "order_id": item_id,
                    "customer_name": recipient.get("name"),
                    "customer_phone": recipient.get("phone_number"),
                    "customer_address": recipient.get("full_address"),
                    "order_data": json.dumps(merged, ensure_ascii=False),
                    "is_unmasked": 1 if resolved else 0,
                    "updated_at": _now(),
                })
        except sqlite3.Error as e:
            return CommitResult(ok=False, error=str(e))
        finally:
            conn.close()
        return CommitResult(ok=True, fully_resolved=resolved)
