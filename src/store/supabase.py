from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from src.errors import StoreError
from src.schemas import CommitResult, Credential, ExtractedRecord
from .base import merge_recipient, needs_unmask


class SupabaseStore:
    """Result store on Supabase's PostgREST API.

    - Uses httpx for network IO
    - Reads raise StoreError on transport/HTTP failures
    - Commits never raise: failures come back as ``CommitResult(ok=False)``
    """

    def __init__(self, url: str, key: str, *, timeout_s: float = 15.0, client: Optional[httpx.Client] = None) -> None:
        if not url or not key:
            raise StoreError("Supabase url and key are required")
        self.base_url = url.rstrip('/') + '/rest/v1'
        headers = {"apikey": key, "Authorization": f"Bearer {key}"}
        self._client = client or httpx.Client(timeout=timeout_s)
        self._headers = headers

    def close(self) -> None:
        self._client.close()

    def _get(self, table: str, params: Dict[str, str]) -> List[Dict[str, Any]]:
        try:
            resp = self._client.get(f"{self.base_url}/{table}", params=params, headers=self._headers)
        except httpx.HTTPError as e:
            raise StoreError(f"GET {table} failed: {e}") from e
        if resp.status_code >= 400:
            raise StoreError(f"GET {table} returned HTTP {resp.status_code}")
        try:
            rows = resp.json()
        except ValueError as e:
            raise StoreError(f"GET {table} returned invalid JSON") from e
        if not isinstance(rows, list):
            raise StoreError(f"GET {table} returned {type(rows).__name__}, expected list")
        return rows

    def lookup_credential(self, account_key: str) -> Optional[Credential]:
        users = self._get("users", {"email": f"eq.{account_key}", "select": "id"})
        if not users:
            return None
        user_id = users[0].get("id")
        creds = self._get("credentials", {"user_id": f"eq.{user_id}", "select": "id,shop_name"})
        if not creds:
            return None
        return Credential(id=creds[0]["id"], display_name=creds[0].get("shop_name"))

    def list_pending_items(self, credential_id: str) -> List[str]:
        orders = self._get("orders", {"credential_id": f"eq.{credential_id}", "select": "*"})
        return [str(o["order_id"]) for o in orders if o.get("order_id") and needs_unmask(o)]

    def commit_result(self, item_id: str, record: ExtractedRecord) -> CommitResult:
        try:
            rows = self._get("orders", {"order_id": f"eq.{item_id}", "select": "order_data"})
        except StoreError as e:
            return CommitResult(ok=False, error=str(e))
        if not rows:
            return CommitResult(ok=False, error=f"order {item_id} not found")

        merged, resolved = merge_recipient(rows[0].get("order_data"), record)
        recipient = merged["recipient_address"]
        body = {
            "customer_name": recipient.get("name"),
            "customer_phone": recipient.get("phone_number"),
            "customer_address": recipient.get("full_address"),
            "order_data": merged,
            "is_unmasked": resolved,
        }
        headers = dict(self._headers)
        headers.update({"Content-Type": "application/json", "Prefer": "return=minimal"})
        try:
            resp = self._client.patch(
                f"{self.base_url}/orders",
                params={"order_id": f"eq.{item_id}"},
                json=body,
                headers=headers,
            )
        except httpx.HTTPError as e:
            return CommitResult(ok=False, error=f"PATCH orders failed: {e}")
        if not resp.is_success:
            return CommitResult(ok=False, error=f"PATCH orders returned HTTP {resp.status_code}")
        return CommitResult(ok=True, fully_resolved=resolved)
