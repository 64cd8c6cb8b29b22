from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional, Protocol, Tuple

from src.schemas import CommitResult, Credential, ExtractedRecord
from src.pipeline.masking import has_mask_marker


# Orders that have left the warehouse; only these expose recipient details
SHIPPED_STATUSES = ('AWAITING_COLLECTION', 'IN_TRANSIT', 'DELIVERED')

RECIPIENT_FIELDS = ('name', 'phone_number', 'full_address')


class ResultStore(Protocol):
    """Persistence collaborator used by the orchestrator and the control layer."""

    def lookup_credential(self, account_key: str) -> Optional[Credential]: ...

    def list_pending_items(self, credential_id: str) -> List[str]: ...

    def commit_result(self, item_id: str, record: ExtractedRecord) -> CommitResult: ...


def _is_resolved(value: Optional[str]) -> bool:
    return bool(value) and not has_mask_marker(value)


def needs_unmask(order: Dict[str, Any]) -> bool:
    """True for a shipped, not yet resolved order with a missing or masked recipient field."""
    if order.get('is_unmasked'):
        return False
    order_data = order.get('order_data') or {}
    recipient = order_data.get('recipient_address')
    if not recipient:
        return False
    if order_data.get('status') not in SHIPPED_STATUSES:
        return False
    return not all(_is_resolved(recipient.get(f)) for f in RECIPIENT_FIELDS)


def merge_recipient(order_data: Optional[Dict[str, Any]], record: ExtractedRecord) -> Tuple[Dict[str, Any], bool]:
    """Overlay the extracted fields on the stored recipient; return (merged, fully_resolved).

    Fields the record did not recover keep their stored value.
    """
    merged = copy.deepcopy(order_data or {})
    recipient = dict(merged.get('recipient_address') or {})
    recipient['name'] = record.name or recipient.get('name')
    recipient['phone_number'] = record.phone or recipient.get('phone_number')
    recipient['full_address'] = record.address or recipient.get('full_address')
    merged['recipient_address'] = recipient
    resolved = all(_is_resolved(recipient.get(f)) for f in RECIPIENT_FIELDS)
    return merged, resolved
