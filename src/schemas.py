"""
Order Unmasker - Pydantic Data Schemas

Core data models for a run (Job + Items), the per-item ExtractedRecord and
the lifecycle events published while a run progresses.
"""

from __future__ import annotations

import threading
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, computed_field, field_validator

from src.pipeline.masking import has_mask_marker


MAX_RAW_TEXTS = 10


class RunState(str, Enum):
    """Lifecycle of a Job."""
    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"
    COMPLETED = "completed"
    STOPPED = "stopped"
    ABORTED = "aborted"      # run-level error ended the run


TERMINAL_RUN_STATES = frozenset({RunState.COMPLETED, RunState.STOPPED, RunState.ABORTED})


class ItemStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class FailureReason(str, Enum):
    """Failure taxonomy. The first four are item-level, the rest abort the run."""
    NAVIGATION_ERROR = "NavigationError"
    EXTRACTION_INCOMPLETE = "ExtractionIncomplete"
    EXTRACTION_MASKED = "ExtractionMasked"
    PERSISTENCE_ERROR = "PersistenceError"
    AUTHENTICATION_ERROR = "AuthenticationError"
    ALREADY_RUNNING = "AlreadyRunning"
    EMPTY_INPUT = "EmptyInput"
    SESSION_ERROR = "SessionError"


class EventType(str, Enum):
    CONNECTED = "CONNECTED"
    STARTED = "STARTED"
    PROCESSING = "PROCESSING"
    ORDER_SUCCESS = "ORDER_SUCCESS"
    ORDER_FAILED = "ORDER_FAILED"
    COMPLETED = "COMPLETED"
    STOPPED = "STOPPED"
    ERROR = "ERROR"


class Item(BaseModel):
    """One record to process, identified by an opaque external id."""
    item_id: str = Field(..., description="Opaque external identifier (order number)")
    status: ItemStatus = ItemStatus.PENDING
    failure_reason: Optional[FailureReason] = None
    failure_detail: Optional[str] = None

    @field_validator('item_id')
    @classmethod
    def validate_item_id(cls, v):
        if not v or not v.strip():
            raise ValueError('item_id cannot be empty')
        return v.strip()

    @property
    def is_terminal(self) -> bool:
        return self.status in (ItemStatus.SUCCEEDED, ItemStatus.FAILED)

    @property
    def short_id(self) -> str:
        return self.item_id[-8:]


class StatusSnapshot(BaseModel):
    """Point-in-time view of a run, safe to hand to any caller."""
    is_running: bool = False
    processed: int = 0
    total: int = 0
    succeeded: int = 0
    failed: int = 0

    def to_wire(self) -> dict:
        """Wire shape used by GET_STATUS responses."""
        return {
            "isRunning": self.is_running,
            "processed": self.processed,
            "total": self.total,
            "succeeded": self.succeeded,
            "success": self.succeeded,
            "failed": self.failed,
        }


class Job(BaseModel):
    """
    State of one run over an ordered list of Items.

    Owned exclusively by the orchestrator. Mutations go through the methods
    below while holding ``lock``; the cursor only moves forward and
    ``succeeded + failed == processed <= total`` holds after every call.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    items: List[Item] = Field(default_factory=list)
    cursor: int = 0
    state: RunState = RunState.IDLE
    total: int = 0
    processed: int = 0
    succeeded: int = 0
    failed: int = 0

    _lock: threading.RLock = PrivateAttr(default_factory=threading.RLock)

    @classmethod
    def from_ids(cls, item_ids: List[str]) -> 'Job':
        items = [Item(item_id=i) for i in item_ids]
        return cls(items=items, total=len(items))

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    @property
    def is_running(self) -> bool:
        return self.state in (RunState.RUNNING, RunState.STOPPING)

    @property
    def current(self) -> Optional[Item]:
        if self.cursor >= len(self.items):
            return None
        return self.items[self.cursor]

    @property
    def at_end(self) -> bool:
        return self.cursor >= len(self.items)

    def mark_processing(self) -> Item:
        with self._lock:
            item = self.current
            if item is None:
                raise IndexError("cursor is past the last item")
            if any(i.status == ItemStatus.PROCESSING for i in self.items):
                raise RuntimeError("another item is already processing")
            item.status = ItemStatus.PROCESSING
            return item

    def record_success(self, item: Item) -> None:
        with self._lock:
            self._finish(item)
            item.status = ItemStatus.SUCCEEDED
            self.succeeded += 1

    def record_failure(self, item: Item, reason: FailureReason, detail: Optional[str] = None) -> None:
        with self._lock:
            self._finish(item)
            item.status = ItemStatus.FAILED
            item.failure_reason = reason
            item.failure_detail = detail
            self.failed += 1

    def _finish(self, item: Item) -> None:
        if item.is_terminal:
            raise RuntimeError(f"item {item.item_id} already finished")
        self.processed += 1

    def release(self, item: Item) -> None:
        """Return an in-flight item to PENDING without counting it (run aborted)."""
        with self._lock:
            if item.status == ItemStatus.PROCESSING:
                item.status = ItemStatus.PENDING

    def advance(self) -> int:
        with self._lock:
            if self.cursor < len(self.items):
                self.cursor += 1
            return self.cursor

    def snapshot(self) -> StatusSnapshot:
        with self._lock:
            return StatusSnapshot(
                is_running=self.is_running,
                processed=self.processed,
                total=self.total,
                succeeded=self.succeeded,
                failed=self.failed,
            )


class ExtractedRecord(BaseModel):
    """
    Fields recovered from one detail view.

    Produced fresh per attempt and handed to the store by value.
    ``has_data`` and ``is_masked`` are derived from the three fields.
    """
    model_config = ConfigDict(frozen=True)

    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    raw_texts: List[str] = Field(default_factory=list)

    @field_validator('raw_texts')
    @classmethod
    def bound_raw_texts(cls, v):
        return list(v[:MAX_RAW_TEXTS])

    @computed_field  # type: ignore[prop-decorator]
    @property
    def has_data(self) -> bool:
        return bool(self.name or self.phone or self.address)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_masked(self) -> bool:
        if not self.has_data:
            return True
        return any(has_mask_marker(v) for v in (self.name, self.phone, self.address) if v)

    def address_preview(self, width: int = 40) -> Optional[str]:
        if not self.address:
            return None
        if len(self.address) <= width:
            return self.address
        return self.address[:width] + '...'


class UnmaskEvent(BaseModel):
    """Lifecycle/progress event delivered to subscribers."""
    type: EventType
    message: Optional[str] = None
    item_id: Optional[str] = None
    item_id_short: Optional[str] = None
    index: Optional[int] = None
    reason: Optional[str] = None
    failure: Optional[FailureReason] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    address_preview: Optional[str] = None
    is_running: Optional[bool] = None
    processed: int = 0
    total: int = 0
    succeeded: int = 0
    failed: int = 0

    @classmethod
    def with_counters(cls, type: EventType, snapshot: StatusSnapshot, **fields) -> 'UnmaskEvent':
        return cls(
            type=type,
            processed=snapshot.processed,
            total=snapshot.total,
            succeeded=snapshot.succeeded,
            failed=snapshot.failed,
            **fields,
        )


class Credential(BaseModel):
    id: str
    display_name: Optional[str] = None

    @field_validator('id', mode='before')
    @classmethod
    def coerce_id(cls, v):
        return str(v)


class CommitResult(BaseModel):
    """Outcome of a store commit. Only ``ok`` decides item success."""
    ok: bool
    fully_resolved: bool = False
    error: Optional[str] = None
