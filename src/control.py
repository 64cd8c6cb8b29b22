"""
Control surface for a running unmasker.

Request/response messages (plain dicts on the wire, validated with pydantic)
and a persistent subscription channel for lifecycle events:

    PING          -> {"type": "PONG", "success": true, "version": ...}
    START_UNMASK  -> {"success": true, "total": N} | {"error": "..."}
    STOP_UNMASK   -> {"stopped": true}
    GET_STATUS    -> {"isRunning", "processed", "total", "succeeded", "success", "failed"}
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from src.broadcast import QueueChannel
from src.errors import AlreadyRunning, RunError, StoreError
from src.pipeline.orchestrator import ItemOrchestrator
from src.schemas import EventType, StatusSnapshot, UnmaskEvent


VERSION = "1.0.0"


class StartUnmaskRequest(BaseModel):
    """Either explicit ids (web app) or an account to look up (popup flow)."""
    order_ids: Optional[List[str]] = Field(default=None, alias="orderIds")
    account: Optional[str] = Field(default=None, alias="email")

    model_config = {"populate_by_name": True}

    @field_validator('order_ids', mode='before')
    @classmethod
    def coerce_ids(cls, v):
        # order numbers sometimes arrive as JSON numbers
        if isinstance(v, (list, tuple)):
            return [str(i) for i in v if i is not None]
        return v

    @model_validator(mode='after')
    def one_source(self):
        if self.order_ids is None and not self.account:
            # Treat as an empty id list so the orchestrator reports EmptyInput
            self.order_ids = []
        return self


class ControlService:
    def __init__(self, orchestrator: ItemOrchestrator, *, version: str = VERSION) -> None:
        self.orchestrator = orchestrator
        self.version = version

    @property
    def broadcaster(self):
        return self.orchestrator.broadcaster

    # -------------------------
    # Request/response
    # -------------------------
    def handle(self, message: Dict[str, Any]) -> Dict[str, Any]:
        mtype = (message or {}).get("type")
        if mtype == "PING":
            return self.ping()
        if mtype == "START_UNMASK":
            try:
                req = StartUnmaskRequest.model_validate(message)
            except ValidationError as e:
                return {"error": f"Invalid START_UNMASK message: {e.errors()[0]['msg']}"}
            if req.account and req.order_ids is None:
                return self.start_for_account(req.account)
            return self.start(req.order_ids or [])
        if mtype == "STOP_UNMASK":
            return self.stop()
        if mtype == "GET_STATUS":
            return self.status()
        return {"error": f"Unknown message type: {mtype}"}

    def ping(self) -> Dict[str, Any]:
        return {"type": "PONG", "success": True, "version": self.version}

    def start(self, order_ids: List[str]) -> Dict[str, Any]:
        try:
            total = self.orchestrator.start(order_ids)
        except RunError as e:
            return {"error": str(e)}
        return {"success": True, "total": total}

    def start_for_account(self, account: str) -> Dict[str, Any]:
        """Resolve the account's credential, list its pending orders and start on them."""
        if self.orchestrator.job.is_running:
            error = AlreadyRunning()
            self.orchestrator.reject(error)
            return {"error": str(error)}
        store = self.orchestrator.store
        try:
            credential = store.lookup_credential(account)
            if credential is None:
                return {"error": "Email not found. Please check your email."}
            item_ids = store.list_pending_items(credential.id)
        except StoreError as e:
            return {"error": str(e)}
        if not item_ids:
            self.broadcaster.publish(UnmaskEvent.with_counters(
                EventType.COMPLETED, StatusSnapshot(), message="No orders need unmasking!", is_running=False,
            ))
            return {"success": True, "total": 0, "message": "No orders to process"}
        response = self.start(item_ids)
        if credential.display_name and "success" in response:
            response["shopName"] = credential.display_name
        return response

    def stop(self) -> Dict[str, Any]:
        self.orchestrator.stop()
        return {"stopped": True}

    def status(self) -> Dict[str, Any]:
        return self.orchestrator.status().to_wire()

    # -------------------------
    # Subscription channel
    # -------------------------
    def connect(self, maxsize: int = 1000) -> QueueChannel:
        """Attach a channel; it gets a CONNECTED snapshot, then only future events."""
        channel = QueueChannel(maxsize=maxsize)
        snap = self.orchestrator.status()
        channel(UnmaskEvent.with_counters(EventType.CONNECTED, snap, is_running=snap.is_running))
        self.broadcaster.subscribe(channel)
        return channel

    def disconnect(self, channel: QueueChannel) -> None:
        channel.close()
        self.broadcaster.unsubscribe(channel)
