from __future__ import annotations

import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from src.errors import StoreError
from src.schemas import ExtractedRecord
from src.store import SupabaseStore, merge_recipient, needs_unmask


BASE = "https://proj.supabase.co"


class _MockTransport(httpx.BaseTransport):
    """Routes on (method, table, first filter) and records every request."""

    def __init__(self, routes: dict[tuple[str, str], tuple[int, object]]):
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def handle_request(self, request: httpx.Request) -> httpx.Response:  # type: ignore[override]
        self.requests.append(request)
        table = urlparse(str(request.url)).path.rsplit("/", 1)[-1]
        status, body = self.routes.get((request.method, table), (404, {"message": "not found"}))
        if isinstance(body, (bytes, str)):
            return httpx.Response(status, content=body, request=request)
        return httpx.Response(status, json=body, request=request)


def _store(routes):
    transport = _MockTransport(routes)
    return SupabaseStore(BASE, "anon-key", client=httpx.Client(transport=transport)), transport


def _order(order_id, status="IN_TRANSIT", name="J***n T**", phone="(+60)12*****89", address="***", unmasked=False):
    return {
        "order_id": order_id,
        "is_unmasked": unmasked,
        "order_data": {
            "status": status,
            "recipient_address": {"name": name, "phone_number": phone, "full_address": address},
        },
    }


def _params(request):
    return {k: v[0] for k, v in parse_qs(urlparse(str(request.url)).query).items()}


def test_requires_url_and_key():
    with pytest.raises(StoreError):
        SupabaseStore("", "key")
    with pytest.raises(StoreError):
        SupabaseStore(BASE, "")


def test_lookup_credential_follows_user_to_credential():
    store, transport = _store({
        ("GET", "users"): (200, [{"id": "u-1"}]),
        ("GET", "credentials"): (200, [{"id": 42, "shop_name": "Kedai Ali"}]),
    })
    cred = store.lookup_credential("ali@example.my")
    assert cred.id == "42"
    assert cred.display_name == "Kedai Ali"
    users_req, creds_req = transport.requests
    assert _params(users_req) == {"email": "eq.ali@example.my", "select": "id"}
    assert _params(creds_req)["user_id"] == "eq.u-1"
    assert users_req.headers["apikey"] == "anon-key"
    assert users_req.headers["Authorization"] == "Bearer anon-key"


def test_lookup_unknown_user():
    store, transport = _store({("GET", "users"): (200, [])})
    assert store.lookup_credential("nobody@example.my") is None
    assert len(transport.requests) == 1


def test_list_pending_filters_orders():
    store, _ = _store({
        ("GET", "orders"): (200, [
            _order("A1"),
            _order("A2", status="UNPAID"),
            _order("A3", unmasked=True),
            _order("A4", name="Ali", phone="+60123456789", address="Lot 5, Taman Melati"),
            _order("A5", address=None),
        ]),
    })
    assert store.list_pending_items("42") == ["A1", "A5"]


@pytest.mark.parametrize("status,body", [(500, {"message": "boom"}), (200, b"not json"), (200, {"id": 1})])
def test_read_failures_raise_store_error(status, body):
    store, _ = _store({("GET", "users"): (status, body)})
    with pytest.raises(StoreError):
        store.lookup_credential("ali@example.my")


def test_commit_merges_and_patches():
    store, transport = _store({
        ("GET", "orders"): (200, [{"order_data": _order("A1")["order_data"]}]),
        ("PATCH", "orders"): (204, b""),
    })
    record = ExtractedRecord(name="John Tan", phone="+60123456789", address="12, Jalan Besar, 50000 Kuala Lumpur")
    result = store.commit_result("A1", record)

    assert result.ok is True
    assert result.fully_resolved is True
    patch = transport.requests[-1]
    assert patch.method == "PATCH"
    assert _params(patch) == {"order_id": "eq.A1"}
    assert patch.headers["Prefer"] == "return=minimal"
    body = json.loads(patch.content)
    assert body["customer_name"] == "John Tan"
    assert body["is_unmasked"] is True
    assert body["order_data"]["status"] == "IN_TRANSIT"
    assert body["order_data"]["recipient_address"]["phone_number"] == "+60123456789"


def test_partial_commit_keeps_stored_fields():
    store, transport = _store({
        ("GET", "orders"): (200, [{"order_data": _order("A1")["order_data"]}]),
        ("PATCH", "orders"): (204, b""),
    })
    result = store.commit_result("A1", ExtractedRecord(phone="+60123456789"))
    assert result.ok is True
    assert result.fully_resolved is False
    body = json.loads(transport.requests[-1].content)
    assert body["customer_name"] == "J***n T**"
    assert body["is_unmasked"] is False


@pytest.mark.parametrize("routes,fragment", [
    ({("GET", "orders"): (500, {"message": "down"})}, "HTTP 500"),
    ({("GET", "orders"): (200, [])}, "not found"),
    ({("GET", "orders"): (200, [{"order_data": {}}]), ("PATCH", "orders"): (401, {"message": "jwt"})}, "HTTP 401"),
])
def test_commit_failures_are_reported_not_raised(routes, fragment):
    store, _ = _store(routes)
    result = store.commit_result("A1", ExtractedRecord(name="Ali"))
    assert result.ok is False
    assert fragment in result.error


def test_needs_unmask_and_merge_helpers():
    assert needs_unmask(_order("A1")) is True
    assert needs_unmask({"order_id": "A1", "order_data": {"status": "IN_TRANSIT"}}) is False
    merged, resolved = merge_recipient(None, ExtractedRecord(name="Ali", phone="+60123456789", address="Lot 5"))
    assert resolved is True
    assert merged["recipient_address"]["full_address"] == "Lot 5"
