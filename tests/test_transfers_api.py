import uuid

from app.stockflow.repos.audit import AuditRepository
from tests.stock_helpers import (
    PASSWORD,
    auth_headers,
    create_item,
    create_user,
    fulfillment_setup,
    grant_warehouse,
    login,
    seed_defaults,
)


def _superadmin_token(client, db_session):
    seed_defaults(db_session)
    return login(client, "superadmin", "change-me")


def _create_payload(source, destination, item, quantity=30):
    return {
        "from_warehouse_id": str(source.id),
        "to_warehouse_id": str(destination.id),
        "notes": "Replenish fulfillment",
        "items": [{"item_id": str(item.id), "quantity": quantity}],
    }


def _create(client, token, payload, key=None):
    return client.post(
        "/stockflow/transfers",
        headers=auth_headers(token, key or f"create-{uuid.uuid4()}"),
        json=payload,
    )


def test_transfer_full_lifecycle(client, db_session):
    token = _superadmin_token(client, db_session)
    operational, central, item = fulfillment_setup(db_session)

    created = _create(client, token, _create_payload(central, operational, item))
    assert created.status_code == 201
    body = created.json()
    assert body["status"] == "DRAFT"
    assert body["transfer_number"].startswith("TRF-")
    assert body["created_by_name"] == "Superadmin"
    assert body["items"][0]["sku"] == "SKU-X"
    assert body["items"][0]["source_available"] == 100
    transfer_id = body["id"]

    preview = client.post(f"/stockflow/transfers/{transfer_id}/preview", headers=auth_headers(token))
    assert preview.status_code == 200
    preview_body = preview.json()
    assert preview_body["can_execute"] is True
    assert preview_body["violations"] == []
    line = preview_body["items"][0]
    assert (line["from_current"], line["from_after"], line["to_current"], line["to_after"]) == (100, 70, 0, 30)

    approved = client.post(f"/stockflow/transfers/{transfer_id}/approve", headers=auth_headers(token))
    assert approved.status_code == 200
    assert approved.json()["status"] == "PENDING"
    assert approved.json()["approved_by_name"] == "Superadmin"

    executed = client.post(f"/stockflow/transfers/{transfer_id}/execute", headers=auth_headers(token))
    assert executed.status_code == 200
    executed_body = executed.json()
    assert executed_body["transfer"]["status"] == "COMPLETED"
    assert executed_body["summary"] == {"items_transferred": 1, "stock_movements_created": 2}
    snapshot = executed_body["transfer"]["items"][0]
    assert (snapshot["from_stock_before"], snapshot["from_stock_after"]) == (100, 70)
    assert (snapshot["to_stock_before"], snapshot["to_stock_after"]) == (0, 30)

    detail = client.get(f"/stockflow/transfers/{transfer_id}", headers=auth_headers(token))
    assert detail.status_code == 200
    assert detail.json()["completed_at"] is not None

    actions = [event.action for event in AuditRepository(db_session).list_for_entity("transfer", transfer_id)]
    assert {"transfer.create", "transfer.approve", "transfer.execute"} <= set(actions)


def test_execute_insufficient_stock_returns_violations(client, db_session):
    token = _superadmin_token(client, db_session)
    operational, central, item = fulfillment_setup(db_session, central_stock=30)
    transfer_id = _create(client, token, _create_payload(central, operational, item, quantity=50)).json()["id"]
    client.post(f"/stockflow/transfers/{transfer_id}/approve", headers=auth_headers(token))

    response = client.post(f"/stockflow/transfers/{transfer_id}/execute", headers=auth_headers(token))

    assert response.status_code == 400
    payload = response.json()
    assert payload["code"] == "INSUFFICIENT_STOCK"
    assert payload["trace_id"]
    violation = payload["details"]["violations"][0]
    assert (violation["required"], violation["available"]) == (50, 30)


def test_preview_reports_violations_without_failing(client, db_session):
    token = _superadmin_token(client, db_session)
    operational, central, item = fulfillment_setup(db_session, central_stock=10)
    transfer_id = _create(client, token, _create_payload(central, operational, item, quantity=25)).json()["id"]

    response = client.post(f"/stockflow/transfers/{transfer_id}/preview", headers=auth_headers(token))

    assert response.status_code == 200
    body = response.json()
    assert body["can_execute"] is False
    assert body["items"][0]["has_sufficient_stock"] is False
    assert [v["reason_code"] for v in body["violations"]] == ["INSUFFICIENT_STOCK"]


def test_execute_unknown_transfer_is_404(client, db_session):
    token = _superadmin_token(client, db_session)

    response = client.post(f"/stockflow/transfers/{uuid.uuid4()}/execute", headers=auth_headers(token))

    assert response.status_code == 404
    assert response.json()["code"] == "TRANSFER_NOT_FOUND"


def test_execute_draft_is_rejected(client, db_session):
    token = _superadmin_token(client, db_session)
    operational, central, item = fulfillment_setup(db_session)
    transfer_id = _create(client, token, _create_payload(central, operational, item)).json()["id"]

    response = client.post(f"/stockflow/transfers/{transfer_id}/execute", headers=auth_headers(token))

    assert response.status_code == 400
    assert response.json()["code"] == "TRANSFER_INVALID_STATE"


def test_create_requires_idempotency_key(client, db_session):
    token = _superadmin_token(client, db_session)
    operational, central, item = fulfillment_setup(db_session)

    response = client.post(
        "/stockflow/transfers",
        headers=auth_headers(token),
        json=_create_payload(central, operational, item),
    )

    assert response.status_code == 400
    assert response.json()["code"] == "IDEMPOTENCY_KEY_REQUIRED"


def test_create_replays_with_same_key(client, db_session):
    token = _superadmin_token(client, db_session)
    operational, central, item = fulfillment_setup(db_session)
    payload = _create_payload(central, operational, item)

    first = _create(client, token, payload, key="transfer-create-1")
    second = _create(client, token, payload, key="transfer-create-1")

    assert first.status_code == 201
    assert second.status_code == 201
    assert second.headers["X-Idempotency-Result"] == "IDEMPOTENCY_REPLAY"
    assert second.json()["id"] == first.json()["id"]

    listing = client.get("/stockflow/transfers", headers=auth_headers(token))
    assert listing.json()["total"] == 1


def test_create_key_reuse_with_different_payload(client, db_session):
    token = _superadmin_token(client, db_session)
    operational, central, item = fulfillment_setup(db_session)

    _create(client, token, _create_payload(central, operational, item, quantity=5), key="transfer-create-2")
    response = _create(client, token, _create_payload(central, operational, item, quantity=6), key="transfer-create-2")

    assert response.status_code == 409
    assert response.json()["code"] == "IDEMPOTENCY_KEY_REUSED_WITH_DIFFERENT_PAYLOAD"


def test_execute_replay_does_not_move_stock_twice(client, db_session):
    token = _superadmin_token(client, db_session)
    operational, central, item = fulfillment_setup(db_session)
    transfer_id = _create(client, token, _create_payload(central, operational, item)).json()["id"]
    client.post(f"/stockflow/transfers/{transfer_id}/approve", headers=auth_headers(token))

    first = client.post(f"/stockflow/transfers/{transfer_id}/execute", headers=auth_headers(token, "exec-1"))
    second = client.post(f"/stockflow/transfers/{transfer_id}/execute", headers=auth_headers(token, "exec-1"))

    assert first.status_code == 200
    assert second.status_code == 200
    assert second.headers["X-Idempotency-Result"] == "IDEMPOTENCY_REPLAY"
    assert second.json()["transfer"]["id"] == first.json()["transfer"]["id"]
    assert second.json()["summary"] == first.json()["summary"]

    stock = client.get(f"/stockflow/warehouses/{central.id}/stock", headers=auth_headers(token))
    assert stock.json()["rows"][0]["current_stock"] == 70


def test_create_rejects_same_warehouse(client, db_session):
    token = _superadmin_token(client, db_session)
    _operational, central, item = fulfillment_setup(db_session)

    response = _create(client, token, _create_payload(central, central, item))

    assert response.status_code == 400
    assert response.json()["code"] == "TRANSFER_PRECONDITION_FAILED"
    assert response.json()["details"]["violations"][0]["reason_code"] == "SAME_WAREHOUSE"


def test_create_rejects_composite_and_duplicate_lines(client, db_session):
    token = _superadmin_token(client, db_session)
    operational, central, item = fulfillment_setup(db_session)
    bundle = create_item(db_session, sku="BUNDLE-API", is_composite=True)
    payload = _create_payload(central, operational, item)
    payload["items"] += [{"item_id": str(item.id), "quantity": 1}, {"item_id": str(bundle.id), "quantity": 1}]

    response = _create(client, token, payload)

    assert response.status_code == 400
    codes = sorted(v["reason_code"] for v in response.json()["details"]["violations"])
    assert codes == ["COMPOSITE_ITEM", "DUPLICATE_ITEM"]


def test_create_rejects_non_positive_quantity(client, db_session):
    token = _superadmin_token(client, db_session)
    operational, central, item = fulfillment_setup(db_session)

    response = _create(client, token, _create_payload(central, operational, item, quantity=0))

    assert response.status_code == 422
    assert response.json()["code"] == "VALIDATION_ERROR"


def test_create_unknown_item_is_404(client, db_session):
    token = _superadmin_token(client, db_session)
    operational, central, _item = fulfillment_setup(db_session)
    payload = _create_payload(central, operational, _item)
    payload["items"][0]["item_id"] = str(uuid.uuid4())

    response = _create(client, token, payload)

    assert response.status_code == 404
    assert response.json()["code"] == "ITEM_NOT_FOUND"


def test_update_only_while_draft(client, db_session):
    token = _superadmin_token(client, db_session)
    operational, central, item = fulfillment_setup(db_session)
    transfer_id = _create(client, token, _create_payload(central, operational, item)).json()["id"]

    updated = client.patch(
        f"/stockflow/transfers/{transfer_id}",
        headers=auth_headers(token),
        json={"notes": "Only twelve", "items": [{"item_id": str(item.id), "quantity": 12}]},
    )
    assert updated.status_code == 200
    assert updated.json()["notes"] == "Only twelve"
    assert [row["quantity"] for row in updated.json()["items"]] == [12]

    client.post(f"/stockflow/transfers/{transfer_id}/approve", headers=auth_headers(token))
    rejected = client.patch(
        f"/stockflow/transfers/{transfer_id}",
        headers=auth_headers(token),
        json={"notes": "Too late"},
    )
    assert rejected.status_code == 400
    assert rejected.json()["code"] == "TRANSFER_INVALID_STATE"


def test_cancel_then_execute_is_rejected(client, db_session):
    token = _superadmin_token(client, db_session)
    operational, central, item = fulfillment_setup(db_session)
    transfer_id = _create(client, token, _create_payload(central, operational, item)).json()["id"]

    cancelled = client.post(f"/stockflow/transfers/{transfer_id}/cancel", headers=auth_headers(token))
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "CANCELLED"

    response = client.post(f"/stockflow/transfers/{transfer_id}/execute", headers=auth_headers(token))
    assert response.status_code == 400
    assert response.json()["code"] == "TRANSFER_INVALID_STATE"


def test_list_filters_by_status(client, db_session):
    token = _superadmin_token(client, db_session)
    operational, central, item = fulfillment_setup(db_session)
    first = _create(client, token, _create_payload(central, operational, item, quantity=1)).json()["id"]
    _create(client, token, _create_payload(central, operational, item, quantity=2))
    client.post(f"/stockflow/transfers/{first}/approve", headers=auth_headers(token))

    pending = client.get("/stockflow/transfers", params={"status": "pending"}, headers=auth_headers(token))
    assert pending.status_code == 200
    assert [row["id"] for row in pending.json()["rows"]] == [first]

    invalid = client.get("/stockflow/transfers", params={"status": "SHIPPED"}, headers=auth_headers(token))
    assert invalid.status_code == 422
    assert invalid.json()["code"] == "VALIDATION_ERROR"


def test_permission_denied_for_read_only_role(client, db_session):
    seed_defaults(db_session)
    operational, central, item = fulfillment_setup(db_session)
    viewer = create_user(db_session, suffix="viewer", role="USER")
    token = login(client, viewer.username, PASSWORD)

    response = _create(client, token, _create_payload(central, operational, item))

    assert response.status_code == 403
    assert response.json()["code"] == "PERMISSION_DENIED"
    assert response.json()["details"] == {"permission": "TRANSFER_CREATE"}


def test_warehouse_scope_is_enforced(client, db_session):
    seed_defaults(db_session)
    operational, central, item = fulfillment_setup(db_session)
    operator = create_user(db_session, suffix="scoped-operator", role="OPERATOR")
    grant_warehouse(db_session, operator, central)
    token = login(client, operator.username, PASSWORD)

    response = _create(client, token, _create_payload(central, operational, item))

    assert response.status_code == 403
    assert response.json()["code"] == "WAREHOUSE_ACCESS_DENIED"
    assert response.json()["details"] == {"warehouse_ids": [str(operational.id)]}


def test_requests_without_token_are_rejected(client):
    response = client.get("/stockflow/transfers")

    assert response.status_code == 401
