# Overview: HTTP-level tests for the POS ledger API (status codes, error envelope, seller scoping).

from conftest import card, cash


def _sell(client, headers, product_id, quantity=1, payment=None):
    return client.post(
        "/api/pos/sales",
        json={"items": [{"product_id": product_id, "quantity": quantity}], "payment": payment or card()},
        headers=headers,
    )


def test_missing_seller_header_is_401(client, db_session):
    resp = client.get("/api/pos/sales")
    assert resp.status_code == 401
    assert resp.get_json()["error"] == "UNAUTHORIZED"


def test_non_numeric_seller_header_is_401(client, db_session):
    resp = client.get("/api/pos/sales", headers={"X-Seller-Id": "abc"})
    assert resp.status_code == 401


def test_create_and_fetch_sale(client, db_session, item_a, headers_a):
    resp = _sell(client, headers_a, item_a.id, 2, cash(5000))
    assert resp.status_code == 201

    sale = resp.get_json()["sale"]
    assert sale["totals"]["total_cents"] == 2400
    assert sale["payment"]["change_given_cents"] == 2600
    assert sale["items"][0]["quantity"] == 2

    fetched = client.get(f"/api/pos/sales/{sale['id']}", headers=headers_a)
    assert fetched.status_code == 200
    assert fetched.get_json()["sale"]["sale_number"] == sale["sale_number"]


def test_insufficient_stock_envelope(client, db_session, item_a, headers_a):
    resp = _sell(client, headers_a, item_a.id, 6)
    assert resp.status_code == 400
    body = resp.get_json()
    assert body["error"] == "INSUFFICIENT_STOCK"
    assert body["details"]["available"] == 5


def test_non_object_body_is_validation_error(client, db_session, headers_a):
    resp = client.post("/api/pos/sales", json=[1, 2], headers=headers_a)
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "VALIDATION_ERROR"


def test_cross_seller_access_is_404(client, db_session, item_a, headers_a, headers_b):
    sale_id = _sell(client, headers_a, item_a.id).get_json()["sale"]["id"]

    assert client.get(f"/api/pos/sales/{sale_id}", headers=headers_b).status_code == 404
    assert client.patch(f"/api/pos/sales/{sale_id}/refund", headers=headers_b).status_code == 404
    assert _sell(client, headers_b, item_a.id).get_json()["error"] == "ITEM_NOT_FOUND"


def test_double_refund_is_409(client, db_session, item_a, headers_a):
    sale_id = _sell(client, headers_a, item_a.id).get_json()["sale"]["id"]

    first = client.patch(f"/api/pos/sales/{sale_id}/refund", headers=headers_a)
    assert first.status_code == 200
    assert first.get_json()["sale"]["status"] == "refunded"

    second = client.patch(f"/api/pos/sales/{sale_id}/refund", headers=headers_a)
    assert second.status_code == 409
    assert second.get_json()["error"] == "CONFLICT"


def test_return_workflow(client, db_session, item_a, headers_a):
    sale_id = _sell(client, headers_a, item_a.id, 2).get_json()["sale"]["id"]

    created = client.post(
        "/api/pos/returns",
        json={"sale_id": sale_id, "items": [{"product_id": item_a.id, "quantity": 1}], "resolution": "refund"},
        headers=headers_a,
    )
    assert created.status_code == 201
    return_id = created.get_json()["return"]["id"]

    approved = client.patch(f"/api/pos/returns/{return_id}/approve", headers=headers_a)
    assert approved.status_code == 200
    assert client.patch(f"/api/pos/returns/{return_id}/approve", headers=headers_a).status_code == 409

    movements = client.get(f"/api/pos/stock/{item_a.id}/movements", headers=headers_a).get_json()["movements"]
    assert [m["movement_type"] for m in movements].count("REFUND") == 1


def test_stock_adjust_and_alerts(client, db_session, item_a, headers_a):
    resp = client.patch(
        "/api/pos/stock/adjust",
        json={"product_id": item_a.id, "adjustment": -3, "reason": "Breakage"},
        headers=headers_a,
    )
    assert resp.status_code == 200
    adjustment = resp.get_json()["adjustment"]
    assert adjustment["previous_quantity"] == 5
    assert adjustment["new_quantity"] == 2

    too_far = client.patch(
        "/api/pos/stock/adjust",
        json={"product_id": item_a.id, "adjustment": -3, "reason": "Breakage"},
        headers=headers_a,
    )
    assert too_far.status_code == 400

    alerts = client.get("/api/pos/stock/alerts", headers=headers_a).get_json()
    assert alerts["count"] == 1


def test_invoice_lifecycle(client, db_session, headers_a):
    created = client.post(
        "/api/pos/invoices",
        json={
            "customer": {"name": "Client"},
            "seller_info": {"company_name": "Shop"},
            "payment": {"method": "transfer"},
            "items": [{"description": "Service", "quantity": 1, "unit_price_cents": 10000}],
        },
        headers=headers_a,
    )
    assert created.status_code == 201
    invoice = created.get_json()["invoice"]
    assert invoice["totals"]["total_cents"] == 12000

    paid = client.patch(f"/api/pos/invoices/{invoice['id']}/pay", json={"reference": "VIR-1"}, headers=headers_a)
    assert paid.status_code == 200
    assert client.patch(f"/api/pos/invoices/{invoice['id']}/cancel", headers=headers_a).status_code == 409

    stats = client.get("/api/pos/invoices/stats", headers=headers_a).get_json()["stats"]
    assert stats["paid"]["count"] == 1


def test_accounting_export_download(client, db_session, item_a, headers_a):
    _sell(client, headers_a, item_a.id)

    resp = client.get("/api/pos/accounting/export?format=fec&dateTo=2099-12-31", headers=headers_a)
    assert resp.status_code == 200
    assert resp.headers["Content-Disposition"] == 'attachment; filename="FEC20991231.txt"'
    assert resp.headers["X-Sale-Count"] == "1"
    assert resp.get_data(as_text=True).startswith("JournalCode\t")

    bad = client.get("/api/pos/accounting/export?format=pdf", headers=headers_a)
    assert bad.status_code == 400


def test_reports_and_dashboard(client, db_session, item_a, headers_a):
    _sell(client, headers_a, item_a.id)

    report = client.get("/api/pos/reports?period=day", headers=headers_a)
    assert report.status_code == 200
    assert report.get_json()["report"]["summary"]["sale_count"] == 1

    assert client.get("/api/pos/reports?period=decade", headers=headers_a).status_code == 400
    assert client.get("/api/pos/dashboard", headers=headers_a).status_code == 200


def test_health_needs_no_seller(client, db_session):
    resp = client.get("/api/pos/health")
    assert resp.status_code == 200
    assert resp.get_json()["checks"]["database"]["status"] == "healthy"


def test_ledger_trail_for_sale(client, db_session, item_a, headers_a, headers_b):
    sale_id = _sell(client, headers_a, item_a.id).get_json()["sale"]["id"]
    client.patch(f"/api/pos/sales/{sale_id}/refund", headers=headers_a)

    resp = client.get(f"/api/pos/ledger?entity_type=sale&entity_id={sale_id}", headers=headers_a)
    assert resp.status_code == 200
    assert [e["event_type"] for e in resp.get_json()["items"]] == ["sale.completed", "sale.refunded"]

    foreign = client.get(f"/api/pos/ledger?entity_type=sale&entity_id={sale_id}", headers=headers_b)
    assert foreign.get_json()["items"] == []
