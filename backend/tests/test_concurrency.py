# Overview: Threaded races against a file-backed SQLite database.

import threading

import pytest

from posledger import create_app
from posledger.errors import ConflictError, InsufficientStockError
from posledger.extensions import db
from posledger.models import Product, StockMovement
from posledger.services import inventory_service, invoice_service, return_service, sales_service

from conftest import SELLER_A, card


@pytest.fixture
def file_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrency.db'}",
        'DEFAULT_TAX_RATE': 0.20,
        'RETURNS_REQUIRE_SALE': False,
    })
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def _race(app, target, count):
    """Run ``target`` in ``count`` threads at once; collect results or exceptions."""
    results = []
    lock = threading.Lock()
    barrier = threading.Barrier(count)

    def worker():
        with app.app_context():
            try:
                barrier.wait()
                outcome = target()
            except Exception as exc:
                outcome = exc
            finally:
                db.session.remove()
            with lock:
                results.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


def test_two_sales_race_for_last_unit(file_app):
    with file_app.app_context():
        product_id = inventory_service.create_product(
            SELLER_A, sku="LAST-1", name="Last one", price_cents=1000, quantity=1
        ).id

    def sell():
        sale = sales_service.create_sale(SELLER_A, [{"product_id": product_id, "quantity": 1}], card())
        return sale.sale_number

    results = _race(file_app, sell, 2)

    sold = [r for r in results if isinstance(r, str)]
    refused = [r for r in results if isinstance(r, InsufficientStockError)]
    assert len(sold) == 1
    assert len(refused) == 1

    with file_app.app_context():
        assert db.session.get(Product, product_id).quantity == 0


def test_concurrent_invoice_numbers_are_unique(file_app):
    def issue():
        invoice = invoice_service.create_invoice(
            SELLER_A,
            {"name": "Client"},
            {"company_name": "Shop"},
            {"method": "transfer"},
            items=[{"description": "Service", "quantity": 1, "unit_price_cents": 1000}],
        )
        return invoice.invoice_number

    results = _race(file_app, issue, 8)

    assert not [r for r in results if isinstance(r, Exception)]
    assert len(set(results)) == 8


def test_double_approve_credits_once(file_app):
    with file_app.app_context():
        product_id = inventory_service.create_product(
            SELLER_A, sku="RET-1", name="Returnable", price_cents=1000, quantity=3
        ).id
        sale = sales_service.create_sale(SELLER_A, [{"product_id": product_id, "quantity": 2}], card())
        return_id = return_service.create_return(
            SELLER_A, [{"product_id": product_id, "quantity": 1}], "exchange", sale_id=sale.id
        ).id

    results = _race(file_app, lambda: return_service.approve_return(SELLER_A, return_id).status, 2)

    assert results.count("approved") == 1
    assert len([r for r in results if isinstance(r, ConflictError)]) == 1

    with file_app.app_context():
        assert db.session.get(Product, product_id).quantity == 2
        assert db.session.query(StockMovement).filter_by(movement_type="RETURN").count() == 1
