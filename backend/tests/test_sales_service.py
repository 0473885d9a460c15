# Overview: Pytest coverage for sale creation, listing and whole-sale refunds.

import pytest

from posledger.errors import (
    ConflictError,
    InsufficientStockError,
    InvalidPaymentError,
    ItemNotFoundError,
    NotFoundError,
    ValidationError,
)
from posledger.models import LedgerEvent, Product, Sale, StockMovement
from posledger.models.inventory import PRODUCT_STATUS_ACTIVE, PRODUCT_STATUS_OUT_OF_STOCK
from posledger.models.sales import SALE_STATUS_COMPLETED, SALE_STATUS_REFUNDED
from posledger.services import return_service, sales_service

from conftest import SELLER_A, SELLER_B, card, cash


class TestCreateSale:
    def test_sell_three_of_five(self, db_session, item_a):
        sale = sales_service.create_sale(SELLER_A, [{"product_id": item_a.id, "quantity": 3}], card())

        product = db_session.get(Product, item_a.id)
        assert product.quantity == 2
        assert product.status == PRODUCT_STATUS_ACTIVE
        assert sale.status == SALE_STATUS_COMPLETED
        assert sale.sale_number.startswith("POS-")
        assert len(sale.lines) == 1
        assert sale.lines[0].unit_price_cents == 1000
        assert sale.lines[0].line_total_cents == 3000

    def test_totals_balance(self, db_session, make_product):
        a = make_product(price_cents=1999, quantity=10)
        b = make_product(price_cents=250, quantity=10)

        sale = sales_service.create_sale(
            SELLER_A,
            [{"product_id": a.id, "quantity": 2}, {"product_id": b.id, "quantity": 3}],
            card(),
            discount_cents=500,
            tax_rate=0.2,
        )
        assert sale.subtotal_cents == 2 * 1999 + 3 * 250
        # 4748 * 0.2 = 949.6 -> 950
        assert sale.tax_cents == 950
        assert sale.total_cents == sale.subtotal_cents + sale.tax_cents - sale.discount_cents

    def test_default_tax_rate_from_config(self, db_session, item_a):
        sale = sales_service.create_sale(SELLER_A, [{"product_id": item_a.id, "quantity": 1}], card())
        assert sale.tax_rate == pytest.approx(0.20)
        assert sale.tax_cents == 200
        assert sale.currency == "EUR"

    def test_insufficient_stock_rolls_back(self, db_session, make_product):
        plenty = make_product(quantity=10)
        short = make_product(quantity=2)

        with pytest.raises(InsufficientStockError) as exc:
            sales_service.create_sale(
                SELLER_A,
                [{"product_id": plenty.id, "quantity": 4}, {"product_id": short.id, "quantity": 5}],
                card(),
            )

        assert exc.value.item_id == short.id
        assert exc.value.available == 2
        assert db_session.get(Product, plenty.id).quantity == 10
        assert db_session.get(Product, short.id).quantity == 2
        assert db_session.query(Sale).count() == 0
        assert db_session.query(StockMovement).count() == 0

    def test_last_unit_goes_out_of_stock(self, db_session, make_product):
        product = make_product(quantity=1)
        sales_service.create_sale(SELLER_A, [{"product_id": product.id, "quantity": 1}], card())

        product = db_session.get(Product, product.id)
        assert product.quantity == 0
        assert product.status == PRODUCT_STATUS_OUT_OF_STOCK

    def test_untracked_item_not_debited(self, db_session, make_product):
        product = make_product(quantity=0, track_inventory=False)
        sale = sales_service.create_sale(SELLER_A, [{"product_id": product.id, "quantity": 4}], card())

        assert db_session.get(Product, product.id).quantity == 0
        assert sale.lines[0].stock_tracked is False

    def test_cash_change_given(self, db_session, item_a):
        sale = sales_service.create_sale(SELLER_A, [{"product_id": item_a.id, "quantity": 1}], cash(2000))
        assert sale.total_cents == 1200
        assert sale.change_given_cents == 800

    def test_cash_short_is_invalid_payment(self, db_session, item_a):
        with pytest.raises(InvalidPaymentError):
            sales_service.create_sale(SELLER_A, [{"product_id": item_a.id, "quantity": 1}], cash(1000))
        assert db_session.get(Product, item_a.id).quantity == 5

    def test_missing_payment_method(self, db_session, item_a):
        with pytest.raises(InvalidPaymentError):
            sales_service.create_sale(SELLER_A, [{"product_id": item_a.id, "quantity": 1}], {})

    def test_unknown_payment_method(self, db_session, item_a):
        with pytest.raises(InvalidPaymentError):
            sales_service.create_sale(SELLER_A, [{"product_id": item_a.id, "quantity": 1}], {"method": "iou"})

    @pytest.mark.parametrize("items", [[], None, [{"product_id": 1, "quantity": 0}], [{"quantity": 1}]])
    def test_invalid_items(self, db_session, items):
        with pytest.raises(ValidationError):
            sales_service.create_sale(SELLER_A, items, card())

    def test_discount_larger_than_total(self, db_session, item_a):
        with pytest.raises(ValidationError):
            sales_service.create_sale(
                SELLER_A, [{"product_id": item_a.id, "quantity": 1}], card(), discount_cents=1201
            )

    def test_tax_rate_out_of_range(self, db_session, item_a):
        with pytest.raises(ValidationError):
            sales_service.create_sale(SELLER_A, [{"product_id": item_a.id, "quantity": 1}], card(), tax_rate=1.5)

    def test_foreign_item_is_item_not_found(self, db_session, make_product):
        foreign = make_product(SELLER_B, quantity=10)
        with pytest.raises(ItemNotFoundError):
            sales_service.create_sale(SELLER_A, [{"product_id": foreign.id, "quantity": 1}], card())
        assert db_session.get(Product, foreign.id).quantity == 10

    def test_ledger_event_written(self, db_session, item_a):
        sale = sales_service.create_sale(SELLER_A, [{"product_id": item_a.id, "quantity": 1}], card())
        event = db_session.query(LedgerEvent).filter_by(event_type="sale.completed").one()
        assert event.entity_id == sale.id
        assert event.amount_cents == sale.total_cents


class TestRefundSale:
    def test_refund_restores_stock(self, db_session, item_a):
        sale = sales_service.create_sale(SELLER_A, [{"product_id": item_a.id, "quantity": 5}], card())
        assert db_session.get(Product, item_a.id).status == PRODUCT_STATUS_OUT_OF_STOCK

        refunded = sales_service.refund_sale(SELLER_A, sale.id)

        product = db_session.get(Product, item_a.id)
        assert refunded.status == SALE_STATUS_REFUNDED
        assert refunded.refunded_at is not None
        assert product.quantity == 5
        assert product.status == PRODUCT_STATUS_ACTIVE
        assert product.sales_count == 0

    def test_second_refund_conflicts(self, db_session, item_a):
        sale = sales_service.create_sale(SELLER_A, [{"product_id": item_a.id, "quantity": 2}], card())
        sales_service.refund_sale(SELLER_A, sale.id)

        with pytest.raises(ConflictError):
            sales_service.refund_sale(SELLER_A, sale.id)
        assert db_session.get(Product, item_a.id).quantity == 5

    def test_refund_skips_units_already_returned(self, db_session, item_a):
        sale = sales_service.create_sale(SELLER_A, [{"product_id": item_a.id, "quantity": 3}], card())
        ret = return_service.create_return(
            SELLER_A, [{"product_id": item_a.id, "quantity": 1}], "exchange", sale_id=sale.id
        )
        return_service.approve_return(SELLER_A, ret.id)
        assert db_session.get(Product, item_a.id).quantity == 3

        sales_service.refund_sale(SELLER_A, sale.id)
        assert db_session.get(Product, item_a.id).quantity == 5

    def test_refund_foreign_sale_not_found(self, db_session, item_a):
        sale = sales_service.create_sale(SELLER_A, [{"product_id": item_a.id, "quantity": 1}], card())
        with pytest.raises(NotFoundError):
            sales_service.refund_sale(SELLER_B, sale.id)


class TestListSales:
    def test_filters_and_search(self, db_session, make_product):
        drill = make_product(name="Cordless drill", quantity=10)
        paint = make_product(name="Wall paint", quantity=10)

        s1 = sales_service.create_sale(
            SELLER_A, [{"product_id": drill.id, "quantity": 1}], card(), customer={"name": "Marie Curie"}
        )
        s2 = sales_service.create_sale(SELLER_A, [{"product_id": paint.id, "quantity": 1}], cash(5000))
        sales_service.refund_sale(SELLER_A, s2.id)

        everything = sales_service.list_sales(SELLER_A)
        assert [s["id"] for s in everything["items"]] == [s2.id, s1.id]
        assert everything["pagination"]["total"] == 2

        assert [s["id"] for s in sales_service.list_sales(SELLER_A, status="completed")["items"]] == [s1.id]
        assert [s["id"] for s in sales_service.list_sales(SELLER_A, payment_method="cash")["items"]] == [s2.id]
        assert [s["id"] for s in sales_service.list_sales(SELLER_A, search="DRILL")["items"]] == [s1.id]
        assert [s["id"] for s in sales_service.list_sales(SELLER_A, search="curie")["items"]] == [s1.id]
        assert sales_service.list_sales(SELLER_B)["items"] == []

    def test_pagination(self, db_session, make_product):
        product = make_product(quantity=50)
        for _ in range(3):
            sales_service.create_sale(SELLER_A, [{"product_id": product.id, "quantity": 1}], card())

        page = sales_service.list_sales(SELLER_A, page=2, limit=2)
        assert page["count"] == 1
        assert page["pagination"]["total_pages"] == 2
        assert page["pagination"]["has_prev"] is True

    def test_bad_date_filter(self, db_session):
        with pytest.raises(ValidationError):
            sales_service.list_sales(SELLER_A, date_from="yesterday")
