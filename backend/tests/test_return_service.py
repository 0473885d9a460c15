# Overview: Pytest coverage for the return workflow (create, approve-once, reject, complete).

import pytest

from posledger.errors import ConflictError, ItemNotFoundError, NotFoundError, ValidationError
from posledger.models import LedgerEvent, Product, Sale, StockMovement
from posledger.models.documents import (
    RETURN_STATUS_APPROVED,
    RETURN_STATUS_COMPLETED,
    RETURN_STATUS_PENDING,
    RETURN_STATUS_REJECTED,
)
from posledger.models.inventory import PRODUCT_STATUS_ACTIVE, PRODUCT_STATUS_OUT_OF_STOCK
from posledger.models.sales import SALE_STATUS_COMPLETED, SALE_STATUS_PARTIAL_REFUND, SALE_STATUS_REFUNDED
from posledger.services import return_service, sales_service

from conftest import SELLER_A, SELLER_B, card


@pytest.fixture
def sale_of_three(db_session, item_a):
    return sales_service.create_sale(SELLER_A, [{"product_id": item_a.id, "quantity": 3}], card())


class TestCreateReturn:
    def test_create_is_pending_without_stock_effect(self, db_session, item_a, sale_of_three):
        ret = return_service.create_return(
            SELLER_A, [{"product_id": item_a.id, "quantity": 1}], "refund", sale_id=sale_of_three.id
        )

        assert ret.status == RETURN_STATUS_PENDING
        assert ret.return_number.startswith("RET-")
        assert ret.lines[0].reason == return_service.DEFAULT_RETURN_REASON
        assert ret.lines[0].unit_price_cents == 1000
        assert ret.subtotal_cents == 1000
        assert ret.tax_cents == 200
        assert ret.total_cents == 1200
        assert ret.credit_amount_cents is None
        assert db_session.get(Product, item_a.id).quantity == 2

    def test_credit_resolution_sets_credit_amount(self, db_session, item_a, sale_of_three):
        ret = return_service.create_return(
            SELLER_A, [{"product_id": item_a.id, "quantity": 2}], "credit", sale_id=sale_of_three.id
        )
        assert ret.credit_amount_cents == ret.total_cents == 2400

    def test_invalid_resolution(self, db_session, item_a):
        with pytest.raises(ValidationError):
            return_service.create_return(SELLER_A, [{"product_id": item_a.id, "quantity": 1}], "swap")

    def test_quantity_capped_by_sale_across_returns(self, db_session, item_a, sale_of_three):
        return_service.create_return(
            SELLER_A, [{"product_id": item_a.id, "quantity": 2}], "refund", sale_id=sale_of_three.id
        )
        with pytest.raises(ValidationError):
            return_service.create_return(
                SELLER_A, [{"product_id": item_a.id, "quantity": 2}], "refund", sale_id=sale_of_three.id
            )

    def test_rejected_returns_free_up_quantity(self, db_session, item_a, sale_of_three):
        first = return_service.create_return(
            SELLER_A, [{"product_id": item_a.id, "quantity": 3}], "refund", sale_id=sale_of_three.id
        )
        return_service.reject_return(SELLER_A, first.id, "Used item")
        again = return_service.create_return(
            SELLER_A, [{"product_id": item_a.id, "quantity": 3}], "refund", sale_id=sale_of_three.id
        )
        assert again.status == RETURN_STATUS_PENDING

    def test_item_not_on_sale(self, db_session, make_product, sale_of_three):
        other = make_product(quantity=3)
        with pytest.raises(ValidationError):
            return_service.create_return(
                SELLER_A, [{"product_id": other.id, "quantity": 1}], "refund", sale_id=sale_of_three.id
            )

    def test_refunded_sale_cannot_be_returned(self, db_session, item_a, sale_of_three):
        sales_service.refund_sale(SELLER_A, sale_of_three.id)
        with pytest.raises(ConflictError):
            return_service.create_return(
                SELLER_A, [{"product_id": item_a.id, "quantity": 1}], "refund", sale_id=sale_of_three.id
            )

    def test_foreign_sale_not_found(self, db_session, item_a, sale_of_three):
        with pytest.raises(NotFoundError):
            return_service.create_return(
                SELLER_B, [{"product_id": item_a.id, "quantity": 1}], "refund", sale_id=sale_of_three.id
            )

    def test_freestanding_return_uses_catalog_price(self, db_session, make_product):
        product = make_product(price_cents=4590, quantity=0)
        ret = return_service.create_return(
            SELLER_A, [{"product_id": product.id, "quantity": 1, "reason": "Wrong colour"}], "exchange"
        )
        assert ret.sale_id is None
        assert ret.lines[0].unit_price_cents == 4590
        assert ret.lines[0].reason == "Wrong colour"

    def test_freestanding_return_refused_when_sale_required(self, app, db_session, item_a):
        app.config["RETURNS_REQUIRE_SALE"] = True
        try:
            with pytest.raises(ValidationError):
                return_service.create_return(SELLER_A, [{"product_id": item_a.id, "quantity": 1}], "refund")
        finally:
            app.config["RETURNS_REQUIRE_SALE"] = False

    def test_foreign_item_not_found(self, db_session, make_product):
        foreign = make_product(SELLER_B)
        with pytest.raises(ItemNotFoundError):
            return_service.create_return(SELLER_A, [{"product_id": foreign.id, "quantity": 1}], "exchange")


class TestApproveReturn:
    def test_approve_credits_stock_once(self, db_session, item_a, sale_of_three):
        ret = return_service.create_return(
            SELLER_A, [{"product_id": item_a.id, "quantity": 1}], "refund", sale_id=sale_of_three.id
        )
        approved = return_service.approve_return(SELLER_A, ret.id)

        assert approved.status == RETURN_STATUS_APPROVED
        assert approved.approved_at is not None
        assert db_session.get(Product, item_a.id).quantity == 3

        with pytest.raises(ConflictError):
            return_service.approve_return(SELLER_A, ret.id)
        assert db_session.get(Product, item_a.id).quantity == 3
        assert db_session.query(StockMovement).filter_by(movement_type="REFUND").count() == 1
        assert db_session.get(Product, item_a.id).sales_count == 2

    def test_approve_reactivates_out_of_stock(self, db_session, item_a):
        sale = sales_service.create_sale(SELLER_A, [{"product_id": item_a.id, "quantity": 5}], card())
        assert db_session.get(Product, item_a.id).status == PRODUCT_STATUS_OUT_OF_STOCK

        ret = return_service.create_return(
            SELLER_A, [{"product_id": item_a.id, "quantity": 1}], "exchange", sale_id=sale.id
        )
        return_service.approve_return(SELLER_A, ret.id)

        product = db_session.get(Product, item_a.id)
        assert product.quantity == 1
        assert product.status == PRODUCT_STATUS_ACTIVE

    def test_refund_resolution_marks_sale_partial_then_refunded(self, db_session, item_a, sale_of_three):
        first = return_service.create_return(
            SELLER_A, [{"product_id": item_a.id, "quantity": 1}], "refund", sale_id=sale_of_three.id
        )
        return_service.approve_return(SELLER_A, first.id)
        assert db_session.get(Sale, sale_of_three.id).status == SALE_STATUS_PARTIAL_REFUND

        rest = return_service.create_return(
            SELLER_A, [{"product_id": item_a.id, "quantity": 2}], "refund", sale_id=sale_of_three.id
        )
        return_service.approve_return(SELLER_A, rest.id)
        assert db_session.get(Sale, sale_of_three.id).status == SALE_STATUS_REFUNDED
        assert db_session.get(Product, item_a.id).quantity == 5

    def test_exchanged_units_do_not_count_as_refunded(self, db_session, item_a, sale_of_three):
        exchange = return_service.create_return(
            SELLER_A, [{"product_id": item_a.id, "quantity": 2}], "exchange", sale_id=sale_of_three.id
        )
        return_service.approve_return(SELLER_A, exchange.id)
        assert db_session.get(Sale, sale_of_three.id).status == SALE_STATUS_COMPLETED

        refund = return_service.create_return(
            SELLER_A, [{"product_id": item_a.id, "quantity": 1}], "refund", sale_id=sale_of_three.id
        )
        return_service.approve_return(SELLER_A, refund.id)

        assert db_session.get(Sale, sale_of_three.id).status == SALE_STATUS_PARTIAL_REFUND
        assert db_session.get(Product, item_a.id).quantity == 5

        # the remaining refund restores nothing, every unit is already back
        sales_service.refund_sale(SELLER_A, sale_of_three.id)
        assert db_session.get(Product, item_a.id).quantity == 5

    def test_exchange_credit_keeps_sales_count(self, db_session, item_a, sale_of_three):
        ret = return_service.create_return(
            SELLER_A, [{"product_id": item_a.id, "quantity": 1}], "exchange", sale_id=sale_of_three.id
        )
        return_service.approve_return(SELLER_A, ret.id)

        product = db_session.get(Product, item_a.id)
        assert product.sales_count == 3
        assert db_session.query(StockMovement).filter_by(movement_type="RETURN").count() == 1

    def test_tracking_follows_the_sale_line(self, db_session, item_a, make_product, sale_of_three):
        untracked = make_product(quantity=0, track_inventory=False)
        sale = sales_service.create_sale(SELLER_A, [{"product_id": untracked.id, "quantity": 2}], card())

        # flip both catalog flags after the sales
        db_session.get(Product, item_a.id).track_inventory = False
        db_session.get(Product, untracked.id).track_inventory = True
        db_session.commit()

        tracked_ret = return_service.create_return(
            SELLER_A, [{"product_id": item_a.id, "quantity": 1}], "exchange", sale_id=sale_of_three.id
        )
        untracked_ret = return_service.create_return(
            SELLER_A, [{"product_id": untracked.id, "quantity": 1}], "exchange", sale_id=sale.id
        )
        return_service.approve_return(SELLER_A, tracked_ret.id)
        return_service.approve_return(SELLER_A, untracked_ret.id)

        assert db_session.get(Product, item_a.id).quantity == 3
        assert db_session.get(Product, untracked.id).quantity == 0

    def test_pending_return_blocked_after_full_refund(self, db_session, item_a, sale_of_three):
        ret = return_service.create_return(
            SELLER_A, [{"product_id": item_a.id, "quantity": 1}], "refund", sale_id=sale_of_three.id
        )
        sales_service.refund_sale(SELLER_A, sale_of_three.id)

        with pytest.raises(ConflictError):
            return_service.approve_return(SELLER_A, ret.id)
        assert db_session.get(Product, item_a.id).quantity == 5

    def test_approve_foreign_return_not_found(self, db_session, item_a, sale_of_three):
        ret = return_service.create_return(
            SELLER_A, [{"product_id": item_a.id, "quantity": 1}], "refund", sale_id=sale_of_three.id
        )
        with pytest.raises(NotFoundError):
            return_service.approve_return(SELLER_B, ret.id)


class TestRejectAndComplete:
    def test_reject_has_no_stock_effect(self, db_session, item_a, sale_of_three):
        ret = return_service.create_return(
            SELLER_A, [{"product_id": item_a.id, "quantity": 1}], "refund", sale_id=sale_of_three.id
        )
        rejected = return_service.reject_return(SELLER_A, ret.id, "Damaged by customer")

        assert rejected.status == RETURN_STATUS_REJECTED
        assert rejected.rejection_reason == "Damaged by customer"
        assert db_session.get(Product, item_a.id).quantity == 2

        with pytest.raises(ConflictError):
            return_service.approve_return(SELLER_A, ret.id)
        with pytest.raises(ConflictError):
            return_service.reject_return(SELLER_A, ret.id)

    def test_complete_requires_approval(self, db_session, item_a, sale_of_three):
        ret = return_service.create_return(
            SELLER_A, [{"product_id": item_a.id, "quantity": 1}], "exchange", sale_id=sale_of_three.id
        )
        with pytest.raises(ConflictError):
            return_service.complete_return(SELLER_A, ret.id)

        return_service.approve_return(SELLER_A, ret.id)
        completed = return_service.complete_return(SELLER_A, ret.id)

        assert completed.status == RETURN_STATUS_COMPLETED
        assert completed.completed_at is not None
        assert db_session.get(Product, item_a.id).quantity == 3

        events = [e.event_type for e in db_session.query(LedgerEvent).order_by(LedgerEvent.id)]
        assert events[-3:] == ["return.created", "return.approved", "return.completed"]


class TestListReturns:
    def test_filters(self, db_session, item_a, sale_of_three):
        r1 = return_service.create_return(
            SELLER_A, [{"product_id": item_a.id, "quantity": 1}], "refund", sale_id=sale_of_three.id,
            customer={"name": "Jean Moulin"},
        )
        r2 = return_service.create_return(
            SELLER_A, [{"product_id": item_a.id, "quantity": 1}], "credit", sale_id=sale_of_three.id
        )
        return_service.approve_return(SELLER_A, r2.id)

        assert [r["id"] for r in return_service.list_returns(SELLER_A)["items"]] == [r2.id, r1.id]
        assert [r["id"] for r in return_service.list_returns(SELLER_A, status="approved")["items"]] == [r2.id]
        assert [r["id"] for r in return_service.list_returns(SELLER_A, resolution="refund")["items"]] == [r1.id]
        assert [r["id"] for r in return_service.list_returns(SELLER_A, search="moulin")["items"]] == [r1.id]
        assert return_service.list_returns(SELLER_B)["items"] == []
