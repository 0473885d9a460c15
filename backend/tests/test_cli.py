# Overview: Flask CLI command tests via the app's CLI runner.

from posledger.models import Product

from conftest import SELLER_A


def test_seed_product_and_list(app, db_session):
    runner = app.test_cli_runner()

    result = runner.invoke(args=[
        "stock", "seed-product", "--seller-id", str(SELLER_A),
        "--sku", "PAINT-10L", "--name", "Peinture 10L", "--price-cents", "4590", "--quantity", "2",
    ])
    assert result.exit_code == 0
    assert "PAINT-10L" in result.output
    assert db_session.query(Product).filter_by(sku="PAINT-10L").one().quantity == 2

    listing = runner.invoke(args=["stock", "list", "--seller-id", str(SELLER_A), "--status", "low"])
    assert listing.exit_code == 0
    assert "Peinture 10L" in listing.output


def test_duplicate_sku_is_reported(app, db_session, item_a):
    result = app.test_cli_runner().invoke(args=[
        "stock", "seed-product", "--seller-id", str(SELLER_A),
        "--sku", "ITEM-A", "--name", "Again", "--price-cents", "100",
    ])
    assert result.exit_code != 0
    assert "already exists" in result.output


def test_flag_overdue_and_export(app, db_session):
    runner = app.test_cli_runner()

    flagged = runner.invoke(args=["invoices", "flag-overdue"])
    assert flagged.exit_code == 0
    assert "Flagged 0 invoice(s)" in flagged.output

    export = runner.invoke(args=["accounting", "export", "--seller-id", str(SELLER_A), "--format", "fec"])
    assert export.exit_code == 0
    assert export.output.startswith("JournalCode\t")
