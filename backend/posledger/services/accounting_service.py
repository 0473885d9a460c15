# Overview: Accounting exports (CSV journal and French FEC) of completed sales.

from __future__ import annotations

import csv
import io
from dataclasses import dataclass

from flask import current_app

from ..errors import ValidationError
from ..extensions import db
from ..models import Sale
from ..models.sales import SALE_STATUS_COMPLETED
from ..time_utils import utcnow
from .listing import parse_date_range

FORMAT_CSV = "csv"
FORMAT_FEC = "fec"
FORMATS = (FORMAT_CSV, FORMAT_FEC)

CSV_HEADER = ["date", "number", "customer", "payment_method", "subtotal", "tax", "discount", "total"]

# Standard column set of the Fichier des Ecritures Comptables
FEC_HEADER = [
    "JournalCode",
    "JournalLib",
    "EcritureNum",
    "EcritureDate",
    "CompteNum",
    "CompteLib",
    "CompAuxNum",
    "CompAuxLib",
    "PieceRef",
    "PieceDate",
    "EcritureLib",
    "Debit",
    "Credit",
    "EcritureLet",
    "DateLet",
    "ValidDate",
    "Montantdevise",
    "Idevise",
]


@dataclass(frozen=True)
class AccountingExport:
    content: str
    filename: str
    mimetype: str
    sale_count: int


def format_amount(cents: int, decimal_sep: str = ".") -> str:
    sign = "-" if cents < 0 else ""
    cents = abs(cents)
    return f"{sign}{cents // 100}{decimal_sep}{cents % 100:02d}"


def _sales_in_range(seller_id: int, start, end) -> list[Sale]:
    q = db.session.query(Sale).filter(
        Sale.seller_id == seller_id,
        Sale.status == SALE_STATUS_COMPLETED,
    )
    if start:
        q = q.filter(Sale.created_at >= start)
    if end:
        q = q.filter(Sale.created_at <= end)
    return q.order_by(Sale.created_at.asc(), Sale.id.asc()).all()


def _render_csv(sales: list[Sale]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for sale in sales:
        writer.writerow(
            [
                sale.created_at.strftime("%Y-%m-%d %H:%M:%S"),
                sale.sale_number,
                sale.customer_name or "",
                sale.payment_method,
                format_amount(sale.subtotal_cents),
                format_amount(sale.tax_cents),
                format_amount(sale.discount_cents),
                format_amount(sale.total_cents),
            ]
        )
    return buf.getvalue()


def fec_entries(sale: Sale, entry_number: int) -> list[list[str]]:
    """
    Balanced journal entry for one sale.

    Debit cash (cash payments) or bank (everything else) for the total,
    credit revenue for subtotal - discount and VAT collected for the tax.
    Amounts are never negative; a negative net revenue is booked as a debit.
    """
    config = current_app.config
    accounts = config["ACCOUNTING_ACCOUNTS"]
    journal_code = config["ACCOUNTING_JOURNAL_CODE"]
    journal_label = config["ACCOUNTING_JOURNAL_LABEL"]

    date = sale.created_at.strftime("%Y%m%d")
    label = f"Vente {sale.sale_number}"
    ecriture_num = f"{journal_code}{entry_number:06d}"

    def _line(account_key: str, debit_cents: int, credit_cents: int) -> list[str]:
        account_num, account_label = accounts[account_key]
        return [
            journal_code,
            journal_label,
            ecriture_num,
            date,
            account_num,
            account_label,
            "",
            "",
            sale.sale_number,
            date,
            label,
            format_amount(debit_cents, ","),
            format_amount(credit_cents, ","),
            "",
            "",
            date,
            "",
            "",
        ]

    settlement = "cash" if sale.payment_method == "cash" else "bank"
    net_revenue = sale.subtotal_cents - sale.discount_cents
    lines = [_line(settlement, sale.total_cents, 0)]
    # A discount above the subtotal eats into the VAT; the excess is a debit
    if net_revenue >= 0:
        lines.append(_line("revenue", 0, net_revenue))
    else:
        lines.append(_line("revenue", -net_revenue, 0))
    if sale.tax_cents:
        lines.append(_line("tax", 0, sale.tax_cents))
    return lines


def _render_fec(sales: list[Sale]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, delimiter="\t", lineterminator="\n", quoting=csv.QUOTE_MINIMAL)
    writer.writerow(FEC_HEADER)
    for number, sale in enumerate(sales, start=1):
        writer.writerows(fec_entries(sale, number))
    return buf.getvalue()


def export_sales(seller_id: int, fmt: str = FORMAT_CSV, date_from=None, date_to=None) -> AccountingExport:
    """Export completed sales in the range, oldest first. Read-only."""
    fmt = (fmt or FORMAT_CSV).lower()
    if fmt not in FORMATS:
        raise ValidationError("format must be csv or fec", details={"field": "format"})

    start, end = parse_date_range(date_from, date_to)
    sales = _sales_in_range(seller_id, start, end)
    stamp = (end or utcnow()).strftime("%Y%m%d")

    if fmt == FORMAT_FEC:
        return AccountingExport(
            content=_render_fec(sales),
            filename=f"FEC{stamp}.txt",
            mimetype="text/tab-separated-values",
            sale_count=len(sales),
        )
    return AccountingExport(
        content=_render_csv(sales),
        filename=f"sales_{stamp}.csv",
        mimetype="text/csv",
        sale_count=len(sales),
    )
