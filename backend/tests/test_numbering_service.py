# Overview: Pytest coverage for document numbering.

import re

import pytest

from posledger.errors import InternalError, ValidationError
from posledger.models import DocumentSequence
from posledger.services import numbering_service

from conftest import SELLER_A, SELLER_B


class TestNextNumber:
    def test_sequence_starts_at_one_and_increments(self, db_session):
        numbers = [numbering_service.next_number(SELLER_A, "invoice", "2026") for _ in range(3)]
        db_session.commit()

        assert numbers == [1, 2, 3]
        seq = db_session.query(DocumentSequence).filter_by(seller_id=SELLER_A).one()
        assert seq.next_number == 4

    def test_scopes_are_independent(self, db_session):
        assert numbering_service.next_number(SELLER_A, "invoice", "2026") == 1
        assert numbering_service.next_number(SELLER_A, "invoice", "2027") == 1
        assert numbering_service.next_number(SELLER_B, "invoice", "2026") == 1
        assert numbering_service.next_number(SELLER_A, "invoice", "2026") == 2

    def test_invoice_number_format(self, db_session):
        assert numbering_service.next_invoice_number(SELLER_A, 2026) == "FAC-2026-000001"
        assert numbering_service.next_invoice_number(SELLER_A, 2026) == "FAC-2026-000002"

    def test_requires_scope(self, db_session):
        with pytest.raises(ValidationError):
            numbering_service.next_number(SELLER_A, "")

    def test_gives_up_after_bounded_attempts(self, app, db_session, monkeypatch):
        """A counter row that can neither be bumped nor created ends in InternalError."""
        class _NoRows:
            rowcount = 0

        def _fail_insert():
            raise numbering_service.IntegrityError("INSERT", {}, Exception("duplicate"))

        class _Savepoint:
            def __enter__(self):
                return self

            def __exit__(self, *exc):
                _fail_insert()

        monkeypatch.setattr(numbering_service.db.session, "execute", lambda *a, **k: _NoRows())
        monkeypatch.setattr(numbering_service.db.session, "begin_nested", lambda: _Savepoint())
        monkeypatch.setattr(numbering_service.db.session, "add", lambda obj: None)

        with pytest.raises(InternalError):
            numbering_service.next_number(SELLER_A, "invoice", "2026")


class TestRandomNumbers:
    def test_sale_and_return_number_shapes(self):
        assert re.fullmatch(r"POS-\d{13}-[0-9A-F]{8}", numbering_service.generate_sale_number())
        assert re.fullmatch(r"RET-\d{13}-[0-9A-F]{8}", numbering_service.generate_return_number())

    def test_numbers_are_distinct(self):
        assert len({numbering_service.generate_sale_number() for _ in range(50)}) == 50
