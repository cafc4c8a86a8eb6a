"""
Tests for credit notes.
"""
import os
from unittest.mock import patch

import pytest

from domain.constants import COUNTERS, CREDIT_NOTES
from domain.errors import NotFoundError, PersistenceError, ValidationError
from models import Order
from services.credit_service import full_credit_lines
from services.pricing_service import VatRates
from tests.conftest import order_document


class TestFullCreditLines:

    @pytest.mark.unit
    def test_includes_shipping_at_high_rate(self):
        order = Order.from_document("x", order_document())
        lines = full_credit_lines(order, VatRates())
        assert lines == [
            {"name": "AlloyGator Set", "quantity": 2, "unit_price": 100.0, "vat_rate": 21.0},
            {"name": "Verzending en verwerking", "quantity": 1, "unit_price": 10.0, "vat_rate": 21.0},
        ]

    @pytest.mark.unit
    def test_no_shipping_line_without_shipping_cost(self):
        order = Order.from_document("x", order_document(shipping_cost=0))
        assert len(full_credit_lines(order, VatRates())) == 1


class TestIssueCreditNote:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_full_credit(self, credits, make_order, store, invoice_dir):
        await make_order()

        note = await credits.issue_credit_note("order-1")

        assert note.credit_number == "2025-00001"
        assert note.order_number == "AGO-05006"
        assert (note.net_total, note.vat_total, note.total) == (-210.0, -44.1, -254.1)
        assert note.pdf_url == "/invoices/credit-2025-00001.pdf"
        assert os.path.isfile(os.path.join(invoice_dir, "credit-2025-00001.pdf"))

        stored = await store.get(CREDIT_NOTES, note.id)
        assert stored.data["credit_number"] == "2025-00001"
        assert stored.data["order_id"] == "order-1"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_partial_credit(self, credits, make_order):
        await make_order()

        note = await credits.issue_credit_note(
            "order-1", [{"name": "AlloyGator Set", "quantity": 1, "unit_price": 100, "vat_rate": 21}]
        )

        assert note.total == -121.0
        assert len(note.items) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_credit_numbers_are_separate_from_invoices(self, credits, invoices, make_order):
        await make_order()
        invoice = await invoices.ensure_invoice("order-1")
        note = await credits.issue_credit_note("order-1")
        assert invoice.invoice_number == "2025-00001"
        assert note.credit_number == "2025-00001"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_credit_larger_than_order_is_rejected(self, credits, make_order, store):
        await make_order()
        with pytest.raises(ValidationError):
            await credits.issue_credit_note(
                "order-1", [{"name": "Set", "quantity": 3, "unit_price": 100, "vat_rate": 21}]
            )
        assert await store.get(COUNTERS, "credit") is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize("line", [
        {"name": "Set", "quantity": 0, "unit_price": 10, "vat_rate": 21},
        {"name": "Set", "quantity": 1, "unit_price": -10, "vat_rate": 21},
    ])
    async def test_bad_lines(self, credits, make_order, line):
        await make_order()
        with pytest.raises(ValidationError):
            await credits.issue_credit_note("order-1", [line])

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_order(self, credits):
        with pytest.raises(NotFoundError):
            await credits.issue_credit_note("ghost")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_store_failure_releases_number(self, credits, make_order, store, invoice_dir):
        await make_order()

        real_create = store.create

        async def failing_create(collection, data, doc_id=None):
            if collection == CREDIT_NOTES:
                raise PersistenceError("down")
            return await real_create(collection, data, doc_id=doc_id)

        with patch.object(store, "create", side_effect=failing_create):
            with pytest.raises(PersistenceError):
                await credits.issue_credit_note("order-1")

        assert (await store.get(COUNTERS, "credit")).data["2025"] == 0

        assert not os.path.exists(os.path.join(invoice_dir, "credit-2025-00001.pdf"))
        note = await credits.issue_credit_note("order-1")
        assert note.credit_number == "2025-00001"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_reissued_number_keeps_its_pdf(self, credits, make_order, store, sequences, invoice_dir):
        await make_order()

        real_create = store.create
        real_release = sequences.release_yearly
        failures = [PersistenceError("down")]
        others = []

        async def create_failing_once(collection, data, doc_id=None):
            if collection == CREDIT_NOTES and failures:
                raise failures.pop()
            return await real_create(collection, data, doc_id=doc_id)

        async def release_then_credit_again(name, number):
            released = await real_release(name, number)
            others.append(await credits.issue_credit_note("order-1"))
            return released

        with patch.object(store, "create", side_effect=create_failing_once), \
                patch.object(sequences, "release_yearly", side_effect=release_then_credit_again):
            with pytest.raises(PersistenceError):
                await credits.issue_credit_note("order-1")

        assert others[0].credit_number == "2025-00001"
        assert os.path.isfile(os.path.join(invoice_dir, "credit-2025-00001.pdf"))
