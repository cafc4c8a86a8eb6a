"""
Tests for ensure_invoice: idempotency, numbering under concurrency and
number release when generation fails.
"""
import asyncio
import os
from unittest.mock import AsyncMock, patch

import pytest

from domain.constants import COUNTERS, ORDERS
from domain.errors import NotFoundError, PersistenceError, RenderError
from services.invoice_service import InvoiceOrchestrator, save_pdf
from tests.conftest import fixed_clock


async def _counter(store, year: str = "2025") -> int:
    doc = await store.get(COUNTERS, "invoice")
    return int(doc.data.get(year, 0)) if doc else 0


class TestEnsureInvoice:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_issues_first_number_and_stores_pdf(self, invoices, make_order, store, invoice_dir):
        await make_order()

        result = await invoices.ensure_invoice("order-1")

        assert result.created is True
        assert result.invoice_number == "2025-00001"
        assert result.invoice_url == "/invoices/factuur-2025-00001.pdf"
        assert os.path.isfile(os.path.join(invoice_dir, "factuur-2025-00001.pdf"))

        stored = (await store.get(ORDERS, "order-1")).data
        assert stored["invoice_number"] == "2025-00001"
        assert stored["invoice_url"] == "/invoices/factuur-2025-00001.pdf"
        assert stored["invoice_sent_date"].startswith("2025-01-10")
        # legacy fields are left alone by the merge
        assert stored["orderNumber"] == "AGO-05006"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_emails_customer_and_admin(self, invoices, make_order, mail):
        await make_order()

        result = await invoices.ensure_invoice("order-1")

        assert mail.subjects() == [
            "Factuur 2025-00001 - Order #AGO-05006",
            "Factuur 2025-00001 gestuurd - Order #AGO-05006",
        ]
        assert mail.sent[0].to == "jan@example.com"
        assert mail.sent[0].attachments[0].filename == "factuur-2025-00001.pdf"
        assert mail.sent[0].attachments[0].content.startswith(b"%PDF")
        assert all(e.ok for e in result.effects)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_is_idempotent(self, invoices, make_order, store, mail):
        await make_order()

        first = await invoices.ensure_invoice("order-1")
        mail.reset()
        second = await invoices.ensure_invoice("order-1")

        assert second.created is False
        assert second.invoice_number == first.invoice_number
        assert second.invoice_url == first.invoice_url
        assert await _counter(store) == 1
        assert mail.sent == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_existing_invoice_fast_path(self, invoices, make_order, store):
        await make_order(invoice_number="2024-00311", invoice_url="/invoices/factuur-2024-00311.pdf")

        result = await invoices.ensure_invoice("order-1")

        assert result.created is False
        assert result.invoice_number == "2024-00311"
        assert await store.get(COUNTERS, "invoice") is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_number_without_url_keeps_the_number(self, invoices, make_order, store, invoice_dir):
        await make_order(invoice_number="2024-00311")

        result = await invoices.ensure_invoice("order-1")

        assert result.created is False
        assert result.invoice_number == "2024-00311"
        assert result.invoice_url == "/invoices/factuur-2024-00311.pdf"
        assert os.path.isfile(os.path.join(invoice_dir, "factuur-2024-00311.pdf"))
        assert await store.get(COUNTERS, "invoice") is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_order(self, invoices, store):
        with pytest.raises(NotFoundError):
            await invoices.ensure_invoice("ghost")
        assert await store.get(COUNTERS, "invoice") is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_email_failure_keeps_invoice(self, invoices, make_order, mail, store):
        await make_order()
        mail.configure(should_succeed=False)

        result = await invoices.ensure_invoice("order-1")

        assert result.created is True
        assert [e.ok for e in result.effects] == [False]
        assert (await store.get(ORDERS, "order-1")).data["invoice_number"] == "2025-00001"
        assert await _counter(store) == 1


class TestConcurrency:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_distinct_orders_get_distinct_numbers(self, invoices, make_order):
        for i in range(6):
            await make_order(f"order-{i}", orderNumber=f"AGO-0000{i}")

        results = await asyncio.gather(*(invoices.ensure_invoice(f"order-{i}") for i in range(6)))

        numbers = sorted(r.invoice_number for r in results)
        assert numbers == [f"2025-0000{n}" for n in range(1, 7)]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_same_order_allocates_once(self, invoices, make_order, store):
        await make_order()

        results = await asyncio.gather(*(invoices.ensure_invoice("order-1") for _ in range(5)))

        assert {r.invoice_number for r in results} == {"2025-00001"}
        assert sum(r.created for r in results) == 1
        assert await _counter(store) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_separate_orchestrators_converge_on_one_invoice(
        self, store, sequences, notifier, invoice_dir, make_order
    ):
        """Two workers without a shared lock: the version check picks one winner."""
        await make_order()
        a = InvoiceOrchestrator(store, sequences, notifier, invoice_dir=invoice_dir, clock=fixed_clock)
        b = InvoiceOrchestrator(store, sequences, notifier, invoice_dir=invoice_dir, clock=fixed_clock)

        ra, rb = await asyncio.gather(a.ensure_invoice("order-1"), b.ensure_invoice("order-1"))

        assert ra.invoice_number == rb.invoice_number
        stored = (await store.get(ORDERS, "order-1")).data
        assert stored["invoice_number"] == ra.invoice_number
        assert os.path.isfile(os.path.join(invoice_dir, f"factuur-{ra.invoice_number}.pdf"))


class TestFailureRelease:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_render_failure_releases_number(self, store, sequences, notifier, invoice_dir, make_order):
        await make_order()

        def broken_renderer(*args, **kwargs):
            raise RenderError("boom")

        failing = InvoiceOrchestrator(
            store, sequences, notifier, invoice_dir=invoice_dir, clock=fixed_clock, renderer=broken_renderer
        )
        with pytest.raises(RenderError):
            await failing.ensure_invoice("order-1")

        assert await _counter(store) == 0
        assert "invoice_number" not in (await store.get(ORDERS, "order-1")).data

        working = InvoiceOrchestrator(store, sequences, notifier, invoice_dir=invoice_dir, clock=fixed_clock)
        assert (await working.ensure_invoice("order-1")).invoice_number == "2025-00001"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_store_failure_releases_number_and_removes_pdf(self, invoices, make_order, store, invoice_dir):
        await make_order()

        with patch.object(store, "update", AsyncMock(side_effect=PersistenceError("down"))):
            with pytest.raises(PersistenceError):
                await invoices.ensure_invoice("order-1")

        assert await _counter(store) == 0
        assert not os.path.exists(os.path.join(invoice_dir, "factuur-2025-00001.pdf"))

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_reissued_number_keeps_its_pdf(self, invoices, make_order, store, sequences, invoice_dir):
        await make_order("order-1")
        await make_order("order-2", orderNumber="AGO-05007")

        real_update = store.update
        real_release = sequences.release_yearly
        others = []

        async def failing_update(collection, doc_id, fields, *, expected_version=None):
            if doc_id == "order-1":
                raise PersistenceError("down")
            return await real_update(collection, doc_id, fields, expected_version=expected_version)

        async def release_then_invoice_other(name, number):
            released = await real_release(name, number)
            # order-2 takes the freed number before order-1 finishes cleaning up
            others.append(await invoices.ensure_invoice("order-2"))
            return released

        with patch.object(store, "update", side_effect=failing_update), \
                patch.object(sequences, "release_yearly", side_effect=release_then_invoice_other):
            with pytest.raises(PersistenceError):
                await invoices.ensure_invoice("order-1")

        assert others[0].invoice_number == "2025-00001"
        assert os.path.isfile(os.path.join(invoice_dir, "factuur-2025-00001.pdf"))
        assert (await store.get(ORDERS, "order-2")).data["invoice_url"] == "/invoices/factuur-2025-00001.pdf"


class TestSavePdf:

    @pytest.mark.unit
    def test_replaces_target_and_leaves_no_temp_file(self, tmp_path):
        target = tmp_path / "invoices" / "factuur-2025-00001.pdf"
        save_pdf(str(target), b"%PDF-first")
        save_pdf(str(target), b"%PDF-second")

        assert target.read_bytes() == b"%PDF-second"
        assert [p.name for p in target.parent.iterdir()] == ["factuur-2025-00001.pdf"]
