"""
Shared FastAPI dependencies.

The service graph (store → sequences → notifier → orchestrator → state
machine) is built once per app and kept on `app.state.services`; routers
reach it through get_services() so tests can swap in their own graph with
`app.dependency_overrides`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TypedDict

from fastapi import Depends, Query, Request

from middleware.auth import require_admin
from services.credit_service import CreditNoteService
from services.document_store import DocumentStore
from services.invoice_service import InvoiceOrchestrator
from services.notification_service import Notifier
from services.order_service import OrderStateMachine
from services.sequence_service import SequenceGenerator

__all__ = [
    "Services",
    "build_services",
    "get_services",
    "get_order_machine",
    "get_invoices",
    "get_credit_notes",
    "pagination_params",
    "require_admin",
]


@dataclass
class Services:
    store: DocumentStore
    sequences: SequenceGenerator
    notifier: Notifier
    invoices: InvoiceOrchestrator
    orders: OrderStateMachine
    credits: CreditNoteService


def build_services(settings, session_factory=None, transport=None) -> Services:
    if session_factory is None:
        from database import async_session as session_factory

    store = DocumentStore(session_factory, max_cas_retries=settings.store_cas_max_retries)
    sequences = SequenceGenerator(store)
    notifier = Notifier.from_settings(settings, transport=transport)
    invoices = InvoiceOrchestrator.from_settings(settings, store, sequences, notifier)
    orders = OrderStateMachine.from_settings(settings, store, sequences, invoices, notifier)
    credits = CreditNoteService.from_settings(settings, store, sequences)
    return Services(store, sequences, notifier, invoices, orders, credits)


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        from config import settings

        services = request.app.state.services = build_services(settings)
    return services


def get_order_machine(services: Services = Depends(get_services)) -> OrderStateMachine:
    return services.orders


def get_invoices(services: Services = Depends(get_services)) -> InvoiceOrchestrator:
    return services.invoices


def get_credit_notes(services: Services = Depends(get_services)) -> CreditNoteService:
    return services.credits


class Pagination(TypedDict):
    limit: int
    offset: int


def pagination_params(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0, le=100_000),
) -> Pagination:
    return {"limit": limit, "offset": offset}
