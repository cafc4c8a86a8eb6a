"""
Notifier — transactional emails around the order lifecycle.

Every public method renders a Jinja2 template, hands the message to the
configured transport and returns True on delivery. Nothing here raises:
a missing recipient, a template error or a transport failure is logged and
reported as False.
"""
import logging
import os
from datetime import datetime
from typing import Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from domain.constants import PAYMENT_METHOD_LABELS, STATUS_LABELS_NL
from models import Order
from services.mail_transport import Attachment, MailMessage, build_transport

logger = logging.getLogger(__name__)

TEMPLATE_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "templates", "email")


def _amount(value) -> str:
    return f"€{float(value or 0):.2f}"


def _date(value: Optional[datetime]) -> str:
    return value.strftime("%d-%m-%Y") if value else ""


def _status_label(value) -> str:
    raw = getattr(value, "value", value) or ""
    return STATUS_LABELS_NL.get(str(raw), str(raw))


def _payment_label(value: str) -> str:
    return PAYMENT_METHOD_LABELS.get((value or "").lower(), value or "")


def build_environment(template_dir: str = TEMPLATE_DIR) -> Environment:
    env = Environment(
        loader=FileSystemLoader(template_dir),
        autoescape=select_autoescape(["html"]),
    )
    env.filters["amount"] = _amount
    env.filters["date"] = _date
    env.filters["status_label"] = _status_label
    env.filters["payment_label"] = _payment_label
    return env


class Notifier:
    def __init__(
        self,
        transport,
        *,
        sender: str = "",
        admin_recipient: str = "",
        shop_name: str = "AlloyGator",
        enabled: bool = True,
        env: Optional[Environment] = None,
    ):
        self.transport = transport
        self.sender = sender
        self.admin_recipient = admin_recipient
        self.shop_name = shop_name
        self.enabled = enabled
        self.env = env or build_environment()

    @classmethod
    def from_settings(cls, settings, transport=None) -> "Notifier":
        return cls(
            transport or build_transport(settings),
            sender=settings.mail_sender,
            admin_recipient=settings.admin_recipient,
            shop_name=settings.shop_name,
            enabled=settings.email_notifications,
        )

    # ── Message kinds ───────────────────────────────────────────────

    async def order_confirmation(self, order: Order) -> bool:
        return await self._send(
            order.customer.email or order.customer.billing_email,
            f"Bestelbevestiging - Order #{order.order_number}",
            "order_confirmation.html",
            order=order,
        )

    async def admin_order_notification(self, order: Order) -> bool:
        return await self._send(
            self.admin_recipient,
            f"Nieuwe bestelling - Order #{order.order_number}",
            "admin_order.html",
            order=order,
        )

    async def status_update(self, order: Order, previous_status=None) -> bool:
        return await self._send(
            order.customer.email or order.customer.billing_email,
            f"Status update - Order #{order.order_number}",
            "status_update.html",
            order=order,
            previous_status=previous_status,
        )

    async def payment_confirmation(self, order: Order) -> bool:
        return await self._send(
            order.customer.email or order.customer.billing_email,
            f"Betaling bevestigd - Bestelling #{order.order_number}",
            "payment_confirmation.html",
            order=order,
        )

    async def invoice_delivery(self, order: Order, pdf: bytes) -> bool:
        """Invoice PDF to the customer's invoice address, copy to the admin."""
        number = order.invoice_number or order.order_number
        attachment = Attachment(filename=f"factuur-{number}.pdf", content=pdf)

        to_customer = await self._send(
            order.customer.billing_email,
            f"Factuur {number} - Order #{order.order_number}",
            "invoice.html",
            attachments=[attachment],
            order=order,
        )
        to_admin = await self._send(
            self.admin_recipient,
            f"Factuur {number} gestuurd - Order #{order.order_number}",
            "invoice_admin.html",
            attachments=[attachment],
            order=order,
        )
        return to_customer and to_admin

    # ── Plumbing ────────────────────────────────────────────────────

    async def _send(self, to: str, subject: str, template: str, attachments=None, **context) -> bool:
        if not self.enabled:
            logger.info(f"Email notifications disabled; skipped '{subject}'")
            return False
        if not to:
            logger.warning(f"No recipient for '{subject}'; email not sent")
            return False
        try:
            html = self.env.get_template(template).render(shop_name=self.shop_name, **context)
            message = MailMessage(
                to=to,
                subject=subject,
                html=html,
                sender=self.sender,
                attachments=list(attachments or []),
            )
            await self.transport.send(message)
        except Exception as e:
            logger.error(f"Email '{subject}' to {to} failed: {e}")
            return False
        logger.info(f"Email sent: '{subject}' to {to}")
        return True
