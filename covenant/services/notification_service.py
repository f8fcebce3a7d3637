"""Notification service for sending owner notices by email.

Rendering lives here; delivery goes through an injected EmailTransport so the
engine never depends on a particular mail provider. Delivery failures are
returned as a NotificationResult, never raised.
"""

import logging
from datetime import date, datetime
from decimal import Decimal
from html import escape
from typing import NamedTuple, Protocol

from covenant.models.monthly_bill import MonthlyBill
from covenant.models.property import Property
from covenant.models.violation import Violation

logger = logging.getLogger(__name__)


class EmailTransport(Protocol):
    """Outbound mail provider."""

    async def send(self, *, to: str, from_email: str, subject: str, html: str) -> None:
        ...


class NotificationResult(NamedTuple):
    """Outcome of a delivery attempt, surfaced to callers as an advisory."""

    sent: bool
    error: str | None = None


def _money(amount: Decimal | None) -> str:
    return f"${Decimal(amount or 0):.2f}"


def _long_date(value: date | datetime) -> str:
    return f"{value:%B} {value.day}, {value.year}"


class NotificationService:
    """Service for sending violation notices and overdue reminders to owners."""

    def __init__(self, transport: EmailTransport | None, from_email: str = ""):
        self.transport = transport
        self.from_email = from_email

    async def send_message(self, to: str | None, subject: str, html: str) -> NotificationResult:
        """Deliver one message, converting every failure into a result.

        Args:
            to: Recipient email address
            subject: Subject line
            html: Rendered HTML body
        """
        if self.transport is None:
            logger.warning("No email transport configured; dropping %r to %s", subject, to)
            return NotificationResult(sent=False, error="email transport not configured")
        if not to:
            logger.warning("No recipient address for %r", subject)
            return NotificationResult(sent=False, error="owner has no email address")

        try:
            await self.transport.send(
                to=to, from_email=self.from_email, subject=subject, html=html
            )
        except Exception as e:
            logger.warning("Error sending %r to %s: %s", subject, to, e)
            return NotificationResult(sent=False, error=str(e))
        return NotificationResult(sent=True)

    async def send_violation_notice(
        self,
        property: Property,
        violation: Violation,
        bill: MonthlyBill | None = None,
    ) -> NotificationResult:
        """Send the compliance notice for a violation.

        Args:
            property: Property the violation was recorded against
            violation: The violation
            bill: Current monthly bill; adds a financial summary when given
        """
        subject = f"HOA Compliance Notice - {property.address}"
        return await self.send_message(
            property.owner_email,
            subject,
            render_violation_notice(property, violation, bill),
        )

    async def send_overdue_reminder(
        self, property: Property, bill: MonthlyBill
    ) -> NotificationResult:
        """Send the payment-overdue reminder for a bill."""
        subject = f"Payment Overdue - {property.address}"
        return await self.send_message(
            property.owner_email,
            subject,
            render_overdue_reminder(property, bill),
        )


def render_violation_notice(
    property: Property, violation: Violation, bill: MonthlyBill | None = None
) -> str:
    category = violation.category.value.capitalize()
    severity = violation.severity.value.upper()
    parts = [
        "<h1>HOA Compliance Notice</h1>",
        f"<p>Dear <strong>{escape(property.owner_name)}</strong>,</p>",
        "<p>A compliance issue has been identified at:</p>",
        f"<p><strong>{escape(property.address)}</strong></p>",
        f"<h2>{category}</h2>",
        f"<p>{severity} SEVERITY</p>",
        "<h3>What Was Observed</h3>",
        f"<p>{escape(violation.description)}</p>",
    ]
    if violation.rule_cited:
        parts += ["<h3>Applicable Rule</h3>", f"<p><em>{escape(violation.rule_cited)}</em></p>"]
    parts += [
        "<h3>Required Action</h3>",
        f"<p>{escape(violation.remediation or '')}</p>",
        f"<p><strong>Resolution Deadline: {_long_date(violation.deadline_at)}</strong></p>",
        f"<p>Please address this within {violation.deadline_days} days of this notice date.</p>",
    ]
    if bill is not None:
        parts += [
            "<h3>Financial Summary</h3>",
            f"<p>Fine for this violation: <strong>{_money(violation.fine_amount)}</strong></p>",
            f"<p>Current monthly bill: <strong>{_money(bill.total_amount)}</strong> "
            f"(due {bill.due_date:%B} {bill.due_date.day})</p>",
            f"<p>Combined property score: <strong>{property.combined_score}</strong></p>",
        ]
    if violation.image_url:
        parts.append(f'<p><img src="{escape(violation.image_url)}" alt="Violation photo" /></p>')
    parts.append("<p>HOA Management</p>")
    return "\n".join(parts)


def render_overdue_reminder(property: Property, bill: MonthlyBill) -> str:
    parts = [
        "<h1>Payment Overdue Notice</h1>",
        f"<p>Dear <strong>{escape(property.owner_name)}</strong>,</p>",
        f"<p>Your HOA payment for <strong>{escape(property.address)}</strong> is overdue.</p>",
        f"<p>Billing period: <strong>{bill.billing_month:%B %Y}</strong></p>",
        f"<p>Base fee: <strong>{_money(bill.base_amount)}</strong></p>",
    ]
    if Decimal(bill.violation_fines or 0) > 0:
        parts.append(f"<p>Violation fines: <strong>{_money(bill.violation_fines)}</strong></p>")
    parts += [
        f"<p>Total due: <strong>{_money(bill.total_amount)}</strong></p>",
        f"<p>Due date: {_long_date(bill.due_date)} - PAST DUE</p>",
        "<p>Your property score has been updated to reflect this outstanding balance.</p>",
        "<p>HOA Management</p>",
    ]
    return "\n".join(parts)


__all__ = [
    "EmailTransport",
    "NotificationResult",
    "NotificationService",
    "render_violation_notice",
    "render_overdue_reminder",
]
