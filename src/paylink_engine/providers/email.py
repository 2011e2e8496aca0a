"""Email notifications for payers and owners.

SMTP delivery is blocking, so each message is sent from a worker thread.
Failures propagate to the caller; lifecycle handlers catch and log them.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from decimal import Decimal
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

logger = logging.getLogger(__name__)


def _payment_request_body(
    *,
    amount: Decimal,
    currency: str,
    description: str | None,
    link: str,
    refundable: bool,
    recipient_name: str | None,
) -> str:
    greeting = f"Hello {recipient_name}," if recipient_name else "Hello,"
    lines = [
        greeting,
        "",
        f"You have received a payment request for {amount} {currency}.",
    ]
    if description:
        lines.append(f"Description: {description}")
    if refundable:
        lines.append("This payment will be refunded automatically after 30 days.")
    lines += ["", f"Pay securely here: {link}", "", "Thank you."]
    return "\n".join(lines)


def _payment_received_body(
    *,
    amount: Decimal,
    currency: str,
    description: str | None,
    payment_id: str,
    proof_ref: str | None,
) -> str:
    lines = [
        "Hello,",
        "",
        f"Payment of {amount} {currency} was received.",
        f"Payment ID: {payment_id}",
    ]
    if description:
        lines.append(f"Description: {description}")
    if proof_ref:
        lines.append(f"Transaction: {proof_ref}")
    lines += ["", "Thank you."]
    return "\n".join(lines)


class SmtpNotifier:
    """Notifier that delivers plain-text mail over SMTP with STARTTLS."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        *,
        username: str | None = None,
        password: str | None = None,
        from_email: str,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_email = from_email

    def _send_blocking(self, recipient: str, subject: str, body: str) -> None:
        msg = MIMEMultipart()
        msg["From"] = self.from_email
        msg["To"] = recipient
        msg["Subject"] = subject
        msg.attach(MIMEText(body, "plain"))

        with smtplib.SMTP(self.host, self.port) as server:
            server.starttls()
            if self.username and self.password:
                server.login(self.username, self.password)
            server.sendmail(self.from_email, [recipient], msg.as_string())

    async def _send(self, recipient: str, subject: str, body: str) -> None:
        await asyncio.to_thread(self._send_blocking, recipient, subject, body)
        logger.info("Sent '%s' email to %s", subject, recipient)

    async def send_payment_request_email(
        self,
        *,
        recipient: str,
        amount: Decimal,
        currency: str,
        description: str | None,
        link: str,
        refundable: bool,
        recipient_name: str | None = None,
    ) -> None:
        body = _payment_request_body(
            amount=amount,
            currency=currency,
            description=description,
            link=link,
            refundable=refundable,
            recipient_name=recipient_name,
        )
        await self._send(recipient, f"Payment request: {amount} {currency}", body)

    async def send_payment_received_email(
        self,
        *,
        recipient: str,
        amount: Decimal,
        currency: str,
        description: str | None,
        payment_id: str,
        proof_ref: str | None,
    ) -> None:
        body = _payment_received_body(
            amount=amount,
            currency=currency,
            description=description,
            payment_id=payment_id,
            proof_ref=proof_ref,
        )
        await self._send(recipient, f"Payment received: {amount} {currency}", body)


class LoggingNotifier:
    """Notifier used when SMTP is not configured. Logs and records messages."""

    def __init__(self) -> None:
        self.sent: list[dict] = []

    async def send_payment_request_email(
        self,
        *,
        recipient: str,
        amount: Decimal,
        currency: str,
        description: str | None,
        link: str,
        refundable: bool,
        recipient_name: str | None = None,
    ) -> None:
        logger.info("Payment request email to %s: %s %s %s", recipient, amount, currency, link)
        self.sent.append(
            {
                "kind": "payment_request",
                "recipient": recipient,
                "amount": amount,
                "currency": currency,
                "link": link,
                "refundable": refundable,
            }
        )

    async def send_payment_received_email(
        self,
        *,
        recipient: str,
        amount: Decimal,
        currency: str,
        description: str | None,
        payment_id: str,
        proof_ref: str | None,
    ) -> None:
        logger.info("Payment received email to %s for %s", recipient, payment_id)
        self.sent.append(
            {
                "kind": "payment_received",
                "recipient": recipient,
                "amount": amount,
                "currency": currency,
                "payment_id": payment_id,
                "proof_ref": proof_ref,
            }
        )
