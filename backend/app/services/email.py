from __future__ import annotations

import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Optional

import httpx

from app.core.settings import settings
from app.models.invoice import Invoice
from app.models.user import User


@dataclass
class EmailSendResult:
    provider: str
    message_id: Optional[str] = None


class EmailSendError(RuntimeError):
    pass


def send_email(*, to_address: str, subject: str, html: str, text: str | None = None) -> EmailSendResult:
    provider = settings.email_provider
    if provider in {"disabled", "none"}:
        raise EmailSendError("EMAIL_PROVIDER disabled")
    if not settings.email_from:
        raise EmailSendError("EMAIL_FROM not configured")

    if provider == "resend":
        return _send_resend(to_address=to_address, subject=subject, html=html, text=text)
    if provider == "smtp":
        return _send_smtp(to_address=to_address, subject=subject, html=html, text=text)

    raise EmailSendError(f"Unsupported EMAIL_PROVIDER: {provider}")


def _send_resend(*, to_address: str, subject: str, html: str, text: str | None) -> EmailSendResult:
    if not settings.email_api_key:
        raise EmailSendError("EMAIL_API_KEY not configured for Resend")
    payload = {
        "from": settings.email_from,
        "to": [to_address],
        "subject": subject,
        "html": html,
    }
    if text:
        payload["text"] = text
    headers = {"Authorization": f"Bearer {settings.email_api_key}"}
    try:
        with httpx.Client(timeout=15) as client:
            resp = client.post("https://api.resend.com/emails", json=payload, headers=headers)
    except httpx.HTTPError as exc:
        raise EmailSendError(f"Resend unreachable: {exc}") from exc
    if resp.status_code >= 400:
        raise EmailSendError(f"Resend error: {resp.status_code} {resp.text}")
    return EmailSendResult(provider="resend", message_id=resp.json().get("id"))


def _send_smtp(*, to_address: str, subject: str, html: str, text: str | None) -> EmailSendResult:
    if not settings.smtp_host:
        raise EmailSendError("SMTP_HOST not configured")
    message = EmailMessage()
    message["Subject"] = subject
    message["From"] = settings.email_from
    message["To"] = to_address
    message.set_content(text or "This email requires an HTML-capable client.")
    message.add_alternative(html, subtype="html")

    with smtplib.SMTP(settings.smtp_host, settings.smtp_port) as server:
        if settings.smtp_use_tls:
            server.starttls()
        if settings.smtp_username and settings.smtp_password:
            server.login(settings.smtp_username, settings.smtp_password)
        server.send_message(message)
    return EmailSendResult(provider="smtp")


def send_overdue_reminder(invoice: Invoice, days_overdue: int) -> EmailSendResult:
    user = invoice.user
    link = f"{settings.app_base_url.rstrip('/')}/invoices/{invoice.id}"
    if days_overdue > 0:
        subject = f"Overdue Invoice Reminder - {invoice.invoice_number}"
        status_line = f"Invoice {invoice.invoice_number} is overdue by {days_overdue} days."
    else:
        subject = f"Payment Reminder - {invoice.invoice_number}"
        status_line = f"Invoice {invoice.invoice_number} is due on {invoice.due_date.isoformat()}."
    html = (
        f"<p>Dear {user.full_name},</p>"
        f"<p>{status_line}</p>"
        f"<p><strong>Amount Due:</strong> ₹{invoice.total}</p>"
        f"<p><strong>Due Date:</strong> {invoice.due_date.isoformat()}</p>"
        f'<p><a href="{link}">Pay Now</a></p>'
    )
    text = (
        f"{status_line} "
        f"Amount due: INR {invoice.total}. Pay at {link}"
    )
    return send_email(to_address=user.email, subject=subject, html=html, text=text)


def send_email_verification(user: User, token: str) -> EmailSendResult:
    link = f"{settings.app_base_url.rstrip('/')}/verify-email?token={token}"
    html = f"<p>Hello {user.full_name},</p><p>Confirm your new email address: <a href=\"{link}\">verify</a></p>"
    return send_email(
        to_address=user.email,
        subject="Verify your email address",
        html=html,
        text=f"Confirm your new email address: {link}",
    )
