from app.models.integration import IntegrationConnection
from app.models.invoice import Invoice, InvoiceAttachment, InvoiceItem, InvoiceSequence
from app.models.user import User

__all__ = [
    "IntegrationConnection",
    "Invoice",
    "InvoiceAttachment",
    "InvoiceItem",
    "InvoiceSequence",
    "User",
]
