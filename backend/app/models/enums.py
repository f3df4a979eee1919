from __future__ import annotations

import enum


class Role(str, enum.Enum):
    USER = "user"
    ADMIN = "admin"
    GST_PRACTITIONER = "gst_practitioner"
    CONSULTANT = "consultant"
    ACCOUNTANT = "accountant"
    BUSINESS_OWNER = "business_owner"
    MODERATOR = "moderator"


class InvoiceType(str, enum.Enum):
    SUBSCRIPTION = "subscription"
    ONE_TIME = "one_time"
    REFUND = "refund"
    ADJUSTMENT = "adjustment"


class InvoiceStatus(str, enum.Enum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentMethod(str, enum.Enum):
    STRIPE = "stripe"
    RAZORPAY = "razorpay"
    BANK_TRANSFER = "bank_transfer"
    UPI = "upi"
    WALLET = "wallet"
    CASH = "cash"


class Gender(str, enum.Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"
    PREFER_NOT_TO_SAY = "prefer_not_to_say"


class Profession(str, enum.Enum):
    GST_PRACTITIONER = "gst_practitioner"
    CHARTERED_ACCOUNTANT = "chartered_accountant"
    TAX_CONSULTANT = "tax_consultant"
    BUSINESS_OWNER = "business_owner"
    STUDENT = "student"
    OTHER = "other"


class ProfileVisibility(str, enum.Enum):
    PUBLIC = "public"
    MEMBERS_ONLY = "members_only"
    PRIVATE = "private"


class IntegrationCategory(str, enum.Enum):
    TAX_AUTHORITY = "tax_authority"
    ACCOUNTING = "accounting"
    PAYMENT = "payment"
    UPI = "upi"


class ReturnType(str, enum.Enum):
    GSTR1 = "GSTR1"
    GSTR2 = "GSTR2"
    GSTR3B = "GSTR3B"
    GSTR9 = "GSTR9"


class SyncDataType(str, enum.Enum):
    ALL = "all"
    INVOICES = "invoices"
    PURCHASES = "purchases"
    CUSTOMERS = "customers"
