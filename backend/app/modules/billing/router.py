"""Billing module router aggregation."""
from app.routers import invoices

ROUTERS = [invoices.router]
