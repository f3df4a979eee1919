"""Integrations module router aggregation."""
from app.routers import integrations

ROUTERS = [integrations.router]
