"""Profile module router aggregation."""
from app.routers import profile

ROUTERS = [profile.router]
