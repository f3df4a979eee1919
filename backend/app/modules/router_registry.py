"""Central router registry for module-oriented composition."""
from __future__ import annotations

from fastapi import FastAPI

from app.modules.billing.router import ROUTERS as BILLING_ROUTERS
from app.modules.integrations.router import ROUTERS as INTEGRATION_ROUTERS
from app.modules.profile.router import ROUTERS as PROFILE_ROUTERS

ALL_ROUTERS = BILLING_ROUTERS + INTEGRATION_ROUTERS + PROFILE_ROUTERS


def include_all_routers(app: FastAPI) -> None:
    for router in ALL_ROUTERS:
        app.include_router(router)
