from __future__ import annotations

import app.models  # noqa: F401  registers every mapped table
from app.db.base import Base

target_metadata = Base.metadata
