"""Usage Pydantic schemas."""

from datetime import datetime

from refyn.schemas.base import CamelModel


class UsageOut(CamelModel):
    """Monthly conversation usage for the viewer."""

    plan: str
    academic: bool
    used: int
    limit: int
    remaining: int
    billing_period_start: datetime | None = None
