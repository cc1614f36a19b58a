"""Cook-related models."""

from datetime import datetime
from uuid import uuid4

from pydantic import BaseModel, EmailStr, Field

from moai.models.common import Location, utc_now


class Cook(BaseModel):
    """Home cook profile."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    display_name: str
    email: EmailStr | None = None
    phone: str | None = None
    is_online: bool = False
    self_delivery: bool = False
    location: Location | None = None
    address: str | None = None
    rating: float = Field(default=5.0, ge=0, le=5)
    review_count: int = 0
    created_at: datetime = Field(default_factory=utc_now)
