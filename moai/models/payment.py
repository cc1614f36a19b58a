"""Payment gateway request and response models."""

from pydantic import BaseModel, EmailStr, Field


class PaymentItem(BaseModel):
    id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    quantity: int = Field(ge=1)
    unit_price: int = Field(gt=0, description="CLP")


class PaymentPreferenceRequest(BaseModel):
    """Checkout data sent to create a payment preference."""

    amount: int = Field(gt=0)
    description: str
    order_id: str = Field(min_length=1)
    customer_email: EmailStr
    customer_name: str
    items: list[PaymentItem] = Field(min_length=1)


class PaymentPreference(BaseModel):
    preference_id: str
    init_point: str | None = None
    sandbox_init_point: str | None = None


class PaymentStatusResult(BaseModel):
    id: str
    status: str
    status_detail: str | None = None
    payment_method_id: str | None = None
    payment_type_id: str | None = None
    transaction_amount: float | None = None
    currency_id: str | None = None
    date_created: str | None = None
    date_approved: str | None = None
    external_reference: str | None = None
