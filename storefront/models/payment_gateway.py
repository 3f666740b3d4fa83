from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from storefront.db.base import Base


class PaymentGateway(Base):
    __tablename__ = "payment_gateways"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # e.g. "whop", "paypal"
    gateway_type: Mapped[str] = mapped_column(String(50), nullable=False, default="", index=True)

    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    whop_api_key: Mapped[str | None] = mapped_column(Text, nullable=True, default="")
    webhook_secret: Mapped[str | None] = mapped_column(Text, nullable=True, default="")
    whop_product_id: Mapped[str | None] = mapped_column(String(255), nullable=True, default="")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=datetime.utcnow,
        nullable=False,
    )
