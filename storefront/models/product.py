from __future__ import annotations

from sqlalchemy import Integer, String, Float
from sqlalchemy.orm import Mapped, mapped_column

from storefront.db.base import Base


class Product(Base):
    """
    Catalog product. Owned by the catalog CRUD; the checkout pipeline only reads it.
    """
    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    normal_price: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    sale_price: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Whop mapping: provider product (for dynamic plans) and a fixed plan (static checkout)
    whop_product_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    whop_plan: Mapped[str | None] = mapped_column(String(512), nullable=True)

    @property
    def base_price(self) -> float:
        if self.sale_price is not None:
            return float(self.sale_price)
        return float(self.normal_price or 0)

    def __repr__(self) -> str:
        return f"<Product id={self.id} title={self.title}>"
