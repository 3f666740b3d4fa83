from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from storefront.db.base import Base


class Setting(Base):
    """
    Legacy key/value settings. Values are JSON blobs, e.g. key="whop".
    """
    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str | None] = mapped_column(Text, nullable=True)
