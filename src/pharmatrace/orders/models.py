"""SQLAlchemy model for distributor purchase orders."""

from sqlalchemy import BigInteger, Float, String
from sqlalchemy.orm import Mapped, mapped_column

from pharmatrace.common.models import Base, TimestampMixin, generate_uuid


class OrderModel(Base, TimestampMixin):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    distributor: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    manufacturer: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    batch_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity_requested: Mapped[int] = mapped_column(BigInteger, nullable=False)
    total_price: Mapped[float] = mapped_column(Float, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING")
    tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
