from datetime import datetime
from sqlalchemy import String, DateTime, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.db import Base
from models.user import user_store_map


class Store(Base):
    __tablename__ = "stores"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(150), index=True)

    # Tenant owner
    owner_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    plan: Mapped[str] = mapped_column(String(20), default="basic")  # basic, pro
    status: Mapped[str] = mapped_column(String(20), default="active", index=True)  # active, inactive, suspended
    suspension_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    owner = relationship("User", foreign_keys=[owner_id])
    members = relationship("User", secondary=user_store_map, viewonly=True)
    subscriptions = relationship(
        "Subscription",
        back_populates="store",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Subscription.created_at.desc()",
    )

    @property
    def is_suspended(self) -> bool:
        return self.status == "suspended"

    @property
    def is_active(self) -> bool:
        return self.status == "active"
