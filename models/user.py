from datetime import datetime

from sqlalchemy import String, DateTime, ForeignKey, Table, Column, Integer
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.db import Base


# Membership of users in stores, one row per (user, store)
user_store_map = Table(
    "user_store_map",
    Base.metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("store_id", Integer, ForeignKey("stores.id", ondelete="CASCADE"), primary_key=True),
    Column("role", String(20), nullable=False, default="viewer"),  # owner, admin, manager, staff, viewer
    Column("name", String(200), nullable=True),
    Column("email", String(255), nullable=True),
    Column("created_at", DateTime, default=datetime.utcnow),
    Column("updated_at", DateTime, default=datetime.utcnow, onupdate=datetime.utcnow),
)


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(200))
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    system_role: Mapped[str | None] = mapped_column(String(20), nullable=True)  # super_admin, system_admin
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    stores = relationship("Store", secondary=user_store_map, viewonly=True)

    @property
    def is_superadmin(self) -> bool:
        return self.system_role == "super_admin"

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email}>"
