"""SQLAlchemy database models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from shopwatch.db.encryption import EncryptedString


def utcnow() -> datetime:
    return datetime.utcnow()


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class MonitorStatus(str, Enum):
    """Lifecycle status of a monitor."""

    MONITORING = "monitoring"
    AVAILABLE = "available"
    PURCHASED = "purchased"


class Monitor(Base):
    """A tracked (user, product) pair with its auto-buy configuration."""

    __tablename__ = "monitors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    chat_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    product_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(16), default=MonitorStatus.MONITORING.value, nullable=False
    )
    last_checked: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_amount: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Auto-buy
    auto_buy: Mapped[bool] = mapped_column(default=False, nullable=False)
    auto_buy_amount: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    buy_limit: Mapped[int] = mapped_column(Integer, default=0, nullable=False)  # 0 = unlimited
    bought_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # One-shot schedule that promotes the monitor into active auto-buy
    schedule_time: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)  # HH:mm
    schedule_amount: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    schedule_limit: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_monitors_user_id", "user_id"),
        Index("ix_monitors_product_id", "product_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Monitor id={self.id} user={self.user_id} product={self.product_id} "
            f"status={self.status} last_amount={self.last_amount} auto_buy={self.auto_buy}>"
        )


class Credential(Base):
    """Upstream shop credentials for one user."""

    __tablename__ = "users"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    chat_id: Mapped[str] = mapped_column(String(64), nullable=False)
    username: Mapped[str] = mapped_column(String(128), nullable=False)
    password: Mapped[Optional[str]] = mapped_column(EncryptedString(512), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )


class ActivityLog(Base):
    """User-visible activity history."""

    __tablename__ = "activity_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (Index("ix_activity_logs_user_created", "user_id", "created_at"),)
