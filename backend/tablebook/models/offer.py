"""
Branch-scoped promotional offers and per-user usage counters.

Key design decisions:
- `used_count` and OfferUsage.count are only changed by guarded SQL
  increments (WHERE used_count < max_uses), never read-modify-write
- validity is a date range plus optional daily window and weekday list
"""

from sqlalchemy import (
    Column, Integer, String, Boolean, Date, Time, DateTime, Numeric, ForeignKey, JSON,
    CheckConstraint, UniqueConstraint, Index,
)

from tablebook.db.base import Base, TimestampMixin


class Offer(Base, TimestampMixin):
    __tablename__ = "offers"

    id = Column(Integer, primary_key=True, index=True)
    branch_id = Column(Integer, ForeignKey("branches.id"), nullable=False)
    title = Column(String(100), nullable=False)
    code = Column(String(32), unique=True, nullable=True)
    type = Column(String(20), nullable=False)
    discount_value = Column(Numeric(10, 2), nullable=False, default=0)
    max_discount_amount = Column(Numeric(10, 2), nullable=True)
    min_order_amount = Column(Numeric(10, 2), nullable=False, default=0)

    # Validity
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=True)
    end_time = Column(Time, nullable=True)
    valid_days = Column(JSON, nullable=False, default=list)

    # Usage
    max_uses = Column(Integer, nullable=True)  # null means unlimited
    used_count = Column(Integer, nullable=False, default=0)
    max_uses_per_user = Column(Integer, nullable=False, default=1)

    # Conditions
    min_party_size = Column(Integer, nullable=False, default=1)
    max_party_size = Column(Integer, nullable=False, default=20)
    membership_tiers = Column(JSON, nullable=False, default=list)
    payment_methods = Column(JSON, nullable=False, default=list)

    is_active = Column(Boolean, nullable=False, default=True)
    priority = Column(Integer, nullable=False, default=0)

    # Analytics
    conversions = Column(Integer, nullable=False, default=0)
    revenue = Column(Numeric(12, 2), nullable=False, default=0)

    __table_args__ = (
        CheckConstraint(
            "type IN ('percentage', 'fixed', 'buy_one_get_one', 'combo', 'loyalty', 'seasonal', 'happy_hour')",
            name="check_offer_type",
        ),
        CheckConstraint("discount_value >= 0", name="check_offer_discount_non_negative"),
        CheckConstraint("max_uses IS NULL OR used_count <= max_uses", name="check_offer_usage_cap"),
        Index("ix_offers_branch_active_dates", "branch_id", "is_active", "start_date", "end_date"),
    )

    def __repr__(self) -> str:
        return f"<Offer(id={self.id}, code={self.code}, used={self.used_count}/{self.max_uses})>"


class OfferUsage(Base):
    __tablename__ = "offer_usages"

    id = Column(Integer, primary_key=True)
    offer_id = Column(Integer, ForeignKey("offers.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    count = Column(Integer, nullable=False, default=0)
    last_used_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("offer_id", "user_id", name="uq_offer_usage_user"),
    )
