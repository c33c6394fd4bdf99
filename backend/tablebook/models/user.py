"""
User profile as seen by the reservation core.

Credentials live with the identity provider; the core reads role and tier
and only ever increments loyalty_points.
"""

from sqlalchemy import Column, Integer, String, Boolean, CheckConstraint
from sqlalchemy.orm import relationship

from tablebook.db.base import Base, TimestampMixin


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(100), nullable=False)
    role = Column(String(20), nullable=False, default="customer")
    membership_tier = Column(String(20), nullable=False, default="Bronze")
    loyalty_points = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, default=True, nullable=False)

    bookings = relationship("Booking", back_populates="user", lazy="noload")

    __table_args__ = (
        CheckConstraint("loyalty_points >= 0", name="check_loyalty_points_non_negative"),
        CheckConstraint("role IN ('customer', 'manager', 'admin')", name="check_user_role"),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, points={self.loyalty_points})>"
