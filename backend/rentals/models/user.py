"""
User directory record. Identity lives elsewhere; bookings only need the id,
a role for admin routes and contact details for notification targeting.
"""

from sqlalchemy import Column, Integer, String, Boolean

from rentals.db.base import Base, TimestampMixin

USER_ROLES = ("user", "admin", "owner")


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    full_name = Column(String(255), nullable=True)
    phone = Column(String(32), nullable=True)
    role = Column(String(20), nullable=False, default="user")
    push_token = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    @property
    def is_staff(self) -> bool:
        return self.role in ("admin", "owner")

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"
