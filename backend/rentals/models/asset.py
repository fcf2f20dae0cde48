"""
Rentable asset (a bike) as seen by the booking core.

Catalog management happens elsewhere; this table only carries what pricing
and availability need. Rates are integer minor units (paise).
"""

from sqlalchemy import Column, Integer, String, CheckConstraint

from rentals.db.base import Base, TimestampMixin

AVAILABILITY_STATES = ("available", "maintenance", "unavailable")
BLOCKED_AVAILABILITY_STATES = ("maintenance", "unavailable")


class Asset(Base, TimestampMixin):
    __tablename__ = "assets"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    category = Column(String(100), nullable=False, index=True)
    hourly_rate_minor = Column(Integer, nullable=False)
    overtime_hourly_rate_minor = Column(Integer, nullable=False, default=0)
    availability_state = Column(String(20), nullable=False, default="available")

    __table_args__ = (
        CheckConstraint("hourly_rate_minor >= 0", name="check_asset_rate_non_negative"),
        CheckConstraint("overtime_hourly_rate_minor >= 0", name="check_asset_overtime_rate_non_negative"),
        CheckConstraint(
            "availability_state IN ('available', 'maintenance', 'unavailable')",
            name="check_asset_availability_state",
        ),
    )

    @property
    def is_bookable(self) -> bool:
        return self.availability_state not in BLOCKED_AVAILABILITY_STATES

    def __repr__(self) -> str:
        return f"<Asset(id={self.id}, name={self.name}, state={self.availability_state})>"
