"""Overdue detection and late-fee computation."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from ..entities.booking import Booking


ONE_DAY = timedelta(days=1)
CENTS = Decimal("0.01")


def is_overdue(booking: "Booking", now: datetime) -> bool:
    """An active rental whose end date has passed."""
    from ..entities.booking import BookingStatus

    return booking.status == BookingStatus.IN_RENTAL and now > booking.end_date


def days_late(end_date: datetime, now: datetime) -> int:
    """Whole days elapsed past the end date, rounded up."""
    if now <= end_date:
        return 0
    days, remainder = divmod(now - end_date, ONE_DAY)
    return days + 1 if remainder else days


def compute_late_fee(booking: "Booking", now: datetime, daily_late_rate: Decimal) -> Decimal:
    """Late fee owed at ``now``.

    Never less than the fee already recorded on the booking; a booking that
    is not overdue keeps its recorded fee.
    """
    if not is_overdue(booking, now):
        return booking.late_fee
    fee = (Decimal(days_late(booking.end_date, now)) * daily_late_rate).quantize(CENTS, rounding=ROUND_HALF_UP)
    return max(fee, booking.late_fee)


@dataclass(frozen=True)
class LateFeePolicy:
    """Configured late-fee rate.

    ``daily_rate`` is a flat amount per day late. When it is not set the fee
    accrues at ``rate_of_total`` of the booking's total price per day.
    """

    daily_rate: Optional[Decimal] = None
    rate_of_total: Decimal = Decimal("0.10")

    def __post_init__(self) -> None:
        """Validate policy rates."""
        if self.daily_rate is not None and self.daily_rate < 0:
            raise ValueError("Daily late rate cannot be negative")
        if self.rate_of_total < 0:
            raise ValueError("Late fee rate cannot be negative")

    def daily_rate_for(self, booking: "Booking") -> Decimal:
        """Get the per-day rate applied to a booking."""
        if self.daily_rate is not None:
            return self.daily_rate
        return (booking.total_price * self.rate_of_total).quantize(CENTS, rounding=ROUND_HALF_UP)

    def is_overdue(self, booking: "Booking", now: datetime) -> bool:
        """Check whether the booking is overdue at ``now``."""
        return is_overdue(booking, now)

    def late_fee(self, booking: "Booking", now: datetime) -> Decimal:
        """Compute the late fee owed at ``now`` under this policy."""
        return compute_late_fee(booking, now, self.daily_rate_for(booking))
