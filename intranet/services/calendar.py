"""
Business-day arithmetic for leave requests.

`calculate_leave_days` is pure: callers hydrate the holiday set once with
`holidays_for_range` and pass it in.
"""
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from sqlalchemy import extract
from sqlalchemy.orm import Session

from intranet.core.config import settings
from intranet.core.exceptions import ValidationError
from intranet.models.holiday import Holiday
from intranet.models.leave_request import DayPortion, DayType, LeaveType
from intranet.models.leave_rule import LeaveRule

FULL_DAY = Decimal("1")
HALF_DAY = Decimal("0.5")


@dataclass(frozen=True)
class ChargeableDay:
    date: date
    day_type: DayType

    @property
    def charge(self) -> Decimal:
        return HALF_DAY if self.day_type == DayType.HALF else FULL_DAY


def normalize_portion(portion) -> DayPortion:
    """first_half/second_half collapse to half when charging."""
    portion = DayPortion(portion)
    return DayPortion.HALF if portion.is_half else DayPortion.FULL


def is_weekend(day: date) -> bool:
    return day.weekday() >= 5


def last_working_day_of_month(year: int, month: int) -> date:
    """Last Monday-Friday of the month; holidays are not considered."""
    day = (date(year, month, 28) + timedelta(days=4)).replace(day=1) - timedelta(days=1)
    while is_weekend(day):
        day -= timedelta(days=1)
    return day


def iter_dates(start: date, end: date) -> Iterator[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def calculate_leave_days(
    start: date,
    end: date,
    start_portion,
    end_portion,
    leave_type,
    holidays: Iterable[date] = (),
    lop_charges_non_working_days: Optional[bool] = None,
) -> Tuple[Decimal, List[ChargeableDay]]:
    """
    Walks start..end inclusive and returns (total, chargeable days).

    LOP counts weekends and holidays unless the policy flag says otherwise;
    every other type skips them.
    """
    if end < start:
        raise ValidationError("End date must be greater than or equal to start date")

    if lop_charges_non_working_days is None:
        lop_charges_non_working_days = settings.leave.lop_charges_non_working_days

    leave_type = LeaveType(leave_type)
    start_half = normalize_portion(start_portion).is_half
    end_half = normalize_portion(end_portion).is_half
    holiday_set = set(holidays)
    skip_non_working = not (leave_type == LeaveType.LOP and lop_charges_non_working_days)

    days: List[ChargeableDay] = []
    for current in iter_dates(start, end):
        if skip_non_working and (is_weekend(current) or current in holiday_set):
            continue

        if current == start and current == end:
            half = start_half or end_half
        elif current == start:
            half = start_half
        elif current == end:
            half = end_half
        else:
            half = False
        days.append(ChargeableDay(current, DayType.HALF if half else DayType.FULL))

    total = sum((d.charge for d in days), Decimal("0"))
    return total, days


def holidays_for_range(db: Session, start: date, end: date) -> Dict[date, str]:
    """Active holidays for every calendar year the range touches, keyed by date."""
    years = list(range(start.year, end.year + 1))
    rows = (
        db.query(Holiday)
        .filter(Holiday.is_active.is_(True), extract("year", Holiday.holiday_date).in_(years))
        .all()
    )
    return {row.holiday_date: row.holiday_name for row in rows}


def group_by_month(days: Iterable[ChargeableDay]) -> Dict[Tuple[int, int], Decimal]:
    totals: Dict[Tuple[int, int], Decimal] = {}
    for day in days:
        key = (day.date.year, day.date.month)
        totals[key] = totals.get(key, Decimal("0")) + day.charge
    return totals


def required_notice_days(rules: Iterable[LeaveRule], days: Decimal) -> int:
    """
    Advance notice for a request of `days`. Bands are checked in ascending
    order of their lower bound; the first inclusive match wins.
    """
    notice = settings.leave.minimum_notice_days
    for rule in sorted(rules, key=lambda r: r.leave_required_min):
        lower = Decimal(rule.leave_required_min)
        upper = None if rule.leave_required_max is None else Decimal(rule.leave_required_max)
        if days >= lower and (upper is None or days <= upper):
            return max(notice, rule.prior_information_days)
    return notice


def _format_amount(value) -> str:
    value = Decimal(value).normalize()
    return format(value, "f")


def format_rule(rule: LeaveRule) -> Dict[str, str]:
    """Human readable band, e.g. {'leave_required': '0.5 to 4 days', 'prior_information': '3 days'}."""
    low = _format_amount(rule.leave_required_min)
    if rule.leave_required_max is not None:
        required = f"{low} to {_format_amount(rule.leave_required_max)} days"
    else:
        required = f"More Than {low} days"

    prior = rule.prior_information_days
    if prior == 30:
        prior_text = "1 Month"
    elif prior == 14:
        prior_text = "2 weeks"
    else:
        prior_text = f"{prior} {'day' if prior == 1 else 'days'}"
    return {"leave_required": required, "prior_information": prior_text}


def non_working_reason(day: date, holidays: Dict[date, str]) -> Optional[str]:
    """Name of the reason `day` is not a working day, or None."""
    if day.weekday() == 5:
        return "Saturday"
    if day.weekday() == 6:
        return "Sunday"
    if day in holidays:
        return f"{holidays[day]} ({day.isoformat()})"
    return None


__all__ = [
    "ChargeableDay",
    "FULL_DAY",
    "HALF_DAY",
    "calculate_leave_days",
    "format_rule",
    "group_by_month",
    "holidays_for_range",
    "is_weekend",
    "iter_dates",
    "non_working_reason",
    "normalize_portion",
    "required_notice_days",
]
