import pytest
from datetime import date
from decimal import Decimal
from types import SimpleNamespace

from intranet.core.exceptions import ValidationError
from intranet.models.holiday import Holiday
from intranet.models.leave_request import DayType
from intranet.services.calendar import (
    calculate_leave_days,
    format_rule,
    group_by_month,
    holidays_for_range,
    non_working_reason,
    required_notice_days,
)

# 2030-01-14 is a Monday
MON, TUE, WED, THU, FRI = (date(2030, 1, d) for d in range(14, 19))
SAT, SUN = date(2030, 1, 19), date(2030, 1, 20)
NEXT_MON = date(2030, 1, 21)

BANDS = [
    SimpleNamespace(leave_required_min=Decimal("10"), leave_required_max=None, prior_information_days=30),
    SimpleNamespace(leave_required_min=Decimal("0.5"), leave_required_max=Decimal("4"), prior_information_days=3),
    SimpleNamespace(leave_required_min=Decimal("4"), leave_required_max=Decimal("10"), prior_information_days=14),
]


def test_full_working_week():
    total, days = calculate_leave_days(MON, FRI, "full", "full", "casual")
    assert total == Decimal("5")
    assert [d.date for d in days] == [MON, TUE, WED, THU, FRI]

def test_half_day_edges():
    total, days = calculate_leave_days(MON, WED, "second_half", "first_half", "casual")
    assert total == Decimal("2")
    assert [d.day_type for d in days] == [DayType.HALF, DayType.FULL, DayType.HALF]

def test_single_half_day():
    total, days = calculate_leave_days(TUE, TUE, "full", "half", "sick")
    assert total == Decimal("0.5")
    assert days[0].day_type == DayType.HALF

def test_weekend_is_skipped_for_casual():
    total, days = calculate_leave_days(FRI, NEXT_MON, "full", "full", "casual")
    assert total == Decimal("2")
    assert SAT not in [d.date for d in days]

def test_holiday_is_skipped():
    total, _ = calculate_leave_days(MON, WED, "full", "full", "casual", holidays={TUE})
    assert total == Decimal("2")

def test_lop_counts_non_working_days():
    total, days = calculate_leave_days(FRI, NEXT_MON, "full", "full", "lop", lop_charges_non_working_days=True)
    assert total == Decimal("4")
    assert SUN in [d.date for d in days]

def test_lop_can_follow_working_calendar():
    total, _ = calculate_leave_days(FRI, NEXT_MON, "full", "full", "lop", lop_charges_non_working_days=False)
    assert total == Decimal("2")

def test_weekend_only_range_is_empty():
    total, days = calculate_leave_days(SAT, SUN, "full", "full", "casual")
    assert total == Decimal("0")
    assert days == []

def test_end_before_start_rejected():
    with pytest.raises(ValidationError):
        calculate_leave_days(WED, MON, "full", "full", "casual")

def test_group_by_month_splits_ranges():
    _, days = calculate_leave_days(date(2030, 1, 30), date(2030, 2, 5), "full", "full", "casual")
    assert group_by_month(days) == {(2030, 1): Decimal("2"), (2030, 2): Decimal("3")}

@pytest.mark.parametrize("days,expected", [
    (Decimal("0.5"), 3),
    (Decimal("3"), 3),
    (Decimal("4"), 3),
    (Decimal("4.5"), 14),
    (Decimal("10"), 14),
    (Decimal("12"), 30),
])
def test_notice_bands(days, expected):
    assert required_notice_days(BANDS, days) == expected

def test_notice_without_rules_uses_minimum():
    assert required_notice_days([], Decimal("20")) == 3

def test_format_rule():
    assert format_rule(BANDS[1]) == {"leave_required": "0.5 to 4 days", "prior_information": "3 days"}
    assert format_rule(BANDS[2])["prior_information"] == "2 weeks"
    assert format_rule(BANDS[0]) == {"leave_required": "More Than 10 days", "prior_information": "1 Month"}

def test_non_working_reason():
    holidays = {TUE: "Founders Day"}
    assert non_working_reason(SAT, holidays) == "Saturday"
    assert non_working_reason(SUN, holidays) == "Sunday"
    assert non_working_reason(TUE, holidays) == "Founders Day (2030-01-15)"
    assert non_working_reason(WED, holidays) is None

def test_holidays_for_range_covers_each_year(db_session):
    db_session.add_all([
        Holiday(holiday_date=date(2029, 12, 25), holiday_name="Christmas Day"),
        Holiday(holiday_date=date(2030, 1, 1), holiday_name="New Year's Day"),
        Holiday(holiday_date=date(2030, 5, 1), holiday_name="Labour Day", is_active=False),
        Holiday(holiday_date=date(2031, 1, 1), holiday_name="New Year's Day"),
    ])
    db_session.commit()

    holidays = holidays_for_range(db_session, date(2029, 12, 20), date(2030, 1, 5))
    assert holidays == {date(2029, 12, 25): "Christmas Day", date(2030, 1, 1): "New Year's Day"}
