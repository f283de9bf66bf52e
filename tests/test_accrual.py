import pytest
from datetime import date
from decimal import Decimal

from intranet.core.exceptions import ValidationError
from intranet.models.leave_accrual import LeaveAccrualRun
from intranet.models.leave_balance import LeaveBalance
from intranet.services.accrual import AccrualKind, LeaveAccrual, next_month
from intranet.services.calendar import last_working_day_of_month

from conftest import get_balance, set_balance


@pytest.fixture
def accrual(db_session):
    return LeaveAccrual(db_session)


def test_last_working_day_skips_the_weekend():
    # 2030-03-31 is a Sunday
    assert last_working_day_of_month(2030, 3) == date(2030, 3, 29)
    assert last_working_day_of_month(2030, 1) == date(2030, 1, 31)
    assert last_working_day_of_month(2030, 12) == date(2030, 12, 31)


def test_next_month_rolls_the_year():
    assert next_month(2030, 12) == (2031, 1)
    assert next_month(2030, 4) == (2030, 5)


def test_monthly_credit(db_session, accrual, balances, users):
    result = accrual.credit_monthly(2030, 2, triggered_by=users["hr"].id)

    assert result.kind == AccrualKind.MONTHLY
    assert result.period == "2030-02"
    # employee, manager, other_manager, hr, outsider
    assert result.affected == 5
    balance = get_balance(db_session, users["employee"])
    assert Decimal(balance.casual_balance) == Decimal("6")
    assert Decimal(balance.sick_balance) == Decimal("3.5")
    assert Decimal(balance.lop_balance) == Decimal("10")
    # First credit for a user without a row starts from the defaults
    fresh = get_balance(db_session, users["other_manager"])
    assert Decimal(fresh.casual_balance) == Decimal("1")
    assert Decimal(fresh.sick_balance) == Decimal("0.5")

    run = db_session.query(LeaveAccrualRun).one()
    assert (run.kind, run.period, run.employees_affected) == ("monthly", "2030-02", 5)


def test_super_admin_is_not_credited(db_session, accrual, balances, users):
    accrual.credit_monthly(2030, 2)
    assert db_session.query(LeaveBalance).filter(LeaveBalance.employee_id == users["super_admin"].id).count() == 0


def test_monthly_credit_runs_once_per_period(db_session, accrual, balances, users):
    accrual.credit_monthly(2030, 2)
    with pytest.raises(ValidationError, match="already run"):
        accrual.credit_monthly(2030, 2)

    assert Decimal(get_balance(db_session, users["employee"]).casual_balance) == Decimal("6")
    assert db_session.query(LeaveAccrualRun).count() == 1


def test_balance_at_ceiling_is_skipped(db_session, accrual, balances, users):
    set_balance(db_session, users["employee"], casual="99", sick="3", lop="10")

    result = accrual.credit_monthly(2030, 2)

    assert result.skipped == 1
    assert result.affected == 4
    balance = get_balance(db_session, users["employee"])
    assert Decimal(balance.casual_balance) == Decimal("99")
    assert Decimal(balance.sick_balance) == Decimal("3")


def test_year_end_adjustment(db_session, accrual, balances, users):
    set_balance(db_session, users["employee"], casual="12.5", sick="4", lop="3")
    set_balance(db_session, users["manager"], casual="2", sick="1", lop="10")

    result = accrual.year_end_adjustment(2030)

    assert result.kind == AccrualKind.YEAR_END
    assert result.period == "2030"
    capped = get_balance(db_session, users["employee"])
    assert Decimal(capped.casual_balance) == Decimal("8")
    assert Decimal(capped.sick_balance) == Decimal("0")
    assert Decimal(capped.lop_balance) == Decimal("10")
    kept = get_balance(db_session, users["manager"])
    assert Decimal(kept.casual_balance) == Decimal("2")
    assert Decimal(kept.sick_balance) == Decimal("0")

    with pytest.raises(ValidationError, match="Year end accrual for 2030 has already run"):
        accrual.year_end_adjustment(2030)


def test_run_due_waits_for_the_last_working_day(db_session, accrual, balances):
    assert accrual.run_due(today=date(2030, 3, 28)) == []
    assert accrual.run_due(today=date(2030, 3, 31)) == []
    assert db_session.query(LeaveAccrualRun).count() == 0


def test_run_due_credits_next_month_once(db_session, accrual, balances, users):
    results = accrual.run_due(today=date(2030, 3, 29))
    assert [(r.kind, r.period) for r in results] == [(AccrualKind.MONTHLY, "2030-04")]

    # Re-running the same evening is a no-op
    assert accrual.run_due(today=date(2030, 3, 29)) == []
    assert Decimal(get_balance(db_session, users["employee"]).casual_balance) == Decimal("6")


def test_december_credits_then_closes_the_year(db_session, accrual, balances, users):
    set_balance(db_session, users["employee"], casual="9", sick="2", lop="4")

    results = accrual.run_due(today=date(2030, 12, 31))

    assert [(r.kind, r.period) for r in results] == [
        (AccrualKind.MONTHLY, "2031-01"),
        (AccrualKind.YEAR_END, "2030"),
    ]
    balance = get_balance(db_session, users["employee"])
    # 9 + 1 capped to 8, 2 + 0.5 lapsed
    assert Decimal(balance.casual_balance) == Decimal("8")
    assert Decimal(balance.sick_balance) == Decimal("0")
    assert Decimal(balance.lop_balance) == Decimal("10")
