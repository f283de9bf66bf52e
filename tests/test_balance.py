import pytest
from datetime import date
from decimal import Decimal

from intranet.core.exceptions import AuthorizationError, ValidationError
from intranet.models.leave_balance import LeaveBalance
from intranet.models.leave_request import LeaveType
from intranet.schemas.leave import LeaveApplyRequest
from intranet.services.balance import BalanceLedger
from intranet.services.leave_service import LeaveService

from conftest import TODAY, get_balance, set_balance


def test_first_read_creates_default_row(db_session, users):
    ledger = BalanceLedger(db_session)
    balance = ledger.get_or_init_balance(users["employee"])

    assert balance.id is not None
    assert Decimal(balance.casual_balance) == Decimal("0")
    assert Decimal(balance.sick_balance) == Decimal("0")
    assert Decimal(balance.lop_balance) == Decimal("10")
    # Second read returns the same row
    assert ledger.get_or_init_balance(users["employee"]).id == balance.id

def test_super_admin_balance_is_never_persisted(db_session, users):
    balance = BalanceLedger(db_session).get_or_init_balance(users["super_admin"])
    assert Decimal(balance.casual_balance) == Decimal("0")
    assert db_session.query(LeaveBalance).filter(LeaveBalance.employee_id == users["super_admin"].id).count() == 0

def test_ensure_sufficient_reports_available_and_required(db_session, users):
    balance = set_balance(db_session, users["employee"], casual="1.5")
    ledger = BalanceLedger(db_session)

    with pytest.raises(ValidationError) as exc:
        ledger.ensure_sufficient(balance, LeaveType.CASUAL, Decimal("2"))
    assert "Available: 1.5, Required: 2" in exc.value.message

    # What an edit gives back counts towards the check
    ledger.ensure_sufficient(balance, LeaveType.CASUAL, Decimal("2"), returning=Decimal("1"))

def test_lop_requires_exhausted_casual(db_session, users):
    balance = set_balance(db_session, users["employee"], casual="1", lop="10")
    with pytest.raises(ValidationError, match="casual leave is exhausted"):
        BalanceLedger(db_session).ensure_sufficient(balance, LeaveType.LOP, Decimal("1"))

def test_permission_is_not_tracked(db_session, users):
    balance = set_balance(db_session, users["employee"], casual="0", sick="0", lop="0")
    BalanceLedger(db_session).ensure_sufficient(balance, LeaveType.PERMISSION, Decimal("1"))

def test_debit_and_credit(db_session, users):
    employee = users["employee"]
    set_balance(db_session, employee, casual="5", sick="2")
    ledger = BalanceLedger(db_session)

    ledger.debit(employee.id, LeaveType.CASUAL, Decimal("1.5"))
    ledger.credit(employee.id, LeaveType.SICK, Decimal("0.5"))
    db_session.commit()

    balance = get_balance(db_session, employee)
    assert Decimal(balance.casual_balance) == Decimal("3.5")
    assert Decimal(balance.sick_balance) == Decimal("2.5")

def test_guarded_debit_refuses_overdraw(db_session, users):
    employee = users["employee"]
    set_balance(db_session, employee, casual="1")

    with pytest.raises(ValidationError, match="Insufficient casual leave balance"):
        BalanceLedger(db_session).debit(employee.id, LeaveType.CASUAL, Decimal("2"))
    db_session.rollback()

    assert Decimal(get_balance(db_session, employee).casual_balance) == Decimal("1")

def test_lop_credit_is_capped(db_session, users):
    employee = users["employee"]
    set_balance(db_session, employee, casual="0", lop="9")

    BalanceLedger(db_session).credit(employee.id, LeaveType.LOP, Decimal("3"))
    db_session.commit()

    assert Decimal(get_balance(db_session, employee).lop_balance) == Decimal("10")


@pytest.fixture
def lop_request(db_session, users, rules):
    employee = users["employee"]
    set_balance(db_session, employee, casual="0", sick="0", lop="10")
    payload = LeaveApplyRequest(
        leave_type="lop",
        start_date=date(2030, 1, 14),
        end_date=date(2030, 1, 15),
        reason="Family matter",
        doctor_note="discharge-summary.pdf",
    )
    return LeaveService(db_session).apply(employee, payload, today=TODAY)


def test_convert_lop_to_casual(db_session, users, lop_request):
    employee = users["employee"]
    assert Decimal(get_balance(db_session, employee).lop_balance) == Decimal("8")

    # Casual topped up after the LOP was taken
    set_balance(db_session, employee, casual="3", lop="8")
    leave = BalanceLedger(db_session).convert_lop_to_casual(lop_request.id, users["hr"])

    assert leave.leave_type == "casual"
    assert {d.leave_type for d in leave.days} == {"casual"}
    balance = get_balance(db_session, employee)
    assert Decimal(balance.casual_balance) == Decimal("1")
    assert Decimal(balance.lop_balance) == Decimal("10")

def test_convert_requires_enough_casual(db_session, users, lop_request):
    set_balance(db_session, users["employee"], casual="1", lop="8")
    with pytest.raises(ValidationError, match="Insufficient casual"):
        BalanceLedger(db_session).convert_lop_to_casual(lop_request.id, users["hr"])
    assert Decimal(get_balance(db_session, users["employee"]).lop_balance) == Decimal("8")

def test_convert_is_hr_or_super_admin_only(db_session, users, lop_request):
    with pytest.raises(AuthorizationError):
        BalanceLedger(db_session).convert_lop_to_casual(lop_request.id, users["manager"])

def test_convert_rejects_non_lop(db_session, users, rules):
    employee = users["employee"]
    set_balance(db_session, employee, casual="5")
    payload = LeaveApplyRequest(
        leave_type="casual", start_date=date(2030, 1, 14), end_date=date(2030, 1, 14), reason="Errand"
    )
    leave = LeaveService(db_session).apply(employee, payload, today=TODAY)
    with pytest.raises(ValidationError, match="Only LOP"):
        BalanceLedger(db_session).convert_lop_to_casual(leave.id, users["hr"])

def test_convert_requires_attached_proof(db_session, users, lop_request):
    set_balance(db_session, users["employee"], casual="3", lop="8")
    lop_request.doctor_note = None
    db_session.commit()

    with pytest.raises(ValidationError, match="No proof attached"):
        BalanceLedger(db_session).convert_lop_to_casual(lop_request.id, users["hr"])

    balance = get_balance(db_session, users["employee"])
    assert Decimal(balance.casual_balance) == Decimal("3")
    assert Decimal(balance.lop_balance) == Decimal("8")


def test_user_balance_relationship_uses_owner_key(db_session, balances, users):
    employee = users["employee"]
    set_balance(db_session, employee, casual="2", sick="1", lop="10")
    # updated_by also points at users; the owner link must not be ambiguous
    get_balance(db_session, employee).updated_by = users["hr"].id
    db_session.commit()

    db_session.expire_all()
    assert employee.leave_balance.employee_id == employee.id
    assert Decimal(employee.leave_balance.casual_balance) == Decimal("2")
    assert users["hr"].leave_balance.employee_id == users["hr"].id
