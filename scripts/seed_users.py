"""
Seeds a demo hierarchy (super admin -> HR -> manager -> employee), opening
balances and a few holidays. Safe to re-run: existing rows are skipped.
"""
from datetime import date
from decimal import Decimal

from intranet.core.init_system import seed_reference_data
from intranet.database import SessionLocal, init_db
from intranet.models.holiday import Holiday
from intranet.models.leave_balance import LeaveBalance
from intranet.models.user import User, UserRole
from intranet.services.auth import get_password_hash

init_db()
db = SessionLocal()

def create_user(emp_id, email, password, role, first_name, manager=None, casual="6", sick="4"):
    # Check if user already exists to avoid unique constraint errors
    existing_user = db.query(User).filter(User.email == email).first()
    if existing_user:
        print(f"User {email} already exists. Skipping.")
        return existing_user

    user = User(
        emp_id=emp_id,
        email=email,
        hashed_password=get_password_hash(password),
        role=role,
        first_name=first_name,
        last_name="Demo",
        reporting_manager_id=manager.id if manager else None,
        is_active=True
    )
    db.add(user)
    db.flush()
    if role != UserRole.SUPER_ADMIN:
        db.add(LeaveBalance(
            employee_id=user.id,
            casual_balance=Decimal(casual),
            sick_balance=Decimal(sick),
            lop_balance=Decimal("10"),
        ))
    db.commit()
    db.refresh(user)
    print(f"Created {role.value} -> {email}")
    return user

def create_holiday(day, name):
    if db.query(Holiday).filter(Holiday.holiday_date == day).first():
        return
    db.add(Holiday(holiday_date=day, holiday_name=name, is_active=True))
    db.commit()
    print(f"Created holiday {day.isoformat()} {name}")

try:
    seed_reference_data(db)

    admin = create_user("SA001", "admin@example.com", "Admin123!", UserRole.SUPER_ADMIN, "Sam")
    hr = create_user("HR001", "hr@example.com", "HrUser123!", UserRole.HR, "Hana", manager=admin)
    manager = create_user("MG001", "manager@example.com", "Manager123!", UserRole.MANAGER, "Omar", manager=hr)
    create_user("EM001", "employee@example.com", "Employee123!", UserRole.EMPLOYEE, "Lina", manager=manager)

    year = date.today().year
    create_holiday(date(year, 1, 1), "New Year's Day")
    create_holiday(date(year, 5, 1), "Labour Day")
    create_holiday(date(year, 12, 25), "Christmas Day")
finally:
    db.close()
