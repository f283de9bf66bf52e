import logging
import pytest
import threading
from datetime import date

from intranet.core.config import EmailSettings
from intranet.core.exceptions import NotFoundError
from intranet.schemas.leave import LeaveApplyRequest
from intranet.services import email as email_module
from intranet.services.approval import ApprovalWorkflow
from intranet.services.email import EmailSender
from intranet.services.email_scheduler import DeferredEmailScheduler
from intranet.services.email_templates import render_application_email, render_status_email
from intranet.services.leave_notifications import LeaveNotifier
from intranet.services.leave_service import LeaveService
from intranet.services.notification import NotificationService
from intranet.models.user import UserRole

from conftest import TODAY, FakeSender, make_user, set_balance


def base_context(**overrides):
    context = {
        "app_name": "HR Intranet",
        "portal_url": "http://portal",
        "request_id": 7,
        "employee_name": "Lina Test",
        "employee_emp_id": "EM001",
        "leave_type": "casual",
        "start_date": "2030-01-14",
        "start_type": "full",
        "end_date": "2030-01-16",
        "end_type": "full",
        "no_of_days": "3",
        "reason": "Trip",
        "permission_window": None,
    }
    context.update(overrides)
    return context


class TestDeferredEmailScheduler:
    def test_fires_once_after_delay(self):
        fired = []
        done = threading.Event()

        def callback(request_id):
            fired.append(request_id)
            done.set()

        scheduler = DeferredEmailScheduler(callback, delay_seconds=0.05)
        scheduler.schedule(1)
        assert scheduler.is_scheduled(1)
        assert done.wait(5)
        assert fired == [1]
        assert not scheduler.is_scheduled(1)

    def test_reschedule_replaces_pending_send(self):
        fired = []
        done = threading.Event()

        def callback(request_id):
            fired.append(request_id)
            done.set()

        scheduler = DeferredEmailScheduler(callback, delay_seconds=0.2)
        scheduler.schedule(1)
        scheduler.schedule(1)
        assert done.wait(5)
        # Give a replaced timer the chance to misfire
        threading.Event().wait(0.4)
        assert fired == [1]

    def test_cancel(self):
        fired = []
        scheduler = DeferredEmailScheduler(fired.append, delay_seconds=0.05)
        scheduler.schedule(3)
        assert scheduler.cancel(3)
        assert not scheduler.cancel(3)
        threading.Event().wait(0.2)
        assert fired == []

    def test_callback_errors_are_contained(self):
        done = threading.Event()

        def callback(request_id):
            done.set()
            raise RuntimeError("smtp down")

        scheduler = DeferredEmailScheduler(callback, delay_seconds=0.01)
        scheduler.schedule(4)
        assert done.wait(5)

    def test_cancel_all(self):
        scheduler = DeferredEmailScheduler(lambda request_id: None, delay_seconds=60)
        scheduler.schedule(1)
        scheduler.schedule(2)
        assert scheduler.cancel_all() == 2
        assert not scheduler.is_scheduled(1)


class TestTemplates:
    def test_application_subject_and_escaping(self):
        subject, html, text = render_application_email(
            base_context(recipient_name="Omar Test", urgent=False, reason="<script>x</script>")
        )
        assert subject == "Casual Leave application from Lina Test (EM001)"
        assert "&lt;script&gt;" in html
        assert "<script>" not in html
        assert "Omar Test" in text

    def test_urgent_application(self):
        subject, html, text = render_application_email(base_context(recipient_name="Omar Test", urgent=True))
        assert subject.startswith("URGENT: ")
        assert "URGENT" in text

    def test_status_email(self):
        subject, html, text = render_status_email(base_context(
            status="partially_approved",
            approver_name="Hana Test",
            approver_role="HR",
            approved_days="2",
            rejected_days="1",
            rejection_reason="Audit week",
            comment="Audit week",
        ))
        assert subject == "Your Casual Leave request has been Partially Approved"
        assert "Audit week" in html
        assert "Hana Test" in text


class TestRecipients:
    def test_employee_goes_to_manager_and_hr(self, db_session, users):
        recipients = LeaveNotifier(db_session).application_recipients(users["employee"])
        assert [u.id for u in recipients] == [users["manager"].id, users["hr"].id]

    def test_manager_goes_to_hr_only(self, db_session, users):
        recipients = LeaveNotifier(db_session).application_recipients(users["manager"])
        assert [u.id for u in recipients] == [users["hr"].id]

    def test_hr_goes_to_every_super_admin(self, db_session, users):
        second = make_user(db_session, "SA002", UserRole.SUPER_ADMIN, "Zaid")
        recipients = LeaveNotifier(db_session).application_recipients(users["hr"])
        assert [u.id for u in recipients] == [users["super_admin"].id, second.id]

    def test_super_admin_only_as_direct_approver(self, db_session, users):
        # Reports straight to a super admin: L1 stays, nobody above it
        direct = make_user(db_session, "EM003", UserRole.EMPLOYEE, "Nour", manager=users["super_admin"])
        assert [u.id for u in LeaveNotifier(db_session).application_recipients(direct)] == [users["super_admin"].id]

        # Manager reports to a super admin: L2 is dropped
        manager = make_user(db_session, "MG003", UserRole.MANAGER, "Karim", manager=users["super_admin"])
        report = make_user(db_session, "EM004", UserRole.EMPLOYEE, "Dana", manager=manager)
        assert [u.id for u in LeaveNotifier(db_session).application_recipients(report)] == [manager.id]

    def test_unattached_employee_falls_back_to_super_admin(self, db_session, users):
        loner = make_user(db_session, "EM005", UserRole.EMPLOYEE, "Tala")
        assert LeaveNotifier(db_session).next_approver(loner).id == users["super_admin"].id


class TestStatusEmail:
    @pytest.fixture
    def leave(self, db_session, balances, rules):
        payload = LeaveApplyRequest(
            leave_type="casual", start_date=date(2030, 1, 14), end_date=date(2030, 1, 16), reason="Trip"
        )
        return LeaveService(db_session).apply(balances["employee"], payload, today=TODAY)

    def test_hr_decision_copies_manager(self, db_session, users, leave):
        ApprovalWorkflow(db_session).approve_request(leave.id, users["hr"])
        sender = FakeSender()
        assert LeaveNotifier(db_session, sender=sender).send_status_email(leave.id)

        mail = sender.sent[0]
        assert mail["to"] == [users["employee"].email]
        assert mail["cc"] == [users["manager"].email]
        assert mail["subject"] == "Your Casual Leave request has been Approved"

    def test_super_admin_decision_copies_manager_and_hr(self, db_session, users, leave):
        workflow = ApprovalWorkflow(db_session)
        workflow.approve_day(leave.id, leave.days[0].id, users["hr"])
        workflow.reject_request(leave.id, users["super_admin"], "Quarter close")
        sender = FakeSender()
        LeaveNotifier(db_session, sender=sender).send_status_email(leave.id)

        mail = sender.sent[0]
        assert mail["cc"] == [users["manager"].email, users["hr"].email]
        assert "Quarter close" in mail["html"]

    def test_manager_decision_has_no_cc(self, db_session, users, leave):
        ApprovalWorkflow(db_session).approve_request(leave.id, users["manager"])
        sender = FakeSender()
        LeaveNotifier(db_session, sender=sender).send_status_email(leave.id)
        assert sender.sent[0]["cc"] == []

    def test_missing_request_is_skipped(self, db_session, users):
        sender = FakeSender()
        assert LeaveNotifier(db_session, sender=sender).send_status_email(404) is False
        assert sender.sent == []

    def test_send_failure_is_logged_with_context(self, db_session, users, leave, caplog):
        class BrokenSender:
            def send(self, **kwargs):
                raise RuntimeError("smtp down")

        ApprovalWorkflow(db_session).approve_request(leave.id, users["manager"])
        with caplog.at_level(logging.WARNING):
            assert LeaveNotifier(db_session, sender=BrokenSender()).send_status_email(leave.id) is False

        record = next(r for r in caplog.records if r.getMessage() == "Leave status email failed")
        assert record.levelno == logging.WARNING
        assert record.leave_request_id == leave.id
        assert record.error == "smtp down"
        assert record.exc_info is not None



class TestEmailSender:
    def test_disabled_without_credentials(self):
        sender = EmailSender(EmailSettings(smtp_user=None, smtp_password=None))
        assert sender.send(["lina@acme.com"], "Hi", "<p>Hi</p>") is False

    def test_no_recipients(self):
        sender = EmailSender(EmailSettings(smtp_user="u", smtp_password="p"))
        assert sender.send([], "Hi", "<p>Hi</p>") is False

    def test_delivers_over_smtp(self, monkeypatch):
        delivered = []

        class FakeSMTP:
            def __init__(self, host, port, timeout=None):
                self.host = host

            def __enter__(self):
                return self

            def __exit__(self, *exc):
                return False

            def starttls(self):
                pass

            def login(self, user, password):
                pass

            def sendmail(self, sender, recipients, body):
                delivered.append((sender, recipients, body))

        monkeypatch.setattr(email_module.smtplib, "SMTP", FakeSMTP)
        sender = EmailSender(EmailSettings(smtp_user="u", smtp_password="p", email_from="hr@acme.com"))

        assert sender.send(["lina@acme.com"], "Hi", "<p>Hi</p>", text="Hi", cc=["omar@acme.com", "lina@acme.com"])
        assert delivered[0][0] == "hr@acme.com"
        assert delivered[0][1] == ["lina@acme.com", "omar@acme.com"]
        assert "Cc: omar@acme.com" in delivered[0][2]


class TestNotificationService:
    def test_inbox_lifecycle(self, db_session, users):
        user_id = users["employee"].id
        first = NotificationService.notify_user(db_session, user_id, "One", "first")
        NotificationService.notify_user(db_session, user_id, "Two", "second")

        items, total, unread = NotificationService.list_for_user(db_session, user_id)
        assert (total, unread) == (2, 2)

        NotificationService.mark_read(db_session, first.id, user_id)
        items, total, unread = NotificationService.list_for_user(db_session, user_id, unread_only=True)
        assert [n.title for n in items] == ["Two"]
        assert unread == 1

        assert NotificationService.mark_all_read(db_session, user_id) == 1
        NotificationService.delete(db_session, first.id, user_id)
        assert NotificationService.list_for_user(db_session, user_id)[1] == 1

    def test_other_users_notification_is_not_found(self, db_session, users):
        note = NotificationService.notify_user(db_session, users["employee"].id, "Mine", "private")
        with pytest.raises(NotFoundError):
            NotificationService.mark_read(db_session, note.id, users["manager"].id)
