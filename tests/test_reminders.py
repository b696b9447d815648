"""
Payment reminder eligibility, webhook dispatch and the immediate trigger
"""
from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

import requests

from kingrent.extensions import db
from kingrent.models import (
    AuditAction,
    AuditLog,
    BOOKING_TYPE_AGENCY,
    BookingStatus,
    EmailTemplate,
    PAYMENT_OPTION_DOWN_PAYMENT,
)
from kingrent.services.mailer import MailerNotConfigured, render_reminder_email
from kingrent.services.reminders import (
    days_until,
    run_payment_reminders,
    should_send_balance_reminder,
    should_send_deposit_reminder,
    trigger_immediate_reminders,
)
from tests.test_utils import KingRentTestCase, TestDataFactory

NOW = datetime(2026, 5, 10, 12, 0)
WEBHOOK = "kingrent.services.mailer.requests.post"


def _ok_response():
    resp = MagicMock()
    resp.ok = True
    resp.status_code = 200
    return resp


class DaysUntilTests(KingRentTestCase):

    def test_rounds_up(self):
        self.assertEqual(days_until(NOW + timedelta(hours=30), NOW), 2)
        self.assertEqual(days_until(NOW + timedelta(days=3), NOW), 3)
        self.assertEqual(days_until(NOW + timedelta(minutes=1), NOW), 1)


class BalanceEligibilityTests(KingRentTestCase):

    def _booking(self, days, **kwargs):
        return TestDataFactory.create_booking(
            delivery_datetime=NOW + timedelta(days=days),
            amount_total=1000.0,
            amount_paid=kwargs.pop("amount_paid", 300.0),
            **kwargs,
        )

    def test_first_reminder_within_seven_days(self):
        self.assertTrue(should_send_balance_reminder(self._booking(7), NOW))
        self.assertFalse(should_send_balance_reminder(self._booking(8), NOW))

    def test_nothing_to_collect(self):
        self.assertFalse(should_send_balance_reminder(self._booking(2, amount_paid=1000.0), NOW))

    def test_second_reminder_after_four_quiet_days(self):
        b = self._booking(3, balance_payment_reminder_sent_at=NOW - timedelta(days=4, hours=1))
        self.assertTrue(should_send_balance_reminder(b, NOW))

        b.balance_payment_reminder_sent_at = NOW - timedelta(days=3)
        self.assertFalse(should_send_balance_reminder(b, NOW))

    def test_final_reminder_after_two_quiet_days(self):
        b = self._booking(1, balance_payment_reminder_sent_at=NOW - timedelta(days=2, hours=1))
        self.assertTrue(should_send_balance_reminder(b, NOW))

        b.balance_payment_reminder_sent_at = NOW - timedelta(hours=30)
        self.assertFalse(should_send_balance_reminder(b, NOW))

    def test_down_payment_plan_follows_due_date(self):
        b = self._booking(
            20,
            payment_amount_option=PAYMENT_OPTION_DOWN_PAYMENT,
            balance_due_date=NOW + timedelta(days=3),
        )
        self.assertTrue(should_send_balance_reminder(b, NOW))

        b.balance_payment_reminder_sent_at = NOW - timedelta(hours=1)
        self.assertFalse(should_send_balance_reminder(b, NOW))

        b.balance_due_date = NOW + timedelta(hours=20)
        b.balance_payment_reminder_sent_at = NOW - timedelta(hours=13)
        self.assertTrue(should_send_balance_reminder(b, NOW))

    def test_down_payment_plan_ignores_delivery_window(self):
        b = self._booking(
            5,
            payment_amount_option=PAYMENT_OPTION_DOWN_PAYMENT,
            balance_due_date=NOW + timedelta(days=10),
        )
        self.assertFalse(should_send_balance_reminder(b, NOW))

    def test_immediate_throttled_to_two_hours(self):
        b = self._booking(30)
        decision = should_send_balance_reminder(b, NOW, immediate=True)
        self.assertTrue(decision)
        self.assertEqual(decision.reminder_type, "balance_payment_immediate")

        b.balance_payment_reminder_sent_at = NOW - timedelta(hours=1)
        self.assertFalse(should_send_balance_reminder(b, NOW, immediate=True))


class DepositEligibilityTests(KingRentTestCase):

    def _booking(self, days, **kwargs):
        kwargs.setdefault("security_deposit_amount", 2000.0)
        return TestDataFactory.create_booking(delivery_datetime=NOW + timedelta(days=days), **kwargs)

    def test_first_reminder_within_three_days(self):
        self.assertTrue(should_send_deposit_reminder(self._booking(3), NOW))
        self.assertFalse(should_send_deposit_reminder(self._booking(4), NOW))

    def test_skipped_when_authorized_or_zero(self):
        self.assertFalse(should_send_deposit_reminder(self._booking(2, security_deposit_authorized_at=NOW), NOW))
        self.assertFalse(should_send_deposit_reminder(self._booking(2, security_deposit_amount=0.0), NOW))

    def test_resend_inside_last_day(self):
        b = self._booking(1, security_deposit_reminder_sent_at=NOW - timedelta(days=2, minutes=1))
        self.assertTrue(should_send_deposit_reminder(b, NOW))


class RunRemindersTests(KingRentTestCase):

    def _due_booking(self, **kwargs):
        values = dict(
            delivery_datetime=NOW + timedelta(days=2),
            amount_total=1000.0,
            amount_paid=200.0,
            security_deposit_amount=1500.0,
        )
        values.update(kwargs)
        return TestDataFactory.create_booking(**values)

    @patch(WEBHOOK)
    def test_sends_both_reminders_and_stamps_booking(self, mock_post):
        mock_post.return_value = _ok_response()
        booking = self._due_booking()

        result = run_payment_reminders(now=NOW)

        self.assertTrue(result["success"])
        self.assertEqual(result["reminders_sent"], 2)
        self.assertEqual(mock_post.call_count, 2)

        payload = mock_post.call_args_list[0].kwargs["json"]
        self.assertEqual(payload["to_email"], "john.smith@example.com")
        self.assertEqual(payload["reminder_type"], "balance_payment")
        self.assertEqual(payload["balance_amount"], 800.0)
        self.assertEqual(payload["days_until_delivery"], 2)
        self.assertIn(booking.reference_code, payload["email_subject"])

        db.session.refresh(booking)
        self.assertEqual(booking.balance_payment_reminder_sent_at, NOW)
        self.assertEqual(booking.security_deposit_reminder_sent_at, NOW)
        self.assertEqual(AuditLog.query.filter_by(action=AuditAction.REMINDER_SENT).count(), 2)

    @patch(WEBHOOK)
    def test_second_run_sends_nothing(self, mock_post):
        mock_post.return_value = _ok_response()
        self._due_booking()

        run_payment_reminders(now=NOW)
        result = run_payment_reminders(now=NOW + timedelta(hours=1))

        self.assertEqual(result["reminders_sent"], 0)
        self.assertEqual(mock_post.call_count, 2)

    @patch(WEBHOOK)
    def test_excluded_bookings(self, mock_post):
        mock_post.return_value = _ok_response()
        self._due_booking(status=BookingStatus.DRAFT)
        self._due_booking(booking_type=BOOKING_TYPE_AGENCY)
        self._due_booking(imported_from_email=True)
        self._due_booking(client_email=None)
        self._due_booking(deleted_at=NOW)
        self._due_booking(
            delivery_datetime=NOW - timedelta(days=1),
            collection_datetime=NOW + timedelta(days=1),
        )

        result = run_payment_reminders(now=NOW)

        self.assertEqual(result["reminders_sent"], 0)
        mock_post.assert_not_called()

    @patch(WEBHOOK)
    def test_failure_does_not_stop_other_bookings(self, mock_post):
        failing = self._due_booking(client_email="broken@example.com", security_deposit_amount=0.0)
        healthy = self._due_booking(
            client_email="fine@example.com",
            security_deposit_amount=0.0,
            delivery_datetime=NOW + timedelta(days=3),
        )

        def fake_post(url, json, timeout):
            if json["to_email"] == "broken@example.com":
                raise requests.ConnectionError("connection refused")
            return _ok_response()

        mock_post.side_effect = fake_post

        result = run_payment_reminders(now=NOW)

        self.assertEqual(result["reminders_sent"], 1)
        by_booking = {r["booking_id"]: r for r in result["results"]}
        self.assertFalse(by_booking[str(failing.id)]["sent"])
        self.assertIn("connection refused", by_booking[str(failing.id)]["error"])
        self.assertTrue(by_booking[str(healthy.id)]["sent"])

        db.session.refresh(failing)
        db.session.refresh(healthy)
        self.assertIsNone(failing.balance_payment_reminder_sent_at)
        self.assertEqual(healthy.balance_payment_reminder_sent_at, NOW)

    @patch(WEBHOOK)
    def test_non_2xx_is_a_failure(self, mock_post):
        resp = MagicMock(ok=False, status_code=502, text="bad gateway")
        mock_post.return_value = resp
        booking = self._due_booking(security_deposit_amount=0.0)

        result = run_payment_reminders(now=NOW)

        self.assertEqual(result["reminders_sent"], 0)
        self.assertIn("502", result["results"][0]["error"])
        db.session.refresh(booking)
        self.assertIsNone(booking.balance_payment_reminder_sent_at)

    def test_missing_webhook_url(self):
        self.app.config["PAYMENT_REMINDER_WEBHOOK_URL"] = None
        with self.assertRaises(MailerNotConfigured):
            run_payment_reminders(now=NOW)

    @patch(WEBHOOK)
    def test_single_booking_filter(self, mock_post):
        mock_post.return_value = _ok_response()
        target = self._due_booking(security_deposit_amount=0.0)
        self._due_booking(security_deposit_amount=0.0)

        result = run_payment_reminders(booking_id=target.id, now=NOW)

        self.assertEqual(result["reminders_sent"], 1)
        self.assertEqual(result["results"][0]["booking_id"], str(target.id))


class ImmediateTriggerTests(KingRentTestCase):

    @patch(WEBHOOK)
    def test_far_delivery_is_skipped(self, mock_post):
        booking = TestDataFactory.create_booking(delivery_datetime=NOW + timedelta(hours=72), amount_paid=0.0)

        result = trigger_immediate_reminders(booking, now=NOW)

        self.assertEqual(result["message"], "No immediate reminders needed")
        self.assertEqual(result["hours_until_delivery"], 72.0)
        mock_post.assert_not_called()

    @patch(WEBHOOK)
    def test_last_minute_booking_sends_now(self, mock_post):
        mock_post.return_value = _ok_response()
        booking = TestDataFactory.create_booking(
            delivery_datetime=NOW + timedelta(hours=20),
            amount_total=900.0,
            amount_paid=0.0,
            security_deposit_amount=1000.0,
        )

        result = trigger_immediate_reminders(booking, now=NOW)

        self.assertEqual(result["message"], "Immediate reminders sent")
        self.assertEqual(result["reminders_sent"], 2)
        types = sorted(c.kwargs["json"]["reminder_type"] for c in mock_post.call_args_list)
        self.assertEqual(types, ["balance_payment_immediate", "security_deposit_immediate"])
        self.assertEqual(
            AuditLog.query.filter_by(action=AuditAction.IMMEDIATE_REMINDERS_TRIGGERED).count(), 1
        )

    @patch(WEBHOOK)
    def test_failed_sends_are_reported(self, mock_post):
        mock_post.return_value = MagicMock(ok=False, status_code=502, text="bad gateway")
        booking = TestDataFactory.create_booking(
            delivery_datetime=NOW + timedelta(hours=20),
            amount_total=900.0,
            amount_paid=0.0,
            security_deposit_amount=0.0,
        )

        result = trigger_immediate_reminders(booking, now=NOW)

        self.assertFalse(result["success"])
        self.assertEqual(result["message"], "Immediate reminders failed")
        self.assertEqual(result["reminders_sent"], 0)
        self.assertFalse(result["results"][0]["sent"])

    @patch(WEBHOOK)
    def test_paid_up_booking_has_nothing_due(self, mock_post):
        booking = TestDataFactory.create_booking(
            delivery_datetime=NOW + timedelta(hours=20),
            amount_total=900.0,
            amount_paid=900.0,
            security_deposit_amount=0.0,
        )

        result = trigger_immediate_reminders(booking, now=NOW)

        self.assertTrue(result["success"])
        self.assertEqual(result["message"], "No reminders due")
        mock_post.assert_not_called()


class ReminderTemplateTests(KingRentTestCase):

    def test_default_template(self):
        booking = TestDataFactory.create_booking(delivery_datetime=NOW + timedelta(days=2))
        tok = TestDataFactory.create_access_token(booking)

        subject, html = render_reminder_email("balance_reminder", booking, amount=800.0, days_until_delivery=2)

        self.assertEqual(subject, f"Balance Payment Reminder - {booking.reference_code}")
        self.assertIn("800.00", html)
        self.assertIn(f"https://portal.test/booking-form/{tok.token}", html)

    def test_custom_template_placeholders(self):
        booking = TestDataFactory.create_booking(delivery_datetime=NOW + timedelta(days=2))
        db.session.add(
            EmailTemplate(
                template_type="security_deposit_reminder",
                subject_line="Deposit for {{reference_code}}",
                html_content="<p>Hi {{client_name}}, {{deposit_amount}} {{currency}} {{unknown}}</p>",
                is_active=True,
            )
        )
        db.session.commit()

        subject, html = render_reminder_email(
            "security_deposit_reminder", booking, amount=1500, days_until_delivery=2
        )

        self.assertEqual(subject, f"Deposit for {booking.reference_code}")
        self.assertEqual(html, "<p>Hi John Smith, 1500.00 EUR {{unknown}}</p>")
