"""
Back-office API: bookings, payments, expenses, invoices and fines
"""
from datetime import timedelta
from unittest import mock

from kingrent.extensions import db
from kingrent.models import (
    AppRole,
    AuditAction,
    AuditLog,
    Booking,
    BookingAccessToken,
    BookingStatus,
    ChatEntityType,
    ChatMessage,
    ChatNotification,
    Payment,
    utcnow_naive,
)
from kingrent.services.chat import post_message, unread_counts
from tests.test_utils import KingRentTestCase, TestDataFactory


def _iso(dt):
    return dt.replace(microsecond=0).isoformat()


class AccessControlTests(KingRentTestCase):

    def test_health_is_public(self):
        self.assertEqual(self.client.get("/health").get_json(), {"status": "ok"})

    def test_login_required(self):
        self.assertEqual(self.client.get("/bookings").status_code, 401)

    def test_read_only_can_read_not_write(self):
        self.login_as(AppRole.READ_ONLY.value)
        booking = TestDataFactory.create_booking()

        self.assertEqual(self.client.get("/bookings").status_code, 200)
        self.assertEqual(self.client.get(f"/bookings/{booking.id}").status_code, 200)
        self.assertEqual(self.client.patch(f"/bookings/{booking.id}", json={"notes": "x"}).status_code, 403)
        self.assertEqual(self.client.delete(f"/bookings/{booking.id}").status_code, 403)

    def test_unknown_ids_are_404(self):
        self.login_as()
        self.assertEqual(self.client.get("/bookings/not-a-uuid").status_code, 404)
        self.assertEqual(self.client.get("/fines/00000000-0000-0000-0000-000000000000").status_code, 404)


class BookingApiTests(KingRentTestCase):

    def setUp(self):
        super().setUp()
        self.user = self.login_as(AppRole.STAFF.value)
        self.delivery = utcnow_naive() + timedelta(days=20)

    def _payload(self, **overrides):
        data = {
            "reference_code": "KR-1001",
            "client_name": "Laura Rossi",
            "client_email": "Laura.Rossi@Example.com",
            "car_model": "Porsche 911",
            "delivery_datetime": _iso(self.delivery),
            "collection_datetime": _iso(self.delivery + timedelta(days=4)),
            "amount_total": 4000,
            "currency": "chf",
        }
        data.update(overrides)
        return data

    def test_create(self):
        resp = self.client.post("/bookings", json=self._payload())
        self.assertEqual(resp.status_code, 201)
        body = resp.get_json()["booking"]
        self.assertEqual(body["status"], "draft")
        self.assertEqual(body["client_email"], "laura.rossi@example.com")
        self.assertEqual(body["currency"], "CHF")
        self.assertEqual(body["amount_paid"], 0.0)
        self.assertNotIn("immediate_reminders", resp.get_json())

        booking = Booking.query.one()
        self.assertEqual(booking.created_by_user_id, self.user.id)
        self.assertEqual(AuditLog.query.filter_by(action=AuditAction.CREATE).count(), 1)

    def test_create_validation(self):
        resp = self.client.post("/bookings", json={"client_name": "X"})
        self.assertEqual(resp.status_code, 400)
        self.assertIn("reference_code is required", resp.get_json()["details"])

        resp = self.client.post("/bookings", json=self._payload(amount_total=-5, client_email="nope"))
        details = resp.get_json()["details"]
        self.assertIn("amount_total cannot be negative", details)
        self.assertIn("client_email is not a valid email", details)

        resp = self.client.post(
            "/bookings",
            json=self._payload(collection_datetime=_iso(self.delivery - timedelta(hours=1))),
        )
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(Booking.query.count(), 0)

    def test_duplicate_reference(self):
        TestDataFactory.create_booking(reference_code="KR-1001")
        resp = self.client.post("/bookings", json=self._payload())
        self.assertEqual(resp.status_code, 409)

    def test_confirmed_last_minute_booking_sends_reminders(self):
        delivery = utcnow_naive() + timedelta(hours=20)
        payload = self._payload(
            status="confirmed",
            delivery_datetime=_iso(delivery),
            collection_datetime=_iso(delivery + timedelta(days=2)),
        )
        with mock.patch("kingrent.services.mailer.requests.post") as post:
            post.return_value.ok = True
            post.return_value.status_code = 200
            resp = self.client.post("/bookings", json=payload)

        self.assertEqual(resp.status_code, 201)
        immediate = resp.get_json()["immediate_reminders"]
        self.assertEqual(immediate["message"], "Immediate reminders sent")
        self.assertTrue(post.called)

    def test_list_filters(self):
        TestDataFactory.create_booking(client_name="Laura Rossi", status=BookingStatus.CONFIRMED)
        TestDataFactory.create_booking(client_name="Marc Dubois", status=BookingStatus.CANCELLED)

        by_status = self.client.get("/bookings?status=cancelled").get_json()
        self.assertEqual([b["client_name"] for b in by_status["items"]], ["Marc Dubois"])

        by_text = self.client.get("/bookings?q=rossi").get_json()
        self.assertEqual(by_text["total"], 1)
        self.assertEqual(by_text["page"], 1)

    def test_update(self):
        booking = TestDataFactory.create_booking()
        resp = self.client.patch(f"/bookings/{booking.id}", json={"notes": "VIP", "car_plate": "ZH 1"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["booking"]["notes"], "VIP")

        resp = self.client.patch(f"/bookings/{booking.id}", json={"client_name": ""})
        self.assertEqual(resp.status_code, 400)

    def test_status_change(self):
        booking = TestDataFactory.create_booking(status=BookingStatus.DRAFT)
        resp = self.client.post(f"/bookings/{booking.id}/status", json={"status": "confirmed"})
        self.assertEqual(resp.status_code, 200)
        # delivery is ten days out: nothing to send yet
        self.assertEqual(resp.get_json()["immediate_reminders"]["message"], "No immediate reminders needed")

        log = AuditLog.query.filter_by(action=AuditAction.STATUS_CHANGE).one()
        self.assertEqual(log.payload_snapshot, {"from": "draft", "to": "confirmed"})

        resp = self.client.post(f"/bookings/{booking.id}/status", json={"status": "lost"})
        self.assertEqual(resp.status_code, 400)

    def test_soft_delete_and_restore(self):
        booking = TestDataFactory.create_booking()

        self.assertEqual(self.client.delete(f"/bookings/{booking.id}").status_code, 200)
        self.assertEqual(self.client.get(f"/bookings/{booking.id}").status_code, 404)
        self.assertEqual(self.client.get("/bookings").get_json()["total"], 0)

        resp = self.client.post(f"/bookings/{booking.id}/restore")
        self.assertEqual(resp.status_code, 200)
        self.assertIsNone(resp.get_json()["booking"]["deleted_at"])

    def test_permanent_delete_is_admin_only(self):
        booking = TestDataFactory.create_booking()
        self.assertEqual(self.client.delete(f"/bookings/{booking.id}/permanent").status_code, 403)

        self.login_as(AppRole.ADMIN.value)
        TestDataFactory.create_payment(booking)
        resp = self.client.delete(f"/bookings/{booking.id}/permanent")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(Booking.query.count(), 0)
        self.assertEqual(Payment.query.count(), 0)

    def test_permanent_delete_removes_chat_thread(self):
        booking = TestDataFactory.create_booking()
        admin = self.login_as(AppRole.ADMIN.value)
        post_message(admin, ChatEntityType.BOOKING, booking.id, f"@[Staff]({self.user.id}) check this")
        post_message(admin, ChatEntityType.GENERAL, None, f"@[Staff]({self.user.id}) morning")
        db.session.commit()

        resp = self.client.delete(f"/bookings/{booking.id}/permanent")

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(ChatMessage.query.filter_by(entity_type=ChatEntityType.BOOKING).count(), 0)
        self.assertEqual(ChatNotification.query.count(), 1)
        self.assertEqual(unread_counts(self.user), {"general": 1})

    def test_list_paginates(self):
        for _ in range(3):
            TestDataFactory.create_booking()

        page = self.client.get("/bookings?per_page=2&page=2").get_json()
        self.assertEqual(page["total"], 3)
        self.assertEqual(page["per_page"], 2)
        self.assertEqual(len(page["items"]), 1)

        past_end = self.client.get("/bookings?per_page=2&page=5")
        self.assertEqual(past_end.status_code, 200)
        self.assertEqual(past_end.get_json()["items"], [])

    def test_update_keeps_not_null_fields_on_empty_input(self):
        booking = TestDataFactory.create_booking(rental_day_hour_tolerance=2.0, currency="CHF")

        resp = self.client.patch(
            f"/bookings/{booking.id}",
            json={"rental_day_hour_tolerance": None, "currency": "", "booking_type": None, "client_phone": ""},
        )

        self.assertEqual(resp.status_code, 200)
        db.session.refresh(booking)
        self.assertEqual(booking.rental_day_hour_tolerance, 2.0)
        self.assertEqual(booking.currency, "CHF")
        self.assertEqual(booking.booking_type, "direct")
        self.assertIsNone(booking.client_phone)

    def test_update_rejects_non_finite_numbers(self):
        booking = TestDataFactory.create_booking()
        for raw in ("nan", "inf", "-Infinity"):
            resp = self.client.patch(f"/bookings/{booking.id}", json={"amount_total": raw})
            self.assertEqual(resp.status_code, 400, raw)
        db.session.refresh(booking)
        self.assertEqual(booking.amount_total, 1000.0)

    def test_access_token(self):
        booking = TestDataFactory.create_booking()
        resp = self.client.post(f"/bookings/{booking.id}/access-token", json={"days": 7})
        self.assertEqual(resp.status_code, 201)
        body = resp.get_json()
        self.assertEqual(body["portal_url"], f"https://portal.test/booking-form/{body['token']}")
        self.assertEqual(BookingAccessToken.query.one().token, body["token"])

    def test_financials(self):
        booking = TestDataFactory.create_booking(
            rental_price_gross=1077.0,
            vat_rate=7.7,
            supplier_price=600.0,
        )
        self.client.post(f"/bookings/{booking.id}/expenses", json={"amount": 50, "category": "fuel"})

        fin = self.client.get(f"/bookings/{booking.id}/financials").get_json()
        self.assertEqual(fin["rental_price_net"], 1000.0)
        self.assertEqual(fin["expenses_total"], 50.0)
        self.assertEqual(fin["commission_net"], 350.0)
        self.assertEqual(fin["financial_status"], "profit")
        self.assertEqual(fin["rental_days"]["total_days"], 3)

    def test_rental_days_endpoint(self):
        resp = self.client.get("/rental-days?delivery=2026-03-01T10:00:00&collection=2026-03-04T11:30:00")
        body = resp.get_json()
        self.assertEqual(body["total_days"], 4)
        self.assertEqual(body["formatted_duration"], "3 days + 1.5h")

        resp = self.client.get("/rental-days?delivery=2026-03-01T10:00:00&collection=2026-03-04T11:30:00&tolerance=2")
        self.assertEqual(resp.get_json()["total_days"], 3)

        self.assertEqual(self.client.get("/rental-days").status_code, 400)


class PaymentApiTests(KingRentTestCase):

    def setUp(self):
        super().setUp()
        self.login_as(AppRole.STAFF.value)
        self.booking = TestDataFactory.create_booking(amount_total=1000.0)

    def _pay(self, **data):
        body = {"amount": 300, "method": "wire", "type": "deposit"}
        body.update(data)
        return self.client.post(f"/bookings/{self.booking.id}/payments", json=body)

    def test_payments_drive_amount_paid(self):
        first = self._pay()
        self.assertEqual(first.status_code, 201)
        self.assertEqual(first.get_json()["amount_paid"], 300.0)

        second = self._pay(amount=200, method="pos", type="balance")
        self.assertEqual(second.get_json()["amount_paid"], 500.0)

        pid = second.get_json()["payment"]["id"]
        resp = self.client.patch(f"/payments/{pid}", json={"amount": 700})
        self.assertEqual(resp.get_json()["amount_paid"], 1000.0)

        fin = self.client.get(f"/bookings/{self.booking.id}/financials").get_json()
        self.assertEqual(fin["payment_status"], "paid")

        resp = self.client.delete(f"/payments/{pid}")
        self.assertEqual(resp.get_json()["amount_paid"], 300.0)
        self.assertEqual(db.session.get(Booking, self.booking.id).amount_paid, 300.0)

    def test_payment_is_audited(self):
        resp = self._pay()
        pid = resp.get_json()["payment"]["id"]
        log = AuditLog.query.filter_by(action=AuditAction.PAY).one()
        self.assertEqual(log.entity_id, pid)

    def test_validation(self):
        resp = self._pay(amount=0, method="bitcoin")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(len(resp.get_json()["details"]), 2)
        self.assertEqual(Payment.query.count(), 0)

    def test_receipt_pdf(self):
        payment = TestDataFactory.create_payment(self.booking)
        with mock.patch("kingrent.services.document_renderer.HTML") as html:
            html.return_value.write_pdf.return_value = b"%PDF-1.7 receipt"
            resp = self.client.get(f"/payments/{payment.id}/receipt.pdf")

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.headers["Content-Type"], "application/pdf")
        self.assertEqual(resp.data, b"%PDF-1.7 receipt")
        self.assertIn(self.booking.reference_code, html.call_args.kwargs["string"])


class ClientInvoiceApiTests(KingRentTestCase):

    def setUp(self):
        super().setUp()
        self.login_as(AppRole.STAFF.value)

    def test_number_and_vat(self):
        resp = self.client.post("/client-invoices", json={"client_name": "Laura Rossi", "subtotal": 1000, "vat_rate": 8.1})
        self.assertEqual(resp.status_code, 201)
        inv = resp.get_json()["invoice"]
        year = utcnow_naive().year
        self.assertEqual(inv["invoice_number"], f"KR-INV-{year}-0001")
        self.assertEqual(inv["vat_amount"], 81.0)
        self.assertEqual(inv["total_amount"], 1081.0)

        second = self.client.post("/client-invoices", json={"client_name": "Marc", "subtotal": 10}).get_json()
        self.assertEqual(second["invoice"]["invoice_number"], f"KR-INV-{year}-0002")

    def test_explicit_number_clash(self):
        TestDataFactory.create_client_invoice(invoice_number="INV-7")
        resp = self.client.post(
            "/client-invoices",
            json={"client_name": "Laura Rossi", "subtotal": 10, "invoice_number": "INV-7"},
        )
        self.assertEqual(resp.status_code, 409)

    def test_update_recomputes_totals(self):
        inv = TestDataFactory.create_client_invoice()
        resp = self.client.patch(f"/client-invoices/{inv.id}", json={"subtotal": 200, "vat_rate": 10})
        body = resp.get_json()["invoice"]
        self.assertEqual(body["vat_amount"], 20.0)
        self.assertEqual(body["total_amount"], 220.0)

    def test_unknown_booking_link(self):
        resp = self.client.post(
            "/client-invoices",
            json={"client_name": "X", "subtotal": 1, "booking_id": "00000000-0000-0000-0000-000000000000"},
        )
        self.assertEqual(resp.status_code, 400)

    def test_soft_delete(self):
        inv = TestDataFactory.create_client_invoice()
        self.assertEqual(self.client.delete(f"/client-invoices/{inv.id}").status_code, 200)
        self.assertEqual(self.client.get("/client-invoices").get_json()["total"], 0)
        self.assertEqual(self.client.get(f"/client-invoices/{inv.id}").status_code, 404)

    def test_pdf(self):
        inv = TestDataFactory.create_client_invoice(invoice_number="KR-INV-2026-0042")
        resp = self.client.get(f"/client-invoices/{inv.id}/pdf")
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.data.startswith(b"%PDF"))
        self.assertIn("KR-INV-2026-0042.pdf", resp.headers["Content-Disposition"])

    def test_pdf_with_long_text(self):
        inv = TestDataFactory.create_client_invoice(
            description="Chauffeured airport transfer and weekend rental, Geneva to Verbier. " * 12,
            notes="Payment by wire within ten days; quote the invoice number as reference. " * 10,
        )
        resp = self.client.get(f"/client-invoices/{inv.id}/pdf")
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.data.startswith(b"%PDF"))


class SupplierInvoiceAndFineApiTests(KingRentTestCase):

    def setUp(self):
        super().setUp()
        self.login_as(AppRole.STAFF.value)
        self.booking = TestDataFactory.create_booking(car_plate="VD 777")

    def test_supplier_invoice_lifecycle(self):
        resp = self.client.post(
            "/supplier-invoices",
            json={"supplier_name": "Alpine Cars SA", "amount": 800, "issue_date": "2026-02-01", "booking_id": str(self.booking.id)},
        )
        self.assertEqual(resp.status_code, 201)
        inv = resp.get_json()["invoice"]
        self.assertEqual(inv["payment_status"], "to_pay")

        resp = self.client.post(f"/supplier-invoices/{inv['id']}/pay", json={"payment_proof_url": "https://x/proof.pdf"})
        self.assertEqual(resp.get_json()["invoice"]["payment_status"], "paid")

        listing = self.client.get("/supplier-invoices?payment_status=paid").get_json()
        self.assertEqual(listing["total"], 1)

    def test_supplier_invoice_requires_fields(self):
        resp = self.client.post("/supplier-invoices", json={"supplier_name": "Alpine Cars SA"})
        self.assertEqual(resp.status_code, 400)

    def test_fine_defaults_plate_from_booking(self):
        resp = self.client.post(
            "/fines",
            json={"amount": 120, "fine_number": "F-1", "booking_id": str(self.booking.id), "issue_date": "2026-02-10"},
        )
        self.assertEqual(resp.status_code, 201)
        fine = resp.get_json()["fine"]
        self.assertEqual(fine["car_plate"], "VD 777")
        self.assertEqual(fine["payment_status"], "unpaid")

    def test_fine_status_change_and_pay(self):
        fine = self.client.post("/fines", json={"amount": 60, "car_plate": "GE 1"}).get_json()["fine"]

        resp = self.client.patch(f"/fines/{fine['id']}", json={"payment_status": "paid"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(AuditLog.query.filter_by(action=AuditAction.STATUS_CHANGE).count(), 1)

        resp = self.client.post(f"/fines/{fine['id']}/pay")
        self.assertEqual(resp.get_json()["fine"]["payment_status"], "paid")

        self.assertEqual(self.client.get("/fines?car_plate=ge").get_json()["total"], 1)
        self.assertEqual(self.client.delete(f"/fines/{fine['id']}").status_code, 200)
        self.assertEqual(self.client.get("/fines").get_json()["total"], 0)
