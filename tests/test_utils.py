"""
Test utilities and factories for creating test data
"""
import random
import shutil
import string
import tempfile
import unittest
from datetime import timedelta

from flask import g

from kingrent import create_app
from kingrent.extensions import db
from kingrent.models import (
    AppRole,
    Booking,
    BookingAccessToken,
    BookingStatus,
    ClientInvoice,
    Payment,
    PaymentMethod,
    PaymentType,
    SupplierInvoice,
    User,
    utcnow_naive,
)
from kingrent.settings import TestingConfig
from kingrent.utils.passwords import hash_password

DEFAULT_PASSWORD = "Secret-pass-123"

# Smallest byte strings that pass content sniffing
PDF_BYTES = b"%PDF-1.4\n%test\n"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


class TestDataFactory:
    """Factory class for creating test data"""

    @staticmethod
    def random_string(length=8):
        return "".join(random.choices(string.ascii_uppercase + string.digits, k=length))

    @staticmethod
    def create_user(role=AppRole.STAFF.value, email=None, name=None, password=DEFAULT_PASSWORD, **kwargs):
        user = User(
            name=name or f"User {TestDataFactory.random_string(4)}",
            email=email or f"user_{TestDataFactory.random_string(6).lower()}@kingrent.test",
            role=role,
            password_hash=hash_password(password),
            **kwargs,
        )
        db.session.add(user)
        db.session.commit()
        return user

    @staticmethod
    def create_booking(delivery_in=timedelta(days=10), duration=timedelta(days=3), **kwargs):
        now = utcnow_naive()
        delivery = kwargs.pop("delivery_datetime", now + delivery_in)
        values = dict(
            reference_code=f"KR-{TestDataFactory.random_string(6)}",
            client_name="John Smith",
            client_email="john.smith@example.com",
            car_model="Mercedes G63",
            car_plate="GE 12345",
            delivery_datetime=delivery,
            collection_datetime=delivery + duration,
            status=BookingStatus.CONFIRMED,
            amount_total=1000.0,
            currency="EUR",
        )
        values.update(kwargs)
        booking = Booking(**values)
        db.session.add(booking)
        db.session.commit()
        return booking

    @staticmethod
    def create_payment(booking, amount=100.0, method=PaymentMethod.WIRE, type=PaymentType.DEPOSIT):
        payment = Payment(booking=booking, amount=amount, method=method, type=type, currency=booking.currency)
        db.session.add(payment)
        db.session.commit()
        return payment

    @staticmethod
    def create_client_invoice(client_name="John Smith", booking=None, **kwargs):
        values = dict(
            invoice_number=f"KR-INV-T-{TestDataFactory.random_string(6)}",
            client_name=client_name,
            booking_id=booking.id if booking is not None else None,
            subtotal=100.0,
            vat_rate=0.0,
            vat_amount=0.0,
            total_amount=100.0,
        )
        values.update(kwargs)
        inv = ClientInvoice(**values)
        db.session.add(inv)
        db.session.commit()
        return inv

    @staticmethod
    def create_supplier_invoice(supplier_name="Alpine Cars SA", amount=500.0, **kwargs):
        inv = SupplierInvoice(supplier_name=supplier_name, amount=amount, **kwargs)
        db.session.add(inv)
        db.session.commit()
        return inv

    @staticmethod
    def create_access_token(booking, days=30):
        tok = BookingAccessToken.issue(booking, days=days)
        db.session.commit()
        return tok


class KingRentTestCase(unittest.TestCase):
    """App + empty in-memory database per test; storage in a temp directory."""

    def setUp(self):
        self.storage_dir = tempfile.mkdtemp(prefix="kingrent-test-")
        self.app = create_app(TestingConfig)
        self.app.config["DOCUMENT_STORAGE_DIR"] = self.storage_dir
        self.app_context = self.app.app_context()
        self.app_context.push()
        db.create_all()
        self.client = self.app.test_client()

    def tearDown(self):
        db.session.remove()
        db.drop_all()
        self.app_context.pop()
        shutil.rmtree(self.storage_dir, ignore_errors=True)

    def login(self, user):
        with self.client.session_transaction() as sess:
            sess["_user_id"] = str(user.id)
            sess["_fresh"] = True
        # requests share the pushed app context, so drop the cached user from g
        g.pop("_login_user", None)

    def logout(self):
        with self.client.session_transaction() as sess:
            sess.clear()
        g.pop("_login_user", None)

    def login_as(self, role=AppRole.STAFF.value):
        user = TestDataFactory.create_user(role=role)
        self.login(user)
        return user
