"""
Login, lockout and password change
"""
from datetime import timedelta

from kingrent.extensions import db
from kingrent.models import User, utcnow_naive
from kingrent.utils.passwords import MAX_FAILED_LOGINS, validate_password, verify_password
from tests.test_utils import DEFAULT_PASSWORD, KingRentTestCase, TestDataFactory


class PasswordPolicyTests(KingRentTestCase):

    def test_rules(self):
        self.assertEqual(validate_password("Short1A"), (False, "Password must be at least 10 characters."))
        self.assertFalse(validate_password("alllowercase123")[0])
        self.assertFalse(validate_password("ALLUPPERCASE123")[0])
        self.assertFalse(validate_password("NoDigitsHereAtAll")[0])
        self.assertEqual(validate_password(DEFAULT_PASSWORD), (True, ""))


class LoginTests(KingRentTestCase):

    def setUp(self):
        super().setUp()
        self.user = TestDataFactory.create_user(email="ops@kingrent.test")

    def _login(self, password=DEFAULT_PASSWORD, email="ops@kingrent.test"):
        return self.client.post("/login", json={"email": email, "password": password})

    def test_success(self):
        resp = self._login(email="OPS@kingrent.test")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["user"]["email"], "ops@kingrent.test")

        me = self.client.get("/me")
        self.assertEqual(me.status_code, 200)
        self.assertEqual(me.get_json()["user"]["id"], self.user.id)
        self.assertIsNotNone(db.session.get(User, self.user.id).last_login_at)

    def test_missing_fields(self):
        resp = self.client.post("/login", json={"email": "ops@kingrent.test"})
        self.assertEqual(resp.status_code, 400)

    def test_wrong_password_and_unknown_user(self):
        self.assertEqual(self._login(password="Wrong-pass-999").status_code, 401)
        self.assertEqual(self._login(email="nobody@kingrent.test").status_code, 401)
        self.assertEqual(db.session.get(User, self.user.id).failed_login_attempts, 1)

    def test_lockout_after_repeated_failures(self):
        for _ in range(MAX_FAILED_LOGINS):
            self.assertEqual(self._login(password="Wrong-pass-999").status_code, 401)

        resp = self._login()
        self.assertEqual(resp.status_code, 423)

        user = db.session.get(User, self.user.id)
        self.assertIsNotNone(user.locked_until)
        self.assertEqual(user.failed_login_attempts, 0)

    def test_expired_lock_is_ignored(self):
        self.user.locked_until = utcnow_naive() - timedelta(minutes=1)
        db.session.commit()
        self.assertEqual(self._login().status_code, 200)

    def test_disabled_account(self):
        self.user.is_active = False
        db.session.commit()
        self.assertEqual(self._login().status_code, 403)

    def test_logout(self):
        self._login()
        self.assertEqual(self.client.post("/logout").status_code, 200)
        self.assertEqual(self.client.get("/me").status_code, 401)


class ChangePasswordTests(KingRentTestCase):

    def setUp(self):
        super().setUp()
        self.user = self.login_as()
        self.user.must_change_password = True
        db.session.commit()

    def test_change(self):
        resp = self.client.post(
            "/change-password",
            json={"current_password": DEFAULT_PASSWORD, "new_password": "Another-pass-456"},
        )
        self.assertEqual(resp.status_code, 200)

        user = db.session.get(User, self.user.id)
        self.assertTrue(verify_password(user.password_hash, "Another-pass-456"))
        self.assertFalse(user.must_change_password)
        self.assertIsNotNone(user.password_changed_at)

    def test_wrong_current_password(self):
        resp = self.client.post(
            "/change-password",
            json={"current_password": "Nope-nope-123", "new_password": "Another-pass-456"},
        )
        self.assertEqual(resp.status_code, 400)

    def test_weak_or_same_password(self):
        weak = self.client.post(
            "/change-password",
            json={"current_password": DEFAULT_PASSWORD, "new_password": "weak"},
        )
        same = self.client.post(
            "/change-password",
            json={"current_password": DEFAULT_PASSWORD, "new_password": DEFAULT_PASSWORD},
        )
        self.assertEqual(weak.status_code, 400)
        self.assertEqual(same.status_code, 400)
