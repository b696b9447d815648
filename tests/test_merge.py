"""
Name merge service and admin endpoints
"""
from kingrent.extensions import db
from kingrent.models import AppRole, AuditAction, AuditLog, Booking, ClientInvoice, SupplierInvoice, utcnow_naive
from kingrent.services.merge import MergeError, list_names, merge_names
from tests.test_utils import KingRentTestCase, TestDataFactory


class ListNamesTests(KingRentTestCase):

    def test_counts_by_spelling(self):
        TestDataFactory.create_booking(client_name="Laura Rossi")
        TestDataFactory.create_booking(client_name="Laura Rossi")
        TestDataFactory.create_booking(client_name="laura rossi")
        TestDataFactory.create_client_invoice(client_name="Laura Rossi")

        names = {e["name"]: e for e in list_names("client")}

        self.assertEqual(names["Laura Rossi"]["booking_count"], 2)
        self.assertEqual(names["Laura Rossi"]["invoice_count"], 1)
        self.assertEqual(names["laura rossi"]["booking_count"], 1)
        self.assertEqual(names["laura rossi"]["invoice_count"], 0)

    def test_sorted_and_skips_deleted(self):
        TestDataFactory.create_booking(client_name="Zoe Weber")
        TestDataFactory.create_booking(client_name="Adam Frei")
        TestDataFactory.create_booking(client_name="Gone Client", deleted_at=utcnow_naive())

        self.assertEqual([e["name"] for e in list_names("client")], ["Adam Frei", "Zoe Weber"])

    def test_supplier_names(self):
        TestDataFactory.create_booking(supplier_name="Alpine Cars SA")
        TestDataFactory.create_supplier_invoice(supplier_name="Alpine Cars SA")
        TestDataFactory.create_supplier_invoice(supplier_name="Alpine Cars")

        names = {e["name"]: e for e in list_names("supplier")}

        self.assertEqual(names["Alpine Cars SA"], {"name": "Alpine Cars SA", "booking_count": 1, "invoice_count": 1})
        self.assertEqual(names["Alpine Cars"]["invoice_count"], 1)

    def test_unknown_kind(self):
        with self.assertRaises(MergeError):
            list_names("driver")


class MergeNamesTests(KingRentTestCase):

    def test_merges_client_names_everywhere(self):
        b1 = TestDataFactory.create_booking(client_name="Laura Rossi")
        b2 = TestDataFactory.create_booking(client_name="laura rossi")
        b3 = TestDataFactory.create_booking(client_name="L. Rossi", deleted_at=utcnow_naive())
        inv = TestDataFactory.create_client_invoice(client_name="L. Rossi")

        result = merge_names("client", "Laura Rossi", ["Laura Rossi", "laura rossi", "L. Rossi"])
        db.session.commit()

        self.assertEqual(result["canonical_name"], "Laura Rossi")
        self.assertEqual(result["merged_names"], ["L. Rossi", "laura rossi"])
        self.assertEqual(result["rows_updated"], {"booking": 2, "client_invoice": 1})

        db.session.expire_all()
        for b in (b1, b2, b3):
            self.assertEqual(db.session.get(Booking, b.id).client_name, "Laura Rossi")
        self.assertEqual(db.session.get(ClientInvoice, inv.id).client_name, "Laura Rossi")

    def test_writes_audit_entry(self):
        TestDataFactory.create_booking(client_name="Marc Dubois")
        TestDataFactory.create_booking(client_name="Marc Dubois SA")

        merge_names("client", "Marc Dubois", ["Marc Dubois", "Marc Dubois SA"])
        db.session.commit()

        log = AuditLog.query.filter_by(action=AuditAction.MERGE).one()
        self.assertEqual(log.entity_id, "merge:client")
        self.assertEqual(log.payload_snapshot["merged_names"], ["Marc Dubois SA"])

    def test_supplier_merge_touches_supplier_invoices(self):
        TestDataFactory.create_booking(supplier_name="Alpine Cars")
        inv = TestDataFactory.create_supplier_invoice(supplier_name="Alpine Cars")

        result = merge_names("supplier", "Alpine Cars SA", ["Alpine Cars", "Alpine Cars SA"])
        db.session.commit()

        self.assertEqual(result["rows_updated"], {"booking": 1, "supplier_invoice": 1})
        db.session.expire_all()
        self.assertEqual(db.session.get(SupplierInvoice, inv.id).supplier_name, "Alpine Cars SA")

    def test_requires_canonical(self):
        with self.assertRaises(MergeError):
            merge_names("client", "  ", ["A", "B"])

    def test_requires_two_names(self):
        with self.assertRaises(MergeError):
            merge_names("client", "A", ["A"])


class MergeEndpointTests(KingRentTestCase):

    def test_admin_only(self):
        self.login_as(AppRole.STAFF.value)
        resp = self.client.get("/admin/merge-names?type=client")
        self.assertEqual(resp.status_code, 403)

    def test_list_and_merge(self):
        self.login_as(AppRole.ADMIN.value)
        TestDataFactory.create_booking(client_name="Pierre Martin")
        TestDataFactory.create_booking(client_name="pierre martin")

        resp = self.client.get("/admin/merge-names?type=client")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(len(resp.get_json()["items"]), 2)

        resp = self.client.post(
            "/admin/merge-names",
            json={"type": "client", "canonical_name": "Pierre Martin", "selected_names": ["Pierre Martin", "pierre martin"]},
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["rows_updated"]["booking"], 1)
        self.assertEqual(Booking.query.filter_by(client_name="Pierre Martin").count(), 2)

    def test_bad_request(self):
        self.login_as(AppRole.ADMIN.value)

        resp = self.client.post("/admin/merge-names", json={"type": "client", "canonical_name": "X", "selected_names": "X"})
        self.assertEqual(resp.status_code, 400)

        resp = self.client.post("/admin/merge-names", json={"type": "client", "canonical_name": "X", "selected_names": ["X"]})
        self.assertEqual(resp.status_code, 400)
