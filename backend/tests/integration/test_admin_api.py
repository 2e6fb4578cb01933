"""
Integration tests for the admin commission ledger endpoints.
"""

from datetime import timedelta
from decimal import Decimal

from sqlalchemy import update

from models.booking import Booking
from services.checkin_settlement_service import CheckinSettlementService
from shared_types.booking import BookingStatus
from tests.conftest import make_booking
from tests.utils import admin_headers, provider_headers
from utils.datetime_utils import utc_now


def _settle(db_session, notifier, provider_slug="clinic-a", total="1000.00"):
    booking = make_booking(db_session, provider_slug=provider_slug)
    return CheckinSettlementService.settle_checkin(
        db_session, booking.booking_code, provider_slug, "front-desk-1", [], total, notifier=notifier
    ).invoice


class TestInvoiceEndpoints:
    """/api/admin/commissions/invoices"""

    def test_list_with_filters(self, client, db_session, notifier):
        a = _settle(db_session, notifier, provider_slug="clinic-a")
        b = _settle(db_session, notifier, provider_slug="clinic-b")

        everything = client.get("/api/admin/commissions/invoices", headers=admin_headers())
        only_b = client.get(
            "/api/admin/commissions/invoices", params={"provider_slug": "clinic-b"}, headers=admin_headers()
        )

        assert everything.status_code == 200
        assert [i["id"] for i in everything.json()["invoices"]] == [b.id, a.id]
        assert [i["id"] for i in only_b.json()["invoices"]] == [b.id]

    def test_list_by_created_range(self, client, db_session, notifier):
        _settle(db_session, notifier)
        tomorrow = (utc_now() + timedelta(days=1)).isoformat()

        response = client.get(
            "/api/admin/commissions/invoices", params={"created_from": tomorrow}, headers=admin_headers()
        )

        assert response.status_code == 200
        assert response.json()["invoices"] == []

    def test_unknown_status_filter(self, client):
        response = client.get(
            "/api/admin/commissions/invoices", params={"status": "void"}, headers=admin_headers()
        )
        assert response.status_code == 400

    def test_mark_paid_then_conflict(self, client, db_session, notifier):
        invoice = _settle(db_session, notifier)

        paid = client.post(f"/api/admin/commissions/invoices/{invoice.id}/paid", json={}, headers=admin_headers())
        again = client.post(f"/api/admin/commissions/invoices/{invoice.id}/paid", json={}, headers=admin_headers())

        assert paid.status_code == 200
        assert paid.json()["status"] == "paid"
        assert paid.json()["paid_at"] is not None
        assert again.status_code == 409
        assert again.json()["type"] == "invalid_invoice_transition"

    def test_mark_paid_before_creation(self, client, db_session, notifier):
        invoice = _settle(db_session, notifier)
        last_year = (utc_now() - timedelta(days=365)).isoformat()

        response = client.post(
            f"/api/admin/commissions/invoices/{invoice.id}/paid", json={"paid_at": last_year},
            headers=admin_headers(),
        )

        assert response.status_code == 400

    def test_dispute(self, client, db_session, notifier):
        invoice = _settle(db_session, notifier)

        missing_reason = client.post(
            f"/api/admin/commissions/invoices/{invoice.id}/dispute", json={"reason": " "}, headers=admin_headers()
        )
        disputed = client.post(
            f"/api/admin/commissions/invoices/{invoice.id}/dispute", json={"reason": "Patient no-show"},
            headers=admin_headers(),
        )

        assert missing_reason.status_code == 400
        assert disputed.status_code == 200
        assert disputed.json()["status"] == "disputed"
        assert disputed.json()["dispute_reason"] == "Patient no-show"

    def test_unknown_invoice(self, client):
        response = client.post("/api/admin/commissions/invoices/4040/paid", json={}, headers=admin_headers())
        assert response.status_code == 404
        assert response.json()["type"] == "invoice_not_found"

    def test_provider_cannot_use_admin_endpoints(self, client):
        response = client.get("/api/admin/commissions/invoices", headers=provider_headers())
        assert response.status_code == 403


class TestProviderSummaries:
    """/api/admin/commissions/providers"""

    def test_payout_table(self, client, db_session, notifier):
        _settle(db_session, notifier, provider_slug="clinic-b", total="200.00")
        paid = _settle(db_session, notifier, provider_slug="clinic-a", total="1000.00")
        _settle(db_session, notifier, provider_slug="clinic-a", total="10.10")
        client.post(f"/api/admin/commissions/invoices/{paid.id}/paid", json={}, headers=admin_headers())

        response = client.get("/api/admin/commissions/providers", headers=admin_headers())

        assert response.status_code == 200
        providers = response.json()["providers"]
        assert [p["provider_slug"] for p in providers] == ["clinic-a", "clinic-b"]
        clinic_a = providers[0]
        assert clinic_a["pending_count"] == 1
        assert Decimal(clinic_a["owed_amount"]) == Decimal("1.52")
        assert clinic_a["paid_count"] == 1
        assert Decimal(clinic_a["paid_amount"]) == Decimal("150.00")

    def test_single_provider_without_invoices(self, client):
        response = client.get("/api/admin/commissions/providers/clinic-new", headers=admin_headers())
        assert response.status_code == 200
        assert response.json()["total_count"] == 0


class TestAdminBookingActions:
    """Admin cancellation and manual reconciliation."""

    def test_admin_cancels_any_booking(self, client, db_session):
        booking = make_booking(db_session, status=BookingStatus.DEPOSIT_PAID, provider_slug="clinic-z")

        response = client.post(
            f"/api/admin/bookings/{booking.id}/cancel", json={"reason": "Fraud check"}, headers=admin_headers()
        )

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

    def test_run_reconciliation(self, client, db_session):
        make_booking(db_session, status=BookingStatus.COMPLETED)
        broken = make_booking(db_session, status=BookingStatus.COMPLETED, quoted_price=Decimal("200.00"))
        db_session.execute(update(Booking).where(Booking.id == broken.id).values(commission_amount=Decimal("1.00")))
        db_session.commit()

        response = client.post("/api/admin/reconciliation/run", headers=admin_headers())

        assert response.status_code == 200
        data = response.json()
        assert len(data["created_invoice_ids"]) == 2
        assert data["skipped"] == []
        assert [m["booking_id"] for m in data["mismatches"]] == [broken.id]
