"""
Unit tests for check-in settlement.

Covers the happy path, every refusal, the at-most-once guarantee under
concurrent check-ins and the all-or-nothing guarantee when the invoice
cannot be written.
"""

import logging
import threading
from decimal import Decimal

import httpx
import pytest

from models.booking import Booking
from models.commission_invoice import CommissionInvoice
from services.booking_code_service import BookingCodeService
from services.booking_exceptions import (
    AlreadyCheckedIn,
    BookingCancelled,
    BookingNotFound,
    BookingValidationError,
    IllegalTransition,
    SettlementIntegrityError,
)
from services.checkin_settlement_service import CheckinSettlementService
from services.commission_invoice_service import CommissionInvoiceService
from services.notification_dispatcher import NotificationDispatcher
from shared_types.booking import BookingStatus, InvoiceStatus, NotificationType, ProcedureLine
from tests.conftest import make_booking


def _settle(db, booking, total="1000.00", procedures=None, operator_id="front-desk-7", notifier=None, code=None):
    return CheckinSettlementService.settle_checkin(
        db,
        code or booking.booking_code,
        booking.provider_slug,
        operator_id,
        procedures if procedures is not None else [{"name": "Dental implant", "quantity": 2}],
        total,
        notifier=notifier,
    )


def _assert_unsettled(db_session, session_factory, booking_id, expected_status=BookingStatus.CONFIRMED):
    """
    Read the booking back through a fresh session and check nothing was written.

    Pass the id captured before settling: touching the expired booking would
    open a transaction on db_session, and on SQLite that holds the write lock.
    """
    assert not db_session.in_transaction()
    session = session_factory()
    try:
        booking = session.get(Booking, booking_id)
        assert booking.status == expected_status.value
        assert booking.checked_in is False
        assert booking.checked_in_at is None
        assert booking.confirmed_total is None
        assert booking.commission_amount is None
        assert session.query(CommissionInvoice).filter(CommissionInvoice.booking_id == booking_id).count() == 0
        session.commit()
    finally:
        session.close()


class TestSettleCheckin:
    """Successful settlement."""

    def test_happy_path(self, db_session, notifier):
        booking = make_booking(db_session)

        result = _settle(db_session, booking, total="1200.00", notifier=notifier)

        assert result.booking.status == BookingStatus.COMPLETED.value
        assert result.booking.checked_in is True
        assert result.booking.checked_in_at is not None
        assert result.booking.checked_in_by == "front-desk-7"
        assert result.booking.confirmed_total == Decimal("1200.00")
        assert result.booking.commission_amount == Decimal("180.00")
        assert result.booking.confirmed_procedures == [{"name": "Dental implant", "quantity": 2}]

        assert result.invoice.booking_id == booking.id
        assert result.invoice.provider_slug == "clinic-a"
        assert result.invoice.procedure_total == Decimal("1200.00")
        assert result.invoice.commission_rate == Decimal("0.15")
        assert result.invoice.commission_amount == Decimal("180.00")
        assert result.invoice.status == InvoiceStatus.PENDING.value

        notifier.dispatch_best_effort.assert_called_once_with(
            NotificationType.BOOKING_COMPLETED, booking.id, "patient-1"
        )

    def test_committed_state_is_visible_to_other_sessions(self, db_session, session_factory, notifier):
        booking = make_booking(db_session)
        _settle(db_session, booking, notifier=notifier)

        other = session_factory()
        try:
            stored = other.get(Booking, booking.id)
            assert stored.status == BookingStatus.COMPLETED.value
            assert stored.checked_in is True
            invoice = CommissionInvoiceService.get_invoice_for_booking(other, booking.id)
            assert invoice is not None
            assert invoice.commission_amount == Decimal("150.00")
            other.commit()
        finally:
            other.close()

    def test_code_is_normalized(self, db_session, notifier):
        booking = make_booking(db_session, booking_code="LOWR2345")
        result = _settle(db_session, booking, code="  lowr2345 ", notifier=notifier)
        assert result.booking.checked_in is True

    def test_empty_confirmed_procedures_allowed(self, db_session, notifier):
        booking = make_booking(db_session)
        result = _settle(db_session, booking, procedures=[], notifier=notifier)
        assert result.booking.confirmed_procedures == []

    def test_zero_total_is_allowed(self, db_session, notifier):
        booking = make_booking(db_session)
        result = _settle(db_session, booking, total="0", notifier=notifier)
        assert result.booking.commission_amount == Decimal("0.00")
        assert result.invoice.commission_amount == Decimal("0.00")

    def test_uses_booking_commission_rate(self, db_session, notifier):
        booking = make_booking(db_session, commission_rate=Decimal("0.10"))
        result = _settle(db_session, booking, total="1200.00", notifier=notifier)
        assert result.booking.commission_amount == Decimal("120.00")
        assert result.invoice.commission_rate == Decimal("0.10")

    def test_commission_rounds_half_up(self, db_session, notifier):
        booking = make_booking(db_session)
        result = _settle(db_session, booking, total="10.10", notifier=notifier)
        assert result.booking.commission_amount == Decimal("1.52")

    @pytest.mark.parametrize("total, commission", [
        ("100.01", Decimal("15.00")),  # 15.0015
        ("10.09", Decimal("1.51")),  # 1.5135
        ("0.03", Decimal("0.00")),  # 0.0045
    ])
    def test_commission_at_boundary_cents(self, db_session, notifier, total, commission):
        booking = make_booking(db_session)
        result = _settle(db_session, booking, total=total, notifier=notifier)
        assert result.booking.confirmed_total == Decimal(total)
        assert result.booking.commission_amount == commission
        assert result.invoice.commission_amount == commission

    def test_notification_failure_does_not_block_settlement(self, db_session, caplog):
        booking = make_booking(db_session)
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(503, text="down")))
        dispatcher = NotificationDispatcher(url="http://notify.test/dispatch", client=client)

        with caplog.at_level(logging.WARNING, logger="services.notification_dispatcher"):
            result = _settle(db_session, booking, notifier=dispatcher)

        assert result.booking.checked_in is True
        assert any(
            record.levelno == logging.WARNING and record.name == "services.notification_dispatcher"
            for record in caplog.records
        )


class TestSettleCheckinRefusals:
    """Every refusal leaves the booking untouched."""

    def test_already_checked_in_reports_original_check_in(self, db_session):
        booking = make_booking(db_session, status=BookingStatus.COMPLETED)

        with pytest.raises(AlreadyCheckedIn) as exc_info:
            _settle(db_session, booking)

        assert exc_info.value.checked_in_by == "front-desk-1"
        assert exc_info.value.checked_in_at is not None
        assert "already checked in on" in str(exc_info.value)
        assert db_session.query(CommissionInvoice).count() == 0

    def test_cancelled_booking(self, db_session, session_factory):
        booking = make_booking(db_session, status=BookingStatus.CANCELLED)
        booking_id = booking.id

        with pytest.raises(BookingCancelled, match="cancelled"):
            _settle(db_session, booking)

        _assert_unsettled(db_session, session_factory, booking_id, BookingStatus.CANCELLED)

    @pytest.mark.parametrize("status", [
        BookingStatus.INQUIRY,
        BookingStatus.PROVIDER_RESPONDED,
        BookingStatus.QUOTED,
        BookingStatus.DEPOSIT_PAID,
    ])
    def test_not_yet_confirmed(self, db_session, session_factory, status):
        booking = make_booking(db_session, status=status)
        booking_id = booking.id

        with pytest.raises(IllegalTransition):
            _settle(db_session, booking)

        _assert_unsettled(db_session, session_factory, booking_id, status)

    def test_cross_tenant_code_is_not_found(self, db_session, session_factory):
        booking = make_booking(db_session, provider_slug="clinic-a")
        booking_id = booking.id

        with pytest.raises(BookingNotFound):
            CheckinSettlementService.settle_checkin(
                db_session, booking.booking_code, "clinic-b", "front-desk-7", [], Decimal("100")
            )

        _assert_unsettled(db_session, session_factory, booking_id)

    def test_unknown_code(self, db_session):
        with pytest.raises(BookingNotFound):
            CheckinSettlementService.settle_checkin(
                db_session, "ZZZZ9999", "clinic-a", "front-desk-7", [], Decimal("100")
            )

    def test_malformed_code(self, db_session):
        with pytest.raises(BookingValidationError):
            CheckinSettlementService.settle_checkin(
                db_session, "bad code", "clinic-a", "front-desk-7", [], Decimal("100")
            )

    @pytest.mark.parametrize("total", [Decimal("-0.01"), Decimal("NaN"), None, "lots"])
    def test_invalid_total(self, db_session, session_factory, total):
        booking = make_booking(db_session)
        booking_id = booking.id

        with pytest.raises(BookingValidationError):
            _settle(db_session, booking, total=total)

        _assert_unsettled(db_session, session_factory, booking_id)

    @pytest.mark.parametrize("total", ["10.095", "100.005", Decimal("1200.001")])
    def test_sub_cent_total_is_refused_not_rounded(self, db_session, session_factory, total):
        booking = make_booking(db_session)
        booking_id = booking.id

        with pytest.raises(BookingValidationError, match="2 decimal places"):
            _settle(db_session, booking, total=total)

        _assert_unsettled(db_session, session_factory, booking_id)

    @pytest.mark.parametrize("operator_id", ["", "   ", None])
    def test_operator_required(self, db_session, session_factory, operator_id):
        booking = make_booking(db_session)
        booking_id = booking.id

        with pytest.raises(BookingValidationError, match="Operator"):
            _settle(db_session, booking, operator_id=operator_id)

        _assert_unsettled(db_session, session_factory, booking_id)

    def test_procedure_not_requested(self, db_session, session_factory):
        booking = make_booking(db_session)
        booking_id = booking.id

        with pytest.raises(BookingValidationError, match="not among the requested"):
            _settle(db_session, booking, procedures=[{"name": "Hair transplant", "quantity": 1}])

        _assert_unsettled(db_session, session_factory, booking_id)

    def test_quantity_above_requested(self, db_session, session_factory):
        booking = make_booking(db_session)
        booking_id = booking.id

        with pytest.raises(BookingValidationError, match="exceeds"):
            _settle(db_session, booking, procedures=[{"name": "Dental implant", "quantity": 3}])

        _assert_unsettled(db_session, session_factory, booking_id)

    def test_quantity_above_requested_across_lines(self, db_session):
        booking = make_booking(db_session)

        with pytest.raises(BookingValidationError, match="exceeds"):
            _settle(db_session, booking, procedures=[
                {"name": "Dental implant", "quantity": 1},
                {"name": "Dental implant", "quantity": 2},
            ])

    def test_session_is_usable_after_refusal(self, db_session, notifier):
        booking = make_booking(db_session)
        with pytest.raises(BookingValidationError):
            _settle(db_session, booking, total=Decimal("-1"))

        result = _settle(db_session, booking, notifier=notifier)
        assert result.booking.checked_in is True


class TestValidateConfirmedProcedures:
    """Tests for the confirmed procedure rules on their own."""

    REQUESTED = [ProcedureLine("Dental implant", 2), ProcedureLine("Teeth whitening", 1)]

    def test_accepts_procedure_lines_and_dicts(self):
        lines = CheckinSettlementService.validate_confirmed_procedures(
            self.REQUESTED, [ProcedureLine("Dental implant", 1), {"name": " Teeth whitening "}]
        )
        assert lines == [ProcedureLine("Dental implant", 1), ProcedureLine("Teeth whitening", 1)]

    def test_names_match_ignoring_case(self):
        lines = CheckinSettlementService.validate_confirmed_procedures(
            self.REQUESTED, [{"name": "dental IMPLANT", "quantity": 1}, {"name": "Dental implant", "quantity": 1}]
        )
        assert lines == [ProcedureLine("Dental implant", 1), ProcedureLine("Dental implant", 1)]

    def test_case_variants_share_the_requested_quantity(self):
        with pytest.raises(BookingValidationError, match="exceeds"):
            CheckinSettlementService.validate_confirmed_procedures(
                self.REQUESTED, [{"name": "dental implant", "quantity": 2}, {"name": "DENTAL IMPLANT"}]
            )

    def test_none_means_nothing_performed(self):
        assert CheckinSettlementService.validate_confirmed_procedures(self.REQUESTED, None) == []

    @pytest.mark.parametrize("quantity", [0, -1, True, 1.5, "2"])
    def test_rejects_bad_quantities(self, quantity):
        with pytest.raises(BookingValidationError):
            CheckinSettlementService.validate_confirmed_procedures(
                self.REQUESTED, [{"name": "Dental implant", "quantity": quantity}]
            )

    @pytest.mark.parametrize("entry", [{"quantity": 1}, {"name": "  "}, "Dental implant", 42])
    def test_rejects_malformed_entries(self, entry):
        with pytest.raises(BookingValidationError):
            CheckinSettlementService.validate_confirmed_procedures(self.REQUESTED, [entry])


class TestConcurrentCheckin:
    """At most one settlement per booking."""

    def test_stale_read_loses_compare_and_swap(self, db_session, session_factory, notifier, monkeypatch):
        """A session that read the booking before another operator settled it is refused."""
        booking = make_booking(db_session)
        code = booking.booking_code

        other = session_factory()
        try:
            _settle(other, booking, total="500.00", operator_id="front-desk-2", notifier=notifier)
        finally:
            other.close()

        # Hand the settlement the stale, still-unsettled object from the first session
        assert booking.checked_in is False
        monkeypatch.setattr(
            BookingCodeService, "resolve",
            staticmethod(lambda db, code, provider_slug, for_update=False: booking),
        )

        with pytest.raises(AlreadyCheckedIn) as exc_info:
            _settle(db_session, booking, total="900.00", operator_id="front-desk-3", code=code, notifier=notifier)

        assert exc_info.value.checked_in_by == "front-desk-2"
        invoices = db_session.query(CommissionInvoice).filter(CommissionInvoice.booking_id == booking.id).all()
        assert len(invoices) == 1
        assert invoices[0].procedure_total == Decimal("500.00")
        assert invoices[0].commission_amount == Decimal("75.00")

    def test_parallel_check_ins_settle_once(self, db_session, session_factory, notifier):
        booking = make_booking(db_session)
        booking_id = booking.id
        code = booking.booking_code
        db_session.close()

        workers = 5
        barrier = threading.Barrier(workers)
        successes = []
        refusals = []
        unexpected = []

        def check_in(index: int) -> None:
            session = session_factory()
            try:
                barrier.wait()
                result = CheckinSettlementService.settle_checkin(
                    session, code, "clinic-a", f"front-desk-{index}",
                    [{"name": "Teeth whitening", "quantity": 1}], Decimal("300.00"),
                    notifier=notifier,
                )
                successes.append(result.invoice.id)
            except AlreadyCheckedIn as e:
                refusals.append(e)
            except Exception as e:
                unexpected.append(e)
            finally:
                session.close()

        threads = [threading.Thread(target=check_in, args=(i,)) for i in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        assert unexpected == []
        assert len(successes) == 1
        assert len(refusals) == workers - 1

        verify = session_factory()
        try:
            assert verify.query(CommissionInvoice).filter(CommissionInvoice.booking_id == booking_id).count() == 1
            stored = verify.get(Booking, booking_id)
            assert stored.checked_in is True
            assert stored.commission_amount == Decimal("45.00")
            verify.commit()
        finally:
            verify.close()

    def test_existing_invoice_is_reported_as_already_checked_in(self, db_session, session_factory):
        """The unique invoice per booking backs up the status check."""
        booking = make_booking(db_session)
        booking_id = booking.id
        db_session.add(CommissionInvoice(
            booking_id=booking_id,
            provider_slug="clinic-a",
            procedure_total=Decimal("1000.00"),
            commission_rate=Decimal("0.15"),
            commission_amount=Decimal("150.00"),
        ))
        db_session.commit()

        with pytest.raises(AlreadyCheckedIn):
            _settle(db_session, booking)

        assert not db_session.in_transaction()
        session = session_factory()
        try:
            stored = session.get(Booking, booking_id)
            assert stored.status == BookingStatus.CONFIRMED.value
            assert stored.checked_in is False
            assert session.query(CommissionInvoice).count() == 1
            session.commit()
        finally:
            session.close()


class TestSettlementAtomicity:
    """The booking change and the invoice land together or not at all."""

    def test_invoice_failure_rolls_back_booking(self, db_session, session_factory, notifier, monkeypatch, caplog):
        booking = make_booking(db_session)
        booking_id = booking.id

        def fail_to_invoice(db, booking):
            raise RuntimeError("invoice store unavailable")

        monkeypatch.setattr(CommissionInvoiceService, "create_for_booking", staticmethod(fail_to_invoice))

        with caplog.at_level(logging.ERROR, logger="medtour.integrity"):
            with pytest.raises(SettlementIntegrityError) as exc_info:
                _settle(db_session, booking, notifier=notifier)

        assert exc_info.value.booking_id == booking_id
        assert any(record.name == "medtour.integrity" for record in caplog.records)
        notifier.dispatch_best_effort.assert_not_called()
        _assert_unsettled(db_session, session_factory, booking_id)

    def test_booking_can_be_settled_after_rolled_back_attempt(self, db_session, notifier, monkeypatch):
        booking = make_booking(db_session)
        original = CommissionInvoiceService.create_for_booking

        def fail_to_invoice(db, booking):
            raise RuntimeError("invoice store unavailable")

        monkeypatch.setattr(CommissionInvoiceService, "create_for_booking", staticmethod(fail_to_invoice))
        with pytest.raises(SettlementIntegrityError):
            _settle(db_session, booking, notifier=notifier)

        monkeypatch.setattr(CommissionInvoiceService, "create_for_booking", staticmethod(original))
        result = _settle(db_session, booking, notifier=notifier)
        assert result.invoice.commission_amount == Decimal("150.00")


class TestPreviewSettlement:
    """Confirm-screen lookup."""

    def test_preview_confirmed_booking(self, db_session):
        booking = make_booking(db_session)

        preview = CheckinSettlementService.preview_settlement(
            db_session, booking.booking_code, "clinic-a", confirmed_total="1000"
        )

        assert preview.booking.id == booking.id
        assert preview.can_check_in is True
        assert preview.suggested_total == Decimal("1000.00")
        assert preview.commission_rate == Decimal("0.1500")
        assert preview.projected_commission == Decimal("150.00")
        assert [line.name for line in preview.requested_procedures] == ["Dental implant", "Teeth whitening"]
        assert booking.status == BookingStatus.CONFIRMED.value
        assert db_session.query(CommissionInvoice).count() == 0

    def test_preview_without_total(self, db_session):
        booking = make_booking(db_session)
        preview = CheckinSettlementService.preview_settlement(db_session, booking.booking_code, "clinic-a")
        assert preview.projected_commission is None

    def test_preview_of_unconfirmed_booking_cannot_check_in(self, db_session):
        booking = make_booking(db_session, status=BookingStatus.DEPOSIT_PAID)
        preview = CheckinSettlementService.preview_settlement(db_session, booking.booking_code, "clinic-a")
        assert preview.can_check_in is False

    def test_preview_of_checked_in_booking(self, db_session):
        booking = make_booking(db_session, status=BookingStatus.COMPLETED)
        with pytest.raises(AlreadyCheckedIn):
            CheckinSettlementService.preview_settlement(db_session, booking.booking_code, "clinic-a")

    def test_preview_other_provider(self, db_session):
        booking = make_booking(db_session)
        with pytest.raises(BookingNotFound):
            CheckinSettlementService.preview_settlement(db_session, booking.booking_code, "clinic-b")
