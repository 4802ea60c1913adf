"""
Checkout state machine tests.

Verifies:
- Accepted proof writes one verified Transaction and reduces stock
- Rejected proof writes one FailedValidation and no Transaction
- Cart edits clamp to stock and signal instead of raising
- cancel() works from every state and writes nothing
- One verification in flight per session
- The camera is released on every way out of Capturing
"""

import pytest

from kantin.models import Product, Transaction, FailedValidation
from kantin.models.ledger import TRANSACTION_VERIFIED
from kantin.services import catalog_service, payment_config_service
from kantin.models.audit import FAILURE_REASON_MAX_LENGTH
from kantin.models.ledger import CUSTOMER_NAME_MAX_LENGTH
from kantin.services.camera import KioskCamera, CameraUnavailableError
from kantin.services.catalog_service import CatalogError
from kantin.services.checkout_engine import (
    CheckoutSession,
    STATE_IDLE,
    STATE_CART,
    STATE_DETAILS,
    STATE_PAYMENT,
    STATE_CAPTURING,
    STATE_SUCCESS,
    STATE_FAILURE,
    STATE_ERROR,
    EmptyCartError,
    MissingCustomerNameError,
    CustomerNameTooLongError,
    InvalidTransitionError,
    ProductUnavailableError,
    PaymentNotConfiguredError,
    VerificationInFlightError,
    CheckoutPersistenceError,
)
from kantin.services.verification_gateway import (
    GENERIC_FAILURE_REASON,
    VerificationGateway,
    VerificationResult,
    rejected,
)

PROOF = "data:image/png;base64,iVBORw0KGgo="


class FixedGateway(VerificationGateway):
    """Returns the same verdict every time and records each call."""
    name = "fixed"

    def __init__(self, result, on_verify=None):
        self.result = result
        self.on_verify = on_verify
        self.calls = []

    def verify(self, image, expected_amount, merchant_name):
        self.calls.append((image, expected_amount, merchant_name))
        if self.on_verify is not None:
            self.on_verify()
        return self.result


class RaisingGateway(VerificationGateway):
    name = "raising"

    def verify(self, image, expected_amount, merchant_name):
        raise RuntimeError("upstream exploded")


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def accept():
    return FixedGateway(VerificationResult(accepted=True))


def reject(reason="Nominal tidak sesuai"):
    return FixedGateway(rejected(reason))


def to_payment(session, *products, name="Andi"):
    for product in products:
        session.add_item(product)
    session.begin_checkout()
    session.proceed_to_details()
    return session.submit_details(name)


# =============================================================================
# OUTCOMES
# =============================================================================


class TestVerificationOutcome:

    def test_accepted_proof_records_transaction_and_reduces_stock(self, db_session, qris, nasi_goreng):
        session = CheckoutSession(gateway=accept())
        display = to_payment(session, nasi_goreng)
        assert display.total_amount == 15_000

        outcome = session.upload_proof(PROOF)

        assert outcome.accepted is True
        assert session.state == STATE_SUCCESS
        transactions = db_session.query(Transaction).all()
        assert len(transactions) == 1
        assert transactions[0].status == TRANSACTION_VERIFIED
        assert transactions[0].total_amount == 15_000
        assert transactions[0].customer_name == "Andi"
        assert [i.subtotal for i in transactions[0].items] == [15_000]
        assert db_session.get(Product, nasi_goreng.id).stock == 2
        assert db_session.query(FailedValidation).count() == 0

    def test_rejected_proof_records_failed_validation_only(self, db_session, qris, nasi_goreng):
        session = CheckoutSession(gateway=reject("Nominal tidak sesuai"))
        to_payment(session, nasi_goreng)

        outcome = session.upload_proof(PROOF)

        assert outcome.accepted is False
        assert outcome.reason == "Nominal tidak sesuai"
        assert session.state == STATE_FAILURE
        assert db_session.query(Transaction).count() == 0
        records = db_session.query(FailedValidation).all()
        assert len(records) == 1
        assert records[0].attempted_amount == 15_000
        assert records[0].failure_reason == "Nominal tidak sesuai"
        assert db_session.get(Product, nasi_goreng.id).stock == 3

    def test_gateway_exception_is_a_rejection(self, db_session, qris, nasi_goreng):
        session = CheckoutSession(gateway=RaisingGateway())
        to_payment(session, nasi_goreng)

        outcome = session.upload_proof(PROOF)

        assert outcome.accepted is False
        assert outcome.reason == GENERIC_FAILURE_REASON
        assert session.state == STATE_FAILURE
        assert db_session.query(Transaction).count() == 0
        assert db_session.query(FailedValidation).count() == 1

    def test_gateway_receives_frozen_amount_and_merchant(self, db_session, qris, nasi_goreng):
        gateway = accept()
        session = CheckoutSession(gateway=gateway)
        to_payment(session, nasi_goreng, nasi_goreng)

        payment_config_service.update_config({"merchant_name": "Kantin Baru"})
        session.upload_proof(PROOF)

        assert gateway.calls == [(PROOF, 30_000, "SPS Corner")]

    def test_mixed_seller_cart_is_attributed_to_first_line(self, db_session, qris, nasi_goreng, es_teh):
        session = CheckoutSession(gateway=accept())
        to_payment(session, es_teh, nasi_goreng)

        outcome = session.upload_proof(PROOF)

        transaction = db_session.get(Transaction, outcome.transaction["id"])
        assert transaction.seller_id == es_teh.seller_id
        assert transaction.total_amount == 20_000
        assert db_session.get(Product, es_teh.id).stock == 9
        assert db_session.get(Product, nasi_goreng.id).stock == 2

    def test_retry_increments_attempts(self, db_session, qris, nasi_goreng):
        session = CheckoutSession(gateway=reject())
        to_payment(session, nasi_goreng)
        session.upload_proof(PROOF)

        session.retry()
        assert session.state == STATE_PAYMENT
        assert session.verification_attempts == 2

        session.gateway = accept()
        outcome = session.upload_proof(PROOF)

        assert outcome.accepted is True
        assert outcome.transaction["verification_attempts"] == 2
        assert db_session.query(FailedValidation).count() == 1

    def test_persistence_failure_enters_error_and_writes_nothing(self, db_session, qris, nasi_goreng, monkeypatch):
        def boom(product_id, quantity):
            raise CatalogError("stock update failed")

        monkeypatch.setattr(catalog_service, "decrement_stock", boom)
        session = CheckoutSession(gateway=accept())
        to_payment(session, nasi_goreng)

        with pytest.raises(CheckoutPersistenceError):
            session.upload_proof(PROOF)

        assert session.state == STATE_ERROR
        assert db_session.query(Transaction).count() == 0
        assert db_session.get(Product, nasi_goreng.id).stock == 3

        with pytest.raises(InvalidTransitionError):
            session.retry()
        session.cancel()
        assert session.state == STATE_IDLE

    def test_product_deleted_mid_checkout_still_records_sale(self, db_session, qris, nasi_goreng, es_teh):
        session = CheckoutSession(gateway=accept())
        to_payment(session, es_teh, nasi_goreng)
        catalog_service.delete_product(nasi_goreng.id)

        outcome = session.upload_proof(PROOF)

        assert outcome.accepted is True
        assert session.state == STATE_SUCCESS
        transaction = db_session.get(Transaction, outcome.transaction["id"])
        assert transaction.total_amount == 20_000
        assert [i.product_name for i in transaction.items] == ["Es Teh", "Nasi Goreng"]
        assert db_session.get(Product, es_teh.id).stock == 9
        assert db_session.query(FailedValidation).count() == 0

    def test_concurrent_sessions_clamp_stock_at_zero(self, db_session, qris, nasi_goreng):
        first = CheckoutSession(gateway=accept())
        second = CheckoutSession(gateway=accept())
        to_payment(first, nasi_goreng, nasi_goreng, name="Andi")
        to_payment(second, nasi_goreng, nasi_goreng, name="Budi")

        assert first.upload_proof(PROOF).accepted is True
        assert second.upload_proof(PROOF).accepted is True

        assert db_session.query(Transaction).count() == 2
        assert db_session.get(Product, nasi_goreng.id).stock == 0

    def test_long_rejection_reason_is_truncated_and_retry_offered(self, db_session, qris, nasi_goreng):
        session = CheckoutSession(gateway=reject("x" * (FAILURE_REASON_MAX_LENGTH + 100)))
        to_payment(session, nasi_goreng)

        outcome = session.upload_proof(PROOF)

        assert session.state == STATE_FAILURE
        assert len(outcome.reason) == FAILURE_REASON_MAX_LENGTH
        record = db_session.query(FailedValidation).one()
        assert len(record.failure_reason) == FAILURE_REASON_MAX_LENGTH

        session.retry()
        assert session.state == STATE_PAYMENT


class TestResultDisplay:

    def test_success_returns_to_idle_after_delay(self, db_session, qris, nasi_goreng):
        clock = FakeClock()
        session = CheckoutSession(gateway=accept(), result_display_delay=2, clock=clock)
        to_payment(session, nasi_goreng)
        session.upload_proof(PROOF)

        clock.advance(1.9)
        assert session.state == STATE_SUCCESS

        clock.advance(0.1)
        assert session.state == STATE_IDLE
        assert session.lines == []
        assert session.customer_name is None

    def test_finish_skips_the_delay(self, db_session, qris, nasi_goreng):
        session = CheckoutSession(gateway=accept(), result_display_delay=60)
        to_payment(session, nasi_goreng)
        session.upload_proof(PROOF)

        session.finish()

        assert session.state == STATE_IDLE


# =============================================================================
# CART
# =============================================================================


class TestCart:

    def test_stock_exceeded_signal_on_fourth_add(self, db_session, nasi_goreng):
        session = CheckoutSession(gateway=accept())

        updates = [session.add_item(nasi_goreng) for _ in range(4)]

        assert [u.stock_exceeded for u in updates] == [False, False, False, True]
        assert session.lines[0].quantity == 3
        assert session.total_amount == 45_000

    def test_set_quantity_clamps_to_stock(self, db_session, nasi_goreng):
        session = CheckoutSession(gateway=accept())
        session.add_item(nasi_goreng)

        update = session.set_quantity(nasi_goreng.id, 10)

        assert update.stock_exceeded is True
        assert update.line.quantity == 3

    def test_quantity_zero_removes_line(self, db_session, nasi_goreng):
        session = CheckoutSession(gateway=accept())
        session.add_item(nasi_goreng)

        update = session.adjust_quantity(nasi_goreng.id, -1)

        assert update.removed is True
        assert session.lines == []

    def test_fresh_stock_figure_shrinks_line(self, db_session, nasi_goreng):
        session = CheckoutSession(gateway=accept())
        for _ in range(3):
            session.add_item(nasi_goreng)

        update = session.adjust_quantity(nasi_goreng.id, 0, stock=1)

        assert update.line.quantity == 1
        assert update.stock_exceeded is True

    def test_inactive_product_rejected(self, db_session, seller, product_factory):
        product = product_factory(seller, name="Tahu", price=2_000, stock=5, is_active=False)
        session = CheckoutSession(gateway=accept())

        with pytest.raises(ProductUnavailableError):
            session.add_item(product)

    def test_out_of_stock_product_rejected(self, db_session, seller, product_factory):
        product = product_factory(seller, name="Tempe", price=2_000, stock=0)
        session = CheckoutSession(gateway=accept())

        with pytest.raises(ProductUnavailableError):
            session.add_item(product)

    def test_cart_frozen_after_details(self, db_session, qris, nasi_goreng):
        session = CheckoutSession(gateway=accept())
        to_payment(session, nasi_goreng)

        with pytest.raises(InvalidTransitionError):
            session.add_item(nasi_goreng)


# =============================================================================
# TRANSITIONS
# =============================================================================


class TestTransitions:

    def test_empty_cart_cannot_start_checkout(self, db_session):
        session = CheckoutSession(gateway=accept())

        with pytest.raises(EmptyCartError):
            session.begin_checkout()
        assert session.state == STATE_IDLE

    def test_customer_name_required(self, db_session, qris, nasi_goreng):
        session = CheckoutSession(gateway=accept())
        session.add_item(nasi_goreng)
        session.begin_checkout()
        session.proceed_to_details()

        with pytest.raises(MissingCustomerNameError):
            session.submit_details("   ")
        assert session.state == STATE_DETAILS

    def test_customer_name_is_trimmed(self, db_session, qris, nasi_goreng):
        session = CheckoutSession(gateway=accept())
        to_payment(session, nasi_goreng, name="  Andi  ")

        assert session.customer_name == "Andi"

    def test_overlong_customer_name_rejected(self, db_session, qris, nasi_goreng):
        session = CheckoutSession(gateway=accept())
        session.add_item(nasi_goreng)
        session.begin_checkout()
        session.proceed_to_details()

        with pytest.raises(CustomerNameTooLongError):
            session.submit_details("A" * (CUSTOMER_NAME_MAX_LENGTH + 1))
        assert session.state == STATE_DETAILS

        session.submit_details("A" * CUSTOMER_NAME_MAX_LENGTH)
        assert session.state == STATE_PAYMENT

    def test_missing_qris_config(self, db_session, nasi_goreng):
        session = CheckoutSession(gateway=accept())
        session.add_item(nasi_goreng)
        session.begin_checkout()
        session.proceed_to_details()

        with pytest.raises(PaymentNotConfiguredError):
            session.submit_details("Andi")
        assert session.state == STATE_DETAILS

    def test_back_to_cart(self, db_session, nasi_goreng):
        session = CheckoutSession(gateway=accept())
        session.add_item(nasi_goreng)
        session.begin_checkout()
        session.proceed_to_details()

        session.back_to_cart()

        assert session.state == STATE_CART

    def test_proof_outside_payment_rejected(self, db_session, nasi_goreng):
        session = CheckoutSession(gateway=accept())
        session.add_item(nasi_goreng)

        with pytest.raises(InvalidTransitionError):
            session.upload_proof(PROOF)

    @pytest.mark.parametrize("stop_at", [STATE_CART, STATE_DETAILS, STATE_PAYMENT, STATE_FAILURE])
    def test_cancel_from_any_state_writes_nothing(self, db_session, qris, nasi_goreng, stop_at):
        session = CheckoutSession(gateway=reject())
        session.add_item(nasi_goreng)
        if stop_at != STATE_IDLE:
            session.begin_checkout()
        if stop_at in (STATE_DETAILS, STATE_PAYMENT, STATE_FAILURE):
            session.proceed_to_details()
        if stop_at in (STATE_PAYMENT, STATE_FAILURE):
            session.submit_details("Andi")
        if stop_at == STATE_FAILURE:
            session.upload_proof(PROOF)
        failed_before = db_session.query(FailedValidation).count()

        session.cancel()

        assert session.state == STATE_IDLE
        assert session.lines == []
        assert session.payment_display is None
        assert db_session.query(Transaction).count() == 0
        assert db_session.query(FailedValidation).count() == failed_before
        assert db_session.get(Product, nasi_goreng.id).stock == 3


# =============================================================================
# CONCURRENCY
# =============================================================================


class TestInFlight:

    def test_second_submission_refused_while_processing(self, db_session, qris, nasi_goreng):
        session = CheckoutSession(gateway=accept())
        errors = []

        def submit_again():
            with pytest.raises(VerificationInFlightError) as exc:
                session.upload_proof(PROOF)
            errors.append(exc.value)

        session.gateway = FixedGateway(VerificationResult(accepted=True), on_verify=submit_again)
        to_payment(session, nasi_goreng)

        outcome = session.upload_proof(PROOF)

        assert outcome.accepted is True
        assert len(errors) == 1
        assert db_session.query(Transaction).count() == 1

    def test_cancel_during_verification_drops_verdict(self, db_session, qris, nasi_goreng):
        session = CheckoutSession(gateway=accept())
        session.gateway = FixedGateway(VerificationResult(accepted=True), on_verify=session.cancel)
        to_payment(session, nasi_goreng)

        outcome = session.upload_proof(PROOF)

        assert outcome.ignored is True
        assert session.state == STATE_IDLE
        assert db_session.query(Transaction).count() == 0
        assert db_session.get(Product, nasi_goreng.id).stock == 3


# =============================================================================
# CAMERA
# =============================================================================


class TestCamera:

    def test_unavailable_camera_falls_back_to_upload(self, db_session, qris, nasi_goreng):
        session = CheckoutSession(gateway=accept())
        to_payment(session, nasi_goreng)

        opened = session.open_camera(KioskCamera(available=False))

        assert opened is False
        assert session.state == STATE_PAYMENT
        assert session.upload_proof(PROOF).accepted is True

    def test_default_factory_has_no_camera(self, db_session, qris, nasi_goreng):
        session = CheckoutSession(gateway=accept())
        to_payment(session, nasi_goreng)

        assert session.open_camera() is False
        assert session.state == STATE_PAYMENT

    def test_capture_releases_camera(self, db_session, qris, nasi_goreng):
        gateway = accept()
        session = CheckoutSession(gateway=gateway)
        to_payment(session, nasi_goreng)
        camera = KioskCamera()

        assert session.open_camera(camera) is True
        assert session.state == STATE_CAPTURING
        outcome = session.capture_and_verify(frame=b"\xff\xd8jpeg")

        assert outcome.accepted is True
        assert camera.is_open is False
        assert session.camera_open is False
        assert gateway.calls[0][0].startswith("data:image/jpeg;base64,")

    def test_capture_without_frame_returns_to_payment(self, db_session, qris, nasi_goreng):
        session = CheckoutSession(gateway=accept())
        to_payment(session, nasi_goreng)
        camera = KioskCamera()
        session.open_camera(camera)

        with pytest.raises(CameraUnavailableError):
            session.capture_and_verify()

        assert session.state == STATE_PAYMENT
        assert camera.is_open is False

    def test_cancel_releases_camera(self, db_session, qris, nasi_goreng):
        session = CheckoutSession(gateway=accept())
        to_payment(session, nasi_goreng)
        camera = KioskCamera()
        session.open_camera(camera)

        session.cancel()

        assert camera.is_open is False
        assert session.state == STATE_IDLE

    def test_close_camera_returns_to_payment(self, db_session, qris, nasi_goreng):
        session = CheckoutSession(gateway=accept())
        to_payment(session, nasi_goreng)
        camera = KioskCamera()
        session.open_camera(camera)

        session.close_camera()

        assert session.state == STATE_PAYMENT
        assert camera.is_open is False

    def test_camera_released_when_open_fails_unexpectedly(self, db_session, qris, nasi_goreng):
        class BrokenCamera(KioskCamera):
            released = False

            def open(self):
                raise RuntimeError("driver crashed")

            def release(self):
                self.released = True
                super().release()

        session = CheckoutSession(gateway=accept())
        to_payment(session, nasi_goreng)
        camera = BrokenCamera()

        with pytest.raises(RuntimeError):
            session.open_camera(camera)

        assert camera.released is True
        assert session.state == STATE_PAYMENT
        assert session.camera_open is False
