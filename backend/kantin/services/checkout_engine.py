# Overview: Kiosk checkout state machine; drives one customer from cart to verified payment.

"""
Checkout Engine

One CheckoutSession per kiosk. States:

    IDLE -> CART -> DETAILS -> PAYMENT -> [CAPTURING] -> PROCESSING -> SUCCESS | FAILURE

- IDLE: no order in progress; the cart may already hold items from browsing.
- CART: review quantities. Needs a non-empty cart to enter and to leave.
- DETAILS: collect the customer's name. Leaving it freezes the QRIS target
  and the total into payment_display; later admin QRIS edits are not seen.
- PAYMENT: QRIS shown. Proof comes from the camera (CAPTURING) or an upload.
- CAPTURING: the camera is held. It is released on every way out.
- PROCESSING: one verification in flight; a second submission is refused.
- SUCCESS: transaction written and stock reduced in a single commit; the
  session returns to IDLE after the display delay.
- FAILURE: one FailedValidation written per rejected attempt; the customer
  may retry (back to PAYMENT) or cancel.
- ERROR: the purchase could not be recorded; only cancel() leaves it.

cancel() works from every state and never writes anything.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, asdict, field
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models.audit import FAILURE_REASON_MAX_LENGTH
from ..models.ledger import CUSTOMER_NAME_MAX_LENGTH, TRANSACTION_VERIFIED
from . import audit_service, catalog_service, ledger_service, payment_config_service
from .camera import CameraDevice, CameraUnavailableError, UnavailableCamera, encode_still
from .catalog_service import CatalogError, ProductNotFoundError
from .concurrency import atomic
from .ledger_service import LedgerError
from .verification_gateway import (
    GENERIC_FAILURE_REASON,
    VerificationGateway,
    VerificationResult,
    rejected,
)

logger = logging.getLogger(__name__)


# =============================================================================
# STATES (CONSTANTS)
# =============================================================================

STATE_IDLE = "IDLE"
STATE_CART = "CART"
STATE_DETAILS = "DETAILS"
STATE_PAYMENT = "PAYMENT"
STATE_CAPTURING = "CAPTURING"
STATE_PROCESSING = "PROCESSING"
STATE_SUCCESS = "SUCCESS"
STATE_FAILURE = "FAILURE"
STATE_ERROR = "ERROR"

CART_EDITABLE_STATES = (STATE_IDLE, STATE_CART)


# =============================================================================
# ERRORS
# =============================================================================

class CheckoutError(Exception):
    """Raised when a checkout action is refused. The session state is unchanged."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class EmptyCartError(CheckoutError):
    pass


class MissingCustomerNameError(CheckoutError):
    pass


class CustomerNameTooLongError(CheckoutError):
    pass


class InvalidTransitionError(CheckoutError):
    pass


class ProductUnavailableError(CheckoutError):
    pass


class CartLineNotFoundError(CheckoutError):
    pass


class PaymentNotConfiguredError(CheckoutError):
    pass


class VerificationInFlightError(CheckoutError):
    pass


class CheckoutPersistenceError(CheckoutError):
    """Writing the outcome failed. Fatal for the session."""


# =============================================================================
# VALUE TYPES
# =============================================================================

@dataclass
class CartLine:
    product_id: int
    product_name: str
    unit_price: int
    stock: int
    seller_id: int | None
    quantity: int = 0

    @property
    def subtotal(self) -> int:
        return self.unit_price * self.quantity

    def to_dict(self) -> dict:
        data = asdict(self)
        data["subtotal"] = self.subtotal
        return data


@dataclass(frozen=True)
class CartUpdate:
    """Result of a cart edit. stock_exceeded is the user-facing 'not enough stock' signal."""
    line: CartLine | None
    stock_exceeded: bool = False
    removed: bool = False

    def to_dict(self) -> dict:
        return {
            "line": self.line.to_dict() if self.line else None,
            "stock_exceeded": self.stock_exceeded,
            "removed": self.removed,
        }


@dataclass(frozen=True)
class PaymentDisplay:
    qris_image_url: str
    merchant_name: str
    total_amount: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class CheckoutOutcome:
    accepted: bool
    reason: str | None = None
    transaction: dict | None = None
    failed_validation_id: int | None = None
    ignored: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class _AttemptSnapshot:
    generation: int
    customer_name: str
    lines: list[CartLine] = field(default_factory=list)
    total_amount: int = 0
    merchant_name: str = ""
    attempts: int = 1


class CheckoutSession:
    """
    Cart plus payment-verification flow for one kiosk.

    gateway: VerificationGateway used in PROCESSING.
    camera_factory: builds the device open_camera() uses when none is given.
    result_display_delay: seconds SUCCESS stays on screen before IDLE.
    clock: monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        gateway: VerificationGateway,
        camera_factory: Callable[[], CameraDevice] | None = None,
        result_display_delay: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
        session_id: str | None = None,
    ) -> None:
        self.session_id = session_id or uuid.uuid4().hex
        self.gateway = gateway
        self._camera_factory = camera_factory or UnavailableCamera
        self.result_display_delay = result_display_delay
        self._clock = clock
        self._lock = threading.RLock()

        self._state = STATE_IDLE
        self._cart: dict[int, CartLine] = {}
        self._camera: CameraDevice | None = None
        self._in_flight = False
        self._generation = 0
        self._result_at: float | None = None

        self.customer_name: str | None = None
        self.payment_display: PaymentDisplay | None = None
        self.verification_attempts = 1
        self.last_result: VerificationResult | None = None
        self.last_transaction: dict | None = None
        self.error_message: str | None = None
        self.last_activity = clock()

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    @property
    def state(self) -> str:
        with self._lock:
            self._expire_result()
            return self._state

    @property
    def lines(self) -> list[CartLine]:
        with self._lock:
            return list(self._cart.values())

    @property
    def total_amount(self) -> int:
        with self._lock:
            return sum(line.subtotal for line in self._cart.values())

    @property
    def item_count(self) -> int:
        with self._lock:
            return sum(line.quantity for line in self._cart.values())

    @property
    def verification_in_flight(self) -> bool:
        return self._in_flight

    @property
    def camera_open(self) -> bool:
        return self._camera is not None

    def to_dict(self) -> dict:
        with self._lock:
            self._expire_result()
            return {
                "session_id": self.session_id,
                "state": self._state,
                "cart": [line.to_dict() for line in self._cart.values()],
                "total_amount": self.total_amount,
                "item_count": self.item_count,
                "customer_name": self.customer_name,
                "payment_display": self.payment_display.to_dict() if self.payment_display else None,
                "verification_attempts": self.verification_attempts,
                "verification_in_flight": self._in_flight,
                "camera_open": self.camera_open,
                "last_result": self.last_result.to_dict() if self.last_result else None,
                "last_transaction": self.last_transaction,
                "error": self.error_message,
            }

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _touch(self) -> None:
        self.last_activity = self._clock()

    def _expire_result(self) -> None:
        if self._state != STATE_SUCCESS or self._result_at is None:
            return
        if self._clock() - self._result_at >= self.result_display_delay:
            self._reset()

    def _require_state(self, action: str, *allowed: str) -> None:
        self._expire_result()
        if self._state not in allowed:
            raise InvalidTransitionError(
                f"Cannot {action} while checkout is {self._state}",
                details={"state": self._state, "allowed": list(allowed)},
            )

    def _release_camera(self) -> None:
        camera, self._camera = self._camera, None
        if camera is not None:
            try:
                camera.release()
            except Exception:
                logger.exception("Failed to release camera for kiosk session %s", self.session_id)

    def _reset(self) -> None:
        self._release_camera()
        self._cart.clear()
        self._state = STATE_IDLE
        self._in_flight = False
        self._generation += 1
        self._result_at = None
        self.customer_name = None
        self.payment_display = None
        self.verification_attempts = 1
        self.last_result = None
        self.error_message = None

    def _line(self, product_id: int) -> CartLine:
        line = self._cart.get(product_id)
        if line is None:
            raise CartLineNotFoundError(f"Product {product_id} is not in the cart")
        return line

    # -------------------------------------------------------------------------
    # Cart
    # -------------------------------------------------------------------------

    def add_item(self, product) -> CartUpdate:
        """
        Add one unit of product.

        Never raises for stock: when the cart already holds all available
        units the quantity stays clamped and stock_exceeded is set.
        """
        with self._lock:
            self._touch()
            self._require_state("add to cart", *CART_EDITABLE_STATES)
            if self._state == STATE_IDLE:
                self.last_transaction = None

            if not product.is_purchasable:
                raise ProductUnavailableError(
                    f"{product.name} is not available",
                    details={"product_id": product.id},
                )

            line = self._cart.get(product.id)
            if line is None:
                line = CartLine(
                    product_id=product.id,
                    product_name=product.name,
                    unit_price=product.price,
                    stock=product.stock,
                    seller_id=product.seller_id,
                )
            else:
                line.stock = product.stock

            if line.quantity + 1 > line.stock:
                line.quantity = min(line.quantity, line.stock)
                return CartUpdate(line=line, stock_exceeded=True)

            line.quantity += 1
            self._cart[product.id] = line
            return CartUpdate(line=line)

    def set_quantity(self, product_id: int, quantity: int, stock: int | None = None) -> CartUpdate:
        """
        Set a line's quantity, clamped to 0..stock.

        stock refreshes the line's known stock when the caller has a fresher
        figure. Quantity 0 removes the line.
        """
        with self._lock:
            self._touch()
            self._require_state("change quantities", *CART_EDITABLE_STATES)
            line = self._line(product_id)
            if stock is not None:
                line.stock = max(0, stock)

            exceeded = quantity > line.stock
            quantity = max(0, min(quantity, line.stock))

            if quantity == 0:
                del self._cart[product_id]
                return CartUpdate(line=None, stock_exceeded=exceeded, removed=True)

            line.quantity = quantity
            return CartUpdate(line=line, stock_exceeded=exceeded)

    def adjust_quantity(self, product_id: int, delta: int, stock: int | None = None) -> CartUpdate:
        with self._lock:
            line = self._line(product_id)
            return self.set_quantity(product_id, line.quantity + delta, stock=stock)

    def remove_item(self, product_id: int) -> CartUpdate:
        with self._lock:
            self._touch()
            self._require_state("remove from cart", *CART_EDITABLE_STATES)
            self._line(product_id)
            del self._cart[product_id]
            return CartUpdate(line=None, removed=True)

    # -------------------------------------------------------------------------
    # Flow
    # -------------------------------------------------------------------------

    def begin_checkout(self) -> None:
        """IDLE -> CART."""
        with self._lock:
            self._touch()
            self._require_state("start checkout", STATE_IDLE, STATE_CART)
            if not self._cart:
                raise EmptyCartError("Cart is empty")
            self._state = STATE_CART

    def proceed_to_details(self) -> None:
        """CART -> DETAILS."""
        with self._lock:
            self._touch()
            self._require_state("enter details", STATE_CART)
            if not self._cart:
                raise EmptyCartError("Cart is empty")
            self._state = STATE_DETAILS

    def back_to_cart(self) -> None:
        """DETAILS -> CART."""
        with self._lock:
            self._touch()
            self._require_state("return to cart", STATE_DETAILS)
            self._state = STATE_CART

    def submit_details(self, customer_name: str | None) -> PaymentDisplay:
        """
        DETAILS -> PAYMENT.

        Reads the QRIS config once and freezes it with the cart total.
        """
        with self._lock:
            self._touch()
            self._require_state("submit details", STATE_DETAILS)

            name = (customer_name or "").strip()
            if not name:
                raise MissingCustomerNameError("Customer name is required")
            if len(name) > CUSTOMER_NAME_MAX_LENGTH:
                raise CustomerNameTooLongError(
                    f"Customer name must be at most {CUSTOMER_NAME_MAX_LENGTH} characters",
                    details={"max_length": CUSTOMER_NAME_MAX_LENGTH, "length": len(name)},
                )
            if not self._cart:
                raise EmptyCartError("Cart is empty")

            config = payment_config_service.get_config()
            if config is None:
                raise PaymentNotConfiguredError("QRIS payment is not configured")

            self.customer_name = name
            self.payment_display = PaymentDisplay(
                qris_image_url=config.image_url,
                merchant_name=config.merchant_name,
                total_amount=self.total_amount,
            )
            self._state = STATE_PAYMENT
            return self.payment_display

    def open_camera(self, device: CameraDevice | None = None) -> bool:
        """
        PAYMENT -> CAPTURING.

        Returns False (staying in PAYMENT, upload expected) when the device
        cannot be opened.
        """
        with self._lock:
            self._touch()
            self._require_state("open the camera", STATE_PAYMENT, STATE_CAPTURING)
            if self._state == STATE_CAPTURING:
                return True

            camera = device or self._camera_factory()
            try:
                camera.open()
            except CameraUnavailableError:
                logger.info("Camera unavailable for kiosk session %s, falling back to upload", self.session_id)
                camera.release()
                return False
            except Exception:
                camera.release()
                raise

            self._camera = camera
            self._state = STATE_CAPTURING
            return True

    def close_camera(self) -> None:
        """CAPTURING -> PAYMENT."""
        with self._lock:
            self._touch()
            self._require_state("close the camera", STATE_CAPTURING)
            self._release_camera()
            self._state = STATE_PAYMENT

    def capture_and_verify(self, frame: str | bytes | None = None) -> CheckoutOutcome:
        """
        CAPTURING -> PROCESSING -> SUCCESS | FAILURE.

        frame, when given, is pushed to the camera first (kiosk front-end
        cameras). The camera is released whether or not the capture works;
        a failed capture returns the session to PAYMENT.
        """
        with self._lock:
            self._touch()
            self._guard_in_flight()
            self._require_state("capture a photo", STATE_CAPTURING)
            try:
                if frame is not None:
                    self._camera.push_frame(frame)
                image = self._camera.capture_still()
            except CameraUnavailableError:
                self._state = STATE_PAYMENT
                raise
            finally:
                self._release_camera()
            snapshot = self._start_attempt()

        return self._finish_attempt(image, snapshot)

    def upload_proof(self, image: str | bytes) -> CheckoutOutcome:
        """
        PAYMENT (or CAPTURING) -> PROCESSING -> SUCCESS | FAILURE.

        Uploading while the camera is open releases the camera.
        """
        if not image:
            raise CheckoutError("Proof image is required")

        with self._lock:
            self._touch()
            self._guard_in_flight()
            self._require_state("submit a payment proof", STATE_PAYMENT, STATE_CAPTURING)
            self._release_camera()
            snapshot = self._start_attempt()

        return self._finish_attempt(image, snapshot)

    def retry(self) -> None:
        """FAILURE -> PAYMENT, discarding the rejected proof."""
        with self._lock:
            self._touch()
            self._require_state("retry", STATE_FAILURE)
            self.verification_attempts += 1
            self.last_result = None
            self._state = STATE_PAYMENT

    def finish(self) -> None:
        """SUCCESS -> IDLE without waiting for the display delay."""
        with self._lock:
            self._touch()
            self._require_state("finish", STATE_SUCCESS)
            self._reset()

    def cancel(self) -> None:
        """
        Any state -> IDLE with an empty cart.

        An in-flight verification keeps running but its verdict is dropped.
        """
        with self._lock:
            self._touch()
            previous = self._state
            self._reset()
            self.last_transaction = None
        logger.info("Kiosk session %s cancelled from %s", self.session_id, previous)

    # -------------------------------------------------------------------------
    # Verification
    # -------------------------------------------------------------------------

    def _guard_in_flight(self) -> None:
        if self._in_flight:
            raise VerificationInFlightError("A payment proof is already being verified")

    def _start_attempt(self) -> _AttemptSnapshot:
        # caller holds the lock
        self._state = STATE_PROCESSING
        self._in_flight = True
        return _AttemptSnapshot(
            generation=self._generation,
            customer_name=self.customer_name,
            lines=[CartLine(**asdict(line)) for line in self._cart.values()],
            total_amount=self.payment_display.total_amount,
            merchant_name=self.payment_display.merchant_name,
            attempts=self.verification_attempts,
        )

    def _call_gateway(self, image: str | bytes, snapshot: _AttemptSnapshot) -> VerificationResult:
        try:
            result = self.gateway.verify(image, snapshot.total_amount, snapshot.merchant_name)
        except Exception:
            logger.exception("Verification gateway raised for kiosk session %s", self.session_id)
            return rejected(GENERIC_FAILURE_REASON)

        if not isinstance(result, VerificationResult):
            logger.error("Verification gateway returned %r for kiosk session %s", result, self.session_id)
            return rejected(GENERIC_FAILURE_REASON)
        return result

    def _finish_attempt(self, image: str | bytes, snapshot: _AttemptSnapshot) -> CheckoutOutcome:
        result = self._call_gateway(image, snapshot)

        with self._lock:
            if snapshot.generation != self._generation:
                logger.info("Dropping verification verdict for cancelled kiosk session %s", self.session_id)
                return CheckoutOutcome(accepted=result.accepted, reason=result.reason, ignored=True)

            self._in_flight = False
            self._touch()
            if result.accepted:
                return self._commit_success(image, snapshot)
            return self._record_failure(image, result, snapshot)

    def _proof_reference(self, image: str | bytes) -> str:
        if isinstance(image, bytes):
            return encode_still(image)
        return image

    def _commit_success(self, image: str | bytes, snapshot: _AttemptSnapshot) -> CheckoutOutcome:
        lines = [
            {
                "product_id": line.product_id,
                "product_name": line.product_name,
                "quantity": line.quantity,
                "price": line.unit_price,
            }
            for line in snapshot.lines
        ]

        try:
            with atomic():
                transaction = ledger_service.build_transaction(
                    customer_name=snapshot.customer_name,
                    lines=lines,
                    status=TRANSACTION_VERIFIED,
                    seller_id=snapshot.lines[0].seller_id,
                    payment_proof_url=self._proof_reference(image),
                    verification_attempts=snapshot.attempts,
                )
                ledger_service.create_transaction(transaction, commit=False)
                for line in snapshot.lines:
                    try:
                        catalog_service.decrement_stock(line.product_id, line.quantity)
                    except ProductNotFoundError:
                        logger.warning(
                            "Product %s was deleted during kiosk session %s; recording the sale without a stock change",
                            line.product_id,
                            self.session_id,
                        )
        except (SQLAlchemyError, CatalogError, LedgerError) as exc:
            logger.exception("Failed to record verified purchase for kiosk session %s", self.session_id)
            self._state = STATE_ERROR
            self.error_message = "Purchase could not be recorded"
            raise CheckoutPersistenceError("Purchase could not be recorded") from exc

        self.last_transaction = transaction.to_dict()
        self.last_result = VerificationResult(accepted=True)
        self._cart.clear()
        self._state = STATE_SUCCESS
        self._result_at = self._clock()
        logger.info(
            "Kiosk session %s recorded transaction %s total=%s",
            self.session_id,
            transaction.id,
            transaction.total_amount,
        )
        return CheckoutOutcome(accepted=True, transaction=self.last_transaction)

    def _record_failure(
        self,
        image: str | bytes,
        result: VerificationResult,
        snapshot: _AttemptSnapshot,
    ) -> CheckoutOutcome:
        reason = (result.reason or GENERIC_FAILURE_REASON)[:FAILURE_REASON_MAX_LENGTH]
        try:
            record = audit_service.create_failed_validation(
                customer_name=snapshot.customer_name,
                attempted_amount=snapshot.total_amount,
                failure_reason=reason,
                image_url=self._proof_reference(image),
            )
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.exception("Failed to log rejected proof for kiosk session %s", self.session_id)
            self._state = STATE_ERROR
            self.error_message = "Verification result could not be recorded"
            raise CheckoutPersistenceError("Verification result could not be recorded") from exc

        self.last_result = VerificationResult(accepted=False, reason=reason)
        self._state = STATE_FAILURE
        logger.info(
            "Kiosk session %s proof rejected (attempt %s): %s",
            self.session_id,
            snapshot.attempts,
            reason,
        )
        return CheckoutOutcome(accepted=False, reason=reason, failed_validation_id=record.id)
