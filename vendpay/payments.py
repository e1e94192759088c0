"""
Payment callback reconciliation.

Providers deliver results at least once and retry on anything but a success
acknowledgement. Two rules make that safe:

- the only write is a conditional WaitPay -> Paid/Invalid update, so a
  duplicate (or a racing copy) of a callback finds nothing to change;
- once a callback has been accepted, processing failures are logged and the
  provider still gets its acknowledgement. Retrying cannot repair a local
  persistence fault; an operator has to.

A callback without a signature is rejected before any of this happens.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Protocol

from sqlalchemy.engine import Engine
from sqlmodel import Session

from vendpay import config, repositories
from vendpay.enums import CallbackStatus, PaymentStatus
from vendpay.errors import InvalidPaymentAmount, PaymentCallbackInvalid
from vendpay.logger import get_logger
from vendpay.models import utc_now
from vendpay.signing import Md5SignatureVerifier

logger = get_logger("vendpay.payments")


class SignatureVerifier(Protocol):
    def verify(self, params: dict, signature: str) -> bool:
        ...


@dataclass
class PaymentCallback:
    order_no: str
    channel_order_no: Optional[str]
    status: CallbackStatus
    signature: Optional[str]
    amount: Optional[Decimal] = None
    paid_at: Optional[datetime] = None
    # Fields exactly as the provider sent them, used for signature checks
    raw: dict = field(default_factory=dict)

    def sign_params(self) -> dict:
        if self.raw:
            return dict(self.raw)
        return {
            "orderNo": self.order_no,
            "channelOrderNo": self.channel_order_no,
            "amount": None if self.amount is None else str(self.amount),
            "status": CallbackStatus(self.status).value,
            "paidAt": None if self.paid_at is None else self.paid_at.isoformat(),
        }


@dataclass
class Acknowledgement:
    """What the provider is told. ``success`` is always True once a callback is accepted."""

    success: bool = True
    applied: bool = False
    message: str = "ok"


def default_signature_verifier() -> Optional[SignatureVerifier]:
    if config.CALLBACK_SIGN_KEY:
        return Md5SignatureVerifier(config.CALLBACK_SIGN_KEY)
    return None


def _as_utc(value: Optional[datetime]) -> datetime:
    if value is None:
        return utc_now()
    # Providers that omit an offset report UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class PaymentReconciler:
    def __init__(self, engine: Engine, verifier: Optional[SignatureVerifier] = None):
        self.engine = engine
        self.verifier = verifier if verifier is not None else default_signature_verifier()

    def handle_callback(self, callback: PaymentCallback) -> Acknowledgement:
        """
        Apply a provider callback at most once.

        Raises PaymentCallbackInvalid for a missing or bad signature. Every
        other outcome, including internal failures, is an Acknowledgement.
        """
        self.verify_signature(callback)
        logger.info(
            f"Payment callback order_no={callback.order_no} channel_order_no={callback.channel_order_no} "
            f"status={CallbackStatus(callback.status).value} amount={callback.amount}"
        )
        try:
            return self._reconcile(callback)
        except Exception:
            logger.exception(
                f"Payment callback for {callback.order_no} could not be applied; "
                "acknowledged anyway, needs operator attention"
            )
            return Acknowledgement(applied=False, message="ok")

    def verify_signature(self, callback: PaymentCallback) -> None:
        if not callback.signature or not callback.signature.strip():
            logger.warning(f"Payment callback for {callback.order_no} rejected: missing signature")
            raise PaymentCallbackInvalid("missing signature")
        if self.verifier is not None and not self.verifier.verify(callback.sign_params(), callback.signature):
            logger.warning(f"Payment callback for {callback.order_no} rejected: signature mismatch")
            raise PaymentCallbackInvalid("signature mismatch")

    def _reconcile(self, callback: PaymentCallback) -> Acknowledgement:
        status = CallbackStatus(callback.status)
        with Session(self.engine) as session:
            order = repositories.get_order_by_no(session, callback.order_no)
            if order is None:
                logger.warning(f"Payment callback for unknown order {callback.order_no}")
                return Acknowledgement(message="order not found")

            if order.payment_status != PaymentStatus.WAIT_PAY:
                logger.info(f"Order {order.order_no} already {PaymentStatus(order.payment_status).value}, callback ignored")
                return Acknowledgement(message="already processed")

            if status == CallbackStatus.SUCCESS:
                if callback.amount is not None and Decimal(callback.amount) != order.pay_amount:
                    raise InvalidPaymentAmount(
                        callback.amount, f"order {order.order_no} expects {order.pay_amount}"
                    )
                target = PaymentStatus.PAID
                values = {
                    "channel_order_no": callback.channel_order_no,
                    "payment_time": _as_utc(callback.paid_at),
                }
            elif status.invalidates_order:
                target = PaymentStatus.INVALID
                values = {}
            else:
                logger.warning(f"Order {order.order_no} callback reported {status.value}; left in WaitPay")
                return Acknowledgement(message="status not final")

            if not repositories.transition_payment(session, order, target, **values):
                session.rollback()
                logger.info(f"Order {callback.order_no} was settled by a concurrent callback")
                return Acknowledgement(message="already processed")
            session.commit()

        logger.info(f"Order {callback.order_no} -> {target.value}")
        return Acknowledgement(applied=True, message="ok")
