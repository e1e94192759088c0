import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from vendpay import config, paging, repositories
from vendpay.device import DeviceAvailabilityChecker, default_device_checker
from vendpay.enums import MakeStatus, PaymentStatus
from vendpay.errors import (
    DeviceOffline,
    InvalidOrderStatus,
    InvalidPaymentAmount,
    MachineNotFound,
    MemberNotFound,
    OrderAlreadyRefunded,
    OrderNotFound,
)
from vendpay.logger import get_logger
from vendpay.models import Order, utc_now
from vendpay.ownership import OwnershipValidator

logger = get_logger("vendpay.orders")

CENT = Decimal("0.01")
NODE_BYTES = 2
ORDER_NO_ATTEMPTS = 3


class OrderNumberGenerator:
    """
    Time-ordered order numbers: prefix + UTC YYYYMMDDHHMMSS + 6 digit
    microseconds + node suffix.

    Numbers handed out by one generator strictly increase; if the clock has not
    moved (or moved backwards) the last timestamp is bumped by a microsecond.
    The node suffix is random per generator unless one is given.
    """

    def __init__(self, prefix: str = config.ORDER_NO_PREFIX, clock=None, node: Optional[str] = None):
        self.prefix = prefix
        self.node = secrets.token_hex(NODE_BYTES).upper() if node is None else node
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._last: Optional[datetime] = None
        self._lock = threading.Lock()

    def next(self) -> str:
        with self._lock:
            now = self._clock()
            if now.tzinfo is not None:
                now = now.astimezone(timezone.utc).replace(tzinfo=None)
            if self._last is not None and now <= self._last:
                now = self._last + timedelta(microseconds=1)
            self._last = now
        return f"{self.prefix}{now.strftime('%Y%m%d%H%M%S%f')}{self.node}"


@dataclass
class RefundResult:
    order_id: str
    order_no: str
    refund_amount: Decimal
    refund_time: datetime
    message: str = "退款成功"


def parse_amount(value) -> Decimal:
    """Coerce a money amount to a two-place Decimal, refusing floats and bad input."""
    if isinstance(value, float):
        raise InvalidPaymentAmount(value, "binary floating point is not accepted for money")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidPaymentAmount(value, "not a decimal number") from None
    if not amount.is_finite():
        raise InvalidPaymentAmount(value, "must be finite")
    if amount < 0:
        raise InvalidPaymentAmount(value, "must not be negative")
    if amount != amount.quantize(CENT):
        raise InvalidPaymentAmount(value, "at most two decimal places")
    return amount.quantize(CENT)


class OrderLifecycleManager:
    """Creates orders, refunds them and serves order lookups."""

    def __init__(
        self,
        engine: Engine,
        device_checker: Optional[DeviceAvailabilityChecker] = None,
        ownership: Optional[OwnershipValidator] = None,
        order_numbers: Optional[OrderNumberGenerator] = None,
    ):
        self.engine = engine
        self.device_checker = device_checker or default_device_checker()
        self.ownership = ownership or OwnershipValidator()
        self.order_numbers = order_numbers or OrderNumberGenerator()

    def create_order(
        self,
        member_id: str,
        machine_id: str,
        product_id: str,
        has_cup: bool,
        pay_amount,
    ) -> Order:
        """
        Persist a new order in WaitPay / WaitMake.

        Refused outright with DeviceOffline when the machine controller cannot
        be confirmed reachable; nothing is written in that case. Stock is not
        touched here.
        """
        amount = parse_amount(pay_amount)

        with Session(self.engine) as session:
            if repositories.get_member(session, member_id) is None:
                raise MemberNotFound(member_id)
            machine = repositories.get_machine(session, machine_id)
            if machine is None:
                raise MachineNotFound(machine_id)

            if not self._device_online(machine.machine_no):
                logger.warning(f"Order refused: machine {machine_id} device {machine.machine_no} offline")
                raise DeviceOffline(machine_id, machine.machine_no)

            for attempt in range(1, ORDER_NO_ATTEMPTS + 1):
                order_no = self.order_numbers.next()
                order = Order(
                    order_no=order_no,
                    member_id=member_id,
                    machine_id=machine_id,
                    product_id=product_id,
                    has_cup=bool(has_cup),
                    total_amount=amount,
                    pay_amount=amount,
                    payment_status=PaymentStatus.WAIT_PAY,
                    make_status=MakeStatus.WAIT_MAKE,
                    refund_amount=Decimal("0.00"),
                )
                session.add(order)
                try:
                    session.commit()
                    break
                except IntegrityError:
                    session.rollback()
                    # Only a taken order number is worth another attempt
                    if attempt == ORDER_NO_ATTEMPTS or repositories.get_order_by_no(session, order_no) is None:
                        raise
                    logger.warning(f"Order number {order_no} already taken, retrying")
            session.refresh(order)

        logger.info(f"Order {order.order_no} created for member {member_id} on machine {machine_id}, amount {amount}")
        return order

    def refund(self, order_id: str, reason: str, acting_owner_id: Optional[str]) -> RefundResult:
        """Refund a paid order. Only the owner of the order's machine may do this, and only once."""
        with Session(self.engine) as session:
            order = repositories.get_order(session, order_id)
            if order is None:
                raise OrderNotFound(order_id)
            if order.payment_status == PaymentStatus.REFUNDED:
                raise OrderAlreadyRefunded(order_id)
            if order.payment_status != PaymentStatus.PAID:
                raise InvalidOrderStatus(order_id, PaymentStatus(order.payment_status).value, PaymentStatus.PAID.value)
            self.ownership.validate_order(session, order, acting_owner_id)

            now = utc_now()
            applied = repositories.transition_payment(
                session, order, PaymentStatus.REFUNDED,
                refund_time=now,
                refund_amount=order.pay_amount,
                refund_reason=reason,
            )
            if not applied:
                session.rollback()
                # Lost a race; report what the winner left behind
                current = repositories.get_order(session, order_id)
                if current is None:
                    raise OrderNotFound(order_id)
                if current.payment_status == PaymentStatus.REFUNDED:
                    raise OrderAlreadyRefunded(order_id)
                raise InvalidOrderStatus(order_id, PaymentStatus(current.payment_status).value, PaymentStatus.PAID.value)
            session.commit()
            session.refresh(order)

        logger.info(f"Order {order.order_no} refunded {order.refund_amount} by owner {acting_owner_id}: {reason}")
        return RefundResult(
            order_id=order.id,
            order_no=order.order_no,
            refund_amount=order.refund_amount,
            refund_time=order.refund_time,
        )

    def get_order(self, order_id: str) -> Order:
        with Session(self.engine) as session:
            order = repositories.get_order(session, order_id)
            if order is None:
                raise OrderNotFound(order_id)
            return order

    def get_by_order_no(self, order_no: str) -> Optional[Order]:
        with Session(self.engine) as session:
            return repositories.get_order_by_no(session, order_no)

    def list_member_orders(self, member_id: str, page_index: int = 1, page_size: int = 10) -> paging.Page[Order]:
        page_index, page_size, offset = paging.normalize(page_index, page_size)
        with Session(self.engine) as session:
            if repositories.get_member(session, member_id) is None:
                raise MemberNotFound(member_id)
            orders, total = repositories.list_member_orders(session, member_id, offset, page_size)
            return paging.Page(items=orders, total=total, page_index=page_index, page_size=page_size)

    def _device_online(self, device_ref: Optional[str]) -> bool:
        if not device_ref:
            return False
        try:
            return self.device_checker.check_online(device_ref) is True
        except Exception:
            # Unknown is treated as offline
            logger.exception(f"Device check raised for {device_ref}")
            return False
