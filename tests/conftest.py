"""Pytest fixtures for vendpay tests."""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func
from sqlmodel import Session, select

from vendpay.db import init_db, make_engine
from vendpay.enums import CallbackStatus
from vendpay.inventory import InventoryGate
from vendpay.machines import MachineService
from vendpay.models import Machine, MachineOwner, MaterialSilo, Member, Order, Product
from vendpay.orders import OrderLifecycleManager
from vendpay.payments import PaymentCallback, PaymentReconciler


class FakeDeviceChecker:
    """Device checker whose answer the test controls."""

    def __init__(self, online: bool = True, error: Exception | None = None):
        self.online = online
        self.error = error
        self.calls: list[str] = []

    def check_online(self, device_ref: str) -> bool:
        self.calls.append(device_ref)
        if self.error is not None:
            raise self.error
        return self.online


@dataclass
class Seed:
    owner_id: str
    other_owner_id: str
    member_id: str
    product_id: str
    machine_id: str
    silo_id: str


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite so worker threads share the same database."""
    engine = make_engine(f"sqlite:///{tmp_path / 'vendpay.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def seed(engine):
    with Session(engine) as session:
        owner = MachineOwner(name="Owner A")
        other = MachineOwner(name="Owner B")
        member = Member(nickname="alice")
        product = Product(name="Latte", price=Decimal("12.50"))
        session.add_all([owner, other, member, product])
        session.flush()

        machine = Machine(machine_owner_id=owner.id, machine_no="DEV-001", name="Lobby")
        session.add(machine)
        session.flush()

        silo = MaterialSilo(machine_id=machine.id, silo_no=1, max_capacity=100, stock=0)
        session.add(silo)
        session.commit()

        return Seed(
            owner_id=owner.id,
            other_owner_id=other.id,
            member_id=member.id,
            product_id=product.id,
            machine_id=machine.id,
            silo_id=silo.id,
        )


@pytest.fixture
def device():
    return FakeDeviceChecker(online=True)


@pytest.fixture
def orders(engine, device):
    return OrderLifecycleManager(engine, device_checker=device)


@pytest.fixture
def reconciler(engine):
    # No merchant key: only signature presence is enforced
    return PaymentReconciler(engine, verifier=None)


@pytest.fixture
def inventory(engine):
    return InventoryGate(engine)


@pytest.fixture
def machines(engine, device):
    return MachineService(engine, device_checker=device)


def success_callback(order: Order, channel_order_no: str = "TX-1", paid_at: datetime | None = None) -> PaymentCallback:
    return PaymentCallback(
        order_no=order.order_no,
        channel_order_no=channel_order_no,
        status=CallbackStatus.SUCCESS,
        signature="sig",
        amount=order.pay_amount,
        paid_at=paid_at or datetime(2026, 10, 1, 12, 0, 0, tzinfo=timezone.utc),
    )


@pytest.fixture
def new_order(orders, seed):
    def _new_order(amount: str = "12.50") -> Order:
        return orders.create_order(seed.member_id, seed.machine_id, seed.product_id, True, Decimal(amount))

    return _new_order


@pytest.fixture
def paid_order(new_order, reconciler, orders):
    order = new_order()
    reconciler.handle_callback(success_callback(order))
    return orders.get_order(order.id)


def count_orders(engine) -> int:
    with Session(engine) as session:
        return session.exec(select(func.count()).select_from(Order)).one()
