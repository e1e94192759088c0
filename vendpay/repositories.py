"""Data access helpers.

Every state change goes through a single UPDATE conditioned on the version
the caller read, so two writers that read the same row cannot both win.
"""
from typing import Optional

from sqlalchemy import func, update
from sqlmodel import Session, select

from vendpay.enums import PaymentStatus
from vendpay.errors import InvalidOrderStatus
from vendpay.models import Machine, MaterialSilo, Member, Order, Product, utc_now


def _guarded_update(session: Session, model, row, *conditions, **values) -> bool:
    stmt = (
        update(model)
        .where(model.id == row.id, model.version == row.version, *conditions)
        .values(version=model.version + 1, updated_at=utc_now(), **values)
        .execution_options(synchronize_session=False)
    )
    result = session.exec(stmt)
    return result.rowcount == 1


# --- Orders ---


def get_order(session: Session, order_id: str) -> Optional[Order]:
    order = session.get(Order, order_id)
    if order is None or order.deleted_at is not None:
        return None
    return order


def get_order_by_no(session: Session, order_no: str) -> Optional[Order]:
    return session.exec(
        select(Order).where(Order.order_no == order_no, Order.deleted_at == None)  # noqa: E711
    ).first()


def list_member_orders(session: Session, member_id: str, offset: int, limit: int) -> tuple[list[Order], int]:
    where = (Order.member_id == member_id, Order.deleted_at == None)  # noqa: E711
    total = session.exec(select(func.count()).select_from(Order).where(*where)).one()
    orders = session.exec(
        select(Order).where(*where).order_by(Order.created_at.desc(), Order.order_no.desc()).offset(offset).limit(limit)
    ).all()
    return list(orders), total


def transition_payment(session: Session, order: Order, target: PaymentStatus, **values) -> bool:
    """
    Move ``order`` from the payment status it was read with to ``target``.

    Returns False when another writer changed the row first. Raises
    InvalidOrderStatus for a transition outside WaitPay->{Paid,Invalid},
    Paid->Refunded.
    """
    current = PaymentStatus(order.payment_status)
    if not current.can_transition_to(target):
        raise InvalidOrderStatus(order.id, current.value, f"a status that can move to {target.value}")
    return _guarded_update(
        session, Order, order,
        Order.payment_status == current,
        payment_status=target,
        **values,
    )


# --- Machines ---


def get_machine(session: Session, machine_id: str) -> Optional[Machine]:
    return session.get(Machine, machine_id)


def update_machine(session: Session, machine: Machine, **values) -> bool:
    return _guarded_update(session, Machine, machine, **values)


# --- Material silos ---


def get_silo(session: Session, silo_id: str) -> Optional[MaterialSilo]:
    return session.get(MaterialSilo, silo_id)


def list_machine_silos(session: Session, machine_id: str, offset: int, limit: int) -> tuple[list[MaterialSilo], int]:
    total = session.exec(
        select(func.count()).select_from(MaterialSilo).where(MaterialSilo.machine_id == machine_id)
    ).one()
    silos = session.exec(
        select(MaterialSilo)
        .where(MaterialSilo.machine_id == machine_id)
        .order_by(MaterialSilo.silo_no)
        .offset(offset)
        .limit(limit)
    ).all()
    return list(silos), total


def update_silo(session: Session, silo: MaterialSilo, **values) -> bool:
    return _guarded_update(session, MaterialSilo, silo, **values)


# --- Lookups ---


def get_member(session: Session, member_id: str) -> Optional[Member]:
    return session.get(Member, member_id)


def get_product(session: Session, product_id: str) -> Optional[Product]:
    return session.get(Product, product_id)
