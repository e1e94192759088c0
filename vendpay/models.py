import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, UniqueConstraint
from sqlalchemy.types import TypeDecorator
from sqlmodel import Field, SQLModel

from vendpay.enums import BusinessStatus, MakeStatus, PaymentStatus, SaleStatus


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetime column.

    Naive values are refused on write. SQLite keeps no offset, so values are
    stored as UTC wall time and come back with ``timezone.utc`` attached.
    """

    impl = DateTime
    cache_ok = True

    def __init__(self):
        super().__init__(timezone=True)

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"naive datetime {value!r}: timestamps must carry a timezone")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class MachineOwner(SQLModel, table=True):
    __tablename__ = "machine_owners"

    id: str = Field(default_factory=new_id, primary_key=True)
    name: str
    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)


class Member(SQLModel, table=True):
    __tablename__ = "members"

    id: str = Field(default_factory=new_id, primary_key=True)
    nickname: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)


class Product(SQLModel, table=True):
    __tablename__ = "products"

    id: str = Field(default_factory=new_id, primary_key=True)
    name: str
    price: Decimal = Field(default=Decimal("0.00"), max_digits=10, decimal_places=2)
    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)


class Machine(SQLModel, table=True):
    __tablename__ = "machines"

    id: str = Field(default_factory=new_id, primary_key=True)
    machine_owner_id: str = Field(foreign_key="machine_owners.id", index=True)
    machine_no: Optional[str] = Field(default=None, unique=True)  # device reference for reachability checks
    name: str = ""
    area: Optional[str] = None
    address: Optional[str] = None
    service_phone: Optional[str] = None
    business_status: BusinessStatus = Field(default=BusinessStatus.OPEN)  # Open / Close only; Offline is derived
    version: int = Field(default=1)
    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)
    updated_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)


class MaterialSilo(SQLModel, table=True):
    __tablename__ = "material_silos"
    __table_args__ = (UniqueConstraint("machine_id", "silo_no"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    machine_id: str = Field(foreign_key="machines.id", index=True)
    silo_no: int                                                  # slot position, unique per machine
    product_id: Optional[str] = Field(default=None, foreign_key="products.id")
    stock: int = Field(default=0)
    max_capacity: int = Field(default=100)
    sale_status: SaleStatus = Field(default=SaleStatus.OFF)
    version: int = Field(default=1)
    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)
    updated_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)

    def is_stock_empty(self) -> bool:
        return self.stock <= 0

    def is_stock_low(self) -> bool:
        """Below 10% of max capacity."""
        if self.max_capacity == 0:
            return False
        return self.stock * 10 < self.max_capacity

    def stock_percentage(self) -> float:
        if self.max_capacity == 0:
            return 0.0
        return self.stock / self.max_capacity * 100

    def can_sale(self) -> bool:
        return self.product_id is not None and self.stock > 0 and self.sale_status == SaleStatus.ON


class Order(SQLModel, table=True):
    __tablename__ = "orders"

    id: str = Field(default_factory=new_id, primary_key=True)
    order_no: str = Field(unique=True, index=True)            # external order number, never reused
    member_id: str = Field(foreign_key="members.id", index=True)
    machine_id: str = Field(foreign_key="machines.id", index=True)
    product_id: str = Field(foreign_key="products.id")
    has_cup: bool = Field(default=True)
    total_amount: Decimal = Field(max_digits=10, decimal_places=2)
    pay_amount: Decimal = Field(max_digits=10, decimal_places=2)
    payment_status: PaymentStatus = Field(default=PaymentStatus.WAIT_PAY)
    make_status: MakeStatus = Field(default=MakeStatus.WAIT_MAKE)
    payment_time: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    channel_order_no: Optional[str] = None                    # payment provider transaction id
    refund_time: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    refund_amount: Decimal = Field(default=Decimal("0.00"), max_digits=10, decimal_places=2)
    refund_reason: Optional[str] = None
    version: int = Field(default=1)
    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)
    updated_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    deleted_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)  # soft delete marker
