"""Request / response payloads for the HTTP surface (camelCase on the wire)."""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from vendpay.enums import BusinessStatus, CallbackStatus, MakeStatus, PaymentStatus, SaleStatus
from vendpay.machines import MachineView
from vendpay.models import MaterialSilo, Order
from vendpay.orders import RefundResult


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Orders ---


class CreateOrderRequest(CamelModel):
    member_id: str
    machine_id: str
    product_id: str
    has_cup: bool = True
    pay_amount: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)


class OrderSchema(CamelModel):
    id: str
    order_no: str
    member_id: str
    machine_id: str
    product_id: str
    has_cup: bool
    total_amount: Decimal
    pay_amount: Decimal
    payment_status: PaymentStatus
    payment_status_desc: str
    make_status: MakeStatus
    make_status_desc: str
    payment_time: Optional[datetime] = None
    channel_order_no: Optional[str] = None
    refund_time: Optional[datetime] = None
    refund_amount: Decimal
    refund_reason: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_order(cls, order: Order) -> "OrderSchema":
        payment_status = PaymentStatus(order.payment_status)
        make_status = MakeStatus(order.make_status)
        return cls(
            id=order.id,
            order_no=order.order_no,
            member_id=order.member_id,
            machine_id=order.machine_id,
            product_id=order.product_id,
            has_cup=order.has_cup,
            total_amount=order.total_amount,
            pay_amount=order.pay_amount,
            payment_status=payment_status,
            payment_status_desc=payment_status.desc,
            make_status=make_status,
            make_status_desc=make_status.desc,
            payment_time=order.payment_time,
            channel_order_no=order.channel_order_no,
            refund_time=order.refund_time,
            refund_amount=order.refund_amount,
            refund_reason=order.refund_reason,
            created_at=order.created_at,
        )


class OrderPageResponse(CamelModel):
    orders: list[OrderSchema]
    total: int
    page_index: int
    page_size: int
    total_pages: int
    has_next: bool
    has_prev: bool


class RefundRequest(CamelModel):
    reason: str = Field(..., min_length=1, max_length=500)


class RefundResponse(CamelModel):
    order_id: str
    order_no: str
    refund_amount: Decimal
    refund_time: datetime
    message: str

    @classmethod
    def from_result(cls, result: RefundResult) -> "RefundResponse":
        return cls(
            order_id=result.order_id,
            order_no=result.order_no,
            refund_amount=result.refund_amount,
            refund_time=result.refund_time,
            message=result.message,
        )


# --- Payment callback ---


class PaymentCallbackRequest(CamelModel):
    order_no: str
    channel_order_no: Optional[str] = None
    amount: Optional[Decimal] = None
    status: CallbackStatus
    paid_at: Optional[datetime] = None
    signature: Optional[str] = None


class CallbackAckResponse(BaseModel):
    status: str = "ok"
    applied: bool
    message: str


# --- Machines & silos ---


class MachineSchema(CamelModel):
    id: str
    machine_no: Optional[str] = None
    name: str
    area: Optional[str] = None
    address: Optional[str] = None
    service_phone: Optional[str] = None
    business_status: BusinessStatus
    business_status_desc: str
    online: bool

    @classmethod
    def from_view(cls, view: MachineView) -> "MachineSchema":
        machine = view.machine
        return cls(
            id=machine.id,
            machine_no=machine.machine_no,
            name=machine.name,
            area=machine.area,
            address=machine.address,
            service_phone=machine.service_phone,
            business_status=view.business_status,
            business_status_desc=view.business_status.desc,
            online=view.online,
        )


class SiloSchema(CamelModel):
    id: str
    machine_id: str
    silo_no: int
    product_id: Optional[str] = None
    stock: int
    max_capacity: int
    sale_status: SaleStatus
    stock_low: bool
    stock_percentage: float
    can_sale: bool
    version: int

    @classmethod
    def from_silo(cls, silo: MaterialSilo) -> "SiloSchema":
        return cls(
            id=silo.id,
            machine_id=silo.machine_id,
            silo_no=silo.silo_no,
            product_id=silo.product_id,
            stock=silo.stock,
            max_capacity=silo.max_capacity,
            sale_status=SaleStatus(silo.sale_status),
            stock_low=silo.is_stock_low(),
            stock_percentage=silo.stock_percentage(),
            can_sale=silo.can_sale(),
            version=silo.version,
        )


class SiloPageResponse(CamelModel):
    silos: list[SiloSchema]
    total: int
    page_index: int
    page_size: int


class UpdateStockRequest(CamelModel):
    stock: int
    version: Optional[int] = None


class AssignProductRequest(CamelModel):
    product_id: str
    version: Optional[int] = None


class ToggleSaleRequest(CamelModel):
    sale_status: SaleStatus
    version: Optional[int] = None
