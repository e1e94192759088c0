"""Status vocabularies.

Each enum value is the canonical string used in storage and in payloads.
"""
from enum import Enum


class PaymentStatus(str, Enum):
    WAIT_PAY = "WaitPay"
    PAID = "Paid"
    INVALID = "Invalid"
    REFUNDED = "Refunded"

    @property
    def desc(self) -> str:
        return _PAYMENT_STATUS_DESC[self]

    def can_transition_to(self, target: "PaymentStatus") -> bool:
        return target in _PAYMENT_TRANSITIONS[self]


_PAYMENT_STATUS_DESC = {
    PaymentStatus.WAIT_PAY: "待支付",
    PaymentStatus.PAID: "已支付",
    PaymentStatus.INVALID: "已失效",
    PaymentStatus.REFUNDED: "已退款",
}

_PAYMENT_TRANSITIONS = {
    PaymentStatus.WAIT_PAY: {PaymentStatus.PAID, PaymentStatus.INVALID},
    PaymentStatus.PAID: {PaymentStatus.REFUNDED},
    PaymentStatus.INVALID: set(),
    PaymentStatus.REFUNDED: set(),
}


class MakeStatus(str, Enum):
    WAIT_MAKE = "WaitMake"
    MAKING = "Making"
    MADE = "Made"
    MAKE_FAIL = "MakeFail"

    @property
    def desc(self) -> str:
        return _MAKE_STATUS_DESC[self]


_MAKE_STATUS_DESC = {
    MakeStatus.WAIT_MAKE: "待制作",
    MakeStatus.MAKING: "制作中",
    MakeStatus.MADE: "制作完成",
    MakeStatus.MAKE_FAIL: "制作失败",
}


class SaleStatus(str, Enum):
    ON = "On"
    OFF = "Off"

    @property
    def desc(self) -> str:
        return "在售" if self is SaleStatus.ON else "停售"


class BusinessStatus(str, Enum):
    OPEN = "Open"
    CLOSE = "Close"
    # Derived from device reachability at read time, never stored
    OFFLINE = "Offline"

    @property
    def desc(self) -> str:
        return _BUSINESS_STATUS_DESC[self]


_BUSINESS_STATUS_DESC = {
    BusinessStatus.OPEN: "营业中",
    BusinessStatus.CLOSE: "暂停营业",
    BusinessStatus.OFFLINE: "设备离线",
}


class CallbackStatus(str, Enum):
    """Payment result reported by the provider callback."""

    SUCCESS = "Success"
    FAILURE = "Failure"
    CANCEL = "Cancel"
    TIMEOUT = "Timeout"
    EXCEPTION = "Exception"

    @property
    def invalidates_order(self) -> bool:
        return self in (CallbackStatus.FAILURE, CallbackStatus.CANCEL, CallbackStatus.TIMEOUT)
