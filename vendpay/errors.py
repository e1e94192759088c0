"""Custom exceptions for vendpay."""


class VendpayError(Exception):
    """Base exception for all vendpay errors."""

    code = "VENDPAY_ERROR"


# --- Not found ---


class NotFoundError(VendpayError):
    """Raised when a referenced entity does not exist."""

    code = "NOT_FOUND"
    entity = "Entity"

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"{self.entity} not found: {entity_id}")


class OrderNotFound(NotFoundError):
    code = "ORDER_NOT_FOUND"
    entity = "Order"


class MachineNotFound(NotFoundError):
    code = "MACHINE_NOT_FOUND"
    entity = "Machine"


class SiloNotFound(NotFoundError):
    code = "MATERIAL_SILO_NOT_FOUND"
    entity = "Material silo"


class ProductNotFound(NotFoundError):
    code = "PRODUCT_NOT_FOUND"
    entity = "Product"


class MemberNotFound(NotFoundError):
    code = "MEMBER_NOT_FOUND"
    entity = "Member"


# --- Invalid state ---


class InvalidStateError(VendpayError):
    """Raised when a status transition is not permitted."""

    code = "INVALID_STATE"


class InvalidOrderStatus(InvalidStateError):
    code = "INVALID_ORDER_STATUS"

    def __init__(self, order_id: str, status: str, expected: str):
        self.order_id = order_id
        self.status = status
        self.expected = expected
        super().__init__(f"Order {order_id} is {status}, expected {expected}")


class OrderAlreadyRefunded(InvalidStateError):
    code = "ORDER_ALREADY_REFUNDED"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order {order_id} has already been refunded")


class StaleVersion(InvalidStateError):
    """Raised when a version-guarded write finds the row changed since it was read."""

    code = "STALE_VERSION"

    def __init__(self, entity: str, entity_id: str, expected_version: int):
        self.entity = entity
        self.entity_id = entity_id
        self.expected_version = expected_version
        super().__init__(
            f"{entity} {entity_id} was modified concurrently (expected version {expected_version}); "
            "reload and retry"
        )


# --- Permission ---


class PermissionDenied(VendpayError):
    code = "PERMISSION_DENIED"

    def __init__(self, machine_id: str, owner_id: str | None):
        self.machine_id = machine_id
        self.owner_id = owner_id
        super().__init__(f"Owner {owner_id or '<anonymous>'} does not own machine {machine_id}")


# --- Capacity ---


class CapacityExceededError(VendpayError):
    """Raised when stock falls outside 0..max_capacity."""

    code = "CAPACITY_EXCEEDED"


class InvalidStock(CapacityExceededError):
    code = "INVALID_STOCK"

    def __init__(self, stock: int):
        self.stock = stock
        super().__init__(f"Invalid stock {stock}: stock cannot be negative")


class StockExceedsCapacity(CapacityExceededError):
    code = "STOCK_EXCEEDS_CAPACITY"

    def __init__(self, stock: int, max_capacity: int):
        self.stock = stock
        self.max_capacity = max_capacity
        super().__init__(f"Stock {stock} exceeds max capacity {max_capacity}")


# --- Precondition ---


class PreconditionFailedError(VendpayError):
    code = "PRECONDITION_FAILED"


class ProductNotAssigned(PreconditionFailedError):
    code = "PRODUCT_NOT_ASSIGNED"

    def __init__(self, silo_id: str):
        self.silo_id = silo_id
        super().__init__(f"Material silo {silo_id} has no product assigned; assign one before enabling sale")


class StockEmpty(PreconditionFailedError):
    code = "STOCK_EMPTY"

    def __init__(self, silo_id: str):
        self.silo_id = silo_id
        super().__init__(f"Material silo {silo_id} is empty; replenish stock before enabling sale")


class InvalidPaymentAmount(PreconditionFailedError):
    code = "INVALID_PAYMENT_AMOUNT"

    def __init__(self, amount, reason: str):
        self.amount = amount
        self.reason = reason
        super().__init__(f"Invalid payment amount {amount}: {reason}")


# --- External ---


class ExternalUnavailableError(VendpayError):
    """Raised when a device or the payment provider cannot be reached."""

    code = "EXTERNAL_UNAVAILABLE"


class DeviceOffline(ExternalUnavailableError):
    code = "DEVICE_OFFLINE"

    def __init__(self, machine_id: str, device_ref: str | None = None):
        self.machine_id = machine_id
        self.device_ref = device_ref
        super().__init__(f"Machine {machine_id} is not available (device {device_ref or '<none>'} offline)")


MachineNotAvailable = DeviceOffline


# --- Callback ---


class InvalidCallbackError(VendpayError):
    code = "INVALID_CALLBACK"


class PaymentCallbackInvalid(InvalidCallbackError):
    code = "PAYMENT_CALLBACK_INVALID"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid payment callback: {reason}")
