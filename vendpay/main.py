from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.engine import Engine
from starlette.concurrency import run_in_threadpool

from vendpay.db import init_db, make_engine
from vendpay.device import DeviceAvailabilityChecker
from vendpay.errors import (
    CapacityExceededError,
    ExternalUnavailableError,
    InvalidCallbackError,
    InvalidStateError,
    NotFoundError,
    PermissionDenied,
    PreconditionFailedError,
    VendpayError,
)
from vendpay.inventory import InventoryGate
from vendpay.logger import get_logger
from vendpay.machines import MachineService
from vendpay.orders import OrderLifecycleManager
from vendpay.ownership import OwnershipValidator
from vendpay.payments import PaymentCallback, PaymentReconciler, SignatureVerifier
from vendpay.schemas import (
    AssignProductRequest,
    CallbackAckResponse,
    CreateOrderRequest,
    MachineSchema,
    OrderPageResponse,
    OrderSchema,
    PaymentCallbackRequest,
    RefundRequest,
    RefundResponse,
    SiloPageResponse,
    SiloSchema,
    ToggleSaleRequest,
    UpdateStockRequest,
)

logger = get_logger("vendpay.api")

# Looked up along the exception's MRO, so each bucket covers its subclasses
ERROR_STATUS_CODES: dict[type, int] = {
    NotFoundError: 404,
    InvalidStateError: 409,
    PermissionDenied: 403,
    CapacityExceededError: 422,
    PreconditionFailedError: 422,
    ExternalUnavailableError: 503,
    InvalidCallbackError: 400,
}


def status_code_for(exc: VendpayError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[cls]
    return 500


def require_owner(x_machine_owner_id: Optional[str] = Header(default=None)) -> str:
    """Owner id claim forwarded by the upstream auth layer."""
    if not x_machine_owner_id:
        raise HTTPException(status_code=401, detail="Missing machine owner identity")
    return x_machine_owner_id


def create_app(
    engine: Optional[Engine] = None,
    device_checker: Optional[DeviceAvailabilityChecker] = None,
    verifier: Optional[SignatureVerifier] = None,
) -> FastAPI:
    engine = engine or make_engine()
    ownership = OwnershipValidator()
    orders = OrderLifecycleManager(engine, device_checker=device_checker, ownership=ownership)
    payments = PaymentReconciler(engine, verifier=verifier)
    inventory = InventoryGate(engine, ownership=ownership)
    machines = MachineService(engine, device_checker=device_checker, ownership=ownership)

    app = FastAPI(title="vendpay")

    @app.on_event("startup")
    def on_startup():
        init_db(engine)

    @app.exception_handler(VendpayError)
    async def vendpay_error_handler(request: Request, exc: VendpayError) -> JSONResponse:
        status_code = status_code_for(exc)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(
            status_code=status_code,
            content={"detail": str(exc), "error_type": exc.code},
        )

    @app.get("/health")
    def health_check():
        return {"status": "ok"}

    # --- Orders ---

    @app.post("/api/orders", response_model=OrderSchema, status_code=201)
    def create_order(body: CreateOrderRequest):
        order = orders.create_order(
            member_id=body.member_id,
            machine_id=body.machine_id,
            product_id=body.product_id,
            has_cup=body.has_cup,
            pay_amount=body.pay_amount,
        )
        return OrderSchema.from_order(order)

    @app.get("/api/orders/{order_id}", response_model=OrderSchema)
    def get_order(order_id: str):
        return OrderSchema.from_order(orders.get_order(order_id))

    @app.get("/api/members/{member_id}/orders", response_model=OrderPageResponse)
    def list_member_orders(member_id: str, pageIndex: int = 1, pageSize: int = 10):
        page = orders.list_member_orders(member_id, pageIndex, pageSize)
        return OrderPageResponse(
            orders=[OrderSchema.from_order(o) for o in page.items],
            total=page.total,
            page_index=page.page_index,
            page_size=page.page_size,
            total_pages=page.total_pages,
            has_next=page.has_next,
            has_prev=page.has_prev,
        )

    @app.post("/api/orders/{order_id}/refund", response_model=RefundResponse)
    def refund_order(order_id: str, body: RefundRequest, owner_id: str = Depends(require_owner)):
        return RefundResponse.from_result(orders.refund(order_id, body.reason, owner_id))

    # --- Payment callback ---

    @app.post("/callback/payment-result", response_model=CallbackAckResponse)
    async def payment_result(request: Request):
        try:
            payload = await request.json()
            body = PaymentCallbackRequest.model_validate(payload)
        except (ValueError, ValidationError):
            logger.warning("Payment callback payload could not be parsed")
            raise HTTPException(status_code=400, detail="Invalid payload")

        callback = PaymentCallback(
            order_no=body.order_no,
            channel_order_no=body.channel_order_no,
            status=body.status,
            signature=body.signature,
            amount=body.amount,
            paid_at=body.paid_at,
            raw=payload,
        )
        ack = await run_in_threadpool(payments.handle_callback, callback)
        return CallbackAckResponse(applied=ack.applied, message=ack.message)

    # --- Machines ---

    @app.get("/api/machines/{machine_id}", response_model=MachineSchema)
    def get_machine(machine_id: str):
        return MachineSchema.from_view(machines.get_machine(machine_id))

    @app.post("/api/machines/{machine_id}/business-status/toggle")
    def toggle_business(machine_id: str, owner_id: str = Depends(require_owner)):
        machine = machines.open_or_close_business(machine_id, owner_id)
        return {"status": machine.business_status.value}

    @app.get("/api/machines/{machine_id}/silos", response_model=SiloPageResponse)
    def list_silos(machine_id: str, pageIndex: int = 1, pageSize: int = 20):
        page = inventory.list_silos(machine_id, pageIndex, pageSize)
        return SiloPageResponse(
            silos=[SiloSchema.from_silo(s) for s in page.items],
            total=page.total,
            page_index=page.page_index,
            page_size=page.page_size,
        )

    # --- Material silos ---

    @app.put("/api/silos/{silo_id}/stock", response_model=SiloSchema)
    def update_stock(silo_id: str, body: UpdateStockRequest, owner_id: str = Depends(require_owner)):
        silo = inventory.update_stock(silo_id, body.stock, expected_version=body.version, acting_owner_id=owner_id)
        return SiloSchema.from_silo(silo)

    @app.put("/api/silos/{silo_id}/product", response_model=SiloSchema)
    def assign_product(silo_id: str, body: AssignProductRequest, owner_id: str = Depends(require_owner)):
        silo = inventory.assign_product(silo_id, body.product_id, expected_version=body.version, acting_owner_id=owner_id)
        return SiloSchema.from_silo(silo)

    @app.put("/api/silos/{silo_id}/sale-status", response_model=SiloSchema)
    def toggle_sale_status(silo_id: str, body: ToggleSaleRequest, owner_id: str = Depends(require_owner)):
        silo = inventory.toggle_sale_status(silo_id, body.sale_status, expected_version=body.version, acting_owner_id=owner_id)
        return SiloSchema.from_silo(silo)

    app.state.orders = orders
    app.state.payments = payments
    app.state.inventory = inventory
    app.state.machines = machines
    return app


app = create_app()
