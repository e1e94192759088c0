from typing import Optional, Union

from sqlalchemy.engine import Engine
from sqlmodel import Session

from vendpay import paging, repositories
from vendpay.enums import SaleStatus
from vendpay.errors import (
    InvalidStock,
    MachineNotFound,
    ProductNotAssigned,
    ProductNotFound,
    SiloNotFound,
    StaleVersion,
    StockEmpty,
    StockExceedsCapacity,
)
from vendpay.logger import get_logger
from vendpay.models import MaterialSilo
from vendpay.ownership import OwnershipValidator

logger = get_logger("vendpay.inventory")


class InventoryGate:
    """
    Owns the stock and sale-status rules of material silos.

    After every successful call ``0 <= stock <= max_capacity`` holds and a
    silo that is On has a product and stock. Rejected calls leave the silo
    untouched. Writes are version guarded: pass ``expected_version`` to pin
    the version you displayed to the operator; a concurrent change raises
    StaleVersion and the caller reloads.
    """

    def __init__(self, engine: Engine, ownership: Optional[OwnershipValidator] = None):
        self.engine = engine
        self.ownership = ownership or OwnershipValidator()

    def update_stock(
        self,
        silo_id: str,
        new_stock: int,
        expected_version: Optional[int] = None,
        acting_owner_id: Optional[str] = None,
    ) -> MaterialSilo:
        """Set stock to an absolute value."""
        with Session(self.engine) as session:
            silo = self._load(session, silo_id, expected_version, acting_owner_id)
            if new_stock < 0:
                raise InvalidStock(new_stock)
            if new_stock > silo.max_capacity:
                raise StockExceedsCapacity(new_stock, silo.max_capacity)

            values = {"stock": new_stock}
            if new_stock == 0 and silo.sale_status == SaleStatus.ON:
                values["sale_status"] = SaleStatus.OFF
                logger.info(f"Silo {silo_id} emptied, sale switched off")

            self._apply(session, silo, **values)
            logger.info(f"Silo {silo_id} stock set to {new_stock}/{silo.max_capacity}")
            return silo

    def assign_product(
        self,
        silo_id: str,
        product_id: str,
        expected_version: Optional[int] = None,
        acting_owner_id: Optional[str] = None,
    ) -> MaterialSilo:
        """Associate a product with the silo. Sale status is left as is."""
        with Session(self.engine) as session:
            silo = self._load(session, silo_id, expected_version, acting_owner_id)
            if repositories.get_product(session, product_id) is None:
                raise ProductNotFound(product_id)

            self._apply(session, silo, product_id=product_id)
            logger.info(f"Silo {silo_id} assigned product {product_id}")
            return silo

    def toggle_sale_status(
        self,
        silo_id: str,
        desired: Union[SaleStatus, str],
        expected_version: Optional[int] = None,
        acting_owner_id: Optional[str] = None,
    ) -> MaterialSilo:
        desired = SaleStatus(desired)
        with Session(self.engine) as session:
            silo = self._load(session, silo_id, expected_version, acting_owner_id)
            if desired == SaleStatus.ON:
                if silo.product_id is None:
                    raise ProductNotAssigned(silo_id)
                if silo.is_stock_empty():
                    raise StockEmpty(silo_id)

            self._apply(session, silo, sale_status=desired)
            logger.info(f"Silo {silo_id} sale status -> {desired.value}")
            return silo

    def get_silo(self, silo_id: str) -> MaterialSilo:
        with Session(self.engine) as session:
            silo = repositories.get_silo(session, silo_id)
            if silo is None:
                raise SiloNotFound(silo_id)
            return silo

    def list_silos(self, machine_id: str, page_index: int = 1, page_size: int = 20) -> paging.Page[MaterialSilo]:
        page_index, page_size, offset = paging.normalize(page_index, page_size)
        with Session(self.engine) as session:
            if repositories.get_machine(session, machine_id) is None:
                raise MachineNotFound(machine_id)
            silos, total = repositories.list_machine_silos(session, machine_id, offset, page_size)
            return paging.Page(items=silos, total=total, page_index=page_index, page_size=page_size)

    # --- internals ---

    def _load(
        self,
        session: Session,
        silo_id: str,
        expected_version: Optional[int],
        acting_owner_id: Optional[str],
    ) -> MaterialSilo:
        silo = repositories.get_silo(session, silo_id)
        if silo is None:
            raise SiloNotFound(silo_id)
        if acting_owner_id is not None:
            self.ownership.validate(session, silo.machine_id, acting_owner_id)
        if expected_version is not None and silo.version != expected_version:
            raise StaleVersion("MaterialSilo", silo_id, expected_version)
        return silo

    def _apply(self, session: Session, silo: MaterialSilo, **values) -> None:
        read_version = silo.version
        if not repositories.update_silo(session, silo, **values):
            session.rollback()
            logger.warning(f"Silo {silo.id} changed since version {read_version}")
            raise StaleVersion("MaterialSilo", silo.id, read_version)
        session.commit()
        session.refresh(silo)
