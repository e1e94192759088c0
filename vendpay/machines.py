from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session

from vendpay import repositories
from vendpay.device import DeviceAvailabilityChecker, default_device_checker
from vendpay.enums import BusinessStatus
from vendpay.errors import MachineNotFound, StaleVersion
from vendpay.logger import get_logger
from vendpay.models import Machine
from vendpay.ownership import OwnershipValidator

logger = get_logger("vendpay.machines")


@dataclass
class MachineView:
    machine: Machine
    business_status: BusinessStatus

    @property
    def online(self) -> bool:
        return self.business_status != BusinessStatus.OFFLINE


class MachineService:
    def __init__(
        self,
        engine: Engine,
        device_checker: Optional[DeviceAvailabilityChecker] = None,
        ownership: Optional[OwnershipValidator] = None,
    ):
        self.engine = engine
        self.device_checker = device_checker or default_device_checker()
        self.ownership = ownership or OwnershipValidator()

    def get_machine(self, machine_id: str) -> MachineView:
        """Machine with its effective business status (Offline when the device is unreachable)."""
        with Session(self.engine) as session:
            machine = repositories.get_machine(session, machine_id)
            if machine is None:
                raise MachineNotFound(machine_id)

        status = BusinessStatus(machine.business_status)
        if not machine.machine_no:
            # No device to reach; orders are refused for it too
            status = BusinessStatus.OFFLINE
        else:
            try:
                if not self.device_checker.check_online(machine.machine_no):
                    status = BusinessStatus.OFFLINE
            except Exception:
                # Keep the stored status when reachability is unknown
                logger.exception(f"Device check raised for machine {machine_id}")
        return MachineView(machine=machine, business_status=status)

    def open_or_close_business(self, machine_id: str, actor_owner_id: Optional[str]) -> Machine:
        """Flip Open <-> Close. Owner only."""
        with Session(self.engine) as session:
            machine = self.ownership.validate(session, machine_id, actor_owner_id)
            current = BusinessStatus(machine.business_status)
            new_status = BusinessStatus.OPEN if current == BusinessStatus.CLOSE else BusinessStatus.CLOSE

            read_version = machine.version
            if not repositories.update_machine(session, machine, business_status=new_status):
                session.rollback()
                raise StaleVersion("Machine", machine_id, read_version)
            session.commit()
            session.refresh(machine)

        logger.info(f"Machine {machine_id} business status {current.value} -> {new_status.value}")
        return machine
