from typing import Optional

from sqlmodel import Session

from vendpay import repositories
from vendpay.errors import MachineNotFound, PermissionDenied
from vendpay.logger import get_logger
from vendpay.models import Machine, Order

logger = get_logger("vendpay.ownership")


class OwnershipValidator:
    """Checks that the acting machine owner controls a machine before privileged changes."""

    def validate(self, session: Session, machine_id: str, actor_owner_id: Optional[str]) -> Machine:
        machine = repositories.get_machine(session, machine_id)
        if machine is None:
            raise MachineNotFound(machine_id)
        if not actor_owner_id or machine.machine_owner_id != actor_owner_id:
            logger.warning(f"Owner {actor_owner_id} denied on machine {machine_id}")
            raise PermissionDenied(machine_id, actor_owner_id)
        return machine

    def validate_order(self, session: Session, order: Order, actor_owner_id: Optional[str]) -> Machine:
        return self.validate(session, order.machine_id, actor_owner_id)
