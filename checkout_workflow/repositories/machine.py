from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from ..domain.models import MachineDefinition
from ..machines import build_checkout_machine, build_fulfillment_machine, build_payment_machine
from ..services.exceptions import UnknownMachineError


# The Interface
class MachineRepository(ABC):
    """
    Defines how the application accesses machine definitions.
    This allows us change where definitions come from later
    without changing the CheckoutService code.
    """

    @abstractmethod
    def get_machine(self, machine_id: str) -> MachineDefinition:
        """
        Retrieves a machine definition by ID.
        Raises UnknownMachineError if not found.
        """
        pass

    @abstractmethod
    def list_machines(self) -> List[str]:
        pass


class StaticMachineRepository(MachineRepository):
    """
    Serves the built-in checkout, payment and fulfillment machines.
    """

    def __init__(self, definitions: Optional[List[MachineDefinition]] = None):
        if definitions is None:
            payment = build_payment_machine()
            fulfillment = build_fulfillment_machine()
            definitions = [
                build_checkout_machine(payment_machine=payment, fulfillment_machine=fulfillment),
                payment,
                fulfillment,
            ]
        # Index for O(1) lookup
        self._index: Dict[str, MachineDefinition] = {d.id: d for d in definitions}

    def get_machine(self, machine_id: str) -> MachineDefinition:
        if machine_id not in self._index:
            raise UnknownMachineError(f"Machine '{machine_id}' not found.")
        return self._index[machine_id]

    def list_machines(self) -> List[str]:
        return sorted(self._index)
