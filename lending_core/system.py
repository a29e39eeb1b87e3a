"""
System Wiring Module

Builds every engine component over one storage backend.
"""

from typing import Optional

from .audit import AuditTrail
from .cash_flow import CashFlowAllocator
from .clock import Clock, SystemClock
from .config import LendingConfig, get_config
from .currency import Currency
from .installments import InstallmentLedger
from .loans import LoanManager
from .periodicity import PeriodicityManager
from .reporting import PortfolioReporter
from .storage import StorageInterface, create_storage


class LendingSystem:
    """Lending engine with all components initialized"""

    def __init__(self, storage: Optional[StorageInterface] = None, clock: Optional[Clock] = None,
                 config: Optional[LendingConfig] = None):
        self.config = config or get_config()
        self.storage = storage or create_storage(self.config.database_url)
        self.clock = clock or SystemClock(self.config.timezone)
        currency = Currency[self.config.currency]

        self.audit_trail = AuditTrail(self.storage) if self.config.enable_audit_logging else None
        self.periodicity_manager = PeriodicityManager(self.storage, self.audit_trail)
        self.allocator = CashFlowAllocator(self.storage, self.audit_trail, currency)
        self.ledger = InstallmentLedger(self.storage, self.allocator, self.audit_trail, self.clock, self.config)
        self.loan_manager = LoanManager(
            self.storage, self.ledger, self.allocator, self.periodicity_manager,
            self.audit_trail, self.clock, self.config
        )
        self.reporter = PortfolioReporter(self.loan_manager, self.ledger, self.clock, currency)

    def close(self) -> None:
        self.storage.close()
