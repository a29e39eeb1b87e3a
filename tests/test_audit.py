"""
Tests for the hash-chained audit trail
"""

import pytest
from unittest.mock import patch

from lending_core.audit import AuditEventType, AuditTrail
from lending_core.storage import InMemoryStorage
from lending_core.system import LendingSystem


class TestAuditTrail:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)

    def test_events_are_chained(self):
        first = self.audit.log_event(AuditEventType.LOAN_CREATED, "loan", "l1", {"principal": "100.00"})
        second = self.audit.log_event(AuditEventType.INSTALLMENT_PAID, "installment", "i1")

        assert first.sequence == 1
        assert first.previous_hash == ""
        assert second.sequence == 2
        assert second.previous_hash == first.current_hash
        assert first.verify_hash()

    def test_integrity_of_untouched_chain(self):
        for number in range(5):
            self.audit.log_event(AuditEventType.CASH_FLOW_POSTED, "cash_flow", f"e{number}")
        result = self.audit.verify_integrity()
        assert result["valid"]
        assert result["total_events"] == 5

    def test_tampered_metadata_detected(self):
        event = self.audit.log_event(AuditEventType.INSTALLMENT_PAID, "installment", "i1", {"amount": "10.00"})
        self.audit.log_event(AuditEventType.INSTALLMENT_PAID, "installment", "i2", {"amount": "20.00"})

        data = self.storage.load("audit_events", event.id)
        data["metadata"]["amount"] = "1000.00"
        self.storage.save("audit_events", event.id, data)

        result = self.audit.verify_integrity()
        assert not result["valid"]
        assert result["hash_errors"][0]["event_id"] == event.id

    def test_deleted_event_breaks_chain(self):
        self.audit.log_event(AuditEventType.LOAN_CREATED, "loan", "l1")
        middle = self.audit.log_event(AuditEventType.LOAN_CANCELLED, "loan", "l1")
        self.audit.log_event(AuditEventType.LOAN_CREATED, "loan", "l2")

        self.storage.delete("audit_events", middle.id)

        result = self.audit.verify_integrity()
        assert not result["valid"]
        assert len(result["chain_breaks"]) == 1

    def test_rolled_back_events_do_not_break_chain(self):
        self.audit.log_event(AuditEventType.LOAN_CREATED, "loan", "l1")
        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self.audit.log_event(AuditEventType.LOAN_CANCELLED, "loan", "l1")
                raise RuntimeError("boom")
        self.audit.log_event(AuditEventType.LOAN_COMPLETED, "loan", "l1")

        assert self.audit.count_events() == 2
        assert self.audit.verify_integrity()["valid"]

    def test_chain_head_read_without_rescanning(self):
        self.audit.log_event(AuditEventType.LOAN_CREATED, "loan", "l1")
        with patch.object(self.storage, "load_all", wraps=self.storage.load_all) as load_all:
            for number in range(10):
                self.audit.log_event(AuditEventType.CASH_FLOW_POSTED, "cash_flow", f"e{number}")
        assert load_all.call_count == 0
        assert self.audit.verify_integrity()["valid"]

    def test_rollback_of_head_forces_rescan(self):
        first = self.audit.log_event(AuditEventType.LOAN_CREATED, "loan", "l1")
        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self.audit.log_event(AuditEventType.LOAN_CANCELLED, "loan", "l1")
                self.audit.log_event(AuditEventType.LOAN_RENEWED, "loan", "l1")
                raise RuntimeError("boom")

        after = self.audit.log_event(AuditEventType.LOAN_COMPLETED, "loan", "l1")
        assert after.sequence == 2
        assert after.previous_hash == first.current_hash

    def test_queries(self):
        self.audit.log_event(AuditEventType.LOAN_CREATED, "loan", "l1")
        self.audit.log_event(AuditEventType.LOAN_CREATED, "loan", "l2")
        self.audit.log_event(AuditEventType.LOAN_CANCELLED, "loan", "l1")

        events = self.audit.get_events_for_entity("loan", "l1")
        assert [e.event_type for e in events] == [AuditEventType.LOAN_CREATED, AuditEventType.LOAN_CANCELLED]
        assert len(self.audit.get_events_by_type(AuditEventType.LOAN_CREATED)) == 2
        assert len(self.audit.get_events_by_type(AuditEventType.LOAN_CREATED, limit=1)) == 1


class TestSystemAudit:

    def test_lifecycle_keeps_chain_valid(self, system, loan_request):
        creditor = system.allocator.register_creditor("Ana", initial_deposit=loan_request.principal)
        loan_request.creditor_id = creditor.id
        loan = system.loan_manager.create_loan(loan_request)
        first = system.ledger.get_loan_installments(loan.id)[0]
        system.ledger.pay(first.id, first.amount)
        system.ledger.reverse(first.id)
        system.ledger.settle_all(loan.id)

        result = system.audit_trail.verify_integrity()
        assert result["valid"]
        types = {e.event_type for e in system.audit_trail.get_events_for_entity("loan", loan.id)}
        assert {AuditEventType.LOAN_CREATED, AuditEventType.LOAN_COMPLETED} <= types

    def test_audit_can_be_disabled(self, config, clock):
        lending = LendingSystem(storage=InMemoryStorage(), clock=clock,
                                config=config.model_copy(update={"enable_audit_logging": False}))
        assert lending.audit_trail is None
        lending.allocator.register_creditor("Ana")
        assert lending.storage.count("audit_events") == 0
