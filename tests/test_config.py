"""
Tests for settings, logging and the system clock
"""

import json
import logging
from datetime import date

import pytest
from pydantic import ValidationError as PydanticValidationError

from lending_core.clock import FixedClock, SystemClock
from lending_core.config import LendingConfig, reload_config
from lending_core.logging_config import JSONFormatter, log_action, setup_logging


class TestConfig:

    def test_defaults(self):
        config = LendingConfig()
        assert config.timezone == "America/Sao_Paulo"
        assert config.payment_amount_policy == "accept"
        assert config.max_appended_installments == 60

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("LENDING_DATABASE_URL", "memory")
        monkeypatch.setenv("LENDING_PAYMENT_AMOUNT_POLICY", "exact")
        config = reload_config()
        assert config.database_url == "memory"
        assert config.payment_amount_policy == "exact"
        monkeypatch.delenv("LENDING_DATABASE_URL")
        monkeypatch.delenv("LENDING_PAYMENT_AMOUNT_POLICY")
        reload_config()

    def test_unknown_payment_policy_rejected(self):
        with pytest.raises(PydanticValidationError):
            LendingConfig(payment_amount_policy="exactt")

    def test_unknown_payment_policy_in_environment_rejected(self, monkeypatch):
        monkeypatch.setenv("LENDING_PAYMENT_AMOUNT_POLICY", "exactt")
        with pytest.raises(PydanticValidationError):
            LendingConfig()


class TestLogging:

    def test_json_formatter(self):
        logger = logging.getLogger("lending.test")
        record = logger.makeRecord("lending.test", logging.INFO, __name__, 0, "paid", (), None)
        record.action = "pay_installment"
        record.extra = {"amount": "10.00"}
        record.correlation_id = "req-1"

        entry = json.loads(JSONFormatter().format(record))
        assert entry["message"] == "paid"
        assert entry["action"] == "pay_installment"
        assert entry["extra"] == {"amount": "10.00"}
        assert "correlation_id" not in entry

    def test_log_action_structured_fields(self, capsys):
        logger = setup_logging("INFO", logger_name="lending.capture")
        log_action(logger, "info", "Loan created", action="create_loan", resource="loan:1")

        entry = json.loads(capsys.readouterr().err.strip())
        assert entry["resource"] == "loan:1"
        assert entry["level"] == "INFO"

    def test_log_action_respects_level(self, capsys):
        logger = setup_logging("WARNING", logger_name="lending.quiet")
        log_action(logger, "info", "ignored")
        assert capsys.readouterr().err == ""


class TestClock:

    def test_fixed_clock(self):
        clock = FixedClock(date(2024, 1, 10))
        assert clock.today() == date(2024, 1, 10)
        clock.advance(3)
        assert clock.today() == date(2024, 1, 13)

    def test_system_clock_uses_timezone(self):
        now = SystemClock("America/Sao_Paulo").now()
        assert now.tzinfo is not None
