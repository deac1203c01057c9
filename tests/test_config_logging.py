"""
Tests for configuration, structured logging and money helpers
"""

import json
import logging
import pytest
from decimal import Decimal

from contract_ledger import config as config_module
from contract_ledger.config import LedgerConfig, get_config, reload_config
from contract_ledger.logging_config import JSONFormatter, get_logger, log_action, setup_logging
from contract_ledger.money import (
    decimal_from_string, non_negative, parse_decimal, parse_int, quantize_money, to_decimal
)


class TestLedgerConfig:
    """Test environment-based configuration"""

    def test_defaults(self):
        """Test default settings"""
        settings = LedgerConfig()
        assert settings.paid_tolerance_ratio == "0.99"
        assert settings.money_places == 2
        assert settings.log_format in ("json", "text")

    def test_environment_override(self, monkeypatch):
        """Test LEDGER_ prefixed variables override defaults"""
        monkeypatch.setenv("LEDGER_LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("LEDGER_SKIP_SUNDAY", "true")
        monkeypatch.setenv("LEDGER_API_PORT", "9000")
        settings = LedgerConfig()
        assert settings.log_level == "DEBUG"
        assert settings.skip_sunday is True
        assert settings.api_port == 9000

    def test_reload(self, monkeypatch):
        """Test reloading replaces the global instance"""
        original = get_config()
        try:
            monkeypatch.setenv("LEDGER_PROJECTION_CACHE_SIZE", "16")
            reloaded = reload_config()
            assert get_config() is reloaded
            assert reloaded.projection_cache_size == 16
        finally:
            config_module.config = original


class TestStructuredLogging:
    """Test JSON logging"""

    def test_json_formatter(self):
        """Test one JSON object per record with the structured fields"""
        logger = logging.getLogger("contract_ledger.test_formatter")
        record = logger.makeRecord(logger.name, logging.INFO, __name__, 0, "Payment registered", (), None)
        record.contract_id = "c1"
        record.action = "register_payment"
        entry = json.loads(JSONFormatter().format(record))
        assert entry["message"] == "Payment registered"
        assert entry["level"] == "INFO"
        assert entry["contract_id"] == "c1"
        assert entry["action"] == "register_payment"
        assert "resource" not in entry

    def test_log_action_to_file(self, tmp_path):
        """Test log_action writes the structured fields through setup_logging"""
        log_file = tmp_path / "ledger.log"
        logger = setup_logging("INFO", logger_name="contract_ledger.test_file", log_file=str(log_file))
        log_action(
            logger, "info", "Amortization registered",
            contract_id="c1", action="register_amortization", resource="contract",
            extra={"amount": "200.00"}
        )
        log_action(logger, "debug", "Not written")
        for handler in logger.handlers:
            handler.flush()

        lines = log_file.read_text().strip().splitlines()
        assert len(lines) == 1
        entry = json.loads(lines[0])
        assert entry["action"] == "register_amortization"
        assert entry["resource"] == "contract"
        assert entry["extra"] == {"amount": "200.00"}

        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)

    def test_text_format(self, tmp_path):
        """Test the plain text format"""
        log_file = tmp_path / "ledger.txt"
        logger = setup_logging("INFO", logger_name="contract_ledger.test_text",
                               log_format="text", log_file=str(log_file))
        logger.info("plain line")
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)
        assert "INFO contract_ledger.test_text: plain line" in log_file.read_text()

    def test_get_logger(self):
        """Test loggers live under the package hierarchy"""
        assert get_logger("contract_ledger.codec").name == "contract_ledger.codec"


class TestMoneyHelpers:
    """Test Decimal conversion and rounding"""

    def test_to_decimal(self):
        """Test floats go through their string form"""
        assert to_decimal(0.1) == Decimal('0.1')
        assert to_decimal(None) == Decimal('0')
        assert to_decimal("12.50") == Decimal('12.50')

    def test_parse_decimal_is_permissive(self):
        """Test garbage, negatives and non-finite values fall back to the default"""
        assert parse_decimal("12,5") == Decimal('12.5')
        assert parse_decimal("abc") == Decimal('0')
        assert parse_decimal("-5") == Decimal('0')
        assert parse_decimal("NaN") == Decimal('0')
        assert parse_decimal("", Decimal('1')) == Decimal('1')

    def test_parse_int(self):
        """Test permissive integers"""
        assert parse_int(" 3 ") == 3
        assert parse_int("x") == 0
        assert parse_int("-1") == 0

    def test_decimal_from_string(self):
        """Test user input formats"""
        assert decimal_from_string("R$ 1.234,56") == Decimal('1234.56')
        assert decimal_from_string("1,234.56") == Decimal('1234.56')
        assert decimal_from_string("99,90") == Decimal('99.90')
        with pytest.raises(ValueError):
            decimal_from_string("")
        with pytest.raises(ValueError):
            decimal_from_string("abc")

    def test_quantize_and_clamp(self):
        """Test rounding half up to cents and the zero clamp"""
        assert quantize_money(Decimal('2.345')) == Decimal('2.35')
        assert quantize_money(Decimal('2.344')) == Decimal('2.34')
        assert non_negative(Decimal('-1')) == Decimal('0')
