"""Settings loading from YAML and hand-off to the run tasks."""

from datetime import date
from decimal import Decimal
from textwrap import dedent

import pytest
import yaml

from backoffice_config import load_settings, parse_settings, settings_checksum
from backoffice_config.settings import BackofficeSettings
from backoffice_engines.billing import ChargeKind
from backoffice_kernel.exceptions import InvalidCurrencyError
from backoffice_modules.billing.service import BillingService
from backoffice_runs.orchestrator import RunOrchestrator

SETTINGS_YAML = dedent(
    """\
    log_level: debug
    database:
      url: postgresql://backoffice@localhost/backoffice
      pool_size: 5
    alloc:
      memo_prefix: Overhead allocation
      max_rules_per_run: 50
    billing:
      tax_rate: "0.08"
      payment_terms_days: 14
    dunning:
      default_segment: RETAIL
    """
)


@pytest.fixture
def settings_file(tmp_path):
    path = tmp_path / "backoffice.yaml"
    path.write_text(SETTINGS_YAML)
    return path


class TestLoadSettings:
    def test_sections_are_parsed(self, settings_file):
        settings = load_settings(settings_file)

        assert settings.log_level == "DEBUG"
        assert settings.database.url == "postgresql://backoffice@localhost/backoffice"
        assert settings.database.pool_size == 5
        assert settings.alloc.memo_prefix == "Overhead allocation"
        assert settings.alloc.max_rules_per_run == 50
        assert settings.billing.tax_rate == Decimal("0.08")
        assert settings.billing.payment_terms_days == 14
        assert settings.dunning.default_segment == "RETAIL"

    def test_missing_sections_use_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")

        settings = load_settings(path)

        defaults = BackofficeSettings()
        assert settings.payments == defaults.payments
        assert settings.revenue == defaults.revenue
        assert settings.log_level == "INFO"

    def test_checksum_is_recorded_and_stable(self, settings_file):
        settings = load_settings(settings_file)
        assert settings.checksum == settings_checksum(settings_file)
        assert len(settings.checksum) == 64

    def test_load_is_logged(self, settings_file, captured_logs):
        settings = load_settings(settings_file)

        (record,) = [r for r in captured_logs() if r["message"] == "settings_loaded"]
        assert record["checksum"] == settings.checksum
        assert "billing" in record["sections"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_settings(tmp_path / "nope.yaml")

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("alloc: [unclosed")
        with pytest.raises(yaml.YAMLError):
            load_settings(path)


class TestParseSettings:
    def test_unknown_section_rejected(self):
        with pytest.raises(ValueError, match="Unknown settings sections"):
            parse_settings({"ledger": {}})

    def test_unknown_key_rejected(self):
        with pytest.raises(TypeError):
            parse_settings({"alloc": {"no_such_option": 1}})

    def test_float_money_rejected(self):
        with pytest.raises(TypeError):
            parse_settings({"billing": {"tax_rate": 0.08}})

    def test_invalid_value_rejected(self):
        with pytest.raises(ValueError):
            parse_settings({"billing": {"tax_rate": "1.5"}})

    def test_invalid_log_level_rejected(self):
        with pytest.raises(ValueError):
            parse_settings({"log_level": "chatty"})

    def test_invalid_currency_rejected(self):
        with pytest.raises(InvalidCurrencyError):
            parse_settings({"payments": {"default_currency": "ZZZ"}})


class TestSettingsReachTasks:
    def test_billing_run_uses_configured_terms_and_tax(
        self, session, clock, auditor, journal, locks, company, actor_id,
    ):
        settings = parse_settings({"billing": {"tax_rate": "0.10", "payment_terms_days": 14}})
        service = BillingService(
            session, clock, config=settings.billing, auditor=auditor, journal=journal, locks=locks,
        )
        service.create_product(company, "PLAN", "Plan", ChargeKind.RECURRING, actor_id)
        service.set_price(company, "PLAN", "USD", Decimal("100.00"), actor_id)
        service.create_subscription(
            company, "CUST-1", "PLAN", Decimal("1"), date(2026, 1, 1), "USD", actor_id,
        )
        orchestrator = RunOrchestrator.from_session(
            session, clock=clock, actor_id=actor_id, settings=settings,
        )

        orchestrator.run_billing(company, date(2026, 1, 1), date(2026, 1, 31), dry_run=False)

        (invoice,) = service.list_invoices(company)
        assert invoice.total == Decimal("110")
        assert invoice.tax_total == Decimal("10")
        assert invoice.due_date == date(2026, 2, 14)
