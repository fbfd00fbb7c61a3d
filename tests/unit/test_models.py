"""Tests for domain models, settings and configuration snapshots."""

from datetime import UTC, datetime
from decimal import Decimal

import pytest
from pydantic import ValidationError

from lexbill.core.config import Settings
from lexbill.core.exceptions import (
    BillingError,
    DocumentOrphanedError,
    EmailDeliveryError,
    StorageUnavailableError,
    WorkflowRejectedError,
)
from lexbill.models.domain import (
    StepOutcome,
    StepResult,
    WorkflowKind,
    WorkflowResult,
    WorkflowStep,
)
from lexbill.services.billing.config_provider import SettingsConfigProvider
from lexbill.services.billing.locks import CaseLockRegistry
from tests.conftest import make_billing_config, make_case


class TestCase:
    def test_frozen(self) -> None:
        case = make_case()
        with pytest.raises(ValidationError):
            case.state = "archived"  # type: ignore[misc]

    def test_client_name_required(self) -> None:
        with pytest.raises(ValidationError):
            make_case(client_name="")


class TestBillingConfig:
    def test_vat_rate_bounds(self) -> None:
        with pytest.raises(ValidationError):
            make_billing_config(vat_rate=Decimal("101"))

    def test_negative_fee_rejected(self) -> None:
        with pytest.raises(ValidationError):
            make_billing_config(base_fee=Decimal("-1"))


class TestWorkflowResult:
    def _result(self, *steps: tuple[WorkflowStep, StepOutcome], attempt: int | None = 7):
        return WorkflowResult(
            workflow=WorkflowKind.FIXED_FEE_INVOICE,
            case_id=1,
            steps=[StepResult(step=s, outcome=o) for s, o in steps],
            document_id=3,
            email_attempt_id=attempt,
            signed=True,
            amount=Decimal("245.63"),
        )

    def test_outcome_of_missing_step(self) -> None:
        result = self._result((WorkflowStep.VALIDATE, StepOutcome.COMPLETED))
        assert result.outcome_of(WorkflowStep.SIGN) is None

    def test_email_retryable_only_when_recorded_failure(self) -> None:
        failed = self._result((WorkflowStep.DISPATCH_EMAIL, StepOutcome.FAILED))
        unrecorded = self._result((WorkflowStep.DISPATCH_EMAIL, StepOutcome.FAILED), attempt=None)
        sent = self._result((WorkflowStep.DISPATCH_EMAIL, StepOutcome.COMPLETED))
        assert failed.email_retryable is True
        assert unrecorded.email_retryable is False
        assert sent.email_retryable is False


class TestSettings:
    def test_defaults(self) -> None:
        settings = Settings(_env_file=None)  # type: ignore[call-arg]
        assert settings.billing_base_fee == Decimal("203.00")
        assert settings.vat_rate == Decimal("21")
        assert settings.email_configured is False
        assert settings.signing_configured is False

    def test_mileage_rates_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MILEAGE_RATES", '{"Marbella": "25.50", "Estepona": "30"}')
        settings = Settings(_env_file=None)  # type: ignore[call-arg]
        assert settings.mileage_rates == {
            "Marbella": Decimal("25.50"),
            "Estepona": Decimal("30"),
        }

    def test_mileage_rate_out_of_range(self) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, mileage_rates={"Marbella": Decimal("5000")})  # type: ignore[call-arg]


class TestSettingsConfigProvider:
    def test_snapshot_reflects_settings(self, test_settings: Settings) -> None:
        config = SettingsConfigProvider(test_settings).get_billing_config()
        assert config.base_fee == Decimal("203.00")
        assert config.recipient_email == "facturacion@example.com"
        assert config.signing_credential is None
        assert config.captured_at <= datetime.now(UTC)

    def test_snapshot_is_detached_from_settings(self, test_settings: Settings) -> None:
        config = SettingsConfigProvider(test_settings).get_billing_config()
        test_settings.mileage_rates["Marbella"] = Decimal("99")
        assert config.mileage_rates["Marbella"] == Decimal("25.50")

    def test_credential_when_configured(self, test_settings: Settings) -> None:
        test_settings.signing_credential_path = " /secrets/firma.p12 "
        test_settings.signing_credential_passphrase = "pw"
        config = SettingsConfigProvider(test_settings).get_billing_config()
        assert config.signing_credential is not None
        assert config.signing_credential.path == "/secrets/firma.p12"


class TestExceptions:
    def test_hierarchy(self) -> None:
        assert issubclass(WorkflowRejectedError, BillingError)
        assert StorageUnavailableError("x").retryable is True
        assert EmailDeliveryError("x").retryable is True
        assert WorkflowRejectedError("x").retryable is False

    def test_orphaned_error_carries_path(self) -> None:
        exc = DocumentOrphanedError("orphan", path="/data/a.pdf", details={"steps": []})
        assert exc.path == "/data/a.pdf"
        assert exc.details == {"path": "/data/a.pdf", "steps": []}
        assert exc.retryable is False


class TestCaseLockRegistry:
    async def test_one_lock_per_case(self) -> None:
        locks = CaseLockRegistry()
        assert locks.lock_for(1) is locks.lock_for(1)
        assert locks.lock_for(1) is not locks.lock_for(2)
        assert len(locks) == 2

    async def test_hold_releases(self) -> None:
        locks = CaseLockRegistry()
        async with locks.hold(5):
            assert locks.lock_for(5).locked()
        assert not locks.lock_for(5).locked()
