"""Billing configuration snapshots."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from lexbill.models.domain import BillingConfig, SigningCredential

if TYPE_CHECKING:
    from lexbill.core.config import Settings


class SettingsConfigProvider:
    """Builds BillingConfig snapshots from application settings.

    Each call returns a new frozen snapshot; a workflow run takes exactly
    one at its start and reads nothing else.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def get_billing_config(self) -> BillingConfig:
        settings = self._settings
        credential = None
        if settings.signing_configured:
            credential = SigningCredential(
                path=settings.signing_credential_path.strip(),
                passphrase=settings.signing_credential_passphrase,
            )
        return BillingConfig(
            base_fee=settings.billing_base_fee,
            vat_rate=settings.vat_rate,
            recipient_email=settings.billing_recipient_email,
            mileage_rates=dict(settings.mileage_rates),
            signing_credential=credential,
            captured_at=datetime.now(UTC),
        )
