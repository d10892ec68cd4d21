import os
from decimal import Decimal, InvalidOperation
from typing import List


class Settings:
    def _split_csv(self, raw: str, *, default: List[str]) -> List[str]:
        parts = [p.strip() for p in (raw or "").split(",")]
        return [p for p in parts if p] or default

    def _env_decimal(self, name: str, default: str) -> Decimal:
        raw = (os.getenv(name) or "").strip()
        try:
            return Decimal(raw) if raw else Decimal(default)
        except InvalidOperation:
            return Decimal(default)

    def __init__(self) -> None:
        self.env = os.getenv('APP_ENV', 'local')
        self.db_url = os.getenv('APP_DATABASE_URL') or os.getenv('DATABASE_URL') or 'postgresql://localhost/pharmabill'
        # Comma-separated list of allowed CORS origins for the billing UI.
        self.cors_origins = self._split_csv(
            os.getenv("CORS_ORIGINS", "").strip(),
            default=["http://localhost:3000", "http://127.0.0.1:3000"],
        )
        self.api_version = os.getenv("APP_VERSION", "0.1.0").strip() or "0.1.0"
        # Fallback GST bands until a gst_settings row is saved.
        self.gst_subsidized = self._env_decimal("GST_SUBSIDIZED", "5")
        self.gst_general = self._env_decimal("GST_GENERAL", "12")
        self.gst_food = self._env_decimal("GST_FOOD", "18")
        try:
            self.attachment_max_mb = int((os.getenv("ATTACHMENT_MAX_MB") or "5").strip())
        except ValueError:
            self.attachment_max_mb = 5
        # Days a store-credit voucher stays redeemable; 0 means vouchers never expire.
        try:
            self.voucher_validity_days = max(0, int((os.getenv("VOUCHER_VALIDITY_DAYS") or "0").strip()))
        except ValueError:
            self.voucher_validity_days = 0

settings = Settings()
