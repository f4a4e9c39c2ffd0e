"""
Central configuration module for the telehealth payments service
Reads and validates environment variables with strict checks for production
"""
import os
import sys
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional, FrozenSet

from dotenv import load_dotenv

# Only load .env in development
if os.getenv("ENV", "dev").lower() == "dev":
    load_dotenv()


@dataclass(frozen=True)
class ReconciliationSettings:
    """
    Explicit settings handed to the reconciliation engine at construction.

    The engine never reads the environment itself.
    """
    fee_tolerance_percent: Decimal
    supported_currencies: FrozenSet[str]
    gateway_signing_key: Optional[str] = None
    gateway_api_secret: Optional[str] = None

    def supports_currency(self, currency: Optional[str]) -> bool:
        return bool(currency) and currency.upper() in self.supported_currencies


def _parse_bool(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Central configuration class with environment variable validation"""

    # Environment
    ENV: str = os.getenv("ENV", "dev").lower()

    # Database (PostgreSQL in deployed environments)
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")
    DB_POOL_SIZE: int = int(os.getenv("DB_POOL_SIZE", "10"))
    DB_MAX_OVERFLOW: int = int(os.getenv("DB_MAX_OVERFLOW", "10"))
    DB_POOL_RECYCLE: int = int(os.getenv("DB_POOL_RECYCLE", "900"))
    DB_POOL_TIMEOUT: int = int(os.getenv("DB_POOL_TIMEOUT", "30"))

    PORT: int = int(os.getenv("PORT", "8000"))

    # Payment gateway - PayChangu
    PAYCHANGU_SECRET_KEY: Optional[str] = os.getenv("PAYCHANGU_SECRET_KEY")
    PAYCHANGU_WEBHOOK_SECRET: Optional[str] = os.getenv("PAYCHANGU_WEBHOOK_SECRET")
    PAYCHANGU_BASE_URL: str = os.getenv("PAYCHANGU_BASE_URL", "https://api.paychangu.com")
    PAYCHANGU_CALLBACK_URL: Optional[str] = os.getenv("PAYCHANGU_CALLBACK_URL")
    PAYCHANGU_RETURN_URL: Optional[str] = os.getenv("PAYCHANGU_RETURN_URL")
    PAYCHANGU_TIMEOUT: float = float(os.getenv("PAYCHANGU_TIMEOUT", "10"))

    # Reconciliation
    PAYMENT_FEE_TOLERANCE_PERCENT: str = os.getenv("PAYMENT_FEE_TOLERANCE_PERCENT", "5")
    PAYMENT_SUPPORTED_CURRENCIES: str = os.getenv("PAYMENT_SUPPORTED_CURRENCIES", "MWK,USD")

    # Unsigned webhook entry point used by integration tests
    ENABLE_TEST_WEBHOOK: bool = _parse_bool(os.getenv("ENABLE_TEST_WEBHOOK"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    def __init__(self):
        """Initialize configuration and validate required variables"""
        self._validate()

    def _validate(self):
        """Validate required configuration based on environment"""
        errors = []

        if self.ENV not in ["dev", "test", "staging", "prod"]:
            errors.append(f"Invalid ENV value: {self.ENV}. Must be 'dev', 'test', 'staging', or 'prod'")

        if not self.DATABASE_URL:
            errors.append("DATABASE_URL is required but not set")
        elif self.ENV in ["staging", "prod"] and not self.DATABASE_URL.startswith("postgresql"):
            errors.append(f"DATABASE_URL must be a PostgreSQL connection string in {self.ENV} (got: {self.DATABASE_URL[:30]}...)")

        try:
            tolerance = Decimal(self.PAYMENT_FEE_TOLERANCE_PERCENT)
            if tolerance < 0 or tolerance >= 100:
                errors.append(f"PAYMENT_FEE_TOLERANCE_PERCENT must be in [0, 100) (got: {tolerance})")
        except InvalidOperation:
            errors.append(f"PAYMENT_FEE_TOLERANCE_PERCENT is not a number: {self.PAYMENT_FEE_TOLERANCE_PERCENT!r}")

        if not self._currency_set():
            errors.append("PAYMENT_SUPPORTED_CURRENCIES must list at least one currency")

        # Webhook secrets required in staging/prod
        if self.ENV in ["staging", "prod"]:
            if not self.PAYCHANGU_SECRET_KEY and not self.PAYCHANGU_WEBHOOK_SECRET:
                errors.append(f"PAYCHANGU_SECRET_KEY or PAYCHANGU_WEBHOOK_SECRET is required in {self.ENV}")

        if self.ENV == "prod" and self.ENABLE_TEST_WEBHOOK:
            errors.append("ENABLE_TEST_WEBHOOK must not be set in production")

        # Fail fast in staging/prod
        if errors and self.ENV in ["staging", "prod"]:
            print("=" * 60, file=sys.stderr)
            print("CONFIGURATION VALIDATION FAILED", file=sys.stderr)
            print("=" * 60, file=sys.stderr)
            for error in errors:
                print(f"  ❌ {error}", file=sys.stderr)
            print("=" * 60, file=sys.stderr)
            sys.exit(1)

        # Warn in dev
        if errors and self.ENV == "dev":
            print("=" * 60, file=sys.stderr)
            print("CONFIGURATION WARNINGS (dev mode - continuing)", file=sys.stderr)
            print("=" * 60, file=sys.stderr)
            for error in errors:
                print(f"  ⚠️  {error}", file=sys.stderr)
            print("=" * 60, file=sys.stderr)

    def _currency_set(self) -> FrozenSet[str]:
        return frozenset(
            code.strip().upper()
            for code in self.PAYMENT_SUPPORTED_CURRENCIES.split(",")
            if code.strip()
        )

    @property
    def is_dev(self) -> bool:
        """Check if running in development mode"""
        return self.ENV == "dev"

    @property
    def is_prod(self) -> bool:
        """Check if running in production mode"""
        return self.ENV == "prod"

    @property
    def test_webhook_enabled(self) -> bool:
        """The unsigned test webhook is never reachable in production"""
        return self.ENABLE_TEST_WEBHOOK and not self.is_prod

    def get_database_url(self) -> str:
        """Get database URL (alias for DATABASE_URL)"""
        return self.DATABASE_URL

    def reconciliation_settings(self) -> ReconciliationSettings:
        """Build the explicit settings struct consumed by the reconciliation engine"""
        return ReconciliationSettings(
            fee_tolerance_percent=Decimal(self.PAYMENT_FEE_TOLERANCE_PERCENT),
            supported_currencies=self._currency_set(),
            gateway_signing_key=self.PAYCHANGU_WEBHOOK_SECRET,
            gateway_api_secret=self.PAYCHANGU_SECRET_KEY,
        )


# Create global config instance
config = Config()
