"""
Configuration Management for Pocket Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what the engine depends on and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class MongoSettings(BaseSettings):
    """MongoDB storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="MONGODB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    uri: str = Field(
        default="mongodb://127.0.0.1:27017",
        description="MongoDB connection string (replica set needed for transactions)"
    )
    database: str = Field(
        default="MBT",
        description="Database holding wallets, budgets, loans, goals and audit logs"
    )
    app_name: str = Field(
        default="pocket-ledger",
        description="Application name reported to the server"
    )
    server_selection_timeout_ms: int = Field(
        default=5000,
        ge=100,
        le=60000,
        description="How long to wait for a reachable server"
    )

    # Collection names
    wallets_collection: str = Field(default="wallets")
    budgets_collection: str = Field(default="budgets")
    loans_collection: str = Field(default="loans")
    goals_collection: str = Field(default="goals")
    audit_collection: str = Field(default="auditlogs")


class LedgerSettings(BaseSettings):
    """Ledger engine behaviour."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    rollover_horizon_months: int = Field(
        default=36,
        ge=1,
        le=120,
        description="Maximum months one rollover recomputation may walk"
    )
    auto_create_next_month: bool = Field(
        default=False,
        description="Create a missing following month instead of stopping the chain"
    )

    # Only used when normalizing legacy documents
    income_categories: str = Field(
        default="income,Paycheck,Bonus,Debt Added",
        description="Comma-separated category labels that legacy data treats as income"
    )
    savings_category: str = Field(default="Savings")
    transfer_category: str = Field(default="Transfer")

    opening_balance_name: str = Field(
        default="Previous month's leftover",
        description="Name of the synthetic income transaction written by a drift repair"
    )
    opening_balance_category: str = Field(default="income")

    @field_validator('income_categories')
    @classmethod
    def validate_income_categories(cls, v: str) -> str:
        """At least one income label is required for legacy normalization."""
        if not [part for part in v.split(",") if part.strip()]:
            raise ValueError("income_categories must list at least one category")
        return v

    @property
    def income_categories_set(self) -> frozenset[str]:
        """Get income categories as a set."""
        return frozenset(
            part.strip() for part in self.income_categories.split(",") if part.strip()
        )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    storage_backend: str = Field(
        default="memory",
        pattern="^(memory|mongo)$",
        description="Which storage implementation to build at startup"
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Minimum level for structured logs"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def mongo(self) -> MongoSettings:
        return MongoSettings()

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("mongo", "ledger", "app"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
