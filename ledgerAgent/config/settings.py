"""Environment-bound configuration objects.

This module provides Pydantic BaseSettings-based configuration loading from .env files.
All settings classes automatically load from environment variables with support for
multiple alias names (e.g., MODEL_COORDINATOR_* and MODEL_REASON_* both work).

Example:
    from ledgerAgent.config.settings import get_settings

    settings = get_settings()  # Cached singleton
    token = settings.ledger.access_token
    max_depth = settings.governance.max_delegation_depth
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


load_dotenv()


class ModelRoutingSettings(BaseSettings):
    """Model identifiers and credentials for the two decision roles.

    - coordinator: routes turns and composes replies (vision capable, reads receipts)
    - worker: drives the specialist action loops

    Each slot has three fields: id, api_key, base_url.
    """

    coordinator: str = Field(
        default="coordinator-pro",
        validation_alias=AliasChoices("MODEL_COORDINATOR", "MODEL_COORDINATOR_ID", "MODEL_REASON_ID"),
    )
    coordinator_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("MODEL_COORDINATOR_API_KEY", "MODEL_REASON_API_KEY", "OPENAI_API_KEY"),
    )
    coordinator_base_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("MODEL_COORDINATOR_URL", "MODEL_COORDINATOR_BASE_URL"),
    )

    worker: str = Field(
        default="worker-mid",
        validation_alias=AliasChoices("MODEL_WORKER", "MODEL_WORKER_ID", "MODEL_CHAT_ID"),
    )
    worker_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("MODEL_WORKER_API_KEY", "MODEL_CHAT_API_KEY", "OPENAI_API_KEY"),
    )
    worker_base_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("MODEL_WORKER_URL", "MODEL_WORKER_BASE_URL"),
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class GovernanceSettings(BaseSettings):
    """Runtime governance and control settings.

    Controls loop and delegation limits:
    - max_worker_loops: decision steps a worker may take per delegation (default: 15)
    - max_coordinator_loops: routing steps per user turn (default: 25)
    - max_delegation_depth: nested delegation chain length (default: 3)
    - request_timeout_seconds: wall-clock budget per user turn
    - delegation_budget_share: share of the turn budget one delegation may use;
      below 1 so an interrupted delegation reports back before the turn is cut
    """

    max_worker_loops: int = Field(default=15, ge=1, le=100, alias="MAX_WORKER_LOOPS")
    max_coordinator_loops: int = Field(default=25, ge=1, le=200, alias="MAX_COORDINATOR_LOOPS")
    max_delegation_depth: int = Field(default=3, ge=1, le=10, alias="MAX_DELEGATION_DEPTH")
    request_timeout_seconds: float = Field(default=120.0, gt=0, alias="REQUEST_TIMEOUT_SECONDS")
    delegation_budget_share: float = Field(default=0.8, gt=0, lt=1, alias="DELEGATION_BUDGET_SHARE")
    max_message_history: int = Field(default=40, ge=10, le=200, alias="MAX_MESSAGE_HISTORY")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def delegation_timeout_seconds(self) -> float:
        return self.request_timeout_seconds * self.delegation_budget_share


class LedgerSettings(BaseSettings):
    """Accounting system (REST API) connection settings."""

    base_url: str = Field(
        default="https://api.fiken.no/api/v2",
        validation_alias=AliasChoices("LEDGER_BASE_URL", "FIKEN_API_URL"),
    )
    access_token: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("LEDGER_ACCESS_TOKEN", "FIKEN_ACCESS_TOKEN"),
    )
    company_slug: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("LEDGER_COMPANY", "FIKEN_COMPANY_SLUG"),
    )
    timeout_seconds: float = Field(default=30.0, gt=0, alias="LEDGER_TIMEOUT_SECONDS")
    max_retries: int = Field(default=3, ge=0, le=10, alias="LEDGER_MAX_RETRIES")
    backoff_seconds: float = Field(default=1.0, ge=0, alias="LEDGER_BACKOFF_SECONDS")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class AccountingSettings(BaseSettings):
    """Business-rule tunables.

    - bank_match_tolerance_kr: amount tolerance when matching a purchase to a bank line
    - bank_match_days: date window (± days) for bank matching
    - reconcile_tolerance_kr, reconcile_days: amount and date margins when reconciling a bank statement
    - duplicate_margin_oere: gross amount margin for the ledger-side duplicate check
    - max_vision_attachments: images forwarded inline to vision-capable recipients
    """

    bank_match_tolerance_kr: float = Field(default=2.0, ge=0, alias="BANK_MATCH_TOLERANCE_KR")
    bank_match_days: int = Field(default=5, ge=0, le=60, alias="BANK_MATCH_DAYS")
    reconcile_tolerance_kr: float = Field(default=5.0, ge=0, alias="RECONCILE_TOLERANCE_KR")
    reconcile_days: int = Field(default=5, ge=0, le=60, alias="RECONCILE_DAYS")
    duplicate_margin_oere: int = Field(default=100, ge=0, alias="DUPLICATE_MARGIN_OERE")
    max_vision_attachments: int = Field(default=4, ge=0, le=20, alias="MAX_VISION_ATTACHMENTS")
    invoice_counter_start: int = Field(default=10000, ge=1, alias="INVOICE_COUNTER_START")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class ObservabilitySettings(BaseSettings):
    """Logging configuration."""

    log_dir: str = Field(default="logs", alias="LOG_DIR")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_prompt_max_length: int = Field(default=500, ge=100, le=5000, alias="LOG_PROMPT_MAX_LENGTH")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class Settings(BaseSettings):
    """Root application settings loaded from .env file.

    Hierarchical structure containing five nested settings groups:
    - models: Model routing and API credentials (ModelRoutingSettings)
    - governance: Loop, depth and time limits (GovernanceSettings)
    - ledger: Accounting system connection (LedgerSettings)
    - accounting: Business-rule tunables (AccountingSettings)
    - observability: Logging (ObservabilitySettings)

    Use get_settings() to obtain a cached singleton instance.
    """

    environment: str = Field(default="dev", alias="APP_ENV")
    models: ModelRoutingSettings = Field(default_factory=ModelRoutingSettings)
    governance: GovernanceSettings = Field(default_factory=GovernanceSettings)
    ledger: LedgerSettings = Field(default_factory=LedgerSettings)
    accounting: AccountingSettings = Field(default_factory=AccountingSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        validate_assignment=True,
        case_sensitive=False,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton Settings instance.

    Returns:
        Settings: Cached application settings instance
    """
    return Settings()
