"""
Configuration management (SSOT).

This module defines ALL configuration for the reconciliation engine.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- Matching weights are fixed in the engine; only the classification
  thresholds and the due-date window are configurable
- Fallback account codes are always present, so posting never blocks on
  missing posting rules
- Ledger mode "local" writes journal entries into the state store,
  "remote" sends them to the ledger API
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


LEDGER_MODES = ("local", "remote")


@dataclass
class LedgerConfig:
    """Journal-entry primitive configuration.

    - mode: "local" (state store) or "remote" (ledger HTTP API)
    - base_url/token: only used in remote mode
    """

    mode: str = "local"
    base_url: str = "http://localhost:8090"
    token: str = ""
    timeout_seconds: int = 30
    max_retries: int = 3


@dataclass
class PostingConfig:
    """Posting defaults used when no tenant posting rule exists."""

    # Fallback chart-of-accounts codes
    bank_account_code: str = "2410"
    receivable_account_code: str = "2040"
    payable_account_code: str = "4350"
    # Payment model codes resolved per line direction
    customer_payment_model: str = "CUSTOMER_PAYMENT"
    vendor_payment_model: str = "VENDOR_PAYMENT"
    # Reconcile a statement only when every non-excluded line is posted
    strict_reconcile: bool = False
    description_prefix: str = "Bank payment"


@dataclass
class MatchingConfig:
    """Confidence classification settings."""

    # At or above: line becomes "matched"
    auto_match_threshold: int = 70
    # At or above: line becomes "suggested"; below: stays "unmatched"
    suggest_threshold: int = 40
    # Due date proximity window (days)
    date_window_days: int = 7


@dataclass
class ImportConfig:
    """Upload settings."""

    default_currency: str = "RSD"
    # Sanity limit for uploaded statement files
    max_file_size_bytes: int = 20 * 1024 * 1024


@dataclass
class Config:
    """Application configuration (SSOT).

    All configuration is centralized here. No other module should define
    configuration keys or defaults.
    """

    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    posting: PostingConfig = field(default_factory=PostingConfig)
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    imports: ImportConfig = field(default_factory=ImportConfig)
    state_db_path: Path = field(default_factory=lambda: Path("data/state.db"))

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if self.ledger.mode not in LEDGER_MODES:
            errors.append(f"ledger.mode must be one of {LEDGER_MODES}, got: {self.ledger.mode}")
        if self.ledger.mode == "remote":
            if not self.ledger.base_url:
                errors.append("ledger.base_url is required in remote mode")
            if not self.ledger.token:
                errors.append("ledger.token is required in remote mode")

        for name in ("bank_account_code", "receivable_account_code", "payable_account_code"):
            if not getattr(self.posting, name):
                errors.append(f"posting.{name} is required")

        # Thresholds must be sensible
        if self.matching.auto_match_threshold < self.matching.suggest_threshold:
            errors.append("auto_match_threshold must be >= suggest_threshold")
        if not 0 < self.matching.suggest_threshold <= 100:
            errors.append("suggest_threshold must be within 1..100")
        if self.matching.date_window_days < 0:
            errors.append("date_window_days must not be negative")

        if self.imports.max_file_size_bytes <= 0:
            errors.append("imports.max_file_size_bytes must be positive")

        return errors


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name, "").lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    return default


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - BANKRECON_STATE_DB
    - BANKRECON_LEDGER_MODE (local/remote)
    - BANKRECON_LEDGER_URL
    - BANKRECON_LEDGER_TOKEN
    - BANKRECON_STRICT_RECONCILE (true/false)

    Raises:
        ConfigValidationError: If the file is not a YAML mapping
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    if not isinstance(data, dict):
        raise ConfigValidationError(f"{config_path}: top level must be a mapping")

    # Ledger config
    ledger_data = data.get("ledger", {})
    ledger = LedgerConfig(
        mode=os.environ.get("BANKRECON_LEDGER_MODE", ledger_data.get("mode", "local")),
        base_url=os.environ.get(
            "BANKRECON_LEDGER_URL", ledger_data.get("base_url", "http://localhost:8090")
        ),
        token=os.environ.get("BANKRECON_LEDGER_TOKEN", ledger_data.get("token", "")),
        timeout_seconds=int(ledger_data.get("timeout_seconds", 30)),
        max_retries=int(ledger_data.get("max_retries", 3)),
    )

    # Posting config
    posting_data = data.get("posting", {})
    posting = PostingConfig(
        bank_account_code=str(posting_data.get("bank_account_code", "2410")),
        receivable_account_code=str(posting_data.get("receivable_account_code", "2040")),
        payable_account_code=str(posting_data.get("payable_account_code", "4350")),
        customer_payment_model=posting_data.get("customer_payment_model", "CUSTOMER_PAYMENT"),
        vendor_payment_model=posting_data.get("vendor_payment_model", "VENDOR_PAYMENT"),
        strict_reconcile=_env_bool(
            "BANKRECON_STRICT_RECONCILE", posting_data.get("strict_reconcile", False)
        ),
        description_prefix=posting_data.get("description_prefix", "Bank payment"),
    )

    # Matching config
    matching_data = data.get("matching", {})
    matching = MatchingConfig(
        auto_match_threshold=int(matching_data.get("auto_match_threshold", 70)),
        suggest_threshold=int(matching_data.get("suggest_threshold", 40)),
        date_window_days=int(matching_data.get("date_window_days", 7)),
    )

    # Import config
    import_data = data.get("imports", {})
    imports = ImportConfig(
        default_currency=import_data.get("default_currency", "RSD"),
        max_file_size_bytes=int(import_data.get("max_file_size_bytes", 20 * 1024 * 1024)),
    )

    # State DB
    state_db = os.environ.get("BANKRECON_STATE_DB", data.get("state_db_path", "data/state.db"))

    return Config(
        ledger=ledger,
        posting=posting,
        matching=matching,
        imports=imports,
        state_db_path=Path(state_db),
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# Bank statement reconciliation engine configuration
#
# Ledger modes:
# - local:  journal entries are written into the state database
# - remote: journal entries are sent to the ledger API (base_url + token)

ledger:
  mode: "local"
  base_url: "http://localhost:8090"       # Ledger API URL (remote mode)
  token: ""                                # Bearer token (remote mode)
  timeout_seconds: 30
  max_retries: 3

# Fallback posting used when a tenant has no posting rule for a payment model
posting:
  bank_account_code: "2410"                # Bank / cash
  receivable_account_code: "2040"          # Customer receivables control
  payable_account_code: "4350"             # Supplier payables control
  customer_payment_model: "CUSTOMER_PAYMENT"
  vendor_payment_model: "VENDOR_PAYMENT"
  strict_reconcile: false                  # Require 100% posted before reconciling
  description_prefix: "Bank payment"

# Confidence classification (0-100)
matching:
  auto_match_threshold: 70                 # At or above: matched
  suggest_threshold: 40                    # At or above: suggested
  date_window_days: 7                      # Due-date proximity window

imports:
  default_currency: "RSD"
  max_file_size_bytes: 20971520            # 20 MiB

# State database path
state_db_path: "data/state.db"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
