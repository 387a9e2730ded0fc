"""
offerguard/config.py

Runtime configuration.

Sources, lowest to highest precedence:
    1. built-in defaults
    2. a YAML file            (OfferGuardConfig.load_from)
    3. environment variables  OFFERGUARD_LOG_LEVEL, OFFERGUARD_LOG_FILE,
                              OFFERGUARD_SIGNING_KEY, OFFERGUARD_JOURNAL

Example file:

    log_level: DEBUG
    log_file: logs/offerguard.log
    signing_key: keys/desk.pem
    journal: data/receipts.jsonl
    guardrail_defaults:
      max_staleness: 120
      quorum_count: 2
      quorum_tolerance_percent: "0.5"
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from offerguard.core.exceptions import ValidationError
from offerguard.core.models import GUARDRAIL_DEFAULTS

ENV_LOG_LEVEL   = "OFFERGUARD_LOG_LEVEL"
ENV_LOG_FILE    = "OFFERGUARD_LOG_FILE"
ENV_SIGNING_KEY = "OFFERGUARD_SIGNING_KEY"
ENV_JOURNAL     = "OFFERGUARD_JOURNAL"

_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


def load_yaml_file(path: Path) -> Any:
    """
    Parse a YAML (or JSON) file.
    Raises ValidationError if it is missing or unparseable.
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f)
    except FileNotFoundError as exc:
        raise ValidationError(f"File not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise ValidationError(f"Cannot parse {path}: {exc}") from exc


@dataclass
class OfferGuardConfig:
    log_level:          str            = "INFO"
    log_file:           Optional[Path] = None
    signing_key_path:   Optional[Path] = None
    journal_path:       Optional[Path] = None
    guardrail_defaults: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.log_level = str(self.log_level).upper()
        if self.log_level not in _LOG_LEVELS:
            raise ValidationError(
                f"Unknown log level {self.log_level!r}",
                details={"valid": ", ".join(sorted(_LOG_LEVELS))},
            )
        unknown = set(self.guardrail_defaults) - set(GUARDRAIL_DEFAULTS)
        if unknown:
            raise ValidationError(
                "Unknown guardrail defaults",
                errors=[f"'{name}' has no default" for name in sorted(unknown)],
            )
        for name in ("log_file", "signing_key_path", "journal_path"):
            value = getattr(self, name)
            if value is not None and not isinstance(value, Path):
                setattr(self, name, Path(value))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "OfferGuardConfig":
        return cls(
            log_level=          data.get("log_level", "INFO"),
            log_file=           data.get("log_file"),
            signing_key_path=   data.get("signing_key"),
            journal_path=       data.get("journal"),
            guardrail_defaults= dict(data.get("guardrail_defaults") or {}),
        )

    @classmethod
    def load_from(
        cls,
        path: Optional[Path] = None,
        env:  Optional[Mapping[str, str]] = None,
    ) -> "OfferGuardConfig":
        """Defaults, then the YAML file at path (if given), then the environment."""
        data: Dict[str, Any] = {}
        if path is not None:
            loaded = load_yaml_file(path)
            if loaded is None:
                loaded = {}
            if not isinstance(loaded, dict):
                raise ValidationError(f"Config file {path} must contain a mapping")
            data.update(loaded)

        env = os.environ if env is None else env
        overrides = {
            "log_level":   env.get(ENV_LOG_LEVEL),
            "log_file":    env.get(ENV_LOG_FILE),
            "signing_key": env.get(ENV_SIGNING_KEY),
            "journal":     env.get(ENV_JOURNAL),
        }
        data.update({k: v for k, v in overrides.items() if v})
        return cls.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "log_level":          self.log_level,
            "log_file":           str(self.log_file) if self.log_file else None,
            "signing_key":        str(self.signing_key_path) if self.signing_key_path else None,
            "journal":            str(self.journal_path) if self.journal_path else None,
            "guardrail_defaults": dict(self.guardrail_defaults),
        }

    # ── Wiring ────────────────────────────────────────────────

    def configure_logging(self) -> None:
        from offerguard.core.logs import configure_logging

        configure_logging(self.log_level, str(self.log_file) if self.log_file else None)

    def load_signer(self):
        """ReceiptSigner from signing_key_path, created on first use. None if unset."""
        if self.signing_key_path is None:
            return None
        from offerguard.core.crypto import ReceiptSigner

        return ReceiptSigner.load_or_create(self.signing_key_path)

    def open_journal(self):
        if self.journal_path is None:
            return None
        from offerguard.store.journal import ReceiptJournal

        return ReceiptJournal(self.journal_path)

    def build_desk(self, **kwargs):
        """A FillDesk wired with this config's signer and journal."""
        from offerguard.lifecycle.desk import FillDesk

        return FillDesk(signer=self.load_signer(), journal=self.open_journal(), **kwargs)
