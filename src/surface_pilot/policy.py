# policy.py
# Durable storage for the single global safety policy.
#
# The file holds only the operator's overrides plus whatever defaults were
# present when it was first written. load() always deep-merges the current
# defaults underneath, so new default keys appear without a migration.

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from surface_pilot.errors import PolicyError
from surface_pilot.models import Policy

LOGGER = logging.getLogger(__name__)

DEFAULT_POLICY_PATH = Path.home() / ".surface_pilot" / "policy.json"

DEFAULT_POLICY: dict[str, Any] = {
    # Applications the agent must never see or drive.
    "blocked_targets": [
        "KeePass",
        "KeePassXC",
        "1Password",
        "Bitwarden",
        "LastPass",
    ],
    # Destinations the agent must never open.
    "blocked_content_patterns": [
        "*.bank.*",
        "*.banking.*",
        "paypal.com",
        "razorpay.com",
        "stripe.com",
        "pay.google.com",
        "wallet.google.com",
        "onlinebanking.*",
        "netbanking.*",
        "onlinesbi.sbi",
        "hdfcbank.com",
        "icicibank.com",
        "axisbank.com",
        "kotak.com",
        "pnbindia.in",
        "bankofindia.co.in",
    ],
    # Words the agent must never type.
    "blocked_keywords": [
        "password",
        "passwd",
        "secret",
        "cvv",
        "pin",
        "otp",
        "credit card",
        "debit card",
        "card number",
        "expiry",
        "ssn",
        "social security",
        "aadhaar",
        "pan card",
    ],
    "safety_mode": "ask-before",
    # Rationale fragments that make ask-before mode request confirmation.
    "confirmation_triggers": [
        "send",
        "submit",
        "post",
        "publish",
        "delet",
        "remov",
        "pay",
        "purchase",
        "buy",
        "checkout",
        "transfer",
    ],
    "max_steps": 25,
}


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return base with override applied on top, recursing into nested dicts."""
    merged: dict[str, Any] = dict(base)
    for key, value in override.items():
        base_value = merged.get(key)
        if isinstance(base_value, dict) and isinstance(value, dict):
            merged[key] = deep_merge(base_value, value)
        else:
            merged[key] = value
    return merged


class PolicyStore:
    """
    JSON-file repository for the global Policy.

    First load (missing or unreadable file) persists the defaults so the
    operator has a file to edit.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(path) if path else DEFAULT_POLICY_PATH

    @property
    def path(self) -> Path:
        return self._path

    def _read_overrides(self) -> dict[str, Any] | None:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            LOGGER.warning("policy file %s unreadable: %s", self._path, exc)
            return None
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            LOGGER.warning("policy file %s is not valid JSON: %s", self._path, exc)
            return None
        if not isinstance(parsed, dict):
            LOGGER.warning("policy file %s does not hold an object", self._path)
            return None
        return parsed

    def load(self) -> Policy:
        overrides = self._read_overrides()
        if overrides is None:
            policy = Policy.model_validate(DEFAULT_POLICY)
            self.save(policy)
            LOGGER.info("wrote default policy to %s", self._path)
            return policy

        merged = deep_merge(DEFAULT_POLICY, overrides)
        try:
            return Policy.model_validate(merged)
        except ValidationError as exc:
            raise PolicyError(f"Policy file {self._path} is invalid: {exc}") from exc

    def save(self, policy: Policy) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(policy.model_dump_json(indent=2), encoding="utf-8")
