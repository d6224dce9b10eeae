# gate.py
# Safety gate: vets every proposed action against the policy before the
# executor is allowed to touch the surface.
#
# Every function here is pure. Same (policy, target, action) in, same
# GateDecision out, with no I/O or randomness. Loading the policy is
# the caller's job.
#
# Evaluation order, first denial wins:
#   1. blocked target     (active window / page identity)
#   2. blocked destination (navigation-class actions)
#   3. sensitive content   (text-entry actions)
#   4. confirmation advice (never blocks)

import re
from functools import lru_cache
from urllib.parse import urlsplit

from surface_pilot.models import (
    NAVIGATION_KINDS,
    Action,
    ActionKind,
    GateDecision,
    Policy,
)

# 4-4-4 grouped digits followed by a 1-7 digit tail: 13-19 digit card numbers.
CARD_NUMBER_PATTERN = re.compile(r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{1,7}\b")

# 12 digits in groups of four: national identity numbers (e.g. Aadhaar).
NATIONAL_ID_PATTERN = re.compile(r"\b\d{4}\s?\d{4}\s?\d{4}\b")

# Button words that always warrant confirmation when clicked in ask-before mode.
DESTRUCTIVE_CLICK_WORDS = (
    "delete",
    "remove",
    "send",
    "submit",
    "post",
    "publish",
    "pay",
    "confirm order",
)

CLICK_KINDS = frozenset({ActionKind.CLICK, ActionKind.FIND_AND_CLICK})


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@lru_cache(maxsize=256)
def pattern_to_regex(pattern: str) -> re.Pattern:
    """Compile a glob (only `*` is special) into an anchored, case-insensitive regex."""
    parts = (re.escape(chunk) for chunk in pattern.strip().split("*"))
    return re.compile(r"\A" + ".*".join(parts) + r"\Z", re.IGNORECASE)


def _destination_candidates(destination: str) -> list[str]:
    """Host forms a destination pattern is matched against."""
    raw = destination.strip()
    if not raw:
        return []
    parsed = urlsplit(raw if "://" in raw else f"//{raw}")
    host = (parsed.hostname or "").lower()
    candidates = [raw.lower()]
    if host:
        candidates.append(host)
        if host.startswith("www."):
            candidates.append(host[4:])
        path = parsed.path.rstrip("/")
        if path:
            candidates.append(f"{host}{path}")
    return candidates


def _denied(reason: str) -> GateDecision:
    return GateDecision(allowed=False, reason=reason)


# ---------------------------------------------------------------------------
# Individual checks
# ---------------------------------------------------------------------------


def check_target(policy: Policy, target: str) -> str | None:
    """Return a denial reason if the active surface belongs to a blocked target."""
    if not target:
        return None
    lower = target.lower()
    for blocked in policy.blocked_targets:
        needle = blocked.lower().strip()
        if needle and (lower == needle or needle in lower):
            return f'Target "{target}" is blocked by policy (sensitive application)'
    return None


def check_destination(policy: Policy, destination: str) -> str | None:
    """Return a denial reason if a navigation destination matches a blocked pattern."""
    candidates = _destination_candidates(destination)
    if not candidates:
        return None
    for pattern in policy.blocked_content_patterns:
        if not pattern.strip():
            continue
        regex = pattern_to_regex(pattern)
        if any(regex.match(candidate) for candidate in candidates):
            return f'Destination "{destination}" is blocked by policy (pattern "{pattern}")'
    return None


def check_text(policy: Policy, text: str) -> str | None:
    """Return a denial reason if text to be typed looks sensitive."""
    if not text:
        return None
    lower = text.lower()
    for keyword in policy.blocked_keywords:
        needle = keyword.lower().strip()
        if needle and needle in lower:
            return f'Text contains sensitive keyword "{keyword}"'
    if CARD_NUMBER_PATTERN.search(text):
        return "Text appears to contain a payment card number"
    if NATIONAL_ID_PATTERN.search(text):
        return "Text appears to contain a national identity number"
    return None


def check_confirmation(policy: Policy, action: Action) -> str | None:
    """
    Return a reason when the operator should be asked before this action.

    Advisory only: the loop surfaces it, nothing here blocks execution.
    """
    if policy.safety_mode == "full-auto":
        return None
    if policy.safety_mode == "watch-only":
        return "Watch-only mode: every action needs confirmation"

    thought = action.thought.lower()
    described = ""
    if action.kind in CLICK_KINDS:
        described = str(action.params.get("text") or action.params.get("target") or "").lower()

    for keyword in policy.confirmation_triggers:
        needle = keyword.lower().strip()
        if needle and (needle in thought or needle in described):
            return f'Action involves "{keyword}" — confirmation required'

    if action.kind in CLICK_KINDS:
        for word in DESTRUCTIVE_CLICK_WORDS:
            if word in thought or word in described:
                return f'Clicking "{word}" — confirmation required'
    return None


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def check_action(policy: Policy, target: str, action: Action) -> GateDecision:
    """Run every check in order and return the gate's verdict."""
    reason = check_target(policy, target)
    if reason:
        return _denied(reason)

    if action.kind in NAVIGATION_KINDS:
        destination = action.params.get("url")
        if isinstance(destination, str):
            reason = check_destination(policy, destination)
            if reason:
                return _denied(reason)

    if action.kind is ActionKind.TYPE:
        text = action.params.get("text")
        if isinstance(text, str):
            reason = check_text(policy, text)
            if reason:
                return _denied(reason)

    confirm_reason = check_confirmation(policy, action)
    return GateDecision(
        allowed=True,
        needs_confirmation=confirm_reason is not None,
        confirm_reason=confirm_reason or "",
    )
