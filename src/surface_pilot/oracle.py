# oracle.py
# Decision oracle: given goal + snapshot + history, return exactly one Action.
#
# The loop depends only on DecisionOracle.decide(). Which provider answers,
# and in what order providers are tried, is decided here.
#
# Two failure classes, handled differently:
#   - transport (unreachable, timeout, HTTP error) → OracleTransportError,
#     which the loop retries
#   - garbage (no JSON, no action, unknown action)  → an `error` Action,
#     never an exception

import abc
import base64
import json
import logging
import re

import httpx
import openai
from openai import OpenAI

from surface_pilot.errors import OracleTransportError
from surface_pilot.models import KIND_ALIASES, Action, ActionKind, OracleRequest

LOGGER = logging.getLogger(__name__)

RAW_EXCERPT_CHARS = 200
HISTORY_WINDOW = 5
ELEMENT_WINDOW = 30


# ---------------------------------------------------------------------------
# System Prompt
# ---------------------------------------------------------------------------

SYSTEM_PROMPT = """\
You are a computer-use agent controlling a screen on behalf of a user.

You see the current screen and must decide the NEXT SINGLE ACTION toward the \
user's goal.

OUTPUT: Exactly one JSON object. No markdown, no explanation, no extra text.

{"thought":"what I see + plan","action":"<action>","params":{...}}

ACTIONS:
- click:          {"x":int,"y":int,"button":"left|right|middle|double"}
- drag:           {"x1":int,"y1":int,"x2":int,"y2":int}
- type:           {"text":"string"} — click the target field first!
- key:            {"combo":"ctrl+a"} — shortcuts: ctrl+c, alt+f4, enter, tab, escape, win
- scroll:         {"direction":"up|down|left|right","amount":3}
- open_app:       {"name":"notepad|chrome|explorer|code|calc"}
- navigate:       {"url":"https://..."} or {"name":"app"}
- open_url:       {"url":"https://..."}
- find_and_click: {"text":"button name","button":"left"} — PREFER THIS when you can read a label
- window_manage:  {"action":"minimize|maximize|restore|close|snap_left|snap_right|info"}
- wait:           {"ms":2000}
- done:           {"summary":"what was accomplished"}
- error:          {"message":"why the goal is impossible"}

COORDINATES:
- Origin (0,0) is the TOP-LEFT corner; x grows right, y grows down.
- Aim for the CENTER of buttons and links.
- Stay inside the resolution you are given.

STRATEGY:
- Prefer keyboard shortcuts over clicking when possible.
- After opening an app or URL, wait 1-2s for it to load.
- If the screen did not change after your last action, try something different.
- Break complex goals into small steps.

SAFETY:
- NEVER type passwords, card numbers or other sensitive data.
- NEVER interact with banking or payment sites.
- If unsure, report error rather than guess.\
"""


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _error_action(thought: str, message: str) -> Action:
    return Action(
        thought=thought,
        kind=ActionKind.ERROR,
        params={"message": message[:RAW_EXCERPT_CHARS]},
    )


def parse_decision(response: str) -> Action:
    """
    Coerce an oracle reply into an Action.

    Never raises: anything that is not one JSON object with a known action
    becomes an `error` Action carrying a bounded excerpt of the raw text.
    """
    text = (response or "").strip()
    text = re.sub(r"^```(?:json)?\s*", "", text, flags=re.IGNORECASE)
    text = re.sub(r"\s*```$", "", text)

    match = re.search(r"\{.*\}", text, re.DOTALL)
    if not match:
        return _error_action("Failed to parse oracle response", f"Oracle returned non-JSON: {text}")

    try:
        parsed = json.loads(match.group(0), strict=False)
    except json.JSONDecodeError as exc:
        return _error_action("JSON parse error", f"Failed to parse JSON: {exc}. Raw: {text}")

    if not isinstance(parsed, dict):
        return _error_action("JSON parse error", f"Expected an object. Raw: {text}")

    thought = parsed.get("thought")
    thought = thought if isinstance(thought, str) else ""
    raw_action = parsed.get("action")
    if not isinstance(raw_action, str) or not raw_action.strip():
        return _error_action(
            thought or "No action", f'Oracle response missing "action" field. Raw: {text}'
        )

    name = raw_action.strip().lower()
    kind = KIND_ALIASES.get(name)
    if kind is None:
        try:
            kind = ActionKind(name)
        except ValueError:
            return _error_action(thought, f"Unknown action: {raw_action}. Raw: {text}")

    params = parsed.get("params")
    return Action(thought=thought, kind=kind, params=params if isinstance(params, dict) else {})


def build_user_message(request: OracleRequest) -> str:
    """Render goal, resolution, recent history and UI elements as prompt text."""
    lines = [f"GOAL: {request.goal}", f"SCREEN: {request.width}x{request.height} pixels"]

    recent = request.history[-HISTORY_WINDOW:]
    if recent:
        total = max(request.total_steps, len(request.history))
        offset = total - len(recent)
        lines.append("")
        lines.append(f"PREVIOUS STEPS ({total} total, showing last {len(recent)}):")
        lines.extend(f"{offset + i + 1}. {summary}" for i, summary in enumerate(recent))

    if request.elements:
        lines.append("")
        lines.append("UI ELEMENTS (type|centerX|centerY|name):")
        lines.extend(
            f"{e.kind}|{e.x}|{e.y}|{e.name}" for e in request.elements[:ELEMENT_WINDOW]
        )
        lines.append("")
        lines.append("Tip: Use find_and_click with the element name for reliable clicking.")

    if isinstance(request.payload, str):
        lines.append("")
        lines.append("CURRENT CONTENT:")
        lines.append(request.payload)

    lines.append("")
    lines.append("What is the next single action? Respond with JSON only.")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Oracles
# ---------------------------------------------------------------------------


class DecisionOracle(abc.ABC):
    """One capability: pick the next action."""

    name: str = "oracle"

    @abc.abstractmethod
    def decide(self, request: OracleRequest) -> Action:
        """Return one Action. Raise OracleTransportError if unreachable."""


class OpenAIOracle(DecisionOracle):
    """
    Vision oracle over any OpenAI-compatible chat completions endpoint.

    Example:
        oracle = OpenAIOracle(
            model="anthropic/claude-3.5-haiku",
            client=OpenAI(base_url="https://openrouter.ai/api/v1", api_key=key),
        )
    """

    def __init__(self, model: str, client: OpenAI, max_tokens: int = 500) -> None:
        self._model = model
        self._client = client
        self._max_tokens = max_tokens
        self.name = model

    def _build_messages(self, request: OracleRequest) -> list[dict]:
        content: list[dict] = []
        if isinstance(request.payload, bytes):
            encoded = base64.b64encode(request.payload).decode("ascii")
            content.append(
                {
                    "type": "image_url",
                    "image_url": {
                        "url": f"data:{request.media_type};base64,{encoded}",
                        "detail": "high",
                    },
                }
            )
        content.append({"type": "text", "text": build_user_message(request)})
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": content},
        ]

    def decide(self, request: OracleRequest) -> Action:
        try:
            response = self._client.chat.completions.create(
                model=self._model,
                messages=self._build_messages(request),
                max_tokens=self._max_tokens,
            )
        except (openai.APIError, httpx.HTTPError) as exc:
            raise OracleTransportError(f"{self._model}: {exc}") from exc

        choices = getattr(response, "choices", None) or []
        text = (choices[0].message.content or "") if choices else ""
        LOGGER.debug("oracle %s replied with %d chars", self._model, len(text))
        return parse_decision(text)


class FallbackOracle(DecisionOracle):
    """Try each oracle in order; fail only when every one is unreachable."""

    def __init__(self, oracles: list[DecisionOracle]) -> None:
        if not oracles:
            raise ValueError("FallbackOracle needs at least one oracle.")
        self._oracles = list(oracles)
        self.name = " → ".join(o.name for o in self._oracles)

    def decide(self, request: OracleRequest) -> Action:
        failures: list[str] = []
        for oracle in self._oracles:
            try:
                return oracle.decide(request)
            except OracleTransportError as exc:
                LOGGER.warning("oracle %s unavailable, trying next: %s", oracle.name, exc)
                failures.append(str(exc))
        raise OracleTransportError("All oracles failed: " + "; ".join(failures))


def create_oracle(settings) -> DecisionOracle:
    """Build the configured oracle chain from Settings."""
    http_client = httpx.Client(timeout=httpx.Timeout(settings.oracle_timeout))
    client = OpenAI(
        base_url=settings.base_url,
        api_key=settings.api_key,
        http_client=http_client,
        # The agent loop owns retries.
        max_retries=0,
    )
    models = [settings.model, *settings.fallback_models]
    oracles: list[DecisionOracle] = [OpenAIOracle(model, client) for model in models]
    return oracles[0] if len(oracles) == 1 else FallbackOracle(oracles)
