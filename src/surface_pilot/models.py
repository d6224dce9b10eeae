# models.py
# Data contracts for the surface agent.
# No business logic lives here — pure schema and validation.

from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


class ActionKind(str, Enum):
    """Every action the decision oracle may emit."""

    CLICK = "click"
    DRAG = "drag"
    TYPE = "type"
    KEY = "key"
    SCROLL = "scroll"
    OPEN_APP = "open_app"
    NAVIGATE = "navigate"
    OPEN_URL = "open_url"
    FIND_AND_CLICK = "find_and_click"
    WINDOW_MANAGE = "window_manage"
    WAIT = "wait"
    DONE = "done"
    ERROR = "error"


KIND_ALIASES: dict[str, ActionKind] = {
    "window": ActionKind.WINDOW_MANAGE,
    "goto": ActionKind.NAVIGATE,
}

TERMINAL_KINDS = frozenset({ActionKind.DONE, ActionKind.ERROR})
# Kinds that reach Surface.open_url whenever they carry a url.
NAVIGATION_KINDS = frozenset({ActionKind.OPEN_URL, ActionKind.NAVIGATE, ActionKind.OPEN_APP})

MouseButton = Literal["left", "right", "middle", "double"]
ScrollDirection = Literal["up", "down", "left", "right"]
WindowCommand = Literal[
    "minimize", "maximize", "restore", "close", "snap_left", "snap_right", "info"
]


class Action(BaseModel):
    """One structured decision: what the oracle wants done next."""

    thought: str = Field(default="", description="Oracle rationale for this action.")
    kind: ActionKind
    params: dict = Field(default_factory=dict, description="Kind-specific arguments.")

    @property
    def is_terminal(self) -> bool:
        return self.kind in TERMINAL_KINDS


# ---------------------------------------------------------------------------
# Per-kind parameter shapes
# ---------------------------------------------------------------------------


class ClickParams(BaseModel):
    x: int
    y: int
    button: MouseButton = "left"


class DragParams(BaseModel):
    x1: int
    y1: int
    x2: int
    y2: int


class TypeParams(BaseModel):
    text: str = Field(..., min_length=1)
    delayMs: int = Field(default=0, ge=0)


class KeyParams(BaseModel):
    combo: str = Field(..., min_length=1)


class ScrollParams(BaseModel):
    direction: ScrollDirection = "down"
    amount: int = Field(default=3, gt=0)


class OpenAppParams(BaseModel):
    """open_app / navigate: either an application name or a URL."""

    name: str | None = None
    url: str | None = None

    @model_validator(mode="after")
    def _name_or_url(self):
        if not (self.name or self.url):
            raise ValueError("requires name or url")
        return self


class OpenUrlParams(BaseModel):
    url: str = Field(..., min_length=1)


class FindAndClickParams(BaseModel):
    text: str = Field(..., min_length=1)
    button: MouseButton = "left"


class WindowManageParams(BaseModel):
    action: WindowCommand


class WaitParams(BaseModel):
    ms: int = Field(default=1000, ge=0)


class DoneParams(BaseModel):
    summary: str = "Goal completed"


class ErrorParams(BaseModel):
    message: str = "Unknown error"


PARAM_MODELS: dict[ActionKind, type[BaseModel]] = {
    ActionKind.CLICK: ClickParams,
    ActionKind.DRAG: DragParams,
    ActionKind.TYPE: TypeParams,
    ActionKind.KEY: KeyParams,
    ActionKind.SCROLL: ScrollParams,
    ActionKind.OPEN_APP: OpenAppParams,
    ActionKind.NAVIGATE: OpenAppParams,
    ActionKind.OPEN_URL: OpenUrlParams,
    ActionKind.FIND_AND_CLICK: FindAndClickParams,
    ActionKind.WINDOW_MANAGE: WindowManageParams,
    ActionKind.WAIT: WaitParams,
    ActionKind.DONE: DoneParams,
    ActionKind.ERROR: ErrorParams,
}


# ---------------------------------------------------------------------------
# Run history
# ---------------------------------------------------------------------------


StepOutcome = Literal["pending", "ok", "failed", "blocked", "terminal"]


class Step(BaseModel):
    """One recorded decide/gate/execute cycle. Append-only."""

    ordinal: int = Field(..., ge=1, description="1-based position in the run history.")
    thought: str
    kind: ActionKind
    params: dict = Field(default_factory=dict)
    outcome: StepOutcome = "pending"
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def summary(self) -> str:
        return f"[{self.kind.value}] {self.thought}"


class RunResult(BaseModel):
    """Terminal output of a single agent run."""

    success: bool
    summary: str
    step_count: int = Field(..., ge=0)


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


SafetyMode = Literal["full-auto", "ask-before", "watch-only"]


class Policy(BaseModel):
    """Security policy consulted before every state-mutating action."""

    blocked_targets: list[str] = Field(default_factory=list)
    blocked_content_patterns: list[str] = Field(default_factory=list)
    blocked_keywords: list[str] = Field(default_factory=list)
    safety_mode: SafetyMode = "ask-before"
    confirmation_triggers: list[str] = Field(default_factory=list)
    max_steps: int = Field(default=25, gt=0)


class GateDecision(BaseModel):
    """Verdict returned by the safety gate for one proposed action."""

    allowed: bool
    reason: str = ""
    needs_confirmation: bool = False
    confirm_reason: str = ""


# ---------------------------------------------------------------------------
# Perception
# ---------------------------------------------------------------------------


class UIElement(BaseModel):
    """An interactive element discovered on the surface."""

    kind: str = ""
    x: int
    y: int
    width: int = 0
    height: int = 0
    name: str = ""


class Snapshot(BaseModel):
    """Transient view of the surface for exactly one cycle. Never persisted."""

    payload: bytes | str
    fingerprint: str = ""
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)
    media_type: str = "image/png"

    @field_validator("payload")
    @classmethod
    def _payload_not_empty(cls, value):
        if not value:
            raise ValueError("snapshot payload is empty")
        return value


class OracleRequest(BaseModel):
    """Everything the decision oracle is allowed to see for one decision."""

    goal: str
    payload: bytes | str
    media_type: str = "image/png"
    history: list[str] = Field(
        default_factory=list, description="Recent step summaries, oldest first."
    )
    total_steps: int = 0
    width: int
    height: int
    elements: list[UIElement] = Field(default_factory=list)
