# agent.py
# The agent loop. This class owns all control flow, step history, budgets
# and lifecycle events. Surface, oracle and policy store are passive
# collaborators and never talk to each other directly.
#
# Control flow, one cycle:
#   stop/pause check → PERCEIVE (retry) → CHECK_PROGRESS (stuck?)
#   → DECIDE (retry) → drop snapshot → record step → done/error?
#   → GATE (deny = annotate, continue) → EXECUTE (retry, fail = annotate,
#   continue) → SETTLE → budget check → next cycle
#
# run() never raises once the loop has started: every terminal path,
# including unexpected internal failures, returns a RunResult.

import logging
import threading
from collections.abc import Callable
from enum import Enum

from pydantic import BaseModel, Field

from surface_pilot.errors import AgentBusyError, GoalError
from surface_pilot.events import (
    DoneEvent,
    ErrorEvent,
    Event,
    EventStream,
    GateEvent,
    RetryEvent,
    StartEvent,
    StepEvent,
    StoppedEvent,
)
from surface_pilot.executor import ActionExecutor
from surface_pilot.gate import check_action
from surface_pilot.models import (
    Action,
    ActionKind,
    OracleRequest,
    Policy,
    RunResult,
    Snapshot,
    Step,
    UIElement,
)
from surface_pilot.oracle import DecisionOracle
from surface_pilot.policy import PolicyStore
from surface_pilot.progress import ProgressDetector, fingerprint
from surface_pilot.surfaces import Surface

LOGGER = logging.getLogger(__name__)

STOPPED_SUMMARY = "Agent stopped by request"

# Seconds to let the surface settle after each action kind.
SETTLE_SECONDS: dict[ActionKind, float] = {
    ActionKind.OPEN_APP: 2.0,
    ActionKind.NAVIGATE: 2.0,
    ActionKind.OPEN_URL: 2.0,
    ActionKind.WINDOW_MANAGE: 2.0,
    ActionKind.CLICK: 0.5,
    ActionKind.DRAG: 0.5,
    ActionKind.FIND_AND_CLICK: 0.5,
    # wait owns its own timing
    ActionKind.WAIT: 0.0,
}
DEFAULT_SETTLE_SECONDS = 0.8


class AgentState(str, Enum):
    INIT = "init"
    PERCEIVE = "perceive"
    CHECK_PROGRESS = "check_progress"
    DECIDE = "decide"
    GATE = "gate"
    EXECUTE = "execute"
    SETTLE = "settle"
    PAUSED = "paused"
    DONE = "done"
    ERROR = "error"
    STOPPED = "stopped"


class LoopSettings(BaseModel):
    """Budgets and timings for one AgentLoop. Defaults match production use."""

    max_steps: int | None = Field(
        default=None, gt=0, description="Overrides the policy's max_steps when set."
    )
    perception_retries: int = Field(default=2, ge=0)
    perception_retry_delay: float = Field(default=0.5, ge=0)
    decision_retries: int = Field(default=2, ge=0)
    decision_retry_delay: float = Field(default=1.0, ge=0)
    action_retries: int = Field(default=2, ge=0)
    action_retry_delay: float = Field(default=0.3, ge=0)
    pause_poll: float = Field(default=0.2, gt=0)
    history_window: int = Field(default=5, gt=0)
    stuck_threshold: int = Field(default=3, ge=2)
    live_policy: bool = Field(
        default=False, description="Re-read the policy file on every gate check."
    )


class _Halt(Exception):
    """Internal: unwinds a cycle with the run's final result."""

    def __init__(self, result: RunResult) -> None:
        super().__init__(result.summary)
        self.result = result


# ---------------------------------------------------------------------------
# Agent loop
# ---------------------------------------------------------------------------


class AgentLoop:
    """
    Perceive → decide → gate → act, until done, error, stop or budget.

    Example:
        loop = AgentLoop(surface, oracle, PolicyStore())
        loop.events.subscribe(display.render)
        result = loop.run("Open example.com")

    sleep is injectable for tests; by default waits block on the stop
    signal so stop() interrupts them promptly.
    """

    def __init__(
        self,
        surface: Surface,
        oracle: DecisionOracle,
        policy_store: PolicyStore,
        *,
        events: EventStream | None = None,
        settings: LoopSettings | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self._surface = surface
        self._oracle = oracle
        self._policy_store = policy_store
        self._events = events or EventStream()
        self._settings = settings or LoopSettings()
        self._sleep = sleep
        self._executor = ActionExecutor(
            surface,
            retries=self._settings.action_retries,
            retry_delay=self._settings.action_retry_delay,
            sleep=self._wait,
        )
        self._detector = ProgressDetector(self._settings.stuck_threshold)

        self._state = AgentState.INIT
        self._running = False
        self._stop = threading.Event()
        self._pause = threading.Event()
        self._history: list[Step] = []
        self._policy: Policy | None = None
        self._goal = ""

    # ------------------------------------------------------------------
    # Public control surface
    # ------------------------------------------------------------------

    @property
    def events(self) -> EventStream:
        return self._events

    @property
    def state(self) -> AgentState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_paused(self) -> bool:
        return self._pause.is_set()

    @property
    def step_count(self) -> int:
        return len(self._history)

    @property
    def history(self) -> list[Step]:
        """Copies of every recorded step, oldest first."""
        return [step.model_copy() for step in self._history]

    def stop(self) -> None:
        """Ask the loop to stop at its next wait point. Also ends a pause."""
        self._stop.set()
        self._pause.clear()

    def pause(self) -> None:
        self._pause.set()

    def resume(self) -> None:
        self._pause.clear()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(self, goal: str) -> RunResult:
        """
        Drive the surface toward goal.

        Raises AgentBusyError if a run is already active and GoalError if
        goal is blank. Every other outcome is reported in the RunResult.
        """
        if self._running:
            raise AgentBusyError("Agent already running")
        if not isinstance(goal, str) or not goal.strip():
            raise GoalError("No goal provided")

        self._running = True
        self._goal = goal.strip()
        self._history = []
        self._policy = None
        self._stop.clear()
        self._pause.clear()
        self._detector.reset()
        self._events.reset()
        self._enter(AgentState.INIT)
        self._emit(StartEvent(goal=self._goal))

        try:
            return self._run_cycles()
        except _Halt as halt:
            return halt.result
        except Exception as exc:
            LOGGER.exception("agent loop crashed")
            return self._finish_error(f"Unexpected failure: {exc}")
        finally:
            self._running = False

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def _run_cycles(self) -> RunResult:
        max_steps = self._settings.max_steps or self._current_policy().max_steps

        while True:
            self._await_resume()
            if self._stop.is_set():
                return self._finish_stopped()
            if len(self._history) >= max_steps:
                return self._finish_error(
                    f"Stopped: reached maximum {max_steps} steps without completing goal"
                )

            snapshot = self._perceive()

            self._enter(AgentState.CHECK_PROGRESS)
            if self._detector.observe(fingerprint(snapshot.payload)):
                return self._finish_error(
                    f"Stuck: surface unchanged for {self._detector.repeats} "
                    "consecutive cycles. Stopping."
                )
            elements = self._optional_elements()

            action = self._decide(snapshot, elements)
            # The snapshot lives for this cycle only.
            del snapshot

            step = self._record(action)
            if action.kind is ActionKind.DONE:
                step.outcome = "terminal"
                return self._finish_done(str(action.params.get("summary") or "Goal completed"))
            if action.kind is ActionKind.ERROR:
                step.outcome = "terminal"
                return self._finish_error(str(action.params.get("message") or "Unknown error"))

            if self._gate(step, action):
                self._execute(step, action)

            self._enter(AgentState.SETTLE)
            self._wait(SETTLE_SECONDS.get(action.kind, DEFAULT_SETTLE_SECONDS))

    def _await_resume(self) -> None:
        while self._pause.is_set() and not self._stop.is_set():
            self._enter(AgentState.PAUSED)
            self._wait(self._settings.pause_poll)

    def _perceive(self) -> Snapshot:
        self._enter(AgentState.PERCEIVE)
        attempts = self._settings.perception_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return self._surface.snapshot()
            except Exception as exc:
                if attempt == attempts:
                    raise _Halt(
                        self._finish_error(
                            f"Perception failed after {attempts} attempts: {exc}"
                        )
                    ) from exc
                LOGGER.warning("perception attempt %d/%d failed: %s", attempt, attempts, exc)
                self._emit(RetryEvent(stage="perceive", attempt=attempt, message=str(exc)))
                self._retry_wait(self._settings.perception_retry_delay)
        raise AssertionError("unreachable")

    def _optional_elements(self) -> list[UIElement]:
        """Best-effort enrichment; absence never blocks a cycle."""
        try:
            return list(self._surface.list_elements())
        except Exception as exc:
            LOGGER.debug("element listing unavailable: %s", exc)
            return []

    def _decide(self, snapshot: Snapshot, elements: list[UIElement]) -> Action:
        self._enter(AgentState.DECIDE)
        window = self._history[-self._settings.history_window:]
        request = OracleRequest(
            goal=self._goal,
            payload=snapshot.payload,
            media_type=snapshot.media_type,
            history=[step.summary() for step in window],
            total_steps=len(self._history),
            width=snapshot.width,
            height=snapshot.height,
            elements=elements,
        )
        attempts = self._settings.decision_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return self._oracle.decide(request)
            except Exception as exc:
                if attempt == attempts:
                    raise _Halt(
                        self._finish_error(
                            f"Decision failed after {attempts} attempts: {exc}"
                        )
                    ) from exc
                LOGGER.warning("decision attempt %d/%d failed: %s", attempt, attempts, exc)
                self._emit(RetryEvent(stage="decide", attempt=attempt, message=str(exc)))
                self._retry_wait(self._settings.decision_retry_delay)
        raise AssertionError("unreachable")

    def _record(self, action: Action) -> Step:
        step = Step(
            ordinal=len(self._history) + 1,
            thought=action.thought,
            kind=action.kind,
            params=dict(action.params),
        )
        self._history.append(step)
        self._emit(
            StepEvent(
                ordinal=step.ordinal,
                thought=step.thought,
                action=step.kind.value,
                params=step.params,
            )
        )
        return step

    def _gate(self, step: Step, action: Action) -> bool:
        """Return True when the action may run. Denials annotate the step."""
        self._enter(AgentState.GATE)
        policy = self._current_policy(reload=self._settings.live_policy)
        verdict = check_action(policy, self._active_target(), action)

        if not verdict.allowed:
            LOGGER.warning("step %d blocked: %s", step.ordinal, verdict.reason)
            step.thought += f" [BLOCKED: {verdict.reason}]"
            step.outcome = "blocked"
        elif verdict.needs_confirmation:
            LOGGER.info("step %d needs confirmation: %s", step.ordinal, verdict.confirm_reason)

        if not verdict.allowed or verdict.needs_confirmation:
            self._emit(
                GateEvent(
                    ordinal=step.ordinal,
                    allowed=verdict.allowed,
                    reason=verdict.reason,
                    needs_confirmation=verdict.needs_confirmation,
                    confirm_reason=verdict.confirm_reason,
                )
            )
        return verdict.allowed

    def _execute(self, step: Step, action: Action) -> None:
        self._enter(AgentState.EXECUTE)

        def on_retry(attempt: int, exc: Exception) -> None:
            self._emit(RetryEvent(stage="execute", attempt=attempt, message=str(exc)))

        try:
            self._executor.execute(action, on_retry=on_retry)
        except Exception as exc:
            # Primitive failures are never fatal: the oracle sees the
            # unchanged surface next cycle and adapts.
            LOGGER.warning("step %d failed: %s", step.ordinal, exc)
            step.thought += f" [FAILED: {exc}]"
            step.outcome = "failed"
            self._emit(
                StepEvent(
                    ordinal=step.ordinal,
                    thought=f'Action "{action.kind.value}" failed: {exc}',
                    action="error_recovery",
                )
            )
            return
        step.outcome = "ok"

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _current_policy(self, reload: bool = False) -> Policy:
        if self._policy is None or reload:
            self._policy = self._policy_store.load()
        return self._policy

    def _active_target(self) -> str:
        try:
            return self._surface.active_target() or ""
        except Exception as exc:
            LOGGER.debug("active target unavailable: %s", exc)
            return ""

    def _enter(self, state: AgentState) -> None:
        if state is not self._state:
            LOGGER.debug("state %s → %s", self._state.value, state.value)
        self._state = state

    def _emit(self, event: Event) -> None:
        self._events.emit(event)

    def _wait(self, seconds: float) -> None:
        if seconds <= 0:
            return
        if self._sleep is None:
            self._stop.wait(seconds)
        else:
            self._sleep(seconds)

    def _retry_wait(self, seconds: float) -> None:
        self._wait(seconds)
        if self._stop.is_set():
            raise _Halt(self._finish_stopped())

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def _finish_done(self, summary: str) -> RunResult:
        self._enter(AgentState.DONE)
        count = len(self._history)
        self._emit(DoneEvent(summary=summary, step_count=count))
        return RunResult(success=True, summary=summary, step_count=count)

    def _finish_error(self, message: str) -> RunResult:
        self._enter(AgentState.ERROR)
        count = len(self._history)
        LOGGER.error("run ended with error after %d step(s): %s", count, message)
        self._emit(ErrorEvent(message=message, step_count=count))
        return RunResult(success=False, summary=message, step_count=count)

    def _finish_stopped(self) -> RunResult:
        self._enter(AgentState.STOPPED)
        count = len(self._history)
        self._emit(StoppedEvent(reason=STOPPED_SUMMARY, step_count=count))
        return RunResult(success=False, summary=STOPPED_SUMMARY, step_count=count)
