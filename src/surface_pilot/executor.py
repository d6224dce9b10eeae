# executor.py
# Maps one validated Action onto Surface primitives.
#
# Validation happens before any side effect: a malformed or out-of-bounds
# action never half-executes. Validation failures are not retried;
# primitive failures are, a bounded number of times.

import logging
import time
from collections.abc import Callable

from pydantic import BaseModel, ValidationError

from surface_pilot.errors import ActionValidationError, PrimitiveError
from surface_pilot.models import (
    PARAM_MODELS,
    Action,
    ActionKind,
    ClickParams,
    DragParams,
    FindAndClickParams,
    KeyParams,
    OpenAppParams,
    OpenUrlParams,
    ScrollParams,
    TypeParams,
    WaitParams,
    WindowManageParams,
)
from surface_pilot.surfaces import Surface

LOGGER = logging.getLogger(__name__)

DEFAULT_RETRIES = 2
DEFAULT_RETRY_DELAY = 0.3

RetryHook = Callable[[int, Exception], None]


class ActionExecutor:
    """
    Validates and runs actions against a Surface.

    retries is the number of extra attempts after the first, so the default
    gives three attempts in total.
    """

    def __init__(
        self,
        surface: Surface,
        retries: int = DEFAULT_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if retries < 0:
            raise ValueError("retries must be >= 0")
        self._surface = surface
        self._retries = retries
        self._retry_delay = retry_delay
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _check_point(self, x: int, y: int, label: str = "") -> None:
        width, height = self._surface.size()
        if not (0 <= x < width and 0 <= y < height):
            where = f"{label} " if label else ""
            raise ActionValidationError(
                f"{where}({x}, {y}) is outside the surface bounds {width}x{height}"
            )

    def validate(self, action: Action) -> BaseModel:
        """Return the typed params for action, or raise ActionValidationError."""
        if action.is_terminal:
            raise ActionValidationError(f"'{action.kind.value}' is terminal and cannot be executed")
        try:
            params = PARAM_MODELS[action.kind].model_validate(action.params)
        except ValidationError as exc:
            raise ActionValidationError(
                f"Invalid params for {action.kind.value}: {exc.errors(include_url=False)}"
            ) from exc

        if isinstance(params, ClickParams):
            self._check_point(params.x, params.y)
        elif isinstance(params, DragParams):
            self._check_point(params.x1, params.y1, "drag start")
            self._check_point(params.x2, params.y2, "drag end")
        return params

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _dispatch(self, kind: ActionKind, params: BaseModel) -> None:
        surface = self._surface
        if isinstance(params, ClickParams):
            surface.click(params.x, params.y, button=params.button)
        elif isinstance(params, DragParams):
            surface.drag(params.x1, params.y1, params.x2, params.y2)
        elif isinstance(params, TypeParams):
            surface.type_text(params.text, delay_ms=params.delayMs)
        elif isinstance(params, KeyParams):
            surface.key(params.combo)
        elif isinstance(params, ScrollParams):
            surface.scroll(params.direction, params.amount)
        elif isinstance(params, OpenAppParams):
            if params.url and (kind is ActionKind.NAVIGATE or not params.name):
                surface.open_url(params.url)
            else:
                surface.open_app(params.name)
        elif isinstance(params, OpenUrlParams):
            surface.open_url(params.url)
        elif isinstance(params, FindAndClickParams):
            matches = surface.find_elements(params.text)
            if not matches:
                raise PrimitiveError(f'Element "{params.text}" not found')
            target = matches[0]
            self._check_point(target.x, target.y, f'Element "{params.text}"')
            surface.click_element(target, button=params.button)
        elif isinstance(params, WindowManageParams):
            surface.window_action(params.action)
        elif isinstance(params, WaitParams):
            surface.wait(params.ms)
        else:
            raise ActionValidationError(f"Unknown action: {kind.value}")

    def execute(self, action: Action, on_retry: RetryHook | None = None) -> None:
        """
        Run action with bounded retries.

        Raises ActionValidationError immediately, or PrimitiveError once every
        attempt has failed.
        """
        params = self.validate(action)
        attempts = self._retries + 1
        for attempt in range(1, attempts + 1):
            try:
                self._dispatch(action.kind, params)
                return
            except ActionValidationError:
                raise
            except Exception as exc:
                if attempt == attempts:
                    raise PrimitiveError(
                        f'Action "{action.kind.value}" failed after {attempts} attempts: {exc}'
                    ) from exc
                LOGGER.info(
                    "action %s failed (attempt %d/%d): %s",
                    action.kind.value,
                    attempt,
                    attempts,
                    exc,
                )
                if on_retry is not None:
                    on_retry(attempt, exc)
                self._sleep(self._retry_delay)
