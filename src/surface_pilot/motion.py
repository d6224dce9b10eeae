# motion.py
# Human motion emulation for browser input.
#
# Turns one logical intent (move here, click there, type this, scroll that
# far) into the low-level event sequence a person would produce:
#   - pointer paths follow a randomised cubic Bezier curve, not a line
#   - every sample is jittered except the last, which lands exactly
#   - per-sample delays ease in and out (slow at both ends)
#   - clicks hover, press, hold, release
#   - typing has variable cadence, occasional typos and thinking pauses
#   - scrolling is delivered as several uneven wheel ticks
#
# Every random quantity is drawn from a (min, max) pair in MotionProfile,
# so behaviour can be asserted with range checks. The driver is any object
# with Playwright-style `mouse` and `keyboard` attributes.

import math
import random
import time
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, Field, model_validator

Point = tuple[float, float]
Sample = tuple[float, float, float]  # x, y, delay in ms

PAUSE_CHARACTERS = frozenset(" ,.;:!?")


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------


class MotionProfile(BaseModel):
    """Bounds for every randomised quantity. All times are milliseconds."""

    path_steps: tuple[int, int] = (20, 35)
    jitter: int = Field(default=2, ge=0, description="Max per-sample offset in px.")
    overshoot: int = Field(
        default=30, ge=0, description="How far control points may leave the endpoint box."
    )
    control_offset: int = Field(default=50, ge=0)
    sample_delay: tuple[float, float] = (2.0, 15.0)
    sample_noise: tuple[float, float] = (1.0, 5.0)
    hover: tuple[int, int] = (50, 200)
    press_hold: tuple[int, int] = (30, 100)
    double_click_gap: tuple[int, int] = (60, 120)
    post_click: tuple[int, int] = (100, 300)
    key_delay: tuple[int, int] = (30, 120)
    punctuation_extra: tuple[int, int] = (20, 80)
    typo_probability: float = Field(default=0.02, ge=0.0, le=1.0)
    typo_pause: tuple[int, int] = (100, 300)
    typo_correct_pause: tuple[int, int] = (50, 150)
    thinking_probability: float = Field(default=0.05, ge=0.0, le=1.0)
    thinking_pause: tuple[int, int] = (200, 500)
    scroll_slices: tuple[int, int] = (3, 8)
    scroll_noise: int = Field(default=20, ge=0)
    scroll_delay: tuple[int, int] = (50, 200)
    click_box_fraction: tuple[float, float] = (0.3, 0.7)

    @model_validator(mode="after")
    def _ordered_ranges(self):
        for name, value in self:
            if isinstance(value, tuple) and value[0] > value[1]:
                raise ValueError(f"{name}: min {value[0]} exceeds max {value[1]}")
        if self.path_steps[0] < 1 or self.scroll_slices[0] < 1:
            raise ValueError("path_steps and scroll_slices must be positive")
        return self

    @property
    def path_margin(self) -> int:
        """Furthest any path sample may stray outside the start/end box."""
        return self.overshoot + self.jitter


# ---------------------------------------------------------------------------
# Curve helpers
# ---------------------------------------------------------------------------


def bezier(t: float, p0: float, p1: float, p2: float, p3: float) -> float:
    mt = 1 - t
    return mt * mt * mt * p0 + 3 * mt * mt * t * p1 + 3 * mt * t * t * p2 + t * t * t * p3


def ease_in_out(t: float) -> float:
    """Quadratic ease-in/ease-out position curve on [0, 1]."""
    return 2 * t * t if t < 0.5 else 1 - math.pow(-2 * t + 2, 2) / 2


def ease_velocity(t: float) -> float:
    """Normalised speed of ease_in_out: 0 at both ends, 1 in the middle."""
    return 2 * t if t < 0.5 else 2 * (1 - t)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


# ---------------------------------------------------------------------------
# Emulator
# ---------------------------------------------------------------------------


class HumanMotion:
    """
    Drives a Playwright-style page with human-looking input.

    Example:
        motion = HumanMotion(page)
        motion.click(640, 360)
        motion.type_text("hello world")
    """

    def __init__(
        self,
        driver: Any,
        profile: MotionProfile | None = None,
        rng: random.Random | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._driver = driver
        self._profile = profile or MotionProfile()
        self._rng = rng or random.Random()
        self._sleep = sleep
        self._position: Point | None = None

    @property
    def profile(self) -> MotionProfile:
        return self._profile

    @property
    def position(self) -> Point | None:
        return self._position

    # ------------------------------------------------------------------
    # Random draws
    # ------------------------------------------------------------------

    def _randint(self, bounds: tuple[int, int]) -> int:
        return self._rng.randint(int(bounds[0]), int(bounds[1]))

    def _uniform(self, bounds: tuple[float, float]) -> float:
        return self._rng.uniform(bounds[0], bounds[1])

    def _pause(self, bounds: tuple[int, int]) -> None:
        self._sleep(self._randint(bounds) / 1000)

    # ------------------------------------------------------------------
    # Pointer
    # ------------------------------------------------------------------

    def _start_point(self) -> Point:
        if self._position is not None:
            return self._position
        # Nothing known yet: assume the pointer rests somewhere top-left.
        return float(self._rng.randint(100, 400)), float(self._rng.randint(100, 300))

    def plan_path(self, start: Point, end: Point) -> list[Sample]:
        """
        Sample a randomised cubic Bezier from start to end.

        Control points are clamped to the endpoint box grown by `overshoot`,
        so by the convex-hull property every sample stays within
        `profile.path_margin` of that box. The last sample is exactly `end`.
        """
        p = self._profile
        (x0, y0), (x3, y3) = start, end
        dx, dy = x3 - x0, y3 - y0

        low_x, high_x = min(x0, x3) - p.overshoot, max(x0, x3) + p.overshoot
        low_y, high_y = min(y0, y3) - p.overshoot, max(y0, y3) + p.overshoot
        near, far = p.control_offset, max(1, p.control_offset * 3 // 5)

        cp1x = _clamp(x0 + dx * self._uniform((0.2, 0.5)) + self._randint((-near, near)), low_x, high_x)
        cp1y = _clamp(y0 + dy * self._uniform((0.1, 0.4)) + self._randint((-near, near)), low_y, high_y)
        cp2x = _clamp(x0 + dx * self._uniform((0.5, 0.8)) + self._randint((-far, far)), low_x, high_x)
        cp2y = _clamp(y0 + dy * self._uniform((0.6, 0.9)) + self._randint((-far, far)), low_y, high_y)

        steps = self._randint(p.path_steps)
        delay_low, delay_high = p.sample_delay
        samples: list[Sample] = []
        for i in range(1, steps + 1):
            t = i / steps
            delay = delay_low + (delay_high - delay_low) * (1 - ease_velocity(t))
            delay += self._uniform(p.sample_noise)
            if i == steps:
                samples.append((float(x3), float(y3), delay))
                break
            x = bezier(t, x0, cp1x, cp2x, x3) + self._randint((-p.jitter, p.jitter))
            y = bezier(t, y0, cp1y, cp2y, y3) + self._randint((-p.jitter, p.jitter))
            samples.append((x, y, delay))
        return samples

    def move(self, x: float, y: float) -> list[Sample]:
        """Move the pointer along a human-looking path. Returns the samples sent."""
        samples = self.plan_path(self._start_point(), (float(x), float(y)))
        mouse = self._driver.mouse
        for sx, sy, delay in samples:
            mouse.move(sx, sy)
            self._sleep(delay / 1000)
        self._position = (float(x), float(y))
        return samples

    def _press(self, button: str) -> None:
        mouse = self._driver.mouse
        mouse.down(button=button)
        self._pause(self._profile.press_hold)
        mouse.up(button=button)

    def click(self, x: float, y: float, button: str = "left", double: bool = False) -> None:
        """Move, hover, press, hold, release. Optionally a second click."""
        if button == "double":
            button, double = "left", True
        self.move(x, y)
        self._pause(self._profile.hover)
        self._press(button)
        if double:
            self._pause(self._profile.double_click_gap)
            self._press(button)
        self._pause(self._profile.post_click)

    def click_box(self, box: dict, button: str = "left") -> Point:
        """Click slightly off-centre inside a bounding box {x, y, width, height}."""
        x = box["x"] + box["width"] * self._uniform(self._profile.click_box_fraction)
        y = box["y"] + box["height"] * self._uniform(self._profile.click_box_fraction)
        self.click(x, y, button=button)
        return x, y

    def drag(self, x1: float, y1: float, x2: float, y2: float) -> None:
        mouse = self._driver.mouse
        self.move(x1, y1)
        self._pause(self._profile.hover)
        mouse.down(button="left")
        self._pause(self._profile.press_hold)
        self.move(x2, y2)
        mouse.up(button="left")
        self._pause(self._profile.post_click)

    # ------------------------------------------------------------------
    # Keyboard
    # ------------------------------------------------------------------

    def _wrong_character(self, char: str) -> str | None:
        if not char.isalnum() or not char.isascii():
            return None
        offset = self._rng.choice((-2, -1, 1, 2))
        wrong = chr(ord(char) + offset)
        return wrong if wrong.isprintable() else None

    def type_text(
        self, text: str, delay_range: tuple[int, int] | None = None, mistakes: bool = True
    ) -> None:
        """Type text one character at a time with human cadence."""
        p = self._profile
        bounds = delay_range or p.key_delay
        keyboard = self._driver.keyboard

        for index, char in enumerate(text):
            if mistakes and index > 0 and self._rng.random() < p.typo_probability:
                wrong = self._wrong_character(char)
                if wrong is not None:
                    keyboard.type(wrong)
                    self._pause(p.typo_pause)
                    keyboard.press("Backspace")
                    self._pause(p.typo_correct_pause)

            keyboard.type(char)

            delay = self._randint(bounds)
            if char in PAUSE_CHARACTERS:
                delay += self._randint(p.punctuation_extra)
            if self._rng.random() < p.thinking_probability:
                delay += self._randint(p.thinking_pause)
            self._sleep(delay / 1000)

    def press(self, combo: str) -> None:
        self._driver.keyboard.press(combo)
        self._pause(self._profile.key_delay)

    # ------------------------------------------------------------------
    # Scrolling
    # ------------------------------------------------------------------

    def plan_scroll(self, delta: float) -> list[float]:
        """
        Split a scroll delta into uneven slices that still sum to delta.

        Noise is capped at a quarter of the even share and re-centred, so
        every slice keeps the sign of delta.
        """
        p = self._profile
        slices = self._randint(p.scroll_slices)
        per_slice = delta / slices
        spread = min(p.scroll_noise, abs(per_slice) / 4)
        noise = [self._rng.uniform(-spread, spread) for _ in range(slices)]
        mean = sum(noise) / slices
        return [per_slice + n - mean for n in noise]

    def scroll(self, delta_y: float, delta_x: float = 0.0) -> None:
        mouse = self._driver.mouse
        if delta_y:
            for part in self.plan_scroll(delta_y):
                mouse.wheel(0, part)
                self._pause(self._profile.scroll_delay)
        if delta_x:
            for part in self.plan_scroll(delta_x):
                mouse.wheel(part, 0)
                self._pause(self._profile.scroll_delay)
