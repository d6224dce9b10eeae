# surfaces.py
# Capability interface over the thing being driven, plus two adapters.
#
# The agent never rasterises screens or synthesises OS events itself; it
# asks a Surface. BrowserSurface routes pointer and keyboard through
# HumanMotion. DesktopSurface injects coordinates directly; the desktop
# path has no motion emulation.

import abc
import logging
import time

from surface_pilot.errors import PerceptionError, PrimitiveError
from surface_pilot.models import Snapshot, UIElement
from surface_pilot.motion import HumanMotion
from surface_pilot.progress import fingerprint

LOGGER = logging.getLogger(__name__)

# Wheel pixels per scroll "notch" requested by the oracle.
SCROLL_NOTCH_PX = 120

# Upper bound for measuring an element that count() already found.
FIND_TIMEOUT_MS = 2000


def normalize_url(url: str) -> str:
    url = url.strip()
    if not url:
        raise PrimitiveError("No URL provided")
    if not url.startswith(("http://", "https://")):
        url = "https://" + url
    return url


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------


class Surface(abc.ABC):
    """Everything the agent loop and executor need from a surface."""

    @abc.abstractmethod
    def size(self) -> tuple[int, int]:
        """(width, height) of the coordinate space clicks are given in."""

    @abc.abstractmethod
    def capture(self) -> bytes | str:
        """Raw perception payload: image bytes or a content summary."""

    def snapshot(self) -> Snapshot:
        """Capture and fingerprint the current surface state."""
        try:
            width, height = self.size()
            payload = self.capture()
        except PerceptionError:
            raise
        except Exception as exc:
            raise PerceptionError(f"Capture failed: {exc}") from exc
        if not payload:
            raise PerceptionError("Capture returned an empty payload")
        return Snapshot(
            payload=payload,
            fingerprint=fingerprint(payload),
            width=width,
            height=height,
        )

    def active_target(self) -> str:
        """Identity of the focused application or page, for the safety gate."""
        return ""

    def list_elements(self) -> list[UIElement]:
        return []

    def find_elements(self, text: str) -> list[UIElement]:
        needle = text.lower()
        return [e for e in self.list_elements() if needle in e.name.lower()]

    @abc.abstractmethod
    def click(self, x: int, y: int, button: str = "left") -> None: ...

    def click_element(self, element: UIElement, button: str = "left") -> None:
        """Click a discovered element. Defaults to its centre point."""
        self.click(element.x, element.y, button=button)

    @abc.abstractmethod
    def drag(self, x1: int, y1: int, x2: int, y2: int) -> None: ...

    @abc.abstractmethod
    def type_text(self, text: str, delay_ms: int = 0) -> None: ...

    @abc.abstractmethod
    def key(self, combo: str) -> None: ...

    @abc.abstractmethod
    def scroll(self, direction: str, amount: int) -> None: ...

    @abc.abstractmethod
    def open_app(self, name: str) -> None: ...

    @abc.abstractmethod
    def open_url(self, url: str) -> None: ...

    @abc.abstractmethod
    def window_action(self, action: str) -> str: ...

    def wait(self, ms: int) -> None:
        time.sleep(ms / 1000)


# ---------------------------------------------------------------------------
# Browser (Playwright page)
# ---------------------------------------------------------------------------


class BrowserSurface(Surface):
    """
    Drives a Playwright sync-API page.

    Pointer, keyboard and wheel input all go through HumanMotion so the
    page sees curved paths and natural timing.
    """

    def __init__(self, page, motion: HumanMotion | None = None) -> None:
        self._page = page
        self._motion = motion or HumanMotion(page)

    @property
    def motion(self) -> HumanMotion:
        return self._motion

    def size(self) -> tuple[int, int]:
        viewport = self._page.viewport_size or {}
        return int(viewport.get("width") or 1280), int(viewport.get("height") or 720)

    def capture(self) -> bytes:
        return self._page.screenshot(type="png")

    def active_target(self) -> str:
        try:
            return self._page.title()
        except Exception as exc:
            LOGGER.debug("page title unavailable: %s", exc)
            return ""

    def list_elements(self) -> list[UIElement]:
        raw = self._page.evaluate(_LIST_ELEMENTS_JS)
        elements: list[UIElement] = []
        for item in raw or []:
            try:
                elements.append(UIElement.model_validate(item))
            except ValueError:
                continue
        return elements

    def find_elements(self, text: str) -> list[UIElement]:
        locator = self._page.get_by_text(text)
        # count() does not wait; bounding_box() would block until timeout.
        if locator.count() == 0:
            return []
        box = locator.first.bounding_box(timeout=FIND_TIMEOUT_MS)
        if not box:
            return []
        return [
            UIElement(
                kind="text",
                x=int(box["x"] + box["width"] / 2),
                y=int(box["y"] + box["height"] / 2),
                width=int(box["width"]),
                height=int(box["height"]),
                name=text,
            )
        ]

    def click(self, x: int, y: int, button: str = "left") -> None:
        self._motion.click(x, y, button=button)

    def click_element(self, element: UIElement, button: str = "left") -> None:
        if element.width <= 0 or element.height <= 0:
            self.click(element.x, element.y, button=button)
            return
        self._motion.click_box(
            {
                "x": element.x - element.width / 2,
                "y": element.y - element.height / 2,
                "width": element.width,
                "height": element.height,
            },
            button=button,
        )

    def drag(self, x1: int, y1: int, x2: int, y2: int) -> None:
        self._motion.drag(x1, y1, x2, y2)

    def type_text(self, text: str, delay_ms: int = 0) -> None:
        delay_range = (delay_ms, delay_ms) if delay_ms else None
        self._motion.type_text(text, delay_range=delay_range)

    def key(self, combo: str) -> None:
        # Playwright spells chords as "Control+A"; oracles tend to say "ctrl+a".
        keys = [_PLAYWRIGHT_KEYS.get(part.lower(), part) for part in combo.split("+")]
        self._motion.press("+".join(keys))

    def scroll(self, direction: str, amount: int) -> None:
        pixels = amount * SCROLL_NOTCH_PX
        if direction == "up":
            self._motion.scroll(-pixels)
        elif direction == "down":
            self._motion.scroll(pixels)
        elif direction == "left":
            self._motion.scroll(0, -pixels)
        else:
            self._motion.scroll(0, pixels)

    def open_app(self, name: str) -> None:
        raise PrimitiveError(f"Cannot open application {name!r} from a browser surface")

    def open_url(self, url: str) -> None:
        self._page.goto(normalize_url(url), wait_until="domcontentloaded")

    def window_action(self, action: str) -> str:
        if action == "info":
            return f"{self.active_target()} | {self._page.url}"
        raise PrimitiveError(f"Window action {action!r} is not available in a browser surface")

    def wait(self, ms: int) -> None:
        self._page.wait_for_timeout(ms)


_PLAYWRIGHT_KEYS = {
    "ctrl": "Control",
    "control": "Control",
    "alt": "Alt",
    "shift": "Shift",
    "cmd": "Meta",
    "win": "Meta",
    "meta": "Meta",
    "enter": "Enter",
    "return": "Enter",
    "tab": "Tab",
    "esc": "Escape",
    "escape": "Escape",
    "backspace": "Backspace",
    "delete": "Delete",
    "space": "Space",
    "up": "ArrowUp",
    "down": "ArrowDown",
    "left": "ArrowLeft",
    "right": "ArrowRight",
    "pageup": "PageUp",
    "pagedown": "PageDown",
    "home": "Home",
    "end": "End",
}

_LIST_ELEMENTS_JS = """
() => Array.from(document.querySelectorAll(
    'a, button, input, select, textarea, [role=button], [role=link], [onclick]'
)).slice(0, 200).map(el => {
    const r = el.getBoundingClientRect();
    return {
        kind: el.tagName.toLowerCase(),
        x: Math.round(r.x + r.width / 2),
        y: Math.round(r.y + r.height / 2),
        width: Math.round(r.width),
        height: Math.round(r.height),
        name: (el.innerText || el.value || el.placeholder || el.getAttribute('aria-label') || '').trim().slice(0, 80),
    };
}).filter(e => e.width > 0 && e.height > 0 && e.name)
"""


# ---------------------------------------------------------------------------
# Desktop (pyautogui)
# ---------------------------------------------------------------------------


class DesktopSurface(Surface):
    """
    Drives the local desktop through pyautogui with direct coordinate
    injection. Element listing is not available on this path.
    """

    _WINDOW_SHORTCUTS = {
        "minimize": ("win", "down"),
        "maximize": ("win", "up"),
        "restore": ("win", "down"),
        "close": ("alt", "f4"),
        "snap_left": ("win", "left"),
        "snap_right": ("win", "right"),
    }

    def __init__(self, gui=None) -> None:
        if gui is None:
            import pyautogui as gui
        self._gui = gui

    def size(self) -> tuple[int, int]:
        width, height = self._gui.size()
        return int(width), int(height)

    def capture(self) -> bytes:
        import io

        image = self._gui.screenshot()
        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
        return buffer.getvalue()

    def active_target(self) -> str:
        getter = getattr(self._gui, "getActiveWindowTitle", None)
        if getter is None:
            return ""
        try:
            return getter() or ""
        except Exception as exc:
            LOGGER.debug("active window title unavailable: %s", exc)
            return ""

    def click(self, x: int, y: int, button: str = "left") -> None:
        if button == "double":
            self._gui.doubleClick(x, y)
        else:
            self._gui.click(x, y, button=button)

    def drag(self, x1: int, y1: int, x2: int, y2: int) -> None:
        self._gui.moveTo(x1, y1)
        self._gui.dragTo(x2, y2, duration=0.3, button="left")

    def type_text(self, text: str, delay_ms: int = 0) -> None:
        self._gui.write(text, interval=delay_ms / 1000)

    def key(self, combo: str) -> None:
        keys = [part.strip().lower() for part in combo.split("+") if part.strip()]
        if len(keys) == 1:
            self._gui.press(keys[0])
        else:
            self._gui.hotkey(*keys)

    def scroll(self, direction: str, amount: int) -> None:
        if direction in ("up", "down"):
            self._gui.scroll(amount if direction == "up" else -amount)
        else:
            self._gui.hscroll(amount if direction == "right" else -amount)

    def open_app(self, name: str) -> None:
        # Start menu search works the same way for every installed app.
        self._gui.press("win")
        time.sleep(0.5)
        self._gui.write(name, interval=0.02)
        time.sleep(0.5)
        self._gui.press("enter")

    def open_url(self, url: str) -> None:
        import webbrowser

        if not webbrowser.open(normalize_url(url)):
            raise PrimitiveError(f"No browser available to open {url}")

    def window_action(self, action: str) -> str:
        if action == "info":
            return self.active_target()
        self._gui.hotkey(*self._WINDOW_SHORTCUTS[action])
        return "OK"
