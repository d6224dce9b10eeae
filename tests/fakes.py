# Test doubles for the surface and the decision oracle.

from surface_pilot.models import Action, ActionKind
from surface_pilot.oracle import DecisionOracle
from surface_pilot.surfaces import Surface

# ---------------------------------------------------------------------------
# Surface and oracle
# ---------------------------------------------------------------------------


class FakeSurface(Surface):
    """
    In-memory surface. Every capture returns a fresh payload unless a fixed
    payload sequence is given; the last payload repeats once exhausted.
    """

    def __init__(self, payloads=None, target="", size=(1280, 800), elements=None):
        self._payloads = list(payloads) if payloads else None
        self._frame = 0
        self._size = size
        self.target = target
        self.elements = list(elements or [])
        self.calls = []
        self.capture_errors = []
        self.failures = {}

    def size(self):
        return self._size

    def capture(self):
        if self.capture_errors:
            raise self.capture_errors.pop(0)
        self._frame += 1
        if self._payloads is None:
            return f"frame-{self._frame:04d}".encode()
        return self._payloads[min(self._frame, len(self._payloads)) - 1]

    def active_target(self):
        return self.target

    def list_elements(self):
        return list(self.elements)

    def _record(self, name, *args):
        self.calls.append((name, *args))
        if name in self.failures:
            raise self.failures[name]

    def click(self, x, y, button="left"):
        self._record("click", x, y, button)

    def drag(self, x1, y1, x2, y2):
        self._record("drag", x1, y1, x2, y2)

    def type_text(self, text, delay_ms=0):
        self._record("type_text", text, delay_ms)

    def key(self, combo):
        self._record("key", combo)

    def scroll(self, direction, amount):
        self._record("scroll", direction, amount)

    def open_app(self, name):
        self._record("open_app", name)

    def open_url(self, url):
        self._record("open_url", url)

    def window_action(self, action):
        self._record("window_action", action)
        return "OK"

    def wait(self, ms):
        self._record("wait", ms)

    def names(self):
        return [call[0] for call in self.calls]


class ScriptedOracle(DecisionOracle):
    """
    Replays a script of Actions. An item may also be an exception (raised)
    or a callable taking the request (its return value is used). The last
    item repeats once the script runs out.
    """

    name = "scripted"

    def __init__(self, script):
        self._script = list(script)
        self._index = 0
        self.requests = []

    def decide(self, request):
        self.requests.append(request)
        item = self._script[min(self._index, len(self._script) - 1)]
        self._index += 1
        if isinstance(item, Exception):
            raise item
        if callable(item):
            return item(request)
        return item


def act(kind, thought="", **params):
    return Action(thought=thought, kind=ActionKind(kind), params=params)
