import pytest
from unittest.mock import MagicMock

from fakes import FakeSurface, ScriptedOracle, act
from surface_pilot.agent import STOPPED_SUMMARY, AgentLoop, AgentState, LoopSettings
from surface_pilot.errors import AgentBusyError, GoalError, OracleTransportError, PolicyError
from surface_pilot.events import TERMINAL_EVENT_TYPES


def make_loop(surface, oracle, store, sleeps=None, **settings):
    recorded = sleeps if sleeps is not None else []
    return AgentLoop(
        surface,
        oracle,
        store,
        settings=LoopSettings(**settings),
        sleep=recorded.append,
    )


def event_types(loop):
    return [event.type for event in loop.events.events]


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------

def test_open_url_then_done(full_auto_store):
    surface = FakeSurface()
    oracle = ScriptedOracle([
        act("open_url", "Open the site", url="example.com"),
        act("done", "Page is open", summary="Opened example.com"),
    ])
    sleeps = []
    loop = make_loop(surface, oracle, full_auto_store, sleeps)

    result = loop.run("Open example.com")

    assert result.success is True
    assert result.summary == "Opened example.com"
    assert result.step_count == 2
    assert surface.calls == [("open_url", "example.com")]
    assert event_types(loop) == ["start", "step", "step", "done"]
    # open_url settles for two seconds before the next perception
    assert sleeps == [2.0]
    assert loop.state is AgentState.DONE
    assert loop.is_running is False

def test_goal_is_stripped_in_start_event(full_auto_store):
    oracle = ScriptedOracle([act("done", summary="ok")])
    loop = make_loop(FakeSurface(), oracle, full_auto_store)
    loop.run("   do the thing  ")
    assert loop.events.events[0].goal == "do the thing"
    assert oracle.requests[0].goal == "do the thing"

def test_step_ordinals_match_history_length(full_auto_store):
    oracle = ScriptedOracle([act("wait", ms=0)] * 4 + [act("done")])
    loop = make_loop(FakeSurface(), oracle, full_auto_store)
    loop.run("wait a bit")
    assert [step.ordinal for step in loop.history] == [1, 2, 3, 4, 5]
    assert loop.step_count == 5

def test_done_without_summary_uses_default(full_auto_store):
    loop = make_loop(FakeSurface(), ScriptedOracle([act("done")]), full_auto_store)
    result = loop.run("anything")
    assert result.summary == "Goal completed"

# ---------------------------------------------------------------------------
# Input errors
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("goal", ["", "   ", "\n\t"])
def test_blank_goal_raises_before_perceiving(full_auto_store, goal):
    surface = FakeSurface()
    oracle = ScriptedOracle([act("done")])
    loop = make_loop(surface, oracle, full_auto_store)

    with pytest.raises(GoalError, match="No goal provided"):
        loop.run(goal)

    assert surface._frame == 0
    assert oracle.requests == []
    assert loop.events.events == []
    assert loop.is_running is False

def test_run_while_running_raises_busy(full_auto_store):
    errors = []

    def reenter(request):
        try:
            loop.run("second goal")
        except AgentBusyError as exc:
            errors.append(str(exc))
        return act("done", summary="first finished")

    oracle = ScriptedOracle([reenter])
    loop = make_loop(FakeSurface(), oracle, full_auto_store)

    result = loop.run("first goal")

    assert errors == ["Agent already running"]
    assert result.success is True
    # the rejected call must not disturb the active run
    assert loop.step_count == 1

def test_loop_can_run_again_after_finishing(full_auto_store):
    oracle = ScriptedOracle([act("done", summary="ok")])
    loop = make_loop(FakeSurface(), oracle, full_auto_store)
    loop.run("first")
    result = loop.run("second")
    assert result.success is True
    assert loop.step_count == 1
    assert event_types(loop) == ["start", "step", "done"]

# ---------------------------------------------------------------------------
# Budget
# ---------------------------------------------------------------------------

def test_max_steps_bounds_the_run(full_auto_store):
    oracle = ScriptedOracle([act("wait", "still waiting", ms=0)])
    loop = make_loop(FakeSurface(), oracle, full_auto_store, max_steps=5)

    result = loop.run("never finishes")

    assert result.success is False
    assert result.step_count == 5
    assert result.summary == "Stopped: reached maximum 5 steps without completing goal"
    assert len(oracle.requests) == 5
    assert event_types(loop)[-1] == "error"

def test_max_steps_comes_from_policy_by_default(policy_store):
    policy = policy_store.load()
    policy_store.save(policy.model_copy(update={"max_steps": 3, "safety_mode": "full-auto"}))
    oracle = ScriptedOracle([act("wait", ms=0)])
    loop = make_loop(FakeSurface(), oracle, policy_store)

    result = loop.run("never finishes")

    assert result.step_count == 3
    assert "maximum 3 steps" in result.summary

# ---------------------------------------------------------------------------
# Stuck detection
# ---------------------------------------------------------------------------

def test_three_identical_snapshots_abort(full_auto_store):
    surface = FakeSurface(payloads=[b"same screen"])
    oracle = ScriptedOracle([act("wait", ms=0)])
    loop = make_loop(surface, oracle, full_auto_store)

    result = loop.run("make progress")

    assert result.success is False
    assert result.summary == "Stuck: surface unchanged for 3 consecutive cycles. Stopping."
    # the third perception aborts before a third decision
    assert len(oracle.requests) == 2
    assert result.step_count == 2

def test_change_on_third_snapshot_is_not_stuck(full_auto_store):
    surface = FakeSurface(payloads=[b"same screen", b"same screen", b"new screen"])
    oracle = ScriptedOracle([act("wait", ms=0), act("wait", ms=0), act("done", summary="moved on")])
    loop = make_loop(surface, oracle, full_auto_store)

    result = loop.run("make progress")

    assert result.success is True
    assert result.step_count == 3

def test_stuck_threshold_is_configurable(full_auto_store):
    surface = FakeSurface(payloads=[b"same screen"])
    oracle = ScriptedOracle([act("wait", ms=0)])
    loop = make_loop(surface, oracle, full_auto_store, stuck_threshold=5)
    result = loop.run("make progress")
    assert "5 consecutive cycles" in result.summary
    assert result.step_count == 4

# ---------------------------------------------------------------------------
# Safety gate
# ---------------------------------------------------------------------------

def test_blocked_target_denies_and_annotates(policy_store):
    surface = FakeSurface(target="KeePass - passwords.kdbx")
    oracle = ScriptedOracle([
        act("click", "Open the entry", x=10, y=10),
        act("done", summary="gave up"),
    ])
    loop = make_loop(surface, oracle, policy_store)

    result = loop.run("read my passwords")

    assert result.success is True
    assert "click" not in surface.names()
    step = loop.history[0]
    assert step.outcome == "blocked"
    assert "[BLOCKED: " in step.thought
    assert "KeePass" in step.thought
    gate_events = [e for e in loop.events.events if e.type == "gate"]
    assert len(gate_events) == 1
    assert gate_events[0].allowed is False
    assert gate_events[0].ordinal == 1

def test_blocked_destination_is_not_opened(policy_store):
    surface = FakeSurface()
    oracle = ScriptedOracle([
        act("open_url", "Go to the bank", url="https://secure.bank.example/login"),
        act("done"),
    ])
    loop = make_loop(surface, oracle, policy_store)
    loop.run("check balance")
    assert "open_url" not in surface.names()
    assert loop.history[0].outcome == "blocked"

def test_open_app_by_url_is_gated_like_open_url(policy_store):
    surface = FakeSurface()
    oracle = ScriptedOracle([
        act("open_app", "Open the bank", url="https://secure.bank.example/login"),
        act("done"),
    ])
    loop = make_loop(surface, oracle, policy_store)
    loop.run("check balance")
    assert "open_url" not in surface.names()
    assert "open_app" not in surface.names()
    assert loop.history[0].outcome == "blocked"

def test_card_number_is_never_typed(policy_store):
    surface = FakeSurface()
    oracle = ScriptedOracle([
        act("type", "Fill the field", text="4111 1111 1111 1111"),
        act("done"),
    ])
    loop = make_loop(surface, oracle, policy_store)
    loop.run("fill the form")
    assert "type_text" not in surface.names()
    assert "payment card" in loop.history[0].thought

def test_oracle_sees_blocked_annotation_next_cycle(policy_store):
    surface = FakeSurface(target="Bitwarden")
    oracle = ScriptedOracle([act("key", "Copy it", combo="ctrl+c"), act("done")])
    loop = make_loop(surface, oracle, policy_store)
    loop.run("copy secret")
    assert "[BLOCKED: " in oracle.requests[1].history[0]

def test_confirmation_is_advisory(policy_store):
    surface = FakeSurface()
    oracle = ScriptedOracle([
        act("click", "Click the Send button", x=100, y=200),
        act("done"),
    ])
    loop = make_loop(surface, oracle, policy_store)

    loop.run("send the email")

    assert ("click", 100, 200, "left") in surface.calls
    assert loop.history[0].outcome == "ok"
    gate_events = [e for e in loop.events.events if e.type == "gate"]
    assert len(gate_events) == 1
    assert gate_events[0].allowed is True
    assert gate_events[0].needs_confirmation is True

def test_policy_cached_per_run_by_default(policy_store):
    policy_store.save(policy_store.load().model_copy(update={"safety_mode": "full-auto"}))
    surface = FakeSurface(target="Text Editor")

    def tighten(request):
        policy = policy_store.load()
        policy_store.save(policy.model_copy(update={"blocked_targets": ["Text Editor"]}))
        return act("key", "Save", combo="ctrl+s")

    oracle = ScriptedOracle([tighten, act("done")])
    loop = make_loop(surface, oracle, policy_store)
    loop.run("save the file")

    assert ("key", "ctrl+s") in surface.calls

def test_live_policy_rereads_before_each_gate(policy_store):
    policy_store.save(policy_store.load().model_copy(update={"safety_mode": "full-auto"}))
    surface = FakeSurface(target="Text Editor")

    def tighten(request):
        policy = policy_store.load()
        policy_store.save(policy.model_copy(update={"blocked_targets": ["Text Editor"]}))
        return act("key", "Save", combo="ctrl+s")

    oracle = ScriptedOracle([tighten, act("done")])
    loop = make_loop(surface, oracle, policy_store, live_policy=True)
    loop.run("save the file")

    assert surface.calls == []
    assert loop.history[0].outcome == "blocked"

# ---------------------------------------------------------------------------
# Execution failures
# ---------------------------------------------------------------------------

def test_failed_primitive_is_annotated_and_run_continues(full_auto_store):
    surface = FakeSurface()
    surface.failures["click"] = RuntimeError("element detached")
    oracle = ScriptedOracle([act("click", "Press it", x=5, y=5), act("done", summary="recovered")])
    sleeps = []
    loop = make_loop(surface, oracle, full_auto_store, sleeps)

    result = loop.run("press the button")

    assert result.success is True
    assert surface.names().count("click") == 3
    step = loop.history[0]
    assert step.outcome == "failed"
    assert "[FAILED: " in step.thought
    assert "element detached" in step.thought
    retries = [e for e in loop.events.events if e.type == "retry"]
    assert [(e.stage, e.attempt) for e in retries] == [("execute", 1), ("execute", 2)]
    recovery = [e for e in loop.events.events if e.type == "step" and e.action == "error_recovery"]
    assert len(recovery) == 1
    assert recovery[0].ordinal == 1
    assert sleeps[:2] == [0.3, 0.3]

def test_invalid_action_fails_without_retry(full_auto_store):
    surface = FakeSurface(size=(800, 600))
    oracle = ScriptedOracle([act("click", "Way off", x=5000, y=10), act("done")])
    loop = make_loop(surface, oracle, full_auto_store)

    loop.run("click outside")

    assert surface.calls == []
    assert loop.history[0].outcome == "failed"
    assert "outside the surface bounds" in loop.history[0].thought
    assert not [e for e in loop.events.events if e.type == "retry"]

def test_oracle_error_action_ends_run(full_auto_store):
    oracle = ScriptedOracle([act("error", "No way", message="Goal is impossible")])
    loop = make_loop(FakeSurface(), oracle, full_auto_store)
    result = loop.run("impossible")
    assert result.success is False
    assert result.summary == "Goal is impossible"
    assert result.step_count == 1
    assert loop.history[0].outcome == "terminal"

# ---------------------------------------------------------------------------
# Transport retries
# ---------------------------------------------------------------------------

def test_perception_retries_then_recovers(full_auto_store):
    surface = FakeSurface()
    surface.capture_errors = [RuntimeError("gpu busy"), RuntimeError("gpu busy")]
    loop = make_loop(surface, ScriptedOracle([act("done")]), full_auto_store)

    result = loop.run("look")

    assert result.success is True
    retries = [e for e in loop.events.events if e.type == "retry"]
    assert [e.stage for e in retries] == ["perceive", "perceive"]

def test_perception_failure_exhausts_retries(full_auto_store):
    surface = FakeSurface()
    surface.capture_errors = [RuntimeError("no display")] * 3
    oracle = ScriptedOracle([act("done")])
    sleeps = []
    loop = make_loop(surface, oracle, full_auto_store, sleeps)

    result = loop.run("look")

    assert result.success is False
    assert result.summary.startswith("Perception failed after 3 attempts")
    assert "no display" in result.summary
    assert result.step_count == 0
    assert oracle.requests == []
    assert sleeps == [0.5, 0.5]

def test_empty_capture_counts_as_perception_failure(full_auto_store):
    surface = FakeSurface(payloads=[b""])
    loop = make_loop(surface, ScriptedOracle([act("done")]), full_auto_store)
    result = loop.run("look")
    assert result.summary.startswith("Perception failed")

def test_decision_retries_then_recovers(full_auto_store):
    oracle = ScriptedOracle([OracleTransportError("timeout"), act("done", summary="ok")])
    sleeps = []
    loop = make_loop(FakeSurface(), oracle, full_auto_store, sleeps)

    result = loop.run("decide")

    assert result.success is True
    assert sleeps == [1.0]
    assert [e.stage for e in loop.events.events if e.type == "retry"] == ["decide"]

def test_decision_failure_exhausts_retries(full_auto_store):
    oracle = ScriptedOracle([OracleTransportError("unreachable")])
    loop = make_loop(FakeSurface(), oracle, full_auto_store)

    result = loop.run("decide")

    assert result.success is False
    assert result.summary.startswith("Decision failed after 3 attempts")
    assert len(oracle.requests) == 3
    assert result.step_count == 0

def test_unexpected_failure_becomes_error_result():
    store = MagicMock()
    store.load.side_effect = PolicyError("policy file is broken")
    loop = make_loop(FakeSurface(), ScriptedOracle([act("done")]), store)

    result = loop.run("anything")

    assert result.success is False
    assert result.summary == "Unexpected failure: policy file is broken"
    assert loop.is_running is False
    assert event_types(loop) == ["start", "error"]

# ---------------------------------------------------------------------------
# Stop / pause
# ---------------------------------------------------------------------------

def test_stop_ends_run_at_next_check(full_auto_store):
    def stop_then_wait(request):
        loop.stop()
        return act("wait", ms=0)

    oracle = ScriptedOracle([stop_then_wait, act("done")])
    loop = make_loop(FakeSurface(), oracle, full_auto_store)

    result = loop.run("keep going")

    assert result.success is False
    assert result.summary == STOPPED_SUMMARY
    assert result.step_count == 1
    assert event_types(loop)[-1] == "stopped"
    assert loop.state is AgentState.STOPPED

def test_stop_during_retry_wait_stops(full_auto_store):
    def stop_while_sleeping(seconds):
        loop.stop()

    oracle = ScriptedOracle([OracleTransportError("slow")])
    loop = AgentLoop(FakeSurface(), oracle, full_auto_store, sleep=stop_while_sleeping)

    result = loop.run("decide")

    assert result.summary == STOPPED_SUMMARY
    assert len(oracle.requests) == 1

def test_pause_holds_until_resume(full_auto_store):
    seen = []

    def pause_then_wait(request):
        loop.pause()
        return act("wait", ms=0)

    def sleep(seconds):
        seen.append((seconds, loop.state, loop.is_paused))
        if loop.is_paused:
            loop.resume()

    oracle = ScriptedOracle([pause_then_wait, act("done", summary="resumed")])
    loop = AgentLoop(FakeSurface(), oracle, full_auto_store, sleep=sleep)

    result = loop.run("pause midway")

    assert result.success is True
    assert (0.2, AgentState.PAUSED, True) in seen
    assert len(oracle.requests) == 2

# ---------------------------------------------------------------------------
# Oracle context
# ---------------------------------------------------------------------------

def test_history_window_is_recent_and_chronological(full_auto_store):
    script = [act("wait", f"step {n}", ms=0) for n in range(1, 8)] + [act("done")]
    oracle = ScriptedOracle(script)
    loop = make_loop(FakeSurface(), oracle, full_auto_store)

    loop.run("count")

    last = oracle.requests[-1]
    assert last.total_steps == 7
    assert last.history == [f"[wait] step {n}" for n in range(3, 8)]

def test_request_carries_surface_metadata_and_elements(full_auto_store):
    from surface_pilot.models import UIElement

    button = UIElement(kind="button", x=50, y=60, name="Submit")
    surface = FakeSurface(size=(1024, 768), elements=[button])
    oracle = ScriptedOracle([act("done")])
    loop = make_loop(surface, oracle, full_auto_store)

    loop.run("look")

    request = oracle.requests[0]
    assert (request.width, request.height) == (1024, 768)
    assert request.elements == [button]
    assert request.payload == b"frame-0001"

def test_snapshot_never_enters_history(full_auto_store):
    surface = FakeSurface(payloads=[b"SECRET-PIXELS-1", b"SECRET-PIXELS-2"])
    oracle = ScriptedOracle([act("wait", "look around", ms=0), act("done")])
    loop = make_loop(surface, oracle, full_auto_store)

    loop.run("look")

    for step in loop.history:
        assert "SECRET-PIXELS" not in step.model_dump_json()
    for event in loop.events.events:
        assert "SECRET-PIXELS" not in event.model_dump_json()

def test_history_returns_copies(full_auto_store):
    loop = make_loop(FakeSurface(), ScriptedOracle([act("done")]), full_auto_store)
    loop.run("look")
    loop.history[0].thought = "tampered"
    assert loop.history[0].thought != "tampered"

# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

def test_subscribers_receive_events_in_order(full_auto_store):
    received = []
    oracle = ScriptedOracle([act("key", "Confirm", combo="enter"), act("done")])
    loop = make_loop(FakeSurface(), oracle, full_auto_store)
    loop.events.subscribe(lambda event: received.append(event.type))

    loop.run("press enter")

    assert received == ["start", "step", "step", "done"]

@pytest.mark.parametrize("script", [
    [act("done")],
    [act("error", message="no")],
    [act("wait", ms=0)],
    [OracleTransportError("down")],
])
def test_exactly_one_terminal_event_and_it_is_last(full_auto_store, script):
    loop = make_loop(FakeSurface(), ScriptedOracle(script), full_auto_store, max_steps=2)
    loop.run("finish somehow")
    types = event_types(loop)
    assert sum(t in TERMINAL_EVENT_TYPES for t in types) == 1
    assert types[-1] in TERMINAL_EVENT_TYPES

def test_broken_subscriber_does_not_break_run(full_auto_store):
    loop = make_loop(FakeSurface(), ScriptedOracle([act("done")]), full_auto_store)
    loop.events.subscribe(MagicMock(side_effect=RuntimeError("renderer crashed")))
    result = loop.run("look")
    assert result.success is True
