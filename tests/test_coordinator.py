"""
Tests for swarm_engine/services/coordinator.py

Most tests turn the background loops off and drive ticks, decay,
heartbeats and action sweeps by hand with a fake clock. A few run the
real timers with short intervals and poll for the outcome.
"""

import time

import pytest
import numpy as np

from swarm_engine.algorithms import MovementSuggestion
from swarm_engine.config import EngineConfig
from swarm_engine.coordination.actions import ActionStatus
from swarm_engine.coordination.swarm import SwarmState
from swarm_engine.core.member import MemberState
from swarm_engine.errors import CapacityExceeded, InvalidState, NotFound
from swarm_engine.services.coordinator import Periodic, SwarmCoordinator
from swarm_engine.services.events import InMemoryNotificationSink, NotificationSink


def wait_for(predicate, timeout=3.0, interval=0.01):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def sink():
    return InMemoryNotificationSink()


@pytest.fixture
def coordinator(sink, clock):
    config = EngineConfig(autostart_timers=False, max_swarms=2)
    coord = SwarmCoordinator(config, sinks=[sink], clock=clock, rng=np.random.default_rng(0))
    yield coord
    coord.shutdown()


def ready_swarm(coordinator, algorithm="consensus", members=("a", "b"), **kwargs):
    swarm_id = coordinator.form_swarm("task", min_members=len(members), algorithm=algorithm, **kwargs)
    for i, member_id in enumerate(members):
        coordinator.join(swarm_id, member_id, [10.0 * i, 0.0])
    return swarm_id


# ==================== Formation Tests ====================


class TestFormation:
    """Tests for form_swarm() and the swarm registry."""

    def test_form_emits_formed(self, coordinator, sink):
        """Forming announces the swarm with its bounds."""
        swarm_id = coordinator.form_swarm("task-9", min_members=2)
        formed = sink.events("swarm:formed")
        assert len(formed) == 1
        assert formed[0].swarm_id == swarm_id
        assert formed[0].payload["task_id"] == "task-9"
        assert formed[0].payload["max_members"] == 4
        assert coordinator.active_swarms() == [swarm_id]

    def test_default_algorithm(self, coordinator):
        """Swarms use the engine's default algorithm unless told otherwise."""
        swarm_id = coordinator.form_swarm("task", min_members=1)
        assert coordinator.get_swarm(swarm_id).config.algorithm.value == "ant-colony"

    def test_max_swarms(self, coordinator):
        """Forming beyond max_swarms raises CapacityExceeded."""
        coordinator.form_swarm("a", min_members=1)
        coordinator.form_swarm("b", min_members=1)
        with pytest.raises(CapacityExceeded):
            coordinator.form_swarm("c", min_members=1)

    def test_dissolve_frees_capacity(self, coordinator):
        """A dissolved swarm no longer counts against max_swarms."""
        first = coordinator.form_swarm("a", min_members=1)
        coordinator.form_swarm("b", min_members=1)
        coordinator.dissolve(first)
        coordinator.form_swarm("c", min_members=1)
        assert len(coordinator.active_swarms()) == 2

    def test_bad_bounds(self, coordinator):
        """min_members must be positive and no larger than max_members."""
        with pytest.raises(ValueError):
            coordinator.form_swarm("a", min_members=0)
        with pytest.raises(ValueError):
            coordinator.form_swarm("a", min_members=3, max_members=2)

    def test_unknown_algorithm(self, coordinator):
        """Unknown algorithm names are rejected at formation."""
        with pytest.raises(ValueError):
            coordinator.form_swarm("a", min_members=1, algorithm="fireflies")

    def test_unknown_swarm(self, coordinator):
        """Operations on unknown ids raise NotFound."""
        with pytest.raises(NotFound):
            coordinator.join("missing", "a", [0, 0])
        with pytest.raises(NotFound):
            coordinator.get_swarm("missing")


# ==================== Membership Tests ====================


class TestMembership:
    """Tests for joins, leaves and heartbeats through the coordinator."""

    def test_ready_once(self, coordinator, sink):
        """swarm:ready is published exactly once."""
        swarm_id = coordinator.form_swarm("task", min_members=2, max_members=4)
        coordinator.join(swarm_id, "a", [0, 0])
        coordinator.join(swarm_id, "b", [0, 0])
        coordinator.join(swarm_id, "c", [0, 0])
        assert sink.count("swarm:ready") == 1
        assert coordinator.get_swarm(swarm_id).state == SwarmState.READY

    def test_full_swarm(self, coordinator):
        """A full swarm refuses joins, or raises in strict mode."""
        swarm_id = coordinator.form_swarm("task", min_members=1, max_members=1)
        assert coordinator.join(swarm_id, "a", [0, 0])
        assert not coordinator.join(swarm_id, "b", [0, 0])
        with pytest.raises(CapacityExceeded):
            coordinator.join(swarm_id, "b", [0, 0], strict=True)

    def test_update_and_leave(self, coordinator, sink):
        """Position reports land on the member; the leader leaving triggers an election."""
        swarm_id = ready_swarm(coordinator)
        assert coordinator.update_member_position(swarm_id, "a", [3, 4], velocity=[1, 0])
        member = coordinator.get_swarm(swarm_id).get_member("a")
        assert np.allclose(member.position, [3.0, 4.0])

        assert coordinator.leave(swarm_id, "a")
        assert sink.count("member:left") == 1
        assert sink.count("leader:elected") == 1

    def test_heartbeat(self, coordinator, clock, sink):
        """Only members silent past member_timeout go offline."""
        swarm_id = ready_swarm(coordinator)
        clock.advance(20)
        coordinator.update_member_position(swarm_id, "b", [0, 0])
        clock.advance(15)
        assert coordinator.heartbeat(swarm_id) == ["a"]
        assert sink.count("member:offline") == 1

    def test_set_member_state_and_sectors(self, coordinator):
        """State changes and sector assignment pass through to the swarm."""
        swarm_id = ready_swarm(coordinator)
        coordinator.set_member_state(swarm_id, "a", MemberState.BUSY)
        assert coordinator.get_swarm(swarm_id).get_member("a").state == MemberState.BUSY
        assert coordinator.assign_sectors(swarm_id, 100, 100) == {"a": 0, "b": 1}


# ==================== Tick Tests ====================


class TestTicks:
    """Tests for manual ticks and suggestions."""

    def test_tick_returns_suggestions(self, coordinator, sink):
        """A tick returns and publishes one suggestion per member."""
        swarm_id = ready_swarm(coordinator)
        suggestions = coordinator.tick(swarm_id)
        assert {s.member_id for s in suggestions} == {"a", "b"}
        assert sink.count("movement:suggested") == 2

    def test_apply_suggestion(self, coordinator):
        """Applying a suggestion moves the member."""
        swarm_id = ready_swarm(coordinator)
        suggestion = MovementSuggestion(member_id="a", target=np.array([7.0, 7.0]), reason="manual")
        assert coordinator.apply_suggestion(swarm_id, suggestion)
        assert np.allclose(coordinator.get_swarm(swarm_id).get_member("a").position, [7.0, 7.0])

    def test_objective_met_dissolves(self, coordinator, sink):
        """Once every action has completed, the next tick dissolves the swarm."""
        swarm_id = ready_swarm(coordinator, objective={"success_criteria": {"min_progress": 100, "time_limit": 60}})
        action_id = coordinator.start_coordinated_action(swarm_id, "search", [0, 0])
        coordinator.tick(swarm_id)
        assert swarm_id in coordinator.active_swarms()

        coordinator.report_action_completion(swarm_id, "a", action_id)
        coordinator.report_action_completion(swarm_id, "b", action_id)
        coordinator.tick(swarm_id)
        assert swarm_id not in coordinator.active_swarms()
        dissolved = sink.events("swarm:dissolved")
        assert dissolved[0].payload["reason"] == "objective-met"

    def test_time_limit_dissolves_as_timeout(self, coordinator, clock, sink):
        """A swarm that runs past its objective's time limit has failed."""
        swarm_id = ready_swarm(coordinator, objective={"success_criteria": {"time_limit": 10}})
        clock.advance(9)
        coordinator.tick(swarm_id)
        assert swarm_id in coordinator.active_swarms()

        clock.advance(1)
        coordinator.tick(swarm_id)
        assert sink.events("swarm:dissolved")[0].payload["reason"] == "timeout"

    def test_timeout_dissolves(self, coordinator, clock, sink):
        """The swarm timeout dissolves it at the next tick."""
        swarm_id = ready_swarm(coordinator, timeout=5)
        clock.advance(6)
        coordinator.tick(swarm_id)
        assert sink.events("swarm:dissolved")[0].payload["reason"] == "timeout"

    def test_tick_survives_bad_blackboard_entry(self, coordinator):
        """A malformed entry for one member does not fail the tick."""
        swarm_id = ready_swarm(coordinator, algorithm="particle-swarm")
        coordinator.share_knowledge(swarm_id, "globalBest", [10, 10])
        coordinator.share_knowledge(swarm_id, "personalBest:a", "garbage")
        suggestions = coordinator.tick(swarm_id)
        assert [s.member_id for s in suggestions] == ["b"]


# ==================== Shared Medium Tests ====================


class TestSharedMedium:
    """Tests for pheromones, messages and knowledge."""

    def test_deposit_and_decay(self, coordinator, sink):
        """A deposited trail is found nearby and weakens on decay."""
        swarm_id = ready_swarm(coordinator)
        trail_id = coordinator.deposit_pheromone(swarm_id, "a", [[0, 0], [5, 0]], "success")
        found = coordinator.find_pheromones(swarm_id, [0, 0], 1.0)
        assert [t.trail_id for t in found] == [trail_id]

        coordinator.decay(swarm_id)
        trail = coordinator.get_swarm(swarm_id).pheromones.get(trail_id)
        assert trail.strength == pytest.approx(0.9)
        assert sink.count("pheromone:deposited") == 1

    def test_messages_and_knowledge(self, coordinator, sink):
        """Messages are counted; blackboard writes are not."""
        swarm_id = ready_swarm(coordinator)
        coordinator.broadcast(swarm_id, "regroup")
        coordinator.send_direct(swarm_id, "b", "hold")
        coordinator.share_knowledge(swarm_id, "target", [1, 2], written_by="a")

        assert coordinator.read_knowledge(swarm_id, "target") == [1, 2]
        assert coordinator.get_metrics(swarm_id).messages_exchanged == 2
        assert sink.count("message:broadcast") == 1
        assert sink.count("message:direct") == 1
        assert sink.count("knowledge:shared") == 1

    def test_direct_to_unknown(self, coordinator):
        """Direct messages to strangers raise NotFound."""
        swarm_id = ready_swarm(coordinator)
        with pytest.raises(NotFound):
            coordinator.send_direct(swarm_id, "ghost", "hi")


# ==================== Coordinated Action Tests ====================


class TestCoordinatedActions:
    """Tests for actions and their timeouts."""

    def test_quorum(self, coordinator, sink):
        """The action completes only when every participant has reported."""
        swarm_id = ready_swarm(coordinator, members=("A", "B", "C"))
        action_id = coordinator.start_coordinated_action(swarm_id, "lift", [0, 0], formation="circle")

        assert not coordinator.report_action_completion(swarm_id, "A", action_id)
        assert not coordinator.report_action_completion(swarm_id, "B", action_id)
        assert not coordinator.report_action_completion(swarm_id, "A", action_id)
        assert coordinator.report_action_completion(swarm_id, "C", action_id)
        assert sink.count("action:completed") == 1

    def test_not_ready(self, coordinator):
        """A forming swarm cannot start actions."""
        swarm_id = coordinator.form_swarm("task", min_members=2)
        coordinator.join(swarm_id, "a", [0, 0])
        with pytest.raises(InvalidState):
            coordinator.start_coordinated_action(swarm_id, "lift", [0, 0])

    def test_timeout_fails_action(self, coordinator, clock, sink):
        """The action sweep fails actions past their timeout, on the coordinator's clock."""
        swarm_id = ready_swarm(coordinator)
        action_id = coordinator.start_coordinated_action(swarm_id, "lift", [0, 0], timeout=5)
        action = coordinator.get_swarm(swarm_id).actions.get(action_id)

        clock.advance(4)
        assert coordinator.expire_actions(swarm_id) == []
        clock.advance(1)
        assert coordinator.expire_actions(swarm_id) == [action_id]
        assert action.status == ActionStatus.FAILED
        assert sink.count("action:timeout") == 1
        assert not coordinator.report_action_completion(swarm_id, "a", action_id)

    def test_completed_action_never_times_out(self, coordinator, clock, sink):
        """Completing before the deadline leaves nothing for the sweep."""
        swarm_id = ready_swarm(coordinator)
        action_id = coordinator.start_coordinated_action(swarm_id, "lift", [0, 0], timeout=5)
        coordinator.report_action_completion(swarm_id, "a", action_id)
        coordinator.report_action_completion(swarm_id, "b", action_id)
        clock.advance(10)
        assert coordinator.expire_actions(swarm_id) == []
        assert sink.count("action:timeout") == 0


# ==================== Dissolve Tests ====================


class TestDissolve:
    """Tests for dissolve(), tombstones and shutdown()."""

    def test_idempotent(self, coordinator, sink):
        """The second dissolve returns False and publishes nothing."""
        swarm_id = ready_swarm(coordinator)
        assert coordinator.dissolve(swarm_id)
        assert not coordinator.dissolve(swarm_id)
        assert sink.count("swarm:dissolved") == 1

    def test_operations_fail_fast(self, coordinator):
        """Everything after dissolve raises InvalidState."""
        swarm_id = ready_swarm(coordinator)
        coordinator.dissolve(swarm_id)

        with pytest.raises(InvalidState):
            coordinator.join(swarm_id, "c", [0, 0])
        with pytest.raises(InvalidState):
            coordinator.tick(swarm_id)
        with pytest.raises(InvalidState):
            coordinator.deposit_pheromone(swarm_id, "a", [[0, 0]])
        with pytest.raises(InvalidState):
            coordinator.get_swarm(swarm_id)
        assert swarm_id not in coordinator.active_swarms()

    def test_tombstone(self, coordinator, clock):
        """A dissolved swarm leaves a small record of how it ended."""
        swarm_id = ready_swarm(coordinator)
        clock.advance(3)
        coordinator.dissolve(swarm_id, reason="done")

        tombstone = coordinator.get_tombstone(swarm_id)
        assert tombstone.state == SwarmState.DISSOLVED
        assert tombstone.reason == "done"
        assert tombstone.task_id == "task"
        assert tombstone.dissolved_at == clock.now
        assert tombstone.metrics.member_count == 2
        assert tombstone.to_dict()["state"] == "dissolved"
        assert coordinator.dissolved_swarms() == [swarm_id]

    def test_tombstones_are_bounded(self, sink, clock):
        """Only the most recent dissolved_retention swarms are remembered."""
        config = EngineConfig(autostart_timers=False, dissolved_retention=2)
        coord = SwarmCoordinator(config, sinks=[sink], clock=clock)
        ids = [coord.form_swarm(f"task-{i}", min_members=1) for i in range(3)]
        for swarm_id in ids:
            coord.dissolve(swarm_id)

        assert coord.dissolved_swarms() == ids[1:]
        with pytest.raises(NotFound):
            coord.get_tombstone(ids[0])
        with pytest.raises(NotFound):
            coord.join(ids[0], "a", [0, 0])
        with pytest.raises(InvalidState):
            coord.join(ids[2], "a", [0, 0])

    def test_shutdown_dissolves_all(self, sink, clock):
        """Shutdown dissolves every active swarm with reason 'shutdown'."""
        coord = SwarmCoordinator(EngineConfig(autostart_timers=False), sinks=[sink], clock=clock)
        first = coord.form_swarm("a", min_members=1)
        second = coord.form_swarm("b", min_members=1)
        coord.shutdown()
        assert coord.active_swarms() == []
        dissolved = sink.events("swarm:dissolved")
        assert {n.swarm_id for n in dissolved} == {first, second}
        assert all(n.payload["reason"] == "shutdown" for n in dissolved)

    def test_context_manager(self, sink):
        """Leaving the with block shuts the coordinator down."""
        with SwarmCoordinator(EngineConfig(autostart_timers=False), sinks=[sink]) as coord:
            coord.form_swarm("a", min_members=1)
        assert sink.count("swarm:dissolved") == 1


# ==================== Subscription Tests ====================


class TestSubscriptions:
    """Tests for listeners and failing sinks."""

    def test_callable_listener(self, coordinator):
        """Plain callables can subscribe."""
        received = []
        coordinator.subscribe(received.append)
        coordinator.form_swarm("task", min_members=1)
        assert [n.event for n in received] == ["swarm:formed"]

    def test_unsubscribe(self, coordinator):
        """Unsubscribed listeners hear nothing more."""
        received = []
        listener = coordinator.subscribe(received.append)
        coordinator.unsubscribe(listener)
        coordinator.form_swarm("task", min_members=1)
        assert received == []

    def test_failing_sink_does_not_break_operations(self, coordinator, sink):
        """A sink that raises is logged and skipped."""
        class Broken(NotificationSink):
            def publish(self, notification):
                raise RuntimeError("down")

        coordinator.subscribe(Broken())
        swarm_id = coordinator.form_swarm("task", min_members=1)
        assert coordinator.join(swarm_id, "a", [0, 0])
        assert sink.count("member:joined") == 1

    def test_per_swarm_order(self, coordinator, sink):
        """Sinks see a swarm's notifications in the order they happened."""
        swarm_id = coordinator.form_swarm("task", min_members=1)
        coordinator.join(swarm_id, "a", [0, 0])
        events = [n.event for n in sink.events(swarm_id=swarm_id)]
        assert events[:3] == ["swarm:formed", "member:joined", "swarm:ready"]


# ==================== Background Loop Tests ====================


class TestBackgroundLoops:
    """Tests that run the real timers."""

    def test_periodic_runs_and_stops(self):
        """A loop runs repeatedly and stops for good."""
        calls = []
        loop = Periodic(0.01, lambda: calls.append(1), "test-loop")
        loop.start()
        assert wait_for(lambda: len(calls) >= 3)
        loop.stop()
        assert not loop.running
        count = len(calls)
        time.sleep(0.05)
        assert len(calls) == count

    def test_periodic_survives_errors(self):
        """An exception in the task does not end the loop."""
        calls = []

        def flaky():
            calls.append(1)
            raise RuntimeError("boom")

        loop = Periodic(0.01, flaky, "flaky-loop")
        loop.start()
        assert wait_for(lambda: len(calls) >= 2)
        loop.stop()

    def test_timers_drive_swarm(self, sink):
        """Background loops tick, decay and expire actions on their own."""
        config = EngineConfig(
            tick_interval=0.02,
            decay_interval=0.02,
            heartbeat_interval=0.02,
            action_check_interval=0.02,
            max_swarms=1,
        )
        coord = SwarmCoordinator(config, sinks=[sink], rng=np.random.default_rng(0))
        try:
            swarm_id = coord.form_swarm("task", min_members=2, algorithm="consensus")
            coord.join(swarm_id, "a", [0, 0])
            coord.join(swarm_id, "b", [10, 0])
            trail_id = coord.deposit_pheromone(swarm_id, "a", [[0, 0]])
            coord.start_coordinated_action(swarm_id, "lift", [0, 0], timeout=0.05)

            assert wait_for(lambda: sink.count("movement:suggested") >= 2)
            swarm = coord.get_swarm(swarm_id)
            assert wait_for(lambda: swarm.pheromones.get(trail_id).strength < 1.0)
            assert wait_for(lambda: sink.count("action:timeout") == 1)
        finally:
            coord.shutdown()

        assert coord.active_swarms() == []
