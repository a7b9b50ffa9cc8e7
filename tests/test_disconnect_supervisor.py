import asyncio

import pytest

from disconnect_supervisor import DisconnectSupervisor, POLICY_IMMEDIATE, POLICY_DEFERRED
from planes import PlaneRegistry
from server_data import ServerData, Match, MatchStatus, LeaveEvent, DisqualifyEvent, JoinEvent
from timers import TaskScheduler

GRACE = 0.05


class Arena:
    def __init__(self, policy: str):
        self.data = ServerData()
        self.registry = PlaneRegistry(self.data)
        self.scheduler = TaskScheduler(asyncio.get_running_loop())
        self.supervisor = DisconnectSupervisor(self.data, self.registry, self.scheduler, grace=GRACE, policy=policy)
        self.removed = []
        self.supervisor.on_removed = lambda plane_id, disqualified: self.removed.append((plane_id, disqualified))

        self.match = Match(match_id="m-1", game_pin="123456", duration=60, max_players=2)
        self.data.current_match = self.match
        for plane_id in ("p1", "p2"):
            self.registry.register(plane_id, f"user-{plane_id}")
            self.registry.join(plane_id, f"pilot-{plane_id}")

    def activate(self):
        self.match.status = MatchStatus.ACTIVE


@pytest.fixture
async def immediate():
    arena = Arena(POLICY_IMMEDIATE)
    yield arena
    arena.scheduler.cancel_all()


@pytest.fixture
async def deferred():
    arena = Arena(POLICY_DEFERRED)
    yield arena
    arena.scheduler.cancel_all()


async def test_unknown_policy_is_rejected():
    data = ServerData()
    with pytest.raises(ValueError):
        DisconnectSupervisor(data, PlaneRegistry(data), TaskScheduler(asyncio.get_running_loop()), policy="later")


class TestImmediatePolicy:
    async def test_link_loss_leaves_match_at_once(self, immediate):
        immediate.activate()

        assert immediate.supervisor.link_lost("p1") is True

        plane = immediate.registry.get("p1")
        assert not plane.is_online
        assert not plane.is_joined
        assert not plane.is_disqualified
        assert immediate.match.roster == ["p2"]
        assert isinstance(immediate.match.events[-1], LeaveEvent)
        assert immediate.supervisor.pending("p1")

    async def test_grace_expiry_does_not_disqualify_a_plane_that_already_left(self, immediate):
        immediate.activate()
        immediate.supervisor.link_lost("p1")
        events = list(immediate.match.events)

        await asyncio.sleep(GRACE * 4)

        assert not immediate.registry.get("p1").is_disqualified
        assert immediate.match.events == events
        assert immediate.removed == []
        assert not immediate.supervisor.pending("p1")

    async def test_reconnect_does_not_rejoin(self, immediate):
        immediate.supervisor.link_lost("p1")
        immediate.supervisor.link_restored("p1")

        plane = immediate.registry.get("p1")
        assert plane.is_online
        assert not plane.is_joined
        assert not immediate.supervisor.pending("p1")

    async def test_plane_outside_match_only_goes_offline(self, immediate):
        immediate.registry.register("p3", "user-p3")
        events = list(immediate.match.events)

        assert immediate.supervisor.link_lost("p3") is False

        assert not immediate.registry.get("p3").is_online
        assert immediate.match.events == events


class TestDeferredPolicy:
    async def test_link_loss_keeps_slot(self, deferred):
        deferred.activate()

        assert deferred.supervisor.link_lost("p1") is False

        plane = deferred.registry.get("p1")
        assert not plane.is_online
        assert plane.is_joined
        assert deferred.match.roster == ["p1", "p2"]

    async def test_silence_through_grace_disqualifies_in_active_match(self, deferred):
        deferred.activate()
        deferred.supervisor.link_lost("p1")

        await asyncio.sleep(GRACE * 4)

        plane = deferred.registry.get("p1")
        assert plane.is_disqualified
        assert not plane.is_joined
        assert isinstance(deferred.match.events[-1], DisqualifyEvent)
        assert deferred.removed == [("p1", True)]

    async def test_silence_through_grace_leaves_waiting_match(self, deferred):
        deferred.supervisor.link_lost("p2")

        await asyncio.sleep(GRACE * 4)

        plane = deferred.registry.get("p2")
        assert not plane.is_joined
        assert not plane.is_disqualified
        assert isinstance(deferred.match.events[-1], LeaveEvent)
        assert deferred.removed == [("p2", False)]

    async def test_reconnect_within_grace_keeps_everything(self, deferred):
        deferred.activate()
        deferred.supervisor.link_lost("p1")
        await asyncio.sleep(GRACE / 5)
        deferred.supervisor.link_restored("p1")

        await asyncio.sleep(GRACE * 4)

        plane = deferred.registry.get("p1")
        assert plane.is_online
        assert plane.is_joined
        assert not plane.is_disqualified
        assert deferred.removed == []
        assert isinstance(deferred.match.events[-1], JoinEvent)

    async def test_ended_match_is_left_alone(self, deferred):
        deferred.activate()
        deferred.supervisor.link_lost("p1")
        deferred.match.status = MatchStatus.ENDED

        await asyncio.sleep(GRACE * 4)

        assert deferred.registry.get("p1").is_joined
        assert deferred.removed == []

