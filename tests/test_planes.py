import datetime

from planes import PlaneRegistry
from server_data import ServerData, Match, JoinEvent, LeaveEvent, DisqualifyEvent, HitEvent


class TestPlaneRegistry:
    def setup_method(self):
        self.data = ServerData()
        self.registry = PlaneRegistry(self.data)

    def open_match(self) -> Match:
        self.data.current_match = Match(match_id="m-1", game_pin="123456", duration=60, max_players=4)
        return self.data.current_match

    def test_icons_alternate(self):
        icons = [self.registry.register(f"plane-{i}", f"user-{i}").icon for i in range(4)]
        assert icons == ["BLACK", "WHITE", "BLACK", "WHITE"]

    def test_register_again_keeps_icon_and_stats(self):
        plane = self.registry.register("plane-1", "user-1", "10.0.0.5")
        plane.hits = 3
        plane.is_online = False
        self.registry.register("plane-2", "user-2")

        again = self.registry.register("plane-1")

        assert again is plane
        assert again.icon == "BLACK"
        assert again.hits == 3
        assert again.is_online
        assert again.user_id == "user-1"
        assert again.address == "10.0.0.5"

    def test_register_again_updates_given_fields(self):
        self.registry.register("plane-1", "user-1", "10.0.0.5")
        plane = self.registry.register("plane-1", "user-9", "10.0.0.6")
        assert plane.user_id == "user-9"
        assert plane.address == "10.0.0.6"

    def test_list_joined_is_empty_without_match(self):
        plane = self.registry.register("plane-1", "user-1")
        plane.is_joined = True
        assert self.registry.list_joined() == []

    def test_list_online(self):
        self.registry.register("plane-1", "user-1")
        self.registry.register("plane-2", "user-2")
        self.registry.mark_offline("plane-2")

        assert [plane.plane_id for plane in self.registry.list_online()] == ["plane-1"]

    def test_mark_unknown_plane_is_harmless(self):
        self.registry.mark_offline("ghost")
        self.registry.mark_online("ghost")
        assert self.registry.get("ghost") is None

    def test_join_needs_match(self):
        self.registry.register("plane-1", "user-1")
        assert not self.registry.join("plane-1", "Maverick")

    def test_join_adds_roster_entry_and_event(self):
        match = self.open_match()
        self.registry.register("plane-1", "user-1")

        assert self.registry.join("plane-1", "Maverick")
        assert self.registry.join("plane-1", "Maverick")

        plane = self.registry.get("plane-1")
        assert plane.is_joined
        assert plane.player_name == "Maverick"
        assert match.roster == ["plane-1"]
        assert [type(event) for event in match.events] == [JoinEvent, JoinEvent]

    def test_remove_and_disqualify(self):
        match = self.open_match()
        self.registry.register("plane-1", "user-1")
        self.registry.register("plane-2", "user-2")
        self.registry.join("plane-1", "Maverick")
        self.registry.join("plane-2", "Iceman")

        assert self.registry.remove("plane-1")
        assert self.registry.remove("plane-2", disqualify=True)

        assert not self.registry.get("plane-1").is_disqualified
        assert self.registry.get("plane-2").is_disqualified
        assert match.roster == []
        assert isinstance(match.events[-2], LeaveEvent)
        assert isinstance(match.events[-1], DisqualifyEvent)

    def test_remove_unknown_plane(self):
        self.open_match()
        assert not self.registry.remove("ghost")

    def test_record_hit_counts_both_sides(self):
        match = self.open_match()
        self.registry.register("plane-1", "user-1")
        self.registry.register("plane-2", "user-2")

        assert self.registry.record_hit("plane-1", "plane-2")
        assert self.registry.record_hit("plane-1", "plane-2")

        assert self.registry.get("plane-1").hits == 2
        assert self.registry.get("plane-2").hits_taken == 2
        event = match.events[-1]
        assert isinstance(event, HitEvent)
        assert event.to_dict()["targetId"] == "plane-2"

    def test_record_hit_unknown_target(self):
        self.open_match()
        self.registry.register("plane-1", "user-1")
        assert not self.registry.record_hit("plane-1", "ghost")
        assert self.registry.get("plane-1").hits == 0

    def test_event_timestamps_never_go_backwards(self):
        match = self.open_match()
        self.registry.register("plane-1", "user-1")
        self.registry.register("plane-2", "user-2")
        self.registry.join("plane-1", "Maverick")

        earlier = match.events[-1].timestamp - datetime.timedelta(minutes=5)
        self.registry.record_hit("plane-1", "plane-2", earlier)

        timestamps = [event.timestamp for event in match.events]
        assert timestamps == sorted(timestamps)

    def test_reset_match_stats_keeps_planes(self):
        self.open_match()
        self.registry.register("plane-1", "user-1")
        self.registry.join("plane-1", "Maverick")
        self.registry.get("plane-1").hits = 4

        self.registry.reset_match_stats()

        plane = self.registry.get("plane-1")
        assert plane.hits == 0
        assert not plane.is_joined
        assert plane.icon == "BLACK"
