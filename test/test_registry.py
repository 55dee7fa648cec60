"""
Unit tests for SessionRegistry.
"""

from venuesync.registry import SessionRegistry, room_name


def test_room_name():
    assert room_name("v1") == "venue:v1"


def test_join_and_leave():
    registry = SessionRegistry()

    assert registry.join("c1", "v1") is True
    assert registry.join("c1", "v1") is False
    assert registry.members("v1") == {"c1"}
    assert registry.is_member("c1", "v1")

    assert registry.leave("c1", "v1") is True
    assert registry.leave("c1", "v1") is False
    assert registry.members("v1") == set()


def test_rooms_are_isolated():
    registry = SessionRegistry()
    registry.join("c1", "v1")
    registry.join("c2", "v2")

    assert registry.members("v1") == {"c1"}
    assert registry.members("v2") == {"c2"}
    assert not registry.is_member("c1", "v2")


def test_client_in_several_rooms():
    registry = SessionRegistry()
    registry.join("c1", "v1")
    registry.join("c1", "v2")
    registry.join("c2", "v1")

    assert registry.venues_for("c1") == {"v1", "v2"}
    assert registry.leave_all("c1") == {"v1", "v2"}
    assert registry.venues_for("c1") == set()
    assert registry.members("v1") == {"c2"}
    assert registry.members("v2") == set()


def test_members_is_a_snapshot():
    registry = SessionRegistry()
    registry.join("c1", "v1")

    members = registry.members("v1")
    registry.join("c2", "v1")

    assert members == {"c1"}
