#!/usr/bin/env python3
"""
Session registry checks: conference lifecycle, roster growth and snapshot swapping.
"""
import sys

from jvb_rtcstats_push import RegistryContractError, SessionRegistry


def conf(name, meeting_id=None):
    doc = {"name": name, "endpoints": {}}
    if meeting_id:
        doc["meeting_id"] = meeting_id
    return doc


def test_reconcile_creates_and_removes():
    registry = SessionRegistry("jvb-1")
    created, removed = registry.reconcile({"c1": conf("room1", "m-1"), "c2": conf("room2")})
    assert sorted(created) == ["c1", "c2"]
    assert removed == {}
    assert len(registry) == 2

    first = registry.get("c1")
    assert first.conf_name == "room1"
    assert first.meeting_unique_id == "m-1"
    assert first.display_name == "jvb-1"
    assert first.application_name == "JVB"
    # meeting id falls back to the conference id
    assert registry.get("c2").meeting_unique_id == "c2"

    created, removed = registry.reconcile({"c2": conf("room2"), "c3": conf("room3")})
    assert created == ["c3"]
    assert list(removed) == ["c1"]
    assert removed["c1"] is first
    assert "c1" not in registry
    assert sorted(registry.conference_ids()) == ["c2", "c3"]


def test_session_ids_are_stable_and_never_reused():
    registry = SessionRegistry()
    registry.reconcile({"c1": conf("room")})
    session_id = registry.get("c1").session_id
    registry.reconcile({"c1": conf("room")})
    assert registry.get("c1").session_id == session_id

    registry.reconcile({})
    registry.reconcile({"c1": conf("room")})
    assert registry.get("c1").session_id != session_id


def test_update_endpoints_only_grows():
    registry = SessionRegistry()
    registry.reconcile({"c1": conf("room")})

    assert registry.update_endpoints("c1", {"alice", "bob"}) == {"alice", "bob"}
    assert registry.update_endpoints("c1", {"alice", "bob"}) == set()
    # leaving is never reported and never shrinks the roster
    assert registry.update_endpoints("c1", {"alice"}) == set()
    assert registry.update_endpoints("c1", {"carol"}) == {"carol"}
    assert registry.get("c1").known_endpoints == {"alice", "bob", "carol"}
    assert registry.get("c1").identity_data()["endpoints"] == ["alice", "bob", "carol"]


def test_record_snapshot_swaps_baseline():
    registry = SessionRegistry()
    registry.reconcile({"c1": conf("room")})
    assert registry.record_snapshot("c1", {"a": 1}) is None
    assert registry.record_snapshot("c1", {"b": 2}) == {"a": 1}
    assert registry.get("c1").previous_snapshot == {"b": 2}


def test_unknown_conference_fails_loudly():
    registry = SessionRegistry()
    for call in (
        lambda: registry.get("nope"),
        lambda: registry.update_endpoints("nope", {"x"}),
        lambda: registry.record_snapshot("nope", {}),
    ):
        try:
            call()
        except RegistryContractError:
            continue
        raise AssertionError("expected RegistryContractError")


def main():
    tests = [v for k, v in sorted(globals().items()) if k.startswith("test_")]
    failed = 0
    for test in tests:
        try:
            test()
            print(f"✓ {test.__name__}")
        except AssertionError as e:
            failed += 1
            print(f"✗ {test.__name__}: {e}")
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
