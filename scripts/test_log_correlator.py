#!/usr/bin/env python3
"""
Log correlation checks: multi-line records, prefix lookup, draining, stale bucket eviction and file tailing.
"""
import asyncio
import os
import sys
import tempfile

from jvb_rtcstats_push import JvbLogTail, LogCorrelator


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_marker_and_continuation_lines_are_grouped():
    correlator = LogCorrelator()
    assert correlator.append("JVB [..] meeting_id=abc123 rest")
    assert correlator.append("more text")

    assert correlator.take("abc123def-fullid") == ["JVB [..] meeting_id=abc123 rest", "more text"]
    assert correlator.take("abc123def-fullid") == []

    correlator.append("JVB 2024-01-01 INFO: [conf_name=x meeting_id=abc123 epId=1] again")
    assert correlator.take("abc123def-fullid") == ["JVB 2024-01-01 INFO: [conf_name=x meeting_id=abc123 epId=1] again"]


def test_lines_outside_a_meeting_are_dropped():
    correlator = LogCorrelator()
    assert not correlator.append("orphan continuation")
    correlator.append("JVB [ctx] meeting_id=aaa first")
    # a marker line without meeting id ends the current record
    assert not correlator.append("JVB [ctx] no meeting here")
    assert not correlator.append("continuation of the unrelated record")
    assert correlator.take("aaa-111") == ["JVB [ctx] meeting_id=aaa first"]
    assert len(correlator) == 1


def test_take_uses_prefix_match_only():
    correlator = LogCorrelator()
    correlator.append("JVB [x] meeting_id=1234 a")
    correlator.append("JVB [x] meeting_id=5678 b\n")
    assert correlator.take("9999-1234") == []
    assert correlator.take("5678-abcd") == ["JVB [x] meeting_id=5678 b"]
    assert correlator.take("1234-abcd") == ["JVB [x] meeting_id=1234 a"]


def test_idle_buckets_are_evicted():
    clock = FakeClock()
    correlator = LogCorrelator(retention_secs=60, clock=clock)
    correlator.append("JVB [x] meeting_id=old line")
    clock.now += 30
    correlator.append("JVB [x] meeting_id=fresh line")

    clock.now += 31
    # old is 61s idle, fresh 31s
    assert correlator.take("old-full-id") == []
    assert correlator.take("fresh-full-id") == ["JVB [x] meeting_id=fresh line"]

    clock.now += 61
    correlator.append("JVB [x] meeting_id=other line")
    assert len(correlator) == 1
    assert correlator.take("fresh-full-id") == []


async def _tail_file(path):
    correlator = LogCorrelator()
    tail = JvbLogTail(path, correlator, poll_interval=0.02)
    task = asyncio.create_task(tail.run())
    await asyncio.sleep(0.2)

    with open(path, "a") as f:
        f.write("JVB [a] meeting_id=feed01 start\n")
        f.write("  at stack frame\n")
        f.write("JVB [a] meeting_id=feed01 partial")
        f.flush()

    for _ in range(100):
        if tail.lines_read >= 2:
            break
        await asyncio.sleep(0.02)

    with open(path, "a") as f:
        f.write(" line\n")

    for _ in range(100):
        if tail.lines_read >= 3:
            break
        await asyncio.sleep(0.02)

    tail.stop()
    await asyncio.wait_for(task, timeout=2)
    return tail, correlator.take("feed01-aaaa-bbbb")


def test_tail_reads_only_new_complete_lines():
    fd, path = tempfile.mkstemp(suffix=".log")
    try:
        with os.fdopen(fd, "w") as f:
            f.write("JVB [a] meeting_id=feed01 written before the tail started\n")
        tail, lines = asyncio.run(_tail_file(path))
        assert tail.enabled
        assert lines == [
            "JVB [a] meeting_id=feed01 start",
            "  at stack frame",
            "JVB [a] meeting_id=feed01 partial line",
        ]
    finally:
        os.unlink(path)


async def wait_for_lines(tail, count, timeout=2.0):
    for _ in range(int(timeout / 0.02)):
        if tail.lines_read >= count:
            return
        await asyncio.sleep(0.02)


async def _tail_across_rotation(path):
    correlator = LogCorrelator()
    tail = JvbLogTail(path, correlator, poll_interval=0.02)
    task = asyncio.create_task(tail.run())
    await asyncio.sleep(0.2)

    with open(path, "a") as f:
        f.write("JVB [a] meeting_id=feed01 before rotation\n")
        f.write("JVB [a] meeting_id=feed01 still before\n")
    await wait_for_lines(tail, 2)

    os.rename(path, path + ".1")
    with open(path, "w") as f:
        f.write("JVB [a] meeting_id=feed01 after rotation\n")
    await wait_for_lines(tail, 3)
    # give a replay of the old file time to show up
    await asyncio.sleep(0.3)

    tail.stop()
    await asyncio.wait_for(task, timeout=2)
    return tail, correlator.take("feed01-aaaa-bbbb")


def test_tail_follows_renamed_rotation_without_replaying():
    directory = tempfile.mkdtemp()
    path = os.path.join(directory, "jvb.log")
    open(path, "w").close()
    try:
        tail, lines = asyncio.run(_tail_across_rotation(path))
        assert tail.enabled
        assert tail.lines_read == 3, f"lines_read={tail.lines_read}"
        assert lines == [
            "JVB [a] meeting_id=feed01 before rotation",
            "JVB [a] meeting_id=feed01 still before",
            "JVB [a] meeting_id=feed01 after rotation",
        ]
    finally:
        for name in os.listdir(directory):
            os.unlink(os.path.join(directory, name))
        os.rmdir(directory)


def test_tail_disables_itself_on_read_error():
    tail = JvbLogTail("/nonexistent/dir/jvb.log", LogCorrelator(), poll_interval=0.01)
    asyncio.run(tail.run())
    assert not tail.enabled


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
