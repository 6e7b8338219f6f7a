"""Tests for relay_core.storage.audit."""

from __future__ import annotations

import asyncio

import pytest

from relay_core.storage.audit import (
    ACTION_CONNECTED,
    ACTION_DISCONNECTED,
    ACTION_USERNAME_SET,
    AuditEvent,
    AuditLog,
    parse_audit_log,
)


@pytest.fixture
async def running_log(tmp_path):
    audit = AuditLog(tmp_path / "logs" / "connections.log")
    task = asyncio.create_task(audit.run())
    try:
        yield audit
    finally:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


class TestAuditEvent:
    def test_to_line(self):
        event = AuditEvent("2024-01-01T00:00:00.000Z", ACTION_CONNECTED, "10.0.0.1")
        assert event.to_line() == "2024-01-01T00:00:00.000Z | CONNECTED | 10.0.0.1 | Anonymous"

    def test_from_line(self):
        event = AuditEvent.from_line("t | USERNAME_SET | 10.0.0.1 | ana")
        assert event == AuditEvent("t", ACTION_USERNAME_SET, "10.0.0.1", "ana")

    def test_name_with_separator_is_cleaned(self):
        event = AuditEvent("t", ACTION_USERNAME_SET, "10.0.0.1", "a|b\nc")
        line = event.to_line()
        assert "\n" not in line
        parsed = AuditEvent.from_line(line)
        assert parsed.display_name == "a b c"

    def test_rejects_unknown_action(self):
        assert AuditEvent.from_line("t | EXPLODED | 1.2.3.4 | x") is None

    def test_rejects_short_line(self):
        assert AuditEvent.from_line("just text") is None

    def test_to_dict(self):
        event = AuditEvent("t", ACTION_DISCONNECTED, "10.0.0.1", "ana")
        assert event.to_dict() == {
            "timestamp": "t",
            "action": "DISCONNECTED",
            "ip": "10.0.0.1",
            "username": "ana",
        }


class TestParseAuditLog:
    def test_missing_file(self, tmp_path):
        assert parse_audit_log(tmp_path / "missing.log") == []

    def test_skips_malformed_lines(self, tmp_path):
        f = tmp_path / "connections.log"
        f.write_text(
            "t1 | CONNECTED | 10.0.0.1 | Anonymous\n"
            "garbage\n"
            "\n"
            "t2 | DISCONNECTED | 10.0.0.1 | ana\n",
            encoding="utf-8",
        )
        events = parse_audit_log(f)
        assert [e.action for e in events] == [ACTION_CONNECTED, ACTION_DISCONNECTED]


class TestAuditLog:
    async def test_record_returns_immediately(self, tmp_path):
        audit = AuditLog(tmp_path / "connections.log")
        event = audit.record(ACTION_CONNECTED, "10.0.0.1")
        assert event.display_name == "Anonymous"
        # Nothing written until the worker runs.
        assert not audit.path.exists()

    async def test_writes_in_order(self, running_log):
        running_log.record(ACTION_CONNECTED, "10.0.0.1")
        running_log.record(ACTION_USERNAME_SET, "10.0.0.1", "ana")
        running_log.record(ACTION_DISCONNECTED, "10.0.0.1", "ana")
        await asyncio.wait_for(running_log.flush(), timeout=2.0)

        lines = running_log.path.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 3
        assert lines[0].endswith("| CONNECTED | 10.0.0.1 | Anonymous")
        assert lines[1].endswith("| USERNAME_SET | 10.0.0.1 | ana")
        assert lines[2].endswith("| DISCONNECTED | 10.0.0.1 | ana")

    async def test_lone_surrogate_name_is_written(self, running_log):
        running_log.record(ACTION_CONNECTED, "10.0.0.1")
        running_log.record(ACTION_USERNAME_SET, "10.0.0.1", "a\ud800")
        running_log.record(ACTION_DISCONNECTED, "10.0.0.1", "a\ud800")
        await asyncio.wait_for(running_log.flush(), timeout=2.0)

        events = running_log.recent()
        assert [e.action for e in events] == [
            ACTION_CONNECTED, ACTION_USERNAME_SET, ACTION_DISCONNECTED,
        ]
        assert events[1].display_name == "a\\ud800"

    async def test_recent_limit(self, running_log):
        for i in range(60):
            running_log.record(ACTION_CONNECTED, f"10.0.0.{i}")
        await asyncio.wait_for(running_log.flush(), timeout=5.0)
        recent = running_log.recent(50)
        assert len(recent) == 50
        assert recent[0].origin_address == "10.0.0.10"
        assert recent[-1].origin_address == "10.0.0.59"
        assert running_log.recent(0) == []

    async def test_write_failure_does_not_stop_worker(self, tmp_path, caplog):
        # A directory where the file should be makes every append fail.
        target = tmp_path / "connections.log"
        target.mkdir()
        audit = AuditLog(target)
        task = asyncio.create_task(audit.run())
        try:
            audit.record(ACTION_CONNECTED, "10.0.0.1")
            audit.record(ACTION_CONNECTED, "10.0.0.2")
            await asyncio.wait_for(audit.flush(), timeout=2.0)
        finally:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        assert "failed to write audit event" in caplog.text
        assert task.cancelled()
