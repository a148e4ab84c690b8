"""Tests for the retention sweeper."""
import asyncio
import logging
from datetime import timedelta

import pytest

from dmrelay.rooms.retention import RetentionSweeper
from dmrelay.rooms.store import RoomStore


def test_stale_room_deleted_and_recent_room_kept(backend, make_message):
    backend.save("alice_bob", [make_message(age=timedelta(days=31))])
    backend.save("carol_dave", [make_message(room_id="carol_dave", age=timedelta(days=29))])

    report = RetentionSweeper(backend, keep_days=30).sweep_once()

    assert report.deleted_stale == ["alice_bob"]
    assert report.kept == ["carol_dave"]
    assert backend.list_rooms() == ["carol_dave"]


def test_empty_room_deleted(backend):
    backend.save("alice_bob", [])
    report = RetentionSweeper(backend).sweep_once()
    assert report.deleted_empty == ["alice_bob"]
    assert backend.list_rooms() == []


def test_age_uses_last_message(backend, make_message):
    backend.save("alice_bob", [
        make_message(text="old", age=timedelta(days=90)),
        make_message(text="recent", age=timedelta(days=1)),
    ])
    report = RetentionSweeper(backend, keep_days=30).sweep_once()
    assert report.kept == ["alice_bob"]


def test_keep_days_is_configurable(backend, make_message):
    backend.save("alice_bob", [make_message(age=timedelta(days=3))])
    report = RetentionSweeper(backend, keep_days=2).sweep_once()
    assert report.deleted_stale == ["alice_bob"]


def test_explicit_now(backend, make_message):
    msg = make_message()
    backend.save("alice_bob", [msg])
    sweeper = RetentionSweeper(backend, keep_days=30)
    assert sweeper.sweep_once(now=msg.time + timedelta(days=29)).kept == ["alice_bob"]
    assert sweeper.sweep_once(now=msg.time + timedelta(days=31)).deleted_stale == ["alice_bob"]


def test_corrupt_room_skipped(backend, make_message, caplog):
    (backend.data_dir / "room_alice_bob.json").write_text("garbage", encoding="utf-8")
    backend.save("carol_dave", [])

    report = RetentionSweeper(backend).sweep_once()

    assert report.failed == ["alice_bob"]
    assert report.deleted_empty == ["carol_dave"]
    assert backend.list_rooms() == ["alice_bob"]
    assert "Error checking room file for alice_bob" in caplog.text


def test_sweep_does_not_touch_cache(backend, make_message):
    """A swept room stays servable from memory until restart."""
    store = RoomStore(backend)
    store.append("alice_bob", make_message(age=timedelta(days=40)))

    RetentionSweeper(backend, keep_days=30).sweep_once()

    assert backend.list_rooms() == []
    assert store.message_count("alice_bob") == 1


def test_sweep_of_empty_directory(backend):
    report = RetentionSweeper(backend).sweep_once()
    assert report.deleted == [] and report.kept == [] and report.failed == []


def test_start_runs_initial_sweep_and_stop_cancels(backend):
    backend.save("alice_bob", [])
    sweeper = RetentionSweeper(backend, interval_seconds=3600)

    async def scenario():
        await sweeper.start(run_now=True)
        assert backend.list_rooms() == []
        await sweeper.stop()

    asyncio.run(scenario())


def test_periodic_sweep(backend):
    sweeper = RetentionSweeper(backend, interval_seconds=0.01)

    async def scenario():
        await sweeper.start(run_now=False)
        backend.save("alice_bob", [])
        for _ in range(200):
            if not backend.list_rooms():
                break
            await asyncio.sleep(0.01)
        await sweeper.stop()

    asyncio.run(scenario())
    assert backend.list_rooms() == []


@pytest.mark.parametrize("days", [0, 7, 30])
def test_retention_window(backend, days):
    assert RetentionSweeper(backend, keep_days=days).retention == timedelta(days=days)


def test_start_logs_configured_keep_days(backend, caplog):
    sweeper = RetentionSweeper(backend, keep_days=0.5, interval_seconds=3600)

    async def scenario():
        await sweeper.start(run_now=False)
        await sweeper.stop()

    with caplog.at_level(logging.INFO, logger="dmrelay.rooms.retention"):
        asyncio.run(scenario())
    assert "keep_days=0.5" in caplog.text
