"""Run context store and sweeper tests."""
import asyncio
import logging
from datetime import timedelta

import pytest

from rag_pipeline.context_store import ContextSweeper, RunContextStore
from rag_pipeline.models import utcnow


def test_create_assigns_unique_ids():
    store = RunContextStore()
    ids = {store.create().run_id for _ in range(50)}
    assert len(ids) == 50
    assert len(store) == 50


def test_get_and_remove():
    store = RunContextStore()
    context = store.create("run-1")

    assert store.get("run-1") is context
    assert store.get("missing") is None
    assert store.remove("run-1")
    assert not store.remove("run-1")
    assert store.get("run-1") is None


def test_update_bumps_timestamp():
    store = RunContextStore()
    context = store.create()
    context.updated_at = utcnow() - timedelta(hours=1)

    context.state["url"] = "https://example.com"
    store.update(context)

    stored = store.get(context.run_id)
    assert stored.state["url"] == "https://example.com"
    assert utcnow() - stored.updated_at < timedelta(minutes=1)


def test_add_message_appends_in_order():
    store = RunContextStore()
    context = store.create()

    store.add_message(context, "scraper", "chunker", "fetched")
    store.add_message(context, "chunker", "embedding", "chunked", {"count": 3})

    messages = store.get(context.run_id).messages
    assert [m.content for m in messages] == ["fetched", "chunked"]
    assert messages[1].data == {"count": 3}


def test_contexts_are_isolated():
    store = RunContextStore()
    first = store.create()
    second = store.create()

    first.state["chunks"] = ["a"]
    store.update(first)

    assert "chunks" not in store.get(second.run_id).state


def test_cleanup_evicts_only_stale_contexts():
    store = RunContextStore()
    stale = store.create()
    fresh = store.create()
    stale.updated_at = utcnow() - timedelta(days=2)

    evicted = store.cleanup(timedelta(days=1))

    assert evicted == 1
    assert store.get(stale.run_id) is None
    assert store.get(fresh.run_id) is fresh
    assert store.cleanup(86400) == 0


@pytest.mark.asyncio
async def test_sweeper_evicts_in_background():
    store = RunContextStore()
    store.create().updated_at = utcnow() - timedelta(seconds=10)

    sweeper = ContextSweeper(store, max_age=5, interval=0.01)
    sweeper.start()
    assert sweeper.running

    await asyncio.sleep(0.05)
    await sweeper.stop()

    assert len(store) == 0
    assert not sweeper.running


@pytest.mark.asyncio
async def test_sweeper_survives_cleanup_errors(caplog):
    store = RunContextStore()
    calls = []

    def failing_cleanup(max_age):
        calls.append(max_age)
        raise RuntimeError("boom")

    store.cleanup = failing_cleanup
    sweeper = ContextSweeper(store, interval=0.01, retry_delay=0.01)

    with caplog.at_level(logging.ERROR, logger="rag_pipeline.context_store"):
        sweeper.start()
        await asyncio.sleep(0.05)
        assert sweeper.running
        await sweeper.stop()

    assert len(calls) >= 2
    assert "Error during context cleanup" in caplog.text
