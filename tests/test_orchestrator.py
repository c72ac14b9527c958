"""Orchestrator tests: ordering, fail-fast, cancellation, isolation."""
import asyncio
import logging

import pytest

from rag_pipeline.cancellation import CancellationToken
from rag_pipeline.context_store import RunContextStore
from rag_pipeline.errors import RunCancelled, ValidationError
from rag_pipeline.models import RunStatus, StageResult
from rag_pipeline.orchestrator import PipelineOrchestrator
from rag_pipeline.stages import Stage


class RecordingStage(Stage):
    def __init__(self, name, data=None, fail=False, error=None, on_run=None, log=None):
        super().__init__()
        self.name = name
        self.data = data or {}
        self.fail = fail
        self.error = error
        self.on_run = on_run
        self.log = log if log is not None else []

    async def run(self, context, cancel_token):
        self.log.append(self.name)
        if self.on_run:
            self.on_run(context, cancel_token)
        if self.error:
            raise self.error
        if self.fail:
            return StageResult.failure(f"{self.name} could not finish", ["disk full"])
        await asyncio.sleep(0)
        return StageResult.ok(f"{self.name} done", dict(self.data))


@pytest.fixture
def store() -> RunContextStore:
    return RunContextStore()


@pytest.fixture
def orchestrator(store) -> PipelineOrchestrator:
    return PipelineOrchestrator(store)


@pytest.mark.asyncio
async def test_runs_stages_in_order_and_collects_outputs(store, orchestrator):
    log = []
    stages = [
        RecordingStage("scraper", {"url": "https://example.com", "raw_content": "text"}, log=log),
        RecordingStage("chunker", {"chunks": ["text"], "chunks_processed": 1}, log=log),
        RecordingStage("storage", {"document_id": "doc-1", "chunks_stored": 1}, log=log),
    ]
    context = store.create()

    result = await orchestrator.execute(context, stages, pipeline_name="default")

    assert result.status == RunStatus.COMPLETED
    assert result.success
    assert log == ["scraper", "chunker", "storage"]
    assert result.stage_count == 3
    assert [r.stage for r in result.stages] == log
    assert all(r.duration_ms >= 0 for r in result.stages)
    assert result.total_duration_ms >= 0
    assert result.outputs == {
        "url": "https://example.com",
        "document_id": "doc-1",
        "chunks_processed": 1,
        "chunks_stored": 1,
    }

    stored = store.get(context.run_id)
    assert stored.status == RunStatus.COMPLETED
    assert stored.pipeline == "default"
    assert [(m.sender, m.recipient) for m in stored.messages] == [
        ("scraper", "chunker"),
        ("chunker", "storage"),
        ("storage", "System"),
    ]


@pytest.mark.asyncio
async def test_each_stage_sees_previous_outputs(store, orchestrator):
    seen = {}

    def check(context, token):
        seen.update(context.state)

    stages = [
        RecordingStage("first", {"raw_content": "abc"}),
        RecordingStage("second", on_run=check),
    ]
    await orchestrator.execute(store.create(), stages)

    assert seen == {"raw_content": "abc"}


@pytest.mark.asyncio
async def test_failure_stops_the_run_without_rollback(store, orchestrator):
    log = []
    stages = [
        RecordingStage("scraper", {"raw_content": "text"}, log=log),
        RecordingStage("embedding", fail=True, log=log),
        RecordingStage("storage", log=log),
    ]
    context = store.create()

    result = await orchestrator.execute(context, stages)

    assert result.status == RunStatus.FAILED
    assert log == ["scraper", "embedding"]
    assert result.failed_stage == "embedding"
    assert result.message == "embedding could not finish"
    assert result.errors == ["disk full"]
    assert [(r.stage, r.success) for r in result.stages] == [("scraper", True), ("embedding", False)]

    stored = store.get(context.run_id)
    assert stored.status == RunStatus.FAILED
    assert stored.state["raw_content"] == "text"
    assert stored.messages[-1].content.startswith("Stage failed")


@pytest.mark.asyncio
async def test_pipeline_errors_become_failed_results(store, orchestrator):
    stages = [
        RecordingStage("embedding", error=ValidationError("Chunk/embedding count mismatch", ["3 vs 2"])),
        RecordingStage("storage"),
    ]

    result = await orchestrator.execute(store.create(), stages)

    assert result.status == RunStatus.FAILED
    assert result.failed_stage == "embedding"
    assert "count mismatch" in result.message
    assert result.errors == ["3 vs 2"]


@pytest.mark.asyncio
async def test_unexpected_exceptions_become_failed_results(store, orchestrator):
    result = await orchestrator.execute(store.create(), [RecordingStage("scraper", error=KeyError("x"))])

    assert result.status == RunStatus.FAILED
    assert result.message.startswith("Unexpected error")
    assert result.errors == ["KeyError"]


@pytest.mark.asyncio
async def test_cancellation_after_second_stage(store, orchestrator, caplog):
    log = []
    token = CancellationToken()
    stages = [
        RecordingStage("one", {"raw_content": "text"}, log=log),
        RecordingStage("two", {"chunks": ["text"]}, on_run=lambda ctx, tok: tok.cancel(), log=log),
        RecordingStage("three", {"embeddings": [[1.0]]}, log=log),
        RecordingStage("four", log=log),
    ]
    context = store.create()

    with caplog.at_level(logging.INFO):
        result = await orchestrator.execute(context, stages, cancel_token=token)

    assert result.status == RunStatus.CANCELLED
    assert not result.success
    assert log == ["one", "two"]
    assert len(result.stages) == 2

    stored = store.get(context.run_id)
    assert stored.status == RunStatus.CANCELLED
    assert stored.state["raw_content"] == "text"
    assert stored.state["chunks"] == ["text"]
    assert "embeddings" not in stored.state
    assert not [r for r in caplog.records if r.levelno >= logging.ERROR]


@pytest.mark.asyncio
async def test_cancellation_raised_inside_a_stage(store, orchestrator):
    stages = [RecordingStage("embedding", error=RunCancelled("run-x")), RecordingStage("storage")]
    result = await orchestrator.execute(store.create(), stages)
    assert result.status == RunStatus.CANCELLED


@pytest.mark.asyncio
async def test_concurrent_runs_do_not_share_state(store, orchestrator):
    def stage_for(value):
        return [
            RecordingStage("writer", {"url": value}),
            RecordingStage("reader", on_run=lambda ctx, tok: ctx.state.setdefault("seen", ctx.state["url"])),
        ]

    first, second = store.create(), store.create()
    await asyncio.gather(
        orchestrator.execute(first, stage_for("a")),
        orchestrator.execute(second, stage_for("b")),
    )

    assert store.get(first.run_id).state == {"url": "a", "seen": "a"}
    assert store.get(second.run_id).state == {"url": "b", "seen": "b"}


@pytest.mark.asyncio
async def test_works_without_a_context_store():
    from rag_pipeline.models import RunContext

    context = RunContext(run_id="standalone")
    result = await PipelineOrchestrator().execute(context, [RecordingStage("only", {"url": "u"})])
    assert result.outputs == {"url": "u"}
