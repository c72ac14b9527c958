"""Sequential, fail-fast execution of pipeline stages."""
import asyncio
import logging
import time
from typing import List, Optional, Sequence

from .cancellation import CancellationToken
from .context_store import RunContextStore
from .errors import RAGPipelineError, RunCancelled
from .models import (
    PipelineRunResult,
    RunContext,
    RunStatus,
    StageReport,
    StageResult,
)
from .stages.base import Stage

logger = logging.getLogger(__name__)

# Context keys copied into a run result
DEFAULT_OUTPUT_KEYS = (
    "url",
    "title",
    "document_id",
    "chunks_processed",
    "chunks_stored",
    "chunk_size",
    "chunk_overlap",
)


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000.0


class PipelineOrchestrator:
    """
    Runs the stages of one pipeline against a run context.

    Stages run strictly in order; each stage's output keys are written to
    the context before the next one starts. The first failure (a failed
    result or an exception) ends the run. Earlier stages' side effects are
    left in place.
    """

    def __init__(
        self,
        store: Optional[RunContextStore] = None,
        output_keys: Sequence[str] = DEFAULT_OUTPUT_KEYS,
    ):
        """
        Initialize orchestrator.

        Args:
            store: Context store to publish context snapshots to (optional)
            output_keys: Context keys reported in a successful result
        """
        self.store = store
        self.output_keys = tuple(output_keys)

    def _save(self, context: RunContext) -> None:
        if self.store is not None:
            self.store.update(context)
        else:
            context.touch()

    async def execute(
        self,
        context: RunContext,
        stages: List[Stage],
        cancel_token: Optional[CancellationToken] = None,
        pipeline_name: Optional[str] = None,
    ) -> PipelineRunResult:
        """
        Execute stages in order.

        Args:
            context: Run context (owned by this run)
            stages: Instantiated stages
            cancel_token: Cancellation token (a fresh one if omitted)
            pipeline_name: Pipeline name for reporting

        Returns:
            PipelineRunResult with status completed, failed or cancelled
        """
        token = cancel_token or CancellationToken(context.run_id)
        if pipeline_name:
            context.pipeline = pipeline_name

        context.status = RunStatus.RUNNING
        self._save(context)

        reports: List[StageReport] = []
        run_start = time.perf_counter()

        logger.info(
            f"Run {context.run_id}: executing pipeline '{context.pipeline}' "
            f"({' -> '.join(s.name for s in stages)})"
        )

        for index, stage in enumerate(stages):
            stage_start = time.perf_counter()

            try:
                token.raise_if_cancelled()
                logger.info(f"Run {context.run_id}: stage {index + 1}/{len(stages)} '{stage.name}'")
                result = await stage.run(context, token)
            except RunCancelled:
                return self._cancelled(context, stages, reports, stage.name, run_start)
            except asyncio.CancelledError:
                context.status = RunStatus.CANCELLED
                self._save(context)
                raise
            except RAGPipelineError as e:
                logger.error(f"Run {context.run_id}: stage '{stage.name}' raised {type(e).__name__}: {e.message}")
                result = StageResult.failure(e.message, e.errors)
            except Exception as e:
                logger.exception(f"Run {context.run_id}: stage '{stage.name}' raised an unexpected error")
                result = StageResult.failure(f"Unexpected error: {e}", [type(e).__name__])

            report = StageReport(
                stage=stage.name,
                success=result.success,
                message=result.message,
                duration_ms=_elapsed_ms(stage_start),
                errors=result.errors,
            )
            reports.append(report)

            if not result.success:
                return self._failed(context, stages, reports, stage.name, result, run_start)

            context.state.update(result.data)
            recipient = stages[index + 1].name if index + 1 < len(stages) else "System"
            context.add_message(stage.name, recipient, result.message, {"keys": sorted(result.data)})
            self._save(context)

            logger.debug(f"Run {context.run_id}: '{stage.name}' completed in {report.duration_ms:.1f}ms")

        context.status = RunStatus.COMPLETED
        self._save(context)

        result = PipelineRunResult(
            run_id=context.run_id,
            pipeline=context.pipeline,
            status=RunStatus.COMPLETED,
            message=f"Pipeline completed successfully ({len(stages)} stages)",
            stage_count=len(stages),
            stages=reports,
            total_duration_ms=_elapsed_ms(run_start),
            outputs={k: context.state[k] for k in self.output_keys if k in context.state},
        )
        logger.info(result.summary())
        return result

    def _failed(
        self,
        context: RunContext,
        stages: List[Stage],
        reports: List[StageReport],
        stage_name: str,
        stage_result: StageResult,
        run_start: float,
    ) -> PipelineRunResult:
        context.status = RunStatus.FAILED
        context.add_message(
            stage_name,
            "System",
            f"Stage failed: {stage_result.message}",
            {"errors": stage_result.errors},
        )
        self._save(context)

        completed = [r.stage for r in reports if r.success]
        result = PipelineRunResult(
            run_id=context.run_id,
            pipeline=context.pipeline,
            status=RunStatus.FAILED,
            message=stage_result.message,
            stage_count=len(stages),
            stages=reports,
            failed_stage=stage_name,
            errors=stage_result.errors,
            total_duration_ms=_elapsed_ms(run_start),
        )
        logger.error(
            f"{result.summary()} (completed before failure: {', '.join(completed) or 'none'})"
        )
        return result

    def _cancelled(
        self,
        context: RunContext,
        stages: List[Stage],
        reports: List[StageReport],
        stage_name: str,
        run_start: float,
    ) -> PipelineRunResult:
        context.status = RunStatus.CANCELLED
        context.add_message("Orchestrator", "System", f"Run cancelled before completing '{stage_name}'")
        self._save(context)

        result = PipelineRunResult(
            run_id=context.run_id,
            pipeline=context.pipeline,
            status=RunStatus.CANCELLED,
            message=f"Run cancelled at stage '{stage_name}'",
            stage_count=len(stages),
            stages=reports,
            total_duration_ms=_elapsed_ms(run_start),
            outputs={k: context.state[k] for k in self.output_keys if k in context.state},
        )
        logger.info(result.summary())
        return result
