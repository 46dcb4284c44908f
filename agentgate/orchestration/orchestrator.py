from __future__ import annotations

import contextvars
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, Sequence
from uuid import uuid4

from ..core.config import Settings, get_settings
from ..core.exceptions import BlockedRisk, ExecutorError, GuardrailFailure
from ..core.logging import get_logger, request_context
from ..core.metrics import (
    record_checkpoint_write,
    increment_guardrail_decision,
    observe_pipeline_run,
    record_risk_assessment,
    record_routing_outcome,
)
from ..schemas.graph import WorkerNode
from ..schemas.guardrails import ActionRequest, GuardrailResult, GuardrailStage
from ..schemas.orchestrator import (
    ExecutorResult,
    HaltReason,
    PipelineRequest,
    PipelineResponse,
    PipelineState,
)
from ..schemas.risk import AssessmentRequest, CheckpointResult, RiskProfile
from .capability_graph import CapabilityGraph, GraphRegistry
from .guardrails import GuardrailPipeline
from .learning import OutcomeLedger, TaskOutcome
from .risk import RiskAssessor
from .routing import GraphRouter, RoutingDecision

__all__ = ["Executor", "Orchestrator"]

logger = get_logger(name=__name__)

_STAGE_HALT_REASONS = {
    GuardrailStage.REASONING: HaltReason.REASONING_GUARDRAIL,
    GuardrailStage.ACTION: HaltReason.ACTION_GUARDRAIL,
    GuardrailStage.OUTPUT: HaltReason.OUTPUT_GUARDRAIL,
}


class Executor(Protocol):
    """External collaborator that turns a routed request into real effects."""

    def propose_action(self, request: PipelineRequest, workers: Sequence[WorkerNode]) -> ActionRequest:
        ...

    def execute(self, action: ActionRequest, workers: Sequence[WorkerNode]) -> ExecutorResult:
        ...


@dataclass(slots=True)
class _PipelineRun:
    request_id: str
    request: PipelineRequest
    graph: CapabilityGraph
    started_at: float = field(default_factory=time.perf_counter)
    transitions: list[PipelineState] = field(default_factory=list)
    guardrail_failures: list[GuardrailResult] = field(default_factory=list)
    profile: RiskProfile | None = None
    decision: RoutingDecision | None = None
    checkpoint_id: str | None = None
    executor_result: ExecutorResult | None = None
    output_suppressed: bool = False

    def advance(self, state: PipelineState) -> None:
        self.transitions.append(state)

    @property
    def state(self) -> PipelineState:
        return self.transitions[-1]

    @property
    def elapsed(self) -> float:
        return time.perf_counter() - self.started_at


class Orchestrator:
    """Drives one request through risk assessment, guardrails, routing and execution.

    Each call to :meth:`process` is a single sequential pass. A failing gate
    short-circuits the remaining stages and the response carries the terminal
    state together with the failing reason.
    """

    def __init__(
        self,
        *,
        graphs: GraphRegistry | CapabilityGraph | None = None,
        executor: Executor,
        risk_assessor: RiskAssessor | None = None,
        guardrails: GuardrailPipeline | None = None,
        ledger: OutcomeLedger | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        if graphs is None:
            graphs = GraphRegistry.from_settings(self._settings)
        self._graphs = graphs if isinstance(graphs, GraphRegistry) else GraphRegistry(graphs)
        self._executor = executor
        self._assessor = risk_assessor or RiskAssessor(settings=self._settings)
        self._guardrails = guardrails or GuardrailPipeline(settings=self._settings)
        if ledger is None and self._settings.learning.enabled:
            ledger = OutcomeLedger(settings=self._settings)
        self._ledger = ledger
        self._snapshot_slots = self._settings.checkpoints.max_workers
        self._snapshots = ThreadPoolExecutor(
            max_workers=self._snapshot_slots,
            thread_name_prefix="agentgate-checkpoint",
        )
        self._pending: set[Future[CheckpointResult]] = set()
        self._pending_lock = threading.Lock()

    @property
    def graphs(self) -> GraphRegistry:
        return self._graphs

    @property
    def risk_assessor(self) -> RiskAssessor:
        return self._assessor

    @property
    def guardrails(self) -> GuardrailPipeline:
        return self._guardrails

    @property
    def ledger(self) -> OutcomeLedger | None:
        return self._ledger

    def close(self) -> None:
        self._snapshots.shutdown(wait=False)

    def __enter__(self) -> Orchestrator:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def process(self, request: PipelineRequest | Mapping[str, Any]) -> PipelineResponse:
        if not isinstance(request, PipelineRequest):
            request = PipelineRequest.model_validate(request)
        run = _PipelineRun(
            request_id=request.request_id or uuid4().hex,
            request=request,
            graph=self._graphs.current,
        )
        run.advance(PipelineState.RECEIVED)
        with request_context(run.request_id):
            try:
                response = self._run(run)
            except BlockedRisk as exc:
                response = self._halt(run, HaltReason.BLOCKED_BY_RISK, exc.profile.blocked_reason or str(exc))
            except GuardrailFailure as exc:
                response = self._halt(run, _STAGE_HALT_REASONS[exc.result.level], exc.reason)
            except ExecutorError as exc:
                response = self._halt(run, HaltReason.EXECUTOR_ERROR, str(exc))
            self._finish(run, response)
        return response

    def _run(self, run: _PipelineRun) -> PipelineResponse:
        request = run.request
        profile = self._assessor.analyze(
            AssessmentRequest(
                instruction=request.instruction,
                target_files=request.target_files,
                previous_errors=request.previous_errors,
            )
        )
        run.profile = profile
        if self._settings.observability.metrics_enabled:
            record_risk_assessment(level=profile.level.value)
        logger.info(
            "risk_assessed",
            level=profile.level.value,
            score=profile.score,
            reasons=list(profile.reasons),
        )
        run.advance(PipelineState.RISK_ASSESSED)
        if profile.blocked:
            raise BlockedRisk(profile)

        self._check(run, self._guardrails.validate_reasoning(request.instruction))
        run.advance(PipelineState.REASONING_CHECKED)

        decision = GraphRouter(run.graph, settings=self._settings).decide(
            request.intent,
            instruction=request.instruction,
        )
        run.decision = decision
        if self._settings.observability.metrics_enabled:
            record_routing_outcome(reason=decision.reason)
        run.advance(PipelineState.ROUTED)

        if profile.requires_confirmation and not request.confirmed:
            logger.info(
                "pipeline_awaiting_confirmation",
                level=profile.level.value,
            )
            return self._response(
                run,
                reason=self._assessor.confirmation_prompt(profile),
                awaiting_confirmation=True,
            )

        if profile.requires_backup:
            run.checkpoint_id = self._checkpoint(run)

        action = request.action or self._propose(request, decision.workers)
        self._check(run, self._guardrails.validate_action(action))
        run.advance(PipelineState.ACTION_CHECKED)

        result = self._execute(action, decision.workers)
        run.executor_result = result
        run.advance(PipelineState.EXECUTED)

        scanned = "\n".join(text for text in (result.output_text, result.error) if text)
        output_check = self._guardrails.validate_output(scanned)
        if not output_check.passed:
            run.executor_result = result.model_copy(update={"output_text": None, "error": None})
            run.output_suppressed = True
        self._check(run, output_check)
        run.advance(PipelineState.OUTPUT_CHECKED)

        if not result.success:
            raise ExecutorError(result.error or "executor reported failure")

        run.advance(PipelineState.DONE)
        logger.info(
            "pipeline_completed",
            workers=decision.names,
            checkpoint_id=run.checkpoint_id,
        )
        return self._response(run)

    def _check(self, run: _PipelineRun, result: GuardrailResult) -> None:
        if self._settings.observability.metrics_enabled:
            increment_guardrail_decision(stage=result.level.value, passed=result.passed, rule=result.rule)
        if result.passed:
            return
        run.guardrail_failures.append(result)
        logger.warning(
            "guardrail_failed",
            stage=result.level.value,
            rule=result.rule,
            reason=result.reason,
        )
        raise GuardrailFailure(result)

    def _checkpoint(self, run: _PipelineRun) -> str | None:
        request = run.request
        timeout = self._settings.checkpoints.timeout_seconds
        with self._pending_lock:
            busy = len(self._pending)
            if busy >= self._snapshot_slots:
                record_checkpoint_write(outcome="skipped")
                logger.warning("checkpoint_pool_saturated", busy=busy, max_workers=self._snapshot_slots)
                return None
            try:
                # snapshot logs keep the bound request_id
                future = self._snapshots.submit(
                    contextvars.copy_context().run,
                    self._assessor.create_checkpoint,
                    request.target_path,
                    request.target_files,
                )
            except RuntimeError as exc:
                record_checkpoint_write(outcome="skipped")
                logger.warning("checkpoint_pool_closed", error=str(exc))
                return None
            self._pending.add(future)
        future.add_done_callback(self._release_slot)
        try:
            result = future.result(timeout=timeout)
        except FutureTimeoutError:
            logger.warning(
                "checkpoint_timeout",
                timeout_seconds=timeout,
            )
            return None
        except Exception as exc:  # a failed snapshot is never fatal
            logger.warning(
                "checkpoint_failed",
                error=str(exc) or exc.__class__.__name__,
                error_type=exc.__class__.__name__,
            )
            return None
        if not result.success:
            logger.warning(
                "checkpoint_skipped",
                checkpoint_id=result.checkpoint_id,
                message=result.message,
            )
            return None
        return result.checkpoint_id

    def _release_slot(self, future: Future[CheckpointResult]) -> None:
        with self._pending_lock:
            self._pending.discard(future)

    def _propose(self, request: PipelineRequest, workers: Sequence[WorkerNode]) -> ActionRequest:
        try:
            return self._executor.propose_action(request, workers)
        except Exception as exc:  # executor errors are opaque
            message = str(exc) or exc.__class__.__name__
            logger.error("action_proposal_failed", error=message)
            raise ExecutorError(message) from exc

    def _execute(self, action: ActionRequest, workers: Sequence[WorkerNode]) -> ExecutorResult:
        try:
            return self._executor.execute(action, workers)
        except Exception as exc:  # executor errors are opaque
            message = str(exc) or exc.__class__.__name__
            logger.error(
                "executor_failed",
                action=action.type,
                error=message,
            )
            return ExecutorResult(success=False, error=message)

    def _halt(self, run: _PipelineRun, reason: HaltReason, message: str) -> PipelineResponse:
        run.advance(PipelineState.HALTED)
        logger.warning(
            "pipeline_halted",
            halt_reason=reason.value,
            reason=message,
            at=run.transitions[-2].value,
        )
        return self._response(run, halt_reason=reason, reason=message)

    def _response(
        self,
        run: _PipelineRun,
        *,
        halt_reason: HaltReason | None = None,
        reason: str | None = None,
        awaiting_confirmation: bool = False,
    ) -> PipelineResponse:
        decision = run.decision
        return PipelineResponse(
            request_id=run.request_id,
            state=run.state,
            halt_reason=halt_reason,
            reason=reason,
            risk_profile=run.profile,
            guardrail_failures=list(run.guardrail_failures),
            routed_workers=decision.names if decision else [],
            routing_reason=decision.reason if decision else None,
            executor_result=run.executor_result,
            checkpoint_id=run.checkpoint_id,
            awaiting_confirmation=awaiting_confirmation,
            output_suppressed=run.output_suppressed,
            transitions=list(run.transitions),
        )

    def _finish(self, run: _PipelineRun, response: PipelineResponse) -> None:
        if self._settings.observability.metrics_enabled:
            observe_pipeline_run(
                state=response.state.value,
                reason=(
                    response.halt_reason.value
                    if response.halt_reason
                    else ("awaiting-confirmation" if response.awaiting_confirmation else None)
                ),
                latency=run.elapsed,
            )
        if self._ledger is None or response.awaiting_confirmation:
            return
        executor_result = response.executor_result
        self._ledger.record(
            TaskOutcome(
                request_id=run.request_id,
                state=response.state,
                halt_reason=response.halt_reason,
                workers=tuple(response.routed_workers),
                success=response.state is PipelineState.DONE,
                error=response.reason if response.halt_reason else (executor_result.error if executor_result else None),
            )
        )
