"""
Edit Orchestrator Agent - single-pass image editing turn.

Drives one user turn through the grounding pipeline: measure the image,
show the model that ground truth, validate every proposed tool call
against it, execute the valid ones in order, check what each one actually
did, and persist what worked.
"""

import asyncio
import time
from typing import Any, Dict, List, Optional, Tuple

import httpx

from src.utils.logger import get_logger, set_correlation_context
from src.utils.metrics import (
    llm_error_count,
    tool_call_count,
    turn_count,
    turn_duration,
    validation_confidence,
)

from design_grounding.core.agent import AgentResult, BaseAgent, TurnContext, TurnState
from design_grounding.core.config import GroundingConfig, get_config
from design_grounding.core.exceptions import (
    GroundingError,
    LLMConfigurationError,
    LLMTimeoutError,
    RateLimitError,
)
from design_grounding.core.llm_client import LLMClient, LLMResponse
from design_grounding.core.message import ToolCall, build_llm_messages
from design_grounding.imaging.loader import LoadedImage, to_model_url
from design_grounding.models.analysis import ImageAnalysis
from design_grounding.models.context import ConversationContext
from design_grounding.models.execution import (
    ImageSpecsSnapshot,
    ResultMetrics,
    ToolExecution,
)
from design_grounding.models.orchestration import (
    ErrorCategory,
    OrchestratorRequest,
    OrchestratorResponse,
    PlannedToolCall,
    PlanResult,
    ToolExecutionResult,
)
from design_grounding.services.clarification_service import ClarificationService
from design_grounding.services.context_store_service import ContextStoreService
from design_grounding.services.failure_analysis_service import FailureAnalysisService
from design_grounding.services.image_analysis_service import ImageAnalysisService
from design_grounding.services.parameter_validation_service import ParameterValidationService
from design_grounding.services.prompt_builder_service import PromptBuilderService
from design_grounding.services.result_validation_service import ResultValidationService
from design_grounding.tools.executor import PillowToolExecutor, ToolExecutor
from design_grounding.tools.image_tools import decode_tool_call
from design_grounding.tools.registry import ToolRegistry, get_registry

logger = get_logger(__name__)


ERROR_MESSAGE = "I encountered an error processing your request. Please try again."


def classify_llm_error(error: BaseException) -> ErrorCategory:
    """Map a failed model round-trip onto the retry taxonomy."""
    if isinstance(error, RateLimitError):
        return ErrorCategory.RATE_LIMIT
    if isinstance(error, (LLMTimeoutError, httpx.TimeoutException, asyncio.TimeoutError)):
        return ErrorCategory.TIMEOUT
    if isinstance(error, LLMConfigurationError):
        return ErrorCategory.CONFIGURATION

    text = str(error).lower()
    if "rate limit" in text or "429" in text:
        return ErrorCategory.RATE_LIMIT
    if "timeout" in text or "timed out" in text:
        return ErrorCategory.TIMEOUT
    if "api key" in text or "unauthorized" in text or "401" in text:
        return ErrorCategory.CONFIGURATION
    return ErrorCategory.UNKNOWN


class EditOrchestratorAgent(BaseAgent):
    """
    Grounded image-editing orchestrator.

    One call to process() is one turn:
    AnalyzingImage -> CallingModel -> (ValidatingTool -> Executing)* ->
    Scoring -> Persisting -> Done, or Errored when the model round-trip
    fails. Tool failures never abort the turn; each is reported on its own
    ToolExecutionResult.
    """

    def __init__(
        self,
        llm_client: Optional[LLMClient] = None,
        analysis_service: Optional[ImageAnalysisService] = None,
        validation_service: Optional[ParameterValidationService] = None,
        result_validation_service: Optional[ResultValidationService] = None,
        context_store: Optional[ContextStoreService] = None,
        executor: Optional[ToolExecutor] = None,
        failure_service: Optional[FailureAnalysisService] = None,
        prompt_builder: Optional[PromptBuilderService] = None,
        clarification_service: Optional[ClarificationService] = None,
        registry: Optional[ToolRegistry] = None,
        config: Optional[GroundingConfig] = None,
    ):
        """
        Initialize the Edit Orchestrator.

        Every collaborator is optional; defaults are built from the
        grounding policy. Collaborators passed in are not closed by close().
        """
        super().__init__(
            name="edit_orchestrator",
            description="Grounds model-proposed image edits in measured image data",
        )

        self._config = config or get_config()
        self._registry = registry or get_registry()

        profile = self._config.model
        self._llm = llm_client or LLMClient(
            timeout=profile.timeout_seconds,
            max_retries=profile.max_retries,
            retry_delay=profile.retry_delay_seconds,
        )
        self._owns_llm = llm_client is None

        self._analysis = analysis_service or ImageAnalysisService(self._config.analyzer)
        self._owns_analysis = analysis_service is None

        self._store = context_store or ContextStoreService(self._config.context_store)
        self._owns_store = context_store is None

        self._validator = validation_service or ParameterValidationService(
            self._config.validator, context_store=self._store, registry=self._registry
        )
        self._result_validator = result_validation_service or ResultValidationService(
            self._config.result_validator, analysis_service=self._analysis, registry=self._registry
        )
        self._owns_result_validator = result_validation_service is None

        self._executor = executor or PillowToolExecutor()
        self._owns_executor = executor is None

        self._failures = failure_service or FailureAnalysisService(self._config.validator)
        self._prompts = prompt_builder or PromptBuilderService(self._config.analyzer)
        self._clarifier = clarification_service or ClarificationService(self._config.analyzer)

    @property
    def context_store(self) -> ContextStoreService:
        return self._store

    @property
    def validation_service(self) -> ParameterValidationService:
        return self._validator

    @property
    def analysis_service(self) -> ImageAnalysisService:
        return self._analysis

    def is_ready(self) -> bool:
        """Whether the model client has an API key."""
        return self._llm.is_configured

    async def get_conversation(self, conversation_id: str) -> Optional[ConversationContext]:
        return await self._store.get_context(conversation_id)

    async def close(self) -> None:
        """Close owned resources."""
        if self._owns_result_validator:
            await self._result_validator.close()
        if self._owns_executor:
            await self._executor.close()
        if self._owns_analysis:
            await self._analysis.close()
        if self._owns_store:
            await self._store.close()
        if self._owns_llm:
            await self._llm.close()

    async def __aenter__(self) -> "EditOrchestratorAgent":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # =========================================================================
    # TURN
    # =========================================================================

    async def run(self, request: OrchestratorRequest) -> AgentResult:
        """Run one turn and wrap the response in an AgentResult."""
        turn = self._start_turn()
        response = await self._process(request, turn)
        return self._create_result(
            success=response.success,
            data=response,
            turn=turn,
            error=response.error,
            error_code=response.error_category.value if response.error_category else None,
            model_used=self._config.model.primary_model,
        )

    async def process(self, request: OrchestratorRequest) -> OrchestratorResponse:
        """
        Process one user turn.

        Args:
            request: Message, image source and conversation context

        Returns:
            OrchestratorResponse. success is False only when the model
            round-trip failed; per-tool failures are in tool_executions.
        """
        return await self._process(request, self._start_turn())

    async def _process(self, request: OrchestratorRequest, turn: TurnContext) -> OrchestratorResponse:
        started = time.perf_counter()
        set_correlation_context(conversation_id=request.conversation_id)

        logger.info(
            "orchestrator.turn.start",
            message_length=len(request.message or ""),
            has_history=bool(request.conversation_history),
        )

        image, analysis = await self._analyze(request, turn)

        turn.transition(TurnState.CALLING_MODEL)
        try:
            llm_response = await self._call_model(request, analysis, turn)
        except Exception as e:
            response = self._errored(request, analysis, e, turn)
            self._observe_turn(response, started)
            return response

        calls = [ToolCall.from_llm_format(tc) for tc in llm_response.tool_calls]
        logger.info("orchestrator.model.responded", tool_calls=len(calls), tokens=llm_response.tokens_total)

        results: List[ToolExecutionResult] = []
        current_image = image
        for call in calls:
            result, current_image = await self._handle_call(call, analysis, current_image, turn)
            results.append(result)

        turn.transition(TurnState.SCORING)
        confidence = self.overall_confidence(analysis, results)

        turn.transition(TurnState.PERSISTING)
        message = self._compose_message(llm_response.content, results)
        await self._persist(request, analysis, results, message)

        turn.transition(TurnState.DONE)
        response = OrchestratorResponse(
            success=True,
            message=message,
            conversation_id=request.conversation_id,
            confidence=confidence,
            tool_executions=results,
            image_analysis=analysis,
            final_state=turn.state.value,
        )

        logger.info(
            "orchestrator.turn.complete",
            confidence=confidence,
            summary=response.summary,
        )
        self._observe_turn(response, started)
        return response

    async def plan(self, request: OrchestratorRequest) -> PlanResult:
        """
        Plan-only turn: analyze, ask the model, validate each proposed call.

        Nothing is executed and nothing is persisted. The result carries a
        clarification when the proposed workflow should be confirmed first.
        """
        turn = self._start_turn()
        set_correlation_context(conversation_id=request.conversation_id)
        logger.info("orchestrator.plan.start")

        image, analysis = await self._analyze(request, turn)

        turn.transition(TurnState.CALLING_MODEL)
        try:
            llm_response = await self._call_model(request, analysis, turn)
        except Exception as e:
            category = classify_llm_error(e)
            turn.transition(TurnState.ERRORED)
            llm_error_count.labels(category=category.value).inc()
            logger.error("orchestrator.plan.error", error=str(e), category=category.value)
            return PlanResult(
                success=False,
                message=ERROR_MESSAGE,
                image_analysis=analysis,
                error=str(e),
                error_category=category,
            )

        planned: List[PlannedToolCall] = []
        for call in (ToolCall.from_llm_format(tc) for tc in llm_response.tool_calls):
            turn.transition(TurnState.VALIDATING_TOOL)
            validation = await self._validator.validate_call(call, analysis, image)
            planned.append(PlannedToolCall(tool_name=call.name, parameters=call.arguments, validation=validation))

        turn.transition(TurnState.SCORING)
        clarification = self._clarifier.build(
            [(p.tool_name, p.parameters) for p in planned],
            analysis,
            request.message,
        )
        turn.transition(TurnState.DONE)

        logger.info(
            "orchestrator.plan.complete",
            tool_calls=len(planned),
            needs_clarification=clarification is not None,
        )
        return PlanResult(
            success=True,
            message=llm_response.content,
            tool_calls=planned,
            image_analysis=analysis,
            clarification=clarification,
        )

    # =========================================================================
    # STEPS
    # =========================================================================

    async def _analyze(
        self, request: OrchestratorRequest, turn: TurnContext
    ) -> Tuple[Optional[LoadedImage], ImageAnalysis]:
        turn.transition(TurnState.ANALYZING_IMAGE)
        image, analysis = await self._analysis.load_and_analyze(request.image_source)
        if analysis.is_fallback:
            logger.warning("orchestrator.analysis.degraded")
        else:
            logger.info(
                "orchestrator.analysis.complete",
                width=analysis.width,
                height=analysis.height,
                confidence=analysis.confidence,
            )
        return image, analysis

    async def _call_model(
        self, request: OrchestratorRequest, analysis: ImageAnalysis, turn: TurnContext
    ) -> LLMResponse:
        limit = self._config.orchestrator.history_messages
        if request.conversation_history is not None:
            history = request.conversation_history[-limit:] if limit else []
        else:
            history = await self._store.get_history(request.conversation_id, limit=limit)

        system_prompt = self._prompts.build_system_prompt(
            analysis,
            user_context=request.user_context,
            editing_history=request.editing_history,
        )
        image_url = to_model_url(request.image_source)
        messages = build_llm_messages(
            system_prompt,
            history,
            request.message,
            image_urls=[image_url] if image_url else None,
        )

        profile = self._config.model
        response = await self._llm.chat(
            messages,
            profile=profile,
            tools=self._registry.get_openai_schemas(),
        )
        turn.tokens_used += response.tokens_total
        return response

    async def _handle_call(
        self,
        call: ToolCall,
        analysis: ImageAnalysis,
        image: Optional[LoadedImage],
        turn: TurnContext,
    ) -> Tuple[ToolExecutionResult, Optional[LoadedImage]]:
        """Validate then execute one call. Returns the result and the image for the next call."""
        turn.transition(TurnState.VALIDATING_TOOL)
        validation = await self._validator.validate_call(call, analysis, image)
        validation_confidence.labels(tool=call.name or "unknown").observe(validation.confidence)

        result = ToolExecutionResult(
            tool_name=call.name,
            parameters=call.arguments,
            validation=validation,
            confidence=validation.confidence,
        )

        if not validation.is_valid:
            tool_call_count.labels(tool=call.name or "unknown", verdict="invalid").inc()
            result.error = "; ".join(validation.errors)
            result.failure_analysis = self._failures.analyze(
                call.name, call.arguments, analysis, validation=validation
            )
            logger.info("orchestrator.tool.rejected", tool=call.name, errors=validation.errors)
            return result, image

        logger.info("orchestrator.tool.validated", tool=call.name, confidence=validation.confidence)

        turn.transition(TurnState.EXECUTING)
        next_image = await self._execute(call, call.arguments, analysis, image, result)
        verdict = "succeeded" if result.execution_success else "failed"
        tool_call_count.labels(tool=call.name, verdict=verdict).inc()
        return result, next_image

    async def _execute(
        self,
        call: ToolCall,
        arguments: Dict[str, Any],
        analysis: ImageAnalysis,
        image: Optional[LoadedImage],
        result: ToolExecutionResult,
    ) -> Optional[LoadedImage]:
        """Run the executor and check its output. Fills result in place."""
        if image is None:
            result.error = "Image could not be loaded"
            result.failure_analysis = self._failures.analyze(call.name, arguments, analysis, error=result.error)
            return image

        started = time.perf_counter()
        try:
            output = await self._executor.execute(decode_tool_call(call.name, arguments), image, analysis)
        except Exception as e:
            result.executed = True
            result.execution_time_ms = int((time.perf_counter() - started) * 1000)
            result.error = e.message if isinstance(e, GroundingError) else str(e)
            result.failure_analysis = self._failures.analyze(call.name, arguments, analysis, error=e)
            logger.error("orchestrator.tool.failed", tool=call.name, error=result.error, error_type=type(e).__name__)
            return image

        result.executed = True
        result.execution_time_ms = int((time.perf_counter() - started) * 1000)
        result.result_image_url = output.image_url
        result.result_data = output.data

        after_image: Optional[LoadedImage] = None
        if output.is_image:
            try:
                after_image = await self._analysis.load(output.image_url)
            except GroundingError as e:
                result.error = f"Tool output could not be read: {e.message}"
                result.failure_analysis = self._failures.analyze(call.name, arguments, analysis, error=e)
                return image

        if not self._config.orchestrator.validate_results:
            result.execution_success = True
            return after_image or image

        expected = self._result_validator.expected_operation_for(call.name, arguments)
        result.result_validation = await self._result_validator.validate(call.name, image, after_image, expected)
        result.execution_success = result.result_validation.success
        result.confidence = min(result.validation.confidence, result.result_validation.quality_score)

        if not result.result_validation.success or result.result_validation.quality_score < 70:
            result.failure_analysis = self._failures.analyze(
                call.name, arguments, analysis, result_validation=result.result_validation
            )
        if not result.execution_success:
            result.error = result.result_validation.reasoning

        logger.info(
            "orchestrator.tool.executed",
            tool=call.name,
            success=result.execution_success,
            quality=result.result_validation.quality_score,
            duration_ms=result.execution_time_ms,
        )
        return after_image or image

    def overall_confidence(self, analysis: ImageAnalysis, results: List[ToolExecutionResult]) -> float:
        """
        Turn confidence: the minimum over the analysis and each executed
        call's validation confidence, less the complexity penalty for long
        workflows. Never above that minimum and never below 0.
        """
        cfg = self._config.orchestrator
        scores = [analysis.confidence] + [r.validation.confidence for r in results if r.executed]
        confidence = min(scores)
        if len(results) > cfg.complexity_penalty_threshold:
            confidence -= cfg.complexity_penalty
        return round(max(0.0, confidence), 1)

    async def _persist(
        self,
        request: OrchestratorRequest,
        analysis: ImageAnalysis,
        results: List[ToolExecutionResult],
        message: str,
    ) -> None:
        snapshot = ImageSpecsSnapshot.from_analysis(analysis)
        for result in results:
            if not result.executed:
                continue
            rv = result.result_validation
            execution = ToolExecution(
                tool_name=result.tool_name,
                parameters=result.parameters,
                success=result.execution_success,
                confidence=result.confidence,
                result_metrics=ResultMetrics(
                    pixels_changed=rv.pixels_changed if rv else 0,
                    percentage_changed=rv.percentage_changed if rv else 0.0,
                    execution_time_ms=result.execution_time_ms,
                    quality_score=rv.quality_score if rv else 0.0,
                ),
                image_specs_snapshot=snapshot,
            )
            result.stored = await self._store.store_execution(request.conversation_id, execution)

        image_url = request.image_source if isinstance(request.image_source, str) else None
        await self._store.store_turn(
            request.conversation_id,
            request.message,
            message,
            analysis if not analysis.is_fallback else None,
            image_url=image_url,
        )
        logger.info("orchestrator.turn.persisted", stored_executions=sum(1 for r in results if r.stored))

    def _compose_message(self, content: str, results: List[ToolExecutionResult]) -> str:
        """Model text, followed by the reason for each edit that did not apply."""
        parts = [content.strip()] if content and content.strip() else []
        failed = [r for r in results if not r.execution_success]
        if results and failed:
            applied = len(results) - len(failed)
            lines = [f"{applied} of {len(results)} requested edits applied."]
            for r in failed:
                reason = r.failure_analysis.user_message if r.failure_analysis else f"{r.tool_name} failed: {r.error}"
                lines.append(f"- {reason}")
            parts.append("\n".join(lines))
        elif not parts:
            parts.append("Done." if results else "No edits were proposed.")
        return "\n\n".join(p for p in parts if p)

    def _errored(
        self,
        request: OrchestratorRequest,
        analysis: ImageAnalysis,
        error: BaseException,
        turn: TurnContext,
    ) -> OrchestratorResponse:
        category = classify_llm_error(error)
        turn.transition(TurnState.ERRORED)
        llm_error_count.labels(category=category.value).inc()
        logger.error(
            "orchestrator.turn.error",
            error=str(error),
            error_type=type(error).__name__,
            category=category.value,
        )
        return OrchestratorResponse(
            success=False,
            message=ERROR_MESSAGE,
            conversation_id=request.conversation_id,
            confidence=0.0,
            image_analysis=analysis,
            final_state=turn.state.value,
            error=str(error),
            error_category=category,
        )

    @staticmethod
    def _observe_turn(response: OrchestratorResponse, started: float) -> None:
        turn_count.labels(outcome=response.final_state).inc()
        turn_duration.observe(time.perf_counter() - started)
