"""
Tests for EditOrchestratorAgent.

The model is mocked; analysis, validation, execution and the context
store run for real against the blue/white test image.
"""

import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import llm_response, tool_call
from design_grounding.agents.edit_orchestrator_agent import EditOrchestratorAgent, classify_llm_error
from design_grounding.core.exceptions import (
    LLMConfigurationError,
    LLMTimeoutError,
    RateLimitError,
    ToolExecutionError,
)
from design_grounding.models.orchestration import ErrorCategory, OrchestratorRequest
from design_grounding.tools.executor import PillowToolExecutor

BLUE = {"hex": "#0000ff", "r": 0, "g": 0, "b": 255}
PURPLE = {"hex": "#800080", "r": 128, "g": 0, "b": 128}


def knockout(color, call_id="call_1"):
    return tool_call("color_knockout", json.dumps({"colors": [color], "tolerance": 30}), call_id)


@pytest.fixture
def agent(mock_llm_client):
    return EditOrchestratorAgent(llm_client=mock_llm_client)


@pytest.fixture
def request_for(blue_white_png):
    def _build(message="Remove the blue", conversation_id="conv-1"):
        return OrchestratorRequest(message=message, image_source=blue_white_png, conversation_id=conversation_id)
    return _build


class TestProcess:
    """End-to-end turns."""

    @pytest.mark.asyncio
    async def test_knockout_turn(self, agent, mock_llm_client, request_for):
        """A grounded knockout runs, passes result validation and is stored."""
        mock_llm_client.chat.return_value = llm_response("Removed the blue.", [knockout(BLUE)])

        response = await agent.process(request_for())

        assert response.success
        assert response.final_state == "done"
        assert response.confidence == 75
        assert response.summary == "1 of 1 requested edits applied"
        assert response.message == "Removed the blue."

        result = response.tool_executions[0]
        assert result.validation.is_valid
        assert result.executed and result.execution_success
        assert result.result_image_url.startswith("data:image/png;base64,")
        assert result.result_validation.percentage_changed == pytest.approx(25, abs=0.5)
        assert result.result_validation.quality_score == 100
        assert result.confidence == 75
        assert result.stored

        history = await agent.context_store.get_history("conv-1")
        assert [m.role.value for m in history] == ["user", "assistant"]
        stats = await agent.context_store.stats()
        assert stats.tool_executions == 1

    @pytest.mark.asyncio
    async def test_model_sees_ground_truth_and_tools(self, agent, mock_llm_client, request_for):
        await agent.process(request_for())

        kwargs = mock_llm_client.chat.await_args.kwargs
        messages = mock_llm_client.chat.await_args.args[0]
        assert len(kwargs["tools"]) == 7
        assert "Dimensions: 1920 x 1080 pixels" in messages[0]["content"]
        image_parts = [p for p in messages[-1]["content"] if p.get("type") == "image_url"]
        assert image_parts[0]["image_url"]["url"].startswith("data:image/png;base64,")

    @pytest.mark.asyncio
    async def test_hallucinated_color_is_rejected(self, agent, mock_llm_client, request_for):
        """A color that is not in the image never reaches the executor."""
        mock_llm_client.chat.return_value = llm_response("Removed the purple.", [knockout(PURPLE)])

        response = await agent.process(request_for("Remove the purple"))

        assert response.success
        result = response.tool_executions[0]
        assert not result.executed
        assert "Color #800080 not found in image" in result.error
        assert result.failure_analysis.root_cause == "Color does not exist in image"
        assert "0 of 1 requested edits applied." in response.message
        assert result.failure_analysis.user_message in response.message
        assert (await agent.context_store.stats()).tool_executions == 0

    @pytest.mark.asyncio
    async def test_oversized_upscale_is_rejected(self, agent, mock_llm_client, request_for):
        mock_llm_client.chat.return_value = llm_response(
            "", [tool_call("upscaler", '{"scaleFactor": 10}')]
        )

        response = await agent.process(request_for("Make it 10x bigger"))

        result = response.tool_executions[0]
        assert not result.executed
        assert "Reduce scale factor to ≤7.7x" in result.error
        assert result.failure_analysis.suggested_parameters == {"scaleFactor": 7.7}

    @pytest.mark.asyncio
    async def test_calls_are_chained(self, mock_llm_client, request_for):
        """The second call runs on the first call's output."""
        executor = PillowToolExecutor()
        executor.execute = AsyncMock(wraps=executor.execute)
        agent = EditOrchestratorAgent(llm_client=mock_llm_client, executor=executor)
        mock_llm_client.chat.return_value = llm_response("", [
            knockout(BLUE),
            tool_call("extract_color_palette", "{}", "call_2"),
        ])

        response = await agent.process(request_for())

        assert response.summary == "2 of 2 requested edits applied"
        first_image = executor.execute.await_args_list[0].args[1]
        second_image = executor.execute.await_args_list[1].args[1]
        assert (first_image.pixels[:, :480, 3] == 255).all()
        assert (second_image.pixels[:, :480, 3] == 0).all()

    @pytest.mark.asyncio
    async def test_no_tool_calls(self, agent, mock_llm_client, request_for):
        response = await agent.process(request_for("What colors are in this?"))
        assert response.success
        assert response.tool_executions == []
        assert response.message == "Nothing to change."

    @pytest.mark.asyncio
    async def test_unloadable_image_degrades(self, agent, request_for):
        """The turn still completes with fallback analysis and zero confidence."""
        request = request_for()
        request.image_source = b"not an image"

        response = await agent.process(request)

        assert response.success
        assert response.image_analysis.is_fallback
        assert response.confidence == 0

    @pytest.mark.asyncio
    async def test_knockout_output_is_transparent(self, agent, mock_llm_client, request_for):
        """Analyzing the produced image reports the alpha the knockout added."""
        mock_llm_client.chat.return_value = llm_response("Removed the blue.", [knockout(BLUE)])

        response = await agent.process(request_for())

        result = response.tool_executions[0]
        assert result.result_validation.success
        after = await agent.analysis_service.analyze(result.result_image_url)
        assert not after.is_fallback
        assert after.has_transparency is True

    @pytest.mark.asyncio
    async def test_failed_call_does_not_stop_later_calls(self, mock_llm_client, request_for):
        """An executor failure on one call is reported and the next call still runs."""
        executor = PillowToolExecutor()
        real_execute = executor.execute

        async def fail_first(params, image, analysis=None):
            if executor.execute.await_count == 1:
                raise ToolExecutionError("Upstream service unavailable")
            return await real_execute(params, image, analysis)

        executor.execute = AsyncMock(side_effect=fail_first)
        agent = EditOrchestratorAgent(llm_client=mock_llm_client, executor=executor)
        mock_llm_client.chat.return_value = llm_response("", [
            knockout(BLUE, "call_1"),
            knockout(BLUE, "call_2"),
        ])

        response = await agent.process(request_for())

        assert response.success
        assert response.final_state == "done"
        assert executor.execute.await_count == 2
        first, second = response.tool_executions
        assert first.executed and not first.execution_success
        assert "Upstream service unavailable" in first.error
        assert first.failure_analysis is not None
        assert second.executed and second.execution_success
        assert "1 of 2 requested edits applied." in response.message
        assert (await agent.context_store.stats()).tool_executions == 1

    @pytest.mark.asyncio
    async def test_overlapping_turns_on_one_agent(self, agent, mock_llm_client, request_for):
        """Two conversations in flight at once each reach done with their own history."""
        async def slow_chat(*args, **kwargs):
            await asyncio.sleep(0.05)
            return llm_response("Removed the blue.", [knockout(BLUE)])

        mock_llm_client.chat = AsyncMock(side_effect=slow_chat)

        first, second = await asyncio.gather(
            agent.process(request_for("Remove the blue", "conv-a")),
            agent.process(request_for("Drop the blue please", "conv-b")),
        )

        assert first.success and second.success
        assert first.final_state == "done"
        assert second.final_state == "done"
        assert first.tool_executions[0].execution_success
        assert second.tool_executions[0].execution_success

        history_a = await agent.context_store.get_history("conv-a")
        history_b = await agent.context_store.get_history("conv-b")
        assert [m.content for m in history_a if m.role.value == "user"] == ["Remove the blue"]
        assert [m.content for m in history_b if m.role.value == "user"] == ["Drop the blue please"]
        assert (await agent.context_store.stats()).tool_executions == 2


class TestErrors:
    """Failed model round-trips."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error,category", [
        (RateLimitError("Rate limit exceeded"), ErrorCategory.RATE_LIMIT),
        (LLMTimeoutError("Request timed out"), ErrorCategory.TIMEOUT),
        (LLMConfigurationError("OPENROUTER_API_KEY not set"), ErrorCategory.CONFIGURATION),
        (RuntimeError("boom"), ErrorCategory.UNKNOWN),
    ])
    async def test_error_categories(self, agent, mock_llm_client, request_for, error, category):
        mock_llm_client.chat.side_effect = error

        response = await agent.process(request_for())

        assert not response.success
        assert response.final_state == "errored"
        assert response.confidence == 0
        assert response.error_category == category
        assert response.message == "I encountered an error processing your request. Please try again."

    @pytest.mark.asyncio
    async def test_errored_turn_persists_nothing(self, agent, mock_llm_client, request_for):
        mock_llm_client.chat.side_effect = RuntimeError("boom")
        await agent.process(request_for())
        assert await agent.get_conversation("conv-1") is None

    @pytest.mark.asyncio
    async def test_run_wraps_response(self, agent, mock_llm_client, request_for):
        mock_llm_client.chat.side_effect = RateLimitError("Rate limit exceeded")
        result = await agent.run(request_for())
        assert not result.success
        assert result.error_code == "rate_limit"

    def test_classify_by_message(self):
        assert classify_llm_error(Exception("HTTP 429 Too Many Requests")) == ErrorCategory.RATE_LIMIT
        assert classify_llm_error(Exception("read timed out")) == ErrorCategory.TIMEOUT
        assert classify_llm_error(Exception("401 Unauthorized")) == ErrorCategory.CONFIGURATION


class TestConfidence:
    """Tests for overall_confidence."""

    @staticmethod
    def results(*scores, executed=True):
        return [SimpleNamespace(executed=executed, validation=SimpleNamespace(confidence=s)) for s in scores]

    def test_minimum_of_executed_calls(self, agent, blue_white_analysis):
        assert agent.overall_confidence(blue_white_analysis, self.results(90, 80)) == 80

    def test_complexity_penalty(self, agent, blue_white_analysis):
        """More than two calls costs five points."""
        assert agent.overall_confidence(blue_white_analysis, self.results(90, 80, 85)) == 75

    def test_rejected_calls_count_for_penalty_only(self, agent, blue_white_analysis):
        results = self.results(90, 80) + self.results(10, executed=False)
        assert agent.overall_confidence(blue_white_analysis, results) == 75

    def test_never_negative(self, agent, blue_white_analysis):
        assert agent.overall_confidence(blue_white_analysis, self.results(2, 3, 4)) == 0


class TestPlan:
    """Plan-only turns."""

    @pytest.mark.asyncio
    async def test_plan_suggests_upscale_first(self, mock_llm_client, request_for):
        executor = MagicMock()
        executor.execute = AsyncMock()
        agent = EditOrchestratorAgent(llm_client=mock_llm_client, executor=executor)
        mock_llm_client.chat.return_value = llm_response("Plan ready.", [
            tool_call("background_remover", "{}", "call_1"),
            tool_call("upscaler", '{"scaleFactor": 2}', "call_2"),
        ])

        plan = await agent.plan(request_for("Remove the background and upscale"))

        assert plan.success
        assert [c.tool_name for c in plan.tool_calls] == ["background_remover", "upscaler"]
        assert all(c.validation.is_valid for c in plan.tool_calls)
        assert plan.clarification.reason == "Low DPI with multiple operations"
        assert plan.clarification.suggested_workflow.steps[0].tool_name == "upscaler"
        executor.execute.assert_not_awaited()
        assert await agent.get_conversation("conv-1") is None

    @pytest.mark.asyncio
    async def test_plan_error(self, agent, mock_llm_client, request_for):
        mock_llm_client.chat.side_effect = LLMTimeoutError("Request timed out")
        plan = await agent.plan(request_for())
        assert not plan.success
        assert plan.error_category == ErrorCategory.TIMEOUT


def test_is_ready(agent, mock_llm_client):
    assert agent.is_ready()
    mock_llm_client.is_configured = False
    assert not agent.is_ready()
