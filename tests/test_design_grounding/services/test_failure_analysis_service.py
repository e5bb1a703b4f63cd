"""
Tests for FailureAnalysisService.
"""

import pytest

from design_grounding.core.exceptions import LLMTimeoutError, RateLimitError
from design_grounding.models.orchestration import FailureMode
from design_grounding.models.validation import ResultValidation, ValidationResult
from design_grounding.services.failure_analysis_service import FailureAnalysisService

PURPLE = {"hex": "#800080", "r": 128, "g": 0, "b": 128}


@pytest.fixture
def service():
    return FailureAnalysisService()


def rejected(message):
    return ValidationResult.invalid([message], "rejected")


class TestValidationFailures:
    """Failures caught by parameter validation."""

    def test_missing_color(self, service, blue_white_analysis):
        """Suggests the image's own dominant colors."""
        failure = service.analyze(
            "color_knockout",
            {"colors": [PURPLE], "tolerance": 30},
            blue_white_analysis,
            validation=rejected("Color #800080 not found in image (closest match distance: 180.3)"),
        )
        assert failure.failure_mode == FailureMode.VALIDATION
        assert failure.root_cause == "Color does not exist in image"
        assert failure.recoverable
        assert [c["hex"] for c in failure.suggested_parameters["colors"]] == ["#ffffff", "#0000ff"]
        assert failure.suggested_parameters["tolerance"] == 30
        assert failure.user_message == (
            "color_knockout failed: Color does not exist in image. Suggested change: colors."
        )
        assert failure.retry_strategy.should_retry
        assert failure.retry_strategy.backoff_ms == 1000

    def test_oversized_upscale(self, service, blue_white_analysis):
        failure = service.analyze(
            "upscaler",
            {"scaleFactor": 10},
            blue_white_analysis,
            validation=rejected("Output size 207.4MP exceeds maximum 16MP. Reduce scale factor to ≤7.7x"),
        )
        assert failure.root_cause == "Requested output exceeds the maximum size"
        assert failure.suggested_parameters == {"scaleFactor": 7.7}

    def test_out_of_bounds(self, service, blue_white_analysis):
        failure = service.analyze(
            "pick_color_at_position",
            {"x": 5000, "y": 10},
            blue_white_analysis,
            validation=rejected("X coordinate 5000 is outside image bounds (0-1919)"),
        )
        assert failure.root_cause == "Coordinates or dimensions out of bounds"
        assert failure.suggested_parameters == {"x": 1919, "y": 10}

    def test_bad_palette_index(self, service, blue_white_analysis):
        mappings = [{"originalIndex": 0, "newColor": "#ff0000"}, {"originalIndex": 5, "newColor": "#00ff00"}]
        failure = service.analyze(
            "recolor_image",
            {"colorMappings": mappings},
            blue_white_analysis,
            validation=rejected("Invalid originalIndex 5. Must be 0-1 (palette has 2 colors)."),
        )
        assert failure.root_cause == "Parameter count exceeds reasonable limits"
        assert failure.suggested_parameters["colorMappings"] == mappings[:1]

    def test_unknown_tool_is_not_recoverable(self, service, blue_white_analysis):
        failure = service.analyze("blur", {}, blue_white_analysis, validation=rejected("Unknown tool: blur"))
        assert not failure.recoverable
        assert not failure.retry_strategy.should_retry


class TestResultFailures:
    """Failures caught by result validation."""

    def test_no_change_raises_tolerance(self, service, blue_white_analysis):
        result = ResultValidation(success=False, warnings=["No pixels changed"], reasoning="unchanged")
        failure = service.analyze(
            "color_knockout", {"tolerance": 30}, blue_white_analysis, result_validation=result
        )
        assert failure.failure_mode == FailureMode.QUALITY
        assert failure.root_cause == "Tool changed too little of the image (<1%)"
        assert failure.suggested_parameters == {"tolerance": 40}

    def test_too_much_lowers_amount(self, service, blue_white_analysis):
        result = ResultValidation(
            success=True,
            quality_score=60,
            warnings=["Almost entire image changed - verify result looks correct"],
        )
        failure = service.analyze("texture_cut", {"amount": 1.0}, blue_white_analysis, result_validation=result)
        assert failure.suggested_parameters == {"amount": 0.8}

    def test_upscale_without_growth(self, service, blue_white_analysis):
        result = ResultValidation(success=False, warnings=["Image dimensions did not increase"])
        failure = service.analyze("upscaler", {"scaleFactor": 2}, blue_white_analysis, result_validation=result)
        assert failure.root_cause == "Result quality degraded significantly"
        assert not failure.recoverable

    def test_validation_takes_priority(self, service, blue_white_analysis):
        """A rejected validation wins over an error."""
        failure = service.analyze(
            "blur", {}, blue_white_analysis,
            error=TimeoutError("late"),
            validation=rejected("Unknown tool: blur"),
        )
        assert failure.failure_mode == FailureMode.VALIDATION


class TestErrors:
    """Failures raised during execution."""

    def test_timeout(self, service, blue_white_analysis):
        failure = service.analyze("upscaler", {}, blue_white_analysis, error=LLMTimeoutError("slow"))
        assert failure.failure_mode == FailureMode.TIMEOUT
        assert failure.root_cause == "Operation timed out"

    def test_rate_limit(self, service, blue_white_analysis):
        failure = service.analyze("upscaler", {}, blue_white_analysis, error=RateLimitError("slow down"))
        assert failure.failure_mode == FailureMode.API_ERROR
        assert failure.root_cause == "API rate limit exceeded"
        assert failure.retry_strategy.backoff_ms == 5000

    def test_network_message(self, service, blue_white_analysis):
        failure = service.analyze("upscaler", {}, blue_white_analysis, error="Connection refused by host")
        assert failure.root_cause == "Network error"
        assert failure.recoverable

    def test_memory(self, service, blue_white_analysis):
        failure = service.analyze("upscaler", {}, blue_white_analysis, error=MemoryError())
        assert not failure.recoverable

    def test_generic_error(self, service, blue_white_analysis):
        failure = service.analyze("upscaler", {}, blue_white_analysis, error=ValueError("bad pixels"))
        assert failure.failure_mode == FailureMode.EXECUTION
        assert failure.root_cause == "bad pixels"
        assert failure.user_message == "upscaler failed: bad pixels."

    def test_nothing_known(self, service, blue_white_analysis):
        failure = service.analyze("upscaler", {}, blue_white_analysis)
        assert failure.root_cause == "Unknown failure"


class TestRetryStrategy:
    def test_exponential_backoff(self, service):
        strategy = service.retry_strategy(FailureMode.TIMEOUT, "Operation timed out", True, retry_count=2)
        assert strategy.backoff_ms == 4000
        assert strategy.max_retries == 3

    def test_max_retries(self, service):
        strategy = service.retry_strategy(FailureMode.TIMEOUT, "Operation timed out", True, retry_count=3)
        assert not strategy.should_retry
        assert strategy.reason == "Maximum retries reached"
