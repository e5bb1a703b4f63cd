"""
Failure Analysis Service.

Classifies why a tool call failed and suggests parameters grounded in the
image analysis that would likely succeed. The advice is attached to the
failed call; nothing here retries.
"""

import asyncio
import logging
import math
from typing import Any, Dict, List, Optional, Union

import httpx

from design_grounding.core.config import ValidatorConfig, get_config
from design_grounding.core.exceptions import LLMTimeoutError, RateLimitError
from design_grounding.models.analysis import ImageAnalysis
from design_grounding.models.orchestration import FailureAnalysis, FailureMode, RetryStrategy
from design_grounding.models.validation import ResultValidation, ValidationResult
from design_grounding.tools.image_tools import UPSCALER

logger = logging.getLogger(__name__)

BASE_BACKOFF_MS = 1000
RATE_LIMIT_BACKOFF_MS = 5000
MAX_RETRIES = 3
MIN_QUALITY_SCORE = 70


class FailureAnalysisService:
    """
    Service for explaining failed tool calls.

    Failures are classified in priority order: a rejected validation,
    then a failed or low-quality result, then a raised error.
    """

    def __init__(self, config: Optional[ValidatorConfig] = None):
        self._config = config or get_config().validator

    def analyze(
        self,
        tool_name: str,
        parameters: Dict[str, Any],
        analysis: ImageAnalysis,
        error: Optional[Union[BaseException, str]] = None,
        validation: Optional[ValidationResult] = None,
        result_validation: Optional[ResultValidation] = None,
        retry_count: int = 0,
    ) -> FailureAnalysis:
        """
        Classify a failure and suggest a fix.

        Args:
            tool_name: Tool that failed
            parameters: Parameters it was called with
            analysis: Ground truth used for suggested parameters
            error: Raised exception or error message, if any
            validation: Parameter validation, if it rejected the call
            result_validation: Result validation, if the output was checked
            retry_count: Attempts already made, for the backoff

        Returns:
            FailureAnalysis with a retry strategy the caller may follow
        """
        params = dict(parameters or {})

        if validation is not None and not validation.is_valid:
            mode, cause, recoverable, suggested = self._from_validation(tool_name, params, analysis, validation)
        elif result_validation is not None and (
            not result_validation.success or result_validation.quality_score < MIN_QUALITY_SCORE
        ):
            mode, cause, recoverable, suggested = self._from_result(params, result_validation)
        elif error is not None:
            mode, cause, recoverable = self._from_error(error)
            suggested = None
        else:
            mode, cause, recoverable, suggested = FailureMode.EXECUTION, "Unknown failure", False, None

        strategy = self.retry_strategy(mode, cause, recoverable, retry_count)
        user_message = f"{tool_name} failed: {cause}."
        if suggested:
            changed = sorted(k for k in suggested if suggested.get(k) != params.get(k))
            if changed:
                user_message += f" Suggested change: {', '.join(changed)}."

        logger.info(
            f"Failure of {tool_name} classified as {mode.value}: {cause} "
            f"(recoverable={recoverable})"
        )

        return FailureAnalysis(
            failure_mode=mode,
            root_cause=cause,
            recoverable=recoverable,
            retry_strategy=strategy,
            suggested_parameters=suggested,
            user_message=user_message,
        )

    def retry_strategy(
        self,
        mode: FailureMode,
        root_cause: str,
        recoverable: bool,
        retry_count: int = 0,
    ) -> RetryStrategy:
        """Backoff advice: doubling from 1s, 5s for rate limits, none when unrecoverable."""
        if not recoverable:
            return RetryStrategy(should_retry=False, reason=f"Non-recoverable failure: {root_cause}")

        if retry_count >= MAX_RETRIES:
            return RetryStrategy(
                should_retry=False,
                max_retries=MAX_RETRIES,
                reason="Maximum retries reached",
            )

        backoff = BASE_BACKOFF_MS * (2 ** retry_count)

        if mode == FailureMode.API_ERROR and "rate limit" in root_cause.lower():
            return RetryStrategy(True, MAX_RETRIES, RATE_LIMIT_BACKOFF_MS, "API rate limit - retry with longer delay")
        if mode == FailureMode.API_ERROR:
            return RetryStrategy(True, MAX_RETRIES, backoff, "Network/API error - retry with exponential backoff")
        if mode == FailureMode.TIMEOUT:
            return RetryStrategy(True, MAX_RETRIES, backoff, "Timeout - retry with same parameters")
        if mode == FailureMode.VALIDATION:
            return RetryStrategy(True, MAX_RETRIES, backoff, "Retry with the suggested parameters")
        if mode == FailureMode.QUALITY:
            return RetryStrategy(True, MAX_RETRIES, backoff, "Retry with parameters tweaked for quality")

        return RetryStrategy(should_retry=False, reason="Unknown failure mode - cannot determine retry strategy")

    # =========================================================================
    # CLASSIFIERS
    # =========================================================================

    def _from_validation(
        self,
        tool_name: str,
        params: Dict[str, Any],
        analysis: ImageAnalysis,
        validation: ValidationResult,
    ):
        first = validation.errors[0] if validation.errors else "Validation failed"
        lowered = first.lower()

        if lowered.startswith("unknown tool"):
            return FailureMode.VALIDATION, first, False, None

        if "not found in image" in lowered or "does not exist" in lowered:
            suggested = self.substitute_colors(params, analysis)
            return FailureMode.VALIDATION, "Color does not exist in image", bool(suggested), suggested

        if "output size" in lowered and "exceeds maximum" in lowered and tool_name == UPSCALER:
            suggested = self.reduce_scale_factor(params, analysis)
            return FailureMode.VALIDATION, "Requested output exceeds the maximum size", suggested is not None, suggested

        if "tolerance" in lowered:
            suggested = self.adjust_tolerance(params, analysis)
            return FailureMode.VALIDATION, "Tolerance inappropriate for image characteristics", True, suggested

        if "outside" in lowered or "bounds" in lowered:
            suggested = self.clamp_coordinates(params, analysis)
            return FailureMode.VALIDATION, "Coordinates or dimensions out of bounds", True, suggested

        if "originalindex" in lowered or "exceeds" in lowered or "too many" in lowered:
            suggested = self.cap_mappings(params, analysis)
            return FailureMode.VALIDATION, "Parameter count exceeds reasonable limits", suggested is not None, suggested

        return FailureMode.VALIDATION, first, True, None

    def _from_result(self, params: Dict[str, Any], result: ResultValidation):
        text = " ".join([result.reasoning] + list(result.warnings)).lower()

        if ">95%" in text or "almost entire image" in text or "too much" in text:
            return FailureMode.QUALITY, "Tool removed/changed too much of the image (>95%)", True, self._nudge(params, -1)

        if "<1%" in text or "very few pixels" in text or "unchanged" in text or "no pixels changed" in text:
            return FailureMode.QUALITY, "Tool changed too little of the image (<1%)", True, self._nudge(params, 1)

        if "sharpness" in text or "dimensions did not" in text:
            return FailureMode.QUALITY, "Result quality degraded significantly", False, None

        return FailureMode.QUALITY, result.reasoning or "Result quality too low", True, None

    def _from_error(self, error: Union[BaseException, str]):
        if isinstance(error, (LLMTimeoutError, httpx.TimeoutException, asyncio.TimeoutError)):
            return FailureMode.TIMEOUT, "Operation timed out", True
        if isinstance(error, RateLimitError):
            return FailureMode.API_ERROR, "API rate limit exceeded", True
        if isinstance(error, MemoryError):
            return FailureMode.EXECUTION, "Out of memory", False

        message = getattr(error, "message", None) or str(error)
        lowered = message.lower()

        if "timeout" in lowered or "timed out" in lowered:
            return FailureMode.TIMEOUT, "Operation timed out", True
        if "rate limit" in lowered or "429" in lowered or "too many requests" in lowered:
            return FailureMode.API_ERROR, "API rate limit exceeded", True
        if any(p in lowered for p in ("network", "fetch", "connection refused", "name or service not known")):
            return FailureMode.API_ERROR, "Network error", True
        if "memory" in lowered:
            return FailureMode.EXECUTION, "Out of memory", False

        return FailureMode.EXECUTION, message, False

    # =========================================================================
    # PARAMETER SUGGESTIONS
    # =========================================================================

    def substitute_colors(self, params: Dict[str, Any], analysis: ImageAnalysis) -> Optional[Dict[str, Any]]:
        """Replace knockout colors with the image's top dominant colors."""
        if not analysis.dominant_colors or "colors" not in params:
            return None
        return {
            **params,
            "colors": [
                {"r": c.r, "g": c.g, "b": c.b, "hex": c.hex}
                for c in analysis.dominant_colors[:3]
            ],
        }

    def adjust_tolerance(self, params: Dict[str, Any], analysis: ImageAnalysis) -> Dict[str, Any]:
        """At least 35 on noisy images, at most 25 on clean ones."""
        current = params.get("tolerance") or 30
        if analysis.noise_level > 30:
            return {**params, "tolerance": max(current, 35)}
        return {**params, "tolerance": min(current, 25)}

    def clamp_coordinates(self, params: Dict[str, Any], analysis: ImageAnalysis) -> Dict[str, Any]:
        adjusted = dict(params)
        for key, size in (("x", analysis.width), ("y", analysis.height)):
            value = adjusted.get(key)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                adjusted[key] = max(0, min(int(value), size - 1))
        return adjusted

    def cap_mappings(self, params: Dict[str, Any], analysis: ImageAnalysis) -> Optional[Dict[str, Any]]:
        """Drop mappings with an index past the palette, then cap the count at the palette size."""
        mappings = params.get("colorMappings")
        if not isinstance(mappings, list):
            return None
        count = len(analysis.dominant_colors)
        kept: List[Dict[str, Any]] = [
            m for m in mappings
            if isinstance(m, dict) and isinstance(m.get("originalIndex"), (int, float))
            and 0 <= m["originalIndex"] < count
        ]
        if not kept:
            return None
        return {**params, "colorMappings": kept[:count]}

    def reduce_scale_factor(self, params: Dict[str, Any], analysis: ImageAnalysis) -> Optional[Dict[str, Any]]:
        """The largest scale factor, to one decimal, whose output fits the size limit."""
        pixels = analysis.width * analysis.height
        if pixels <= 0:
            return None
        largest = math.floor(self._config.max_output_megapixels * 1_000_000 / pixels * 10) / 10
        if largest < 1:
            return None
        return {**params, "scaleFactor": min(largest, 10)}

    def _nudge(self, params: Dict[str, Any], direction: int) -> Optional[Dict[str, Any]]:
        """Move tolerance by 10 and amount by 0.2 in the given direction."""
        adjusted = dict(params)
        tolerance = adjusted.get("tolerance")
        if isinstance(tolerance, (int, float)):
            adjusted["tolerance"] = max(tolerance - 10, 10) if direction < 0 else min(tolerance + 10, 50)
        amount = adjusted.get("amount")
        if isinstance(amount, (int, float)):
            amount = max(amount - 0.2, 0.1) if direction < 0 else min(amount + 0.2, 1.0)
            adjusted["amount"] = round(amount, 2)
        return adjusted if adjusted != params else None
