"""
Result Validation Service.

Compares the image before and after a tool ran and decides whether the
change the tool claims actually happened, of the expected kind and in a
plausible amount.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from design_grounding.core.config import ResultValidatorConfig, get_config
from design_grounding.imaging.loader import LoadedImage
from design_grounding.imaging.pixels import PixelDiff, compare_pixels, transparent_fraction
from design_grounding.models.analysis import ImageAnalysis
from design_grounding.models.validation import ExpectedOperation, ResultValidation, VisualDifference
from design_grounding.services.image_analysis_service import ImageAnalysisService
from design_grounding.tools.image_tools import (
    BACKGROUND_REMOVER,
    COLOR_KNOCKOUT,
    TEXTURE_CUT,
)
from design_grounding.tools.registry import ToolRegistry, get_registry

logger = logging.getLogger(__name__)

# Lowest plausible changed-pixel percentage for transparency tools.
# Tools not listed use the policy's transparency_min_percent.
MIN_TRANSPARENCY_CHANGE = {
    COLOR_KNOCKOUT: 1.0,
    TEXTURE_CUT: 5.0,
}


@dataclass
class _Outcome:
    success: bool
    warnings: List[str] = field(default_factory=list)
    reasoning: str = ""
    out_of_band: bool = False


class ResultValidationService:
    """
    Service for checking tool output against its expected operation class.

    This service handles:
    - Loading the before and after images
    - Measuring the per-pixel delta above the noise floor
    - Applying the policy of the tool's operation class
    - Scoring output quality from the before/after analyses
    """

    def __init__(
        self,
        config: Optional[ResultValidatorConfig] = None,
        analysis_service: Optional[ImageAnalysisService] = None,
        registry: Optional[ToolRegistry] = None,
    ):
        self._config = config or get_config().result_validator
        self._analysis_service = analysis_service or ImageAnalysisService()
        self._owns_analysis_service = analysis_service is None
        self._registry = registry or get_registry()

    async def close(self) -> None:
        """Close resources."""
        if self._owns_analysis_service:
            await self._analysis_service.close()

    async def __aenter__(self) -> "ResultValidationService":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def expected_operation_for(
        self,
        tool_name: str,
        parameters: Optional[Dict[str, Any]] = None,
    ) -> ExpectedOperation:
        """
        Operation class a tool's output should show.

        Knockout into a replacement color and background removal onto a
        solid color change colors rather than alpha. Unknown tools map to
        color_change.
        """
        params = parameters or {}
        if tool_name == COLOR_KNOCKOUT and params.get("replaceMode", "transparency") != "transparency":
            return ExpectedOperation.COLOR_CHANGE
        if tool_name == BACKGROUND_REMOVER and params.get("backgroundColor"):
            return ExpectedOperation.COLOR_CHANGE

        tool = self._registry.get_optional(tool_name)
        if tool is None:
            return ExpectedOperation.COLOR_CHANGE
        return tool.expected_operation

    # =========================================================================
    # VALIDATION
    # =========================================================================

    async def validate(
        self,
        tool_name: str,
        before: Any,
        after: Any = None,
        expected_operation: Optional[ExpectedOperation] = None,
    ) -> ResultValidation:
        """
        Validate one tool execution.

        Args:
            tool_name: Tool that produced the output
            before: Input image (LoadedImage or any loadable source)
            after: Output image; None for info tools
            expected_operation: Operation class; derived from the tool
                when omitted

        Returns:
            ResultValidation; never raises.
        """
        operation = expected_operation or self.expected_operation_for(tool_name)

        if operation == ExpectedOperation.INFO_ONLY and after is None:
            return ResultValidation(
                success=True,
                quality_score=100.0,
                reasoning="Info tool - no image modification expected",
                expected_operation=operation,
            )

        try:
            before_image = await self._analysis_service.load(before)
            after_image = await self._analysis_service.load(after)
            return await asyncio.to_thread(
                self._validate_loaded, tool_name, before_image, after_image, operation
            )
        except Exception as e:
            logger.error(f"Result validation of {tool_name} failed: {e}", exc_info=True)
            return ResultValidation(
                success=False,
                reasoning=f"Validation error: {e}",
                expected_operation=operation,
            )

    def _validate_loaded(
        self,
        tool_name: str,
        before: LoadedImage,
        after: LoadedImage,
        operation: ExpectedOperation,
    ) -> ResultValidation:
        cfg = self._config
        before_analysis = self._analysis_service.analyze_loaded(before)
        after_analysis = self._analysis_service.analyze_loaded(after)
        diff = compare_pixels(before.pixels, after.pixels, noise_floor=cfg.change_noise_floor)

        if operation == ExpectedOperation.TRANSPARENCY_CHANGE:
            outcome = self._check_transparency(tool_name, before, after, diff)
        elif operation == ExpectedOperation.COLOR_CHANGE:
            outcome = self._check_color_change(diff)
        elif operation == ExpectedOperation.QUALITY_ENHANCEMENT:
            outcome = self._check_quality(before_analysis, after_analysis)
        else:
            outcome = self._check_info(diff)

        quality = self._quality_score(before_analysis, after_analysis, diff, operation, outcome)

        logger.info(
            f"Result of {tool_name} ({operation.value}): success={outcome.success}, "
            f"{diff.percentage_changed:.2f}% changed, quality {quality}"
        )

        return ResultValidation(
            success=outcome.success,
            pixels_changed=diff.pixels_changed,
            percentage_changed=round(diff.percentage_changed, 2),
            quality_score=quality,
            significant_change=diff.percentage_changed >= cfg.significant_change_percent,
            visual_difference=VisualDifference(
                max_delta=round(diff.max_delta, 1),
                avg_delta=round(diff.avg_delta, 1),
                color_shift_amount=round(diff.color_shift_amount, 1),
            ),
            warnings=outcome.warnings,
            reasoning=outcome.reasoning,
            expected_operation=operation,
        )

    # =========================================================================
    # OPERATION POLICIES
    # =========================================================================

    def _check_transparency(self, tool_name: str, before: LoadedImage, after: LoadedImage, diff: PixelDiff) -> _Outcome:
        before_fraction = transparent_fraction(before.pixels)
        after_fraction = transparent_fraction(after.pixels)

        if after_fraction <= before_fraction:
            return _Outcome(
                success=False,
                warnings=["Expected transparency but none was created"],
                reasoning=f"{tool_name} did not produce any new transparent pixels",
            )

        outcome = _Outcome(
            success=True,
            reasoning=(
                f"Transparency created ({diff.percentage_changed:.1f}% of pixels affected, "
                f"{after_fraction * 100:.1f}% transparent)"
            ),
        )

        minimum = MIN_TRANSPARENCY_CHANGE.get(tool_name, self._config.transparency_min_percent)
        if diff.percentage_changed < minimum:
            outcome.out_of_band = True
            if tool_name == BACKGROUND_REMOVER:
                outcome.warnings.append(
                    f"Less than {minimum:g}% of image affected - background may not be fully removed"
                )
            else:
                outcome.warnings.append(f"Very few pixels changed (<{minimum:g}%)")

        return outcome

    def _check_color_change(self, diff: PixelDiff) -> _Outcome:
        cfg = self._config
        if diff.pixels_changed == 0:
            return _Outcome(
                success=False,
                warnings=["No pixels changed"],
                reasoning="Expected a color change but the image is unchanged",
            )

        outcome = _Outcome(
            success=True,
            reasoning=(
                f"Recolored {diff.percentage_changed:.1f}% of pixels "
                f"(avg color shift: {diff.color_shift_amount:.0f})"
            ),
        )
        if diff.color_shift_amount < cfg.min_color_shift:
            outcome.warnings.append("Very small color change detected")
            outcome.out_of_band = True
        if diff.percentage_changed > cfg.color_change_max_percent:
            outcome.warnings.append("Almost entire image changed - verify result looks correct")
            outcome.out_of_band = True
        return outcome

    def _check_quality(self, before: ImageAnalysis, after: ImageAnalysis) -> _Outcome:
        if after.width * after.height <= before.width * before.height:
            return _Outcome(
                success=False,
                warnings=["Image dimensions did not increase"],
                reasoning=(
                    f"Upscaling failed - {before.width}x{before.height} "
                    f"became {after.width}x{after.height}"
                ),
            )

        scale = after.width / before.width if before.width else 0.0
        outcome = _Outcome(
            success=True,
            reasoning=(
                f"Upscaled {scale:.1f}x from {before.width}x{before.height} "
                f"to {after.width}x{after.height}"
            ),
        )
        if after.sharpness_score < before.sharpness_score - self._config.sharpness_drop_tolerance:
            outcome.warnings.append(
                f"Sharpness decreased from {before.sharpness_score:g} to {after.sharpness_score:g}"
            )
            outcome.out_of_band = True
        return outcome

    def _check_info(self, diff: PixelDiff) -> _Outcome:
        outcome = _Outcome(success=True, reasoning="Info tool - no image modification expected")
        if diff.pixels_changed:
            outcome.warnings.append(
                f"Info tool output differs from its input ({diff.percentage_changed:.1f}% of pixels)"
            )
        return outcome

    def _quality_score(
        self,
        before: ImageAnalysis,
        after: ImageAnalysis,
        diff: PixelDiff,
        operation: ExpectedOperation,
        outcome: _Outcome,
    ) -> float:
        """
        0-100 score for the output, starting from the after-image's
        analysis confidence.

        Change of the expected kind in the expected band scores highest,
        then out-of-band change, then no change, then the wrong kind.
        """
        cfg = self._config
        score = after.confidence

        if after.sharpness_score < before.sharpness_score - cfg.sharpness_drop_tolerance:
            score -= 15
        if after.noise_level > before.noise_level + cfg.noise_rise_tolerance:
            score -= 10
        if after.is_print_ready and not before.is_print_ready:
            score += 10

        if operation.mutates_pixels:
            if diff.percentage_changed < cfg.no_change_percent:
                score -= 20
            if not outcome.success:
                score -= 25
            elif outcome.out_of_band:
                score -= 10

        return float(max(0, min(100, round(score, 1))))


def format_validation_summary(validation: ResultValidation) -> str:
    """Multi-line human-readable report of a result validation."""
    visual = validation.visual_difference
    lines = [
        "=== RESULT VALIDATION ===",
        "",
        f"Success: {'YES' if validation.success else 'NO'}",
        f"Quality Score: {validation.quality_score:g}/100",
        "",
        "CHANGE METRICS:",
        f"  Pixels Changed: {validation.pixels_changed:,} ({validation.percentage_changed:.2f}%)",
        f"  Significant Change: {'Yes' if validation.significant_change else 'No'}",
        "",
        "VISUAL DIFFERENCE:",
        f"  Max Delta: {visual.max_delta:.1f}",
        f"  Avg Delta: {visual.avg_delta:.1f}",
        f"  Color Shift: {visual.color_shift_amount:.1f}",
        "",
        f"Reasoning: {validation.reasoning}",
    ]

    if validation.warnings:
        lines.extend(["", "WARNINGS:"])
        lines.extend(f"  - {warning}" for warning in validation.warnings)

    return "\n".join(lines)
