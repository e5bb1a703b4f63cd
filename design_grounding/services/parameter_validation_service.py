"""
Parameter Validation Service.

Checks a proposed tool call against the tool's schema, the measured image
ground truth and the learning store's history before anything is executed.
A call that names a color the image does not contain, an index past the
end of the palette or a coordinate off the canvas is rejected here.
"""

import logging
import math
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from design_grounding.core.config import ValidatorConfig, get_config
from design_grounding.core.exceptions import ToolValidationError
from design_grounding.core.message import ToolCall
from design_grounding.imaging.color import color_distance, hex_to_rgb, rgb_delta_e
from design_grounding.imaging.loader import LoadedImage
from design_grounding.imaging.pixels import ColorPresence, color_presence
from design_grounding.models.analysis import ImageAnalysis
from design_grounding.models.execution import (
    BackgroundRemoverParams,
    ColorKnockoutParams,
    ColorTarget,
    ExtractColorPaletteParams,
    PickColorParams,
    RecolorImageParams,
    TextureCutParams,
    UnrecognizedToolCall,
    UpscalerParams,
)
from design_grounding.models.validation import ValidationResult
from design_grounding.services.context_store_service import ContextStoreService
from design_grounding.tools.image_tools import (
    COLOR_KNOCKOUT,
    RECOLOR_IMAGE,
    decode_tool_call,
)
from design_grounding.tools.registry import ToolRegistry, get_registry

logger = logging.getLogger(__name__)

# Formats that can carry an alpha channel
ALPHA_FORMATS = {"png", "webp", "gif", "tiff"}


class _Checks:
    """Accumulates the verdicts of one semantic pass."""

    def __init__(self):
        self.confidence = 100.0
        self.warnings: List[str] = []
        self.errors: List[str] = []
        self.reasoning: List[str] = []

    def note(self, line: str) -> None:
        self.reasoning.append(line)

    def warn(self, message: str, cap: float) -> None:
        # Each warning scales confidence down by its own severity
        self.warnings.append(message)
        self.confidence *= cap / 100

    def fail(self, message: str) -> None:
        self.errors.append(message)

    def result(self, reasoning: Optional[str] = None) -> ValidationResult:
        text = reasoning if reasoning is not None else "\n".join(self.reasoning)
        if self.errors:
            return ValidationResult.invalid(self.errors, text, self.warnings)
        return ValidationResult(
            is_valid=True,
            confidence=round(self.confidence, 1),
            warnings=list(self.warnings),
            errors=[],
            reasoning=text,
        )


class ParameterValidationService:
    """
    Service for grounding tool parameters before execution.

    This service handles:
    - The schema phase: unknown tools, missing fields, types, enums, ranges
    - The semantic phase: per-tool rules against the image analysis and,
      for color-targeting tools, a direct pixel sample
    - The historical check against similar past executions
    - Combining both into one confidence and an ordered reasoning trace
    """

    def __init__(
        self,
        config: Optional[ValidatorConfig] = None,
        context_store: Optional[ContextStoreService] = None,
        registry: Optional[ToolRegistry] = None,
    ):
        """
        Initialize parameter validator.

        Args:
            config: Validator thresholds. Defaults to the grounding policy.
            context_store: Learning store for the historical check. Without
                one, every call gets the neutral historical confidence.
            registry: Tool registry. Defaults to the global registry.
        """
        self._config = config or get_config().validator
        self._context_store = context_store
        self._registry = registry or get_registry()

    @property
    def config(self) -> ValidatorConfig:
        return self._config

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def quick_validate(self, tool_name: str, parameters: Dict[str, Any]) -> List[str]:
        """Schema phase only. Returns the error messages, empty when valid."""
        tool = self._registry.get_optional(tool_name)
        if tool is None:
            return [f"Unknown tool: {tool_name}"]
        if not isinstance(parameters, dict):
            return [f"Parameters for {tool_name} must be an object"]
        return tool.validate_input(parameters)

    async def validate_call(
        self,
        tool_call: ToolCall,
        analysis: ImageAnalysis,
        image: Optional[LoadedImage] = None,
    ) -> ValidationResult:
        """Validate a model-proposed call, including malformed payloads."""
        if tool_call.is_malformed:
            return ValidationResult.invalid(
                [f"Malformed tool call: {tool_call.parse_error}"],
                "Tool call could not be decoded into named parameters.",
            )
        return await self.validate(tool_call.name, tool_call.arguments, analysis, image)

    async def validate(
        self,
        tool_name: str,
        parameters: Dict[str, Any],
        analysis: ImageAnalysis,
        image: Optional[LoadedImage] = None,
    ) -> ValidationResult:
        """
        Validate tool parameters against schema, ground truth and history.

        Args:
            tool_name: Name of the tool to validate
            parameters: Raw parameters as proposed by the model
            analysis: Ground truth for the image the tool would run on
            image: Decoded pixels, for direct color sampling when the
                dominant colors are not conclusive

        Returns:
            ValidationResult; never raises.
        """
        try:
            return await self._validate(tool_name, parameters, analysis, image)
        except Exception as e:
            logger.error(f"Validation of {tool_name} failed: {e}", exc_info=True)
            return ValidationResult.invalid(
                [f"Validation failed: {e}"],
                "Internal validation error occurred",
            )

    async def _validate(
        self,
        tool_name: str,
        parameters: Dict[str, Any],
        analysis: ImageAnalysis,
        image: Optional[LoadedImage],
    ) -> ValidationResult:
        schema_errors = self.quick_validate(tool_name, parameters)
        if schema_errors:
            if schema_errors[0].startswith("Unknown tool"):
                reasoning = "Tool not found in definitions"
            else:
                reasoning = (
                    "Parameter schema validation failed. Parameters do not match "
                    "expected types or ranges."
                )
            logger.info(f"Schema validation rejected {tool_name}: {schema_errors}")
            return ValidationResult.invalid(schema_errors, reasoning)

        try:
            params = decode_tool_call(tool_name, parameters)
        except ToolValidationError as e:
            return ValidationResult.invalid(
                e.errors or [e.message],
                "Parameter schema validation failed. Parameters could not be decoded.",
            )

        historical_confidence, adjustments, historical_reasoning = await self._check_history(
            tool_name, parameters, analysis
        )

        if analysis.is_fallback:
            tool_result = self._check_without_analysis(params, analysis, image)
        else:
            tool_result = self._check_semantics(params, analysis, image)

        confidence = 0.0 if not tool_result.is_valid else min(tool_result.confidence, historical_confidence)

        warnings = list(tool_result.warnings)
        if historical_confidence < self._config.low_history_confidence:
            warnings.append("Historical patterns show lower success rate for similar parameters")

        result = ValidationResult(
            is_valid=tool_result.is_valid,
            confidence=round(confidence, 1),
            warnings=warnings,
            errors=list(tool_result.errors),
            reasoning=f"{tool_result.reasoning}\n\nHistorical Analysis: {historical_reasoning}",
            adjusted_parameters=adjustments or tool_result.adjusted_parameters,
            historical_confidence=round(historical_confidence, 1),
        )

        logger.info(
            f"Validated {tool_name}: valid={result.is_valid}, confidence={result.confidence}, "
            f"{len(result.warnings)} warnings, {len(result.errors)} errors"
        )
        return result

    # =========================================================================
    # HISTORY
    # =========================================================================

    async def _check_history(
        self,
        tool_name: str,
        parameters: Dict[str, Any],
        analysis: ImageAnalysis,
    ) -> Tuple[float, Optional[Dict[str, Any]], str]:
        """Historical confidence, suggested adjustments and the reasoning line."""
        neutral = self._config.neutral_history_confidence
        if self._context_store is None:
            return neutral, None, "No historical data available for this tool and image type."

        try:
            similar = await self._context_store.find_similar(
                tool_name, analysis, self._config.history_limit
            )
        except Exception as e:
            logger.warning(f"Historical check for {tool_name} failed: {e}")
            return neutral, None, "Unable to retrieve historical data."

        if not similar:
            return neutral, None, "No historical data available for this tool and image type."

        avg_confidence = sum(e.confidence for e in similar) / len(similar)
        adjustments: Optional[Dict[str, Any]] = None
        reasoning = (
            f"Found {len(similar)} similar successful executions. "
            f"Average confidence: {avg_confidence:.1f}%"
        )

        if tool_name == COLOR_KNOCKOUT:
            tolerances = [e.parameters.get("tolerance") or 30 for e in similar]
            avg_tolerance = sum(tolerances) / len(tolerances)
            tolerance = parameters.get("tolerance")
            if tolerance and abs(tolerance - avg_tolerance) > 15:
                suggested = round(avg_tolerance)
                adjustments = {**parameters, "tolerance": suggested}
                reasoning += (
                    f"\nSuggested tolerance adjustment: {tolerance:g} → {suggested} "
                    f"based on historical patterns."
                )

        elif tool_name == RECOLOR_IMAGE:
            counts = [len(e.parameters.get("colorMappings") or []) or 1 for e in similar]
            avg_mappings = sum(counts) / len(counts)
            mappings = parameters.get("colorMappings") or []
            if mappings and len(mappings) > avg_mappings * 2:
                reasoning += (
                    f"\nWarning: Current mapping count ({len(mappings)}) is significantly "
                    f"higher than historical average ({avg_mappings:.1f})."
                )

        return avg_confidence, adjustments, reasoning

    # =========================================================================
    # SEMANTIC CHECKS
    # =========================================================================

    def _check_semantics(self, params: Any, analysis: ImageAnalysis, image: Optional[LoadedImage]) -> ValidationResult:
        if isinstance(params, ColorKnockoutParams):
            return self._check_knockout(params, analysis, image)
        if isinstance(params, RecolorImageParams):
            return self._check_recolor(params, analysis)
        if isinstance(params, TextureCutParams):
            return self._check_texture_cut(params, analysis)
        if isinstance(params, BackgroundRemoverParams):
            return self._check_background_remover(params, analysis)
        if isinstance(params, UpscalerParams):
            return self._check_upscaler(params, analysis)
        if isinstance(params, ExtractColorPaletteParams):
            return self._check_palette(params, analysis)
        if isinstance(params, PickColorParams):
            return self._check_pick_color(params, analysis)
        if isinstance(params, UnrecognizedToolCall):
            # Registered but without ground-truth rules
            return ValidationResult(
                is_valid=True,
                confidence=80,
                warnings=["No specific validation available for this tool"],
                reasoning="No tool-specific validation rules defined. Relying on schema validation only.",
            )
        raise TypeError(f"Unsupported parameter type: {type(params).__name__}")

    def find_color(
        self,
        target: ColorTarget,
        analysis: ImageAnalysis,
        image: Optional[LoadedImage] = None,
    ) -> ColorPresence:
        """
        Locate a color in the image.

        The dominant colors answer first; a direct pixel sample is taken
        when they do not hold a close match and pixels are available.
        """
        cfg = self._config
        palette_presence = None
        if analysis.dominant_colors:
            distances = [(color_distance(c.rgb, target.rgb), c) for c in analysis.dominant_colors]
            nearest_distance, nearest = min(distances, key=lambda item: item[0])
            palette_presence = ColorPresence(
                found=nearest_distance < cfg.color_found_distance,
                distance=nearest_distance,
                match_percentage=sum(c.percentage for d, c in distances if d < cfg.color_match_distance),
                closest=nearest.rgb,
            )
            if nearest_distance <= cfg.color_match_distance:
                return palette_presence

        if image is not None:
            return color_presence(
                image.pixels,
                target.rgb,
                min_samples=cfg.min_color_samples,
                sample_fraction=cfg.color_sample_fraction,
                match_distance=cfg.color_match_distance,
                found_distance=cfg.color_found_distance,
                rng=np.random.default_rng(cfg.random_seed),
            )

        return palette_presence or ColorPresence(found=False, distance=math.inf, match_percentage=0.0)

    def _check_knockout(
        self,
        params: ColorKnockoutParams,
        analysis: ImageAnalysis,
        image: Optional[LoadedImage],
    ) -> ValidationResult:
        checks = _Checks()

        if not params.colors:
            checks.fail("No colors specified for knockout")
            return checks.result("Color knockout requires at least one color to remove.")

        checks.note("Checking color existence in image...")
        presences = []
        for target in params.colors:
            presence = self.find_color(target, analysis, image)
            presences.append(presence)

            if not presence.found:
                checks.fail(
                    f"Color {target.hex} not found in image "
                    f"(closest match distance: {presence.distance:.1f})"
                )
            elif presence.distance > self._config.color_match_distance:
                checks.warn(
                    f"Color {target.hex} has weak match (distance: {presence.distance:.1f}). "
                    f"Consider adjusting tolerance.",
                    70,
                )
            elif presence.match_percentage < 1:
                checks.warn(
                    f"Color {target.hex} is rare in image ({presence.match_percentage:.2f}% of pixels)",
                    80,
                )

        if checks.errors:
            return checks.result(
                "Specified colors do not exist in the image. This will result in no visible effect."
            )

        checks.note(f"All {len(params.colors)} color(s) found in image.")

        tolerance = params.tolerance
        noise = analysis.noise_level
        if noise > 30 and tolerance < 25:
            checks.warn(
                f"Image has high noise ({noise:g}/100). Tolerance {tolerance:g} may be too strict. Suggest ≥25.",
                75,
            )
            checks.note("Tolerance may be too low for noisy image.")
        elif noise < 15 and tolerance > 40:
            checks.warn(
                f"Image has low noise ({noise:g}/100). Tolerance {tolerance:g} may be too loose. Suggest 15-35.",
                80,
            )
            checks.note("Tolerance may be too high for clean image.")
        else:
            checks.note(f"Tolerance {tolerance:g} is appropriate for image noise level ({noise:g}/100).")

        coverage = sum(p.match_percentage for p in presences)
        if coverage > 95:
            checks.fail("Color knockout will remove >95% of image. This will leave almost nothing visible.")
            checks.note("Excessive coverage - will remove too much.")
            return checks.result()
        if coverage < 1 and tolerance < 40:
            checks.warn("Colors match <1% of image. Effect may be minimal. Consider increasing tolerance.", 70)
            checks.note("Low coverage - effect may be subtle.")
        else:
            checks.note(f"Estimated coverage: {coverage:.1f}% of image.")

        if (
            params.replace_mode == "transparency"
            and not analysis.has_transparency
            and analysis.format not in ALPHA_FORMATS
        ):
            checks.warn(
                f"Image format {analysis.format} may not support transparency. "
                f"Consider converting to PNG first.",
                85,
            )

        return checks.result()

    def _check_recolor(self, params: RecolorImageParams, analysis: ImageAnalysis) -> ValidationResult:
        checks = _Checks()

        if not params.color_mappings:
            checks.fail("No color mappings specified")
            return checks.result("Recolor requires at least one color mapping.")

        checks.note(f"Processing {len(params.color_mappings)} color mapping(s).")

        palette = analysis.dominant_colors
        count = len(palette)
        if len(params.color_mappings) > count:
            checks.warn(
                f"Mapping count ({len(params.color_mappings)}) exceeds dominant color count ({count}). "
                f"Some mappings may not match any pixels.",
                80,
            )
            checks.note("More mappings than dominant colors - some may be ineffective.")

        for mapping in params.color_mappings:
            index = mapping.original_index
            if index < 0 or index >= count:
                message = (
                    f"Invalid originalIndex {index}. Must be 0-{count - 1} "
                    f"(palette has {count} colors)."
                )
                checks.fail(message)
                checks.note(f"ERROR: {message}")
                continue

            original = palette[index]
            new_hex = mapping.new_color
            difference = rgb_delta_e(original.rgb, hex_to_rgb(new_hex))
            if difference < 5:
                checks.warn(
                    f"Color mapping {index}: New color {new_hex} is very similar to original "
                    f"{original.hex} (ΔE: {difference:.1f}). Effect may be imperceptible.",
                    75,
                )
            checks.note(f"Mapping {index}: {original.hex} → {new_hex} (ΔE: {difference:.1f})")

        tolerance = params.tolerance
        unique = analysis.unique_color_count
        if unique > 10000 and tolerance < 20:
            checks.warn(
                f"Image has high color complexity ({unique} unique colors). Low tolerance "
                f"{tolerance:g} may miss many pixels. Suggest ≥20.",
                75,
            )
            checks.note("Tolerance may be too strict for complex image.")
        elif unique < 1000 and tolerance > 40:
            checks.warn(
                f"Image has low color complexity ({unique} unique colors). High tolerance "
                f"{tolerance:g} may affect unintended colors. Suggest ≤35.",
                80,
            )
            checks.note("Tolerance may be too loose for simple image.")
        else:
            checks.note(f"Tolerance {tolerance:g} is appropriate for image complexity ({unique} unique colors).")

        if params.blend_mode == "multiply" and palette and palette[0].percentage > 80:
            checks.warn("Multiply blend mode may result in very dark image if dominant color is light.", 85)

        return checks.result()

    def _check_texture_cut(self, params: TextureCutParams, analysis: ImageAnalysis) -> ValidationResult:
        checks = _Checks()
        checks.note(f"Texture type: {params.texture_type}")

        amount = params.amount
        if amount < 0.1:
            checks.warn(f"Amount {amount:g} is very low. Effect may be barely visible. Consider ≥0.2.", 80)
        elif amount > 0.9:
            checks.warn(f"Amount {amount:g} is very high. May cut too much of the image. Consider ≤0.8.", 85)
        checks.note(f"Amount: {amount:g} ({amount * 100:.0f}% intensity)")

        scale = params.scale
        size = max(analysis.width, analysis.height)
        if scale < 0.5 and size > 2000:
            checks.warn(
                f"Scale {scale:g} may be too small for large image ({size}px). Texture may appear too dense.",
                85,
            )
        elif scale > 3 and size < 500:
            checks.warn(
                f"Scale {scale:g} may be too large for small image ({size}px). Texture may appear too coarse.",
                85,
            )
        checks.note(f"Scale: {scale:g}x (appropriate for {size}px image)")

        if params.texture_type == "custom":
            checks.fail(
                "Custom texture requires user upload. Use built-in patterns "
                "(dots, lines, grid, noise) instead."
            )
            return checks.result("Custom textures are not supported in automated execution.")

        checks.note("All texture cut parameters are valid.")
        return checks.result()

    def _check_background_remover(self, params: BackgroundRemoverParams, analysis: ImageAnalysis) -> ValidationResult:
        checks = _Checks()

        megapixels = analysis.megapixels
        checks.note(f"Image size: {analysis.width} x {analysis.height} ({megapixels:.1f}MP)")
        if megapixels > 25:
            checks.warn(
                f"Large image ({megapixels:.1f}MP) may take longer to process. "
                f"Consider resizing before background removal.",
                85,
            )

        palette = analysis.dominant_colors
        if analysis.unique_color_count > 50000 and palette and palette[0].percentage < 20:
            checks.warn(
                "Image appears to have complex color distribution. May be challenging to "
                "identify clear subject vs background.",
                75,
            )
            checks.note("High color complexity may affect subject detection.")
        else:
            checks.note("Image characteristics suitable for background removal.")

        if analysis.has_transparency:
            checks.warn("Image already has transparency. Background removal may have unexpected results.", 80)

        if params.output_format not in ALPHA_FORMATS and not params.background_color:
            checks.warn(
                f"Output format {params.output_format} cannot hold transparency. Consider PNG.",
                85,
            )

        return checks.result()

    def _check_output_size(self, checks: _Checks, scale: float, width: int, height: int) -> bool:
        """Fail the call when the upscaled image would exceed the pixel limit."""
        max_mp = self._config.max_output_megapixels
        output_width = width * scale
        output_height = height * scale
        output_mp = output_width * output_height / 1_000_000

        checks.note(f"Scale factor: {scale:g}x")
        checks.note(f"Output size: {output_width:g} x {output_height:g} ({output_mp:.1f}MP)")

        if output_mp > max_mp:
            largest = math.floor(max_mp * 1_000_000 / (width * height) * 10) / 10
            checks.fail(
                f"Output size {output_mp:.1f}MP exceeds maximum {max_mp:g}MP. "
                f"Reduce scale factor to ≤{largest:g}x"
            )
            return False
        return True

    def _check_upscaler(self, params: UpscalerParams, analysis: ImageAnalysis) -> ValidationResult:
        checks = _Checks()

        scale = params.scale_factor
        if not self._check_output_size(checks, scale, analysis.width, analysis.height):
            return checks.result("Output size would exceed canvas memory limits.")

        if scale > 4 and analysis.width < 500:
            checks.warn(
                f"{scale:g}x upscaling of small image ({analysis.width}px) may introduce artifacts. "
                f"Consider 2-4x instead.",
                75,
            )

        sharpness = analysis.sharpness_score
        if sharpness < 40:
            checks.warn(
                f"Image has low sharpness ({sharpness:g}/100). Upscaling blurry images may not improve quality.",
                70,
            )
            checks.note("Low sharpness may limit upscaling effectiveness.")
        elif sharpness >= 70:
            checks.note(f"Good sharpness ({sharpness:g}/100) - image is suitable for upscaling.")

        if analysis.noise_level > 50:
            checks.warn(
                f"Image has high noise level ({analysis.noise_level:g}/100). Upscaling may amplify noise.",
                75,
            )
            checks.note("High noise may be amplified during upscaling.")

        return checks.result()

    def _check_palette(self, params: ExtractColorPaletteParams, analysis: ImageAnalysis) -> ValidationResult:
        checks = _Checks()
        checks.note(f"Palette size: {params.palette_size} colors")

        unique = analysis.unique_color_count
        if params.palette_size == 36 and unique < 100:
            checks.warn(
                f"Palette size 36 may be excessive for simple image with ~{unique} unique colors. "
                f"Consider size 9.",
                85,
            )

        checks.note(f"Image has {unique} unique colors - palette size is appropriate.")
        return checks.result()

    def _check_pick_color(self, params: PickColorParams, analysis: ImageAnalysis) -> ValidationResult:
        checks = _Checks()
        if self._check_bounds(checks, params, analysis.width, analysis.height):
            checks.note(
                f"Picking color at valid position ({params.x}, {params.y}) within "
                f"{analysis.width}x{analysis.height} image."
            )
            return checks.result()
        return checks.result("Coordinates are outside image boundaries.")

    @staticmethod
    def _check_bounds(checks: _Checks, params: PickColorParams, width: int, height: int) -> bool:
        x, y = params.x, params.y
        if x < 0 or x >= width:
            checks.fail(f"X coordinate {x} is outside image bounds (0-{width - 1})")
        if y < 0 or y >= height:
            checks.fail(f"Y coordinate {y} is outside image bounds (0-{height - 1})")
        return not checks.errors

    # =========================================================================
    # WITHOUT ANALYSIS
    # =========================================================================

    def _check_without_analysis(
        self,
        params: Any,
        analysis: ImageAnalysis,
        image: Optional[LoadedImage],
    ) -> ValidationResult:
        """
        Checks that still hold when the image could not be analyzed.

        Palette indices are checked against the empty fallback palette, so
        every index fails. Colors, coordinates and output size are checked
        against the decoded pixels when there are any; coordinates fail when
        no dimensions are known at all.
        """
        checks = _Checks()
        checks.warn("Image analysis unavailable; semantic checks were limited.", 50)
        checks.note("Image analysis unavailable.")

        if isinstance(params, RecolorImageParams):
            if not params.color_mappings:
                checks.fail("No color mappings specified")
            for mapping in params.color_mappings:
                checks.fail(
                    f"Invalid originalIndex {mapping.original_index}. "
                    f"No dominant colors are known for this image."
                )

        elif isinstance(params, ColorKnockoutParams):
            if not params.colors:
                checks.fail("No colors specified for knockout")
            elif image is None:
                checks.note("Colors could not be verified: no pixels available.")
            else:
                for target in params.colors:
                    presence = self.find_color(target, analysis, image)
                    if presence.found:
                        checks.note(f"Color {target.hex} found by pixel sample.")
                    else:
                        checks.fail(
                            f"Color {target.hex} not found in image "
                            f"(closest match distance: {presence.distance:.1f})"
                        )

        elif isinstance(params, PickColorParams):
            if image is None:
                checks.fail("Image dimensions are unknown; coordinates cannot be checked.")
            elif self._check_bounds(checks, params, image.width, image.height):
                checks.note(f"Position ({params.x}, {params.y}) is within {image.width}x{image.height} pixels.")

        elif isinstance(params, UpscalerParams):
            if image is None:
                checks.note("Output size could not be checked: no pixels available.")
            else:
                self._check_output_size(checks, params.scale_factor, image.width, image.height)

        elif isinstance(params, TextureCutParams) and params.texture_type == "custom":
            checks.fail(
                "Custom texture requires user upload. Use built-in patterns "
                "(dots, lines, grid, noise) instead."
            )

        return checks.result()
