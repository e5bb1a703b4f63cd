"""
Tests for ParameterValidationService.
"""

from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock

import pytest

from design_grounding.core.message import ToolCall
from design_grounding.models.analysis import DominantColor, ImageAnalysis
from design_grounding.models.execution import ColorTarget, ToolExecution
from design_grounding.services.parameter_validation_service import ParameterValidationService

BLUE = {"hex": "#0000ff", "r": 0, "g": 0, "b": 255}
PURPLE = {"hex": "#800080", "r": 128, "g": 0, "b": 128}


@pytest.fixture
def validator():
    return ParameterValidationService()


def history_store(executions):
    store = MagicMock()
    store.find_similar = AsyncMock(return_value=executions)
    return store


class TestSchemaPhase:
    """Schema errors stop validation before any semantic check."""

    @pytest.mark.asyncio
    async def test_unknown_tool(self, validator, blue_white_analysis):
        result = await validator.validate("blur", {}, blue_white_analysis)
        assert not result.is_valid
        assert result.confidence == 0
        assert result.errors == ["Unknown tool: blur"]
        assert result.reasoning == "Tool not found in definitions"

    @pytest.mark.asyncio
    async def test_missing_required(self, validator, blue_white_analysis):
        result = await validator.validate("upscaler", {}, blue_white_analysis)
        assert result.errors == ["Missing required parameter: scaleFactor"]

    @pytest.mark.asyncio
    async def test_out_of_range(self, validator, blue_white_analysis):
        result = await validator.validate("color_knockout", {"colors": [BLUE], "tolerance": 150}, blue_white_analysis)
        assert result.errors == ["Parameter 'tolerance' is above maximum. Value: 150, Maximum: 100"]

    @pytest.mark.asyncio
    async def test_malformed_call(self, validator, blue_white_analysis):
        call = ToolCall(id="call_1", name="upscaler", parse_error="Expecting value")
        result = await validator.validate_call(call, blue_white_analysis)
        assert result.errors == ["Malformed tool call: Expecting value"]

    @pytest.mark.asyncio
    async def test_undecodable_hex(self, validator, blue_white_analysis):
        result = await validator.validate(
            "recolor_image", {"colorMappings": [{"originalIndex": 0, "newColor": "red"}]}, blue_white_analysis
        )
        assert not result.is_valid
        assert "not a hex color" in result.errors[0]

    @pytest.mark.asyncio
    async def test_null_optional_takes_default(self, validator, blue_white_analysis):
        """An explicit null for an optional field behaves as if it were omitted."""
        result = await validator.validate("color_knockout", {"colors": [BLUE], "tolerance": None}, blue_white_analysis)
        assert result.is_valid
        assert result.errors == []

    def test_quick_validate(self, validator):
        assert validator.quick_validate("upscaler", {"scaleFactor": 2}) == []
        assert validator.quick_validate("upscaler", "2x") == ["Parameters for upscaler must be an object"]


class TestKnockout:
    """Color existence checks."""

    @pytest.mark.asyncio
    async def test_existing_color(self, validator, blue_white_analysis):
        """Blue is 25% of the image; the neutral history caps confidence at 75."""
        result = await validator.validate("color_knockout", {"colors": [BLUE], "tolerance": 30}, blue_white_analysis)
        assert result.is_valid
        assert result.errors == []
        assert result.confidence == 75
        assert result.historical_confidence == 75
        assert "All 1 color(s) found in image." in result.reasoning
        assert "\n\nHistorical Analysis: No historical data available" in result.reasoning

    @pytest.mark.asyncio
    async def test_missing_color(self, validator, blue_white_analysis):
        result = await validator.validate("color_knockout", {"colors": [PURPLE]}, blue_white_analysis)
        assert not result.is_valid
        assert result.confidence == 0
        assert result.errors == ["Color #800080 not found in image (closest match distance: 180.3)"]

    @pytest.mark.asyncio
    async def test_removing_everything(self, validator, blue_white_analysis):
        white = {"hex": "#ffffff", "r": 255, "g": 255, "b": 255}
        result = await validator.validate("color_knockout", {"colors": [BLUE, white]}, blue_white_analysis)
        assert not result.is_valid
        assert "remove >95%" in result.errors[0]

    @pytest.mark.asyncio
    async def test_loose_tolerance_warns(self, validator, blue_white_analysis):
        result = await validator.validate("color_knockout", {"colors": [BLUE], "tolerance": 60}, blue_white_analysis)
        assert result.is_valid
        assert any("may be too loose" in w for w in result.warnings)

    @pytest.mark.asyncio
    async def test_jpeg_transparency_warning(self, validator, blue_white_analysis):
        """Each warning multiplies confidence by its cap."""
        jpeg = replace(blue_white_analysis, format="jpeg")
        result = await validator.validate("color_knockout", {"colors": [BLUE], "tolerance": 60}, jpeg)
        assert len(result.warnings) == 2
        assert result.confidence == pytest.approx(68.0)  # 100 * 0.80 * 0.85

    def test_find_color_samples_pixels(self, validator, blue_white_analysis, loaded_image):
        """A color missing from the palette is looked up in the pixels."""
        white_only = replace(
            blue_white_analysis,
            dominant_colors=(DominantColor(255, 255, 255, "#ffffff", 100.0),),
        )
        presence = validator.find_color(ColorTarget("#0000ff", 0, 0, 255), white_only, loaded_image)
        assert presence.found
        assert presence.distance == 0
        assert 20 < presence.match_percentage < 30


class TestOtherTools:
    """Ground-truth rules for the remaining tools."""

    @pytest.mark.asyncio
    async def test_recolor_index_out_of_range(self, validator, blue_white_analysis):
        args = {"colorMappings": [{"originalIndex": 5, "newColor": "#ff0000"}]}
        result = await validator.validate("recolor_image", args, blue_white_analysis)
        assert result.errors == ["Invalid originalIndex 5. Must be 0-1 (palette has 2 colors)."]

    @pytest.mark.asyncio
    async def test_recolor_imperceptible(self, validator, blue_white_analysis):
        args = {"colorMappings": [{"originalIndex": 1, "newColor": "#0000fe"}]}
        result = await validator.validate("recolor_image", args, blue_white_analysis)
        assert result.is_valid
        assert "imperceptible" in result.warnings[0]

    @pytest.mark.asyncio
    async def test_upscale_too_large(self, validator, blue_white_analysis):
        result = await validator.validate("upscaler", {"scaleFactor": 10}, blue_white_analysis)
        assert result.errors == ["Output size 207.4MP exceeds maximum 16MP. Reduce scale factor to ≤7.7x"]

    @pytest.mark.asyncio
    async def test_upscale_ok(self, validator, blue_white_analysis):
        result = await validator.validate("upscaler", {"scaleFactor": 2}, blue_white_analysis)
        assert result.is_valid
        assert result.confidence == 75

    @pytest.mark.asyncio
    async def test_pick_outside(self, validator, blue_white_analysis):
        result = await validator.validate("pick_color_at_position", {"x": 5000, "y": 10}, blue_white_analysis)
        assert result.errors == ["X coordinate 5000 is outside image bounds (0-1919)"]

    @pytest.mark.asyncio
    async def test_custom_texture(self, validator, blue_white_analysis):
        result = await validator.validate("texture_cut", {"textureType": "custom"}, blue_white_analysis)
        assert not result.is_valid
        assert result.errors[0].startswith("Custom texture requires user upload")

    @pytest.mark.asyncio
    async def test_palette_36_on_simple_image(self, validator, blue_white_analysis):
        result = await validator.validate("extract_color_palette", {"paletteSize": 36}, blue_white_analysis)
        assert result.is_valid
        assert "excessive" in result.warnings[0]

    @pytest.mark.asyncio
    async def test_background_remover_on_transparent(self, validator, blue_white_analysis):
        transparent = replace(blue_white_analysis, has_transparency=True)
        result = await validator.validate("background_remover", {}, transparent)
        assert result.is_valid
        assert any("already has transparency" in w for w in result.warnings)


class TestFallbackAndHistory:
    """Fallback analyses and the historical check."""

    @pytest.mark.asyncio
    async def test_fallback_analysis(self, validator):
        """Without ground truth only the schema is checked, at reduced confidence."""
        result = await validator.validate("upscaler", {"scaleFactor": 2}, ImageAnalysis.fallback())
        assert result.is_valid
        assert result.confidence == 50
        assert "Image analysis unavailable" in result.warnings[0]

    @pytest.mark.asyncio
    async def test_low_history_lowers_confidence(self, blue_white_analysis):
        executions = [
            ToolExecution(tool_name="upscaler", parameters={"scaleFactor": 2}, success=True, confidence=60),
            ToolExecution(tool_name="upscaler", parameters={"scaleFactor": 2}, success=True, confidence=62),
        ]
        validator = ParameterValidationService(context_store=history_store(executions))
        result = await validator.validate("upscaler", {"scaleFactor": 2}, blue_white_analysis)
        assert result.confidence == 61
        assert result.historical_confidence == 61
        assert "Historical patterns show lower success rate for similar parameters" in result.warnings
        assert "Found 2 similar successful executions" in result.reasoning

    @pytest.mark.asyncio
    async def test_history_suggests_tolerance(self, blue_white_analysis):
        executions = [
            ToolExecution(tool_name="color_knockout", parameters={"tolerance": 60}, success=True, confidence=90),
        ]
        validator = ParameterValidationService(context_store=history_store(executions))
        result = await validator.validate(
            "color_knockout", {"colors": [BLUE], "tolerance": 30}, blue_white_analysis
        )
        assert result.is_valid
        assert result.adjusted_parameters["tolerance"] == 60
        assert "Suggested tolerance adjustment: 30 → 60" in result.reasoning

    @pytest.mark.asyncio
    async def test_history_failure_is_neutral(self, blue_white_analysis):
        store = MagicMock()
        store.find_similar = AsyncMock(side_effect=RuntimeError("down"))
        validator = ParameterValidationService(context_store=store)
        result = await validator.validate("upscaler", {"scaleFactor": 2}, blue_white_analysis)
        assert result.confidence == 75
        assert "Unable to retrieve historical data." in result.reasoning


class TestWithoutAnalysis:
    """Checks that still apply when the image could not be analyzed."""

    @pytest.mark.asyncio
    async def test_recolor_index_always_fails(self, validator):
        args = {"colorMappings": [{"originalIndex": 3, "newColor": "#ff0000"}]}
        result = await validator.validate("recolor_image", args, ImageAnalysis.fallback())
        assert not result.is_valid
        assert result.confidence == 0
        assert result.errors == ["Invalid originalIndex 3. No dominant colors are known for this image."]

    @pytest.mark.asyncio
    async def test_first_index_fails_too(self, validator):
        args = {"colorMappings": [{"originalIndex": 0, "newColor": "#ff0000"}]}
        result = await validator.validate("recolor_image", args, ImageAnalysis.fallback())
        assert not result.is_valid

    @pytest.mark.asyncio
    async def test_pick_without_dimensions(self, validator):
        result = await validator.validate("pick_color_at_position", {"x": 10, "y": 10}, ImageAnalysis.fallback())
        assert not result.is_valid
        assert "dimensions are unknown" in result.errors[0]

    @pytest.mark.asyncio
    async def test_pick_bounds_from_pixels(self, validator, loaded_image):
        inside = await validator.validate(
            "pick_color_at_position", {"x": 100, "y": 100}, ImageAnalysis.fallback(), loaded_image
        )
        outside = await validator.validate(
            "pick_color_at_position", {"x": 5000, "y": 10}, ImageAnalysis.fallback(), loaded_image
        )
        assert inside.is_valid
        assert inside.confidence == 50
        assert not outside.is_valid
        assert outside.errors == ["X coordinate 5000 is outside image bounds (0-1919)"]

    @pytest.mark.asyncio
    async def test_knockout_checks_pixels(self, validator, loaded_image):
        present = await validator.validate(
            "color_knockout", {"colors": [BLUE], "tolerance": 30}, ImageAnalysis.fallback(), loaded_image
        )
        missing = await validator.validate(
            "color_knockout", {"colors": [PURPLE], "tolerance": 30}, ImageAnalysis.fallback(), loaded_image
        )
        assert present.is_valid
        assert not missing.is_valid
        assert missing.errors[0].startswith("Color #800080 not found in image")

    @pytest.mark.asyncio
    async def test_upscale_checked_against_pixels(self, validator, loaded_image):
        result = await validator.validate("upscaler", {"scaleFactor": 10}, ImageAnalysis.fallback(), loaded_image)
        assert result.errors == ["Output size 207.4MP exceeds maximum 16MP. Reduce scale factor to ≤7.7x"]

    @pytest.mark.asyncio
    async def test_custom_texture(self, validator):
        result = await validator.validate("texture_cut", {"textureType": "custom"}, ImageAnalysis.fallback())
        assert not result.is_valid
