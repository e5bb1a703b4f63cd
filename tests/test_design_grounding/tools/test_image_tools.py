"""
Unit tests for the built-in tool schemas and argument decoding.
"""

import pytest

from design_grounding.core.exceptions import ToolValidationError
from design_grounding.models.execution import (
    BackgroundRemoverParams,
    ColorKnockoutParams,
    PickColorParams,
    RecolorImageParams,
    UnrecognizedToolCall,
    UpscalerParams,
)
from design_grounding.models.validation import ExpectedOperation
from design_grounding.tools.registry import get_registry
from design_grounding.tools.image_tools import decode_tool_call


class TestSchemaPhase:
    """Tests for ImageTool.validate_input over the catalogue."""

    def test_missing_required(self):
        errors = get_registry().get("upscaler").validate_input({})
        assert errors == ["Missing required parameter: scaleFactor"]

    def test_null_counts_as_missing(self):
        errors = get_registry().get("pick_color_at_position").validate_input({"x": None, "y": 3})
        assert errors == ["Missing required parameter: x"]

    def test_above_maximum(self):
        errors = get_registry().get("color_knockout").validate_input({
            "colors": [{"hex": "#0000ff", "r": 0, "g": 0, "b": 255}],
            "tolerance": 150,
        })
        assert errors == ["Parameter 'tolerance' is above maximum. Value: 150, Maximum: 100"]

    def test_wrong_type(self):
        errors = get_registry().get("pick_color_at_position").validate_input({"x": "10", "y": 5})
        assert errors == ["Parameter 'x' has wrong type. Expected number, got string"]

    def test_enum(self):
        errors = get_registry().get("extract_color_palette").validate_input({"paletteSize": 12})
        assert errors == ["Parameter 'paletteSize' has invalid value '12'. Must be one of: 9, 36"]

    def test_array_item_fields(self):
        """Each color entry needs hex, r, g and b."""
        errors = get_registry().get("color_knockout").validate_input({
            "colors": [{"r": 0, "g": 0, "b": 255}, "blue"],
        })
        assert "Array item 0 in 'colors' missing required field: hex" in errors
        assert "Array item 1 in 'colors' has wrong type. Expected object, got string" in errors

    def test_unknown_keys_ignored(self):
        assert get_registry().get("upscaler").validate_input({"scaleFactor": 2, "extra": "x"}) == []

    def test_boolean_is_not_a_number(self):
        errors = get_registry().get("upscaler").validate_input({"scaleFactor": True})
        assert errors == ["Parameter 'scaleFactor' has wrong type. Expected number, got boolean"]

    def test_with_defaults(self):
        filled = get_registry().get("color_knockout").with_defaults({"colors": []})
        assert filled["tolerance"] == 30
        assert filled["replaceMode"] == "transparency"

    def test_expected_operations(self):
        registry = get_registry()
        assert registry.get("color_knockout").expected_operation == ExpectedOperation.TRANSPARENCY_CHANGE
        assert registry.get("upscaler").expected_operation == ExpectedOperation.QUALITY_ENHANCEMENT
        assert not registry.get("pick_color_at_position").mutates_image

    def test_openai_schema(self):
        schema = get_registry().get("upscaler").get_openai_schema()["function"]
        assert schema["parameters"]["required"] == ["scaleFactor"]
        assert schema["parameters"]["properties"]["scaleFactor"]["maximum"] == 10


class TestDecodeToolCall:
    """Tests for decode_tool_call."""

    def test_knockout(self):
        params = decode_tool_call("color_knockout", {"colors": [{"hex": "#0000FF", "r": 0, "g": 0, "b": 255.4}]})
        assert isinstance(params, ColorKnockoutParams)
        assert params.colors[0].hex == "#0000ff"
        assert params.colors[0].b == 255
        assert params.tolerance == 30
        assert params.anti_aliasing is True

    def test_recolor(self):
        params = decode_tool_call("recolor_image", {"colorMappings": [{"originalIndex": 1, "newColor": "#FF0000"}]})
        assert isinstance(params, RecolorImageParams)
        assert params.color_mappings[0].original_index == 1
        assert params.color_mappings[0].new_color == "#ff0000"

    def test_recolor_bad_hex(self):
        with pytest.raises(ToolValidationError):
            decode_tool_call("recolor_image", {"colorMappings": [{"originalIndex": 0, "newColor": "red"}]})

    def test_background_color(self):
        params = decode_tool_call("background_remover", {"backgroundColor": "#FFFFFF"})
        assert isinstance(params, BackgroundRemoverParams)
        assert params.background_color == "#ffffff"
        with pytest.raises(ToolValidationError):
            decode_tool_call("background_remover", {"backgroundColor": "white"})

    def test_upscaler_and_pick(self):
        assert decode_tool_call("upscaler", {"scaleFactor": 4}) == UpscalerParams(scale_factor=4.0)
        assert decode_tool_call("pick_color_at_position", {"x": 10.7, "y": 3}) == PickColorParams(x=10, y=3)

    def test_null_optionals_take_defaults(self):
        params = decode_tool_call(
            "color_knockout",
            {"colors": [{"hex": "#0000ff", "r": 0, "g": 0, "b": 255}], "tolerance": None, "antiAliasing": None},
        )
        assert params.tolerance == 30
        assert params.anti_aliasing is True
        assert decode_tool_call("background_remover", {"backgroundColor": None}) == BackgroundRemoverParams()

    def test_unknown(self):
        params = decode_tool_call("blur", {"radius": 3})
        assert isinstance(params, UnrecognizedToolCall)
        assert params.tool_name == "blur"
        assert params.reason == "Unknown tool: blur"
