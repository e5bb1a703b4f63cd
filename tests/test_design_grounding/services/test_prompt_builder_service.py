"""
Tests for PromptBuilderService.
"""

import pytest

from design_grounding.models.analysis import ImageAnalysis
from design_grounding.models.orchestration import EditingHistory, EditingOperation, UserContext
from design_grounding.services.prompt_builder_service import UNAVAILABLE_GROUND_TRUTH, PromptBuilderService


@pytest.fixture
def builder():
    return PromptBuilderService()


class TestGroundTruth:
    """Tests for the ground-truth block."""

    def test_contains_measurements(self, builder, blue_white_analysis):
        prompt = builder.build_system_prompt(blue_white_analysis)
        assert "<ground_truth_data>" in prompt
        assert "Dimensions: 1920 x 1080 pixels" in prompt
        assert "Dominant colors: [0] #ffffff (75%), [1] #0000ff (25%)" in prompt
        assert "Current print size: 26.7\" x 15.0\" at 72 DPI" in prompt
        assert "Professional quality (300 DPI): 6.4\" x 3.6\"" in prompt
        assert "NO - has solid background" in prompt
        assert "  - Effective DPI 72 is below 300" in prompt

    def test_fallback(self, builder):
        prompt = builder.build_system_prompt(ImageAnalysis.fallback())
        assert UNAVAILABLE_GROUND_TRUTH in prompt
        assert "Dimensions:" not in prompt

    def test_rules_and_default_context(self, builder, blue_white_analysis):
        prompt = builder.build_system_prompt(blue_white_analysis)
        assert "<tool_rules>" in prompt
        assert "Industry: general design" in prompt
        assert "Expertise Level: intermediate" in prompt
        assert "<editing_history>" not in prompt


class TestSections:
    """Tests for the optional sections."""

    def test_editing_history(self, builder):
        history = EditingHistory(
            operations=[
                EditingOperation(1, "upscaler", "Upscaled 2x"),
                EditingOperation(2, "background_remover", "Removed background", is_current=True),
            ],
            current_state_index=1,
        )
        section = builder.editing_history_section(history)
        assert "1. UPSCALER: Upscaled 2x" in section
        assert "2. BACKGROUND_REMOVER: Removed background <- CURRENT STATE" in section
        assert "Current state: Step 2/2" in section

    def test_empty_history(self, builder):
        assert builder.editing_history_section(None) is None
        assert builder.editing_history_section(EditingHistory()) is None

    def test_user_context(self, builder):
        section = builder.user_context_section(UserContext(industry="apparel", expertise="expert"))
        assert "Industry: apparel" in section
        assert "Expertise Level: expert" in section
