"""
Prompt Builder Service.

Renders the system prompt for the editing model. The prompt's core is the
ground-truth block: the measured facts the model must trust over its own
reading of the image.
"""

import logging
from typing import List, Optional

from design_grounding.core.config import AnalyzerConfig, get_config
from design_grounding.models.analysis import ImageAnalysis
from design_grounding.models.orchestration import EditingHistory, UserContext

logger = logging.getLogger(__name__)


ROLE = """You are a design assistant for apparel printing and image editing.

<role>
You help users prepare images for professional print production. You call the
available image tools to make the edits they ask for, and you explain what you
did in one or two sentences.
</role>"""


TOOL_RULES = """<tool_rules>
- Base every parameter on the ground truth above, never on your own visual estimate.
- Only target colors listed in the dominant colors; copy their hex values exactly.
- recolor_image originalIndex refers to the position in the dominant colors list, starting at 0.
- Coordinates must be inside the image dimensions.
- Upscaled output must stay at or below 16 megapixels.
- Prefer background_remover over color_knockout when the user asks to remove a background.
- Upscale before background removal when the image is below 300 DPI.
- If a request is ambiguous, ask one short question instead of guessing.
</tool_rules>"""


UNAVAILABLE_GROUND_TRUTH = """<ground_truth_data>
Image analysis is unavailable for this image. Do not assume dimensions or
colors; ask the user to re-upload the image if the edit depends on them.
</ground_truth_data>"""


class PromptBuilderService:
    """
    Service for building the model's system prompt.

    Provides:
        - The ground-truth block rendered from an ImageAnalysis
        - The editing-history and user-context sections
        - The tool-use rules
    """

    def __init__(self, config: Optional[AnalyzerConfig] = None):
        self._config = config or get_config().analyzer

    def build_system_prompt(
        self,
        analysis: ImageAnalysis,
        user_context: Optional[UserContext] = None,
        editing_history: Optional[EditingHistory] = None,
    ) -> str:
        sections = [ROLE, self.ground_truth(analysis)]

        history = self.editing_history_section(editing_history)
        if history:
            sections.append(history)

        sections.append(self.user_context_section(user_context))
        sections.append(TOOL_RULES)

        prompt = "\n\n".join(sections)
        logger.debug(f"Built system prompt ({len(prompt)} chars)")
        return prompt

    def ground_truth(self, analysis: ImageAnalysis) -> str:
        """The measured facts, with print sizes at the effective, 300 and 150 DPI."""
        if analysis.is_fallback:
            return UNAVAILABLE_GROUND_TRUTH

        dpi = analysis.effective_dpi(self._config.default_dpi)
        colors = ", ".join(
            f"[{i}] {c.hex} ({c.percentage:g}%)" for i, c in enumerate(analysis.dominant_colors)
        ) or "none detected"

        lines = [
            "<ground_truth_data>",
            "IMAGE TECHNICAL SPECIFICATIONS (trust this data over visual perception):",
            f"- Dimensions: {analysis.width} x {analysis.height} pixels",
            f"- Current print size: {analysis.width / dpi:.1f}\" x {analysis.height / dpi:.1f}\" at {dpi} DPI",
            f"- Professional quality (300 DPI): {analysis.width / 300:.1f}\" x {analysis.height / 300:.1f}\"",
            f"- Good quality (150 DPI): {analysis.width / 150:.1f}\" x {analysis.height / 150:.1f}\"",
            f"- File format: {analysis.format.upper()}, {analysis.file_size / 1024:.1f} KB",
            "- Transparency: "
            + ("YES - ready for garment printing" if analysis.has_transparency else "NO - has solid background"),
            f"- Sharpness: {analysis.sharpness_score:g}/100 "
            + ("(needs improvement)" if analysis.is_blurry else "(good quality)"),
            f"- Noise level: {analysis.noise_level:g}/100",
            f"- Unique colors: ~{analysis.unique_color_count}",
            f"- Dominant colors: {colors}",
            f"- Effective DPI: {dpi}",
            f"- Print ready: {'YES' if analysis.is_print_ready else 'NO'}",
        ]
        for issue in analysis.print_readiness_issues:
            lines.append(f"  - {issue}")
        lines.append("</ground_truth_data>")
        return "\n".join(lines)

    def editing_history_section(self, history: Optional[EditingHistory]) -> Optional[str]:
        if history is None or history.total_operations == 0:
            return None

        lines: List[str] = [
            "<editing_history>",
            f"Operations already applied to this image ({history.total_operations}):",
        ]
        for op in history.operations:
            marker = " <- CURRENT STATE" if op.is_current else ""
            lines.append(f"{op.step}. {op.operation.upper()}: {op.description}{marker}")
        lines.append(f"Current state: Step {history.current_state_index + 1}/{history.total_operations}")
        lines.append("Do not repeat operations that are already applied.")
        lines.append("</editing_history>")
        return "\n".join(lines)

    def user_context_section(self, context: Optional[UserContext]) -> str:
        industry = (context.industry if context else None) or "general design"
        expertise = (context.expertise if context else None) or "intermediate"
        return f"<user_context>\nIndustry: {industry}\nExpertise Level: {expertise}\n</user_context>"
