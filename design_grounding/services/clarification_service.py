"""
Clarification Service.

Decides when a proposed multi-step edit should be confirmed by the user
before it runs, and builds the confirmation: the parsed steps, print
warnings, an optimized order when one exists, and the answer options.
"""

import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from design_grounding.core.config import AnalyzerConfig, get_config
from design_grounding.models.analysis import ImageAnalysis
from design_grounding.models.orchestration import (
    ClarificationData,
    ClarificationOption,
    ClarificationStep,
    PrintWarning,
    SuggestedWorkflow,
)
from design_grounding.tools.image_tools import (
    BACKGROUND_REMOVER,
    COLOR_KNOCKOUT,
    EXTRACT_COLOR_PALETTE,
    PICK_COLOR_AT_POSITION,
    RECOLOR_IMAGE,
    TEXTURE_CUT,
    UPSCALER,
)

logger = logging.getLogger(__name__)

PRINT_QUERY = re.compile(r"print.?ready|print.?quality|ready.?for.?print|check.?print", re.IGNORECASE)

# (tool name, parameters) as proposed by the model
Call = Tuple[str, Dict[str, Any]]


def describe_call(tool_name: str, parameters: Dict[str, Any]) -> str:
    """One-line user-facing description of a tool call."""
    if tool_name == BACKGROUND_REMOVER:
        return "Remove background for transparent printing"
    if tool_name == UPSCALER:
        return f"Upscale image {parameters.get('scaleFactor', 2):g}x for better quality"
    if tool_name == COLOR_KNOCKOUT:
        hexes = [c.get("hex") for c in parameters.get("colors") or [] if isinstance(c, dict) and c.get("hex")]
        return f"Remove colors {', '.join(hexes)}" if hexes else "Remove selected colors"
    if tool_name == RECOLOR_IMAGE:
        return "Change image colors"
    if tool_name == TEXTURE_CUT:
        return f"Apply {parameters.get('textureType', 'texture')} texture cut"
    if tool_name == EXTRACT_COLOR_PALETTE:
        return "Extract color palette"
    if tool_name == PICK_COLOR_AT_POSITION:
        return f"Read color at ({parameters.get('x')}, {parameters.get('y')})"
    return f"Apply {tool_name}"


class ClarificationService:
    """Service for deciding and building user confirmations."""

    def __init__(self, config: Optional[AnalyzerConfig] = None):
        self._config = config or get_config().analyzer

    def detect_need(self, calls: List[Call], analysis: ImageAnalysis, message: str) -> Tuple[bool, str]:
        """
        Whether the proposed calls need confirmation, and why.

        One call never does; three or more always do.
        """
        if len(calls) <= 1:
            return False, "Single operation"

        if len(calls) >= 3:
            return True, "Complex multi-step workflow (3+ operations)"

        if analysis.effective_dpi(self._config.default_dpi) < self._config.print_dpi:
            return True, "Low DPI with multiple operations"

        names = [name for name, _ in calls]
        if UPSCALER in names and BACKGROUND_REMOVER in names:
            if names.index(BACKGROUND_REMOVER) < names.index(UPSCALER):
                return True, "Workflow order optimization available"

        if PRINT_QUERY.search(message or ""):
            return True, "User requested print readiness check"

        return False, "No clarification needed"

    def print_warnings(self, analysis: ImageAnalysis) -> List[PrintWarning]:
        warnings: List[PrintWarning] = []
        if analysis.is_fallback:
            return warnings

        dpi = analysis.effective_dpi(self._config.default_dpi)
        if dpi < 150:
            warnings.append(PrintWarning(
                severity="critical",
                message=f"Current DPI is {dpi}",
                impact="Poor print quality - images will appear pixelated",
                suggested_fix="Upscale image 2-4x for professional print quality",
            ))
        elif dpi < self._config.print_dpi:
            warnings.append(PrintWarning(
                severity="warning",
                message=f"Current DPI is {dpi}",
                impact=(
                    f"Can print at {analysis.width / 300:.1f}\" x {analysis.height / 300:.1f}\" "
                    f"at 300 DPI (professional quality)"
                ),
                suggested_fix="Upscale for larger print sizes",
            ))

        if not analysis.has_transparency:
            warnings.append(PrintWarning(
                severity="info",
                message="Design has solid background",
                impact="Background will print as white on garments",
                suggested_fix="Remove background for transparent printing",
            ))

        return warnings

    def suggest_workflow(self, calls: List[Call], analysis: ImageAnalysis) -> Optional[SuggestedWorkflow]:
        """Upscale before background removal when the image is below print DPI."""
        names = [name for name, _ in calls]
        if BACKGROUND_REMOVER not in names:
            return None
        if analysis.effective_dpi(self._config.default_dpi) >= self._config.print_dpi:
            return None
        if UPSCALER in names and names.index(UPSCALER) < names.index(BACKGROUND_REMOVER):
            return None

        upscale_params = next((p for n, p in calls if n == UPSCALER), None) or {"scaleFactor": 2}
        remover_params = next(p for n, p in calls if n == BACKGROUND_REMOVER)

        steps = [
            ClarificationStep(
                number=1,
                description="Upscale image for better quality",
                tool_name=UPSCALER,
                parameters=dict(upscale_params),
                reasoning="Higher resolution = cleaner background removal",
            ),
            ClarificationStep(
                number=2,
                description="Remove background with high-quality source",
                tool_name=BACKGROUND_REMOVER,
                parameters=dict(remover_params),
                reasoning="Better edge detection on upscaled image",
            ),
        ]
        for name, params in calls:
            if name not in (UPSCALER, BACKGROUND_REMOVER):
                steps.append(ClarificationStep(
                    number=len(steps) + 1,
                    description=describe_call(name, params),
                    tool_name=name,
                    parameters=dict(params),
                ))

        return SuggestedWorkflow(
            reason="Upscaling before background removal produces cleaner edges",
            steps=steps,
            benefits=[
                "Cleaner edge detection on higher resolution",
                "Professional 300 DPI print quality",
                "Better results for apparel printing",
            ],
        )

    def build(self, calls: List[Call], analysis: ImageAnalysis, message: str) -> Optional[ClarificationData]:
        """The confirmation for these calls, or None when none is needed."""
        needed, reason = self.detect_need(calls, analysis, message)
        if not needed:
            return None

        suggestion = self.suggest_workflow(calls, analysis)

        options: List[ClarificationOption] = []
        if suggestion:
            options.append(ClarificationOption(
                id="execute-suggested",
                label="Use Optimized Workflow",
                description=suggestion.reason,
            ))
        options.append(ClarificationOption(
            id="execute-original",
            label="Use Original Request" if suggestion else "Continue",
            description="Execute steps in the order you requested" if suggestion else "Execute the planned workflow",
        ))
        options.append(ClarificationOption(id="cancel", label="Cancel", description="Don't execute anything"))

        data = ClarificationData(
            needs_clarification=True,
            reason=reason,
            parsed_steps=[
                ClarificationStep(
                    number=i + 1,
                    description=describe_call(name, params),
                    tool_name=name,
                    parameters=dict(params),
                )
                for i, (name, params) in enumerate(calls)
            ],
            print_warnings=self.print_warnings(analysis),
            suggested_workflow=suggestion,
            options=options,
        )
        logger.info(
            f"Clarification needed ({reason}): {len(data.parsed_steps)} steps, "
            f"{len(data.print_warnings)} warnings, suggestion={suggestion is not None}"
        )
        return data
