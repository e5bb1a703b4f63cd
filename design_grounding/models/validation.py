"""
Validation models.

ValidationResult is produced by the parameter validator before a tool
runs; ResultValidation is produced after it runs, from the pixel delta.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class ValidationResult:
    """
    Verdict on one proposed tool call.

    errors is non-empty exactly when is_valid is False; confidence is 0
    whenever errors is non-empty. reasoning is an ordered trace of every
    check run and its verdict.
    """
    is_valid: bool
    confidence: float
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    reasoning: str = ""
    adjusted_parameters: Optional[Dict[str, Any]] = None
    historical_confidence: Optional[float] = None

    @classmethod
    def invalid(cls, errors: List[str], reasoning: str, warnings: Optional[List[str]] = None) -> "ValidationResult":
        """Build a failed verdict; confidence is forced to 0."""
        return cls(
            is_valid=False,
            confidence=0,
            warnings=list(warnings or []),
            errors=list(errors),
            reasoning=reasoning,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "is_valid": self.is_valid,
            "confidence": self.confidence,
            "warnings": list(self.warnings),
            "errors": list(self.errors),
            "reasoning": self.reasoning,
            "adjusted_parameters": self.adjusted_parameters,
            "historical_confidence": self.historical_confidence,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ValidationResult":
        """Create from dictionary."""
        return cls(
            is_valid=bool(data.get("is_valid", False)),
            confidence=float(data.get("confidence", 0)),
            warnings=list(data.get("warnings", [])),
            errors=list(data.get("errors", [])),
            reasoning=data.get("reasoning", ""),
            adjusted_parameters=data.get("adjusted_parameters"),
            historical_confidence=data.get("historical_confidence"),
        )


class ExpectedOperation(Enum):
    """Kind of change a tool is expected to make to the image."""
    TRANSPARENCY_CHANGE = "transparency_change"
    COLOR_CHANGE = "color_change"
    QUALITY_ENHANCEMENT = "quality_enhancement"
    INFO_ONLY = "info_only"

    @property
    def mutates_pixels(self) -> bool:
        return self != ExpectedOperation.INFO_ONLY


@dataclass(frozen=True)
class VisualDifference:
    """Magnitudes of the per-pixel delta between before and after."""
    max_delta: float = 0.0
    avg_delta: float = 0.0
    color_shift_amount: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_delta": self.max_delta,
            "avg_delta": self.avg_delta,
            "color_shift_amount": self.color_shift_amount,
        }


@dataclass(frozen=True)
class ResultValidation:
    """
    Post-hoc check that a tool really made the change it claims.

    Ephemeral: produced per tool execution and never persisted on its own.
    """
    success: bool
    pixels_changed: int = 0
    percentage_changed: float = 0.0
    quality_score: float = 0.0
    significant_change: bool = False
    visual_difference: VisualDifference = field(default_factory=VisualDifference)
    warnings: List[str] = field(default_factory=list)
    reasoning: str = ""
    expected_operation: Optional[ExpectedOperation] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "success": self.success,
            "pixels_changed": self.pixels_changed,
            "percentage_changed": self.percentage_changed,
            "quality_score": self.quality_score,
            "significant_change": self.significant_change,
            "visual_difference": self.visual_difference.to_dict(),
            "warnings": list(self.warnings),
            "reasoning": self.reasoning,
            "expected_operation": self.expected_operation.value if self.expected_operation else None,
        }
