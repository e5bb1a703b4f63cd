"""
Image analysis models.

ImageAnalysis is the ground truth that every later stage trusts over
anything the model claims about the image.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class DominantColor:
    """One k-means cluster center, with its share of sampled pixels."""
    r: int
    g: int
    b: int
    hex: str
    percentage: float

    @property
    def rgb(self) -> Tuple[int, int, int]:
        return (self.r, self.g, self.b)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "r": self.r,
            "g": self.g,
            "b": self.b,
            "hex": self.hex,
            "percentage": self.percentage,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DominantColor":
        """Create from dictionary."""
        return cls(
            r=int(data.get("r", 0)),
            g=int(data.get("g", 0)),
            b=int(data.get("b", 0)),
            hex=data.get("hex", "#000000"),
            percentage=float(data.get("percentage", 0.0)),
        )


@dataclass(frozen=True)
class PrintSize:
    """Print dimensions in inches."""
    width: float = 0.0
    height: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {"width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PrintSize":
        return cls(
            width=float(data.get("width", 0.0)),
            height=float(data.get("height", 0.0)),
        )


@dataclass(frozen=True)
class ImageAnalysis:
    """
    Deterministic facts measured from one image.

    Produced fresh per analyze call and never mutated. A confidence of 0
    marks the fallback object: every numeric field then holds its zero
    fallback and must not be read as a measurement.

    dominant_colors is ordered by prominence (most pixels first).
    printable_at_size is measured at 300 DPI.
    print_readiness_issues names each failing print clause in plain words.
    """
    width: int
    height: int
    aspect_ratio: str
    dpi: Optional[int]
    file_size: int
    format: str
    has_transparency: bool
    dominant_colors: Tuple[DominantColor, ...]
    color_depth: int
    unique_color_count: int
    is_blurry: bool
    sharpness_score: float
    noise_level: float
    is_print_ready: bool
    printable_at_size: PrintSize
    confidence: float
    analyzed_at: datetime = field(default_factory=datetime.utcnow)
    print_readiness_issues: Tuple[str, ...] = ()

    @property
    def is_fallback(self) -> bool:
        return self.confidence == 0

    @property
    def megapixels(self) -> float:
        return (self.width * self.height) / 1_000_000

    def effective_dpi(self, default_dpi: int = 72) -> int:
        """DPI from metadata, or the web default when none was recorded."""
        return self.dpi or default_dpi

    @classmethod
    def fallback(cls) -> "ImageAnalysis":
        """The zero-confidence result returned when analysis fails."""
        return cls(
            width=0,
            height=0,
            aspect_ratio="0:0",
            dpi=None,
            file_size=0,
            format="unknown",
            has_transparency=False,
            dominant_colors=(),
            color_depth=0,
            unique_color_count=0,
            is_blurry=True,
            sharpness_score=0,
            noise_level=100,
            is_print_ready=False,
            printable_at_size=PrintSize(0.0, 0.0),
            confidence=0,
            print_readiness_issues=("Image could not be analyzed",),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "width": self.width,
            "height": self.height,
            "aspect_ratio": self.aspect_ratio,
            "dpi": self.dpi,
            "file_size": self.file_size,
            "format": self.format,
            "has_transparency": self.has_transparency,
            "dominant_colors": [c.to_dict() for c in self.dominant_colors],
            "color_depth": self.color_depth,
            "unique_color_count": self.unique_color_count,
            "is_blurry": self.is_blurry,
            "sharpness_score": self.sharpness_score,
            "noise_level": self.noise_level,
            "is_print_ready": self.is_print_ready,
            "printable_at_size": self.printable_at_size.to_dict(),
            "analyzed_at": self.analyzed_at.isoformat(),
            "confidence": self.confidence,
            "print_readiness_issues": list(self.print_readiness_issues),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ImageAnalysis":
        """Create from dictionary."""
        analyzed_at = datetime.utcnow()
        if data.get("analyzed_at"):
            if isinstance(data["analyzed_at"], str):
                analyzed_at = datetime.fromisoformat(data["analyzed_at"])
            else:
                analyzed_at = data["analyzed_at"]

        return cls(
            width=int(data.get("width", 0)),
            height=int(data.get("height", 0)),
            aspect_ratio=data.get("aspect_ratio", "0:0"),
            dpi=data.get("dpi"),
            file_size=int(data.get("file_size", 0)),
            format=data.get("format", "unknown"),
            has_transparency=bool(data.get("has_transparency", False)),
            dominant_colors=tuple(
                DominantColor.from_dict(c) for c in data.get("dominant_colors", [])
            ),
            color_depth=int(data.get("color_depth", 0)),
            unique_color_count=int(data.get("unique_color_count", 0)),
            is_blurry=bool(data.get("is_blurry", True)),
            sharpness_score=float(data.get("sharpness_score", 0)),
            noise_level=float(data.get("noise_level", 0)),
            is_print_ready=bool(data.get("is_print_ready", False)),
            printable_at_size=PrintSize.from_dict(data.get("printable_at_size", {})),
            confidence=float(data.get("confidence", 0)),
            analyzed_at=analyzed_at,
            print_readiness_issues=tuple(data.get("print_readiness_issues", [])),
        )
