"""
Tool call and tool execution models.

The model's free-form tool arguments are decoded once, at the schema
boundary, into one of the typed parameter classes below (or into
UnrecognizedToolCall). Nothing past the validator reads raw argument maps.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Union
import uuid

from design_grounding.models.analysis import DominantColor, ImageAnalysis


# =============================================================================
# TYPED TOOL PARAMETERS
# =============================================================================

@dataclass(frozen=True)
class ColorTarget:
    """A color the model wants an operation to target."""
    hex: str
    r: int
    g: int
    b: int

    @property
    def rgb(self) -> Tuple[int, int, int]:
        return (self.r, self.g, self.b)

    def to_dict(self) -> Dict[str, Any]:
        return {"hex": self.hex, "r": self.r, "g": self.g, "b": self.b}


@dataclass(frozen=True)
class ColorKnockoutParams:
    tool_name: ClassVar[str] = "color_knockout"

    colors: Tuple[ColorTarget, ...]
    tolerance: float = 30
    replace_mode: str = "transparency"
    feather: float = 0
    anti_aliasing: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "colors": [c.to_dict() for c in self.colors],
            "tolerance": self.tolerance,
            "replaceMode": self.replace_mode,
            "feather": self.feather,
            "antiAliasing": self.anti_aliasing,
        }


@dataclass(frozen=True)
class ExtractColorPaletteParams:
    tool_name: ClassVar[str] = "extract_color_palette"

    palette_size: int = 9
    algorithm: str = "smart"

    def to_dict(self) -> Dict[str, Any]:
        return {"paletteSize": self.palette_size, "algorithm": self.algorithm}


@dataclass(frozen=True)
class ColorMapping:
    """Replace dominant color number original_index with new_color (hex)."""
    original_index: int
    new_color: str

    def to_dict(self) -> Dict[str, Any]:
        return {"originalIndex": self.original_index, "newColor": self.new_color}


@dataclass(frozen=True)
class RecolorImageParams:
    tool_name: ClassVar[str] = "recolor_image"

    color_mappings: Tuple[ColorMapping, ...]
    blend_mode: str = "replace"
    tolerance: float = 30

    def to_dict(self) -> Dict[str, Any]:
        return {
            "colorMappings": [m.to_dict() for m in self.color_mappings],
            "blendMode": self.blend_mode,
            "tolerance": self.tolerance,
        }


@dataclass(frozen=True)
class TextureCutParams:
    tool_name: ClassVar[str] = "texture_cut"

    texture_type: str
    invert: bool = False
    amount: float = 0.5
    scale: float = 1.0
    rotation: float = 0.0
    tile: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "textureType": self.texture_type,
            "invert": self.invert,
            "amount": self.amount,
            "scale": self.scale,
            "rotation": self.rotation,
            "tile": self.tile,
        }


@dataclass(frozen=True)
class BackgroundRemoverParams:
    tool_name: ClassVar[str] = "background_remover"

    model: str = "bria"
    output_format: str = "png"
    background_color: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"model": self.model, "outputFormat": self.output_format}
        if self.background_color:
            result["backgroundColor"] = self.background_color
        return result


@dataclass(frozen=True)
class UpscalerParams:
    tool_name: ClassVar[str] = "upscaler"

    scale_factor: float
    model: str = "standard"
    face_enhance: bool = False
    output_format: str = "png"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scaleFactor": self.scale_factor,
            "model": self.model,
            "faceEnhance": self.face_enhance,
            "outputFormat": self.output_format,
        }


@dataclass(frozen=True)
class PickColorParams:
    tool_name: ClassVar[str] = "pick_color_at_position"

    x: int
    y: int

    def to_dict(self) -> Dict[str, Any]:
        return {"x": self.x, "y": self.y}


@dataclass(frozen=True)
class UnrecognizedToolCall:
    """A tool name outside the known catalogue, kept for reporting."""
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    reason: str = ""

    @property
    def tool_name(self) -> str:
        return self.name

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.arguments)


ToolParams = Union[
    ColorKnockoutParams,
    ExtractColorPaletteParams,
    RecolorImageParams,
    TextureCutParams,
    BackgroundRemoverParams,
    UpscalerParams,
    PickColorParams,
]


# =============================================================================
# EXECUTION OUTPUT AND PERSISTED RECORDS
# =============================================================================

@dataclass
class ToolOutput:
    """
    What a tool executor hands back.

    Mutating tools set image_url; info tools set data.
    """
    image_url: Optional[str] = None
    data: Optional[Dict[str, Any]] = None

    @property
    def is_image(self) -> bool:
        return self.image_url is not None

    def to_dict(self) -> Dict[str, Any]:
        return {"image_url": self.image_url, "data": self.data}


@dataclass
class ResultMetrics:
    """Measured outcome of one execution."""
    pixels_changed: int = 0
    percentage_changed: float = 0.0
    execution_time_ms: int = 0
    quality_score: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pixels_changed": self.pixels_changed,
            "percentage_changed": self.percentage_changed,
            "execution_time_ms": self.execution_time_ms,
            "quality_score": self.quality_score,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResultMetrics":
        return cls(
            pixels_changed=int(data.get("pixels_changed", 0)),
            percentage_changed=float(data.get("percentage_changed", 0.0)),
            execution_time_ms=int(data.get("execution_time_ms", 0)),
            quality_score=float(data.get("quality_score", 0.0)),
        )


@dataclass
class ImageSpecsSnapshot:
    """The part of an ImageAnalysis used as the similarity key."""
    width: int = 0
    height: int = 0
    aspect_ratio: str = "0:0"
    has_transparency: bool = False
    dominant_colors: List[DominantColor] = field(default_factory=list)
    unique_color_count: int = 0
    sharpness_score: float = 0.0
    noise_level: float = 0.0
    is_print_ready: bool = False

    @classmethod
    def from_analysis(cls, analysis: ImageAnalysis) -> "ImageSpecsSnapshot":
        return cls(
            width=analysis.width,
            height=analysis.height,
            aspect_ratio=analysis.aspect_ratio,
            has_transparency=analysis.has_transparency,
            dominant_colors=list(analysis.dominant_colors),
            unique_color_count=analysis.unique_color_count,
            sharpness_score=analysis.sharpness_score,
            noise_level=analysis.noise_level,
            is_print_ready=analysis.is_print_ready,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "width": self.width,
            "height": self.height,
            "aspect_ratio": self.aspect_ratio,
            "has_transparency": self.has_transparency,
            "dominant_colors": [c.to_dict() for c in self.dominant_colors],
            "unique_color_count": self.unique_color_count,
            "sharpness_score": self.sharpness_score,
            "noise_level": self.noise_level,
            "is_print_ready": self.is_print_ready,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ImageSpecsSnapshot":
        return cls(
            width=int(data.get("width", 0)),
            height=int(data.get("height", 0)),
            aspect_ratio=data.get("aspect_ratio", "0:0"),
            has_transparency=bool(data.get("has_transparency", False)),
            dominant_colors=[DominantColor.from_dict(c) for c in data.get("dominant_colors", [])],
            unique_color_count=int(data.get("unique_color_count", 0)),
            sharpness_score=float(data.get("sharpness_score", 0.0)),
            noise_level=float(data.get("noise_level", 0.0)),
            is_print_ready=bool(data.get("is_print_ready", False)),
        )


@dataclass
class ToolExecution:
    """
    Persisted record of one tool run.

    Only admitted to the context store when success is True and confidence
    is at least the store's gate (70).
    """
    tool_name: str
    parameters: Dict[str, Any]
    success: bool
    confidence: float
    result_metrics: ResultMetrics = field(default_factory=ResultMetrics)
    image_specs_snapshot: ImageSpecsSnapshot = field(default_factory=ImageSpecsSnapshot)
    timestamp: datetime = field(default_factory=datetime.utcnow)
    id: str = field(default_factory=lambda: f"exec-{uuid.uuid4().hex[:12]}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "tool_name": self.tool_name,
            "parameters": self.parameters,
            "success": self.success,
            "confidence": self.confidence,
            "result_metrics": self.result_metrics.to_dict(),
            "image_specs_snapshot": self.image_specs_snapshot.to_dict(),
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ToolExecution":
        """Create from dictionary."""
        timestamp = datetime.utcnow()
        if data.get("timestamp"):
            if isinstance(data["timestamp"], str):
                timestamp = datetime.fromisoformat(data["timestamp"])
            else:
                timestamp = data["timestamp"]

        return cls(
            id=data.get("id") or f"exec-{uuid.uuid4().hex[:12]}",
            tool_name=data.get("tool_name", "unknown"),
            parameters=data.get("parameters", {}) or {},
            success=bool(data.get("success", False)),
            confidence=float(data.get("confidence", 0)),
            result_metrics=ResultMetrics.from_dict(data.get("result_metrics", {}) or {}),
            image_specs_snapshot=ImageSpecsSnapshot.from_dict(data.get("image_specs_snapshot", {}) or {}),
            timestamp=timestamp,
        )
