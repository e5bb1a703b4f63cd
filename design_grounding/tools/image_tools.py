"""
Built-in image tool catalogue.

Defines the seven tools exposed to the model and decodes their raw JSON
arguments into the typed parameter classes in design_grounding.models.
"""

from typing import Any, Dict, List, Union
import math

from design_grounding.core.exceptions import ToolValidationError
from design_grounding.imaging.color import hex_to_rgb, is_hex_color, rgb_to_hex
from design_grounding.models.execution import (
    BackgroundRemoverParams,
    ColorKnockoutParams,
    ColorMapping,
    ColorTarget,
    ExtractColorPaletteParams,
    PickColorParams,
    RecolorImageParams,
    TextureCutParams,
    ToolParams,
    UnrecognizedToolCall,
    UpscalerParams,
)
from design_grounding.models.validation import ExpectedOperation
from design_grounding.tools.base import ImageTool, ParameterType, ToolParameter

COLOR_KNOCKOUT = "color_knockout"
EXTRACT_COLOR_PALETTE = "extract_color_palette"
RECOLOR_IMAGE = "recolor_image"
TEXTURE_CUT = "texture_cut"
BACKGROUND_REMOVER = "background_remover"
UPSCALER = "upscaler"
PICK_COLOR_AT_POSITION = "pick_color_at_position"

BUILTIN_TEXTURES = ("dots", "lines", "grid", "noise")


def build_image_tools() -> List[ImageTool]:
    """Fresh instances of every built-in tool, in catalogue order."""
    return [
        ImageTool(
            name=COLOR_KNOCKOUT,
            description=(
                "Remove specific colors from an image with adjustable tolerance and anti-aliasing. "
                "Useful for removing flat backgrounds, creating masks, or isolating color ranges."
            ),
            expected_operation=ExpectedOperation.TRANSPARENCY_CHANGE,
            parameters=[
                ToolParameter(
                    name="colors",
                    type=ParameterType.ARRAY,
                    description="Colors to remove from the image",
                    required=True,
                    items_type=ParameterType.OBJECT,
                    item_properties=[
                        ToolParameter("hex", ParameterType.STRING, "Hex color code (e.g., #FF0000)", required=True),
                        ToolParameter("r", ParameterType.NUMBER, "Red value 0-255", required=True),
                        ToolParameter("g", ParameterType.NUMBER, "Green value 0-255", required=True),
                        ToolParameter("b", ParameterType.NUMBER, "Blue value 0-255", required=True),
                    ],
                ),
                ToolParameter(
                    name="tolerance",
                    type=ParameterType.NUMBER,
                    description="Color matching tolerance 0-100 (higher removes more similar colors)",
                    minimum=0,
                    maximum=100,
                    default=30,
                ),
                ToolParameter(
                    name="replaceMode",
                    type=ParameterType.STRING,
                    description="transparency, color (replace with white) or mask (black/white mask)",
                    enum=["transparency", "color", "mask"],
                    default="transparency",
                ),
                ToolParameter(
                    name="feather",
                    type=ParameterType.NUMBER,
                    description="Edge feathering in pixels",
                    minimum=0,
                    maximum=20,
                    default=0,
                ),
                ToolParameter(
                    name="antiAliasing",
                    type=ParameterType.BOOLEAN,
                    description="Smooth the knocked-out edges",
                    default=True,
                ),
            ],
        ),
        ImageTool(
            name=EXTRACT_COLOR_PALETTE,
            description="Extract the dominant colors of the image as a palette.",
            expected_operation=ExpectedOperation.INFO_ONLY,
            parameters=[
                ToolParameter(
                    name="paletteSize",
                    type=ParameterType.NUMBER,
                    description="Number of colors to extract (9 or 36)",
                    enum=[9, 36],
                    default=9,
                ),
                ToolParameter(
                    name="algorithm",
                    type=ParameterType.STRING,
                    description="smart (broader colors) or detailed (more precise)",
                    enum=["smart", "detailed"],
                    default="smart",
                ),
            ],
        ),
        ImageTool(
            name=RECOLOR_IMAGE,
            description=(
                "Recolor the image by mapping dominant palette colors (by index) to new colors."
            ),
            expected_operation=ExpectedOperation.COLOR_CHANGE,
            parameters=[
                ToolParameter(
                    name="colorMappings",
                    type=ParameterType.ARRAY,
                    description="Mappings from dominant color index to a new hex color",
                    required=True,
                    items_type=ParameterType.OBJECT,
                    item_properties=[
                        ToolParameter(
                            "originalIndex", ParameterType.NUMBER,
                            "Index of the dominant color to replace", required=True,
                        ),
                        ToolParameter("newColor", ParameterType.STRING, "New hex color (e.g., #FF0000)", required=True),
                    ],
                ),
                ToolParameter(
                    name="blendMode",
                    type=ParameterType.STRING,
                    description="replace, overlay (blend) or multiply (darken)",
                    enum=["replace", "overlay", "multiply"],
                    default="replace",
                ),
                ToolParameter(
                    name="tolerance",
                    type=ParameterType.NUMBER,
                    description="Color matching tolerance 0-100",
                    minimum=0,
                    maximum=100,
                    default=30,
                ),
            ],
        ),
        ImageTool(
            name=TEXTURE_CUT,
            description=(
                "Cut parts of the image to transparent using a pattern as a mask."
            ),
            expected_operation=ExpectedOperation.TRANSPARENCY_CHANGE,
            parameters=[
                ToolParameter(
                    name="textureType",
                    type=ParameterType.STRING,
                    description="Pattern used as the cutting mask",
                    required=True,
                    enum=["dots", "lines", "grid", "noise", "custom"],
                ),
                ToolParameter("invert", ParameterType.BOOLEAN, "Invert the cut", default=False),
                ToolParameter(
                    "amount", ParameterType.NUMBER, "Cut strength 0-1",
                    minimum=0, maximum=1, default=0.5,
                ),
                ToolParameter(
                    "scale", ParameterType.NUMBER, "Texture scale 0.1-5x",
                    minimum=0.1, maximum=5, default=1,
                ),
                ToolParameter(
                    "rotation", ParameterType.NUMBER, "Texture rotation in degrees",
                    minimum=0, maximum=360, default=0,
                ),
                ToolParameter("tile", ParameterType.BOOLEAN, "Repeat the texture", default=False),
            ],
        ),
        ImageTool(
            name=BACKGROUND_REMOVER,
            description=(
                "Remove the background from the image. Prefer this over color_knockout when "
                "the user asks to remove the background or make it transparent."
            ),
            expected_operation=ExpectedOperation.TRANSPARENCY_CHANGE,
            parameters=[
                ToolParameter(
                    "model", ParameterType.STRING, "Removal model",
                    enum=["bria", "codeplugtech", "fallback"], default="bria",
                ),
                ToolParameter(
                    "outputFormat", ParameterType.STRING, "Output image format",
                    enum=["png", "webp"], default="png",
                ),
                ToolParameter(
                    "backgroundColor", ParameterType.STRING,
                    "Optional hex color for a solid background instead of transparency",
                ),
            ],
        ),
        ImageTool(
            name=UPSCALER,
            description="Upscale the image to a higher resolution.",
            expected_operation=ExpectedOperation.QUALITY_ENHANCEMENT,
            parameters=[
                ToolParameter(
                    "model", ParameterType.STRING, "standard, creative or anime",
                    enum=["standard", "creative", "anime"], default="standard",
                ),
                ToolParameter(
                    "scaleFactor", ParameterType.NUMBER, "Scale multiplier, up to 10x",
                    required=True, minimum=1, maximum=10, default=2,
                ),
                ToolParameter("faceEnhance", ParameterType.BOOLEAN, "Enhance faces", default=False),
                ToolParameter(
                    "outputFormat", ParameterType.STRING, "Output image format",
                    enum=["png", "jpg", "webp"], default="png",
                ),
            ],
        ),
        ImageTool(
            name=PICK_COLOR_AT_POSITION,
            description="Read the color at a pixel position. Returns RGB and hex values.",
            expected_operation=ExpectedOperation.INFO_ONLY,
            parameters=[
                ToolParameter("x", ParameterType.NUMBER, "X coordinate in pixels", required=True),
                ToolParameter("y", ParameterType.NUMBER, "Y coordinate in pixels", required=True),
            ],
        ),
    ]


# =============================================================================
# DECODING
# =============================================================================

def _channel(value: Any) -> int:
    return max(0, min(255, int(round(float(value)))))


def _color_target(item: Dict[str, Any], index: int) -> ColorTarget:
    hex_value = item.get("hex")
    if isinstance(hex_value, str) and is_hex_color(hex_value):
        normalized = rgb_to_hex(hex_to_rgb(hex_value))
    else:
        normalized = rgb_to_hex((_channel(item["r"]), _channel(item["g"]), _channel(item["b"])))
    return ColorTarget(
        hex=normalized,
        r=_channel(item["r"]),
        g=_channel(item["g"]),
        b=_channel(item["b"]),
    )


def _color_mapping(item: Dict[str, Any], index: int) -> ColorMapping:
    new_color = item["newColor"]
    if not is_hex_color(new_color):
        raise ToolValidationError(
            "Invalid color mapping",
            errors=[f"Color mapping {index}: newColor '{new_color}' is not a hex color"],
        )
    return ColorMapping(
        original_index=int(item["originalIndex"]),
        new_color=rgb_to_hex(hex_to_rgb(new_color)),
    )


def decode_tool_call(name: str, arguments: Dict[str, Any]) -> Union[ToolParams, UnrecognizedToolCall]:
    """
    Decode schema-checked arguments into typed parameters.

    Callers run the schema phase first. Missing optional fields, and
    fields the model sent as null, take their catalogue defaults here.

    Raises:
        ToolValidationError: When a value passes the JSON schema but cannot
            be decoded (e.g. a malformed hex color).
    """
    args = {key: value for key, value in (arguments or {}).items() if value is not None}

    if name == COLOR_KNOCKOUT:
        return ColorKnockoutParams(
            colors=tuple(_color_target(c, i) for i, c in enumerate(args.get("colors") or [])),
            tolerance=float(args.get("tolerance", 30)),
            replace_mode=args.get("replaceMode", "transparency"),
            feather=float(args.get("feather", 0)),
            anti_aliasing=bool(args.get("antiAliasing", True)),
        )

    if name == EXTRACT_COLOR_PALETTE:
        return ExtractColorPaletteParams(
            palette_size=int(args.get("paletteSize", 9)),
            algorithm=args.get("algorithm", "smart"),
        )

    if name == RECOLOR_IMAGE:
        return RecolorImageParams(
            color_mappings=tuple(_color_mapping(m, i) for i, m in enumerate(args.get("colorMappings") or [])),
            blend_mode=args.get("blendMode", "replace"),
            tolerance=float(args.get("tolerance", 30)),
        )

    if name == TEXTURE_CUT:
        return TextureCutParams(
            texture_type=args["textureType"],
            invert=bool(args.get("invert", False)),
            amount=float(args.get("amount", 0.5)),
            scale=float(args.get("scale", 1.0)),
            rotation=float(args.get("rotation", 0.0)),
            tile=bool(args.get("tile", False)),
        )

    if name == BACKGROUND_REMOVER:
        background = args.get("backgroundColor")
        if background is not None and not is_hex_color(background):
            raise ToolValidationError(
                "Invalid background color",
                errors=[f"Parameter 'backgroundColor' is not a hex color: '{background}'"],
            )
        return BackgroundRemoverParams(
            model=args.get("model", "bria"),
            output_format=args.get("outputFormat", "png"),
            background_color=rgb_to_hex(hex_to_rgb(background)) if background else None,
        )

    if name == UPSCALER:
        return UpscalerParams(
            scale_factor=float(args.get("scaleFactor", 2)),
            model=args.get("model", "standard"),
            face_enhance=bool(args.get("faceEnhance", False)),
            output_format=args.get("outputFormat", "png"),
        )

    if name == PICK_COLOR_AT_POSITION:
        return PickColorParams(x=math.floor(args["x"]), y=math.floor(args["y"]))

    return UnrecognizedToolCall(name=name, arguments=dict(args), reason=f"Unknown tool: {name}")
