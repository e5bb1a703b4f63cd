"""
Imaging primitives: color math, pixel measurements and image loading.
"""

from design_grounding.imaging.color import (
    hex_to_rgb,
    rgb_to_hex,
    is_hex_color,
    color_distance,
    rgb_to_lab,
    lab_to_rgb,
    delta_e,
    rgb_delta_e,
    color_match_confidence,
    color_name,
)
from design_grounding.imaging.pixels import (
    ColorPresence,
    PixelDiff,
    has_transparency,
    dominant_colors,
    count_unique_colors,
    sharpness_score,
    noise_level,
    color_presence,
    compare_pixels,
    pixel_at,
)
from design_grounding.imaging.loader import (
    LoadedImage,
    load_image,
    decode_image,
    from_pil,
    fetch_image,
    encode_png_data_url,
    to_model_url,
)

__all__ = [
    # Color
    "hex_to_rgb",
    "rgb_to_hex",
    "is_hex_color",
    "color_distance",
    "rgb_to_lab",
    "lab_to_rgb",
    "delta_e",
    "rgb_delta_e",
    "color_match_confidence",
    "color_name",
    # Pixels
    "ColorPresence",
    "PixelDiff",
    "has_transparency",
    "dominant_colors",
    "count_unique_colors",
    "sharpness_score",
    "noise_level",
    "color_presence",
    "compare_pixels",
    "pixel_at",
    # Loading
    "LoadedImage",
    "load_image",
    "decode_image",
    "from_pil",
    "fetch_image",
    "encode_png_data_url",
    "to_model_url",
]
