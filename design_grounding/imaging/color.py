"""
Color science helpers.

Colors are plain (r, g, b) tuples of ints in 0-255. LAB values are
(L, a, b) tuples under the D65 white point.
"""

import math
import re
from typing import Dict, Tuple

RGB = Tuple[int, int, int]
LAB = Tuple[float, float, float]
HSL = Tuple[float, float, float]

_HEX_RE = re.compile(r"^#?([a-f\d]{2})([a-f\d]{2})([a-f\d]{2})$", re.IGNORECASE)

# D65 reference white
_XN, _YN, _ZN = 95.047, 100.000, 108.883
_DELTA = 6 / 29


def is_hex_color(value: str) -> bool:
    return isinstance(value, str) and bool(_HEX_RE.match(value.strip()))


def hex_to_rgb(hex_color: str) -> RGB:
    """
    Parse '#rrggbb' (or 'rrggbb').

    Raises:
        ValueError: If the string is not a 6-digit hex color.
    """
    match = _HEX_RE.match(hex_color.strip()) if isinstance(hex_color, str) else None
    if not match:
        raise ValueError(f"Invalid hex color: {hex_color!r}")
    return (int(match.group(1), 16), int(match.group(2), 16), int(match.group(3), 16))


def rgb_to_hex(rgb: RGB) -> str:
    return "#" + "".join(f"{max(0, min(255, int(round(c)))):02x}" for c in rgb)


def color_distance(c1: RGB, c2: RGB) -> float:
    """Euclidean distance in RGB space (0 to ~441)."""
    return math.sqrt(
        (c1[0] - c2[0]) ** 2 +
        (c1[1] - c2[1]) ** 2 +
        (c1[2] - c2[2]) ** 2
    )


def quantize_color(rgb: RGB, levels: int) -> RGB:
    """Snap each channel to one of `levels` evenly spaced values."""
    if levels < 2:
        raise ValueError("levels must be at least 2")
    factor = 255 / (levels - 1)
    return tuple(int(round(round(c / factor) * factor)) for c in rgb)  # type: ignore[return-value]


def _to_linear(channel: float) -> float:
    normalized = channel / 255
    if normalized <= 0.04045:
        return normalized / 12.92
    return ((normalized + 0.055) / 1.055) ** 2.4


def _from_linear(value: float) -> float:
    if value <= 0.0031308:
        encoded = value * 12.92
    else:
        encoded = 1.055 * (value ** (1 / 2.4)) - 0.055
    return encoded * 255


def _f(t: float) -> float:
    if t > _DELTA ** 3:
        return t ** (1 / 3)
    return t / (3 * _DELTA * _DELTA) + 4 / 29


def _f_inv(t: float) -> float:
    if t > _DELTA:
        return t ** 3
    return 3 * _DELTA * _DELTA * (t - 4 / 29)


def rgb_to_lab(rgb: RGB) -> LAB:
    """
    Convert sRGB to CIE LAB (D65).

    L is clamped to 0-100, a and b to -128..127.
    """
    r, g, b = (_to_linear(c) for c in rgb)

    x = r * 0.4124564 + g * 0.3575761 + b * 0.1804375
    y = r * 0.2126729 + g * 0.7151522 + b * 0.0721750
    z = r * 0.0193339 + g * 0.1191920 + b * 0.9503041

    fx = _f(x * 100 / _XN)
    fy = _f(y * 100 / _YN)
    fz = _f(z * 100 / _ZN)

    lightness = 116 * fy - 16
    a = 500 * (fx - fy)
    b_value = 200 * (fy - fz)

    return (
        max(0.0, min(100.0, lightness)),
        max(-128.0, min(127.0, a)),
        max(-128.0, min(127.0, b_value)),
    )


def lab_to_rgb(lab: LAB) -> RGB:
    """Inverse of rgb_to_lab, clamped into the sRGB gamut."""
    lightness, a, b = lab
    fy = (lightness + 16) / 116
    fx = fy + a / 500
    fz = fy - b / 200

    x = _f_inv(fx) * _XN / 100
    y = _f_inv(fy) * _YN / 100
    z = _f_inv(fz) * _ZN / 100

    r = x * 3.2404542 + y * -1.5371385 + z * -0.4985314
    g = x * -0.9692660 + y * 1.8760108 + z * 0.0415560
    b_lin = x * 0.0556434 + y * -0.2040259 + z * 1.0572252

    return tuple(  # type: ignore[return-value]
        max(0, min(255, int(round(_from_linear(max(0.0, c))))))
        for c in (r, g, b_lin)
    )


def delta_e(lab1: LAB, lab2: LAB) -> float:
    """
    Perceptual color difference.

    Plain Euclidean distance in LAB (CIE76), used as an approximation of
    CIEDE2000. Downstream thresholds (<5 imperceptible, <2 identical) are
    tuned against this metric, so do not swap in the full formula.
    """
    return math.sqrt(
        (lab1[0] - lab2[0]) ** 2 +
        (lab1[1] - lab2[1]) ** 2 +
        (lab1[2] - lab2[2]) ** 2
    )


def rgb_delta_e(c1: RGB, c2: RGB) -> float:
    return delta_e(rgb_to_lab(c1), rgb_to_lab(c2))


def color_match_confidence(c1: RGB, c2: RGB) -> Dict[str, float]:
    """Map perceptual distance to a 0-100 confidence that two colors match."""
    distance = rgb_delta_e(c1, c2)

    if distance < 2:
        confidence = 100
    elif distance < 5:
        confidence = 95
    elif distance < 10:
        confidence = 85
    elif distance < 20:
        confidence = 70
    elif distance < 50:
        confidence = 50
    else:
        confidence = 30

    return {"distance": round(distance, 1), "confidence": confidence}


def rgb_to_hsl(rgb: RGB) -> HSL:
    """Hue in degrees, saturation and lightness in percent."""
    r, g, b = (c / 255 for c in rgb)
    high = max(r, g, b)
    low = min(r, g, b)
    lightness = (high + low) / 2
    hue = saturation = 0.0

    if high != low:
        d = high - low
        saturation = d / (2 - high - low) if lightness > 0.5 else d / (high + low)
        if high == r:
            hue = (g - b) / d + (6 if g < b else 0)
        elif high == g:
            hue = (b - r) / d + 2
        else:
            hue = (r - g) / d + 4
        hue /= 6

    return (hue * 360, saturation * 100, lightness * 100)


def color_category(lightness: float) -> str:
    if lightness > 70:
        return "light"
    if lightness < 30:
        return "dark"
    return "mid"


def color_name(rgb: RGB) -> str:
    """Coarse human-readable hue name."""
    h, s, lightness = rgb_to_hsl(rgb)

    if s < 10:
        if lightness > 90:
            return "White"
        if lightness < 10:
            return "Black"
        return "Gray"

    if h < 15 or h >= 345:
        return "Red"
    if h < 45:
        return "Orange"
    if h < 75:
        return "Yellow"
    if h < 165:
        return "Green"
    if h < 195:
        return "Cyan"
    if h < 255:
        return "Blue"
    if h < 285:
        return "Purple"
    return "Magenta"
