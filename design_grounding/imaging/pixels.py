"""
Pixel measurements over RGBA arrays.

Every function here is pure: it takes an (H, W, 4) uint8 array it does not
modify, plus an explicit random generator where sampling is involved, and
returns plain Python values.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

RGB = Tuple[int, int, int]

# Pixels with alpha below this are treated as fully transparent
ALPHA_FLOOR = 10

_LUMA = np.array([0.299, 0.587, 0.114], dtype=np.float32)


def _check(pixels: np.ndarray) -> None:
    if pixels.ndim != 3 or pixels.shape[2] != 4:
        raise ValueError(f"Expected an (H, W, 4) RGBA array, got shape {pixels.shape}")


def luminance(pixels: np.ndarray) -> np.ndarray:
    """Rec. 601 luma as a float32 (H, W) array."""
    _check(pixels)
    return pixels[..., :3].astype(np.float32) @ _LUMA


def has_transparency(pixels: np.ndarray) -> bool:
    """True iff any pixel is below full opacity."""
    _check(pixels)
    return bool(np.any(pixels[..., 3] < 255))


def transparent_fraction(pixels: np.ndarray) -> float:
    _check(pixels)
    if pixels.size == 0:
        return 0.0
    return float(np.mean(pixels[..., 3] < 255))


def opaque_rgb(pixels: np.ndarray, alpha_floor: int = ALPHA_FLOOR) -> np.ndarray:
    """All non-transparent pixels as an (N, 3) uint8 array."""
    _check(pixels)
    flat = pixels.reshape(-1, 4)
    return flat[flat[:, 3] >= alpha_floor][:, :3]


# =============================================================================
# DOMINANT COLORS
# =============================================================================

def _kmeans_plus_plus(samples: np.ndarray, k: int, rng: np.random.Generator) -> np.ndarray:
    centers = [samples[rng.integers(len(samples))]]
    for _ in range(1, k):
        stacked = np.array(centers)
        d2 = ((samples[:, None, :] - stacked[None, :, :]) ** 2).sum(axis=2).min(axis=1)
        total = d2.sum()
        if total <= 0:
            break
        centers.append(samples[rng.choice(len(samples), p=d2 / total)])
    return np.array(centers, dtype=np.float64)


def dominant_colors(
    pixels: np.ndarray,
    k: int = 9,
    iterations: int = 10,
    sample_limit: int = 20000,
    rng: Optional[np.random.Generator] = None,
) -> List[Tuple[RGB, float]]:
    """
    Dominant colors by k-means over a sparse pixel sample.

    Transparent pixels are skipped. Runs a fixed number of rounds rather
    than to convergence. When the sample holds no more than k distinct
    colors, those colors are returned exactly.

    Returns:
        [(rgb, percentage)] sorted by cluster size, largest first.
    """
    rng = rng or np.random.default_rng(42)
    samples = opaque_rgb(pixels)
    if len(samples) == 0 or k <= 0:
        return []

    if len(samples) > sample_limit:
        samples = samples[rng.choice(len(samples), size=sample_limit, replace=False)]

    unique, counts = np.unique(samples, axis=0, return_counts=True)
    total = float(len(samples))

    if len(unique) <= k:
        order = np.argsort(-counts, kind="stable")
        return [
            ((int(unique[i][0]), int(unique[i][1]), int(unique[i][2])), float(counts[i]) / total * 100)
            for i in order
        ]

    data = samples.astype(np.float64)
    centers = _kmeans_plus_plus(data, k, rng)

    labels = np.zeros(len(data), dtype=np.int64)
    for _ in range(max(1, iterations)):
        distances = ((data[:, None, :] - centers[None, :, :]) ** 2).sum(axis=2)
        labels = distances.argmin(axis=1)
        for idx in range(len(centers)):
            members = data[labels == idx]
            if len(members):
                centers[idx] = members.mean(axis=0)

    sizes = np.bincount(labels, minlength=len(centers))
    order = np.argsort(-sizes, kind="stable")

    result: List[Tuple[RGB, float]] = []
    for idx in order:
        if sizes[idx] == 0:
            continue
        rgb = tuple(int(round(c)) for c in np.clip(centers[idx], 0, 255))
        result.append((rgb, float(sizes[idx]) / total * 100))  # type: ignore[arg-type]
    return result


# =============================================================================
# COLOR COUNT, SHARPNESS, NOISE
# =============================================================================

def count_unique_colors(pixels: np.ndarray, quant_step: int = 4, alpha_floor: int = ALPHA_FLOOR) -> int:
    """
    Approximate distinct color count.

    Samples every 4th pixel (every 8th above 100k pixels), quantizes each
    channel to quant_step, and extrapolates by sqrt of the sample rate.
    """
    _check(pixels)
    flat = pixels.reshape(-1, 4)
    if len(flat) == 0:
        return 0

    sample_rate = 8 if len(flat) > 100_000 else 4
    sampled = flat[::sample_rate]
    sampled = sampled[sampled[:, 3] >= alpha_floor][:, :3].astype(np.int32)
    if len(sampled) == 0:
        return 0

    quantized = np.round(sampled / quant_step).astype(np.int32) * quant_step
    keys = (quantized[:, 0] << 16) | (quantized[:, 1] << 8) | quantized[:, 2]
    return int(round(len(np.unique(keys)) * np.sqrt(sample_rate)))


def sharpness_score(pixels: np.ndarray) -> float:
    """
    Variance of the absolute Laplacian over the central 10-90% region.

    Clamped to 0-100; flat images score 0.
    """
    gray = luminance(pixels)
    height, width = gray.shape
    if height == 0 or width == 0:
        return 0.0

    y0, y1 = int(height * 0.1), int(height * 0.9)
    x0, x1 = int(width * 0.1), int(width * 0.9)
    if y1 <= y0 or x1 <= x0:
        return 0.0

    padded = np.pad(gray, 1, mode="edge")
    center = padded[1 + y0:1 + y1, 1 + x0:1 + x1]
    top = padded[y0:y1, 1 + x0:1 + x1]
    bottom = padded[2 + y0:2 + y1, 1 + x0:1 + x1]
    left = padded[1 + y0:1 + y1, x0:x1]
    right = padded[1 + y0:1 + y1, 2 + x0:2 + x1]

    laplacian = np.abs(top + bottom + left + right - 4 * center).astype(np.float64)
    variance = float(laplacian.var())
    return max(0.0, min(100.0, variance))


def noise_level(
    pixels: np.ndarray,
    patches: int = 20,
    patch_size: int = 16,
    rng: Optional[np.random.Generator] = None,
) -> float:
    """
    Mean luminance variance over random small patches, scaled to 0-100.

    Patches keep a 10px margin from the border when the image is large
    enough; smaller images are sampled wherever a patch fits.
    """
    rng = rng or np.random.default_rng(42)
    gray = luminance(pixels)
    height, width = gray.shape
    if height == 0 or width == 0:
        return 0.0

    size_y = min(patch_size, height)
    size_x = min(patch_size, width)
    margin_x = 10 if width >= patch_size + 20 else 0
    margin_y = 10 if height >= patch_size + 20 else 0
    span_x = max(1, width - size_x - 2 * margin_x + 1)
    span_y = max(1, height - size_y - 2 * margin_y + 1)

    variances = []
    for _ in range(max(1, patches)):
        x = int(rng.integers(span_x)) + margin_x
        y = int(rng.integers(span_y)) + margin_y
        patch = gray[y:y + size_y, x:x + size_x]
        variances.append(float(patch.var()))

    avg_variance = sum(variances) / len(variances)
    return max(0.0, min(100.0, avg_variance / 200 * 100))


# =============================================================================
# COLOR PRESENCE AND PIXEL DIFF
# =============================================================================

@dataclass(frozen=True)
class ColorPresence:
    """How well a target color is represented in a pixel sample."""
    found: bool
    distance: float
    match_percentage: float
    closest: Optional[RGB] = None


def color_presence(
    pixels: np.ndarray,
    target: RGB,
    min_samples: int = 1000,
    sample_fraction: float = 0.01,
    match_distance: float = 30.0,
    found_distance: float = 50.0,
    rng: Optional[np.random.Generator] = None,
) -> ColorPresence:
    """
    Sample random pixels and measure RGB distance to target.

    match_percentage counts sampled pixels within match_distance, over all
    samples drawn (transparent ones included in the denominator).
    """
    _check(pixels)
    rng = rng or np.random.default_rng(7)
    flat = pixels.reshape(-1, 4)
    total = len(flat)
    if total == 0:
        return ColorPresence(found=False, distance=float("inf"), match_percentage=0.0)

    sample_size = max(min_samples, int(np.ceil(total * sample_fraction)))
    sampled = flat[rng.integers(0, total, size=sample_size)]
    visible = sampled[sampled[:, 3] >= ALPHA_FLOOR][:, :3].astype(np.float64)
    if len(visible) == 0:
        return ColorPresence(found=False, distance=float("inf"), match_percentage=0.0)

    distances = np.sqrt(((visible - np.array(target, dtype=np.float64)) ** 2).sum(axis=1))
    nearest = int(distances.argmin())
    min_distance = float(distances[nearest])
    matches = int((distances < match_distance).sum())

    return ColorPresence(
        found=min_distance < found_distance,
        distance=min_distance,
        match_percentage=matches / sample_size * 100,
        closest=tuple(int(c) for c in visible[nearest]),  # type: ignore[arg-type]
    )


@dataclass(frozen=True)
class PixelDiff:
    pixels_changed: int
    total_pixels: int
    percentage_changed: float
    max_delta: float
    avg_delta: float
    color_shift_amount: float
    dimensions_changed: bool = False


def compare_pixels(before: np.ndarray, after: np.ndarray, noise_floor: int = 10) -> PixelDiff:
    """
    Per-pixel delta between two RGBA arrays.

    A pixel counts as changed when any channel differs by more than
    noise_floor. max_delta and avg_delta are Euclidean RGBA distances over
    changed pixels; color_shift_amount is the mean RGB-only distance.
    Arrays of different shape are reported as fully changed.
    """
    _check(before)
    _check(after)

    if before.shape != after.shape:
        total = max(before.shape[0] * before.shape[1], after.shape[0] * after.shape[1])
        return PixelDiff(
            pixels_changed=total,
            total_pixels=total,
            percentage_changed=100.0,
            max_delta=255.0,
            avg_delta=128.0,
            color_shift_amount=0.0,
            dimensions_changed=True,
        )

    total = before.shape[0] * before.shape[1]
    if total == 0:
        return PixelDiff(0, 0, 0.0, 0.0, 0.0, 0.0)

    diff = after.astype(np.int16) - before.astype(np.int16)
    changed_mask = (np.abs(diff) > noise_floor).any(axis=2)
    changed = int(changed_mask.sum())
    if changed == 0:
        return PixelDiff(0, total, 0.0, 0.0, 0.0, 0.0)

    changed_diff = diff[changed_mask].astype(np.float64)
    rgba_delta = np.sqrt((changed_diff ** 2).sum(axis=1))
    rgb_delta = np.sqrt((changed_diff[:, :3] ** 2).sum(axis=1))

    return PixelDiff(
        pixels_changed=changed,
        total_pixels=total,
        percentage_changed=changed / total * 100,
        max_delta=float(rgba_delta.max()),
        avg_delta=float(rgba_delta.mean()),
        color_shift_amount=float(rgb_delta.mean()),
    )


def pixel_at(pixels: np.ndarray, x: int, y: int) -> Tuple[int, int, int, int]:
    """RGBA at (x, y); raises IndexError outside the image."""
    _check(pixels)
    height, width = pixels.shape[:2]
    if not (0 <= x < width and 0 <= y < height):
        raise IndexError(f"Position ({x}, {y}) is outside {width}x{height}")
    r, g, b, a = pixels[y, x]
    return (int(r), int(g), int(b), int(a))
