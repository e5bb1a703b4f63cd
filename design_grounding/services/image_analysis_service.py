"""
Image Analysis Service.

Extracts deterministic ground truth from an image: dimensions, transparency,
dominant colors, sharpness, noise and print readiness. Everything the model
later claims about the image is checked against this.
"""

import asyncio
import logging
import math
from typing import Any, List, Optional, Tuple

import httpx
import numpy as np

from design_grounding.core.config import AnalyzerConfig, get_config
from design_grounding.imaging.color import rgb_to_hex
from design_grounding.imaging.loader import LoadedImage, load_image
from design_grounding.imaging.pixels import (
    count_unique_colors,
    dominant_colors,
    has_transparency,
    noise_level,
    sharpness_score,
)
from design_grounding.models.analysis import DominantColor, ImageAnalysis, PrintSize

logger = logging.getLogger(__name__)

# Ratios reported by name when the measured ratio is within 1%
COMMON_RATIOS: List[Tuple[str, float]] = [
    ("1:1", 1.0),
    ("4:3", 4 / 3),
    ("3:2", 3 / 2),
    ("16:9", 16 / 9),
    ("16:10", 16 / 10),
    ("21:9", 21 / 9),
    ("2:3", 2 / 3),
    ("9:16", 9 / 16),
]


def aspect_ratio(width: int, height: int) -> str:
    """Named common ratio within 1%, otherwise the GCD-reduced ratio."""
    if width <= 0 or height <= 0:
        return "0:0"

    ratio = width / height
    for name, value in COMMON_RATIOS:
        if abs(ratio - value) / value < 0.01:
            return name

    divisor = math.gcd(width, height)
    return f"{width // divisor}:{height // divisor}"


class ImageAnalysisService:
    """
    Service for measuring image ground truth.

    This service handles:
    - Loading any supported image source
    - Running each measurement, degrading confidence when one fails
    - Deciding print readiness and naming every failing clause
    - Rendering a human-readable analysis summary
    """

    def __init__(
        self,
        config: Optional[AnalyzerConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize image analysis service.

        Args:
            config: Analyzer parameters. Defaults to the grounding policy.
            http_client: Optional shared client for fetching image URLs.
        """
        self._config = config or get_config().analyzer
        self._http_client = http_client
        self._owns_client = http_client is None

    @property
    def config(self) -> AnalyzerConfig:
        return self._config

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=30.0)
            self._owns_client = True
        return self._http_client

    async def close(self) -> None:
        """Close resources."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> "ImageAnalysisService":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def load(self, image_source: Any) -> LoadedImage:
        """
        Load an image source.

        Raises:
            ImageLoadError: If the source cannot be fetched or decoded.
        """
        if isinstance(image_source, LoadedImage):
            return image_source
        client = None
        if isinstance(image_source, str) and image_source.startswith(("http://", "https://")):
            client = await self._get_client()
        return await load_image(image_source, client=client)

    async def analyze(self, image_source: Any) -> ImageAnalysis:
        """
        Analyze an image.

        Never raises: any failure to load or measure the image returns
        ImageAnalysis.fallback() with confidence 0.
        """
        _, analysis = await self.load_and_analyze(image_source)
        return analysis

    async def load_and_analyze(self, image_source: Any) -> Tuple[Optional[LoadedImage], ImageAnalysis]:
        """
        Load and analyze in one step, keeping the decoded pixels.

        Returns (None, fallback) when the image cannot be loaded. The
        measurements run in a worker thread.
        """
        try:
            image = await self.load(image_source)
        except Exception as e:
            logger.warning(f"Image analysis failed to load image: {e}")
            return None, ImageAnalysis.fallback()

        try:
            return image, await asyncio.to_thread(self.analyze_loaded, image)
        except Exception as e:
            logger.error(f"Image analysis failed: {e}", exc_info=True)
            return image, ImageAnalysis.fallback()

    def analyze_loaded(self, image: LoadedImage) -> ImageAnalysis:
        """
        Measure an already decoded image.

        A failing measurement keeps its zero default and caps confidence:
        DPI at 95, colors at 85, sharpness or noise at 90.
        """
        cfg = self._config
        pixels = image.pixels
        width, height = image.width, image.height
        if width == 0 or height == 0:
            logger.warning("Image analysis got an empty image")
            return ImageAnalysis.fallback()

        confidence = 100.0

        dpi: Optional[int] = None
        try:
            dpi = int(image.dpi) if image.dpi else None
        except (TypeError, ValueError) as e:
            logger.warning(f"DPI detection failed: {e}")
            confidence = min(confidence, 95)

        transparent = False
        color_depth = 24
        unique_colors = 0
        colors: Tuple[DominantColor, ...] = ()
        try:
            transparent = has_transparency(pixels)
            color_depth = 32 if transparent else 24
            clusters = dominant_colors(
                pixels,
                k=cfg.max_colors,
                iterations=cfg.kmeans_iterations,
                sample_limit=cfg.kmeans_sample_limit,
                rng=np.random.default_rng(cfg.random_seed),
            )
            colors = tuple(
                DominantColor(
                    r=rgb[0],
                    g=rgb[1],
                    b=rgb[2],
                    hex=rgb_to_hex(rgb),
                    percentage=round(percentage, 2),
                )
                for rgb, percentage in clusters
            )
            unique_colors = count_unique_colors(
                pixels,
                quant_step=cfg.unique_color_quant_step,
                alpha_floor=cfg.unique_color_alpha_floor,
            )
        except (ValueError, MemoryError, FloatingPointError) as e:
            logger.warning(f"Color analysis failed: {e}")
            confidence = min(confidence, 85)

        sharpness = 0.0
        is_blurry = False
        try:
            sharpness = sharpness_score(pixels)
            is_blurry = sharpness < cfg.blur_threshold
        except (ValueError, MemoryError, FloatingPointError) as e:
            logger.warning(f"Sharpness calculation failed: {e}")
            confidence = min(confidence, 90)

        noise = 0.0
        try:
            noise = noise_level(
                pixels,
                patches=cfg.noise_patches,
                patch_size=cfg.noise_patch_size,
                rng=np.random.default_rng(cfg.random_seed),
            )
        except (ValueError, MemoryError, FloatingPointError) as e:
            logger.warning(f"Noise detection failed: {e}")
            confidence = min(confidence, 90)

        effective_dpi = dpi or cfg.default_dpi
        printable = PrintSize(
            width=round(width / cfg.print_dpi, 1),
            height=round(height / cfg.print_dpi, 1),
        )
        issues = self.print_readiness_issues(width, height, effective_dpi, sharpness)

        analysis = ImageAnalysis(
            width=width,
            height=height,
            aspect_ratio=aspect_ratio(width, height),
            dpi=dpi,
            file_size=image.file_size,
            format=image.format,
            has_transparency=transparent,
            dominant_colors=colors,
            color_depth=color_depth,
            unique_color_count=unique_colors,
            is_blurry=is_blurry,
            sharpness_score=round(sharpness),
            noise_level=round(noise),
            is_print_ready=not issues,
            printable_at_size=printable,
            confidence=confidence,
            print_readiness_issues=tuple(issues),
        )

        logger.info(
            f"Analyzed {width}x{height} {image.format}: {len(colors)} colors, "
            f"sharpness {analysis.sharpness_score}, noise {analysis.noise_level}, "
            f"print ready {analysis.is_print_ready}, confidence {confidence}"
        )
        return analysis

    def print_readiness_issues(self, width: int, height: int, effective_dpi: int, sharpness: float) -> List[str]:
        """
        Every failing print-readiness clause, in plain words.

        An empty list means the image is print ready.
        """
        cfg = self._config
        issues = []

        if effective_dpi < cfg.print_dpi:
            issues.append(f"Effective DPI {effective_dpi} is below {cfg.print_dpi}")

        print_w = width / cfg.print_dpi
        print_h = height / cfg.print_dpi
        if print_w < cfg.min_print_inches or print_h < cfg.min_print_inches:
            issues.append(
                f"Print size at {cfg.print_dpi} DPI is {print_w:.1f}\" x {print_h:.1f}\", "
                f"below {cfg.min_print_inches:g}\" minimum"
            )

        if sharpness < cfg.min_print_sharpness:
            issues.append(f"Sharpness {round(sharpness)} is below {cfg.min_print_sharpness:g}")

        return issues


def format_analysis_summary(analysis: ImageAnalysis) -> str:
    """Multi-line human-readable report of an analysis."""
    lines = [
        "=== IMAGE ANALYSIS ===",
        "",
        "DIMENSIONS:",
        f"  Size: {analysis.width} x {analysis.height} pixels",
        f"  Aspect Ratio: {analysis.aspect_ratio}",
        f"  Format: {analysis.format.upper()}",
        f"  File Size: {analysis.file_size / 1024:.1f} KB",
        "",
        "COLOR INFORMATION:",
        f"  Transparency: {'Yes' if analysis.has_transparency else 'No'}",
        f"  Color Depth: {analysis.color_depth} bits",
        f"  Unique Colors: ~{analysis.unique_color_count:,}",
        f"  Dominant Colors: {len(analysis.dominant_colors)}",
        "",
        "QUALITY METRICS:",
        f"  Sharpness: {analysis.sharpness_score:g}/100 {'(BLURRY)' if analysis.is_blurry else '(Sharp)'}",
        f"  Noise Level: {analysis.noise_level:g}/100",
        "",
        "PRINT READINESS:",
        f"  DPI: {analysis.dpi or 'Unknown (assuming 72)'}",
        f"  Printable at 300 DPI: {analysis.printable_at_size.width:g}\" x {analysis.printable_at_size.height:g}\"",
        f"  Print Ready: {'YES' if analysis.is_print_ready else 'NO'}",
    ]

    for issue in analysis.print_readiness_issues:
        lines.append(f"    - {issue}")

    lines.extend(["", f"Analysis Confidence: {analysis.confidence:g}%"])
    return "\n".join(lines)
