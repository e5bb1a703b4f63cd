"""
Tool executors.

A ToolExecutor applies one validated tool call to an image and returns a
new image reference or a data payload. PillowToolExecutor runs every
built-in tool locally with numpy and Pillow; deployments that delegate to
hosted services implement the same interface.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
import asyncio
import logging
import math

import numpy as np
from PIL import Image, ImageDraw, ImageFilter

from design_grounding.core.exceptions import ToolExecutionError, ToolNotFoundError
from design_grounding.imaging.color import color_name, hex_to_rgb, rgb_to_hex
from design_grounding.imaging.loader import LoadedImage, encode_png_data_url, pixels_to_image
from design_grounding.imaging.pixels import dominant_colors, pixel_at
from design_grounding.models.analysis import ImageAnalysis
from design_grounding.models.execution import (
    BackgroundRemoverParams,
    ColorKnockoutParams,
    ExtractColorPaletteParams,
    PickColorParams,
    RecolorImageParams,
    TextureCutParams,
    ToolOutput,
    UnrecognizedToolCall,
    UpscalerParams,
)

logger = logging.getLogger(__name__)

# Largest RGB Euclidean distance (black to white)
MAX_RGB_DISTANCE = math.sqrt(3 * 255 ** 2)


class ToolExecutor(ABC):
    """
    Abstract tool execution collaborator.

    Implementations raise ToolExecutionError (or another ToolError) with a
    human-readable message when the operation fails.
    """

    @abstractmethod
    async def execute(
        self,
        params: Any,
        image: LoadedImage,
        analysis: Optional[ImageAnalysis] = None,
    ) -> ToolOutput:
        """
        Run one tool call.

        Args:
            params: Typed tool parameters
            image: The current image
            analysis: Ground truth for the current image, when available

        Returns:
            ToolOutput with image_url for mutating tools or data for info tools
        """
        pass

    async def close(self) -> None:
        """Release resources held by the executor."""
        return None


class PillowToolExecutor(ToolExecutor):
    """
    Local reference executor built on numpy and Pillow.

    Image work runs in a worker thread so the event loop is not blocked.
    """

    def __init__(self, palette_seed: int = 42, background_threshold: float = 40.0):
        self.palette_seed = palette_seed
        self.background_threshold = background_threshold

    async def execute(
        self,
        params: Any,
        image: LoadedImage,
        analysis: Optional[ImageAnalysis] = None,
    ) -> ToolOutput:
        if isinstance(params, UnrecognizedToolCall):
            raise ToolNotFoundError(f"Unknown tool: {params.name}", details={"tool": params.name})

        handler = self._handlers().get(type(params))
        if handler is None:
            raise ToolNotFoundError(f"No executor for {type(params).__name__}")

        try:
            return await asyncio.to_thread(handler, params, image, analysis)
        except (ToolExecutionError, ToolNotFoundError):
            raise
        except (ValueError, IndexError, OSError, MemoryError) as e:
            logger.error(f"{params.tool_name} failed: {e}")
            raise ToolExecutionError(
                f"{params.tool_name} failed: {e}",
                details={"tool": params.tool_name},
            ) from e

    def _handlers(self) -> Dict[type, Any]:
        return {
            ColorKnockoutParams: self._color_knockout,
            ExtractColorPaletteParams: self._extract_palette,
            RecolorImageParams: self._recolor,
            TextureCutParams: self._texture_cut,
            BackgroundRemoverParams: self._remove_background,
            UpscalerParams: self._upscale,
            PickColorParams: self._pick_color,
        }

    @staticmethod
    def _output(pixels: np.ndarray, image: LoadedImage) -> ToolOutput:
        return ToolOutput(image_url=encode_png_data_url(pixels, dpi=image.dpi))

    # =========================================================================
    # COLOR TOOLS
    # =========================================================================

    def _color_knockout(
        self, params: ColorKnockoutParams, image: LoadedImage, analysis: Optional[ImageAnalysis]
    ) -> ToolOutput:
        rgb = image.pixels[..., :3].astype(np.float32)
        threshold = params.tolerance / 100 * MAX_RGB_DISTANCE

        # Per-pixel knockout strength: 1 fully removed, 0 untouched
        strength = np.zeros(image.pixels.shape[:2], dtype=np.float32)
        for target in params.colors:
            distance = np.sqrt(((rgb - np.array(target.rgb, dtype=np.float32)) ** 2).sum(axis=2))
            hit = (distance <= threshold).astype(np.float32)
            if params.anti_aliasing and threshold > 0:
                inner = threshold * 0.8
                edge = (distance > inner) & (distance <= threshold)
                hit[edge] = (threshold - distance[edge]) / (threshold - inner)
            strength = np.maximum(strength, hit)

        if params.feather > 0:
            mask = Image.fromarray((strength * 255).astype(np.uint8))
            mask = mask.filter(ImageFilter.GaussianBlur(radius=params.feather))
            strength = np.maximum(strength, np.asarray(mask, dtype=np.float32) / 255)

        result = image.pixels.copy()
        if params.replace_mode == "transparency":
            result[..., 3] = (result[..., 3] * (1 - strength)).astype(np.uint8)
        elif params.replace_mode == "color":
            white = np.full(3, 255, dtype=np.float32)
            blended = rgb * (1 - strength[..., None]) + white * strength[..., None]
            result[..., :3] = np.clip(blended, 0, 255).astype(np.uint8)
        else:
            value = ((1 - strength) * 255).astype(np.uint8)
            result[..., 0] = value
            result[..., 1] = value
            result[..., 2] = value
            result[..., 3] = 255

        return self._output(result, image)

    def _extract_palette(
        self, params: ExtractColorPaletteParams, image: LoadedImage, analysis: Optional[ImageAnalysis]
    ) -> ToolOutput:
        iterations = 20 if params.algorithm == "detailed" else 10
        clusters = dominant_colors(
            image.pixels,
            k=params.palette_size,
            iterations=iterations,
            rng=np.random.default_rng(self.palette_seed),
        )
        colors = [
            {
                "hex": rgb_to_hex(rgb),
                "r": rgb[0],
                "g": rgb[1],
                "b": rgb[2],
                "percentage": round(percentage, 2),
                "name": color_name(rgb),
            }
            for rgb, percentage in clusters
        ]
        return ToolOutput(data={"colors": colors, "palette_size": params.palette_size})

    def _recolor(
        self, params: RecolorImageParams, image: LoadedImage, analysis: Optional[ImageAnalysis]
    ) -> ToolOutput:
        palette = [c.rgb for c in analysis.dominant_colors] if analysis and analysis.dominant_colors else [
            rgb for rgb, _ in dominant_colors(image.pixels, rng=np.random.default_rng(self.palette_seed))
        ]

        rgb = image.pixels[..., :3].astype(np.float32)
        result_rgb = rgb.copy()
        tolerance = params.tolerance / 100 * 255

        for mapping in params.color_mappings:
            if not 0 <= mapping.original_index < len(palette):
                raise ToolExecutionError(f"Palette index {mapping.original_index} is out of range")

            original = np.array(palette[mapping.original_index], dtype=np.float32)
            target = np.array(hex_to_rgb(mapping.new_color), dtype=np.float32)
            hit = (np.abs(rgb - original) < tolerance).all(axis=2)

            if params.blend_mode == "overlay":
                replacement = (rgb[hit] + target) / 2
            elif params.blend_mode == "multiply":
                replacement = rgb[hit] * target / 255
            else:
                replacement = np.broadcast_to(target, rgb[hit].shape)
            result_rgb[hit] = replacement

        result = image.pixels.copy()
        result[..., :3] = np.clip(np.round(result_rgb), 0, 255).astype(np.uint8)
        return self._output(result, image)

    def _pick_color(
        self, params: PickColorParams, image: LoadedImage, analysis: Optional[ImageAnalysis]
    ) -> ToolOutput:
        try:
            r, g, b, a = pixel_at(image.pixels, params.x, params.y)
        except IndexError as e:
            raise ToolExecutionError(str(e)) from e
        return ToolOutput(data={
            "x": params.x,
            "y": params.y,
            "r": r,
            "g": g,
            "b": b,
            "a": a,
            "hex": rgb_to_hex((r, g, b)),
            "name": color_name((r, g, b)),
        })

    # =========================================================================
    # MASK AND RESAMPLING TOOLS
    # =========================================================================

    @staticmethod
    def _texture_mask(texture_type: str, width: int, height: int, scale: float, rotation: float, seed: int) -> np.ndarray:
        cell = max(2.0, 16.0 * scale)
        ys, xs = np.mgrid[0:height, 0:width].astype(np.float32)
        if rotation:
            theta = math.radians(rotation)
            xs, ys = (
                xs * math.cos(theta) - ys * math.sin(theta),
                xs * math.sin(theta) + ys * math.cos(theta),
            )

        u = np.mod(xs, cell) / cell
        v = np.mod(ys, cell) / cell

        if texture_type == "dots":
            return (((u - 0.5) ** 2 + (v - 0.5) ** 2) < 0.09).astype(np.float32)
        if texture_type == "lines":
            return (v < 0.35).astype(np.float32)
        if texture_type == "grid":
            return ((u < 0.2) | (v < 0.2)).astype(np.float32)
        if texture_type == "noise":
            rng = np.random.default_rng(seed)
            small_w = max(1, int(math.ceil(width / cell)))
            small_h = max(1, int(math.ceil(height / cell)))
            coarse = (rng.random((small_h, small_w)) * 255).astype(np.uint8)
            upscaled = Image.fromarray(coarse).resize((width, height), Image.Resampling.BILINEAR)
            return (np.asarray(upscaled, dtype=np.float32) / 255 > 0.5).astype(np.float32)

        raise ToolExecutionError(
            "Custom texture requires user upload. Use built-in patterns (dots, lines, grid, noise) instead."
        )

    def _texture_cut(
        self, params: TextureCutParams, image: LoadedImage, analysis: Optional[ImageAnalysis]
    ) -> ToolOutput:
        mask = self._texture_mask(
            params.texture_type,
            image.width,
            image.height,
            params.scale,
            params.rotation,
            self.palette_seed,
        )
        if params.invert:
            mask = 1 - mask

        result = image.pixels.copy()
        alpha = result[..., 3].astype(np.float32) * (1 - params.amount * mask)
        result[..., 3] = np.clip(np.round(alpha), 0, 255).astype(np.uint8)
        return self._output(result, image)

    @staticmethod
    def _background_color(pixels: np.ndarray, step: int = 16) -> np.ndarray:
        """Mean of the most common quantized color along the image border."""
        border = np.concatenate([
            pixels[0, :, :3],
            pixels[-1, :, :3],
            pixels[:, 0, :3],
            pixels[:, -1, :3],
        ]).astype(np.float32)
        bins = (border // step).astype(np.int32)
        _, inverse, counts = np.unique(bins, axis=0, return_inverse=True, return_counts=True)
        winner = int(counts.argmax())
        return border[inverse.reshape(-1) == winner].mean(axis=0)

    def _remove_background(
        self, params: BackgroundRemoverParams, image: LoadedImage, analysis: Optional[ImageAnalysis]
    ) -> ToolOutput:
        pixels = image.pixels
        height, width = pixels.shape[:2]
        background = self._background_color(pixels)

        distance = np.sqrt(((pixels[..., :3].astype(np.float32) - background) ** 2).sum(axis=2))
        candidate = Image.fromarray(np.where(distance <= self.background_threshold, 255, 0).astype(np.uint8))

        # Flood from every border pixel so only background touching the edge is removed
        border = (
            [(x, 0) for x in range(width)]
            + [(x, height - 1) for x in range(width)]
            + [(0, y) for y in range(height)]
            + [(width - 1, y) for y in range(height)]
        )
        for seed in border:
            if candidate.getpixel(seed) == 255:
                ImageDraw.floodfill(candidate, seed, 128)

        removed = np.asarray(candidate) == 128
        if not removed.any():
            raise ToolExecutionError("No background region detected at the image edges")

        result = pixels.copy()
        if params.background_color:
            result[removed, :3] = np.array(hex_to_rgb(params.background_color), dtype=np.uint8)
            result[removed, 3] = 255
        else:
            result[removed, 3] = 0

        return self._output(result, image)

    def _upscale(
        self, params: UpscalerParams, image: LoadedImage, analysis: Optional[ImageAnalysis]
    ) -> ToolOutput:
        width = max(1, int(round(image.width * params.scale_factor)))
        height = max(1, int(round(image.height * params.scale_factor)))
        if (width, height) == (image.width, image.height):
            raise ToolExecutionError("Scale factor does not change the image size")

        resized = pixels_to_image(image.pixels).resize((width, height), Image.Resampling.LANCZOS)
        if params.face_enhance or params.model != "standard":
            resized = resized.filter(ImageFilter.UnsharpMask(radius=2, percent=80, threshold=2))

        return self._output(np.asarray(resized, dtype=np.uint8), image)
