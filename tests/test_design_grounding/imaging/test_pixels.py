"""
Unit tests for design_grounding.imaging.pixels module.
"""

import numpy as np
import pytest

from design_grounding.imaging.pixels import (
    color_presence,
    compare_pixels,
    count_unique_colors,
    dominant_colors,
    has_transparency,
    noise_level,
    opaque_rgb,
    pixel_at,
    sharpness_score,
    transparent_fraction,
)


def solid(width, height, rgb, alpha=255):
    pixels = np.zeros((height, width, 4), dtype=np.uint8)
    pixels[..., :3] = rgb
    pixels[..., 3] = alpha
    return pixels


def split(width=100, height=40, left=(0, 0, 255), right=(255, 255, 255), fraction=0.25):
    pixels = solid(width, height, right)
    pixels[:, :int(width * fraction), :3] = left
    return pixels


class TestTransparency:
    """Tests for alpha measurements."""

    def test_opaque(self):
        pixels = solid(10, 10, (1, 2, 3))
        assert not has_transparency(pixels)
        assert transparent_fraction(pixels) == 0.0

    def test_partial(self):
        """One translucent column out of four."""
        pixels = solid(4, 4, (1, 2, 3))
        pixels[:, 0, 3] = 128
        assert has_transparency(pixels)
        assert transparent_fraction(pixels) == pytest.approx(0.25)

    def test_opaque_rgb_skips_transparent(self):
        pixels = solid(4, 1, (9, 9, 9))
        pixels[0, 0, 3] = 0
        assert len(opaque_rgb(pixels)) == 3

    def test_rejects_rgb_array(self):
        """Only RGBA arrays are accepted."""
        with pytest.raises(ValueError):
            has_transparency(np.zeros((2, 2, 3), dtype=np.uint8))


class TestDominantColors:
    """Tests for dominant color clustering."""

    def test_exact_colors_for_few_unique(self):
        """Two colors come back exactly, ordered by share."""
        clusters = dominant_colors(split())
        assert clusters[0][0] == (255, 255, 255)
        assert clusters[0][1] == pytest.approx(75.0)
        assert clusters[1][0] == (0, 0, 255)
        assert clusters[1][1] == pytest.approx(25.0)

    def test_kmeans_is_deterministic(self):
        """The same seed gives the same clusters on a noisy image."""
        rng = np.random.default_rng(3)
        pixels = solid(60, 60, (0, 0, 0))
        pixels[..., :3] = rng.integers(0, 256, size=(60, 60, 3), dtype=np.uint8)
        first = dominant_colors(pixels, k=5, rng=np.random.default_rng(42))
        second = dominant_colors(pixels, k=5, rng=np.random.default_rng(42))
        assert first == second
        assert len(first) <= 5
        assert sum(p for _, p in first) == pytest.approx(100.0)

    def test_fully_transparent(self):
        """No visible pixels means no colors."""
        assert dominant_colors(solid(5, 5, (1, 1, 1), alpha=0)) == []


class TestMeasurements:
    """Tests for color count, sharpness and noise."""

    def test_unique_colors_solid(self):
        assert count_unique_colors(solid(50, 50, (10, 20, 30))) == 2  # 1 * sqrt(4)

    def test_flat_image_is_not_sharp(self):
        assert sharpness_score(solid(50, 50, (128, 128, 128))) == 0.0

    def test_detail_raises_sharpness(self):
        """Random detail has a strongly varying Laplacian."""
        rng = np.random.default_rng(5)
        pixels = solid(40, 40, (0, 0, 0))
        pixels[..., :3] = rng.integers(0, 256, size=(40, 40, 3), dtype=np.uint8)
        assert sharpness_score(pixels) == 100.0

    def test_flat_image_has_no_noise(self):
        assert noise_level(solid(64, 64, (50, 50, 50))) == 0.0

    def test_random_image_is_noisy(self):
        rng = np.random.default_rng(0)
        pixels = solid(64, 64, (0, 0, 0))
        pixels[..., :3] = rng.integers(0, 256, size=(64, 64, 3), dtype=np.uint8)
        assert noise_level(pixels) > 50


class TestColorPresence:
    """Tests for direct color sampling."""

    def test_present_color(self):
        presence = color_presence(split(), (0, 0, 250), rng=np.random.default_rng(1))
        assert presence.found
        assert presence.distance == pytest.approx(5.0)
        assert 15 < presence.match_percentage < 35

    def test_absent_color(self):
        """Purple is far from both blue and white."""
        presence = color_presence(split(), (128, 0, 128), rng=np.random.default_rng(1))
        assert not presence.found
        assert presence.distance > 50
        assert presence.match_percentage == 0


class TestComparePixels:
    """Tests for the before/after delta."""

    def test_identical(self):
        pixels = split()
        diff = compare_pixels(pixels, pixels.copy())
        assert diff.pixels_changed == 0
        assert diff.percentage_changed == 0.0

    def test_noise_floor(self):
        """Changes at or below the floor are ignored."""
        before = solid(10, 10, (100, 100, 100))
        after = before.copy()
        after[..., 0] = 110
        assert compare_pixels(before, after).pixels_changed == 0

    def test_alpha_change(self):
        """Knocking out a quarter of the pixels changes 25%."""
        before = split()
        after = before.copy()
        after[:, :25, 3] = 0
        diff = compare_pixels(before, after)
        assert diff.percentage_changed == pytest.approx(25.0)
        assert diff.max_delta == pytest.approx(255.0)
        assert diff.color_shift_amount == 0.0

    def test_dimension_change(self):
        diff = compare_pixels(solid(10, 10, (0, 0, 0)), solid(20, 20, (0, 0, 0)))
        assert diff.dimensions_changed
        assert diff.percentage_changed == 100.0


class TestPixelAt:
    def test_reads_rgba(self):
        assert pixel_at(split(), 0, 0) == (0, 0, 255, 255)
        assert pixel_at(split(), 99, 39) == (255, 255, 255, 255)

    def test_out_of_bounds(self):
        with pytest.raises(IndexError):
            pixel_at(split(), 100, 0)
