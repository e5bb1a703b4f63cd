"""
Unit tests for design_grounding.imaging.loader module.
"""

import base64

import httpx
import numpy as np
import pytest
from PIL import Image

from conftest import make_image, to_data_url
from design_grounding.core.exceptions import ImageLoadError
from design_grounding.imaging.loader import (
    LoadedImage,
    decode_image,
    encode_png_data_url,
    fetch_image,
    from_pil,
    load_image,
    to_model_url,
)


class TestDecode:
    """Tests for decoding bytes."""

    def test_decode_png(self, blue_white_png):
        """PNG bytes decode into a read-only RGBA array."""
        image = decode_image(blue_white_png)
        assert isinstance(image, LoadedImage)
        assert (image.width, image.height) == (1920, 1080)
        assert image.pixels.shape == (1080, 1920, 4)
        assert image.format == "png"
        assert image.file_size == len(blue_white_png)
        assert not image.pixels.flags.writeable

    def test_decode_dpi(self):
        """DPI metadata is read when present."""
        assert decode_image(make_image(64, 64, dpi=300)).dpi == 300
        assert decode_image(make_image(64, 64)).dpi is None

    def test_garbage(self):
        """Undecodable bytes raise ImageLoadError."""
        with pytest.raises(ImageLoadError):
            decode_image(b"not an image")

    def test_from_pil(self):
        """In-memory Pillow images are converted to RGBA."""
        image = from_pil(Image.new("RGB", (8, 4), (10, 20, 30)))
        assert image.pixels.shape == (4, 8, 4)
        assert tuple(image.pixels[0, 0]) == (10, 20, 30, 255)


class TestLoadImage:
    """Tests for source dispatch."""

    @pytest.mark.asyncio
    async def test_bytes(self, small_png):
        image = await load_image(small_png)
        assert image.width == 64

    @pytest.mark.asyncio
    async def test_data_url(self, small_png):
        image = await load_image(to_data_url(small_png))
        assert image.format == "png"
        assert image.source_url.startswith("data:image/png")

    @pytest.mark.asyncio
    async def test_non_base64_data_url(self):
        with pytest.raises(ImageLoadError, match="base64"):
            await load_image("data:image/png,rawpixels")

    @pytest.mark.asyncio
    async def test_blob_url(self):
        """Browser blob URLs are rejected with a hint."""
        with pytest.raises(ImageLoadError, match="data URL"):
            await load_image("blob:https://app.example.com/1234")

    @pytest.mark.asyncio
    async def test_local_path(self, tmp_path, small_png):
        path = tmp_path / "design.png"
        path.write_bytes(small_png)
        image = await load_image(str(path))
        assert image.height == 64

    @pytest.mark.asyncio
    async def test_missing_path(self, tmp_path):
        with pytest.raises(ImageLoadError, match="not found"):
            await load_image(str(tmp_path / "missing.png"))

    @pytest.mark.asyncio
    async def test_unsupported_source(self):
        with pytest.raises(ImageLoadError):
            await load_image(12345)


class TestFetch:
    """Tests for http(s) sources."""

    @pytest.mark.asyncio
    async def test_fetch(self, small_png):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, content=small_png, headers={"content-type": "image/png"})
        )
        async with httpx.AsyncClient(transport=transport) as client:
            image = await fetch_image("https://cdn.example.com/design.png", client=client)
        assert image.width == 64
        assert image.source_url == "https://cdn.example.com/design.png"

    @pytest.mark.asyncio
    async def test_fetch_http_error(self):
        """Error statuses are not retried and raise ImageLoadError."""
        transport = httpx.MockTransport(lambda request: httpx.Response(404))
        async with httpx.AsyncClient(transport=transport) as client:
            with pytest.raises(ImageLoadError, match="404"):
                await fetch_image("https://cdn.example.com/missing.png", client=client)


class TestEncoding:
    """Tests for data URL encoding."""

    def test_encode_png_data_url(self):
        pixels = np.zeros((3, 5, 4), dtype=np.uint8)
        url = encode_png_data_url(pixels, dpi=300)
        assert url.startswith("data:image/png;base64,")
        decoded = decode_image(base64.b64decode(url.split(",", 1)[1]))
        assert (decoded.width, decoded.height, decoded.dpi) == (5, 3, 300)

    def test_to_model_url(self, tmp_path, small_png):
        """URLs pass through; bytes and files are inlined."""
        assert to_model_url("https://x.test/a.png") == "https://x.test/a.png"
        assert to_model_url(small_png).startswith("data:image/png;base64,")
        path = tmp_path / "a.png"
        path.write_bytes(small_png)
        assert to_model_url(str(path)).startswith("data:image/png;base64,")
        assert to_model_url(b"junk") is None
        assert to_model_url(None) is None
