"""
Image loading.

Resolves an image source (raw bytes, data URL, http(s) URL or local path)
into an RGBA pixel array plus the container facts the analyzer needs.
"""

from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Any, Optional, Union
import asyncio
import base64
import logging
import mimetypes

import httpx
import numpy as np
from PIL import Image, UnidentifiedImageError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from design_grounding.core.exceptions import ImageLoadError

logger = logging.getLogger(__name__)

ImageSource = Union[bytes, bytearray, str, Path]

_FORMAT_ALIASES = {"jpg": "jpeg", "tif": "tiff"}


@dataclass
class LoadedImage:
    """
    A decoded image.

    pixels is a read-only (H, W, 4) uint8 RGBA array.
    """
    pixels: np.ndarray
    format: str
    file_size: int
    dpi: Optional[int] = None
    source_url: Optional[str] = None

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])


def _normalize_format(value: Optional[str]) -> str:
    if not value:
        return "unknown"
    value = value.lower().strip().lstrip(".")
    if "/" in value:
        value = value.split("/", 1)[1]
    return _FORMAT_ALIASES.get(value, value)


def _format_from_name(name: str) -> Optional[str]:
    suffix = Path(name.split("?", 1)[0]).suffix
    return _normalize_format(suffix) if suffix else None


def _read_dpi(image: Image.Image) -> Optional[int]:
    dpi = image.info.get("dpi")
    if not dpi:
        return None
    try:
        value = int(round(float(dpi[0])))
    except (TypeError, ValueError, IndexError):
        return None
    return value if value > 0 else None


def decode_image(
    data: bytes,
    format_hint: Optional[str] = None,
    file_size: Optional[int] = None,
    source_url: Optional[str] = None,
) -> LoadedImage:
    """
    Decode encoded image bytes into RGBA pixels.

    Raises:
        ImageLoadError: If Pillow cannot identify or decode the bytes.
    """
    try:
        with Image.open(BytesIO(data)) as image:
            image.load()
            pil_format = image.format
            dpi = _read_dpi(image)
            rgba = image.convert("RGBA")
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise ImageLoadError(f"Could not decode image: {e}", source_kind="bytes") from e

    pixels = np.asarray(rgba, dtype=np.uint8).copy()
    pixels.setflags(write=False)

    return LoadedImage(
        pixels=pixels,
        format=_normalize_format(format_hint or pil_format),
        file_size=file_size if file_size is not None else len(data),
        dpi=dpi,
        source_url=source_url,
    )


def from_pil(image: Image.Image) -> LoadedImage:
    """Wrap an in-memory Pillow image; file size is its PNG-encoded length."""
    rgba = image.convert("RGBA")
    buffer = BytesIO()
    rgba.save(buffer, format="PNG")
    pixels = np.asarray(rgba, dtype=np.uint8).copy()
    pixels.setflags(write=False)
    return LoadedImage(
        pixels=pixels,
        format=_normalize_format(image.format or "png"),
        file_size=len(buffer.getvalue()),
        dpi=_read_dpi(image),
    )


def _decode_data_url(url: str) -> LoadedImage:
    header, _, payload = url.partition(",")
    if not payload or ";base64" not in header:
        raise ImageLoadError("Only base64 data URLs are supported", source_kind="data_url")

    mime = header[len("data:"):].split(";", 1)[0]
    try:
        data = base64.b64decode(payload, validate=False)
    except (ValueError, TypeError) as e:
        raise ImageLoadError(f"Invalid base64 payload: {e}", source_kind="data_url") from e

    # Size of the encoded payload as the client sent it
    file_size = int(len(payload) * 3 / 4)
    return decode_image(data, format_hint=mime or None, file_size=file_size, source_url=url)


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=5),
    retry=retry_if_exception_type((
        httpx.TimeoutException,
        httpx.NetworkError,
        httpx.RemoteProtocolError,
    )),
    reraise=True,
)
async def _fetch(client: httpx.AsyncClient, url: str) -> httpx.Response:
    response = await client.get(url, follow_redirects=True)
    response.raise_for_status()
    return response


async def fetch_image(url: str, client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0) -> LoadedImage:
    """
    Download and decode an http(s) image.

    Transient network errors are retried; HTTP error statuses are not.
    """
    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=timeout)
    try:
        response = await _fetch(client, url)
    except httpx.HTTPStatusError as e:
        raise ImageLoadError(
            f"Image fetch failed with status {e.response.status_code}",
            source_kind="url",
            details={"url": url},
        ) from e
    except httpx.HTTPError as e:
        raise ImageLoadError(f"Image fetch failed: {e}", source_kind="url", details={"url": url}) from e
    finally:
        if owns_client:
            await client.aclose()

    content_type = response.headers.get("content-type", "").split(";", 1)[0].strip()
    hint = _format_from_name(url) or (content_type if content_type.startswith("image/") else None)
    return await asyncio.to_thread(decode_image, response.content, format_hint=hint, source_url=url)


async def load_image(source: Any, client: Optional[httpx.AsyncClient] = None) -> LoadedImage:
    """
    Load any supported image source.

    Decoding runs in a worker thread so large images do not block the
    event loop.

    Raises:
        ImageLoadError: For unsupported sources (including browser blob:
            URLs), unreachable URLs, missing files and undecodable data.
    """
    if isinstance(source, (bytes, bytearray)):
        return await asyncio.to_thread(decode_image, bytes(source))

    if isinstance(source, Image.Image):
        return await asyncio.to_thread(from_pil, source)

    if isinstance(source, Path):
        source = str(source)

    if not isinstance(source, str) or not source.strip():
        raise ImageLoadError("Unsupported image source", source_kind=type(source).__name__)

    source = source.strip()

    if source.startswith("blob:"):
        raise ImageLoadError(
            "Browser blob URLs cannot be read server-side; send the image as a data URL",
            source_kind="blob",
        )

    if source.startswith("data:"):
        return await asyncio.to_thread(_decode_data_url, source)

    if source.startswith(("http://", "https://")):
        return await fetch_image(source, client=client)

    path = Path(source)
    if not path.is_file():
        raise ImageLoadError(f"Image file not found: {source}", source_kind="path")

    data = await asyncio.to_thread(path.read_bytes)
    return await asyncio.to_thread(decode_image, data, format_hint=_format_from_name(path.name), source_url=None)


# =============================================================================
# ENCODING
# =============================================================================

def pixels_to_image(pixels: np.ndarray) -> Image.Image:
    return Image.fromarray(np.ascontiguousarray(pixels, dtype=np.uint8))


def encode_png_data_url(pixels: np.ndarray, dpi: Optional[int] = None) -> str:
    """Encode RGBA pixels as a PNG data URL."""
    buffer = BytesIO()
    save_kwargs = {"dpi": (dpi, dpi)} if dpi else {}
    pixels_to_image(pixels).save(buffer, format="PNG", **save_kwargs)
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


def to_model_url(source: Any) -> Optional[str]:
    """
    A URL the vision model can read for this source.

    http(s) and data URLs pass through; bytes and local files are inlined
    as data URLs. Returns None for sources the model cannot be shown.
    """
    if isinstance(source, (bytes, bytearray)):
        try:
            with Image.open(BytesIO(bytes(source))) as image:
                mime = Image.MIME.get(image.format or "", "image/png")
        except (UnidentifiedImageError, OSError):
            return None
        return f"data:{mime};base64," + base64.b64encode(bytes(source)).decode("ascii")

    if isinstance(source, Image.Image):
        return encode_png_data_url(np.asarray(source.convert("RGBA"), dtype=np.uint8))

    if isinstance(source, Path):
        source = str(source)

    if not isinstance(source, str):
        return None

    if source.startswith(("http://", "https://", "data:")):
        return source

    path = Path(source)
    if path.is_file():
        mime = mimetypes.guess_type(path.name)[0] or "image/png"
        return f"data:{mime};base64," + base64.b64encode(path.read_bytes()).decode("ascii")

    logger.debug(f"No model-readable URL for image source of kind {type(source).__name__}")
    return None
