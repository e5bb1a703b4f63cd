"""
Pytest Configuration and Fixtures
Global test configuration and reusable test fixtures
"""

import os
import sys

# Load .env.test before any other imports
from dotenv import load_dotenv
load_dotenv('.env.test')

import base64
from io import BytesIO
from typing import Optional
from unittest.mock import AsyncMock, MagicMock, patch

import numpy as np
import pytest
from PIL import Image

# Add project root to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

# Override environment for tests
os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_LEVEL"] = "ERROR"
os.environ["ENABLE_STRUCTURED_LOGGING"] = "false"


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment():
    """Set up test environment variables."""
    test_env = {
        "ENVIRONMENT": "test",
        "LOG_LEVEL": "ERROR",
        "OPENROUTER_API_KEY": "test-openrouter-key-12345",
        "SIMILARITY_BACKEND": "memory",
        "ENABLE_METRICS": "true",
        "ENABLE_STRUCTURED_LOGGING": "false",
    }

    with patch.dict(os.environ, test_env):
        yield


@pytest.fixture(autouse=True)
def reset_globals():
    """Fresh grounding policy and tool registry for every test."""
    from design_grounding.core.config import reset_config
    from design_grounding.tools.registry import reset_registry

    reset_config()
    reset_registry()
    yield
    reset_config()
    reset_registry()


# ============================================================================
# Image fixtures
# ============================================================================

BLUE = (0, 0, 255)
WHITE = (255, 255, 255)


def make_image(
    width: int = 1920,
    height: int = 1080,
    background=WHITE,
    block=BLUE,
    block_fraction: float = 0.25,
    alpha: Optional[int] = None,
    dpi: Optional[int] = None,
) -> bytes:
    """PNG bytes: a solid background with a full-height block on the left."""
    pixels = np.zeros((height, width, 4), dtype=np.uint8)
    pixels[..., :3] = background
    pixels[..., 3] = 255
    block_width = int(round(width * block_fraction))
    if block_width:
        pixels[:, :block_width, :3] = block
    if alpha is not None:
        pixels[:, :block_width, 3] = alpha

    buffer = BytesIO()
    save_kwargs = {"dpi": (dpi, dpi)} if dpi else {}
    Image.fromarray(pixels, "RGBA").save(buffer, format="PNG", **save_kwargs)
    return buffer.getvalue()


def to_data_url(data: bytes, mime: str = "image/png") -> str:
    return f"data:{mime};base64," + base64.b64encode(data).decode("ascii")


@pytest.fixture
def blue_white_png() -> bytes:
    """1920x1080 PNG: 25% pure blue, 75% pure white, no transparency."""
    return make_image()


@pytest.fixture
def blue_white_data_url(blue_white_png) -> str:
    return to_data_url(blue_white_png)


@pytest.fixture
def small_png() -> bytes:
    """64x64 PNG with the same 25/75 split, for fast tool runs."""
    return make_image(width=64, height=64)


@pytest.fixture
def loaded_image(blue_white_png):
    from design_grounding.imaging.loader import decode_image

    return decode_image(blue_white_png)


@pytest.fixture
def blue_white_analysis():
    """Hand-built ground truth matching blue_white_png."""
    from design_grounding.models.analysis import DominantColor, ImageAnalysis, PrintSize

    return ImageAnalysis(
        width=1920,
        height=1080,
        aspect_ratio="16:9",
        dpi=None,
        file_size=20480,
        format="png",
        has_transparency=False,
        dominant_colors=(
            DominantColor(r=255, g=255, b=255, hex="#ffffff", percentage=75.0),
            DominantColor(r=0, g=0, b=255, hex="#0000ff", percentage=25.0),
        ),
        color_depth=24,
        unique_color_count=2,
        is_blurry=False,
        sharpness_score=66,
        noise_level=0,
        is_print_ready=False,
        printable_at_size=PrintSize(width=6.4, height=3.6),
        confidence=100,
        print_readiness_issues=("Effective DPI 72 is below 300",),
    )


# ============================================================================
# LLM fixtures
# ============================================================================

def tool_call(name: str, arguments: str, call_id: str = "call_1") -> dict:
    """An OpenAI-shaped tool call with JSON-string arguments."""
    return {
        "id": call_id,
        "type": "function",
        "function": {"name": name, "arguments": arguments},
    }


def llm_response(content: str = "", tool_calls=None):
    from design_grounding.core.llm_client import LLMResponse

    return LLMResponse(
        content=content,
        model="anthropic/claude-sonnet-4",
        tokens_input=900,
        tokens_output=100,
        tokens_total=1000,
        tool_calls=list(tool_calls or []),
    )


@pytest.fixture
def mock_llm_client():
    """LLM client whose chat() returns a canned response without tool calls."""
    client = MagicMock()
    client.is_configured = True
    client.chat = AsyncMock(return_value=llm_response("Nothing to change."))
    client.close = AsyncMock()
    return client
