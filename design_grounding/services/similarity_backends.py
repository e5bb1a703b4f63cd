"""
Similarity backends for the context store.

A backend persists successful tool executions and answers "executions of
this tool on images like this one" queries. The store works with any of
them, including NullSimilarityBackend, which stores nothing.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple
import asyncio
import json
import logging
import math

import asyncpg

from design_grounding.core.exceptions import SimilarityBackendError
from design_grounding.imaging.color import rgb_delta_e, rgb_to_lab
from design_grounding.models.analysis import ImageAnalysis
from design_grounding.models.execution import ImageSpecsSnapshot, ToolExecution

logger = logging.getLogger(__name__)

# Failures of an established pool; pool creation failures of any kind are wrapped too
DATABASE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)

DEFAULT_WEIGHTS: Dict[str, float] = {
    "dimensions": 0.25,
    "aspect_ratio": 0.10,
    "color_count": 0.15,
    "sharpness": 0.15,
    "print_ready": 0.10,
    "dominant_colors": 0.25,
}


# =============================================================================
# SCORING
# =============================================================================

def _secondary_score(analysis: ImageAnalysis, snapshot: ImageSpecsSnapshot, weights: Dict[str, float]) -> float:
    score = 0.0
    used = 0.0

    def add(key: str, value: float) -> None:
        nonlocal score, used
        weight = weights.get(key, 0.0)
        score += max(0.0, min(100.0, value)) * weight
        used += weight

    if snapshot.width and snapshot.height and analysis.width and analysis.height:
        dim_diff = (
            abs(analysis.width - snapshot.width) / max(analysis.width, snapshot.width)
            + abs(analysis.height - snapshot.height) / max(analysis.height, snapshot.height)
        )
        add("dimensions", 100 - dim_diff * 50)

    if snapshot.aspect_ratio:
        add("aspect_ratio", 100 if analysis.aspect_ratio == snapshot.aspect_ratio else 50)

    if snapshot.unique_color_count and analysis.unique_color_count:
        color_diff = (
            abs(analysis.unique_color_count - snapshot.unique_color_count)
            / max(analysis.unique_color_count, snapshot.unique_color_count)
        )
        add("color_count", 100 - color_diff * 100)

    add("sharpness", 100 - abs(analysis.sharpness_score - snapshot.sharpness_score))
    add("print_ready", 100 if analysis.is_print_ready == snapshot.is_print_ready else 50)

    if analysis.dominant_colors and snapshot.dominant_colors:
        distances = [
            min(rgb_delta_e(color.rgb, other.rgb) for other in snapshot.dominant_colors)
            for color in analysis.dominant_colors[:3]
        ]
        add("dominant_colors", 100 - sum(distances) / len(distances))

    return score / used if used > 0 else 0.0


def similarity_score(
    analysis: ImageAnalysis,
    snapshot: ImageSpecsSnapshot,
    weights: Optional[Dict[str, float]] = None,
) -> float:
    """
    Tiered 0-100 similarity between a query image and a stored snapshot.

    Identical dimensions with matching transparency score in [50, 100];
    anything else scores in [0, 50). Within a tier the score follows the
    weighted secondary features.
    """
    secondary = _secondary_score(analysis, snapshot, weights or DEFAULT_WEIGHTS)

    exact = (
        analysis.width == snapshot.width
        and analysis.height == snapshot.height
        and analysis.has_transparency == snapshot.has_transparency
    )
    if exact:
        return 50 + secondary * 0.5
    return secondary * 0.49


def feature_vector(specs: ImageSpecsSnapshot) -> List[float]:
    """
    Fixed-length numeric fingerprint used for vector pre-filtering.

    Components are scaled to roughly 0-1.
    """
    top = specs.dominant_colors[0].rgb if specs.dominant_colors else (0, 0, 0)
    lightness, a, b = rgb_to_lab(top)
    aspect = specs.width / specs.height if specs.height else 0.0
    return [
        min(specs.width / 8000, 1.0),
        min(specs.height / 8000, 1.0),
        1.0 if specs.has_transparency else 0.0,
        min(aspect / 4, 1.0),
        min(math.log10(specs.unique_color_count + 1) / 6, 1.0),
        specs.sharpness_score / 100,
        specs.noise_level / 100,
        1.0 if specs.is_print_ready else 0.0,
        lightness / 100,
        (a + 128) / 255,
        (b + 128) / 255,
    ]


FEATURE_DIMENSIONS = 11


def rank(
    analysis: ImageAnalysis,
    candidates: List[ToolExecution],
    limit: int,
    weights: Optional[Dict[str, float]] = None,
) -> List[Tuple[ToolExecution, float]]:
    """Score and sort candidates, most similar first; ties keep newest first."""
    ordered = sorted(candidates, key=lambda e: e.timestamp, reverse=True)
    scored = [(e, similarity_score(analysis, e.image_specs_snapshot, weights)) for e in ordered]
    scored.sort(key=lambda pair: pair[1], reverse=True)
    return scored[:max(0, limit)]


# =============================================================================
# BACKENDS
# =============================================================================

class SimilarityBackend(ABC):
    """Pluggable storage for executions with similarity lookup."""

    name: str = "base"

    @property
    def available(self) -> bool:
        return True

    @abstractmethod
    async def add(self, conversation_id: str, execution: ToolExecution) -> None:
        pass

    @abstractmethod
    async def query(
        self,
        tool_name: str,
        analysis: ImageAnalysis,
        limit: int,
        weights: Optional[Dict[str, float]] = None,
    ) -> List[Tuple[ToolExecution, float]]:
        """Successful executions of tool_name ranked by similarity."""
        pass

    @abstractmethod
    async def counts(self) -> Tuple[int, int]:
        """(total executions, successful executions)."""
        pass

    @abstractmethod
    async def clear(self) -> None:
        pass

    async def remove_conversations(self, conversation_ids: List[str]) -> None:
        """Drop executions belonging to pruned conversations."""
        return None

    async def close(self) -> None:
        return None


class InMemorySimilarityBackend(SimilarityBackend):
    """Process-local backend with a linear scan; the default."""

    name = "memory"

    def __init__(self):
        self._executions: List[Tuple[str, ToolExecution]] = []

    async def add(self, conversation_id: str, execution: ToolExecution) -> None:
        self._executions.append((conversation_id, execution))

    async def query(
        self,
        tool_name: str,
        analysis: ImageAnalysis,
        limit: int,
        weights: Optional[Dict[str, float]] = None,
    ) -> List[Tuple[ToolExecution, float]]:
        candidates = [e for _, e in self._executions if e.tool_name == tool_name and e.success]
        return rank(analysis, candidates, limit, weights)

    async def counts(self) -> Tuple[int, int]:
        total = len(self._executions)
        successful = sum(1 for _, e in self._executions if e.success)
        return total, successful

    async def remove_conversations(self, conversation_ids: List[str]) -> None:
        dropped = set(conversation_ids)
        self._executions = [(c, e) for c, e in self._executions if c not in dropped]

    async def clear(self) -> None:
        self._executions.clear()


class NullSimilarityBackend(SimilarityBackend):
    """
    Degraded mode: no similarity storage.

    Writes are discarded and every query returns no results.
    """

    name = "none"

    @property
    def available(self) -> bool:
        return False

    async def add(self, conversation_id: str, execution: ToolExecution) -> None:
        return None

    async def query(
        self,
        tool_name: str,
        analysis: ImageAnalysis,
        limit: int,
        weights: Optional[Dict[str, float]] = None,
    ) -> List[Tuple[ToolExecution, float]]:
        return []

    async def counts(self) -> Tuple[int, int]:
        return 0, 0

    async def clear(self) -> None:
        return None


class PgVectorSimilarityBackend(SimilarityBackend):
    """
    Postgres + pgvector backend.

    Candidates are pre-filtered by cosine distance over feature_vector(),
    then re-ranked in process with similarity_score(). Errors are raised
    as SimilarityBackendError for the store to absorb.
    """

    name = "pgvector"

    CREATE_SQL = f"""
        CREATE EXTENSION IF NOT EXISTS vector;
        CREATE TABLE IF NOT EXISTS grounding_executions (
            id TEXT PRIMARY KEY,
            conversation_id TEXT NOT NULL,
            tool_name TEXT NOT NULL,
            success BOOLEAN NOT NULL,
            confidence DOUBLE PRECISION NOT NULL,
            payload JSONB NOT NULL,
            features vector({FEATURE_DIMENSIONS}) NOT NULL,
            created_at TIMESTAMP NOT NULL DEFAULT NOW()
        );
        CREATE INDEX IF NOT EXISTS grounding_executions_tool_idx
            ON grounding_executions (tool_name, success);
    """

    def __init__(self, database_url: str, candidate_multiplier: int = 4):
        """
        Initialize pgvector backend.

        Args:
            database_url: Postgres DSN
            candidate_multiplier: Rows fetched per requested result before re-ranking
        """
        self._db_url = database_url
        self._candidate_multiplier = candidate_multiplier
        self._pool: Optional[asyncpg.Pool] = None
        self._available = True

    @property
    def available(self) -> bool:
        return self._available

    async def _get_pool(self) -> asyncpg.Pool:
        """Get or create connection pool (lazy initialization)."""
        if self._pool is None:
            pool = None
            try:
                pool = await asyncpg.create_pool(self._db_url)
                async with pool.acquire() as conn:
                    await conn.execute(self.CREATE_SQL)
            except Exception as e:
                if pool is not None:
                    pool.terminate()
                self._available = False
                logger.error(f"Failed to create similarity database pool: {e}")
                raise SimilarityBackendError(f"Similarity database connection failed: {e}") from e
            self._pool = pool
        return self._pool

    @staticmethod
    def _vector_literal(values: List[float]) -> str:
        return "[" + ",".join(f"{v:.6f}" for v in values) + "]"

    async def add(self, conversation_id: str, execution: ToolExecution) -> None:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                await conn.execute(
                    """
                    INSERT INTO grounding_executions
                        (id, conversation_id, tool_name, success, confidence, payload, features, created_at)
                    VALUES ($1, $2, $3, $4, $5, $6::jsonb, $7::vector, $8)
                    ON CONFLICT (id) DO NOTHING
                    """,
                    execution.id,
                    conversation_id,
                    execution.tool_name,
                    execution.success,
                    execution.confidence,
                    json.dumps(execution.to_dict()),
                    self._vector_literal(feature_vector(execution.image_specs_snapshot)),
                    execution.timestamp,
                )
        except DATABASE_ERRORS as e:
            raise SimilarityBackendError(f"Failed to store execution: {e}") from e

    async def query(
        self,
        tool_name: str,
        analysis: ImageAnalysis,
        limit: int,
        weights: Optional[Dict[str, float]] = None,
    ) -> List[Tuple[ToolExecution, float]]:
        pool = await self._get_pool()
        query_vector = self._vector_literal(feature_vector(ImageSpecsSnapshot.from_analysis(analysis)))
        try:
            async with pool.acquire() as conn:
                rows = await conn.fetch(
                    """
                    SELECT payload
                    FROM grounding_executions
                    WHERE tool_name = $1
                      AND success
                    ORDER BY features <=> $2::vector
                    LIMIT $3
                    """,
                    tool_name,
                    query_vector,
                    max(1, limit) * self._candidate_multiplier,
                )
        except DATABASE_ERRORS as e:
            raise SimilarityBackendError(f"Similarity query failed: {e}") from e

        candidates = []
        for row in rows:
            payload = row["payload"]
            if isinstance(payload, str):
                payload = json.loads(payload)
            candidates.append(ToolExecution.from_dict(payload))
        return rank(analysis, candidates, limit, weights)

    async def counts(self) -> Tuple[int, int]:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow(
                    "SELECT COUNT(*) AS total, COUNT(*) FILTER (WHERE success) AS successful "
                    "FROM grounding_executions"
                )
        except DATABASE_ERRORS as e:
            raise SimilarityBackendError(f"Count query failed: {e}") from e
        return int(row["total"]), int(row["successful"])

    async def remove_conversations(self, conversation_ids: List[str]) -> None:
        if not conversation_ids:
            return
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                await conn.execute(
                    "DELETE FROM grounding_executions WHERE conversation_id = ANY($1::text[])",
                    conversation_ids,
                )
        except DATABASE_ERRORS as e:
            raise SimilarityBackendError(f"Failed to prune executions: {e}") from e

    async def clear(self) -> None:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                await conn.execute("TRUNCATE grounding_executions")
        except DATABASE_ERRORS as e:
            raise SimilarityBackendError(f"Failed to clear executions: {e}") from e

    async def close(self) -> None:
        if self._pool:
            await self._pool.close()
            self._pool = None


def create_backend(kind: str, database_url: Optional[str] = None) -> SimilarityBackend:
    """Build a backend from its settings name: memory, pgvector or none."""
    kind = (kind or "memory").lower()
    if kind == "none":
        return NullSimilarityBackend()
    if kind == "pgvector":
        if not database_url:
            logger.warning("pgvector similarity backend requested without DATABASE_URL; running degraded")
            return NullSimilarityBackend()
        return PgVectorSimilarityBackend(database_url)
    return InMemorySimilarityBackend()
