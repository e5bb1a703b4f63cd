"""
Context Store Service.

Keeps conversation history per conversation id and the learning store of
successful tool executions, which the parameter validator consults to
bias future parameter choices toward what worked on similar images.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from design_grounding.core.config import ContextStoreConfig, get_config
from design_grounding.core.message import ChatMessage
from design_grounding.models.analysis import ImageAnalysis
from design_grounding.models.context import ContextStats, ConversationContext
from design_grounding.models.execution import ToolExecution
from design_grounding.services.similarity_backends import (
    InMemorySimilarityBackend,
    SimilarityBackend,
)

logger = logging.getLogger(__name__)


class ContextStoreService:
    """
    Service for conversation and execution memory.

    This service handles:
    - Appending conversation turns with the latest image analysis
    - Admitting executions to the learning store through the confidence gate
    - Similarity lookups, which return nothing rather than fail when the
      backend is missing or down
    - Pruning the oldest conversations past the retention ceiling

    Conversations are independent keys; no operation locks across them.
    """

    def __init__(
        self,
        config: Optional[ContextStoreConfig] = None,
        backend: Optional[SimilarityBackend] = None,
    ):
        """
        Initialize context store.

        Args:
            config: Gate, retention and similarity weights. Defaults to the
                grounding policy.
            backend: Similarity backend. Defaults to in-memory; pass
                NullSimilarityBackend for degraded mode.
        """
        self._config = config or get_config().context_store
        self._backend = backend or InMemorySimilarityBackend()
        self._conversations: Dict[str, ConversationContext] = {}

    @property
    def backend(self) -> SimilarityBackend:
        return self._backend

    @property
    def degraded(self) -> bool:
        """True when similarity lookups cannot return anything."""
        return not self._backend.available

    async def close(self) -> None:
        """Close resources."""
        await self._backend.close()

    async def __aenter__(self) -> "ContextStoreService":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # =========================================================================
    # CONVERSATIONS
    # =========================================================================

    def _get_or_create(self, conversation_id: str) -> ConversationContext:
        context = self._conversations.get(conversation_id)
        if context is None:
            context = ConversationContext(conversation_id=conversation_id)
            self._conversations[conversation_id] = context
        return context

    async def store(
        self,
        conversation_id: str,
        messages: List[ChatMessage],
        image_analysis: Optional[ImageAnalysis] = None,
    ) -> ConversationContext:
        """
        Append messages to a conversation, creating it on first use.

        The stored analysis is replaced only when a new one is given.
        """
        context = self._get_or_create(conversation_id)
        context.messages.extend(messages)
        if image_analysis is not None:
            context.image_analysis = image_analysis
        context.last_updated_at = datetime.utcnow()

        if len(self._conversations) > self._config.retention:
            await self.prune(self._config.retention)

        return context

    async def store_turn(
        self,
        conversation_id: str,
        user_message: str,
        assistant_message: str,
        image_analysis: Optional[ImageAnalysis] = None,
        image_url: Optional[str] = None,
    ) -> ConversationContext:
        """Append one user/assistant exchange."""
        return await self.store(
            conversation_id,
            [
                ChatMessage.user(user_message, image_url=image_url),
                ChatMessage.assistant(assistant_message),
            ],
            image_analysis,
        )

    async def get_context(self, conversation_id: str) -> Optional[ConversationContext]:
        return self._conversations.get(conversation_id)

    async def get_history(self, conversation_id: str, limit: int = 10) -> List[ChatMessage]:
        """Most recent messages of a conversation, oldest first."""
        context = self._conversations.get(conversation_id)
        if context is None:
            return []
        return context.recent_messages(limit)

    # =========================================================================
    # EXECUTIONS
    # =========================================================================

    def admits(self, execution: ToolExecution) -> bool:
        """The confidence gate: success and confidence at or above the gate."""
        return execution.success and execution.confidence >= self._config.execution_confidence_gate

    async def store_execution(self, conversation_id: str, execution: ToolExecution) -> bool:
        """
        Persist an execution if it passes the gate.

        Returns:
            True if the execution was admitted and written.
        """
        if not self.admits(execution):
            logger.debug(
                f"Execution {execution.id} of {execution.tool_name} not stored "
                f"(success={execution.success}, confidence={execution.confidence})"
            )
            return False

        context = self._get_or_create(conversation_id)
        context.tool_executions.append(execution)
        context.last_updated_at = datetime.utcnow()

        try:
            await self._backend.add(conversation_id, execution)
        except Exception as e:
            logger.warning(f"Similarity backend unavailable, execution {execution.id} not indexed: {e}")
            return False

        logger.info(
            f"Stored execution {execution.id} of {execution.tool_name} "
            f"with confidence {execution.confidence:.1f}"
        )
        return True

    async def find_similar_scored(
        self,
        tool_name: str,
        image_analysis: ImageAnalysis,
        limit: int = 5,
    ) -> List[Tuple[ToolExecution, float]]:
        """
        Successful past executions of tool_name on similar images, with
        their 0-100 similarity, most similar first.

        Returns an empty list in degraded mode, on backend errors, and for
        fallback analyses, whose zero measurements match nothing real.
        """
        if limit <= 0 or image_analysis.is_fallback or not self._backend.available:
            return []

        try:
            results = await self._backend.query(
                tool_name,
                image_analysis,
                limit,
                self._config.similarity_weights,
            )
        except Exception as e:
            logger.warning(f"Similarity lookup for {tool_name} failed, returning no history: {e}")
            return []

        return [(e, score) for e, score in results if e.success]

    async def find_similar(
        self,
        tool_name: str,
        image_analysis: ImageAnalysis,
        limit: int = 5,
    ) -> List[ToolExecution]:
        scored = await self.find_similar_scored(tool_name, image_analysis, limit)
        return [execution for execution, _ in scored]

    # =========================================================================
    # MAINTENANCE
    # =========================================================================

    async def prune(self, keep: Optional[int] = None) -> int:
        """
        Drop the least recently updated conversations beyond keep.

        Returns:
            Number of conversations removed.
        """
        keep = self._config.retention if keep is None else max(0, keep)
        if len(self._conversations) <= keep:
            return 0

        # Equal timestamps fall back to insertion order, newest first
        ordered = sorted(
            enumerate(self._conversations.values()),
            key=lambda pair: (pair[1].last_updated_at, pair[0]),
            reverse=True,
        )
        dropped = [c.conversation_id for _, c in ordered[keep:]]
        for conversation_id in dropped:
            del self._conversations[conversation_id]

        try:
            await self._backend.remove_conversations(dropped)
        except Exception as e:
            logger.warning(f"Failed to prune executions from similarity backend: {e}")

        logger.info(f"Pruned {len(dropped)} conversations, kept {keep}")
        return len(dropped)

    async def stats(self) -> ContextStats:
        try:
            total, successful = await self._backend.counts()
        except Exception as e:
            logger.warning(f"Similarity backend stats unavailable: {e}")
            total, successful = 0, 0

        return ContextStats(
            conversations=len(self._conversations),
            tool_executions=total,
            successful_executions=successful,
            similarity_backend=self._backend.name,
            similarity_available=self._backend.available,
        )

    async def clear(self) -> None:
        """Remove all conversations and executions."""
        self._conversations.clear()
        try:
            await self._backend.clear()
        except Exception as e:
            logger.warning(f"Failed to clear similarity backend: {e}")


def analysis_to_search_text(analysis: ImageAnalysis) -> str:
    """Flatten an analysis into a short text description for text search."""
    parts = [
        f"Dimensions: {analysis.width}x{analysis.height}",
        f"Aspect ratio: {analysis.aspect_ratio}",
        f"Format: {analysis.format}",
        f"Transparency: {'yes' if analysis.has_transparency else 'no'}",
        f"Colors: {analysis.unique_color_count}",
        f"Sharpness: {analysis.sharpness_score:g}",
        f"Noise: {analysis.noise_level:g}",
        f"Print ready: {'yes' if analysis.is_print_ready else 'no'}",
    ]
    if analysis.dominant_colors:
        parts.append("Dominant colors: " + ", ".join(c.hex for c in analysis.dominant_colors[:3]))
    return "; ".join(parts)
