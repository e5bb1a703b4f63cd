"""
Services layer for the grounding pipeline.

One service per pipeline component, each with injectable collaborators:
- Image analysis (ground truth measured from pixels)
- Parameter validation against that ground truth
- Result validation of tool output
- Context and learning storage with pluggable similarity backends
- Failure analysis, prompt building and clarification
"""
from design_grounding.services.image_analysis_service import (
    ImageAnalysisService,
    aspect_ratio,
    format_analysis_summary,
)
from design_grounding.services.parameter_validation_service import ParameterValidationService
from design_grounding.services.result_validation_service import (
    ResultValidationService,
    format_validation_summary,
)
from design_grounding.services.similarity_backends import (
    SimilarityBackend,
    InMemorySimilarityBackend,
    NullSimilarityBackend,
    PgVectorSimilarityBackend,
    create_backend,
    similarity_score,
)
from design_grounding.services.context_store_service import (
    ContextStoreService,
    analysis_to_search_text,
)
from design_grounding.services.failure_analysis_service import FailureAnalysisService
from design_grounding.services.prompt_builder_service import PromptBuilderService
from design_grounding.services.clarification_service import ClarificationService, describe_call

__all__ = [
    # Image analysis
    "ImageAnalysisService",
    "aspect_ratio",
    "format_analysis_summary",
    # Validation
    "ParameterValidationService",
    "ResultValidationService",
    "format_validation_summary",
    # Context store
    "SimilarityBackend",
    "InMemorySimilarityBackend",
    "NullSimilarityBackend",
    "PgVectorSimilarityBackend",
    "create_backend",
    "similarity_score",
    "ContextStoreService",
    "analysis_to_search_text",
    # Orchestration support
    "FailureAnalysisService",
    "PromptBuilderService",
    "ClarificationService",
    "describe_call",
]
