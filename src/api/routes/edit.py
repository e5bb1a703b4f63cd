"""
Edit API routes.

Endpoints:
- POST /edit/orchestrate - Run a full editing turn
- POST /edit/plan - Propose and validate tool calls without executing them
- POST /edit/validate - Validate one tool call against an image
- GET /edit/conversations/{conversation_id} - Get a stored conversation
- GET /edit/tools - List the tool schemas offered to the model
"""

from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException, Request

from src.utils import get_logger
from src.utils.logger import set_correlation_context
from src.models.schemas import (
    ConversationResponse,
    EditRequest,
    EditResponse,
    PlanResponse,
    ToolListResponse,
    ValidateRequest,
    ValidateResponse,
)
from design_grounding.agents.edit_orchestrator_agent import EditOrchestratorAgent
from design_grounding.core.message import ChatMessage
from design_grounding.models.orchestration import (
    EditingHistory,
    EditingOperation,
    OrchestratorRequest,
    UserContext,
)
from design_grounding.tools.registry import get_registry

logger = get_logger(__name__)
router = APIRouter()


def get_orchestrator(request: Request) -> EditOrchestratorAgent:
    """The orchestrator created by the application lifespan."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Orchestrator is not initialized")
    return orchestrator


def to_orchestrator_request(body: EditRequest) -> OrchestratorRequest:
    """Convert the API body into the orchestrator's request object."""
    history = None
    if body.conversation_history is not None:
        history = [ChatMessage.from_dict(m.model_dump()) for m in body.conversation_history]

    editing_history = None
    if body.editing_history is not None:
        editing_history = EditingHistory(
            operations=[EditingOperation(**op.model_dump()) for op in body.editing_history.operations],
            current_state_index=body.editing_history.current_state_index,
        )

    user_context = UserContext(**body.user_context.model_dump()) if body.user_context else None

    return OrchestratorRequest(
        message=body.message,
        image_source=body.image_url,
        conversation_id=body.conversation_id or f"conv-{uuid4().hex[:12]}",
        conversation_history=history,
        editing_history=editing_history,
        user_context=user_context,
    )


@router.post("/orchestrate", response_model=EditResponse)
async def orchestrate(
    body: EditRequest,
    orchestrator: EditOrchestratorAgent = Depends(get_orchestrator),
) -> EditResponse:
    """Run one grounded editing turn."""
    request = to_orchestrator_request(body)
    set_correlation_context(conversation_id=request.conversation_id)
    logger.info("edit.orchestrate.request", message_length=len(body.message))

    response = await orchestrator.process(request)
    data = response.to_dict()
    data.pop("timestamp", None)
    return EditResponse(**data)


@router.post("/plan", response_model=PlanResponse)
async def plan(
    body: EditRequest,
    orchestrator: EditOrchestratorAgent = Depends(get_orchestrator),
) -> PlanResponse:
    """Propose and validate tool calls; nothing is executed."""
    request = to_orchestrator_request(body)
    set_correlation_context(conversation_id=request.conversation_id)
    logger.info("edit.plan.request", message_length=len(body.message))

    result = await orchestrator.plan(request)
    return PlanResponse(conversation_id=request.conversation_id, **result.to_dict())


@router.post("/validate", response_model=ValidateResponse)
async def validate(
    body: ValidateRequest,
    orchestrator: EditOrchestratorAgent = Depends(get_orchestrator),
) -> ValidateResponse:
    """Validate one tool call against the measured image."""
    analysis_service = orchestrator.analysis_service
    image = await analysis_service.load(body.image_url)
    analysis = await analysis_service.analyze(image)

    result = await orchestrator.validation_service.validate(
        body.tool_name, body.parameters, analysis, image
    )
    logger.info(
        "edit.validate.complete",
        tool=body.tool_name,
        is_valid=result.is_valid,
        confidence=result.confidence,
    )
    return ValidateResponse(**result.to_dict(), image_analysis=analysis.to_dict())


@router.get("/conversations/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(
    conversation_id: str,
    orchestrator: EditOrchestratorAgent = Depends(get_orchestrator),
) -> ConversationResponse:
    """Get a stored conversation."""
    context = await orchestrator.get_conversation(conversation_id)
    if context is None:
        raise HTTPException(status_code=404, detail=f"Conversation {conversation_id} not found")
    return ConversationResponse(**context.to_dict())


@router.get("/tools", response_model=ToolListResponse)
async def list_tools() -> ToolListResponse:
    """Tool schemas in the function-calling format sent to the model."""
    tools = get_registry().get_openai_schemas()
    return ToolListResponse(tools=tools, count=len(tools))
