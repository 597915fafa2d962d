"""
Intake Controllers (API Routes)
===============================

FastAPI routes for the conversation engine.

Controllers delegate to the engine held in application state; the chat
transport calls these once per incoming message or button press.
"""

from fastapi import APIRouter, HTTPException, Path, Request

from helpdesk_ai.intake.application import (
    ConversationEngine,
    EngineActionResponse,
    FeedbackRequest,
    MessageRequest,
)
from helpdesk_ai.intake.domain.entities import FeedbackSignal
from helpdesk_ai.shared.infrastructure.logging import get_context_logger

router = APIRouter(prefix="/intake", tags=["Conversational Intake"])


# ========== Example payloads for Swagger ==========

MESSAGE_REQUEST_EXAMPLE = {
    "text": "Не працює принтер у бухгалтерії",
    "requester": {
        "requester_id": "u-1024",
        "name": "Olena",
        "city": "Lviv",
        "institution": "School 12",
        "position": "Accountant",
        "equipment_summary": "HP LaserJet 1020, Windows 10 PC"
    }
}

ACTION_RESPONSE_EXAMPLE = {
    "action": "answer",
    "session_id": "chat-42",
    "state": "awaiting_tip_feedback",
    "text": "Спробуйте вимкнути принтер на 30 секунд і перевірити кабель USB. Чи допомогло?",
    "knowledge_article": None,
    "suggestions": [],
    "draft": None,
    "ticket_id": None,
    "existing_ticket_id": None,
    "manual_fallback": False
}


# ========== Dependencies ==========

def get_engine(request: Request) -> ConversationEngine:
    """Get the conversation engine from app state."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Conversation engine not initialized")
    return engine


def _correlation_id(request: Request):
    return getattr(request.state, "correlation_id", None)


# ========== Route Handlers ==========

@router.post(
    "/sessions/{session_id}/messages",
    response_model=EngineActionResponse,
    summary="Send one user message",
    description="""
    Feed one chat message (text and/or a photo reference) into the
    conversation for `session_id` and get back exactly one action:

    - **answer**: a knowledge-base article, quick fix or referral
    - **question**: a clarifying question
    - **ticketConfirmation**: a ticket draft awaiting approval
    - **ticketCreated**: the ticket was created

    The first message of a conversation may carry `requester` details;
    later values are ignored.
    """,
    responses={
        200: {"content": {"application/json": {"example": ACTION_RESPONSE_EXAMPLE}}},
        422: {"description": "Neither text nor photo_ref given"},
    },
    openapi_extra={"requestBody": {"content": {"application/json": {"example": MESSAGE_REQUEST_EXAMPLE}}}},
)
async def post_message(
    request: Request,
    body: MessageRequest,
    session_id: str = Path(..., min_length=1, max_length=100, description="Conversation id (chat id)"),
) -> EngineActionResponse:
    logger = get_context_logger(__name__, _correlation_id(request), session_id)
    engine = get_engine(request)

    action = await engine.handle_message(
        session_id,
        text=body.text,
        photo_ref=body.photo_ref,
        caption=body.caption,
        requester=body.requester.to_domain() if body.requester else None,
    )
    logger.info("Message handled", extra={"action": action.action.value, "state": action.state.value})
    return EngineActionResponse.from_domain(action)


@router.post(
    "/sessions/{session_id}/feedback",
    response_model=EngineActionResponse,
    summary="Send a button signal",
    description="""
    Signals: `helped`, `notHelped` (after a suggested fix), `approve`,
    `edit` (on a ticket draft) and `cancel` (any time).
    """,
    responses={200: {"content": {"application/json": {"example": ACTION_RESPONSE_EXAMPLE}}}},
)
async def post_feedback(
    request: Request,
    body: FeedbackRequest,
    session_id: str = Path(..., min_length=1, max_length=100, description="Conversation id (chat id)"),
) -> EngineActionResponse:
    logger = get_context_logger(__name__, _correlation_id(request), session_id)
    engine = get_engine(request)

    action = await engine.handle_feedback(session_id, FeedbackSignal(body.signal))
    logger.info(
        "Feedback handled",
        extra={"signal": body.signal, "action": action.action.value, "state": action.state.value}
    )
    return EngineActionResponse.from_domain(action)


intake_router = router
