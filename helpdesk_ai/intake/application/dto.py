"""
Intake Application DTOs
=======================

Data Transfer Objects for the intake API layer.

Pydantic models for request/response validation.
"""

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from helpdesk_ai.intake.domain.entities import EngineAction, UserContext


# ========== Type Aliases for Literals ==========
FeedbackSignalStr = Literal["helped", "notHelped", "approve", "edit", "cancel"]
ActionTypeStr = Literal["answer", "question", "ticketConfirmation", "ticketCreated"]


# ========== Request DTOs ==========

class RequesterInfo(BaseModel):
    """Requester attributes captured when a conversation starts."""
    requester_id: Optional[str] = Field(None, max_length=100)
    name: Optional[str] = Field(None, max_length=200)
    city: Optional[str] = Field(None, max_length=100)
    institution: Optional[str] = Field(None, max_length=200)
    position: Optional[str] = Field(None, max_length=200)
    equipment_summary: Optional[str] = Field(None, max_length=1000)

    def to_domain(self) -> UserContext:
        return UserContext(**self.model_dump())


class MessageRequest(BaseModel):
    """Request model for one chat message."""
    text: Optional[str] = Field(None, max_length=4000, description="Message text")
    photo_ref: Optional[str] = Field(None, max_length=500, description="Transport reference of a photo")
    caption: Optional[str] = Field(None, max_length=1000, description="Photo caption")
    requester: Optional[RequesterInfo] = None

    @model_validator(mode="after")
    def require_content(self) -> "MessageRequest":
        """Either text or a photo must be present."""
        if not (self.text and self.text.strip()) and not self.photo_ref:
            raise ValueError("Either text or photo_ref is required")
        return self


class FeedbackRequest(BaseModel):
    """Request model for a button signal."""
    signal: FeedbackSignalStr


# ========== Response DTOs ==========

class KnowledgeArticleInfo(BaseModel):
    id: str
    title: str
    body: str
    attachments: List[str] = []


class SuggestionInfo(BaseModel):
    id: str
    title: str
    score: float = Field(..., ge=0.0, le=1.0)


class TicketDraftInfo(BaseModel):
    title: str
    description: str
    category: str
    priority: str
    environment_clues: Dict[str, str] = {}
    attachments: List[str] = []


class EngineActionResponse(BaseModel):
    """Response model for both intake operations."""
    action: ActionTypeStr
    session_id: str
    state: str
    text: str
    knowledge_article: Optional[KnowledgeArticleInfo] = None
    suggestions: List[SuggestionInfo] = []
    draft: Optional[TicketDraftInfo] = None
    ticket_id: Optional[str] = None
    existing_ticket_id: Optional[str] = None
    manual_fallback: bool = False

    @classmethod
    def from_domain(cls, action: EngineAction) -> "EngineActionResponse":
        article = action.knowledge_article
        return cls(
            action=action.action.value,
            session_id=action.session_id,
            state=action.state.value,
            text=action.text,
            knowledge_article=KnowledgeArticleInfo(
                id=article.id,
                title=article.title,
                body=article.body,
                attachments=list(article.attachments),
            ) if article else None,
            suggestions=[
                SuggestionInfo(id=s.id, title=s.title, score=s.score) for s in action.suggestions
            ],
            draft=TicketDraftInfo(**action.draft.to_dict()) if action.draft else None,
            ticket_id=action.ticket_id,
            existing_ticket_id=action.existing_ticket_id,
            manual_fallback=action.manual_fallback,
        )
