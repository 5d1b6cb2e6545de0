"""Shared Pydantic request/response models used across the routers.

Field names are snake_case in Python and camelCase on the wire.
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from welfare_backend.config import DEFAULT_USER_ID


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Messages ---

class TokenUsage(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    input_tokens: int = Field(ge=0)
    output_tokens: int = Field(ge=0)


class ChatMessage(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    role: Literal["user", "assistant"]
    content: str
    thinking: Optional[str] = None
    tokens: Optional[TokenUsage] = None


# --- Conversations ---

class SaveConversationRequest(CamelModel):
    conversation_id: str = Field(min_length=1)
    user_id: str = DEFAULT_USER_ID
    messages: Union[str, List[Any]]  # structured list or its JSON encoding
    context_enabled: bool = False


class SaveConversationResponse(CamelModel):
    success: bool


class ConversationSummary(CamelModel):
    conversation_id: str
    created_at: datetime
    message_count: int
    context_enabled: bool


class ConversationDetail(CamelModel):
    conversation_id: str
    user_id: str
    messages: List[Dict[str, Any]]
    message_count: int
    context_enabled: bool
    deleted: bool
    created_at: datetime
    updated_at: datetime


class ConversationResponse(CamelModel):
    success: bool
    conversation: ConversationDetail


class SoftDeleteResponse(CamelModel):
    success: bool


class SearchConversationsRequest(CamelModel):
    user_id: str = DEFAULT_USER_ID
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    tags: Optional[List[str]] = None
    context_enabled: Optional[bool] = None


class SearchConversationsResponse(CamelModel):
    success: bool = True
    conversations: List[ConversationSummary]
    count: int


# --- Welfare analyses ---

class SaveAnalysisRequest(CamelModel):
    conversation_id: str
    analysis_id: str
    user_id: str = DEFAULT_USER_ID
    analyst_name: str = ""
    preference_alignment: Optional[int] = None
    autonomy_level: Optional[int] = None
    authenticity: Optional[int] = None
    constraint_conflicts: Optional[str] = None
    tags: Union[str, List[str], None] = ""
    notes: Optional[str] = ""


class SaveAnalysisResponse(CamelModel):
    success: bool
    analysis_id: str
    saved_at: datetime
    message: str


class AnalysisRecord(CamelModel):
    analysis_id: str
    conversation_id: str
    user_id: str
    analyst_name: str
    preference_alignment: int
    autonomy_level: int
    authenticity: int
    constraint_conflicts: str
    tags: str
    notes: str
    created_at: datetime
    last_updated: datetime
    avg_preference_alignment: float
    avg_autonomy_level: float
    avg_authenticity: float


class AnalysisResponse(CamelModel):
    success: bool
    analysis: Optional[AnalysisRecord] = None


class AnalysisExistsResponse(CamelModel):
    success: bool
    exists: bool
    analysis_id: Optional[str] = None


class DeleteAnalysisResponse(CamelModel):
    success: bool
    message: str


class PredefinedTagsResponse(CamelModel):
    success: bool
    tags: List[str]


class SummaryStatsResponse(CamelModel):
    success: bool
    total_analyses: int
    avg_preference_alignment: float
    avg_autonomy_level: float
    avg_authenticity: float
    unique_tags_count: int


class TagUsageResponse(CamelModel):
    success: bool
    tag_usage: Dict[str, int]
