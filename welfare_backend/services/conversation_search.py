"""
Filtered conversation search.

Tags belong to welfare analyses, not to conversations, so a tag filter is a
left join from conversations to ``welfare_analyses`` followed by a set
intersection on the decoded tag list.
"""

import logging
from datetime import date, datetime, time, timezone
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from welfare_backend.models import Conversation, WelfareAnalysis
from welfare_backend.services.conversation_store import serialize_summary
from welfare_backend.services.errors import StorageUnavailableError, ValidationError
from welfare_backend.services.tag_codec import parse_tags, tag_set

logger = logging.getLogger(__name__)

DateBound = Union[datetime, date, str, None]


def parse_date_bound(value: DateBound, field_name: str, end_of_day: bool = False) -> Optional[datetime]:
    """
    Coerce a date filter into an aware UTC datetime.

    A bare date (``2025-01-31``) means the start of that day, or the last
    instant of it when ``end_of_day`` is set, so both bounds stay inclusive.
    Naive datetimes are taken as UTC.
    """
    if value is None or value == "":
        return None

    if isinstance(value, str):
        text = value.strip()
        try:
            if len(text) == 10:
                value = date.fromisoformat(text)
            else:
                value = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError as exc:
            raise ValidationError(f"{field_name} is not an ISO date: {value!r}", field=field_name) from exc

    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    if isinstance(value, date):
        return datetime.combine(value, time.max if end_of_day else time.min, tzinfo=timezone.utc)

    raise ValidationError(f"{field_name} must be a date or datetime", field=field_name)


class ConversationSearchIndex:
    """Search a user's conversations by date range, context flag and analysis tags."""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def search(
        self,
        user_id: str,
        date_from: DateBound = None,
        date_to: DateBound = None,
        tags: Optional[Iterable[str]] = None,
        context_enabled: Optional[bool] = None,
    ) -> Dict[str, Any]:
        """
        Return ``{"conversations": [...], "count": n}`` for matching conversations.

        Soft-deleted conversations never match. Multiple tags combine with OR:
        a conversation matches when its analysis carries any of them, and a
        conversation without an analysis never matches a tag filter. Results
        are ordered like the history listing, newest first.
        """
        lower = parse_date_bound(date_from, "dateFrom")
        upper = parse_date_bound(date_to, "dateTo", end_of_day=True)
        wanted_tags = set(parse_tags(tags)) if tags is not None else set()

        query = (
            select(Conversation, WelfareAnalysis.tags)
            .outerjoin(WelfareAnalysis, WelfareAnalysis.conversation_id == Conversation.conversation_id)
            .where(Conversation.user_id == user_id)
            .where(Conversation.deleted.is_(False))
            .order_by(Conversation.created_at.desc(), Conversation.conversation_id)
        )
        if lower is not None:
            query = query.where(Conversation.created_at >= lower)
        if upper is not None:
            query = query.where(Conversation.created_at <= upper)
        if context_enabled is not None:
            query = query.where(Conversation.context_enabled.is_(bool(context_enabled)))
        if wanted_tags:
            query = query.where(WelfareAnalysis.analysis_id.is_not(None))

        try:
            result = await self.db.execute(query)
            rows = result.all()
        except SQLAlchemyError as exc:
            logger.exception("Conversation search failed for user %s", user_id)
            raise StorageUnavailableError(f"Search failed: {exc}") from exc

        conversations: List[Dict[str, Any]] = []
        for conversation, analysis_tags in rows:
            if wanted_tags and not (tag_set(analysis_tags) & wanted_tags):
                continue
            conversations.append(serialize_summary(conversation))

        logger.info(
            "Search for user %s (from=%s, to=%s, tags=%s, context=%s) matched %d conversations",
            user_id, lower, upper, sorted(wanted_tags) or None, context_enabled, len(conversations),
        )
        return {"conversations": conversations, "count": len(conversations)}
