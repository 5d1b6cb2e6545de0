"""
Welfare analysis persistence.

One analysis per conversation: saves upsert on ``conversation_id`` while the
record keeps its own ``analysis_id``. Unlike conversations, analyses are
physically deleted.
"""

import logging
from typing import Any, Dict, List, Mapping

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from welfare_backend.config import (
    AVERAGE_DECIMALS,
    CONSTRAINT_CONFLICT_VALUES,
    MAX_NOTES_LENGTH,
    MAX_SCORE,
    MIN_SCORE,
    PREDEFINED_TAGS,
)
from welfare_backend.models import WelfareAnalysis
from welfare_backend.services.errors import StorageUnavailableError, ValidationError
from welfare_backend.services.tag_codec import encode_tags
from welfare_backend.services.timestamps import ensure_utc, next_timestamp, utcnow

logger = logging.getLogger(__name__)

SCORE_FIELDS = {
    "preference_alignment": "preferenceAlignment",
    "autonomy_level": "autonomyLevel",
    "authenticity": "authenticity",
}


# ---------------------------------------------------------------------------
# Validation / serialization
# ---------------------------------------------------------------------------

def validate_analysis(record: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Check an analysis payload and return the column values to persist.

    Raises:
        ValidationError: naming the first violated constraint
    """
    for field, wire_name in (("conversation_id", "conversationId"), ("analysis_id", "analysisId")):
        value = record.get(field)
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"{wire_name} is required", field=wire_name)

    analyst_name = record.get("analyst_name")
    if not isinstance(analyst_name, str) or not analyst_name.strip():
        raise ValidationError("analystName must not be empty", field="analystName")

    scores = {}
    for field, wire_name in SCORE_FIELDS.items():
        value = record.get(field)
        if value is None:
            raise ValidationError(f"{wire_name} is required", field=wire_name)
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(f"{wire_name} must be an integer", field=wire_name)
        if not MIN_SCORE <= value <= MAX_SCORE:
            raise ValidationError(
                f"{wire_name} must be between {MIN_SCORE} and {MAX_SCORE}, got {value}",
                field=wire_name,
            )
        scores[field] = value

    constraint_conflicts = record.get("constraint_conflicts")
    if constraint_conflicts not in CONSTRAINT_CONFLICT_VALUES:
        raise ValidationError(
            f"constraintConflicts must be one of {', '.join(CONSTRAINT_CONFLICT_VALUES)}",
            field="constraintConflicts",
        )

    notes = record.get("notes") or ""
    if not isinstance(notes, str):
        raise ValidationError("notes must be text", field="notes")
    if len(notes) > MAX_NOTES_LENGTH:
        raise ValidationError(
            f"notes must be at most {MAX_NOTES_LENGTH} characters, got {len(notes)}",
            field="notes",
        )

    user_id = record.get("user_id")
    if not isinstance(user_id, str) or not user_id.strip():
        raise ValidationError("userId is required", field="userId")

    return {
        "user_id": user_id,
        "analyst_name": analyst_name.strip(),
        "constraint_conflicts": constraint_conflicts,
        "tags": encode_tags(record.get("tags")),
        "notes": notes,
        **scores,
    }


def serialize_analysis(analysis: WelfareAnalysis) -> Dict[str, Any]:
    return {
        "analysis_id": analysis.analysis_id,
        "conversation_id": analysis.conversation_id,
        "user_id": analysis.user_id,
        "analyst_name": analysis.analyst_name,
        "preference_alignment": analysis.preference_alignment,
        "autonomy_level": analysis.autonomy_level,
        "authenticity": analysis.authenticity,
        "constraint_conflicts": analysis.constraint_conflicts,
        "tags": analysis.tags or "",
        "notes": analysis.notes or "",
        "created_at": ensure_utc(analysis.created_at),
        "last_updated": ensure_utc(analysis.last_updated),
    }


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class AnalysisStore:
    """CRUD and upsert for welfare analyses, one per conversation."""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def save(self, record: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Insert or update the analysis for ``record["conversation_id"]``.

        On update every field is overwritten, ``last_updated`` moves forward
        and ``created_at`` and the original ``analysis_id`` are kept.

        Args:
            record: snake_case analysis fields (tags as a comma-joined
                string or a list)

        Returns:
            ``{"success", "analysis_id", "saved_at", "message"}``

        Raises:
            ValidationError: invalid payload; nothing is written
            StorageUnavailableError: the database write failed
        """
        values = validate_analysis(record)
        conversation_id = record["conversation_id"]

        try:
            analysis, created = await self._upsert(conversation_id, record["analysis_id"], values)
        except IntegrityError:
            # Another writer inserted first; last write wins, so update theirs.
            await self.db.rollback()
            logger.info("Concurrent insert for analysis of %s, retrying as update", conversation_id)
            try:
                analysis, created = await self._upsert(conversation_id, record["analysis_id"], values)
            except IntegrityError as exc:
                await self.db.rollback()
                raise ValidationError(
                    f"analysisId {record['analysis_id']} is already used by another conversation",
                    field="analysisId",
                ) from exc
            except SQLAlchemyError as exc:
                await self.db.rollback()
                logger.exception("Failed to save analysis for conversation %s", conversation_id)
                raise StorageUnavailableError(f"Failed to save analysis: {exc}") from exc
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.exception("Failed to save analysis for conversation %s", conversation_id)
            raise StorageUnavailableError(f"Failed to save analysis: {exc}") from exc

        message = "Analysis created successfully" if created else "Analysis updated successfully"
        logger.info("%s: %s (conversation %s)", message, analysis.analysis_id, conversation_id)
        return {
            "success": True,
            "analysis_id": analysis.analysis_id,
            "saved_at": ensure_utc(analysis.last_updated),
            "message": message,
        }

    async def _upsert(self, conversation_id: str, analysis_id: str, values: Dict[str, Any]):
        result = await self.db.execute(
            select(WelfareAnalysis).where(WelfareAnalysis.conversation_id == conversation_id)
        )
        analysis = result.scalar_one_or_none()
        created = analysis is None

        if created:
            clash = await self.db.get(WelfareAnalysis, analysis_id)
            if clash is not None:
                raise ValidationError(
                    f"analysisId {analysis_id} is already used by conversation {clash.conversation_id}",
                    field="analysisId",
                )
            now = utcnow()
            analysis = WelfareAnalysis(
                analysis_id=analysis_id,
                conversation_id=conversation_id,
                created_at=now,
                last_updated=now,
                **values,
            )
            self.db.add(analysis)
        else:
            for field, value in values.items():
                setattr(analysis, field, value)
            analysis.last_updated = next_timestamp(analysis.last_updated)

        await self.db.commit()
        return analysis, created

    async def fetch(self, conversation_id: str) -> Dict[str, Any]:
        """
        Return ``{"success": True, "analysis": dict | None}``; absence is not an error.

        A found analysis also carries ``avg_*`` fields: the mean of each score
        across every stored analysis, for comparison with this one.
        """
        try:
            result = await self.db.execute(
                select(WelfareAnalysis).where(WelfareAnalysis.conversation_id == conversation_id)
            )
            analysis = result.scalar_one_or_none()
            if analysis is None:
                return {"success": True, "analysis": None}
            averages = await self._score_averages()
        except SQLAlchemyError as exc:
            logger.exception("Failed to load analysis for conversation %s", conversation_id)
            raise StorageUnavailableError(f"Failed to load analysis: {exc}") from exc

        return {"success": True, "analysis": {**serialize_analysis(analysis), **averages}}

    async def _score_averages(self) -> Dict[str, float]:
        result = await self.db.execute(
            select(*(func.avg(getattr(WelfareAnalysis, field)) for field in SCORE_FIELDS))
        )
        row = result.one()
        return {
            f"avg_{field}": round(float(value), AVERAGE_DECIMALS) if value is not None else 0.0
            for field, value in zip(SCORE_FIELDS, row)
        }

    async def exists(self, conversation_id: str) -> Dict[str, Any]:
        """Probe for an analysis by selecting only its id."""
        try:
            result = await self.db.execute(
                select(WelfareAnalysis.analysis_id).where(WelfareAnalysis.conversation_id == conversation_id)
            )
            analysis_id = result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            logger.exception("Failed to check analysis for conversation %s", conversation_id)
            raise StorageUnavailableError(f"Failed to check analysis: {exc}") from exc

        if analysis_id is None:
            return {"success": True, "exists": False}
        return {"success": True, "exists": True, "analysis_id": analysis_id}

    async def delete(self, analysis_id: str) -> Dict[str, Any]:
        """Permanently remove an analysis by its ``analysis_id``."""
        try:
            result = await self.db.execute(
                delete(WelfareAnalysis).where(WelfareAnalysis.analysis_id == analysis_id)
            )
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.exception("Failed to delete analysis %s", analysis_id)
            raise StorageUnavailableError(f"Failed to delete analysis: {exc}") from exc

        if not result.rowcount:
            logger.info("Delete requested for unknown analysis %s", analysis_id)
            return {"success": False, "message": f"Analysis {analysis_id} not found"}

        logger.info("Deleted analysis %s", analysis_id)
        return {"success": True, "message": f"Analysis {analysis_id} deleted successfully"}

    async def list_predefined_tags(self) -> Dict[str, Any]:
        return {"success": True, "tags": list(PREDEFINED_TAGS)}

    async def fetch_all(self) -> List[WelfareAnalysis]:
        """Every stored analysis, oldest first. Used by the aggregator."""
        try:
            result = await self.db.execute(
                select(WelfareAnalysis).order_by(WelfareAnalysis.created_at)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as exc:
            logger.exception("Failed to scan welfare analyses")
            raise StorageUnavailableError(f"Failed to load analyses: {exc}") from exc
