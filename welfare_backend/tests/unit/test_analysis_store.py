import pytest
from sqlalchemy import select

from welfare_backend.models import WelfareAnalysis
from welfare_backend.services.analysis_store import AnalysisStore, validate_analysis
from welfare_backend.services.errors import ValidationError


@pytest.mark.asyncio
async def test_first_save_creates_record_with_equal_timestamps(db_session, make_analysis):
    store = AnalysisStore(db_session)

    result = await store.save(make_analysis("conv-1", analysis_id="analysis-1"))

    assert result["success"] is True
    assert result["analysis_id"] == "analysis-1"
    assert result["message"] == "Analysis created successfully"

    fetched = (await store.fetch("conv-1"))["analysis"]
    assert fetched["created_at"] == fetched["last_updated"]
    assert fetched["last_updated"] == result["saved_at"]
    assert fetched["tags"] == "distress,conscious"
    assert fetched["preference_alignment"] == 8


@pytest.mark.asyncio
async def test_second_save_for_same_conversation_upserts(db_session, make_analysis):
    store = AnalysisStore(db_session)
    await store.save(make_analysis("conv-1", analysis_id="analysis-1"))
    first = (await store.fetch("conv-1"))["analysis"]

    result = await store.save(make_analysis(
        "conv-1",
        analysis_id="analysis-2",
        preference_alignment=3,
        constraint_conflicts="Unclear",
        tags=["introspective"],
        notes="Revised after second read",
        analyst_name="Dr. Jones",
    ))
    second = (await store.fetch("conv-1"))["analysis"]

    rows = (await db_session.execute(select(WelfareAnalysis))).scalars().all()
    assert len(rows) == 1

    assert result["message"] == "Analysis updated successfully"
    assert result["analysis_id"] == "analysis-1"
    assert second["preference_alignment"] == 3
    assert second["constraint_conflicts"] == "Unclear"
    assert second["tags"] == "introspective"
    assert second["notes"] == "Revised after second read"
    assert second["analyst_name"] == "Dr. Jones"
    assert second["created_at"] == first["created_at"]
    assert second["last_updated"] > first["last_updated"]


@pytest.mark.asyncio
async def test_tags_are_deduplicated_before_persisting(db_session, make_analysis):
    store = AnalysisStore(db_session)
    await store.save(make_analysis("conv-1", tags="distress, distress ,conscious,, "))

    row = (await db_session.execute(select(WelfareAnalysis))).scalar_one()
    assert row.tags == "distress,conscious"


@pytest.mark.asyncio
async def test_arbitrary_tags_are_accepted(db_session, make_analysis):
    store = AnalysisStore(db_session)
    await store.save(make_analysis("conv-1", tags="not-in-the-predefined-list"))

    fetched = (await store.fetch("conv-1"))["analysis"]
    assert fetched["tags"] == "not-in-the-predefined-list"


@pytest.mark.asyncio
async def test_fetch_missing_analysis_is_success_with_none(db_session):
    store = AnalysisStore(db_session)
    assert await store.fetch("conv-unknown") == {"success": True, "analysis": None}


@pytest.mark.asyncio
async def test_exists_reports_analysis_id(db_session, make_analysis):
    store = AnalysisStore(db_session)
    assert await store.exists("conv-1") == {"success": True, "exists": False}

    await store.save(make_analysis("conv-1", analysis_id="analysis-1"))
    assert await store.exists("conv-1") == {"success": True, "exists": True, "analysis_id": "analysis-1"}


@pytest.mark.asyncio
async def test_delete_is_physical(db_session, make_analysis):
    store = AnalysisStore(db_session)
    await store.save(make_analysis("conv-1", analysis_id="analysis-1"))

    result = await store.delete("analysis-1")
    assert result["success"] is True

    rows = (await db_session.execute(select(WelfareAnalysis))).scalars().all()
    assert rows == []
    assert (await store.exists("conv-1"))["exists"] is False


@pytest.mark.asyncio
async def test_delete_unknown_analysis_reports_failure(db_session):
    store = AnalysisStore(db_session)
    result = await store.delete("analysis-missing")
    assert result["success"] is False
    assert "not found" in result["message"]


@pytest.mark.asyncio
async def test_reusing_analysis_id_for_another_conversation_is_rejected(db_session, make_analysis):
    store = AnalysisStore(db_session)
    await store.save(make_analysis("conv-1", analysis_id="analysis-shared"))

    with pytest.raises(ValidationError):
        await store.save(make_analysis("conv-2", analysis_id="analysis-shared"))

    assert (await store.exists("conv-2"))["exists"] is False
    assert (await store.exists("conv-1"))["analysis_id"] == "analysis-shared"


@pytest.mark.asyncio
async def test_list_predefined_tags(db_session):
    store = AnalysisStore(db_session)
    result = await store.list_predefined_tags()
    assert result == {"success": True, "tags": ["distress", "conscious", "introspective"]}


@pytest.mark.asyncio
@pytest.mark.parametrize("field", ["preference_alignment", "autonomy_level", "authenticity"])
@pytest.mark.parametrize("score", [0, 11])
async def test_out_of_range_scores_are_rejected_without_writing(db_session, make_analysis, field, score):
    store = AnalysisStore(db_session)

    with pytest.raises(ValidationError) as exc:
        await store.save(make_analysis("conv-1", **{field: score}))

    assert "between 1 and 10" in str(exc.value)
    assert (await store.exists("conv-1"))["exists"] is False


@pytest.mark.asyncio
async def test_rejected_upsert_keeps_previous_record(db_session, make_analysis):
    store = AnalysisStore(db_session)
    await store.save(make_analysis("conv-1", notes="original"))

    with pytest.raises(ValidationError):
        await store.save(make_analysis("conv-1", notes="x" * 5001))

    fetched = (await store.fetch("conv-1"))["analysis"]
    assert fetched["notes"] == "original"


@pytest.mark.parametrize(
    "overrides, field",
    [
        ({"analyst_name": ""}, "analystName"),
        ({"analyst_name": "   "}, "analystName"),
        ({"constraint_conflicts": "Maybe"}, "constraintConflicts"),
        ({"constraint_conflicts": None}, "constraintConflicts"),
        ({"notes": "x" * 5001}, "notes"),
        ({"authenticity": None}, "authenticity"),
        ({"autonomy_level": 7.5}, "autonomyLevel"),
        ({"conversation_id": ""}, "conversationId"),
        ({"analysis_id": "  "}, "analysisId"),
    ],
)
def test_validate_analysis_names_the_violated_field(make_analysis, overrides, field):
    with pytest.raises(ValidationError) as exc:
        validate_analysis(make_analysis(**overrides))
    assert exc.value.field == field


def test_validate_analysis_accepts_boundaries(make_analysis):
    values = validate_analysis(make_analysis(
        preference_alignment=1,
        autonomy_level=10,
        authenticity=10,
        notes="x" * 5000,
        tags=None,
    ))
    assert values["preference_alignment"] == 1
    assert values["tags"] == ""
    assert len(values["notes"]) == 5000


@pytest.mark.asyncio
async def test_fetch_includes_score_averages_across_all_analyses(db_session, make_analysis):
    store = AnalysisStore(db_session)
    await store.save(make_analysis("conv-1", preference_alignment=8, autonomy_level=7, authenticity=9))
    await store.save(make_analysis("conv-2", preference_alignment=3, autonomy_level=4, authenticity=2))
    await store.save(make_analysis("conv-3", preference_alignment=1, autonomy_level=10, authenticity=6))

    fetched = (await store.fetch("conv-1"))["analysis"]

    assert fetched["preference_alignment"] == 8
    assert fetched["avg_preference_alignment"] == 4.0
    assert fetched["avg_autonomy_level"] == 7.0
    assert fetched["avg_authenticity"] == pytest.approx(5.67)
