import pytest

from aggregation import (
    NO_DATA, aggregate_state, classify_priority, compare_perspectives, cross_tabulate, filter_responses,
    frequency, identify_custom_fields, indicator_status, role_indicators,
)
from schemas import SurveyResponse

def _resp(role="student", course="1° Medio", letter="A", ts=1, extensions=None, **answers):
    return SurveyResponse(
        school_code="CSA123", survey_code="EAE123" if role == "student" else "EAE1234", role=role,
        course=course if role == "student" else None, letter=letter if role == "student" else None,
        timestamp=ts, answers=answers, extensions=extensions or {},
    )

def test_bullying_frequency_and_priority():
    responses = [_resp(bullyingProblem="Sí"), _resp(bullyingProblem="Sí"), _resp(bullyingProblem="No")]
    result = frequency(responses, "bullyingProblem")
    assert result.counts == {"Sí": 2, "No": 1}
    assert result.total == 3
    assert result.percentages == {"Sí": "66.7%", "No": "33.3%"}
    assert result.top_response == ("Sí", 2)
    assert classify_priority("bullyingProblem", result) == "high"

def test_frequency_counts_sum_to_total():
    values = ["De Acuerdo", "Muy de Acuerdo", "De Acuerdo", "", "En Desacuerdo", "De Acuerdo", "Neutral"]
    result = frequency([_resp(happyAtSchool=v) if v else _resp() for v in values], "happyAtSchool")
    assert sum(result.counts.values()) == result.total == 6
    total_pct = sum(float(p.rstrip("%")) for p in result.percentages.values())
    assert total_pct == pytest.approx(100, abs=0.1 * len(result.counts))

def test_frequency_empty_input():
    result = frequency([], "gender")
    assert result.total == 0
    assert result.percentages == {}
    assert result.top_response == (NO_DATA, 0)
    assert result.as_dict()["topResponse"] == {"value": NO_DATA, "count": 0}

def test_top_response_tie_keeps_first_seen():
    result = frequency([_resp(gender="Otro"), _resp(gender="Femenino")], "gender")
    assert result.top_response == ("Otro", 1)

def test_frequency_accepts_plain_records_and_extensions():
    assert frequency([{"gender": "Otro"}, {"gender": ""}], "gender").counts == {"Otro": 1}
    r = _resp(extensions={"custom_like": "Sí"})
    assert frequency([r], "custom_like").counts == {"Sí": 1}

def test_cross_tabulate_skips_missing_pairs():
    responses = [
        _resp(schoolSafety="De Acuerdo", generalExperience="Positiva"),
        _resp(schoolSafety="De Acuerdo", generalExperience="Positiva"),
        _resp(schoolSafety="En Desacuerdo"),
    ]
    assert cross_tabulate(responses, "schoolSafety", "generalExperience") == {"De Acuerdo": {"Positiva": 2}}

def test_filter_responses():
    responses = [_resp(course="1° Medio", letter="A"), _resp(course="2° Medio", letter="B"), _resp(role="teacher")]
    assert len(filter_responses(responses, role="student")) == 2
    assert len(filter_responses(responses, role="teacher")) == 1
    assert len(filter_responses(responses, course="2° Medio", letter="B")) == 1
    assert filter_responses(responses, survey_code="OTRO") == []

@pytest.mark.parametrize("field,values,expected", [
    ("stressFrequency", ["Constantemente"] * 4 + ["De vez en cuando"] * 6, "high"),
    ("stressFrequency", ["Constantemente"] * 3 + ["De vez en cuando"] * 7, "low"),
    ("schoolSafety", ["En Desacuerdo"] * 2 + ["Muy en Desacuerdo"] * 2 + ["De Acuerdo"] * 6, "high"),
    ("generalExperience", ["Negativa"] * 3 + ["Positiva"] * 7, "medium"),
    ("generalExperience", ["Negativa"] * 2 + ["Positiva"] * 8, "low"),
    ("offensiveNames", ["Sí"] + ["No"] * 9, "medium"),
    ("gender", ["Otro"] * 10, "low"),
])
def test_priority_thresholds(field, values, expected):
    result = frequency([_resp(**{field: v}) for v in values], field)
    assert classify_priority(field, result) == expected

def test_indicator_status_bands():
    good = [_resp(happyAtSchool="De Acuerdo")] * 7 + [_resp(happyAtSchool="En Desacuerdo")] * 3
    assert indicator_status(good, "happyAtSchool")["status"] == "good"
    crit = [_resp(bullyingProblem="Sí")] * 7 + [_resp(bullyingProblem="No")] * 3
    item = indicator_status(crit, "bullyingProblem", positive=False)
    assert item["status"] == "critical" and item["percentage"] == 30.0
    assert indicator_status([], "happyAtSchool")["status"] == "warning"

def test_role_indicators_use_role_subset():
    responses = [_resp(happyAtSchool="De Acuerdo"), _resp(role="teacher", teacherHappiness="De Acuerdo")]
    items = role_indicators(responses, "teacher")
    assert items[0]["field"] == "teacherHappiness" and items[0]["total"] == 1
    assert all("label" in i for i in items)

def test_compare_perspectives_needs_both_groups():
    students = [_resp(bullyingProblem="Sí"), _resp(bullyingProblem="No"), _resp()]
    teachers = [_resp(role="teacher", bullyingProblemTeacher="Sí")]
    assert compare_perspectives(students, []) == {}
    out = compare_perspectives(students, teachers)
    # share is over the whole group, including those who skipped the question
    assert out["bullyingPerception"]["studentYesPercentage"] == "33.3%"
    assert out["bullyingPerception"]["teacherYesPercentage"] == "100.0%"

def test_aggregate_state_snapshot():
    responses = [
        _resp(course="1° Medio", letter="A", bullyingProblem="Sí", extensions={"custom_like": "Sí"}),
        _resp(course="2° Medio", letter="B", bullyingProblem="No"),
        _resp(role="teacher", teacherHappiness="De Acuerdo"),
    ]
    state = aggregate_state(responses)
    assert state["total"] == 3
    assert (state["studentCount"], state["teacherCount"]) == (2, 1)
    assert state["courses"] == ["1° Medio", "2° Medio"]
    assert state["students"]["security"]["bullyingProblem"]["total"] == 2
    assert state["customFields"] == identify_custom_fields(responses) == ["custom_like"]
    assert state["customAnalysis"]["custom_like"]["responses"] == {"Sí": 1}
    assert set(state["byCourse"]) == {"1° Medio", "2° Medio"}

def test_frequency_is_idempotent():
    responses = [_resp(gender="Otro"), _resp(gender="Femenino"), _resp(gender="Otro"), _resp()]
    first = frequency(responses, "gender")
    second = frequency(responses, "gender")
    assert first.as_dict() == second.as_dict()
    assert first.counts == second.counts == {"Otro": 2, "Femenino": 1}
    assert [r.value("gender") for r in responses] == ["Otro", "Femenino", "Otro", ""]
