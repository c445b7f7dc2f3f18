import pytest

from errors import SchemaDefinitionError
from survey_schema import (
    SECTION_IDS, STUDENT, STUDENT_SCHEMA, TEACHER, TEACHER_SCHEMA, Question, Section, find_question,
    is_visible, question_sort_key, questions_for, schema_for, section_ids, sections_from_dicts, schema_as_dict,
    standard_fields, validate_schema,
)

def test_static_schemas_share_section_order():
    assert [s.id for s in STUDENT_SCHEMA] == list(SECTION_IDS)
    assert [s.id for s in TEACHER_SCHEMA] == list(SECTION_IDS)
    assert len(questions_for(STUDENT)) == 45
    assert len(questions_for(TEACHER)) == 29

def test_static_schemas_are_valid():
    validate_schema(STUDENT_SCHEMA)
    validate_schema(TEACHER_SCHEMA)

def test_unknown_role_raises():
    with pytest.raises(ValueError):
        schema_for("parent")

def test_disability_type_is_guarded():
    q = find_question(STUDENT, "disabilityType")
    assert q.conditional_field == "disability" and q.conditional_value == "Sí"
    assert is_visible(q, {"disability": "Sí"})
    assert not is_visible(q, {"disability": "No"})
    assert not is_visible(q, {})

def test_duplicate_field_rejected():
    q = Question(number="1", text="a", field="x", options=("Sí", "No"))
    with pytest.raises(SchemaDefinitionError):
        validate_schema([Section(id="s", name="S", questions=(q, q))])

def test_guard_must_reference_earlier_field():
    guarded = Question(number="1", text="a", field="b", options=(), conditional_field="a", conditional_value="Sí")
    target = Question(number="2", text="b", field="a", options=("Sí", "No"))
    with pytest.raises(SchemaDefinitionError):
        validate_schema([Section(id="s", name="S", questions=(guarded, target))])

def test_question_sort_key_orders_letter_suffixes():
    numbers = ["24b", "3", "24", "2a", "24a", "10"]
    assert sorted(numbers, key=question_sort_key) == ["2a", "3", "10", "24", "24a", "24b"]

def test_schema_dicts_rebuild_sections():
    assert sections_from_dicts(schema_as_dict(TEACHER_SCHEMA)) == TEACHER_SCHEMA

def test_standard_fields_cover_metadata_and_both_roles():
    names = standard_fields()
    assert {"schoolCode", "timestamp", "gender", "teacherHappiness", "bullyingProblem"} <= names

def test_section_ids_follow_schema_order():
    assert section_ids(STUDENT) == section_ids(TEACHER) == SECTION_IDS
    with pytest.raises(ValueError):
        section_ids("parent")
