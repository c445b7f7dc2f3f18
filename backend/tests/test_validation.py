from survey_schema import STUDENT, TEACHER
from validation import CodeValidator, normalize_code

def _custom(repo, code="CSA123-482913-K7Q", school="CSA123", active=True, survey_type="teacher", sections=None):
    return repo.save_custom_survey({
        "name": "Clima docente", "description": "d", "surveyCode": code, "schoolCode": school,
        "surveyType": survey_type, "isActive": active, "lastModified": 1, "createdAt": 1,
        "sections": sections if sections is not None else [
            {"id": "s1", "name": "Uno", "questions": [
                {"number": "1", "text": "¿Ok?", "field": "custom_ok", "options": ["Sí", "No"]}]},
        ],
    })

def test_normalize_code():
    assert normalize_code("  csa123 ") == "CSA123"
    assert normalize_code(None) == ""

def test_school_codes(repo):
    v = CodeValidator(repo)
    assert v.validate_school_code("csa123").valid
    assert v.validate_school_code("csa123").name == "Colegio Saucache Arica"
    assert not v.validate_school_code("XXX999").valid
    assert v.school_display_info("nope")["name"] == "Colegio no encontrado"

def test_unknown_survey_code_is_invalid(repo):
    check = CodeValidator(repo).validate_survey_code("NOPE99", "CSA123")
    assert check.valid is False
    assert check.name is None

def test_whitelisted_survey_for_its_school_only(repo):
    v = CodeValidator(repo)
    check = v.validate_survey_code("eae1234", "csa123")
    assert check.valid and check.type == TEACHER
    assert not v.validate_survey_code("EAE1234", "CSJ123").valid

def test_active_custom_survey_validates(repo):
    sid = _custom(repo)
    v = CodeValidator(repo)
    check = v.validate_survey_code("csa123-482913-k7q", "CSA123")
    assert check.valid and check.type == "custom"
    assert check.extra == {"custom_survey_id": sid}
    assert not v.validate_survey_code("CSA123-482913-K7Q", "CSJ123").valid

def test_inactive_custom_survey_is_invalid(repo):
    _custom(repo, active=False)
    assert not CodeValidator(repo).validate_survey_code("CSA123-482913-K7Q", "CSA123").valid

def test_resolve_survey(repo):
    _custom(repo)
    v = CodeValidator(repo)
    assert v.resolve_survey("EAE123", "CSA123") == ("predefined", STUDENT, None)
    assert v.resolve_survey("PRU123", "PRB123") == ("predefined", STUDENT, None)
    assert v.resolve_survey("ZZZ", "CSA123") == ("unknown", None, None)
    kind, role, sections = v.resolve_survey("CSA123-482913-K7Q", "CSA123")
    assert (kind, role) == ("custom", TEACHER)
    assert sections[0].questions[0].field == "custom_ok"

def test_surveys_for_school_and_audit(repo):
    v = CodeValidator(repo)
    assert {s["code"] for s in v.surveys_for_school("CSA123")} == {"EAE123", "EAE1234"}
    assert v.surveys_for_school("PRB123") == []
    audit = v.audit_info()
    assert audit["total_surveys"] == 2
    assert audit["surveys_by_school"] == {"CSA123": 2}

def test_builtin_admin_provisioned_once(repo):
    v = CodeValidator(repo)
    ok, user = v.validate_admin_credentials("SSOTOD@udd.cl", "0702977")
    assert ok and user["schoolCode"] == "CSA123" and user["userType"] == "admin"
    ok2, again = v.validate_admin_credentials("ssotod@udd.cl", "0702977")
    assert ok2 and again["id"] == user["id"]
    assert v.validate_admin_credentials("ssotod@udd.cl", "wrong") == (False, None)
    assert v.validate_admin_credentials("nobody@x.cl", "0702977") == (False, None)

def test_is_custom_survey(repo):
    _custom(repo)
    _custom(repo, code="OFF-1", active=False)
    v = CodeValidator(repo)
    assert v.is_custom_survey("csa123-482913-k7q", "csa123")
    assert not v.is_custom_survey("CSA123-482913-K7Q", "CSJ123")
    assert not v.is_custom_survey("OFF-1", "CSA123")
    assert not v.is_custom_survey("EAE123", "CSA123")

def test_validate_survey_ownership(repo):
    doc = repo.get_custom_survey(_custom(repo))
    v = CodeValidator(repo)
    assert v.validate_survey_ownership(doc, " csa123")
    assert not v.validate_survey_ownership(doc, "CSJ123")
    assert not v.validate_survey_ownership(None, "CSA123")
