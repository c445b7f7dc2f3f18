import main

STUDENT_SESSION = {"school_code": "csa123", "survey_code": "eae123", "course": "1° Medio", "letter": "A"}

def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"ok": True}

def test_check_school(client):
    r = client.get("/public/schools/csa123")
    assert r.status_code == 200
    body = r.json()
    assert body["valid"] is True and body["name"] == "Colegio Saucache Arica"
    assert {s["code"] for s in body["surveys"]} == {"EAE123", "EAE1234"}

    bad = client.get("/public/schools/XYZ000").json()
    assert bad["valid"] is False and bad["surveys"] == []

def test_check_survey(client):
    ok = client.get("/public/schools/CSA123/surveys/EAE1234").json()
    assert ok["valid"] is True and ok["type"] == "teacher"
    assert client.get("/public/schools/CSA123/surveys/NOPE99").json()["valid"] is False

def test_schema(client):
    r = client.get("/public/schema/teacher")
    assert r.status_code == 200
    assert [s["id"] for s in r.json()][0] == "general"
    assert client.get("/public/schema/parent").status_code == 404

def test_session_rejects_bad_codes(client):
    r = client.post("/public/sessions", json=dict(STUDENT_SESSION, school_code="XYZ000"))
    assert r.status_code == 404
    assert r.json()["error"] == "InvalidSchoolCodeError"
    r = client.post("/public/sessions", json=dict(STUDENT_SESSION, survey_code="NOPE99"))
    assert r.status_code == 404
    assert r.json()["detail"] == "Código de encuesta inválido para este colegio"

def test_student_session_needs_course(client):
    r = client.post("/public/sessions", json={"school_code": "CSA123", "survey_code": "EAE123"})
    assert r.status_code == 422

def test_student_survey_flow(client, full_answers):
    r = client.post("/public/sessions", json=STUDENT_SESSION)
    assert r.status_code == 200, r.text
    session = r.json()
    sid = session["session_id"]
    assert session["role"] == "student" and session["current_section"] == "general"
    assert len(session["schema"]) == 6

    # forward navigation is gated on the current section
    r = client.post(f"/public/sessions/{sid}/next")
    assert r.status_code == 409
    assert r.json()["error"] == "NavigationBlockedError"

    answers = full_answers("student")
    general = {k: answers[k] for k in ("gender", "disability", "absenceDays")}
    general["disability"] = "No"
    status = client.put(f"/public/sessions/{sid}/answers", json={"answers": general}).json()
    assert status["sections"][0]["complete"] is True
    assert client.post(f"/public/sessions/{sid}/next").json()["current_section"] == "experience"
    assert client.post(f"/public/sessions/{sid}/previous").json()["current_section"] == "general"

    r = client.post(f"/public/sessions/{sid}/complete")
    assert r.status_code == 422
    assert "experience" in r.json()["sections"]

    answers["disability"] = "No"
    status = client.put(f"/public/sessions/{sid}/answers", json={"answers": answers}).json()
    assert status["progress"] == 100.0
    assert client.post(f"/public/sessions/{sid}/navigate", json={"section_id": "cleanliness"}).status_code == 200

    r = client.post(f"/public/sessions/{sid}/complete")
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["id"] and body["timestamp"] > 0
    assert body["stored_locally"] is False
    assert client.get(f"/public/sessions/{sid}").status_code == 404

    stored = client.get("/ops/responses").json()
    assert len(stored) == 1
    assert stored[0]["schoolCode"] == "CSA123" and stored[0]["course"] == "1° Medio"
    # hidden conditional answer is not persisted
    assert "disabilityType" not in stored[0]

def test_unknown_section(client):
    sid = client.post("/public/sessions", json=STUDENT_SESSION).json()["session_id"]
    r = client.post(f"/public/sessions/{sid}/navigate", json={"section_id": "nope"})
    assert r.status_code == 404

def test_teacher_session_ignores_course(client, full_answers):
    sid = client.post("/public/sessions", json={"school_code": "CSA123", "survey_code": "EAE1234",
                                                "course": "1° Medio"}).json()["session_id"]
    client.put(f"/public/sessions/{sid}/answers", json={"answers": full_answers("teacher")})
    assert client.post(f"/public/sessions/{sid}/complete").status_code == 200
    record = client.get("/ops/responses").json()[0]
    assert record["surveyType"] == "teacher"
    assert record["course"] is None

def test_sessions_are_discarded_after_completion(client, full_answers):
    before = len(main.sessions)
    sid = client.post("/public/sessions", json={"school_code": "CSA123", "survey_code": "EAE1234"}).json()["session_id"]
    assert len(main.sessions) == before + 1
    client.put(f"/public/sessions/{sid}/answers", json={"answers": full_answers("teacher")})
    client.post(f"/public/sessions/{sid}/complete")
    assert len(main.sessions) == before

def test_answers_cannot_rewrite_school_or_role(client, repo, full_answers):
    sid = client.post("/public/sessions", json=STUDENT_SESSION).json()["session_id"]
    r = client.put(f"/public/sessions/{sid}/answers",
                   json={"answers": {"schoolCode": "CSJ123", "surveyType": "teacher"}})
    assert r.status_code == 422
    assert r.json()["error"] == "FormValidationError"
    assert set(r.json()["fields"]) == {"schoolCode", "surveyType"}

    client.put(f"/public/sessions/{sid}/answers", json={"answers": full_answers("student")})
    assert client.post(f"/public/sessions/{sid}/complete").status_code == 200
    saved = repo.list_by_school("CSA123")
    assert [(r.school_code, r.role) for r in saved] == [("CSA123", "student")]
    assert repo.list_by_school("CSJ123") == []
