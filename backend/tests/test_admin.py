def _register(client, email="ana@csj.cl", school="CSJ123"):
    r = client.post("/admin/register", json={
        "first_name": "Ana", "last_name": "Rojas", "email": email, "password": "secreto1", "school_code": school,
    })
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['token']}"}

def _secondary(i, **perms):
    return {
        "first_name": "Luis", "last_name": f"Pérez {i}", "email": f"luis{i}@csa.cl", "password": "clave12",
        "position": "Inspector", "permissions": perms or {"indicators": True, "recommendations": True},
    }

def test_builtin_login_and_me(client, admin_headers):
    me = client.get("/admin/me", headers=admin_headers).json()
    assert me["email"] == "ssotod@udd.cl"
    assert me["school_code"] == "CSA123" and me["user_type"] == "admin"

def test_login_failures(client):
    r = client.post("/admin/login", json={"email": "ssotod@udd.cl", "password": "mala"})
    assert r.status_code == 401
    assert r.json()["error"] == "InvalidCredentialsError"
    assert client.get("/admin/me").status_code == 401
    assert client.get("/admin/me", headers={"Authorization": "Bearer forged.token"}).status_code == 401

def test_register_validation(client):
    r = client.post("/admin/register", json={
        "first_name": "", "last_name": "R", "email": "x@y.cl", "password": "secreto1", "school_code": "CSJ123",
    })
    assert r.status_code == 422
    assert r.json()["fields"] == {"first_name": "El nombre es requerido"}

def test_register_and_change_password(client):
    headers = _register(client)
    school = client.get("/admin/school", headers=headers).json()
    assert school["code"] == "CSJ123" and school["name"] == "Colegio San Jorge Arica"

    r = client.post("/admin/password", headers=headers, json={
        "email": "ana@csj.cl", "current_password": "secreto1", "new_password": "nuevo123",
    })
    assert r.status_code == 200
    assert client.post("/admin/login", json={"email": "ana@csj.cl", "password": "nuevo123"}).status_code == 200
    assert client.post("/admin/register", json={
        "first_name": "A", "last_name": "B", "email": "ANA@csj.cl", "password": "secreto1", "school_code": "CSJ123",
    }).status_code == 409

def test_secondary_user_cap(client, admin_headers):
    for i in range(5):
        r = client.post("/admin/users", headers=admin_headers, json=_secondary(i))
        assert r.status_code == 200, r.text
    r = client.post("/admin/users", headers=admin_headers, json=_secondary(5))
    assert r.status_code == 409
    assert r.json()["error"] == "SecondaryUserLimitError"
    assert len(client.get("/admin/users", headers=admin_headers).json()) == 5

def test_secondary_user_crud(client, admin_headers):
    created = client.post("/admin/users", headers=admin_headers, json=_secondary(1)).json()
    assert created["user_type"] == "secondary" and created["position"] == "Inspector"
    uid = created["id"]
    r = client.put(f"/admin/users/{uid}", headers=admin_headers,
                   json={"permissions": {"indicators": False, "aiAgent": True}})
    assert r.status_code == 200
    assert r.json()["permissions"]["aiAgent"] is True
    assert client.delete(f"/admin/users/{uid}", headers=admin_headers).json() == {"ok": True}
    assert client.delete(f"/admin/users/{uid}", headers=admin_headers).status_code == 404

def test_secondary_permissions_enforced(client, admin_headers):
    client.post("/admin/users", headers=admin_headers,
                json=_secondary(1, indicators=False, recommendations=True, aiAgent=False))
    token = client.post("/admin/login", json={"email": "luis1@csa.cl", "password": "clave12"}).json()["token"]
    headers = {"Authorization": f"Bearer {token}"}
    assert client.get("/admin/responses", headers=headers).status_code == 403
    assert client.get("/admin/chat/welcome", headers=headers).status_code == 403
    assert client.get("/admin/users", headers=headers).status_code == 403
    assert client.get("/admin/custom-surveys", headers=headers).status_code == 403
    r = client.post("/admin/recommendations", headers=headers, json={"role": "student"})
    # permission granted; the school simply has no data yet
    assert r.status_code == 422

def test_custom_survey_crud_and_answering(client, admin_headers):
    code = client.post("/admin/custom-surveys/code", headers=admin_headers).json()["survey_code"]
    assert code.startswith("CSA123-")

    r = client.post("/admin/custom-surveys", headers=admin_headers, json={
        "name": "Clima docente", "survey_code": code, "survey_type": "teacher",
        "sections": [{"id": "s1", "name": "Clima", "questions": [
            {"number": "1", "text": "¿Te sientes apoyado?", "field": "supported", "options": ["Sí", "No"]},
            {"number": "2", "text": "¿Por qué no?", "field": "why", "options": ["A", "B"],
             "conditional_field": "supported", "conditional_value": "No"},
        ]}],
    })
    assert r.status_code == 200, r.text
    survey = r.json()
    assert survey["survey_type"] == "teacher"
    assert [q["field"] for q in survey["sections"][0]["questions"]] == ["custom_supported", "custom_why"]

    listed = client.get("/admin/custom-surveys", headers=admin_headers).json()
    assert [s["id"] for s in listed] == [survey["id"]]
    assert any(s["code"] == code for s in client.get("/admin/school", headers=admin_headers).json()["surveys"])

    check = client.get(f"/public/schools/CSA123/surveys/{code}").json()
    assert check["valid"] and check["type"] == "custom"

    session = client.post("/public/sessions", json={"school_code": "CSA123", "survey_code": code}).json()
    assert session["role"] == "teacher" and session["custom"] is True
    sid = session["session_id"]
    client.put(f"/public/sessions/{sid}/answers", json={"answers": {"custom_supported": "Sí"}})
    assert client.post(f"/public/sessions/{sid}/complete").status_code == 200
    record = client.get("/ops/responses").json()[0]
    assert record["surveyCode"] == code and record["custom_supported"] == "Sí"

    r = client.put(f"/admin/custom-surveys/{survey['id']}", headers=admin_headers, json={"is_active": False})
    assert r.json()["is_active"] is False
    assert client.get(f"/public/schools/CSA123/surveys/{code}").json()["valid"] is False

    assert client.delete(f"/admin/custom-surveys/{survey['id']}", headers=admin_headers).json() == {"ok": True}
    assert client.get("/ops/custom-surveys").json() == []

def test_custom_survey_rejects_bad_guard(client, admin_headers):
    r = client.post("/admin/custom-surveys", headers=admin_headers, json={
        "name": "x", "sections": [{"id": "s1", "name": "S", "questions": [
            {"number": "1", "text": "a", "field": "a", "conditional_field": "b", "conditional_value": "Sí"},
            {"number": "2", "text": "b", "field": "b", "options": ["Sí"]},
        ]}],
    })
    assert r.status_code == 422
    assert r.json()["error"] == "SchemaDefinitionError"

def test_other_school_cannot_edit_survey(client, admin_headers):
    survey = client.post("/admin/custom-surveys", headers=admin_headers, json={"name": "mía"}).json()
    other = _register(client)
    r = client.put(f"/admin/custom-surveys/{survey['id']}", headers=other, json={"name": "hack"})
    assert r.status_code == 403

def test_ops_audit(client):
    audit = client.get("/ops/surveys/audit").json()
    assert audit["total_surveys"] == 2

def test_register_rejects_malformed_email(client):
    r = client.post("/admin/register", json={
        "first_name": "Ana", "last_name": "Rojas", "email": "ana-sin-arroba", "password": "secreto1",
        "school_code": "CSJ123",
    })
    assert r.status_code == 422
    assert r.json()["detail"][0]["loc"][-1] == "email"
