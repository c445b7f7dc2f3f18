import io, csv

from openpyxl import load_workbook

def _submit(client, answers, survey_code="EAE123", course="1° Medio", letter="A"):
    sid = client.post("/public/sessions", json={
        "school_code": "CSA123", "survey_code": survey_code, "course": course, "letter": letter,
    }).json()["session_id"]
    client.put(f"/public/sessions/{sid}/answers", json={"answers": answers})
    r = client.post(f"/public/sessions/{sid}/complete")
    assert r.status_code == 200, r.text
    return r.json()["id"]

def test_export_csv_after_submit(client, admin_headers, full_answers):
    rid = _submit(client, full_answers("student"))
    _submit(client, full_answers("student"), course="2° Medio", letter="B")

    r = client.get("/admin/export/responses.csv", params={"role": "student", "course": "1° Medio"},
                   headers=admin_headers)
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/csv")
    assert "attachment; filename=Respuestas_CSA123_" in r.headers["content-disposition"]

    rows = list(csv.reader(io.StringIO(r.text)))
    assert rows[0][:3] == ["N° Respuesta", "ID Respuesta", "Fecha y Hora"]
    assert len(rows) == 2
    assert rows[1][1] == rid

def test_export_xlsx_named_after_survey(client, admin_headers, full_answers):
    _submit(client, full_answers("student"))
    r = client.get("/admin/export/responses.xlsx?survey_code=EAE123", headers=admin_headers)
    assert r.status_code == 200
    assert "filename=Encuesta_Ambiente_Escolar_Estudiantes_Segundo_Semestre_2025_" in r.headers["content-disposition"]
    ws = load_workbook(io.BytesIO(r.content)).active
    assert ws.max_row == 2
    assert ws["D2"].value == "CSA123"

def test_export_recommendations_pdf(client, admin_headers):
    recs = [
        {"question_number": "15", "question_text": "¿Consideras que el Bullying es un problema?",
         "field": "bullyingProblem", "analysis": "El 66.7% respondió Sí.", "recommendation": "Crear comité.",
         "priority": "high"},
        {"question_number": "1", "question_text": "¿Con cuál género te identificas?", "field": "gender",
         "analysis": "Distribución pareja.", "recommendation": "Sin acción.", "priority": "low"},
    ]
    r = client.post("/admin/export/recommendations.pdf", headers=admin_headers, json={
        "recommendations": recs, "survey_name": "Encuesta Estudiantes - 2025", "total_responses": 3,
    })
    assert r.status_code == 200
    assert r.headers["content-type"] == "application/pdf"
    assert "filename=Recomendaciones_Colegio_Saucache_Arica_Encuesta_Estudiantes_" in r.headers["content-disposition"]
    assert r.content.startswith(b"%PDF")

def test_export_pdf_requires_recommendations(client, admin_headers):
    r = client.post("/admin/export/recommendations.pdf", headers=admin_headers, json={"recommendations": []})
    assert r.status_code == 422

def test_exports_require_login(client):
    assert client.get("/admin/export/responses.csv").status_code == 401
