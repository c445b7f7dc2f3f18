# Spreadsheet and PDF renderers for response sets and recommendation runs
from __future__ import annotations
from datetime import date, datetime
from functools import partial
from io import BytesIO
from typing import Optional, Sequence
from xml.sax.saxutils import escape
import re

import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from reportlab.lib.colors import HexColor
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas
from reportlab.platypus import HRFlowable, Paragraph, SimpleDocTemplate, Spacer

from recommendations import sort_by_question_number
from schemas import QuestionRecommendation, SurveyResponse
from survey_schema import Section, question_sort_key, questions_for

SHEET_NAME = "Respuestas Encuesta"
HEADER_FILL = "059669"
MIN_WIDTH, MAX_WIDTH = 15, 80

METADATA_COLUMNS = (
    "N° Respuesta", "ID Respuesta", "Fecha y Hora", "Código Colegio", "Código Encuesta", "Curso", "Letra",
)

TEXT = HexColor("#1F2937")
LIGHT_TEXT = HexColor("#4B5563")
BORDER = HexColor("#E5E7EB")


def clean_name(name: str) -> str:
    return re.sub(r"\s+", "_", re.sub(r"[^a-zA-Z0-9\s]", "", name or "").strip())


def export_filename(kind: str, name: str = "", survey_name: str = "", today: Optional[date] = None) -> str:
    """Download name for an export.

    kind="xlsx"/"csv": ``{clean name}_{YYYY-MM-DD}.{kind}``.
    kind="pdf": ``Recomendaciones_{school}_{survey}_{DD-MM-YYYY}.pdf``.
    """
    today = today or date.today()
    if kind == "pdf":
        survey = clean_name((survey_name or "").split(" - ")[0])
        return f"Recomendaciones_{clean_name(name)}_{survey}_{today.strftime('%d-%m-%Y')}.pdf"
    return f"{clean_name(name)}_{today.isoformat()}.{kind}"


def _format_timestamp(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000).strftime("%d-%m-%Y, %H:%M:%S")


# ------------------------
# Tabular exports
# ------------------------
def question_columns(role: str, custom_sections: Optional[Sequence[Section]] = None) -> list[tuple[str, str]]:
    """(field, header) pairs in question-number order."""
    if custom_sections:
        questions = [q for s in custom_sections for q in s.questions]
    else:
        questions = questions_for(role)
    questions = sorted(questions, key=lambda q: question_sort_key(q.number))
    return [(q.field, f"{q.number}. {q.text}") for q in questions]


def responses_frame(
    responses: Sequence[SurveyResponse],
    role: str,
    custom_sections: Optional[Sequence[Section]] = None,
) -> pd.DataFrame:
    """One row per response: metadata columns, schema questions, then any extension fields."""
    columns = question_columns(role, custom_sections)
    known = {f for f, _ in columns}
    extra: list[str] = []
    for r in responses:
        for key in r.extensions:
            if key not in known and key not in extra:
                extra.append(key)

    rows = []
    for i, r in enumerate(responses, start=1):
        row = {
            "N° Respuesta": i,
            "ID Respuesta": r.id or "",
            "Fecha y Hora": _format_timestamp(r.timestamp),
            "Código Colegio": r.school_code,
            "Código Encuesta": r.survey_code,
            "Curso": r.course or "",
            "Letra": r.letter or "",
        }
        for field, header in columns:
            row[header] = r.value(field)
        for key in extra:
            row[key] = r.extensions.get(key, "")
        rows.append(row)

    headers = list(METADATA_COLUMNS) + [h for _, h in columns] + extra
    return pd.DataFrame(rows, columns=headers)


def responses_to_csv(df: pd.DataFrame) -> bytes:
    return df.to_csv(index=False).encode("utf-8")


def responses_to_xlsx(df: pd.DataFrame) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = SHEET_NAME

    ws.append(list(df.columns))
    for row in df.itertuples(index=False):
        ws.append(list(row))

    header_font = Font(bold=True, color="FFFFFF")
    header_fill = PatternFill(start_color=HEADER_FILL, end_color=HEADER_FILL, fill_type="solid")
    for cell in ws[1]:
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = Alignment(horizontal="center", vertical="center")

    for idx, header in enumerate(df.columns, start=1):
        longest = max([len(str(header))] + [len(str(v)) for v in df.iloc[:, idx - 1]])
        ws.column_dimensions[get_column_letter(idx)].width = min(max(longest + 2, MIN_WIDTH), MAX_WIDTH)

    buf = BytesIO()
    wb.save(buf)
    return buf.getvalue()


# ------------------------
# Recommendation report
# ------------------------
class _NumberedCanvas(canvas.Canvas):
    """Defers page output so every page can carry the running header and "Página i de N"."""

    def __init__(self, *args, header: str = "", **kwargs):
        super().__init__(*args, **kwargs)
        self.header = header
        self._saved_pages = []

    def showPage(self):
        self._saved_pages.append(dict(self.__dict__))
        self._startPage()

    def save(self):
        total = len(self._saved_pages)
        for state in self._saved_pages:
            self.__dict__.update(state)
            self._draw_header()
            self._draw_footer(total)
            super().showPage()
        super().save()

    def _draw_header(self):
        width, height = A4
        self.setFont("Helvetica", 8)
        self.setFillColor(LIGHT_TEXT)
        self.drawString(20 * mm, height - 12 * mm, self.header)
        self.setStrokeColor(BORDER)
        self.setLineWidth(0.3)
        self.line(20 * mm, height - 14 * mm, width - 20 * mm, height - 14 * mm)

    def _draw_footer(self, total: int):
        width, _ = A4
        self.setFont("Helvetica", 8)
        self.setFillColor(LIGHT_TEXT)
        self.drawRightString(width - 20 * mm, 10 * mm, f"Página {self.getPageNumber()} de {total}")
        if self.getPageNumber() == 1:
            self.drawString(20 * mm, 10 * mm, "Generado por schoolar.cl")


def _styles() -> dict:
    base = getSampleStyleSheet()
    return {
        "title": ParagraphStyle("Title", parent=base["Heading1"], fontName="Helvetica-Bold",
                                fontSize=20, leading=24, textColor=TEXT, spaceAfter=2),
        "school": ParagraphStyle("School", parent=base["Normal"], fontSize=14, leading=18, textColor=LIGHT_TEXT),
        "survey": ParagraphStyle("Survey", parent=base["Normal"], fontSize=12, leading=15, textColor=LIGHT_TEXT),
        "details": ParagraphStyle("Details", parent=base["Normal"], fontSize=10, leading=13, textColor=LIGHT_TEXT),
        "question": ParagraphStyle("Question", parent=base["Normal"], fontName="Helvetica-Bold",
                                   fontSize=11, leading=14, textColor=TEXT, spaceAfter=4),
        "label": ParagraphStyle("Label", parent=base["Normal"], fontName="Helvetica-Bold",
                                fontSize=10, leading=13, textColor=TEXT),
        "body": ParagraphStyle("Body", parent=base["Normal"], fontSize=10, leading=13,
                               textColor=LIGHT_TEXT, leftIndent=5 * mm, spaceAfter=4),
    }


def details_line(total_responses: int, course: Optional[str], letter: Optional[str], generated: date) -> str:
    text = f"{total_responses} respuestas"
    if course:
        text += f" • {course}"
    if letter:
        text += f" {letter}"
    return f"{text} • Generado: {generated.strftime('%d-%m-%Y')}"


def recommendations_to_pdf(
    recommendations: Sequence[QuestionRecommendation],
    school_name: str,
    survey_name: str,
    total_responses: int,
    course: Optional[str] = None,
    letter: Optional[str] = None,
    generated: Optional[date] = None,
) -> bytes:
    """Render a recommendation run as an A4 report, one block per question in question-number order."""
    generated = generated or date.today()
    s = _styles()
    buf = BytesIO()
    doc = SimpleDocTemplate(
        buf,
        pagesize=A4,
        leftMargin=20 * mm, rightMargin=20 * mm,
        topMargin=20 * mm, bottomMargin=20 * mm,
        title="Informe de Recomendaciones",
    )

    story = [
        Paragraph("Informe de Recomendaciones", s["title"]),
        Paragraph(escape(school_name or ""), s["school"]),
        Paragraph(escape(survey_name or ""), s["survey"]),
        Paragraph(escape(details_line(total_responses, course, letter, generated)), s["details"]),
        Spacer(1, 8 * mm),
        HRFlowable(width="100%", thickness=0.3, color=BORDER),
        Spacer(1, 6 * mm),
    ]

    ordered = sort_by_question_number(recommendations)
    for i, rec in enumerate(ordered):
        story += [
            Paragraph(escape(f"Pregunta {rec.question_number}: {rec.question_text}"), s["question"]),
            Paragraph("- Análisis:", s["label"]),
            Paragraph(escape(rec.analysis), s["body"]),
            Paragraph("- Recomendación:", s["label"]),
            Paragraph(escape(rec.recommendation), s["body"]),
        ]
        if i < len(ordered) - 1:
            story += [
                Spacer(1, 2 * mm),
                HRFlowable(width="100%", thickness=0.2, color=BORDER),
                Spacer(1, 5 * mm),
            ]

    header = " • ".join(p for p in ("Informe de Recomendaciones", school_name, survey_name) if p)
    doc.build(story, canvasmaker=partial(_NumberedCanvas, header=header))
    return buf.getvalue()
