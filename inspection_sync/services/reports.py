from __future__ import annotations

from datetime import datetime

from fpdf import FPDF

from inspection_sync.models.entities import Inspection, InspectionStatus
from inspection_sync.schemas.inspection import InspectionRecord, ensure_utc
from inspection_sync.schemas.template import InspectionTemplateRead

ANSWER_LABELS = {"yes": "Yes", "no": "No", "na": "N/A"}


def build_inspection_summary(inspection: Inspection, template: InspectionTemplateRead | None = None) -> dict:
    """Flatten a completed inspection for rendering; drafts are refused."""
    if inspection.status != InspectionStatus.completed.value:
        raise ValueError("Only completed inspections can be exported")

    record = InspectionRecord.model_validate(inspection)
    photos_by_question: dict[str, list[str]] = {}
    for photo in inspection.photos:
        photos_by_question.setdefault(photo.question_id, []).append(photo.file_name)

    responses = []
    for entry in record.responses:
        question = template.question(entry.question_id) if template else None
        responses.append(
            {
                "question_id": entry.question_id,
                "text": question.text if question else entry.question_id,
                "answer": ANSWER_LABELS.get(entry.answer or "", "-"),
                "comments": entry.comments,
                "action_required": entry.action_required,
                "action_notes": entry.action_notes if entry.action_required else "",
                "photos": photos_by_question.get(entry.question_id, []),
            }
        )

    return {
        "inspection_id": record.id,
        "facility": inspection.facility.name if inspection.facility else record.facility_id,
        "inspector_name": record.inspector_name,
        "conducted_at": record.conducted_at,
        "flagged_items_count": record.flagged_items_count,
        "actions_count": record.actions_count,
        "responses": responses,
        "general_comments": record.general_comments,
        "signature_data": record.signature_data,
    }


def _format_datetime(value: datetime | str | None) -> str:
    if value is None:
        return "-"
    if isinstance(value, datetime):
        return ensure_utc(value).strftime("%Y-%m-%d %H:%M UTC")
    return value


def _text(value: object) -> str:
    # Core PDF fonts only cover latin-1.
    return str(value).encode("latin-1", "replace").decode("latin-1")


def render_pdf(summary: dict) -> bytes:
    pdf = FPDF()
    pdf.set_auto_page_break(auto=True, margin=15)
    pdf.add_page()
    pdf.set_font("Helvetica", "B", 16)
    pdf.cell(0, 10, "SPCC Inspection Report", ln=True)

    pdf.set_font("Helvetica", "B", 13)
    pdf.cell(0, 8, "Inspection Info", ln=True)
    pdf.set_font("Helvetica", size=11)
    pdf.cell(0, 6, f"Inspection ID: {summary['inspection_id']}", ln=True)
    pdf.cell(0, 6, _text(f"Facility: {summary.get('facility') or '-'}"), ln=True)
    pdf.cell(0, 6, _text(f"Inspector: {summary.get('inspector_name') or '-'}"), ln=True)
    pdf.cell(0, 6, f"Conducted: {_format_datetime(summary.get('conducted_at'))}", ln=True)
    pdf.cell(0, 6, f"Flagged items: {summary.get('flagged_items_count', 0)}", ln=True)
    pdf.cell(0, 6, f"Actions required: {summary.get('actions_count', 0)}", ln=True)
    pdf.ln(4)

    pdf.set_font("Helvetica", "B", 13)
    pdf.cell(0, 8, "Responses", ln=True)
    for idx, response in enumerate(summary.get("responses", []), start=1):
        pdf.set_font("Helvetica", "B", 11)
        pdf.multi_cell(0, 6, _text(f"{idx}. {response['text']}"))
        pdf.set_font("Helvetica", size=11)
        pdf.cell(0, 6, f"Answer: {response['answer']}", ln=True)
        if response.get("comments"):
            pdf.multi_cell(0, 6, _text(f"Comments: {response['comments']}"))
        if response.get("action_required"):
            pdf.multi_cell(0, 6, _text(f"Action required: {response.get('action_notes') or 'No notes captured'}"))
        if response.get("photos"):
            pdf.multi_cell(0, 6, _text(f"Photos: {', '.join(response['photos'])}"))
        pdf.ln(1)

    if summary.get("general_comments"):
        pdf.ln(2)
        pdf.set_font("Helvetica", "B", 12)
        pdf.cell(0, 6, "General Comments", ln=True)
        pdf.set_font("Helvetica", size=11)
        pdf.multi_cell(0, 6, _text(summary["general_comments"]))

    pdf.ln(4)
    pdf.set_font("Helvetica", "B", 12)
    pdf.cell(0, 6, "Signature", ln=True)
    pdf.set_font("Helvetica", size=11)
    signed = "on file" if summary.get("signature_data") else "missing"
    pdf.cell(0, 6, _text(f"Signed by {summary.get('inspector_name') or '-'} (signature {signed})"), ln=True)

    return _pdf_bytes(pdf)


def _pdf_bytes(pdf: FPDF) -> bytes:
    output = pdf.output()
    if isinstance(output, (bytes, bytearray)):
        return bytes(output)
    return output.encode("latin1")
