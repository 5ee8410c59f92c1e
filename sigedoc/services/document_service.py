"""
Document Service — everything around a document that is not a workflow
transition: metadata edits, the papelera (trash) and the Excel export.

Status and current area are never touched here; they belong to
``sigedoc.services.derivation_workflow``.
"""

import io
import logging
from datetime import datetime, timezone

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from sigedoc.core.exceptions import ConflictError, InvalidTransition, NotFoundError, PermissionDenied
from sigedoc.models import db
from sigedoc.models.audit import write_audit
from sigedoc.models.document import Document
from sigedoc.services.derivation_workflow import document_query
from sigedoc.services.permission_service import Capability
from sigedoc.utils.helpers import commit_or_raise

logger = logging.getLogger(__name__)

HEADER_FILL = PatternFill(start_color="1F3A5F", end_color="1F3A5F", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True, size=11)
THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)
STATUS_FILLS = {
    "DERIVED": PatternFill(start_color="F39C12", end_color="F39C12", fill_type="solid"),
    "CLOSED": PatternFill(start_color="27AE60", end_color="27AE60", fill_type="solid"),
    "REJECTED": PatternFill(start_color="E74C3C", end_color="E74C3C", fill_type="solid"),
}

EXPORT_COLUMNS = [
    ("Nro. Registro", "registration_number"),
    ("Nro. Oficio", "office_number"),
    ("Tipo", "document_type"),
    ("Origen", "origin"),
    ("Procedencia", "procedencia"),
    ("Prioridad", "priority"),
    ("Fecha Documento", "document_date"),
    ("Estado", "status"),
    ("Área Actual", "current_area"),
    ("Registrado por", "created_by"),
    ("Fecha Registro", "created_at"),
]

EXPORT_MAX_ROWS = 10000


def _require(identity, capability: Capability, action: str):
    if not identity.can(capability):
        raise PermissionDenied(action, required=[capability.name])


def _get(document_id: int, *, deleted=False) -> Document:
    doc = db.session.get(Document, document_id)
    if doc is None or doc.is_deleted != deleted:
        raise NotFoundError("Document", document_id)
    return doc


# ═══════════════════════════════════════════════════════════════
# Metadata
# ═══════════════════════════════════════════════════════════════
def update_document(identity, document_id: int, request) -> Document:
    """Apply a metadata edit to a non-terminal document."""
    _require(identity, Capability.EDIT, "document.update")
    doc = _get(document_id)
    if doc.is_terminal:
        raise InvalidTransition("document", "update", doc.status, reason="document is closed")
    if request.expected_version is not None and request.expected_version != doc.version:
        raise ConflictError(
            f"Document {doc.id} changed since it was read; reload and retry",
            {"expected_version": request.expected_version, "current_version": doc.version},
        )

    diff = {}
    for key, value in request.changes.items():
        old = getattr(doc, key)
        if old != value:
            diff[key] = {"old": old, "new": value}
            setattr(doc, key, value)
    if not diff:
        return doc

    write_audit(
        entity_type="document", entity_id=doc.id, document_id=doc.id,
        action="document.update", actor=identity.label, actor_user_id=identity.user_id,
        from_status=doc.status, to_status=doc.status, diff=diff,
    )
    commit_or_raise("document.update")
    logger.info("Document %s metadata updated by %s (%s)", doc.registration_number, identity.label, ", ".join(diff))
    return doc


# ═══════════════════════════════════════════════════════════════
# Papelera
# ═══════════════════════════════════════════════════════════════
def delete_document(identity, document_id: int) -> Document:
    """Move a document to the trash. Refused while a derivation is pending."""
    _require(identity, Capability.DELETE, "document.delete")
    doc = _get(document_id)
    pending = doc.pending_derivation()
    if pending is not None:
        raise ConflictError(
            "A document with a pending derivation cannot be deleted",
            {"pending_derivation_id": pending.id},
        )
    doc.soft_delete(identity.user_id)
    write_audit(
        entity_type="document", entity_id=doc.id, document_id=doc.id,
        action="document.delete", actor=identity.label, actor_user_id=identity.user_id,
        from_status=doc.status, to_status=doc.status,
    )
    commit_or_raise("document.delete")
    logger.info("Document %s moved to trash by %s", doc.registration_number, identity.label)
    return doc


def restore_document(identity, document_id: int) -> Document:
    _require(identity, Capability.DELETE, "document.restore")
    doc = _get(document_id, deleted=True)
    doc.restore()
    write_audit(
        entity_type="document", entity_id=doc.id, document_id=doc.id,
        action="document.restore", actor=identity.label, actor_user_id=identity.user_id,
        from_status=doc.status, to_status=doc.status,
    )
    commit_or_raise("document.restore")
    logger.info("Document %s restored by %s", doc.registration_number, identity.label)
    return doc


def list_trash(identity, *, page=1, per_page=20):
    _require(identity, Capability.DELETE, "document.trash")
    return (
        Document.query_deleted()
        .order_by(Document.deleted_at.desc(), Document.id.desc())
        .paginate(page=page, per_page=per_page, error_out=False)
    )


# ═══════════════════════════════════════════════════════════════
# Export
# ═══════════════════════════════════════════════════════════════
def _apply_header_style(ws, row: int, col_count: int) -> None:
    for col in range(1, col_count + 1):
        cell = ws.cell(row=row, column=col)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.border = THIN_BORDER
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)


def _auto_width(ws) -> None:
    """Auto-size column widths based on content (capped at 60 chars)."""
    for col in ws.columns:
        max_len = 0
        col_letter = get_column_letter(col[0].column)
        for cell in col:
            if cell.value:
                max_len = max(max_len, min(len(str(cell.value)), 60))
        ws.column_dimensions[col_letter].width = max(max_len + 4, 12)


def export_documents_xlsx(identity, **filters) -> bytes:
    """Excel workbook of the filtered document list (same filters as the listing)."""
    _require(identity, Capability.EXPORT, "document.export")
    documents = document_query(**filters).limit(EXPORT_MAX_ROWS).all()

    wb = Workbook()
    ws = wb.active
    ws.title = "Documentos"

    ws.merge_cells(start_row=1, start_column=1, end_row=1, end_column=len(EXPORT_COLUMNS))
    ws["A1"] = "Relación de documentos"
    ws["A1"].font = Font(size=14, bold=True)
    ws["A2"] = f"Generado: {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M UTC')} por {identity.label}"
    ws["A2"].font = Font(size=10, italic=True, color="666666")

    header_row = 4
    for col, (title, _) in enumerate(EXPORT_COLUMNS, 1):
        ws.cell(row=header_row, column=col, value=title)
    _apply_header_style(ws, header_row, len(EXPORT_COLUMNS))

    status_col = [key for _, key in EXPORT_COLUMNS].index("status") + 1
    for row_i, doc in enumerate(documents, header_row + 1):
        data = doc.to_dict()
        for col, (_, key) in enumerate(EXPORT_COLUMNS, 1):
            ws.cell(row=row_i, column=col, value=data.get(key))
        fill = STATUS_FILLS.get(doc.status)
        if fill is not None:
            ws.cell(row=row_i, column=status_col).fill = fill

    ws.freeze_panes = ws.cell(row=header_row + 1, column=1)
    _auto_width(ws)

    buf = io.BytesIO()
    wb.save(buf)
    buf.seek(0)
    logger.info("Exported %d documents for %s", len(documents), identity.label)
    return buf.getvalue()
