from fastapi import APIRouter, HTTPException, UploadFile, File, Form
from fastapi.responses import Response
import hashlib

from ..config import settings
from ..db import get_conn
from .. import store
from ..logs import json_log

router = APIRouter(prefix="/attachments", tags=["attachments"])

# Prescription images hang off sales; supplier invoice scans hang off purchases.
ENTITY_TYPES = {"transaction", "purchase", "product", "customer", "supplier"}


def _safe_filename_for_header(name: str) -> str:
    """
    Prevent header injection / broken Content-Disposition due to untrusted filenames.
    """
    n = (name or "").strip() or "attachment"
    n = n.replace("\r", "").replace("\n", "")
    n = n.replace('"', "")
    if len(n) > 180:
        n = n[:180]
    return n or "attachment"


def _max_bytes() -> int:
    max_mb = max(1, min(settings.attachment_max_mb, 100))
    return max_mb * 1024 * 1024


@router.get("")
def list_attachments(entity_type: str, entity_id: str):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, filename, content_type, size_bytes, sha256, uploaded_at
                FROM attachments
                WHERE entity_type = %s AND entity_id = %s
                ORDER BY uploaded_at DESC
                """,
                (entity_type, entity_id),
            )
            return {"attachments": cur.fetchall()}


@router.post("")
def upload_attachment(
    entity_type: str = Form(...),
    entity_id: str = Form(...),
    file: UploadFile = File(...),
):
    entity_type = entity_type.strip().lower()
    if entity_type not in ENTITY_TYPES or not entity_id.strip():
        raise HTTPException(status_code=400, detail="valid entity_type and entity_id are required")
    raw = file.file.read() or b""
    if len(raw) > _max_bytes():
        raise HTTPException(status_code=413, detail=f"attachment too large (max {_max_bytes() // (1024 * 1024)}MB)")
    sha = hashlib.sha256(raw).hexdigest() if raw else None
    filename = _safe_filename_for_header(file.filename or "attachment")
    content_type = (file.content_type or "application/octet-stream").strip() or "application/octet-stream"

    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO attachments (entity_type, entity_id, filename, content_type, size_bytes, sha256, bytes)
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    RETURNING id
                    """,
                    (entity_type, entity_id, filename, content_type, len(raw), sha, raw),
                )
                attachment_id = cur.fetchone()["id"]
                # Audited against the owning document so it shows up in that document's history.
                store.write_audit(
                    cur,
                    "attachment_uploaded",
                    entity_type,
                    entity_id,
                    {
                        "attachment_id": str(attachment_id),
                        "filename": filename,
                        "content_type": content_type,
                        "size_bytes": len(raw),
                        "sha256": sha,
                    },
                )
    json_log("info", "attachment.uploaded", attachment_id=str(attachment_id), entity_type=entity_type, size_bytes=len(raw))
    return {"id": attachment_id}


@router.get("/{attachment_id}/download")
def download_attachment(attachment_id: str):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                "SELECT filename, content_type, bytes FROM attachments WHERE id::text = %s",
                (attachment_id,),
            )
            row = cur.fetchone()
            if not row:
                raise HTTPException(status_code=404, detail="attachment not found")
            data = row["bytes"] or b""
            headers = {"Content-Disposition": f'attachment; filename="{_safe_filename_for_header(row["filename"])}"'}
            return Response(content=bytes(data), media_type=row["content_type"], headers=headers)
