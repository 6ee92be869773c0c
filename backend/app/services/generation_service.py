from __future__ import annotations

import logging
import re
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from backend.app.generation.context_builder import build_generation_context
from backend.app.generation.demand_letter import (
    AiCall,
    generate_demand_letter,
    has_ai_sections,
    text_to_pdf,
)
from backend.app.integrations.ai_client import call_ai
from backend.app.models import Document, User, utcnow, uuid_str
from backend.app.services import template_service, timeline_service
from backend.app.services.storage_service import FileStore, LocalFileStore
from backend.app.templates.render import render_template

logger = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"


def _filename(template_name: str, matter_reference: str) -> str:
    stem = re.sub(r"\s+", "_", template_name)
    return f"{stem}_{matter_reference}.pdf"


def generate_document(
    db: Session,
    *,
    firm_id: str,
    matter_id: str,
    template_id: str,
    user: User,
    overrides: Optional[Dict[str, Any]] = None,
    ai_call: Optional[AiCall] = None,
    store: Optional[FileStore] = None,
) -> Dict[str, Any]:
    """
    Render a template against a matter, store the PDF and record a draft document.

    Templates containing {{AI:section}} markers go through the demand letter
    generator; everything else is a plain merge.
    """
    template = template_service.get_template(db, firm_id, template_id)
    context = build_generation_context(db, firm_id, matter_id)
    if overrides:
        context.findings.update(overrides)

    ai_sections: list[str] = []
    tokens_used = 0
    ai_model: Optional[str] = None

    if has_ai_sections(template.content):
        letter = generate_demand_letter(context, template.content, ai_call=ai_call or call_ai)
        final_content = letter.content
        ai_sections = letter.ai_sections
        missing_fields = letter.missing
        tokens_used = letter.tokens_used
        ai_model = letter.model
    else:
        rendered = render_template(template.content, context.merge_data())
        final_content = rendered.content
        missing_fields = rendered.missing

    if missing_fields:
        logger.warning(
            "Generated document for matter=%s template=%s has unresolved merge fields: %s",
            matter_id,
            template.id,
            missing_fields,
        )

    pdf_bytes = text_to_pdf(final_content, context.firm["name"])

    doc_id = uuid_str()
    storage_path = f"generated/{firm_id}/{matter_id}/{doc_id}.pdf"
    filename = _filename(template.name, context.matter["reference"])
    stored = (store or LocalFileStore()).save(storage_path, pdf_bytes, PDF_MIME_TYPE)

    document = Document(
        id=doc_id,
        firm_id=firm_id,
        matter_id=matter_id,
        title=f"{template.name} - {context.matter['reference']}",
        type="letter_out",
        status="draft",
        filename=filename,
        mime_type=PDF_MIME_TYPE,
        file_size=stored.size,
        storage_path=stored.path,
        created_by=user.id,
        document_date=utcnow(),
        ai_model=ai_model,
        ai_tokens_used=tokens_used or None,
        metadata_json={
            "generated_from": "template",
            "template_id": template.id,
            "template_name": template.name,
            "template_version": template.version,
            "ai_sections": ai_sections,
            "missing_merge_fields": missing_fields,
            "findings_used": len(context.findings),
        },
    )
    db.add(document)
    db.flush()

    timeline_service.create_timeline_event(
        db,
        firm_id=firm_id,
        matter_id=matter_id,
        type="document_generated",
        title=f"Document generated: {template.name}",
        description=(
            f"AI-enhanced document with {len(ai_sections)} narrative section(s)"
            if ai_sections
            else "Template-based document generated"
        ),
        actor_type="ai" if ai_sections else "user",
        actor_id=user.id,
        entity_type="document",
        entity_id=document.id,
        metadata={
            "template_id": template.id,
            "ai_sections": ai_sections,
            "tokens_used": tokens_used,
            "missing_fields": len(missing_fields),
        },
    )
    db.commit()

    logger.info(
        "Document %s generated for matter=%s from template=%s (%s bytes)",
        document.id,
        matter_id,
        template.id,
        stored.size,
    )
    return {
        "document": {
            "id": document.id,
            "title": document.title,
            "type": document.type,
            "status": document.status,
            "filename": document.filename,
        },
        "ai_sections": ai_sections,
        "missing_fields": missing_fields,
        "tokens_used": tokens_used,
    }
