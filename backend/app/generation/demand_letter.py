"""
Demand letter generation.

Two steps:
  1. deterministic merge of {{merge.fields}} via render_template
  2. AI narrative for each {{AI:section_key}} marker left in the merged text

text_to_pdf turns the finished letter into an A4 PDF with firm letterhead.
"""
from __future__ import annotations

import io
import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Optional

from reportlab.lib.pagesizes import A4
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfgen import canvas

from backend.app.api import config
from backend.app.generation.context_builder import GenerationContext
from backend.app.integrations.ai_client import AiCallResult, call_ai
from backend.app.templates.render import render_template

logger = logging.getLogger(__name__)

AI_SECTION_PATTERN = re.compile(r"\{\{AI:([a-zA-Z_]+)\}\}")

SECTION_TEMPERATURE = 0.2
SECTION_MAX_TOKENS = 1024
SECTION_TIMEOUT_S = 60.0

SECTION_INSTRUCTIONS = {
    "liability_narrative": (
        "Write a concise liability narrative establishing the defendant's fault. "
        "Reference specific facts from the extracted findings about the incident circumstances, "
        "defendant's duty of care, and breach. Use formal legal language."
    ),
    "injury_narrative": (
        "Write a narrative describing the claimant's injuries and their impact. "
        "Reference specific medical findings, treatment history, and prognosis from the extracted data. "
        "Describe the physical, emotional, and lifestyle impact."
    ),
    "damages_narrative": (
        "Write a damages calculation narrative. Reference specific financial losses, "
        "medical costs, lost earnings, and future care needs from the extracted findings. "
        "Present a structured breakdown supporting the total demand amount."
    ),
}

AiCall = Callable[..., AiCallResult]


@dataclass(frozen=True)
class DemandLetterResult:
    content: str
    tokens_used: int
    ai_sections: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    model: Optional[str] = None


def has_ai_sections(template_content: str) -> bool:
    return AI_SECTION_PATTERN.search(template_content) is not None


def build_section_prompt(section_key: str, context: GenerationContext) -> str:
    findings_summary = "\n".join(f"- {key}: {value}" for key, value in context.findings.items())
    section_label = section_key.replace("_", " ")

    instruction = SECTION_INSTRUCTIONS.get(section_key) or (
        f'Write a professional legal narrative for the "{section_label}" section. '
        "Reference only facts from the extracted findings."
    )

    return "\n".join(
        [
            "You are a senior personal injury attorney drafting a formal demand letter.",
            "",
            f"Matter: {context.matter.get('reference')} - {context.matter.get('title')}",
            f"Client: {context.client.get('name')}",
            f"Practice Area: {context.matter.get('practiceArea')}",
            "",
            "Extracted Findings:",
            findings_summary or "(No findings extracted)",
            "",
            f"Section: {section_label}",
            "",
            instruction,
            "",
            "Constraints:",
            "- Only reference facts from the extracted findings above",
            "- Maximum 400 words",
            "- Formal legal tone appropriate for a demand letter",
            "- Do not include section headings; the text will be inserted inline",
        ]
    )


def generate_demand_letter(
    context: GenerationContext,
    template_content: str,
    *,
    ai_call: Optional[AiCall] = None,
    model: Optional[str] = None,
) -> DemandLetterResult:
    model = model or config.document_ai_model()
    merged = render_template(template_content, context.merge_data())

    final_content = merged.content
    ai_sections: list[str] = []
    total_tokens = 0

    for match in AI_SECTION_PATTERN.finditer(merged.content):
        marker, section_key = match.group(0), match.group(1)
        result = (ai_call or call_ai)(
            model=model,
            messages=[{"role": "user", "content": build_section_prompt(section_key, context)}],
            temperature=SECTION_TEMPERATURE,
            max_tokens=SECTION_MAX_TOKENS,
            timeout_s=SECTION_TIMEOUT_S,
        )
        # first occurrence only; a repeated marker gets its own call
        final_content = final_content.replace(marker, result.content, 1)
        total_tokens += result.tokens_used
        ai_sections.append(section_key)

    logger.info(
        "Demand letter generated for matter=%s sections=%s tokens=%s missing=%s",
        context.matter.get("reference"),
        len(ai_sections),
        total_tokens,
        len(merged.missing),
    )
    return DemandLetterResult(
        content=final_content,
        tokens_used=total_tokens,
        ai_sections=ai_sections,
        missing=merged.missing,
        model=model,
    )


# -------------------------
# PDF rendering
# -------------------------

PAGE_WIDTH, PAGE_HEIGHT = A4
MARGIN_X = 50
BODY_WIDTH = 495
BODY_FONT = "Helvetica"
HEADER_FONT = "Helvetica-Bold"
BODY_SIZE = 10
LINE_HEIGHT = 14
PARAGRAPH_GAP = 4
BLANK_LINE_GAP = 12
PAGE_BOTTOM = 80
CONTINUATION_TOP = 790


def wrap_line(text: str, max_width: float = BODY_WIDTH, font: str = BODY_FONT, size: int = BODY_SIZE) -> list[str]:
    lines: list[str] = []
    line = ""
    for word in text.split(" "):
        candidate = f"{line} {word}" if line else word
        if line and stringWidth(candidate, font, size) > max_width:
            lines.append(line)
            line = word
        else:
            line = candidate
    if line:
        lines.append(line)
    return lines


def _layout_pages(text: str, first_page_top: float) -> list[list[tuple[float, str]]]:
    pages: list[list[tuple[float, str]]] = [[]]
    y = first_page_top
    for raw_line in text.split("\n"):
        if y < PAGE_BOTTOM:
            pages.append([])
            y = CONTINUATION_TOP
        if not raw_line.strip():
            y -= BLANK_LINE_GAP
            continue
        for wrapped in wrap_line(raw_line):
            if y < PAGE_BOTTOM:
                pages.append([])
                y = CONTINUATION_TOP
            pages[-1].append((y, wrapped))
            y -= LINE_HEIGHT
        y -= PARAGRAPH_GAP
    return pages


def text_to_pdf(text: str, firm_name: str) -> bytes:
    header_y = PAGE_HEIGHT - 50
    rule_y = header_y - 25
    pages = _layout_pages(text, first_page_top=rule_y - 30)
    total = len(pages)

    buf = io.BytesIO()
    pdf = canvas.Canvas(buf, pagesize=A4)
    pdf.setTitle(firm_name)

    for index, lines in enumerate(pages, start=1):
        if index == 1:
            pdf.setFillColorRGB(0.1, 0.1, 0.4)
            pdf.setFont(HEADER_FONT, 16)
            pdf.drawString(MARGIN_X, header_y, firm_name)
            pdf.setStrokeColorRGB(0.7, 0.7, 0.7)
            pdf.setLineWidth(1)
            pdf.line(MARGIN_X, rule_y, PAGE_WIDTH - MARGIN_X, rule_y)

        pdf.setFillColorRGB(0, 0, 0)
        pdf.setFont(BODY_FONT, BODY_SIZE)
        for y, line in lines:
            pdf.drawString(MARGIN_X, y, line)

        pdf.setFillColorRGB(0.5, 0.5, 0.5)
        pdf.setFont(BODY_FONT, 8)
        pdf.drawString(MARGIN_X, 30, "Confidential")
        pdf.drawString(PAGE_WIDTH - 110, 30, f"Page {index} of {total}")
        pdf.showPage()

    pdf.save()
    return buf.getvalue()
