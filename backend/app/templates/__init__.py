from backend.app.templates.render import (
    MERGE_FIELD_PATTERN,
    RenderResult,
    extract_merge_fields,
    render_template,
)

__all__ = [
    "MERGE_FIELD_PATTERN",
    "RenderResult",
    "extract_merge_fields",
    "render_template",
]
