"""Asterisk configuration document model.

Parses, edits and re-renders Asterisk ini-style files (pjsip.conf) while
keeping comments, section order and disabled sections intact.

Usage:
    from pbx_sync.asterisk_config import ConfigDocument, endpoint_sections

    doc = ConfigDocument.parse(text)
    doc.remove_sections_for_extension("101")
    doc.add_sections(endpoint_sections(record))
    new_text = doc.render()
"""

from .section import Section
from .document import ConfigDocument
from .naming import (
    resolve_extension_number,
    is_extension_number,
    extension_section_names,
    is_alternative_naming,
)
from .generator import (
    endpoint_sections,
    trunk_sections,
    transport_sections,
    render_sections,
    PJSIP_HEADER,
)
from .dialplan import (
    generate_internal_dialplan,
    replace_managed_region,
    extract_managed_region,
)

__all__ = [
    "Section",
    "ConfigDocument",
    "resolve_extension_number",
    "is_extension_number",
    "extension_section_names",
    "is_alternative_naming",
    "endpoint_sections",
    "trunk_sections",
    "transport_sections",
    "render_sections",
    "PJSIP_HEADER",
    "generate_internal_dialplan",
    "replace_managed_region",
    "extract_managed_region",
]
