"""Fold pjsip.conf sections into per-extension records."""
import logging

from ..asterisk_config import ConfigDocument, resolve_extension_number
from ..models import parse_codecs
from .schema import DerivedExtension

logger = logging.getLogger(__name__)

EXTENSION_ROLES = ("endpoint", "auth", "aor")


def _to_int(value: str, fallback: int) -> int:
    try:
        return int(value.strip())
    except (ValueError, AttributeError):
        return fallback


def derive_extensions(doc: ConfigDocument) -> list[DerivedExtension]:
    """Reconstruct extensions from the active endpoint/auth/aor sections.

    Sections whose names do not resolve to an extension number, disabled
    sections and sections of other types (transport, identify, ...) are
    ignored. Extensions without an endpoint context are not reported.

    Args:
        doc: Parsed pjsip.conf

    Returns:
        Derived extensions in first-seen order
    """
    found: dict[str, DerivedExtension] = {}

    for section in doc.sections:
        if section.commented or section.type not in EXTENSION_ROLES:
            continue

        number, ok = resolve_extension_number(section.name)
        if not ok:
            continue

        ext = found.get(number)
        if ext is None:
            ext = found[number] = DerivedExtension(number=number)

        props = section.properties
        if section.type == "endpoint":
            if "context" in props:
                ext.context = props["context"]
            if "transport" in props:
                ext.transport = props["transport"]
            if "callerid" in props:
                ext.caller_id = props["callerid"]
            if "direct_media" in props:
                ext.direct_media = props["direct_media"]
            for codec in parse_codecs(props.get("allow")):
                if codec not in ext.codecs:
                    ext.codecs.append(codec)

        elif section.type == "auth":
            if "password" in props:
                ext.secret = props["password"]

        elif section.type == "aor":
            if "max_contacts" in props:
                ext.max_contacts = _to_int(props["max_contacts"], ext.max_contacts)
            if "qualify_frequency" in props:
                ext.qualify_frequency = _to_int(props["qualify_frequency"], ext.qualify_frequency)

    result = [ext for ext in found.values() if ext.context]
    dropped = len(found) - len(result)
    if dropped:
        logger.debug(f"Ignored {dropped} extension(s) without an endpoint context")
    return result
