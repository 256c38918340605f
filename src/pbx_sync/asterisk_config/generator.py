"""Build pjsip.conf sections from database records.

Pure functions: no file access, no side effects. Codec lists are written as
a single ``allow=ulaw,alaw,g722`` line, which Asterisk treats the same as
one ``allow`` line per codec.
"""
from typing import Iterable

from ..models import ExtensionRecord, TrunkRecord
from .section import Section

PJSIP_HEADER = [
    "; pbx-sync PJSIP Configuration",
    "; Generated by pbx-sync",
]
TRANSPORT_COMMENT = "; SIP Transports Configuration"
TRANSPORT_BIND = "0.0.0.0:5060"


def _allow_value(codecs: Iterable[str]) -> str:
    return ",".join(c.strip() for c in codecs if c.strip())


def endpoint_sections(ext: ExtensionRecord) -> list[Section]:
    """Generate the endpoint, auth and aor sections for an extension.

    Args:
        ext: Database record; unset fields fall back to the defaults

    Returns:
        Exactly three sections named after the extension number
    """
    number = ext.number
    context = ext.effective_context

    endpoint = Section.create(number, "endpoint")
    endpoint.set_property("context", context)
    endpoint.set_property("disallow", "all")
    allow = _allow_value(ext.effective_codecs)
    if allow:
        endpoint.set_property("allow", allow)
    endpoint.set_property("transport", ext.effective_transport)
    endpoint.set_property("auth", number)
    endpoint.set_property("aors", number)
    endpoint.set_property("direct_media", ext.effective_direct_media)
    if ext.caller_id:
        endpoint.set_property("callerid", ext.caller_id)
    if ext.voicemail_enabled:
        endpoint.set_property("mailboxes", f"{number}@default")
    # presence / BLF
    endpoint.set_property("subscribe_context", context)
    endpoint.set_property("device_state_busy_at", "1")

    auth = Section.create(number, "auth")
    auth.set_property("auth_type", "userpass")
    auth.set_property("username", number)
    auth.set_property("password", ext.secret)

    aor = Section.create(number, "aor")
    aor.set_property("max_contacts", str(ext.effective_max_contacts))
    aor.set_property("remove_existing", "yes")
    aor.set_property("qualify_frequency", str(ext.effective_qualify_frequency))
    aor.set_property("support_outbound", "yes")

    return [endpoint, auth, aor]


def trunk_sections(trunk: TrunkRecord) -> list[Section]:
    """Generate endpoint, optional auth, aor and identify sections for a trunk."""
    name = trunk.name
    has_auth = bool(trunk.username)

    endpoint = Section.create(name, "endpoint")
    endpoint.set_property("context", trunk.effective_context)
    endpoint.set_property("disallow", "all")
    allow = _allow_value(trunk.effective_codecs)
    if allow:
        endpoint.set_property("allow", allow)
    endpoint.set_property("transport", trunk.effective_transport)
    endpoint.set_property("aors", name)
    endpoint.set_property("direct_media", trunk.direct_media or "no")
    for key, value in (
        ("from_domain", trunk.from_domain),
        ("from_user", trunk.from_user),
        ("language", trunk.language),
    ):
        if value:
            endpoint.set_property(key, value)
    if has_auth:
        endpoint.set_property("outbound_auth", name)

    sections = [endpoint]

    if has_auth:
        auth = Section.create(name, "auth")
        auth.set_property("auth_type", "userpass")
        auth.set_property("username", trunk.username)
        auth.set_property("password", trunk.secret)
        sections.append(auth)

    aor = Section.create(name, "aor")
    aor.set_property("contact", f"sip:{trunk.host}:{trunk.port}")
    aor.set_property("qualify_frequency", str(trunk.qualify_frequency or 60))
    sections.append(aor)

    identify = Section.create(name, "identify")
    identify.set_property("endpoint", name)
    identify.set_property("match", trunk.host)
    sections.append(identify)

    return sections


def transport_sections() -> list[Section]:
    """UDP and TCP transports bound on the standard SIP port."""
    sections = []
    for protocol in ("udp", "tcp"):
        transport = Section.create(f"transport-{protocol}", "transport")
        transport.set_property("protocol", protocol)
        transport.set_property("bind", TRANSPORT_BIND)
        transport.set_property("allow_reload", "yes")
        sections.append(transport)
    sections[0].comments = [TRANSPORT_COMMENT]
    return sections


def render_sections(sections: list[Section]) -> str:
    """Render sections as a standalone snippet, one blank line apart."""
    return "\n".join(section.render() for section in sections)
