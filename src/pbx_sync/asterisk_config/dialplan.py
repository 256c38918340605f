"""Dial plan generation and managed-region editing for extensions.conf.

Dial plan text is not parsed. pbx-sync owns only the lines between a pair
of marker comments and leaves everything else in the file untouched::

    ; BEGIN pbx-sync managed: from-internal
    ...
    ; END pbx-sync managed: from-internal
"""
from typing import Iterable, Optional

from ..models import ExtensionRecord

INTERNAL_CONTEXT = "from-internal"
EXTENSION_PATTERN = "_1XXX"

BEGIN_MARKER = "; BEGIN pbx-sync managed: {region}"
END_MARKER = "; END pbx-sync managed: {region}"


def generate_internal_dialplan(
    extensions: Iterable[ExtensionRecord],
    context: str = INTERNAL_CONTEXT,
) -> str:
    """Build the internal context: BLF hints, per-extension dial rules and
    a catch-all pattern for extension-to-extension calls.

    Disabled extensions are left out.
    """
    enabled = [ext for ext in extensions if ext.enabled]

    lines = [f"[{context}]", "; Device state hints for presence/BLF support"]
    for ext in enabled:
        lines.append(f"exten => {ext.number},hint,PJSIP/{ext.number}")
    lines.append("")

    for ext in enabled:
        number = ext.number
        lines.append(f"exten => {number},1,NoOp(Call to extension {number})")
        lines.append(f" same => n,Dial(PJSIP/{number},30)")
        if ext.voicemail_enabled:
            lines.append(f" same => n,VoiceMail({number}@default,u)")
        lines.append(" same => n,Hangup()")
        lines.append("")

    lines.append("; Pattern match for all extensions")
    lines.append(f"exten => {EXTENSION_PATTERN},1,NoOp(Extension to extension call: ${{EXTEN}})")
    lines.append(" same => n,Dial(PJSIP/${EXTEN},30)")
    lines.append(" same => n,Hangup()")

    return "\n".join(lines) + "\n"


def _find_region(lines: list[str], region: str) -> tuple[int, int]:
    """Index of the begin and end marker lines, or (-1, -1)."""
    begin = BEGIN_MARKER.format(region=region)
    end = END_MARKER.format(region=region)
    start = -1
    for index, line in enumerate(lines):
        stripped = line.strip()
        if start < 0 and stripped == begin:
            start = index
        elif start >= 0 and stripped == end:
            return start, index
    return -1, -1


def extract_managed_region(content: str, region: str) -> Optional[str]:
    """Return the body of a managed region, or None if it is absent."""
    lines = content.splitlines()
    start, stop = _find_region(lines, region)
    if start < 0:
        return None
    body = lines[start + 1:stop]
    return "\n".join(body) + "\n" if body else ""


def replace_managed_region(content: str, region: str, body: str) -> str:
    """Replace (or append) the managed region ``region`` with ``body``.

    Text outside the markers is preserved byte for byte, apart from a
    trailing newline being ensured.
    """
    lines = content.splitlines()
    block = [BEGIN_MARKER.format(region=region)]
    block.extend(body.rstrip("\n").splitlines())
    block.append(END_MARKER.format(region=region))

    start, stop = _find_region(lines, region)
    if start >= 0:
        lines[start:stop + 1] = block
    else:
        if lines and lines[-1].strip():
            lines.append("")
        lines.extend(block)

    return "\n".join(lines) + "\n"
