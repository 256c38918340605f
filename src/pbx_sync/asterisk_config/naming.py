"""Map pjsip section names onto extension numbers.

Extensions are normally written as three sections all named ``[101]``, but
hand-edited or legacy configs also use role-qualified names such as
``[101-auth]``, ``[aor_101]`` or ``[endpoint101]``. These helpers fold every
spelling back to the bare extension number.
"""
import re

ROLES = ("auth", "aor", "endpoint")

_NUMERIC = re.compile(r"^\d+$")
_SUFFIX_FORM = re.compile(r"^(\d+)[-_]?(auth|aor|endpoint)$")
_PREFIX_FORM = re.compile(r"^(auth|aor|endpoint)[-_]?(\d+)$")


def resolve_extension_number(section_name: str) -> tuple[str, bool]:
    """Resolve a section name to its extension number.

    Args:
        section_name: Name between the brackets, e.g. "101" or "auth-101"

    Returns:
        Tuple of (extension_number, ok). ``ok`` is False for anything that
        is not an extension section (transports, ``global``, trunk names).
    """
    if _NUMERIC.match(section_name):
        return section_name, True

    match = _SUFFIX_FORM.match(section_name)
    if match:
        return match.group(1), True

    match = _PREFIX_FORM.match(section_name)
    if match:
        return match.group(2), True

    return "", False


def is_extension_number(number: str) -> bool:
    """True for a canonical (all digits) extension number."""
    return bool(_NUMERIC.match(number))


def extension_section_names(number: str) -> list[str]:
    """All 19 section spellings that can belong to an extension.

    The plain number plus six forms per role (``101-auth``, ``101_auth``,
    ``101auth``, ``auth-101``, ``auth_101``, ``auth101``). This is exactly the
    set ``resolve_extension_number`` maps back to the number, so removing
    these names erases every section the resolver counts as the extension's.
    """
    names = [number]
    for role in ROLES:
        names.extend([
            f"{number}-{role}",
            f"{number}_{role}",
            f"{number}{role}",
            f"{role}-{number}",
            f"{role}_{number}",
            f"{role}{number}",
        ])
    return names


def is_alternative_naming(section_name: str, number: str) -> bool:
    """True if the section belongs to ``number`` but is not named plainly."""
    resolved, ok = resolve_extension_number(section_name)
    return ok and resolved == number and section_name != number
