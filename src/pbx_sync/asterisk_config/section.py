"""A single named, typed block of an Asterisk configuration file.

Asterisk allows several sections to share a name as long as their ``type``
differs, so ``[101]`` may appear three times in pjsip.conf (endpoint, auth
and aor). A section can also be disabled by prefixing every one of its lines
with ``;``; disabled sections are kept for round-trip and later re-enabling.
"""
from dataclasses import dataclass, field
from typing import Optional

COMMENT_PREFIX = ";"


@dataclass
class Section:
    """One ``[name]`` block with ordered ``key=value`` properties.

    ``properties`` is an insertion-ordered dict: setting an existing key
    replaces its value but keeps its original position.
    """
    name: str
    type: str = ""
    properties: dict[str, str] = field(default_factory=dict)
    comments: list[str] = field(default_factory=list)
    body_comments: list[str] = field(default_factory=list)
    commented: bool = False
    template: str = ""  # header suffix such as "(!)" or "(endpoint-defaults)"

    @classmethod
    def create(cls, name: str, section_type: str = "") -> "Section":
        """Build a section whose first property is ``type``."""
        section = cls(name=name)
        if section_type:
            section.set_property("type", section_type)
        return section

    def set_property(self, key: str, value: str) -> None:
        """Set a property; the ``type`` key also drives ``Section.type``."""
        self.properties[key] = value
        if key == "type":
            self.type = value

    def get_property(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.properties.get(key, default)

    def has_property(self, key: str) -> bool:
        return key in self.properties

    def remove_property(self, key: str) -> bool:
        """Remove a property. Returns True if it existed."""
        if key not in self.properties:
            return False
        del self.properties[key]
        if key == "type":
            self.type = ""
        return True

    @property
    def is_active(self) -> bool:
        return not self.commented

    def header(self) -> str:
        prefix = COMMENT_PREFIX if self.commented else ""
        return f"{prefix}[{self.name}]{self.template}"

    def render_lines(self) -> list[str]:
        """Render the section as lines (no trailing separator)."""
        prefix = COMMENT_PREFIX if self.commented else ""
        lines = list(self.comments)
        lines.append(self.header())
        for key, value in self.properties.items():
            lines.append(f"{prefix}{key}={value}")
        lines.extend(self.body_comments)
        return lines

    def render(self) -> str:
        return "\n".join(self.render_lines()) + "\n"

    def __str__(self) -> str:
        return self.render()
