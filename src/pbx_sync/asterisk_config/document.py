"""Asterisk configuration document: parse, query, mutate and render.

The parser is permissive. It never raises on malformed input; lines it does
not understand are skipped so one bad line cannot hide the rest of the file.

Layout rules used when re-attaching comments:
- everything before the first section header becomes ``header_lines``
- comment/blank lines between two sections are split at the first blank
  line: the part above stays with the previous section (``body_comments``),
  the part below becomes the next section's leading ``comments``
- ``#include``/``#exec`` directives are treated like comments so they
  survive a round trip
"""
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

from .naming import extension_section_names
from .section import Section

logger = logging.getLogger(__name__)

_HEADER = re.compile(r"^\s*(?P<disabled>;\s*)?\[(?P<name>[^\]]+)\]\s*(?P<template>\([^)]*\))?")
_PROPERTY = re.compile(r"^\s*([^=;\s]+)\s*=\s*(.*)$")
_DISABLED_PROPERTY = re.compile(r"^\s*;\s*([^=;\s]+)\s*=\s*(.*)$")
# A disabled property kept as a comment inside a disabled section
_NESTED_DISABLED_PROPERTY = re.compile(r"^;(\s*;\s*[^=;\s]+\s*=.*)$")

# Keys Asterisk treats as cumulative; repeated lines are folded into one
# comma-separated value so property keys stay unique.
CUMULATIVE_KEYS = frozenset({"allow", "disallow", "match", "contact"})


def _is_structural(line: str) -> bool:
    """Blank, ``;`` comment or ``#`` directive line."""
    stripped = line.strip()
    return not stripped or stripped.startswith((";", "#"))


def _unnest(line: str) -> str:
    nested = _NESTED_DISABLED_PROPERTY.match(line)
    return nested.group(1) if nested else line


def _strip_trailing_blank(lines: list[str]) -> list[str]:
    end = len(lines)
    while end and not lines[end - 1].strip():
        end -= 1
    return lines[:end]


def _split_pending(pending: list[str]) -> tuple[list[str], list[str]]:
    """Split comments found between two sections.

    Returns (tail of previous section, leading comments of next section).
    """
    for index, line in enumerate(pending):
        if not line.strip():
            tail = pending[:index]
            leading = pending[index:]
            while leading and not leading[0].strip():
                leading = leading[1:]
            return tail, leading
    return [], list(pending)


@dataclass
class ConfigDocument:
    """Ordered sections of one Asterisk configuration file."""
    header_lines: list[str] = field(default_factory=list)
    sections: list[Section] = field(default_factory=list)
    source_path: Optional[str] = None

    # === Parsing ===

    @classmethod
    def parse(cls, text: str, source_path: Optional[str] = None) -> "ConfigDocument":
        """Parse configuration text into a document.

        Args:
            text: Raw file contents
            source_path: Optional path the text was read from

        Returns:
            ConfigDocument (never raises on malformed content)
        """
        doc = cls(source_path=source_path)
        current: Optional[Section] = None
        pending: list[str] = []
        skipped = 0

        for raw in text.splitlines():
            line = raw.rstrip()

            header = _HEADER.match(line)
            if header:
                if current is None:
                    doc.header_lines = _strip_trailing_blank(doc.header_lines)
                    leading: list[str] = []
                else:
                    tail, leading = _split_pending(pending)
                    current.body_comments.extend(tail)
                    doc._close(current)
                pending = []
                current = Section(
                    name=header.group("name").strip(),
                    commented=header.group("disabled") is not None,
                    template=header.group("template") or "",
                    comments=leading,
                )
                continue

            if current is None:
                doc.header_lines.append(line)
                continue

            pattern = _DISABLED_PROPERTY if current.commented else _PROPERTY
            prop = pattern.match(line)
            if prop:
                current.body_comments.extend(pending)
                pending = []
                doc._load_property(current, prop.group(1), prop.group(2).strip())
                continue

            if _is_structural(line):
                pending.append(line)
            else:
                skipped += 1

        if current is None:
            doc.header_lines = _strip_trailing_blank(doc.header_lines)
        else:
            current.body_comments.extend(pending)
            doc._close(current)

        if skipped:
            logger.debug(f"Skipped {skipped} unrecognized line(s) in {source_path or '<text>'}")
        return doc

    @classmethod
    def parse_file(cls, path: Union[str, Path]) -> Optional["ConfigDocument"]:
        """Parse a file from disk. Returns None if the file does not exist."""
        path = Path(path)
        if not path.exists():
            return None
        return cls.parse(path.read_text(encoding="utf-8"), source_path=str(path))

    @classmethod
    def empty(
        cls,
        header_lines: Iterable[str] = (),
        source_path: Optional[str] = None,
    ) -> "ConfigDocument":
        """Document with no sections, only the given header comment lines."""
        return cls(header_lines=list(header_lines), source_path=source_path)

    @staticmethod
    def _load_property(section: Section, key: str, value: str) -> None:
        existing = section.properties.get(key)
        if key in CUMULATIVE_KEYS and existing:
            value = f"{existing},{value}" if value else existing
        section.set_property(key, value)

    def _close(self, section: Section) -> None:
        section.body_comments = _strip_trailing_blank(section.body_comments)
        self.sections.append(section)

    # === Rendering ===

    def render(self) -> str:
        """Render the document back to configuration text."""
        lines = list(self.header_lines)
        if self.header_lines and self.sections:
            lines.append("")

        for index, section in enumerate(self.sections):
            if index:
                lines.append("")
            lines.extend(section.render_lines())

        if not lines:
            return ""
        return "\n".join(lines) + "\n"

    def __str__(self) -> str:
        return self.render()

    # === Queries ===

    def find_sections_by_name(self, name: str) -> list[Section]:
        return [s for s in self.sections if s.name == name]

    def find_section(self, name: str, section_type: str) -> Optional[Section]:
        """Find a section by (name, type). The last match wins."""
        found = None
        for section in self.sections:
            if section.name == name and section.type == section_type:
                found = section
        return found

    def find_active_section(self, name: str, section_type: str) -> Optional[Section]:
        found = None
        for section in self.sections:
            if section.name == name and section.type == section_type and not section.commented:
                found = section
        return found

    def find_active_sections_by_name(self, name: str) -> list[Section]:
        return [s for s in self.sections if s.name == name and not s.commented]

    def find_commented_sections_by_name(self, name: str) -> list[Section]:
        return [s for s in self.sections if s.name == name and s.commented]

    def has_section(self, name: str) -> bool:
        return any(s.name == name for s in self.sections)

    def has_section_with_type(self, name: str, section_type: str) -> bool:
        return self.find_section(name, section_type) is not None

    def has_active_section(self, name: str) -> bool:
        return any(s.name == name and not s.commented for s in self.sections)

    def has_commented_section(self, name: str) -> bool:
        return any(s.name == name and s.commented for s in self.sections)

    def find_sections_for_extension(self, number: str) -> list[Section]:
        """All sections belonging to an extension, in any naming spelling."""
        names = set(extension_section_names(number))
        return [s for s in self.sections if s.name in names]

    def section_names(self) -> list[str]:
        """Distinct section names in document order."""
        seen: dict[str, None] = {}
        for section in self.sections:
            seen.setdefault(section.name, None)
        return list(seen)

    # === Mutations ===

    def add_section(self, section: Section) -> None:
        self.sections.append(section)

    def add_sections(self, sections: list[Section]) -> None:
        self.sections.extend(sections)

    def add_or_replace_section(self, section: Section) -> None:
        """Replace the last section with the same (name, type), else append."""
        for index in range(len(self.sections) - 1, -1, -1):
            existing = self.sections[index]
            if existing.name == section.name and existing.type == section.type:
                self.sections[index] = section
                return
        self.sections.append(section)

    def _remove_where(self, predicate: Callable[[Section], bool]) -> int:
        kept = [s for s in self.sections if not predicate(s)]
        removed = len(self.sections) - len(kept)
        self.sections = kept
        return removed

    def remove_sections_by_name(self, name: str) -> int:
        """Remove every section with this name. Returns the count removed."""
        return self._remove_where(lambda s: s.name == name)

    def remove_section(self, name: str, section_type: str) -> bool:
        """Remove all sections matching (name, type)."""
        return self._remove_where(lambda s: s.name == name and s.type == section_type) > 0

    def remove_active_sections_by_name(self, name: str) -> int:
        return self._remove_where(lambda s: s.name == name and not s.commented)

    def remove_commented_sections_by_name(self, name: str) -> int:
        return self._remove_where(lambda s: s.name == name and s.commented)

    def remove_sections_for_extension(self, number: str) -> int:
        names = set(extension_section_names(number))
        return self._remove_where(lambda s: s.name in names)

    def comment_out_sections_by_name(self, name: str) -> int:
        """Disable every active section with this name.

        Property lines that were already disabled get a second ``;`` so a
        re-parse keeps them as comments instead of section properties.
        """
        changed = 0
        for section in self.sections:
            if section.name == name and not section.commented:
                section.commented = True
                section.body_comments = [
                    f";{line}" if _DISABLED_PROPERTY.match(line) else line
                    for line in section.body_comments
                ]
                changed += 1
        return changed

    def uncomment_sections_by_name(self, name: str) -> int:
        """Re-enable every disabled section with this name."""
        changed = 0
        for section in self.sections:
            if section.name == name and section.commented:
                section.commented = False
                section.body_comments = [_unnest(line) for line in section.body_comments]
                changed += 1
        return changed
