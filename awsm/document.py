"""
Ordered section model for AWS style INI documents.

A document is parsed once into a preamble and an ordered tuple of sections.
Every section keeps the verbatim text it was parsed from, so writing a
document back reproduces untouched sections byte for byte. Only sections
that were created or edited are rendered from their key/value body.

All mutation helpers return a new Document and never modify their input.
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from types import MappingProxyType

from .errors import ConflictError, NotFoundError, ParseError, ValidationError

logger = logging.getLogger(__name__)

PROFILE = "profile"
SSO_SESSION = "sso-session"
OPAQUE = "opaque"
CREDENTIALS = "credentials"

CONFIG = "config"
CREDENTIALS_FILE = "credentials"
BUNDLE = "bundle"

DOCUMENT_KINDS = (CONFIG, CREDENTIALS_FILE, BUNDLE)

_COMMENT_PREFIXES = ("#", ";")


@dataclass(frozen=True)
class Section:
    """One bracket-delimited block of key/value configuration."""

    category: str
    name: str
    header: str
    body: "MappingProxyType" = field(default_factory=dict)
    raw_text: str = field(default=None, compare=False, repr=False)

    def __post_init__(self):
        object.__setattr__(self, "body", MappingProxyType(dict(self.body)))

    @property
    def key(self):
        return (self.category, self.name)

    def get(self, option, default=None):
        return self.body.get(option, default)

    def same_body(self, body):
        """Return True if ``body`` holds the same keys and values in the same order."""
        return list(self.body.items()) == list(body.items())

    def with_body(self, body):
        """Return an edited copy of this section; it will be re-rendered on save."""
        return dataclasses.replace(self, body=dict(body), raw_text=None)

    def render(self):
        """Render the section as text, ending with a blank separator line."""
        lines = [f"[{self.header}]\n"]
        for option, value in self.body.items():
            first, *rest = str(value).split("\n")
            lines.append(f"{option} = {first}\n" if first else f"{option} =\n")
            lines.extend(f"    {line}\n" for line in rest)
        lines.append("\n")
        return "".join(lines)


@dataclass(frozen=True)
class Document:
    """A parsed INI document: leading comments plus ordered sections."""

    kind: str = CONFIG
    preamble: str = ""
    sections: tuple = ()

    def __post_init__(self):
        if self.kind not in DOCUMENT_KINDS:
            raise ValueError(f"unknown document kind {self.kind!r}")
        object.__setattr__(self, "sections", tuple(self.sections))

    def __iter__(self):
        return iter(self.sections)

    def __len__(self):
        return len(self.sections)

    def get(self, category, name):
        """Return the first section with this category and name, or None."""
        for section in self.sections:
            if section.category == category and section.name == name:
                return section
        return None

    def of_category(self, category):
        return [section for section in self.sections if section.category == category]

    def names(self, category):
        return [section.name for section in self.sections if section.category == category]


def header_for(category, name, kind=CONFIG):
    """Build the bracket text for a section of ``category`` in a ``kind`` document."""
    if category == PROFILE:
        if kind == CREDENTIALS_FILE or name == "default":
            return name
        return f"profile {name}"
    if category == SSO_SESSION:
        return f"sso-session {name}"
    if category == CREDENTIALS:
        return f"credentials {name}"
    return name


def make_section(category, name, body, kind=CONFIG):
    """
    Create a new (unparsed) section.

    Args:
        category: One of profile, sso-session, opaque or credentials
        name: Section name, unique within its category
        body: Mapping of key to string value, in output order
        kind: Kind of the document the section is meant for

    Returns:
        Section with no raw text, rendered when the document is serialized

    Raises:
        ValidationError: If the name is empty or cannot appear in a header
    """
    if not name or not name.strip():
        raise ValidationError("section name cannot be empty")
    if name != name.strip() or any(ch in name for ch in "[]\r\n"):
        raise ValidationError(f"invalid section name {name!r}")
    for option in body:
        if not option or "=" in option or option != option.strip():
            raise ValidationError(f"invalid key {option!r} for section {name!r}")
    return Section(category, name, header_for(category, name, kind), dict(body))


def _is_comment(stripped):
    return stripped.startswith(_COMMENT_PREFIXES)


def _parse_header(stripped, line_number, path):
    end = stripped.find("]")
    if end == -1:
        raise ParseError("unterminated section header", line_number, path)
    trailer = stripped[end + 1 :].strip()
    if trailer and not _is_comment(trailer):
        raise ParseError(f"unexpected text after section header: {trailer!r}", line_number, path)
    header = stripped[1:end].strip()
    if not header:
        raise ParseError("empty section header", line_number, path)
    return header


def _classify_header(header, kind, line_number, path):
    if kind == CREDENTIALS_FILE:
        return PROFILE, header

    prefix, _, rest = header.partition(" ")
    rest = rest.strip()
    categories = {"profile": PROFILE, "sso-session": SSO_SESSION}
    if kind == BUNDLE:
        categories["credentials"] = CREDENTIALS

    if prefix in categories:
        if not rest:
            raise ParseError(f"missing name in [{header}]", line_number, path)
        return categories[prefix], rest
    if header == "default":
        return PROFILE, "default"
    return OPAQUE, header


class _PendingSection:
    def __init__(self, header, category, name, line):
        self.header = header
        self.category = category
        self.name = name
        self.lines = [line]
        self.body = {}
        self.last_key = None

    def finish(self):
        return Section(self.category, self.name, self.header, self.body, "".join(self.lines))


def parse(text, kind=CONFIG, path=None):
    """
    Parse INI text into a Document in a single pass.

    Args:
        text: Document text
        kind: "config", "credentials" or "bundle"; controls header mapping
        path: Optional file path, used only in error messages

    Returns:
        Document whose sections keep their verbatim text

    Raises:
        ParseError: On a malformed header or body line, or a duplicate key
    """
    if kind not in DOCUMENT_KINDS:
        raise ValueError(f"unknown document kind {kind!r}")

    preamble = []
    sections = []
    current = None

    for line_number, line in enumerate(text.splitlines(keepends=True), start=1):
        stripped = line.strip()

        if stripped.startswith("["):
            header = _parse_header(stripped, line_number, path)
            category, name = _classify_header(header, kind, line_number, path)
            if current is not None:
                sections.append(current.finish())
            current = _PendingSection(header, category, name, line)
            continue

        if current is None:
            if stripped and not _is_comment(stripped):
                raise ParseError("key/value line outside of any section", line_number, path)
            preamble.append(line)
            continue

        current.lines.append(line)
        if not stripped:
            current.last_key = None
            continue
        if _is_comment(stripped):
            continue

        if line[0] in " \t":
            # Indented lines continue the previous value (nested s3/sso settings)
            if current.last_key is None:
                raise ParseError("continuation line without a preceding key", line_number, path)
            current.body[current.last_key] += "\n" + stripped
            continue

        option, separator, value = line.partition("=")
        option = option.strip()
        if not separator:
            raise ParseError(f"expected 'key = value', got {stripped!r}", line_number, path)
        if not option:
            raise ParseError("empty key", line_number, path)
        if option in current.body:
            raise ParseError(
                f"duplicate key {option!r} in section [{current.header}]", line_number, path
            )
        current.body[option] = value.strip()
        current.last_key = option

    if current is not None:
        sections.append(current.finish())

    logger.debug("Parsed %d sections from %s", len(sections), path or f"<{kind} text>")
    return Document(kind, "".join(preamble), tuple(sections))


def serialize(document):
    """
    Render a Document back to text.

    Untouched sections are emitted verbatim. Edited and new sections are
    rendered and separated from preceding text by a blank line.
    """
    parts = [document.preamble]
    tail = document.preamble[-2:]

    for section in document.sections:
        if section.raw_text is not None:
            chunk = section.raw_text
            if tail and not tail.endswith("\n"):
                chunk = "\n" + chunk
        else:
            chunk = section.render()
            if tail and not tail.endswith("\n"):
                chunk = "\n\n" + chunk
            elif tail and tail != "\n\n":
                chunk = "\n" + chunk
        parts.append(chunk)
        tail = (tail + chunk)[-2:]

    return "".join(parts)


def find_section(document, category, name):
    """Return the section or raise NotFoundError."""
    section = document.get(category, name)
    if section is None:
        raise NotFoundError(f"{category} '{name}' not found")
    return section


def _index_of(document, category, name):
    for index, section in enumerate(document.sections):
        if section.category == category and section.name == name:
            return index
    raise NotFoundError(f"{category} '{name}' not found")


def replace_section(document, section):
    """Return a new Document with the section sharing ``section.key`` replaced in place."""
    index = _index_of(document, section.category, section.name)
    sections = document.sections[:index] + (section,) + document.sections[index + 1 :]
    return dataclasses.replace(document, sections=sections)


def remove_section(document, category, name):
    """Return a new Document without the named section."""
    index = _index_of(document, category, name)
    sections = document.sections[:index] + document.sections[index + 1 :]
    return dataclasses.replace(document, sections=sections)


def append_section(document, section):
    """Return a new Document with ``section`` added at the end."""
    if document.get(section.category, section.name) is not None:
        raise ConflictError(f"{section.category} '{section.name}' already exists")
    return dataclasses.replace(document, sections=document.sections + (section,))


def upsert_section(document, section):
    """Replace the section if it exists, append it otherwise."""
    if document.get(section.category, section.name) is None:
        return append_section(document, section)
    return replace_section(document, section)


def duplicate_keys(document):
    """Return the (category, name) pairs that occur more than once."""
    seen = set()
    duplicates = []
    for section in document.sections:
        if section.key in seen and section.key not in duplicates:
            duplicates.append(section.key)
        seen.add(section.key)
    return duplicates
