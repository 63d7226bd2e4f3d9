"""
Conflict resolution for proposed profile and session sections.

Generation and import propose (category, name, body) triples against an
existing document. The resolver decides, per proposal, whether the section
is added, left alone, renamed or replaced. It performs no I/O itself;
interactive decisions go through a ``chooser`` callback.
"""

import dataclasses
import enum
import logging
from dataclasses import dataclass, field

from .document import PROFILE, SSO_SESSION, append_section, make_section, replace_section
from .errors import AwsmError, ConflictError, ValidationError
from .registry import ProfileKind, classify_body

logger = logging.getLogger(__name__)

MAX_CUSTOM_ATTEMPTS = 3

RENAME_SUFFIXES = {
    ProfileKind.FEDERATED_SESSION: "-sso",
    ProfileKind.ASSUMED_ROLE: "-role",
    ProfileKind.STATIC_KEY: "-key",
}


class Strategy(enum.Enum):
    SKIP = "skip"
    AUTO_RENAME = "rename"
    CUSTOM_NAME = "custom"
    OVERWRITE = "overwrite"


class Outcome(enum.Enum):
    ADDED = "added"
    UNCHANGED = "unchanged"
    REPLACED = "replaced"
    SKIPPED = "skipped"
    CONFLICT = "conflict"
    FAILED = "failed"


@dataclass(frozen=True)
class Proposal:
    category: str
    name: str
    body: dict = field(default_factory=dict)
    kind: ProfileKind = None
    origin: str = None

    @property
    def original_name(self):
        return self.origin or self.name

    def renamed(self, name):
        return dataclasses.replace(self, name=name, origin=self.original_name)


@dataclass(frozen=True)
class Choice:
    strategy: Strategy
    name: str = None


@dataclass(frozen=True)
class Conflict:
    """Passed to the chooser when a proposal collides with a different section."""

    proposal: Proposal
    existing: object
    suggested_name: str

    @property
    def name(self):
        return self.proposal.name


@dataclass(frozen=True)
class Resolution:
    proposal: Proposal
    outcome: Outcome
    name: str = None
    error: Exception = None

    @property
    def changed(self):
        return self.outcome in (Outcome.ADDED, Outcome.REPLACED)


@dataclass
class BatchResult:
    document: object
    resolutions: list = field(default_factory=list)

    def count(self, outcome):
        return sum(1 for resolution in self.resolutions if resolution.outcome is outcome)

    @property
    def changed(self):
        return any(resolution.changed for resolution in self.resolutions)

    @property
    def failures(self):
        return [
            resolution
            for resolution in self.resolutions
            if resolution.outcome in (Outcome.CONFLICT, Outcome.FAILED)
        ]


def rename_suffix(proposal):
    """Suffix AutoRename appends to a colliding name."""
    if proposal.category == SSO_SESSION:
        return "-session"
    if proposal.category == PROFILE:
        if proposal.kind is not None:
            return RENAME_SUFFIXES[proposal.kind]
        kinds = classify_body(proposal.body)
        if len(kinds) == 1:
            return RENAME_SUFFIXES[next(iter(kinds))]
    return "-new"


def _auto_rename(document, proposal, matches):
    base = f"{proposal.name}{rename_suffix(proposal)}"
    candidate = base
    counter = 2
    while True:
        existing = document.get(proposal.category, candidate)
        if existing is None:
            return candidate, False
        if matches(existing, proposal.renamed(candidate)):
            return candidate, True
        candidate = f"{base}-{counter}"
        counter += 1


def _as_choice(strategy):
    if strategy is None or isinstance(strategy, Choice):
        return strategy
    return Choice(Strategy(strategy))


def _add(document, proposal):
    section = make_section(proposal.category, proposal.name, proposal.body, document.kind)
    return append_section(document, section)


def _same_body(existing, proposal):
    return existing.same_body(proposal.body)


def resolve(document, proposal, strategy=None, chooser=None, matches=None):
    """
    Resolve a single proposal against a document.

    Args:
        document: Document to merge into
        proposal: Proposal to add
        strategy: Strategy or Choice forced by the caller (skips the chooser)
        chooser: Callable taking a Conflict and returning a Choice
        matches: Callable (existing Section, Proposal) -> bool deciding whether an
            existing section already holds the proposal (default: same body)

    Returns:
        tuple: (new Document, Resolution)

    Raises:
        ConflictError: If the names collide and neither strategy nor chooser is given
        ValidationError: If a chosen name is empty or invalid
    """
    forced = _as_choice(strategy)
    matches = matches or _same_body
    requested = proposal
    attempts = 0

    while True:
        existing = document.get(proposal.category, proposal.name)
        if existing is None:
            logger.debug("Adding %s '%s'", proposal.category, proposal.name)
            return _add(document, proposal), Resolution(requested, Outcome.ADDED, proposal.name)

        if matches(existing, proposal):
            logger.debug("%s '%s' is unchanged", proposal.category, proposal.name)
            return document, Resolution(requested, Outcome.UNCHANGED, proposal.name)

        if forced is not None:
            choice = forced
        elif chooser is not None:
            suggested, _ = _auto_rename(document, proposal, matches)
            choice = chooser(Conflict(proposal, existing, suggested))
        else:
            raise ConflictError(
                f"{proposal.category} '{proposal.name}' already exists with different settings"
            )

        if choice.strategy is Strategy.SKIP:
            logger.info("Skipping %s '%s'", proposal.category, proposal.name)
            return document, Resolution(requested, Outcome.SKIPPED, proposal.name)

        if choice.strategy is Strategy.OVERWRITE:
            logger.info("Replacing %s '%s'", proposal.category, proposal.name)
            document = replace_section(document, existing.with_body(proposal.body))
            return document, Resolution(requested, Outcome.REPLACED, proposal.name)

        if choice.strategy is Strategy.AUTO_RENAME:
            name, identical = _auto_rename(document, proposal, matches)
            if identical:
                return document, Resolution(requested, Outcome.UNCHANGED, name)
            logger.info("Adding %s '%s' as '%s'", proposal.category, proposal.name, name)
            document = _add(document, proposal.renamed(name))
            return document, Resolution(requested, Outcome.ADDED, name)

        # Custom name: resolve again under the new name
        if not choice.name or not choice.name.strip():
            raise ValidationError("a custom name is required")
        attempts += 1
        if attempts > MAX_CUSTOM_ATTEMPTS:
            raise ConflictError(f"no free name found for {proposal.category} '{proposal.name}'")
        proposal = proposal.renamed(choice.name.strip())
        forced = None
        logger.debug("Retrying '%s' as '%s'", requested.name, proposal.name)


def resolve_batch(document, proposals, strategy=None, chooser=None, matches=None):
    """
    Resolve proposals in order, isolating failures per proposal.

    A proposal that cannot be resolved is recorded as CONFLICT (or FAILED for
    other errors) and the document is left as it was before that proposal.

    Returns:
        BatchResult
    """
    result = BatchResult(document)
    for proposal in proposals:
        try:
            result.document, resolution = resolve(
                result.document, proposal, strategy, chooser, matches
            )
        except ConflictError as e:
            logger.warning("Unresolved conflict for %s '%s': %s", proposal.category, proposal.name, e)
            resolution = Resolution(proposal, Outcome.CONFLICT, proposal.name, e)
        except AwsmError as e:
            logger.warning("Failed to merge %s '%s': %s", proposal.category, proposal.name, e)
            resolution = Resolution(proposal, Outcome.FAILED, proposal.name, e)
        result.resolutions.append(resolution)
    return result
