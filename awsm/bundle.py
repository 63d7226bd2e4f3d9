"""
Export bundles: one self-contained INI document holding every SSO session
and profile, optionally with the static key pairs, that can be imported on
another machine through the conflict resolver.

Bundle layout:

    # awsm export bundle
    # version = 1
    # exported_at = 2025-01-31T12:00:00Z

    [sso-session corp]
    ...
    [profile dev]
    ...
    [credentials dev]
    aws_access_key_id = __encrypted__:...
"""

import logging
import os
import re
from dataclasses import dataclass, field

from .conflicts import Outcome, Proposal, resolve_batch
from .credentials import format_expiration, utcnow
from .crypto import is_encrypted
from .document import (
    BUNDLE,
    CREDENTIALS,
    CREDENTIALS_FILE,
    PROFILE,
    SSO_SESSION,
    Document,
    make_section,
    upsert_section,
)
from .errors import EncryptionError, NotFoundError, ValidationError
from .operations import static_key_pair
from .registry import STATIC_KEYS, ProfileKind, Registry
from .store import load, save

logger = logging.getLogger(__name__)

BUNDLE_VERSION = 1

_VERSION_LINE = re.compile(r"^#\s*version\s*=\s*(\d+)\s*$", re.MULTILINE)


@dataclass
class ImportResult:
    config: Document
    credentials: Document
    sessions: object
    profiles: object
    imported_credentials: list = field(default_factory=list)
    skipped_credentials: list = field(default_factory=list)

    @property
    def failures(self):
        return self.sessions.failures + self.profiles.failures


def export_bundle(config_doc, creds_doc=None, include_credentials=False, cipher=None, now=None):
    """
    Build an export bundle.

    Args:
        config_doc: Config Document
        creds_doc: Credentials Document (needed for include_credentials)
        include_credentials: Add the key pairs of static key profiles
        cipher: Optional ValueCipher used to encrypt the key pairs

    Returns:
        Document of kind "bundle"
    """
    exported_at = format_expiration(now or utcnow())
    preamble = (
        "# awsm export bundle\n"
        f"# version = {BUNDLE_VERSION}\n"
        f"# exported_at = {exported_at}\n"
        "\n"
    )

    sections = []
    for section in config_doc.of_category(SSO_SESSION):
        sections.append(make_section(SSO_SESSION, section.name, section.body, BUNDLE))
    for section in config_doc.of_category(PROFILE):
        sections.append(make_section(PROFILE, section.name, section.body, BUNDLE))

    if include_credentials and creds_doc is not None:
        registry = Registry.build(config_doc, creds_doc)
        for profile in registry.profiles:
            if profile.kind is not ProfileKind.STATIC_KEY:
                continue
            key_pair = static_key_pair(creds_doc, profile.name)
            if key_pair is None:
                continue
            body = dict(zip(STATIC_KEYS, key_pair))
            if cipher is not None:
                body = {key: cipher.encrypt(value) for key, value in body.items()}
            sections.append(make_section(CREDENTIALS, profile.name, body, BUNDLE))

    logger.info("Exported %d sections", len(sections))
    return Document(BUNDLE, preamble, tuple(sections))


def bundle_version(bundle_doc):
    match = _VERSION_LINE.search(bundle_doc.preamble)
    return int(match.group(1)) if match else None


def write_bundle(path, bundle_doc):
    """Write a bundle; bundles holding credentials are owner-readable only."""
    private = bool(bundle_doc.of_category(CREDENTIALS))
    save(path, bundle_doc, private=private)


def read_bundle(path):
    """
    Read and check a bundle file.

    Raises:
        NotFoundError: If the file does not exist
        ValidationError: If the file is not a bundle this version can read
    """
    if not os.path.exists(path):
        raise NotFoundError(f"Bundle file {path} not found")
    bundle_doc = load(path, BUNDLE)
    version = bundle_version(bundle_doc)
    if version is None:
        raise ValidationError(f"{path} is not an awsm export bundle (no version header)")
    if version > BUNDLE_VERSION:
        raise ValidationError(
            f"{path} was written by a newer awsm (bundle version {version}, "
            f"supported {BUNDLE_VERSION})"
        )
    return bundle_doc


def _bundle_key_pairs(bundle_doc, cipher):
    pairs = {}
    for section in bundle_doc.of_category(CREDENTIALS):
        values = {key: section.get(key) for key in STATIC_KEYS}
        if not all(values.values()):
            logger.warning("Credentials for '%s' in bundle are incomplete, ignored", section.name)
            continue
        if any(is_encrypted(value) for value in values.values()):
            if cipher is None:
                raise EncryptionError(
                    "Bundle contains encrypted credentials; import it with --decrypt"
                )
            values = {key: cipher.decrypt(value) for key, value in values.items()}
        pairs[section.name] = values
    return pairs


def import_bundle(config_doc, creds_doc, bundle_doc, strategy=None, chooser=None, cipher=None):
    """
    Merge a bundle into the config and credentials documents.

    Sessions are merged first so renamed sessions can be followed by the
    profiles that use them. Key pairs are stored under the final name of
    their profile; they are dropped when the profile was skipped.

    Returns:
        ImportResult
    """
    key_pairs = _bundle_key_pairs(bundle_doc, cipher)

    session_proposals = [
        Proposal(SSO_SESSION, section.name, dict(section.body))
        for section in bundle_doc.of_category(SSO_SESSION)
    ]
    sessions = resolve_batch(config_doc, session_proposals, strategy, chooser)

    renamed_sessions = {
        resolution.proposal.name: resolution.name
        for resolution in sessions.resolutions
        if resolution.name != resolution.proposal.name
        and resolution.outcome in (Outcome.ADDED, Outcome.UNCHANGED)
    }

    profile_proposals = []
    for section in bundle_doc.of_category(PROFILE):
        body = dict(section.body)
        if body.get("sso_session") in renamed_sessions:
            body["sso_session"] = renamed_sessions[body["sso_session"]]
        kind = ProfileKind.STATIC_KEY if section.name in key_pairs else None
        profile_proposals.append(Proposal(PROFILE, section.name, body, kind))

    def same_profile(existing, proposal):
        if not existing.same_body(proposal.body):
            return False
        pair = key_pairs.get(proposal.original_name)
        if pair is None:
            return True
        stored = creds_doc.get(PROFILE, proposal.name)
        return stored is not None and all(stored.get(k) == v for k, v in pair.items())

    profiles = resolve_batch(sessions.document, profile_proposals, strategy, chooser, same_profile)

    final_names = {
        resolution.proposal.name: resolution.name
        for resolution in profiles.resolutions
        if resolution.outcome in (Outcome.ADDED, Outcome.UNCHANGED, Outcome.REPLACED)
    }
    proposed = {proposal.name for proposal in profile_proposals}

    result = ImportResult(config_doc, creds_doc, sessions, profiles)
    for name, pair in key_pairs.items():
        if name in proposed and name not in final_names:
            result.skipped_credentials.append(name)
            continue
        target = final_names.get(name, name)
        stored = creds_doc.get(PROFILE, target)
        if stored is None:
            section = make_section(PROFILE, target, pair, CREDENTIALS_FILE)
        else:
            body = dict(stored.body)
            body.update(pair)
            section = stored if stored.same_body(body) else stored.with_body(body)
        creds_doc = upsert_section(creds_doc, section)
        result.imported_credentials.append(target)

    result.config = profiles.document
    result.credentials = creds_doc
    logger.info(
        "Imported %d sessions and %d profiles",
        sessions.count(Outcome.ADDED) + sessions.count(Outcome.REPLACED),
        profiles.count(Outcome.ADDED) + profiles.count(Outcome.REPLACED),
    )
    return result
