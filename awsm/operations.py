"""
Profile and SSO session operations on the config and credentials documents.

Every function takes documents and returns new documents; callers decide
when to save. Name collisions go through the conflict resolver.
"""

import logging
import re
from dataclasses import dataclass

from .conflicts import Outcome, Proposal, Strategy, resolve, resolve_batch
from .document import (
    CREDENTIALS_FILE,
    PROFILE,
    SSO_SESSION,
    append_section,
    find_section,
    make_section,
    remove_section,
    replace_section,
    upsert_section,
)
from .errors import ConflictError, NotFoundError, ValidationError
from .regions import is_valid_region
from .registry import STATIC_KEYS, ProfileKind, Registry, is_valid_start_url
from .settings import DEFAULT_SCOPES

logger = logging.getLogger(__name__)

_UNSAFE_NAME_CHARS = re.compile(r"[^a-z0-9-]")


@dataclass(frozen=True)
class DiscoveredRole:
    """An account/role pair reachable through an SSO session."""

    account_id: str
    account_name: str
    role_name: str


def _require_region(region):
    if not region or not is_valid_region(region):
        raise ValidationError(f"Invalid region: {region}")
    return region.strip()


def _require(value, label):
    if not value or not value.strip():
        raise ValidationError(f"{label} is required")
    return value.strip()


def profile_name_for(account_name, role_name):
    """
    Build a profile name from an account and role name.

    Both parts are lowercased and anything outside [a-z0-9-] becomes a dash:
    ("Prod Account", "AdministratorAccess") -> "prod-account-administratoraccess"
    """
    account = _UNSAFE_NAME_CHARS.sub("-", account_name.lower())
    role = _UNSAFE_NAME_CHARS.sub("-", role_name.lower())
    return f"{account}-{role}"


def add_session(config_doc, name, start_url, region, scopes=DEFAULT_SCOPES):
    """
    Add an sso-session section.

    Raises:
        ValidationError: If the URL, region or name is invalid
        ConflictError: If a session with this name already exists
    """
    name = _require(name, "Session name")
    if not is_valid_start_url(start_url):
        raise ValidationError(f"Invalid SSO start URL: {start_url}")
    region = _require_region(region)
    scopes = [scope.strip() for scope in scopes if scope.strip()] or list(DEFAULT_SCOPES)

    if config_doc.get(SSO_SESSION, name) is not None:
        raise ConflictError(f"SSO session '{name}' already exists")

    body = {
        "sso_start_url": start_url.strip(),
        "sso_region": region,
        "sso_registration_scopes": ",".join(scopes),
    }
    logger.info("Adding SSO session '%s' (%s)", name, start_url)
    return append_section(config_doc, make_section(SSO_SESSION, name, body, config_doc.kind))


def add_static_profile(
    config_doc,
    creds_doc,
    name,
    access_key_id,
    secret_access_key,
    region,
    strategy=None,
    chooser=None,
):
    """
    Add a static key profile: region in the config, key pair in the credentials.

    An existing profile only counts as identical when both its config body and
    its stored key pair match.

    Returns:
        tuple: (config Document, credentials Document, Resolution)
    """
    name = _require(name, "Profile name")
    access_key_id = _require(access_key_id, "Access key ID")
    secret_access_key = _require(secret_access_key, "Secret access key")
    region = _require_region(region)

    key_pair = {"aws_access_key_id": access_key_id, "aws_secret_access_key": secret_access_key}

    def same_profile(existing, proposal):
        if not existing.same_body(proposal.body):
            return False
        return static_key_pair(creds_doc, proposal.name) == (access_key_id, secret_access_key)

    proposal = Proposal(PROFILE, name, {"region": region}, ProfileKind.STATIC_KEY)
    config_doc, resolution = resolve(config_doc, proposal, strategy, chooser, same_profile)
    if resolution.outcome is Outcome.SKIPPED:
        return config_doc, creds_doc, resolution

    final_name = resolution.name
    stored = creds_doc.get(PROFILE, final_name)
    if stored is None:
        section = make_section(PROFILE, final_name, key_pair, CREDENTIALS_FILE)
    else:
        body = {k: v for k, v in stored.body.items() if k not in ("aws_session_token", "expiration")}
        body.update(key_pair)
        section = stored if stored.same_body(body) else stored.with_body(body)
    creds_doc = upsert_section(creds_doc, section)
    return config_doc, creds_doc, resolution


def add_role_profile(
    config_doc,
    name,
    role_arn=None,
    source_profile=None,
    mfa_serial=None,
    region=None,
    strategy=None,
    chooser=None,
):
    """
    Add an assumed-role profile.

    A profile with only ``mfa_serial`` obtains an MFA session token for the
    user's own keys instead of assuming a role.

    Returns:
        tuple: (config Document, Resolution)
    """
    name = _require(name, "Profile name")
    role_arn = (role_arn or "").strip()
    source_profile = (source_profile or "").strip()
    mfa_serial = (mfa_serial or "").strip()

    if not role_arn and not mfa_serial:
        raise ValidationError("A role ARN or an MFA serial is required")
    if role_arn and not role_arn.startswith("arn:"):
        raise ValidationError(f"Invalid role ARN: {role_arn}")
    if mfa_serial and not mfa_serial.startswith("arn:"):
        raise ValidationError(f"Invalid MFA serial: {mfa_serial}")

    body = {}
    if role_arn:
        body["role_arn"] = role_arn
    if source_profile:
        body["source_profile"] = source_profile
    if mfa_serial:
        body["mfa_serial"] = mfa_serial
    body["region"] = _require_region(region)

    proposal = Proposal(PROFILE, name, body, ProfileKind.ASSUMED_ROLE)
    return resolve(config_doc, proposal, strategy, chooser)


def delete_profile(config_doc, creds_doc, name):
    """
    Remove a profile from the config and credentials documents.

    Raises:
        NotFoundError: If the profile is in neither document
    """
    found = False
    if config_doc.get(PROFILE, name) is not None:
        config_doc = remove_section(config_doc, PROFILE, name)
        found = True
    if creds_doc is not None and creds_doc.get(PROFILE, name) is not None:
        creds_doc = remove_section(creds_doc, PROFILE, name)
        found = True
    if not found:
        raise NotFoundError(f"Profile '{name}' does not exist")
    logger.info("Deleted profile '%s'", name)
    return config_doc, creds_doc


def session_profiles(config_doc, session_name):
    """Names of the profiles tied to an SSO session."""
    registry = Registry.build(config_doc)
    return [profile.name for profile in registry.all_of_session(session_name)]


def delete_session(config_doc, creds_doc, session_name, keep_session=False):
    """
    Delete an SSO session together with every profile that uses it.

    Args:
        keep_session: Only delete the profiles, keep the sso-session section

    Returns:
        tuple: (config Document, credentials Document, list of deleted profile names)

    Raises:
        NotFoundError: If the session does not exist
    """
    find_section(config_doc, SSO_SESSION, session_name)
    names = session_profiles(config_doc, session_name)
    for name in names:
        config_doc, creds_doc = delete_profile(config_doc, creds_doc, name)
    if not keep_session:
        config_doc = remove_section(config_doc, SSO_SESSION, session_name)
        logger.info("Deleted SSO session '%s' and %d profiles", session_name, len(names))
    return config_doc, creds_doc, names


def change_region(config_doc, name, region):
    """
    Set the default region of a profile.

    Raises:
        NotFoundError: If the profile has no config section
        ValidationError: If the region is unknown
    """
    region = _require_region(region)
    section = find_section(config_doc, PROFILE, name)
    if section.get("region") == region:
        return config_doc
    body = dict(section.body)
    body["region"] = region
    return replace_section(config_doc, section.with_body(body))


def generate_profiles(config_doc, session, discovered, strategy=Strategy.OVERWRITE, chooser=None):
    """
    Propose one federated profile per discovered account/role and merge them.

    Rerunning with the same discovery result reports every profile as UNCHANGED.

    Args:
        config_doc: Config Document
        session: Session the profiles authenticate through
        discovered: Iterable of DiscoveredRole
        strategy: Conflict strategy (default: overwrite, as regeneration updates profiles)
        chooser: Conflict chooser used when strategy is None

    Returns:
        BatchResult
    """
    proposals = []
    seen = set()
    for role in discovered:
        name = profile_name_for(role.account_name, role.role_name)
        if name in seen:
            logger.warning(
                "Account '%s' role '%s' maps to an already generated profile name '%s'",
                role.account_name,
                role.role_name,
                name,
            )
        seen.add(name)
        body = {
            "sso_session": session.name,
            "sso_account_id": role.account_id,
            "sso_role_name": role.role_name,
            "region": session.region,
        }
        proposals.append(Proposal(PROFILE, name, body, ProfileKind.FEDERATED_SESSION))

    logger.info("Merging %d generated profiles for session '%s'", len(proposals), session.name)
    return resolve_batch(config_doc, proposals, strategy, chooser)


def static_key_pair(creds_doc, name):
    """Return the stored (access key, secret key) of a profile, or None."""
    section = creds_doc.get(PROFILE, name)
    if section is None or not all(section.get(key) for key in STATIC_KEYS):
        return None
    return section.get("aws_access_key_id"), section.get("aws_secret_access_key")
