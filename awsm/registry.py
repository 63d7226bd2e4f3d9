"""
Typed view of the profiles and SSO sessions in the AWS config files.

The registry is rebuilt from the parsed documents on every load. It never
modifies sections; problems are reported as ValidationWarning values
instead of exceptions so one broken profile does not hide the others.
"""

import dataclasses
import enum
import logging
from dataclasses import dataclass
from urllib.parse import urlparse

from .document import PROFILE, SSO_SESSION
from .errors import NotFoundError

logger = logging.getLogger(__name__)


class ProfileKind(enum.Enum):
    FEDERATED_SESSION = "sso"
    ASSUMED_ROLE = "role"
    STATIC_KEY = "key"


FEDERATED_KEYS = ("sso_session", "sso_account_id", "sso_role_name", "sso_start_url")
ROLE_KEYS = ("role_arn", "mfa_serial", "source_profile", "credential_source")
STATIC_KEYS = ("aws_access_key_id", "aws_secret_access_key")

_MARKERS = (
    (ProfileKind.FEDERATED_SESSION, FEDERATED_KEYS),
    (ProfileKind.ASSUMED_ROLE, ROLE_KEYS),
    (ProfileKind.STATIC_KEY, STATIC_KEYS),
)

# Warning codes
DUPLICATE = "duplicate"
AMBIGUOUS_KIND = "ambiguous-kind"
UNKNOWN_KIND = "unknown-kind"
INCOMPLETE = "incomplete"
DANGLING_SESSION = "dangling-session"
DANGLING_SOURCE_PROFILE = "dangling-source-profile"
INVALID_SESSION = "invalid-session"


@dataclass(frozen=True)
class ValidationWarning:
    code: str
    name: str
    message: str

    def __str__(self):
        return f"{self.name}: {self.message}"


@dataclass(frozen=True)
class Session:
    name: str
    start_url: str
    region: str
    registration_scopes: tuple = ()


@dataclass(frozen=True)
class Profile:
    name: str
    kind: ProfileKind
    region: str = None
    session_name: str = None
    account_id: str = None
    role_name: str = None
    role_arn: str = None
    source_profile: str = None
    mfa_serial: str = None
    external_id: str = None
    duration_seconds: int = None
    valid: bool = True

    @property
    def account(self):
        """Account ID from sso_account_id or the role ARN."""
        if self.account_id:
            return self.account_id
        if self.role_arn:
            parts = self.role_arn.split(":")
            if len(parts) >= 5:
                return parts[4]
        return None


def classify_body(body):
    """
    Return the set of profile kinds whose marker keys appear in ``body``.

    An empty set means the section alone does not say what it is; more than
    one kind means the section is ambiguous.
    """
    return {kind for kind, keys in _MARKERS if any(body.get(key) for key in keys)}


def is_valid_start_url(url):
    """Check that an SSO start URL is an absolute http(s) URL."""
    if not url:
        return False
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _has_key_pair(section):
    return section is not None and all(section.get(key) for key in STATIC_KEYS)


def _duration(value):
    try:
        return int(value) if value else None
    except ValueError:
        return None


def _build_sessions(config_doc, warnings):
    sessions = {}
    for section in config_doc.of_category(SSO_SESSION):
        name = section.name
        if name in sessions:
            warnings.append(
                ValidationWarning(DUPLICATE, name, f"duplicate sso-session '{name}' ignored")
            )
            continue
        start_url = section.get("sso_start_url")
        region = section.get("sso_region")
        if not is_valid_start_url(start_url):
            warnings.append(
                ValidationWarning(
                    INVALID_SESSION, name, f"sso_start_url {start_url!r} is not a valid URL"
                )
            )
            continue
        if not region:
            warnings.append(ValidationWarning(INVALID_SESSION, name, "sso_region is missing"))
            continue
        scopes = tuple(
            scope.strip()
            for scope in section.get("sso_registration_scopes", "").split(",")
            if scope.strip()
        )
        sessions[name] = Session(name, start_url, region, scopes)
    return sessions


def _profile_from_section(name, section, credentials_section, warnings):
    body = section.body if section is not None else {}
    kinds = classify_body(body)

    if len(kinds) > 1:
        found = ", ".join(sorted(kind.value for kind in kinds))
        warnings.append(
            ValidationWarning(
                AMBIGUOUS_KIND, name, f"profile mixes settings of several kinds ({found})"
            )
        )
        return None

    if not kinds:
        if _has_key_pair(credentials_section):
            kinds = {ProfileKind.STATIC_KEY}
        else:
            warnings.append(
                ValidationWarning(
                    UNKNOWN_KIND, name, "profile has no SSO, role or static key settings"
                )
            )
            return None

    (kind,) = kinds
    region = body.get("region") or (credentials_section.get("region") if credentials_section else None)

    if kind is ProfileKind.FEDERATED_SESSION:
        missing = [
            key for key in ("sso_session", "sso_account_id", "sso_role_name") if not body.get(key)
        ]
        if missing:
            warnings.append(
                ValidationWarning(INCOMPLETE, name, f"SSO profile is missing {', '.join(missing)}")
            )
            return None
        return Profile(
            name,
            kind,
            region=region,
            session_name=body["sso_session"],
            account_id=body["sso_account_id"],
            role_name=body["sso_role_name"],
        )

    if kind is ProfileKind.ASSUMED_ROLE:
        if not body.get("role_arn") and not body.get("mfa_serial"):
            warnings.append(
                ValidationWarning(INCOMPLETE, name, "role profile needs role_arn or mfa_serial")
            )
            return None
        return Profile(
            name,
            kind,
            region=region,
            role_arn=body.get("role_arn") or None,
            source_profile=body.get("source_profile") or None,
            mfa_serial=body.get("mfa_serial") or None,
            external_id=body.get("external_id") or None,
            duration_seconds=_duration(body.get("duration_seconds")),
        )

    return Profile(name, kind, region=region)


class Registry:
    """Profiles, sessions and validation warnings derived from the documents."""

    def __init__(self, profiles, sessions, warnings):
        self.profiles = list(profiles)
        self.sessions = list(sessions)
        self.warnings = list(warnings)
        self._profiles = {profile.name: profile for profile in self.profiles}
        self._sessions = {session.name: session for session in self.sessions}

    @classmethod
    def build(cls, config_doc, credentials_doc=None):
        """
        Build the registry from a config document and optional credentials document.

        Returns:
            Registry; invalid entries are reported in ``warnings``
        """
        warnings = []
        sessions = _build_sessions(config_doc, warnings)

        credentials = {}
        if credentials_doc is not None:
            for section in credentials_doc.of_category(PROFILE):
                credentials.setdefault(section.name, section)

        profiles = {}
        seen = set()
        for section in config_doc.of_category(PROFILE):
            name = section.name
            if name in seen:
                warnings.append(
                    ValidationWarning(DUPLICATE, name, f"duplicate profile '{name}' ignored")
                )
                continue
            seen.add(name)
            profile = _profile_from_section(name, section, credentials.get(name), warnings)
            if profile is not None:
                profiles[name] = profile

        # Profiles defined only in the credentials file are static keys
        for name, section in credentials.items():
            if name not in seen and _has_key_pair(section):
                profiles[name] = Profile(name, ProfileKind.STATIC_KEY, region=section.get("region"))

        for name, profile in list(profiles.items()):
            if profile.session_name and profile.session_name not in sessions:
                warnings.append(
                    ValidationWarning(
                        DANGLING_SESSION,
                        name,
                        f"sso_session '{profile.session_name}' is not defined",
                    )
                )
                profiles[name] = _invalid(profile)
            elif profile.source_profile and profile.source_profile not in profiles:
                warnings.append(
                    ValidationWarning(
                        DANGLING_SOURCE_PROFILE,
                        name,
                        f"source profile '{profile.source_profile}' not found",
                    )
                )
                profiles[name] = _invalid(profile)

        for warning in warnings:
            logger.debug("Validation warning: %s", warning)

        return cls(profiles.values(), sessions.values(), warnings)

    def __contains__(self, name):
        return name in self._profiles

    def __len__(self):
        return len(self.profiles)

    def lookup(self, name):
        """Return the named profile or raise NotFoundError."""
        try:
            return self._profiles[name]
        except KeyError:
            raise NotFoundError(f"Profile '{name}' not found")

    def session(self, name):
        """Return the named SSO session or raise NotFoundError."""
        try:
            return self._sessions[name]
        except KeyError:
            raise NotFoundError(f"SSO session '{name}' not found")

    def all_of_session(self, session_name):
        """Return every profile tied to the given SSO session, in file order."""
        return [profile for profile in self.profiles if profile.session_name == session_name]

    def warnings_for(self, name):
        return [warning for warning in self.warnings if warning.name == name]


def _invalid(profile):
    return dataclasses.replace(profile, valid=False)
