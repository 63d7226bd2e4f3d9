"""
Credential lifecycle: expiry state of cached credential sets and refresh.

Credential sets live in the credentials document, one section per profile.
The manager decides when a set is stale, dispatches refresh to the backend
matching the profile kind and persists the result with an atomic write.
"""

import dataclasses
import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from .document import (
    CREDENTIALS_FILE,
    PROFILE,
    make_section,
    remove_section,
    replace_section,
    upsert_section,
)
from .errors import (
    AwsmError,
    CredentialConfigError,
    CredentialsExpiredError,
    InvalidTokenError,
    ValidationError,
)
from .registry import ProfileKind
from .settings import DEFAULT_SAFETY_MARGIN

logger = logging.getLogger(__name__)

CREDENTIAL_KEYS = ("aws_access_key_id", "aws_secret_access_key", "aws_session_token", "expiration")

# Long-term keys of a refreshable profile are kept in [NAME-long-term] so the
# session credentials can be cached in [NAME]
LONG_TERM_SUFFIX = "-long-term"

DEFAULT_PROFILE = "default"

# Marks a [default] section written by "profile set"
ACTIVE_PROFILE_KEY = "awsm_source_profile"

# Sets whose stored expiration cannot be read are treated as long expired
_UNREADABLE_EXPIRATION = datetime.fromtimestamp(0, timezone.utc)


def utcnow():
    return datetime.now(timezone.utc)


def _aware(value):
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_expiration(value):
    """
    Parse a stored expiration timestamp.

    Accepts RFC3339 with a ``Z`` suffix or a numeric offset; timestamps
    without a zone are taken as UTC.

    Raises:
        ValueError: If the value is not an ISO 8601 timestamp
    """
    value = value.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return _aware(datetime.fromisoformat(value))


def format_expiration(value):
    """Format an expiration as RFC3339 UTC (YYYY-MM-DDTHH:MM:SSZ)."""
    return _aware(value).astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def long_term_name(name):
    return name + LONG_TERM_SUFFIX


def holds_long_term_keys(section):
    """True if a credentials section holds a key pair without a session token."""
    return (
        section is not None
        and bool(section.get("aws_access_key_id"))
        and bool(section.get("aws_secret_access_key"))
        and not section.get("aws_session_token")
    )


class CredentialState(enum.Enum):
    ABSENT = "absent"
    FRESH = "fresh"
    EXPIRING = "expiring"
    EXPIRED = "expired"


@dataclass(frozen=True)
class CredentialSet:
    profile_name: str
    access_key_id: str
    secret_access_key: str
    session_token: str = None
    expiration: datetime = None

    def __post_init__(self):
        if self.expiration is not None:
            object.__setattr__(self, "expiration", _aware(self.expiration))

    def __repr__(self):
        # Never show secrets in logs or tracebacks
        return (
            f"CredentialSet(profile_name={self.profile_name!r}, "
            f"access_key_id={self.access_key_id!r}, expiration={self.expiration!r})"
        )

    @property
    def is_temporary(self):
        return bool(self.session_token)

    @classmethod
    def from_section(cls, section):
        """
        Build a credential set from a credentials document section.

        Returns:
            CredentialSet, or None if the section holds no key pair
        """
        access_key_id = section.get("aws_access_key_id")
        secret_access_key = section.get("aws_secret_access_key")
        if not access_key_id or not secret_access_key:
            return None

        expiration = None
        raw = section.get("expiration")
        if raw:
            try:
                expiration = parse_expiration(raw)
            except ValueError:
                logger.warning(
                    "Could not parse expiration %r for profile '%s', treating as expired",
                    raw,
                    section.name,
                )
                expiration = _UNREADABLE_EXPIRATION

        return cls(
            section.name,
            access_key_id,
            secret_access_key,
            section.get("aws_session_token") or None,
            expiration,
        )

    def to_body(self, existing=None):
        """
        Merge this set into a section body, keeping unrelated keys.

        Args:
            existing: Current body of the profile's section, if any

        Returns:
            dict: New body
        """
        body = dict(existing or {})
        body["aws_access_key_id"] = self.access_key_id
        body["aws_secret_access_key"] = self.secret_access_key
        if self.session_token:
            body["aws_session_token"] = self.session_token
        else:
            body.pop("aws_session_token", None)
        if self.expiration is not None:
            body["expiration"] = format_expiration(self.expiration)
        else:
            body.pop("expiration", None)
        return body

    def check_usable(self, now=None):
        """
        Raise CredentialsExpiredError if the set is past its expiration.

        Callers holding a set across a long operation call this before each
        use so work is aborted instead of attempted with stale credentials.
        """
        now = _aware(now) if now is not None else utcnow()
        if self.expiration is not None and self.expiration <= now:
            raise CredentialsExpiredError(
                f"Credentials for profile '{self.profile_name}' expired at "
                f"{format_expiration(self.expiration)}"
            )


def state_of(credential_set, now=None, margin=DEFAULT_SAFETY_MARGIN):
    """
    Classify a credential set.

    Args:
        credential_set: CredentialSet or None
        now: Current time (default: now, UTC)
        margin: Safety margin before expiration

    Returns:
        CredentialState
    """
    if credential_set is None:
        return CredentialState.ABSENT
    if credential_set.expiration is None:
        return CredentialState.FRESH

    now = _aware(now) if now is not None else utcnow()
    remaining = credential_set.expiration - now
    if remaining <= timedelta(0):
        return CredentialState.EXPIRED
    if remaining > margin:
        return CredentialState.FRESH
    return CredentialState.EXPIRING


@dataclass(frozen=True)
class RefreshResult:
    name: str
    state: CredentialState = None
    refreshed: bool = False
    credential_set: CredentialSet = None
    error: Exception = None

    @property
    def ok(self):
        return self.error is None


class CredentialManager:
    """
    Drives refresh of cached credentials through pluggable backends.

    Args:
        store: ConfigStore holding the credentials document
        registry: Registry the profiles are looked up in
        exchange_session: Callable (Session, Profile) -> CredentialSet
        assume_role: Callable (Profile, token or None) -> CredentialSet
        prompt_token: Callable (mfa_serial) -> str
        margin: Safety margin before expiration
        clock: Callable returning the current aware datetime
    """

    def __init__(
        self,
        store,
        registry,
        exchange_session=None,
        assume_role=None,
        prompt_token=None,
        margin=DEFAULT_SAFETY_MARGIN,
        clock=utcnow,
    ):
        self.store = store
        self.registry = registry
        self.exchange_session = exchange_session
        self.assume_role = assume_role
        self.prompt_token = prompt_token
        self.margin = margin
        self.clock = clock

    def _now(self, now):
        return _aware(now) if now is not None else self.clock()

    def load(self, name):
        """Return the stored credential set for a profile, or None."""
        section = self.store.load_credentials().get(PROFILE, name)
        if section is None:
            return None
        return CredentialSet.from_section(section)

    def _cached(self, name):
        """
        Stored credentials of a profile as seen by the refresh logic.

        For SSO and role profiles only session credentials count; long-term
        keys sitting in the profile's own section are not a cached session.
        """
        credential_set = self.load(name)
        if credential_set is None:
            return None
        if self.registry.lookup(name).kind is ProfileKind.STATIC_KEY:
            return credential_set
        return credential_set if credential_set.is_temporary else None

    def state(self, name, now=None):
        return state_of(self._cached(name), self._now(now), self.margin)

    def need_refresh(self, name, now=None):
        """True unless the profile's credentials are fresh; static keys never refresh."""
        profile = self.registry.lookup(name)
        if profile.kind is ProfileKind.STATIC_KEY:
            return False
        return self.state(name, now) is not CredentialState.FRESH

    def _check_static(self, name, now):
        credential_set = self.load(name)
        if credential_set is None:
            raise CredentialConfigError(f"No static credentials stored for profile '{name}'")
        if state_of(credential_set, now, timedelta(0)) is CredentialState.EXPIRED:
            raise CredentialConfigError(
                f"Static credentials for profile '{name}' are marked as expired; "
                f"update them with 'awsm profile add-user {name}'"
            )
        return credential_set

    def _check_long_term(self, name, document):
        """Refuse a refresh whose result could only be stored by dropping long-term keys."""
        section = document.get(PROFILE, name)
        if not holds_long_term_keys(section):
            return
        moved = document.get(PROFILE, long_term_name(name))
        if moved is None:
            return
        pair = (section.get("aws_access_key_id"), section.get("aws_secret_access_key"))
        if (moved.get("aws_access_key_id"), moved.get("aws_secret_access_key")) != pair:
            raise CredentialConfigError(
                f"Profile '{name}' holds long-term keys that differ from "
                f"'{long_term_name(name)}'; remove one of them before refreshing"
            )

    def _signing_profile(self, profile, document):
        """Sign with [NAME-long-term] once a profile's own keys were moved there."""
        if profile.source_profile:
            return profile
        if holds_long_term_keys(document.get(PROFILE, long_term_name(profile.name))):
            return dataclasses.replace(profile, source_profile=long_term_name(profile.name))
        return profile

    def _assume(self, profile):
        if self.assume_role is None:
            raise CredentialConfigError("No role assumption backend configured")

        token = None
        if profile.mfa_serial:
            if self.prompt_token is None:
                raise CredentialConfigError(
                    f"Profile '{profile.name}' requires an MFA token but no prompt is available"
                )
            token = self.prompt_token(profile.mfa_serial)

        try:
            return self.assume_role(profile, token)
        except InvalidTokenError:
            if not profile.mfa_serial:
                raise
            logger.warning("MFA token rejected for profile '%s', asking again", profile.name)
            token = self.prompt_token(profile.mfa_serial)
            return self.assume_role(profile, token)

    def refresh(self, name, now=None):
        """
        Obtain new credentials for a profile and persist them.

        Returns:
            CredentialSet

        Raises:
            NotFoundError: If the profile or its session does not exist
            CredentialConfigError: For static keys or invalid profiles
            AuthError: If the backend rejects the request
        """
        profile = self.registry.lookup(name)

        if profile.kind is ProfileKind.STATIC_KEY:
            self._check_static(name, self._now(now))
            raise CredentialConfigError(f"Cannot refresh static credentials for profile '{name}'")

        if not profile.valid:
            raise CredentialConfigError(
                f"Profile '{name}' has invalid references; run 'awsm validate' for details"
            )

        document = self.store.load_credentials()
        self._check_long_term(name, document)

        if profile.kind is ProfileKind.FEDERATED_SESSION:
            if self.exchange_session is None:
                raise CredentialConfigError("No SSO session exchange backend configured")
            session = self.registry.session(profile.session_name)
            logger.info("Refreshing '%s' through SSO session '%s'", name, session.name)
            credential_set = self.exchange_session(session, profile)
        else:
            logger.info("Refreshing '%s' by assuming %s", name, profile.role_arn or "a session token")
            credential_set = self._assume(self._signing_profile(profile, document))

        credential_set = dataclasses.replace(credential_set, profile_name=name)
        self.persist(credential_set)
        return credential_set

    def persist(self, credential_set):
        """
        Write a credential set under its profile name, keeping other keys in the section.

        Long-term keys found in the section are moved to [NAME-long-term]
        before session credentials take their place.
        """
        name = credential_set.profile_name
        document = self.store.load_credentials()
        existing = document.get(PROFILE, name)

        if credential_set.is_temporary and holds_long_term_keys(existing):
            target = long_term_name(name)
            if document.get(PROFILE, target) is None:
                body = {
                    "aws_access_key_id": existing.get("aws_access_key_id"),
                    "aws_secret_access_key": existing.get("aws_secret_access_key"),
                }
                document = upsert_section(
                    document, make_section(PROFILE, target, body, CREDENTIALS_FILE)
                )
                logger.info("Moved long-term keys of '%s' to '%s'", name, target)
            else:
                self._check_long_term(name, document)

        if existing is None:
            section = make_section(PROFILE, name, credential_set.to_body(), CREDENTIALS_FILE)
        else:
            section = existing.with_body(credential_set.to_body(existing.body))
        self.store.save_credentials(upsert_section(document, section))
        logger.debug("Stored credentials for '%s'", name)

    def ensure_fresh(self, name, now=None):
        """Return usable credentials for a profile, refreshing them if needed."""
        now = self._now(now)
        profile = self.registry.lookup(name)
        if profile.kind is ProfileKind.STATIC_KEY:
            return self._check_static(name, now)
        if self.state(name, now) is CredentialState.FRESH:
            return self._cached(name)
        return self.refresh(name, now)

    def refresh_all(self, names, now=None, force=False):
        """
        Refresh every named profile that needs it.

        Failures are recorded per profile and do not stop the batch. Static
        keys are checked instead of refreshed.

        Returns:
            list of RefreshResult
        """
        now = self._now(now)
        results = []
        for name in names:
            state = None
            try:
                state = self.state(name, now)
                if self.registry.lookup(name).kind is ProfileKind.STATIC_KEY:
                    self._check_static(name, now)
                    results.append(RefreshResult(name, state))
                    continue
                if not force and not self.need_refresh(name, now):
                    results.append(RefreshResult(name, state))
                    continue
                credential_set = self.refresh(name, now)
                results.append(RefreshResult(name, state, True, credential_set))
            except AwsmError as e:
                logger.warning("Refresh of '%s' failed: %s", name, e)
                results.append(RefreshResult(name, state, error=e))
        return results

    def usable(self, name, now=None):
        """
        Credentials for immediate use: refreshed if needed, checked against expiry.

        Raises:
            CredentialsExpiredError: If the credentials expired in the meantime
        """
        credential_set = self.ensure_fresh(name, now)
        credential_set.check_usable(self._now(now))
        return credential_set

    def environment(self, name, base=None, now=None):
        """
        Environment variables handing a profile's credentials to a child process.

        Args:
            name: Profile name
            base: Environment to start from (not modified)

        Returns:
            dict
        """
        profile = self.registry.lookup(name)
        credential_set = self.usable(name, now)

        env = dict(base or {})
        env.pop("AWS_SESSION_TOKEN", None)
        env["AWS_PROFILE"] = name
        env["AWS_ACCESS_KEY_ID"] = credential_set.access_key_id
        env["AWS_SECRET_ACCESS_KEY"] = credential_set.secret_access_key
        if credential_set.session_token:
            env["AWS_SESSION_TOKEN"] = credential_set.session_token
        if profile.region:
            env["AWS_REGION"] = profile.region
            env["AWS_DEFAULT_REGION"] = profile.region
        return env

    def activate(self, name, now=None):
        """
        Copy a profile's credentials and region into the [default] section.

        The section remembers the profile it came from. A [default] section
        holding keys that awsm did not put there is never overwritten.

        Returns:
            CredentialSet that was written
        """
        if name == DEFAULT_PROFILE:
            raise ValidationError("The 'default' profile cannot be activated onto itself")
        profile = self.registry.lookup(name)
        credential_set = self.usable(name, now)

        document = self.store.load_credentials()
        existing = document.get(PROFILE, DEFAULT_PROFILE)
        if existing is not None:
            if existing.get("aws_access_key_id") and not existing.get(ACTIVE_PROFILE_KEY):
                raise CredentialConfigError(
                    "The 'default' profile holds keys that were not set by awsm; "
                    "move them to a named profile first"
                )
            body = dict(existing.body)
        else:
            body = {}

        body = credential_set.to_body(body)
        if profile.region:
            body["region"] = profile.region
        else:
            body.pop("region", None)
        body[ACTIVE_PROFILE_KEY] = name

        if existing is None:
            section = make_section(PROFILE, DEFAULT_PROFILE, body, CREDENTIALS_FILE)
        else:
            section = existing.with_body(body)
        self.store.save_credentials(upsert_section(document, section))
        logger.info("Activated '%s' as the default profile", name)
        return credential_set

    def active_profile(self):
        """Name of the profile last activated into [default], or None."""
        section = self.store.load_credentials().get(PROFILE, DEFAULT_PROFILE)
        if section is None:
            return None
        return section.get(ACTIVE_PROFILE_KEY) or None

    def clear(self, name):
        """
        Remove the cached credential keys of a profile.

        The section is dropped when nothing else is left in it.

        Returns:
            bool: True if anything was removed
        """
        document = self.store.load_credentials()
        section = document.get(PROFILE, name)
        if section is None or not any(key in section.body for key in CREDENTIAL_KEYS):
            return False

        cleared = CREDENTIAL_KEYS + (ACTIVE_PROFILE_KEY,)
        body = {key: value for key, value in section.body.items() if key not in cleared}
        if body:
            document = replace_section(document, section.with_body(body))
        else:
            document = remove_section(document, PROFILE, name)
        self.store.save_credentials(document)
        logger.info("Cleared credentials for '%s'", name)
        return True
