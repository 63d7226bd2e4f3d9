"""
awsm: AWS profile and credential manager.

A Python CLI and library that manages the profiles and SSO sessions in
~/.aws/config and the cached credentials in ~/.aws/credentials. Files are
edited through an ordered section model that leaves untouched sections
byte-identical, and every write is atomic.

Key features:
- SSO session management and profile generation for every account and role
- Conflict-safe merging of generated and imported profiles
- Credential refresh through SSO device login or STS role assumption with MFA
- Fresh credentials handed to commands, shells or the default profile
- Export bundles with optional SSH-key based encryption of static keys
"""

__version__ = "0.3.0"
__author__ = "awsm contributors"
__license__ = "MIT"

from .conflicts import Choice, Outcome, Proposal, Strategy, resolve, resolve_batch
from .credentials import CredentialManager, CredentialSet, CredentialState, state_of
from .document import (
    Document,
    Section,
    append_section,
    find_section,
    parse,
    remove_section,
    replace_section,
    serialize,
)
from .errors import (
    AuthError,
    AwsmError,
    ConflictError,
    CredentialConfigError,
    CredentialsExpiredError,
    InvalidTokenError,
    NotFoundError,
    ParseError,
    StoreIOError,
    ValidationError,
)
from .registry import Profile, ProfileKind, Registry, Session, ValidationWarning
from .settings import Settings, load_settings
from .store import ConfigStore, load, save

__all__ = [
    # Document model
    "Document",
    "Section",
    "parse",
    "serialize",
    "find_section",
    "replace_section",
    "remove_section",
    "append_section",
    # Files
    "ConfigStore",
    "load",
    "save",
    "Settings",
    "load_settings",
    # Registry
    "Registry",
    "Profile",
    "ProfileKind",
    "Session",
    "ValidationWarning",
    # Conflict resolution
    "Proposal",
    "Strategy",
    "Choice",
    "Outcome",
    "resolve",
    "resolve_batch",
    # Credentials
    "CredentialManager",
    "CredentialSet",
    "CredentialState",
    "state_of",
    # Errors
    "AwsmError",
    "ParseError",
    "StoreIOError",
    "NotFoundError",
    "ConflictError",
    "ValidationError",
    "AuthError",
    "InvalidTokenError",
    "CredentialsExpiredError",
    "CredentialConfigError",
]
