"""
Runtime settings for awsm.

Settings are loaded once at startup and passed explicitly to the store,
backends and credential manager. The optional settings file lives at
~/.config/awsm/config.toml:

    [credentials]
    safety_margin_minutes = 5

    [sso]
    registration_scopes = ["sso:account:access"]

    [encryption]
    ssh_key_path = "~/.ssh/id_ed25519"

    [chrome_profiles]
    work = "Profile 1"
"""

import logging
import os
import tomllib
from dataclasses import dataclass, field
from datetime import timedelta

from .errors import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_SAFETY_MARGIN = timedelta(minutes=5)
DEFAULT_SCOPES = ("sso:account:access",)


def get_settings_path():
    """Get the awsm settings file path."""
    return os.path.expanduser("~/.config/awsm/config.toml")


def get_aws_config_path(environ=None):
    """Get the AWS config file path, honouring AWS_CONFIG_FILE."""
    environ = os.environ if environ is None else environ
    return environ.get("AWS_CONFIG_FILE") or os.path.expanduser("~/.aws/config")


def get_aws_credentials_path(environ=None):
    """Get the AWS credentials file path, honouring AWS_SHARED_CREDENTIALS_FILE."""
    environ = os.environ if environ is None else environ
    return environ.get("AWS_SHARED_CREDENTIALS_FILE") or os.path.expanduser("~/.aws/credentials")


def get_ssh_key_path():
    """Get the path to the SSH private key used for bundle encryption."""
    return os.path.expanduser("~/.ssh/id_ed25519")


@dataclass
class Settings:
    config_path: str = field(default_factory=get_aws_config_path)
    credentials_path: str = field(default_factory=get_aws_credentials_path)
    safety_margin: timedelta = DEFAULT_SAFETY_MARGIN
    ssh_key_path: str = field(default_factory=get_ssh_key_path)
    registration_scopes: tuple = DEFAULT_SCOPES
    chrome_profiles: dict = field(default_factory=dict)

    def chrome_profile_directory(self, alias):
        """
        Map a friendly Chrome profile alias to its directory name.

        Unknown aliases are assumed to already be directory names.
        """
        if not alias:
            return None
        return self.chrome_profiles.get(alias.lower(), alias)


def _margin_from(value, source):
    try:
        minutes = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{source}: safety margin must be a number of minutes, got {value!r}")
    if minutes < 0:
        raise ValidationError(f"{source}: safety margin cannot be negative")
    return timedelta(minutes=minutes)


def load_settings(path=None, environ=None):
    """
    Load settings from the TOML settings file and the environment.

    Args:
        path: Settings file path (default: ~/.config/awsm/config.toml)
        environ: Environment mapping (default: os.environ)

    Returns:
        Settings

    Raises:
        ValidationError: If the settings file is malformed
    """
    environ = os.environ if environ is None else environ
    path = path or get_settings_path()

    data = {}
    if os.path.exists(path):
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValidationError(f"Invalid settings file {path}: {e}")
        logger.debug("Loaded settings from %s", path)

    settings = Settings(
        config_path=get_aws_config_path(environ),
        credentials_path=get_aws_credentials_path(environ),
    )

    credentials = data.get("credentials", {})
    if "safety_margin_minutes" in credentials:
        settings.safety_margin = _margin_from(credentials["safety_margin_minutes"], path)

    scopes = data.get("sso", {}).get("registration_scopes")
    if scopes:
        settings.registration_scopes = tuple(scopes)

    ssh_key_path = data.get("encryption", {}).get("ssh_key_path")
    if ssh_key_path:
        settings.ssh_key_path = os.path.expanduser(ssh_key_path)

    # TOML keys are case sensitive, aliases are not
    settings.chrome_profiles = {
        str(alias).lower(): str(directory)
        for alias, directory in data.get("chrome_profiles", {}).items()
    }

    if environ.get("AWSM_SAFETY_MARGIN_MINUTES"):
        settings.safety_margin = _margin_from(
            environ["AWSM_SAFETY_MARGIN_MINUTES"], "AWSM_SAFETY_MARGIN_MINUTES"
        )

    return settings
