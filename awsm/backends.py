"""
boto3-backed collaborators: SSO device authorization, SSO role credential
exchange, account/role discovery, STS role assumption and browser launch.

botocore errors are translated into awsm errors here so nothing above this
module needs to know about ClientError.
"""

import logging
import os
import shutil
import subprocess
import sys
import time
import webbrowser
from datetime import datetime, timezone

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .credentials import CredentialSet
from .errors import AuthError, InvalidTokenError
from .operations import DiscoveredRole
from .settings import DEFAULT_SCOPES

logger = logging.getLogger(__name__)

CLIENT_NAME = "awsm"
DEVICE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"
DEFAULT_ROLE_DURATION = 3600

_CHROME_COMMANDS = {
    "darwin": ["/Applications/Google Chrome.app/Contents/MacOS/Google Chrome"],
    "win32": ["C:\\Program Files\\Google\\Chrome\\Application\\chrome.exe"],
    "linux": ["google-chrome", "google-chrome-stable", "chromium", "chromium-browser"],
}


def default_client_factory(service, region=None, profile_name=None):
    """Create a boto3 client, optionally from a named profile."""
    session = boto3.session.Session(profile_name=profile_name, region_name=region)
    return session.client(service)


def _error_code(error):
    return error.response.get("Error", {}).get("Code", "")


def _error_message(error):
    return error.response.get("Error", {}).get("Message", str(error))


def launch_browser(url, hint=None, settings=None):
    """
    Open a URL, in a specific Chrome profile when ``hint`` is given.

    Args:
        url: URL to open
        hint: Chrome profile alias or directory name
        settings: Settings with the alias map

    Returns:
        bool: True if a browser was started
    """
    if hint:
        directory = settings.chrome_profile_directory(hint) if settings else hint
        for command in _CHROME_COMMANDS.get(sys.platform, []):
            executable = shutil.which(command) or (command if os.path.isabs(command) else None)
            if not executable:
                continue
            try:
                subprocess.Popen(
                    [executable, f"--profile-directory={directory}", url],
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                )
                return True
            except OSError as e:
                logger.debug("Could not start %s: %s", executable, e)
        logger.warning("Chrome not found, opening %s in the default browser", url)

    try:
        return webbrowser.open(url, autoraise=True)
    except webbrowser.Error as e:
        logger.warning("Could not open a browser: %s", e)
        return False


class SsoDeviceAuthorizer:
    """
    Obtains SSO access tokens through the OIDC device authorization flow.

    Tokens are kept in memory for the lifetime of the authorizer, so one
    command logs in at most once per session.

    Args:
        open_url: Callable (url) used to open the verification page
        notify: Callable (url, user_code) used to show the code to the user
        client_factory: Callable (service, region) returning a boto3 client
        sleep: Callable used between polls
    """

    def __init__(self, open_url=None, notify=None, client_factory=None, sleep=time.sleep):
        self.open_url = open_url or launch_browser
        self.notify = notify
        self.client_factory = client_factory or default_client_factory
        self.sleep = sleep
        self._tokens = {}

    def forget(self, session):
        self._tokens.pop(session.name, None)

    def get_token(self, session):
        """
        Return an access token for an SSO session, logging in if needed.

        Raises:
            AuthError: If the authorization is denied, expires or fails
        """
        if session.name in self._tokens:
            return self._tokens[session.name]

        oidc = self.client_factory("sso-oidc", session.region)
        scopes = list(session.registration_scopes or DEFAULT_SCOPES)
        try:
            client = oidc.register_client(clientName=CLIENT_NAME, clientType="public", scopes=scopes)
            authorization = oidc.start_device_authorization(
                clientId=client["clientId"],
                clientSecret=client["clientSecret"],
                startUrl=session.start_url,
            )
        except ClientError as e:
            raise AuthError(f"SSO device authorization failed for '{session.name}': {_error_message(e)}")
        except BotoCoreError as e:
            raise AuthError(f"AWS connection failed: {e}")

        url = authorization["verificationUriComplete"]
        if self.notify is not None:
            self.notify(url, authorization["userCode"])
        self.open_url(url)

        token = self._poll(oidc, client, authorization)
        self._tokens[session.name] = token
        logger.info("SSO login for session '%s' succeeded", session.name)
        return token

    def _poll(self, oidc, client, authorization):
        interval = authorization.get("interval", 5)
        deadline = time.monotonic() + authorization.get("expiresIn", 600)

        while time.monotonic() < deadline:
            self.sleep(interval)
            try:
                response = oidc.create_token(
                    grantType=DEVICE_GRANT_TYPE,
                    deviceCode=authorization["deviceCode"],
                    clientId=client["clientId"],
                    clientSecret=client["clientSecret"],
                )
                return response["accessToken"]
            except ClientError as e:
                code = _error_code(e)
                if code == "AuthorizationPendingException":
                    continue
                if code == "SlowDownException":
                    interval += 5
                    continue
                if code in ("AccessDeniedException", "ExpiredTokenException"):
                    raise AuthError(f"SSO authorization was not granted: {_error_message(e)}")
                raise AuthError(f"SSO token request failed: {_error_message(e)}")
            except BotoCoreError as e:
                raise AuthError(f"AWS connection failed: {e}")

        raise AuthError("SSO device authorization timed out")


class SsoSessionExchanger:
    """exchange_session backend: SSO access token -> role credentials."""

    def __init__(self, authorizer, client_factory=None):
        self.authorizer = authorizer
        self.client_factory = client_factory or default_client_factory

    def __call__(self, session, profile):
        token = self.authorizer.get_token(session)
        sso = self.client_factory("sso", session.region)
        try:
            response = sso.get_role_credentials(
                roleName=profile.role_name,
                accountId=profile.account_id,
                accessToken=token,
            )
        except ClientError as e:
            if _error_code(e) == "UnauthorizedException":
                self.authorizer.forget(session)
                raise AuthError(
                    f"SSO session '{session.name}' is expired or invalid; run 'awsm refresh' again"
                )
            raise AuthError(
                f"Failed to get credentials for {profile.role_name} in {profile.account_id}: "
                f"{_error_message(e)}"
            )
        except BotoCoreError as e:
            raise AuthError(f"AWS connection failed: {e}")

        credentials = response["roleCredentials"]
        return CredentialSet(
            profile.name,
            credentials["accessKeyId"],
            credentials["secretAccessKey"],
            credentials["sessionToken"],
            datetime.fromtimestamp(credentials["expiration"] / 1000, timezone.utc),
        )


class SsoDiscovery:
    """discover backend: every account/role reachable through an SSO session."""

    def __init__(self, authorizer, client_factory=None):
        self.authorizer = authorizer
        self.client_factory = client_factory or default_client_factory

    def __call__(self, session):
        token = self.authorizer.get_token(session)
        sso = self.client_factory("sso", session.region)

        try:
            accounts = [
                account
                for page in sso.get_paginator("list_accounts").paginate(accessToken=token)
                for account in page["accountList"]
            ]
        except ClientError as e:
            if _error_code(e) == "UnauthorizedException":
                self.authorizer.forget(session)
            raise AuthError(f"Failed to list accounts: {_error_message(e)}")
        except BotoCoreError as e:
            raise AuthError(f"AWS connection failed: {e}")

        logger.info("Found %d accounts in session '%s'", len(accounts), session.name)
        roles = []
        for account in accounts:
            paginator = sso.get_paginator("list_account_roles")
            try:
                for page in paginator.paginate(accessToken=token, accountId=account["accountId"]):
                    for role in page["roleList"]:
                        roles.append(
                            DiscoveredRole(
                                account["accountId"],
                                account.get("accountName") or account["accountId"],
                                role["roleName"],
                            )
                        )
            except (ClientError, BotoCoreError) as e:
                logger.warning("Could not list roles for account %s: %s", account["accountId"], e)
        return roles


class StsRoleAssumer:
    """
    assume_role backend.

    Profiles with a role_arn call sts:AssumeRole; profiles with only an
    mfa_serial call sts:GetSessionToken. Requests are signed with
    ``source_profile`` when set. Otherwise an MFA-only profile signs with its
    own long-term keys and a role profile falls back to the default chain.
    """

    def __init__(self, client_factory=None, clock=time.time):
        self.client_factory = client_factory or default_client_factory
        self.clock = clock

    @staticmethod
    def signing_profile(profile):
        """Name of the profile whose credentials sign the STS request, or None."""
        if profile.source_profile:
            return profile.source_profile
        if profile.role_arn:
            return None
        return profile.name

    def __call__(self, profile, token=None):
        signer = self.signing_profile(profile)
        sts = self.client_factory("sts", profile.region, signer)
        duration = profile.duration_seconds or DEFAULT_ROLE_DURATION

        kwargs = {"DurationSeconds": duration}
        if token:
            kwargs["SerialNumber"] = profile.mfa_serial
            kwargs["TokenCode"] = token

        try:
            if profile.role_arn:
                kwargs["RoleArn"] = profile.role_arn
                kwargs["RoleSessionName"] = f"awsm-session-{int(self.clock())}"
                if profile.external_id:
                    kwargs["ExternalId"] = profile.external_id
                response = sts.assume_role(**kwargs)
            else:
                response = sts.get_session_token(**kwargs)
        except ClientError as e:
            code = _error_code(e)
            if token and code in ("AccessDenied", "ValidationError"):
                raise InvalidTokenError(f"MFA token rejected: {_error_message(e)}")
            if code in ("InvalidClientTokenId", "ExpiredToken"):
                raise AuthError(
                    f"Source credentials for '{signer or 'default'}' are invalid or expired"
                )
            raise AuthError(f"Failed to assume role for '{profile.name}': {_error_message(e)}")
        except BotoCoreError as e:
            raise AuthError(f"AWS connection failed: {e}")

        credentials = response["Credentials"]
        return CredentialSet(
            profile.name,
            credentials["AccessKeyId"],
            credentials["SecretAccessKey"],
            credentials["SessionToken"],
            credentials["Expiration"],
        )
