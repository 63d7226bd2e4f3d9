"""
Command-line interface for awsm.
"""

import argparse
import getpass
import logging
import os
import shlex
import subprocess
import sys
from datetime import datetime

from . import __version__
from .backends import (
    SsoDeviceAuthorizer,
    SsoDiscovery,
    SsoSessionExchanger,
    StsRoleAssumer,
    launch_browser,
)
from .bundle import export_bundle, import_bundle, read_bundle, write_bundle
from .conflicts import Choice, Outcome, Strategy
from .credentials import CredentialManager, CredentialState, format_expiration
from .crypto import ValueCipher
from .document import CREDENTIALS, PROFILE, SSO_SESSION, duplicate_keys
from .errors import AwsmError, NotFoundError, ValidationError
from .operations import (
    add_role_profile,
    add_session,
    add_static_profile,
    change_region,
    delete_profile,
    delete_session,
    generate_profiles,
    session_profiles,
)
from .regions import all_regions, is_valid_region
from .registry import ProfileKind, Registry
from .settings import load_settings
from .store import ConfigStore

logger = logging.getLogger(__name__)

STRATEGIES = {
    "skip": Strategy.SKIP,
    "rename": Strategy.AUTO_RENAME,
    "overwrite": Strategy.OVERWRITE,
    "ask": None,
}

KIND_LABELS = {
    ProfileKind.FEDERATED_SESSION: "sso",
    ProfileKind.ASSUMED_ROLE: "role",
    ProfileKind.STATIC_KEY: "static",
}

ENV_KEYS = (
    "AWS_PROFILE",
    "AWS_ACCESS_KEY_ID",
    "AWS_SECRET_ACCESS_KEY",
    "AWS_SESSION_TOKEN",
    "AWS_REGION",
    "AWS_DEFAULT_REGION",
)

OUTCOME_MARKS = {
    Outcome.ADDED: "✓ Added",
    Outcome.REPLACED: "✓ Updated",
    Outcome.UNCHANGED: "  Unchanged",
    Outcome.SKIPPED: "  Skipped",
    Outcome.CONFLICT: "⚠ Conflict",
    Outcome.FAILED: "⚠ Failed",
}


def prompt(message, secret=False):
    """Read a line from the terminal; EOF counts as an empty answer."""
    try:
        if secret:
            return getpass.getpass(message).strip()
        return input(message).strip()
    except EOFError:
        return ""


def prompt_required(value, message, secret=False):
    value = value or prompt(message, secret)
    if not value:
        raise ValidationError(f"{message.rstrip(': ')} is required")
    return value


def confirm(message):
    return prompt(f"{message} [y/N]: ").lower() in ("y", "yes")


def prompt_token(mfa_serial):
    return prompt(f"Enter MFA code for {mfa_serial}: ")


def choose_resolution(conflict):
    """Interactive chooser for name collisions."""
    label = "SSO session" if conflict.proposal.category == SSO_SESSION else "Profile"
    print(f"\n⚠ {label} '{conflict.name}' already exists with different settings.", file=sys.stderr)
    print("Choose resolution:", file=sys.stderr)
    print("1. Skip", file=sys.stderr)
    print(f"2. Rename to '{conflict.suggested_name}'", file=sys.stderr)
    print("3. Enter custom name", file=sys.stderr)
    print("4. Overwrite existing", file=sys.stderr)

    choice = prompt("\nEnter choice (1-4): ")
    if choice == "2":
        return Choice(Strategy.AUTO_RENAME)
    if choice == "3":
        return Choice(Strategy.CUSTOM_NAME, prompt("Enter new name: "))
    if choice == "4":
        return Choice(Strategy.OVERWRITE)
    if choice != "1":
        print("⚠ Invalid choice, skipping", file=sys.stderr)
    return Choice(Strategy.SKIP)


def show_device_code(url, user_code):
    print("Opening a browser to authenticate...", file=sys.stderr)
    print(f"Verification URL: {url}", file=sys.stderr)
    print(f"Verification code: {user_code}", file=sys.stderr)


def print_warnings(registry):
    for warning in registry.warnings:
        print(f"⚠ {warning}", file=sys.stderr)


def print_resolutions(resolutions, label):
    for resolution in resolutions:
        mark = OUTCOME_MARKS[resolution.outcome]
        name = resolution.proposal.name
        if resolution.name and resolution.name != name:
            name = f"{name} -> {resolution.name}"
        line = f"{mark} {label} '{name}'"
        if resolution.error is not None:
            line += f": {resolution.error}"
        stream = sys.stderr if resolution.error is not None else sys.stdout
        print(line, file=stream)


class Context:
    """Settings and store for one invocation."""

    def __init__(self, args, settings):
        self.args = args
        self.settings = settings
        self.store = ConfigStore(settings)

    def load(self):
        config_doc = self.store.load_config()
        creds_doc = self.store.load_credentials()
        return config_doc, creds_doc, Registry.build(config_doc, creds_doc)

    def strategy(self, default=None):
        name = getattr(self.args, "strategy", None)
        return STRATEGIES[name] if name else default

    def chooser(self):
        return choose_resolution if sys.stdin.isatty() else None

    def authorizer(self):
        hint = getattr(self.args, "browser_profile", None)
        return SsoDeviceAuthorizer(
            open_url=lambda url: launch_browser(url, hint, self.settings),
            notify=show_device_code,
        )

    def manager(self, registry):
        return CredentialManager(
            self.store,
            registry,
            exchange_session=SsoSessionExchanger(self.authorizer()),
            assume_role=StsRoleAssumer(),
            prompt_token=prompt_token,
            margin=self.settings.safety_margin,
        )


def cmd_profile_list(ctx):
    _, _, registry = ctx.load()
    if not registry.profiles:
        print("No profiles found.")
    for profile in registry.profiles:
        line = f"{profile.name:<40} {KIND_LABELS[profile.kind]:<7} {profile.region or '-'}"
        if not profile.valid:
            line += "  (invalid)"
        print(line)
        if ctx.args.detailed:
            if profile.kind is ProfileKind.FEDERATED_SESSION:
                print(f"    session: {profile.session_name}")
                print(f"    account: {profile.account_id}  role: {profile.role_name}")
            elif profile.kind is ProfileKind.ASSUMED_ROLE:
                if profile.role_arn:
                    print(f"    role_arn: {profile.role_arn}")
                if profile.source_profile:
                    print(f"    source_profile: {profile.source_profile}")
                if profile.mfa_serial:
                    print(f"    mfa_serial: {profile.mfa_serial}")
    print_warnings(registry)
    return 0


def cmd_profile_add_user(ctx):
    args = ctx.args
    access_key_id = prompt_required(args.access_key_id, "AWS Access Key ID: ")
    secret_access_key = prompt_required(
        os.environ.get("AWSM_SECRET_ACCESS_KEY"), "AWS Secret Access Key: ", secret=True
    )
    region = prompt_required(args.region, "Default region (e.g., us-east-1): ")

    config_doc, creds_doc, _ = ctx.load()
    config_doc, creds_doc, resolution = add_static_profile(
        config_doc,
        creds_doc,
        args.name,
        access_key_id,
        secret_access_key,
        region,
        ctx.strategy(),
        ctx.chooser(),
    )
    if resolution.outcome is Outcome.SKIPPED:
        print("Profile creation cancelled.")
        return 0

    ctx.store.save_credentials(creds_doc)
    ctx.store.save_config(config_doc)
    print(f"✓ Static key profile '{resolution.name}' saved")
    return 0


def cmd_profile_add_role(ctx):
    args = ctx.args
    region = prompt_required(args.region, "Default region (e.g., us-east-1): ")

    config_doc, _, _ = ctx.load()
    config_doc, resolution = add_role_profile(
        config_doc,
        args.name,
        role_arn=args.role_arn,
        source_profile=args.source_profile,
        mfa_serial=args.mfa_serial,
        region=region,
        strategy=ctx.strategy(),
        chooser=ctx.chooser(),
    )
    if resolution.outcome is Outcome.SKIPPED:
        print("Profile creation cancelled.")
        return 0

    ctx.store.save_config(config_doc)
    print(f"✓ Role profile '{resolution.name}' saved")
    return 0


def _delete_session_profiles(ctx, session_name, keep_session):
    config_doc, creds_doc, _ = ctx.load()
    if config_doc.get(SSO_SESSION, session_name) is None:
        raise NotFoundError(f"SSO session '{session_name}' does not exist")

    names = session_profiles(config_doc, session_name)
    if keep_session and not names:
        print(f"⚠ No profiles found for SSO session '{session_name}'", file=sys.stderr)
        return 0

    if not keep_session:
        print(f"SSO session '{session_name}' will be deleted")
    if names:
        print(f"This will delete {len(names)} profiles:")
        for name in names:
            print(f"  - {name}")
    if not ctx.args.yes and not confirm("Continue?"):
        print("Cancelled.")
        return 0

    config_doc, creds_doc, names = delete_session(config_doc, creds_doc, session_name, keep_session)
    ctx.store.save_credentials(creds_doc)
    ctx.store.save_config(config_doc)
    for name in names:
        print(f"✓ Deleted profile '{name}'")
    if not keep_session:
        print(f"✓ SSO session '{session_name}' deleted")
    return 0


def cmd_profile_delete(ctx):
    args = ctx.args
    if args.all_sso:
        return _delete_session_profiles(ctx, args.all_sso, keep_session=True)
    if not args.name:
        raise ValidationError("a profile name or --all-sso SESSION is required")

    config_doc, creds_doc, _ = ctx.load()
    config_doc, creds_doc = delete_profile(config_doc, creds_doc, args.name)
    ctx.store.save_credentials(creds_doc)
    ctx.store.save_config(config_doc)
    print(f"✓ Profile '{args.name}' deleted")
    return 0


def cmd_profile_region(ctx):
    config_doc, _, _ = ctx.load()
    ctx.store.save_config(change_region(config_doc, ctx.args.name, ctx.args.region))
    print(f"✓ Region for profile '{ctx.args.name}' changed to '{ctx.args.region}'")
    return 0


def cmd_profile_set(ctx):
    _, _, registry = ctx.load()
    name = ctx.args.name
    ctx.manager(registry).activate(name)
    print(f"✓ Credentials for profile '{name}' are set as default")
    return 0


def cmd_profile_current(ctx):
    _, _, registry = ctx.load()
    name = ctx.manager(registry).active_profile()
    if name is None:
        print("No profile has been set as default.", file=sys.stderr)
        return 1
    print(name)
    return 0


def cmd_region_list(ctx):
    for region in all_regions():
        print(region)
    return 0


def _profile_argument(ctx):
    return ctx.args.profile or os.environ.get("AWS_PROFILE") or "default"


def cmd_env(ctx):
    _, _, registry = ctx.load()
    env = ctx.manager(registry).environment(_profile_argument(ctx))
    for key in ENV_KEYS:
        if key in env:
            print(f"export {key}={shlex.quote(env[key])}")
        elif key == "AWS_SESSION_TOKEN":
            print(f"unset {key}")
    return 0


def cmd_exec(ctx):
    command = list(ctx.args.argv)
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        raise ValidationError("no command given; usage: awsm exec PROFILE -- COMMAND [ARGS...]")

    _, _, registry = ctx.load()
    name = ctx.args.profile
    env = ctx.manager(registry).environment(name, os.environ)
    print(f"Executing '{command[0]}' with profile '{name}'...", file=sys.stderr)
    try:
        return subprocess.run(command, env=env).returncode
    except FileNotFoundError:
        raise NotFoundError(f"Command not found: {command[0]}")


def cmd_sso_list(ctx):
    _, _, registry = ctx.load()
    if not registry.sessions:
        print("No SSO sessions found.")
    for session in registry.sessions:
        count = len(registry.all_of_session(session.name))
        print(f"{session.name:<30} {session.region:<16} {count:>4} profiles  {session.start_url}")
    print_warnings(registry)
    return 0


def cmd_sso_add(ctx):
    args = ctx.args
    scopes = args.scopes.split(",") if args.scopes else ctx.settings.registration_scopes
    config_doc, _, _ = ctx.load()
    config_doc = add_session(config_doc, args.name, args.start_url, args.region, scopes)
    ctx.store.save_config(config_doc)
    print(f"✓ SSO session '{args.name}' added to {ctx.store.config_path}")
    return 0


def cmd_sso_delete(ctx):
    return _delete_session_profiles(ctx, ctx.args.name, keep_session=False)


def cmd_sso_generate(ctx):
    config_doc, _, registry = ctx.load()
    session = registry.session(ctx.args.name)
    if not is_valid_region(session.region):
        raise ValidationError(f"Invalid region in SSO session: {session.region}")

    print(f"Discovering accounts and roles for SSO session '{session.name}'...")
    discovered = SsoDiscovery(ctx.authorizer())(session)
    print(f"✓ Found {len(discovered)} account roles")

    result = generate_profiles(
        config_doc, session, discovered, ctx.strategy(Strategy.OVERWRITE), ctx.chooser()
    )
    if result.changed:
        ctx.store.save_config(result.document)
    print_resolutions(result.resolutions, "profile")
    print(
        f"✓ {result.count(Outcome.ADDED)} added, {result.count(Outcome.REPLACED)} updated, "
        f"{result.count(Outcome.UNCHANGED)} unchanged"
    )
    return 1 if result.failures else 0


def cmd_refresh(ctx):
    args = ctx.args
    _, _, registry = ctx.load()
    if args.all:
        names = [p.name for p in registry.profiles if p.kind is not ProfileKind.STATIC_KEY]
    else:
        names = args.profiles or [os.environ.get("AWS_PROFILE") or "default"]

    results = ctx.manager(registry).refresh_all(names, force=args.force)
    failed = 0
    for result in results:
        if result.error is not None:
            failed += 1
            print(f"Error: {result.name}: {result.error}", file=sys.stderr)
        elif result.refreshed:
            expires = result.credential_set.expiration
            until = f" (expires {format_expiration(expires)})" if expires else ""
            print(f"✓ Refreshed '{result.name}'{until}")
        else:
            print(f"  '{result.name}' is still valid")
    return 1 if failed else 0


def cmd_status(ctx):
    _, _, registry = ctx.load()
    manager = ctx.manager(registry)
    names = ctx.args.profiles or [profile.name for profile in registry.profiles]
    for name in names:
        profile = registry.lookup(name)
        credential_set = manager.load(name)
        if profile.kind is ProfileKind.STATIC_KEY:
            state = "static" if credential_set else CredentialState.ABSENT.value
        else:
            state = manager.state(name).value
        expires = ""
        if credential_set is not None and credential_set.expiration is not None:
            expires = format_expiration(credential_set.expiration)
        print(f"{name:<40} {KIND_LABELS[profile.kind]:<7} {state:<9} {expires}")
    return 0


def cmd_clear(ctx):
    _, _, registry = ctx.load()
    name = ctx.args.name
    if name in registry and registry.lookup(name).kind is ProfileKind.STATIC_KEY:
        if not ctx.args.yes and not confirm(f"'{name}' holds static keys. Remove them?"):
            print("Cancelled.")
            return 0
    if ctx.manager(registry).clear(name):
        print(f"✓ Cleared credentials for '{name}'")
    else:
        print(f"⚠ No cached credentials for '{name}'", file=sys.stderr)
    return 0


def cmd_validate(ctx):
    _, creds_doc, registry = ctx.load()
    names = ctx.args.profiles
    if names:
        warnings = [warning for name in names for warning in registry.warnings_for(name)]
    else:
        warnings = list(registry.warnings)
    duplicates = [
        name for _, name in duplicate_keys(creds_doc) if not names or name in names
    ]

    for warning in warnings:
        print(f"⚠ {warning}", file=sys.stderr)
    for name in duplicates:
        print(
            f"⚠ {name}: duplicate credentials section, only the first is used", file=sys.stderr
        )
    problems = len(warnings) + len(duplicates)
    if problems:
        print(f"⚠ {problems} problems found", file=sys.stderr)
        return 1
    if names:
        print(f"✓ No problems found for {', '.join(names)}")
    else:
        print(
            f"✓ {len(registry.profiles)} profiles and {len(registry.sessions)} SSO sessions are valid"
        )
    return 0


def cmd_export(ctx):
    args = ctx.args
    path = args.file or f"awsm-export-{datetime.now().strftime('%Y-%m-%d-%H%M%S')}.ini"
    include_credentials = args.include_credentials or args.encrypt
    cipher = ValueCipher(ctx.settings.ssh_key_path) if args.encrypt else None

    config_doc, creds_doc, _ = ctx.load()
    bundle_doc = export_bundle(config_doc, creds_doc, include_credentials, cipher)
    write_bundle(path, bundle_doc)

    print(
        f"✓ Export complete: {len(bundle_doc.of_category(PROFILE))} profiles, "
        f"{len(bundle_doc.of_category(SSO_SESSION))} SSO sessions, "
        f"{len(bundle_doc.of_category(CREDENTIALS))} key pairs"
    )
    print(f"File saved: {path}")
    return 0


def cmd_import(ctx):
    args = ctx.args
    bundle_doc = read_bundle(args.file)
    cipher = ValueCipher(ctx.settings.ssh_key_path, require_protected=False) if args.decrypt else None

    config_doc, creds_doc, _ = ctx.load()
    result = import_bundle(
        config_doc, creds_doc, bundle_doc, ctx.strategy(), ctx.chooser(), cipher
    )

    if result.imported_credentials:
        ctx.store.save_credentials(result.credentials)
    if result.sessions.changed or result.profiles.changed:
        ctx.store.save_config(result.config)

    print_resolutions(result.sessions.resolutions, "SSO session")
    print_resolutions(result.profiles.resolutions, "profile")
    for name in result.skipped_credentials:
        print(f"  Skipped key pair for '{name}'")
    print(
        f"✓ Import complete: {result.profiles.count(Outcome.ADDED)} profiles and "
        f"{result.sessions.count(Outcome.ADDED)} SSO sessions added"
    )
    return 1 if result.failures else 0


def add_strategy_argument(parser, default_help="ask when interactive"):
    parser.add_argument(
        "--strategy",
        choices=sorted(STRATEGIES),
        default=None,
        help=f"How to resolve name collisions (default: {default_help})",
    )


def build_parser():
    parser = argparse.ArgumentParser(
        prog="awsm",
        description="Manage AWS profiles, SSO sessions and cached credentials",
        epilog="Examples:\n"
        "  awsm sso add corp --start-url https://corp.awsapps.com/start --region us-east-1\n"
        "  awsm sso generate corp                   # One profile per account and role\n"
        "  awsm refresh dev-admin                   # Refresh credentials if stale\n"
        "  awsm exec dev-admin -- aws s3 ls         # Run a command with fresh credentials\n"
        "  awsm export backup.ini --encrypt         # Bundle with encrypted static keys",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"awsm {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug logging")
    parser.add_argument(
        "--settings",
        metavar="PATH",
        default=None,
        help="Settings file (default: ~/.config/awsm/config.toml)",
    )
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")
    commands.required = True

    # profile
    profile = commands.add_parser("profile", help="Manage profiles")
    profile_commands = profile.add_subparsers(dest="profile_command", metavar="ACTION")
    profile_commands.required = True

    p = profile_commands.add_parser("list", help="List profiles")
    p.add_argument("--detailed", action="store_true", help="Show session, account and role details")
    p.set_defaults(func=cmd_profile_list)

    p = profile_commands.add_parser(
        "add-user",
        help="Add a static access key profile",
        description="The secret key is prompted for, or read from AWSM_SECRET_ACCESS_KEY.",
    )
    p.add_argument("name")
    p.add_argument("--access-key-id")
    p.add_argument("--region")
    add_strategy_argument(p)
    p.set_defaults(func=cmd_profile_add_user)

    p = profile_commands.add_parser("add-role", help="Add a role assumption profile")
    p.add_argument("name")
    p.add_argument("--role-arn")
    p.add_argument("--source-profile")
    p.add_argument("--mfa-serial")
    p.add_argument("--region")
    add_strategy_argument(p)
    p.set_defaults(func=cmd_profile_add_role)

    p = profile_commands.add_parser("delete", help="Delete a profile")
    p.add_argument("name", nargs="?")
    p.add_argument("--all-sso", metavar="SESSION", help="Delete every profile of an SSO session")
    p.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")
    p.set_defaults(func=cmd_profile_delete)

    p = profile_commands.add_parser("region", help="Change the default region of a profile")
    p.add_argument("name")
    p.add_argument("region")
    p.set_defaults(func=cmd_profile_region)

    p = profile_commands.add_parser(
        "set", help="Copy a profile's credentials into the default profile"
    )
    p.add_argument("name")
    p.add_argument("--browser-profile", metavar="ALIAS", help="Chrome profile for the login page")
    p.set_defaults(func=cmd_profile_set)

    p = profile_commands.add_parser("current", help="Show the profile last set as default")
    p.set_defaults(func=cmd_profile_current)

    # region
    region = commands.add_parser("region", help="AWS regions")
    region_commands = region.add_subparsers(dest="region_command", metavar="ACTION")
    region_commands.required = True

    p = region_commands.add_parser("list", help="List known AWS regions")
    p.set_defaults(func=cmd_region_list)

    # sso
    sso = commands.add_parser("sso", help="Manage SSO sessions")
    sso_commands = sso.add_subparsers(dest="sso_command", metavar="ACTION")
    sso_commands.required = True

    p = sso_commands.add_parser("list", help="List SSO sessions")
    p.set_defaults(func=cmd_sso_list)

    p = sso_commands.add_parser("add", help="Add an SSO session")
    p.add_argument("name")
    p.add_argument("--start-url", required=True)
    p.add_argument("--region", required=True)
    p.add_argument("--scopes", help="Comma separated registration scopes")
    p.set_defaults(func=cmd_sso_add)

    p = sso_commands.add_parser("delete", help="Delete an SSO session and its profiles")
    p.add_argument("name")
    p.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")
    p.set_defaults(func=cmd_sso_delete)

    p = sso_commands.add_parser("generate", help="Generate profiles for every account and role")
    p.add_argument("name")
    p.add_argument("--browser-profile", metavar="ALIAS", help="Chrome profile for the login page")
    add_strategy_argument(p, "overwrite")
    p.set_defaults(func=cmd_sso_generate)

    # credentials
    p = commands.add_parser("refresh", help="Refresh cached credentials")
    p.add_argument("profiles", nargs="*", help="Profiles (default: $AWS_PROFILE or 'default')")
    p.add_argument("--all", action="store_true", help="Refresh every SSO and role profile")
    p.add_argument("--force", action="store_true", help="Refresh even if still valid")
    p.add_argument("--browser-profile", metavar="ALIAS", help="Chrome profile for the login page")
    p.set_defaults(func=cmd_refresh)

    p = commands.add_parser("status", help="Show credential state per profile")
    p.add_argument("profiles", nargs="*")
    p.set_defaults(func=cmd_status)

    p = commands.add_parser("clear", help="Remove cached credentials of a profile")
    p.add_argument("name")
    p.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")
    p.set_defaults(func=cmd_clear)

    p = commands.add_parser(
        "env",
        help="Print shell export statements for a profile's credentials",
        description="Use as: eval \"$(awsm env PROFILE)\"",
    )
    p.add_argument("profile", nargs="?", help="Profile (default: $AWS_PROFILE or 'default')")
    p.add_argument("--browser-profile", metavar="ALIAS", help="Chrome profile for the login page")
    p.set_defaults(func=cmd_env)

    p = commands.add_parser("exec", help="Run a command with a profile's credentials")
    p.add_argument("profile")
    p.add_argument(
        "argv", nargs=argparse.REMAINDER, metavar="-- COMMAND", help="Command and arguments"
    )
    p.add_argument("--browser-profile", metavar="ALIAS", help="Chrome profile for the login page")
    p.set_defaults(func=cmd_exec)

    p = commands.add_parser("validate", help="Check profiles and sessions for problems")
    p.add_argument("profiles", nargs="*", help="Only report on these profiles")
    p.set_defaults(func=cmd_validate)

    # bundles
    p = commands.add_parser("export", help="Export sessions and profiles to a bundle file")
    p.add_argument("file", nargs="?")
    p.add_argument(
        "--include-credentials", action="store_true", help="Include static key pairs"
    )
    p.add_argument(
        "--encrypt",
        action="store_true",
        help="Include static key pairs, encrypted with your password-protected SSH key",
    )
    p.set_defaults(func=cmd_export)

    p = commands.add_parser("import", help="Import a bundle file")
    p.add_argument("file")
    p.add_argument("--decrypt", action="store_true", help="Decrypt key pairs with your SSH key")
    add_strategy_argument(p)
    p.set_defaults(func=cmd_import)

    return parser


def main(argv=None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        ctx = Context(args, load_settings(args.settings))
        return args.func(ctx)
    except AwsmError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
