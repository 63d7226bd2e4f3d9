"""Tests for profile and SSO session operations."""

import unittest

from awsm.conflicts import Outcome, Strategy
from awsm.document import CREDENTIALS_FILE, PROFILE, SSO_SESSION, Document, parse, serialize
from awsm.errors import ConflictError, NotFoundError, ValidationError
from awsm.operations import (
    DiscoveredRole,
    add_role_profile,
    add_session,
    add_static_profile,
    change_region,
    delete_profile,
    delete_session,
    generate_profiles,
    profile_name_for,
    session_profiles,
    static_key_pair,
)
from awsm.regions import all_regions, is_valid_region
from awsm.registry import Registry, Session

CONFIG = """[sso-session corp]
sso_start_url = https://corp.awsapps.com/start
sso_region = us-east-1
sso_registration_scopes = sso:account:access

[profile prod-admin]
sso_session = corp
sso_account_id = 111111111111
sso_role_name = Admin
region = us-east-1

[profile prod-readonly]
sso_session = corp
sso_account_id = 111111111111
sso_role_name = ReadOnly
region = us-east-1

[profile personal]
region = eu-west-1
"""

CREDENTIALS = """[prod-admin]
aws_access_key_id = ASIACACHED
aws_secret_access_key = cached
aws_session_token = token

[personal]
aws_access_key_id = AKIAPERSONAL
aws_secret_access_key = personalsecret
"""

SESSION = Session("corp", "https://corp.awsapps.com/start", "us-east-1")


class OperationsTestCase(unittest.TestCase):
    def setUp(self):
        self.config = parse(CONFIG)
        self.creds = parse(CREDENTIALS, CREDENTIALS_FILE)


class TestProfileNames(unittest.TestCase):
    """Test generated profile names."""

    def test_profile_name_for(self):
        """Test building profile names from account and role names."""
        self.assertEqual(
            profile_name_for("Prod Account", "AdministratorAccess"),
            "prod-account-administratoraccess",
        )
        self.assertEqual(profile_name_for("My.Acct_1", "Read/Only"), "my-acct-1-read-only")


class TestRegions(unittest.TestCase):
    def test_regions(self):
        """Test region validation and listing."""
        self.assertTrue(is_valid_region("eu-west-1"))
        self.assertTrue(is_valid_region(" us-east-1 "))
        self.assertFalse(is_valid_region("mars-north-1"))
        self.assertFalse(is_valid_region(None))
        self.assertEqual(all_regions(), sorted(all_regions()))


class TestSessions(OperationsTestCase):
    """Test SSO session management."""

    def test_add_session(self):
        """Test adding an SSO session."""
        document = add_session(
            Document(), "work", "https://work.awsapps.com/start", "eu-west-1"
        )
        self.assertEqual(
            serialize(document),
            "[sso-session work]\n"
            "sso_start_url = https://work.awsapps.com/start\n"
            "sso_region = eu-west-1\n"
            "sso_registration_scopes = sso:account:access\n"
            "\n",
        )

    def test_add_session_scopes(self):
        """Test the registration scopes of a new session."""
        document = add_session(
            Document(),
            "work",
            "https://work.awsapps.com/start",
            "eu-west-1",
            ["sso:account:access", " codewhisperer:completions "],
        )
        self.assertEqual(
            document.get(SSO_SESSION, "work").get("sso_registration_scopes"),
            "sso:account:access,codewhisperer:completions",
        )

    def test_add_session_validation(self):
        """Test that invalid session input is refused."""
        with self.assertRaises(ValidationError):
            add_session(Document(), "work", "work.awsapps.com", "eu-west-1")
        with self.assertRaises(ValidationError):
            add_session(Document(), "work", "https://work.awsapps.com/start", "nowhere-1")
        with self.assertRaises(ValidationError):
            add_session(Document(), " ", "https://work.awsapps.com/start", "eu-west-1")

    def test_add_existing_session(self):
        """Test adding a session that already exists."""
        with self.assertRaises(ConflictError):
            add_session(self.config, "corp", "https://other.awsapps.com/start", "us-east-1")

    def test_session_profiles(self):
        """Test listing the profiles of a session."""
        self.assertEqual(session_profiles(self.config, "corp"), ["prod-admin", "prod-readonly"])

    def test_delete_session_removes_profiles_and_credentials(self):
        """Test that deleting a session removes its profiles and credentials."""
        config, creds, names = delete_session(self.config, self.creds, "corp")
        self.assertEqual(names, ["prod-admin", "prod-readonly"])
        self.assertEqual(config.names(PROFILE), ["personal"])
        self.assertIsNone(config.get(SSO_SESSION, "corp"))
        self.assertEqual(creds.names(PROFILE), ["personal"])
        # personal is emitted verbatim
        self.assertEqual(serialize(creds), CREDENTIALS.split("\n\n", 1)[1])

    def test_delete_session_keep_session(self):
        """Test deleting only the profiles of a session."""
        config, _, names = delete_session(self.config, self.creds, "corp", keep_session=True)
        self.assertEqual(len(names), 2)
        self.assertIsNotNone(config.get(SSO_SESSION, "corp"))

    def test_delete_missing_session(self):
        """Test deleting a session that does not exist."""
        with self.assertRaises(NotFoundError):
            delete_session(self.config, self.creds, "nope")


class TestStaticProfiles(OperationsTestCase):
    """Test static key profiles."""

    def test_add_static_profile(self):
        """Test adding a static key profile to both files."""
        config, creds, resolution = add_static_profile(
            self.config, self.creds, "ci", "AKIACI", "cisecret", "us-west-2"
        )
        self.assertEqual(resolution.outcome, Outcome.ADDED)
        self.assertEqual(dict(config.get(PROFILE, "ci").body), {"region": "us-west-2"})
        self.assertEqual(static_key_pair(creds, "ci"), ("AKIACI", "cisecret"))
        self.assertIn("[ci]\n", serialize(creds))

        registry = Registry.build(config, creds)
        self.assertEqual(registry.lookup("ci").kind.value, "key")

    def test_add_identical_is_unchanged(self):
        """Test that adding the same profile again changes nothing."""
        config, creds, resolution = add_static_profile(
            self.config, self.creds, "personal", "AKIAPERSONAL", "personalsecret", "eu-west-1"
        )
        self.assertEqual(resolution.outcome, Outcome.UNCHANGED)
        self.assertEqual(serialize(config), CONFIG)
        self.assertEqual(serialize(creds), CREDENTIALS)

    def test_new_keys_conflict(self):
        """Test that different keys under the same name are a conflict."""
        with self.assertRaises(ConflictError):
            add_static_profile(
                self.config, self.creds, "personal", "AKIANEW", "newsecret", "eu-west-1"
            )

    def test_new_keys_overwrite(self):
        """Test overwriting a profile with new keys."""
        config, creds, resolution = add_static_profile(
            self.config,
            self.creds,
            "personal",
            "AKIANEW",
            "newsecret",
            "eu-west-1",
            Strategy.OVERWRITE,
        )
        self.assertEqual(resolution.outcome, Outcome.REPLACED)
        self.assertEqual(static_key_pair(creds, "personal"), ("AKIANEW", "newsecret"))

    def test_new_keys_rename(self):
        """Test renaming a profile with new keys."""
        config, creds, resolution = add_static_profile(
            self.config,
            self.creds,
            "personal",
            "AKIANEW",
            "newsecret",
            "eu-west-1",
            Strategy.AUTO_RENAME,
        )
        self.assertEqual(resolution.name, "personal-key")
        self.assertEqual(static_key_pair(creds, "personal"), ("AKIAPERSONAL", "personalsecret"))
        self.assertEqual(static_key_pair(creds, "personal-key"), ("AKIANEW", "newsecret"))

    def test_skip_leaves_credentials(self):
        """Test that skipping leaves the stored keys."""
        _, creds, resolution = add_static_profile(
            self.config,
            self.creds,
            "personal",
            "AKIANEW",
            "newsecret",
            "eu-west-1",
            Strategy.SKIP,
        )
        self.assertEqual(resolution.outcome, Outcome.SKIPPED)
        self.assertIs(creds, self.creds)

    def test_overwrite_drops_session_keys(self):
        """Test that new static keys drop a cached session token."""
        config = parse("[profile prod-admin]\nregion = us-east-1\n")
        _, creds, _ = add_static_profile(
            config, self.creds, "prod-admin", "AKIA", "s", "us-east-1", Strategy.OVERWRITE
        )
        section = creds.get(PROFILE, "prod-admin")
        self.assertIsNone(section.get("aws_session_token"))
        self.assertEqual(section.get("aws_access_key_id"), "AKIA")

    def test_validation(self):
        """Test that missing keys or regions are refused."""
        with self.assertRaises(ValidationError):
            add_static_profile(self.config, self.creds, "x", "", "s", "us-east-1")
        with self.assertRaises(ValidationError):
            add_static_profile(self.config, self.creds, "x", "AKIA", "s", "moon-1")

    def test_static_key_pair_missing(self):
        """Test static_key_pair for missing or partial sections."""
        self.assertIsNone(static_key_pair(self.creds, "nope"))


class TestRoleProfiles(OperationsTestCase):
    """Test assumed-role profiles."""

    def test_add_role_profile(self):
        """Test adding an assumed-role profile."""
        config, resolution = add_role_profile(
            self.config,
            "ops",
            role_arn="arn:aws:iam::222222222222:role/Ops",
            source_profile="personal",
            mfa_serial="arn:aws:iam::333333333333:mfa/alice",
            region="eu-west-1",
        )
        self.assertEqual(resolution.outcome, Outcome.ADDED)
        self.assertEqual(
            list(config.get(PROFILE, "ops").body),
            ["role_arn", "source_profile", "mfa_serial", "region"],
        )

    def test_mfa_only_profile(self):
        """Test adding a profile with only an MFA serial."""
        config, _ = add_role_profile(
            self.config,
            "personal-mfa",
            source_profile="personal",
            mfa_serial="arn:aws:iam::333333333333:mfa/alice",
            region="eu-west-1",
        )
        self.assertIsNone(config.get(PROFILE, "personal-mfa").get("role_arn"))

    def test_validation(self):
        """Test that invalid role input is refused."""
        with self.assertRaises(ValidationError):
            add_role_profile(self.config, "ops", region="eu-west-1")
        with self.assertRaises(ValidationError):
            add_role_profile(self.config, "ops", role_arn="Ops", region="eu-west-1")
        with self.assertRaises(ValidationError):
            add_role_profile(
                self.config, "ops", role_arn="arn:aws:iam::1:role/x", mfa_serial="123456"
            )


class TestProfileEdits(OperationsTestCase):
    """Test delete and region changes."""

    def test_delete_profile(self):
        """Test deleting a profile from both files."""
        config, creds = delete_profile(self.config, self.creds, "personal")
        self.assertNotIn("personal", config.names(PROFILE))
        self.assertNotIn("personal", creds.names(PROFILE))

    def test_delete_credentials_only_profile(self):
        """Test deleting a profile that only has credentials."""
        creds = parse("[legacy]\naws_access_key_id = A\naws_secret_access_key = B\n", CREDENTIALS_FILE)
        config, creds = delete_profile(self.config, creds, "legacy")
        self.assertEqual(len(creds), 0)
        self.assertIs(config, self.config)

    def test_delete_missing_profile(self):
        """Test deleting a profile that does not exist."""
        with self.assertRaises(NotFoundError):
            delete_profile(self.config, self.creds, "nope")

    def test_change_region(self):
        """Test changing the region of a profile."""
        config = change_region(self.config, "personal", "ap-south-1")
        self.assertEqual(config.get(PROFILE, "personal").get("region"), "ap-south-1")
        self.assertIs(change_region(self.config, "personal", "eu-west-1"), self.config)

    def test_change_region_validation(self):
        """Test that an unknown region is refused."""
        with self.assertRaises(ValidationError):
            change_region(self.config, "personal", "eu-west-9")
        with self.assertRaises(NotFoundError):
            change_region(self.config, "nope", "eu-west-1")


class TestGenerateProfiles(OperationsTestCase):
    """Test profile generation from discovered roles."""

    DISCOVERED = [
        DiscoveredRole("111111111111", "Prod", "Admin"),
        DiscoveredRole("111111111111", "Prod", "ReadOnly"),
        DiscoveredRole("222222222222", "Sandbox Dev", "Admin"),
    ]

    def test_generate_and_regenerate(self):
        """Test that a second run with the same roles changes nothing."""
        first = generate_profiles(self.config, SESSION, self.DISCOVERED)
        self.assertEqual(first.count(Outcome.UNCHANGED), 2)
        self.assertEqual(first.count(Outcome.ADDED), 1)
        section = first.document.get(PROFILE, "sandbox-dev-admin")
        self.assertEqual(
            dict(section.body),
            {
                "sso_session": "corp",
                "sso_account_id": "222222222222",
                "sso_role_name": "Admin",
                "region": "us-east-1",
            },
        )

        second = generate_profiles(first.document, SESSION, self.DISCOVERED)
        self.assertEqual(second.count(Outcome.UNCHANGED), 3)
        self.assertFalse(second.changed)

    def test_generate_overwrites_by_default(self):
        """Test that regenerating profiles overwrites them."""
        moved = [DiscoveredRole("999999999999", "Prod", "Admin")]
        result = generate_profiles(self.config, SESSION, moved)
        self.assertEqual(result.resolutions[0].outcome, Outcome.REPLACED)
        self.assertEqual(
            result.document.get(PROFILE, "prod-admin").get("sso_account_id"), "999999999999"
        )

    def test_generate_with_rename(self):
        """Test generating profiles with the rename strategy."""
        moved = [DiscoveredRole("999999999999", "Prod", "Admin")]
        result = generate_profiles(self.config, SESSION, moved, Strategy.AUTO_RENAME)
        self.assertEqual(result.resolutions[0].name, "prod-admin-sso")

    def test_generate_without_strategy_reports_conflicts(self):
        """Test that conflicts are reported without a strategy."""
        moved = [DiscoveredRole("999999999999", "Prod", "Admin")]
        result = generate_profiles(self.config, SESSION, moved, strategy=None)
        self.assertEqual(result.resolutions[0].outcome, Outcome.CONFLICT)
        self.assertEqual(serialize(result.document), CONFIG)


if __name__ == "__main__":
    unittest.main()
