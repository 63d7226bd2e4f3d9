"""Tests for settings loading."""

import os
import shutil
import tempfile
import unittest
from datetime import timedelta

from awsm.errors import ValidationError
from awsm.settings import DEFAULT_SAFETY_MARGIN, DEFAULT_SCOPES, Settings, load_settings


class TestLoadSettings(unittest.TestCase):
    """Test settings file and environment handling."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.path = os.path.join(self.temp_dir, "config.toml")

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write(self, text):
        with open(self.path, "w") as f:
            f.write(text)

    def test_defaults_without_file(self):
        """Test the defaults without a settings file."""
        settings = load_settings(self.path, environ={})
        self.assertEqual(settings.safety_margin, DEFAULT_SAFETY_MARGIN)
        self.assertEqual(settings.registration_scopes, DEFAULT_SCOPES)
        self.assertEqual(settings.config_path, os.path.expanduser("~/.aws/config"))
        self.assertEqual(settings.credentials_path, os.path.expanduser("~/.aws/credentials"))

    def test_aws_environment_paths(self):
        """Test that the AWS path variables are honored."""
        settings = load_settings(
            self.path,
            environ={"AWS_CONFIG_FILE": "/tmp/c", "AWS_SHARED_CREDENTIALS_FILE": "/tmp/k"},
        )
        self.assertEqual(settings.config_path, "/tmp/c")
        self.assertEqual(settings.credentials_path, "/tmp/k")

    def test_file_values(self):
        """Test that every section of the settings file is applied."""
        self._write(
            "[credentials]\n"
            "safety_margin_minutes = 10\n"
            "\n"
            "[sso]\n"
            'registration_scopes = ["sso:account:access", "codewhisperer:completions"]\n'
            "\n"
            "[encryption]\n"
            'ssh_key_path = "~/.ssh/id_rsa"\n'
            "\n"
            "[chrome_profiles]\n"
            'Work = "Profile 1"\n'
        )
        settings = load_settings(self.path, environ={})
        self.assertEqual(settings.safety_margin, timedelta(minutes=10))
        self.assertEqual(
            settings.registration_scopes, ("sso:account:access", "codewhisperer:completions")
        )
        self.assertEqual(settings.ssh_key_path, os.path.expanduser("~/.ssh/id_rsa"))
        self.assertEqual(settings.chrome_profile_directory("work"), "Profile 1")
        self.assertEqual(settings.chrome_profile_directory("WORK"), "Profile 1")

    def test_environment_overrides_margin(self):
        """Test overriding the safety margin from the environment."""
        self._write("[credentials]\nsafety_margin_minutes = 10\n")
        settings = load_settings(self.path, environ={"AWSM_SAFETY_MARGIN_MINUTES": "2.5"})
        self.assertEqual(settings.safety_margin, timedelta(minutes=2.5))

    def test_invalid_margin(self):
        """Test that an invalid margin is refused."""
        with self.assertRaises(ValidationError):
            load_settings(self.path, environ={"AWSM_SAFETY_MARGIN_MINUTES": "soon"})
        self._write("[credentials]\nsafety_margin_minutes = -1\n")
        with self.assertRaises(ValidationError):
            load_settings(self.path, environ={})

    def test_invalid_toml(self):
        """Test that a malformed settings file is refused."""
        self._write("[credentials\n")
        with self.assertRaises(ValidationError):
            load_settings(self.path, environ={})


class TestChromeProfiles(unittest.TestCase):
    """Test Chrome profile alias mapping."""

    def test_unknown_alias_passes_through(self):
        """Test that an unknown Chrome alias is used as the profile name."""
        settings = Settings(chrome_profiles={"work": "Profile 1"})
        self.assertEqual(settings.chrome_profile_directory("Profile 3"), "Profile 3")
        self.assertIsNone(settings.chrome_profile_directory(None))


if __name__ == "__main__":
    unittest.main()
