"""
Reading and atomic writing of the AWS config and credentials files.
"""

import logging
import os
import stat
import tempfile
from pathlib import Path

from .document import CONFIG, CREDENTIALS_FILE, Document, parse, serialize
from .errors import StoreIOError

logger = logging.getLogger(__name__)

PRIVATE_MODE = 0o600
DEFAULT_MODE = 0o644


def load(path, kind=CONFIG):
    """
    Read an INI document from disk.

    Args:
        path: Path to the file
        kind: Document kind passed to the parser

    Returns:
        Document (empty if the file does not exist)

    Raises:
        StoreIOError: If the file exists but cannot be read
        ParseError: If the file is malformed
    """
    path = os.fspath(path)
    try:
        with open(path, "r", encoding="utf-8", newline="") as f:
            text = f.read()
    except FileNotFoundError:
        logger.debug("%s does not exist, starting with an empty document", path)
        return Document(kind)
    except (OSError, UnicodeDecodeError) as e:
        raise StoreIOError(f"Failed to read {path}: {e}")
    return parse(text, kind, path=path)


def _target_mode(path, private):
    if private:
        return PRIVATE_MODE
    try:
        return stat.S_IMODE(os.stat(path).st_mode)
    except FileNotFoundError:
        return DEFAULT_MODE


def save(path, document, private=False):
    """
    Write a document atomically.

    The text goes to a temporary file in the target directory which is then
    renamed over the target, so readers see either the old or the new file.
    The temporary file is created 0600, so credentials are never exposed
    with default permissions, even briefly.

    Args:
        path: Destination path
        document: Document to write
        private: If True the result is owner read/write only (credentials)

    Raises:
        StoreIOError: If any step fails; the target file is left untouched
    """
    path = os.fspath(path)
    directory = Path(path).parent
    text = serialize(document)

    try:
        directory.mkdir(parents=True, exist_ok=True)
        mode = _target_mode(path, private)
        fd, temp_path = tempfile.mkstemp(dir=directory, prefix=f".{Path(path).name}.", suffix=".tmp")
    except OSError as e:
        raise StoreIOError(f"Failed to prepare write of {path}: {e}")

    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(temp_path, mode)
        os.replace(temp_path, path)
    except OSError as e:
        try:
            os.unlink(temp_path)
        except FileNotFoundError:
            pass
        raise StoreIOError(f"Failed to write {path}: {e}")

    logger.debug("Wrote %d sections to %s (mode %o)", len(document), path, mode)


class ConfigStore:
    """Loads and saves the config and credentials documents named in Settings."""

    def __init__(self, settings):
        self.settings = settings

    @property
    def config_path(self):
        return self.settings.config_path

    @property
    def credentials_path(self):
        return self.settings.credentials_path

    def load_config(self):
        return load(self.config_path, CONFIG)

    def load_credentials(self):
        return load(self.credentials_path, CREDENTIALS_FILE)

    def save_config(self, document):
        save(self.config_path, document)

    def save_credentials(self, document):
        save(self.credentials_path, document, private=True)
