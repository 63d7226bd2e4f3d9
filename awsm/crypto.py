"""
SSH-key derived encryption of credential values in export bundles.

Values are encrypted with AES-256-GCM. The key is derived with HKDF from
the user's password-protected OpenSSH private key, so a bundle can only be
decrypted on a machine holding the same key file.
"""

import base64
import binascii
import os
import struct

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .errors import EncryptionError

ENCRYPTED_PREFIX = "__encrypted__:"

_OPENSSH_MAGIC = b"openssh-key-v1\0"
_NONCE_SIZE = 12
# nonce + at least one byte of ciphertext + 16 byte tag
_MIN_PAYLOAD = _NONCE_SIZE + 1 + 16


def is_ssh_key_password_protected(ssh_key_path):
    """
    Detect if an SSH private key is password protected.

    Parses the OPENSSH format and checks the cipher field:
    cipher "none" means the key is not encrypted.

    Returns:
        bool: True if protected, False if not, None if it cannot be determined
    """
    try:
        with open(ssh_key_path, "r") as f:
            lines = f.readlines()

        key_lines = []
        in_key = False
        for line in lines:
            if "BEGIN" in line:
                in_key = True
                continue
            if "END" in line:
                break
            if in_key:
                key_lines.append(line.strip())

        if not key_lines:
            return None

        key_blob = base64.b64decode("".join(key_lines))
        if key_blob[: len(_OPENSSH_MAGIC)] != _OPENSSH_MAGIC:
            return None

        pos = len(_OPENSSH_MAGIC)
        if pos + 4 > len(key_blob):
            return None
        cipher_len = struct.unpack(">I", key_blob[pos : pos + 4])[0]
        pos += 4
        if cipher_len > len(key_blob) - pos or cipher_len > 1024:
            return None

        return key_blob[pos : pos + cipher_len].decode() != "none"

    except (ValueError, UnicodeDecodeError, struct.error, OSError):
        return None


def derive_key(ssh_key_path):
    """
    Derive a 32-byte AES key from an SSH private key using HKDF.

    Raises:
        EncryptionError: If the key file cannot be read
    """
    try:
        with open(ssh_key_path, "rb") as f:
            ssh_key_data = f.read()
    except FileNotFoundError:
        raise EncryptionError(
            f"SSH key not found at {ssh_key_path}\n"
            f"  To fix: generate an ED25519 key with: ssh-keygen -t ed25519 -f {ssh_key_path}\n"
            f"  Or set [encryption] ssh_key_path in ~/.config/awsm/config.toml"
        )
    except PermissionError:
        raise EncryptionError(
            f"Permission denied reading SSH key at {ssh_key_path}\n"
            f"  To fix: chmod 600 {ssh_key_path}"
        )
    except OSError as e:
        raise EncryptionError(f"Failed to read SSH key at {ssh_key_path}: {e}")

    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=b"awsm-bundle-v1-salt",
        info=b"awsm-bundle-encryption",
    )
    return hkdf.derive(ssh_key_data)


def require_protected_key(ssh_key_path):
    """Refuse to encrypt with a key that has no passphrase."""
    is_protected = is_ssh_key_password_protected(ssh_key_path)
    if is_protected is False:
        raise EncryptionError(
            f"SSH key '{ssh_key_path}' is not password protected. "
            f"Only password-protected SSH keys can be used for encryption. "
            f"Add a passphrase: ssh-keygen -p -f {ssh_key_path}"
        )
    if is_protected is None:
        raise EncryptionError(
            f"Could not verify if SSH key '{ssh_key_path}' is password protected. "
            f"Please ensure it's a valid OPENSSH format key."
        )


def encrypt_value(value, key):
    """
    Encrypt a string with a derived key.

    Returns:
        str: ``__encrypted__:`` followed by base64(nonce + ciphertext)
    """
    nonce = os.urandom(_NONCE_SIZE)
    ciphertext = AESGCM(key).encrypt(nonce, value.encode(), None)
    return ENCRYPTED_PREFIX + base64.b64encode(nonce + ciphertext).decode()


def decrypt_value(value, key):
    """
    Decrypt a value produced by encrypt_value; other values are returned as-is.

    Raises:
        EncryptionError: If the value is corrupted or the key is wrong
    """
    if not is_encrypted(value):
        return value

    try:
        payload = base64.b64decode(value[len(ENCRYPTED_PREFIX) :], validate=True)
    except (binascii.Error, ValueError):
        raise EncryptionError("Corrupted encrypted value (invalid base64 encoding)")

    if len(payload) < _MIN_PAYLOAD:
        raise EncryptionError(
            f"Invalid encrypted value: too short ({len(payload)} bytes, "
            f"expected at least {_MIN_PAYLOAD})"
        )

    nonce, ciphertext = payload[:_NONCE_SIZE], payload[_NONCE_SIZE:]
    try:
        plaintext = AESGCM(key).decrypt(nonce, ciphertext, None)
    except InvalidTag:
        raise EncryptionError(
            "Decryption failed (authentication tag mismatch or wrong key)\n"
            "  Possible causes:\n"
            "    - The SSH key is not the one the bundle was exported with\n"
            "    - The bundle has been edited or corrupted"
        )
    return plaintext.decode()


def is_encrypted(value):
    """Check if a value is encrypted."""
    return isinstance(value, str) and value.startswith(ENCRYPTED_PREFIX)


class ValueCipher:
    """Encrypts and decrypts values with the key derived from one SSH key file."""

    def __init__(self, ssh_key_path, require_protected=True):
        self.ssh_key_path = ssh_key_path
        if require_protected:
            require_protected_key(ssh_key_path)
        self._key = derive_key(ssh_key_path)

    def encrypt(self, value):
        return encrypt_value(value, self._key)

    def decrypt(self, value):
        return decrypt_value(value, self._key)
