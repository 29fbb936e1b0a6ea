"""Loading of the SSH private key used for droplet creation and login."""

from __future__ import annotations

import base64
import getpass
import hashlib
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TypeAlias

import asyncssh
from loguru import logger

from cloudproxy.exceptions import CredentialError

PassphrasePrompt: TypeAlias = Callable[[str], str]


@dataclass(frozen=True, slots=True)
class Credential:
    """A parsed private key and the fingerprint DigitalOcean knows it by."""

    path: Path
    key: asyncssh.SSHKey = field(repr=False)
    fingerprint: str


def compute_fingerprint(public_key: str) -> str:
    """Legacy MD5 fingerprint (``aa:bb:cc:...``) of an OpenSSH public key line.

    Raises:
        CredentialError: If the key line is malformed.
    """
    parts = public_key.strip().split()
    if len(parts) < 2:
        raise CredentialError(f"Invalid SSH public key format: {public_key[:50]}...")
    try:
        decoded = base64.b64decode(parts[1], validate=True)
    except ValueError as e:
        raise CredentialError(f"Could not decode SSH public key: {e}") from e
    digest = hashlib.md5(decoded).hexdigest()
    return ":".join(digest[i : i + 2] for i in range(0, len(digest), 2))


def _is_encrypted_error(error: asyncssh.KeyImportError) -> bool:
    return "passphrase" in str(error).lower()


def load_credential(
    location: str | Path,
    passphrase: str | None = None,
    prompt: PassphrasePrompt = getpass.getpass,
) -> Credential:
    """Read the private key at ``location``.

    Encrypted keys without a ``passphrase`` trigger ``prompt``.

    Raises:
        CredentialError: If the file is missing, unparseable, or the
            passphrase is wrong.
    """
    path = Path(location).expanduser()
    if not path.is_file():
        raise CredentialError(f"Unable to read ssh key file: {path}")

    try:
        key = asyncssh.read_private_key(path, passphrase)
    except asyncssh.KeyImportError as e:
        if passphrase is not None or not _is_encrypted_error(e):
            raise CredentialError(f"Error parsing private key {path}: {e}") from e
        secret = prompt(f"Enter Password ({path}): ")
        try:
            key = asyncssh.read_private_key(path, secret)
        except (asyncssh.KeyImportError, asyncssh.KeyEncryptionError) as e2:
            raise CredentialError(f"Error parsing encrypted private key {path}: {e2}") from e2
    except asyncssh.KeyEncryptionError as e:
        raise CredentialError(f"Error decrypting private key {path}: {e}") from e

    public_key = key.export_public_key("openssh").decode()
    fingerprint = compute_fingerprint(public_key)
    logger.debug(f"Loaded SSH key {path} ({fingerprint})")
    return Credential(path=path, key=key, fingerprint=fingerprint)


__all__ = ["Credential", "PassphrasePrompt", "compute_fingerprint", "load_credential"]
