"""Per-instance credentials: an SSH keypair for Linux, an administrator password for Windows."""

import secrets
import string
from dataclasses import dataclass, field
from typing import Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from .types import OsType

PASSWORD_LENGTH = 24
PASSWORD_SPECIALS = "!@#$%^&*()-_=+[]{}:?"


@dataclass
class InstanceCredential:
    ssh_public_key: Optional[str] = None
    private_key: Optional[str] = field(default=None, repr=False)
    admin_password: Optional[str] = field(default=None, repr=False)


def generate_ssh_keypair(key_size: int = 4096):
    """Return (private key PEM, OpenSSH public key)."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    private_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")
    public_openssh = key.public_key().public_bytes(
        encoding=serialization.Encoding.OpenSSH,
        format=serialization.PublicFormat.OpenSSH,
    ).decode("ascii")
    return private_pem, public_openssh


def generate_admin_password(length: int = PASSWORD_LENGTH) -> str:
    # Windows images reject passwords missing any of the four character classes
    classes = [string.ascii_lowercase, string.ascii_uppercase, string.digits, PASSWORD_SPECIALS]
    if length < len(classes):
        raise ValueError(f"Password length must be at least {len(classes)}")
    alphabet = "".join(classes)
    chars = [secrets.choice(c) for c in classes]
    chars += [secrets.choice(alphabet) for _ in range(length - len(classes))]
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)


def generate_credential(os_type: OsType, key_size: int = 4096) -> InstanceCredential:
    if os_type is OsType.LINUX:
        private_pem, public_key = generate_ssh_keypair(key_size)
        return InstanceCredential(ssh_public_key=public_key, private_key=private_pem)
    return InstanceCredential(admin_password=generate_admin_password())
