"""HTTP Signature authentication shared by CloudAPI and Manta.

Each request carries a ``Date`` header signed with the account's SSH key:

    Authorization: Signature keyId="/<user>/keys/<fingerprint>",
        algorithm="rsa-sha256",headers="date",signature="<base64>"
"""

from __future__ import annotations

import base64
from collections.abc import Generator
from email.utils import formatdate
from pathlib import Path

import httpx
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.serialization import load_pem_private_key

from cloudenv.exceptions import ConfigurationError


def load_private_key(path: str) -> rsa.RSAPrivateKey:
    """Load an unencrypted RSA key in PEM format."""
    try:
        data = Path(path).expanduser().read_bytes()
    except OSError as e:
        raise ConfigurationError(f"cannot read private key {path!r}: {e}") from e
    try:
        key = load_pem_private_key(data, password=None)
    except (ValueError, TypeError) as e:
        raise ConfigurationError(f"cannot load private key {path!r}: {e}") from e
    if not isinstance(key, rsa.RSAPrivateKey):
        raise ConfigurationError(f"private key {path!r} is not an RSA key")
    return key


class HTTPSignatureAuth(httpx.Auth):
    """Signs the ``Date`` header of every request with an RSA key."""

    def __init__(self, user: str, key_id: str, key: rsa.RSAPrivateKey) -> None:
        self.key_id = f"/{user}/keys/{key_id}"
        self.key = key

    def signature(self, date: str) -> str:
        signed = self.key.sign(f"date: {date}".encode(), padding.PKCS1v15(), hashes.SHA256())
        return base64.b64encode(signed).decode()

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        date = formatdate(usegmt=True)
        request.headers["Date"] = date
        request.headers["Authorization"] = (
            f'Signature keyId="{self.key_id}",algorithm="rsa-sha256",'
            f'headers="date",signature="{self.signature(date)}"'
        )
        yield request
