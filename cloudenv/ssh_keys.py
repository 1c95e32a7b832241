"""SSH authorized-keys discovery for new machines."""

from __future__ import annotations

from pathlib import Path

from cloudenv.exceptions import ConfigurationError

DEFAULT_KEY_NAMES = ("id_ed25519.pub", "id_rsa.pub", "id_dsa.pub", "identity.pub")


def _expand(path: str) -> Path:
    return Path(path).expanduser()


def authorized_keys(keys: str | None, path: str | None, ssh_dir: Path | None = None) -> str:
    """Return the authorized keys to install on new machines.

    Literal ``keys`` win; otherwise ``path`` is read (relative paths are
    looked up in ``~/.ssh``); otherwise the first default public key found.

    Raises:
        ConfigurationError: If no key can be found.
    """
    if keys:
        return keys
    ssh_dir = ssh_dir or Path.home() / ".ssh"

    if path:
        candidate = _expand(path)
        if not candidate.is_absolute():
            candidate = ssh_dir / candidate
        try:
            return candidate.read_text()
        except OSError as e:
            raise ConfigurationError(f"cannot read authorized keys from {candidate}: {e}") from e

    for name in DEFAULT_KEY_NAMES:
        candidate = ssh_dir / name
        if candidate.is_file():
            return candidate.read_text()

    raise ConfigurationError(
        f"no public ssh keys found in {ssh_dir}. Create one with: ssh-keygen -t ed25519"
    )
