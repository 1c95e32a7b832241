"""Joyent provider configuration."""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlparse


@dataclass(frozen=True, slots=True)
class JoyentConfig:
    """Joyent SmartDataCenter environment configuration.

    Args:
        sdc_url: CloudAPI endpoint, e.g. ``https://us-east-1.api.joyentcloud.com``.
        manta_url: Manta endpoint, e.g. ``https://us-east.manta.joyent.com``.
        manta_user: Account owning the Manta storage.
        key_id: Fingerprint of the SSH key requests are signed with.
        private_key_path: PEM file of that key.
        sdc_user: CloudAPI account. Defaults to ``manta_user``.
        control_bucket: Manta directory (under ``/<user>/stor``) holding the
            bootstrap state.
        region: Datacenter name. Defaults to the first label of ``sdc_url``.
        instance_type: CloudAPI package of every machine.
        image_id: Fixed image UUID. If None, the latest Ubuntu certified
            image of ``default_series`` is used.
    """

    sdc_url: str = ""
    manta_url: str = ""
    manta_user: str = ""
    key_id: str = ""
    private_key_path: str = ""
    sdc_user: str = ""
    control_bucket: str = "juju"
    region: str = ""
    algorithm: str = "rsa-sha256"
    instance_type: str = "g4-highcpu-1G"
    image_id: str | None = None
    default_series: str = "jammy"
    authorized_keys: str | None = None
    authorized_keys_path: str | None = None

    @property
    def endpoint(self) -> str:
        return self.sdc_url

    @property
    def user(self) -> str:
        return self.sdc_user or self.manta_user


def region_from_url(url: str) -> str:
    host = urlparse(url).hostname or ""
    return host.split(".", 1)[0]
