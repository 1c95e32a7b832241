"""Joyent SmartDataCenter provider for cloudenv.

Example:
    from cloudenv.providers.joyent import JoyentProvider

    env = JoyentProvider().open("prod", {
        "sdc-url": "https://us-east-1.api.joyentcloud.com",
        "manta-url": "https://us-east.manta.joyent.com",
        "manta-user": "jdoe",
        "key-id": "12:34:56:...",
        "private-key-path": "~/.ssh/id_rsa",
    })
"""

from cloudenv.providers.joyent.config import JoyentConfig
from cloudenv.providers.joyent.provider import JoyentCredentials, JoyentEnviron, JoyentProvider

__all__ = ["JoyentConfig", "JoyentCredentials", "JoyentEnviron", "JoyentProvider"]
