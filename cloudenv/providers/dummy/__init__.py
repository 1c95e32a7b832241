"""In-memory provider for local experiments and tests.

Example:
    from cloudenv.providers.dummy import DummyProvider

    env = DummyProvider().open("test1", {"authorized-keys": "ssh-ed25519 AAAA..."})
    env.bootstrap()
"""

from cloudenv.providers.dummy.backends import DummyCompute, DummyStorage
from cloudenv.providers.dummy.config import DummyConfig
from cloudenv.providers.dummy.provider import DummyCloud, DummyProvider

__all__ = ["DummyCloud", "DummyCompute", "DummyConfig", "DummyProvider", "DummyStorage"]
