from __future__ import annotations

import pytest

from cloudenv.environ import Environ
from cloudenv.providers.dummy import DummyCloud, DummyProvider
from cloudenv.retry import RetryPolicy

KEYS = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIDummyKeyForTests test@cloudenv"


def make_provider(
    *,
    retries: int = 5,
    polls: int = 20,
    poll: RetryPolicy | None = None,
) -> DummyProvider:
    return DummyProvider(
        retry=RetryPolicy.immediate(retries),
        poll=poll or RetryPolicy.immediate(polls),
    )


def open_env(provider: DummyProvider, name: str = "test1", **config: object) -> Environ:
    raw = {"authorized-keys": KEYS, "control-bucket": f"bucket-{name}"}
    raw.update({k.replace("_", "-"): v for k, v in config.items()})
    return provider.open(name, raw)


@pytest.fixture
def provider() -> DummyProvider:
    return make_provider()


@pytest.fixture
def env(provider: DummyProvider) -> Environ:
    return open_env(provider)


@pytest.fixture
def cloud(provider: DummyProvider, env: Environ) -> DummyCloud:
    return provider.cloud(env.config)

