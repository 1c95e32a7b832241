"""Machine configuration and cloud-init user data.

The engine hands every new instance a startup payload describing which
role it plays: the bootstrap machine runs the provisioning agent and the
state server; the rest join an existing state server.
"""

from __future__ import annotations

import json
import shlex
from dataclasses import dataclass

from cloudenv.constants import STATE_PORT
from cloudenv.exceptions import ConfigurationError
from cloudenv.types import StateInfo

DEFAULT_ORIGIN = "distro"


@dataclass(frozen=True, slots=True)
class MachineConfig:
    """Everything needed to render a new instance's startup payload.

    Attributes:
        machine_id: Machine number inside the environment.
        provisioner: Whether the machine runs the provisioning agent.
        state_server: Whether the machine runs the state server.
        state_info: State server to join; required unless ``state_server``.
        authorized_keys: SSH public keys installed for the admin user.
        provider_type: Backend type tag (``ec2``, ``joyent``, ...).
        instance_id_accessor: Shell expression yielding the instance id
            from inside the machine.
        origin: Where the agent software is installed from.
    """

    machine_id: str
    provisioner: bool
    state_server: bool
    state_info: StateInfo | None
    authorized_keys: str
    provider_type: str
    instance_id_accessor: str
    origin: str = DEFAULT_ORIGIN

    def verify(self) -> None:
        if not self.machine_id:
            raise ConfigurationError("missing machine id")
        if not self.provider_type:
            raise ConfigurationError("missing provider type")
        if not self.authorized_keys:
            raise ConfigurationError("missing authorized keys")
        if not self.state_server and (self.state_info is None or not self.state_info.addrs):
            raise ConfigurationError("missing state server info for non-bootstrap machine")


def _state_addrs(cfg: MachineConfig) -> str:
    if cfg.state_server:
        return f"localhost:{STATE_PORT}"
    if cfg.state_info is None:
        raise ConfigurationError("missing state server info for non-bootstrap machine")
    return ",".join(cfg.state_info.addrs)


def render_user_data(cfg: MachineConfig) -> bytes:
    """Render ``cfg`` as a ``#cloud-config`` document.

    JSON is a subset of YAML, so the body is emitted with json.
    """
    cfg.verify()

    packages = ["git", "python3"]
    runcmd: list[str] = []
    if cfg.state_server:
        packages += ["zookeeperd", "default-jre-headless"]
        runcmd.append("systemctl enable --now zookeeper")

    env = {
        "JUJU_PROVIDER_TYPE": cfg.provider_type,
        "JUJU_MACHINE_ID": cfg.machine_id,
        "JUJU_ZOOKEEPER": _state_addrs(cfg),
        "JUJU_ORIGIN": cfg.origin,
    }
    exports = " ".join(f"{k}={shlex.quote(v)}" for k, v in env.items())
    runcmd.append(f"mkdir -p /var/lib/juju && echo {exports} > /var/lib/juju/environment")
    runcmd.append(
        f"juju-admin initialize --instance-id={cfg.instance_id_accessor} "
        f"--machine-id={shlex.quote(cfg.machine_id)}"
        if cfg.state_server
        else f"juju-machine-agent --machine-id={shlex.quote(cfg.machine_id)}"
    )
    if cfg.provisioner:
        runcmd.append("juju-provisioning-agent")

    doc = {
        "apt_update": True,
        "packages": packages,
        "ssh_authorized_keys": [k for k in cfg.authorized_keys.splitlines() if k.strip()],
        "runcmd": runcmd,
    }
    return b"#cloud-config\n" + json.dumps(doc, indent=2).encode()
