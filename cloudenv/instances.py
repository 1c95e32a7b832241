"""Instance lifecycle: launch, terminate and list an environment's machines."""

from __future__ import annotations

from collections.abc import Callable, Sequence

from loguru import logger

from cloudenv.backends import ComputeBackend, ImageResolver
from cloudenv.constants import LIVE_STATES
from cloudenv.exceptions import BackendError, CloudEnvError, ProvisioningError
from cloudenv.groups import SecurityGroupManager
from cloudenv.machine import MachineConfig
from cloudenv.types import DEFAULT_IMAGE_CONSTRAINT, ImageConstraint, Instance, RunSpec, StateInfo

log = logger.bind(component="instances")

type UserDataRenderer = Callable[[MachineConfig], bytes]
type MachineConfigFactory = Callable[[str, StateInfo | None, bool], MachineConfig]


class InstanceManager:
    """Starts and stops instances of one environment through its backend.

    Args:
        compute: Compute backend.
        groups: Group manager of the same environment.
        image_resolver: Maps an image constraint to a concrete image.
        machine_config: Builds the MachineConfig of a new machine from
            (machine id, state info, bootstrap flag).
        render: Renders a MachineConfig into user data.
        instance_type: Instance size requested from the backend.
        image_constraint: Image series/arch to resolve.
    """

    def __init__(
        self,
        compute: ComputeBackend,
        groups: SecurityGroupManager,
        *,
        image_resolver: ImageResolver,
        machine_config: MachineConfigFactory,
        render: UserDataRenderer,
        instance_type: str,
        image_constraint: ImageConstraint = DEFAULT_IMAGE_CONSTRAINT,
    ) -> None:
        self.compute = compute
        self.groups = groups
        self.image_resolver = image_resolver
        self.machine_config = machine_config
        self.render = render
        self.instance_type = instance_type
        self.image_constraint = image_constraint

    def start_instance(
        self,
        machine_id: int | str,
        info: StateInfo | None,
        master: bool = False,
    ) -> Instance:
        """Launch exactly one instance for ``machine_id``.

        If ``master`` is true the instance is the bootstrap machine and runs
        the state server; otherwise it joins the state server in ``info``.
        """
        try:
            image = self.image_resolver(self.image_constraint)
        except CloudEnvError as e:
            raise ProvisioningError(f"cannot find image: {e}") from e

        user_data = self.render(self.machine_config(str(machine_id), info, master))

        try:
            groups = self.groups.ensure_groups(machine_id)
        except CloudEnvError as e:
            raise ProvisioningError(f"cannot set up groups: {e}") from e

        spec = RunSpec(
            image_id=image.image_id,
            instance_type=self.instance_type,
            user_data=user_data,
            groups=groups,
            count=1,
        )
        log.info(
            "Starting machine {id} (image={image}, type={type}, master={master})",
            id=machine_id, image=image.image_id, type=self.instance_type, master=master,
        )
        try:
            started = self.compute.run_instances(spec)
        except BackendError as e:
            raise ProvisioningError(f"cannot run instances: {e}") from e

        if len(started) != 1:
            raise ProvisioningError(f"expected 1 started instance, got {len(started)}")

        inst = started[0]
        log.info("Started instance {inst} for machine {id}", inst=inst.id, id=machine_id)
        return inst

    def stop_instances(self, instances: Sequence[Instance]) -> None:
        """Terminate ``instances`` with one bulk request; no-op when empty."""
        if not instances:
            return
        ids = [inst.id for inst in instances]
        log.info("Terminating instances {ids}", ids=ids)
        self.compute.terminate_instances(ids)

    def instances(self) -> list[Instance]:
        """Pending and running instances of this environment."""
        return self.compute.instances(group=self.groups.group_name(), states=LIVE_STATES)

    def instances_by_id(self, ids: Sequence[str]) -> list[Instance]:
        if not ids:
            return []
        return self.compute.instances(ids=ids)
