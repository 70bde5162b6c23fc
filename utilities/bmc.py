"""
BootModuleConfig lifecycle driver.

Drives a BootModuleConfig through its whole pipeline on one target node:
the BMC renders a MachineConfig, the machine-config daemon stages it and waits
for a manual reboot, the node is rebooted, and the out-of-tree module must be
loaded (and the listed in-tree modules unloaded) once the node is back.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from ocp_resources.machine_config import MachineConfig
from ocp_resources.pod import Pod

from utilities.constants import (
    BUILD_POD_POLL_INTERVAL,
    BUILD_POD_SUFFIX,
    FIRMWARE_DMESG_MESSAGE,
    FIRMWARE_FILES_PATH_ENV,
    IN_TREE_MODULES_TO_REMOVE_ENV,
    RESOURCE_DELETE_INTERVAL,
    TIMEOUT_1MIN,
    TIMEOUT_2MIN,
    TIMEOUT_3MIN,
    TIMEOUT_5MIN,
    TIMEOUT_10MIN,
    TIMEOUT_30MIN,
    WORKER_IMAGE_ENV,
    WORKER_IMAGE_PATTERN,
)
from utilities.exceptions import BmcAssertionError, BuildPodFailedError, TransitionTimeoutError
from utilities.kmm import wait_for_dmesg_message, wait_for_module_loaded, wait_for_module_not_loaded
from utilities.mco import (
    get_machine_config_env_var,
    wait_for_config_applied,
    wait_for_machine_config_absent,
    wait_for_machine_config_present,
    wait_for_pending_ready,
    wait_for_pool_stable_for,
    wait_for_pool_update,
)
from utilities.reboot import reboot_node
from utilities.resources import BootModuleConfig
from utilities.sampling import wait_for_sample

LOGGER = logging.getLogger(__name__)


@dataclass
class BootModuleConfigSpec:
    name: str
    namespace: str
    kernel_module_image: str
    kernel_module_name: str
    machine_config_name: str
    machine_config_pool_name: str
    firmware_files_path: Optional[str] = None
    in_tree_modules_to_remove: List[str] = field(default_factory=list)
    worker_image: Optional[str] = None

    def resource(self, client):
        return BootModuleConfig(
            client=client,
            name=self.name,
            namespace=self.namespace,
            kernel_module_image=self.kernel_module_image,
            kernel_module_name=self.kernel_module_name,
            machine_config_name=self.machine_config_name,
            machine_config_pool_name=self.machine_config_pool_name,
            firmware_files_path=self.firmware_files_path,
            in_tree_modules_to_remove=self.in_tree_modules_to_remove,
            worker_image=self.worker_image,
        )


@dataclass
class EnvExpectation:
    key: str
    description: str
    check: Callable[[str], bool]


def expected_machine_config_env(spec):
    """
    Environment variables the rendered MachineConfig must carry for spec.

    An empty worker image means the operator fills in its own, so only the
    shape of the value is checked.
    """
    if spec.worker_image:
        expectations = [
            EnvExpectation(
                key=WORKER_IMAGE_ENV,
                description=f"equals {spec.worker_image}",
                check=lambda value: value == spec.worker_image,
            )
        ]
    else:
        expectations = [
            EnvExpectation(
                key=WORKER_IMAGE_ENV,
                description="is a non-empty image reference",
                check=lambda value: bool(re.match(WORKER_IMAGE_PATTERN, value)),
            )
        ]

    if spec.firmware_files_path:
        expectations.append(
            EnvExpectation(
                key=FIRMWARE_FILES_PATH_ENV,
                description=f"equals {spec.firmware_files_path}",
                check=lambda value: value == spec.firmware_files_path,
            )
        )

    if spec.in_tree_modules_to_remove:
        expectations.append(
            EnvExpectation(
                key=IN_TREE_MODULES_TO_REMOVE_ENV,
                description=f"lists {', '.join(spec.in_tree_modules_to_remove)}",
                check=lambda value: all(module in value for module in spec.in_tree_modules_to_remove),
            )
        )

    return expectations


def verify_machine_config_env(client, spec):
    """
    Raises:
        BmcAssertionError: a variable is missing or has an unexpected value.
        ResourceAbsentError: the MachineConfig does not exist.
    """
    for expectation in expected_machine_config_env(spec=spec):
        value = get_machine_config_env_var(client=client, name=spec.machine_config_name, key=expectation.key)
        if value is None or not expectation.check(value):
            raise BmcAssertionError(
                f"MachineConfig {spec.machine_config_name}: {expectation.key}={value!r}, "
                f"expected a value that {expectation.description}",
                primitive="verify_machine_config_env",
                predicate=f"{expectation.key} {expectation.description}",
            )

        LOGGER.info(f"MachineConfig {spec.machine_config_name}: {expectation.key} {expectation.description}")


def _boot_module_config_gone(client, name, namespace):
    exists = BootModuleConfig(client=client, name=name, namespace=namespace).exists
    if exists:
        LOGGER.info(f"BootModuleConfig {namespace}/{name} still present")
    return not exists


def wait_for_boot_module_config_deleted(
    client, name, namespace, timeout=TIMEOUT_1MIN, sleep=RESOURCE_DELETE_INTERVAL
):
    wait_for_sample(
        func=_boot_module_config_gone,
        timeout=timeout,
        sleep=sleep,
        on_timeout=lambda: TransitionTimeoutError(
            f"BootModuleConfig {namespace}/{name} was not deleted",
            primitive="wait_for_boot_module_config_deleted",
            predicate=f"BootModuleConfig {namespace}/{name} does not exist",
            elapsed=timeout,
        ),
        print_log=False,
        client=client,
        name=name,
        namespace=namespace,
    )
    LOGGER.info(f"BootModuleConfig {namespace}/{name} deleted")


class BmcLifecycleDriver:
    """
    Runs the BootModuleConfig pipeline against one node at a time.

    The driver holds no cluster state besides the build pod it last saw in
    each namespace; every other decision is made from fresh reads.
    """

    def __init__(self, client, executor):
        self.client = client
        self.executor = executor
        self._build_pods = {}

    def create(self, spec):
        bmc = spec.resource(client=self.client)
        LOGGER.info(
            f"Creating BootModuleConfig {spec.namespace}/{spec.name} "
            f"(module {spec.kernel_module_name}, image {spec.kernel_module_image})"
        )
        bmc.deploy()
        return bmc

    def verify_machine_config(self, spec):
        machine_config = wait_for_machine_config_present(
            client=self.client, name=spec.machine_config_name, timeout=TIMEOUT_3MIN
        )
        verify_machine_config_env(client=self.client, spec=spec)
        return machine_config

    def reboot_into_pending_config(self, node_name):
        """
        Wait for the staged config, reboot, and wait for the node to run it.

        Returns:
            RebootRecord: the pre-reboot record.
        """
        wait_for_pending_ready(client=self.client, node_name=node_name, timeout=TIMEOUT_10MIN)
        record = reboot_node(client=self.client, executor=self.executor, node_name=node_name)
        wait_for_config_applied(client=self.client, node_name=node_name, timeout=TIMEOUT_10MIN)
        return record

    def verify_modules(self, spec, node_name):
        self.executor.wait_for_ready_helper_pod(node_name=node_name, timeout=TIMEOUT_5MIN)

        for module_name in spec.in_tree_modules_to_remove:
            wait_for_module_not_loaded(
                executor=self.executor, module_name=module_name, node_name=node_name, timeout=TIMEOUT_1MIN
            )

        wait_for_module_loaded(
            executor=self.executor, module_name=spec.kernel_module_name, node_name=node_name, timeout=TIMEOUT_1MIN
        )

        if spec.firmware_files_path:
            wait_for_dmesg_message(
                executor=self.executor, message=FIRMWARE_DMESG_MESSAGE, node_name=node_name, timeout=TIMEOUT_1MIN
            )

    def teardown(self, spec):
        """
        Delete the BootModuleConfig, then its MachineConfig, and wait for the
        pool to roll the MachineConfig removal out.

        Resources that are already gone are logged and skipped.

        Raises:
            BmcAssertionError: a rendered MachineConfig went away with the BMC,
                or its deletion did not start a pool update.
            TransitionTimeoutError: a deletion or the pool update did not finish.
        """
        machine_config = MachineConfig(client=self.client, name=spec.machine_config_name)
        machine_config_rendered = bool(machine_config.exists)

        bmc = BootModuleConfig(client=self.client, name=spec.name, namespace=spec.namespace)
        bmc_deleted = False
        if bmc.exists:
            LOGGER.info(f"Deleting BootModuleConfig {spec.namespace}/{spec.name}")
            bmc.delete()
            wait_for_boot_module_config_deleted(client=self.client, name=spec.name, namespace=spec.namespace)
            bmc_deleted = True
        else:
            LOGGER.info(f"BootModuleConfig {spec.namespace}/{spec.name} already absent")

        if not machine_config.exists:
            if bmc_deleted and machine_config_rendered:
                raise BmcAssertionError(
                    f"MachineConfig {spec.machine_config_name} was removed together with its BootModuleConfig",
                    primitive="teardown",
                    predicate=f"MachineConfig {spec.machine_config_name} exists after BMC deletion",
                )
            LOGGER.info(f"MachineConfig {spec.machine_config_name} already absent")
            return

        LOGGER.info(f"MachineConfig {spec.machine_config_name} persists after BMC deletion, deleting it")
        machine_config.delete()
        wait_for_machine_config_absent(client=self.client, name=spec.machine_config_name, timeout=TIMEOUT_1MIN)

        pool_name = spec.machine_config_pool_name
        try:
            wait_for_pool_stable_for(
                client=self.client, name=pool_name, stable_for=TIMEOUT_1MIN, timeout=TIMEOUT_2MIN
            )
        except TransitionTimeoutError:
            LOGGER.info(f"MachineConfigPool {pool_name} started updating after MachineConfig deletion")
        else:
            raise BmcAssertionError(
                f"Deleting MachineConfig {spec.machine_config_name} did not trigger a MachineConfigPool update",
                primitive="teardown",
                predicate=f"pool {pool_name} unstable within {TIMEOUT_2MIN}s",
            )

        wait_for_pool_update(client=self.client, name=pool_name, timeout=TIMEOUT_30MIN)

    def run(self, spec, node_name):
        """
        Full pipeline: create, verify the MachineConfig, reboot, verify the
        modules, tear down.

        Teardown also runs when an earlier step fails. In that case a teardown
        error is logged and the step's own error is raised.
        """
        try:
            self.create(spec=spec)
            self.verify_machine_config(spec=spec)
            record = self.reboot_into_pending_config(node_name=node_name)
            self.verify_modules(spec=spec, node_name=node_name)
        except Exception:
            try:
                self.teardown(spec=spec)
            except Exception as teardown_exc:
                LOGGER.error(f"Teardown of BootModuleConfig {spec.namespace}/{spec.name} failed: {teardown_exc}")
            raise

        self.teardown(spec=spec)
        return record

    def _build_pod_done(self, namespace):
        if not self._build_pods.get(namespace):
            for pod in Pod.get(client=self.client, namespace=namespace):
                if BUILD_POD_SUFFIX in pod.name:
                    LOGGER.info(f"Build pod {pod.name} found")
                    self._build_pods[namespace] = pod.name

        pod_name = self._build_pods.get(namespace)
        if not pod_name:
            return False

        pod = Pod(client=self.client, name=pod_name, namespace=namespace)
        if not pod.exists:
            LOGGER.info(f"Build pod {pod_name} no longer in namespace {namespace}")
            self._build_pods.pop(namespace)
            return True

        phase = pod.instance.status.phase
        if phase == Pod.Status.FAILED:
            self._build_pods.pop(namespace)
            raise BuildPodFailedError(
                f"Build pod {pod_name} has failed",
                primitive="wait_for_build_pod_completed",
                predicate=f"build pod {pod_name} phase Succeeded",
            )

        if phase == Pod.Status.SUCCEEDED:
            LOGGER.info(f"Build pod {pod_name} is in phase Succeeded")
            self._build_pods.pop(namespace)
            return True

        return False

    def wait_for_build_pod_completed(self, namespace, timeout=TIMEOUT_5MIN, sleep=BUILD_POD_POLL_INTERVAL):
        """
        Wait for the kernel module build pod in namespace to finish.

        Raises:
            BuildPodFailedError: the build pod ended in phase Failed.
            TransitionTimeoutError: no build pod finished in time.
        """
        wait_for_sample(
            func=self._build_pod_done,
            timeout=timeout,
            sleep=sleep,
            on_timeout=lambda: TransitionTimeoutError(
                f"No build pod finished in namespace {namespace}",
                primitive="wait_for_build_pod_completed",
                predicate=f"pod *{BUILD_POD_SUFFIX} in {namespace} gone or Succeeded",
                elapsed=timeout,
            ),
            namespace=namespace,
        )
