"""
Fixtures for the KMM BootModuleConfig suite.

Every worker gets a privileged helper Deployment for the whole session; the
tests reboot nodes, and the helper comes back with the node because it
tolerates the unreachable and unschedulable taints.
"""

import logging

import pytest

from utilities.bmc import BmcLifecycleDriver
from utilities.executor import HelperPodExecutor, delete_helpers, deploy_helper

LOGGER = logging.getLogger(__name__)


@pytest.fixture(scope="session")
def helper_pods_deployed(admin_client, kmm_config, workers):
    LOGGER.info(f"Deploying helper pods on {len(workers)} worker nodes")
    for worker in workers:
        deploy_helper(
            client=admin_client,
            node_name=worker.name,
            namespace=kmm_config.helper_namespace,
            label=kmm_config.helper_label,
        )

    yield

    delete_helpers(client=admin_client, namespace=kmm_config.helper_namespace, label=kmm_config.helper_label)


@pytest.fixture(scope="session")
def executor(admin_client, kmm_config, helper_pods_deployed):
    return HelperPodExecutor(
        client=admin_client,
        namespace=kmm_config.helper_namespace,
        label=kmm_config.helper_label,
        container=kmm_config.helper_container,
    )


@pytest.fixture(scope="session")
def worker_node(workers):
    LOGGER.info(f"Using worker node: {workers[0].name}")
    return workers[0].name


@pytest.fixture(scope="session")
def driver(admin_client, executor):
    return BmcLifecycleDriver(client=admin_client, executor=executor)


@pytest.fixture(scope="class")
def deployed_bmc(driver, bmc_spec):
    """Create the class's BootModuleConfig and tear it down with its MachineConfig."""
    driver.create(spec=bmc_spec)
    yield bmc_spec
    driver.teardown(spec=bmc_spec)
