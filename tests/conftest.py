"""
Global fixtures for the cluster test suites.

The suites need a reachable cluster; without a kubeconfig every test that
asks for admin_client is skipped.
"""

import logging

import pytest
import urllib3
from kubernetes.config import ConfigException
from ocp_resources.resource import get_client

from utilities.config import KmmConfiguration
from utilities.node import list_nodes

LOGGER = logging.getLogger(__name__)


def pytest_addoption(parser):
    parser.addoption(
        "--kmm-config",
        action="store",
        default=None,
        help="KMM configuration JSON file, overrides ECO_HWACCEL_KMM_CONFIG",
    )


@pytest.fixture(scope="session")
def admin_client():
    """
    Get DynamicClient
    """
    urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
    try:
        return get_client()
    except ConfigException as exc:
        pytest.skip(f"No cluster available: {exc}")


@pytest.fixture(scope="session")
def kmm_config(pytestconfig):
    conf = KmmConfiguration.from_env(filename=pytestconfig.getoption("kmm_config"))
    LOGGER.info(f"KMM configuration: {conf}")
    return conf


@pytest.fixture(scope="session")
def workers(admin_client, kmm_config):
    snapshots = list_nodes(client=admin_client, label_map=kmm_config.worker_label_map)
    if not snapshots:
        pytest.skip(f"No worker nodes match {kmm_config.worker_label_map}")

    return snapshots
