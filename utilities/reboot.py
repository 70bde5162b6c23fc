"""
Verified reboot of a single node through its helper pod.
"""

import logging
import time
from dataclasses import dataclass, field

from utilities.constants import REBOOT_COMMAND, REBOOT_POLL_INTERVAL, TIMEOUT_1MIN, TIMEOUT_10MIN
from utilities.exceptions import BootIdUnchangedError, ExecFailedError, NodeNotReadyError
from utilities.node import get_node, is_node_ready, try_get_node
from utilities.sampling import wait_for_sample

LOGGER = logging.getLogger(__name__)


@dataclass
class RebootRecord:
    node_name: str
    original_boot_id: str
    begin_time: float = field(default_factory=time.monotonic)

    @property
    def elapsed(self):
        return time.monotonic() - self.begin_time


def _boot_id_changed(client, node_name, original_boot_id):
    snapshot = try_get_node(client=client, name=node_name)
    if snapshot is None or snapshot.boot_id == original_boot_id:
        return None

    LOGGER.info(f"Node {node_name} boot ID changed: {original_boot_id} -> {snapshot.boot_id} (reboot confirmed)")
    return snapshot


def _node_ready(client, node_name):
    snapshot = try_get_node(client=client, name=node_name)
    if snapshot is None or not is_node_ready(snapshot=snapshot):
        return None

    LOGGER.info(f"Node {node_name} is Ready")
    return snapshot


def wait_for_boot_id_change(client, record, timeout=TIMEOUT_10MIN, sleep=REBOOT_POLL_INTERVAL):
    """
    Wait for the node to report a boot ID other than the recorded one.

    Fetch errors while the node is down are expected and ignored.

    Raises:
        BootIdUnchangedError: the boot ID did not change in time.
    """
    return wait_for_sample(
        func=_boot_id_changed,
        timeout=timeout,
        sleep=sleep,
        on_timeout=lambda: BootIdUnchangedError(
            f"Timeout waiting for boot ID change on node {record.node_name}",
            primitive="reboot_node",
            node=record.node_name,
            predicate=f"bootID != {record.original_boot_id}",
            elapsed=record.elapsed,
        ),
        client=client,
        node_name=record.node_name,
        original_boot_id=record.original_boot_id,
    )


def wait_for_node_ready(client, node_name, timeout=TIMEOUT_10MIN, sleep=REBOOT_POLL_INTERVAL):
    """
    Raises:
        NodeNotReadyError: the Ready condition did not turn True in time.
    """
    return wait_for_sample(
        func=_node_ready,
        timeout=timeout,
        sleep=sleep,
        on_timeout=lambda: NodeNotReadyError(
            f"Timeout waiting for node {node_name} to become Ready",
            primitive="reboot_node",
            node=node_name,
            predicate="condition Ready == True",
            elapsed=timeout,
        ),
        client=client,
        node_name=node_name,
    )


def reboot_node(
    client,
    executor,
    node_name,
    helper_timeout=TIMEOUT_1MIN,
    boot_id_timeout=TIMEOUT_10MIN,
    ready_timeout=TIMEOUT_10MIN,
    sleep=REBOOT_POLL_INTERVAL,
):
    """
    Reboot a node from its helper pod and wait until it is back and Ready.

    The boot ID is compared against the value read before the reboot command
    was issued, so a reboot triggered by someone else also satisfies the wait.

    Args:
        client (DynamicClient): cluster client.
        executor (HelperPodExecutor): helper pod executor.
        node_name (str): node to reboot.

    Returns:
        RebootRecord: the pre-reboot record.

    Raises:
        NodeNotFoundError: the node does not exist.
        HelperPodNotReadyError: no ready helper pod on the node.
        BootIdUnchangedError: the node did not reboot.
        NodeNotReadyError: the node rebooted but did not become Ready.
    """
    LOGGER.info(f"Initiating reboot on node {node_name}")
    snapshot = get_node(client=client, name=node_name)
    record = RebootRecord(node_name=node_name, original_boot_id=snapshot.boot_id)
    LOGGER.info(f"Node {node_name} current boot ID: {record.original_boot_id}")

    helper_pod = executor.wait_for_ready_helper_pod(node_name=node_name, timeout=helper_timeout)
    LOGGER.info(f"Executing '{' '.join(REBOOT_COMMAND)}' on node {node_name} via pod {helper_pod.name}")
    try:
        executor.execute_on_pod(pod=helper_pod, command=REBOOT_COMMAND, node_name=node_name)
    except ExecFailedError as exc:
        # The reboot tears down the exec session.
        LOGGER.info(f"Reboot command on node {node_name} ended with: {exc}")

    LOGGER.info(f"Waiting for node {node_name} boot ID to change")
    wait_for_boot_id_change(client=client, record=record, timeout=boot_id_timeout, sleep=sleep)

    LOGGER.info(f"Waiting for node {node_name} to become Ready")
    wait_for_node_ready(client=client, node_name=node_name, timeout=ready_timeout, sleep=sleep)

    LOGGER.info(f"Node {node_name} successfully rebooted and Ready after {record.elapsed:.0f}s")
    return record
