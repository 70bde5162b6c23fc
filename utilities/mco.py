"""
MachineConfig operator observation.

A BootModuleConfig change needs a manual reboot: the machine-config daemon
renders the new config, reports state Done with desiredConfig ahead of
currentConfig, and waits. The waiters here tell that point ("pending ready")
apart from the post-reboot point where both configs match ("applied").
"""

import base64
import logging
import time
from enum import Enum
from urllib.parse import unquote

from kubernetes.client.rest import ApiException
from ocp_resources.machine_config import MachineConfig
from ocp_resources.machine_config_pool import MachineConfigPool
from timeout_sampler import TimeoutExpiredError, TimeoutSampler

from utilities.constants import (
    CONDITION_TRUE,
    ENV_VALUE_TERMINATORS,
    MCO_STATE_DONE,
    POOL_POLL_INTERVAL,
    POOL_UPDATING_CONDITION,
    TIMEOUT_1MIN,
    TIMEOUT_2MIN,
    TIMEOUT_3MIN,
    TIMEOUT_10MIN,
    TIMEOUT_30MIN,
    TRANSITION_POLL_INTERVAL,
)
from utilities.exceptions import ResourceAbsentError, TransitionTimeoutError
from utilities.node import current_config, desired_config, get_node, mco_state, try_get_node
from utilities.sampling import wait_for_sample

LOGGER = logging.getLogger(__name__)


class NodeTransition(Enum):
    IDLE = "Idle"
    PENDING_READY = "PendingReady"
    IN_PROGRESS = "InProgress"


def is_pending_ready(snapshot):
    """New config rendered and the daemon is waiting for a reboot."""
    desired = desired_config(snapshot=snapshot)
    return bool(desired) and desired != current_config(snapshot=snapshot) and mco_state(snapshot) == MCO_STATE_DONE


def is_config_applied(snapshot):
    return (
        current_config(snapshot=snapshot) == desired_config(snapshot=snapshot)
        and mco_state(snapshot) == MCO_STATE_DONE
    )


def classify_node_transition(snapshot):
    """
    Applied and idle look the same; only the caller knows whether a reboot
    happened in between.
    """
    if is_config_applied(snapshot=snapshot):
        return NodeTransition.IDLE
    if is_pending_ready(snapshot=snapshot):
        return NodeTransition.PENDING_READY
    return NodeTransition.IN_PROGRESS


def log_node_transition(snapshot):
    LOGGER.info(
        f"Node {snapshot.name} - currentConfig: {current_config(snapshot=snapshot)}, "
        f"desiredConfig: {desired_config(snapshot=snapshot)}, state: {mco_state(snapshot)}"
    )


def _sample_node(client, node_name, predicate):
    snapshot = try_get_node(client=client, name=node_name)
    if snapshot is None:
        return None

    log_node_transition(snapshot=snapshot)
    if predicate(snapshot):
        return snapshot

    return None


def wait_for_pending_ready(client, node_name, timeout=TIMEOUT_10MIN, sleep=TRANSITION_POLL_INTERVAL):
    """
    Wait for the node to be ready for a manual reboot.

    Returns at once when the node is already pending at entry.

    Returns:
        NodeSnapshot: the snapshot that satisfied the predicate.

    Raises:
        NodeNotFoundError: the node does not exist at entry.
        TransitionTimeoutError: the node did not become pending in time.
    """
    snapshot = get_node(client=client, name=node_name)
    log_node_transition(snapshot=snapshot)
    if is_pending_ready(snapshot=snapshot):
        LOGGER.info(f"Node {node_name} already has a pending config change and is ready for reboot")
        return snapshot

    snapshot = wait_for_sample(
        func=_sample_node,
        timeout=timeout,
        sleep=sleep,
        on_timeout=lambda: TransitionTimeoutError(
            f"Node {node_name} did not get a pending config ready for reboot",
            primitive="wait_for_pending_ready",
            node=node_name,
            predicate="currentConfig != desiredConfig and state == Done",
            elapsed=timeout,
        ),
        client=client,
        node_name=node_name,
        predicate=is_pending_ready,
    )
    LOGGER.info(f"Node {node_name} is ready for manual reboot (new config pending, state: Done)")
    return snapshot


def wait_for_config_applied(client, node_name, timeout=TIMEOUT_10MIN, sleep=TRANSITION_POLL_INTERVAL):
    """
    Wait for the node to run its desired config.

    Raises:
        TransitionTimeoutError: configs still differ, or state is not Done, at the deadline.
    """
    snapshot = wait_for_sample(
        func=_sample_node,
        timeout=timeout,
        sleep=sleep,
        on_timeout=lambda: TransitionTimeoutError(
            f"Node {node_name} did not apply its desired config",
            primitive="wait_for_config_applied",
            node=node_name,
            predicate="currentConfig == desiredConfig and state == Done",
            elapsed=timeout,
        ),
        client=client,
        node_name=node_name,
        predicate=is_config_applied,
    )
    LOGGER.info(f"Node {node_name} has applied new config successfully")
    return snapshot


def _machine_config_if_exists(client, name):
    machine_config = MachineConfig(client=client, name=name)
    if machine_config.exists:
        return machine_config

    LOGGER.info(f"MachineConfig {name} not found yet")
    return None


def _machine_config_gone(client, name):
    return not MachineConfig(client=client, name=name).exists


def wait_for_machine_config_present(client, name, timeout=TIMEOUT_3MIN, sleep=TRANSITION_POLL_INTERVAL):
    """
    Raises:
        ResourceAbsentError: the MachineConfig did not appear in time.
    """
    machine_config = wait_for_sample(
        func=_machine_config_if_exists,
        timeout=timeout,
        sleep=sleep,
        on_timeout=lambda: ResourceAbsentError(
            f"MachineConfig {name} was not created in time",
            primitive="wait_for_machine_config_present",
            predicate=f"MachineConfig {name} exists",
            elapsed=timeout,
        ),
        client=client,
        name=name,
    )
    LOGGER.info(f"MachineConfig {name} created")
    return machine_config


def wait_for_machine_config_absent(client, name, timeout=TIMEOUT_1MIN, sleep=TRANSITION_POLL_INTERVAL):
    wait_for_sample(
        func=_machine_config_gone,
        timeout=timeout,
        sleep=sleep,
        on_timeout=lambda: TransitionTimeoutError(
            f"MachineConfig {name} still exists",
            primitive="wait_for_machine_config_absent",
            predicate=f"MachineConfig {name} does not exist",
            elapsed=timeout,
        ),
        client=client,
        name=name,
    )
    LOGGER.info(f"MachineConfig {name} deleted")


def _decode_data_url(value):
    header, _, data = value.partition(",")
    if header.endswith(";base64"):
        return base64.b64decode(data).decode("utf-8", errors="replace")
    return unquote(data)


def _string_leaves(obj):
    if isinstance(obj, dict):
        for value in obj.values():
            yield from _string_leaves(value)
    elif isinstance(obj, list):
        for item in obj:
            yield from _string_leaves(item)
    elif isinstance(obj, str):
        yield _decode_data_url(obj) if obj.startswith("data:") else obj


def machine_config_payload(machine_config_dict):
    """
    Text blob of every string in the MachineConfig spec, data URLs decoded.

    Ignition structure is not interpreted; callers search the blob.
    """
    return "\n".join(_string_leaves(machine_config_dict.get("spec") or {}))


def machine_config_env_var(payload, key):
    """
    Value of the first `KEY=` occurrence in payload, up to the next newline,
    double quote or space. None when the key is not in the payload.
    """
    marker = f"{key}="
    start = payload.find(marker)
    if start == -1:
        return None

    start += len(marker)
    ends = [index for index in (payload.find(terminator, start) for terminator in ENV_VALUE_TERMINATORS) if index != -1]
    return payload[start : min(ends, default=len(payload))]


def get_machine_config_env_var(client, name, key):
    """
    Raises:
        ResourceAbsentError: the MachineConfig does not exist.
    """
    machine_config = MachineConfig(client=client, name=name)
    if not machine_config.exists:
        raise ResourceAbsentError(
            f"MachineConfig {name} does not exist",
            primitive="get_machine_config_env_var",
            predicate=f"MachineConfig {name} exists",
        )

    value = machine_config_env_var(payload=machine_config_payload(machine_config.instance.to_dict()), key=key)
    LOGGER.info(f"MachineConfig {name}: {key}={value}")
    return value


def is_pool_stable(pool_dict):
    status = pool_dict.get("status") or {}
    machine_count = status.get("machineCount")
    if machine_count is None:
        return False

    updating = any(
        condition.get("type") == POOL_UPDATING_CONDITION and condition.get("status") == CONDITION_TRUE
        for condition in status.get("conditions") or []
    )
    return (
        not updating
        and status.get("updatedMachineCount") == machine_count
        and status.get("readyMachineCount") == machine_count
        and not status.get("degradedMachineCount")
    )


def _pool_stable(client, name):
    return is_pool_stable(pool_dict=MachineConfigPool(client=client, name=name).instance.to_dict())


def wait_for_pool_stable_for(client, name, stable_for=TIMEOUT_1MIN, timeout=TIMEOUT_2MIN, sleep=POOL_POLL_INTERVAL):
    """
    Wait for the pool to stay stable for `stable_for` seconds in a row.

    Raises:
        TransitionTimeoutError: the pool was not stable long enough before the deadline.
    """
    stable_since = None
    try:
        for sample in TimeoutSampler(
            wait_timeout=timeout,
            sleep=sleep,
            func=_pool_stable,
            exceptions_dict={ApiException: []},
            client=client,
            name=name,
        ):
            if not sample:
                stable_since = None
                continue

            if stable_since is None:
                stable_since = time.monotonic()
            if time.monotonic() - stable_since >= stable_for:
                LOGGER.info(f"MachineConfigPool {name} stable for {stable_for}s")
                return
    except TimeoutExpiredError as exc:
        raise TransitionTimeoutError(
            f"MachineConfigPool {name} was not stable for {stable_for}s",
            primitive="wait_for_pool_stable_for",
            predicate=f"pool {name} stable for {stable_for}s",
            elapsed=timeout,
        ) from exc


def wait_for_pool_update(client, name, timeout=TIMEOUT_30MIN, sleep=TRANSITION_POLL_INTERVAL):
    """
    Wait for every machine in the pool to be updated and ready.

    Raises:
        TransitionTimeoutError: the pool did not finish updating.
    """
    wait_for_sample(
        func=_pool_stable,
        timeout=timeout,
        sleep=sleep,
        on_timeout=lambda: TransitionTimeoutError(
            f"MachineConfigPool {name} did not finish updating",
            primitive="wait_for_pool_update",
            predicate=f"pool {name} updated, ready and not degraded",
            elapsed=timeout,
        ),
        client=client,
        name=name,
    )
    LOGGER.info(f"MachineConfigPool {name} update complete")
