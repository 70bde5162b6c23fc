"""
Kernel module inspection on a node through its helper pod.
"""

import logging

from utilities.constants import (
    DMESG_COMMAND,
    LSMOD_COMMAND,
    MODULE_CHECK_INTERVAL,
    TIMEOUT_1MIN,
)
from utilities.exceptions import NonZeroExitError, TransitionTimeoutError
from utilities.sampling import wait_for_sample

LOGGER = logging.getLogger(__name__)


def normalize_module_name(module_name):
    """lsmod lists modules with underscores only."""
    return module_name.replace("-", "_")


def command_output_contains(executor, command, text, node_name):
    """True when any ready helper pod on the node prints text for command."""
    for pod in executor.ready_helper_pods(node_name=node_name):
        output = executor.execute_on_pod(pod=pod, command=command, node_name=node_name)
        LOGGER.info(f"{command} output in pod {pod.name}:\n{output}")
        if text in output:
            LOGGER.info(f"{command} output contains '{text}' in pod {pod.name} on node {node_name}")
            return True

    return False


def is_module_loaded(executor, module_name, node_name):
    return command_output_contains(
        executor=executor,
        command=LSMOD_COMMAND,
        text=normalize_module_name(module_name=module_name),
        node_name=node_name,
    )


def is_module_not_loaded(executor, module_name, node_name):
    modname = normalize_module_name(module_name=module_name)
    output = executor.execute(node_name=node_name, command=LSMOD_COMMAND)
    if modname in output:
        LOGGER.info(f"Module {modname} is still loaded on node {node_name}, waiting...")
        return False

    LOGGER.info(f"Module {modname} is NOT loaded on node {node_name} (as expected)")
    return True


def module_exists_on_node(executor, module_name, node_name):
    """
    Check whether modinfo on the host knows the module.

    Returns:
        bool: False when modinfo exits non-zero.

    Raises:
        NoHelperPodError: no ready helper pod on the node.
        ExecFailedError: the exec call itself failed.
    """
    LOGGER.info(f"Checking if module {module_name} exists on node {node_name}")
    try:
        output = executor.execute_on_host(node_name=node_name, command=["modinfo", module_name])
    except NonZeroExitError as exc:
        LOGGER.info(f"Module {module_name} does not exist on node {node_name}: {exc.output}")
        return False

    LOGGER.info(f"modinfo output for {module_name}: {output}")
    return True


def _module_timeout(primitive, node_name, predicate, timeout):
    return lambda: TransitionTimeoutError(
        f"Timed out waiting for {predicate} on node {node_name}",
        primitive=primitive,
        node=node_name,
        predicate=predicate,
        elapsed=timeout,
    )


def wait_for_module_loaded(executor, module_name, node_name, timeout=TIMEOUT_1MIN, sleep=MODULE_CHECK_INTERVAL):
    """
    Wait for lsmod on the node to list the module.

    Args:
        executor (HelperPodExecutor): helper pod executor.
        module_name (str): module name, dashes are matched as underscores.
        node_name (str): node to inspect.
        timeout (int): seconds to wait.

    Raises:
        TransitionTimeoutError: the module was not listed within the timeout.
        ExecFailedError: lsmod could not be run.
    """
    modname = normalize_module_name(module_name=module_name)
    LOGGER.info(f"Waiting for module {modname} to be loaded on node {node_name}")
    wait_for_sample(
        func=is_module_loaded,
        timeout=timeout,
        sleep=sleep,
        on_timeout=_module_timeout(
            primitive="wait_for_module_loaded",
            node_name=node_name,
            predicate=f"lsmod contains {modname}",
            timeout=timeout,
        ),
        print_log=False,
        executor=executor,
        module_name=module_name,
        node_name=node_name,
    )


def wait_for_module_not_loaded(
    executor, module_name, node_name, timeout=TIMEOUT_1MIN, sleep=MODULE_CHECK_INTERVAL
):
    """
    Wait for lsmod on the node to stop listing the module.

    Unloading may lag behind the event that triggered it, so this polls.

    Raises:
        TransitionTimeoutError: the module was still listed at the deadline.
        NoHelperPodError: no ready helper pod on the node.
    """
    modname = normalize_module_name(module_name=module_name)
    LOGGER.info(f"Waiting for module {modname} to be unloaded on node {node_name}")
    wait_for_sample(
        func=is_module_not_loaded,
        timeout=timeout,
        sleep=sleep,
        on_timeout=_module_timeout(
            primitive="wait_for_module_not_loaded",
            node_name=node_name,
            predicate=f"lsmod does not contain {modname}",
            timeout=timeout,
        ),
        print_log=False,
        executor=executor,
        module_name=module_name,
        node_name=node_name,
    )


def wait_for_module_exists(executor, module_name, node_name, timeout=TIMEOUT_1MIN, sleep=MODULE_CHECK_INTERVAL):
    wait_for_sample(
        func=module_exists_on_node,
        timeout=timeout,
        sleep=sleep,
        on_timeout=_module_timeout(
            primitive="wait_for_module_exists",
            node_name=node_name,
            predicate=f"modinfo {module_name} succeeds",
            timeout=timeout,
        ),
        print_log=False,
        executor=executor,
        module_name=module_name,
        node_name=node_name,
    )


def wait_for_dmesg_message(executor, message, node_name, timeout=TIMEOUT_1MIN, sleep=MODULE_CHECK_INTERVAL):
    """
    Wait for the kernel ring buffer of the node to contain message.

    Raises:
        TransitionTimeoutError: message not found within the timeout.
    """
    LOGGER.info(f"Waiting for dmesg on node {node_name} to contain '{message}'")
    wait_for_sample(
        func=command_output_contains,
        timeout=timeout,
        sleep=sleep,
        on_timeout=_module_timeout(
            primitive="wait_for_dmesg_message",
            node_name=node_name,
            predicate=f"dmesg contains '{message}'",
            timeout=timeout,
        ),
        print_log=False,
        executor=executor,
        command=DMESG_COMMAND,
        text=message,
        node_name=node_name,
    )
