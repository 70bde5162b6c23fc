"""Shared doubles for the engine unit tests"""

from unittest.mock import MagicMock, patch

import pytest
from timeout_sampler import TimeoutExpiredError

from utilities.constants import (
    CURRENT_CONFIG_ANNOTATION,
    DESIRED_CONFIG_ANNOTATION,
    HELPER_CONTAINER_NAME,
    MCO_STATE_ANNOTATION,
)
from utilities.node import NodeSnapshot


class FakeTimeoutSampler:
    """
    Stand-in for TimeoutSampler that samples func `ticks` times without
    sleeping, then expires. Exceptions outside exceptions_dict abort the loop
    the way the real sampler does.
    """

    ticks = 3
    calls = None

    def __init__(self, wait_timeout, sleep, func, exceptions_dict=None, print_log=True, **func_kwargs):
        self.wait_timeout = wait_timeout
        self.sleep = sleep
        self.func = func
        self.exceptions_dict = exceptions_dict or {}
        self.func_kwargs = func_kwargs
        self.calls.append(self)

    def __iter__(self):
        last_exp = None
        for _ in range(self.ticks):
            try:
                yield self.func(**self.func_kwargs)
            except Exception as exc:
                if not isinstance(exc, tuple(self.exceptions_dict)):
                    raise TimeoutExpiredError(f"Aborted: {exc}", last_exp=exc)
                last_exp = exc

        raise TimeoutExpiredError(f"Timed out after {self.wait_timeout}s", last_exp=last_exp)


@pytest.fixture
def fake_sampler():
    """Patch the shared sampling loop; set `.ticks` to control how long it polls."""
    sampler = type("Sampler", (FakeTimeoutSampler,), {"ticks": 3, "calls": []})
    with patch("utilities.sampling.TimeoutSampler", sampler):
        yield sampler


def node_snapshot(
    name="worker-0",
    current="rendered-worker-a",
    desired="rendered-worker-a",
    state="Done",
    boot_id="boot-1",
    ready=True,
    kernel_version="5.14.0-427.el9.x86_64",
):
    annotations = {}
    if current is not None:
        annotations[CURRENT_CONFIG_ANNOTATION] = current
    if desired is not None:
        annotations[DESIRED_CONFIG_ANNOTATION] = desired
    if state is not None:
        annotations[MCO_STATE_ANNOTATION] = state

    return NodeSnapshot(
        name=name,
        labels={"node-role.kubernetes.io/worker": ""},
        annotations=annotations,
        conditions=[{"type": "Ready", "status": "True" if ready else "False"}],
        boot_id=boot_id,
        kernel_version=kernel_version,
    )


def node_dict(snapshot):
    return {
        "metadata": {"name": snapshot.name, "labels": snapshot.labels, "annotations": snapshot.annotations},
        "status": {
            "conditions": snapshot.conditions,
            "nodeInfo": {"bootID": snapshot.boot_id, "kernelVersion": snapshot.kernel_version},
        },
    }


def helper_pod(name="kmm-test-helper-worker-0-abc", node_name="worker-0", phase="Running", ready=True):
    pod = MagicMock()
    pod.name = name
    pod.instance.to_dict.return_value = {
        "metadata": {"name": name},
        "spec": {"nodeName": node_name},
        "status": {
            "phase": phase,
            "containerStatuses": [{"name": HELPER_CONTAINER_NAME, "ready": ready}],
        },
    }
    return pod


@pytest.fixture
def mock_client():
    return MagicMock()
