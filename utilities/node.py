"""
Node state reader.

Snapshots of nodes are plain dataclasses built from the node's dict, so every
predicate in the engine is a pure function over a snapshot.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List

from kubernetes.client.rest import ApiException
from kubernetes.dynamic.exceptions import NotFoundError
from ocp_resources.node import Node
from urllib3.exceptions import HTTPError

from utilities.constants import (
    CONDITION_TRUE,
    CURRENT_CONFIG_ANNOTATION,
    DESIRED_CONFIG_ANNOTATION,
    KERNEL_FULL_VERSION_PLACEHOLDER,
    MCO_STATE_ANNOTATION,
    NODE_READY_CONDITION,
)
from utilities.exceptions import NodeNotFoundError

LOGGER = logging.getLogger(__name__)


@dataclass
class NodeSnapshot:
    name: str
    labels: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)
    conditions: List[dict] = field(default_factory=list)
    boot_id: str = ""
    kernel_version: str = ""

    @classmethod
    def from_dict(cls, node_dict):
        metadata = node_dict.get("metadata") or {}
        status = node_dict.get("status") or {}
        node_info = status.get("nodeInfo") or {}
        return cls(
            name=metadata.get("name", ""),
            labels=metadata.get("labels") or {},
            annotations=metadata.get("annotations") or {},
            conditions=status.get("conditions") or [],
            boot_id=node_info.get("bootID") or "",
            kernel_version=node_info.get("kernelVersion") or "",
        )


def label_selector(label_map):
    return ",".join(f"{key}={value}" for key, value in label_map.items())


def get_node(client, name):
    """
    Fetch a node and return its snapshot.

    Raises:
        NodeNotFoundError: the node does not exist.
    """
    node = Node(client=client, name=name)
    try:
        instance = node.instance
    except NotFoundError as exc:
        raise NodeNotFoundError(
            f"Node {name} not found", primitive="get_node", node=name
        ) from exc

    return NodeSnapshot.from_dict(instance.to_dict())


def try_get_node(client, name):
    """
    Like get_node, but returns None when the node cannot be fetched.

    Used while a node reboots, when the API may briefly fail to serve it.
    """
    try:
        return get_node(client=client, name=name)
    except (NodeNotFoundError, ApiException, HTTPError) as exc:
        LOGGER.warning(f"Node {name} unreachable: {exc}")
        return None


def list_nodes(client, label_map):
    """Snapshots of all nodes matching the label map."""
    return [
        NodeSnapshot.from_dict(node.instance.to_dict())
        for node in Node.get(client=client, label_selector=label_selector(label_map))
    ]


def current_config(snapshot):
    return snapshot.annotations.get(CURRENT_CONFIG_ANNOTATION, "")


def desired_config(snapshot):
    return snapshot.annotations.get(DESIRED_CONFIG_ANNOTATION, "")


def mco_state(snapshot):
    return snapshot.annotations.get(MCO_STATE_ANNOTATION, "")


def is_node_ready(snapshot):
    return any(
        condition.get("type") == NODE_READY_CONDITION
        and condition.get("status") == CONDITION_TRUE
        for condition in snapshot.conditions
    )


def kernel_full_version(client, label_map):
    """Kernel version of the first node matching the label map."""
    for snapshot in list_nodes(client=client, label_map=label_map):
        LOGGER.info(f"Found kernel version '{snapshot.kernel_version}' on node {snapshot.name}")
        return snapshot.kernel_version

    raise NodeNotFoundError(
        f"Could not find a node matching {label_map} to read the kernel version from",
        primitive="kernel_full_version",
    )


def expand_kernel_version(image, kernel_version):
    return image.replace(KERNEL_FULL_VERSION_PLACEHOLDER, kernel_version)
