"""
Command execution inside privileged helper pods.

Each worker node runs one helper pod (label ``kmm-test-helper``) whose ``test``
container mounts the host root at ``/host``. Commands that must act on the
host are wrapped with ``chroot /host``.
"""

import logging

from kubernetes.client.rest import ApiException
from ocp_resources.deployment import Deployment
from ocp_resources.exceptions import ExecOnPodError
from ocp_resources.pod import Pod
from websocket import WebSocketException

from utilities.constants import (
    DTK_IMAGE,
    HELPER_CONTAINER_NAME,
    HELPER_POD_POLL_INTERVAL,
    HOST_ROOT,
    KMM_OPERATOR_NAMESPACE,
    KMM_TEST_HELPER_LABEL,
    NODE_HOSTNAME_LABEL,
    TIMEOUT_1MIN,
    TIMEOUT_10MIN,
)
from utilities.exceptions import ExecFailedError, HelperPodNotReadyError, NoHelperPodError, NonZeroExitError
from utilities.sampling import wait_for_sample

LOGGER = logging.getLogger(__name__)

HELPER_TOLERATIONS = [
    {"key": "node.kubernetes.io/unreachable", "operator": "Exists", "effect": "NoExecute"},
    {"key": "node.kubernetes.io/unreachable", "operator": "Exists", "effect": "NoSchedule"},
    {"key": "node.kubernetes.io/unschedulable", "operator": "Exists", "effect": "NoSchedule"},
    {"key": "node.kubernetes.io/disk-pressure", "operator": "Exists", "effect": "NoSchedule"},
    {"operator": "Exists", "effect": "NoExecute"},
    {"operator": "Exists", "effect": "NoSchedule"},
]


def is_ready_helper_pod(pod_dict, node_name, container_name=HELPER_CONTAINER_NAME):
    """
    A helper pod is usable when it runs on the node, is Running and its
    container reports ready.
    """
    spec = pod_dict.get("spec") or {}
    status = pod_dict.get("status") or {}
    if spec.get("nodeName") != node_name or status.get("phase") != Pod.Status.RUNNING:
        return False

    return any(
        container_status.get("name") == container_name and container_status.get("ready")
        for container_status in status.get("containerStatuses") or []
    )


class HelperPodExecutor:
    """
    Runs commands in the helper container of the helper pod on a given node.

    Pod selection is stateless: every call lists the helper pods again.
    """

    def __init__(
        self,
        client,
        namespace=KMM_OPERATOR_NAMESPACE,
        label=KMM_TEST_HELPER_LABEL,
        container=HELPER_CONTAINER_NAME,
        exec_timeout=TIMEOUT_1MIN,
    ):
        self.client = client
        self.namespace = namespace
        self.label = label
        self.container = container
        self.exec_timeout = exec_timeout

    def helper_pods(self):
        return list(Pod.get(client=self.client, namespace=self.namespace, label_selector=self.label))

    def ready_helper_pods(self, node_name):
        return [
            pod
            for pod in self.helper_pods()
            if is_ready_helper_pod(
                pod_dict=pod.instance.to_dict(), node_name=node_name, container_name=self.container
            )
        ]

    def wait_for_ready_helper_pod(self, node_name, timeout=TIMEOUT_1MIN, sleep=HELPER_POD_POLL_INTERVAL):
        """
        Wait for a helper pod on the node to be Running with a ready container.

        Raises:
            HelperPodNotReadyError: no ready helper pod appeared within the timeout.
        """
        LOGGER.info(f"Waiting up to {timeout}s for a ready helper pod on node {node_name}")
        pods = wait_for_sample(
            func=self.ready_helper_pods,
            timeout=timeout,
            sleep=sleep,
            on_timeout=lambda: HelperPodNotReadyError(
                f"No ready helper pod on node {node_name}",
                primitive="wait_for_ready_helper_pod",
                node=node_name,
                predicate=f"phase=Running and container {self.container} ready",
                elapsed=timeout,
            ),
            node_name=node_name,
        )
        LOGGER.info(f"Helper pod {pods[0].name} is ready on node {node_name}")
        return pods[0]

    def execute(self, node_name, command):
        """
        Run a command in the first ready helper pod on the node.

        Returns:
            str: command output.

        Raises:
            ExecFailedError: empty command, or the exec call itself failed.
            NonZeroExitError: the command ran and exited non-zero.
            NoHelperPodError: no ready helper pod on the node.
        """
        if not command:
            raise ExecFailedError("Refusing to execute an empty command", primitive="execute", node=node_name)

        pods = self.ready_helper_pods(node_name=node_name)
        if not pods:
            raise NoHelperPodError(
                f"No ready helper pod found on node {node_name}",
                primitive="execute",
                node=node_name,
                predicate=f"label {self.label}, phase=Running, container {self.container} ready",
            )

        return self.execute_on_pod(pod=pods[0], command=command, node_name=node_name)

    def execute_on_pod(self, pod, command, node_name=None):
        if not command:
            raise ExecFailedError("Refusing to execute an empty command", primitive="execute", node=node_name)

        LOGGER.info(f"Executing {command} in pod {pod.name} container {self.container}")
        try:
            return pod.execute(command=command, container=self.container, timeout=self.exec_timeout)
        except ExecOnPodError as exc:
            output = f"{exc.out or ''}{exc.err or ''}"
            error_class = NonZeroExitError if output else ExecFailedError
            raise error_class(
                f"Command {command} failed in pod {pod.name} with rc {exc.rc}",
                output=output,
                rc=exc.rc,
                primitive="execute",
                node=node_name,
            ) from exc
        except ApiException as exc:
            raise ExecFailedError(
                f"Exec of {command} in pod {pod.name} rejected by the API: {exc.reason}",
                primitive="execute",
                node=node_name,
            ) from exc
        except (WebSocketException, ConnectionError) as exc:
            raise ExecFailedError(
                f"Exec stream of {command} in pod {pod.name} was cut: {exc}",
                primitive="execute",
                node=node_name,
            ) from exc

    def execute_on_host(self, node_name, command):
        return self.execute(node_name=node_name, command=["chroot", HOST_ROOT, *command])


def helper_deployment_dict(
    node_name,
    namespace=KMM_OPERATOR_NAMESPACE,
    label=KMM_TEST_HELPER_LABEL,
    image=DTK_IMAGE,
    service_account=None,
):
    """Privileged helper Deployment pinned to a single node."""
    pod_spec = {
        "nodeSelector": {NODE_HOSTNAME_LABEL: node_name},
        "tolerations": HELPER_TOLERATIONS,
        "containers": [
            {
                "name": HELPER_CONTAINER_NAME,
                "image": image,
                "command": ["/bin/bash", "-c", "sleep INF"],
                "securityContext": {"privileged": True, "runAsUser": 0},
                "volumeMounts": [{"name": "host", "mountPath": HOST_ROOT}],
            }
        ],
        "volumes": [{"name": "host", "hostPath": {"path": "/"}}],
    }
    if service_account:
        pod_spec["serviceAccountName"] = service_account

    name = f"{label}-{node_name}"
    labels = {label: "", "app": name}
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": name, "namespace": namespace, "labels": labels},
        "spec": {
            "replicas": 1,
            "selector": {"matchLabels": labels},
            "template": {"metadata": {"labels": labels}, "spec": pod_spec},
        },
    }


def deploy_helper(client, node_name, timeout=TIMEOUT_10MIN, **kwargs):
    deployment = Deployment(client=client, kind_dict=helper_deployment_dict(node_name=node_name, **kwargs))
    LOGGER.info(f"Deploying helper {deployment.name} on node {node_name}")
    deployment.deploy(wait=True)
    deployment.wait_for_replicas(timeout=timeout)
    return deployment


def delete_helpers(client, namespace=KMM_OPERATOR_NAMESPACE, label=KMM_TEST_HELPER_LABEL, timeout=TIMEOUT_1MIN):
    for deployment in Deployment.get(client=client, namespace=namespace):
        if label in deployment.name:
            LOGGER.info(f"Deleting helper deployment {deployment.name}")
            deployment.clean_up(wait=True, timeout=timeout)
