"""
Constants shared by the KMM BootModuleConfig engine and its test suites.
"""

# Timeouts (seconds)
TIMEOUT_1MIN = 60
TIMEOUT_2MIN = 120
TIMEOUT_3MIN = 180
TIMEOUT_5MIN = 300
TIMEOUT_10MIN = 600
TIMEOUT_30MIN = 1800

# Polling intervals (seconds)
MODULE_CHECK_INTERVAL = 1
RESOURCE_DELETE_INTERVAL = 1
REBOOT_POLL_INTERVAL = 5
BUILD_POD_POLL_INTERVAL = 5
POOL_POLL_INTERVAL = 5
HELPER_POD_POLL_INTERVAL = 10
TRANSITION_POLL_INTERVAL = 10

# Helper pods
KMM_OPERATOR_NAMESPACE = "openshift-kmm"
KMM_TEST_HELPER_LABEL = "kmm-test-helper"
HELPER_CONTAINER_NAME = "test"
DTK_IMAGE = "image-registry.openshift-image-registry.svc:5000/openshift/driver-toolkit"
HOST_ROOT = "/host"

# Node annotations written by the machine-config daemon
MCO_ANNOTATION_PREFIX = "machineconfiguration.openshift.io"
CURRENT_CONFIG_ANNOTATION = f"{MCO_ANNOTATION_PREFIX}/currentConfig"
DESIRED_CONFIG_ANNOTATION = f"{MCO_ANNOTATION_PREFIX}/desiredConfig"
MCO_STATE_ANNOTATION = f"{MCO_ANNOTATION_PREFIX}/state"
MCO_STATE_DONE = "Done"
POOL_UPDATING_CONDITION = "Updating"

NODE_READY_CONDITION = "Ready"
CONDITION_TRUE = "True"
NODE_HOSTNAME_LABEL = "kubernetes.io/hostname"
NODE_TYPE_WORKER_LABEL = {"node-role.kubernetes.io/worker": ""}

# BootModuleConfig
KMM_API_GROUP = "kmm.sigs.x-k8s.io"
DEFAULT_MCP_NAME = "worker"
BMC_TEST_NAMESPACE = "default"
KERNEL_FULL_VERSION_PLACEHOLDER = "$KERNEL_FULL_VERSION"
SIMPLE_KMOD_IMAGE = "quay.io/ocp-edge-qe/simple-kmod"
SIMPLE_KMOD_MODULE_NAME = "simple-kmod"
FIRMWARE_FILES_PATH = "/var/lib/firmware"
BMC_TEST_NAME = "bmc"
MACHINE_CONFIG_NAME = "10-kmod"
BMC_FIRMWARE_NAME = "bmc-firmware"
MACHINE_CONFIG_FIRMWARE_NAME = "10-kmod-firmware"
FIRMWARE_MODULE_NAME = "simple-kmod-firmware"
FIRMWARE_DMESG_MESSAGE = "ALL GOOD WITH FIRMWARE"
BUILD_POD_SUFFIX = "-build"
WORKER_IMAGE_PATTERN = r"^[a-zA-Z0-9].*"

# MachineConfig environment variables rendered from a BootModuleConfig
WORKER_IMAGE_ENV = "WORKER_IMAGE"
FIRMWARE_FILES_PATH_ENV = "FIRMWARE_FILES_PATH"
IN_TREE_MODULES_TO_REMOVE_ENV = "IN_TREE_MODULES_TO_REMOVE"
ENV_VALUE_TERMINATORS = ("\n", '"', " ")

# Commands run inside the helper container
LSMOD_COMMAND = ["lsmod"]
DMESG_COMMAND = ["dmesg"]
REBOOT_COMMAND = ["chroot", HOST_ROOT, "reboot"]
