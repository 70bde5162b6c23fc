import json
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Optional

import marshmallow_dataclass

from utilities.constants import (
    DEFAULT_MCP_NAME,
    FIRMWARE_FILES_PATH,
    HELPER_CONTAINER_NAME,
    KMM_OPERATOR_NAMESPACE,
    KMM_TEST_HELPER_LABEL,
    BMC_TEST_NAMESPACE,
    NODE_TYPE_WORKER_LABEL,
    SIMPLE_KMOD_IMAGE,
    SIMPLE_KMOD_MODULE_NAME,
)

LOGGER = logging.getLogger(__name__)

CONFIG_FILE_ENV = "ECO_HWACCEL_KMM_CONFIG"
REGISTRY_ENV = "ECO_HWACCEL_KMM_REGISTRY"
PULL_SECRET_ENV = "ECO_HWACCEL_KMM_PULL_SECRET"


@dataclass
class KmmConfiguration(object):
    helper_namespace: str = KMM_OPERATOR_NAMESPACE
    helper_label: str = KMM_TEST_HELPER_LABEL
    helper_container: str = HELPER_CONTAINER_NAME
    worker_label_map: Dict[str, str] = field(default_factory=lambda: dict(NODE_TYPE_WORKER_LABEL))
    machine_config_pool: str = DEFAULT_MCP_NAME
    bmc_namespace: str = BMC_TEST_NAMESPACE
    simple_kmod_image: str = SIMPLE_KMOD_IMAGE
    simple_kmod_module: str = SIMPLE_KMOD_MODULE_NAME
    registry: Optional[str] = None
    pull_secret: Optional[str] = None
    in_tree_module_to_remove: Optional[str] = None
    firmware_files_path: str = FIRMWARE_FILES_PATH

    @classmethod
    def load_from_json_file(cls, filename):
        with open(filename, "r") as conf_file:
            data = conf_file.read()

        conf_schema = marshmallow_dataclass.class_schema(KmmConfiguration)()
        return conf_schema.load(json.loads(data))

    @classmethod
    def from_env(cls, filename=None):
        """
        Configuration from a JSON file (argument, or the file named by
        ECO_HWACCEL_KMM_CONFIG), with the registry credentials taken from the
        environment when set there.
        """
        filename = filename or os.environ.get(CONFIG_FILE_ENV)
        if filename:
            LOGGER.info(f"Loading KMM configuration from {filename}")
            conf = cls.load_from_json_file(filename)
        else:
            conf = cls()

        conf.registry = os.environ.get(REGISTRY_ENV) or conf.registry
        conf.pull_secret = os.environ.get(PULL_SECRET_ENV) or conf.pull_secret
        return conf
