from ocp_resources.resource import NamespacedResource

from utilities.constants import KMM_API_GROUP


class BootModuleConfig(NamespacedResource):
    """
    KMM BootModuleConfig: loads an out-of-tree kernel module at boot on the
    nodes of a MachineConfigPool by rendering a MachineConfig.
    """

    api_group = KMM_API_GROUP

    def __init__(
        self,
        kernel_module_image=None,
        kernel_module_name=None,
        machine_config_name=None,
        machine_config_pool_name=None,
        firmware_files_path=None,
        in_tree_modules_to_remove=None,
        worker_image=None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.kernel_module_image = kernel_module_image
        self.kernel_module_name = kernel_module_name
        self.machine_config_name = machine_config_name
        self.machine_config_pool_name = machine_config_pool_name
        self.firmware_files_path = firmware_files_path
        self.in_tree_modules_to_remove = in_tree_modules_to_remove
        self.worker_image = worker_image

    def to_dict(self):
        super().to_dict()

        if not self.kind_dict and not self.yaml_file:
            self.res["spec"] = {
                "kernelModuleImage": self.kernel_module_image,
                "kernelModuleName": self.kernel_module_name,
                "machineConfigName": self.machine_config_name,
                "machineConfigPoolName": self.machine_config_pool_name,
            }
            _spec = self.res["spec"]

            if self.firmware_files_path:
                _spec["firmwareFilesPath"] = self.firmware_files_path

            if self.in_tree_modules_to_remove:
                _spec["inTreeModulesToRemove"] = self.in_tree_modules_to_remove

            if self.worker_image:
                _spec["workerImage"] = self.worker_image
