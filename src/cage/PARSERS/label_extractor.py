# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Extraction of operational hooks (shell, test) from service labels.
"""
from typing import Dict, Optional

from ..MODELS.cage_settings import CageSettings, DEFAULT_SHELL, SHELL_LABEL, TEST_LABEL
from ..MODELS.pod_config import PodConfig
from ..MODELS.service_definition import ServiceDefinition
from ..MODELS.tool_hooks import ToolHooks


class LabelExtractor:
    """
    Reads the recognised hook labels of a service. Only the two configured
    label keys are consulted; every other label is left alone.
    """

    def __init__(self,
                 shell_label: str = SHELL_LABEL,
                 test_label: str = TEST_LABEL,
                 default_shell: str = DEFAULT_SHELL):
        """
        :param shell_label: Label key overriding the shell used by ``cage shell``.
        :param test_label: Label key holding the command run by ``cage test``.
        :param default_shell: Shell used when a service has no shell label.
        """
        self.shell_label = shell_label
        self.test_label = test_label
        self.default_shell = default_shell

    @classmethod
    def from_settings(cls, settings: CageSettings) -> "LabelExtractor":
        return cls(
            shell_label=settings.shell_label,
            test_label=settings.test_label,
            default_shell=settings.default_shell,
        )

    def extract_hooks(self, service: ServiceDefinition) -> ToolHooks:
        """
        Derives the hooks of a service. Label values are returned as-is,
        with no interpolation or shell processing. An empty label counts as
        unset: an empty shell label falls back to the default shell and an
        empty test label means the service has no test.

        :param service: The merged service definition.
        :return: The service's hooks.
        """
        shell: Optional[str] = service.labels.get(self.shell_label)
        test: Optional[str] = service.labels.get(self.test_label)
        return ToolHooks(
            service=service.name,
            shell_command=shell or self.default_shell,
            test_command=test or None,
        )

    def extract_all(self, config: PodConfig) -> Dict[str, ToolHooks]:
        return {name: self.extract_hooks(svc) for name, svc in config.services.items()}
