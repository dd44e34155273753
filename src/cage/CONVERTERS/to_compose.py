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
Converter writing a merged pod back out as a standalone compose file.
"""
import logging
import os

import yaml

from ..MODELS.pod_config import PodConfig

logger = logging.getLogger(__name__)


class ComposeConverter:
    """
    Renders a PodConfig as a single docker-compose.yml document.
    """

    def __init__(self, config: PodConfig):
        """
        :param config: The merged pod configuration.
        """
        self.config = config

    def render(self) -> str:
        """
        Renders the pod as YAML. The same config always renders to the same
        bytes.
        """
        return yaml.safe_dump(
            self.config.to_document(),
            default_flow_style=False,
            sort_keys=False,
            allow_unicode=True,
        )

    def output(self, path: str) -> str:
        """
        Writes the rendered pod to ``path``, replacing any previous output.

        :return: The path written.
        """
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, "w") as f:
            f.write(self.render())
        logger.debug("Wrote merged pod to %s", path)
        return path

    def export(self, path: str) -> str:
        """
        Writes the rendered pod to ``path``, which must not exist yet.

        :raises FileExistsError: If ``path`` already exists.
        """
        if os.path.exists(path):
            raise FileExistsError(f"The file {path} already exists")
        return self.output(path)
