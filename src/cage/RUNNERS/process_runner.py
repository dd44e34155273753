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
Runtime adapter driving ``docker compose`` as a subprocess.
"""
import logging
import os
import shlex
import subprocess
from typing import List, Optional

import psutil

from ..CONVERTERS.to_compose import ComposeConverter
from ..MODELS.pod_config import PodConfig
from .runtime_adapter import Action, AdapterResult, RuntimeAdapter

logger = logging.getLogger(__name__)

# Exit codes reported for calls that never produced one of their own
EXIT_NOT_FOUND = 127
EXIT_TIMED_OUT = 124
EXIT_BAD_HOOK = 2


class ComposeRuntimeAdapter(RuntimeAdapter):
    """
    Runs each action as one ``docker compose`` invocation against the
    merged pod file. The orchestrator handles ordering, so services are
    always started with ``--no-deps``.
    """

    def __init__(self,
                 config: PodConfig,
                 project_name: str,
                 output_dir: str = ".cage",
                 compose_command: str = "docker compose",
                 timeout: Optional[float] = None,
                 dry_run: bool = False):
        """
        Initializes the adapter.

        :param config: The merged pod configuration.
        :param project_name: Compose project name (``-p``).
        :param output_dir: Directory the merged pod file is written under.
        :param compose_command: Command used to invoke compose.
        :param timeout: Seconds after which a call's process tree is terminated.
        :param dry_run: Report the commands instead of running them.
        """
        self.config = config
        self.project_name = project_name
        self.compose_file = os.path.join(output_dir, "pods", f"{project_name}.yml")
        self.compose_command = shlex.split(compose_command)
        self.timeout = timeout
        self.dry_run = dry_run

    def prepare(self) -> str:
        """
        Writes the merged pod file compose will read. Skipped in dry-run mode.

        :return: Path of the pod file.
        """
        if not self.dry_run:
            ComposeConverter(self.config).output(self.compose_file)
        return self.compose_file

    def command_for(self, service: str, action: Action, hook_command: Optional[str] = None) -> List[str]:
        """
        Builds the compose command line for an action.

        :raises ValueError: If a shell/test action has no hook or the hook
            cannot be split into arguments.
        """
        base = self.compose_command + ["-p", self.project_name, "-f", self.compose_file]
        if action == Action.UP:
            return base + ["up", "-d", "--no-deps", service]
        if action == Action.STOP:
            return base + ["stop", service]
        if action == Action.BUILD:
            return base + ["build", service]
        if action == Action.STATUS:
            return base + ["ps", service]

        if hook_command is None:
            raise ValueError(f"{action.value} on {service} needs a hook command")
        hook = shlex.split(hook_command)
        if action == Action.SHELL:
            return base + ["exec", "-T", service] + hook
        return base + ["run", "--rm", "--no-deps", service] + hook

    def invoke(self, service: str, action: Action, hook_command: Optional[str] = None) -> AdapterResult:
        try:
            command = self.command_for(service, action, hook_command)
        except ValueError as e:
            return AdapterResult(EXIT_BAD_HOOK, "", f"invalid hook command: {e}\n")

        if self.dry_run:
            return AdapterResult(0, shlex.join(command) + "\n", "")

        logger.info("[%s] Running: %s", service, shlex.join(command))
        try:
            process = subprocess.Popen(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                shell=False,
            )
        except OSError as e:
            logger.error("[%s] Failed to start %s: %s", service, command[0], e)
            return AdapterResult(EXIT_NOT_FOUND, "", f"{e}\n")

        try:
            stdout, stderr = process.communicate(timeout=self.timeout)
        except subprocess.TimeoutExpired:
            logger.warning("[%s] %s did not finish in %ss, terminating", service, action.value, self.timeout)
            _terminate_tree(process.pid)
            stdout, stderr = process.communicate()
            return AdapterResult(EXIT_TIMED_OUT, stdout, stderr + f"timed out after {self.timeout}s\n")

        return AdapterResult(process.returncode, stdout, stderr)


def _terminate_tree(pid: int, grace: float = 10.0):
    """
    Sends SIGTERM to a process and its children, followed by SIGKILL for
    anything still alive after ``grace`` seconds.
    """
    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return
    procs = parent.children(recursive=True) + [parent]
    for proc in procs:
        try:
            proc.terminate()
        except psutil.NoSuchProcess:
            pass
    _, alive = psutil.wait_procs(procs, timeout=grace)
    for proc in alive:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass
