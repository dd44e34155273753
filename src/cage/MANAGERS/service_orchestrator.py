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
Orchestration of pod commands across services, in dependency order.

The scheduler walks the execution plan one batch at a time. Services in a
batch run concurrently on a bounded thread pool, and the next batch is only
dispatched once every service in the current one has finished. A service is
only started when everything it links to is running; otherwise it is
skipped, so a failure never spreads beyond the services that need it.
"""
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from enum import Enum
from typing import Dict, List, Optional, Tuple

from ..MODELS.cage_settings import CageSettings
from ..MODELS.dependency_graph import ExecutionPlan
from ..MODELS.errors import AdapterFailure, HookMissingError
from ..MODELS.pod_config import PodConfig
from ..MODELS.run_result import NodeResult, NodeStatus, RunResult, SkipReason
from ..PARSERS.label_extractor import LabelExtractor
from ..RUNNERS.dependency_resolver import DependencyGraphBuilder
from ..RUNNERS.runtime_adapter import Action, AdapterResult, RuntimeAdapter

logger = logging.getLogger(__name__)

NodeAction = Tuple[Action, Optional[str]]


class Command(str, Enum):
    """Commands the orchestrator understands."""

    START = "start"
    STOP = "stop"
    BUILD = "build"
    STATUS = "status"
    SHELL = "shell"
    TEST = "test"


class OrchestrationEngine:
    """
    Runs commands against a pod through a RuntimeAdapter.

    All configuration checks (unknown links, cycles) happen when the engine
    is created, so a misconfigured pod never reaches the adapter.
    """

    def __init__(self,
                 config: PodConfig,
                 adapter: RuntimeAdapter,
                 extractor: Optional[LabelExtractor] = None,
                 max_workers: int = 4,
                 call_timeout: Optional[float] = None):
        """
        Initializes the orchestrator.

        :param config: The merged pod configuration.
        :param adapter: Performs the actual container operations.
        :param extractor: Reads hooks from labels; defaults to the standard labels.
        :param max_workers: Maximum number of concurrent adapter calls.
        :param call_timeout: Seconds to wait for a single adapter call before
            treating it as failed. None waits indefinitely.
        :raises UnknownServiceError: If a link names an undefined service.
        :raises CyclicDependencyError: If the links form a cycle.
        """
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.config = config
        self.adapter = adapter
        self.extractor = extractor or LabelExtractor()
        self.max_workers = max_workers
        self.call_timeout = call_timeout

        self.hooks = self.extractor.extract_all(config)
        self.graph, self.plan = DependencyGraphBuilder().build_plan(config)
        self._abort = threading.Event()

    @classmethod
    def from_settings(cls, config: PodConfig, adapter: RuntimeAdapter, settings: CageSettings) -> "OrchestrationEngine":
        return cls(
            config,
            adapter,
            extractor=LabelExtractor.from_settings(settings),
            max_workers=settings.max_workers,
            call_timeout=settings.call_timeout,
        )

    def start(self) -> RunResult:
        """Starts every service, dependencies first."""
        return self.run(Command.START)

    def stop(self) -> RunResult:
        """Stops every service, dependents first."""
        return self.run(Command.STOP)

    def build(self) -> RunResult:
        return self.run(Command.BUILD)

    def status(self) -> RunResult:
        return self.run(Command.STATUS)

    def shell(self, service: str) -> RunResult:
        """Starts what ``service`` links to, then runs its shell hook."""
        return self.run(Command.SHELL, service)

    def test(self, service: Optional[str] = None) -> RunResult:
        """
        Runs the test hook of ``service``, or of every service that has one,
        after starting the services they link to.
        """
        return self.run(Command.TEST, service)

    def abort(self):
        """
        Stops dispatching further work. Calls already in flight are left to
        finish; everything not yet dispatched ends up skipped. An abort
        requested before a run gets going applies to that run.
        """
        logger.warning("Abort requested")
        self._abort.set()

    def run(self, command: Command, target: Optional[str] = None) -> RunResult:
        """
        Runs a command.

        :param command: The command to run.
        :param target: Service a shell/test command is scoped to.
        :return: The per-service outcome.
        :raises UnknownServiceError: If ``target`` is not a service of the pod.
        """
        try:
            return self._run_command(Command(command), target)
        finally:
            self._abort.clear()

    def _run_command(self, command: Command, target: Optional[str]) -> RunResult:
        if command == Command.SHELL and target is None:
            raise ValueError("shell needs a target service")
        if target is not None:
            self.graph.index_of(target)

        result = RunResult(command.value)

        if command == Command.START:
            plan, actions = self.plan, self._uniform(Action.UP)
            ordered = True
        elif command == Command.STOP:
            plan, actions = self.plan.reversed(), self._uniform(Action.STOP)
            ordered = False
        elif command in (Command.BUILD, Command.STATUS):
            action = Action.BUILD if command == Command.BUILD else Action.STATUS
            plan, actions = self.plan.flattened(), self._uniform(action)
            ordered = False
        elif command == Command.SHELL:
            plan, actions = self._scoped(
                {target: (Action.SHELL, self.hooks[target].shell_command)}
            )
            ordered = True
        else:
            plan, actions = self._scoped(self._test_targets(target, result))
            ordered = True

        logger.info("Running %s over %d services in %d batches",
                    command.value, len(plan.services()), len(plan))
        self._execute(plan, actions, result, ordered)
        return result

    def _uniform(self, action: Action) -> Dict[str, NodeAction]:
        return {name: (action, None) for name in self.config.services}

    def _scoped(self, targets: Dict[str, NodeAction]) -> Tuple[ExecutionPlan, Dict[str, NodeAction]]:
        """
        Restricts the plan to ``targets`` and everything they depend on.
        Dependencies are started; targets get their own action.
        """
        closure = self.graph.closure(targets) if targets else []
        actions = {name: targets.get(name, (Action.UP, None)) for name in closure}
        return self.plan.restrict(closure), actions

    def _test_targets(self, target: Optional[str], result: RunResult) -> Dict[str, NodeAction]:
        """
        Picks the services to test. Services without a test hook are
        recorded as skipped unless another target needs them started.
        """
        candidates = [target] if target is not None else list(self.config.services)
        targets: Dict[str, NodeAction] = {}
        missing: List[str] = []
        for name in candidates:
            try:
                targets[name] = (Action.TEST, self.hooks[name].require_test_command())
            except HookMissingError as e:
                logger.warning("%s", e)
                missing.append(name)

        needed = set(self.graph.closure(targets)) if targets else set()
        for name in missing:
            if name not in needed:
                result.nodes[name] = NodeResult(
                    service=name,
                    action=Action.TEST.value,
                    status=NodeStatus.SKIPPED,
                    reason=SkipReason.HOOK_MISSING.value,
                )
        return targets

    def _execute(self, plan: ExecutionPlan, actions: Dict[str, NodeAction], result: RunResult, ordered: bool):
        for name in plan.services():
            result.nodes[name] = NodeResult(service=name, action=actions[name][0].value)

        if not plan.services():
            return

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="cage") as pool:
            for index, batch in enumerate(plan):
                if self._abort.is_set():
                    self._skip(batch, result, SkipReason.ABORTED.value)
                    result.aborted = True
                    continue

                dispatch = []
                for name in batch:
                    blocker = self._blocker(name, result) if ordered else None
                    if blocker is not None:
                        self._skip([name], result, f"{SkipReason.DEPENDENCY_NOT_RUNNING.value}: {blocker}")
                    else:
                        dispatch.append(name)

                logger.debug("Batch %d: dispatching %s", index, dispatch)
                futures = [
                    pool.submit(self._run_node, result.nodes[name], *actions[name])
                    for name in dispatch
                ]
                wait(futures)
                for future in futures:
                    future.result()

                if self._abort.is_set():
                    result.aborted = True

    def _blocker(self, name: str, result: RunResult) -> Optional[str]:
        """The first dependency of ``name`` that is not running, if any."""
        for dep in self.graph.dependencies(name):
            if result.nodes[dep].status != NodeStatus.RUNNING:
                return dep
        return None

    def _skip(self, names, result: RunResult, reason: str):
        for name in names:
            node = result.nodes[name]
            node.status = NodeStatus.SKIPPED
            node.reason = reason
            logger.info("Skipping %s: %s", name, reason)

    def _run_node(self, node: NodeResult, action: Action, hook_command: Optional[str]):
        """
        Runs a single service. Executed on a worker thread; this is the only
        writer of ``node`` once it has been dispatched.
        """
        if self._abort.is_set():
            node.status = NodeStatus.SKIPPED
            node.reason = SkipReason.ABORTED.value
            return

        node.status = NodeStatus.STARTING
        logger.info("%s %s", action.value, node.service)
        started = time.monotonic()
        try:
            outcome = self._invoke(node.service, action, hook_command)
            node.exit_code = outcome.exit_code
            node.stdout = outcome.stdout
            node.stderr = outcome.stderr
            outcome.raise_for_status(node.service, action.value)
        except AdapterFailure as e:
            node.status = NodeStatus.FAILED
            node.reason = str(e)
            logger.error("%s", e)
        else:
            node.status = NodeStatus.RUNNING
        finally:
            node.duration = time.monotonic() - started

    def _invoke(self, service: str, action: Action, hook_command: Optional[str]) -> AdapterResult:
        """
        Calls the adapter, turning exceptions and timeouts into AdapterFailure.
        With a call timeout, the call runs on its own daemon thread so an
        unresponsive call can be abandoned without being killed.
        """
        if self.call_timeout is None:
            try:
                return self.adapter.invoke(service, action, hook_command)
            except Exception as e:
                raise AdapterFailure(service, action.value, None, f"{type(e).__name__}: {e}") from e

        outcome: Dict[str, object] = {}

        def call():
            try:
                outcome["result"] = self.adapter.invoke(service, action, hook_command)
            except Exception as e:
                outcome["error"] = e

        thread = threading.Thread(target=call, name=f"cage-{service}-{action.value}", daemon=True)
        thread.start()
        thread.join(self.call_timeout)
        if thread.is_alive():
            raise AdapterFailure(service, action.value, None, f"timed out after {self.call_timeout}s")
        if "error" in outcome:
            error = outcome["error"]
            raise AdapterFailure(service, action.value, None, f"{type(error).__name__}: {error}") from error
        return outcome["result"]
