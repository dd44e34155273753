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
The narrow interface between the orchestrator and whatever actually runs
containers.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from ..MODELS.errors import AdapterFailure

logger = logging.getLogger(__name__)


class Action(str, Enum):
    """Operations the orchestrator asks a runtime to perform on a service."""

    UP = "up"
    STOP = "stop"
    BUILD = "build"
    STATUS = "status"
    SHELL = "shell"
    TEST = "test"

    @property
    def takes_hook(self) -> bool:
        return self in (Action.SHELL, Action.TEST)


@dataclass(frozen=True)
class AdapterResult:
    """What a runtime call returned."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def raise_for_status(self, service: str, action: str):
        """
        :raises AdapterFailure: If the call exited non-zero.
        """
        if not self.ok:
            detail = self.stderr.strip().splitlines()[-1] if self.stderr.strip() else ""
            raise AdapterFailure(service, action, self.exit_code, detail)


class RuntimeAdapter(ABC):
    """
    Performs container operations on behalf of the orchestrator.

    Implementations must be safe to call from several worker threads at
    once, each call concerning a different service.
    """

    @abstractmethod
    def invoke(self, service: str, action: Action, hook_command: Optional[str] = None) -> AdapterResult:
        """
        Runs ``action`` against ``service``.

        :param service: Name of the service.
        :param action: The operation to perform.
        :param hook_command: For shell and test actions, the command exactly
            as configured in the service's labels.
        :return: Exit code and captured output of the call.
        """


class RetryingAdapter(RuntimeAdapter):
    """
    Wraps another adapter and retries failed calls with exponential backoff.
    Only used when retries are explicitly requested.
    """

    def __init__(self, inner: RuntimeAdapter, attempts: int = 3, backoff: float = 1.0, max_wait: float = 30.0):
        """
        :param inner: The adapter doing the real work.
        :param attempts: Total number of attempts per call, including the first.
        :param backoff: Multiplier for the exponential wait between attempts.
        :param max_wait: Upper bound on a single wait, in seconds.
        """
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        self.inner = inner
        self.attempts = attempts
        self.backoff = backoff
        self.max_wait = max_wait

    def invoke(self, service: str, action: Action, hook_command: Optional[str] = None) -> AdapterResult:
        retryer = Retrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_exponential(multiplier=self.backoff, max=self.max_wait),
            retry=retry_if_result(lambda r: not r.ok) | retry_if_exception_type(Exception),
            before_sleep=lambda state: _log_retry(service, action, state),
            retry_error_callback=_last_outcome,
        )
        return retryer(self.inner.invoke, service, action, hook_command)


def _log_retry(service: str, action: Action, state: RetryCallState):
    logger.warning("Retrying %s on %s (attempt %d failed)", action.value, service, state.attempt_number)


def _last_outcome(state: RetryCallState) -> AdapterResult:
    # Hand back the final failed result (or re-raise its exception) instead
    # of tenacity's RetryError.
    return state.outcome.result()
