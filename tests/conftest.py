"""
Shared fixtures: a scripted runtime adapter and a pod builder, so core
tests never spawn processes.
"""
import threading
import time

import pytest

from cage.MODELS.pod_config import PodConfig
from cage.RUNNERS.runtime_adapter import AdapterResult, RuntimeAdapter


class ScriptedAdapter(RuntimeAdapter):
    """
    Records every call and answers from a script keyed by
    ``(service, action)`` or ``service``. Script values are AdapterResults
    or exceptions to raise.
    """

    def __init__(self, script=None, delay=0.0, on_call=None):
        self.script = script or {}
        self.delay = delay
        self.on_call = on_call
        self.calls = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def invoke(self, service, action, hook_command=None):
        with self._lock:
            self.calls.append((service, action.value, hook_command))
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            if self.on_call:
                self.on_call(service, action)
            outcome = self.script.get((service, action.value), self.script.get(service, AdapterResult(0, f"{service} ok\n")))
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        finally:
            with self._lock:
                self.active -= 1

    @property
    def services_called(self):
        return [call[0] for call in self.calls]


@pytest.fixture
def scripted_adapter():
    return ScriptedAdapter


@pytest.fixture
def make_pod():
    """
    Builds a PodConfig from ``{name: {"links": [...], "labels": {...}}}``.
    """
    def _make(services, version="2"):
        return PodConfig.from_document({"version": version, "services": services})
    return _make
