import time

from cage.BUILDERS.config_merger import ConfigMerger
from cage.MANAGERS.service_orchestrator import OrchestrationEngine
from cage.MODELS.run_result import NodeStatus
from cage.PARSERS.pod_file_loader import PodFileLoader
from cage.RUNNERS.runtime_adapter import AdapterResult


def test_wide_pod(make_pod, scripted_adapter):
    """
    Starts 200 independent services with a small worker pool.
    """
    pod = make_pod({f"service_{i}": {} for i in range(200)})
    adapter = scripted_adapter(delay=0.002)

    start_time = time.time()
    result = OrchestrationEngine(pod, adapter, max_workers=8).start()
    end_time = time.time()
    print(f"Started 200 services in {end_time - start_time:.2f}s")

    assert len(adapter.calls) == 200
    assert adapter.max_active <= 8
    assert result.with_status(NodeStatus.RUNNING) == list(pod.services)


def test_long_chain(make_pod, scripted_adapter):
    """
    A 300 service chain: one batch per service, and a failure in the middle
    skips everything after it.
    """
    services = {"service_0": {}}
    for i in range(1, 300):
        services[f"service_{i}"] = {"links": [f"service_{i - 1}"]}
    pod = make_pod(services)
    adapter = scripted_adapter({"service_150": AdapterResult(1, "", "crashed\n")})

    engine = OrchestrationEngine(pod, adapter, max_workers=4)
    assert len(engine.plan) == 300

    result = engine.start()
    assert adapter.services_called == [f"service_{i}" for i in range(151)]
    assert result.nodes["service_299"].reason == "dependency not running: service_298"
    assert len(result.with_status(NodeStatus.SKIPPED)) == 149
    assert result.exit_code == 1


def test_large_config_merge():
    loader = PodFileLoader()
    base = "services:\n"
    override = "services:\n"
    for i in range(1000):
        base += f"  service_{i}:\n    image: app\n    ports: ['{8000 + i}']\n"
        if i:
            base += f"    links: [service_{i - 1}]\n"
        override += f"  service_{i}:\n    labels: {{io.fdy.cage.test: 'check {i}'}}\n"

    config = ConfigMerger().merge([loader.load_from_string(base), loader.load_from_string(override)])
    assert len(config.services) == 1000
    assert config.services["service_999"].ports == ("8999",)
    assert config.services["service_999"].labels == {"io.fdy.cage.test": "check 999"}

    engine = OrchestrationEngine(config, None)
    assert len(engine.plan) == 1000
