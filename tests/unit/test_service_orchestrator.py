import pytest

from cage.MANAGERS.service_orchestrator import Command, OrchestrationEngine
from cage.MODELS.cage_settings import CageSettings
from cage.MODELS.errors import CyclicDependencyError, UnknownServiceError
from cage.MODELS.run_result import NodeStatus
from cage.RUNNERS.runtime_adapter import AdapterResult


@pytest.fixture
def frontend(make_pod):
    return make_pod({
        'web': {'image': 'dockercloud/hello-world', 'ports': ['3000']},
        'proxy': {
            'image': 'dockercloud/haproxy',
            'links': ['web'],
            'labels': {
                'io.fdy.cage.shell': '/bin/sh',
                'io.fdy.cage.test': "echo 'All tests passed'",
            },
        },
    })


@pytest.fixture
def branches(make_pod):
    # db <- api <- app and cache <- worker are independent branches
    return make_pod({
        'db': {},
        'api': {'links': ['db']},
        'app': {'links': ['api']},
        'cache': {},
        'worker': {'links': ['cache']},
    })


def test_start_runs_dependencies_first(frontend, scripted_adapter):
    adapter = scripted_adapter()
    result = OrchestrationEngine(frontend, adapter).start()

    assert adapter.calls == [('web', 'up', None), ('proxy', 'up', None)]
    assert result.statuses() == {'web': NodeStatus.RUNNING, 'proxy': NodeStatus.RUNNING}
    assert result.exit_code == 0
    assert result.nodes['web'].stdout == "web ok\n"


def test_shell_starts_links_then_opens_shell(frontend, scripted_adapter):
    adapter = scripted_adapter()
    result = OrchestrationEngine(frontend, adapter).shell('proxy')

    assert adapter.calls == [('web', 'up', None), ('proxy', 'shell', '/bin/sh')]
    assert result.nodes['proxy'].action == 'shell'
    assert result.exit_code == 0


def test_shell_uses_default_shell(frontend, scripted_adapter):
    adapter = scripted_adapter()
    OrchestrationEngine(frontend, adapter).shell('web')
    assert adapter.calls == [('web', 'shell', 'sh')]


def test_failed_dependency_skips_its_branch_only(branches, scripted_adapter):
    adapter = scripted_adapter({('db', 'up'): AdapterResult(1, '', 'port already allocated\n')})
    result = OrchestrationEngine(branches, adapter).start()

    assert sorted(adapter.services_called) == ['cache', 'db', 'worker']
    assert result.nodes['db'].status == NodeStatus.FAILED
    assert result.nodes['db'].exit_code == 1
    assert 'port already allocated' in result.nodes['db'].reason
    assert result.nodes['api'].status == NodeStatus.SKIPPED
    assert result.nodes['api'].reason == 'dependency not running: db'
    assert result.nodes['app'].reason == 'dependency not running: api'
    assert result.with_status(NodeStatus.RUNNING) == ['cache', 'worker']
    assert result.exit_code == 1


def test_adapter_exception_marks_node_failed(branches, scripted_adapter):
    adapter = scripted_adapter({'cache': RuntimeError('socket closed')})
    result = OrchestrationEngine(branches, adapter).start()

    assert result.nodes['cache'].status == NodeStatus.FAILED
    assert 'RuntimeError: socket closed' in result.nodes['cache'].reason
    assert result.nodes['worker'].status == NodeStatus.SKIPPED
    assert result.nodes['app'].status == NodeStatus.RUNNING
    assert result.exit_code == 1


def test_every_node_ends_terminal(branches, scripted_adapter):
    adapter = scripted_adapter({('api', 'up'): AdapterResult(3)})
    result = OrchestrationEngine(branches, adapter).start()
    assert all(node.status.is_terminal for node in result.nodes.values())
    assert list(result.nodes) == ['db', 'cache', 'api', 'worker', 'app']


def test_scoped_test_without_hook_is_skipped(frontend, scripted_adapter):
    adapter = scripted_adapter()
    result = OrchestrationEngine(frontend, adapter).test('web')

    assert adapter.calls == []
    assert result.nodes['web'].status == NodeStatus.SKIPPED
    assert result.nodes['web'].reason == 'hook missing'
    assert result.exit_code == 0


def test_empty_test_label_is_a_missing_hook(make_pod, scripted_adapter):
    pod = make_pod({'web': {'labels': {'io.fdy.cage.test': ''}}})
    adapter = scripted_adapter()
    result = OrchestrationEngine(pod, adapter).test()

    assert adapter.calls == []
    assert result.nodes['web'].status == NodeStatus.SKIPPED
    assert result.nodes['web'].reason == 'hook missing'


def test_scoped_test(frontend, scripted_adapter):
    adapter = scripted_adapter()
    result = OrchestrationEngine(frontend, adapter).test('proxy')

    assert adapter.calls == [('web', 'up', None), ('proxy', 'test', "echo 'All tests passed'")]
    assert result.nodes['proxy'].status == NodeStatus.RUNNING


def test_broad_test_only_runs_services_with_hooks(make_pod, scripted_adapter):
    pod = make_pod({
        'db': {},
        'api': {'links': ['db'], 'labels': {'io.fdy.cage.test': 'pytest -q'}},
        'ui': {'labels': {'io.fdy.cage.test': 'npm test'}},
        'docs': {},
    })
    adapter = scripted_adapter({('ui', 'test'): AdapterResult(1, '', '2 failing\n')})
    result = OrchestrationEngine(pod, adapter).test()

    assert sorted(adapter.calls) == [
        ('api', 'test', 'pytest -q'),
        ('db', 'up', None),
        ('ui', 'test', 'npm test'),
    ]
    assert result.nodes['db'].status == NodeStatus.RUNNING
    assert result.nodes['docs'].status == NodeStatus.SKIPPED
    assert result.nodes['docs'].reason == 'hook missing'
    assert result.nodes['ui'].status == NodeStatus.FAILED
    assert result.nodes['api'].status == NodeStatus.RUNNING
    assert result.exit_code == 1


def test_passing_test_counts_as_running_for_dependents(make_pod, scripted_adapter):
    pod = make_pod({
        'db': {'labels': {'io.fdy.cage.test': 'pg_isready'}},
        'api': {'links': ['db'], 'labels': {'io.fdy.cage.test': 'pytest'}},
    })
    adapter = scripted_adapter()
    result = OrchestrationEngine(pod, adapter).test()
    assert adapter.calls == [('db', 'test', 'pg_isready'), ('api', 'test', 'pytest')]
    assert result.exit_code == 0


@pytest.mark.parametrize("services, error", [
    ({'a': {'links': ['b']}, 'b': {'links': ['a']}}, CyclicDependencyError),
    ({'a': {'links': ['ghost']}}, UnknownServiceError),
])
def test_configuration_errors_before_any_call(make_pod, scripted_adapter, services, error):
    adapter = scripted_adapter()
    with pytest.raises(error):
        OrchestrationEngine(make_pod(services), adapter)
    assert adapter.calls == []


def test_unknown_target(frontend, scripted_adapter):
    adapter = scripted_adapter()
    engine = OrchestrationEngine(frontend, adapter)
    with pytest.raises(UnknownServiceError):
        engine.shell('db')
    with pytest.raises(UnknownServiceError):
        engine.test('db')
    assert adapter.calls == []


def test_concurrency_is_bounded(make_pod, scripted_adapter):
    pod = make_pod({f'svc{i}': {} for i in range(12)})
    adapter = scripted_adapter(delay=0.05)
    result = OrchestrationEngine(pod, adapter, max_workers=3).start()

    assert len(adapter.calls) == 12
    assert 1 < adapter.max_active <= 3
    assert result.exit_code == 0


def test_batches_are_barriers(branches, scripted_adapter):
    seen = []
    adapter = scripted_adapter(delay=0.01, on_call=lambda service, action: seen.append(service))
    OrchestrationEngine(branches, adapter, max_workers=8).start()
    assert sorted(seen[:2]) == ['cache', 'db']
    assert sorted(seen[2:4]) == ['api', 'worker']
    assert seen[4] == 'app'


def test_abort_stops_further_batches(branches, scripted_adapter):
    holder = {}

    def on_call(service, action):
        if service == 'db' and not holder.get('aborted'):
            holder['aborted'] = True
            holder['engine'].abort()

    adapter = scripted_adapter(on_call=on_call)
    engine = OrchestrationEngine(branches, adapter, max_workers=1)
    holder['engine'] = engine
    result = engine.start()

    assert result.aborted
    assert result.nodes['db'].status == NodeStatus.RUNNING
    for name in ('api', 'worker', 'app'):
        assert result.nodes[name].status == NodeStatus.SKIPPED
        assert result.nodes[name].reason == 'aborted'
    assert 'api' not in adapter.services_called

    # A new run starts from a clean slate
    second = engine.start()
    assert not second.aborted
    assert second.with_status(NodeStatus.RUNNING) == ['db', 'cache', 'api', 'worker', 'app']


def test_abort_before_run_applies_to_that_run(branches, scripted_adapter):
    adapter = scripted_adapter()
    engine = OrchestrationEngine(branches, adapter)
    engine.abort()
    result = engine.start()

    assert adapter.calls == []
    assert result.aborted
    assert result.with_status(NodeStatus.SKIPPED) == list(result.nodes)
    assert {node.reason for node in result.nodes.values()} == {'aborted'}
    assert result.exit_code == 0

    # The abort is spent once the run it applied to is over
    assert len(engine.start().with_status(NodeStatus.RUNNING)) == 5


def test_unresponsive_call_times_out(make_pod, scripted_adapter):
    pod = make_pod({'slow': {}, 'after': {'links': ['slow']}})
    adapter = scripted_adapter(delay=1.0)
    result = OrchestrationEngine(pod, adapter, call_timeout=0.05).start()

    assert result.nodes['slow'].status == NodeStatus.FAILED
    assert 'timed out after 0.05s' in result.nodes['slow'].reason
    assert result.nodes['after'].status == NodeStatus.SKIPPED
    assert result.exit_code == 1


def test_stop_runs_dependents_first_and_never_skips(branches, scripted_adapter):
    adapter = scripted_adapter({('app', 'stop'): AdapterResult(1, '', 'no such container\n')})
    result = OrchestrationEngine(branches, adapter, max_workers=1).stop()

    called = adapter.services_called
    assert called.index('app') < called.index('api') < called.index('db')
    assert called.index('worker') < called.index('cache')
    assert result.with_status(NodeStatus.FAILED) == ['app']
    assert all(action == 'stop' for _, action, _ in adapter.calls)
    assert len(adapter.calls) == 5


@pytest.mark.parametrize("command, action", [(Command.BUILD, 'build'), (Command.STATUS, 'status')])
def test_unordered_commands_touch_every_service(branches, scripted_adapter, command, action):
    adapter = scripted_adapter({('db', action): AdapterResult(1)})
    result = OrchestrationEngine(branches, adapter).run(command)

    assert sorted(adapter.services_called) == sorted(branches.service_names())
    assert {a for _, a, _ in adapter.calls} == {action}
    assert result.with_status(NodeStatus.FAILED) == ['db']
    assert result.nodes['app'].status == NodeStatus.RUNNING


def test_from_settings(frontend, scripted_adapter):
    settings = CageSettings(default_shell='bash', max_workers=2, call_timeout=5)
    adapter = scripted_adapter()
    engine = OrchestrationEngine.from_settings(frontend, adapter, settings)
    assert engine.max_workers == 2
    assert engine.call_timeout == 5
    engine.shell('web')
    assert adapter.calls == [('web', 'shell', 'bash')]


def test_invalid_max_workers(frontend, scripted_adapter):
    with pytest.raises(ValueError):
        OrchestrationEngine(frontend, scripted_adapter(), max_workers=0)
