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
Converter rendering a RunResult as a plain-text report.
"""
from typing import List
from jinja2 import Environment

from ..MODELS.run_result import NodeResult, NodeStatus, RunResult

REPORT_TEMPLATE = """\
{{ "%-20s %-10s %-5s %s"|format("SERVICE", "STATUS", "EXIT", "REASON") }}
{{ "-" * 50 }}
{% for node in nodes %}
{{ "%-20s %-10s %-5s %s"|format(node.service, node.status.value, "-" if node.exit_code is none else node.exit_code, node.reason or "")|trim }}
{% endfor %}

{{ command }}: {{ counts.running }} ok, {{ counts.failed }} failed, {{ counts.skipped }} skipped{% if aborted %} (aborted){% endif %}

{% for node in shown %}

--- {{ node.service }} ({{ node.action }}) ---
{% for line in tail(node.stdout) %}
{{ line }}
{% endfor %}
{% for line in tail(node.stderr) %}
{{ line }}
{% endfor %}
{% endfor %}
"""


class ReportConverter:
    """
    Renders the per-service outcome of a run, followed by the captured
    output of the services worth looking at.
    """

    def __init__(self, result: RunResult, show_all_output: bool = False, tail_lines: int = 20):
        """
        :param result: The run to report on.
        :param show_all_output: Include output of every service, not just failed ones.
        :param tail_lines: Number of trailing output lines kept per stream.
        """
        self.result = result
        self.show_all_output = show_all_output
        self.tail_lines = tail_lines
        env = Environment(trim_blocks=True, lstrip_blocks=True, keep_trailing_newline=True)
        self.template = env.from_string(REPORT_TEMPLATE)

    def render(self) -> str:
        nodes = list(self.result.nodes.values())
        return self.template.render(
            command=self.result.command,
            nodes=nodes,
            shown=self._shown(nodes),
            counts={
                "running": sum(1 for n in nodes if n.status == NodeStatus.RUNNING),
                "failed": sum(1 for n in nodes if n.status == NodeStatus.FAILED),
                "skipped": sum(1 for n in nodes if n.status == NodeStatus.SKIPPED),
            },
            aborted=self.result.aborted,
            tail=self._tail,
        )

    def _shown(self, nodes: List[NodeResult]) -> List[NodeResult]:
        shown = []
        for node in nodes:
            if not (node.stdout.strip() or node.stderr.strip()):
                continue
            if self.show_all_output or node.status == NodeStatus.FAILED:
                shown.append(node)
        return shown

    def _tail(self, text: str) -> List[str]:
        lines = text.rstrip("\n").splitlines()
        return lines[-self.tail_lines:]
