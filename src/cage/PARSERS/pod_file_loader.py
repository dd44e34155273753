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
Loader for pod files (docker-compose style YAML).

The loader only reads and normalises single files. Combining several files
is the job of the ConfigMerger.
"""
import logging
from typing import Any, Dict, Iterable, List

import yaml

from ..MODELS.errors import ParseError
from ..MODELS.service_definition import PortMapping, VolumeMount

logger = logging.getLogger(__name__)

PodDocument = Dict[str, Any]

LIST_KEYS = ("ports", "links", "volumes")
SCALAR_KEYS = ("image", "hostname")


class PodFileLoader:
    """
    Parses pod files into raw, order-preserving document trees.
    """

    def load(self, path: str) -> PodDocument:
        """
        Loads a pod file from a path.

        :param path: Path to the pod file.
        :return: The normalised document.
        :raises ParseError: If the file cannot be read or is malformed.
        """
        try:
            with open(path, 'r') as f:
                content = f.read()
        except OSError as e:
            raise ParseError(str(path), f"cannot read file: {e.strerror or e}") from e
        return self.load_from_string(content, source=str(path))

    def load_all(self, paths: Iterable[str]) -> List[PodDocument]:
        """
        Loads several pod files, keeping the caller's order.
        """
        return [self.load(p) for p in paths]

    def load_from_string(self, content: str, source: str = "<string>") -> PodDocument:
        """
        Parses a pod document from a string.

        :param content: YAML content of the pod file.
        :param source: Name used in error messages.
        :return: The normalised document.
        """
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ParseError(source, f"invalid YAML: {e}") from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ParseError(source, f"expected a mapping at top level, got {_kind(data)}")

        doc: PodDocument = {}
        for key, value in data.items():
            key = str(key)
            if key == "services":
                doc[key] = self._parse_services(source, value)
            elif key == "version" and value is not None:
                doc[key] = _scalar_str(source, "version", value)
            else:
                doc[key] = value

        logger.debug("Loaded %s (%d services)", source, len(doc.get("services", {})))
        return doc

    def _parse_services(self, source: str, value: Any) -> Dict[str, Dict[str, Any]]:
        if value is None:
            return {}
        if not isinstance(value, dict):
            raise ParseError(source, f"'services' must be a mapping, got {_kind(value)}")

        services = {}
        for name, spec in value.items():
            services[str(name)] = self._parse_service(source, str(name), spec)
        return services

    def _parse_service(self, source: str, name: str, spec: Any) -> Dict[str, Any]:
        """
        Validates and normalises a single service entry.

        :param source: Name of the file, for error messages.
        :param name: The name of the service.
        :param spec: The service specification.
        :return: The normalised service mapping.
        """
        if spec is None:
            return {}
        if not isinstance(spec, dict):
            raise ParseError(source, f"service '{name}' must be a mapping, got {_kind(spec)}")

        service: Dict[str, Any] = {}
        for key, value in spec.items():
            key = str(key)
            where = f"services.{name}.{key}"
            if key in SCALAR_KEYS:
                service[key] = None if value is None else _scalar_str(source, where, value)
            elif key == "build":
                if value is not None and not isinstance(value, (str, dict)):
                    raise ParseError(source, f"'{where}' must be a string or mapping")
                service[key] = value
            elif key == "ports":
                service[key] = [_port(source, where, p) for p in _as_list(source, where, value)]
            elif key == "volumes":
                service[key] = [_volume(source, where, v) for v in _as_list(source, where, value)]
            elif key == "links":
                service[key] = [_link(source, where, l) for l in _as_list(source, where, value)]
            elif key == "labels":
                service[key] = _labels(source, where, value)
            else:
                service[key] = value
        return service


def _kind(value: Any) -> str:
    if isinstance(value, dict):
        return "a mapping"
    if isinstance(value, list):
        return "a list"
    return type(value).__name__


def _scalar_str(source: str, where: str, value: Any) -> str:
    if isinstance(value, (dict, list)):
        raise ParseError(source, f"'{where}' must be a scalar, got {_kind(value)}")
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


def _as_list(source: str, where: str, value: Any) -> List[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ParseError(source, f"'{where}' must be a list, got {_kind(value)}")
    return value


def _port(source: str, where: str, entry: Any) -> str:
    # Long syntax: {target: 80, published: 8080, protocol: udp}
    if isinstance(entry, dict):
        if "target" not in entry:
            raise ParseError(source, f"'{where}' entry is missing 'target'")
        spec = str(entry["target"])
        if entry.get("published") is not None:
            spec = f"{entry['published']}:{spec}"
        if entry.get("protocol"):
            spec = f"{spec}/{entry['protocol']}"
    else:
        spec = _scalar_str(source, where, entry)
    try:
        PortMapping.parse(spec)
    except ValueError as e:
        raise ParseError(source, f"'{where}': {e}") from e
    return spec


def _volume(source: str, where: str, entry: Any) -> str:
    if isinstance(entry, dict):
        if "target" not in entry:
            raise ParseError(source, f"'{where}' entry is missing 'target'")
        spec = str(entry["target"])
        if entry.get("source"):
            spec = f"{entry['source']}:{spec}"
            if entry.get("read_only"):
                spec += ":ro"
    else:
        spec = _scalar_str(source, where, entry)
    try:
        VolumeMount.parse(spec)
    except ValueError as e:
        raise ParseError(source, f"'{where}': {e}") from e
    return spec


def _link(source: str, where: str, entry: Any) -> str:
    link = _scalar_str(source, where, entry)
    if not link or link.startswith(":"):
        raise ParseError(source, f"'{where}' contains an empty link")
    return link


def _labels(source: str, where: str, value: Any) -> Dict[str, str]:
    if value is None:
        return {}
    if isinstance(value, list):
        labels = {}
        for entry in value:
            key, _, val = _scalar_str(source, where, entry).partition("=")
            labels[key] = val
        return labels
    if not isinstance(value, dict):
        raise ParseError(source, f"'{where}' must be a mapping or list, got {_kind(value)}")
    return {str(k): _scalar_str(source, f"{where}.{k}", v) for k, v in value.items()}
