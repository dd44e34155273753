"""
Models for defining services, including port and volume mappings.
"""
from typing import Any, Dict, List, Optional, Tuple, Union
from pydantic import BaseModel, ConfigDict

# Keys of a service entry that have a dedicated field. Anything else is kept
# in ``extras`` untouched.
SERVICE_FIELDS = ("image", "build", "ports", "links", "volumes", "hostname", "labels")


class PortMapping(BaseModel):
    """
    A single port mapping, in ``container``, ``host:container`` or
    ``ip:host:container`` form, optionally suffixed with ``/protocol``.
    """
    model_config = ConfigDict(frozen=True)

    container_port: str
    host_port: Optional[str] = None
    host_ip: Optional[str] = None
    protocol: str = "tcp"

    @classmethod
    def parse(cls, spec: str) -> "PortMapping":
        """
        Parses a port mapping string.

        :param spec: Mapping such as "3000", "8080:80" or "127.0.0.1:53:53/udp".
        :return: The parsed mapping.
        :raises ValueError: If the string is not a port mapping.
        """
        protocol = "tcp"
        body = spec
        if "/" in body:
            body, protocol = body.rsplit("/", 1)
        parts = body.split(":")
        if len(parts) == 1:
            host_ip, host_port, container = None, None, parts[0]
        elif len(parts) == 2:
            host_ip, (host_port, container) = None, parts
        elif len(parts) == 3:
            host_ip, host_port, container = parts
        else:
            raise ValueError(f"Invalid port mapping: {spec!r}")

        for port in (host_port, container):
            if port and not _is_port_or_range(port):
                raise ValueError(f"Invalid port mapping: {spec!r}")
        if not container or protocol not in ("tcp", "udp", "sctp"):
            raise ValueError(f"Invalid port mapping: {spec!r}")

        return cls(
            container_port=container,
            host_port=host_port or None,
            host_ip=host_ip or None,
            protocol=protocol,
        )


class VolumeMount(BaseModel):
    """
    Defines a mapping between a host path (or named volume) and a service path.
    A mount without a source is an anonymous volume.
    """
    model_config = ConfigDict(frozen=True)

    target: str
    source: Optional[str] = None
    read_only: bool = False

    @classmethod
    def parse(cls, spec: str) -> "VolumeMount":
        """
        Parses a ``[source:]target[:mode]`` volume string.

        :raises ValueError: If the string has too many parts or an unknown mode.
        """
        parts = spec.split(":")
        if len(parts) == 1 and parts[0]:
            return cls(target=parts[0])
        if len(parts) == 2 and all(parts):
            return cls(source=parts[0], target=parts[1])
        if len(parts) == 3 and parts[0] and parts[1] and parts[2] in ("ro", "rw"):
            return cls(source=parts[0], target=parts[1], read_only=(parts[2] == "ro"))
        raise ValueError(f"Invalid volume mapping: {spec!r}")


class ServiceDefinition(BaseModel):
    """
    The merged definition of a single service in a pod.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    image: Optional[str] = None
    build: Union[str, Dict[str, Any], None] = None

    # Networking
    ports: Tuple[str, ...] = ()
    links: Tuple[str, ...] = ()
    hostname: Optional[str] = None

    # Storage
    volumes: Tuple[str, ...] = ()

    # Metadata
    labels: Dict[str, str] = {}

    # Keys cage does not interpret (environment, command, ...)
    extras: Dict[str, Any] = {}

    @classmethod
    def from_document(cls, name: str, spec: Dict[str, Any]) -> "ServiceDefinition":
        """
        Builds a service from its merged document form.

        :param name: The name of the service.
        :param spec: The service mapping, as produced by the loader and merger.
        :return: A ServiceDefinition instance.
        """
        image = spec.get("image")
        hostname = spec.get("hostname")
        return cls(
            name=name,
            image=None if image is None else str(image),
            build=spec.get("build"),
            ports=tuple(spec.get("ports") or ()),
            links=tuple(spec.get("links") or ()),
            volumes=tuple(spec.get("volumes") or ()),
            hostname=None if hostname is None else str(hostname),
            labels=dict(spec.get("labels") or {}),
            extras={k: v for k, v in spec.items() if k not in SERVICE_FIELDS},
        )

    def to_document(self) -> Dict[str, Any]:
        """
        Returns the service in document form, omitting unset fields.
        Field order is fixed so that rendering is deterministic.
        """
        doc: Dict[str, Any] = {}
        if self.image is not None:
            doc["image"] = self.image
        if self.build is not None:
            doc["build"] = self.build
        if self.ports:
            doc["ports"] = list(self.ports)
        if self.links:
            doc["links"] = list(self.links)
        if self.volumes:
            doc["volumes"] = list(self.volumes)
        if self.hostname is not None:
            doc["hostname"] = self.hostname
        if self.labels:
            doc["labels"] = dict(self.labels)
        doc.update(self.extras)
        return doc

    @property
    def build_context(self) -> Optional[str]:
        """The build context, whichever form ``build`` was given in."""
        if isinstance(self.build, dict):
            context = self.build.get("context")
            return None if context is None else str(context)
        return self.build

    def link_targets(self) -> List[str]:
        """
        Names of the services this one links to, with ``service:alias``
        entries reduced to the service name. Duplicates are dropped.
        """
        targets: List[str] = []
        for link in self.links:
            target = link.split(":", 1)[0]
            if target not in targets:
                targets.append(target)
        return targets


def _is_port_or_range(value: str) -> bool:
    if "-" in value:
        low, _, high = value.partition("-")
        return low.isdigit() and high.isdigit()
    return value.isdigit()
