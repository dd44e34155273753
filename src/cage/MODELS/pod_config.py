"""
Models for the merged configuration of a pod.
"""
from typing import Any, Dict, List
from pydantic import BaseModel, ConfigDict
from .errors import UnknownServiceError
from .service_definition import ServiceDefinition

DEFAULT_VERSION = "2"


class PodConfig(BaseModel):
    """
    Complete, merged configuration for a pod.
    Equivalent to a single flattened docker-compose.yml file.
    """
    model_config = ConfigDict(frozen=True)

    version: str = DEFAULT_VERSION
    services: Dict[str, ServiceDefinition] = {}

    # Top-level keys other than version and services (networks, volumes, ...)
    extras: Dict[str, Any] = {}

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "PodConfig":
        """
        Builds a pod from a merged document.

        :param doc: A document with ``version`` and ``services`` keys.
        :return: The pod configuration.
        """
        version = doc.get("version")
        services = doc.get("services") or {}
        return cls(
            version=DEFAULT_VERSION if version is None else str(version),
            services={
                name: ServiceDefinition.from_document(name, spec or {})
                for name, spec in services.items()
            },
            extras={k: v for k, v in doc.items() if k not in ("version", "services")},
        )

    def to_document(self) -> Dict[str, Any]:
        """
        Returns the pod as a plain document, suitable for YAML output or
        for feeding back into the merger.
        """
        doc: Dict[str, Any] = {"version": self.version}
        doc["services"] = {name: svc.to_document() for name, svc in self.services.items()}
        doc.update(self.extras)
        return doc

    def service_names(self) -> List[str]:
        """Service names in definition order."""
        return list(self.services)

    def service(self, name: str) -> ServiceDefinition:
        """
        Looks up a service by name.

        :raises UnknownServiceError: If the pod has no such service.
        """
        try:
            return self.services[name]
        except KeyError:
            raise UnknownServiceError(name) from None
