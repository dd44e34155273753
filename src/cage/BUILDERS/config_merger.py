"""
Merging of layered pod documents into a single PodConfig.

Documents are folded left to right. For every key present in the incoming
document:

- scalars (strings, numbers, booleans) replace the accumulated value;
- lists (ports, links, volumes, ...) replace the accumulated list entirely,
  they are never concatenated;
- mappings (services, labels, ...) are merged key by key with these same
  rules, so a later document can only change a key by naming it.

null has no kind: it replaces, and is replaced by, a value of any kind.
Otherwise a key holding a scalar in one document and a list or mapping in
another is a MergeError.
"""
import copy
import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from ..MODELS.errors import MergeError
from ..MODELS.pod_config import PodConfig
from ..PARSERS.default_tags_parser import DefaultTags
from ..PARSERS.pod_file_loader import PodDocument, PodFileLoader

logger = logging.getLogger(__name__)

MergeInput = Union[PodDocument, PodConfig]


class ConfigMerger:
    """
    Combines an ordered sequence of pod documents into one PodConfig.
    """

    def __init__(self, default_tags: Optional[DefaultTags] = None):
        """
        :param default_tags: Tags applied to untagged images once merging is done.
        """
        self.default_tags = default_tags

    def merge(self,
              documents: Sequence[MergeInput],
              sources: Optional[Sequence[str]] = None) -> PodConfig:
        """
        Folds ``documents`` into a PodConfig, later documents overriding
        earlier ones. A PodConfig may be passed in place of a document,
        so ``merge([merge([a, b]), c]) == merge([a, b, c])``.

        :param documents: Documents in override order.
        :param sources: Optional names of the documents, for error messages.
        :return: The merged configuration.
        :raises MergeError: If a key changes kind between documents.
        """
        merged: Dict[str, Any] = {}
        for i, doc in enumerate(documents):
            source = sources[i] if sources and i < len(sources) else None
            merged = self.merge_documents(merged, doc, source=source)

        config = PodConfig.from_document(merged)
        if self.default_tags is not None:
            config = self.default_tags.apply(config)
        logger.debug("Merged %d documents into %d services", len(documents), len(config.services))
        return config

    def merge_documents(self,
                        base: MergeInput,
                        override: MergeInput,
                        source: Optional[str] = None) -> PodDocument:
        """
        Merges two documents without modifying either.

        :return: A new document holding the merged tree.
        """
        return _merge_mapping("", _as_document(base), _as_document(override), source)


def _as_document(doc: MergeInput) -> PodDocument:
    if isinstance(doc, PodConfig):
        return doc.to_document()
    return doc


def _kind(value: Any) -> str:
    if isinstance(value, dict):
        return "mapping"
    if isinstance(value, list):
        return "list"
    return "scalar"


def _merge_mapping(path: str, base: Dict[str, Any], incoming: Dict[str, Any],
                   source: Optional[str]) -> Dict[str, Any]:
    result = copy.deepcopy(base)
    for key, value in incoming.items():
        key_path = f"{path}.{key}" if path else str(key)
        if key in result:
            result[key] = _merge_value(key_path, result[key], value, source)
        else:
            result[key] = copy.deepcopy(value)
    return result


def _merge_value(path: str, existing: Any, incoming: Any, source: Optional[str]) -> Any:
    if existing is None or incoming is None:
        return copy.deepcopy(incoming)
    existing_kind = _kind(existing)
    incoming_kind = _kind(incoming)
    if existing_kind != incoming_kind:
        raise MergeError(path, existing_kind, incoming_kind, source=source)
    if incoming_kind == "mapping":
        return _merge_mapping(path, existing, incoming, source)
    return copy.deepcopy(incoming)


def merge_paths(paths: List[str], default_tags: Optional[DefaultTags] = None) -> PodConfig:
    """
    Loads and merges pod files in the given order.

    :raises ParseError: If any file is malformed; no merge is attempted.
    :raises MergeError: If the files conflict.
    """
    documents = PodFileLoader().load_all(paths)
    return ConfigMerger(default_tags=default_tags).merge(documents, sources=paths)
