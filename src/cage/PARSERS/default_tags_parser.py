"""
Default image tags, typically produced by a CI system to lock down the
versions of images that pod files leave untagged.
"""
import logging
from typing import Dict

from ..MODELS.errors import ParseError
from ..MODELS.pod_config import PodConfig
from ..UTILS.image_reference import ImageReference

logger = logging.getLogger(__name__)


class DefaultTags:
    """
    Maps image repositories to the tag used when a pod file gives none.
    """

    def __init__(self, tags: Dict[str, str]):
        self.tags = dict(tags)

    @classmethod
    def parse(cls, path: str) -> "DefaultTags":
        """
        Reads a default tags file: one ``repository:tag`` per line, blank
        lines and ``#`` comments ignored.

        :raises ParseError: If the file cannot be read or a line has no tag.
        """
        try:
            with open(path, 'r') as f:
                content = f.read()
        except OSError as e:
            raise ParseError(str(path), f"cannot read file: {e.strerror or e}") from e
        return cls.parse_from_string(content, source=str(path))

    @classmethod
    def parse_from_string(cls, content: str, source: str = "<string>") -> "DefaultTags":
        tags = {}
        for lineno, line in enumerate(content.splitlines(), start=1):
            line = line.strip()
            if not line or line.startswith('#'):
                continue
            try:
                ref = ImageReference.parse(line)
            except ValueError as e:
                raise ParseError(source, f"line {lineno}: {e}") from e
            if ref.tag is None:
                raise ParseError(source, f"line {lineno}: '{line}' has no tag")
            tags[ref.repository] = ref.tag
        return cls(tags)

    def default_for(self, image: str) -> str:
        """
        Returns ``image`` with its default tag applied, or unchanged if it is
        already pinned or has no default.
        """
        ref = ImageReference.parse(image)
        if ref.is_pinned or ref.repository not in self.tags:
            return image
        return str(ref.with_tag(self.tags[ref.repository]))

    def apply(self, config: PodConfig) -> PodConfig:
        """
        Returns a copy of ``config`` with default tags applied to every
        untagged service image.
        """
        services = {}
        for name, svc in config.services.items():
            if svc.image:
                try:
                    image = self.default_for(svc.image)
                except ValueError as e:
                    raise ParseError(f"services.{name}.image", str(e)) from e
                if image != svc.image:
                    logger.debug("Applying default tag to %s: %s", name, image)
                    svc = svc.model_copy(update={"image": image})
            services[name] = svc
        return config.model_copy(update={"services": services})
