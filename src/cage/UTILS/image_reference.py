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
Image reference parsing.
Splits references like 'nginx', 'postgres:13' or 'localhost:5000/app@sha256:...'
into repository, tag and digest without filling in defaults.
"""

from typing import Optional
from dataclasses import dataclass


@dataclass(frozen=True)
class ImageReference:
    """
    Parsed image reference, as written in a pod file.

    Examples:
        - nginx -> repository='nginx', tag=None
        - postgres:13 -> repository='postgres', tag='13'
        - localhost:5000/app -> repository='localhost:5000/app', tag=None
        - gcr.io/project/image@sha256:abc -> digest='sha256:abc'
    """

    repository: str
    tag: Optional[str] = None
    digest: Optional[str] = None

    DEFAULT_REGISTRY = "docker.io"

    @classmethod
    def parse(cls, reference: str) -> "ImageReference":
        """
        Parse an image reference string.

        Args:
            reference: Image reference string (e.g., 'nginx:latest', 'myuser/myimage:v1')

        Returns:
            Parsed ImageReference object.

        Raises:
            ValueError: If the reference is empty or has an empty component.
        """
        if not reference or reference != reference.strip():
            raise ValueError(f"Invalid image reference: {reference!r}")

        digest = None
        if "@" in reference:
            reference, digest = reference.rsplit("@", 1)

        tag = None
        if ":" in reference:
            last_colon = reference.rfind(":")
            after_colon = reference[last_colon + 1:]
            # A slash after the colon means the colon belongs to a registry port
            if "/" not in after_colon:
                tag = after_colon
                reference = reference[:last_colon]

        if not reference or tag == "" or digest == "":
            raise ValueError(f"Invalid image reference: {reference!r}")

        return cls(repository=reference, tag=tag, digest=digest)

    @property
    def registry(self) -> str:
        """Registry host, or docker.io when the repository names none."""
        first, sep, _ = self.repository.partition("/")
        if sep and ("." in first or ":" in first or first == "localhost"):
            return first
        return self.DEFAULT_REGISTRY

    @property
    def is_pinned(self) -> bool:
        """True when the reference carries a tag or a digest."""
        return self.tag is not None or self.digest is not None

    def with_tag(self, tag: str) -> "ImageReference":
        return ImageReference(repository=self.repository, tag=tag, digest=self.digest)

    def __str__(self) -> str:
        name = self.repository
        if self.tag:
            name = f"{name}:{self.tag}"
        if self.digest:
            name = f"{name}@{self.digest}"
        return name
