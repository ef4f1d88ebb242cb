"""
Artifact export.

The engine hands back source strings; where they end up is the
exporter's business.
"""

from abc import ABC, abstractmethod
from typing import List
import logging
import os

from pagesmith.core.models import GeneratedArtifacts

logger = logging.getLogger(__name__)


class ArtifactExporter(ABC):
    """Destination for generated test and page object sources."""

    @abstractmethod
    def export(self, artifacts: GeneratedArtifacts) -> List[str]:
        """Store the artifacts. Returns where each file went."""


class DirectoryExporter(ArtifactExporter):
    """
    Writes artifacts below a directory, keeping their relative paths.

    Example:
        >>> DirectoryExporter("./generated").export(artifacts)
        ['./generated/test-with-fill-click.spec.ts', './generated/pages/login.page.ts']
    """

    def __init__(self, output_dir: str):
        self.output_dir = output_dir

    def export(self, artifacts: GeneratedArtifacts) -> List[str]:
        written = []
        for relative_path, source in artifacts.files().items():
            path = os.path.join(self.output_dir, relative_path)
            os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                f.write(source)
            written.append(path)
            logger.info(f"[Exporter] Wrote {path}")
        return written
