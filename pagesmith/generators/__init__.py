"""Generators - page object and test source synthesis."""

from pagesmith.generators.code_synthesizer import CodeSynthesizer
from pagesmith.generators.exporter import ArtifactExporter, DirectoryExporter

__all__ = ["CodeSynthesizer", "ArtifactExporter", "DirectoryExporter"]
