"""Sense Layer - element extraction and selector resolution."""

from pagesmith.layers.sense.dom_mapper import DOMQuery, ElementExtractor, SeleniumDOMQuery
from pagesmith.layers.sense.selector_resolver import resolve

__all__ = ["DOMQuery", "ElementExtractor", "SeleniumDOMQuery", "resolve"]
