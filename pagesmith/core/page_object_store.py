"""
Page Object Store - the accumulating model of every page seen so far.

Page objects are created on the first visit to a URL and merge-updated
on every later visit to the same URL or page family. The merge is
additive: elements that disappear from the page are kept until someone
prunes them explicitly.

The store is an ordinary object. Pass it to each SessionManager that
should share it; tests build their own.
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple
import logging
import threading

from pagesmith.core.errors import PageObjectNotFoundError
from pagesmith.core.models import ElementDescriptor, PageObjectModel, new_id
from pagesmith.core.naming import page_name, unique_name, url_pattern
from pagesmith.core.persistence import PageObjectPersistence
from pagesmith.layers.sense.selector_resolver import is_bare_tag

logger = logging.getLogger(__name__)

MergeKey = Tuple[str, Optional[int]]

# Members every generated page object already has.
RESERVED_NAMES = ("page", "driver", "url", "navigate", "is_loaded")


def merge_key(element: ElementDescriptor) -> MergeKey:
    """
    Identity used when merging a fresh extraction into a stored page.

    Selector equality, except that a bare tag selector also needs the
    same DOM index so two different buttons that both fell back to
    `button` are not collapsed into one.
    """
    if is_bare_tag(element.primary_selector):
        return element.primary_selector, element.dom_index
    return element.primary_selector, None


class PageObjectStore:
    """
    Repository of PageObjectModels keyed by id.

    Writers to the same page object are serialized by a per-page lock;
    writers to different page objects never wait for each other.

    Example:
        >>> store = PageObjectStore()
        >>> pom = store.create_from_extraction("https://shop.test/items/42", "Item", elements)
        >>> store.find_by_url("https://shop.test/items/99") is pom
        True
    """

    def __init__(self, persistence: Optional[PageObjectPersistence] = None):
        self.persistence = persistence
        self._poms: Dict[str, PageObjectModel] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()
        self._create_lock = threading.Lock()
        self._detached_lock = threading.RLock()

    def load(self) -> int:
        """Load every stored page object from persistence. Returns how many were loaded."""
        if self.persistence is None:
            return 0
        loaded = self.persistence.load_all()
        with self._registry_lock:
            for pom in loaded:
                self._poms[pom.id] = pom
        logger.info(f"[PageObjectStore] Loaded {len(loaded)} page objects")
        return len(loaded)

    def lock_for(self, pom_id: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(pom_id)
            if lock is None:
                lock = self._locks[pom_id] = threading.RLock()
            return lock

    @contextmanager
    def editing(self, pom: PageObjectModel):
        """Hold the page's lock, then bump its version and persist on exit."""
        with self.lock_for(pom.id):
            yield pom
            pom.version += 1
            pom.last_updated_at = datetime.now()
            self._save(pom)

    def get(self, pom_id: str) -> PageObjectModel:
        with self._registry_lock:
            pom = self._poms.get(pom_id)
        if pom is None:
            raise PageObjectNotFoundError(pom_id)
        return pom

    def all(self) -> List[PageObjectModel]:
        with self._registry_lock:
            return list(self._poms.values())

    def find_by_url(self, url: str) -> Optional[PageObjectModel]:
        """Exact URL match first, then the first page whose pattern matches."""
        poms = self.all()
        for pom in poms:
            if pom.url == url:
                return pom
        for pom in poms:
            if pom.matches(url):
                return pom
        return None

    def owner_of(self, descriptor: ElementDescriptor) -> Optional[PageObjectModel]:
        """The stored page object holding this very descriptor, if any."""
        for pom in self.all():
            if any(element is descriptor for element in pom.elements):
                return pom
        return None

    def create_from_extraction(
        self,
        url: str,
        title: str,
        elements: Iterable[ElementDescriptor],
    ) -> PageObjectModel:
        pom = PageObjectModel(
            id=new_id("page"),
            name=page_name(title, url),
            url=url,
            url_pattern=url_pattern(url),
            title=title or "",
        )
        taken: List[str] = []
        seen_keys = set()
        for element in elements:
            key = merge_key(element)
            if key in seen_keys:
                continue
            seen_keys.add(key)
            element.name = self._unique_element_name(element.name, taken)
            taken.append(element.name)
            pom.elements.append(element)

        with self.lock_for(pom.id):
            with self._registry_lock:
                self._poms[pom.id] = pom
            self._save(pom)
        logger.info(f"[PageObjectStore] Created {pom.name} ({len(pom.elements)} elements) for {url}")
        return pom

    def upsert_from_extraction(
        self,
        url: str,
        title: str,
        elements: Iterable[ElementDescriptor],
    ) -> PageObjectModel:
        """Merge into the page object for `url`, creating it on first visit."""
        with self._create_lock:
            pom = self.find_by_url(url)
            if pom is None:
                return self.create_from_extraction(url, title, elements)
        return self.merge_update(pom, elements)

    def merge_update(
        self,
        existing: PageObjectModel,
        fresh_elements: Iterable[ElementDescriptor],
    ) -> PageObjectModel:
        """
        Fold a fresh extraction into `existing`.

        Known elements get `last_verified_at` refreshed and are marked
        stable; new ones are appended with a unique name. Nothing is
        removed. `version` goes up by one per call even when nothing changed.
        """
        now = datetime.now()
        added = 0
        with self.editing(existing):
            by_key = {merge_key(e): e for e in existing.elements}
            taken = existing.element_names()
            for fresh in fresh_elements:
                key = merge_key(fresh)
                known = by_key.get(key)
                if known is not None:
                    known.last_verified_at = now
                    known.is_stable = True
                    continue
                fresh.name = self._unique_element_name(fresh.name, taken)
                taken.append(fresh.name)
                existing.elements.append(fresh)
                by_key[key] = fresh
                added += 1
        logger.debug(f"[PageObjectStore] Merged into {existing.name}: {added} new, v{existing.version}")
        return existing

    def add_element(self, pom: PageObjectModel, descriptor: ElementDescriptor) -> ElementDescriptor:
        """Explicitly mapped element. An element with the same identity is returned instead of duplicated."""
        with self.editing(pom):
            key = merge_key(descriptor)
            for element in pom.elements:
                if merge_key(element) == key:
                    element.last_verified_at = datetime.now()
                    return element
            descriptor.name = self._unique_element_name(descriptor.name, pom.element_names())
            pom.elements.append(descriptor)
            return descriptor

    def verify_stability(
        self,
        descriptor: ElementDescriptor,
        finds: Callable[[str], bool],
        pom: Optional[PageObjectModel] = None,
    ) -> bool:
        """
        Check the descriptor's selectors against the live page.

        `finds(selector)` reports whether the selector still finds the
        element. The primary is tried first, then each alternative; the
        first alternative that works becomes the new primary and the old
        primary is dropped. Returns False without touching anything when
        every selector fails.

        Without `pom` the stored page holding `descriptor` is looked up;
        its lock is held throughout and it is persisted on success.
        """
        if pom is None:
            pom = self.owner_of(descriptor)
        lock = self.lock_for(pom.id) if pom is not None else self._detached_lock
        with lock:
            if finds(descriptor.primary_selector):
                descriptor.last_verified_at = datetime.now()
                descriptor.is_stable = True
                if pom is not None:
                    self._save(pom)
                return True

            for alternative in list(descriptor.alternative_selectors):
                if not finds(alternative):
                    continue
                old_primary = descriptor.primary_selector
                descriptor.alternative_selectors = [
                    s for s in descriptor.alternative_selectors if s != alternative and s != old_primary
                ]
                descriptor.primary_selector = alternative
                descriptor.last_verified_at = datetime.now()
                descriptor.is_stable = True
                logger.info(f"[PageObjectStore] {descriptor.name}: promoted {alternative} over {old_primary}")
                if pom is not None:
                    pom.version += 1
                    pom.last_updated_at = datetime.now()
                    self._save(pom)
                return True

        logger.info(f"[PageObjectStore] {descriptor.name}: no selector resolves")
        return False

    def prune(
        self,
        pom_id: str,
        older_than: Optional[datetime] = None,
        element_ids: Optional[Iterable[str]] = None,
    ) -> int:
        """
        Remove stale descriptors by id and/or by `last_verified_at < older_than`.

        Returns the number removed. The version only moves when something was removed.
        """
        if older_than is None and element_ids is None:
            raise ValueError("prune needs older_than or element_ids")
        pom = self.get(pom_id)
        ids = set(element_ids or ())
        with self.lock_for(pom.id):
            keep = [
                e for e in pom.elements
                if e.id not in ids and not (older_than is not None and e.last_verified_at < older_than)
            ]
            removed = len(pom.elements) - len(keep)
            if removed:
                pom.elements = keep
                pom.version += 1
                pom.last_updated_at = datetime.now()
                self._save(pom)
        logger.info(f"[PageObjectStore] Pruned {removed} elements from {pom.name}")
        return removed

    def save(self, pom: PageObjectModel) -> None:
        with self.lock_for(pom.id):
            self._save(pom)

    def _save(self, pom: PageObjectModel) -> None:
        if self.persistence is None:
            return
        try:
            self.persistence.save(pom)
        except Exception as e:
            logger.warning(f"[PageObjectStore] Could not persist {pom.name} ({pom.id}): {e}")

    @staticmethod
    def _unique_element_name(name: str, taken: List[str]) -> str:
        unique = unique_name(name, [*taken, *RESERVED_NAMES])
        if unique != name:
            logger.warning(f"[PageObjectStore] Element name '{name}' already used, renamed to '{unique}'")
        return unique
