"""
Page object persistence.

The store only needs two things from storage: load everything at
startup and save one page object after each change.
"""

from abc import ABC, abstractmethod
from typing import List
import json
import logging
import os

from pagesmith.core.models import PageObjectModel

logger = logging.getLogger(__name__)


class PageObjectPersistence(ABC):
    """Storage collaborator for PageObjectStore."""

    @abstractmethod
    def load_all(self) -> List[PageObjectModel]:
        ...

    @abstractmethod
    def save(self, pom: PageObjectModel) -> None:
        ...


class JsonDirectoryPersistence(PageObjectPersistence):
    """
    One `<id>.json` file per page object.

    Example:
        >>> persistence = JsonDirectoryPersistence("./pages")
        >>> store = PageObjectStore(persistence)
        >>> store.load()
    """

    def __init__(self, directory: str):
        self.directory = directory
        os.makedirs(self.directory, exist_ok=True)

    def path_for(self, pom_id: str) -> str:
        return os.path.join(self.directory, f"{pom_id}.json")

    def load_all(self) -> List[PageObjectModel]:
        poms = []
        for file_name in sorted(os.listdir(self.directory)):
            if not file_name.endswith(".json"):
                continue
            path = os.path.join(self.directory, file_name)
            try:
                with open(path, "r", encoding="utf-8") as f:
                    poms.append(PageObjectModel.from_dict(json.load(f)))
            except (OSError, ValueError, KeyError) as e:
                logger.warning(f"[Persistence] Skipping unreadable page object {path}: {e}")
        return poms

    def save(self, pom: PageObjectModel) -> None:
        path = self.path_for(pom.id)
        tmp_path = path + ".tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(pom.to_dict(), f, indent=2)
        os.replace(tmp_path, path)
