import threading
from datetime import datetime, timedelta

import pytest

from pagesmith.core.errors import PageObjectNotFoundError
from pagesmith.core.models import ElementDescriptor, new_id
from pagesmith.core.page_object_store import PageObjectStore
from pagesmith.core.persistence import JsonDirectoryPersistence, PageObjectPersistence


def element(selector, name=None, element_type="button", alternatives=(), dom_index=None):
    return ElementDescriptor(
        id=new_id("element"),
        name=name or selector.strip("#.").replace("-", "_") or "el",
        primary_selector=selector,
        alternative_selectors=list(alternatives),
        element_type=element_type,
        dom_index=dom_index,
    )


def fresh_batch():
    return [element("#go", "go"), element("#email", "email", "input")]


def contents(pom):
    return [(e.primary_selector, e.name) for e in pom.elements]


def test_create_from_extraction():
    store = PageObjectStore()
    pom = store.create_from_extraction("https://shop.test/items/42", "Item", fresh_batch())

    assert pom.version == 1
    assert pom.name == "ItemsPage"
    assert store.get(pom.id) is pom
    assert contents(pom) == [("#go", "go"), ("#email", "email")]


def test_find_by_exact_url_and_by_pattern():
    store = PageObjectStore()
    pom = store.create_from_extraction("https://shop.test/items/42", "Item", [])

    assert store.find_by_url("https://shop.test/items/42") is pom
    assert store.find_by_url("https://shop.test/items/99") is pom
    assert store.find_by_url("https://shop.test/items/99?tab=reviews") is pom
    assert store.find_by_url("https://shop.test/items/abc") is None
    assert store.find_by_url("https://other.test/items/42") is None


def test_exact_url_match_beats_pattern_match():
    store = PageObjectStore()
    generic = store.create_from_extraction("https://shop.test/items/1", "Item", [])
    specific = store.create_from_extraction("https://shop.test/items/7", "Item", [])

    assert store.find_by_url("https://shop.test/items/7") is specific
    assert store.find_by_url("https://shop.test/items/1") is generic


def test_merge_twice_same_content_version_bumps_each_call():
    store = PageObjectStore()
    pom = store.create_from_extraction("https://a.test/login", "Login", fresh_batch())

    store.merge_update(pom, fresh_batch())
    after_first = contents(pom)
    assert pom.version == 2

    store.merge_update(pom, fresh_batch())
    assert contents(pom) == after_first
    assert pom.version == 3


def test_merge_appends_new_elements_and_never_removes():
    store = PageObjectStore()
    pom = store.create_from_extraction("https://a.test/login", "Login", fresh_batch())
    original_ids = [e.id for e in pom.elements]

    store.merge_update(pom, [element("#help", "help", "link")])

    assert [e.id for e in pom.elements][:2] == original_ids
    assert contents(pom)[-1] == ("#help", "help")


def test_merge_refreshes_known_elements():
    store = PageObjectStore()
    pom = store.create_from_extraction("https://a.test/", "Home", [element("#go", "go")])
    known = pom.elements[0]
    known.is_stable = False
    known.last_verified_at = datetime.now() - timedelta(days=3)

    store.merge_update(pom, [element("#go", "go")])

    assert known.is_stable is True
    assert known.last_verified_at > datetime.now() - timedelta(minutes=1)
    assert len(pom.elements) == 1


def test_merge_renames_colliding_names():
    store = PageObjectStore()
    pom = store.create_from_extraction("https://a.test/", "Home", [element("#save", "save")])
    store.merge_update(pom, [element("#save-2", "save")])
    assert pom.element_names() == ["save", "save_2"]


def test_weak_selectors_merge_by_dom_index():
    store = PageObjectStore()
    pom = store.create_from_extraction(
        "https://a.test/", "Home",
        [element("button", "button_element", dom_index=0), element("button", "button_element", dom_index=1)],
    )
    assert len(pom.elements) == 2

    store.merge_update(pom, [element("button", "button_element", dom_index=1)])
    assert len(pom.elements) == 2

    store.merge_update(pom, [element("button", "button_element", dom_index=5)])
    assert len(pom.elements) == 3


def test_verify_stability_primary_ok():
    store = PageObjectStore()
    desc = element("#go", alternatives=[".go"])
    assert store.verify_stability(desc, lambda s: s == "#go") is True
    assert desc.primary_selector == "#go"
    assert desc.is_stable is True


def test_verify_stability_promotes_first_working_alternative():
    store = PageObjectStore()
    pom = store.create_from_extraction(
        "https://a.test/", "Home", [element("#old", alternatives=['text="Go"', ".go-btn"])]
    )
    desc = pom.elements[0]
    version = pom.version

    assert store.verify_stability(desc, lambda s: s in ('text="Go"', ".go-btn"), pom=pom) is True
    assert desc.primary_selector == 'text="Go"'
    assert desc.alternative_selectors == [".go-btn"]
    assert "#old" not in desc.all_selectors
    assert pom.version == version + 1


def test_verify_stability_all_fail_changes_nothing():
    store = PageObjectStore()
    desc = element("#old", alternatives=[".a", ".b"])
    desc.is_stable = False
    stamp = desc.last_verified_at

    assert store.verify_stability(desc, lambda s: False) is False
    assert desc.primary_selector == "#old"
    assert desc.alternative_selectors == [".a", ".b"]
    assert desc.last_verified_at == stamp
    assert desc.is_stable is False


def test_add_element_returns_existing_for_same_selector():
    store = PageObjectStore()
    pom = store.create_from_extraction("https://a.test/", "Home", [element("#go", "go")])
    same = store.add_element(pom, element("#go", "submit"))
    assert same is pom.elements[0]
    assert len(pom.elements) == 1

    added = store.add_element(pom, element("#other", "go"))
    assert added.name == "go_2"


def test_prune_by_age_and_id():
    store = PageObjectStore()
    pom = store.create_from_extraction(
        "https://a.test/", "Home", [element("#a", "a"), element("#b", "b"), element("#c", "c")]
    )
    pom.elements[0].last_verified_at = datetime.now() - timedelta(days=30)
    version = pom.version

    assert store.prune(pom.id, older_than=datetime.now() - timedelta(days=7)) == 1
    assert pom.version == version + 1
    assert store.prune(pom.id, element_ids=[pom.elements[0].id]) == 1
    assert pom.element_names() == ["c"]
    assert store.prune(pom.id, element_ids=["nope"]) == 0
    assert pom.version == version + 2


def test_prune_needs_criteria_and_known_page():
    store = PageObjectStore()
    pom = store.create_from_extraction("https://a.test/", "Home", [])
    with pytest.raises(ValueError):
        store.prune(pom.id)
    with pytest.raises(PageObjectNotFoundError):
        store.prune("page-missing", element_ids=["x"])


def test_json_persistence_round_trip(tmp_path):
    persistence = JsonDirectoryPersistence(str(tmp_path))
    store = PageObjectStore(persistence)
    pom = store.create_from_extraction("https://a.test/users/3", "User", [element("#save", "save")])
    store.merge_update(pom, [element("#cancel", "cancel")])

    reloaded = PageObjectStore(JsonDirectoryPersistence(str(tmp_path)))
    assert reloaded.load() == 1
    copy = reloaded.get(pom.id)
    assert copy.version == 2
    assert copy.element_names() == ["save", "cancel"]
    assert reloaded.find_by_url("https://a.test/users/8") is copy


def test_failing_persistence_only_warns(caplog):
    class Broken(PageObjectPersistence):
        def load_all(self):
            return []

        def save(self, pom):
            raise OSError("disk full")

    store = PageObjectStore(Broken())
    pom = store.create_from_extraction("https://a.test/", "Home", [])
    store.merge_update(pom, [])
    assert pom.version == 2
    assert "disk full" in caplog.text


def test_concurrent_merges_into_one_page_are_serialized():
    store = PageObjectStore()
    pom = store.create_from_extraction("https://a.test/", "Home", [])

    def worker(n):
        for i in range(20):
            store.merge_update(pom, [element(f"#w{n}-{i}", f"w{n}_{i}")])

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(pom.elements) == 100
    assert pom.version == 101
    assert len(set(pom.element_names())) == 100


def test_different_pages_have_different_locks():
    store = PageObjectStore()
    a = store.create_from_extraction("https://a.test/", "A", [])
    b = store.create_from_extraction("https://b.test/", "B", [])
    assert store.lock_for(a.id) is not store.lock_for(b.id)
    assert store.lock_for(a.id) is store.lock_for(a.id)


def test_upsert_creates_once_then_merges():
    store = PageObjectStore()
    first = store.upsert_from_extraction("https://a.test/orders/1", "Orders", [element("#go", "go")])
    again = store.upsert_from_extraction("https://a.test/orders/2", "Orders", [element("#go", "go")])
    assert again is first
    assert first.version == 2
    assert len(store.all()) == 1


class CountingPersistence(PageObjectPersistence):
    def __init__(self):
        self.saved = []

    def load_all(self):
        return []

    def save(self, pom):
        self.saved.append(pom.version)


def test_verify_stability_finds_owner_lock_and_persists():
    persistence = CountingPersistence()
    store = PageObjectStore(persistence)
    pom = store.create_from_extraction("https://a.test/", "Home", [element("#go", "go")])
    desc = pom.elements[0]
    saves_before = len(persistence.saved)
    lock_held = []

    def finds(selector):
        grabbed = []
        other = threading.Thread(target=lambda: grabbed.append(store.lock_for(pom.id).acquire(blocking=False)))
        other.start()
        other.join()
        lock_held.append(not grabbed[0])
        return True

    assert store.verify_stability(desc, finds) is True
    assert lock_held == [True]
    assert len(persistence.saved) == saves_before + 1
    assert pom.version == 1


def test_owner_of_uses_identity():
    store = PageObjectStore()
    pom = store.create_from_extraction("https://a.test/", "Home", [element("#go", "go")])
    assert store.owner_of(pom.elements[0]) is pom
    assert store.owner_of(element("#go", "go")) is None


def test_names_unique_across_generated_identifiers():
    store = PageObjectStore()
    pom = store.create_from_extraction("https://a.test/", "Home", [element("#a", "log_in")])
    added = store.add_element(pom, element("#b", "logIn"))
    assert added.name == "logIn_2"


def test_names_never_shadow_page_object_members():
    store = PageObjectStore()
    pom = store.create_from_extraction(
        "https://a.test/", "Home", [element("#a", "page"), element("#b", "navigate"), element("#c", "isLoaded")]
    )
    assert pom.element_names() == ["page_2", "navigate_2", "isLoaded_2"]
