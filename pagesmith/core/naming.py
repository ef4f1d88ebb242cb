"""
Naming helpers shared by extraction, the page object store and code generation.
"""

import re
from typing import Iterable, Set
from urllib.parse import urlsplit, urlunsplit

MAX_NAME_LENGTH = 30

_NON_WORD = re.compile(r"[^a-z0-9]+")
_WORD_SPLIT = re.compile(r"[^A-Za-z0-9]+")
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def slugify(text: str, max_length: int = MAX_NAME_LENGTH) -> str:
    """
    Turn arbitrary text into a safe snake_case identifier.

    Returns an empty string when nothing usable is left.

    Example:
        >>> slugify("Sign in  now!")
        'sign_in_now'
    """
    if not text:
        return ""
    slug = _NON_WORD.sub("_", text.strip().lower()).strip("_")
    slug = slug[:max_length].rstrip("_")
    if slug and slug[0].isdigit():
        slug = f"el_{slug}"[:max_length].rstrip("_")
    return slug


def split_words(name: str) -> list:
    """Split snake_case, kebab-case, spaced and camelCase names into words."""
    words = []
    for chunk in _WORD_SPLIT.split(name or ""):
        if chunk:
            words.extend(part for part in _CAMEL_BOUNDARY.split(chunk) if part)
    return words


def to_pascal_case(name: str) -> str:
    """`login_button` and `loginButton` both become `LoginButton`."""
    return "".join(word[0].upper() + word[1:] for word in split_words(name))


def to_camel_case(name: str) -> str:
    pascal = to_pascal_case(name)
    return pascal[:1].lower() + pascal[1:]


def to_snake_case(name: str) -> str:
    return "_".join(word.lower() for word in split_words(name))


def identifier_forms(name: str) -> Set[str]:
    """
    The identifiers code generation derives from `name`.

    `log_in`, `logIn` and `LogIn` all share `log_in` and `LogIn`, so they
    would end up as the same method or constant.
    """
    return {to_snake_case(name), to_pascal_case(name)}


def unique_name(name: str, taken: Iterable[str]) -> str:
    """Suffix `name` with _2, _3, ... until none of its generated identifiers collide."""
    taken_forms: Set[str] = set()
    for other in taken:
        taken_forms |= identifier_forms(other)
    if not identifier_forms(name) & taken_forms:
        return name
    counter = 2
    while identifier_forms(f"{name}_{counter}") & taken_forms:
        counter += 1
    return f"{name}_{counter}"


def guard_leading_digit(name: str) -> str:
    """Identifiers cannot start with a digit: `2fa_code` becomes `el_2fa_code`."""
    if name and name[0].isdigit():
        return f"el_{name}"
    return name


def page_name(title: str, url: str) -> str:
    """
    Derive a page class name (PascalCase + "Page").

    The last non-numeric path segment wins, then the document title,
    then "Home".
    """
    segments = [seg for seg in urlsplit(url).path.split("/") if seg and not seg.isdigit()]
    base = ""
    if segments:
        base = to_pascal_case(re.sub(r"\.\w+$", "", segments[-1]))
    if not base and title:
        base = to_pascal_case(title)[:MAX_NAME_LENGTH]
    if not base or base[0].isdigit():
        base = "Home" + base
    return base if base.endswith("Page") else f"{base}Page"


def strip_query(url: str) -> str:
    """Drop query string and fragment."""
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def url_pattern(url: str) -> str:
    """
    Build an anchored regex for a page family.

    Purely numeric path segments become `\\d+`, so a pattern built from
    `/items/42` also matches `/items/99`. Scheme and host are kept so
    identical paths on different sites do not collide.
    """
    parts = urlsplit(url)
    origin = re.escape(f"{parts.scheme}://{parts.netloc}")
    segments = [r"\d+" if seg.isdigit() else re.escape(seg) for seg in parts.path.rstrip("/").split("/")]
    return "^" + origin + "/".join(segments) + "/?$"
