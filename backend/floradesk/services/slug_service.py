# Overview: Ukrainian-to-Latin slug generation for flower URLs and import matching.

from __future__ import annotations

import re

_TRANSLIT = {
    "а": "a", "б": "b", "в": "v", "г": "h", "ґ": "g", "д": "d", "е": "e",
    "є": "ye", "ж": "zh", "з": "z", "и": "y", "і": "i", "ї": "yi", "й": "y",
    "к": "k", "л": "l", "м": "m", "н": "n", "о": "o", "п": "p", "р": "r",
    "с": "s", "т": "t", "у": "u", "ф": "f", "х": "kh", "ц": "ts", "ч": "ch",
    "ш": "sh", "щ": "shch", "ь": "", "ю": "yu", "я": "ya",
    " ": "-",
}
# Uppercase forms transliterate to the capitalised Latin form
_TRANSLIT.update({
    cyr.upper(): lat.capitalize()
    for cyr, lat in list(_TRANSLIT.items())
    if cyr.isalpha()
})

_NON_SLUG = re.compile(r"[^a-z0-9-]")
_DASHES = re.compile(r"-+")


def transliterate(text: str) -> str:
    return "".join(_TRANSLIT.get(ch, ch) for ch in text)


def slugify(text: str | None) -> str:
    """
    Build a URL slug from a (usually Ukrainian) product name.

    "Троянда червона" -> "troyanda-chervona"; characters outside
    [a-z0-9-] after transliteration are dropped.
    """
    if not text:
        return ""
    slug = transliterate(text).lower()
    slug = _NON_SLUG.sub("", slug)
    slug = _DASHES.sub("-", slug)
    return slug.strip("-")
