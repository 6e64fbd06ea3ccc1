"""
Slug transliteration shared by article slugs and canonical tags.

Both paths trim, lowercase and hand the text to python-slugify, which
transliterates to ASCII, turns whitespace into hyphens and strips the
remaining punctuation.  Tags and titles therefore normalise identically.

Transliteration can grow the text several times over (one CJK character
becomes a whole syllable), so both results are bounded by the width of
the column that stores them: slugs are truncated, over-long tags are
rejected.
"""
from typing import Iterable

from slugify import slugify

from conduit.errors import InvalidInputError

SLUG_MAX_LENGTH = 350
TAG_MAX_LENGTH = 100


def transliterate(text: str, max_length: int = 0) -> str:
    """Return the URL-safe form of *text* (may be empty); 0 means unbounded."""
    return slugify(text.strip().lower(), max_length=max_length)


def canonicalize_tags(tags: Iterable[str]) -> list[str]:
    """
    Normalise free-form tag input into the canonical tag set: each tag
    transliterated, empties dropped, duplicates removed, sorted ascending.

    >>> canonicalize_tags([" bTag ", " bTag1 ", " a tag ", " bTag "])
    ['a-tag', 'btag', 'btag1']
    """
    canonical = sorted({slug for slug in map(transliterate, tags) if slug})
    for tag in canonical:
        if len(tag) > TAG_MAX_LENGTH:
            raise InvalidInputError(f'"tagList" items must contain at most {TAG_MAX_LENGTH} characters')
    return canonical


def derive_slug(title: str) -> str:
    slug = transliterate(title, max_length=SLUG_MAX_LENGTH)
    if not slug:
        raise InvalidInputError('"title" must contain at least one letter or digit')
    return slug
