import re

_APOSTROPHES = re.compile(r"['‘’`]")
_PUNCT = re.compile(r"[^\w\s]", re.UNICODE)
_UNDERSCORE = re.compile(r"_+")
_SPACES = re.compile(r"\s+")


def normalize(text: str) -> str:
    """Lowercase, drop apostrophes, turn other punctuation into spaces, collapse whitespace.

    Applied to stored triggers and incoming messages alike so matching is symmetric.
    """
    if not text:
        return ""
    s = text.lower()
    s = _APOSTROPHES.sub("", s)
    s = _PUNCT.sub(" ", s)
    s = _UNDERSCORE.sub(" ", s)
    return _SPACES.sub(" ", s).strip()


def contains_phrase(haystack: str, needle: str) -> bool:
    """Substring test on already-normalized text; empty needles never match."""
    return bool(needle) and needle in haystack
