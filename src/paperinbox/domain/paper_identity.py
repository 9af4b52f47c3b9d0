from __future__ import annotations

import re
from typing import Optional


_ARXIV_VERSION_RE = re.compile(r"v\d+$", re.IGNORECASE)
_DOI_PREFIXES = ("https://doi.org/", "http://doi.org/", "https://dx.doi.org/", "http://dx.doi.org/")


def _clean(value: str | None) -> str:
    return (value or "").strip()


def normalize_doi(value: str | None) -> Optional[str]:
    text = _clean(value)
    if not text:
        return None

    lowered = text.lower()
    for prefix in _DOI_PREFIXES:
        if lowered.startswith(prefix):
            lowered = lowered[len(prefix) :]
            break
    else:
        for marker in ("doi.org/", "doi:"):
            idx = lowered.find(marker)
            if idx >= 0:
                lowered = lowered[idx + len(marker) :]
                break

    lowered = lowered.split("?", 1)[0].split("#", 1)[0].strip()
    return lowered or None


def normalize_arxiv_id(value: str | None) -> Optional[str]:
    text = _clean(value)
    if not text:
        return None

    lowered = text.lower()
    for marker in ("arxiv.org/abs/", "arxiv.org/pdf/"):
        idx = lowered.find(marker)
        if idx >= 0:
            lowered = lowered[idx + len(marker) :]
            break

    if lowered.startswith("arxiv:"):
        lowered = lowered[len("arxiv:") :]
    lowered = lowered.split("?", 1)[0].split("#", 1)[0]
    if lowered.endswith(".pdf"):
        lowered = lowered[:-4]
    lowered = _ARXIV_VERSION_RE.sub("", lowered.strip(" /"))
    return lowered or None


def normalize_bibcode(value: str | None) -> Optional[str]:
    text = _clean(value)
    return text.lower() if text else None


def normalize_source_id(value: str | None) -> Optional[str]:
    text = _clean(value)
    return text.lower() if text else None


def arxiv_category(arxiv_id: str | None) -> Optional[str]:
    """
    Category segment of an old-style arXiv ID.

    ``astro-ph.CO/0601001`` -> ``astro-ph.co``; new-style IDs such as
    ``2401.12345`` carry no category and return None.
    """
    normalized = normalize_arxiv_id(arxiv_id)
    if not normalized or "/" not in normalized:
        return None
    return normalized.split("/", 1)[0] or None
