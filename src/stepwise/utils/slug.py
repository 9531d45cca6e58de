"""Filesystem-friendly, length-limited identifiers for sandboxes and log files."""

from __future__ import annotations

import hashlib
import re

_UNSAFE = re.compile(r"[^a-z0-9_.-]+")
_REPEATED_HYPHENS = re.compile(r"-{2,}")


def slugify(value: str | None, *, fallback: str = "item", max_length: int = 80) -> str:
    """Lowercase ``value`` and squeeze anything unsafe into single hyphens.

    Values longer than ``max_length`` keep a readable prefix and gain a short
    digest of the full slug so distinct long inputs stay distinct.
    """
    slug = _clean(value or "") or _clean(fallback) or "item"
    if len(slug) <= max_length:
        return slug
    digest = hashlib.sha256(slug.encode("utf-8")).hexdigest()[:8]
    prefix = slug[: max(max_length - len(digest) - 1, 1)].rstrip("-")
    return f"{prefix or slug[0]}-{digest}"


def _clean(value: str) -> str:
    slug = _UNSAFE.sub("-", value.strip().lower())
    return _REPEATED_HYPHENS.sub("-", slug).strip("-")


__all__ = ["slugify"]
