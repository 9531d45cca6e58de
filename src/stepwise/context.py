"""Advisory related-code lookup used to enrich generator prompts."""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping

from .tools.vcs import GitError, GitRepository

LOGGER = logging.getLogger(__name__)

RelatedCode = Dict[str, List[str]]

_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]{3,}")
_STOPWORDS = frozenset(
    {
        "this", "that", "with", "from", "into", "should", "must", "when", "then",
        "have", "will", "each", "only", "also", "file", "code", "task", "make",
        "sure", "ensure", "add", "update", "return", "returns", "function",
        "value", "values", "using", "use", "the", "and", "for", "are", "not",
    }
)
_MAX_FILE_BYTES = 256_000


class ContextProvider:
    """Returns snippets of existing code that look related to a query."""

    def select_related_code(
        self,
        repo_id: str,
        query: str,
        excluded_paths: Iterable[str] = (),
    ) -> RelatedCode:
        raise NotImplementedError("Subclasses must implement select_related_code().")


class NullContextProvider(ContextProvider):
    def select_related_code(
        self,
        repo_id: str,
        query: str,
        excluded_paths: Iterable[str] = (),
    ) -> RelatedCode:
        return {}


@dataclass(slots=True)
class _FileMatch:
    path: str
    score: int
    lines: List[int]


class KeywordContextProvider(ContextProvider):
    """Scan tracked files for identifiers mentioned in the query.

    Files are ranked by how many query keywords they contain. For the top
    ``max_files`` files, up to ``max_snippets`` windows of ``window`` lines
    around keyword hits are returned.
    """

    def __init__(
        self,
        repositories: Mapping[str, GitRepository],
        *,
        max_files: int = 5,
        max_snippets: int = 3,
        window: int = 6,
    ) -> None:
        self._repositories = dict(repositories)
        self.max_files = max_files
        self.max_snippets = max_snippets
        self.window = window

    @classmethod
    def for_repository(cls, repo: GitRepository, **options: int) -> "KeywordContextProvider":
        return cls({repo.name: repo}, **options)

    def select_related_code(
        self,
        repo_id: str,
        query: str,
        excluded_paths: Iterable[str] = (),
    ) -> RelatedCode:
        repo = self._repositories.get(repo_id)
        if repo is None:
            LOGGER.debug("No repository registered for %s", repo_id)
            return {}
        keywords = extract_keywords(query)
        if not keywords:
            return {}

        excluded = {str(path) for path in excluded_paths}
        try:
            tracked = repo.list_tracked_paths()
        except GitError as error:
            LOGGER.warning("Context lookup skipped for %s: %s", repo_id, error)
            return {}

        matches: List[_FileMatch] = []
        for relative in tracked:
            key = relative.as_posix()
            if key in excluded:
                continue
            lines = _read_lines(repo, key)
            if lines is None:
                continue
            match = _score(key, lines, keywords)
            if match.score:
                matches.append(match)

        matches.sort(key=lambda item: (-item.score, item.path))
        related: RelatedCode = {}
        for match in matches[: self.max_files]:
            lines = _read_lines(repo, match.path) or []
            related[match.path] = self._snippets(lines, match.lines)
        return related

    def _snippets(self, lines: List[str], hits: List[int]) -> List[str]:
        snippets: List[str] = []
        covered_until = -1
        for hit in hits:
            if len(snippets) >= self.max_snippets:
                break
            if hit <= covered_until:
                continue
            start = max(hit - self.window // 2, 0)
            end = min(start + self.window, len(lines))
            snippets.append("\n".join(lines[start:end]))
            covered_until = end - 1
        return snippets


def extract_keywords(query: str, *, limit: int = 12) -> List[str]:
    """Return the most frequent identifier-like words in ``query``."""
    counts = Counter(
        word for word in _IDENTIFIER.findall(query) if word.lower() not in _STOPWORDS
    )
    return [word for word, _ in counts.most_common(limit)]


def _read_lines(repo: GitRepository, relative: str) -> List[str] | None:
    path = repo.root / relative
    try:
        if not path.is_file() or path.stat().st_size > _MAX_FILE_BYTES:
            return None
        data = path.read_bytes()
    except OSError:
        return None
    if b"\0" in data[:1024]:
        return None
    return data.decode("utf-8", errors="replace").splitlines()


def _score(path: str, lines: List[str], keywords: List[str]) -> _FileMatch:
    found: set[str] = set()
    hits: List[int] = []
    for index, line in enumerate(lines):
        present = [word for word in keywords if word in line]
        if present:
            found.update(present)
            hits.append(index)
    return _FileMatch(path=path, score=len(found), lines=hits)


__all__ = [
    "ContextProvider",
    "KeywordContextProvider",
    "NullContextProvider",
    "RelatedCode",
    "extract_keywords",
]
