from __future__ import annotations

from stepwise.context import KeywordContextProvider, NullContextProvider, extract_keywords


def test_extract_keywords_skips_stopwords_and_short_words() -> None:
    keywords = extract_keywords("Update the subtract function so subtract handles floats; add a test")

    assert keywords[0] == "subtract"
    assert "Update" not in keywords
    assert "the" not in keywords
    assert "floats" in keywords


def test_keyword_provider_returns_snippets_around_hits(tiny_repo) -> None:
    tiny_repo.write("src/report.py", "from calculator import subtract\n\nprint(subtract(3, 1))\n")
    tiny_repo.commit_all("Add report")
    provider = KeywordContextProvider.for_repository(tiny_repo.repo, max_snippets=1)

    related = provider.select_related_code(tiny_repo.repo.name, "Make subtract saturate at zero")

    assert list(related) == ["src/calculator.py", "src/report.py"]
    assert "def subtract(left, right):" in related["src/calculator.py"][0]
    assert len(related["src/report.py"]) == 1


def test_keyword_provider_honours_exclusions_and_limits(tiny_repo) -> None:
    tiny_repo.write("src/report.py", "print(subtract(3, 1))\n")
    tiny_repo.commit_all("Add report")
    provider = KeywordContextProvider.for_repository(tiny_repo.repo, max_files=1)

    related = provider.select_related_code(
        tiny_repo.repo.name, "subtract", excluded_paths=["src/calculator.py"]
    )

    assert list(related) == ["src/report.py"]


def test_keyword_provider_ignores_unknown_repositories(tiny_repo) -> None:
    provider = KeywordContextProvider.for_repository(tiny_repo.repo)

    assert provider.select_related_code("elsewhere", "subtract") == {}
    assert provider.select_related_code(tiny_repo.repo.name, "a an of") == {}
    assert NullContextProvider().select_related_code("any", "subtract") == {}
