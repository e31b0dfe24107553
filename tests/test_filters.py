"""Tests for source path filters."""

import pytest

from repo_index.core.errors import FilterConfigError
from repo_index.ingest.filters import PathFilter, normalize_path


def test_allowed_ext_and_ignored_dirs() -> None:
    rules = PathFilter.from_rules({".md"}, set(), {"vendor/"})
    assert rules.ignored_dirs == ("vendor",)
    assert rules.matches("README.md")
    assert rules.matches("docs/guide.md")
    assert not rules.matches("vendor/README.md")
    assert not rules.matches("notes.txt")
    assert rules.matches("vendorized/README.md")


def test_allowed_dirs_restrict_paths() -> None:
    rules = PathFilter.from_rules((), ["docs"], ["docs/archive"])
    assert rules.matches("docs/guide.md")
    assert rules.matches("docs/sub/page.txt")
    assert not rules.matches("src/main.py")
    assert not rules.matches("docs/archive/old.md")


def test_empty_rules_match_everything() -> None:
    rules = PathFilter.from_rules((), (), ())
    assert rules.matches("anything/at/all.bin")


@pytest.mark.parametrize(
    "allowed_ext,allowed_dirs,ignored_dirs",
    [
        ([""], [], []),
        (["docs/.md"], [], []),
        ([], ["/abs"], []),
        ([], [], ["../outside"]),
        ([], [], ["/"]),
    ],
)
def test_malformed_rules_raise(allowed_ext, allowed_dirs, ignored_dirs) -> None:
    with pytest.raises(FilterConfigError):
        PathFilter.from_rules(allowed_ext, allowed_dirs, ignored_dirs)


def test_normalize_path() -> None:
    assert normalize_path("./docs/guide.md") == "docs/guide.md"
    assert normalize_path("docs\\guide.md") == "docs/guide.md"
    assert normalize_path("/README.md") == "README.md"
