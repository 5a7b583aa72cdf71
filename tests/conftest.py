"""Fixtures that seed throwaway git repositories for the extractor tests."""

import json
from pathlib import Path

import pytest
from git import Actor, Repo

ACTOR = Actor("Test Bot", "bot@example.com")
TARGET = "data/positions.json"

# 2024-01-01T10:00:00Z, one day apart per commit
BASE_EPOCH = 1704103200
DAY = 86400


class SeededRepo:
    """Small helper around a GitPython repo with deterministic commit dates."""

    def __init__(self, path: Path):
        self.path = path
        self.repo = Repo.init(path)
        self._commits = 0
        self.target = TARGET

    def _commit(self, message):
        when = f"{BASE_EPOCH + self._commits * DAY} +0000"
        self._commits += 1
        commit = self.repo.index.commit(
            message,
            author=ACTOR,
            committer=ACTOR,
            author_date=when,
            commit_date=when,
        )
        return commit.hexsha

    def write(self, content, relpath=TARGET, message="update positions"):
        file_path = self.path / relpath
        file_path.parent.mkdir(parents=True, exist_ok=True)
        if not isinstance(content, str):
            content = json.dumps(content, indent=2)
        file_path.write_text(content, encoding="utf-8")
        self.repo.index.add([str(file_path)])
        return self._commit(message)

    def delete(self, relpath=TARGET):
        self.repo.index.remove([str(self.path / relpath)], working_tree=True)
        return self._commit(f"remove {relpath}")

    def move(self, old, new=TARGET):
        (self.path / new).parent.mkdir(parents=True, exist_ok=True)
        self.repo.git.mv(old, new)
        return self._commit(f"rename {old} to {new}")

    def committer_date(self, sha):
        return self.repo.git.show("-s", "--format=%cI", sha)


@pytest.fixture
def seeded(tmp_path):
    return SeededRepo(tmp_path / "repo")
