#!/usr/bin/env python3
"""
Position history extractor.

Walks every commit that touched a JSON holdings file in a git working tree,
pulls the record for one symbol out of each version and writes the resulting
market value / cost basis series to a JSON report.

Usage:
    SUBMODULE_DIR=portfolio TARGET_JSON_PATH=data/positions.json \
    OUTPUT_PATH=out/history.json python position_history.py
"""

import json
import logging
import os
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from dotenv import find_dotenv, load_dotenv
from git import Repo
from git.exc import CommandError, InvalidGitRepositoryError, NoSuchPathError

logger = logging.getLogger(__name__)

DEFAULT_SYMBOL = "SGML"
REQUIRED_VARS = ("SUBMODULE_DIR", "TARGET_JSON_PATH", "OUTPUT_PATH")


class HistoryError(Exception):
    """Base class for extractor errors."""


class ConfigError(HistoryError):
    pass


class RepositoryError(HistoryError):
    pass


class MalformedSnapshotError(HistoryError):
    """The file parsed as JSON but has no usable positions array."""


@dataclass(frozen=True)
class Config:
    submodule_dir: str
    target_json_path: str
    output_path: str
    max_commits: Optional[int] = None
    symbol: str = DEFAULT_SYMBOL

    @property
    def history_key(self) -> str:
        return f"{self.symbol.lower()}HistoryData"


@dataclass(frozen=True)
class RevisionContent:
    sha: str
    text: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.text is not None


def load_config(environ=None) -> Config:
    """Build the run configuration from environment variables.

    Raises ConfigError when a required variable is missing. A malformed
    MAX_COMMITS is left to raise ValueError.
    """
    env = os.environ if environ is None else environ

    missing = [name for name in REQUIRED_VARS if not env.get(name)]
    if missing:
        raise ConfigError(f"Missing env vars. Required: {', '.join(missing)}")

    raw_cap = env.get("MAX_COMMITS")
    max_commits = int(raw_cap) if raw_cap else None

    return Config(
        submodule_dir=env["SUBMODULE_DIR"],
        target_json_path=env["TARGET_JSON_PATH"],
        output_path=env["OUTPUT_PATH"],
        max_commits=max_commits or None,
        symbol=env.get("TARGET_SYMBOL") or DEFAULT_SYMBOL,
    )


def open_repository(config: Config, cwd=None) -> Repo:
    """Open the submodule working tree, failing with RepositoryError."""
    repo_dir = (Path(cwd or os.getcwd()) / config.submodule_dir).resolve()
    if not repo_dir.is_dir():
        raise RepositoryError(
            f"SUBMODULE_DIR does not look like a git repo: {config.submodule_dir}"
        )

    try:
        repo = Repo(str(repo_dir), search_parent_directories=True)
        inside = repo.git.rev_parse("--is-inside-work-tree")
    except (InvalidGitRepositoryError, NoSuchPathError, CommandError) as e:
        raise RepositoryError(
            f"SUBMODULE_DIR does not look like a git repo: {config.submodule_dir}"
        ) from e

    if repo.bare or inside.strip() != "true":
        raise RepositoryError(
            f"SUBMODULE_DIR is not a working tree: {config.submodule_dir}"
        )
    return repo


def list_commits(repo: Repo, config: Config):
    """Commits that modified the target file, oldest first.

    Returns the full list and the list capped to the oldest max_commits.
    """
    raw = repo.git.log(
        "--reverse",
        "--follow",
        "--pretty=format:%H",
        "--",
        config.target_json_path,
    )
    commits = [line.strip() for line in raw.splitlines() if line.strip()]
    limited = commits[: config.max_commits] if config.max_commits else commits
    return commits, limited


def read_revision(repo: Repo, sha: str, path: str) -> RevisionContent:
    """Content of path at sha. Unknown revisions raise from repo.commit()."""
    commit = repo.commit(sha)
    try:
        blob = commit.tree / path
    except KeyError:
        return RevisionContent(sha)
    return RevisionContent(sha, blob.data_stream.read().decode("utf-8", errors="replace"))


def commit_timestamp(repo: Repo, sha: str) -> str:
    return repo.git.show("-s", "--format=%cI", sha).strip()


def _reject_constant(name):
    raise ValueError(f"{name} is not valid JSON")


def parse_document(text: str):
    """json.loads that refuses NaN and Infinity."""
    return json.loads(text, parse_constant=_reject_constant)


def find_position(document, symbol: str):
    """First entry of document["positions"] whose symbol matches, or None."""
    if not isinstance(document, dict):
        raise MalformedSnapshotError(
            f"expected a JSON object, got {type(document).__name__}"
        )
    positions = document.get("positions")
    if not isinstance(positions, list):
        raise MalformedSnapshotError("no positions array")

    for position in positions:
        if isinstance(position, dict) and position.get("symbol") == symbol:
            return position
    return None


def extract_history(repo: Repo, config: Config):
    commits, limited = list_commits(repo, config)
    print(f"detected {len(commits)} commits modifying {config.target_json_path}")

    snapshots = []
    for sha in limited:
        print(f"processing commit {sha}")
        revision = read_revision(repo, sha, config.target_json_path)
        if not revision.found or not revision.text:
            logger.debug("No content for %s at %s", config.target_json_path, sha)
            continue

        try:
            document = parse_document(revision.text)
        except ValueError as e:
            logger.warning("Could not parse %s at %s: %s", config.target_json_path, sha, e)
            snapshots.append({"sha": sha, "error": f"JSON_PARSE_FAILED: {e}"})
            continue

        timestamp = commit_timestamp(repo, sha)

        try:
            position = find_position(document, config.symbol)
        except MalformedSnapshotError as e:
            logger.warning("Skipping %s: %s", sha, e)
            snapshots.append({"sha": sha, "error": f"POSITIONS_MISSING: {e}"})
            continue

        if position and position.get("marketValue"):
            snapshot = {"timestamp": timestamp, "marketValue": position["marketValue"]}
            # absent costBasis stays absent
            if "costBasis" in position:
                snapshot["costBasis"] = position["costBasis"]
            snapshots.append(snapshot)

    return snapshots


def build_report(config: Config, snapshots, now=None) -> dict:
    now = now or datetime.now(timezone.utc)
    last_updated = now.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return {
        "submodule": config.submodule_dir,
        "file": config.target_json_path,
        "symbol": config.symbol,
        "lastUpdated": last_updated.replace("+00:00", "Z"),
        "count": len(snapshots),
        config.history_key: snapshots,
    }


def write_report(report: dict, output_path: str, cwd=None) -> Path:
    output = (Path(cwd or os.getcwd()) / output_path).resolve()
    output.parent.mkdir(parents=True, exist_ok=True)

    with open(output, "w", encoding="utf-8") as f:
        json.dump(report, f, indent=2, allow_nan=False)
    return output


def main():
    load_dotenv(find_dotenv(usecwd=True))
    logging.basicConfig(
        level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        config = load_config()
        repo = open_repository(config)
    except (ConfigError, RepositoryError) as e:
        logger.error(str(e))
        sys.exit(1)

    snapshots = extract_history(repo, config)
    report = build_report(config, snapshots)
    write_report(report, config.output_path)

    print(f"Wrote {report['count']} snapshots to {config.output_path}")


if __name__ == "__main__":
    main()
