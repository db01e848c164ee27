"""GitHub write-back for approved review sessions.

Every commit made for a session carries two trailers:

    Review-Session: <session id>
    Review-File: <file path>

Before writing, the writer scans the branch's recent history for those
trailers and reuses the SHAs of files already committed for the session.
A retried apply (after a partial failure, or a duplicate request that raced
past the store) therefore never commits the same file twice.
"""

from __future__ import annotations

import itertools
import logging
import re
from typing import Iterable, Protocol

import requests
from github import Github, GithubException, UnknownObjectException

from patchgate_core.errors import WriteBackError
from patchgate_store.models import FilePatch, TargetRepo

logger = logging.getLogger(__name__)

_SESSION_TRAILER_RE = re.compile(r"^Review-Session: ([0-9a-fA-F-]{36})$", re.MULTILINE)
_FILE_TRAILER_RE = re.compile(r"^Review-File: (.+)$", re.MULTILINE)

# Statuses that mean the request itself is wrong; retrying will not help.
_NON_RETRYABLE_STATUSES = {401, 403, 404, 422}


class VcsWriter(Protocol):
    """What the apply orchestrator needs from a version-control client."""

    def write_patches(
        self,
        target: TargetRepo,
        patches: Iterable[FilePatch],
        *,
        session_id: str,
        deletions: frozenset[str] = frozenset(),
    ) -> list[str]:
        """Write the patches and return one commit SHA per file, in path order."""


def build_commit_message(prefix: str, verb: str, file_path: str, session_id: str) -> str:
    return f"{prefix}: {verb} {file_path}\n\nReview-Session: {session_id}\nReview-File: {file_path}"


def parse_commit_trailers(message: str) -> tuple[str | None, str | None]:
    """Return (session_id, file_path) from a commit message, or Nones if absent."""
    session = _SESSION_TRAILER_RE.search(message or "")
    file_path = _FILE_TRAILER_RE.search(message or "")
    return (
        session.group(1).lower() if session else None,
        file_path.group(1).strip() if file_path else None,
    )


def find_session_commits(repo, branch: str, session_id: str, depth: int = 50) -> dict[str, str]:
    """Map file path -> commit SHA for commits on ``branch`` tagged with ``session_id``.

    Only the ``depth`` most recent commits are inspected. When a file was
    committed more than once for the session, the most recent SHA wins.
    """
    found: dict[str, str] = {}
    for commit in itertools.islice(repo.get_commits(sha=branch), depth):
        tagged_session, file_path = parse_commit_trailers(commit.commit.message)
        if tagged_session == session_id.lower() and file_path and file_path not in found:
            found[file_path] = commit.sha
    return found


def _wrap(e: Exception, context: str) -> WriteBackError:
    if isinstance(e, GithubException):
        status = e.status
        retryable = status not in _NON_RETRYABLE_STATUSES
        return WriteBackError(f"{context}: GitHub API error {status}", status=status, retryable=retryable)
    return WriteBackError(f"{context}: {type(e).__name__}: {e}", retryable=True)


class GitHubWriter:
    """Commits session patches to a GitHub branch through the Contents API.

    The Contents API makes one commit per file, so a session with N patches
    yields N commit SHAs. The token is held only for the lifetime of this
    object and is never written anywhere.
    """

    def __init__(
        self,
        token: str,
        *,
        timeout: int = 30,
        message_prefix: str = "chore(geo)",
        scan_depth: int = 50,
    ):
        self._gh = Github(token, timeout=timeout)
        self._message_prefix = message_prefix
        self._scan_depth = scan_depth

    def get_repo(self, target: TargetRepo):
        return self._gh.get_repo(target.full_name)

    def verify_write_access(self, repo) -> None:
        permissions = repo.permissions
        if not (permissions and (permissions.push or permissions.admin)):
            raise WriteBackError(
                f"Token does not have write access to {repo.full_name}", status=403, retryable=False
            )

    def write_patches(
        self,
        target: TargetRepo,
        patches: Iterable[FilePatch],
        *,
        session_id: str,
        deletions: frozenset[str] = frozenset(),
    ) -> list[str]:
        ordered = sorted(patches, key=lambda p: p.file_path)
        try:
            repo = self.get_repo(target)
            self.verify_write_access(repo)
            already = find_session_commits(repo, target.branch, session_id, self._scan_depth)
        except (GithubException, requests.RequestException) as e:
            raise _wrap(e, f"Could not prepare write-back to {target.full_name}") from e

        if already:
            logger.info("Session %s already has %d commit(s) on %s", session_id, len(already), target.branch)

        shas: list[str] = []
        for patch in ordered:
            if patch.file_path in already:
                logger.debug("Skipping %s: already committed as %s", patch.file_path, already[patch.file_path])
                shas.append(already[patch.file_path])
                continue
            try:
                sha = self._write_one(repo, target.branch, patch, session_id, patch.file_path in deletions)
            except (GithubException, requests.RequestException) as e:
                raise _wrap(e, f"Failed to write {patch.file_path}") from e
            logger.info("Committed %s to %s@%s as %s", patch.file_path, target.full_name, target.branch, sha)
            shas.append(sha)
        return shas

    def _existing_sha(self, repo, branch: str, path: str) -> str | None:
        try:
            contents = repo.get_contents(path, ref=branch)
        except UnknownObjectException:
            return None
        if isinstance(contents, list):
            raise WriteBackError(f"{path} is a directory in the target repository", status=422, retryable=False)
        return contents.sha

    def _write_one(self, repo, branch: str, patch: FilePatch, session_id: str, delete: bool) -> str:
        existing_sha = self._existing_sha(repo, branch, patch.file_path)

        if delete:
            if existing_sha is None:
                raise WriteBackError(
                    f"Cannot delete {patch.file_path}: file not found on {branch}", status=404, retryable=False
                )
            message = build_commit_message(self._message_prefix, "delete", patch.file_path, session_id)
            result = repo.delete_file(patch.file_path, message, existing_sha, branch=branch)
        elif existing_sha is None:
            message = build_commit_message(self._message_prefix, "create", patch.file_path, session_id)
            result = repo.create_file(patch.file_path, message, patch.new_content, branch=branch)
        else:
            message = build_commit_message(self._message_prefix, "update", patch.file_path, session_id)
            result = repo.update_file(patch.file_path, message, patch.new_content, existing_sha, branch=branch)

        return result["commit"].sha
