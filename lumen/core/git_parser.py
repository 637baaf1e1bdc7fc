"""Git repository access for gathering prompt context."""

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from typing import List, Optional, Tuple

from git import BadName, GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo

from lumen.errors import GitError

logger = logging.getLogger(__name__)

# Lock files add noise and tokens without telling the model anything useful
DIFF_EXCLUSIONS = [
    "--",
    ".",
    ":(exclude)package-lock.json",
    ":(exclude)yarn.lock",
    ":(exclude)pnpm-lock.yaml",
    ":(exclude)Cargo.lock",
    ":(exclude)poetry.lock",
    ":(exclude)uv.lock",
]

FZF_LOG_COMMAND = (
    "git log --color=always --format='%C(auto)%h%d %s %C(black)%C(bold)%cr' "
    "| fzf --ansi --reverse --bind='enter:become(echo {1})' --wrap"
)


@dataclass
class CommitInfo:
    """Structured information about a git commit."""

    hash: str
    short_hash: str
    message: str
    author: str
    email: str
    date: str
    diff: str

    def details(self) -> str:
        """Header shown to the user and included in the explain prompt."""
        return (
            f"`commit {self.hash}` | {self.author} <{self.email}> | {self.date}\n\n"
            f"{self.message}"
        )


@dataclass(frozen=True)
class CommitReference:
    """A single commit (``sha``) or a range (``a..b`` / ``a...b``)."""

    from_ref: str
    to_ref: Optional[str] = None
    triple_dot: bool = False

    @property
    def is_range(self) -> bool:
        return self.to_ref is not None

    @classmethod
    def parse(cls, value: str) -> "CommitReference":
        """
        Parse a reference string. An empty side of a range means ``HEAD``.

        Raises:
            ValueError: If the reference is empty
        """
        if not value or not value.strip():
            raise ValueError("empty reference string")
        value = value.strip()

        for separator, triple_dot in (("...", True), ("..", False)):
            if separator in value:
                from_ref, to_ref = value.split(separator, 1)
                return cls(from_ref or "HEAD", to_ref or "HEAD", triple_dot)
        return cls(value)

    def __str__(self) -> str:
        if not self.is_range:
            return self.from_ref
        separator = "..." if self.triple_dot else ".."
        return f"{self.from_ref}{separator}{self.to_ref}"


def find_project_root(path: Optional[str] = None) -> Optional[str]:
    """Return the git toplevel containing ``path``, or None outside a repository."""
    try:
        repo = Repo(path or os.getcwd(), search_parent_directories=True)
    except (InvalidGitRepositoryError, NoSuchPathError):
        return None
    return repo.working_tree_dir


class GitParser:
    """Read diffs, commits and logs from a git repository."""

    def __init__(self, repo_path: Optional[str] = None):
        """
        Initialize GitParser.

        Args:
            repo_path: Path to git repository. If None, uses current directory.

        Raises:
            GitError: If path is not a git repository.
        """
        self.repo_path = repo_path or os.getcwd()
        try:
            self.repo = Repo(self.repo_path, search_parent_directories=True)
        except (InvalidGitRepositoryError, NoSuchPathError) as exc:
            raise GitError(
                f"'{self.repo_path}' is not a git repository. "
                "Please run this command from within a git repository."
            ) from exc

    @property
    def project_root(self) -> Optional[str]:
        return self.repo.working_tree_dir

    def _git(self, *args: str) -> str:
        try:
            return self.repo.git.execute(["git", *args])
        except GitCommandError as exc:
            stderr = (exc.stderr or "").strip() or str(exc)
            raise GitError(f"git {args[0]} failed: {stderr}") from exc

    def _resolve(self, ref: str):
        try:
            return self.repo.commit(ref)
        except (BadName, ValueError) as exc:
            raise GitError(
                f"Invalid commit reference: '{ref}'. "
                "Please provide a valid commit hash, branch, or tag."
            ) from exc

    def get_diff_text(self, staged: bool = False) -> str:
        """
        Get the working tree diff.

        Args:
            staged: Only include staged changes

        Returns:
            Diff text

        Raises:
            GitError: If there is nothing to diff
        """
        args = ["diff", "--cached"] if staged else ["diff"]
        diff_text = self._git(*args, *DIFF_EXCLUSIONS)
        if not diff_text.strip():
            raise GitError(f"diff{' (staged)' if staged else ''} is empty")
        return diff_text

    def get_commit(self, commit_ref: str) -> CommitInfo:
        """
        Get a specific commit by reference (hash, tag, branch).

        Raises:
            GitError: If commit reference is invalid.
        """
        commit = self._resolve(commit_ref)
        diff_text = self._git("show", "--format=", "--patch", commit.hexsha, *DIFF_EXCLUSIONS)
        return CommitInfo(
            hash=commit.hexsha,
            short_hash=commit.hexsha[:7],
            message=commit.message.strip(),
            author=commit.author.name or "",
            email=commit.author.email or "",
            date=commit.committed_datetime.strftime("%Y-%m-%d %H:%M:%S %z"),
            diff=diff_text,
        )

    def get_range_diff(self, from_ref: str, to_ref: str, triple_dot: bool = False) -> str:
        """
        Get the diff between two commits.

        With ``triple_dot`` the diff starts at the merge base of both refs,
        like ``git diff a...b``.
        """
        start = self._resolve(from_ref)
        end = self._resolve(to_ref)

        if triple_dot:
            bases = self.repo.merge_base(start, end)
            if not bases:
                raise GitError(f"'{from_ref}' and '{to_ref}' have no common ancestor")
            start = bases[0]

        diff_text = self._git("diff", start.hexsha, end.hexsha, *DIFF_EXCLUSIONS)
        if not diff_text.strip():
            raise GitError(f"diff between '{from_ref}' and '{to_ref}' is empty")
        return diff_text

    def get_log_range(self, from_ref: str, to_ref: str) -> List[Tuple[str, str]]:
        """
        List the commits in ``from_ref..to_ref``, newest first.

        Returns:
            List of (hash, subject) tuples
        """
        self._resolve(from_ref)
        self._resolve(to_ref)
        return [
            (commit.hexsha, commit.summary)
            for commit in self.repo.iter_commits(f"{from_ref}..{to_ref}")
        ]


def pick_commit_with_fzf() -> str:
    """
    Let the user pick a commit from ``git log`` with fzf.

    Returns:
        The selected short hash

    Raises:
        GitError: If fzf is missing or the selection is aborted
    """
    if shutil.which("fzf") is None:
        raise GitError("`list` command requires fzf (https://github.com/junegunn/fzf)")

    result = subprocess.run(
        FZF_LOG_COMMAND, shell=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True
    )
    sha = result.stdout.strip()
    if result.returncode != 0 or not sha:
        stderr = result.stderr.strip()
        raise GitError(stderr or "no commit selected")
    logger.debug("Selected commit %s", sha)
    return sha
