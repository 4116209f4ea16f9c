import shutil
import subprocess
import tempfile
import unittest
from pathlib import Path

from site_deployer.gitops import GitCommandError, GitRepositoryManager


def _git_available() -> bool:
    return shutil.which("git") is not None


def _run_git(args: list[str], cwd: Path) -> str:
    process = subprocess.run(
        ["git", *args],
        cwd=str(cwd),
        check=True,
        capture_output=True,
        text=True,
    )
    return process.stdout


class GitRepositoryManagerTests(unittest.TestCase):
    def setUp(self) -> None:
        if not _git_available():
            self.skipTest("git binary not found")

    def test_head_sha_and_branch_of_local_repo(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            repo = Path(tmp)
            _run_git(["init"], repo)
            _run_git(["checkout", "-b", "release"], repo)
            _run_git(["config", "user.email", "bot@example.com"], repo)
            _run_git(["config", "user.name", "Site Deployer"], repo)
            (repo / "README.md").write_text("v1", encoding="utf-8")
            _run_git(["add", "README.md"], repo)
            _run_git(["commit", "-m", "initial"], repo)
            expected = _run_git(["rev-parse", "HEAD"], repo).strip()

            manager = GitRepositoryManager()

            self.assertEqual(manager.head_sha(repo), expected)
            self.assertEqual(len(expected), 40)
            self.assertEqual(manager.current_branch(repo), "release")

    def test_non_repository_raises(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(GitCommandError) as ctx:
                GitRepositoryManager().head_sha(Path(tmp))
            self.assertNotEqual(ctx.exception.exit_code, 0)


class MissingGitBinaryTests(unittest.TestCase):
    def test_missing_binary_raises_git_command_error(self) -> None:
        manager = GitRepositoryManager(git_binary="definitely-not-git-xyz")
        with self.assertRaises(GitCommandError) as ctx:
            manager.head_sha(Path("."))
        self.assertEqual(ctx.exception.exit_code, -1)


if __name__ == "__main__":
    unittest.main()
