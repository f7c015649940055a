"""Tests for GitRepository fetch, clone and push."""

from pathlib import Path

import pytest
from git import Repo

from git_commit.git import (
    CloneError,
    GitRepository,
    InvalidRefError,
    PushError,
    RemoteError,
    RepositoryNotFoundError,
    TransportError,
    directory_from_url,
)
from git_commit.settings import NegotiationEnvironment

from conftest import commit_file

ENVIRONMENT = NegotiationEnvironment(local_username="alice")


class TestGitRepository:
    """Tests for opening and inspecting repositories."""

    def test_init_repository(self, tmp_path):
        repo = GitRepository.init(tmp_path / "new")
        assert repo.path == (tmp_path / "new").resolve()
        assert (tmp_path / "new" / ".git").exists()

    def test_open_nonexistent_repo(self):
        with pytest.raises(RepositoryNotFoundError):
            GitRepository("/nonexistent/path")

    def test_open_non_repo_directory(self, tmp_path):
        with pytest.raises(RepositoryNotFoundError):
            GitRepository(tmp_path)

    def test_remote_url(self, source_repo):
        source_repo.create_remote("origin", "https://example.com/repo.git")
        repo = GitRepository(source_repo.working_tree_dir)
        assert repo.remote_url("origin") == "https://example.com/repo.git"

    def test_missing_remote(self, source_repo):
        repo = GitRepository(source_repo.working_tree_dir)
        with pytest.raises(RemoteError, match="No such remote"):
            repo.remote_url("origin")

    def test_remote_without_url(self, source_repo):
        with source_repo.config_writer() as writer:
            writer.set_value('remote "broken"', "fetch", "+refs/heads/*:refs/remotes/broken/*")

        repo = GitRepository(source_repo.working_tree_dir)
        with pytest.raises(RemoteError, match="has no URL"):
            repo.remote_url("broken")

    def test_resolve_refnames(self, source_repo):
        branch = source_repo.active_branch.name
        repo = GitRepository(source_repo.working_tree_dir)

        assert repo.resolve_refnames([branch, "v1.0"]) == [
            f"refs/heads/{branch}",
            "refs/tags/v1.0",
        ]
        with pytest.raises(InvalidRefError):
            repo.resolve_refnames(["no-such-branch"])

    def test_tags_win_over_branches(self, source_repo):
        source_repo.create_head("release")
        source_repo.create_tag("release")
        repo = GitRepository(source_repo.working_tree_dir)

        assert repo.resolve_refnames(["release"]) == ["refs/tags/release"]


class TestDirectoryFromUrl:
    """Tests for directory_from_url."""

    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://github.com/user/repo.git", "repo"),
            ("https://github.com/user/repo", "repo"),
            ("https://github.com/user/repo/", "repo"),
            ("git@github.com:user/repo.git", "repo"),
            ("ssh://git@example.com:2222/srv/project.git", "project"),
            ("/srv/git/project.git", "project"),
        ],
    )
    def test_derive(self, url, expected):
        assert directory_from_url(url) == expected

    @pytest.mark.parametrize("url", ["https://github.com", "https://github.com/"])
    def test_no_path(self, url):
        with pytest.raises(CloneError):
            directory_from_url(url)


class TestFetch:
    """Tests for GitRepository.fetch."""

    def test_fetch_branches_and_tags(self, source_repo, tmp_path):
        repo = GitRepository.init(tmp_path / "work", environment=ENVIRONMENT)
        repo.fetch(source_repo.working_tree_dir)

        work = Repo(repo.path)
        branch = source_repo.active_branch.name
        assert work.heads[branch].commit.hexsha == source_repo.head.commit.hexsha
        assert "v1.0" in [tag.name for tag in work.tags]
        # Nothing is checked out
        assert not (repo.path / "README.md").exists()

    def test_fetch_into_remote_tracking_refs(self, source_repo, tmp_path):
        repo = GitRepository.init(tmp_path / "work", environment=ENVIRONMENT)
        repo.fetch(source_repo.working_tree_dir, "+refs/heads/*:refs/remotes/upstream/*")

        branch = source_repo.active_branch.name
        work = Repo(repo.path)
        assert work.heads == []
        assert work.refs[f"upstream/{branch}"].commit.hexsha == source_repo.head.commit.hexsha

    def test_invalid_refspec(self, source_repo, tmp_path):
        repo = GitRepository.init(tmp_path / "work", environment=ENVIRONMENT)
        with pytest.raises(InvalidRefError):
            repo.fetch(source_repo.working_tree_dir, "refs/heads/*:refs/heads/main")


class TestClone:
    """Tests for GitRepository.clone."""

    def test_clone(self, source_repo, tmp_path):
        source = source_repo.working_tree_dir
        repo = GitRepository.clone(source, tmp_path / "copy", environment=ENVIRONMENT)

        clone = Repo(repo.path)
        assert (repo.path / "README.md").read_text() == "# Test Repository\n"
        assert clone.active_branch.name == source_repo.active_branch.name
        assert clone.head.commit.hexsha == source_repo.head.commit.hexsha
        assert clone.remotes.origin.url == source
        assert "v1.0" in [tag.name for tag in clone.tags]
        assert not clone.is_dirty()

    def test_clone_all_branches(self, source_repo, tmp_path):
        source_repo.create_head("feature")
        repo = GitRepository.clone(
            source_repo.working_tree_dir, tmp_path / "copy", environment=ENVIRONMENT
        )
        assert "feature" in [head.name for head in Repo(repo.path).heads]

    def test_clone_default_directory(self, source_repo, tmp_path, monkeypatch):
        (tmp_path / "elsewhere").mkdir()
        monkeypatch.chdir(tmp_path / "elsewhere")

        repo = GitRepository.clone(str(tmp_path / "source"), environment=ENVIRONMENT)
        assert repo.path == (tmp_path / "elsewhere" / "source").resolve()

    def test_clone_existing_target(self, source_repo, tmp_path):
        target = tmp_path / "copy"
        target.mkdir()

        with pytest.raises(CloneError, match="already exists"):
            GitRepository.clone(source_repo.working_tree_dir, target, environment=ENVIRONMENT)

    def test_failed_clone_removes_target(self, tmp_path):
        target = tmp_path / "copy"

        with pytest.raises(TransportError):
            GitRepository.clone(str(tmp_path / "missing"), target, environment=ENVIRONMENT)
        assert not target.exists()


class TestPush:
    """Tests for GitRepository.push."""

    @pytest.fixture
    def remote(self, source_repo, tmp_path):
        bare = Repo.init(tmp_path / "remote.git", bare=True)
        source_repo.create_remote("origin", str(tmp_path / "remote.git"))
        yield bare
        bare.close()

    @pytest.fixture
    def repo(self, source_repo, remote):
        return GitRepository(source_repo.working_tree_dir, environment=ENVIRONMENT)

    def test_push_branch_and_tag(self, source_repo, remote, repo):
        branch = source_repo.active_branch.name
        repo.push("origin", [branch, "v1.0"])

        assert remote.heads[branch].commit.hexsha == source_repo.head.commit.hexsha
        assert remote.tags["v1.0"].commit.hexsha == source_repo.head.commit.hexsha

    def test_push_fast_forward(self, source_repo, remote, repo):
        branch = source_repo.active_branch.name
        repo.push("origin", [branch])
        second = commit_file(source_repo, "NEWS.md", "news\n", "Second commit")

        repo.push("origin", [branch])
        assert remote.heads[branch].commit.hexsha == second.hexsha

    def test_push_non_fast_forward(self, source_repo, remote, repo):
        branch = source_repo.active_branch.name
        repo.push("origin", [branch])
        pushed = source_repo.head.commit.hexsha
        rewritten = commit_file(source_repo, "README.md", "# Rewritten\n", "Rewrite", parent_commits=[])

        with pytest.raises(PushError) as exc_info:
            repo.push("origin", [branch])
        assert exc_info.value.rejected == {f"refs/heads/{branch}": "non-fast-forward"}
        assert remote.heads[branch].commit.hexsha == pushed

        repo.push("origin", [branch], force=True)
        assert remote.heads[branch].commit.hexsha == rewritten.hexsha

    def test_push_unknown_name(self, repo):
        with pytest.raises(InvalidRefError):
            repo.push("origin", ["no-such-branch"])

    def test_push_missing_remote(self, repo):
        with pytest.raises(RemoteError):
            repo.push("upstream", ["v1.0"])

    def test_push_then_clone(self, source_repo, remote, repo, tmp_path):
        branch = source_repo.active_branch.name
        repo.push("origin", [branch])

        clone = GitRepository.clone(str(tmp_path / "remote.git"), tmp_path / "clone", environment=ENVIRONMENT)
        assert Path(clone.path / "README.md").exists()
