"""Tests for fetchers and scoped workspaces."""

import io
import shutil
import subprocess
import tarfile

import httpx
import pytest
import respx
from factories import make_descriptor, write_tree

from metricatlas.config import FetcherKind, Settings
from metricatlas.core.errors import FetchError, NetworkError, RefNotFoundError
from metricatlas.fetch import (
    ArchiveFetcher,
    FetchOptions,
    GitFetcher,
    LocalFetcher,
    SourceTree,
    create_fetcher,
    scoped_workspace,
)
from metricatlas.fetch.archive import parse_github_location
from metricatlas.fetch.git import classify_git_error
from metricatlas.fetch.models import matches_any

SHA = "0123456789abcdef0123456789abcdef01234567"
API = "https://api.github.com"

git_available = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


def tarball(files: dict[str, str], top: str = "prometheus-node_exporter-0123456") -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        for rel, content in files.items():
            data = content.encode()
            info = tarfile.TarInfo(f"{top}/{rel}")
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


class TestSourceTree:
    """Tests for SourceTree and glob matching."""

    def test_matches_any(self):
        """Test a leading **/ also matches files at the root."""
        assert matches_any("metadata.yaml", ["**/metadata.yaml"])
        assert matches_any("receiver/a/metadata.yaml", ["**/metadata.yaml"])
        assert not matches_any("receiver/a/metadata.yml", ["**/metadata.yaml"])

    def test_iter_files_skips_vcs_dirs(self, tmp_path):
        """Test .git contents are never listed and order is stable."""
        write_tree(tmp_path, {"b.go": "", "a/c.go": "", ".git/config": ""})
        tree = SourceTree(tmp_path)
        assert [tree.relative(p) for p in tree.iter_files()] == ["a/c.go", "b.go"]


class TestScopedWorkspace:
    """Tests for scoped_workspace."""

    @pytest.mark.asyncio
    async def test_removed_after_use(self, tmp_path):
        """Test the workspace exists inside the block and is removed after."""
        async with scoped_workspace("node-exporter", tmp_path) as workspace:
            (workspace / "file").write_text("x")
            assert workspace.is_dir()
        assert not workspace.exists()

    @pytest.mark.asyncio
    async def test_removed_on_error(self, tmp_path):
        """Test the workspace is removed when the body raises."""
        with pytest.raises(RuntimeError):
            async with scoped_workspace("bad/name", tmp_path) as workspace:
                raise RuntimeError("boom")
        assert not workspace.exists()
        assert workspace.name.startswith("metricatlas-bad-name-")


class TestLocalFetcher:
    """Tests for LocalFetcher."""

    @pytest.mark.asyncio
    async def test_fetches_directory_in_place(self, tmp_path):
        """Test a plain directory is served with a content digest as commit."""
        source = write_tree(tmp_path / "src", {"collector/cpu.go": "package collector\n"})
        descriptor = make_descriptor(location=str(source))
        workspace = tmp_path / "ws"
        workspace.mkdir()

        result = await LocalFetcher().fetch(descriptor, FetchOptions(), workspace)

        assert result.source_name == "node-exporter"
        assert len(result.commit_hash) == 40
        assert result.tree.root == source.resolve()
        assert (source / "collector/cpu.go").exists()

    @pytest.mark.asyncio
    async def test_digest_changes_with_content(self, tmp_path):
        """Test the commit stand-in tracks file contents."""
        source = write_tree(tmp_path / "src", {"a.go": "package a\n"})
        descriptor = make_descriptor(location=f"file://{source}")
        workspace = tmp_path / "ws"
        workspace.mkdir()

        first = await LocalFetcher().fetch(descriptor, FetchOptions(), workspace)
        again = await LocalFetcher().fetch(descriptor, FetchOptions(), workspace)
        (source / "a.go").write_text("package b\n")
        changed = await LocalFetcher().fetch(descriptor, FetchOptions(), workspace)

        assert first.commit_hash == again.commit_hash
        assert changed.commit_hash != first.commit_hash

    @pytest.mark.asyncio
    async def test_missing_directory(self, tmp_path):
        """Test a missing directory is a fetch error."""
        descriptor = make_descriptor(location=str(tmp_path / "missing"))
        with pytest.raises(FetchError, match="does not exist"):
            await LocalFetcher().fetch(descriptor, FetchOptions(max_attempts=1), tmp_path)

    @pytest.mark.asyncio
    async def test_acquire_releases_workspace(self, tmp_path):
        """Test acquire removes its workspace on normal exit and on error."""
        source = write_tree(tmp_path / "src", {"a.go": "package a\n"})
        descriptor = make_descriptor(location=str(source))
        base = tmp_path / "ws"

        async with LocalFetcher().acquire(descriptor, FetchOptions(), base) as result:
            assert result.tree.root == source.resolve()
            assert len(list(base.iterdir())) == 1
        assert list(base.iterdir()) == []

        with pytest.raises(RuntimeError):
            async with LocalFetcher().acquire(descriptor, FetchOptions(), base):
                raise RuntimeError("extractor crashed")
        assert list(base.iterdir()) == []


class TestGitFetcher:
    """Tests for GitFetcher."""

    def test_classify_errors(self):
        """Test git stderr is mapped onto the failure taxonomy."""
        assert isinstance(
            classify_git_error("fatal: couldn't find remote ref nope", "s"), RefNotFoundError
        )
        assert isinstance(
            classify_git_error("fatal: unable to access 'https://x/': Could not resolve host: x", "s"),
            NetworkError,
        )
        assert type(classify_git_error("fatal: something else", "s")) is FetchError

    @git_available
    @pytest.mark.asyncio
    async def test_fetches_local_repository(self, tmp_path):
        """Test a ref is fetched and pinned to its commit."""
        upstream = write_tree(tmp_path / "upstream", {"metadata.yaml": "type: demo\n"})
        git = ["git", "-c", "user.name=test", "-c", "user.email=test@example.com", "-c", "init.defaultBranch=main"]
        subprocess.run([*git, "init", "--quiet"], cwd=upstream, check=True)
        subprocess.run([*git, "add", "."], cwd=upstream, check=True)
        subprocess.run([*git, "commit", "--quiet", "-m", "init"], cwd=upstream, check=True)
        head = subprocess.run(
            ["git", "rev-parse", "HEAD"], cwd=upstream, check=True, capture_output=True, text=True
        ).stdout.strip()

        descriptor = make_descriptor(location=f"file://{upstream}")
        async with scoped_workspace("upstream", tmp_path / "work") as workspace:
            result = await GitFetcher().fetch(descriptor, FetchOptions(ref="main"), workspace)
            assert result.commit_hash == head
            assert (workspace / "metadata.yaml").read_text() == "type: demo\n"

    @git_available
    @pytest.mark.asyncio
    async def test_missing_ref(self, tmp_path):
        """Test a missing branch is a non-retryable RefNotFoundError."""
        upstream = write_tree(tmp_path / "upstream", {"a.txt": "a"})
        git = ["git", "-c", "user.name=test", "-c", "user.email=test@example.com", "-c", "init.defaultBranch=main"]
        subprocess.run([*git, "init", "--quiet"], cwd=upstream, check=True)
        subprocess.run([*git, "add", "."], cwd=upstream, check=True)
        subprocess.run([*git, "commit", "--quiet", "-m", "init"], cwd=upstream, check=True)

        descriptor = make_descriptor(location=f"file://{upstream}")
        async with scoped_workspace("upstream", tmp_path / "work") as workspace:
            with pytest.raises(RefNotFoundError):
                await GitFetcher().fetch(descriptor, FetchOptions(ref="does-not-exist"), workspace)


class TestArchiveFetcher:
    """Tests for ArchiveFetcher."""

    def test_parse_github_location(self):
        """Test owner and repository are read from common URL forms."""
        assert parse_github_location("https://github.com/prometheus/node_exporter") == (
            "prometheus",
            "node_exporter",
        )
        assert parse_github_location("git@github.com:kubernetes/kube-state-metrics.git") == (
            "kubernetes",
            "kube-state-metrics",
        )
        with pytest.raises(FetchError):
            parse_github_location("https://gitlab.com/a/b")

    @pytest.mark.asyncio
    @respx.mock
    async def test_downloads_and_unpacks(self, tmp_path):
        """Test the ref is resolved to a SHA and the tarball is unpacked."""
        respx.get(f"{API}/repos/prometheus/node_exporter/commits/master").mock(
            return_value=httpx.Response(200, text=SHA)
        )
        respx.get(f"{API}/repos/prometheus/node_exporter/tarball/{SHA}").mock(
            return_value=httpx.Response(200, content=tarball({"collector/cpu.go": "package collector\n"}))
        )

        result = await ArchiveFetcher(api_url=API).fetch(make_descriptor(), FetchOptions(ref="master"), tmp_path)

        assert result.commit_hash == SHA
        assert result.ref == "master"
        assert [result.tree.relative(p) for p in result.tree.iter_files()] == ["collector/cpu.go"]
        assert not (tmp_path / "source.tar.gz").exists()

    @pytest.mark.asyncio
    @respx.mock
    async def test_missing_ref_is_not_retried(self, tmp_path):
        """Test a 404 raises RefNotFoundError after one attempt."""
        route = respx.get(f"{API}/repos/prometheus/node_exporter/commits/nope").mock(
            return_value=httpx.Response(404, json={"message": "No commit found"})
        )

        with pytest.raises(RefNotFoundError):
            await ArchiveFetcher(api_url=API).fetch(
                make_descriptor(), FetchOptions(ref="nope", max_attempts=3, backoff_seconds=0), tmp_path
            )
        assert route.call_count == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_server_errors_are_retried(self, tmp_path):
        """Test 5xx responses are retried with backoff until success."""
        route = respx.get(f"{API}/repos/prometheus/node_exporter/commits/main")
        route.side_effect = [httpx.Response(503), httpx.Response(200, text=SHA)]
        respx.get(f"{API}/repos/prometheus/node_exporter/tarball/{SHA}").mock(
            return_value=httpx.Response(200, content=tarball({"a.go": "package a\n"}))
        )

        result = await ArchiveFetcher(api_url=API).fetch(
            make_descriptor(), FetchOptions(max_attempts=3, backoff_seconds=0), tmp_path
        )
        assert result.commit_hash == SHA
        assert route.call_count == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_retries_exhausted(self, tmp_path):
        """Test persistent network errors surface after max_attempts."""
        route = respx.get(f"{API}/repos/prometheus/node_exporter/commits/main").mock(
            side_effect=httpx.ConnectError("connection refused")
        )

        with pytest.raises(NetworkError):
            await ArchiveFetcher(api_url=API).fetch(
                make_descriptor(), FetchOptions(max_attempts=2, backoff_seconds=0), tmp_path
            )
        assert route.call_count == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_token_is_sent(self, tmp_path):
        """Test a configured token is sent as a bearer credential."""
        route = respx.get(f"{API}/repos/prometheus/node_exporter/commits/main").mock(
            return_value=httpx.Response(404)
        )
        with pytest.raises(RefNotFoundError):
            await ArchiveFetcher(api_url=API, token="secret").fetch(
                make_descriptor(), FetchOptions(max_attempts=1), tmp_path
            )
        assert route.calls.last.request.headers["Authorization"] == "Bearer secret"


class TestCreateFetcher:
    """Tests for create_fetcher."""

    def test_kinds(self):
        """Test each fetcher kind builds its fetcher."""
        settings = Settings()
        assert isinstance(create_fetcher(FetcherKind.GIT, settings), GitFetcher)
        assert isinstance(create_fetcher(FetcherKind.ARCHIVE, settings), ArchiveFetcher)
        assert isinstance(create_fetcher(FetcherKind.LOCAL, settings), LocalFetcher)
