"""Tests for the fetch-swarm CLI."""

from collections.abc import Generator

import httpx
import pytest
from typer.testing import CliRunner

from fetch_swarm import __version__
from fetch_swarm.cli.app import app
from fetch_swarm.logging import reset_logging
from fetch_swarm.transport import HttpxTransport

runner = CliRunner()


def handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/down":
        raise httpx.ConnectError("connection refused", request=request)
    if request.url.path == "/missing":
        return httpx.Response(404)
    return httpx.Response(200, text="ok")


@pytest.fixture(autouse=True)
def _reset_logging_state() -> Generator[None, None, None]:
    """The CLI callback configures logging against the runner's streams."""
    yield
    reset_logging()


@pytest.fixture
def mock_http(monkeypatch) -> list[str]:
    """Route the CLI's transport through httpx.MockTransport.

    Returns the list of requested URLs.
    """
    requested: list[str] = []

    def recording_handler(request: httpx.Request) -> httpx.Response:
        requested.append(str(request.url))
        return handler(request)

    def make_transport() -> HttpxTransport:
        client = httpx.AsyncClient(transport=httpx.MockTransport(recording_handler))
        return HttpxTransport(client)

    monkeypatch.setattr("fetch_swarm.cli.app.HttpxTransport", make_transport)
    return requested


class TestGlobalFlags:
    """Tests for global CLI flags (--verbose, --quiet, --version)."""

    def test_global_help_shows_verbose_flag(self):
        """Main help text shows --verbose and -v flags."""
        result = runner.invoke(app, ["--help"])
        assert "-v" in result.stdout
        assert "--verbose" in result.stdout

    def test_global_help_shows_quiet_flag(self):
        """Main help text shows --quiet and -q flags."""
        result = runner.invoke(app, ["--help"])
        assert "-q" in result.stdout
        assert "--quiet" in result.stdout

    def test_version(self):
        """--version prints the package version."""
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"fetch-swarm version {__version__}" in result.stdout


class TestFetchCommand:
    """Tests for the 'fetch' command."""

    def test_command_exists(self):
        """Verify fetch command is registered."""
        result = runner.invoke(app, ["fetch", "--help"])
        assert result.exit_code == 0
        assert "--concurrency" in result.stdout
        assert "--ordered" in result.stdout

    def test_help_lists_every_shared_option(self):
        """Every option alias from cli.common is wired into fetch."""
        result = runner.invoke(app, ["fetch", "--help"])

        assert result.exit_code == 0
        for flag in ["--input", "--concurrency", "--min-ms", "--timeout-ms", "--retry", "--ordered"]:
            assert flag in result.stdout

    def test_requires_urls(self):
        """Without URLs or an input file the command fails."""
        result = runner.invoke(app, ["fetch"])
        assert result.exit_code == 1
        assert "Give at least one URL" in result.stdout

    def test_fetch_urls(self, mock_http):
        """Each URL is fetched and reported."""
        result = runner.invoke(
            app,
            ["-q", "fetch", "--min-ms", "0", "http://t.test/a", "http://t.test/b"],
        )

        assert result.exit_code == 0
        assert sorted(mock_http) == ["http://t.test/a", "http://t.test/b"]
        assert "http://t.test/a" in result.stdout
        assert "Done: 2 succeeded, 0 failed" in result.stdout

    def test_error_status_is_not_a_failure(self, mock_http):
        """HTTP error statuses are printed but exit 0."""
        result = runner.invoke(app, ["-q", "fetch", "--min-ms", "0", "http://t.test/missing"])

        assert result.exit_code == 0
        assert "404" in result.stdout
        assert "Done: 1 succeeded, 0 failed" in result.stdout

    def test_transport_failure_exits_1(self, mock_http):
        """A transport failure is reported and sets exit code 1."""
        result = runner.invoke(
            app,
            ["-q", "fetch", "--min-ms", "0", "--retry", "1", "http://t.test/down"],
        )

        assert result.exit_code == 1
        assert "ERR" in result.stdout
        assert "Done: 0 succeeded, 1 failed" in result.stdout
        assert mock_http == ["http://t.test/down", "http://t.test/down"]

    def test_invalid_option(self, mock_http):
        """Out-of-range options are reported as a fetch failure."""
        result = runner.invoke(app, ["-q", "fetch", "--concurrency", "0", "http://t.test/a"])

        assert result.exit_code == 1
        assert "Fetch failed" in result.stdout
        assert mock_http == []

    def test_ordered_output(self, mock_http):
        """--ordered prints results in input order."""
        urls = [f"http://t.test/p{n}" for n in range(4)]
        result = runner.invoke(
            app, ["-q", "fetch", "--min-ms", "0", "-c", "4", "--ordered", *urls]
        )

        assert result.exit_code == 0
        positions = [result.stdout.index(url) for url in urls]
        assert positions == sorted(positions)

    def test_input_file(self, mock_http, tmp_path):
        """URLs are read from --input, skipping comments and blank lines."""
        url_file = tmp_path / "urls.txt"
        url_file.write_text(
            "# seed pages\nhttp://t.test/one\n\nhttp://t.test/two  # second\n",
            encoding="utf-8",
        )

        result = runner.invoke(
            app, ["-q", "fetch", "--min-ms", "0", "--input", str(url_file)]
        )

        assert result.exit_code == 0
        assert sorted(mock_http) == ["http://t.test/one", "http://t.test/two"]
        assert "Done: 2 succeeded, 0 failed" in result.stdout

    def test_input_file_must_exist(self, tmp_path):
        """A missing input file is rejected before fetching."""
        result = runner.invoke(app, ["fetch", "--input", str(tmp_path / "nope.txt")])

        assert result.exit_code != 0
