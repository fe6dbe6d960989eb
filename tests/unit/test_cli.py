"""
Tests for the CLI module.
"""

from pathlib import Path
from typing import Generator, List
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from pkgsnap.backend.pkgng import PkgngDatabase, PkgngResolver
from pkgsnap.cli import app, build_backend
from pkgsnap.config import PkgsnapConfig
from pkgsnap.errors import AccessDeniedError


@pytest.fixture
def runner() -> CliRunner:
    """Fixture to create a CLI runner."""
    return CliRunner()


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """Fixture to create a config file pointing at temporary directories."""
    cache = tmp_path / "cache"
    cache.mkdir()
    (cache / "foo-1.0.pkg").write_text("staged")
    path = tmp_path / "config.yaml"
    path.write_text(f"db_dir: {tmp_path / 'db'}\ncache_dir: {cache}\n")
    return path


@pytest.fixture
def backend(fake_db, fake_resolver) -> Generator[MagicMock, None, None]:
    """Fixture to replace the pkg backend with the in-memory fakes."""
    with patch("pkgsnap.cli.build_backend") as mock_build:
        mock_build.return_value = (fake_db, fake_resolver)
        yield mock_build


def invoke(runner: CliRunner, config_file: Path, args: List[str], **kwargs):  # type: ignore[no-untyped-def]
    return runner.invoke(app, ["--config", str(config_file)] + args, **kwargs)


def write_manifest(tmp_path: Path, content: str = '["foo-1.0","bar-2.3"]') -> Path:
    path = tmp_path / "packages.json"
    path.write_text(content)
    return path


def test_version(runner: CliRunner) -> None:
    """Test the version command."""
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert "pkgsnap version" in result.stdout


def test_dump_to_file(
    runner: CliRunner, config_file: Path, backend: MagicMock, fake_db, tmp_path: Path
) -> None:
    fake_db.installed = {"foo": "1.0", "bar": "2.3"}
    out = tmp_path / "out.json"
    result = invoke(runner, config_file, ["dump", "-f", str(out)])
    assert result.exit_code == 0
    assert out.read_text() == '["foo-1.0","bar-2.3"]\n'


def test_dump_empty_database_to_stdout(
    runner: CliRunner, config_file: Path, backend: MagicMock
) -> None:
    result = invoke(runner, config_file, ["dump"])
    assert result.exit_code == 0
    assert "[]" in result.stdout


def test_dump_access_denied_exits_non_zero(
    runner: CliRunner, config_file: Path, backend: MagicMock, fake_db, tmp_path: Path
) -> None:
    fake_db.access_error = AccessDeniedError("Insufficient privileges")
    result = invoke(runner, config_file, ["dump", "-f", str(tmp_path / "o.json")])
    assert result.exit_code == 1


def test_restore_requires_input(runner: CliRunner, config_file: Path) -> None:
    result = invoke(runner, config_file, ["restore"])
    assert result.exit_code == 2


def test_restore_up_to_date(
    runner: CliRunner,
    config_file: Path,
    backend: MagicMock,
    fake_db,
    fake_resolver,
    tmp_path: Path,
) -> None:
    fake_db.installed = {"foo": "1.0", "bar": "2.3"}
    fake_resolver.available = {"foo-1.0", "bar-2.3"}
    manifest = write_manifest(tmp_path)

    result = invoke(runner, config_file, ["restore", "-f", str(manifest)])

    assert result.exit_code == 0
    assert "already installed" in result.stdout
    assert "Proceed" not in result.stdout


def test_restore_with_confirmation(
    runner: CliRunner,
    config_file: Path,
    backend: MagicMock,
    fake_db,
    fake_resolver,
    tmp_path: Path,
) -> None:
    fake_resolver.available = {"foo-1.0", "bar-2.3"}
    manifest = write_manifest(tmp_path)

    result = invoke(runner, config_file, ["restore", "-f", str(manifest)], input="y\n")

    assert result.exit_code == 0
    assert "2 package(s) will be affected" in result.stdout
    assert fake_db.installed == {"foo": "1.0", "bar": "2.3"}
    # Cache cleaned after a real restore
    assert list((tmp_path / "cache").iterdir()) == []


def test_restore_declined(
    runner: CliRunner,
    config_file: Path,
    backend: MagicMock,
    fake_db,
    fake_resolver,
    tmp_path: Path,
) -> None:
    fake_resolver.available = {"foo-1.0", "bar-2.3"}
    manifest = write_manifest(tmp_path)

    result = invoke(runner, config_file, ["restore", "-f", str(manifest)], input="n\n")

    assert result.exit_code == 0
    assert "declined" in result.stdout
    assert fake_db.installed == {}
    assert (tmp_path / "cache" / "foo-1.0.pkg").exists()


def test_restore_dry_run(
    runner: CliRunner,
    config_file: Path,
    backend: MagicMock,
    fake_db,
    fake_resolver,
    tmp_path: Path,
) -> None:
    fake_resolver.available = {"foo-1.0", "bar-2.3"}
    manifest = write_manifest(tmp_path)

    result = invoke(runner, config_file, ["restore", "-f", str(manifest), "-n", "-q"])

    assert result.exit_code == 0
    assert "will be affected" in result.stdout
    assert "Dry run" in result.stdout
    assert fake_db.installed == {}


def test_restore_assume_yes(
    runner: CliRunner,
    config_file: Path,
    backend: MagicMock,
    fake_db,
    fake_resolver,
    tmp_path: Path,
) -> None:
    fake_resolver.available = {"foo-1.0", "bar-2.3"}
    manifest = write_manifest(tmp_path)

    result = invoke(runner, config_file, ["restore", "-f", str(manifest), "-q", "-y"])

    assert result.exit_code == 0
    assert fake_db.installed == {"foo": "1.0", "bar": "2.3"}


def test_restore_malformed_manifest(
    runner: CliRunner, config_file: Path, backend: MagicMock, fake_db, tmp_path: Path
) -> None:
    manifest = write_manifest(tmp_path, '{"foo": "1.0"}')

    result = invoke(runner, config_file, ["restore", "-f", str(manifest)])

    assert result.exit_code == 1
    assert fake_db.events == []


def test_restore_repository_option(
    runner: CliRunner,
    config_file: Path,
    backend: MagicMock,
    fake_db,
    fake_resolver,
    tmp_path: Path,
) -> None:
    fake_resolver.available = {"foo-1.0", "bar-2.3"}
    manifest = write_manifest(tmp_path)

    invoke(
        runner,
        config_file,
        ["restore", "-f", str(manifest), "-r", "FreeBSD", "-n"],
    )

    assert fake_db.repository == "FreeBSD"


def test_build_backend_uses_config(tmp_path: Path) -> None:
    """build_backend wires the pkg backend to the configured paths."""
    config = PkgsnapConfig(db_dir=tmp_path, cache_dir=tmp_path / "c", pkg_binary="pk")
    database, resolver = build_backend(config)
    assert isinstance(database, PkgngDatabase)
    assert isinstance(resolver, PkgngResolver)
    assert resolver.database is database
    assert database.db_dir == tmp_path
    assert database.binary_path == "pk"
