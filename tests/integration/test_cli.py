"""
Integration tests for the admin CLI.

Tests cover:
- Container creation and inspection
- Dumping records
- Error output and exit codes
"""

import json
import logging
import tempfile

import pytest

from versadb.tools.cli import build_parser, main


def run(capsys, *argv):
    """Run the CLI and return (exit_code, stdout, stderr)."""
    with pytest.raises(SystemExit) as exc:
        main(list(argv))
    out, err = capsys.readouterr()
    return exc.value.code, out, err


class TestAdminCLI:
    """Integration tests for the versadb command."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture(autouse=True)
    def restore_logging(self):
        """main() reconfigures the root logger; put it back afterwards."""
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers = handlers
        root.setLevel(level)

    def test_parser_requires_command(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_create_and_inspect(self, data_dir, capsys):
        code, out, _ = run(
            capsys,
            "--data-dir", data_dir,
            "create-container", "app", "users", "--index", "city", "--unique", "email",
        )
        assert code == 0
        assert json.loads(out) == "created"

        code, out, _ = run(capsys, "--data-dir", data_dir, "create-container", "app", "users")
        assert json.loads(out) == "already_exists"

        code, out, _ = run(capsys, "--data-dir", data_dir, "info", "app")
        info = json.loads(out)
        assert info["version"] == 2
        assert info["containers"] == ["users"]
        assert info["last_modified"] is not None

        code, out, _ = run(capsys, "--data-dir", data_dir, "containers", "app")
        assert json.loads(out) == ["users"]

        code, out, _ = run(capsys, "--data-dir", data_dir, "last-modified", "app")
        assert json.loads(out) == info["last_modified"]

    def test_dump(self, data_dir, capsys):
        run(capsys, "--data-dir", data_dir, "create-container", "app", "users", "--index", "email")
        code, out, _ = run(capsys, "--data-dir", data_dir, "dump", "app", "users")
        assert code == 0
        assert json.loads(out) == []

    def test_drop_container_and_database(self, data_dir, capsys):
        run(capsys, "--data-dir", data_dir, "create-container", "app", "users")

        code, out, _ = run(capsys, "--data-dir", data_dir, "drop-container", "app", "users")
        assert json.loads(out) == "deleted"
        code, out, _ = run(capsys, "--data-dir", data_dir, "drop-container", "app", "users")
        assert json.loads(out) == "absent"

        code, out, _ = run(capsys, "--data-dir", data_dir, "drop-database", "app")
        assert json.loads(out) is True

    def test_missing_database(self, data_dir, capsys):
        code, out, err = run(capsys, "--data-dir", data_dir, "info", "ghost")
        assert code == 1
        assert out == ""
        assert "Error [DATABASE_NOT_FOUND]" in err
