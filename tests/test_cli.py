"""Integration tests for CLI commands."""

import json
import os

from typer.testing import CliRunner

from contextpack_cli import __version__
from contextpack_cli.bundle_writer import load_bundles, load_index
from contextpack_cli.cli import app
from contextpack_cli.watch_status import append_watch_log, new_status, read_watch_status, write_watch_status


runner = CliRunner()


class TestPackCommand:
    """Tests for 'ctxpack pack'."""

    def test_pack_to_stdout(self, chain_project):
        result = runner.invoke(app, ["pack", "src/A.tsx", "--root", str(chain_project.root), "--depth", "2"])

        assert result.exit_code == 0, result.output
        payload = json.loads(result.stdout)
        assert payload["type"] == "ContextBundle"
        assert [n["entryId"] for n in payload["graph"]["nodes"]] == ["src/A.tsx", "src/B.tsx", "src/C.tsx"]
        assert payload["meta"]["missing"][0]["version"] == "^1.3.0"

    def test_pack_to_file(self, chain_project, temp_dir):
        out = temp_dir / "bundles" / "a.json"
        result = runner.invoke(app, ["pack", "A", "--root", str(chain_project.root), "--out", str(out)])

        assert result.exit_code == 0, result.output
        assert json.loads(out.read_text())["entryId"] == "src/A.tsx"
        assert "2 nodes" in result.stdout

    def test_unknown_entry(self, chain_project):
        result = runner.invoke(app, ["pack", "Sidebar", "--root", str(chain_project.root)])

        assert result.exit_code == 1
        assert "Component not found" in result.stdout

    def test_stale_source_with_hash_lock(self, chain_project):
        path = chain_project.root / "src/A.tsx"
        path.write_text(path.read_text() + "export const x = 1;\n")
        result = runner.invoke(app, ["pack", "src/A.tsx", "--root", str(chain_project.root), "--hash-lock"])
        assert result.exit_code == 1

    def test_unknown_profile(self, chain_project):
        result = runner.invoke(
            app, ["pack", "src/A.tsx", "--root", str(chain_project.root), "--profile", "turbo"],
        )
        assert result.exit_code != 0


class TestContextCommand:
    """Tests for 'ctxpack context'."""

    def test_writes_folder_files(self, chain_project, temp_dir):
        out = temp_dir / "out"
        result = runner.invoke(app, ["context", str(chain_project.root), "--out", str(out), "--depth", "2"])

        assert result.exit_code == 0, result.output
        assert (out / "src" / "context.json").exists()
        index = load_index(out)
        assert index["summary"]["totalBundles"] == 1
        assert index["summary"]["totalComponents"] == 3
        assert "left-pad" in result.stdout

    def test_reports_sources_without_contracts(self, chain_project, temp_dir):
        (chain_project.root / "src" / "Draft.tsx").write_text("export const Draft = () => null;\n")
        result = runner.invoke(app, ["context", str(chain_project.root), "--out", str(temp_dir / "out")])

        assert result.exit_code == 0, result.output
        assert "No contract: src/Draft.tsx" in result.stdout
        assert "src/A.tsx" not in result.stdout.split("No contract:", 1)[1]

    def test_strict_missing(self, chain_project, temp_dir):
        result = runner.invoke(
            app, ["context", str(chain_project.root), "--out", str(temp_dir / "out"), "--strict-missing"],
        )
        assert result.exit_code == 1
        assert "missing dependencies" in result.stdout

    def test_no_sidecars(self, temp_dir):
        result = runner.invoke(app, ["context", str(temp_dir)])
        assert result.exit_code == 1
        assert "No contract sidecars" in result.stdout


class TestManifestCommand:
    """Tests for 'ctxpack manifest'."""

    def test_table(self, chain_project):
        result = runner.invoke(app, ["manifest", str(chain_project.root)])

        assert result.exit_code == 0, result.output
        assert "src/B.tsx" in result.stdout
        assert "3 components" in result.stdout

    def test_json(self, chain_project):
        result = runner.invoke(app, ["manifest", str(chain_project.root), "--json"])

        assert result.exit_code == 0, result.output
        payload = json.loads(result.stdout)
        assert payload["roots"] == ["src/A.tsx"]
        assert payload["leaves"] == ["src/C.tsx"]


class TestCompareCommand:
    """Tests for 'ctxpack compare'."""

    def _snapshot(self, project, out):
        result = runner.invoke(app, ["context", str(project.root), "--out", str(out), "--depth", "2"])
        assert result.exit_code == 0, result.output
        return out

    def test_identical(self, chain_project, temp_dir):
        old = self._snapshot(chain_project, temp_dir / "old")
        result = runner.invoke(app, ["compare", str(old), str(old)])

        assert result.exit_code == 0
        assert "No changes" in result.stdout

    def test_breaking_change(self, chain_project, temp_dir):
        old = self._snapshot(chain_project, temp_dir / "old")
        chain_project.add("src/C.tsx", state={"open": "boolean"})
        new = self._snapshot(chain_project, temp_dir / "new")

        result = runner.invoke(app, ["compare", str(old), str(new), "--json"])

        assert result.exit_code == 1
        payload = json.loads(result.stdout)
        assert payload["changed"] == ["src/C.tsx"]
        assert [(v["severity"], v["name"]) for v in payload["violations"]] == [
            ("error", "size"), ("warning", "left-pad"),
        ]

    def test_single_files(self, chain_project, temp_dir):
        old = self._snapshot(chain_project, temp_dir / "old")
        chain_project.add("src/C.tsx", props={"size": "number", "open": "boolean"}, state={"open": "boolean"})
        new = self._snapshot(chain_project, temp_dir / "new")

        result = runner.invoke(app, ["compare", str(old / "src" / "context.json"), str(new / "src" / "context.json")])
        assert result.exit_code == 0
        assert len(load_bundles(new)) == 1


class TestWatchCommands:
    """Tests for 'ctxpack watch start' and 'ctxpack watch status'."""

    def test_second_watch_refused(self, chain_project):
        write_watch_status(chain_project.root, new_status(chain_project.root, chain_project.root))
        result = runner.invoke(app, ["watch", "start", str(chain_project.root)])

        assert result.exit_code == 1
        assert "Already watching" in result.stdout
        assert read_watch_status(chain_project.root)["pid"] == os.getpid()

    def test_status_with_running_session(self, chain_project):
        status = new_status(chain_project.root, chain_project.root, strict=True)
        status["strictWatch"] = {"errors": 1, "warnings": 2}
        write_watch_status(chain_project.root, status)
        append_watch_log(chain_project.root, {"mode": "full", "updatedBundles": ["src/A.tsx"], "removedBundles": []})
        append_watch_log(chain_project.root, {"error": "contract store unavailable"})

        result = runner.invoke(app, ["watch", "status", str(chain_project.root)])

        assert result.exit_code == 0, result.output
        assert f"pid {os.getpid()}" in result.stdout
        assert "1 errors, 2 warnings" in result.stdout
        assert "full: 1 updated, 0 removed" in result.stdout
        assert "contract store unavailable" in result.stdout

    def test_status_json_ignores_stale_session(self, chain_project):
        status = new_status(chain_project.root, chain_project.root)
        status["pid"] = -1
        write_watch_status(chain_project.root, status)
        for mode in ("full", "incremental", "incremental"):
            append_watch_log(chain_project.root, {"mode": mode})

        result = runner.invoke(app, ["watch", "status", str(chain_project.root), "--json", "--tail", "2"])

        assert result.exit_code == 0, result.output
        payload = json.loads(result.stdout)
        assert payload["status"] is None
        assert [entry["mode"] for entry in payload["log"]] == ["incremental", "incremental"]

class TestVersion:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout
