import json

import yaml
from click.testing import CliRunner

from lyricvision.runner import cli


def _config(tmp_path, **sections):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(sections), encoding="utf-8")
    return str(path)


def test_presets_lists_builtin_presets():
    result = CliRunner().invoke(cli, ["presets"])

    assert result.exit_code == 0
    assert "loop" in result.output


def test_unconfigured_backend_exits_with_error(tmp_path, monkeypatch):
    monkeypatch.delenv("LYRICVISION_BACKEND_URL", raising=False)
    config = _config(tmp_path, backend={"address": "https://your-tunnel-url.ngrok.io"})

    result = CliRunner().invoke(cli, ["-c", config, "check"])

    assert result.exit_code == 1
    assert "not configured" in result.output


def test_status_summarizes_the_last_render(tmp_path):
    config = _config(tmp_path, output={"base_dir": str(tmp_path / "out")})
    status_file = tmp_path / "out" / "drive" / "status.json"
    status_file.parent.mkdir(parents=True)
    status_file.write_text(json.dumps({
        "scenes": {
            "1": {"prompt": "neon", "status": "complete", "start": 0, "end": 2, "clips": 1},
            "2": {"prompt": "dawn", "status": "error", "error": "boom", "start": 2, "end": 4, "clips": 0},
        }
    }), encoding="utf-8")

    result = CliRunner().invoke(cli, ["-c", config, "status", "--scenario", "scenario/drive.yaml"])

    assert result.exit_code == 0
    assert "1/2 scenes completed" in result.output


def test_status_without_a_render(tmp_path):
    config = _config(tmp_path, output={"base_dir": str(tmp_path / "out")})

    result = CliRunner().invoke(cli, ["-c", config, "status"])

    assert result.exit_code == 0
    assert "Nothing has been rendered yet" in result.output
