"""Tests for the civic-lens command-line interface."""

import json

import pytest
from click.testing import CliRunner

from lens_scorer.cli import main
from lens_scorer.config import CONFIG_ENV_VAR, reset_config


@pytest.fixture(autouse=True)
def isolated(tmp_path, monkeypatch):
    """Run every command away from any real config file."""
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.chdir(tmp_path)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def v1_responses(tmp_path):
    path = tmp_path / "v1-answers.json"
    path.write_text(json.dumps({
        "q_scope": -1,
        "q_money": -1,
        "q_depth": 2,
        "q_time": 0,
        "q_equity": 2,
        "q_systems": -1,
        "q_risk": -1,
    }), encoding="utf-8")
    return path


@pytest.fixture
def v2_responses(tmp_path):
    path = tmp_path / "v2-answers.json"
    path.write_text(json.dumps({"responses": {"v2_q_hayek": 2, "v2_q_rawls": -2}}), encoding="utf-8")
    return path


class TestGeneral:

    def test_version(self, runner):
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "civic-lens" in result.output
        assert "1.0.0" in result.output

    def test_help_lists_commands(self, runner):
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        for command in ["validate", "inspect", "profile", "score", "explain", "panel", "init-config"]:
            assert command in result.output


class TestValidateCommand:

    def test_packaged_data_is_valid(self, runner):
        result = runner.invoke(main, ["validate"])
        assert result.exit_code == 0, result.output
        assert "Lens data valid" in result.output

    def test_broken_data_dir(self, runner, tmp_path):
        (tmp_path / "data" / "lenses").mkdir(parents=True)
        (tmp_path / "data" / "lenses" / "v1.yaml").write_text("version: v1\n", encoding="utf-8")
        result = runner.invoke(main, ["validate", "--data-dir", str(tmp_path / "data")])
        assert result.exit_code == 1
        assert "invalid" in result.output


class TestInspectCommands:

    def test_inspect_lens(self, runner):
        result = runner.invoke(main, ["inspect", "v2"])
        assert result.exit_code == 0, result.output
        assert "universal-basic-income" in result.output

    def test_inspect_unknown_lens(self, runner):
        result = runner.invoke(main, ["inspect", "v9"])
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_questions_by_tier(self, runner):
        result = runner.invoke(main, ["questions", "v1", "--tier", "2"])
        assert result.exit_code == 0, result.output
        assert "q_universal" in result.output
        assert "q_scope" not in result.output


class TestProfileCommand:

    def test_json_output(self, runner, v1_responses):
        result = runner.invoke(main, ["profile", "v1", str(v1_responses), "-j"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["lens"] == "v1"
        assert data["answered"] == 7
        assert set(data["profile"]["weights"]) == {
            "population", "economic", "intensity", "duration",
            "equity", "externalities", "implementation",
        }
        assert data["match"]["archetype_id"] == "advocate"

    def test_saves_to_file(self, runner, v1_responses, tmp_path):
        out = tmp_path / "profile.json"
        result = runner.invoke(main, ["profile", "v1", str(v1_responses), "--out", str(out)])
        assert result.exit_code == 0, result.output
        assert json.loads(out.read_text(encoding="utf-8"))["lens"] == "v1"

    def test_invalid_response(self, runner, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"q_scope": 7}), encoding="utf-8")
        result = runner.invoke(main, ["profile", "v1", str(path)])
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_responses_from_another_lens(self, runner, v2_responses):
        result = runner.invoke(main, ["profile", "v1", str(v2_responses)])
        assert result.exit_code == 1


class TestScoringCommands:

    def test_score(self, runner, v1_responses):
        result = runner.invoke(main, ["score", "v1", str(v1_responses)])
        assert result.exit_code == 0, result.output
        assert "Policy ranking" in result.output

    def test_explain_json(self, runner, v2_responses):
        result = runner.invoke(main, [
            "explain", "v2", str(v2_responses), "universal-basic-income",
            "-V", "fund-lvt", "-j",
        ])
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["policy_id"] == "universal-basic-income"
        assert data["individual"]["variants"] == ["fund-lvt"]
        assert data["baseline"]["variants"] == ["fund-lvt"]
        assert len(data["divergence"]["drivers"]) == 13

    def test_explain_text(self, runner, v1_responses):
        result = runner.invoke(main, ["explain", "v1", str(v1_responses), "universal-pre-k"])
        assert result.exit_code == 0, result.output
        assert "Archetype panel" in result.output

    def test_explain_unknown_policy(self, runner, v1_responses):
        result = runner.invoke(main, ["explain", "v1", str(v1_responses), "no-such-policy"])
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_panel(self, runner):
        result = runner.invoke(main, ["panel", "v1", "social-security-cap"])
        assert result.exit_code == 0, result.output
        assert "The Balanced" in result.output
        assert "Panel drivers" in result.output


class TestInitConfigCommand:

    def test_creates_file(self, runner, tmp_path):
        out = tmp_path / "lens-config.yaml"
        result = runner.invoke(main, ["init-config", "--out", str(out)])
        assert result.exit_code == 0, result.output
        assert out.exists()

    def test_refuses_to_overwrite(self, runner, tmp_path):
        out = tmp_path / "lens-config.yaml"
        out.write_text("# mine\n", encoding="utf-8")
        result = runner.invoke(main, ["init-config", "--out", str(out)])
        assert result.exit_code == 1
        assert out.read_text(encoding="utf-8") == "# mine\n"

        result = runner.invoke(main, ["init-config", "--out", str(out), "--force"])
        assert result.exit_code == 0

    def test_config_option_is_loaded(self, runner, tmp_path, v1_responses):
        config = tmp_path / "custom.yaml"
        config.write_text("display:\n  score_range: [0, 100]\n", encoding="utf-8")
        result = runner.invoke(main, ["--config", str(config), "profile", "v1", str(v1_responses), "-j"])
        assert result.exit_code == 0, result.output
