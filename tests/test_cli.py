"""Tests for the typer CLI."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from typer.testing import CliRunner

from autopilot.cli import app
from autopilot.db.models import Action, AutomationRule, Pattern

runner = CliRunner()


def _rule(name: str = "Retry", **kwargs) -> AutomationRule:
    return AutomationRule(
        name=name,
        patterns=[Pattern(value="retry?")],
        actions=[Action(type="send_text", value="y")],
        **kwargs,
    )


@pytest.fixture
def services():
    """Patch service wiring so commands run against mocks."""
    svc = MagicMock()
    svc.store.install_preset = AsyncMock()
    svc.store.install_pack = AsyncMock()
    svc.store.import_document = AsyncMock()
    svc.activity.clear = AsyncMock()
    with (
        patch("autopilot.cli.get_config"),
        patch("autopilot.cli.configure_logging"),
        patch("autopilot.cli.build_services", AsyncMock(return_value=svc)),
        patch("autopilot.cli.close_database", AsyncMock()) as close,
    ):
        svc.close = close
        yield svc


class TestTestPattern:
    def test_contains_match(self):
        result = runner.invoke(app, ["test-pattern", "Error: boom", "--value", "error"])
        assert result.exit_code == 0
        assert "MATCH" in result.output
        assert "@0" in result.output

    def test_regex_occurrences(self):
        result = runner.invoke(
            app, ["test-pattern", "a1 b2 c3", "-v", r"[a-z]\d", "-m", "regex"]
        )
        assert result.exit_code == 0
        assert "3 occurrences" in result.output

    def test_negated_match_is_no_match(self):
        result = runner.invoke(app, ["test-pattern", "Error", "-v", "Error", "--negate"])
        assert result.exit_code == 0
        assert "NO MATCH" in result.output

    def test_invalid_regex(self):
        result = runner.invoke(app, ["test-pattern", "x", "-v", "(", "-m", "regex"])
        assert result.exit_code == 1
        assert "Invalid regex" in result.output

    def test_unknown_mode(self):
        result = runner.invoke(app, ["test-pattern", "x", "-v", "x", "-m", "fuzzy"])
        assert result.exit_code == 1


class TestPresets:
    def test_lists_presets_and_packs(self):
        result = runner.invoke(app, ["presets"])
        assert result.exit_code == 0
        assert "Presets" in result.output
        assert "Preset packs" in result.output


class TestRules:
    def test_lists_rules(self, services):
        services.store.list_rules.return_value = [_rule()]
        services.store.is_valid.return_value = True
        result = runner.invoke(app, ["rules"])
        assert result.exit_code == 0
        assert "Retry" in result.output
        services.close.assert_awaited_once()

    def test_empty(self, services):
        services.store.list_rules.return_value = []
        result = runner.invoke(app, ["rules", "--category", "prompt"])
        assert result.exit_code == 0
        assert "No rules" in result.output
        services.store.list_rules.assert_called_once_with("prompt")


class TestInstall:
    def test_install_preset(self, services):
        services.store.install_preset.return_value = _rule("Rate Limit Recovery")
        result = runner.invoke(app, ["install-preset", "preset-rate-limit"])
        assert result.exit_code == 0
        assert "Installed" in result.output
        services.store.install_preset.assert_awaited_once_with("preset-rate-limit")

    def test_unknown_preset_exits_1(self, services):
        services.store.install_preset.side_effect = KeyError("unknown preset 'nope'")
        result = runner.invoke(app, ["install-preset", "nope"])
        assert result.exit_code == 1
        assert "Error" in result.output
        services.close.assert_awaited_once()

    def test_install_pack(self, services):
        services.store.install_pack.return_value = [_rule(), _rule()]
        result = runner.invoke(app, ["install-pack", "notification-pack"])
        assert result.exit_code == 0
        assert "2 rules" in result.output


class TestImportExport:
    def test_export_writes_file(self, services, tmp_path):
        services.store.export_json.return_value = '{"version": 1, "rules": []}'
        out = tmp_path / "rules.json"
        result = runner.invoke(app, ["export", str(out)])
        assert result.exit_code == 0
        assert out.read_text() == '{"version": 1, "rules": []}'

    def test_import_replace_by_default(self, services, tmp_path):
        doc = tmp_path / "rules.json"
        doc.write_text('{"version": 1, "rules": []}')
        services.store.import_document.return_value = [_rule()]
        result = runner.invoke(app, ["import", str(doc)])
        assert result.exit_code == 0
        assert "Imported 1 rules" in result.output
        _, kwargs = services.store.import_document.call_args
        assert kwargs["mode"] == "replace"

    def test_import_merge(self, services, tmp_path):
        doc = tmp_path / "rules.json"
        doc.write_text("{}")
        services.store.import_document.return_value = []
        result = runner.invoke(app, ["import", str(doc), "--merge"])
        assert result.exit_code == 0
        assert services.store.import_document.call_args.kwargs["mode"] == "merge"


class TestActivity:
    def test_no_activity(self, services):
        services.activity.recent.return_value = []
        result = runner.invoke(app, ["activity", "-n", "5", "-s", "agent-a"])
        assert result.exit_code == 0
        assert "No activity" in result.output
        services.activity.recent.assert_called_once_with(limit=5, session_name="agent-a")

    def test_clear(self, services):
        result = runner.invoke(app, ["activity", "--clear"])
        assert result.exit_code == 0
        services.activity.clear.assert_awaited_once()
