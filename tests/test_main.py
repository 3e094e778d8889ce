"""
Tests for the command line entry point
"""

import argparse
import json
import logging

import pytest

import main
from e2e_orchestrator.config_loader import ConfigLoader
from e2e_orchestrator.session import HarnessSession

REAL_SETUP_LOGGING = main.setup_logging


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    monkeypatch.setattr(main, 'setup_logging', lambda session, debug=False: None)


def run(tmp_path, *argv, env=None):
    return main.main(['--artifacts-dir', str(tmp_path / 'artifacts'), *argv], env=env or {})


class TestModeInfo:
    def test_local_mode(self, tmp_path, capsys):
        assert run(tmp_path, 'mode-info') == 0
        data = json.loads(capsys.readouterr().out)
        assert data['mode'] == 'local-development'
        assert data['update_mode'] is None

    def test_ci_visual_mode(self, tmp_path, capsys):
        assert run(tmp_path, 'mode-info', env={'CI': 'true', 'TEST_MODE': 'ci-visual'}) == 0
        data = json.loads(capsys.readouterr().out)
        assert data['mode'] == 'ci-visual'
        assert data['include_tags'] == ['@visual']
        assert data['update_mode'] == 'missing'

    def test_logs_timeout_table(self, tmp_path, capsys, caplog):
        caplog.set_level(logging.INFO, logger='e2e_orchestrator.timeouts')
        assert run(tmp_path, 'mode-info', env={'CI': 'true'}) == 0
        json.loads(capsys.readouterr().out)
        assert 'Timeouts for CI run (ci-functional, x2.5):' in caplog.messages
        assert '  element_stability: 12500ms (base: 5000ms)' in caplog.messages

    def test_all_modes(self, tmp_path, capsys):
        assert run(tmp_path, 'mode-info', '--all') == 0
        modes = [m['mode'] for m in json.loads(capsys.readouterr().out)]
        assert modes == ['local-development', 'ci-functional', 'ci-visual', 'ci-full', 'ci-lightweight']


class TestEnvCommand:
    def test_shell_exports(self, tmp_path, capsys):
        assert run(tmp_path, 'env', env={'TEST_MODE': 'ci-visual'}) == 0
        lines = capsys.readouterr().out.splitlines()
        assert 'export PLAYWRIGHT_TEST_GREP=@visual' in lines
        assert 'export PLAYWRIGHT_UPDATE_SNAPSHOTS=missing' in lines

    def test_dotenv_quoting_untouched(self, tmp_path, capsys):
        assert run(tmp_path, 'env', '--format', 'dotenv', env={'TEST_MODE': 'ci-lightweight'}) == 0
        lines = capsys.readouterr().out.splitlines()
        assert 'LIGHTWEIGHT_TESTS=true' in lines
        assert 'PLAYWRIGHT_TEST_GREP_INVERT=@visual\\|@performance' in lines

    def test_shell_quotes_special_characters(self, tmp_path, capsys):
        run(tmp_path, 'env', env={'TEST_MODE': 'ci-lightweight'})
        assert "export PLAYWRIGHT_TEST_GREP_INVERT='@visual\\|@performance'" in capsys.readouterr().out


class TestValidateAndDiagnose:
    def test_validate_passes_and_creates_directories(self, tmp_path, capsys):
        assert run(tmp_path, 'validate') == 0
        data = json.loads(capsys.readouterr().out)
        assert data['success'] is True
        assert (tmp_path / 'artifacts' / 'screenshots').is_dir()

    def test_validate_fails_on_missing_ci_variable(self, tmp_path, capsys):
        config = tmp_path / 'config.yaml'
        config.write_text("validation:\n  required_ci_vars: [BASE_URL]\n")
        assert run(tmp_path, '--config', str(config), 'validate', env={'CI': 'true'}) == 1
        data = json.loads(capsys.readouterr().out)
        assert data['errors'] == ['Missing required environment variable: BASE_URL']

    def test_diagnose(self, tmp_path, capsys):
        assert run(tmp_path, 'diagnose', env={'GITHUB_ACTIONS': 'true', 'GITHUB_RUN_ID': '99'}) == 0
        data = json.loads(capsys.readouterr().out)
        assert data['mode'] == 'ci-functional'
        assert data['environment']['ci_provider'] == 'github-actions'
        assert data['artifacts_root'] == str(tmp_path / 'artifacts')


class TestBaselines:
    def test_parse_targets(self):
        assert main.parse_targets(['home=http://localhost:3000/?a=b']) == [
            {'name': 'home', 'url': 'http://localhost:3000/?a=b'}]

    @pytest.mark.parametrize("value", ['home', '=http://x', 'home='])
    def test_parse_targets_rejects(self, value):
        with pytest.raises(argparse.ArgumentTypeError):
            main.parse_targets([value])

    def test_invalid_target_exit_code(self, tmp_path):
        assert run(tmp_path, 'baselines', 'not-a-pair') == 2

    def test_dispatches_to_generator(self, tmp_path, monkeypatch):
        calls = []

        async def fake_generate(session, targets, viewports, snapshots_dir=None):
            calls.append((targets, viewports, snapshots_dir))
            return 0

        monkeypatch.setattr(main, 'generate_baselines', fake_generate)
        assert run(tmp_path, 'baselines', 'home=http://localhost:3000',
                   '--viewport', 'mobile', '--snapshots-dir', str(tmp_path / 'snaps')) == 0
        assert calls == [([{'name': 'home', 'url': 'http://localhost:3000'}], ['mobile'], str(tmp_path / 'snaps'))]

    def test_default_viewports_from_config(self, tmp_path, monkeypatch):
        calls = []

        async def fake_generate(session, targets, viewports, snapshots_dir=None):
            calls.append(viewports)
            return 0

        monkeypatch.setattr(main, 'generate_baselines', fake_generate)
        run(tmp_path, 'baselines', 'home=http://localhost:3000')
        assert calls == [['desktop']]

    def test_unknown_viewport_rejected(self, tmp_path):
        with pytest.raises(SystemExit):
            run(tmp_path, 'baselines', 'home=http://x', '--viewport', 'watch')


class TestHelpers:
    def test_browser_error_detection(self):
        assert main.is_playwright_browser_error(Exception("Executable doesn't exist at /ms-playwright"))
        assert not main.is_playwright_browser_error(Exception("net::ERR_CONNECTION_REFUSED"))

    def test_sanitize_error_message(self):
        message = "╔════╗\n║ Looks like Playwright was just installed.\nPlaywright Team ║\n╚════╝\nlaunch failed"
        assert main.sanitize_error_message(Exception(message)) == 'launch failed'

    def test_handler_exception_returns_one(self, tmp_path, monkeypatch):
        def broken(session, args):
            raise RuntimeError("boom")

        monkeypatch.setattr(main, 'cmd_diagnose', broken)
        assert run(tmp_path, 'diagnose') == 1


class TestSetupLogging:
    """Level selection, checked through the basicConfig arguments"""

    @pytest.fixture
    def captured(self, monkeypatch):
        calls = {}
        monkeypatch.setattr(logging, 'basicConfig', lambda **kwargs: calls.update(kwargs))
        return calls

    def session(self, tmp_path, env, level='INFO', log_file=None):
        settings = ConfigLoader.load_config(str(tmp_path / 'missing.yaml'), env={})
        settings['logging'] = {'level': level, 'file': log_file}
        return HarnessSession.create(env=env, settings=settings)

    def test_local_uses_configured_level(self, tmp_path, captured):
        REAL_SETUP_LOGGING(self.session(tmp_path, {}))
        assert captured['level'] == logging.INFO
        assert captured['force'] is True
        assert len(captured['handlers']) == 1
        assert isinstance(captured['handlers'][0], main.UTF8StreamHandler)

    def test_quiet_ci_mode_raises_to_warning(self, tmp_path, captured):
        REAL_SETUP_LOGGING(self.session(tmp_path, {'CI': 'true', 'TEST_MODE': 'ci-lightweight'}))
        assert captured['level'] == logging.WARNING

    def test_debug_flag_wins(self, tmp_path, captured):
        REAL_SETUP_LOGGING(self.session(tmp_path, {'CI': 'true'}), debug=True)
        assert captured['level'] == logging.DEBUG

    def test_debug_environment(self, tmp_path, captured):
        REAL_SETUP_LOGGING(self.session(tmp_path, {'DEBUG': 'true'}, level='ERROR'))
        assert captured['level'] == logging.DEBUG

    def test_log_file_handler(self, tmp_path, captured):
        REAL_SETUP_LOGGING(self.session(tmp_path, {}, log_file=str(tmp_path / 'run.log')))
        file_handler = captured['handlers'][1]
        assert isinstance(file_handler, logging.FileHandler)
        file_handler.close()
