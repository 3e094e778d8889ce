"""
Tests for the pytest plugin, run through pytester
"""

import json

import pytest

from e2e_orchestrator.modes import MODE_CONFIGS, ModeResolver

PLUGIN_ARGS = ("-p", "e2e_orchestrator.pytest_plugin", "-o", "e2e_apply_env=false")

MODE_VARIABLES = sorted({
    name
    for config in MODE_CONFIGS.values()
    for name in ModeResolver.apply_environment(config, {})
})


@pytest.fixture
def clean_env(monkeypatch):
    """Local environment; every variable the plugin may export is restored afterwards"""
    for name in set(MODE_VARIABLES) | {'CI', 'GITHUB_ACTIONS', 'PLAYWRIGHT_TEST_GREP', 'DEBUG'}:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def run(pytester, tmp_path):
    artifacts = tmp_path / 'e2e-artifacts'

    def _run(*args):
        return pytester.runpytest(*PLUGIN_ARGS, "--e2e-artifacts-dir", str(artifacts), *args)

    _run.artifacts = artifacts
    return _run


MIXED_TESTS = """
import pytest

@pytest.mark.visual
def test_homepage_snapshot():
    pass

def test_login():
    pass

@pytest.mark.performance
def test_dashboard_load():
    pass
"""


class TestModeSelection:
    def test_report_header(self, clean_env, pytester, run):
        pytester.makepyfile("def test_nothing(): pass")
        result = run()
        result.stdout.fnmatch_lines(["e2e mode: local-development (retries=0, visual=on, ci=local)"])

    def test_markers_registered(self, clean_env, pytester, run):
        result = run("--markers")
        result.stdout.fnmatch_lines(["@pytest.mark.visual: visual regression test*",
                                     "@pytest.mark.slow: slow test*"])

    def test_local_runs_everything(self, clean_env, pytester, run):
        pytester.makepyfile(MIXED_TESTS)
        run("--strict-markers").assert_outcomes(passed=3)

    def test_ci_functional_skips_visual(self, clean_env, pytester, run):
        clean_env.setenv('CI', 'true')
        pytester.makepyfile(MIXED_TESTS)
        result = run("-rs")
        result.assert_outcomes(passed=2, skipped=1)
        result.stdout.fnmatch_lines(["*Visual testing is disabled in ci-functional mode*"])

    def test_ci_visual_runs_only_visual(self, clean_env, pytester, run):
        clean_env.setenv('CI', 'true')
        clean_env.setenv('TEST_MODE', 'ci-visual')
        pytester.makepyfile(MIXED_TESTS)
        run().assert_outcomes(passed=1, skipped=2)

    def test_ci_lightweight_runs_only_functional(self, clean_env, pytester, run):
        clean_env.setenv('CI', 'true')
        clean_env.setenv('TEST_MODE', 'ci-lightweight')
        pytester.makepyfile(MIXED_TESTS + """
@pytest.mark.functional
def test_checkout():
    pass
""")
        result = run("-rs")
        result.assert_outcomes(passed=1, skipped=3)
        result.stdout.fnmatch_lines(["*Requires one of @functional in ci-lightweight mode*"])

    def test_no_skip_option(self, clean_env, pytester, run):
        clean_env.setenv('CI', 'true')
        clean_env.setenv('TEST_MODE', 'ci-visual')
        pytester.makepyfile(MIXED_TESTS)
        run("--e2e-no-skip").assert_outcomes(passed=3)

    def test_mode_environment_exported(self, clean_env, pytester):
        clean_env.setenv('CI', 'true')
        pytester.makepyfile("""
            import os

            def test_env():
                assert os.environ['TEST_MODE'] == 'ci-functional'
                assert os.environ['PLAYWRIGHT_TEST_GREP_INVERT'] == '@visual'
        """)
        pytester.runpytest("-p", "e2e_orchestrator.pytest_plugin").assert_outcomes(passed=1)


class TestFixtures:
    def test_mode_and_timeouts(self, clean_env, pytester, run):
        pytester.makepyfile("""
            import pytest

            def test_mode(e2e_mode, e2e_session):
                assert e2e_mode is e2e_session.mode_config
                assert e2e_mode.mode.value == 'local-development'

            @pytest.mark.slow
            def test_slow_timeouts(e2e_timeouts, e2e_mode):
                assert e2e_timeouts['test'] == round(e2e_mode.test_timeout * 1.5)

            @pytest.mark.critical
            def test_critical_timeouts(e2e_timeouts, e2e_mode):
                assert e2e_timeouts['action'] == round(e2e_mode.action_timeout * 1.2)
        """)
        run().assert_outcomes(passed=3)

    def test_failure_bundle_written(self, clean_env, pytester, run):
        pytester.makepyfile("""
            import pytest

            @pytest.mark.asyncio
            async def test_checkout(e2e_context):
                assert e2e_context.attempt == 1
                raise AssertionError("expected 3 items in cart")
        """)
        run().assert_outcomes(failed=1)

        failures = list((run.artifacts / 'test_checkout' / 'failures').glob('failure-*.json'))
        assert len(failures) == 1
        data = json.loads(failures[0].read_text())
        assert data['failure_message'] == 'expected 3 items in cart'
        assert 'AssertionError' in data['failure_stack']
        assert data['test_metadata']['file'].endswith('test_failure_bundle_written.py')
        assert list((run.artifacts / 'test_checkout' / 'reports').glob('failure-report-*.html'))

    def test_passing_rerun_writes_no_second_bundle(self, clean_env, pytester, run):
        pytest.importorskip("pytest_rerunfailures")
        pytester.makepyfile("""
            import pytest

            attempts = []

            @pytest.mark.asyncio
            async def test_flaky(e2e_context):
                attempts.append(e2e_context.attempt)
                if len(attempts) == 1:
                    raise AssertionError("cart total not updated yet")
        """)
        outcomes = run("--reruns", "1").parseoutcomes()
        assert outcomes.get('passed') == 1
        assert outcomes.get('rerun') == 1

        failures = list((run.artifacts / 'test_flaky' / 'failures').glob('failure-*.json'))
        assert len(failures) == 1
        data = json.loads(failures[0].read_text())
        assert data['failure_message'] == 'cart total not updated yet'
        assert data['test_metadata']['attempt'] == 1

    def test_passing_test_writes_no_bundle(self, clean_env, pytester, run):
        pytester.makepyfile("""
            import pytest

            @pytest.mark.asyncio
            async def test_checkout(e2e_context):
                calls = []

                async def finalizer():
                    calls.append(True)

                e2e_context.register_finalizer(finalizer)
        """)
        run().assert_outcomes(passed=1)
        assert not (run.artifacts / 'test_checkout' / 'failures').exists()

    def test_finalizers_run_on_teardown(self, clean_env, pytester, run):
        pytester.makepyfile("""
            import pytest

            events = []

            @pytest.mark.asyncio
            async def test_register(e2e_context):
                async def finalizer():
                    events.append('finalized')

                e2e_context.register_finalizer(finalizer)

            def test_finalized():
                assert events == ['finalized']
        """)
        run("-p", "no:randomly").assert_outcomes(passed=2)
