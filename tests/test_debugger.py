"""
Tests for TestDebugger
"""

import pytest

from e2e_orchestrator.artifacts import ArtifactPipeline
from e2e_orchestrator.debugger import DebugLevel, TestDebugger
from e2e_orchestrator.models import FailureType
from tests.conftest import FakePage


def files_in(context, kind):
    directory = context.output_dir / kind
    return sorted(p.name for p in directory.iterdir()) if directory.exists() else []


class TestDebuggerLifecycle:
    """initialize, steps and finalize"""

    def test_ci_upgrades_standard_level(self, ci_environment, artifacts_root, fake_page):
        pipeline = ArtifactPipeline(ci_environment, root_dir=artifacts_root)
        context = pipeline.new_context('ci test')
        assert TestDebugger(fake_page, context, pipeline).debug_level == DebugLevel.COMPREHENSIVE
        assert TestDebugger(fake_page, context, pipeline,
                            debug_level=DebugLevel.ESSENTIAL).debug_level == DebugLevel.ESSENTIAL

    def test_local_keeps_requested_level(self, pipeline, context, fake_page):
        assert TestDebugger(fake_page, context, pipeline).debug_level == DebugLevel.STANDARD

    @pytest.mark.asyncio
    async def test_initialize_starts_recorders(self, pipeline, context, fake_page):
        debugger = TestDebugger(fake_page, context, pipeline, metrics_interval=0)
        await debugger.initialize()

        assert set(context.recorders) == {'console', 'network', 'metrics'}
        assert fake_page.listeners['console']
        assert fake_page.listeners['request']
        assert (context.output_dir / 'logs').is_dir()
        assert any(name.startswith('env-diagnostics-') for name in files_in(context, 'diagnostics'))

        await context.run_finalizers()
        assert fake_page.listeners['console'] == []
        assert fake_page.listeners['request'] == []

    @pytest.mark.asyncio
    async def test_essential_level_skips_network_and_metrics(self, pipeline, context, fake_page):
        debugger = TestDebugger(fake_page, context, pipeline, debug_level=DebugLevel.ESSENTIAL)
        await debugger.initialize()
        assert set(context.recorders) == {'console'}
        await context.run_finalizers()

    @pytest.mark.asyncio
    async def test_step_captures_and_reraises(self, pipeline, context, fake_page):
        debugger = TestDebugger(fake_page, context, pipeline, capture_performance_metrics=False)
        error = TimeoutError("Timed out waiting for #pay")

        with pytest.raises(TimeoutError) as exc_info:
            async with debugger.step('pay'):
                raise error

        assert exc_info.value is error
        assert len(debugger.failures) == 1
        assert debugger.failures[0].step_name == 'pay'
        assert debugger.failures[0].failure_type == FailureType.TIMEOUT
        assert debugger.current_step is None

    @pytest.mark.asyncio
    async def test_same_error_captured_once(self, pipeline, context, fake_page):
        debugger = TestDebugger(fake_page, context, pipeline, capture_performance_metrics=False)
        error = RuntimeError("boom")
        assert await debugger.handle_error(error) is not None
        assert await debugger.handle_error(error) is None
        assert len(files_in(context, 'failures')) == 1

    @pytest.mark.asyncio
    async def test_finalize_writes_debug_log(self, pipeline, context, fake_page):
        debugger = TestDebugger(fake_page, context, pipeline, verbose=False, metrics_interval=0)
        await debugger.initialize()
        await debugger.finalize('passed')
        await debugger.finalize('passed')

        logs = files_in(context, 'logs')
        assert len(logs) == 1
        content = (context.output_dir / 'logs' / logs[0]).read_text()
        assert 'Test result: passed' in content
        assert 'Debugger attached to test' in content
        names = [a.name for a in context.attachments]
        assert 'test-debugger.log' in names
        assert 'performance-metrics.json' in names
        await context.run_finalizers()


class TestGuard:
    """guard() as the outermost wrapper"""

    @pytest.mark.asyncio
    async def test_passing_body(self, pipeline, context, fake_page):
        debugger = TestDebugger(fake_page, context, pipeline, metrics_interval=10)
        async with debugger.guard():
            async with debugger.step('open cart'):
                pass

        assert debugger.failures == []
        assert files_in(context, 'failures') == []
        assert not debugger.metrics.is_running
        assert fake_page.listeners['console'] == []
        assert any('Completed step: open cart' in line for line in debugger.logs)

    @pytest.mark.asyncio
    async def test_failing_body_reraises_original(self, pipeline, context, fake_page):
        debugger = TestDebugger(fake_page, context, pipeline, metrics_interval=10)
        error = AssertionError("expected total 30, got 25")

        with pytest.raises(AssertionError) as exc_info:
            async with debugger.guard():
                async with debugger.step('check total'):
                    raise error

        assert exc_info.value is error
        assert len(debugger.failures) == 1
        assert context.failures == debugger.failures
        assert len(files_in(context, 'failures')) == 1
        assert not debugger.metrics.is_running
        assert fake_page.listeners['request'] == []
        assert any('Test result: failed' in line for line in debugger.logs)

    @pytest.mark.asyncio
    async def test_initialization_failure_does_not_fail_test(self, pipeline, context):
        page = FakePage()
        page.context = None
        debugger = TestDebugger(page, context, pipeline)
        async with debugger.guard():
            pass
        assert any('Initialization failed' in line for line in debugger.logs)
