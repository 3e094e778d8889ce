"""
pytest integration: tag markers, mode-based skipping and per-test artifacts

Enable with ``-p e2e_orchestrator.pytest_plugin`` or by listing the module
in ``pytest_plugins`` of a conftest.
"""

import os
from typing import Dict, FrozenSet, Optional
import logging

import pytest
import pytest_asyncio

from e2e_orchestrator.models import Attachment, TestModeConfig, TestTag
from e2e_orchestrator.session import HarnessSession

logger = logging.getLogger(__name__)

SESSION_KEY = pytest.StashKey[HarnessSession]()

MARKER_HELP = {
    TestTag.VISUAL: "visual regression test; skipped when the mode disables visual testing",
    TestTag.FUNCTIONAL: "functional test",
    TestTag.PERFORMANCE: "performance measurement test",
    TestTag.A11Y: "accessibility test",
    TestTag.FLAKY: "test known to be flaky",
    TestTag.CRITICAL: "critical path test; timeouts scaled x1.2",
    TestTag.SLOW: "slow test; timeouts scaled x1.5",
}


def marker_name(tag: TestTag) -> str:
    return tag.value.lstrip('@')


def item_tags(item: pytest.Item) -> FrozenSet[str]:
    """Tags of a test from its markers plus any @tokens in its parametrize id"""
    names = {marker_name(tag) for tag in TestTag}
    tags = {f"@{mark.name}" for mark in item.iter_markers() if mark.name in names}
    tags.update(token for token in item.name.replace('[', ' ').replace(']', ' ').split()
                if token.startswith('@'))
    return frozenset(tags)


def pytest_addoption(parser: pytest.Parser):
    group = parser.getgroup("e2e-orchestrator")
    group.addoption("--e2e-config", action="store", default=None,
                    help="YAML configuration file for the e2e harness")
    group.addoption("--e2e-artifacts-dir", action="store", default=None,
                    help="Root directory for per-test artifacts")
    group.addoption("--e2e-no-skip", action="store_true", default=False,
                    help="Run every test regardless of the mode's tag filters")
    parser.addini("e2e_apply_env", type="bool", default=True,
                  help="Export the resolved mode's environment variables")


def pytest_configure(config: pytest.Config):
    for tag, help_text in MARKER_HELP.items():
        config.addinivalue_line("markers", f"{marker_name(tag)}: {help_text}")

    env = dict(os.environ)
    artifacts_dir = config.getoption("--e2e-artifacts-dir")
    if artifacts_dir:
        env['E2E_ARTIFACTS_DIR'] = artifacts_dir

    session = HarnessSession.create(env=env, config_path=config.getoption("--e2e-config"))
    if config.getini("e2e_apply_env"):
        session.apply_environment()
    config.stash[SESSION_KEY] = session


def pytest_report_header(config: pytest.Config):
    session = config.stash.get(SESSION_KEY, None)
    if session is None:
        return None
    mode = session.mode_config
    return (f"e2e mode: {mode.mode.value} (retries={mode.retries}, "
            f"visual={'on' if mode.visual_testing_enabled else 'off'}, "
            f"ci={session.environment.ci_provider.value})")


def pytest_collection_modifyitems(config: pytest.Config, items):
    if config.getoption("--e2e-no-skip"):
        return
    session = config.stash[SESSION_KEY]
    for item in items:
        reason = session.tag_filter.skip_reason(item_tags(item))
        if reason:
            item.add_marker(pytest.mark.skip(reason=reason))


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_makereport(item: pytest.Item, call):
    outcome = yield
    report = outcome.get_result()
    setattr(item, f"rep_{report.when}", report)
    # pytest-rerunfailures reruns the same item; each attempt starts clean
    if report.when == "setup":
        item.e2e_excinfo = None
    elif report.when == "call" and report.failed and call.excinfo is not None:
        item.e2e_excinfo = call.excinfo


def _attach_hook(item: pytest.Item):
    def attach(attachment: Attachment):
        item.user_properties.append((f"attachment:{attachment.name}", attachment.path))
    return attach


def _retry_index(item: pytest.Item) -> int:
    # pytest-rerunfailures counts executions from 1
    return max(getattr(item, "execution_count", 1) - 1, 0)


@pytest.fixture(scope="session")
def e2e_session(pytestconfig: pytest.Config) -> HarnessSession:
    return pytestconfig.stash[SESSION_KEY]


@pytest.fixture(scope="session")
def e2e_mode(e2e_session: HarnessSession) -> TestModeConfig:
    return e2e_session.mode_config


@pytest.fixture
def e2e_timeouts(request, e2e_session: HarnessSession) -> Dict[str, int]:
    """Mode timeouts adjusted for the test's @slow / @critical tags"""
    return e2e_session.tag_filter.get_adjusted_timeouts(item_tags(request.node))


@pytest_asyncio.fixture
async def e2e_context(request, e2e_session: HarnessSession):
    """
    Per-test artifact context.

    Assign ``e2e_context.page`` to include page evidence in the failure
    bundle. Registered finalizers run at teardown; a failure that was not
    already captured (for example by TestDebugger.guard) is captured then.
    """
    item = request.node
    context = e2e_session.new_context(
        item.name,
        file=str(item.path),
        line=item.location[1] + 1 if item.location[1] is not None else None,
        retry=_retry_index(item),
        attach_hook=_attach_hook(item),
    )
    try:
        yield context
    finally:
        excinfo: Optional[pytest.ExceptionInfo] = getattr(item, "e2e_excinfo", None)
        if excinfo is not None and not context.failures:
            await e2e_session.pipeline.capture_failure(excinfo.value, context.page, context)
        await context.run_finalizers()
