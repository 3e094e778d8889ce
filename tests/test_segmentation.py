"""
Tests for tag segmentation and the per-operation timeout table
"""

import pytest

from e2e_orchestrator.models import TestMode, TestTag
from e2e_orchestrator.modes import MODE_CONFIGS
from e2e_orchestrator.segmentation import (
    TagFilter, TestStability, extract_tags, normalize_tag,
    stability_retries, tag_title
)
from e2e_orchestrator.timeouts import TimeoutOperation, TimeoutTable


def tag_filter(mode: TestMode) -> TagFilter:
    return TagFilter(MODE_CONFIGS[mode])


class TestTags:
    """Tag parsing helpers"""

    def test_extract_tags_from_title(self):
        assert extract_tags('@visual @slow homepage renders') == {'@visual', '@slow'}
        assert extract_tags('email@example.com is not a tag @') == set()

    def test_normalize(self):
        assert normalize_tag('visual') == '@visual'
        assert normalize_tag('@flaky') == '@flaky'
        assert normalize_tag(TestTag.A11Y) == '@a11y'

    def test_tag_title(self):
        assert tag_title('login works', [TestTag.CRITICAL, 'slow']) == '@critical @slow login works'
        assert tag_title('login works', []) == 'login works'


class TestSkipping:
    """should_skip under each mode"""

    @pytest.mark.parametrize("extra", [[], ['@critical'], ['@slow', '@flaky'], ['@functional']])
    def test_visual_follows_visual_testing_switch(self, extra):
        tags = ['@visual'] + extra
        for mode, config in MODE_CONFIGS.items():
            skipped = TagFilter(config).should_skip(tags)
            if not config.visual_testing_enabled:
                assert skipped, mode
            elif mode != TestMode.CI_LIGHTWEIGHT:
                assert not skipped, mode

    def test_local_runs_everything(self):
        local = tag_filter(TestMode.LOCAL_DEVELOPMENT)
        for title in ('@visual hero', '@performance budget', 'plain test', '@a11y contrast'):
            assert not local.should_skip(title)

    def test_functional_mode_excludes_visual(self):
        functional = tag_filter(TestMode.CI_FUNCTIONAL)
        assert functional.should_skip('@visual hero')
        assert not functional.should_skip('@performance budget')
        assert not functional.should_skip('checkout')

    def test_lightweight_include_and_exclude(self):
        lightweight = tag_filter(TestMode.CI_LIGHTWEIGHT)
        assert not lightweight.should_skip('@functional checkout')
        assert lightweight.should_skip('@performance budget')
        assert lightweight.should_skip('@a11y contrast')

    def test_untagged_test_needs_an_include_tag(self):
        lightweight = tag_filter(TestMode.CI_LIGHTWEIGHT)
        assert lightweight.should_skip('test login flow')
        assert lightweight.should_skip([])
        assert 'Requires one of @functional' in lightweight.skip_reason('test login flow')
        assert not tag_filter(TestMode.CI_FUNCTIONAL).should_skip('test login flow')

    def test_exclude_wins_over_include(self):
        lightweight = tag_filter(TestMode.CI_LIGHTWEIGHT)
        assert lightweight.should_skip('@functional @performance mixed')
        assert 'Excluded by @performance' in lightweight.skip_reason('@functional @performance mixed')

    def test_skip_reasons(self):
        assert 'Visual testing is disabled' in tag_filter(TestMode.CI_FUNCTIONAL).skip_reason('@visual hero')
        assert 'Requires one of @visual' in tag_filter(TestMode.CI_VISUAL).skip_reason('checkout')
        assert tag_filter(TestMode.CI_FULL).skip_reason('checkout') is None


class TestAdjustedTimeouts:
    """@slow and @critical scaling"""

    def test_untagged(self):
        assert tag_filter(TestMode.LOCAL_DEVELOPMENT).get_adjusted_timeouts('login') == {
            'test': 30000, 'action': 15000, 'navigation': 30000,
        }

    def test_slow(self):
        assert tag_filter(TestMode.LOCAL_DEVELOPMENT).get_adjusted_timeouts(['@slow']) == {
            'test': 45000, 'action': 22500, 'navigation': 45000,
        }

    def test_critical(self):
        assert tag_filter(TestMode.CI_FUNCTIONAL).get_adjusted_timeouts('@critical pay') == {
            'test': 72000, 'action': 36000, 'navigation': 72000,
        }

    def test_slow_wins_without_compounding(self):
        timeouts = tag_filter(TestMode.LOCAL_DEVELOPMENT).get_adjusted_timeouts(['@slow', '@critical'])
        assert timeouts['test'] == 45000


class TestStabilityProfiles:
    def test_retries_per_profile(self):
        assert stability_retries(TestStability.STABLE, is_ci=False) == 0
        assert stability_retries(TestStability.STABLE, is_ci=True) == 1
        assert stability_retries(TestStability.MODERATELY_FLAKY, is_ci=True) == 2
        assert stability_retries(TestStability.HIGHLY_FLAKY, is_ci=False) == 2
        assert stability_retries(TestStability.HIGHLY_FLAKY, is_ci=True) == 3


class TestTimeoutTable:
    """Per-operation timeouts"""

    def test_local_uses_base_values(self):
        table = TimeoutTable(is_ci=False, mode=TestMode.LOCAL_DEVELOPMENT)
        assert table.multiplier == 1.0
        assert table.get(TimeoutOperation.ELEMENT_WAIT) == 10000
        assert table.get('navigation') == 30000

    @pytest.mark.parametrize("mode,multiplier", [
        (TestMode.CI_FUNCTIONAL, 2.5),
        (TestMode.CI_VISUAL, 2.5),
        (TestMode.CI_LIGHTWEIGHT, 2.0),
        (TestMode.CI_FULL, 3.0),
    ])
    def test_ci_multipliers(self, mode, multiplier):
        assert TimeoutTable(is_ci=True, mode=mode).multiplier == multiplier

    def test_capped_at_maximum(self):
        table = TimeoutTable(is_ci=True, mode=TestMode.CI_FULL)
        assert table.get(TimeoutOperation.NAVIGATION) == 90000
        assert table.get(TimeoutOperation.NETWORK_IDLE) == 60000
        assert table.get(TimeoutOperation.NAVIGATION, multiplier=10) == 120000
        assert table.get(TimeoutOperation.ELEMENT_STABILITY, multiplier=10) == 30000

    def test_overrides(self):
        table = TimeoutTable(is_ci=True, mode=TestMode.CI_FUNCTIONAL,
                             overrides={TimeoutOperation.API_CALL: 1234})
        assert table.get(TimeoutOperation.API_CALL) == 1234
        assert table.all()['api_call'] == 1234
        assert set(table.all()) == {op.value for op in TimeoutOperation}

    def test_adjust(self):
        assert TimeoutTable(is_ci=False, mode=TestMode.LOCAL_DEVELOPMENT).adjust(5000) == 5000
        ci = TimeoutTable(is_ci=True, mode=TestMode.CI_FUNCTIONAL)
        assert ci.adjust(5000) == 12500
        assert ci.adjust(100000) == 120000
