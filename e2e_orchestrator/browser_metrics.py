"""
Browser performance metrics: one-shot snapshots and periodic collection
"""

import asyncio
import time
from typing import Any, Dict, List, Optional
import logging

from playwright.async_api import Page

logger = logging.getLogger(__name__)

PERFORMANCE_SCRIPT = """() => {
    const perf = window.performance;
    const result = {};

    if (perf.timing) {
        const t = perf.timing;
        result.timing = {
            navigationStart: t.navigationStart,
            domContentLoaded: t.domContentLoadedEventEnd - t.navigationStart,
            domComplete: t.domComplete - t.navigationStart,
            loadEvent: t.loadEventEnd - t.navigationStart
        };
    }

    if (perf.memory) {
        result.memory = {
            jsHeapSizeLimit: perf.memory.jsHeapSizeLimit,
            totalJSHeapSize: perf.memory.totalJSHeapSize,
            usedJSHeapSize: perf.memory.usedJSHeapSize
        };
    }

    const resources = perf.getEntriesByType('resource');
    const stats = { count: resources.length, totalSize: 0, byType: {} };
    resources.forEach((r) => {
        const type = r.initiatorType || 'other';
        if (!stats.byType[type]) {
            stats.byType[type] = { count: 0, size: 0 };
        }
        stats.byType[type].count++;
        if (r.transferSize) {
            stats.byType[type].size += r.transferSize;
            stats.totalSize += r.transferSize;
        }
    });
    result.resources = stats;

    const paint = {};
    perf.getEntriesByType('paint').forEach((e) => { paint[e.name] = e.startTime; });
    result.paint = paint;

    return result;
}"""


async def collect_performance_metrics(page: Page, test_name: Optional[str] = None,
                                      save_raw: bool = False) -> Dict[str, Any]:
    """
    Snapshot navigation timing, JS heap, resource and paint metrics

    Args:
        page: Playwright page object
        test_name: Recorded with the snapshot
        save_raw: Keep the raw evaluate() payload

    Returns:
        Metrics dictionary, empty if the page could not be evaluated
    """
    try:
        raw = await page.evaluate(PERFORMANCE_SCRIPT)
    except Exception as e:
        logger.warning(f"Could not collect performance metrics: {e}")
        return {}

    try:
        url = page.url
    except Exception:
        url = None

    raw = raw or {}
    timing = raw.get('timing') or {}
    memory = raw.get('memory') or {}
    resources = raw.get('resources') or {}
    paint = raw.get('paint') or {}

    metrics: Dict[str, Any] = {
        'test_name': test_name,
        'timestamp': int(time.time() * 1000),
        'url': url,
        'core_web_vitals': {
            'fcp': paint.get('first-contentful-paint'),
        },
        'js_metrics': {
            'js_heap_size': memory.get('totalJSHeapSize'),
            'js_heap_size_limit': memory.get('jsHeapSizeLimit'),
            'used_js_heap_size': memory.get('usedJSHeapSize'),
        },
        'resource_metrics': {
            'resource_count': resources.get('count'),
            'total_resource_size': resources.get('totalSize'),
            'resource_count_by_type': {k: v.get('count') for k, v in (resources.get('byType') or {}).items()},
            'transfer_size_by_type': {k: v.get('size') for k, v in (resources.get('byType') or {}).items()},
        },
        'network_metrics': {
            'dom_content_loaded': timing.get('domContentLoaded'),
            'dom_complete': timing.get('domComplete'),
            'load_event': timing.get('loadEvent'),
            'request_count': resources.get('count'),
            'transfer_size': resources.get('totalSize'),
        },
    }
    if save_raw:
        metrics['raw'] = raw
    return metrics


class MetricsCollector:
    """
    Periodically samples performance metrics for one page.

    The sampling loop is an asyncio task; stop() must be called (normally
    through the test context's finalizers) or the task outlives the test.
    """

    def __init__(self, page: Page, test_name: str, interval: int = 5000, save_raw: bool = False):
        """
        Initialize metrics collector

        Args:
            page: Playwright page object
            test_name: Recorded with every sample
            interval: Sampling interval in milliseconds (0 disables periodic sampling)
            save_raw: Keep raw payloads
        """
        self.page = page
        self.test_name = test_name
        self.interval = interval
        self.save_raw = save_raw
        self.samples: List[Dict[str, Any]] = []
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> 'MetricsCollector':
        if self.is_running:
            return self
        self.samples = []
        await self.collect()
        if self.interval > 0:
            self._task = asyncio.create_task(self._run())
        return self

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval / 1000)
            await self.collect()

    async def collect(self) -> Dict[str, Any]:
        sample = await collect_performance_metrics(self.page, self.test_name, self.save_raw)
        if sample:
            self.samples.append(sample)
        return sample

    async def stop(self):
        """Cancel the sampling task and wait for it to finish"""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    def latest(self) -> Optional[Dict[str, Any]]:
        return self.samples[-1] if self.samples else None

    def summary(self) -> Dict[str, Any]:
        """Average and peak values across samples"""
        heap = [s['js_metrics']['used_js_heap_size'] for s in self.samples
                if s['js_metrics'].get('used_js_heap_size') is not None]
        requests = [s['resource_metrics']['resource_count'] for s in self.samples
                    if s['resource_metrics'].get('resource_count') is not None]
        return {
            'test_name': self.test_name,
            'sample_count': len(self.samples),
            'avg_used_js_heap_size': sum(heap) / len(heap) if heap else None,
            'max_used_js_heap_size': max(heap) if heap else None,
            'max_resource_count': max(requests) if requests else None,
        }

    def save(self, context, pipeline, name: str):
        """Write samples and summary through the artifact pipeline"""
        return pipeline.save_json(context, 'diagnostics', f"{name}.json", {
            'summary': self.summary(),
            'samples': self.samples,
        })
