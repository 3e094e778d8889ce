"""
Artifact capture pipeline: screenshots, DOM dumps, logs and failure reports
"""

import json
import os
import re
import time
import traceback
import uuid
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union
import logging

from bs4 import BeautifulSoup
from jinja2 import Template
from playwright.async_api import Page

from e2e_orchestrator.browser_metrics import collect_performance_metrics
from e2e_orchestrator.environment_probe import EnvironmentProbe
from e2e_orchestrator.failure_classifier import (
    FailureClassifier, format_stack, troubleshooting_suggestions
)
from e2e_orchestrator.filesystem_guard import FilesystemError, FilesystemGuard
from e2e_orchestrator.models import EnvironmentInfo, FailureInfo, TestContext

logger = logging.getLogger(__name__)

ARTIFACT_SUBDIRS = (
    'screenshots', 'html-dumps', 'network-logs', 'console-logs', 'failures', 'reports', 'diagnostics',
)

DEFAULT_ARTIFACTS_ROOT = "test-results/e2e-artifacts"

TEST_FILE_PATTERN = re.compile(r'(^|[\\/])(test_[^\\/]*|[^\\/]*_test)\.py$')


def sanitize_test_name(title: str) -> str:
    """Directory-safe form of a test title"""
    cleaned = re.sub(r'[^\w\s-]', '', title)
    return re.sub(r'\s+', '-', cleaned.strip()).lower() or 'unnamed-test'


def summarize_html(html: str, text_limit: int = 500) -> Dict[str, Any]:
    """
    Summarize a DOM dump for the failure report

    Args:
        html: Page HTML
        text_limit: Maximum characters of visible text to keep

    Returns:
        Title, headings, element counts and a visible text excerpt
    """
    soup = BeautifulSoup(html, 'html.parser')
    for tag in soup(['script', 'style', 'noscript']):
        tag.decompose()

    title = soup.title.string.strip() if soup.title and soup.title.string else None
    text = ' '.join(soup.get_text(separator=' ').split())
    return {
        'title': title,
        'headings': [h.get_text(strip=True) for h in soup.find_all(['h1', 'h2'])][:10],
        'forms': len(soup.find_all('form')),
        'inputs': len(soup.find_all(['input', 'textarea', 'select'])),
        'buttons': len(soup.find_all('button')),
        'links': len(soup.find_all('a')),
        'loading_indicators': len(soup.select('[aria-busy="true"], [role="progressbar"]')),
        'text_excerpt': text[:text_limit],
    }


def artifact_link(path: Union[str, Path], reports_dir: Optional[Path] = None) -> str:
    """href for an artifact, relative to the report directory when possible"""
    if reports_dir is not None:
        try:
            return Path(os.path.relpath(path, reports_dir)).as_posix()
        except ValueError:
            # different drive on Windows
            pass
    return Path(path).resolve().as_uri()


def locate_test_frame(error: BaseException) -> Dict[str, Optional[int]]:
    """Line and column of the innermost frame inside a test module"""
    location: Dict[str, Optional[int]] = {'line': None, 'column': None}
    for frame in traceback.extract_tb(error.__traceback__):
        if TEST_FILE_PATTERN.search(frame.filename):
            location['line'] = frame.lineno
            colno = getattr(frame, 'colno', None)
            location['column'] = colno + 1 if colno is not None else None
    return location


class ArtifactPipeline:
    """Writes per-test evidence and builds forensic failure records"""

    def __init__(self, environment: EnvironmentInfo, fs: Optional[FilesystemGuard] = None,
                 classifier: Optional[FailureClassifier] = None,
                 root_dir: Union[str, Path] = DEFAULT_ARTIFACTS_ROOT,
                 create_html_reports: bool = True,
                 capture_html: bool = True):
        """
        Initialize artifact pipeline

        Args:
            environment: Detected environment for the run
            fs: Filesystem guard used for every write
            classifier: Failure classifier
            root_dir: Artifact root; each test gets a subdirectory
            create_html_reports: Render an HTML report per failure
            capture_html: Dump page HTML on failure
        """
        self.environment = environment
        self.fs = fs or FilesystemGuard()
        self.classifier = classifier or FailureClassifier()
        self.root_dir = Path(root_dir)
        self.create_html_reports = create_html_reports
        self.capture_html_on_failure = capture_html

    def new_context(self, title: str, file: Optional[str] = None, line: Optional[int] = None,
                    retry: int = 0, attach_hook=None) -> TestContext:
        """Create the per-test context and its artifact directory"""
        output_dir = self.fs.ensure_directory(self.root_dir / sanitize_test_name(title))
        return TestContext(title=title, output_dir=output_dir, file=file, line=line,
                           retry=retry, attach_hook=attach_hook)

    def artifact_dir(self, context: Optional[TestContext], kind: str) -> Path:
        base = context.output_dir if context is not None else self.root_dir
        return self.fs.ensure_directory(Path(base) / kind)

    def save_artifact(self, context: Optional[TestContext], kind: str, filename: str,
                      data: Union[str, bytes], exclusive: bool = False) -> Optional[Path]:
        """Write one artifact file; failures are logged and yield None"""
        try:
            return self.fs.write_file(self.artifact_dir(context, kind) / filename, data,
                                      exclusive=exclusive)
        except FilesystemError as e:
            logger.error(f"Could not save artifact {filename}: {e.detailed_message()}")
            return None
        except (TypeError, ValueError) as e:
            logger.error(f"Could not serialise artifact {filename}: {e}")
            return None

    def save_json(self, context: Optional[TestContext], kind: str, filename: str,
                  data: Any, exclusive: bool = False) -> Optional[Path]:
        return self.save_artifact(context, kind, filename,
                                  json.dumps(data, indent=2, ensure_ascii=False, default=str),
                                  exclusive=exclusive)

    def _attach(self, context: Optional[TestContext], name: str, path: Optional[Path], content_type: str):
        if context is None or path is None:
            return
        try:
            context.attach(name, str(path), content_type)
        except Exception as e:
            logger.warning(f"Could not attach {name}: {e}")

    async def capture_screenshot(self, page: Page, context: Optional[TestContext], name: str,
                                 full_page: bool = True) -> Optional[Path]:
        """
        Save a full-page screenshot into the test's screenshots directory

        Returns:
            Path written, or None when the screenshot could not be taken
        """
        try:
            image = await page.screenshot(full_page=full_page)
        except Exception as e:
            logger.error(f"Failed to take screenshot {name}: {e}")
            return None
        path = self.save_artifact(context, 'screenshots', f"{name}.png", image)
        self._attach(context, f"{name}.png", path, 'image/png')
        if path:
            logger.debug(f"Saved screenshot {path}")
        return path

    async def capture_html(self, page: Page, context: Optional[TestContext], name: str):
        """Save page HTML; returns (path, html) or (None, None)"""
        try:
            html = await page.content()
        except Exception as e:
            logger.error(f"Failed to read page content for {name}: {e}")
            return None, None
        path = self.save_artifact(context, 'html-dumps', f"{name}.html", html)
        self._attach(context, f"{name}.html", path, 'text/html')
        return path, html

    def save_console_logs(self, context: TestContext, recorder, name: str) -> Optional[Path]:
        path = self.save_artifact(context, 'console-logs', f"{name}.txt", recorder.text())
        self._attach(context, f"{name}.txt", path, 'text/plain')
        return path

    def save_network_logs(self, context: TestContext, recorder, name: str) -> Optional[Path]:
        path = self.save_json(context, 'network-logs', f"{name}.json", recorder.to_dict())
        self._attach(context, f"{name}.json", path, 'application/json')
        return path

    def capture_environment_diagnostics(self, context: TestContext,
                                        extra: Optional[Dict[str, Any]] = None) -> Optional[Path]:
        """Write environment, resources and test identity to diagnostics/"""
        diagnostics = {
            'timestamp': datetime.now().isoformat(),
            'environment': self.environment.to_dict(),
            'resources': EnvironmentProbe.get_system_resources(),
            'test': {
                'title': context.title,
                'file': context.file,
                'line': context.line,
                'retry': context.retry,
            },
        }
        if extra:
            diagnostics.update(extra)
        path = self.save_json(context, 'diagnostics', f"env-diagnostics-{int(time.time() * 1000)}.json",
                              diagnostics)
        self._attach(context, 'environment-diagnostics.json', path, 'application/json')
        return path

    def discover_artifacts(self, context: TestContext) -> Dict[str, str]:
        """Find host-produced artifacts (videos, traces, logs) by file name"""
        found: Dict[str, str] = {}
        try:
            files = sorted(p for p in Path(context.output_dir).rglob('*') if p.is_file())
        except OSError as e:
            logger.warning(f"Could not scan {context.output_dir}: {e}")
            return found
        for path in files:
            name = path.name
            if name.endswith('.png') and 'screenshot' in name:
                found['screenshot'] = str(path)
            elif name.endswith(('.webm', '.mp4')):
                found['video'] = str(path)
            elif 'trace' in name and name.endswith(('.zip', '.trace')):
                found['trace'] = str(path)
            elif name.endswith('.txt') and 'log' in name:
                found['logs'] = str(path)
            elif name.endswith('.json') and 'metrics' in name:
                found['performance'] = str(path)
        return found

    async def capture_failure(self, error: BaseException, page: Optional[Page], context: TestContext,
                              step_name: Optional[str] = None) -> FailureInfo:
        """
        Collect the forensic bundle for a failed test

        Gathers evidence first, then builds the immutable FailureInfo and
        writes failures/failure-<id>.json and reports/failure-report-<id>.html.
        Bookkeeping failures are logged; the caller's error is never replaced.

        Args:
            error: The exception that failed the test
            page: Playwright page (may be None if the browser never started)
            context: Per-test context
            step_name: Name of the step that was running

        Returns:
            FailureInfo describing the failure
        """
        failure_id = str(uuid.uuid4())
        tag = f"failure-{failure_id[:8]}"
        failure_type = self.classifier.classify(error)
        logger.error(f"Test '{context.title}' failed ({failure_type.value}): {error}")

        environment = self.environment
        artifacts: Dict[str, Optional[str]] = {
            'screenshot': None, 'video': None, 'trace': None, 'html': None,
            'logs': None, 'network': None, 'performance': None,
        }
        page_summary = None
        page_url = None

        if page is not None:
            environment = self._with_browser(page)
            try:
                page_url = page.url
            except Exception as e:
                logger.debug(f"Could not read page url: {e}")

            screenshot = await self.capture_screenshot(page, context, f"{tag}-screenshot")
            artifacts['screenshot'] = str(screenshot) if screenshot else None

            if self.capture_html_on_failure:
                html_path, html = await self.capture_html(page, context, tag)
                artifacts['html'] = str(html_path) if html_path else None
                if html:
                    try:
                        page_summary = summarize_html(html)
                    except Exception as e:
                        logger.warning(f"Could not summarize page HTML: {e}")

            artifacts['performance'] = await self._capture_performance(page, context, tag)
            artifacts['video'] = await self._video_path(page)

        console = context.recorders.get('console')
        if console is not None:
            path = self.save_console_logs(context, console, f"{tag}-console-log")
            artifacts['logs'] = str(path) if path else None
        network = context.recorders.get('network')
        if network is not None:
            path = self.save_network_logs(context, network, f"{tag}-network")
            artifacts['network'] = str(path) if path else None

        for key, value in self.discover_artifacts(context).items():
            if not artifacts.get(key):
                artifacts[key] = value

        resources = EnvironmentProbe.get_system_resources()
        location = locate_test_frame(error)
        info = FailureInfo(
            id=failure_id,
            timestamp=datetime.now(),
            test_title=context.title,
            failure_message=str(error) or type(error).__name__,
            failure_stack=format_stack(error),
            failure_type=failure_type,
            step_name=step_name,
            page_url=page_url,
            environment={
                'is_ci': environment.is_ci,
                'ci_provider': environment.ci_provider.value,
                'ci_pipeline_id': environment.ci_pipeline_id,
                'ci_job_id': environment.ci_job_id,
                'os': environment.os.value,
                'runtime_version': environment.runtime_version,
                'browser': environment.browser_type.value if environment.browser_type else None,
                'browser_version': environment.browser_version,
                'run_id': environment.run_id,
            },
            test_metadata={
                'file': context.file,
                'line': location['line'] or context.line,
                'column': location['column'],
                'retries': context.retry,
                'attempt': context.attempt,
                'duration': context.duration_ms,
            },
            resources=resources,
            artifacts=artifacts,
            page_summary=page_summary,
        )

        json_path = self.save_json(context, 'failures', f"failure-{failure_id}.json", info.to_dict(),
                                   exclusive=True)
        self._attach(context, 'failure-info.json', json_path, 'application/json')

        if self.create_html_reports:
            self.write_failure_report(info, context)
        context.failures.append(info)
        return info

    def write_failure_report(self, info: FailureInfo, context: TestContext) -> Optional[Path]:
        try:
            html = self.render_report(info, context.output_dir / 'reports')
        except Exception as e:
            logger.error(f"Could not render failure report: {e}")
            return None
        path = self.save_artifact(context, 'reports', f"failure-report-{info.id}.html", html)
        self._attach(context, 'failure-report.html', path, 'text/html')
        return path

    def render_report(self, info: FailureInfo, reports_dir: Optional[Path] = None) -> str:
        """
        Render the HTML failure report

        Args:
            info: Failure record
            reports_dir: Directory the report is written to; artifact links are relative to it

        Returns:
            HTML document
        """
        template = Template(FAILURE_REPORT_TEMPLATE, autoescape=True)
        artifacts = {k: Path(v).name for k, v in info.artifacts.items() if v}
        links = {k: artifact_link(v, reports_dir) for k, v in info.artifacts.items() if v}
        return template.render(
            info=info,
            artifacts=artifacts,
            links=links,
            suggestions=troubleshooting_suggestions(info.failure_type, info.environment.get('is_ci', False)),
            memory_mb=lambda v: f"{round(v / 1024 / 1024)}MB" if v else 'n/a',
            generated_at=datetime.now().isoformat(),
        )

    def _with_browser(self, page: Page) -> EnvironmentInfo:
        try:
            browser = page.context.browser
        except Exception as e:
            logger.debug(f"Could not read browser from page: {e}")
            return self.environment
        browser_type, version = EnvironmentProbe.browser_info(browser)
        return replace(self.environment, browser_type=browser_type, browser_version=version)

    async def _capture_performance(self, page: Page, context: TestContext, tag: str) -> Optional[str]:
        collector = context.recorders.get('metrics')
        if collector is not None:
            path = collector.save(context, self, f"{tag}-metrics")
            return str(path) if path else None
        metrics = await collect_performance_metrics(page)
        if not metrics:
            return None
        path = self.save_json(context, 'diagnostics', f"{tag}-metrics.json", metrics)
        return str(path) if path else None

    @staticmethod
    async def _video_path(page: Page) -> Optional[str]:
        try:
            video = page.video
            if video is None:
                return None
            return str(await video.path())
        except Exception as e:
            logger.debug(f"No video available: {e}")
            return None


FAILURE_REPORT_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>Test Failure Report - {{ info.test_title }}</title>
    <style>
        body { font-family: Arial, sans-serif; margin: 0; padding: 20px; line-height: 1.6; }
        h1 { color: #e53e3e; margin-bottom: 10px; }
        h2 { color: #3182ce; margin-top: 30px; border-bottom: 1px solid #cbd5e0; padding-bottom: 5px; }
        pre { background-color: #f7fafc; padding: 15px; border-radius: 5px; overflow: auto; }
        .failure-badge { display: inline-block; padding: 5px 10px; border-radius: 4px; font-weight: bold; color: white; background-color: #e53e3e; }
        .metadata { display: flex; flex-wrap: wrap; gap: 20px; margin: 20px 0; }
        .metadata-item { background-color: #f7fafc; padding: 10px; border-radius: 5px; flex: 1; min-width: 200px; }
        img { max-width: 100%; border: 1px solid #cbd5e0; margin-top: 10px; }
        footer { margin-top: 50px; font-size: 12px; color: #718096; }
    </style>
</head>
<body>
    <h1>Test Failure Report</h1>
    <div class="failure-badge">{{ info.failure_type.value }}</div>
    <p><strong>Test:</strong> {{ info.test_title }}</p>
    <p><strong>Time:</strong> {{ info.timestamp.isoformat() }}</p>
    {% if info.page_url %}<p><strong>URL:</strong> {{ info.page_url }}</p>{% endif %}

    <h2>Failure Information</h2>
    <p><strong>Message:</strong> {{ info.failure_message }}</p>
    {% if info.step_name %}<p><strong>Step:</strong> {{ info.step_name }}</p>{% endif %}
    <h3>Stack Trace</h3>
    <pre>{{ info.failure_stack or 'No stack trace available' }}</pre>

    <h2>Environment Information</h2>
    <div class="metadata">
        <div class="metadata-item">
            <h3>Test Environment</h3>
            <p><strong>CI Environment:</strong> {{ 'Yes' if info.environment.is_ci else 'No' }}</p>
            <p><strong>CI Provider:</strong> {{ info.environment.ci_provider }}</p>
            <p><strong>Operating System:</strong> {{ info.environment.os }}</p>
            <p><strong>Runtime:</strong> {{ info.environment.runtime_version }}</p>
            <p><strong>Browser:</strong> {{ info.environment.browser or 'Unknown' }} {{ info.environment.browser_version or '' }}</p>
        </div>
        <div class="metadata-item">
            <h3>Test Metadata</h3>
            <p><strong>File:</strong> {{ info.test_metadata.file }}</p>
            {% if info.test_metadata.line %}<p><strong>Line:</strong> {{ info.test_metadata.line }}</p>{% endif %}
            <p><strong>Attempt:</strong> {{ info.test_metadata.attempt }}</p>
            <p><strong>Duration:</strong> {{ (info.test_metadata.duration / 1000) | round | int }}s</p>
        </div>
        <div class="metadata-item">
            <h3>System Resources</h3>
            <p><strong>CPU Cores:</strong> {{ info.resources.cpu_cores }}</p>
            <p><strong>Total Memory:</strong> {{ memory_mb(info.resources.total_memory) }}</p>
            <p><strong>Free Memory:</strong> {{ memory_mb(info.resources.free_memory) }}</p>
            {% if info.resources.load_average %}<p><strong>Load Average:</strong> {{ info.resources.load_average | map('round', 2) | join(', ') }}</p>{% endif %}
        </div>
    </div>

    {% if info.page_summary %}
    <h2>Page State</h2>
    <p><strong>Title:</strong> {{ info.page_summary.title or 'n/a' }}</p>
    <p><strong>Forms:</strong> {{ info.page_summary.forms }} &middot; <strong>Inputs:</strong> {{ info.page_summary.inputs }} &middot; <strong>Buttons:</strong> {{ info.page_summary.buttons }}</p>
    <pre>{{ info.page_summary.text_excerpt }}</pre>
    {% endif %}

    <h2>Artifacts</h2>
    {% if artifacts.screenshot %}<h3>Screenshot</h3><img src="{{ links.screenshot }}" alt="Failure Screenshot">{% endif %}
    <ul>
    {% for kind, name in artifacts.items() %}<li><strong>{{ kind }}:</strong> <a href="{{ links[kind] }}">{{ name }}</a></li>{% endfor %}
    </ul>

    <h2>Troubleshooting Suggestions</h2>
    <ul>
    {% for suggestion in suggestions %}<li>{{ suggestion }}</li>{% endfor %}
    </ul>

    <footer>Generated by e2e-orchestrator at {{ generated_at }}</footer>
</body>
</html>
"""
