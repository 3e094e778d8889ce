"""
Console and network recorders attached to a Playwright page
"""

from datetime import datetime
from typing import Any, Dict, List
import logging

from playwright.async_api import ConsoleMessage, Page, Request, Response

logger = logging.getLogger(__name__)


class ConsoleRecorder:
    """Collects browser console output and uncaught page errors"""

    def __init__(self, page: Page, echo: bool = False):
        """
        Initialize console recorder

        Args:
            page: Playwright page object
            echo: Also forward browser messages to the logger
        """
        self.page = page
        self.echo = echo
        self.entries: List[str] = []
        self.errors: List[str] = []
        self._attached = False

    def start(self) -> 'ConsoleRecorder':
        if not self._attached:
            self.page.on("console", self._on_console)
            self.page.on("pageerror", self._on_page_error)
            self._attached = True
        return self

    def stop(self):
        if self._attached:
            self.page.remove_listener("console", self._on_console)
            self.page.remove_listener("pageerror", self._on_page_error)
            self._attached = False

    def _on_console(self, message: ConsoleMessage):
        entry = f"[{datetime.now().isoformat()}] [{message.type}] {message.text}"
        self.entries.append(entry)
        if message.type == "error":
            self.errors.append(message.text)
        if self.echo:
            logger.debug(f"[Browser {message.type}] {message.text}")

    def _on_page_error(self, error: Any):
        entry = f"[{datetime.now().isoformat()}] [ERROR] {error}"
        self.entries.append(entry)
        self.errors.append(str(error))
        if self.echo:
            logger.debug(f"[Browser Error] {error}")

    def text(self) -> str:
        return "\n".join(self.entries)


class NetworkRecorder:
    """Collects requests, responses and failed requests"""

    def __init__(self, page: Page):
        self.page = page
        self.requests: List[Dict[str, Any]] = []
        self.responses: List[Dict[str, Any]] = []
        self.failures: List[Dict[str, Any]] = []
        self._attached = False

    def start(self) -> 'NetworkRecorder':
        if not self._attached:
            self.page.on("request", self._on_request)
            self.page.on("response", self._on_response)
            self.page.on("requestfailed", self._on_request_failed)
            self._attached = True
        return self

    def stop(self):
        if self._attached:
            self.page.remove_listener("request", self._on_request)
            self.page.remove_listener("response", self._on_response)
            self.page.remove_listener("requestfailed", self._on_request_failed)
            self._attached = False

    def _on_request(self, request: Request):
        self.requests.append({
            'url': request.url,
            'method': request.method,
            'resource_type': request.resource_type,
            'timestamp': datetime.now().isoformat(),
        })

    def _on_response(self, response: Response):
        self.responses.append({
            'url': response.url,
            'status': response.status,
            'method': response.request.method,
            'timestamp': datetime.now().isoformat(),
        })

    def _on_request_failed(self, request: Request):
        self.failures.append({
            'url': request.url,
            'method': request.method,
            'failure': request.failure,
            'timestamp': datetime.now().isoformat(),
        })

    def to_dict(self) -> Dict[str, Any]:
        return {
            'requests': self.requests,
            'responses': self.responses,
            'failures': self.failures,
            'summary': {
                'total_requests': len(self.requests),
                'failed_requests': len(self.failures),
                'error_responses': sum(1 for r in self.responses if r['status'] >= 400),
            },
        }
