#!/usr/bin/env python3
"""
Command line entry point for the e2e orchestrator
"""

import asyncio
import argparse
import json
import logging
import os
import re
import shlex
import sys
from typing import Any, Dict, List, Optional

from playwright.async_api import async_playwright

from e2e_orchestrator.environment_validator import EnvironmentValidationError
from e2e_orchestrator.models import StandardViewport
from e2e_orchestrator.modes import MODE_CONFIGS, ModeResolver
from e2e_orchestrator.session import HarnessSession
from e2e_orchestrator.visual import VisualComparisonOptions

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logger = logging.getLogger(__name__)


class UTF8StreamHandler(logging.StreamHandler):
    """StreamHandler that uses UTF-8 encoding for Windows compatibility"""
    def __init__(self, stream=None):
        if stream is None:
            stream = sys.stderr
        # Wrap stream with UTF-8 encoding for Windows
        if sys.platform == 'win32' and hasattr(stream, 'reconfigure'):
            try:
                stream.reconfigure(encoding='utf-8', errors='replace')
            except (AttributeError, ValueError):
                pass
        super().__init__(stream)

    def emit(self, record):
        """Emit a record, handling Unicode encoding errors gracefully"""
        try:
            msg = self.format(record)
            stream = self.stream
            if sys.platform == 'win32':
                try:
                    stream.write(msg + self.terminator)
                except UnicodeEncodeError:
                    stream.buffer.write((msg + self.terminator).encode('utf-8', errors='replace'))
                    stream.flush()
            else:
                stream.write(msg + self.terminator)
            self.flush()
        except Exception:
            self.handleError(record)


def setup_logging(session: HarnessSession, debug: bool = False):
    """
    Configure root logging from the session settings

    DEBUG when requested or when the environment sets DEBUG, WARNING for
    modes without verbose logging, otherwise the configured level.
    """
    log_settings = session.settings.get('logging', {})
    level = getattr(logging, str(log_settings.get('level', 'INFO')).upper(), logging.INFO)
    if debug or session.environment.debug:
        level = logging.DEBUG
    elif not session.mode_config.verbose_logging and level < logging.WARNING:
        level = logging.WARNING

    handlers: List[logging.Handler] = [UTF8StreamHandler(sys.stderr)]
    if log_settings.get('file'):
        handlers.append(logging.FileHandler(log_settings['file'], encoding='utf-8'))
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)


def is_playwright_browser_error(error: Exception) -> bool:
    """Check if error is related to missing Playwright browsers"""
    error_msg = str(error)
    return ("Executable doesn't exist" in error_msg or
            "playwright install" in error_msg.lower() or
            "BrowserType.launch" in error_msg)


def sanitize_error_message(error: Exception) -> str:
    """Remove Unicode box-drawing characters from error messages"""
    error_msg = str(error)
    sanitized = re.sub(r'[╔╗╚╝║═╠╣╦╩╬]', '', error_msg)
    sanitized = re.sub(r'\n\s*\n+', '\n', sanitized)
    sanitized = re.sub(r'Looks like Playwright.*?Playwright Team', '', sanitized, flags=re.DOTALL)
    return sanitized.strip()


def print_json(data: Any):
    print(json.dumps(data, indent=2, default=str))


def cmd_mode_info(session: HarnessSession, args) -> int:
    """Print the resolved mode, or every mode with --all"""
    if args.all:
        print_json([ModeResolver.summary(config) for config in MODE_CONFIGS.values()])
        return 0
    session.timeouts.log_configuration()
    summary = ModeResolver.summary(session.mode_config)
    summary['adjusted_timeouts'] = session.timeouts.all()
    summary['update_mode'] = session.update_mode.value if session.update_mode else None
    print_json(summary)
    return 0


def cmd_diagnose(session: HarnessSession, args) -> int:
    report = session.probe.diagnose()
    report['mode'] = session.mode_config.mode.value
    report['artifacts_root'] = str(session.artifacts_root)
    print_json(report)
    return 0


def cmd_validate(session: HarnessSession, args) -> int:
    validator = session.validator()
    try:
        result = validator.validate_or_raise()
    except EnvironmentValidationError as e:
        print_json(e.result.to_dict())
        logger.error(str(e))
        return 1
    print_json(result.to_dict())
    return 0


def cmd_env(session: HarnessSession, args) -> int:
    """Print shell exports for the resolved mode's variables"""
    variables: Dict[str, str] = {}
    ModeResolver.apply_environment(session.mode_config, variables)
    for name, value in sorted(variables.items()):
        if args.format == 'dotenv':
            print(f"{name}={value}")
        else:
            print(f"export {name}={shlex.quote(value)}")
    return 0


async def generate_baselines(session: HarnessSession, targets: List[Dict[str, str]],
                             viewports: List[str], snapshots_dir: Optional[str] = None) -> int:
    """
    Open each URL in a real browser and write its baseline screenshots

    Args:
        session: Harness session
        targets: Dictionaries with 'name' and 'url'
        viewports: Standard viewport names
        snapshots_dir: Directory overriding the configured one

    Returns:
        Process exit code
    """
    settings = session.settings.get('baselines', {})
    comparator = session.visual_comparator(snapshots_dir)
    failures = 0

    async with async_playwright() as playwright:
        browser_type = getattr(playwright, settings.get('browser', 'chromium'))
        try:
            browser = await browser_type.launch(headless=settings.get('headless', True))
        except Exception as e:
            if is_playwright_browser_error(e):
                logger.error(f"Could not launch browser: {sanitize_error_message(e)}")
                logger.error("Please install Playwright browsers by running: playwright install chromium")
                return 1
            raise

        try:
            for target in targets:
                page = await browser.new_page()
                try:
                    await page.goto(target['url'],
                                    wait_until=settings.get('wait_until', 'networkidle'),
                                    timeout=settings.get('navigation_timeout', 30000))
                    for viewport in viewports:
                        path = await comparator.generate_baseline(
                            page, target['name'], VisualComparisonOptions(viewport=viewport))
                        print(path)
                except Exception as e:
                    failures += 1
                    logger.error(f"Baseline generation failed for {target['name']} ({target['url']}): {e}")
                finally:
                    await page.close()
        finally:
            await browser.close()

    return 1 if failures else 0


def parse_targets(values: List[str]) -> List[Dict[str, str]]:
    """Parse NAME=URL pairs"""
    targets = []
    for value in values:
        name, sep, url = value.partition('=')
        if not sep or not name or not url:
            raise argparse.ArgumentTypeError(f"Expected NAME=URL, got '{value}'")
        targets.append({'name': name, 'url': url})
    return targets


def cmd_baselines(session: HarnessSession, args) -> int:
    try:
        targets = parse_targets(args.targets)
    except argparse.ArgumentTypeError as e:
        logger.error(str(e))
        return 2
    viewports = args.viewport or session.settings.get('baselines', {}).get('viewports', ['desktop'])
    return asyncio.run(generate_baselines(session, targets, viewports, args.snapshots_dir))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Test mode, environment and artifact tooling for Playwright suites',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py mode-info
  TEST_MODE=ci-visual python main.py mode-info
  python main.py validate --config config/default_config.yaml
  eval "$(python main.py env)"
  python main.py baselines home=http://localhost:3000 --viewport mobile --viewport desktop
        """
    )
    parser.add_argument(
        '--config',
        type=str,
        default=None,
        help='Path to configuration YAML file (default: config/default_config.yaml)'
    )
    parser.add_argument(
        '--artifacts-dir',
        type=str,
        default=None,
        help='Artifact root directory (overrides config)'
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    mode_info = subparsers.add_parser('mode-info', help='Show the resolved test mode')
    mode_info.add_argument('--all', action='store_true', help='Show every mode')
    mode_info.set_defaults(handler=cmd_mode_info)

    diagnose = subparsers.add_parser('diagnose', help='Print environment diagnostics')
    diagnose.set_defaults(handler=cmd_diagnose)

    validate = subparsers.add_parser('validate', help='Check artifact directories and CI variables')
    validate.set_defaults(handler=cmd_validate)

    env = subparsers.add_parser('env', help="Print the resolved mode's environment variables")
    env.add_argument('--format', choices=('shell', 'dotenv'), default='shell')
    env.set_defaults(handler=cmd_env)

    baselines = subparsers.add_parser('baselines', help='Capture baseline screenshots')
    baselines.add_argument('targets', nargs='+', metavar='NAME=URL', help='Screenshot name and page URL')
    baselines.add_argument('--viewport', action='append',
                           choices=[v.value for v in StandardViewport],
                           help='Viewport to capture (repeatable; default from config)')
    baselines.add_argument('--snapshots-dir', default=None, help='Baseline directory (overrides config)')
    baselines.set_defaults(handler=cmd_baselines)

    return parser


def main(argv: Optional[List[str]] = None, env: Optional[Dict[str, str]] = None) -> int:
    """Main execution function"""
    args = build_parser().parse_args(argv)
    env = dict(os.environ if env is None else env)
    if args.artifacts_dir:
        env['E2E_ARTIFACTS_DIR'] = args.artifacts_dir

    session = HarnessSession.create(env=env, config_path=args.config)
    setup_logging(session, args.debug)

    try:
        return args.handler(session, args)
    except Exception as e:
        logger.error(f"Error during execution: {e}", exc_info=True)
        return 1


def cli():
    sys.exit(main())


if __name__ == "__main__":
    cli()
