"""
Configuration loader for YAML config files
"""

import copy
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional
import logging

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "default_config.yaml"


class ConfigLoader:
    """Loads and manages configuration"""

    @staticmethod
    def load_config(config_path: Optional[str] = None,
                    env: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
        """
        Load configuration from YAML file

        Args:
            config_path: Path to config file (defaults to config/default_config.yaml)
            env: Environment used for overrides (defaults to os.environ)

        Returns:
            Configuration dictionary layered over the built-in defaults
        """
        env = os.environ if env is None else env
        config = ConfigLoader._get_default_config()

        if config_path is None:
            if DEFAULT_CONFIG_PATH.exists():
                config_path = str(DEFAULT_CONFIG_PATH)
            else:
                return ConfigLoader._apply_env_overrides(config, env)

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f) or {}
            config = ConfigLoader._merge(config, loaded)
            logger.info(f"Loaded configuration from {config_path}")
        except Exception as e:
            logger.warning(f"Error loading config from {config_path}: {e}. Using defaults.")

        return ConfigLoader._apply_env_overrides(config, env)

    @staticmethod
    def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Section-wise merge; values inside a section replace wholesale"""
        merged = copy.deepcopy(base)
        for key, value in override.items():
            if isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key].update(value)
            else:
                merged[key] = value
        return merged

    @staticmethod
    def _apply_env_overrides(config: Dict[str, Any], env: Mapping[str, str]) -> Dict[str, Any]:
        """Apply environment variable overrides"""
        # Output directories
        if env.get('E2E_ARTIFACTS_DIR'):
            config.setdefault('artifacts', {})['root_dir'] = env['E2E_ARTIFACTS_DIR']

        if env.get('E2E_SNAPSHOTS_DIR'):
            config.setdefault('visual', {})['snapshots_dir'] = env['E2E_SNAPSHOTS_DIR']

        # Visual policy
        if env.get('VISUAL_SOFT_FAIL_IN_CI'):
            config.setdefault('visual', {})['soft_fail_in_ci'] = \
                env['VISUAL_SOFT_FAIL_IN_CI'].lower() in ('1', 'true', 'yes')

        # Diagnostics
        if env.get('E2E_DEBUG_LEVEL'):
            config.setdefault('diagnostics', {})['debug_level'] = env['E2E_DEBUG_LEVEL']

        if env.get('E2E_LOG_LEVEL'):
            config.setdefault('logging', {})['level'] = env['E2E_LOG_LEVEL'].upper()

        return config

    @staticmethod
    def _get_default_config() -> Dict[str, Any]:
        """Get minimal default configuration"""
        return {
            'artifacts': {
                'root_dir': 'test-results/e2e-artifacts',
                'create_html_reports': True,
                'capture_html': True,
            },
            'visual': {
                'snapshots_dir': 'tests/snapshots',
                'soft_fail_in_ci': True,
                'default_timeout': 15000,
                'stability_delay': 200,
                'animation_poll_interval': 100,
            },
            'retry': {
                'retries': 3,
                'delay': 1000,
                'backoff': 1.5,
                'max_delay': 10000,
            },
            'diagnostics': {
                'debug_level': 'standard',
                'capture_performance_metrics': True,
                'metrics_interval': None,
            },
            'validation': {
                'required_subdirs': ['screenshots', 'videos', 'traces', 'downloads'],
                'required_ci_vars': [],
            },
            'baselines': {
                'browser': 'chromium',
                'headless': True,
                'wait_until': 'networkidle',
                'navigation_timeout': 30000,
                'viewports': ['desktop'],
            },
            'logging': {
                'level': 'INFO',
                'file': 'e2e-orchestrator.log',
            },
        }
