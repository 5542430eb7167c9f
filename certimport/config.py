"""
Configuration loading
Built-in defaults, overlaid with a JSON configuration file and a few
environment variables.
"""

import copy
import json
import logging
import os
from pathlib import Path
from typing import Dict, Optional

from certimport.core.errors import UsageError

CONFIG_ENV_VAR = 'CERTIMPORT_CONFIG'
DEFAULT_CONFIG_PATH = Path.home() / '.config' / 'certimport' / 'config.json'

DEFAULT_CONFIG = {
    'store': {
        'backend': 'pkcs12',
        'system_store': '/etc/certimport/truststore.p12',
        'system_store_password': None,
        'keytool_system_store': None,
    },
    'tools': {
        'openssl': 'openssl',
        'keytool': 'keytool',
        'fetch_timeout': 30,
        'keytool_timeout': 60,
    },
    'installed_certs': {
        'paths': [
            '/etc/ssl/certs/ca-certificates.crt',
            '/etc/pki/tls/certs/ca-bundle.crt',
            '/etc/ssl/cert.pem',
        ],
        'include_default_verify_paths': True,
    },
    'logging': {
        'level': 'WARNING',
        'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    },
}

ENV_OVERRIDES = {
    'CERTIMPORT_BACKEND': ('store', 'backend'),
    'CERTIMPORT_SYSTEM_STORE': ('store', 'system_store'),
    'CERTIMPORT_STORE_PASSWORD': ('store', 'system_store_password'),
}


def merge_config(base: Dict, override: Dict) -> Dict:
    """Recursively overlay ``override`` on a copy of ``base``"""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Optional[str] = None, environ: Optional[Dict[str, str]] = None) -> Dict:
    """
    Load configuration from file.

    Lookup order: explicit ``config_path``, ``$CERTIMPORT_CONFIG``, then
    ``~/.config/certimport/config.json``. Only the default location may be
    missing.

    Args:
        config_path: Configuration file path
        environ: Environment mapping (defaults to ``os.environ``)

    Returns:
        Configuration dictionary

    Raises:
        UsageError: if an explicitly requested file is missing or invalid
    """
    environ = os.environ if environ is None else environ
    explicit = config_path or environ.get(CONFIG_ENV_VAR)
    config_file = Path(explicit) if explicit else DEFAULT_CONFIG_PATH

    config = copy.deepcopy(DEFAULT_CONFIG)
    if config_file.exists():
        try:
            with open(config_file) as f:
                config = merge_config(config, json.load(f))
        except (OSError, json.JSONDecodeError) as e:
            raise UsageError(f"Invalid configuration file {config_file}: {e}")
        logging.getLogger(__name__).debug(f"Loaded configuration from {config_file}")
    elif explicit:
        raise UsageError(f"Configuration file not found: {config_file}")

    for env_var, (section, key) in ENV_OVERRIDES.items():
        if environ.get(env_var):
            config.setdefault(section, {})[key] = environ[env_var]

    return config


def setup_logging(config: Dict, verbose: bool = False) -> None:
    """Configure root logging once for the CLI"""
    logging_config = config.get('logging', {})
    if verbose:
        level = logging.DEBUG
    else:
        level = getattr(logging, str(logging_config.get('level', 'WARNING')).upper(), logging.WARNING)
    logging.basicConfig(level=level, format=logging_config.get('format', DEFAULT_CONFIG['logging']['format']))
