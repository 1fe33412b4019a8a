"""
Configuration loader for the discovery and polling server
Loads and validates configuration from YAML files
"""

import os
import yaml
import logging
from typing import Dict, Any, Optional
from pathlib import Path
from datetime import datetime
import pytz
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

ENCRYPTION_SECRET_ENV = "ENCRYPTION_SECRET"


def load_config(config_path: str = "config/config.yaml") -> Dict[str, Any]:
    """
    Load configuration from YAML file with validation
    """
    try:
        config_file = Path(config_path)
        if not config_file.exists():
            logger.error(f"Configuration file not found: {config_path}")
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_file, 'r') as f:
            config = yaml.safe_load(f) or {}

        _validate_config(config)
        config = _apply_defaults(config)

        logger.info(f"Configuration loaded from {config_path}")
        return config

    except Exception as e:
        logger.error(f"Failed to load configuration: {e}")
        raise


def _validate_config(config: Dict) -> None:
    """Validate that required configuration sections exist"""
    required_sections = ['database', 'plugin']

    for section in required_sections:
        if section not in config:
            raise ValueError(f"Missing required configuration section: {section}")

    db = config['database']
    required_db_fields = ['host', 'port', 'database', 'username', 'password']
    for field in required_db_fields:
        if field not in db:
            raise ValueError(f"Missing required database field: {field}")

    plugin = config['plugin']
    if not plugin.get('path'):
        raise ValueError("plugin.path is required")

    polling = config.get('polling', {})
    interval = polling.get('interval_seconds')
    if interval is not None and interval <= 0:
        raise ValueError("polling.interval_seconds must be positive")


def _merge_defaults(section: Dict, defaults: Dict) -> None:
    for key, default_value in defaults.items():
        if isinstance(default_value, dict):
            section.setdefault(key, {})
            _merge_defaults(section[key], default_value)
        elif key not in section:
            section[key] = default_value


def _apply_defaults(config: Dict) -> Dict:
    """Apply default values to configuration"""

    # Probe defaults (ping -c/-W/-i, nc -w)
    config.setdefault('probe', {})
    _merge_defaults(config['probe'], {
        'ping_command': 'ping',
        'port_command': 'nc',
        'ping': {
            'count': 1,
            'timeout': 1,
            'interval': 0.2
        },
        'port': {
            'timeout': 2,
            'default_port': 22
        },
        'timeout_margin': 2,
        'max_workers': 32
    })

    _merge_defaults(config['plugin'], {
        'timeout_seconds': 60,
        'max_workers': 4
    })

    config.setdefault('polling', {})
    _merge_defaults(config['polling'], {
        'interval_seconds': 60,
        'auto_start': True
    })

    config.setdefault('database', {})
    _merge_defaults(config['database'], {
        'min_pool_size': 2,
        'max_pool_size': 10,
        'command_timeout': 10
    })

    config.setdefault('api', {})
    _merge_defaults(config['api'], {
        'host': '0.0.0.0',
        'port': 8000
    })

    config.setdefault('logging', {})
    _merge_defaults(config['logging'], {
        'level': 'INFO',
        'file': 'logs/poller.log',
        'console_output': True,
        'timezone': 'UTC'
    })

    config.setdefault('security', {})

    return config


def get_encryption_secret(config: Dict) -> Optional[str]:
    """
    Shared AES key for the plugin protocol and stored credentials
    Environment (or .env file) takes precedence over the YAML value
    """
    load_dotenv()
    secret = os.environ.get(ENCRYPTION_SECRET_ENV)
    if secret:
        return secret
    return config.get('security', {}).get('encryption_secret')


class ZoneFormatter(logging.Formatter):
    """Formatter that renders timestamps in the configured timezone"""

    def __init__(self, fmt=None, timezone_name: str = 'UTC'):
        super().__init__(fmt)
        self.tz = pytz.timezone(timezone_name)

    def formatTime(self, record, datefmt=None):
        dt = datetime.fromtimestamp(record.created, tz=self.tz)
        if datefmt:
            return dt.strftime(datefmt)
        return dt.strftime('%Y-%m-%d %H:%M:%S %Z')


def setup_logging(config: Dict) -> None:
    """Setup logging based on configuration"""
    log_config = config.get('logging', {})
    level = log_config.get('level', 'INFO')

    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    formatter = ZoneFormatter(log_format, log_config.get('timezone', 'UTC'))

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=log_format,
        handlers=[]
    )

    if log_config.get('console_output', True):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        logging.getLogger().addHandler(console_handler)

    log_file = log_config.get('file')
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logging.getLogger().addHandler(file_handler)

    logger.info(f"Logging configured: level={level}, console={log_config.get('console_output', True)}, file={log_file}")
