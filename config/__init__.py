import os
import json
from pathlib import Path
from dotenv import load_dotenv
from .logging_config import setup_app_logging
import logging

# Load environment variables from .env file
load_dotenv()

# Get the config directory path (where this file is located)
CONFIG_DIR = Path(__file__).parent

PROJECT_ROOT = CONFIG_DIR.parent

# Load configuration from config.json
config_path = CONFIG_DIR / 'config.json'
with open(config_path, 'r', encoding='utf-8') as f:
    CONFIG = json.load(f)

# CONFIG is the in-memory runtime representation of config.json, enriched below
# with values resolved from the environment.
CONFIG['project_root'] = str(PROJECT_ROOT)

# Environment variables. None of them is required: the flow services may run
# without authentication on a private network.
ENV = {
    'FLOW_SERVICE_TOKEN': os.getenv('FLOW_SERVICE_TOKEN'),
}

def validate_config():
    """Validate that all required configuration sections are present.

    The router itself has no mandatory secrets. It needs the thread tuning
    section, the dispatcher timeouts, and the endpoints of the two external
    collaborators (classifier and responders).
    """
    required_sections = ['threads', 'dispatcher', 'classifier', 'responders']
    for section in required_sections:
        if section not in CONFIG:
            raise ValueError(f"Missing configuration section: {section}")

    for key in ('note_base_url', 'answer_base_url'):
        if key not in CONFIG['responders']:
            raise ValueError(f"Missing configuration for responder endpoint: {key}")

def validate_runtime_settings(config: dict = None):
    """Check the resolved tuning values, after environment overrides have been applied."""
    config = CONFIG if config is None else config

    threshold = config['threads'].get('match_threshold')
    if isinstance(threshold, bool) or not isinstance(threshold, (int, float)) or not 0 <= threshold < 1:
        raise ValueError(f"threads.match_threshold must be in [0, 1), got {threshold!r}")

    positive = [
        ('threads', 'max_age_hours'),
        ('threads', 'sweep_interval_minutes'),
        ('dispatcher', 'classifier_timeout_seconds'),
        ('dispatcher', 'responder_timeout_seconds'),
    ]
    for section, key in positive:
        value = config[section].get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
            raise ValueError(f"{section}.{key} must be a positive number, got {value!r}")

# Validate configuration on module import
validate_config()

# --- Helper function to get config value from CONFIG or environment variable ---
def get_config_value(json_keys: list, env_var_name: str, default_value: any = None):
    """
    Retrieves a configuration value.
    Priority:
    1. Environment variable (if env_var_name is provided and variable is set).
    2. Value from CONFIG dictionary (using json_keys).
    3. default_value.
    """
    # Try environment variable first
    if env_var_name:
        env_value = os.getenv(env_var_name)
        if env_value is not None:
            # Attempt to match type of default_value if it's bool, int or float
            if isinstance(default_value, bool):
                if env_value.lower() == 'true': return True
                if env_value.lower() == 'false': return False
            elif isinstance(default_value, int):
                try:
                    return int(env_value)
                except ValueError:
                    pass # Fall through to JSON or default if not a valid int
            elif isinstance(default_value, float):
                try:
                    return float(env_value)
                except ValueError:
                    pass
            return env_value

    # Try from CONFIG dictionary (loaded from JSON)
    current_level = CONFIG
    try:
        for key in json_keys:
            current_level = current_level[key]
        if isinstance(current_level, (str, int, bool, float, list, dict)):
             return current_level
    except (KeyError, TypeError):
        pass # Key not found or CONFIG structure not as expected, fall through to default

    # Fallback to default value
    return default_value

# --- Thread router settings (environment overrides JSON) ---
CONFIG['threads'].update({
    'match_threshold': get_config_value(['threads', 'match_threshold'], 'THREAD_MATCH_THRESHOLD', 0.3),
    'max_age_hours': get_config_value(['threads', 'max_age_hours'], 'THREAD_MAX_AGE_HOURS', 24.0),
    'sweep_interval_minutes': get_config_value(['threads', 'sweep_interval_minutes'], 'THREAD_SWEEP_INTERVAL_MINUTES', 60),
    'sweep_enabled': get_config_value(['threads', 'sweep_enabled'], 'THREAD_SWEEP_ENABLED', True),
    'context_message_limit': get_config_value(['threads', 'context_message_limit'], None, 5),
})
CONFIG['dispatcher'].update({
    'classifier_timeout_seconds': get_config_value(
        ['dispatcher', 'classifier_timeout_seconds'], 'CLASSIFIER_TIMEOUT_SECONDS', 5.0
    ),
    'responder_timeout_seconds': get_config_value(
        ['dispatcher', 'responder_timeout_seconds'], 'RESPONDER_TIMEOUT_SECONDS', 20.0
    ),
})
CONFIG['classifier']['base_url'] = get_config_value(['classifier', 'base_url'], 'CLASSIFIER_BASE_URL', '')
CONFIG['responders']['note_base_url'] = get_config_value(['responders', 'note_base_url'], 'NOTE_FLOW_BASE_URL', '')
CONFIG['responders']['answer_base_url'] = get_config_value(['responders', 'answer_base_url'], 'ANSWER_FLOW_BASE_URL', '')

# Validate resolved values after environment overrides
validate_runtime_settings()

# --- Logging Configuration ---
# Defaults for logging config are also in logging_config.py's setup_app_logging function's signature
# or can be specified in config.json. Environment variables take precedence.
CONFIG['logging'] = {
    'level': get_config_value(['logging', 'level'], 'LOG_LEVEL', 'INFO'),
    'file_path': get_config_value(['logging', 'file_path'], 'LOG_FILE_PATH', 'logs/thread_router.log'),
    'max_bytes': get_config_value(['logging', 'max_bytes'], 'LOG_MAX_BYTES', 5*1024*1024), # 5MB
    'backup_count': get_config_value(['logging', 'backup_count'], 'LOG_BACKUP_COUNT', 3),
    'date_format': get_config_value(
        ['logging', 'date_format'],
        'LOG_DATE_FORMAT',
        '%Y-%m-%d %H:%M:%S'
    )
}

# --- Setup Application Logging ---
setup_app_logging(config=CONFIG.get('logging'))

config_init_logger = logging.getLogger(__name__) # Get logger for this module AFTER logging is setup
config_init_logger.info("[config_init] Logging initialized from config/__init__.py using setup_app_logging.")
