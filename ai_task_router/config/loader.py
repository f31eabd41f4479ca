"""
Configuration management and loading.

Handles router settings, the seed model catalog and environment overrides.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import structlog
import yaml

from ai_task_router.storage.models import ModelDescriptor

logger = structlog.get_logger(__name__)

MAIN_AGENT_ENV = "MAIN_AGENT_MODEL"
DEFAULT_DB_PATH = "ai_task_router.db"

DEFAULT_SYSTEM_PROMPT = (
    "You are a routing agent. Pick the single most suitable model for the user's "
    "task from the list of available models, preferring lower rank when models are "
    "equally capable, and estimate how many tokens the task will need."
)


@dataclass(frozen=True)
class SelectionConfig:
    """Candidate selection and fallback parameters."""
    failure_rate_threshold: float = 20.0
    min_token_buffer: int = 100
    max_fallback_attempts: int = 3
    failure_rate_window_seconds: int = 86400
    candidate_floor_tokens: int = 1
    emergency_floor_tokens: int = 400
    default_token_estimate: int = 400

    def __post_init__(self):
        """Validate selection parameters are in range."""
        if not 0 <= self.failure_rate_threshold <= 100:
            raise ValueError("failure_rate_threshold must be between 0 and 100")
        if self.min_token_buffer < 0:
            raise ValueError("min_token_buffer cannot be negative")
        if self.max_fallback_attempts < 1:
            raise ValueError("max_fallback_attempts must be >= 1")
        if self.failure_rate_window_seconds <= 0:
            raise ValueError("failure_rate_window_seconds must be > 0")
        if self.candidate_floor_tokens < 0:
            raise ValueError("candidate_floor_tokens cannot be negative")
        if self.emergency_floor_tokens < 0:
            raise ValueError("emergency_floor_tokens cannot be negative")
        if self.default_token_estimate <= 0:
            raise ValueError("default_token_estimate must be > 0")


@dataclass(frozen=True)
class OracleConfig:
    """Model that acts as the decision oracle."""
    origin: str
    model: str
    temperature: float = 0.2
    system_prompt: str = DEFAULT_SYSTEM_PROMPT

    def __post_init__(self):
        """Validate oracle identity."""
        if not self.origin.strip():
            raise ValueError("oracle origin cannot be empty")
        if not self.model.strip():
            raise ValueError("oracle model cannot be empty")


@dataclass(frozen=True)
class ProviderConfig:
    """Credentials and endpoint for one origin."""
    api_key_env: str
    base_url: Optional[str] = None
    timeout_seconds: float = 60.0

    def __post_init__(self):
        """Validate provider settings."""
        if not self.api_key_env.strip():
            raise ValueError("api_key_env cannot be empty")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")


@dataclass(frozen=True)
class LoggingConfig:
    """Log level and renderer."""
    level: str = "INFO"
    format: str = "console"

    def __post_init__(self):
        if self.format not in ("console", "json"):
            raise ValueError("logging format must be 'console' or 'json'")


@dataclass(frozen=True)
class RouterConfig:
    """Complete router configuration."""
    oracle: OracleConfig
    selection: SelectionConfig = field(default_factory=SelectionConfig)
    providers: Dict[str, ProviderConfig] = field(default_factory=dict)
    catalog: List[ModelDescriptor] = field(default_factory=list)
    storage_path: str = DEFAULT_DB_PATH
    outcome_retention_days: int = 7
    agent_prompt: str = ""
    logging: LoggingConfig = field(default_factory=LoggingConfig)


_TOP_LEVEL_KEYS = {
    'storage', 'selection', 'oracle', 'providers', 'catalog',
    'catalog_dir', 'agent_prompt', 'logging'
}
_MODEL_KEYS = {
    'name', 'rank', 'description', 'enabled',
    'rpm_allowed', 'tpm_total', 'rpd_total', 'tpd_total'
}
_REQUIRED_LIMIT_KEYS = ('rpm_allowed', 'tpm_total', 'rpd_total')


def load_router_config(path: str, env: Optional[Mapping[str, str]] = None) -> RouterConfig:
    """Load and validate router configuration from a YAML file.

    Strict validation: unknown keys and out-of-range values are errors,
    never silently ignored.

    Args:
        path: Path to YAML configuration file
        env: Environment used for overrides (defaults to os.environ)

    Returns:
        Validated RouterConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    env = os.environ if env is None else env
    config_path = Path(path)
    raw_config = _read_yaml(config_path)

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration root must be a dictionary")

    unknown_keys = set(raw_config.keys()) - _TOP_LEVEL_KEYS
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    storage_data = _section(raw_config, 'storage')
    _reject_unknown(storage_data, {'path', 'outcome_retention_days'}, 'storage')
    outcome_retention_days = storage_data.get('outcome_retention_days', 7)
    if not isinstance(outcome_retention_days, int) or outcome_retention_days <= 0:
        raise ValueError("'storage.outcome_retention_days' must be a positive integer")

    selection = _parse_selection(_section(raw_config, 'selection'))
    oracle = _parse_oracle(raw_config.get('oracle'), env)

    providers_data = _section(raw_config, 'providers')
    providers = {
        origin.strip().lower(): _parse_provider(data, f"providers.{origin}")
        for origin, data in providers_data.items()
    }

    catalog = parse_catalog(_section(raw_config, 'catalog'))
    if 'catalog_dir' in raw_config:
        catalog_dir = Path(raw_config['catalog_dir'])
        if not catalog_dir.is_absolute():
            catalog_dir = config_path.parent / catalog_dir
        catalog = _merge_catalogs(catalog, load_catalog_dir(str(catalog_dir)))

    agent_prompt = raw_config.get('agent_prompt') or ""
    if not isinstance(agent_prompt, str):
        raise ValueError("'agent_prompt' must be a string")

    logging_data = _section(raw_config, 'logging')
    _reject_unknown(logging_data, {'level', 'format'}, 'logging')

    return RouterConfig(
        oracle=oracle,
        selection=selection,
        providers=providers,
        catalog=catalog,
        storage_path=str(storage_data.get('path', DEFAULT_DB_PATH)),
        outcome_retention_days=outcome_retention_days,
        agent_prompt=agent_prompt,
        logging=LoggingConfig(
            level=str(logging_data.get('level', 'INFO')).upper(),
            format=str(logging_data.get('format', 'console')).lower()
        )
    )


def parse_catalog(data: Dict[str, Any]) -> List[ModelDescriptor]:
    """Parse a catalog grouped by origin into model descriptors.

    Entries missing any of the rpm/tpm/rpd ceilings are skipped with a
    warning. A missing tpd_total defaults to a full day of tpm_total.

    Args:
        data: Mapping of origin -> list of model entries

    Returns:
        Descriptors in catalog order

    Raises:
        ValueError: If an entry is malformed
    """
    models = []
    for origin, entries in data.items():
        path = f"catalog.{origin}"
        if not isinstance(entries, list):
            raise ValueError(f"'{path}' must be a list of models")
        for index, entry in enumerate(entries):
            model = _parse_model(origin, entry, f"{path}[{index}]")
            if model is not None:
                models.append(model)
    return models


def load_catalog_dir(path: str) -> List[ModelDescriptor]:
    """Load one catalog file per origin from a directory.

    Each *.yaml / *.yml file holds an ``origin`` and a ``models`` list.

    Raises:
        FileNotFoundError: If the directory doesn't exist
        ValueError: If a file is malformed
    """
    directory = Path(path)
    if not directory.is_dir():
        raise FileNotFoundError(f"Catalog directory not found: {path}")

    models: List[ModelDescriptor] = []
    files = sorted(list(directory.glob("*.yaml")) + list(directory.glob("*.yml")))
    for catalog_file in files:
        raw = _read_yaml(catalog_file)
        if not isinstance(raw, dict) or not raw.get('origin') or 'models' not in raw:
            raise ValueError(f"Invalid catalog file: {catalog_file.name}")
        _reject_unknown(raw, {'origin', 'models'}, catalog_file.name)
        models = _merge_catalogs(models, parse_catalog({raw['origin']: raw['models']}))
    return models


def _read_yaml(path: Path) -> Any:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, 'r', encoding='utf-8') as f:
        try:
            return yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")


def _section(raw_config: Dict, key: str) -> Dict:
    data = raw_config.get(key) or {}
    if not isinstance(data, dict):
        raise ValueError(f"'{key}' must be a dictionary")
    return data


def _reject_unknown(data: Dict, allowed: set, path: str) -> None:
    unknown_keys = set(data.keys()) - allowed
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")


def _parse_selection(data: Dict) -> SelectionConfig:
    defaults = SelectionConfig()
    allowed = set(SelectionConfig.__dataclass_fields__)
    _reject_unknown(data, allowed, 'selection')

    values = {}
    for key in allowed:
        value = data.get(key, getattr(defaults, key))
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"'selection.{key}' must be a number")
        values[key] = value if key == 'failure_rate_threshold' else int(value)
    values['failure_rate_threshold'] = float(values['failure_rate_threshold'])
    return SelectionConfig(**values)


def _parse_oracle(data: Any, env: Mapping[str, str]) -> OracleConfig:
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("'oracle' must be a dictionary")
    _reject_unknown(data, {'origin', 'model', 'temperature', 'system_prompt'}, 'oracle')

    origin = data.get('origin')
    model = data.get('model')

    override = env.get(MAIN_AGENT_ENV, "").strip()
    if override:
        env_origin, _, env_model = override.partition(":")
        if not env_origin or not env_model:
            raise ValueError(
                f"{MAIN_AGENT_ENV} must be in format 'origin:model' (e.g., google:gemini-2.5-flash)"
            )
        origin, model = env_origin, env_model
        logger.info("oracle_from_env", origin=origin, model=model)

    if not origin or not isinstance(origin, str):
        raise ValueError("Missing required 'oracle.origin'")
    if not model or not isinstance(model, str):
        raise ValueError("Missing required 'oracle.model'")

    temperature = data.get('temperature', 0.2)
    if isinstance(temperature, bool) or not isinstance(temperature, (int, float)) or temperature < 0:
        raise ValueError("'oracle.temperature' must be a non-negative number")

    system_prompt = data.get('system_prompt') or DEFAULT_SYSTEM_PROMPT
    if not isinstance(system_prompt, str):
        raise ValueError("'oracle.system_prompt' must be a string")

    return OracleConfig(
        origin=origin.strip().lower(),
        model=model.strip(),
        temperature=float(temperature),
        system_prompt=system_prompt
    )


def _parse_provider(data: Any, path: str) -> ProviderConfig:
    if not isinstance(data, dict):
        raise ValueError(f"'{path}' must be a dictionary")
    _reject_unknown(data, {'api_key_env', 'base_url', 'timeout_seconds'}, path)

    if 'api_key_env' not in data:
        raise ValueError(f"Missing required 'api_key_env' in {path}")

    timeout = data.get('timeout_seconds', 60.0)
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
        raise ValueError(f"'timeout_seconds' in {path} must be > 0")

    return ProviderConfig(
        api_key_env=str(data['api_key_env']),
        base_url=data.get('base_url'),
        timeout_seconds=float(timeout)
    )


def _parse_model(origin: str, data: Any, path: str) -> Optional[ModelDescriptor]:
    if not isinstance(data, dict):
        raise ValueError(f"'{path}' must be a dictionary")
    _reject_unknown(data, _MODEL_KEYS, path)

    if not data.get('name'):
        raise ValueError(f"Missing required 'name' in {path}")

    missing = [key for key in _REQUIRED_LIMIT_KEYS if data.get(key) is None]
    if missing:
        logger.warning("catalog_entry_skipped", model=data['name'], missing=missing)
        return None

    limits = {}
    for key in _REQUIRED_LIMIT_KEYS + ('tpd_total',):
        value = data.get(key)
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValueError(f"'{key}' in {path} must be a non-negative integer")
        limits[key] = value
    limits.setdefault('tpd_total', limits['tpm_total'] * 1440)

    rank = data.get('rank', 0)
    if isinstance(rank, bool) or not isinstance(rank, int):
        raise ValueError(f"'rank' in {path} must be an integer")

    return ModelDescriptor(
        name=str(data['name']),
        origin=origin.strip().lower(),
        rank=rank,
        description=str(data.get('description') or ""),
        enabled=bool(data.get('enabled', True)),
        **limits
    )


def _merge_catalogs(base: List[ModelDescriptor], extra: List[ModelDescriptor]) -> List[ModelDescriptor]:
    merged = {model.name: model for model in base}
    for model in extra:
        merged[model.name] = model
    return list(merged.values())
