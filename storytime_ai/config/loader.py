"""
Configuration management and loading.

Loads AI provider settings, image pricing and moderation options from a YAML
file (with ${ENV} expansion) or from environment variables alone.
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from storytime_ai.core.errors import ConfigError
from storytime_ai.core.pricing import (
    DEFAULT_IMAGE_PRICING,
    IMAGE_PRICING_TABLE,
    ImagePricing,
    ImagePricingTable,
)

SUPPORTED_DRIVERS = ("openai", "llama", "nemotron3")

DEFAULT_PROVIDER = "openai"
DEFAULT_DATABASE_PATH = "storytime_ai.db"

_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


@dataclass(frozen=True)
class ProviderConfig:
    """Connection, default generation parameters and pricing of one provider."""
    name: str
    driver: str
    model: str
    base_url: str
    api_key: Optional[str] = None
    max_tokens: int = 4000
    temperature: float = 1.0
    cost_per_1k_tokens: float = 0.0
    timeout: int = 120
    endpoint: Optional[str] = None
    token: Optional[str] = None

    def __post_init__(self):
        """Validate provider values."""
        if self.driver not in SUPPORTED_DRIVERS:
            raise ConfigError(
                f"Provider '{self.name}' has unsupported driver '{self.driver}', "
                f"must be one of: {list(SUPPORTED_DRIVERS)}"
            )
        if not self.model:
            raise ConfigError(f"Provider '{self.name}' must define a model")
        if self.max_tokens <= 0:
            raise ConfigError(f"Provider '{self.name}': max_tokens must be > 0")
        if self.timeout <= 0:
            raise ConfigError(f"Provider '{self.name}': timeout must be > 0")
        if self.cost_per_1k_tokens < 0:
            raise ConfigError(f"Provider '{self.name}': cost_per_1k_tokens must be >= 0")


@dataclass(frozen=True)
class ModerationConfig:
    """OpenAI moderation settings."""
    enabled: bool = False
    model: str = "omni-moderation-latest"
    min_threshold: float = 0.5

    def __post_init__(self):
        if not 0.0 <= self.min_threshold <= 1.0:
            raise ConfigError("moderation.min_threshold must be between 0 and 1")


@dataclass(frozen=True)
class ReplicateConfig:
    """Replicate image generation settings."""
    api_key: Optional[str] = None
    base_url: str = "https://api.replicate.com/v1"
    use_custom_model: bool = False
    custom_model_version: str = ""
    custom_model_lora: str = ""
    custom_model_lora_scale: float = 1.0
    timeout: int = 120


@dataclass(frozen=True)
class StabilityConfig:
    """Stability AI image generation settings."""
    api_key: Optional[str] = None
    endpoint: str = "https://api.stability.ai/v2beta/stable-image/generate/ultra"
    timeout: int = 120


@dataclass(frozen=True)
class TranscribeConfig:
    """AWS Transcribe and S3 settings."""
    region: Optional[str] = None
    bucket: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    language_code: str = "en-US"


@dataclass(frozen=True)
class AiConfig:
    """Complete AI configuration."""
    default_provider: str
    providers: Dict[str, ProviderConfig]
    image_pricing: ImagePricingTable = IMAGE_PRICING_TABLE
    moderation: ModerationConfig = field(default_factory=ModerationConfig)
    replicate: ReplicateConfig = field(default_factory=ReplicateConfig)
    stability: StabilityConfig = field(default_factory=StabilityConfig)
    transcribe: TranscribeConfig = field(default_factory=TranscribeConfig)
    database_path: str = DEFAULT_DATABASE_PATH

    def has_provider(self, name: str) -> bool:
        return name in self.providers

    def get_provider(self, name: str) -> ProviderConfig:
        """Get configuration for a provider.

        Raises:
            ConfigError: If the provider is not configured
        """
        if name not in self.providers:
            raise ConfigError(f"Provider '{name}' is not configured")
        return self.providers[name]


def expand_env(value: Any, environ: Optional[Mapping[str, str]] = None) -> Any:
    """Expand ``${VAR}`` and ``${VAR:-default}`` references in config values.

    Strings that consist of a single reference to an unset variable without a
    default become None, so optional secrets stay unset.
    """
    environ = os.environ if environ is None else environ

    if isinstance(value, dict):
        return {key: expand_env(item, environ) for key, item in value.items()}
    if isinstance(value, list):
        return [expand_env(item, environ) for item in value]
    if not isinstance(value, str):
        return value

    whole = _ENV_PATTERN.fullmatch(value)
    if whole and whole.group(1) not in environ and whole.group(2) is None:
        return None

    def _replace(match: "re.Match[str]") -> str:
        name, default = match.group(1), match.group(2)
        return environ.get(name, default if default is not None else "")

    return _ENV_PATTERN.sub(_replace, value)


def load_ai_config(path: str, environ: Optional[Mapping[str, str]] = None) -> AiConfig:
    """Load and validate AI configuration from a YAML file.

    Strict validation ensures a typo in a provider block cannot silently
    route billing-sensitive traffic to the wrong model.

    Args:
        path: Path to YAML configuration file
        environ: Environment used for ${VAR} expansion (defaults to os.environ)

    Returns:
        Validated AiConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ConfigError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"AI config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ConfigError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ConfigError("Configuration root must be a dictionary")

    return parse_ai_config(expand_env(raw_config, environ))


def parse_ai_config(raw_config: Dict[str, Any]) -> AiConfig:
    """Validate an already-loaded configuration mapping."""
    allowed_top_keys = {
        'default', 'providers', 'image_pricing', 'moderation',
        'replicate', 'stability', 'transcribe', 'database',
    }
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ConfigError(f"Unknown configuration keys: {sorted(unknown_keys)}")

    providers_data = raw_config.get('providers')
    if not providers_data:
        raise ConfigError("Missing required 'providers' section")
    if not isinstance(providers_data, dict):
        raise ConfigError("'providers' must be a dictionary")

    providers = {}
    for name, provider_data in providers_data.items():
        if not isinstance(provider_data, dict):
            raise ConfigError(f"Provider '{name}' must be a dictionary")
        providers[name] = _parse_provider_config(name, provider_data)

    default_provider = raw_config.get('default') or DEFAULT_PROVIDER
    if default_provider not in providers:
        raise ConfigError(f"Default provider '{default_provider}' is not configured")

    database = _section(raw_config, 'database', {'path'})

    return AiConfig(
        default_provider=default_provider,
        providers=providers,
        image_pricing=_parse_image_pricing(raw_config.get('image_pricing')),
        moderation=_build(ModerationConfig, _section(raw_config, 'moderation', {'enabled', 'model', 'min_threshold'}), 'moderation'),
        replicate=_build(ReplicateConfig, _section(raw_config, 'replicate', {
            'api_key', 'base_url', 'use_custom_model', 'custom_model_version',
            'custom_model_lora', 'custom_model_lora_scale', 'timeout',
        }), 'replicate'),
        stability=_build(StabilityConfig, _section(raw_config, 'stability', {'api_key', 'endpoint', 'timeout'}), 'stability'),
        transcribe=_build(TranscribeConfig, _section(raw_config, 'transcribe', {
            'region', 'bucket', 'access_key_id', 'secret_access_key', 'language_code',
        }), 'transcribe'),
        database_path=database.get('path') or DEFAULT_DATABASE_PATH,
    )


def default_ai_config(environ: Optional[Mapping[str, str]] = None) -> AiConfig:
    """Build the configuration from environment variables only.

    Mirrors the provider defaults of a fresh deployment: OpenAI as the
    default provider, a local Llama server and a local Nemotron3 server.
    """
    env = os.environ if environ is None else environ
    raw_config = {
        'default': env.get('AI_PROVIDER', DEFAULT_PROVIDER),
        'providers': {
            'openai': {
                'driver': 'openai',
                'api_key': env.get('OPENAI_API_KEY'),
                'base_url': env.get('OPENAI_BASE_URL', 'https://api.openai.com/v1'),
                'model': env.get('OPENAI_MODEL', 'gpt-4.1'),
                'max_tokens': env.get('OPENAI_MAX_TOKENS', 4000),
                'temperature': env.get('OPENAI_TEMPERATURE', 1),
                'cost_per_1k_tokens': 0.002,
                'timeout': env.get('OPENAI_TIMEOUT', 120),
            },
            'llama': {
                'driver': 'llama',
                'base_url': env.get('LLAMA_BASE_URL', 'http://host.docker.internal:5009'),
                'endpoint': env.get('LLAMA_ENDPOINT', '/generate'),
                'model': env.get('LLAMA_MODEL', 'llama-3.2'),
                'max_tokens': env.get('LLAMA_MAX_TOKENS', 4000),
                'temperature': env.get('LLAMA_TEMPERATURE', 1),
                'cost_per_1k_tokens': 0.0,
                'timeout': env.get('LLAMA_TIMEOUT', 300),
                'token': env.get('LLAMA_TOKEN'),
            },
            'nemotron3': {
                'driver': 'nemotron3',
                'api_key': env.get('NEMOTRON3_API_KEY', 'sk-no-key-required'),
                'base_url': env.get('NEMOTRON3_BASE_URL', 'http://127.0.0.1:8001/v1'),
                'model': env.get('NEMOTRON3_MODEL', 'unsloth/Nemotron-3-Nano-30B-A3B'),
                'max_tokens': env.get('NEMOTRON3_MAX_TOKENS', 4000),
                'temperature': env.get('NEMOTRON3_TEMPERATURE', 0.8),
                'cost_per_1k_tokens': 0.0,
                'timeout': env.get('NEMOTRON3_TIMEOUT', 360),
            },
        },
        'moderation': {
            'enabled': env.get('AI_MODERATION_ENABLED', 'false'),
            'model': env.get('AI_MODERATION_MODEL', 'omni-moderation-latest'),
            'min_threshold': env.get('AI_MODERATION_MIN_THRESHOLD', 0.5),
        },
        'replicate': {
            'api_key': env.get('REPLICATE_API_KEY'),
            'use_custom_model': env.get('REPLICATE_USE_CUSTOM_MODEL', 'false'),
            'custom_model_version': env.get('REPLICATE_CUSTOM_MODEL_VERSION', ''),
            'custom_model_lora': env.get('REPLICATE_CUSTOM_MODEL_LORA', ''),
            'custom_model_lora_scale': env.get('REPLICATE_CUSTOM_MODEL_LORA_SCALE', 1),
        },
        'stability': {
            'api_key': env.get('STABILITY_API_KEY'),
        },
        'transcribe': {
            'region': env.get('AWS_DEFAULT_REGION', 'us-east-1'),
            'bucket': env.get('AWS_BUCKET'),
            'access_key_id': env.get('AWS_ACCESS_KEY_ID'),
            'secret_access_key': env.get('AWS_SECRET_ACCESS_KEY'),
        },
        'database': {
            'path': env.get('STORYTIME_AI_DB', DEFAULT_DATABASE_PATH),
        },
    }
    return parse_ai_config(raw_config)


def _section(raw_config: Dict[str, Any], name: str, allowed_keys: set) -> Dict[str, Any]:
    """Return an optional dictionary section after checking its keys."""
    data = raw_config.get(name) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"'{name}' must be a dictionary")
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ConfigError(f"Unknown keys in {name}: {sorted(unknown_keys)}")
    return data


def _build(config_class, data: Dict[str, Any], path: str):
    """Instantiate a settings dataclass, coercing values to the declared types."""
    values = {}
    for key, value in data.items():
        if value is None:
            continue
        default = getattr(config_class, key, None)
        if isinstance(default, bool):
            values[key] = _to_bool(value, f"{path}.{key}")
        elif isinstance(default, int):
            values[key] = _to_number(value, int, f"{path}.{key}")
        elif isinstance(default, float):
            values[key] = _to_number(value, float, f"{path}.{key}")
        else:
            values[key] = str(value)
    return config_class(**values)


def _parse_provider_config(name: str, data: Dict[str, Any]) -> ProviderConfig:
    """Parse and validate a provider block.

    Args:
        name: Provider name (the key under ``providers``)
        data: Provider configuration data

    Returns:
        Validated ProviderConfig

    Raises:
        ConfigError: If configuration is invalid
    """
    allowed_keys = {
        'driver', 'api_key', 'base_url', 'endpoint', 'model', 'max_tokens',
        'temperature', 'cost_per_1k_tokens', 'timeout', 'token',
    }
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ConfigError(f"Unknown keys in providers.{name}: {sorted(unknown_keys)}")

    driver = data.get('driver') or name
    if 'base_url' not in data or not data['base_url']:
        raise ConfigError(f"Missing required 'base_url' in providers.{name}")

    path = f"providers.{name}"
    optional = {}
    for key, caster in (('max_tokens', int), ('temperature', float), ('cost_per_1k_tokens', float), ('timeout', int)):
        if data.get(key) is not None:
            optional[key] = _to_number(data[key], caster, f"{path}.{key}")

    return ProviderConfig(
        name=name,
        driver=driver,
        model=str(data.get('model') or ''),
        base_url=str(data['base_url']),
        api_key=data.get('api_key') or None,
        endpoint=data.get('endpoint') or None,
        token=data.get('token') or None,
        **optional,
    )


def _parse_image_pricing(data: Any) -> ImagePricingTable:
    """Parse the ordered image pricing list; an entry named 'default' is the terminal tier."""
    if data is None:
        return IMAGE_PRICING_TABLE
    if not isinstance(data, list):
        raise ConfigError("'image_pricing' must be a list")

    rules = []
    default = DEFAULT_IMAGE_PRICING
    for index, entry in enumerate(data):
        path = f"image_pricing[{index}]"
        if not isinstance(entry, dict):
            raise ConfigError(f"{path} must be a dictionary")
        unknown_keys = set(entry.keys()) - {'pattern', 'cost_per_input_image', 'cost_per_output_image'}
        if unknown_keys:
            raise ConfigError(f"Unknown keys in {path}: {sorted(unknown_keys)}")
        pattern = entry.get('pattern')
        if not pattern or not isinstance(pattern, str):
            raise ConfigError(f"Missing required 'pattern' in {path}")
        try:
            pricing = ImagePricing(
                cost_per_input_image=_to_number(entry.get('cost_per_input_image', 0.0), float, path),
                cost_per_output_image=_to_number(entry.get('cost_per_output_image', 0.0), float, path),
            )
        except ValueError as e:
            raise ConfigError(f"{path}: {e}")
        if pattern == 'default':
            default = pricing
        else:
            rules.append((pattern, pricing))

    return ImagePricingTable.from_rules(rules, default=default)


def _to_number(value: Any, caster, path: str):
    if isinstance(value, bool):
        raise ConfigError(f"'{path}' must be a number")
    try:
        return caster(value)
    except (TypeError, ValueError):
        raise ConfigError(f"'{path}' must be a number, got {value!r}")


def _to_bool(value: Any, path: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ('true', '1', 'yes', 'on'):
        return True
    if isinstance(value, str) and value.lower() in ('false', '0', 'no', 'off', ''):
        return False
    if isinstance(value, int):
        return bool(value)
    raise ConfigError(f"'{path}' must be a boolean, got {value!r}")
