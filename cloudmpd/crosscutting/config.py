import os
import sys
import json
from dataclasses import dataclass, asdict
from typing import Dict, Any, Optional, Mapping
from pathlib import Path

from dotenv import dotenv_values

APP_NAME = 'cloudmpd'
APP_VERSION = '0.1.0'

DEFAULT_ADDRESS = ':6600'
DEFAULT_HOST = ''
DEFAULT_PORT = 6600
DEFAULT_PROVIDER = 'yandex'
DEFAULT_CACHE_SIZE = 1000
DEFAULT_SEARCH_LIMIT = 200
DEFAULT_MPV_PATH = 'mpv'

SUPPORTED_PROVIDERS = ('yandex', 'spotify')


class ConfigError(Exception):
    """Configuration error."""
    pass


def default_cache_dir() -> str:
    """Per-user cache directory holding the content database."""
    home = Path.home()
    if sys.platform == 'darwin':
        return str(home / 'Library' / 'Caches' / APP_NAME)
    xdg = os.environ.get('XDG_CACHE_HOME')
    if xdg:
        return str(Path(xdg) / APP_NAME)
    return str(home / '.cache' / APP_NAME)


def parse_address(address: str) -> tuple:
    """Split ``host:port`` (host may be empty) into its parts."""
    host, sep, port = address.rpartition(':')
    if not sep:
        raise ConfigError(f"Address '{address}' must look like host:port")
    try:
        port_number = int(port)
    except ValueError:
        raise ConfigError(f"Invalid port in address '{address}'")
    if not 0 <= port_number <= 65535:
        raise ConfigError(f"Port out of range in address '{address}'")
    return host, port_number


@dataclass
class DaemonSettings:
    """Everything the daemon needs to start."""
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    provider: str = DEFAULT_PROVIDER
    cache_dir: str = ''
    cache_size: int = DEFAULT_CACHE_SIZE
    search_limit: int = DEFAULT_SEARCH_LIMIT
    device_id: Optional[str] = None
    http_port: int = 0
    mpv_path: str = DEFAULT_MPV_PATH

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def database_path(self) -> str:
        return str(Path(self.cache_dir) / f'{APP_NAME}.db')

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['address'] = self.address
        return data


class SecretManager:
    """Manages tokens and the daemon's .env file."""

    def __init__(self, config_dir: Optional[str] = None):
        """Initialize secret manager."""
        self.config_dir = Path(config_dir) if config_dir else Path.home() / f'.{APP_NAME}'
        self.config_dir.mkdir(parents=True, exist_ok=True)

        self.tokens_file = self.config_dir / 'tokens.json'
        self.env_file = self.config_dir / '.env'

    def get_spotify_scopes(self) -> list:
        """Scopes needed to read the user's saved tracks."""
        return [
            'user-library-read',
        ]

    def get_spotify_scope_string(self) -> str:
        return ' '.join(self.get_spotify_scopes())

    def load_tokens(self) -> Dict[str, Any]:
        """Load tokens from tokens.json file."""
        if not self.tokens_file.exists():
            return {}

        try:
            with open(self.tokens_file, 'r') as f:
                return json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            raise ConfigError(f"Failed to load tokens from {self.tokens_file}: {e}")

    def save_tokens(self, tokens: Dict[str, Any]) -> None:
        """Merge tokens into tokens.json."""
        existing_tokens = self.load_tokens()
        existing_tokens.update(tokens)
        try:
            with open(self.tokens_file, 'w') as f:
                json.dump(existing_tokens, f, indent=2, ensure_ascii=False)
        except IOError as e:
            raise ConfigError(f"Failed to save tokens to {self.tokens_file}: {e}")

    def get_spotify_tokens(self) -> Optional[Dict[str, str]]:
        tokens = self.load_tokens()
        return tokens.get('spotify')

    def save_spotify_tokens(self, access_token: str, refresh_token: str) -> None:
        self.save_tokens({
            'spotify': {
                'access_token': access_token,
                'refresh_token': refresh_token
            }
        })

    def get_yandex_token(self) -> Optional[str]:
        tokens = self.load_tokens()
        yandex_tokens = tokens.get('yandex', {})
        return yandex_tokens.get('access_token')

    def save_yandex_token(self, token: str) -> None:
        self.save_tokens({
            'yandex': {
                'access_token': token
            }
        })

    def load_env_vars(self) -> Dict[str, str]:
        """Load variables from the .env file in the config directory."""
        if not self.env_file.exists():
            return {}
        try:
            values = dotenv_values(self.env_file)
        except (IOError, UnicodeDecodeError) as e:
            raise ConfigError(f"Failed to load .env file {self.env_file}: {e}")
        return {key: value for key, value in values.items() if value is not None}

    def save_env_vars(self, env_vars: Dict[str, str]) -> None:
        try:
            with open(self.env_file, 'w') as f:
                for key, value in env_vars.items():
                    f.write(f"{key}={value}\n")
        except IOError as e:
            raise ConfigError(f"Failed to save .env file {self.env_file}: {e}")

    def get_spotify_client_config(self) -> Dict[str, str]:
        """Get Spotify client configuration from environment."""
        env_vars = {**self.load_env_vars(), **os.environ}

        client_id = env_vars.get('SPOTIFY_CLIENT_ID')
        client_secret = env_vars.get('SPOTIFY_CLIENT_SECRET')
        redirect_uri = env_vars.get('SPOTIFY_REDIRECT_URI')

        if not client_id:
            raise ConfigError("SPOTIFY_CLIENT_ID not found in environment")
        if not client_secret:
            raise ConfigError("SPOTIFY_CLIENT_SECRET not found in environment")
        if not redirect_uri:
            raise ConfigError("SPOTIFY_REDIRECT_URI not found in environment")

        return {
            'client_id': client_id,
            'client_secret': client_secret,
            'redirect_uri': redirect_uri
        }

    def get_yandex_config(self) -> Dict[str, str]:
        """Get Yandex Music configuration from environment."""
        env_vars = {**self.load_env_vars(), **os.environ}

        token = env_vars.get('YANDEX_TOKEN')
        if not token:
            # tokens.json is the fallback
            token = self.get_yandex_token()

        if not token:
            raise ConfigError("YANDEX_TOKEN not found in environment or tokens.json")

        return {
            'token': token
        }

    def validate_configuration(self) -> Dict[str, bool]:
        """Validate that all required configuration is present."""
        env_vars = {**self.load_env_vars(), **os.environ}
        spotify_tokens = self.get_spotify_tokens()

        return {
            'spotify_client_id': bool(env_vars.get('SPOTIFY_CLIENT_ID')),
            'spotify_client_secret': bool(env_vars.get('SPOTIFY_CLIENT_SECRET')),
            'spotify_redirect_uri': bool(env_vars.get('SPOTIFY_REDIRECT_URI')),
            'yandex_token': bool(env_vars.get('YANDEX_TOKEN') or self.get_yandex_token()),
            'spotify_tokens': bool(spotify_tokens and spotify_tokens.get('access_token')),
        }

    def get_config_summary(self) -> Dict[str, Any]:
        """Get configuration summary (without sensitive data)."""
        validation = self.validate_configuration()

        return {
            'config_dir': str(self.config_dir),
            'tokens_file': str(self.tokens_file),
            'env_file': str(self.env_file),
            'validation': validation,
            'spotify_scopes': self.get_spotify_scopes(),
            'has_spotify_tokens': validation['spotify_tokens'],
            'has_yandex_token': validation['yandex_token'],
        }

    def clear_tokens(self) -> None:
        """Clear all stored tokens."""
        if self.tokens_file.exists():
            self.tokens_file.unlink()


def _int_setting(values: Mapping[str, str], key: str, default: int) -> int:
    raw = values.get(key)
    if raw is None or raw == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got '{raw}'")


def load_settings(manager: Optional['SecretManager'] = None,
                  environ: Optional[Mapping[str, str]] = None) -> DaemonSettings:
    """Build daemon settings: environment, then the .env file, then defaults."""
    manager = manager or get_secret_manager()
    environ = os.environ if environ is None else environ
    values = {**manager.load_env_vars(), **environ}

    host, port = parse_address(values.get('CLOUDMPD_ADDRESS') or DEFAULT_ADDRESS)

    provider = (values.get('CLOUDMPD_PROVIDER') or DEFAULT_PROVIDER).lower()
    if provider not in SUPPORTED_PROVIDERS:
        raise ConfigError(f"Unknown provider '{provider}', expected one of {SUPPORTED_PROVIDERS}")

    cache_size = _int_setting(values, 'CLOUDMPD_CACHE_SIZE', DEFAULT_CACHE_SIZE)
    if cache_size <= 0:
        raise ConfigError("CLOUDMPD_CACHE_SIZE must be positive")
    search_limit = _int_setting(values, 'CLOUDMPD_SEARCH_LIMIT', DEFAULT_SEARCH_LIMIT)
    if search_limit <= 0:
        raise ConfigError("CLOUDMPD_SEARCH_LIMIT must be positive")

    return DaemonSettings(
        host=host,
        port=port,
        provider=provider,
        cache_dir=values.get('CLOUDMPD_CACHE_DIR') or default_cache_dir(),
        cache_size=cache_size,
        search_limit=search_limit,
        device_id=values.get('CLOUDMPD_DEVICE_ID') or None,
        http_port=_int_setting(values, 'CLOUDMPD_HTTP_PORT', 0),
        mpv_path=values.get('CLOUDMPD_MPV_PATH') or DEFAULT_MPV_PATH,
    )


# Global instance, created on first use
secret_manager: Optional[SecretManager] = None


def get_secret_manager() -> SecretManager:
    """Get global secret manager instance."""
    global secret_manager
    if secret_manager is None:
        secret_manager = SecretManager()
    return secret_manager


def setup_config(config_dir: Optional[str] = None) -> SecretManager:
    """Setup configuration with custom directory."""
    global secret_manager
    secret_manager = SecretManager(config_dir)
    return secret_manager
