import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

from groupie.api_client import DEFAULT_API_BASE

logger = logging.getLogger(__name__)

DEV_ORIGINS = ['http://localhost:8080', 'http://127.0.0.1:8080']


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == '':
        return default
    try:
        parsed = float(value)
    except ValueError:
        logger.warning(f"Invalid {name}={value!r}, using {default}")
        return default
    if parsed <= 0:
        logger.warning(f"{name} must be positive, using {default}")
        return default
    return parsed


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == '':
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Invalid {name}={value!r}, using {default}")
        return default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == '':
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class Settings:
    api_base: str = DEFAULT_API_BASE
    host: str = '127.0.0.1'
    port: int = 8080
    spotify_client_id: str = ''
    spotify_client_secret: str = ''
    fetch_timeout: float = 15.0
    upstream_timeout: float = 10.0
    spotify_timeout: float = 8.0
    prefetch: bool = True
    env: str = 'development'
    allowed_origins: List[str] = field(default_factory=lambda: list(DEV_ORIGINS))
    secret_key: Optional[str] = None

    @property
    def is_production(self) -> bool:
        return self.env == 'production'

    @property
    def spotify_enabled(self) -> bool:
        return bool(self.spotify_client_id and self.spotify_client_secret)


def load_settings() -> Settings:
    """Build Settings from the environment (and a .env file if present)."""
    load_dotenv()

    env = os.getenv('FLASK_ENV', 'development')
    if env == 'production':
        allowed_origins = [o.strip() for o in os.getenv('ALLOWED_ORIGINS', '').split(',') if o.strip()]
        if not allowed_origins:
            logger.warning("No ALLOWED_ORIGINS set in production!")
    else:
        allowed_origins = list(DEV_ORIGINS)

    return Settings(
        api_base=os.getenv('API', DEFAULT_API_BASE),
        host=os.getenv('ADDR', '127.0.0.1'),
        port=_env_int('PORT', 8080),
        spotify_client_id=os.getenv('SPOTIFY_CLIENT_ID', '').strip(),
        spotify_client_secret=os.getenv('SPOTIFY_CLIENT_SECRET', '').strip(),
        fetch_timeout=_env_float('FETCH_TIMEOUT', 15.0),
        upstream_timeout=_env_float('UPSTREAM_TIMEOUT', 10.0),
        spotify_timeout=_env_float('SPOTIFY_TIMEOUT', 8.0),
        prefetch=_env_bool('PREFETCH', True),
        env=env,
        allowed_origins=allowed_origins,
        secret_key=os.getenv('SECRET_KEY')
    )
