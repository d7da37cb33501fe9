"""
Configuration loading: INI file under the calvault home directory.
"""

from configparser import ConfigParser
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path

from calvault.models import ConfigError
from calvault.models import default_home

CONFIG_SECTION = "calvault"
DEFAULT_RATE_LIMIT_QPS = 10.0

OAUTH_SETUP_HINT = """
To use calvault, you need a Google Cloud OAuth credential:
  1. Go to https://console.cloud.google.com/apis/credentials
  2. Create an OAuth 2.0 Client ID (Desktop application)
  3. Download the client_secret.json file
  4. Add to your config.ini:
       [calvault]
       client_secrets = /path/to/client_secret.json"""


@dataclass
class AppConfig:
    """Resolved calvault configuration."""

    home_dir: Path = field(default_factory=default_home)
    client_secrets: Path | None = None
    rate_limit_qps: float = DEFAULT_RATE_LIMIT_QPS

    @property
    def database_path(self) -> Path:
        return self.home_dir / "calvault.db"

    @property
    def tokens_dir(self) -> Path:
        return self.home_dir / "tokens"

    def require_client_secrets(self) -> Path:
        """Return the client secrets path or raise ConfigError with setup hints."""
        if self.client_secrets is None:
            raise ConfigError("OAuth client secrets not configured." + OAUTH_SETUP_HINT)
        if not self.client_secrets.exists():
            raise ConfigError(
                f"OAuth client secrets file not found: {self.client_secrets}" + OAUTH_SETUP_HINT
            )
        return self.client_secrets


def default_config_path(home_dir: Path | None = None) -> Path:
    return (home_dir or default_home()) / "config.ini"


def _load_config_file(config_path: Path) -> dict[str, str]:
    if not config_path.exists():
        return {}
    parser = ConfigParser()
    parser.read(config_path)
    if CONFIG_SECTION not in parser:
        return {}
    return dict(parser[CONFIG_SECTION])


def load_config(config_path: Path | None = None, home_dir: Path | None = None) -> AppConfig:
    """Load configuration; a missing file yields defaults."""
    home = home_dir or default_home()
    values = _load_config_file(config_path or default_config_path(home))

    cfg = AppConfig(home_dir=home)

    secrets = values.get("client_secrets", "").strip()
    if secrets:
        cfg.client_secrets = Path(secrets).expanduser()

    raw_qps = values.get("rate_limit_qps", "").strip()
    if raw_qps:
        try:
            qps = float(raw_qps)
        except ValueError:
            raise ConfigError(f"rate_limit_qps must be a number, got {raw_qps!r}") from None
        if qps <= 0:
            raise ConfigError(f"rate_limit_qps must be positive, got {qps}")
        cfg.rate_limit_qps = qps

    return cfg
