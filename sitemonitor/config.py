"""Configuration loader with type-safe dataclasses."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urljoin

import yaml
from apscheduler.triggers.cron import CronTrigger
from dotenv import load_dotenv


class ConfigError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


# Every 4 hours, on the hour.
DEFAULT_SCHEDULE = "0 */4 * * *"

DEFAULT_TIMEOUT_MS = 10000

DEFAULT_USER_AGENT = "Website-Monitor/1.0"


def _is_http_url(url: str) -> bool:
    return url.startswith(("http://", "https://"))


@dataclass(frozen=True)
class SiteConfig:
    """Target site and the credentials used for the login flow.

    - protected_url: page fetched with the session cookie (default: the base URL)
    - logout_url: endpoint used for session cleanup (default: <base>/logout)
    """

    url: str
    login_url: str
    username: str
    password: str = field(repr=False)
    protected_url: str = ""
    logout_url: str = ""

    def __post_init__(self) -> None:
        if not self.url:
            raise ConfigError("Website URL cannot be empty")
        if not self.login_url:
            raise ConfigError("Login URL cannot be empty")
        if not self.username:
            raise ConfigError("Login username cannot be empty")
        if not self.password:
            raise ConfigError("Login password cannot be empty")

        # Frozen dataclass: derived defaults have to go through object.__setattr__
        if not self.protected_url:
            object.__setattr__(self, "protected_url", self.url)
        if not self.logout_url:
            object.__setattr__(self, "logout_url", urljoin(self.url, "/logout"))

        for label, value in (
            ("Website URL", self.url),
            ("Login URL", self.login_url),
            ("Protected URL", self.protected_url),
            ("Logout URL", self.logout_url),
        ):
            if not _is_http_url(value):
                raise ConfigError(f"{label} must start with http:// or https://, got '{value}'")


@dataclass(frozen=True)
class EmailConfig:
    """SMTP notification channel. Disabled unless a host and recipients are set."""

    host: str = ""
    port: int = 587
    username: str = ""
    password: str = field(default="", repr=False)
    from_addr: str = ""
    recipients: list[str] = field(default_factory=list)
    use_tls: bool = True

    def __post_init__(self) -> None:
        if not (1 <= self.port <= 65535):
            raise ConfigError(f"Email port must be between 1 and 65535, got {self.port}")
        if not isinstance(self.recipients, list):
            raise ConfigError("Email recipients must be a list")
        if not self.from_addr and self.username:
            object.__setattr__(self, "from_addr", self.username)

    @property
    def enabled(self) -> bool:
        return bool(self.host and self.recipients)


@dataclass(frozen=True)
class ChatConfig:
    """Chat webhook notification channel (Slack-compatible attachments)."""

    webhook_url: str = ""
    alert_only_failures: bool = False
    username: str = "Website Monitor"
    icon_emoji: str = ":robot_face:"

    def __post_init__(self) -> None:
        if self.webhook_url and not _is_http_url(self.webhook_url):
            raise ConfigError(f"Webhook URL must start with http:// or https://, got '{self.webhook_url}'")

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)


@dataclass(frozen=True)
class MonitorConfig:
    """Configuration for the scheduler and the probes."""

    schedule: str = DEFAULT_SCHEDULE  # 5-field cron expression
    timezone: str = "UTC"  # timezone the cron expression is evaluated in
    timeout_ms: int = DEFAULT_TIMEOUT_MS  # per-request timeout
    user_agent: str = DEFAULT_USER_AGENT
    run_on_start: bool = True  # run one cycle immediately when the service starts

    def __post_init__(self) -> None:
        if self.timeout_ms < 1:
            raise ConfigError(f"Request timeout must be at least 1ms (got {self.timeout_ms})")
        if not self.user_agent:
            raise ConfigError("User-Agent cannot be empty")
        try:
            CronTrigger.from_crontab(self.schedule, timezone=self.timezone)
        except (ValueError, LookupError) as e:
            raise ConfigError(f"Invalid cron schedule '{self.schedule}': {e}")

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000


@dataclass(frozen=True)
class Config:
    """Main configuration container."""

    site: SiteConfig
    email: EmailConfig = field(default_factory=EmailConfig)
    chat: ChatConfig = field(default_factory=ChatConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)


def _parse_bool(value: object) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)


def _parse_recipients(value: object) -> list[str]:
    """Accept a list or a comma-separated string of addresses."""
    if value is None:
        return []
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, list):
        items = [str(item) for item in value]
    else:
        raise ConfigError("'email.recipients' must be a list or a comma-separated string")
    return [item.strip() for item in items if item.strip()]


def _section(data: dict, name: str) -> dict:
    section = data.get(name)
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{name}' section must be a dictionary")
    return section


def _parse_site_config(data: dict) -> SiteConfig:
    """Parse site configuration section."""
    url = data.get("url")
    login_url = data.get("login_url")

    # Checked here so a missing key reports the same way as an empty one
    if not url:
        raise ConfigError("Website URL is required (WEBSITE_URL)")
    if not login_url:
        raise ConfigError("Login URL is required (LOGIN_URL)")

    return SiteConfig(
        url=str(url),
        login_url=str(login_url),
        username=str(data.get("username") or ""),
        password=str(data.get("password") or ""),
        protected_url=str(data.get("protected_url") or ""),
        logout_url=str(data.get("logout_url") or ""),
    )


def _parse_email_config(data: dict) -> EmailConfig:
    """Parse email configuration section."""
    try:
        port = int(data.get("port", 587))
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid email port: {data.get('port')!r}")

    return EmailConfig(
        host=str(data.get("host") or ""),
        port=port,
        username=str(data.get("username") or ""),
        password=str(data.get("password") or ""),
        from_addr=str(data.get("from_addr") or ""),
        recipients=_parse_recipients(data.get("recipients")),
        use_tls=_parse_bool(data.get("use_tls", True)),
    )


def _parse_chat_config(data: dict) -> ChatConfig:
    """Parse chat webhook configuration section."""
    return ChatConfig(
        webhook_url=str(data.get("webhook_url") or ""),
        alert_only_failures=_parse_bool(data.get("alert_only_failures", False)),
        username=str(data.get("username") or "Website Monitor"),
        icon_emoji=str(data.get("icon_emoji") or ":robot_face:"),
    )


def _parse_monitor_config(data: dict) -> MonitorConfig:
    """Parse monitor configuration section."""
    try:
        timeout_ms = int(data.get("timeout_ms", DEFAULT_TIMEOUT_MS))
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid request timeout: {data.get('timeout_ms')!r}")

    return MonitorConfig(
        schedule=str(data.get("schedule") or DEFAULT_SCHEDULE),
        timezone=str(data.get("timezone") or "UTC"),
        timeout_ms=timeout_ms,
        user_agent=str(data.get("user_agent") or DEFAULT_USER_AGENT),
        run_on_start=_parse_bool(data.get("run_on_start", True)),
    )


# Environment variable -> (section, key)
ENV_OVERRIDES = {
    "WEBSITE_URL": ("site", "url"),
    "LOGIN_URL": ("site", "login_url"),
    "USERNAME": ("site", "username"),
    "PASSWORD": ("site", "password"),
    "PROTECTED_URL": ("site", "protected_url"),
    "LOGOUT_URL": ("site", "logout_url"),
    "EMAIL_HOST": ("email", "host"),
    "EMAIL_PORT": ("email", "port"),
    "EMAIL_USER": ("email", "username"),
    "EMAIL_PASS": ("email", "password"),
    "EMAIL_FROM": ("email", "from_addr"),
    "EMAIL_USE_TLS": ("email", "use_tls"),
    "RECIPIENT_EMAILS": ("email", "recipients"),
    "WEBHOOK_URL": ("chat", "webhook_url"),
    "ALERT_ONLY_FAILURES": ("chat", "alert_only_failures"),
    "CRON_SCHEDULE": ("monitor", "schedule"),
    "CRON_TIMEZONE": ("monitor", "timezone"),
    "REQUEST_TIMEOUT": ("monitor", "timeout_ms"),
}


def _apply_env_overrides(config_data: dict) -> dict:
    """Apply environment variable overrides to configuration.

    Every key in ENV_OVERRIDES replaces the matching YAML value when set
    and non-empty. An empty variable is treated as unset.
    """
    for env_name, (section, key) in ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if not value:
            continue
        if not isinstance(config_data.get(section), dict):
            config_data[section] = {}
        config_data[section][key] = value

    return config_data


def _read_yaml(config_path: str) -> dict:
    path = Path(config_path)

    if not path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML configuration: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read configuration file: {e}")

    if data is None:
        return {}

    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a YAML dictionary")

    return data


def load_config(config_path: str | None = None, env_file: str | None = ".env") -> Config:
    """Load and validate configuration.

    Values come from an optional YAML file, overridden by environment
    variables. A ``.env`` file is loaded first when present; it never
    replaces variables already set in the process environment.

    Args:
        config_path: Path to a YAML configuration file, or None for
            environment-only configuration.
        env_file: Path to a dotenv file, or None to skip it.

    Returns:
        Validated Config object.

    Raises:
        ConfigError: If the file cannot be read or configuration is invalid.
    """
    if env_file:
        load_dotenv(env_file, override=False)

    data = _read_yaml(config_path) if config_path else {}
    data = _apply_env_overrides(data)

    return Config(
        site=_parse_site_config(_section(data, "site")),
        email=_parse_email_config(_section(data, "email")),
        chat=_parse_chat_config(_section(data, "chat")),
        monitor=_parse_monitor_config(_section(data, "monitor")),
    )
