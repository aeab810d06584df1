"""Configuration handling for Slacord.

Configuration lives in a JSON file that is created on first run. It stores the
database connection, the HTTP server options and the Slack and Discord
credentials. Missing required values are prompted for on startup and the
result is written back to disk with permissions ``0o600``. A handful of
environment variables override file values so containers can inject secrets
without touching the file.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from pathlib import Path
import json
import logging
import getpass
import os
from urllib.parse import quote_plus

from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine

CFG_PATH = Path(os.getenv("SLACORD_CONFIG", Path.home() / ".config" / "slacord" / "config.json"))


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 5050


@dataclass
class DBProfile:
    """Connection information for a single database profile."""

    host: str = "127.0.0.1"
    port: int = 3306
    database: str = "slacord"
    user: str = "slacord"
    password: str = ""


@dataclass
class DatabaseConfig:
    """Database configuration containing local and remote profiles.

    ``url_override`` takes precedence over both profiles; it is how SQLite is
    selected for local development.
    """

    use_remote: bool = False
    local: DBProfile = field(default_factory=DBProfile)
    remote: DBProfile = field(default_factory=DBProfile)
    url_override: str = ""

    def active(self) -> DBProfile:
        return self.remote if self.use_remote else self.local

    @property
    def url(self) -> str:
        if self.url_override:
            return self.url_override
        cfg = self.active()
        return (
            f"mysql+aiomysql://{quote_plus(cfg.user)}:{quote_plus(cfg.password)}"
            f"@{cfg.host}:{cfg.port}/{cfg.database}"
        )


@dataclass
class SlackConfig:
    bot_token: str = ""
    signing_secret: str = ""
    # App-level token; when present events arrive over Socket Mode.
    app_token: str = ""


@dataclass
class DiscordConfig:
    bot_token: str = ""
    guild_id: int | None = None


@dataclass
class RelayConfig:
    retention_days: int = 90
    default_page_size: int = 50
    max_page_size: int = 100
    invite_base_url: str = "https://slacord.cloud/invite"
    invite_expires_days: int = 7


@dataclass
class AppConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    slack: SlackConfig = field(default_factory=SlackConfig)
    discord: DiscordConfig = field(default_factory=DiscordConfig)
    relay: RelayConfig = field(default_factory=RelayConfig)


_ENV_OVERRIDES = {
    "SLACORD_DATABASE_URL": ("database", "url_override", str),
    "SLACK_BOT_TOKEN": ("slack", "bot_token", str),
    "SLACK_SIGNING_SECRET": ("slack", "signing_secret", str),
    "SLACK_APP_TOKEN": ("slack", "app_token", str),
    "DISCORD_BOT_TOKEN": ("discord", "bot_token", str),
    "DISCORD_GUILD_ID": ("discord", "guild_id", int),
}


def apply_env_overrides(cfg: AppConfig, environ: dict[str, str] | None = None) -> AppConfig:
    environ = os.environ if environ is None else environ
    for var, (section, attr, cast) in _ENV_OVERRIDES.items():
        value = environ.get(var)
        if not value:
            continue
        try:
            setattr(getattr(cfg, section), attr, cast(value))
        except ValueError:
            logging.warning("Ignoring invalid value for %s", var)
    return cfg


def _from_dict(data: dict) -> AppConfig:
    db_data = data.get("database", {})
    return AppConfig(
        server=ServerConfig(**data.get("server", {})),
        database=DatabaseConfig(
            use_remote=db_data.get("use_remote", False),
            local=DBProfile(**db_data.get("local", {})),
            remote=DBProfile(**db_data.get("remote", {})),
            url_override=db_data.get("url_override", ""),
        ),
        slack=SlackConfig(**data.get("slack", {})),
        discord=DiscordConfig(**data.get("discord", {})),
        relay=RelayConfig(**data.get("relay", {})),
    )


def load_config(path: Path | None = None) -> AppConfig:
    path = path or CFG_PATH
    if path.exists():
        try:
            data = json.loads(path.read_text())
        except json.JSONDecodeError:
            logging.warning("Invalid JSON in %s, using defaults", path)
            return apply_env_overrides(AppConfig())
        try:
            cfg = _from_dict(data)
        except TypeError as exc:
            logging.warning("Unexpected keys in %s (%s), using defaults", path, exc)
            cfg = AppConfig()
        return apply_env_overrides(cfg)
    return apply_env_overrides(AppConfig())


def save_config(cfg: AppConfig, path: Path | None = None) -> None:
    path = path or CFG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(asdict(cfg), indent=2))
    try:
        path.chmod(0o600)
    except OSError as exc:  # pragma: no cover - platform dependent
        logging.warning("Unable to set permissions on %s: %s", path, exc)


async def ensure_config(force_reconfigure: bool = False) -> AppConfig:
    """Load configuration, prompting the user for any missing values.

    Parameters
    ----------
    force_reconfigure:
        If ``True`` all configuration values are prompted for even if a
        ``config.json`` file already exists.
    """

    cfg = load_config()

    def _prompt_server() -> None:
        host = input(f"Server host [{cfg.server.host}]: ").strip()
        if host:
            cfg.server.host = host
        port = input(f"Server port [{cfg.server.port}]: ").strip()
        if port:
            cfg.server.port = int(port)

    def _prompt_database() -> None:
        override = input(
            f"Database URL (blank for MySQL profile) [{cfg.database.url_override}]: "
        ).strip()
        if override:
            cfg.database.url_override = override
            return
        profile = cfg.database.active()
        profile.host = input(f"MySQL host [{profile.host}]: ") or profile.host
        profile.port = int(input(f"MySQL port [{profile.port}]: ") or profile.port)
        profile.database = input(f"MySQL database [{profile.database}]: ") or profile.database
        profile.user = input(f"MySQL username [{profile.user}]: ") or profile.user
        pwd = getpass.getpass("MySQL password: ")
        if pwd:
            profile.password = pwd

    def _prompt_secret(label: str, current: str) -> str:
        value = getpass.getpass(f"{label} [{'set' if current else 'unset'}]: ").strip()
        return value or current

    async def _check_database() -> bool:
        try:
            engine = create_async_engine(cfg.database.url, echo=False, future=True)
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            await engine.dispose()
            return True
        except Exception as exc:  # pragma: no cover - interactive prompt
            print(f"Database connection failed: {exc}")
            return False

    needs_prompt = (
        force_reconfigure
        or not cfg.slack.bot_token
        or not cfg.slack.signing_secret
        or not cfg.discord.bot_token
        or not (cfg.database.url_override or cfg.database.active().password)
    )

    if needs_prompt:
        _prompt_server()
        while True:
            _prompt_database()
            if await _check_database():
                break
        cfg.slack.bot_token = _prompt_secret("Slack bot token", cfg.slack.bot_token)
        cfg.slack.signing_secret = _prompt_secret(
            "Slack signing secret", cfg.slack.signing_secret
        )
        cfg.slack.app_token = _prompt_secret("Slack app token (Socket Mode)", cfg.slack.app_token)
        cfg.discord.bot_token = _prompt_secret("Discord bot token", cfg.discord.bot_token)
        guild = input(f"Discord guild id [{cfg.discord.guild_id or ''}]: ").strip()
        if guild:
            cfg.discord.guild_id = int(guild)

    save_config(cfg)
    return cfg
