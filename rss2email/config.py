"""Configuration management for rss2email."""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_SMTP_PORT = 587
DEFAULT_SENDMAIL_PATH = "/usr/sbin/sendmail"
STATE_DIRECTORY = ".rss2email"


def resolve_home(environ: Mapping[str, str] | None = None) -> Path:
    """Resolve the user's home directory.

    $HOME wins; otherwise fall back to the OS user record, and finally to the
    current directory when neither is available.
    """
    if environ is None:
        environ = os.environ

    home = environ.get("HOME", "")
    if home:
        return Path(home)

    try:
        return Path.home()
    except (KeyError, RuntimeError):
        return Path.cwd()


def default_feeds_path(home: Path | None = None) -> Path:
    """Default location of the feed list."""
    return (home or resolve_home()) / STATE_DIRECTORY / "feeds"


def default_template_path(home: Path | None = None) -> Path:
    """Default location of the user's email template override."""
    return (home or resolve_home()) / STATE_DIRECTORY / "email.tmpl"


@dataclass
class SMTPConfig:
    """Configuration for SMTP delivery."""

    host: str = ""
    username: str = ""
    password: str = ""
    port: int = DEFAULT_SMTP_PORT
    timeout: int = 30

    @property
    def is_configured(self) -> bool:
        """True when host, username and password are all set."""
        return bool(self.host and self.username and self.password)


@dataclass
class Config:
    """Main configuration, populated once at startup."""

    home: Path
    feeds_path: Path
    template_path: Path
    smtp: SMTPConfig = field(default_factory=SMTPConfig)
    smtp_secret_name: str = ""
    sendmail_path: str = DEFAULT_SENDMAIL_PATH
    recipients: list[str] = field(default_factory=list)
    dynamodb_table: str = "rss2email-seen"
    aws_region: str = "us-east-1"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Config":
        """Build a configuration from environment variables.

        SMTP_PORT is only checked when SMTP delivery will be used, that is when
        host and username are set and a password is given directly or through
        SMTP_SECRET_NAME. Otherwise a bad value falls back to the default port.

        Args:
            environ: Mapping to read from, defaults to os.environ

        Raises:
            ValueError: If SMTP will be used and SMTP_PORT is not an integer
        """
        if environ is None:
            environ = os.environ

        home = resolve_home(environ)

        host = environ.get("SMTP_HOST", "")
        username = environ.get("SMTP_USERNAME", "")
        password = environ.get("SMTP_PASSWORD", "")
        secret_name = environ.get("SMTP_SECRET_NAME", "")
        smtp_selected = bool(host and username and (password or secret_name))

        port_value = environ.get("SMTP_PORT", "")
        port = DEFAULT_SMTP_PORT
        if port_value:
            try:
                port = int(port_value)
            except ValueError as e:
                if smtp_selected:
                    raise ValueError(f"Invalid SMTP_PORT value: {port_value!r}") from e

        feeds_override = environ.get("RSS2EMAIL_FEEDS", "")

        return cls(
            home=home,
            feeds_path=Path(feeds_override) if feeds_override else default_feeds_path(home),
            template_path=default_template_path(home),
            smtp=SMTPConfig(host=host, username=username, password=password, port=port),
            smtp_secret_name=secret_name,
            sendmail_path=environ.get("SENDMAIL_PATH", "") or DEFAULT_SENDMAIL_PATH,
            recipients=_parse_list(environ.get("RSS2EMAIL_RECIPIENTS", "")),
            dynamodb_table=environ.get("DYNAMODB_TABLE", "rss2email-seen"),
            aws_region=environ.get(
                "CURRENT_AWS_REGION", environ.get("AWS_DEFAULT_REGION", "us-east-1")
            ),
            log_level=environ.get("LOG_LEVEL", "INFO"),
        )


def _parse_list(value: str) -> list[str]:
    """Parse a comma-separated list, dropping empty items."""
    return [item.strip() for item in value.split(",") if item.strip()]
