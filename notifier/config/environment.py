"""Environment variable loading and validation."""

import os
from typing import List, Optional

from email_validator import EmailNotValidError, validate_email

from .exceptions import ConfigurationError

DEFAULT_DATABASE_URL = "sqlite:///./data/notifications.db"
VALID_PROVIDERS = ("smtp", "resend", "log")
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class EnvironmentConfig:
    """Environment variable configuration holder."""

    def __init__(
        self,
        database_url: Optional[str] = None,
        redis_url: Optional[str] = None,
        email_provider: Optional[str] = None,
        smtp_host: Optional[str] = None,
        smtp_port: Optional[int] = None,
        smtp_user: Optional[str] = None,
        smtp_pass: Optional[str] = None,
        smtp_sender_name: Optional[str] = None,
        smtp_from_email: Optional[str] = None,
        resend_api_key: Optional[str] = None,
        resend_from_email: Optional[str] = None,
        resend_from_name: Optional[str] = None,
        log_level: Optional[str] = None,
        environment: Optional[str] = None,
    ):
        self.database_url = database_url or DEFAULT_DATABASE_URL
        self.redis_url = redis_url
        self.email_provider = email_provider
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_pass = smtp_pass
        self.smtp_sender_name = smtp_sender_name or "CBA Platform"
        self.smtp_from_email = smtp_from_email or smtp_user
        self.resend_api_key = resend_api_key
        self.resend_from_email = resend_from_email
        self.resend_from_name = resend_from_name or "CBA Platform"
        self.log_level = log_level
        self.environment = environment or "local"


def load_environment_config(provider: Optional[str] = None) -> EnvironmentConfig:
    """
    Load and validate environment variables.

    Provider-specific variables are only required for the provider that is
    actually selected (``EMAIL_PROVIDER`` wins over the ``provider`` argument,
    which normally comes from the YAML file).

    Variables:
    - DATABASE_URL: SQLAlchemy URL (default: sqlite:///./data/notifications.db)
    - REDIS_URL: Redis URL for the optional queue accelerator
    - EMAIL_PROVIDER: smtp | resend | log
    - SMTP_HOST, SMTP_PORT: required for smtp
    - SMTP_USER, SMTP_PASS: optional, but both or neither
    - SMTP_SENDER_NAME, SMTP_FROM_EMAIL: sender identity for smtp
    - RESEND_API_KEY, RESEND_FROM_EMAIL: required for resend
    - RESEND_FROM_NAME: sender display name for resend
    - LOG_LEVEL: overrides the configured log level
    - ENVIRONMENT: label stamped on log records

    Args:
        provider: Provider selected by the YAML configuration

    Returns:
        EnvironmentConfig object with validated values

    Raises:
        ConfigurationError: If required variables are missing or invalid
    """
    errors: List[str] = []

    email_provider = (os.getenv("EMAIL_PROVIDER") or provider or "log").strip().lower()
    smtp_host = os.getenv("SMTP_HOST")
    smtp_port_str = os.getenv("SMTP_PORT")
    smtp_user = os.getenv("SMTP_USER")
    smtp_pass = os.getenv("SMTP_PASS")
    smtp_from_email = os.getenv("SMTP_FROM_EMAIL")
    resend_api_key = os.getenv("RESEND_API_KEY")
    resend_from_email = os.getenv("RESEND_FROM_EMAIL")
    log_level = os.getenv("LOG_LEVEL")

    if email_provider not in VALID_PROVIDERS:
        errors.append(
            f"Invalid EMAIL_PROVIDER: '{email_provider}'. "
            f"Must be one of: {', '.join(VALID_PROVIDERS)}"
        )

    smtp_port = None
    if smtp_port_str:
        try:
            smtp_port = int(smtp_port_str)
            if smtp_port < 1 or smtp_port > 65535:
                errors.append(f"Invalid SMTP_PORT: {smtp_port}. Must be between 1 and 65535.")
        except ValueError:
            errors.append(f"Invalid SMTP_PORT: '{smtp_port_str}'. Must be a valid integer.")

    if email_provider == "smtp":
        if not smtp_host:
            errors.append("Missing required environment variable: SMTP_HOST")
        if not smtp_port_str:
            errors.append("Missing required environment variable: SMTP_PORT")
        if smtp_user and not smtp_pass:
            errors.append(
                "SMTP_USER is set but SMTP_PASS is not. Both must be set for authentication."
            )
        elif smtp_pass and not smtp_user:
            errors.append(
                "SMTP_PASS is set but SMTP_USER is not. Both must be set for authentication."
            )
        sender = smtp_from_email or smtp_user
        if not sender:
            errors.append("Missing sender address: set SMTP_FROM_EMAIL or SMTP_USER")
        elif not _is_valid_email(sender):
            errors.append(f"Invalid sender email address: '{sender}'")

    if email_provider == "resend":
        if not resend_api_key:
            errors.append("Missing required environment variable: RESEND_API_KEY")
        if not resend_from_email:
            errors.append("Missing required environment variable: RESEND_FROM_EMAIL")
        elif not _is_valid_email(resend_from_email):
            errors.append(f"Invalid RESEND_FROM_EMAIL address: '{resend_from_email}'")

    if log_level and log_level.upper() not in VALID_LOG_LEVELS:
        errors.append(
            f"Invalid LOG_LEVEL: '{log_level}'. Must be one of: {', '.join(VALID_LOG_LEVELS)}"
        )

    if errors:
        raise ConfigurationError(
            "Environment variable validation failed",
            errors=errors,
            suggestions=[
                "Copy .env.example to .env and fill in your credentials",
                "Set EMAIL_PROVIDER=log to run without a real provider",
                "Verify SMTP_PORT is a number between 1 and 65535",
            ],
        )

    return EnvironmentConfig(
        database_url=os.getenv("DATABASE_URL"),
        redis_url=os.getenv("REDIS_URL"),
        email_provider=email_provider,
        smtp_host=smtp_host,
        smtp_port=smtp_port,
        smtp_user=smtp_user,
        smtp_pass=smtp_pass,
        smtp_sender_name=os.getenv("SMTP_SENDER_NAME"),
        smtp_from_email=smtp_from_email,
        resend_api_key=resend_api_key,
        resend_from_email=resend_from_email,
        resend_from_name=os.getenv("RESEND_FROM_NAME"),
        log_level=log_level.upper() if log_level else None,
        environment=os.getenv("ENVIRONMENT"),
    )


def _is_valid_email(email: str) -> bool:
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True
