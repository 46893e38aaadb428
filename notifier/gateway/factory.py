"""Factory function for instantiating the configured email gateway."""

import logging

from notifier.config.environment import EnvironmentConfig
from notifier.config.exceptions import ConfigurationError
from notifier.config.models import GatewayConfig

from .base import EmailGateway
from .log import LoggingEmailGateway
from .resend import ResendEmailGateway
from .smtp import SMTPEmailGateway

logger = logging.getLogger(__name__)


def get_gateway(
    gateway_config: GatewayConfig,
    env_config: EnvironmentConfig,
    send_timeout: float = 30,
) -> EmailGateway:
    """Instantiate the gateway for the selected provider.

    ``EMAIL_PROVIDER`` (already resolved into ``env_config``) takes precedence
    over ``gateway.provider`` from the YAML file.

    Raises:
        ConfigurationError: If the provider is unknown
    """
    provider = (env_config.email_provider or gateway_config.provider or "log").lower()

    logger.debug(
        "Creating email gateway",
        extra={"event": "gateway.creating", "provider": provider},
    )

    if provider == "smtp":
        return SMTPEmailGateway(
            env_config,
            use_tls=gateway_config.use_tls,
            timeout=send_timeout,
        )
    if provider == "resend":
        return ResendEmailGateway(
            api_key=env_config.resend_api_key,
            from_email=env_config.resend_from_email,
            from_name=env_config.resend_from_name,
            timeout=min(gateway_config.http_timeout, send_timeout),
            user_agent=gateway_config.user_agent,
        )
    if provider == "log":
        return LoggingEmailGateway()

    raise ConfigurationError(
        f"Unknown email provider: {provider}",
        suggestions=["Set EMAIL_PROVIDER to one of: smtp, resend, log"],
    )
