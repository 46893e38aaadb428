"""Template rendering for email notifications using Jinja2.

This module wraps Jinja2 template rendering with caching and strict
undefined checking to catch template errors early.
"""

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from jinja2 import Environment, PackageLoader, StrictUndefined, TemplateError, select_autoescape
from pydantic import ValidationError

from notifier.domain.exceptions import NotificationTemplateError
from notifier.domain.models import NotificationKind

from .registry import get_kind_spec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RenderedMessage:
    """Subject and bodies handed to an email gateway."""

    subject: str
    html_body: str
    text_body: str


class TemplateRenderer:
    """Renders email templates using Jinja2.

    Each kind has a subject, HTML body and plain text body template in the
    ``notifier.rendering.email_templates`` package. Templates are cached by
    the Jinja2 environment for reuse across invocations.
    """

    def __init__(
        self,
        platform_name: str = "CBA Platform",
        login_url: str = "http://localhost:3000/login",
        template_dir: str = "email_templates",
    ):
        """Initialize template renderer with Jinja2 environment.

        Args:
            platform_name: Product name shown in subjects and footers
            login_url: Default sign-in link for kinds that include one
            template_dir: Directory name within the notifier.rendering package
        """
        self.platform_name = platform_name
        self.login_url = login_url

        self.env = Environment(
            loader=PackageLoader("notifier.rendering", template_dir),
            autoescape=select_autoescape(enabled_extensions=("html.j2",), default_for_string=False),
            undefined=StrictUndefined,
        )

        logger.debug(f"Initialized TemplateRenderer with templates from {template_dir}")

    def render(
        self, kind: NotificationKind, payload: Mapping[str, Any], recipient: str = ""
    ) -> RenderedMessage:
        """Render subject, HTML body and text body for one notification.

        Raises:
            NotificationTemplateError: If the payload or a template is unusable
        """
        spec = get_kind_spec(kind)

        try:
            fields = spec.payload_model.model_validate(dict(payload)).model_dump()
        except ValidationError as e:
            raise NotificationTemplateError(f"Stored payload no longer valid for {kind.value}: {e}") from e

        context = {
            "platform_name": self.platform_name,
            "recipient": recipient,
            **fields,
        }
        if context.get("login_url") is None:
            context["login_url"] = self.login_url

        try:
            subject = self.env.get_template(spec.subject_template).render(context)
            html_body = self.env.get_template(spec.html_template).render(context)
            text_body = self.env.get_template(spec.text_template).render(context)
        except TemplateError as e:
            error_msg = f"Template rendering failed for {kind.value}: {e}"
            logger.error(error_msg, exc_info=True)
            raise NotificationTemplateError(error_msg) from e

        return RenderedMessage(
            subject=" ".join(subject.split()),
            html_body=html_body,
            text_body=text_body,
        )
