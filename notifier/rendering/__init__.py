"""Kind registry, payload validation and Jinja2 rendering."""

from .payloads import (
    CredentialIssuePayload,
    NotificationPayload,
    PasswordResetPayload,
    VerificationCodePayload,
    WelcomePayload,
)
from .registry import KIND_REGISTRY, KindSpec, get_kind_spec, parse_kind, validate_payload
from .templates import RenderedMessage, TemplateRenderer

__all__ = [
    "CredentialIssuePayload",
    "KIND_REGISTRY",
    "KindSpec",
    "NotificationPayload",
    "PasswordResetPayload",
    "RenderedMessage",
    "TemplateRenderer",
    "VerificationCodePayload",
    "WelcomePayload",
    "get_kind_spec",
    "parse_kind",
    "validate_payload",
]
