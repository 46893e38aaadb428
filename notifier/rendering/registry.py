"""Registry binding each notification kind to its payload model and templates.

Adding a kind means adding an enum member, a payload model, a template
triple and an entry here; ``test_registry_covers_every_kind`` fails until all
of them exist.
"""

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Type, Union

from pydantic import ValidationError

from notifier.domain.exceptions import NotificationValidationError
from notifier.domain.models import NotificationKind

from .payloads import (
    CredentialIssuePayload,
    NotificationPayload,
    PasswordResetPayload,
    VerificationCodePayload,
    WelcomePayload,
)


@dataclass(frozen=True)
class KindSpec:
    """Rendering capability of one notification kind."""

    payload_model: Type[NotificationPayload]
    template_stem: str

    @property
    def subject_template(self) -> str:
        return f"{self.template_stem}_subject.j2"

    @property
    def html_template(self) -> str:
        return f"{self.template_stem}_body.html.j2"

    @property
    def text_template(self) -> str:
        return f"{self.template_stem}_body.txt.j2"


KIND_REGISTRY: Dict[NotificationKind, KindSpec] = {
    NotificationKind.VERIFICATION_CODE: KindSpec(VerificationCodePayload, "verification_code"),
    NotificationKind.WELCOME: KindSpec(WelcomePayload, "welcome"),
    NotificationKind.CREDENTIAL_ISSUE: KindSpec(CredentialIssuePayload, "credential_issue"),
    NotificationKind.PASSWORD_RESET: KindSpec(PasswordResetPayload, "password_reset"),
}


def parse_kind(kind: Union[NotificationKind, str]) -> NotificationKind:
    """Resolve a kind value, rejecting anything outside the closed set.

    Raises:
        NotificationValidationError: If the kind is unknown
    """
    if isinstance(kind, NotificationKind):
        return kind
    try:
        return NotificationKind(kind)
    except ValueError:
        valid = ", ".join(k.value for k in NotificationKind)
        raise NotificationValidationError(
            f"Unknown notification kind: {kind!r}. Must be one of: {valid}"
        ) from None


def get_kind_spec(kind: NotificationKind) -> KindSpec:
    return KIND_REGISTRY[kind]


def validate_payload(
    kind: NotificationKind, payload: Optional[Mapping[str, Any]]
) -> Dict[str, Any]:
    """Validate ``payload`` against the kind's model and return its normalized form.

    Raises:
        NotificationValidationError: If the payload does not fit the model
    """
    spec = get_kind_spec(kind)
    try:
        model = spec.payload_model.model_validate(dict(payload or {}))
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(loc) for loc in error['loc']) or 'payload'}: {error['msg']}"
            for error in e.errors()
        )
        raise NotificationValidationError(f"Invalid payload for {kind.value}: {problems}") from e
    return model.model_dump(exclude_none=True)
