"""
Per-connector credential schemas.

Credentials are a tagged union keyed by ``type``; every variant declares
exactly the fields its connector needs and rejects anything else, so a
typo or a stray field is caught before the payload is sealed.
"""

from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from shared.errors import ValidationError


class _CredentialsBase(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True, str_strip_whitespace=True)


class StripeCredentials(_CredentialsBase):
    """Stripe source credentials."""
    type: Literal["stripe"] = "stripe"
    secret_key: str = Field(..., min_length=1, description="Restricted or secret API key")
    webhook_secret: Optional[str] = Field(None, description="Endpoint signing secret")


class MailchimpCredentials(_CredentialsBase):
    """Mailchimp credentials (source or destination)."""
    type: Literal["mailchimp"] = "mailchimp"
    api_key: str = Field(..., min_length=1)
    server_prefix: str = Field(..., min_length=1, description="Data center, e.g. us21")


class HubSpotCredentials(_CredentialsBase):
    """HubSpot private-app or OAuth credentials."""
    type: Literal["hubspot"] = "hubspot"
    access_token: str = Field(..., min_length=1)
    refresh_token: Optional[str] = None


class GoogleFormsCredentials(_CredentialsBase):
    type: Literal["google-forms"] = "google-forms"
    access_token: str = Field(..., min_length=1)
    refresh_token: Optional[str] = None


class GoogleSheetsCredentials(_CredentialsBase):
    type: Literal["google-sheets"] = "google-sheets"
    access_token: str = Field(..., min_length=1)
    refresh_token: Optional[str] = None


class WebhookCredentials(_CredentialsBase):
    """Outbound webhook destination."""
    type: Literal["webhook"] = "webhook"
    url: str = Field(..., pattern=r"^https?://")
    secret: Optional[str] = Field(None, description="Shared secret for HMAC signatures")


ConnectorCredentials = Annotated[
    Union[
        StripeCredentials,
        MailchimpCredentials,
        HubSpotCredentials,
        GoogleFormsCredentials,
        GoogleSheetsCredentials,
        WebhookCredentials,
    ],
    Field(discriminator="type"),
]

SOURCE_TYPES = frozenset({"stripe", "mailchimp", "hubspot", "google-forms"})
DESTINATION_TYPES = frozenset({"google-sheets", "hubspot", "mailchimp", "webhook"})

_adapter: TypeAdapter = TypeAdapter(ConnectorCredentials)


def _describe_errors(exc: PydanticValidationError) -> List[Dict[str, Any]]:
    # Only locations and error kinds; input values may be secrets
    return [
        {"field": ".".join(str(part) for part in error["loc"]), "error": error["type"]}
        for error in exc.errors()
    ]


def parse_connector_credentials(data: Mapping[str, Any]):
    """Validate a raw credentials map into its connector-specific model."""
    try:
        return _adapter.validate_python(dict(data))
    except PydanticValidationError as e:
        raise ValidationError(
            "Invalid connector credentials",
            details={"errors": _describe_errors(e)},
        ) from None
    except (TypeError, ValueError):
        raise ValidationError("Connector credentials must be an object") from None


def dump_connector_credentials(credentials) -> Dict[str, Any]:
    """Plain map of a credentials model, omitting unset optionals."""
    return credentials.model_dump(exclude_none=True)
