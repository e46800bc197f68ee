"""
Request and response models for the access service HTTP API.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from .vault.schemas import DESTINATION_TYPES, SOURCE_TYPES


class ConnectorEndpoint(BaseModel):
    """Source or destination of an integration as submitted by the client."""
    type: str = Field(..., description="Connector type")
    config: Dict[str, Any] = Field(default_factory=dict, description="Non-secret connector settings")
    credentials: Dict[str, Any] = Field(..., description="Connector credentials, sealed before storage")


class FieldMapping(BaseModel):
    from_: str = Field(..., alias="from")
    to: str
    transform: Literal["none", "uppercase", "lowercase", "date", "currency"] = "none"


class SyncConfig(BaseModel):
    frequency: Literal["manual", "real-time", "hourly", "daily"] = "manual"
    enabled: bool = True


class IntegrationCreateRequest(BaseModel):
    """Request model for creating an integration."""
    name: str = Field(..., min_length=1, description="Integration name")
    source: ConnectorEndpoint
    destination: ConnectorEndpoint
    mapping: List[FieldMapping] = Field(default_factory=list)
    sync_config: SyncConfig = Field(default_factory=SyncConfig, alias="syncConfig")

    def connector_type_errors(self) -> List[str]:
        errors = []
        if self.source.type not in SOURCE_TYPES:
            errors.append(f"source.type must be one of {sorted(SOURCE_TYPES)}")
        if self.destination.type not in DESTINATION_TYPES:
            errors.append(f"destination.type must be one of {sorted(DESTINATION_TYPES)}")
        return errors


class CredentialsUpdateRequest(BaseModel):
    """Replace the credentials of one side of an integration."""
    side: Literal["source", "destination"]
    credentials: Dict[str, Any]


class IntegrationResponse(BaseModel):
    id: str
    name: str
    source_type: str = Field(..., serialization_alias="sourceType")
    destination_type: str = Field(..., serialization_alias="destinationType")
    status: str


class MaskedCredentialsResponse(BaseModel):
    id: str
    source: Dict[str, Any]
    destination: Dict[str, Any]


class HealthResponse(BaseModel):
    service: str
    status: str
    details: Optional[Dict[str, Any]] = None
