from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class StackSourceRequest(BaseModel):
    source_id: str
    manifest: str
    base_location: Optional[str] = None


class StackSourceResponse(BaseModel):
    source_id: str
    stack_ids: List[str]


class DeployRequest(BaseModel):
    stack_id: str
    stack_name: str
    environment_id: str
    variables: Dict[str, Any] = Field(default_factory=dict)


class UpgradeRequest(BaseModel):
    stack_id: str
    variables: Dict[str, Any] = Field(default_factory=dict)


class OperationModeRequest(BaseModel):
    mode: str
    reason: Optional[str] = None


class ObserverToggleRequest(BaseModel):
    enabled: bool


class CommandResponse(BaseModel):
    success: bool
    message: str
    deployment_id: Optional[UUID] = None
    warnings: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class DeploymentResponse(BaseModel):
    deployment_id: UUID
    environment_id: str
    stack_id: str
    stack_name: str
    status: str
    operation_mode: str
    stack_version: Optional[str] = None
    target_version: Optional[str] = None
    previous_version: Optional[str] = None
    variables: Dict[str, str]
    observer_enabled: bool
    has_observer: bool
    maintenance_source: Optional[str] = None
    mode_reason: Optional[str] = None
    deployed_containers: List[str]
    stopped_containers: List[str] = []
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class ObserverCheckResponse(BaseModel):
    success: bool
    observed_value: Optional[str] = None
    maintenance_required: bool
    error_message: Optional[str] = None
    checked_at: datetime
