from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException

from stack_engine.api.container import get_deployment_service, get_observer_service
from stack_engine.api.schemas.deployment import (
    CommandResponse,
    DeployRequest,
    DeploymentResponse,
    ObserverCheckResponse,
    ObserverToggleRequest,
    OperationModeRequest,
    UpgradeRequest,
)
from stack_engine.core.models import Deployment

router = APIRouter(prefix="/deployments", tags=["deployments"])


def _to_response(deployment: Deployment) -> DeploymentResponse:
    return DeploymentResponse(
        deployment_id=deployment.deployment_id,
        environment_id=deployment.environment_id,
        stack_id=deployment.stack_id,
        stack_name=deployment.stack_name,
        status=deployment.status.value,
        operation_mode=deployment.operation_mode.value,
        stack_version=deployment.stack_version,
        target_version=deployment.target_version,
        previous_version=deployment.previous_version,
        variables=deployment.variables,
        observer_enabled=deployment.observer_enabled,
        has_observer=bool(deployment.observer_config),
        maintenance_source=deployment.maintenance_source.value if deployment.maintenance_source else None,
        mode_reason=deployment.mode_reason,
        deployed_containers=deployment.deployed_containers,
        stopped_containers=deployment.stopped_containers,
        error_message=deployment.error_message,
        created_at=deployment.created_at,
        updated_at=deployment.updated_at,
    )


def _command_response(result) -> CommandResponse:
    response = CommandResponse(
        success=result.success,
        message=result.message,
        deployment_id=result.deployment_id,
        warnings=result.warnings,
        errors=result.errors,
    )
    if not result.success:
        raise HTTPException(status_code=400, detail=response.model_dump(mode="json"))
    return response


def _require_deployment(service, deployment_id: UUID) -> Deployment:
    deployment = service.get_deployment(deployment_id)
    if deployment is None:
        raise HTTPException(status_code=404, detail="Deployment not found")
    return deployment


@router.post("/", response_model=CommandResponse)
def deploy(
    request: DeployRequest,
    service=Depends(get_deployment_service),
):
    result = service.deploy(
        request.stack_id,
        request.stack_name,
        request.environment_id,
        request.variables,
    )
    return _command_response(result)


@router.get("/", response_model=List[DeploymentResponse])
def list_deployments(service=Depends(get_deployment_service)):
    return [_to_response(d) for d in service.list_deployments()]


@router.get("/{deployment_id}", response_model=DeploymentResponse)
def get_deployment(
    deployment_id: UUID,
    service=Depends(get_deployment_service),
):
    return _to_response(_require_deployment(service, deployment_id))


@router.post("/{deployment_id}/upgrade", response_model=CommandResponse)
def upgrade(
    deployment_id: UUID,
    request: UpgradeRequest,
    service=Depends(get_deployment_service),
):
    _require_deployment(service, deployment_id)
    return _command_response(service.upgrade(deployment_id, request.stack_id, request.variables))


@router.post("/{deployment_id}/rollback", response_model=CommandResponse)
def rollback(
    deployment_id: UUID,
    service=Depends(get_deployment_service),
):
    _require_deployment(service, deployment_id)
    return _command_response(service.rollback(deployment_id))


@router.post("/{deployment_id}/operation-mode", response_model=CommandResponse)
def change_operation_mode(
    deployment_id: UUID,
    request: OperationModeRequest,
    service=Depends(get_deployment_service),
):
    _require_deployment(service, deployment_id)
    return _command_response(
        service.change_operation_mode(deployment_id, request.mode, request.reason)
    )


@router.post("/{deployment_id}/observer", response_model=CommandResponse)
def set_observer_enabled(
    deployment_id: UUID,
    request: ObserverToggleRequest,
    service=Depends(get_deployment_service),
):
    _require_deployment(service, deployment_id)
    return _command_response(service.set_observer_enabled(deployment_id, request.enabled))


@router.post("/{deployment_id}/observer/check", response_model=ObserverCheckResponse)
def trigger_observer_check(
    deployment_id: UUID,
    service=Depends(get_deployment_service),
    observers=Depends(get_observer_service),
):
    _require_deployment(service, deployment_id)

    result = observers.check_now(deployment_id)
    if result is None:
        raise HTTPException(status_code=409, detail="No active maintenance observer for this deployment")

    return ObserverCheckResponse(
        success=result.success,
        observed_value=result.observed_value,
        maintenance_required=result.maintenance_required,
        error_message=result.error_message,
        checked_at=result.checked_at,
    )


@router.post("/{deployment_id}/cancel", response_model=CommandResponse)
def cancel_deployment(
    deployment_id: UUID,
    service=Depends(get_deployment_service),
):
    _require_deployment(service, deployment_id)
    return _command_response(service.cancel_deployment(deployment_id))


@router.delete("/{deployment_id}", response_model=CommandResponse)
def remove_deployment(
    deployment_id: UUID,
    service=Depends(get_deployment_service),
):
    _require_deployment(service, deployment_id)
    return _command_response(service.remove_deployment(deployment_id))
