from fastapi import APIRouter, Depends, HTTPException

from stack_engine.api.container import get_stack_catalog
from stack_engine.api.schemas.deployment import StackSourceRequest, StackSourceResponse
from stack_engine.core.errors import StackEngineError

router = APIRouter(tags=["stacks"])


@router.post("/stack-sources", response_model=StackSourceResponse)
def register_stack_source(
    request: StackSourceRequest,
    catalog=Depends(get_stack_catalog),
):
    """Source sync delivers manifest text; every product stack becomes deployable."""
    try:
        stack_ids = catalog.add_source(request.source_id, request.manifest, request.base_location)
    except StackEngineError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return StackSourceResponse(source_id=request.source_id, stack_ids=stack_ids)


@router.get("/stacks")
def list_stacks(catalog=Depends(get_stack_catalog)):
    return {"stack_ids": catalog.list_stack_ids()}
