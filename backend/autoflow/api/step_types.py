from fastapi import APIRouter, Body

from autoflow.services import step_catalog

router = APIRouter(prefix="/api/step-types", tags=["step-types"])


@router.get("")
async def list_step_types():
    return step_catalog.list_kinds()


@router.get("/{step_type}")
async def describe_step_type(step_type: str):
    return step_catalog.describe(step_type)


@router.post("/{step_type}/validate")
async def validate_step_config(step_type: str, config: dict = Body(...)):
    result = step_catalog.validate(step_type, config)
    return {"valid": result.valid, "errors": result.errors}
