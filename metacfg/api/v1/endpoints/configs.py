"""
GET    /configs               – configs by name (?names=a&names=b)
GET    /configs/names         – every config name
POST   /configs/page          – one page of names matching a filter
PUT    /configs               – insert new configs, update persisted ones
DELETE /configs               – delete configs by name (?names=a&names=b)
POST   /configs/{name}/accept – push the stored config to registered consumers
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from metacfg.api.deps import get_config_service
from metacfg.models.config import Config
from metacfg.models.paging import PageRequest, PageResponse
from metacfg.schemas.config import DeletedOut, OperationResponse
from metacfg.services.config_service import ConfigService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/configs", tags=["configs"])


@router.get("", response_model=OperationResponse[list[Config]], summary="Get configs by name")
def get_configs(
    names: list[str] = Query(default=[]),
    service: ConfigService = Depends(get_config_service),
) -> OperationResponse[list[Config]]:
    return OperationResponse.ok(service.get(names))


@router.get("/names", response_model=OperationResponse[list[str]], summary="List config names")
def get_config_names(
    service: ConfigService = Depends(get_config_service),
) -> OperationResponse[list[str]]:
    return OperationResponse.ok(service.get_names())


@router.post(
    "/page",
    response_model=OperationResponse[PageResponse],
    summary="Page through config names",
)
def get_page(
    request: PageRequest,
    service: ConfigService = Depends(get_config_service),
) -> OperationResponse[PageResponse]:
    return OperationResponse.ok(service.page(request))


@router.put("", response_model=OperationResponse[list[Config]], summary="Save configs")
def save_configs(
    configs: list[Config],
    service: ConfigService = Depends(get_config_service),
) -> OperationResponse[list[Config]]:
    """
    Configs with ``id`` 0 are inserted. Persisted configs are updated only when
    their ``updated`` stamp is newer than the stored one; stale ones are left
    out of the result.
    """
    saved = service.update(configs)
    logger.info("Configs saved via API: requested=%s saved=%s", len(configs), len(saved))
    return OperationResponse.ok(saved)


@router.delete("", response_model=OperationResponse[DeletedOut], summary="Delete configs")
def delete_configs(
    names: list[str] = Query(default=[]),
    service: ConfigService = Depends(get_config_service),
) -> OperationResponse[DeletedOut]:
    return OperationResponse.ok(DeletedOut(deleted=service.remove(names)))


@router.post(
    "/{name}/accept",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=OperationResponse[str],
    summary="Notify consumers about a stored config",
)
def accept_config(
    name: str,
    service: ConfigService = Depends(get_config_service),
) -> OperationResponse[str]:
    if not service.accept(name):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Config not found.")
    return OperationResponse.ok(name)
