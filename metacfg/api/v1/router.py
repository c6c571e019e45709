from fastapi import APIRouter

from metacfg.api.v1.endpoints.configs import router as configs_router

router = APIRouter()


@router.get("/status", tags=["status"])
def status() -> dict:
    return {"status": "ok", "service": "metacfg-api", "version": "0.1.0"}


router.include_router(configs_router)
