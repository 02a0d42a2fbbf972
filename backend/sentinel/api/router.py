from fastapi import APIRouter

from sentinel.api.v1 import audit, fraud, health

api_router = APIRouter()

api_router.include_router(health.router, prefix="/v1", tags=["health"])
api_router.include_router(audit.router, prefix="/v1/audit", tags=["audit"])
api_router.include_router(fraud.router, prefix="/v1/fraud", tags=["fraud"])
