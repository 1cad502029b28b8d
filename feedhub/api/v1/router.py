from fastapi import APIRouter

from feedhub.api.v1.endpoints.health import router as health_router
from feedhub.api.v1.endpoints.ingest import router as ingest_router
from feedhub.api.v1.endpoints.ingest_runs import router as ingest_runs_router
from feedhub.api.v1.endpoints.field_mappings import router as field_mappings_router
from feedhub.api.v1.endpoints.deduplication import router as deduplication_router
from feedhub.api.v1.endpoints.uid_counter import router as uid_counter_router


router = APIRouter(prefix="/v1")
router.include_router(health_router, tags=["health"])
router.include_router(ingest_router, tags=["ingest"])
router.include_router(ingest_runs_router, tags=["ingest-runs"])
router.include_router(field_mappings_router, tags=["field-mappings"])
router.include_router(deduplication_router, tags=["deduplication"])
router.include_router(uid_counter_router, tags=["uid-counter"])
