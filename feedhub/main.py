from fastapi import FastAPI

from feedhub.api.v1.router import router as v1_router
from feedhub.core.telemetry import setup_telemetry

app = FastAPI(title="Feed Hub API", version="0.1.0")

setup_telemetry(app)
app.include_router(v1_router)
