from fastapi import FastAPI

from app.models import HealthResponse
from routes.jobs import router as jobs_router

app = FastAPI(title="Narrated Recorder", version="0.1.0")
app.include_router(jobs_router, prefix="/api")


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse()
