# file: weather_pipeline/main.py

import logging
import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from contextlib import asynccontextmanager
from typing import List

from weather_pipeline.config import PipelineConfig
from weather_pipeline.errors import PipelineError
from weather_pipeline.models import CitySuggestion, Snapshot
from weather_pipeline.orchestrator import Orchestrator
from weather_pipeline.provider_client import ProviderClient

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the upstream session for the lifetime of the app."""
    config = PipelineConfig.from_env()
    async with ProviderClient(config) as client:
        app.state.orchestrator = Orchestrator(config, client)
        logging.info(f"Pipeline ready (backend={config.use_backend}, fallback={config.fallback_enabled})")
        yield


app = FastAPI(
    title = "Weather Intelligence Pipeline",
    description = "Reconciles multi-source weather readings into a single city snapshot.",
    version = "0.1",
    lifespan = lifespan
)


def get_orchestrator(request: Request) -> Orchestrator:
    return request.app.state.orchestrator


@app.get("/snapshot", response_model=Snapshot)
async def snapshot(city: str = Query(..., min_length=1, description="City name, e.g. 'Bengaluru'"),
                   orchestrator: Orchestrator = Depends(get_orchestrator)):
    """Assemble the current snapshot for a city."""
    logging.info(f"Snapshot requested for {city}")
    try:
        return await orchestrator.fetch_city_data(city)
    except PipelineError as e:
        logging.error(f"Snapshot for {city} failed: {e} ({e.failure})")
        raise HTTPException(status_code=502, detail=str(e))


@app.get("/search", response_model=List[CitySuggestion])
async def search(q: str = Query("", description="Partial city name"),
                 orchestrator: Orchestrator = Depends(get_orchestrator)):
    """City suggestions for a partial query; empty when nothing matches."""
    return await orchestrator.search_suggestions(q)


if __name__ == "__main__" :
    uvicorn.run(app, host = "0.0.0.0", port = 8000, log_level="info")
