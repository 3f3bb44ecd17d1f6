"""FastAPI entry point for the scenario engine."""
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional, Tuple

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel, Field

from .. import __version__
from ..config import configure_logging, settings
from ..dag import validate_graph
from ..executor import execute_graph
from ..graph import import_graph
from ..models import CamelModel, Graph, GraphExport, SimulationConfig
from ..montecarlo import run_monte_carlo_simulation
from ..sensitivity import run_sensitivity_analysis

logger = logging.getLogger(__name__)


class ExecuteRequest(CamelModel):
    graph: Graph
    params: Dict[str, Any] = Field(default_factory=dict)


class SimulateRequest(CamelModel):
    graph: Graph
    config: Optional[SimulationConfig] = None


class SensitivityRequest(CamelModel):
    graph: Graph
    parameter_node_id: str
    parameter_field: str = "value"
    output_node_id: str
    output_field: str = "result"
    range: Tuple[float, float]
    steps: int = 10
    params: Optional[Dict[str, Any]] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    logger.info("Scenario Forge %s starting (env=%s)", __version__, settings.APP_ENV)
    yield


app = FastAPI(
    title="Scenario Forge",
    version=__version__,
    description="Graph execution, Monte Carlo and sensitivity analysis for scenario models",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _json(model: BaseModel) -> Response:
    # pydantic writes NaN/Infinity as null; plain json.dumps would reject them
    return Response(content=model.model_dump_json(by_alias=True), media_type="application/json")


def _run(fn, *args, **kwargs):
    try:
        return fn(*args, **kwargs)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception("Engine error")
        raise HTTPException(status_code=500, detail=f"Engine error: {str(e)}")


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "ok", "engine": "scenarioforge", "version": __version__}


@app.post("/validate")
def validate(graph: Graph):
    return _json(_run(validate_graph, graph))


@app.post("/execute")
def execute(req: ExecuteRequest):
    """Single deterministic pass over the graph."""
    return _json(_run(execute_graph, req.graph, req.params))


@app.post("/simulate")
def simulate(req: SimulateRequest):
    """
    Monte Carlo run.

    Iterations are clamped to MAX_SIMULATION_ITERATIONS, the wall-clock
    budget to MAX_SIMULATION_TIME and the returned samples to
    MAX_STORED_RESULTS. Without a config, DEFAULT_ITERATIONS are run.
    """
    config = req.config or SimulationConfig(iterations=settings.DEFAULT_ITERATIONS)
    iterations = config.iterations
    if iterations > settings.MAX_SIMULATION_ITERATIONS:
        logger.warning("Clamping iterations from %d to %d", iterations, settings.MAX_SIMULATION_ITERATIONS)
        iterations = settings.MAX_SIMULATION_ITERATIONS
    budget = settings.MAX_SIMULATION_TIME
    if config.max_execution_time:
        budget = min(config.max_execution_time, budget)
    config = config.model_copy(update={
        "iterations": iterations,
        "max_execution_time": budget,
        "max_stored_results": min(config.max_stored_results, settings.MAX_STORED_RESULTS),
    })
    return _json(_run(run_monte_carlo_simulation, req.graph, config))


@app.post("/sensitivity")
def sensitivity(req: SensitivityRequest):
    return _json(_run(
        run_sensitivity_analysis,
        req.graph,
        req.parameter_node_id,
        req.parameter_field,
        req.output_node_id,
        req.output_field,
        req.range,
        req.steps,
        req.params,
    ))


@app.post("/graphs/import")
def import_graph_route(envelope: GraphExport):
    """Import an exported graph; all ids are regenerated."""
    return _json(_run(import_graph, envelope))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "scenarioforge.server.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.APP_ENV == "development",
    )
