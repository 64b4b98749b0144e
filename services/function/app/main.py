from __future__ import annotations

from fastapi import FastAPI

from libs.core import logging as core_logging
from libs.core.models import RunFunctionRequest, RunFunctionResponse
from services.function.function_core import create_function_from_env


core_logging.configure_logging("function")
LOGGER = core_logging.get_logger("function")

FUNCTION = create_function_from_env(LOGGER)

app = FastAPI(title="LLM Function")
app.state.function = FUNCTION


@app.get("/healthz")
def healthz() -> dict:
    return {"status": "ok"}


@app.post("/run", response_model=RunFunctionResponse, response_model_exclude_none=True)
def run_function_endpoint(request: RunFunctionRequest) -> RunFunctionResponse:
    return app.state.function.run_function(request)
