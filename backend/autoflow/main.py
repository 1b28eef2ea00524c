import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from autoflow.config import get_settings
from autoflow.db.database import init_db
from autoflow.exceptions import AutoflowError, DefinitionError

settings = get_settings()

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()

    from autoflow.seed_data import seed_templates
    await seed_templates()

    from autoflow.services.scheduler_service import load_scheduled_workflows, scheduler, start_background_jobs
    start_background_jobs()
    scheduler.start()
    await load_scheduled_workflows()

    yield

    scheduler.shutdown()


app = FastAPI(title="Autoflow", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AutoflowError)
async def autoflow_error_handler(request: Request, exc: AutoflowError):
    body = {"detail": exc.message}
    if isinstance(exc, DefinitionError):
        body["errors"] = exc.errors
    return JSONResponse(status_code=exc.status_code, content=body)


from autoflow.api.executions import router as executions_router  # noqa: E402
from autoflow.api.step_types import router as step_types_router  # noqa: E402
from autoflow.api.templates import router as templates_router  # noqa: E402
from autoflow.api.workflows import router as workflows_router  # noqa: E402

app.include_router(workflows_router)
app.include_router(executions_router)
app.include_router(templates_router)
app.include_router(step_types_router)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "autoflow"}
