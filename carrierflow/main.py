from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from carrierflow.api.routes import router
from carrierflow.api.admin_routes import router as admin_router
from carrierflow.core.errors import FlowError
from carrierflow.engine import get_engine
from carrierflow.observability.logging import log
from carrierflow.settings import settings


@asynccontextmanager
async def lifespan(_app: FastAPI):
    engine = get_engine()
    engine.sweeper.start()
    log(event="boot", environment=settings.ENVIRONMENT, storeBackend=settings.STORE_BACKEND,
        notifyMode=settings.NOTIFY_MODE)
    try:
        yield
    finally:
        engine.sweeper.stop()


app = FastAPI(title="Carrier Flow API", lifespan=lifespan)

# Restricted in prod via CORS_ORIGINS.
origins = [x.strip() for x in settings.CORS_ORIGINS.split(",") if x.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)
app.include_router(admin_router)


@app.get("/health")
def health():
    return {"status": "ok", "environment": settings.ENVIRONMENT}


@app.exception_handler(FlowError)
async def flow_error_handler(request: Request, exc: FlowError):
    log(event="flow_rejected", path=request.url.path, errorCode=exc.code, error=exc.message)
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())
