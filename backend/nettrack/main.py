import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from nettrack.api.routes import router as api_router
from nettrack.core.config import get_settings
from nettrack.core.errors import NetTrackError, TransientError
from nettrack.core.log_config import configure_logging
from nettrack.db.base import Base
from nettrack.db.session import engine
from nettrack.realtime.socket_server import build_socket_app

settings = get_settings()
configure_logging()
logger = logging.getLogger(__name__)

api_app = FastAPI(title=settings.app_name, debug=settings.debug)
api_app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
api_app.include_router(api_router, prefix=settings.api_prefix)


@api_app.exception_handler(NetTrackError)
async def nettrack_error_handler(request: Request, exc: NetTrackError) -> JSONResponse:
    if isinstance(exc, TransientError):
        logger.warning("Upstream failure on %s: %s", request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@api_app.on_event("startup")
def on_startup() -> None:
    Base.metadata.create_all(bind=engine)
    logger.info("%s started", settings.app_name)


app = build_socket_app(api_app)
