from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from aide.api.routes import router
from aide.core.errors import AideError, CollaboratorError, NotFoundError, ValidationError
from aide.core.logging import get_logger
from aide.db.session import init_db

log = get_logger("main")

app = FastAPI(title="Aide Assistant API", version="0.1.0")
app.include_router(router, prefix="/v1")


@app.exception_handler(AideError)
async def on_aide_error(request: Request, exc: AideError):
    if isinstance(exc, ValidationError):
        status = 400
    elif isinstance(exc, NotFoundError):
        status = 404
    elif isinstance(exc, CollaboratorError):
        status = 502
    else:
        status = 500
    if status >= 500:
        log.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status, content={"detail": str(exc), "error": type(exc).__name__})


@app.on_event("startup")
async def on_startup():
    await init_db()
