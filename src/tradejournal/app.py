from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tradejournal.config import settings
from tradejournal.errors import AuthError, ValidationError
from tradejournal.logging import setup_logging
from tradejournal.routes.auth import router as auth_router


def create_app() -> FastAPI:
    setup_logging(settings.log_level)
    settings.validate_signing_config()

    app = FastAPI(title="Trade Journal API", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth_router)

    @app.exception_handler(AuthError)
    async def handle_auth_error(_: Request, exc: AuthError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(_: Request, exc: RequestValidationError) -> JSONResponse:
        error = ValidationError(
            details={
                "errors": [
                    {"field": ".".join(str(p) for p in e["loc"][1:]), "message": e["msg"]}
                    for e in exc.errors()
                ]
            }
        )
        return JSONResponse(status_code=error.status_code, content=error.to_dict())

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
