"""
Lending Ledger API Application Factory
"""

from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .. import __version__
from ..errors import LedgerError
from ..system import LedgerSystem
from .borrowers import router as borrowers_router
from .collections import router as collections_router
from .admin import router as admin_router


ERROR_STATUS = {
    "not_found": 404,
    "validation": 400,
    "self_deactivation_blocked": 400,
    "persistence": 500
}


def _failure(status_code: int, message: str, errors=None) -> JSONResponse:
    content = {"success": False, "message": message}
    if errors is not None:
        content["errors"] = errors
    return JSONResponse(status_code=status_code, content=content)


def create_app(system: Optional[LedgerSystem] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Without an explicit system, one is built from configuration at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.system is None:
            app.state.system = LedgerSystem()
        app.state.system.start()
        yield
        await app.state.system.close()

    app = FastAPI(
        title="Lending Ledger API",
        description="Personal lending ledger with monthly interest collection tracking",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    app.state.system = system

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        return _failure(ERROR_STATUS.get(exc.kind, 500), exc.message, exc.fields)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        fields = [".".join(str(part) for part in error["loc"][1:]) for error in errors]
        message = errors[0]["msg"] if errors else "Invalid request"
        return _failure(400, message, fields)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return _failure(exc.status_code, str(exc.detail))

    # Include routers
    app.include_router(borrowers_router, prefix="/borrowers", tags=["Borrowers"])
    app.include_router(collections_router, prefix="/collections", tags=["Collections"])
    app.include_router(admin_router, prefix="/admin", tags=["Admin"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "service": "lending_ledger_api",
            "version": __version__
        }

    return app


app = create_app()


def run_server(host: str = "0.0.0.0", port: int = 8090, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "lending_ledger.api:app",
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )
