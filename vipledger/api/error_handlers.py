from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from vipledger.services.exceptions import (
    ConflictError,
    DomainValidationError,
    PermissionDeniedError,
    PersistenceFailureError,
    ResourceNotFoundError,
    ServiceError,
)
from vipledger.services.payment_providers import (
    PaymentProviderConfigurationError,
    PaymentProviderError,
)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ResourceNotFoundError)
    async def handle_not_found(_: Request, exc: ResourceNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": exc.detail})

    @app.exception_handler(DomainValidationError)
    async def handle_validation(_: Request, exc: DomainValidationError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": exc.detail})

    @app.exception_handler(ConflictError)
    async def handle_conflict(_: Request, exc: ConflictError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": exc.detail})

    @app.exception_handler(PermissionDeniedError)
    async def handle_forbidden(_: Request, exc: PermissionDeniedError) -> JSONResponse:
        return JSONResponse(status_code=403, content={"detail": exc.detail})

    @app.exception_handler(PersistenceFailureError)
    async def handle_persistence(_: Request, exc: PersistenceFailureError) -> JSONResponse:
        return JSONResponse(status_code=503, content={"detail": exc.detail}, headers={"Retry-After": "1"})

    @app.exception_handler(ServiceError)
    async def handle_service_error(_: Request, exc: ServiceError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": exc.detail})

    @app.exception_handler(PaymentProviderConfigurationError)
    async def handle_provider_config(_: Request, exc: PaymentProviderConfigurationError) -> JSONResponse:
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.exception_handler(PaymentProviderError)
    async def handle_provider_error(_: Request, exc: PaymentProviderError) -> JSONResponse:
        return JSONResponse(status_code=502, content={"detail": str(exc)})
