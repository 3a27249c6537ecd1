from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .api import auth, health
from .auth import get_auth_service
from .config import settings
from .logging_config import setup_logging
from .middleware import RateLimitMiddleware, RequestLoggingMiddleware


setup_logging()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    service = get_auth_service()
    await service.start()
    try:
        yield
    finally:
        await service.stop()


# Create FastAPI app
app = FastAPI(
    title="SIWE Auth API",
    description="Sign-In with Ethereum message issuing and verification",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.siwe_uri],
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)
if settings.rate_limit_enabled:
    app.add_middleware(RateLimitMiddleware)
app.add_middleware(RequestLoggingMiddleware)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(auth.router, tags=["Auth"])


@app.get("/")
async def root():
    """Root endpoint with basic info"""
    return {
        "name": "SIWE Auth API",
        "version": __version__,
        "domain": settings.siwe_domain,
        "chain_id": settings.siwe_chain_id,
        "docs": "/docs",
        "health": "/healthz"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "siweauth.main:app",
        host=settings.host,
        port=settings.port,
        reload=True,
        log_level=settings.log_level.lower()
    )
