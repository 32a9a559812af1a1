"""Storefront Checkout FastAPI application.

Runs the checkout saga behind HTTP. Each request under ``/checkout`` is
wrapped in the checkout domain context.

Usage:
    uvicorn app:app --app-dir src --host 0.0.0.0 --port 8000 --reload
"""

from contextlib import asynccontextmanager

# ---------------------------------------------------------------------------
# Domain initialization
# ---------------------------------------------------------------------------
# Initialized at module level so uvicorn workers share it.
# PROTEAN_ENV selects Protean's config overlay.
from checkout.domain import checkout  # noqa: E402
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

checkout.init()


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield

    from checkout.services import close_orchestrator

    await close_orchestrator()


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Storefront Checkout API",
    description="Cart-to-paid-order checkout saga",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def domain_context_middleware(request: Request, call_next):
    """Push the checkout domain context for checkout requests."""
    if request.url.path.startswith("/checkout"):
        with checkout.domain_context():
            response = await call_next(request)
        return response
    # Health check, docs, etc.
    return await call_next(request)


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from checkout.api import router as checkout_router  # noqa: E402

app.include_router(checkout_router)


# ---------------------------------------------------------------------------
# Health / root
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    from checkout.services import get_orchestrator

    orchestrator = get_orchestrator()
    return JSONResponse(
        content={
            "status": "ok",
            "domain": {"name": checkout.name},
            "checkout": {
                "currency": orchestrator.settings.currency,
                "gateway_configured": orchestrator.settings.has_merchant_key,
                "in_progress": orchestrator.in_progress,
            },
        }
    )
