"""
Restock Notify API Service.

FastAPI application relaying storefront "notify me when back in stock"
requests to the Shopify Admin API. Registrations are stored as tags on the
Shopify customer record.

Endpoints:
1. POST   /apps/restock-notify                  register (product or raw tag)
2. GET    /apps/restock-notify/customer/{email} list registrations
3. DELETE /apps/restock-notify                  remove a registration
"""
# Load .env file if present (for local development)
from dotenv import load_dotenv
load_dotenv()

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Optional, Union

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel

from ..services.config import Settings
from ..services.errors import RestockError, UpstreamError
from ..services.restock import RestockService
from ..services.shopify_client import ShopifyClient

logger = logging.getLogger(__name__)


# Global instances
settings: Optional[Settings] = None
client: Optional[ShopifyClient] = None
service: Optional[RestockService] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Builds settings from the environment, opens the Shopify client and wires
    the restock service on startup; closes the client on shutdown.
    """
    global settings, client, service

    settings = Settings.from_env()

    client = ShopifyClient(settings)
    client.connect()

    service = RestockService(client=client, settings=settings)
    logger.info(f"Restock Notify API ready for {settings.store_domain} (API {settings.api_version})")

    yield

    # Cleanup
    if client:
        await client.close()


app = FastAPI(
    title="Restock Notify API",
    description="Registers back-in-stock notification requests as Shopify customer tags",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request/Response Models

Id = Union[int, str]


class RestockRequest(BaseModel):
    """Request model for registering a restock notification.

    Either ``productId`` (with optional ``variantId`` / ``customTag``) or a
    raw ``tag`` (with optional ``productHandle``) must accompany the email.
    """
    email: Optional[str] = None
    productId: Optional[Id] = None
    variantId: Optional[Id] = None
    customTag: Optional[str] = None
    tag: Optional[str] = None
    productHandle: Optional[str] = None


class RemoveRequest(BaseModel):
    """Request model for removing a restock notification."""
    email: Optional[str] = None
    productId: Optional[Id] = None
    variantId: Optional[Id] = None


class RemoveResponse(BaseModel):
    """Response model for a removal."""
    message: str
    customer_id: Any


class HealthResponse(BaseModel):
    """Response model for health check."""
    status: str
    shop_domain: Optional[str]
    api_version: Optional[str]


# Error handlers

@app.exception_handler(RestockError)
async def restock_error_handler(request: Request, exc: RestockError):
    """Translate service errors into ``{error}`` / ``{error, details}`` bodies."""
    if isinstance(exc, UpstreamError):
        content = {"error": "Internal server error", "details": exc.details}
    else:
        content = {"error": exc.message}
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(content))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are client errors (400), like missing fields."""
    return JSONResponse(
        status_code=400,
        content=jsonable_encoder({"error": "Invalid request body", "details": exc.errors()}),
    )


# API Endpoints

@app.post("/apps/restock-notify")
async def register_restock(req: RestockRequest):
    """
    Register a restock notification for a customer.

    Finds or creates the customer by email, merges the restock tags into the
    customer's tags and opts the customer into email marketing.

    Args:
        req: RestockRequest with email and productId or tag

    Returns:
        Dict with message, customer_id and the tags written
    """
    logger.info(f"Received request: {req.model_dump(exclude_none=True)}")

    if req.productId is None and req.tag is not None:
        result = await service.register_tag(
            email=req.email,
            tag=req.tag,
            product_handle=req.productHandle,
        )
    else:
        result = await service.register(
            email=req.email,
            product_id=req.productId,
            variant_id=req.variantId,
            custom_tag=req.customTag,
        )
    return result


@app.get("/apps/restock-notify/customer/{email}")
async def list_customer_restocks(email: str):
    """
    List the decoded restock registrations of a customer.

    Args:
        email: Customer email

    Returns:
        Customer id, email and restock_products; an empty ``products`` list
        if the customer does not exist
    """
    return await service.list_registrations(email)


@app.delete("/apps/restock-notify", response_model=RemoveResponse)
async def remove_restock(req: RemoveRequest):
    """
    Remove a restock notification from a customer.

    Args:
        req: RemoveRequest with email, productId and optional variantId

    Returns:
        RemoveResponse with the customer id

    Raises:
        NotFoundError: 404 if the customer does not exist
    """
    logger.info(f"Received removal: {req.model_dump(exclude_none=True)}")

    result = await service.unregister(
        email=req.email,
        product_id=req.productId,
        variant_id=req.variantId,
    )
    return RemoveResponse(**result)


@app.get("/health", response_model=HealthResponse)
async def health():
    """
    Health check endpoint.

    Returns:
        HealthResponse with service status and shop info
    """
    return HealthResponse(
        status="healthy",
        shop_domain=settings.store_domain if settings else None,
        api_version=settings.api_version if settings else None,
    )


@app.get("/", response_class=PlainTextResponse)
async def root():
    return "Restock Notify API is running."


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "3000")))
