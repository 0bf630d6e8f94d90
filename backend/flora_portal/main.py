import logging
import sys
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from flora_portal.config import settings
from flora_portal.routers import (
    audit,
    auth,
    blueprints,
    categories,
    chat,
    coa,
    dev,
    inventory,
    locations,
    media,
    orders,
    pricing,
    products,
    reports,
    users,
)
from flora_portal.services.blueprint_preloader import blueprint_preloader
from flora_portal.services.flora_api_client import UpstreamHTTPError, UpstreamUnavailable
from flora_portal.utils.build_info import get_build_number
from flora_portal.utils.logger import logger

# Global logging configuration
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s :: %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
    force=True,
)

app = FastAPI(title="Flora Portal API", version="1.0.0")

origins = [o.strip() for o in settings.ALLOWED_ORIGINS.split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
    max_age=3600,
)


# Request logging middleware with request ID
@app.middleware("http")
async def request_logger(request: Request, call_next):
    rid = uuid.uuid4().hex[:8]
    request.state.rid = rid
    logging.info("→ %s %s rid=%s", request.method, request.url.path, rid)
    try:
        resp = await call_next(request)
        logging.info("← %s status=%s rid=%s", request.url.path, resp.status_code, rid)
        resp.headers["X-Request-ID"] = rid
        return resp
    except Exception as e:
        logging.exception("Unhandled error rid=%s: %s", rid, str(e))
        error_resp = JSONResponse({"success": False, "error": str(e), "rid": rid}, status_code=500)
        error_resp.headers["X-Request-ID"] = rid
        return error_resp


@app.exception_handler(UpstreamHTTPError)
async def upstream_http_error_handler(request: Request, exc: UpstreamHTTPError):
    return JSONResponse({"error": exc.error, "details": exc.details}, status_code=exc.status_code)


@app.exception_handler(UpstreamUnavailable)
async def upstream_unavailable_handler(request: Request, exc: UpstreamUnavailable):
    logger.error("Upstream unavailable rid=%s: %s", getattr(request.state, "rid", "unknown"), exc)
    return JSONResponse({"success": False, "error": str(exc)}, status_code=500)


app.include_router(auth.router)
app.include_router(products.router)
app.include_router(blueprints.router)
app.include_router(categories.router)
app.include_router(inventory.router)
app.include_router(inventory.health_router)
app.include_router(locations.router)
app.include_router(orders.router)
app.include_router(pricing.router)
app.include_router(reports.router)
app.include_router(users.router)
app.include_router(coa.router)
app.include_router(media.router)
app.include_router(chat.router)
app.include_router(audit.router)
app.include_router(dev.router)


@app.on_event("startup")
async def startup_event():
    build_number = get_build_number()
    logger.info("=" * 60)
    logger.info(f"🚀 Application starting - BUILD_NUMBER: {build_number}")
    logger.info("=" * 60)
    logger.info(f"Flora API base: {settings.wp_json_base}")
    if not settings.wc_configured:
        logger.warning("⚠️  WC_CONSUMER_KEY/WC_CONSUMER_SECRET not set; WordPress calls will be rejected")


@app.on_event("shutdown")
async def shutdown_event():
    blueprint_preloader.cancel()
    logger.info("Flora Portal API shutting down")


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/ping")
async def ping():
    return {"pong": True}


@app.get("/")
async def root():
    return {
        "message": "Flora Portal API",
        "version": "1.0.0",
        "docs": "/docs",
    }
