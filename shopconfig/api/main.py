"""
HTTP surface for the storefront configuration.

Public routes serve the configuration with credentials withheld; admin routes
require a session vetted upstream (X-Admin-User) and tag their audit entries
with it. Every response uses the {success, data?, error?, platform?, timestamp}
envelope.
"""

from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import Body, Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .schemas import CredentialsRequest, Envelope, HealthData
from ..catalog import CatalogApiClient, get_catalog_client
from ..catalog.products import hydrate_product_configuration, validate_configured_skus
from ..core import heartbeat
from ..core.auth import HeaderAuth, actor_tag_from
from ..core.backup import export_configuration, import_configuration
from ..core.config import VERSION, debug_enabled, get_catalog_base_url
from ..core.errors import STATUS_CODES, CatalogApiError, ConfigError, ErrorCode
from ..core.manager import ConfigurationManager, SaveResult, SaveStatus, get_config_manager
from ..storage import get_adapter
from ..util.logging import logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    manager = get_config_manager()
    manager.start_health_monitor()
    get_catalog_client(manager.latest().api_credentials)
    yield
    manager.stop_health_monitor()
    heartbeat.stop()


app = FastAPI(
    title="Storefront Configuration API",
    version=VERSION,
    description="Admin configuration with platform-adaptive storage and offline fallback",
    docs_url="/docs" if debug_enabled() else None,
    redoc_url="/redoc" if debug_enabled() else None,
    lifespan=lifespan,
)

# Add CORS middleware to allow the admin UI
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def respond(status_code: int = 200, **fields) -> JSONResponse:
    envelope = Envelope(**fields)
    return JSONResponse(status_code=status_code,
                        content=envelope.model_dump(mode="json", by_alias=True, exclude_none=True))


def config_manager() -> ConfigurationManager:
    return get_config_manager()


def admin_session(request: Request) -> HeaderAuth:
    auth = HeaderAuth(request.headers)
    if not auth.validate_session():
        raise HTTPException(status_code=401, detail="Admin session required")
    return auth


async def platform_summary(manager: ConfigurationManager) -> Dict[str, Any]:
    info = (await manager.get_platform_info()).to_dict()
    info["serverAvailable"] = manager.server_available
    return info


def save_response(result: SaveResult, platform: Dict[str, Any]) -> JSONResponse:
    if result.status == SaveStatus.FAILED:
        return respond(STATUS_CODES[result.code or ErrorCode.SAVE_FAILED],
                       success=False, error=result.error, platform=platform, sync_status=result.status.value)
    # saved_locally is accepted but not durable yet
    status_code = 200 if result.synced else 202
    return respond(status_code, success=True, data=result.config.to_document(), platform=platform,
                   error=result.error, sync_status=result.status.value)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request, exc):
    return respond(exc.status_code, success=False, error=str(exc.detail))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request, exc):
    problems = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'] if part != 'body')}: {error['msg']}"
        for error in exc.errors()
    )
    return respond(400, success=False, error=f"Invalid request: {problems}")


@app.exception_handler(ConfigError)
async def config_error_handler(request, exc):
    logger.error(f"{request.method} {request.url.path} failed: {exc!r}")
    return respond(exc.status_code, success=False, error=exc.message, platform={"type": exc.platform})


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Handle all unhandled exceptions."""
    logger.error(f"Unhandled exception: {exc}")
    error = str(exc) if debug_enabled() else "Internal server error"
    return respond(500, success=False, error=error)


# ---- public ----

@app.get("/api/config", response_model=Envelope)
async def get_public_config(manager: ConfigurationManager = Depends(config_manager)):
    """Storefront view of the configuration; the API key is never exposed."""
    config = await manager.get_config()
    return respond(success=True, data=config.public_document(), platform=await platform_summary(manager))


@app.get("/api/products", response_model=Envelope)
async def get_products(manager: ConfigurationManager = Depends(config_manager)):
    """Configured SKUs hydrated from the catalog; sections degrade to empty."""
    config = await manager.get_config()
    client = get_catalog_client(config.api_credentials)
    if not client.is_configured():
        return respond(503, success=False, error="Catalog API credentials are not configured")
    hydrated = await hydrate_product_configuration(client, config.product_configuration)
    data = {
        name: (value.to_dict() if value is not None else None) if name == "primaryReference"
        else [record.to_dict() for record in value]
        for name, value in hydrated.items()
    }
    return respond(success=True, data=data)


# ---- admin ----

@app.get("/api/admin/config", response_model=Envelope)
async def get_admin_config(auth: HeaderAuth = Depends(admin_session),
                           manager: ConfigurationManager = Depends(config_manager)):
    config = await manager.get_config()
    return respond(success=True, data=config.to_document(), platform=await platform_summary(manager))


@app.put("/api/admin/config", response_model=Envelope)
async def put_admin_config(document: Dict[str, Any] = Body(...),
                           auth: HeaderAuth = Depends(admin_session),
                           manager: ConfigurationManager = Depends(config_manager)):
    result = await manager.save_config(document, auth)
    return save_response(result, await platform_summary(manager))


@app.post("/api/admin/config/reset", response_model=Envelope)
async def reset_admin_config(auth: HeaderAuth = Depends(admin_session),
                             manager: ConfigurationManager = Depends(config_manager)):
    result = await manager.reset_to_defaults(auth)
    return save_response(result, await platform_summary(manager))


@app.post("/api/admin/credentials", response_model=Envelope)
async def set_credentials(req: CredentialsRequest,
                          auth: HeaderAuth = Depends(admin_session),
                          manager: ConfigurationManager = Depends(config_manager)):
    """Validate catalog credentials against the live API, then store them."""
    base_url = req.base_url or manager.latest().api_credentials.base_url or get_catalog_base_url()
    probe = CatalogApiClient({
        "apiKey": req.api_key,
        "accountId": req.account_id,
        "baseUrl": base_url,
        "country": req.country or manager.latest().api_credentials.country,
    })
    try:
        valid = await probe.validate_credentials()
    finally:
        probe.session.close()

    if not valid:
        return respond(400, success=False, error="Credential validation failed")

    result = await manager.set_api_credentials(req.api_key, req.account_id, base_url, req.country, validated=True)
    if result:
        get_catalog_client(result.config.api_credentials)
    return save_response(result, await platform_summary(manager))


@app.get("/api/admin/products/validate", response_model=Envelope)
async def validate_products(auth: HeaderAuth = Depends(admin_session),
                            manager: ConfigurationManager = Depends(config_manager)):
    """Check every configured SKU against the live catalog."""
    config = await manager.get_config()
    client = get_catalog_client(config.api_credentials)
    if not client.is_configured():
        return respond(400, success=False, error="Catalog API credentials are not configured")
    try:
        results = await validate_configured_skus(client, config.product_configuration)
    except CatalogApiError as e:
        return respond(e.status_code or 500, success=False, error=e.message)
    return respond(success=True, data=[result.to_dict() for result in results])


@app.get("/api/admin/audit", response_model=Envelope)
async def get_audit(auth: HeaderAuth = Depends(admin_session),
                    manager: ConfigurationManager = Depends(config_manager)):
    entries = await manager.get_audit_log()
    return respond(success=True, data=[entry.to_dict() for entry in entries],
                   platform=await platform_summary(manager))


@app.get("/api/admin/platform", response_model=Envelope)
async def get_platform(auth: HeaderAuth = Depends(admin_session),
                       manager: ConfigurationManager = Depends(config_manager)):
    summary = await platform_summary(manager)
    return respond(success=True, data=summary, platform=summary)


@app.get("/api/admin/health", response_model=Envelope)
async def get_health(auth: HeaderAuth = Depends(admin_session),
                     manager: ConfigurationManager = Depends(config_manager)):
    server_available = await manager.check_server_health(force=True)
    try:
        adapter = await get_adapter()
        report = await adapter.check_database_health()
    except ConfigError as e:
        health = HealthData(healthy=False, server_available=False, schema_version=0, version=VERSION,
                            error=e.message)
        return respond(503, success=False, error=e.message, data=health.model_dump(by_alias=True))

    healthy = server_available and report.healthy
    health = HealthData(healthy=healthy, server_available=server_available, schema_version=report.version,
                        version=VERSION, error=report.error)
    return respond(200 if healthy else 503, success=healthy, data=health.model_dump(by_alias=True),
                   error=report.error, platform=await platform_summary(manager))


@app.get("/api/admin/backup", response_model=Envelope)
async def get_backup(auth: HeaderAuth = Depends(admin_session)):
    """Full export including credentials and the audit trail."""
    adapter = await get_adapter()
    export = await export_configuration(adapter, include_credentials=True, include_audit=True)
    return respond(success=True, data=export, platform=adapter.get_platform_info().to_dict())


@app.post("/api/admin/backup", response_model=Envelope)
async def restore_from_backup(data: Dict[str, Any] = Body(...),
                              auth: HeaderAuth = Depends(admin_session),
                              manager: ConfigurationManager = Depends(config_manager)):
    """Replace the configuration with an uploaded export; audited as IMPORT."""
    adapter = await get_adapter()
    stored = await import_configuration(adapter, data, actor_tag_from(auth))
    await manager.get_config()
    return respond(success=True, data=stored.to_document(), platform=adapter.get_platform_info().to_dict())
