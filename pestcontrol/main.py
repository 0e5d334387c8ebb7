# pestcontrol/main.py
# type: ignore

from fastapi import FastAPI

from pestcontrol.core.config import settings
from pestcontrol.core.errors import register_exception_handlers
from pestcontrol.core.logger import get_logger, setup_logging
from pestcontrol.core.permission_defaults import seed_permissions
from pestcontrol.database import SessionLocal, create_tables

# ***************************************************************
# 1. API routers
# ***************************************************************
from pestcontrol.api.v1.endpoints import auth
from pestcontrol.api.v1.endpoints import branches
from pestcontrol.api.v1.endpoints import companies
from pestcontrol.api.v1.endpoints import leads
from pestcontrol.api.v1.endpoints import roles
from pestcontrol.api.v1.endpoints import staff

logger = get_logger("app")


def seed_defaults():
    """Installs the default permission catalogue if it is missing."""
    db = SessionLocal()
    try:
        seed_permissions(db)
    finally:
        db.close()


def create_app() -> FastAPI:
    setup_logging()

    if settings.JWT_SECRET_IS_DEFAULT:
        if settings.is_production:
            raise RuntimeError("JWT_SECRET must be set in production")
        logger.warning("JWT_SECRET is not set; using an insecure development secret")

    app = FastAPI(
        title="Pest Control Management API",
        version="v1",
        description="Multi-tenant backend for pest-control companies: staff, branches and leads.",
    )

    # ***************************************************************
    # 2. Database
    # ***************************************************************
    create_tables()
    seed_defaults()

    # ***************************************************************
    # 3. Errors and routes
    # ***************************************************************
    register_exception_handlers(app)

    app.include_router(auth.router, tags=["Auth"], prefix="/api/auth")
    app.include_router(companies.router, tags=["Companies"], prefix="/api/companies")
    app.include_router(branches.public_router, tags=["Branches"], prefix="/api/branches")
    app.include_router(branches.router, tags=["Branches"], prefix="/api/branches")
    app.include_router(staff.router, tags=["Staff"], prefix="/api/staff")
    app.include_router(roles.router, tags=["Roles"], prefix="/api/roles")
    app.include_router(leads.router, tags=["Leads"], prefix="/api/leads")

    @app.get("/health", tags=["Health"])
    def health():
        return {"success": True, "status": "OK", "environment": settings.APP_ENV}

    logger.info("Application started", extra={"context": {"environment": settings.APP_ENV}})
    return app


app = create_app()
