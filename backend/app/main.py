"""
Asset Verification API
FastAPI application for asset verification campaigns: spreadsheet import,
batched verification mails, and the token-gated reconciliation form.
"""

import logging
import os
from typing import List

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from app.routers import auth, campaign, employees, form, imports
from app.db import supabase_admin

# Configure logging to output to console
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Asset Verification API",
    description="Employee asset verification campaigns and reconciliation",
    version="0.1.0",
)


def get_cors_origins() -> List[str]:
    """
    Build the list of allowed CORS origins.

    The admin dashboard and the verification form are served by the frontend
    dev server on http://localhost:3000 locally.  Deployed origins come from
    the CORS_ORIGINS environment variable as a comma-separated list, e.g.:
        CORS_ORIGINS=https://assets.example.com,https://verify.example.com

    Duplicates are removed while preserving order.
    """
    origins = ["http://localhost:3000"]
    cors_env = os.getenv("CORS_ORIGINS", "").strip()
    if cors_env:
        origins.extend(o.strip() for o in cors_env.split(",") if o.strip())
    return list(dict.fromkeys(origins))


app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(imports.router, prefix="/api/import", tags=["import"])
app.include_router(employees.router, prefix="/api/employees", tags=["employees"])
app.include_router(campaign.router, prefix="/api/email", tags=["email"])
app.include_router(form.router, prefix="/api/form", tags=["form"])


@app.on_event("startup")
async def log_startup_url() -> None:
    """Log where the API listens; HOST_PORT reflects Docker port mapping."""
    host_port = os.getenv("HOST_PORT", "8000")
    logger.info("Asset Verification API running at http://localhost:%s", host_port)


@app.get("/")
async def root():
    return {"message": "Asset Verification API", "version": "0.1.0"}


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/health/db")
async def health_db():
    """
    Test the Supabase database connection.

    Executes a lightweight query (SELECT 1 row from employees).  Returns 503
    on failure.
    """
    try:
        supabase_admin.table("employees").select("id").limit(1).execute()
        return {"status": "ok", "database": "reachable"}
    except Exception as exc:
        logger.error(f"Database health check failed: {exc}")
        raise HTTPException(
            status_code=503,
            detail=f"Database connection failed: {str(exc)}",
        )
