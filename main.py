from datetime import datetime

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

# Use centralized configuration
from config.settings import settings
from db.db import engine, Base
from db import models  # noqa: F401  (registers tables on Base.metadata)
from utils.logger import logger

SERVICE_NAME = "Restaurant Channel Service"
SERVICE_VERSION = "1.0.0"

app = FastAPI(
    title=f"{SERVICE_NAME} - API v1",
    version=SERVICE_VERSION,
    description="Connects restaurants to WhatsApp Business numbers and Facebook Pages and routes their webhooks",
)

# CORS configuration using centralized settings
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins_list(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Import routers after app creation to avoid circular imports
from api.v1 import v1_router  # noqa: E402

app.include_router(v1_router)


@app.get("/api/health")
@app.get("/health")
async def health_check():
    health_info = {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "timestamp": datetime.utcnow().isoformat(),
        "api_version": "v1",
        "graph_api_version": settings.META_GRAPH_API_VERSION,
        "features": {
            "whatsapp": True,
            "messenger": True,
            "webhook_signature_check": settings.WEBHOOK_VERIFY_SIGNATURE,
        },
    }

    # Database health check
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        health_info["database_status"] = "connected"
    except Exception as e:
        logger.warning(f"⚠️ Health check database error: {type(e).__name__}")
        health_info["database_status"] = "error"
        health_info["status"] = "degraded"

    return health_info


@app.on_event("startup")
async def on_startup():
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("✅ Database tables created successfully")

        logger.info(f"🚀 {SERVICE_NAME} started (Graph API {settings.META_GRAPH_API_VERSION})")
        logger.info("🔒 Token encryption enabled")
        logger.info("🔒 Sensitive data filtering active")
        if not settings.WEBHOOK_VERIFY_SIGNATURE:
            logger.warning("⚠️ Webhook signature verification is disabled")

    except Exception as e:
        logger.error(f"❌ Database error: {type(e).__name__}")
        raise


if __name__ == "__main__":
    uvicorn.run("main:app", host="127.0.0.1", port=8000, reload=settings.DEBUG)
