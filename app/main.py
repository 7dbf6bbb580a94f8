from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.database import SessionLocal, init_db
from app.logging_config import get_logger, setup_logging
from app.routers import channels, gateway, message, webhook
from app.runtime import channel_registry, event_log, message_dedup
from app.services.crm_stores import DEFAULT_AUTOMATIONS_SEED, seed_automations

setup_logging(settings.log_level)

logger = get_logger("main")

app = FastAPI(
    title="Nexus CRM Agent",
    description="Conversational lead ingestion for the Nexus CRM",
    version="0.1.0",
)

cors_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(webhook.router)
app.include_router(gateway.router)
app.include_router(channels.router)
app.include_router(message.router)


@app.on_event("startup")
async def startup() -> None:
    init_db()
    db = SessionLocal()
    try:
        seed_automations(db, settings.automations_seed_path or str(DEFAULT_AUTOMATIONS_SEED))
    finally:
        db.close()

    if settings.evolution_base_url and settings.evolution_api_key and settings.evolution_instance:
        await channel_registry.configure(
            "whatsapp",
            settings.evolution_base_url,
            settings.evolution_api_key,
            settings.evolution_instance,
        )
    logger.info("Nexus CRM agent started", extra={"context": {"event_capacity": event_log.capacity}})


@app.on_event("shutdown")
async def shutdown() -> None:
    await channel_registry.stop_all()
    await message_dedup.close()


@app.get("/api/health")
async def health():
    return {"ok": True, "lastSeq": event_log.last_seq}
