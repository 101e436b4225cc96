import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from config import settings

logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
logger = logging.getLogger(__name__)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Werewolves backend starting up...")
    yield
    logger.info("Backend shutting down.")


app = FastAPI(
    title="Werewolves",
    version=VERSION,
    description="Party Werewolf game coordinator: join by link or QR code, stay in sync by polling",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type"],
)


@app.get("/health")
async def health_check():
    return {
        "status": "ok",
        "service": "werewolves",
        "version": VERSION,
        "poll_interval_ms": settings.poll_interval_ms,
    }


from routers.game_router import router as game_router

app.include_router(game_router, prefix="/api")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
