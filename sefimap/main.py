import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from sefimap.config import settings
from sefimap.auth.api import router as auth_router
from sefimap.data.api import router as data_router
from sefimap.data.provider import data_provider
from sefimap.documents.api import router as documents_router
from sefimap.dortoirs.api import router as dortoirs_router
from sefimap.inscriptions.api import president_router, router as inscriptions_router
from sefimap.paiements.api import router as paiements_router
from sefimap.scientifique.api import router as scientifique_router

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Arrêt du rafraîchissement périodique
    await data_provider.close()
    logger.info("👋 Cache de données fermé")


app = FastAPI(title="SEFIMAP", lifespan=lifespan)

# Création dossier statique uploads
upload_dir = Path(settings.UPLOAD_DIR) / settings.PHOTO_BUCKET
upload_dir.mkdir(parents=True, exist_ok=True)

# Monture des photos (URL /static/upload/<bucket>/...)
app.mount("/static/upload", StaticFiles(directory=settings.UPLOAD_DIR), name="static")

app.include_router(auth_router)
app.include_router(data_router)
app.include_router(inscriptions_router)
app.include_router(president_router)
app.include_router(dortoirs_router)
app.include_router(paiements_router)
app.include_router(scientifique_router)
app.include_router(documents_router)

# Middleware CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # à restreindre en prod
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
async def root():
    return {"message": "Bienvenue sur l'API SEFIMAP"}
