import io
import os
import tempfile
from datetime import datetime, timedelta, timezone

from PIL import Image
from jose import jwt
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from sefimap.config import settings
from sefimap.db import models
from sefimap.db.session import Base

# Équivalents SQLite des vues calculées par le backend hébergé
VUES = (
    """
    CREATE VIEW vue_statistiques_dortoirs AS
    SELECT d.id AS id,
           d.nom AS nom,
           d.capacite AS capacite,
           COUNT(i.id) AS nombre_inscrits,
           d.capacite - COUNT(i.id) AS places_disponibles,
           ROUND(COUNT(i.id) * 100.0 / d.capacite, 1) AS taux_remplissage
    FROM dortoirs d
    LEFT JOIN inscriptions i ON i.dortoir_id = d.id AND i.statut != 'rejete'
    GROUP BY d.id, d.nom, d.capacite
    """,
    """
    CREATE VIEW vue_statistiques_niveaux_formation AS
    SELECT niveau_formation,
           COUNT(*) AS nombre,
           ROUND(COUNT(*) * 100.0 / (SELECT COUNT(*) FROM inscriptions WHERE niveau_formation IS NOT NULL), 1)
               AS pourcentage
    FROM inscriptions
    WHERE niveau_formation IS NOT NULL
    GROUP BY niveau_formation
    """,
)


def photo_png(couleur="red") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (40, 50), couleur).save(buf, "PNG")
    return buf.getvalue()


class BaseDeTest:
    """Base SQLite temporaire avec les tables et les deux vues statistiques."""

    def __init__(self):
        self.dossier = tempfile.mkdtemp(prefix="sefimap-db-")
        self.url = f"sqlite+aiosqlite:///{os.path.join(self.dossier, 'test.db')}"
        self.engine = create_async_engine(self.url, poolclass=NullPool)
        self.session_factory = sessionmaker(bind=self.engine, class_=AsyncSession, expire_on_commit=False)

    async def creer(self):
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
            for vue in VUES:
                await conn.execute(text(vue))
        return self

    async def fermer(self):
        await self.engine.dispose()

    async def get_db(self):
        async with self.session_factory() as session:
            yield session

    async def ajouter(self, *objets):
        async with self.session_factory() as session:
            session.add_all(objets)
            await session.commit()
        return objets[0] if len(objets) == 1 else objets


def admin(role="secretaire", **kwargs):
    valeurs = {
        "id": f"user-{role}",
        "email": f"{role}@sefimap.bf",
        "nom": "Test",
        "prenom": role.capitalize(),
        "role": role,
    }
    valeurs.update(kwargs)
    return models.AdminUser(**valeurs)


def chef(**kwargs):
    valeurs = {"nom_complet": "Ousmane Sawadogo", "zone": "Secteur 15"}
    valeurs.update(kwargs)
    return models.ChefQuartier(**valeurs)


def dortoir(nom="Dortoir A", capacite=2, **kwargs):
    return models.Dortoir(nom=nom, capacite=capacite, **kwargs)


def inscription(**kwargs):
    valeurs = {
        "nom": "Ouedraogo",
        "prenom": "Aminata",
        "age": 17,
        "sexe": "femme",
        "niveau_etude": "secondaire",
        "type_inscription": "en_ligne",
        "statut": "en_attente",
        "created_by": "public",
        "montant_total_paye": 0,
        "statut_paiement": "non_payé",
    }
    valeurs.update(kwargs)
    return models.Inscription(**valeurs)


def formulaire(**kwargs):
    """Formulaire d'inscription complet et valide."""
    valeurs = {
        "nom": "Kabore",
        "prenom": "Issouf",
        "age": 16,
        "sexe": "homme",
        "niveau_etude": "secondaire",
        "telephone": "70112233",
        "ecole": "Lycée Zinda",
        "nom_parent": "Kabore",
        "prenom_parent": "Salif",
        "numero_parent": "76554433",
        "lieu_habitation": "Ouagadougou",
        "nombre_participations": 1,
        "numero_urgence": "78998877",
        "montant_paye": 0,
    }
    valeurs.update(kwargs)
    return valeurs


def token(user_id: str, **claims) -> str:
    payload = {
        "sub": user_id,
        "aud": settings.JWT_AUDIENCE,
        "exp": datetime.now(timezone.utc) + timedelta(hours=1),
    }
    payload.update(claims)
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.ALGORITHM)
