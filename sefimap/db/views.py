# Vues statistiques calculées par le backend hébergé (lecture seule)
from sqlalchemy import Column, Float, Integer, String, Table

from sefimap.db.session import views_metadata

vue_statistiques_dortoirs = Table(
    "vue_statistiques_dortoirs",
    views_metadata,
    Column("id", String(36), primary_key=True),
    Column("nom", String(100)),
    Column("capacite", Integer),
    Column("nombre_inscrits", Integer),
    Column("places_disponibles", Integer),
    Column("taux_remplissage", Float),
)

vue_statistiques_niveaux_formation = Table(
    "vue_statistiques_niveaux_formation",
    views_metadata,
    Column("niveau_formation", String(20), primary_key=True),
    Column("nombre", Integer),
    Column("pourcentage", Float),
)
