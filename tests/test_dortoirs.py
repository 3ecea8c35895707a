import unittest

from sefimap.data.provider import DataProvider
from sefimap.dortoirs.schemas import DortoirCreate, DortoirUpdate
from sefimap.dortoirs.services import (
    DortoirCompletError,
    DortoirExisteError,
    DortoirNotFoundError,
    DortoirOccupeError,
    DortoirService,
)
from tests.helpers import BaseDeTest, dortoir, inscription


class DortoirServiceTestCase(unittest.IsolatedAsyncioTestCase):
    """Capacité et configuration des dortoirs"""

    async def asyncSetUp(self):
        self.base = await BaseDeTest().creer()
        self.petit = dortoir(nom="Al Amine", capacite=2)
        self.grand = dortoir(nom="Zamzam", capacite=10)
        await self.base.ajouter(self.petit, self.grand)
        await self.base.ajouter(
            inscription(dortoir_id=self.petit.id, statut="valide"),
            inscription(nom="Sawadogo", dortoir_id=self.grand.id),
            inscription(nom="Rejetee", dortoir_id=self.petit.id, statut="rejete"),
        )
        self.provider = DataProvider(session_factory=self.base.session_factory)
        await self.provider.load_all()
        self.session = self.base.session_factory()
        self.service = DortoirService(self.session, self.provider)

    async def asyncTearDown(self):
        await self.session.close()
        await self.base.fermer()

    async def test_statistiques(self):
        stats = {s.nom: s for s in await self.service.statistiques()}

        self.assertEqual(stats["Al Amine"].nombre_inscrits, 1)
        self.assertEqual(stats["Al Amine"].places_disponibles, 1)
        self.assertEqual(stats["Al Amine"].taux_remplissage, 50)
        self.assertFalse(stats["Al Amine"].est_complet)

    async def test_resume(self):
        resume = await self.service.resume()
        self.assertEqual(resume.capacite_totale, 12)
        self.assertEqual(resume.total_inscrits, 2)
        self.assertEqual(resume.taux_remplissage_global, 16.7)

    async def test_capacite(self):
        await self.service.verifier_capacite(self.petit.id)
        await self.base.ajouter(inscription(nom="Tall", dortoir_id=self.petit.id))

        with self.assertRaises(DortoirCompletError) as ctx:
            await self.service.verifier_capacite(self.petit.id)
        self.assertIn("Al Amine", str(ctx.exception))

        # L'occupant actuel peut toujours être réaffecté à son dortoir
        dortoir_ok = await self.service.verifier_capacite(self.petit.id, self.petit.id)
        self.assertEqual(dortoir_ok.id, self.petit.id)

    async def test_dortoir_inconnu(self):
        with self.assertRaises(DortoirNotFoundError):
            await self.service.verifier_capacite("inconnu")

    async def test_creation_et_modification(self):
        cree = await self.service.creer(DortoirCreate(nom="  Baraka ", capacite=4))
        self.assertEqual(cree.nom, "Baraka")
        self.assertEqual([d["nom"] for d in self.provider.collections["dortoirs"]], ["Al Amine", "Baraka", "Zamzam"])

        modifie = await self.service.modifier(cree.id, DortoirUpdate(capacite=6))
        self.assertEqual(modifie.capacite, 6)
        self.assertEqual(self.provider.collections["dortoirs"][1]["capacite"], 6)

    async def test_nom_en_double(self):
        with self.assertRaises(DortoirExisteError):
            await self.service.creer(DortoirCreate(nom="Zamzam", capacite=3))

    async def test_suppression(self):
        with self.assertRaises(DortoirOccupeError):
            await self.service.supprimer(self.grand.id)

        vide = await self.base.ajouter(dortoir(nom="Vide", capacite=3))
        await self.service.supprimer(vide.id)
        with self.assertRaises(DortoirNotFoundError):
            await self.service.get_dortoir(vide.id)
