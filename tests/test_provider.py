import asyncio
import unittest
from unittest.mock import patch

from sefimap.data.provider import COLLECTIONS, DataProvider, SyncState
from tests.helpers import BaseDeTest, chef, dortoir, inscription
from sefimap.paiements.models import Paiement
from sefimap.scientifique.models import Classe, NoteExamen


class DataProviderTestCase(unittest.IsolatedAsyncioTestCase):
    """Cache des collections : chargement, synchronisation et sessions"""

    async def asyncSetUp(self):
        self.base = await BaseDeTest().creer()
        self.chef = chef()
        self.dortoir = dortoir()
        await self.base.ajouter(self.chef, self.dortoir)
        self.inscription = await self.base.ajouter(
            inscription(chef_quartier_id=self.chef.id, montant_total_paye=1000, statut_paiement="partiel")
        )
        await self.base.ajouter(
            Paiement(inscription_id=self.inscription.id, montant=1000, mode_paiement="especes", statut="validé")
        )
        self.provider = DataProvider(session_factory=self.base.session_factory, poll_interval=3600, load_timeout=5)

    async def asyncTearDown(self):
        await self.provider.close()
        await self.base.fermer()

    async def test_chargement_complet(self):
        self.assertTrue(await self.provider.load_all())

        self.assertEqual(len(self.provider.collections["inscriptions"]), 1)
        self.assertEqual(len(self.provider.collections["paiements"]), 1)
        self.assertEqual(self.provider.collections["dortoirs"][0]["nom"], "Dortoir A")
        record = self.provider.collections["inscriptions"][0]
        self.assertEqual(record["chef_quartier"]["nom_complet"], "Ousmane Sawadogo")
        self.assertEqual(self.provider.stats["totalCollecte"], 1000)
        self.assertTrue(self.provider.initial_loaded)
        self.assertIsNotNone(self.provider.last_update)
        self.assertIsNone(self.provider.error)
        self.assertFalse(self.provider.loading)

    async def test_appel_pendant_chargement_ignore(self):
        """Un second load_all pendant un chargement en cours ne fait rien"""
        liberer = asyncio.Event()
        appels = []

        async def fetch_lent(nom):
            appels.append(nom)
            await liberer.wait()
            return []

        self.provider._fetch = fetch_lent
        premier = asyncio.create_task(self.provider.load_all())
        await asyncio.sleep(0)

        self.assertTrue(self.provider.is_loading)
        self.assertFalse(await self.provider.load_all())

        liberer.set()
        self.assertTrue(await premier)
        self.assertEqual(len(appels), len(COLLECTIONS))
        self.assertFalse(self.provider.is_loading)

    async def test_echec_d_une_collection(self):
        """Une requête en échec donne une collection vide et un message d'erreur"""
        fetch_original = self.provider._fetch

        async def fetch(nom):
            if nom == "paiements":
                raise RuntimeError("connexion perdue")
            return await fetch_original(nom)

        self.provider._fetch = fetch
        self.assertTrue(await self.provider.load_all())

        self.assertEqual(self.provider.collections["paiements"], [])
        self.assertEqual(len(self.provider.collections["inscriptions"]), 1)
        self.assertIn("paiements", self.provider.error)

    async def test_delai_depasse_conserve_les_donnees(self):
        await self.provider.load_all()
        precedentes = list(self.provider.collections["inscriptions"])

        async def fetch_bloque(nom):
            await asyncio.sleep(5)
            return []

        self.provider._fetch = fetch_bloque
        self.provider.load_timeout = 0.05
        self.assertFalse(await self.provider.load_all())

        self.assertEqual(self.provider.collections["inscriptions"], precedentes)
        self.assertIn("trop de temps", self.provider.error)
        self.assertFalse(self.provider.loading)

    async def test_ecriture_locale_divergente_detectee(self):
        """Une modification locale contredite par le serveur devient un conflit"""
        await self.provider.load_all()
        self.provider.update_inscription_local(self.inscription.id, {"statut": "valide"})
        self.assertEqual(self.provider.sync_state("inscriptions", self.inscription.id), SyncState.PENDING_WRITE)
        self.assertEqual(self.provider.stats["inscriptionsValidees"], 1)

        await self.provider.load_all(silent=True)

        self.assertEqual(self.provider.sync_state("inscriptions", self.inscription.id), SyncState.CONFLICT)
        self.assertEqual(len(self.provider.conflicts), 1)
        self.assertEqual(self.provider.conflicts[0]["attendu"], {"statut": "valide"})
        # Les données du serveur l'emportent
        self.assertEqual(self.provider.collections["inscriptions"][0]["statut"], "en_attente")
        self.assertEqual(self.provider.stats["inscriptionsValidees"], 0)

        conflits = self.provider.acquitter_conflits()
        self.assertEqual(len(conflits), 1)
        self.assertEqual(self.provider.conflicts, [])
        self.assertEqual(self.provider.sync_state("inscriptions", self.inscription.id), SyncState.SYNCED)

    async def test_ecriture_pendant_un_chargement(self):
        """Une écriture faite pendant un chargement en cours attend le suivant"""
        await self.provider.load_all()
        fetch_original = self.provider._fetch
        en_cours = asyncio.Event()
        liberer = asyncio.Event()

        async def fetch(nom):
            resultat = await fetch_original(nom)
            if nom == "inscriptions":
                en_cours.set()
                await liberer.wait()
            return resultat

        self.provider._fetch = fetch
        chargement = asyncio.create_task(self.provider.load_all(silent=True))
        await en_cours.wait()
        self.provider.update_inscription_local(self.inscription.id, {"statut": "valide"})
        liberer.set()
        self.assertTrue(await chargement)

        self.assertEqual(self.provider.conflicts, [])
        self.assertEqual(self.provider.sync_state("inscriptions", self.inscription.id), SyncState.PENDING_WRITE)
        self.assertEqual(self.provider.collections["inscriptions"][0]["statut"], "valide")
        self.assertEqual(self.provider.stats["inscriptionsValidees"], 1)

    async def test_ecriture_locale_confirmee(self):
        await self.provider.load_all()
        self.provider.update_inscription_local(self.inscription.id, {"statut_paiement": "partiel"})

        await self.provider.load_all(silent=True)

        self.assertEqual(self.provider.sync_state("inscriptions", self.inscription.id), SyncState.SYNCED)
        self.assertEqual(self.provider.conflicts, [])

    async def test_suppression_locale_non_confirmee(self):
        await self.provider.load_all()
        self.provider.delete_dortoir_local(self.dortoir.id)
        self.assertEqual(self.provider.collections["dortoirs"], [])

        await self.provider.load_all(silent=True)

        self.assertEqual(self.provider.sync_state("dortoirs", self.dortoir.id), SyncState.CONFLICT)
        self.assertEqual(len(self.provider.collections["dortoirs"]), 1)

    async def test_collection_en_echec_ne_cree_pas_de_conflit(self):
        await self.provider.load_all()
        self.provider.update_inscription_local(self.inscription.id, {"statut": "valide"})

        async def fetch(nom):
            raise RuntimeError("indisponible")

        self.provider._fetch = fetch
        await self.provider.load_all(silent=True)

        self.assertEqual(self.provider.sync_state("inscriptions", self.inscription.id), SyncState.PENDING_WRITE)
        self.assertEqual(self.provider.conflicts, [])


class MutateursLocauxTestCase(unittest.TestCase):
    """Mutateurs du cache, sans accès à la base"""

    def setUp(self):
        self.provider = DataProvider(session_factory=lambda: None)

    def test_ajout_sans_doublon(self):
        self.provider.add_inscription_local({"id": "i1", "statut": "en_attente", "nom": "A"})
        self.provider.add_inscription_local({"id": "i1", "statut": "valide", "nom": "A"})

        self.assertEqual(len(self.provider.collections["inscriptions"]), 1)
        self.assertEqual(self.provider.collections["inscriptions"][0]["statut"], "valide")

    def test_ajout_en_tete(self):
        self.provider.add_inscription_local({"id": "i1"})
        self.provider.add_inscription_local({"id": "i2"})
        self.assertEqual([i["id"] for i in self.provider.collections["inscriptions"]], ["i2", "i1"])

    def test_mise_a_jour_absente(self):
        self.assertIsNone(self.provider.update_paiement_local("inconnu", {"statut": "validé"}))
        self.assertEqual(self.provider.sync_state("paiements", "inconnu"), SyncState.SYNCED)

    def test_suppression_inscription_en_cascade(self):
        self.provider.add_inscription_local({"id": "i1", "statut": "valide"})
        self.provider.add_paiement_local({"id": "p1", "inscription_id": "i1", "statut": "validé"})
        self.provider.add_paiement_local({"id": "p2", "inscription_id": "i2", "statut": "validé"})
        self.provider.add_note_local({"id": "n1", "inscription_id": "i1"})

        self.assertTrue(self.provider.delete_inscription_local("i1"))

        self.assertEqual(self.provider.collections["inscriptions"], [])
        self.assertEqual([p["id"] for p in self.provider.collections["paiements"]], ["p2"])
        self.assertEqual(self.provider.collections["notes_examens"], [])
        self.assertEqual(self.provider.stats["paiementsValides"], 1)

    def test_classes_triees(self):
        self.provider.add_classe_local({"id": "c2", "niveau": "niveau_2", "numero": 1})
        self.provider.add_classe_local({"id": "c3", "niveau": "niveau_1", "numero": 2})
        self.provider.add_classe_local({"id": "c1", "niveau": "niveau_1", "numero": 1})

        self.assertEqual([c["id"] for c in self.provider.collections["classes"]], ["c1", "c3", "c2"])
        self.assertEqual(self.provider.stats_scientifique["totalClasses"], 3)

    def test_dortoirs_tries_par_nom(self):
        self.provider.add_dortoir_local({"id": "d2", "nom": "Zamzam"})
        self.provider.add_dortoir_local({"id": "d1", "nom": "Al Amine"})
        self.assertEqual([d["nom"] for d in self.provider.collections["dortoirs"]], ["Al Amine", "Zamzam"])

    def test_snapshot(self):
        self.provider.add_inscription_local({"id": "i1", "statut": "valide", "sexe": "homme"})
        snapshot = self.provider.snapshot()
        self.assertEqual(set(COLLECTIONS) - set(snapshot), set())
        self.assertEqual(snapshot["stats"]["hommes"], 1)
        self.assertIn("statsScientifique", snapshot)


class SessionsTestCase(unittest.IsolatedAsyncioTestCase):
    """Première connexion : chargement et polling ; dernière déconnexion : nettoyage"""

    async def asyncSetUp(self):
        self.base = await BaseDeTest().creer()
        classe = Classe(nom="Niveau 1 - Classe 1", niveau="niveau_1", numero=1, capacite=10)
        await self.base.ajouter(classe)
        inscrit = await self.base.ajouter(inscription(statut="valide"))
        await self.base.ajouter(NoteExamen(inscription_id=inscrit.id, classe_id=classe.id, note_entree=4,
                                           niveau_attribue="niveau_1"))
        self.provider = DataProvider(session_factory=self.base.session_factory, poll_interval=0.02, load_timeout=5)

    async def asyncTearDown(self):
        await self.provider.close()
        await self.base.fermer()

    async def test_cycle_de_vie(self):
        with patch.object(self.provider, "load_all", wraps=self.provider.load_all) as load_all:
            await self.provider.ouvrir_session("u1")
            self.assertTrue(self.provider.polling)
            self.assertEqual(self.provider.stats_scientifique["parNiveau"]["niveau_1"], 1)

            await self.provider.ouvrir_session("u2")
            self.assertEqual(self.provider.sessions_actives, 2)

            await asyncio.sleep(0.1)
            self.assertGreaterEqual(load_all.await_count, 2)
            load_all.assert_any_await(silent=True)

        await self.provider.fermer_session("u1")
        self.assertTrue(self.provider.polling)
        self.assertEqual(len(self.provider.collections["classes"]), 1)

        await self.provider.fermer_session("u2")
        self.assertFalse(self.provider.polling)
        self.assertEqual(self.provider.collections["classes"], [])
        self.assertFalse(self.provider.initial_loaded)

    async def test_meme_compte_sur_deux_postes(self):
        await self.provider.ouvrir_session("session-poste-1", "u1")
        await self.provider.ouvrir_session("session-poste-2", "u1")
        self.assertEqual(self.provider.sessions_actives, 2)

        await self.provider.fermer_session("session-poste-1", "u1")
        self.assertTrue(self.provider.polling)
        self.assertTrue(self.provider.initial_loaded)
        self.assertEqual(len(self.provider.collections["classes"]), 1)
