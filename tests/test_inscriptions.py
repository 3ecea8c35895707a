import tempfile
import unittest

from pydantic import ValidationError
from sqlalchemy import select

from sefimap.data.provider import DataProvider
from sefimap.dortoirs.services import DortoirCompletError
from sefimap.inscriptions.models import Inscription
from sefimap.inscriptions.schemas import (
    AttributionDortoir,
    InscriptionFilters,
    InscriptionPresentielle,
    InscriptionPublique,
    InscriptionUpdate,
)
from sefimap.inscriptions.services import (
    ChefQuartierNotFoundError,
    DortoirRequisError,
    InscriptionService,
    PhotoRequiseError,
    TransitionInvalideError,
    valider_etape,
)
from sefimap.paiements.models import Paiement
from sefimap.utils.storage import PhotoBucket
from tests.helpers import BaseDeTest, admin, chef, dortoir, formulaire, inscription, photo_png


class ValidationEtapesTestCase(unittest.TestCase):
    """Formulaire multi-étapes : chaque étape ne remonte que ses propres champs"""

    def test_etape_photo(self):
        self.assertFalse(valider_etape(1, {}, photo_presente=False).valide)
        self.assertTrue(valider_etape(1, {}, photo_presente=True).valide)

    def test_etape_identite_incomplete(self):
        resultat = valider_etape(2, {"nom": "K", "sexe": "homme"}, photo_presente=True)

        self.assertFalse(resultat.valide)
        self.assertEqual(resultat.erreurs["nom"], "Le nom doit contenir au moins 2 caractères")
        self.assertEqual(resultat.erreurs["prenom"], "Ce champ est obligatoire")
        self.assertNotIn("numero_parent", resultat.erreurs)

    def test_etape_identite_valide_malgre_contact_manquant(self):
        donnees = {"nom": "Kabore", "prenom": "Issouf", "age": 16, "sexe": "homme", "niveau_etude": "primaire"}
        self.assertTrue(valider_etape(2, donnees, photo_presente=True).valide)

    def test_etape_contact(self):
        donnees = formulaire(numero_urgence="12")
        resultat = valider_etape(3, donnees, photo_presente=True)

        self.assertFalse(resultat.valide)
        self.assertEqual(resultat.erreurs["numero_urgence"], "Le numéro d'urgence est obligatoire")
        self.assertIn("chef_quartier_id", resultat.erreurs)

    def test_etape_paiement_montant_trop_eleve(self):
        resultat = valider_etape(4, formulaire(montant_paye=5000), photo_presente=True)
        self.assertFalse(resultat.valide)
        self.assertIn("montant_paye", resultat.erreurs)

    def test_etape_inconnue(self):
        self.assertFalse(valider_etape(7, {}, photo_presente=True).valide)


class InscriptionServiceTestCase(unittest.IsolatedAsyncioTestCase):
    """Validation, modification et création des inscriptions"""

    async def asyncSetUp(self):
        self.base = await BaseDeTest().creer()
        self.user = admin("secretaire")
        self.chef = chef()
        self.dortoir = dortoir(capacite=1)
        self.autre_dortoir = dortoir(nom="Dortoir B", capacite=5)
        await self.base.ajouter(self.chef, self.dortoir, self.autre_dortoir, self.user)

        self.provider = DataProvider(session_factory=self.base.session_factory)
        self.bucket = PhotoBucket(base_dir=tempfile.mkdtemp(prefix="sefimap-photos-"), bucket="photos")
        self.session = self.base.session_factory()
        self.service = InscriptionService(self.session, self.provider)
        await self.provider.load_all()

    async def asyncTearDown(self):
        await self.session.close()
        await self.provider.close()
        await self.base.fermer()

    async def _nombre_paiements(self, inscription_id):
        async with self.base.session_factory() as session:
            result = await session.execute(select(Paiement).where(Paiement.inscription_id == inscription_id))
            return len(result.scalars().all())

    # ───────────────────────────────
    # Validation
    # ───────────────────────────────
    async def test_validation_en_ligne_sans_dortoir_refusee(self):
        en_ligne = await self.base.ajouter(inscription())

        with self.assertRaises(DortoirRequisError) as ctx:
            await self.service.valider(en_ligne.id, self.user)
        self.assertIn("dortoir", str(ctx.exception))

        inchangee = await self.service.obtenir(en_ligne.id)
        self.assertEqual(inchangee.statut, "en_attente")

    async def test_validation_presentielle_sans_dortoir(self):
        presentielle = await self.base.ajouter(inscription(type_inscription="presentielle"))

        validee = await self.service.valider(presentielle.id, self.user)

        self.assertEqual(validee.statut, "valide")
        self.assertEqual(validee.valide_par_secretariat, self.user.id)
        self.assertIsNotNone(validee.date_validation_secretariat)

    async def test_validation_met_a_jour_le_cache(self):
        en_ligne = await self.base.ajouter(inscription(dortoir_id=self.autre_dortoir.id))
        await self.provider.load_all()

        await self.service.valider(en_ligne.id, self.user)

        record = self.provider.collections["inscriptions"][0]
        self.assertEqual(record["statut"], "valide")
        self.assertEqual(self.provider.stats["inscriptionsValidees"], 1)

    async def test_validation_deja_validee(self):
        validee = await self.base.ajouter(inscription(statut="valide", dortoir_id=self.autre_dortoir.id))
        with self.assertRaises(TransitionInvalideError):
            await self.service.valider(validee.id, self.user)

    async def test_validation_groupee(self):
        avec_dortoir = await self.base.ajouter(inscription(dortoir_id=self.autre_dortoir.id))
        sans_dortoir = await self.base.ajouter(inscription(nom="Sana"))

        resultat = await self.service.valider_selection([avec_dortoir.id, sans_dortoir.id, "inconnue"], self.user)

        self.assertEqual(resultat.validees, [avec_dortoir.id])
        self.assertEqual(set(resultat.refusees), {sans_dortoir.id, "inconnue"})

    async def test_rejet(self):
        en_attente = await self.base.ajouter(inscription())
        rejetee = await self.service.rejeter(en_attente.id, self.user)
        self.assertEqual(rejetee.statut, "rejete")

    # ───────────────────────────────
    # Modification
    # ───────────────────────────────
    async def test_modification_puis_validation(self):
        """Attribuer un dortoir en édition débloque la validation"""
        en_ligne = await self.base.ajouter(inscription())

        modifiee = await self.service.modifier(
            en_ligne.id, InscriptionUpdate(dortoir_id=self.dortoir.id, niveau_formation="normal"), self.user
        )
        self.assertEqual(modifiee.dortoir.nom, "Dortoir A")
        self.assertEqual(modifiee.niveau_formation, "normal")

        validee = await self.service.valider(en_ligne.id, self.user)
        self.assertEqual(validee.statut, "valide")

    async def test_modification_statut_sans_controle(self):
        """Le mode édition peut forcer le statut"""
        en_ligne = await self.base.ajouter(inscription())
        modifiee = await self.service.modifier(en_ligne.id, InscriptionUpdate(statut="valide"), self.user)
        self.assertEqual(modifiee.statut, "valide")
        self.assertIsNone(modifiee.dortoir_id)

    async def test_modification_sans_champs_de_paiement(self):
        """Montant, statut de paiement et type ne se modifient pas en édition"""
        for champs in ({"montant_total_paye": 4000}, {"statut_paiement": "soldé"},
                       {"type_inscription": "presentielle"}):
            with self.assertRaises(ValidationError):
                InscriptionUpdate(**champs)

        en_ligne = await self.base.ajouter(inscription())
        modifiee = await self.service.modifier(en_ligne.id, InscriptionUpdate(nom="Kafando"), self.user)
        self.assertEqual(modifiee.montant_total_paye, 0)
        self.assertEqual(modifiee.statut_paiement, "non_payé")

    async def test_dortoir_complet(self):
        await self.base.ajouter(inscription(dortoir_id=self.dortoir.id, statut="valide"))
        nouvelle = await self.base.ajouter(inscription(nom="Traore"))

        with self.assertRaises(DortoirCompletError):
            await self.service.attribuer_dortoir(nouvelle.id, AttributionDortoir(dortoir_id=self.dortoir.id), self.user)

    async def test_reattribution_du_meme_dortoir_acceptee(self):
        """Un dortoir plein accepte toujours son propre occupant"""
        occupant = await self.base.ajouter(inscription(dortoir_id=self.dortoir.id))

        modifiee = await self.service.modifier(
            occupant.id, InscriptionUpdate(dortoir_id=self.dortoir.id, nom="Ouedraogo"), self.user
        )
        self.assertEqual(modifiee.dortoir_id, self.dortoir.id)

        attribuee = await self.service.attribuer_dortoir(
            occupant.id, AttributionDortoir(dortoir_id=self.dortoir.id, niveau_formation="debutant"), self.user
        )
        self.assertEqual(attribuee.niveau_formation, "debutant")

    async def test_filtres(self):
        await self.base.ajouter(inscription(nom="Zongo", sexe="homme", reference_id="SEF-001"))
        await self.base.ajouter(inscription(nom="Compaore", statut="valide", type_inscription="presentielle"))

        self.assertEqual(len(await self.service.lister()), 2)
        self.assertEqual(len(await self.service.lister(InscriptionFilters(search="zon"))), 1)
        self.assertEqual(len(await self.service.lister(InscriptionFilters(search="sef-001"))), 1)
        self.assertEqual(len(await self.service.lister(InscriptionFilters(statut="valide"))), 1)
        self.assertEqual(len(await self.service.lister(InscriptionFilters(sexe="homme"))), 1)
        self.assertEqual(len(await self.service.lister(InscriptionFilters(type_inscription="en_ligne"))), 1)

    # ───────────────────────────────
    # Création
    # ───────────────────────────────
    async def test_inscription_publique_sans_paiement(self):
        data = InscriptionPublique(**formulaire(chef_quartier_id=self.chef.id))

        creee = await self.service.inscrire_en_ligne(
            data, self.chef.id, photo_png(), "photo.png", self.bucket
        )

        self.assertEqual(creee.statut, "en_attente")
        self.assertEqual(creee.type_inscription, "en_ligne")
        self.assertEqual(creee.statut_paiement, "non_payé")
        self.assertEqual(creee.montant_total_paye, 0)
        self.assertEqual(creee.created_by, "public")
        self.assertTrue(creee.photo_url.startswith("/static/upload/photos/public_"))
        self.assertEqual(await self._nombre_paiements(creee.id), 0)
        self.assertEqual(self.provider.collections["inscriptions"][0]["id"], creee.id)

    async def test_inscription_publique_avec_paiement_partiel(self):
        data = InscriptionPublique(**formulaire(chef_quartier_id=self.chef.id, montant_paye=2500,
                                                mode_paiement="mobile_money"))

        creee = await self.service.inscrire_en_ligne(
            data, self.chef.id, photo_png(), "photo.jpg", self.bucket, created_by="president"
        )

        self.assertEqual(creee.statut_paiement, "partiel")
        self.assertEqual(creee.montant_total_paye, 2500)
        self.assertEqual(await self._nombre_paiements(creee.id), 1)
        paiement = self.provider.collections["paiements"][0]
        self.assertEqual(paiement["statut"], "validé")
        self.assertEqual(paiement["mode_paiement"], "mobile_money")

    async def test_inscription_sans_photo_refusee(self):
        data = InscriptionPublique(**formulaire(chef_quartier_id=self.chef.id))
        with self.assertRaises(PhotoRequiseError):
            await self.service.inscrire_en_ligne(data, self.chef.id, None, None, self.bucket)

    async def test_inscription_chef_inconnu(self):
        data = InscriptionPublique(**formulaire(chef_quartier_id="inconnu"))
        with self.assertRaises(ChefQuartierNotFoundError):
            await self.service.inscrire_en_ligne(data, "inconnu", photo_png(), "photo.png", self.bucket)
        self.assertEqual(list(self.bucket.directory.glob("*")) if self.bucket.directory.exists() else [], [])

    async def test_inscription_presentielle(self):
        data = InscriptionPresentielle(**formulaire(dortoir_id=self.autre_dortoir.id, montant_paye=4000))

        creee = await self.service.inscrire_presentielle(data, photo_png(), "photo.png", self.bucket, self.user)

        self.assertEqual(creee.statut, "valide")
        self.assertEqual(creee.type_inscription, "presentielle")
        self.assertEqual(creee.statut_paiement, "valide_financier")
        self.assertEqual(creee.admin_id, self.user.id)
        self.assertEqual(creee.dortoir.nom, "Dortoir B")
        paiement = self.provider.collections["paiements"][0]
        self.assertEqual(paiement["statut"], "attente")
        self.assertEqual(paiement["mode_paiement"], "especes")

        recentes = await self.service.recentes_presentielles(self.user.id)
        self.assertEqual([i.id for i in recentes], [creee.id])

    async def test_inscription_presentielle_dortoir_complet(self):
        await self.base.ajouter(inscription(dortoir_id=self.dortoir.id))
        data = InscriptionPresentielle(**formulaire(dortoir_id=self.dortoir.id))

        with self.assertRaises(DortoirCompletError):
            await self.service.inscrire_presentielle(data, photo_png(), "photo.png", self.bucket, self.user)

    async def test_suppression(self):
        data = InscriptionPublique(**formulaire(chef_quartier_id=self.chef.id, montant_paye=1000))
        creee = await self.service.inscrire_en_ligne(data, self.chef.id, photo_png(), "photo.png", self.bucket)
        fichier = self.bucket.directory / self.bucket.filename_from_url(creee.photo_url)
        self.assertTrue(fichier.exists())

        await self.service.supprimer(creee.id, self.bucket)

        self.assertFalse(fichier.exists())
        async with self.base.session_factory() as session:
            self.assertIsNone(await session.get(Inscription, creee.id))
        self.assertEqual(self.provider.collections["inscriptions"], [])
        self.assertEqual(self.provider.collections["paiements"], [])
