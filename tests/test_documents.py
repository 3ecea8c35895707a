import io
import shutil
import tempfile
import unittest
from datetime import date, datetime, timezone

import openpyxl
from reportlab.lib import colors

from sefimap.documents.badges import (
    generer_badge_pdf,
    generer_badges_pdf,
    initiales,
    nom_fichier_badge,
    nom_fichier_badges,
    render_badge_image,
)
from sefimap.documents.bulletins import (
    couleur_niveau,
    generer_bulletin_pdf,
    generer_bulletins_pdf,
    nom_fichier_bulletin,
    nom_fichier_bulletins,
)
from sefimap.documents.services import AucunDocumentError, DocumentService
from sefimap.inscriptions.services import InscriptionNotFoundError
from sefimap.scientifique.models import Classe, NoteExamen
from sefimap.utils.exports import exporter_inscriptions_xlsx, exporter_paiements_xlsx
from sefimap.utils.storage import PhotoBucket
from tests.helpers import BaseDeTest, dortoir, inscription, photo_png

PARTICIPANT = {
    "id": "i1",
    "reference_id": "SEF-0001",
    "nom": "Ouedraogo",
    "prenom": "Aminata",
    "niveau_formation": "debutant",
    "dortoir": {"id": "d1", "nom": "Al Amine"},
}

NOTE = {
    "id": "n1",
    "note_entree": 12,
    "note_cahiers": 14,
    "note_conduite": 14,
    "note_sortie": 16,
    "moyenne": 14,
    "niveau_attribue": "niveau_3",
    "inscription": {"nom": "Ouedraogo", "prenom": "Aminata"},
    "classe": {"nom": "Niveau 3 - Classe 1"},
}


class BadgeTestCase(unittest.TestCase):
    """Rendu des badges A6"""

    def test_dimensions(self):
        image = render_badge_image(PARTICIPANT)
        self.assertEqual(image.size, (840, 1184))

    def test_initiales(self):
        self.assertEqual(initiales(PARTICIPANT), "AO")
        self.assertEqual(initiales({}), "?")

    def test_photo_integree(self):
        image = render_badge_image(PARTICIPANT, photo_png("blue"))
        pixel = image.getpixel((image.size[0] // 2, 300))
        self.assertEqual(pixel, (0, 0, 255))

    def test_photo_illisible_remplacee(self):
        image = render_badge_image(PARTICIPANT, b"pas une image")
        self.assertEqual(image.size, (840, 1184))

    def test_pdf(self):
        self.assertTrue(generer_badge_pdf(PARTICIPANT).startswith(b"%PDF"))
        contenu = generer_badges_pdf([(PARTICIPANT, None), (dict(PARTICIPANT, nom="Sawadogo"), photo_png())])
        self.assertTrue(contenu.startswith(b"%PDF"))

    def test_noms_de_fichiers(self):
        self.assertEqual(nom_fichier_badge(PARTICIPANT), "badge_SEF-0001_Ouedraogo_Aminata.pdf")
        self.assertEqual(nom_fichier_badges(date(2026, 8, 1)), "badges_sefimap_2026-08-01.pdf")


class BulletinTestCase(unittest.TestCase):
    """Bulletins de notes A4"""

    def test_couleur_par_niveau(self):
        self.assertEqual(couleur_niveau("niveau_1").rgb(), colors.Color(239 / 255, 68 / 255, 68 / 255).rgb())
        self.assertEqual(couleur_niveau(None).rgb(), colors.Color(59 / 255, 130 / 255, 246 / 255).rgb())

    def test_pdf(self):
        self.assertTrue(generer_bulletin_pdf(NOTE, 1, 12).startswith(b"%PDF"))
        incomplete = dict(NOTE, note_sortie=None, moyenne=None)
        self.assertTrue(generer_bulletins_pdf([(NOTE, 1, 2), (incomplete, None, 2)]).startswith(b"%PDF"))

    def test_noms_de_fichiers(self):
        self.assertEqual(nom_fichier_bulletin(NOTE), "bulletin_Ouedraogo_Aminata.pdf")
        self.assertEqual(nom_fichier_bulletins("Niveau 3 - Classe 1", date(2026, 8, 1)),
                         "bulletins_Niveau_3_-_Classe_1_2026-08-01.pdf")
        self.assertEqual(nom_fichier_bulletins(jour=date(2026, 8, 1)), "bulletins_sefimap_2026-08-01.pdf")


class ExportTestCase(unittest.TestCase):
    """Exports Excel"""

    def test_export_inscriptions(self):
        contenu = exporter_inscriptions_xlsx([dict(PARTICIPANT, montant_total_paye=2000,
                                                   created_at="2026-07-01T10:00:00Z")])
        self.assertTrue(contenu.startswith(b"PK"))

        ws = openpyxl.load_workbook(io.BytesIO(contenu)).active
        self.assertEqual(ws.title, "Inscriptions")
        self.assertEqual(ws.cell(1, 1).value, "Référence")
        self.assertEqual(ws.cell(2, 2).value, "Ouedraogo")
        self.assertEqual(ws.cell(2, 12).value, "Al Amine")
        self.assertEqual(ws.cell(2, 16).value, "01/07/2026")

    def test_export_paiements(self):
        contenu = exporter_paiements_xlsx([{
            "montant": 1500, "mode_paiement": "especes", "statut": "validé",
            "inscription": {"nom": "Kabore", "prenom": "Issouf"},
        }])
        ws = openpyxl.load_workbook(io.BytesIO(contenu)).active
        self.assertEqual(ws.cell(2, 3).value, "Kabore Issouf")
        self.assertEqual(ws.cell(2, 4).value, 1500)


class DocumentServiceTestCase(unittest.IsolatedAsyncioTestCase):
    """Préparation des données des badges et bulletins"""

    async def asyncSetUp(self):
        self.base = await BaseDeTest().creer()
        self.dossier = tempfile.mkdtemp(prefix="sefimap-photos-")
        self.bucket = PhotoBucket(base_dir=self.dossier, bucket="photos", public_base_url="")
        url = await self.bucket.upload_photo(photo_png(), "photo.png")

        d = await self.base.ajouter(dortoir(nom="Al Amine"))
        self.valide = await self.base.ajouter(
            inscription(nom="Zongo", statut="valide", dortoir_id=d.id, photo_url=url))
        self.autre = await self.base.ajouter(inscription(nom="Bambara", statut="valide"))
        self.attente = await self.base.ajouter(inscription(nom="Attente"))

        classe = await self.base.ajouter(Classe(nom="Niveau 2 - Classe 1", niveau="niveau_2", numero=1, capacite=10))
        self.classe = classe
        self.bonne = await self.base.ajouter(NoteExamen(
            inscription_id=self.valide.id, classe_id=classe.id, niveau_attribue="niveau_2",
            note_entree=8, note_cahiers=16, note_conduite=16, note_sortie=16))
        self.moins_bonne = await self.base.ajouter(NoteExamen(
            inscription_id=self.autre.id, classe_id=classe.id, niveau_attribue="niveau_2",
            note_entree=7, note_cahiers=10, note_conduite=10, note_sortie=9))

        self.session = self.base.session_factory()
        self.service = DocumentService(self.session, self.bucket)

    async def asyncTearDown(self):
        await self.session.close()
        await self.base.fermer()
        shutil.rmtree(self.dossier, ignore_errors=True)

    async def test_badge_avec_photo(self):
        record, photo = await self.service.badge(self.valide.id)
        self.assertEqual(record["dortoir"]["nom"], "Al Amine")
        self.assertEqual(photo, photo_png())

    async def test_badge_inconnu(self):
        with self.assertRaises(InscriptionNotFoundError):
            await self.service.badge("inconnue")

    async def test_badges_valides_par_defaut(self):
        badges = await self.service.badges()
        self.assertEqual([record["nom"] for record, _ in badges], ["Bambara", "Zongo"])

        badges = await self.service.badges([self.attente.id])
        self.assertEqual(badges[0][0]["nom"], "Attente")
        self.assertIsNone(badges[0][1])

    async def test_bulletin_rang(self):
        record, rang, effectif = await self.service.bulletin(self.moins_bonne.id)
        self.assertEqual(rang, 2)
        self.assertEqual(effectif, 2)
        self.assertEqual(record["moyenne"], 9)

    async def test_bulletins_de_classe(self):
        bulletins, classe_nom = await self.service.bulletins(self.classe.id)
        self.assertEqual(classe_nom, "Niveau 2 - Classe 1")
        self.assertEqual([rang for _, rang, _ in bulletins], [1, 2])

    async def test_egalite_departagee_par_anciennete(self):
        classe = await self.base.ajouter(Classe(nom="Niveau 1 - Classe 1", niveau="niveau_1", numero=1))
        notes = {"note_entree": 10, "note_cahiers": 12, "note_conduite": 12, "note_sortie": 10}
        # insérée en premier mais saisie plus tard
        tardive = await self.base.ajouter(NoteExamen(
            inscription_id=self.autre.id, classe_id=classe.id,
            created_at=datetime(2026, 7, 2, tzinfo=timezone.utc), **notes))
        premiere = await self.base.ajouter(NoteExamen(
            inscription_id=self.attente.id, classe_id=classe.id,
            created_at=datetime(2026, 7, 1, tzinfo=timezone.utc), **notes))

        _, rang, _ = await self.service.bulletin(premiere.id)
        self.assertEqual(rang, 1)
        _, rang, _ = await self.service.bulletin(tardive.id)
        self.assertEqual(rang, 2)

        bulletins, _ = await self.service.bulletins(classe.id)
        self.assertEqual([(b["id"], rang) for b, rang, _ in bulletins], [(premiere.id, 1), (tardive.id, 2)])

    async def test_aucun_bulletin(self):
        await self.base.ajouter(NoteExamen(inscription_id=self.attente.id, note_entree=3))
        with self.assertRaises(AucunDocumentError):
            await self.service.bulletins("classe-vide")
