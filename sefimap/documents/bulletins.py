# Bulletins de notes A4 dessinés directement sur le canvas reportlab
import io
import logging
from datetime import date
from typing import Iterable, Optional, Tuple

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas

from sefimap.scientifique.models import NIVEAU_LABELS
from sefimap.scientifique.services import appreciation, format_rang, observation

logger = logging.getLogger(__name__)

# Couleur d'en-tête par niveau attribué
NIVEAU_COLORS = {
    "niveau_1": (239, 68, 68),
    "niveau_2": (249, 115, 22),
    "niveau_3": (234, 179, 8),
    "niveau_superieur": (34, 197, 94),
}
DEFAULT_COLOR = (59, 130, 246)

MATIERES = (
    ("Test d'entrée", "note_entree"),
    ("Cahiers", "note_cahiers"),
    ("Conduite", "note_conduite"),
    ("Examen de sortie", "note_sortie"),
)


def couleur_niveau(niveau: Optional[str]) -> colors.Color:
    r, g, b = NIVEAU_COLORS.get(niveau, DEFAULT_COLOR)
    return colors.Color(r / 255, g / 255, b / 255)


def _note_txt(valeur: Optional[float]) -> str:
    return f"{valeur:.2f}/20" if valeur is not None else "-"


def _dessiner_bulletin(c: canvas.Canvas, note: dict, rang: Optional[int], effectif: int) -> None:
    w, h = A4
    left = 20 * mm
    right = w - 20 * mm
    dark = colors.HexColor("#111827")
    gray = colors.HexColor("#4b5563")
    accent = couleur_niveau(note.get("niveau_attribue"))

    # En-tête
    c.setFillColor(accent)
    c.rect(0, h - 45 * mm, w, 45 * mm, stroke=0, fill=1)
    c.setFillColor(colors.white)
    c.setFont("Helvetica-Bold", 26)
    c.drawCentredString(w / 2, h - 17 * mm, "SEFIMAP")
    c.setFont("Helvetica", 11)
    c.drawCentredString(w / 2, h - 25 * mm, "Séminaire de Formation Islamique Malikite et Planification")
    c.setFont("Helvetica-Bold", 15)
    c.drawCentredString(w / 2, h - 36 * mm, "BULLETIN DE NOTES")

    # Participant
    inscription = note.get("inscription") or {}
    classe = note.get("classe") or {}
    y = h - 60 * mm
    c.setFillColor(dark)
    c.setFont("Helvetica-Bold", 12)
    c.drawString(left, y, "PARTICIPANT")
    c.drawRightString(right, y, "CLASSE")
    c.setFont("Helvetica", 11)
    c.drawString(left, y - 8 * mm, f"Nom : {(inscription.get('nom') or '').upper()}")
    c.drawString(left, y - 14 * mm, f"Prénom(s) : {inscription.get('prenom') or ''}")
    if inscription.get("reference_id"):
        c.drawString(left, y - 20 * mm, f"Référence : {inscription['reference_id']}")
    c.drawRightString(right, y - 8 * mm, classe.get("nom") or "-")
    c.drawRightString(right, y - 14 * mm, NIVEAU_LABELS.get(note.get("niveau_attribue"), "-"))

    c.setStrokeColor(colors.HexColor("#e5e7eb"))
    c.setLineWidth(1)
    c.line(left, y - 27 * mm, right, y - 27 * mm)

    # Tableau des notes
    y = y - 40 * mm
    c.setFillColor(colors.HexColor("#f3f4f6"))
    c.rect(left, y - 3 * mm, right - left, 9 * mm, stroke=0, fill=1)
    c.setFillColor(dark)
    c.setFont("Helvetica-Bold", 11)
    c.drawString(left + 4 * mm, y, "Matière")
    c.drawCentredString(w / 2 + 10 * mm, y, "Note")
    c.drawRightString(right - 4 * mm, y, "Observation")

    c.setFont("Helvetica", 11)
    for libelle, champ in MATIERES:
        y -= 11 * mm
        valeur = note.get(champ)
        c.setFillColor(dark)
        c.drawString(left + 4 * mm, y, libelle)
        c.drawCentredString(w / 2 + 10 * mm, y, _note_txt(valeur))
        c.setFillColor(gray)
        c.drawRightString(right - 4 * mm, y, observation(valeur))
        c.setStrokeColor(colors.HexColor("#e5e7eb"))
        c.line(left, y - 4 * mm, right, y - 4 * mm)

    # Résultats
    moyenne = note.get("moyenne")
    y -= 20 * mm
    c.setFillColor(accent)
    c.rect(left, y - 22 * mm, right - left, 30 * mm, stroke=0, fill=1)
    c.setFillColor(colors.white)
    c.setFont("Helvetica-Bold", 13)
    c.drawString(left + 6 * mm, y, f"Moyenne générale : {_note_txt(moyenne)}")
    rang_txt = f"{format_rang(rang)} / {effectif}" if rang else "-"
    c.drawString(left + 6 * mm, y - 9 * mm, f"Rang : {rang_txt}")
    c.drawString(left + 6 * mm, y - 18 * mm, f"Appréciation : {appreciation(moyenne)}")

    # Signature
    y -= 50 * mm
    c.setFillColor(dark)
    c.setFont("Helvetica", 10)
    c.drawString(left, y, f"Fait le {date.today().strftime('%d/%m/%Y')}")
    c.drawRightString(right, y, "Le Responsable Scientifique")
    c.line(right - 55 * mm, y - 18 * mm, right, y - 18 * mm)

    c.showPage()


def generer_bulletin_pdf(note: dict, rang: Optional[int], effectif: int) -> bytes:
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    c.setTitle("Bulletin de notes SEFIMAP")
    _dessiner_bulletin(c, note, rang, effectif)
    c.save()
    return buf.getvalue()


def generer_bulletins_pdf(bulletins: Iterable[Tuple[dict, Optional[int], int]]) -> bytes:
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    c.setTitle("Bulletins de notes SEFIMAP")
    pages = 0
    for note, rang, effectif in bulletins:
        _dessiner_bulletin(c, note, rang, effectif)
        pages += 1
    c.save()
    logger.info(f"📄 {pages} bulletin(s) générés")
    return buf.getvalue()


def nom_fichier_bulletin(note: dict) -> str:
    inscription = note.get("inscription") or {}
    return f"bulletin_{inscription.get('nom', '')}_{inscription.get('prenom', '')}.pdf".replace(" ", "_")


def nom_fichier_bulletins(classe_nom: Optional[str] = None, jour: Optional[date] = None) -> str:
    prefixe = (classe_nom or "sefimap").replace(" ", "_")
    return f"bulletins_{prefixe}_{(jour or date.today()).isoformat()}.pdf"
