# Badges A6 : mise en page dessinée avec Pillow puis intégrée en image dans le PDF
import io
import logging
from datetime import date
from typing import Iterable, Optional, Tuple

from PIL import Image, ImageDraw, ImageFont, ImageOps
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

logger = logging.getLogger(__name__)

BADGE_WIDTH_MM = 105
BADGE_HEIGHT_MM = 148
PAGE_SIZE = (BADGE_WIDTH_MM * mm, BADGE_HEIGHT_MM * mm)

# Résolution du rendu raster
PX_PER_MM = 8

HEADER_COLOR = (21, 94, 60)
TEXT_COLOR = (17, 24, 39)
MUTED_COLOR = (75, 85, 99)
PLACEHOLDER_COLOR = (209, 213, 219)

NIVEAU_FORMATION_LABELS = {
    "debutant": "Débutant",
    "normal": "Normal",
    "superieur": "Supérieur",
}


def _font(size: int, bold: bool = False):
    name = "DejaVuSans-Bold.ttf" if bold else "DejaVuSans.ttf"
    try:
        return ImageFont.truetype(name, size)
    except OSError:
        return ImageFont.load_default(size=size)


def _px(valeur_mm: float) -> int:
    return int(valeur_mm * PX_PER_MM)


def initiales(inscription: dict) -> str:
    nom = (inscription.get("nom") or "").strip()
    prenom = (inscription.get("prenom") or "").strip()
    return f"{prenom[:1]}{nom[:1]}".upper() or "?"


def _centrer(draw: ImageDraw.ImageDraw, y: int, texte: str, font, largeur: int, fill=TEXT_COLOR) -> None:
    gauche, _, droite, _ = draw.textbbox((0, 0), texte, font=font)
    draw.text(((largeur - (droite - gauche)) / 2, y), texte, font=font, fill=fill)


def _photo(photo: Optional[bytes], taille: Tuple[int, int]) -> Optional[Image.Image]:
    if not photo:
        return None
    try:
        image = Image.open(io.BytesIO(photo))
        image = ImageOps.exif_transpose(image).convert("RGB")
        return ImageOps.fit(image, taille)
    except (OSError, ValueError) as e:
        logger.warning(f"⚠️ Photo illisible, remplacée par les initiales : {e}")
        return None


def render_badge_image(inscription: dict, photo: Optional[bytes] = None) -> Image.Image:
    """Dessine le badge d'un participant : photo, identité, dortoir et niveau de formation."""
    largeur, hauteur = _px(BADGE_WIDTH_MM), _px(BADGE_HEIGHT_MM)
    image = Image.new("RGB", (largeur, hauteur), "white")
    draw = ImageDraw.Draw(image)

    # En-tête
    draw.rectangle([0, 0, largeur, _px(24)], fill=HEADER_COLOR)
    _centrer(draw, _px(5), "SEFIMAP", _font(_px(8), bold=True), largeur, fill="white")
    _centrer(draw, _px(15), "Séminaire de Formation Islamique", _font(_px(3.4)), largeur, fill="white")

    # Photo ou initiales
    cadre = (_px(35), _px(45))
    x0, y0 = (largeur - cadre[0]) // 2, _px(30)
    vignette = _photo(photo, cadre)
    if vignette is not None:
        image.paste(vignette, (x0, y0))
    else:
        draw.rectangle([x0, y0, x0 + cadre[0], y0 + cadre[1]], fill=PLACEHOLDER_COLOR)
        lettres = initiales(inscription)
        font = _font(_px(14), bold=True)
        gauche, haut, droite, bas = draw.textbbox((0, 0), lettres, font=font)
        draw.text(
            (x0 + (cadre[0] - (droite - gauche)) / 2, y0 + (cadre[1] - (bas - haut)) / 2 - haut),
            lettres, font=font, fill="white",
        )
    draw.rectangle([x0, y0, x0 + cadre[0], y0 + cadre[1]], outline=HEADER_COLOR, width=_px(0.6))

    # Identité
    y = _px(82)
    _centrer(draw, y, (inscription.get("nom") or "").upper(), _font(_px(6.5), bold=True), largeur)
    _centrer(draw, y + _px(9), inscription.get("prenom") or "", _font(_px(5)), largeur)

    reference = inscription.get("reference_id")
    if reference:
        _centrer(draw, y + _px(17), f"Réf : {reference}", _font(_px(3.6)), largeur, fill=MUTED_COLOR)

    # Dortoir et niveau
    dortoir = (inscription.get("dortoir") or {}).get("nom") or "Non attribué"
    niveau = NIVEAU_FORMATION_LABELS.get(inscription.get("niveau_formation"), "Non défini")
    draw.line([_px(12), _px(110), largeur - _px(12), _px(110)], fill=PLACEHOLDER_COLOR, width=_px(0.3))
    label_font, valeur_font = _font(_px(3.6)), _font(_px(4.6), bold=True)
    draw.text((_px(12), _px(115)), "Dortoir", font=label_font, fill=MUTED_COLOR)
    draw.text((_px(12), _px(120)), dortoir, font=valeur_font, fill=TEXT_COLOR)
    draw.text((_px(60), _px(115)), "Niveau", font=label_font, fill=MUTED_COLOR)
    draw.text((_px(60), _px(120)), niveau, font=valeur_font, fill=TEXT_COLOR)

    # Pied de page
    draw.rectangle([0, hauteur - _px(10), largeur, hauteur], fill=HEADER_COLOR)
    _centrer(draw, hauteur - _px(7.5), "PARTICIPANT", _font(_px(4), bold=True), largeur, fill="white")
    return image


def _page_badge(c: canvas.Canvas, inscription: dict, photo: Optional[bytes]) -> None:
    image = render_badge_image(inscription, photo)
    c.drawImage(ImageReader(image), 0, 0, width=PAGE_SIZE[0], height=PAGE_SIZE[1])
    c.showPage()


def generer_badge_pdf(inscription: dict, photo: Optional[bytes] = None) -> bytes:
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=PAGE_SIZE)
    c.setTitle(f"Badge {inscription.get('nom', '')} {inscription.get('prenom', '')}".strip())
    _page_badge(c, inscription, photo)
    c.save()
    return buf.getvalue()


def generer_badges_pdf(badges: Iterable[Tuple[dict, Optional[bytes]]]) -> bytes:
    """Un badge par page."""
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=PAGE_SIZE)
    c.setTitle("Badges SEFIMAP")
    pages = 0
    for inscription, photo in badges:
        _page_badge(c, inscription, photo)
        pages += 1
    c.save()
    logger.info(f"🪪 {pages} badge(s) générés")
    return buf.getvalue()


def nom_fichier_badge(inscription: dict) -> str:
    reference = inscription.get("reference_id") or inscription.get("id")
    return f"badge_{reference}_{inscription.get('nom', '')}_{inscription.get('prenom', '')}.pdf".replace(" ", "_")


def nom_fichier_badges(jour: Optional[date] = None) -> str:
    return f"badges_sefimap_{(jour or date.today()).isoformat()}.pdf"
