# Exports Excel des listes d'inscriptions et de paiements
from io import BytesIO
from typing import Callable, Iterable, List, Sequence, Tuple

import openpyxl
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from sefimap.utils.formatting import format_date

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

Colonne = Tuple[str, Callable[[dict], object]]

COLONNES_INSCRIPTIONS: Sequence[Colonne] = (
    ("Référence", lambda i: i.get("reference_id") or ""),
    ("Nom", lambda i: i.get("nom")),
    ("Prénom", lambda i: i.get("prenom")),
    ("Sexe", lambda i: i.get("sexe")),
    ("Âge", lambda i: i.get("age")),
    ("Téléphone", lambda i: i.get("telephone") or ""),
    ("Parent", lambda i: f"{i.get('nom_parent') or ''} {i.get('prenom_parent') or ''}".strip()),
    ("Numéro parent", lambda i: i.get("numero_parent") or ""),
    ("Type", lambda i: i.get("type_inscription")),
    ("Statut", lambda i: i.get("statut")),
    ("Président de section", lambda i: (i.get("chef_quartier") or {}).get("nom_complet") or ""),
    ("Dortoir", lambda i: (i.get("dortoir") or {}).get("nom") or ""),
    ("Niveau de formation", lambda i: i.get("niveau_formation") or ""),
    ("Montant payé", lambda i: float(i.get("montant_total_paye") or 0)),
    ("Statut paiement", lambda i: i.get("statut_paiement")),
    ("Date d'inscription", lambda i: format_date(i.get("created_at"))),
)

COLONNES_PAIEMENTS: Sequence[Colonne] = (
    ("Date", lambda p: format_date(p.get("date_paiement"))),
    ("Référence", lambda p: (p.get("inscription") or {}).get("reference_id") or ""),
    ("Participant", lambda p: "{} {}".format(
        (p.get("inscription") or {}).get("nom", ""), (p.get("inscription") or {}).get("prenom", "")
    ).strip()),
    ("Montant", lambda p: float(p.get("montant") or 0)),
    ("Mode", lambda p: p.get("mode_paiement")),
    ("Statut", lambda p: p.get("statut")),
    ("Type", lambda p: p.get("type_paiement") or ""),
)


def _classeur(titre: str, colonnes: Sequence[Colonne], lignes: Iterable[dict]) -> bytes:
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = titre

    # Style d'en-tête
    header_fill = PatternFill(start_color="155e3c", end_color="155e3c", fill_type="solid")
    header_font = Font(bold=True, color="FFFFFF")

    for col, (entete, _) in enumerate(colonnes, 1):
        cell = ws.cell(row=1, column=col, value=entete)
        cell.fill = header_fill
        cell.font = header_font
        cell.alignment = Alignment(horizontal='center', vertical='center')

    for row, ligne in enumerate(lignes, 2):
        for col, (_, valeur) in enumerate(colonnes, 1):
            ws.cell(row, col, valeur(ligne))

    for col in range(1, len(colonnes) + 1):
        ws.column_dimensions[get_column_letter(col)].width = 18
    ws.freeze_panes = "A2"

    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def exporter_inscriptions_xlsx(inscriptions: List[dict]) -> bytes:
    return _classeur("Inscriptions", COLONNES_INSCRIPTIONS, inscriptions)


def exporter_paiements_xlsx(paiements: List[dict]) -> bytes:
    return _classeur("Paiements", COLONNES_PAIEMENTS, paiements)
