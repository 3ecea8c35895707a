from datetime import date, datetime
from typing import Optional, Union


def format_cfa(montant: Optional[float]) -> str:
    """4000 -> '4 000 FCFA'"""
    valeur = int(round(montant or 0))
    return f"{valeur:,}".replace(",", " ") + " FCFA"


def format_date(valeur: Optional[Union[str, date, datetime]]) -> str:
    if not valeur:
        return ""
    if isinstance(valeur, str):
        try:
            valeur = datetime.fromisoformat(valeur.replace("Z", "+00:00"))
        except ValueError:
            return valeur
    return valeur.strftime("%d/%m/%Y")
