"""
Module 'cart' (feature-first): droits numériques en attente d'achat (années d'annuaire, emplacements de badge).
Le prix unitaire est figé côté serveur au moment de l'ajout.
"""

from .service import unit_price_for, add_item, list_items, remove_item, clear

__all__ = [
    "unit_price_for",
    "add_item",
    "list_items",
    "remove_item",
    "clear",
]
