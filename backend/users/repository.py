"""Couche d’accès aux données (Supabase) pour le domaine Utilisateurs.
Lecture du profil applicatif (table users) et de l’établissement associé (table schools),
utilisés pour identifier le client lors d’un paiement.
Les lectures de profil renvoient None en cas d’erreur; l’appelant décide du champ manquant.
"""
import logging
from typing import Any, Dict, Optional

import backend.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

PROFILE_COLUMNS = "id, email, role, user_type, first_name, last_name, phone_number, school_id, badge_slots"
SCHOOL_COLUMNS = "id, name, phone_number, paystack_subaccount_code"


def get_user_from_access_token(access_token: str) -> Dict[str, Any]:
    """Récupère et normalise l’utilisateur depuis supabase.auth.get_user(access_token)."""
    res = supabase_client.get_supabase().auth.get_user(access_token)
    user = getattr(res, "user", None) or {}
    if not isinstance(user, dict):
        user = {
            "id": getattr(user, "id", None),
            "email": getattr(user, "email", None),
            "user_metadata": getattr(user, "user_metadata", None),
        }
    return user or {}


def get_user_profile(user_id: str) -> Optional[Dict[str, Any]]:
    """Profil applicatif (table users) ou None si introuvable/erreur."""
    if not user_id:
        return None
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("users")
            .select(PROFILE_COLUMNS)
            .eq("id", user_id)
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return rows[0] if rows else None
    except Exception:
        logger.exception("users.repository.get_user_profile failed user_id=%s", user_id)
        return None


def get_school(school_id: str) -> Optional[Dict[str, Any]]:
    """Établissement (table schools) ou None si introuvable/erreur."""
    if not school_id:
        return None
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("schools")
            .select(SCHOOL_COLUMNS)
            .eq("id", school_id)
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return rows[0] if rows else None
    except Exception:
        logger.exception("users.repository.get_school failed school_id=%s", school_id)
        return None
