"""Couche service du domaine Utilisateurs.
Construit l’utilisateur courant à partir du jeton Supabase et du profil applicatif:
{id, email, role, user_type, first_name, last_name, phone_number, school, token}.
"""
from typing import Any, Dict, Optional

from backend.config import ADMIN_EMAILS
from . import repository


def determine_role(email: Optional[str], metadata: Optional[Dict[str, Any]]) -> str:
    if str((metadata or {}).get("role", "")).lower() == "admin":
        return "admin"
    if email and email.lower() in {e.lower() for e in ADMIN_EMAILS}:
        return "admin"
    return "user"


def build_current_user(access_token: str) -> Dict[str, Any]:
    """Normalise l’utilisateur Supabase puis fusionne le profil et l’établissement (comptes école)."""
    raw = repository.get_user_from_access_token(access_token)
    uid = raw.get("id")
    metadata = raw.get("user_metadata") or {}
    profile = repository.get_user_profile(uid) or {}
    email = profile.get("email") or raw.get("email")

    school = None
    if profile.get("school_id"):
        school = repository.get_school(profile["school_id"])

    return {
        "id": uid,
        "email": email,
        "role": profile.get("role") or determine_role(email, metadata),
        "user_type": profile.get("user_type") or metadata.get("user_type") or "viewer",
        "first_name": profile.get("first_name") or metadata.get("first_name"),
        "last_name": profile.get("last_name") or metadata.get("last_name"),
        "phone_number": profile.get("phone_number"),
        "school": school,
        "metadata": metadata,
        "token": access_token,
    }
