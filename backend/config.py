# backend.config
from decimal import Decimal
from pathlib import Path
import os
from dotenv import load_dotenv

# Calculer le chemin du projet puis charger .env de manière explicite
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=True)

"""
Configuration centrale du backend paiements.

- Charge le fichier .env à la racine du projet (BASE_DIR/.env)
- Normalise et expose les secrets/URLs (Supabase, Paystack, flux de taux de change)
- Expose les paramètres métier: devises, tarifs catalogue, TTL du cache de taux, abandon des sessions
- Sélectionne les backends de stockage (supabase|memory, redis|memory)
"""

def _clean_env(v: str) -> str:
    """
    Nettoie une valeur d'environnement:
    - supprime les espaces et guillemets (simples, doubles) et backticks
    - retourne toujours une chaîne (jamais None)
    """
    return (v or "").strip().strip("'").strip('"').strip("`")

def _decimal_env(name: str, default: str) -> Decimal:
    return Decimal(_clean_env(os.getenv(name) or default))

# Supabase: URLs et clés (public/anon/service)
# - SUPABASE_URL peut parfois être sans schéma: on préfixe en https:// si nécessaire
SUPABASE_URL = _clean_env(os.getenv("SUPABASE_URL") or "")
SUPABASE_ANON = _clean_env(os.getenv("SUPABASE_ANON_KEY") or os.getenv("SUPABASE_KEY") or "")
SUPABASE_SERVICE_KEY = _clean_env(os.getenv("SUPABASE_SERVICE_KEY") or "")

if SUPABASE_URL and not SUPABASE_URL.startswith("http"):
    SUPABASE_URL = "https://" + SUPABASE_URL
if SUPABASE_URL.endswith("/"):
    SUPABASE_URL = SUPABASE_URL.rstrip("/")

# Cookies / CORS / hôtes
COOKIE_SECURE = (os.getenv("COOKIE_SECURE", "false").lower() == "true")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1").split(",") if h.strip()]

# Paystack: clé secrète serveur et URL d'API
PAYSTACK_SECRET_KEY = _clean_env(os.getenv("PAYSTACK_SECRET_KEY") or "")
PAYSTACK_BASE_URL = _clean_env(os.getenv("PAYSTACK_BASE_URL") or "https://api.paystack.co").rstrip("/")
GATEWAY_TIMEOUT_SECONDS = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "15"))

# URL publique de l'application (callback Paystack + retour navigateur)
PUBLIC_BASE_URL = _clean_env(os.getenv("PUBLIC_BASE_URL") or os.getenv("APP_DOMAIN") or "http://localhost:8000")
if not PUBLIC_BASE_URL.startswith("http"):
    PUBLIC_BASE_URL = "https://" + PUBLIC_BASE_URL
PUBLIC_BASE_URL = PUBLIC_BASE_URL.rstrip("/")
CHECKOUT_RETURN_PATH = os.getenv("CHECKOUT_RETURN_PATH", "/cart")

# Devises: base (prix catalogue) et règlement (débit Paystack)
BASE_CURRENCY = _clean_env(os.getenv("BASE_CURRENCY") or "USD").upper()
SETTLEMENT_CURRENCY = _clean_env(os.getenv("SETTLEMENT_CURRENCY") or "NGN").upper()

# Flux de taux de change (lecture seule, sans authentification)
EXCHANGE_RATE_URL = _clean_env(
    os.getenv("EXCHANGE_RATE_URL")
    or "https://cdn.jsdelivr.net/npm/@fawazahmed0/currency-api@latest/v1/currencies/{base}.json"
)
EXCHANGE_RATE_TTL_SECONDS = int(os.getenv("EXCHANGE_RATE_TTL_SECONDS", "3600"))
EXCHANGE_RATE_FALLBACK = _decimal_env("EXCHANGE_RATE_FALLBACK", "1650")

# Téléphone: indicatif pays utilisé par la normalisation
PHONE_COUNTRY_CODE = _clean_env(os.getenv("PHONE_COUNTRY_CODE") or "234")

# Tarifs catalogue (devise de base)
SCHOOL_YEAR_PRICE = _decimal_env("SCHOOL_YEAR_PRICE", "16.99")
VIEWER_YEAR_PRICE = _decimal_env("VIEWER_YEAR_PRICE", "6.99")
BADGE_SLOT_PRICE = _decimal_env("BADGE_SLOT_PRICE", "0.99")
DEFAULT_BADGE_SLOTS = 4

# Partage de revenus (achats d'annuaires par des viewers)
PLATFORM_SHARE_PERCENT = int(os.getenv("PLATFORM_SHARE_PERCENT", "20"))

# Sessions de paiement restées 'initiated' au-delà de ce délai -> 'abandoned'
PAYMENT_ABANDON_AFTER_HOURS = int(os.getenv("PAYMENT_ABANDON_AFTER_HOURS", "24"))

# Backends de stockage
PAYMENTS_STORE = _clean_env(os.getenv("PAYMENTS_STORE") or "supabase").lower()
PENDING_STORE = _clean_env(os.getenv("PENDING_STORE") or "redis").lower()
PENDING_REDIS_URL = _clean_env(os.getenv("PENDING_REDIS_URL") or os.getenv("RATE_LIMIT_REDIS_URL") or "redis://127.0.0.1:6379/1")

# Rôle admin (maintenance des sessions)
ADMIN_EMAILS = [e.strip() for e in os.getenv("ADMIN_EMAILS", "admin@example.com").split(",") if e.strip()]
