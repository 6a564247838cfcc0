"""
Normalisation des numéros de téléphone pour Paystack (format nigérian par défaut).

Règles, par priorité:
1) suppression des espaces, parenthèses, tirets et points;
2) déjà international (commence par l'indicatif, longueur >= internationale):
   - "+234..." reste "+234...";
   - "234..." reste "234..." (sans "+"), comme l'accepte le parseur permissif de Paystack;
3) format national avec préfixe "0" et longueur nationale -> "+234" + reste;
4) numéro d'abonné nu (longueur abonné, premier chiffre 7/8/9) -> "+234" + numéro;
5) sinon: chaîne nettoyée inchangée, signalée comme non reconnue (Paystack valide en dernier ressort).
"""
import logging
import re
from typing import NamedTuple

from backend.config import PHONE_COUNTRY_CODE

logger = logging.getLogger(__name__)

_SEPARATORS = re.compile(r"[\s\-\(\)\.]")
_ASCII_DIGITS = re.compile(r"[0-9]+")

TRUNK_PREFIX = "0"
SUBSCRIBER_LENGTH = 10
SUBSCRIBER_LEADING_DIGITS = "789"


class NormalizedPhone(NamedTuple):
    number: str
    recognized: bool


def normalize_phone(raw: str, country_code: str = PHONE_COUNTRY_CODE) -> NormalizedPhone:
    cleaned = _SEPARATORS.sub("", raw or "")
    has_plus = cleaned.startswith("+")
    digits = cleaned[1:] if has_plus else cleaned
    international_length = len(country_code) + SUBSCRIBER_LENGTH

    if _ASCII_DIGITS.fullmatch(digits):
        if digits.startswith(country_code) and len(digits) >= international_length:
            # Asymétrie volontaire: on conserve la forme reçue (avec ou sans "+")
            return NormalizedPhone("+" + digits if has_plus else digits, True)

        if digits.startswith(TRUNK_PREFIX) and len(digits) == SUBSCRIBER_LENGTH + 1:
            return NormalizedPhone(f"+{country_code}{digits[1:]}", True)

        if len(digits) == SUBSCRIBER_LENGTH and digits[0] in SUBSCRIBER_LEADING_DIGITS:
            return NormalizedPhone(f"+{country_code}{digits}", True)

    logger.warning("phone.unrecognized raw=%r cleaned=%r", raw, cleaned)
    return NormalizedPhone(cleaned, False)
