"""
PII redaction for vendor payloads and connector logs

Two complementary tools live here:
- PIIRedactor scrubs free text (log messages, API error bodies). Microsoft
  Presidio detects the entities; hotel and fallback regex rules run afterwards
- sanitize_pii scrubs structured vendor payloads by key before they are retained
  as the ``raw`` field of a canonical entity
"""

import logging
import re
from functools import lru_cache
from typing import Any, Dict, FrozenSet, Optional, Sequence

from presidio_analyzer import AnalyzerEngine
from presidio_analyzer.nlp_engine import NlpEngineProvider
from presidio_anonymizer import AnonymizerEngine
from presidio_anonymizer.entities import OperatorConfig

from ..config import get_settings

logger = logging.getLogger(__name__)
REDACTED = "***REDACTED***"

# Keys whose values are removed entirely
FULLY_MASKED_KEYS = frozenset(
    k.lower()
    for k in (
        "ssn", "social_security", "socialSecurityNumber",
        "passport", "passportNumber", "passport_number",
        "driverLicense", "driversLicense", "driver_license", "driverLicenseNumber",
        "password", "secret", "token",
        "accessToken", "refreshToken", "access_token", "refresh_token",
        "apiKey", "api_key", "clientSecret", "client_secret",
        "creditCardNumber", "credit_card_number", "cardNumber", "card_number",
        "cvv", "cvc", "securityCode", "security_code", "pin",
    )
)

# Keys whose values keep their last four characters for audit
PARTIALLY_MASKED_KEYS = frozenset(
    k.lower()
    for k in (
        "email", "emailAddress", "email_address",
        "phone", "phoneNumber", "phone_number", "mobile", "cellPhone",
        "cardLast4", "card_last_four", "cardLastFour",
        "accountNumber", "account_number",
        "idNumber", "id_number", "taxId", "tax_id",
    )
)


def mask_partial(value: Any) -> str:
    """Mask all but the last four characters"""
    text = str(value)
    if len(text) <= 4:
        return "***"
    return "***" + text[-4:]


def sanitize_pii(data: Any) -> Any:
    """
    Recursively scrub direct identifiers from a vendor payload.

    Returns a new structure; the input is left untouched.
    """
    if isinstance(data, list):
        return [sanitize_pii(item) for item in data]
    if not isinstance(data, dict):
        return data

    sanitized: Dict[str, Any] = {}
    for key, value in data.items():
        lowered = str(key).lower()
        if lowered in FULLY_MASKED_KEYS:
            sanitized[key] = REDACTED
        elif lowered in PARTIALLY_MASKED_KEYS and value not in (None, ""):
            if isinstance(value, (dict, list)):
                sanitized[key] = sanitize_pii(value)
            else:
                sanitized[key] = mask_partial(value)
        else:
            sanitized[key] = sanitize_pii(value)
    return sanitized


# Presidio entity types and the token each is replaced with
PRESIDIO_ENTITIES = {
    "EMAIL_ADDRESS": "<EMAIL>",
    "PHONE_NUMBER": "<PHONE>",
    "CREDIT_CARD": "<CREDIT_CARD>",
    "IP_ADDRESS": "<IP_ADDRESS>",
    "US_SSN": "<SSN>",
    "IBAN_CODE": "<IBAN>",
    "PERSON": "<PERSON>",
}

# Applied after Presidio, in order: card numbers before the looser phone pattern
TEXT_RULES = (
    (r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b", "<EMAIL>"),
    (r"\b(?:\d[ -]*?){13,19}\b", "<CREDIT_CARD>"),
    (r"\b\d{3}-\d{2}-\d{4}\b", "<SSN>"),
    (r"\b(?:[0-9]{1,3}\.){3}[0-9]{1,3}\b", "<IP_ADDRESS>"),
    (r"(?:\+?1[-.\s]?)?\(?\b\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}\b", "<PHONE>"),
)

# Hotel identifiers are recognised by the word introducing them; the keyword is kept
HOTEL_RULES = (
    (r"\b(room|suite|rm)\s*#?\s*\d{1,4}[A-Za-z]?\b", r"\1 <ROOM_NUMBER>"),
    (r"\b(confirmation|conf|booking|res)\s*#?\s*(?=[A-Z]*\d)[A-Z0-9]{6,12}\b", r"\1 <CONFIRMATION>"),
    (r"\b(guest|member|loyalty)\s*#?\s*(?=[A-Z]*\d)[A-Z0-9]{8,16}\b", r"\1 <GUEST_ID>"),
)

SENSITIVE_KEY_FRAGMENTS = frozenset(
    [
        "email", "phone", "password", "card_number", "cardnumber", "cvv",
        "ssn", "passport", "api_key", "apikey", "secret", "token",
    ]
)


@lru_cache(maxsize=4)
def build_analyzer(model_name: str, language: str = "en") -> AnalyzerEngine:
    """Presidio analyzer backed by an installed spaCy pipeline; shared per model."""
    provider = NlpEngineProvider(
        nlp_configuration={
            "nlp_engine_name": "spacy",
            "models": [{"lang_code": language, "model_name": model_name}],
        }
    )
    return AnalyzerEngine(nlp_engine=provider.create_engine(), supported_languages=[language])


class PIIRedactor:
    """
    PII redactor for GDPR compliance

    Presidio finds emails, phone numbers, cards, IP addresses, SSNs, IBANs and
    person names; each is replaced by a typed token such as ``<EMAIL>``. The
    regex rules then catch what the models miss, plus room, confirmation and
    loyalty identifiers. Dict values under a sensitive key are replaced by
    ``<REDACTED_KEY>`` outright.
    """

    def __init__(
        self,
        analyzer: Optional[AnalyzerEngine] = None,
        anonymizer: Optional[AnonymizerEngine] = None,
        language: Optional[str] = None,
        score_threshold: Optional[float] = None,
        include_hotel_identifiers: bool = True,
    ):
        settings = get_settings()
        self.language = language or settings.pii_language
        self.score_threshold = settings.pii_score_threshold if score_threshold is None else score_threshold
        self.analyzer = analyzer or build_analyzer(settings.pii_nlp_model, self.language)
        self.anonymizer = anonymizer or AnonymizerEngine()
        self._operators = {
            entity: OperatorConfig("replace", {"new_value": token}) for entity, token in PRESIDIO_ENTITIES.items()
        }
        rules = TEXT_RULES + (HOTEL_RULES if include_hotel_identifiers else ())
        self._rules = [(re.compile(pattern, re.IGNORECASE), replacement) for pattern, replacement in rules]

    @lru_cache(maxsize=1000)
    def redact_text(self, text: str) -> str:
        if not text:
            return text
        text = self._anonymize(text)
        for pattern, replacement in self._rules:
            text = pattern.sub(replacement, text)
        return text

    def _anonymize(self, text: str) -> str:
        try:
            results = self.analyzer.analyze(
                text=text,
                language=self.language,
                entities=list(PRESIDIO_ENTITIES),
                score_threshold=self.score_threshold,
            )
            if not results:
                return text
            return self.anonymizer.anonymize(text=text, analyzer_results=results, operators=self._operators).text
        except Exception as e:
            logger.error(f"Presidio analysis failed: {e}. Using pattern rules only.")
            return text

    def redact_dict(
        self, data: Dict[str, Any], sensitive_keys: Optional[Sequence[str]] = None
    ) -> Dict[str, Any]:
        fragments = SENSITIVE_KEY_FRAGMENTS | {k.lower() for k in sensitive_keys or ()}
        return {key: self._scrub(key, value, fragments) for key, value in data.items()}

    def _scrub(self, key: Any, value: Any, fragments: FrozenSet[str]) -> Any:
        lowered = str(key).lower()
        if any(fragment in lowered for fragment in fragments):
            return f"<REDACTED_{str(key).upper()}>"
        if isinstance(value, dict):
            return {k: self._scrub(k, v, fragments) for k, v in value.items()}
        if isinstance(value, list):
            return [self._scrub(key, item, fragments) for item in value]
        if isinstance(value, str):
            return self.redact_text(value)
        return value


class PIIRedactorFilter(logging.Filter):
    """
    Logging filter that scrubs the message and string arguments of every record

    Usage:
        logging.getLogger("chargeback_connectors").addFilter(PIIRedactorFilter())
    """

    def __init__(self, redactor: Optional[PIIRedactor] = None):
        super().__init__()
        self.redactor = redactor or get_default_redactor()

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self.redactor.redact_text(record.msg)
        if isinstance(record.args, dict):
            record.args = self.redactor.redact_dict(record.args)
        elif record.args:
            record.args = tuple(
                self.redactor.redact_text(arg) if isinstance(arg, str) else arg for arg in record.args
            )
        return True


@lru_cache(maxsize=None)
def get_default_redactor() -> PIIRedactor:
    return PIIRedactor()


def redact_pii(text: str) -> str:
    return get_default_redactor().redact_text(text)
