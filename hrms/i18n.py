from typing import Optional

from starlette.requests import Request

from .config import settings


MESSAGES = {
    "ar": {
        "validation_failed": "بيانات غير صحيحة",
        "query_validation_failed": "معاملات البحث غير صحيحة",
        "params_validation_failed": "معاملات الرابط غير صحيحة",
        "validation_internal_error": "خطأ في التحقق من البيانات",
        "internal_error": "خطأ في الخادم",
    },
    "en": {
        "validation_failed": "Invalid data",
        "query_validation_failed": "Invalid query parameters",
        "params_validation_failed": "Invalid URL parameters",
        "validation_internal_error": "Error while validating data",
        "internal_error": "Internal server error",
    },
}


def resolve_locale(accept_language: Optional[str]) -> str:
    """Pick the first supported language from an Accept-Language header."""
    if accept_language:
        for part in accept_language.split(","):
            lang = part.split(";")[0].strip().lower()[:2]
            if lang in MESSAGES:
                return lang
    return settings.default_locale if settings.default_locale in MESSAGES else "en"


def translate(request: Optional[Request], key: str) -> str:
    locale = resolve_locale(request.headers.get("accept-language") if request is not None else None)
    return MESSAGES[locale].get(key) or MESSAGES["en"].get(key, key)
