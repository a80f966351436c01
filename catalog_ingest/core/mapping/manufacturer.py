"""
Manufacturer name canonicalization.
"""

import re

_PUNCTUATION_EDGES = " .,;:"
_WHITESPACE = re.compile(r"\s+")


class ManufacturerNormalizer:
    """
    Maps raw manufacturer spellings to one canonical value.

    Values are trimmed, inner whitespace is collapsed and the result is
    case-folded for alias lookup. Known aliases return their canonical
    spelling; anything else returns the cleaned value upper-cased, so
    casing and spacing variants of unknown names still collapse together.
    """

    def __init__(self, aliases: dict[str, list[str]] | None = None):
        self._aliases: dict[str, str] = {}
        for canonical, names in (aliases or {}).items():
            self._aliases[self._fold(canonical)] = canonical
            for name in names:
                self._aliases[self._fold(name)] = canonical

    @staticmethod
    def _clean(value: str) -> str:
        return _WHITESPACE.sub(" ", str(value)).strip(_PUNCTUATION_EDGES)

    def _fold(self, value: str) -> str:
        return self._clean(value).casefold()

    def normalize(self, raw: str | None) -> str:
        if raw is None:
            return ""
        cleaned = self._clean(raw)
        if not cleaned:
            return ""
        return self._aliases.get(cleaned.casefold(), cleaned.upper())
