"""Normalization and tokenization of Vietnamese/English profile text."""

from __future__ import annotations

import re
import unicodedata
from typing import Iterable, Mapping, Sequence

_NON_WORD_RE = re.compile(r"[^\w\s-]+")
_WHITESPACE_RE = re.compile(r"\s+")
_DELIMITER_RE = re.compile(r"[,;/&|]")

# Heads map to alternate spellings; a hit on any member expands to the whole group.
DEFAULT_SYNONYMS: Mapping[str, tuple[str, ...]] = {
    # AI
    "ai": ("artificial intelligence", "tri tue nhan tao"),
    "machine learning": ("ml", "hoc may"),
    "deep learning": ("dl", "hoc sau"),
    "neural network": ("mang no ron", "neural net"),
    "nlp": ("natural language processing", "xu ly ngon ngu tu nhien"),
    "llm": ("large language model", "mo hinh ngon ngu lon"),
    "computer vision": ("cv", "thi giac may tinh"),
    # Data
    "data science": ("khoa hoc du lieu",),
    "big data": ("du lieu lon",),
    "data mining": ("khai pha du lieu",),
    "data analysis": ("phan tich du lieu",),
    # Software
    "software engineering": ("cong nghe phan mem",),
    "web development": ("phat trien web",),
    "mobile development": ("phat trien di dong",),
    "backend": ("server side",),
    "frontend": ("client side",),
    # Systems
    "cloud computing": ("dien toan dam may",),
    "distributed systems": ("he thong phan tan",),
    "iot": ("internet of things", "internet van vat"),
    "embedded systems": ("he thong nhung",),
    # Security
    "cybersecurity": ("an ninh mang", "an toan thong tin"),
    "cryptography": ("ma hoa",),
    # Hardware
    "vlsi": ("vi mach",),
    "ic design": ("thiet ke vi mach",),
    "soc": ("system on chip",),
    "fpga": ("field programmable gate array",),
}


def remove_diacritics(text: str) -> str:
    """Strip combining marks so ``"Trí tuệ nhân tạo"`` becomes ``"Tri tue nhan tao"``."""

    decomposed = unicodedata.normalize("NFD", text)
    stripped = "".join(char for char in decomposed if not unicodedata.combining(char))
    return stripped.replace("đ", "d").replace("Đ", "D")


def normalize(text: object) -> str:
    """Return the canonical lowercase, accent-free, punctuation-free form of ``text``."""

    if not isinstance(text, str) or not text:
        return ""
    value = remove_diacritics(text.lower())
    value = _NON_WORD_RE.sub(" ", value)
    return _WHITESPACE_RE.sub(" ", value).strip()


class TextNormalizer:
    """Tokenizer with a configurable synonym table."""

    def __init__(self, synonyms: Mapping[str, Sequence[str]] | None = None) -> None:
        table = DEFAULT_SYNONYMS if synonyms is None else synonyms
        self._groups: list[tuple[str, ...]] = []
        self._group_by_member: dict[str, list[int]] = {}
        for head, members in table.items():
            group = tuple(dict.fromkeys(item for item in (normalize(head), *map(normalize, members)) if item))
            if not group:
                continue
            position = len(self._groups)
            self._groups.append(group)
            for member in group:
                self._group_by_member.setdefault(member, []).append(position)

    def normalize(self, text: object) -> str:
        return normalize(text)

    def tokenize(self, text: object) -> list[str]:
        """Split text into the whole phrase, its delimited parts and their longer words.

        Delimiters (``, ; / & |``) are split on the raw text, since ``normalize``
        turns them into plain spaces.
        """

        if not isinstance(text, str):
            return []
        full = normalize(text)
        if not full:
            return []
        tokens: dict[str, None] = {full: None}
        for raw_part in _DELIMITER_RE.split(text):
            part = normalize(raw_part)
            if not part:
                continue
            tokens.setdefault(part, None)
            words = part.split(" ")
            if len(words) > 1:
                for word in words:
                    if len(word) > 2:
                        tokens.setdefault(word, None)
        return list(tokens)

    def expand_with_synonyms(self, tokens: Iterable[str]) -> list[str]:
        expanded: dict[str, None] = {}
        for token in tokens:
            expanded.setdefault(token, None)
        for token in list(expanded):
            for position in self._group_by_member.get(token, ()):
                for member in self._groups[position]:
                    expanded.setdefault(member, None)
        return list(expanded)

    def normalize_and_tokenize(self, text: object) -> list[str]:
        return self.expand_with_synonyms(self.tokenize(text))

    def normalize_array(self, texts: object) -> list[str]:
        if not isinstance(texts, (list, tuple)):
            return []
        tokens: dict[str, None] = {}
        for text in texts:
            for token in self.normalize_and_tokenize(text):
                tokens.setdefault(token, None)
        return list(tokens)


_DEFAULT_NORMALIZER = TextNormalizer()


def default_normalizer() -> TextNormalizer:
    return _DEFAULT_NORMALIZER


def tokenize(text: object) -> list[str]:
    return _DEFAULT_NORMALIZER.tokenize(text)


def expand_with_synonyms(tokens: Iterable[str]) -> list[str]:
    return _DEFAULT_NORMALIZER.expand_with_synonyms(tokens)


def normalize_and_tokenize(text: object) -> list[str]:
    """Tokenize ``text`` and expand every token with its synonym group."""

    return _DEFAULT_NORMALIZER.normalize_and_tokenize(text)


def normalize_array(texts: object) -> list[str]:
    return _DEFAULT_NORMALIZER.normalize_array(texts)


__all__ = [
    "DEFAULT_SYNONYMS",
    "TextNormalizer",
    "default_normalizer",
    "expand_with_synonyms",
    "normalize",
    "normalize_and_tokenize",
    "normalize_array",
    "remove_diacritics",
    "tokenize",
]
