"""
Quote-aware KEY=VALUE scanner shared by LABEL, ENV and variable detection.
"""
from typing import List, Tuple

QUOTES = "\"'"


def strip_quotes(value: str) -> str:
    """
    Removes one pair of matching surrounding quotes.
    """
    if len(value) >= 2 and value[0] in QUOTES and value[-1] == value[0]:
        return value[1:-1]
    return value


def parse_key_value_pairs(text: str, escape_char: str = "\\") -> List[Tuple[str, str, bool]]:
    """
    Splits ``text`` into ``(key, value, has_equals)`` triples in source order.

    Quoted sections may contain spaces and ``=``; an escaped character is
    kept as written without the escape. A key without ``=`` is returned with
    ``has_equals`` False so callers can decide whether bare keys are legal.

    :param text: Argument text such as ``A=1 B="two words" C``.
    :param escape_char: The Dockerfile escape character.
    :return: List of key/value triples.
    """
    pairs: List[Tuple[str, str, bool]] = []
    key: List[str] = []
    value: List[str] = []
    in_key = True
    has_equals = False
    quote = ""
    escaped = False
    started = False

    def flush():
        if started:
            pairs.append(("".join(key), "".join(value), has_equals))

    for ch in text:
        target = key if in_key else value

        if escaped:
            target.append(ch)
            escaped = False
            continue

        if ch == escape_char and quote != "'":
            escaped = True
            started = True
            continue

        if ch in QUOTES:
            if quote == ch:
                quote = ""
                continue
            if not quote:
                quote = ch
                started = True
                continue
            target.append(ch)
            continue

        if ch == "=" and not quote and in_key:
            in_key = False
            has_equals = True
            started = True
            continue

        if ch in " \t" and not quote:
            if started:
                flush()
            key, value = [], []
            in_key, has_equals, started = True, False, False
            continue

        target.append(ch)
        started = True

    flush()
    return pairs


def parse_env_declarations(text: str, escape_char: str = "\\") -> List[Tuple[str, str, bool]]:
    """
    Parses ENV/ARG declarations. Supports the legacy ``KEY value words``
    form when the first token carries no ``=``.
    """
    stripped = text.strip()
    if not stripped:
        return []
    first = stripped.split(None, 1)
    pairs = parse_key_value_pairs(stripped, escape_char)
    if pairs and not pairs[0][2] and len(first) == 2 and "=" not in first[0]:
        return [(first[0], strip_quotes(first[1].strip()), True)]
    return pairs
