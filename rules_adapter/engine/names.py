"""
Helpers for dotted rule names ("a . b . c").
"""

from typing import List, Optional

SEPARATOR = " . "


def normalize(name: str) -> str:
    """
    Normalize spacing around the dots of a rule name.

    Example:
        normalize("a.b")       -> "a . b"
        normalize(" a  . b ")  -> "a . b"
    """
    parts = [part.strip() for part in name.split(".")]
    return SEPARATOR.join(" ".join(part.split()) for part in parts)


def split(name: str) -> List[str]:
    return [part.strip() for part in name.split(".")]


def join(*parts: str) -> str:
    return SEPARATOR.join(part for part in parts if part)


def parent(name: str) -> Optional[str]:
    """Direct parent of a rule, None for top-level rules."""
    parts = split(name)
    if len(parts) < 2:
        return None
    return join(*parts[:-1])


def ancestors(name: str) -> List[str]:
    """
    All ancestors of a rule, outermost first.

    Example:
        ancestors("a . b . c") -> ["a", "a . b"]
    """
    parts = split(name)
    return [join(*parts[:i]) for i in range(1, len(parts))]


def candidates(reference: str, context: Optional[str]) -> List[str]:
    """
    Names a reference may point to when written inside `context`,
    innermost namespace first.

    Example:
        candidates("c", "a . b") -> ["a . b . c", "a . c", "c"]
    """
    reference = normalize(reference)
    if not context:
        return [reference]
    parts = split(context)
    result = [join(*parts[:i], reference) for i in range(len(parts), 0, -1)]
    result.append(reference)
    return result
