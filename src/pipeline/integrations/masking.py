"""Masking helpers for secrets shown back to users (webhook keys, tokens)."""

from __future__ import annotations


def mask_sensitive_value(
    value: str | None,
    prefix: int = 6,
    suffix: int = 4,
    mask_char: str = "*",
) -> str:
    """Keep ``prefix`` leading and ``suffix`` trailing characters visible.

    Values too short to leave anything hidden are fully masked, with at
    least eight mask characters.
    """
    if not value:
        return ""
    visible_prefix = max(0, int(prefix))
    visible_suffix = max(0, int(suffix))
    char = mask_char[0] if mask_char else "*"

    if len(value) <= visible_prefix + visible_suffix + 1:
        return char * max(8, len(value))

    masked = len(value) - visible_prefix - visible_suffix
    tail = value[len(value) - visible_suffix:] if visible_suffix else ""
    return f"{value[:visible_prefix]}{char * masked}{tail}"


def mask_presence(value: str | None, length: int = 16, mask_char: str = "•") -> str:
    """Fixed-width mask revealing only that a value is set."""
    if not value:
        return ""
    size = max(1, int(length))
    char = mask_char[0] if mask_char else "•"
    return char * size
