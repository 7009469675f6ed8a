from __future__ import annotations

from typing import Any

from constructs import Construct


def require_non_empty(value: Any, message: str) -> str:
    v = str(value or "").strip()
    if not v:
        raise ValueError(message)
    return v


def required_context(scope: Construct, name: str) -> str:
    return require_non_empty(
        scope.node.try_get_context(name),
        f"context variable '{name}' must not be null",
    )
