"""cise_layout — CiSE (Circular Spring Embedder) layout for clustered graphs."""

from __future__ import annotations

from cise_layout.layout import LayoutResult, cise_layout, run_layout
from cise_layout.types import EdgeSpec, LayoutConfig, LayoutInputError, NodeSpec, Point

__all__ = [
    "EdgeSpec",
    "LayoutConfig",
    "LayoutInputError",
    "LayoutResult",
    "NodeSpec",
    "Point",
    "cise_layout",
    "run_layout",
]
