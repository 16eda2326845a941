"""Delegates: circular ordering, spring embedder and circular force."""

from __future__ import annotations

from cise_layout.delegates.avsdf import AVSDFOrdering
from cise_layout.delegates.base import (
    CircularForce,
    CircularOrdering,
    CircularOrderResult,
    EmbedderParams,
    SpringEmbedder,
)
from cise_layout.delegates.force import SpringPullForce, spring_pull
from cise_layout.delegates.identity import IdentityEmbedder, IdentityOrdering
from cise_layout.delegates.spring import NetworkXSpringEmbedder

__all__ = [
    "AVSDFOrdering",
    "CircularForce",
    "CircularOrderResult",
    "CircularOrdering",
    "EmbedderParams",
    "IdentityEmbedder",
    "IdentityOrdering",
    "NetworkXSpringEmbedder",
    "SpringEmbedder",
    "SpringPullForce",
    "spring_pull",
]
