# src/paperinbox/domain/harvest.py
"""
Harvester result model.

Harvesters report failures in the result instead of raising, so a partial
page of papers can still be used. HarvesterSource decides what counts as a
failed search.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from paperinbox.domain.candidate import CandidateResult


@dataclass
class HarvestResult:
    """Result from a single harvester request."""

    source: str
    papers: List[CandidateResult] = field(default_factory=list)
    total_found: int = 0
    error: Optional[str] = None
