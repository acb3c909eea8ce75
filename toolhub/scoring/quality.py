"""
Quality Scoring — deterministic 0.0–1.0 ranking signal for every tool.
The score is derived from stored signals and cached on the tool row; it is
recomputed after every health sweep and never edited by hand.
"""

import logging
import math
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from toolhub.db.models import HealthStatus, PackageModel, ToolModel

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════════
# Weights
# ══════════════════════════════════════════════════════════════════════════════

SCHEMA_WEIGHT = 0.40
POPULARITY_WEIGHT = 0.30
HEALTH_WEIGHT = 0.20
DOCUMENTATION_WEIGHT = 0.10

# A description at least this long counts as long-form documentation
LONG_DESCRIPTION_CHARS = 100

_UNSPECIFIC_TYPES = {"", "unknown", "any"}


class QualitySignals(BaseModel):
    """Everything the scorer looks at for a single tool."""
    description: str = ""
    parameters: List[Dict[str, Any]] = Field(default_factory=list)
    downloads: Optional[int] = None
    import_health: HealthStatus = HealthStatus.UNKNOWN
    execution_health: HealthStatus = HealthStatus.UNKNOWN
    examples: List[Any] = Field(default_factory=list)


class QualityScore(BaseModel):
    score: float  # 0.0 - 1.0, rounded to 2 decimals
    schema_completeness: float
    popularity: float
    health: float
    documentation: float


# ══════════════════════════════════════════════════════════════════════════════
# Component metrics
# ══════════════════════════════════════════════════════════════════════════════

def schema_completeness(description: str, parameters: List[Dict[str, Any]]) -> float:
    """
    Fraction of passed checks: the tool has a description, and for every
    parameter, it has a description and a specific type.
    """
    checks = [bool((description or "").strip())]
    for param in parameters:
        checks.append(bool(str(param.get("description") or "").strip()))
        checks.append(str(param.get("type") or "").lower() not in _UNSPECIFIC_TYPES)
    return sum(checks) / len(checks)


def popularity(downloads: Optional[int], max_downloads: int) -> float:
    """log10(d+1) / log10(max+1), clamped. Missing data contributes zero."""
    if not downloads or downloads <= 0 or max_downloads <= 0:
        return 0.0
    value = math.log10(downloads + 1) / math.log10(max_downloads + 1)
    return max(0.0, min(1.0, value))


def health(import_health: HealthStatus, execution_health: HealthStatus) -> float:
    if HealthStatus.BROKEN in (import_health, execution_health):
        return 0.0
    if import_health == HealthStatus.HEALTHY and execution_health == HealthStatus.HEALTHY:
        return 1.0
    return 0.5


def documentation(description: str, examples: List[Any]) -> float:
    text = (description or "").strip()
    if len(text) >= LONG_DESCRIPTION_CHARS and examples:
        return 1.0
    if text:
        return 0.5
    return 0.0


def compute_quality_score(signals: QualitySignals, max_downloads: int) -> QualityScore:
    """Weighted sum of the four components, clamped to [0, 1] and rounded."""
    parts = {
        "schema_completeness": schema_completeness(signals.description, signals.parameters),
        "popularity": popularity(signals.downloads, max_downloads),
        "health": health(signals.import_health, signals.execution_health),
        "documentation": documentation(signals.description, signals.examples),
    }
    total = (
        SCHEMA_WEIGHT * parts["schema_completeness"]
        + POPULARITY_WEIGHT * parts["popularity"]
        + HEALTH_WEIGHT * parts["health"]
        + DOCUMENTATION_WEIGHT * parts["documentation"]
    )
    score = round(max(0.0, min(1.0, total)), 2)
    return QualityScore(score=score, **{k: round(v, 4) for k, v in parts.items()})


def signals_for(tool: ToolModel, package: PackageModel) -> QualitySignals:
    ai_agent = tool.ai_agent or {}
    examples = ai_agent.get("examples") if isinstance(ai_agent, dict) else None
    return QualitySignals(
        description=tool.description or "",
        parameters=[p for p in (tool.parameters or []) if isinstance(p, dict)],
        downloads=package.downloads_last_month,
        import_health=HealthStatus(tool.import_health),
        execution_health=HealthStatus(tool.execution_health),
        examples=examples if isinstance(examples, list) else [],
    )


# ══════════════════════════════════════════════════════════════════════════════
# Batch rescoring
# ══════════════════════════════════════════════════════════════════════════════

class RescoreReport(BaseModel):
    tools_scored: int = 0
    max_downloads: int = 0
    average_score: float = 0.0


async def rescore_all(session: AsyncSession, popularity_ceiling: Optional[int] = None) -> RescoreReport:
    """
    Recompute every tool's score in one batch. Popularity is normalized against
    the largest download count in the batch unless a fixed ceiling is given.
    """
    rows = (await session.execute(
        select(ToolModel, PackageModel).join(PackageModel, ToolModel.package_id == PackageModel.id)
    )).all()

    max_downloads = popularity_ceiling or max(
        (pkg.downloads_last_month or 0 for _, pkg in rows), default=0
    )

    total = 0.0
    for tool, package in rows:
        result = compute_quality_score(signals_for(tool, package), max_downloads)
        tool.quality_score = result.score
        total += result.score
    await session.flush()

    report = RescoreReport(
        tools_scored=len(rows),
        max_downloads=max_downloads,
        average_score=round(total / len(rows), 4) if rows else 0.0,
    )
    logger.info(
        f"[SCORING] Rescored {report.tools_scored} tools "
        f"(max_downloads={max_downloads}, avg={report.average_score})"
    )
    return report
