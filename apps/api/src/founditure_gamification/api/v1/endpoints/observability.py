"""Observability endpoints for gamification counters and Prometheus metrics."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from founditure_gamification.api.dependencies.security import require_admin_api_key
from founditure_gamification.observability.gamification import get_gamification_store


router = APIRouter(prefix="/observability", tags=["Observability"])


@router.get(
    "/gamification",
    dependencies=[Depends(require_admin_api_key)],
    summary="Gamification observability snapshot",
)
async def get_gamification_snapshot() -> dict[str, object]:
    """Retrieve aggregated ledger and achievement counters (requires admin API key)."""
    return get_gamification_store().snapshot().as_dict()


def _format_metric(name: str, description: str, value: int | float, labels: dict[str, str] | None = None) -> list[str]:
    label_fragment = ""
    if labels:
        formatted = ",".join(f'{key}="{val}"' for key, val in sorted(labels.items()))
        label_fragment = f"{{{formatted}}}"
    return [
        f"# HELP {name} {description}",
        f"# TYPE {name} gauge",
        f"{name}{label_fragment} {value}",
    ]


@router.get(
    "/prometheus",
    dependencies=[Depends(require_admin_api_key)],
    summary="Prometheus-formatted observability metrics",
    response_class=PlainTextResponse,
)
async def get_prometheus_metrics() -> PlainTextResponse:
    snapshot = get_gamification_store().snapshot()

    lines: list[str] = []
    for event_type, count in sorted(snapshot.events.items()):
        lines.extend(
            _format_metric(
                "founditure_gamification_events_total",
                "Gamification events published",
                count,
                {"type": event_type},
            )
        )
    lines.extend(
        _format_metric(
            "founditure_points_awarded_total",
            "Points awarded across all users",
            snapshot.points.get("awarded", 0),
        )
    )
    lines.extend(
        _format_metric(
            "founditure_points_spent_total",
            "Points spent across all users",
            snapshot.points.get("spent", 0),
        )
    )
    lines.extend(
        _format_metric(
            "founditure_points_voided_total",
            "Points reversed by voided transactions",
            snapshot.points.get("voided", 0),
        )
    )
    lines.extend(
        _format_metric(
            "founditure_level_ups_total",
            "Awards that raised a user's level",
            snapshot.points.get("level_ups", 0),
        )
    )
    for source, points in sorted(snapshot.sources.items()):
        lines.extend(
            _format_metric(
                "founditure_points_awarded_by_source_total",
                "Points awarded per source",
                points,
                {"source": source},
            )
        )
    for code, count in sorted(snapshot.anomalies.items()):
        lines.extend(
            _format_metric(
                "founditure_points_anomalies_total",
                "Awards flagged for monitoring review",
                count,
                {"code": code},
            )
        )
    lines.extend(
        _format_metric(
            "founditure_achievements_completed_total",
            "Achievements completed",
            snapshot.achievements.get("completed", 0),
        )
    )
    for key, value in sorted(snapshot.reconciliation.items()):
        lines.extend(
            _format_metric(
                f"founditure_points_reconciliation_{key}_total",
                f"Points reconciliation {key}",
                value,
            )
        )

    return PlainTextResponse("\n".join(lines) + "\n")
