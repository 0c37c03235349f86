from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Dict, List

from . import db
from .formatting import format_currency, parse_datetime, to_number
from .weather_backend import fetch_current_weather

logger = logging.getLogger(__name__)

FEED_SOURCE_LIMIT = 5
FEED_LIMIT = 7
PENDING_TASK_LIMIT = 10
CRITICAL_SEVERITIES = ("Alta", "Crítica")
STATUS_WEIGHT = {"Pendiente": 1, "En Proceso": 2, "Revisión": 3}

FEED_QUERIES = {
    "reporte": "SELECT id, resumen_titulo, fecha_reporte FROM reportes ORDER BY fecha_reporte DESC NULLS LAST LIMIT %s",
    "levantamiento": "SELECT id, folio, fecha_visita FROM levantamientos ORDER BY fecha_visita DESC NULLS LAST LIMIT %s",
    "cotizacion": (
        "SELECT id, folio, fecha_emision, created_at FROM cotizaciones "
        "ORDER BY COALESCE(fecha_emision::timestamptz, created_at) DESC NULLS LAST LIMIT %s"
    ),
    "gasto": "SELECT id, concepto, monto, fecha FROM gastos ORDER BY fecha DESC NULLS LAST LIMIT %s",
    "tarea": "SELECT id, titulo, estatus, created_at FROM tareas ORDER BY created_at DESC LIMIT %s",
    "incidencia": "SELECT id, titulo, severidad, fecha_inicio FROM incidencias ORDER BY fecha_inicio DESC NULLS LAST LIMIT %s",
}


def _feed_entry(kind: str, row: Dict[str, Any]) -> Dict[str, Any]:
    if kind == "reporte":
        return {"date": row.get("fecha_reporte"), "title": f"Reporte: {row.get('resumen_titulo') or 'Sin título'}"}
    if kind == "levantamiento":
        return {"date": row.get("fecha_visita"), "title": f"Levantamiento: {row.get('folio') or 'S/F'}"}
    if kind == "cotizacion":
        return {
            "date": row.get("fecha_emision") or row.get("created_at"),
            "title": f"Cotización: {row.get('folio') or 'S/F'}",
        }
    if kind == "gasto":
        return {"date": row.get("fecha"), "title": f"Gasto: {row.get('concepto') or ''} - {format_currency(row.get('monto'))}"}
    if kind == "tarea":
        return {"date": row.get("created_at"), "title": f"Tarea: {row.get('titulo') or ''} ({row.get('estatus') or 'Pendiente'})"}
    if kind == "incidencia":
        return {"date": row.get("fecha_inicio"), "title": f"Incidencia: {row.get('titulo') or ''} ({row.get('severidad') or ''})"}
    raise KeyError(kind)


def build_activity_feed(sources: Dict[str, List[Dict[str, Any]]], limit: int = FEED_LIMIT) -> List[Dict[str, Any]]:
    entries: List[Dict[str, Any]] = []
    for kind, rows in sources.items():
        for row in rows:
            entry = _feed_entry(kind, row)
            when = parse_datetime(entry["date"])
            if when is None:
                continue
            entries.append({"kind": kind, "id": row.get("id"), "title": entry["title"], "date": when})
    entries.sort(key=lambda entry: entry["date"], reverse=True)
    return entries[:limit]


def sort_pending_tasks(tasks: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(tasks, key=lambda task: STATUS_WEIGHT.get(task.get("estatus") or "", 4))


def completion_rates(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    rates = []
    for row in rows:
        total = int(row.get("total") or 0)
        completed = int(row.get("completed") or 0)
        rates.append(
            {
                "id": row.get("id"),
                "nombre": row.get("nombre"),
                "total": total,
                "completed": completed,
                "percent": round(completed / total * 100) if total else 0,
            }
        )
    return rates


def budget_health(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    health = []
    for row in rows:
        budget = to_number(row.get("presupuesto"))
        spent = to_number(row.get("gastado"))
        if budget > 0:
            percent = spent / budget * 100
        elif spent > 0:
            percent = 100.0
        else:
            percent = 0.0
        if percent > 100:
            status_class = "pill-danger"
        elif percent >= 80:
            status_class = "pill-warning"
        else:
            status_class = "pill-success"
        health.append(
            {
                "id": row.get("id"),
                "nombre": row.get("nombre"),
                "presupuesto": budget,
                "gastado": spent,
                "percent": percent,
                "status_class": status_class,
            }
        )
    return health


def count_active_projects() -> int:
    row = db.fetch_one("SELECT COUNT(*) AS total FROM proyectos WHERE status IS DISTINCT FROM 'Completado'")
    return int(row["total"]) if row else 0


def count_critical_incidents() -> int:
    try:
        row = db.fetch_one(
            "SELECT COUNT(*) AS total FROM incidencias WHERE severidad IN %s AND estatus = 'Abierta'",
            (CRITICAL_SEVERITIES,),
        )
    except Exception:
        logger.exception("Failed to count critical incidents")
        return 0
    return int(row["total"]) if row else 0


def month_expenses(today: date | None = None) -> float:
    today = today or date.today()
    first_day = today.replace(day=1)
    row = db.fetch_one("SELECT COALESCE(SUM(monto), 0) AS total FROM gastos WHERE fecha >= %s", (first_day.isoformat(),))
    return to_number(row["total"]) if row else 0.0


def fetch_activity_feed() -> List[Dict[str, Any]]:
    sources = {kind: db.fetch_all_rows(query, (FEED_SOURCE_LIMIT,)) for kind, query in FEED_QUERIES.items()}
    return build_activity_feed(sources)


def fetch_pending_tasks() -> List[Dict[str, Any]]:
    rows = db.fetch_all_rows(
        "SELECT t.*, p.nombre AS proyecto_nombre FROM tareas t LEFT JOIN proyectos p ON p.id = t.proyecto_id "
        "WHERE t.estatus IS DISTINCT FROM 'Completada' ORDER BY t.created_at DESC LIMIT %s",
        (PENDING_TASK_LIMIT,),
    )
    return sort_pending_tasks(rows)


def fetch_completion_rates() -> List[Dict[str, Any]]:
    rows = db.fetch_all_rows(
        "SELECT p.id, p.nombre, COUNT(t.id) AS total, "
        "COUNT(t.id) FILTER (WHERE t.estatus = 'Completada') AS completed "
        "FROM proyectos p LEFT JOIN tareas t ON t.proyecto_id = p.id "
        "WHERE p.status IS DISTINCT FROM 'Completado' GROUP BY p.id, p.nombre ORDER BY p.nombre"
    )
    return completion_rates(rows)


def fetch_budget_health() -> List[Dict[str, Any]]:
    rows = db.fetch_all_rows(
        "SELECT p.id, p.nombre, "
        "(SELECT pr.total_final FROM presupuestos pr WHERE pr.proyecto_id = p.id ORDER BY pr.version DESC LIMIT 1) AS presupuesto, "
        "(SELECT COALESCE(SUM(g.monto), 0) FROM gastos g WHERE g.proyecto_id = p.id) AS gastado "
        "FROM proyectos p WHERE p.status IS DISTINCT FROM 'Completado' ORDER BY p.nombre"
    )
    return budget_health(rows)


def load_dashboard_data() -> Dict[str, Any]:
    return {
        "kpis": {
            "active_projects": count_active_projects(),
            "critical_incidents": count_critical_incidents(),
            "month_expenses": month_expenses(),
        },
        "activity": fetch_activity_feed(),
        "pending_tasks": fetch_pending_tasks(),
        "completion": fetch_completion_rates(),
        "budget_health": fetch_budget_health(),
        "weather": fetch_current_weather(),
        "updated": datetime.now().strftime("%Y-%m-%d %H:%M"),
    }


def empty_dashboard_data(error: str = "") -> Dict[str, Any]:
    return {
        "kpis": {"active_projects": 0, "critical_incidents": 0, "month_expenses": 0.0},
        "activity": [],
        "pending_tasks": [],
        "completion": [],
        "budget_health": [],
        "weather": None,
        "updated": datetime.now().strftime("%Y-%m-%d %H:%M"),
        "error": error,
    }


def load_dashboard_data_safe() -> Dict[str, Any]:
    try:
        data = load_dashboard_data()
    except Exception as exc:
        logger.exception("Failed to load dashboard data")
        return empty_dashboard_data(error=str(exc))
    data["error"] = ""
    return data
