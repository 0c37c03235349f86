from __future__ import annotations

import logging
from typing import Any, Dict, List

from . import db
from .formatting import parse_date
from .records import PROJECT_STATUSES, ValidationError

logger = logging.getLogger(__name__)

MIN_SOLUTION_LENGTH = 5

# section key -> (query, label)
DETAIL_SECTIONS = {
    "tareas": (
        "SELECT t.*, p.nombre AS proyecto_nombre FROM tareas t LEFT JOIN proyectos p ON p.id = t.proyecto_id "
        "WHERE t.proyecto_id = %s ORDER BY t.created_at DESC",
        "Tareas",
    ),
    "incidencias": (
        "SELECT * FROM incidencias WHERE proyecto_id = %s ORDER BY fecha_inicio DESC NULLS LAST",
        "Incidencias",
    ),
    "levantamientos": (
        "SELECT * FROM levantamientos WHERE proyecto_id = %s ORDER BY created_at DESC",
        "Levantamientos",
    ),
    "cotizaciones": (
        "SELECT * FROM cotizaciones WHERE proyecto_id = %s ORDER BY created_at DESC",
        "Cotizaciones",
    ),
    "reportes": (
        "SELECT * FROM reportes WHERE proyecto_id = %s ORDER BY created_at DESC",
        "Reportes",
    ),
    "minutas": (
        "SELECT * FROM minutas WHERE proyecto_id = %s ORDER BY created_at DESC",
        "Minutas",
    ),
    "reuniones_clientes": (
        "SELECT * FROM reuniones_clientes WHERE proyecto_id = %s ORDER BY created_at DESC",
        "Reuniones con clientes",
    ),
}


class ProjectCompletionError(RuntimeError):
    def __init__(self, pending: List[Dict[str, Any]]):
        self.pending = pending
        titles = ", ".join(str(task.get("titulo") or "Sin título") for task in pending)
        super().__init__(
            f"No se puede marcar como Completado: hay {len(pending)} tarea(s) sin completar ({titles})."
        )


def fetch_project(project_id: int) -> Dict[str, Any] | None:
    return db.fetch_one("SELECT * FROM proyectos WHERE id = %s", (project_id,))


def fetch_project_details(project_id: int) -> Dict[str, Any]:
    """Everything tied to one project, each section loaded independently."""
    details: Dict[str, Any] = {"project": fetch_project(project_id), "sections": {}}
    for key, (query, label) in DETAIL_SECTIONS.items():
        try:
            rows = db.fetch_all_rows(query, (project_id,))
            error = ""
        except Exception as exc:
            logger.exception("Failed to load %s for project %s", key, project_id)
            rows, error = [], str(exc)
        details["sections"][key] = {"label": label, "rows": rows, "error": error}
    return details


def incomplete_tasks(project_id: int) -> List[Dict[str, Any]]:
    return db.fetch_all_rows(
        "SELECT id, titulo, estatus FROM tareas WHERE proyecto_id = %s "
        "AND (estatus IS NULL OR estatus <> 'Completada') ORDER BY id",
        (project_id,),
    )


def ensure_status_allowed(project_id: int | None, status: Any) -> None:
    if status not in PROJECT_STATUSES:
        raise ValidationError({"status": "Estatus no válido"})
    if status == "Completado" and project_id is not None:
        pending = incomplete_tasks(project_id)
        if pending:
            raise ProjectCompletionError(pending)


def set_project_status(project_id: int, status: str) -> None:
    ensure_status_allowed(project_id, status)
    db.execute_sql("UPDATE proyectos SET status = %s WHERE id = %s", (status, project_id))
    db.commit()
    logger.info("Project %s marked %s", project_id, status)


# Incidents


def close_incident(incident_id: int, solucion_final: Any, fecha_cierre: Any) -> None:
    errors: Dict[str, str] = {}
    solution = str(solucion_final or "").strip()
    if len(solution) < MIN_SOLUTION_LENGTH:
        errors["solucion_final"] = f"La solución debe tener al menos {MIN_SOLUTION_LENGTH} caracteres"
    closed_on = parse_date(fecha_cierre)
    if closed_on is None:
        errors["fecha_cierre"] = "La fecha de cierre es requerida"
    if errors:
        raise ValidationError(errors)
    db.execute_sql(
        "UPDATE incidencias SET estatus = 'Resuelta', solucion_final = %s, fecha_cierre = %s WHERE id = %s",
        (solution, closed_on.isoformat(), incident_id),
    )
    db.commit()


def incident_task_ids(incident_id: int) -> List[int]:
    rows = db.fetch_all_rows("SELECT tarea_id FROM incidencia_tareas WHERE incidencia_id = %s ORDER BY tarea_id", (incident_id,))
    return [int(row["tarea_id"]) for row in rows]


def link_incident_tasks(incident_id: int, task_ids: List[Any]) -> None:
    unique_ids = list(dict.fromkeys(int(task_id) for task_id in task_ids if str(task_id).strip()))
    db.execute_sql("DELETE FROM incidencia_tareas WHERE incidencia_id = %s", (incident_id,))
    for task_id in unique_ids:
        db.execute_sql(
            "INSERT INTO incidencia_tareas (incidencia_id, tarea_id) VALUES (%s, %s) ON CONFLICT DO NOTHING",
            (incident_id, task_id),
        )
    db.commit()


def severity_class(value: Any) -> str:
    text = str(value or "").strip().lower()
    if text in {"alta", "crítica", "critica"}:
        return "pill-danger"
    if text == "media":
        return "pill-warning"
    return "pill-muted"


def incident_status_class(value: Any) -> str:
    key = str(value or "").strip().lower()
    if key == "resuelta":
        return "pill-success"
    if key == "abierta":
        return "pill-danger"
    return "pill-info"
