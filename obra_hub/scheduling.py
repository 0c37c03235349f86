from __future__ import annotations

import logging
import math
from datetime import date, timedelta
from typing import Any, Dict, List

from . import db
from .formatting import MONTHS_ES_TITLE, day_letter, parse_date

logger = logging.getLogger(__name__)

KANBAN_COLUMNS = ["Pendiente", "En Proceso", "Revisión", "Completada"]
DEFAULT_STATUS = "Pendiente"
GANTT_PADDING_DAYS = 7
GANTT_MIN_DAYS = 60


def is_completed(task: Dict[str, Any]) -> bool:
    status = str(task.get("estatus") or "").lower()
    return "completada" in status or "terminada" in status


def task_status_class(value: Any) -> str:
    text = str(value or "").strip().lower()
    if "completada" in text or "terminada" in text:
        return "pill-success"
    if text == "en proceso":
        return "pill-info"
    if text == "revisión":
        return "pill-warning"
    return "pill-muted"


def priority_class(value: Any) -> str:
    text = str(value or "").strip().lower()
    if text in {"alta", "urgente"}:
        return "pill-danger"
    if text == "baja":
        return "pill-success"
    return "pill-warning"


def group_by_status(tasks: List[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    columns: Dict[str, List[Dict[str, Any]]] = {status: [] for status in KANBAN_COLUMNS}
    for task in tasks:
        status = task.get("estatus") or DEFAULT_STATUS
        columns.setdefault(status, []).append(task)
    return columns


def progress_summary(tasks: List[Dict[str, Any]], today: date | None = None) -> Dict[str, Any]:
    """Completion rate plus schedule deviation across a task list.

    Finished tasks contribute real end minus planned end. Unfinished tasks
    past their planned end contribute the days elapsed since then and count
    as delayed.
    """
    today = today or date.today()
    total = len(tasks)
    completed = sum(1 for task in tasks if is_completed(task))

    deviation = 0
    delayed = 0
    for task in tasks:
        planned_end = parse_date(task.get("fecha_fin"))
        if planned_end is None:
            continue
        real_end = parse_date(task.get("fecha_fin_real"))
        if real_end is not None:
            deviation += (real_end - planned_end).days
        elif today > planned_end:
            deviation += (today - planned_end).days
            delayed += 1

    if deviation > 0:
        label = f"+{deviation} Días"
        message = "Retraso acumulado"
    elif deviation < 0:
        label = f"{deviation} Días"
        message = "Adelanto acumulado"
    else:
        label = "0 Días"
        message = "Al día"

    return {
        "total": total,
        "completed": completed,
        "percent": round(completed / total * 100) if total else 0,
        "deviation_days": deviation,
        "deviation_label": label,
        "deviation_message": message,
        "delayed": delayed,
    }


def gantt_range(tasks: List[Dict[str, Any]], today: date | None = None) -> tuple[date, date]:
    today = today or date.today()
    earliest = today
    latest = today
    for task in tasks:
        for key in ("fecha_inicio", "fecha_inicio_real"):
            start = parse_date(task.get(key))
            if start is not None and start < earliest:
                earliest = start
        for key in ("fecha_fin", "fecha_fin_real"):
            end = parse_date(task.get(key))
            if end is not None and end > latest:
                latest = end

    start = earliest - timedelta(days=GANTT_PADDING_DAYS)
    end = latest + timedelta(days=GANTT_PADDING_DAYS)
    span = (end - start).days
    if span < GANTT_MIN_DAYS:
        extra = math.ceil((GANTT_MIN_DAYS - span) / 2)
        start -= timedelta(days=extra)
        end += timedelta(days=extra)
    return start, end


def _bar(start_value: Any, end_value: Any, range_start: date, total_days: int) -> Dict[str, int] | None:
    start = parse_date(start_value)
    end = parse_date(end_value)
    if start is None or end is None:
        return None
    first = max(0, (start - range_start).days)
    last = min(total_days - 1, (end - range_start).days)
    if last < first:
        return None
    return {"offset": first, "span": last - first + 1}


def month_spans(range_start: date, total_days: int) -> List[Dict[str, Any]]:
    spans: List[Dict[str, Any]] = []
    for index in range(total_days):
        day = range_start + timedelta(days=index)
        label = f"{MONTHS_ES_TITLE[day.month - 1]} {day.year}"
        if spans and spans[-1]["label"] == label:
            spans[-1]["span"] += 1
        else:
            spans.append({"label": label, "offset": index, "span": 1})
    return spans


def build_gantt(tasks: List[Dict[str, Any]], today: date | None = None) -> Dict[str, Any]:
    today = today or date.today()
    range_start, range_end = gantt_range(tasks, today)
    total_days = (range_end - range_start).days + 1

    dated = [task for task in tasks if task.get("fecha_inicio") and task.get("fecha_fin")]
    undated = [task for task in tasks if not (task.get("fecha_inicio") and task.get("fecha_fin"))]
    dated.sort(key=lambda task: parse_date(task.get("fecha_inicio")) or range_start)

    rows = [
        {
            "task": task,
            "planned": _bar(task.get("fecha_inicio"), task.get("fecha_fin"), range_start, total_days),
            "real": _bar(task.get("fecha_inicio_real"), task.get("fecha_fin_real") or (today if task.get("fecha_inicio_real") else None), range_start, total_days),
            "status": task.get("estatus") or DEFAULT_STATUS,
        }
        for task in dated
    ]
    days = []
    for index in range(total_days):
        day = range_start + timedelta(days=index)
        days.append(
            {
                "date": day,
                "number": day.day,
                "letter": day_letter(day),
                "weekend": day.isoweekday() in (6, 7),
                "today": day == today,
            }
        )
    return {
        "start": range_start,
        "end": range_end,
        "total_days": total_days,
        "today_offset": (today - range_start).days,
        "months": month_spans(range_start, total_days),
        "days": days,
        "rows": rows,
        "undated": undated,
    }


# Checklists


def checklist_progress(items: List[Dict[str, Any]]) -> int:
    if not items:
        return 0
    done = sum(1 for item in items if item.get("completado"))
    return round(done / len(items) * 100)


def fetch_checklists(task_id: int) -> List[Dict[str, Any]]:
    checklists = db.fetch_all_rows(
        "SELECT * FROM tarea_checklists WHERE tarea_id = %s ORDER BY created_at, id",
        (task_id,),
    )
    if not checklists:
        return []
    items = db.fetch_all_rows(
        "SELECT * FROM tarea_checklist_items WHERE checklist_id = ANY(%s) ORDER BY posicion, id",
        ([checklist["id"] for checklist in checklists],),
    )
    for checklist in checklists:
        checklist["items"] = [item for item in items if item["checklist_id"] == checklist["id"]]
        checklist["progress"] = checklist_progress(checklist["items"])
    return checklists


def fetch_task_notes(task_id: int) -> List[Dict[str, Any]]:
    """Notes linked to a task, newest first."""
    return db.fetch_all_rows(
        "SELECT * FROM notas WHERE tarea_id = %s ORDER BY fecha DESC NULLS LAST, created_at DESC",
        (task_id,),
    )


def create_checklist(task_id: int, nombre: str) -> None:
    nombre = (nombre or "").strip()
    if not nombre:
        raise ValueError("El nombre de la lista es requerido")
    db.execute_sql("INSERT INTO tarea_checklists (tarea_id, nombre) VALUES (%s, %s)", (task_id, nombre))
    db.commit()


def delete_checklist(checklist_id: int) -> None:
    db.execute_sql("DELETE FROM tarea_checklists WHERE id = %s", (checklist_id,))
    db.commit()


def add_checklist_item(checklist_id: int, texto: str) -> None:
    texto = (texto or "").strip()
    if not texto:
        raise ValueError("El texto del elemento es requerido")
    row = db.fetch_one(
        "SELECT COUNT(*) AS total FROM tarea_checklist_items WHERE checklist_id = %s",
        (checklist_id,),
    )
    db.execute_sql(
        "INSERT INTO tarea_checklist_items (checklist_id, texto, completado, posicion) VALUES (%s, %s, FALSE, %s)",
        (checklist_id, texto, int(row["total"]) if row else 0),
    )
    db.commit()


def toggle_checklist_item(item_id: int, completado: bool) -> None:
    db.execute_sql("UPDATE tarea_checklist_items SET completado = %s WHERE id = %s", (bool(completado), item_id))
    db.commit()


def delete_checklist_item(item_id: int) -> None:
    db.execute_sql("DELETE FROM tarea_checklist_items WHERE id = %s", (item_id,))
    db.commit()
