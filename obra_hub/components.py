from __future__ import annotations

import asyncio
import logging
from datetime import date
from typing import Any, Callable, Dict, List

from reactpy import component, hooks, html
from reactpy.backend.hooks import use_location

from . import auth, dashboard, db, finance, projects, records, scheduling
from .formatting import (
    format_currency,
    format_date_long,
    format_date_medium,
    format_date_short,
    format_percent,
    split_lines,
    to_number,
)
from .projects import ProjectCompletionError
from .realtime import get_change_feed, patch_rows, subscribe_many, subscribe_queue
from .records import ENTITY_DEFS, PROJECT_FILTER_ALL, PROJECT_FILTER_NONE, ValidationError
from .supabase_api import SupabaseAuthError, resolve_media_url
from .weather_backend import fetch_forecast

logger = logging.getLogger(__name__)

NAV_ITEMS = [
    ("/dashboard", "Dashboard"),
    ("/projects", "Proyectos"),
    ("/tasks", "Tareas"),
    ("/expenses", "Gastos"),
    ("/incidents", "Incidencias"),
    ("/documents/surveys", "Levantamientos"),
    ("/documents/quotes", "Cotizaciones"),
    ("/reports", "Reportes"),
    ("/documents/minutes", "Minutas"),
    ("/documents/client-meetings", "Reuniones"),
    ("/notes", "Notas"),
    ("/finanzas", "Finanzas"),
    ("/weather", "Clima"),
    ("/users", "Usuarios"),
]

ENTITY_ROUTES = {
    "/projects": "proyectos",
    "/expenses": "gastos",
    "/incidents": "incidencias",
    "/documents/surveys": "levantamientos",
    "/documents/quotes": "cotizaciones",
    "/reports": "reportes",
    "/documents/minutes": "minutas",
    "/documents/client-meetings": "reuniones_clientes",
    "/notes": "notas",
}

ENTITY_DESCRIPTIONS = {
    "proyectos": "Proyectos activos y terminados.",
    "gastos": "Gastos de campo por proyecto.",
    "incidencias": "Riesgos y problemas abiertos en obra.",
    "levantamientos": "Visitas técnicas previas a cotizar.",
    "cotizaciones": "Propuestas económicas enviadas a clientes.",
    "reportes": "Reportes de trabajo en campo.",
    "minutas": "Minutas de reuniones internas.",
    "reuniones_clientes": "Registro de reuniones con clientes, acuerdos y seguimiento.",
    "notas": "Notas rápidas por proyecto o tarea.",
    "finanzas_ingresos": "Anticipos, abonos y liquidaciones.",
    "finanzas_gastos_operacion": "Gastos fijos de la empresa.",
    "finanzas_retiros": "Retiros de utilidades.",
}

# Sorting applied after a realtime insert, newest first.
LIVE_SORT_KEYS: Dict[str, Callable[[Dict[str, Any]], Any]] = {
    "gastos": lambda row: str(row.get("fecha") or ""),
}

MONEY_FIELDS = {"monto", "total", "subtotal", "iva", "impacto_costo"}
LINK_LIST_FIELDS = {"ticket_url", "evidencia_fotos", "fotos_url", "url_imagenes"}
LINK_FIELDS = {"pdf_url", "pdf_final_url"}
EXTRA_LABELS = {
    "proyecto_nombre": "Proyecto",
    "total": "Total",
    "autor": "Autor",
    "autor_ultima_actualizacion": "Última edición",
}

APP_CSS = """
:root {
  --ink: #0f172a;
  --muted: #64748b;
  --line: #e2e8f0;
  --panel: #ffffff;
  --canvas: #f1f5f9;
  --brand: #02457a;
  --brand-soft: #dbeafe;
  --ok: #059669;
  --warn: #d97706;
  --bad: #dc2626;
}
* { box-sizing: border-box; }
body { margin: 0; font-family: "Inter", system-ui, sans-serif; background: var(--canvas); color: var(--ink); }
.shell { display: grid; grid-template-columns: 232px 1fr; min-height: 100vh; }
.sidebar { background: #0b1f36; color: #cbd5e1; padding: 20px 14px; display: flex; flex-direction: column; gap: 4px; }
.brand { color: white; font-weight: 800; font-size: 1.2rem; margin: 0 8px 18px; }
.nav-link { color: inherit; text-decoration: none; padding: 8px 10px; border-radius: 8px; font-size: 0.92rem; }
.nav-link:hover { background: rgba(255,255,255,0.07); }
.nav-link.active { background: var(--brand); color: white; }
.nav-foot { margin-top: auto; border-top: 1px solid rgba(255,255,255,0.1); padding-top: 12px; font-size: 0.85rem; }
.page { padding: 28px; display: grid; gap: 20px; align-content: start; min-width: 0; }
.card { background: var(--panel); border: 1px solid var(--line); border-radius: 14px; padding: 18px; min-width: 0; }
.section-head { display: flex; justify-content: space-between; align-items: flex-start; gap: 12px; margin-bottom: 12px; flex-wrap: wrap; }
.section-head h1, .section-head h2 { margin: 0; }
.meta { color: var(--muted); font-size: 0.85rem; }
.error-text { color: var(--bad); font-size: 0.85rem; white-space: pre-wrap; }
.kpis { display: grid; grid-template-columns: repeat(auto-fit, minmax(180px, 1fr)); gap: 14px; }
.kpi-value { font-size: 1.6rem; font-weight: 800; margin-top: 6px; }
.grid-2 { display: grid; grid-template-columns: repeat(auto-fit, minmax(320px, 1fr)); gap: 20px; }
.btn { border: 1px solid var(--line); background: white; border-radius: 8px; padding: 6px 12px; cursor: pointer; font: inherit; font-size: 0.85rem; }
.btn.primary { background: var(--brand); border-color: var(--brand); color: white; }
.btn.danger { color: var(--bad); }
.btn:disabled { opacity: 0.55; cursor: default; }
.actions { display: flex; gap: 6px; flex-wrap: wrap; }
.table-wrap { overflow-x: auto; }
.table { width: 100%; border-collapse: collapse; font-size: 0.88rem; }
.table th { text-align: left; color: var(--muted); font-weight: 600; padding: 8px; border-bottom: 1px solid var(--line); }
.table td { padding: 8px; border-bottom: 1px solid var(--line); vertical-align: top; }
.table tr.totals td { font-weight: 700; background: #f8fafc; }
.num { text-align: right; white-space: nowrap; }
.pill { display: inline-block; padding: 2px 10px; border-radius: 999px; font-size: 0.78rem; font-weight: 600; background: #e2e8f0; }
.pill-success { background: #d1fae5; color: #065f46; }
.pill-info { background: var(--brand-soft); color: #1e40af; }
.pill-warning { background: #fef3c7; color: #92400e; }
.pill-danger { background: #fee2e2; color: #991b1b; }
.pill-muted { background: #f1f5f9; color: #475569; }
.filter { padding: 6px 10px; border: 1px solid var(--line); border-radius: 8px; background: white; font: inherit; font-size: 0.85rem; }
.tabs { display: flex; gap: 6px; flex-wrap: wrap; }
.tab { border: 1px solid var(--line); background: white; border-radius: 999px; padding: 5px 14px; cursor: pointer; font: inherit; font-size: 0.85rem; }
.tab.active { background: var(--ink); color: white; border-color: var(--ink); }
.bar-row { display: grid; grid-template-columns: 160px 1fr 70px; gap: 10px; align-items: center; font-size: 0.85rem; margin: 6px 0; }
.bar-track { background: #e2e8f0; border-radius: 999px; height: 10px; overflow: hidden; }
.bar-fill { height: 100%; background: var(--brand); border-radius: 999px; }
.bar-fill.pill-warning { background: var(--warn); }
.bar-fill.pill-danger { background: var(--bad); }
.bar-fill.pill-success { background: var(--ok); }
.month-chart { display: grid; grid-template-columns: repeat(6, 1fr); gap: 12px; align-items: end; height: 200px; }
.month-col { display: flex; flex-direction: column; justify-content: flex-end; align-items: center; height: 100%; gap: 4px; }
.month-bars { display: flex; gap: 3px; align-items: flex-end; height: 170px; }
.month-bars span { width: 12px; border-radius: 4px 4px 0 0; }
.feed { list-style: none; margin: 0; padding: 0; display: grid; gap: 8px; }
.feed li { display: flex; justify-content: space-between; gap: 12px; font-size: 0.88rem; border-bottom: 1px dashed var(--line); padding-bottom: 6px; }
.kanban { display: grid; grid-template-columns: repeat(4, minmax(200px, 1fr)); gap: 12px; overflow-x: auto; }
.kanban-col { background: #f8fafc; border: 1px solid var(--line); border-radius: 12px; padding: 10px; display: grid; gap: 8px; align-content: start; }
.kanban-card { background: white; border: 1px solid var(--line); border-radius: 10px; padding: 10px; display: grid; gap: 6px; font-size: 0.85rem; }
.gantt { overflow-x: auto; border: 1px solid var(--line); border-radius: 12px; }
.gantt-grid { display: grid; font-size: 0.72rem; }
.gantt-cell { border-right: 1px solid #f1f5f9; text-align: center; padding: 2px 0; }
.gantt-cell.weekend { background: #f8fafc; }
.gantt-cell.today { background: #fee2e2; }
.gantt-label { position: sticky; left: 0; background: white; padding: 4px 8px; white-space: nowrap; overflow: hidden; text-overflow: ellipsis; border-right: 1px solid var(--line); z-index: 1; }
.gantt-bar { height: 12px; border-radius: 6px; align-self: center; background: #93c5fd; }
.gantt-bar.real { background: #1e3a8a; height: 6px; }
.gantt-bar.Completada { background: #6ee7b7; }
.gantt-bar.Revisión { background: #fcd34d; }
.gantt-bar.En.Proceso { background: #60a5fa; }
.modal { position: fixed; inset: 0; background: rgba(15,23,42,0.45); display: flex; justify-content: flex-end; z-index: 10; }
.modal-card { background: white; width: min(560px, 100vw); height: 100vh; overflow-y: auto; padding: 22px; display: grid; gap: 14px; align-content: start; }
.form { display: grid; gap: 12px; }
.field { display: grid; gap: 4px; font-size: 0.85rem; }
.field .label { font-weight: 600; color: #334155; }
.input, .textarea, .select { padding: 8px 10px; border: 1px solid #cbd5e1; border-radius: 8px; font: inherit; width: 100%; }
.textarea { min-height: 84px; resize: vertical; }
.field-error { color: var(--bad); font-size: 0.78rem; }
.items-editor { display: grid; gap: 6px; }
.item-row { display: grid; grid-template-columns: 1fr 70px 100px 100px 32px; gap: 6px; align-items: center; }
.checklist { border: 1px solid var(--line); border-radius: 10px; padding: 10px; display: grid; gap: 6px; }
.check-item { display: flex; gap: 8px; align-items: center; font-size: 0.88rem; }
.check-item.done span { text-decoration: line-through; color: var(--muted); }
.note { border: 1px solid var(--line); border-radius: 8px; margin-bottom: 6px; }
.note-head { display: flex; justify-content: space-between; gap: 8px; width: 100%; padding: 8px 10px; background: none; border: 0; text-align: left; cursor: pointer; }
.note-body { padding: 6px 10px 10px; white-space: pre-wrap; font-size: 0.85rem; }
.weather-days { display: grid; grid-template-columns: repeat(5, 1fr); gap: 10px; }
@media (max-width: 860px) {
  .shell { grid-template-columns: 1fr; }
  .sidebar { flex-direction: row; flex-wrap: wrap; }
  .nav-foot { margin-top: 0; border: 0; padding: 0; }
}
"""


def safe_call(action: Callable[[], Any], default: Any, what: str) -> Any:
    try:
        return action()
    except Exception:
        logger.exception("Failed to load %s", what)
        return default


def quote_status_class(value: Any) -> str:
    key = str(value or "").strip().lower()
    if key == "aprobada":
        return "pill-success"
    if key == "rechazada":
        return "pill-danger"
    if key == "enviada":
        return "pill-info"
    return "pill-muted"


def project_status_class(value: Any) -> str:
    return "pill-success" if str(value or "") == "Completado" else "pill-info"


def pill_class_for(entity: str, field: str, value: Any) -> str | None:
    if entity == "proyectos" and field == "status":
        return project_status_class(value)
    if entity == "tareas" and field == "estatus":
        return scheduling.task_status_class(value)
    if entity == "tareas" and field == "prioridad":
        return scheduling.priority_class(value)
    if entity == "incidencias" and field == "severidad":
        return projects.severity_class(value)
    if entity == "incidencias" and field == "estatus":
        return projects.incident_status_class(value)
    if entity == "cotizaciones" and field == "estatus":
        return quote_status_class(value)
    return None


def column_label(entity: str, name: str) -> str:
    field = records.field_map(entity).get(name)
    return field["label"] if field else EXTRA_LABELS.get(name, name)


def render_cell(entity: str, name: str, row: Dict[str, Any]):
    value = row.get(name)
    pill = pill_class_for(entity, name, value)
    if pill:
        return html.span({"class": f"pill {pill}"}, value or "Pendiente")
    if name in MONEY_FIELDS:
        return "-" if value is None else format_currency(value)
    if name in LINK_LIST_FIELDS:
        links = value or []
        if not links:
            return html.span({"class": "meta"}, "Sin archivos")
        return html.span(
            *[
                html.a({"href": resolve_media_url(link), "target": "_blank", "rel": "noopener", "key": link}, f"#{idx + 1} ")
                for idx, link in enumerate(links)
            ]
        )
    if name in LINK_FIELDS:
        if value:
            return html.a({"href": resolve_media_url(value), "target": "_blank", "rel": "noopener"}, "PDF")
        return html.span({"class": "meta"}, "Sin PDF")
    field = records.field_map(entity).get(name) or {}
    if field.get("input_type") == "date":
        return format_date_medium(value)
    return "" if value is None else str(value)


def use_live_rows(entity: str) -> tuple[Dict[str, Any], Callable[[], None]]:
    """Rows of ``entity`` kept current from the change feed."""

    def load() -> Dict[str, Any]:
        rows, error = records.fetch_all_safe(entity)
        return {"rows": rows, "error": error}

    state, set_state = hooks.use_state(load)

    def reload() -> None:
        set_state(load())

    @hooks.use_effect(dependencies=[entity])
    async def follow_changes():
        queue, unsubscribe = subscribe_queue(get_change_feed(), entity, asyncio.get_running_loop())
        try:
            while True:
                change = await queue.get()
                fresh = None
                if change.type != "DELETE":
                    fresh = safe_call(lambda: records.fetch_row(entity, change.row_id), None, entity)
                set_state(
                    lambda prev, change=change, fresh=fresh: {
                        **prev,
                        "rows": patch_rows(prev["rows"], change, lambda _id: fresh, LIVE_SORT_KEYS.get(entity)),
                    }
                )
        finally:
            unsubscribe()

    return state, reload


def use_change_refresh(tables: List[str], reload: Callable[[], None], filter: str | None = None) -> None:
    """Call ``reload`` whenever any of ``tables`` changes."""

    @hooks.use_effect(dependencies=[",".join(tables), filter])
    async def follow_changes():
        queue, unsubscribe = subscribe_many(get_change_feed(), tables, asyncio.get_running_loop(), filter=filter)
        try:
            while True:
                await queue.get()
                reload()
        finally:
            unsubscribe()


def use_busy() -> tuple[bool, Callable[[Callable[[], None]], str]]:
    """Guard against double submits; returns the busy flag and a runner."""
    is_busy, set_is_busy = hooks.use_state(False)
    busy_ref = hooks.use_ref(False)

    def run_mutation(action: Callable[[], None]) -> str:
        if busy_ref.current:
            return ""
        busy_ref.current = True
        set_is_busy(True)
        try:
            action()
        except (ValidationError, ProjectCompletionError, SupabaseAuthError, ValueError) as exc:
            return str(exc)
        except Exception as exc:
            logger.exception("Mutation failed")
            return f"Error: {exc}"
        finally:
            busy_ref.current = False
            set_is_busy(False)
        return ""

    return is_busy, run_mutation


def project_filter_select(value: str, options: List[Dict[str, Any]], on_change: Callable[[str], None], allow_none: bool = False):
    return html.select(
        {"class": "filter", "value": value, "on_change": lambda event: on_change(event["target"]["value"])},
        html.option({"value": PROJECT_FILTER_ALL}, "Todos los proyectos"),
        *([html.option({"value": PROJECT_FILTER_NONE}, "Sin proyecto")] if allow_none else []),
        *[html.option({"value": str(option["id"]), "key": option["id"]}, option["nombre"]) for option in options],
    )


def bar(label: str, percent: float, caption: str, status_class: str = "", key: Any = None):
    width = max(0.0, min(100.0, percent))
    return html.div(
        {"class": "bar-row", "key": key if key is not None else label},
        html.span(label),
        html.div({"class": "bar-track"}, html.div({"class": f"bar-fill {status_class}", "style": {"width": f"{width:.0f}%"}})),
        html.span({"class": "num"}, caption),
    )


@component
def QuoteItemsEditor(items: List[Dict[str, Any]], requiere_factura: bool, on_change: Callable[[List[Dict[str, Any]]], None], disabled: bool):
    totals = finance.quote_totals(items, requiere_factura)

    def set_item(index: int, name: str, value: Any) -> None:
        updated = [dict(item) for item in items]
        updated[index][name] = value
        on_change(updated)

    def remove_item(index: int) -> None:
        on_change([item for idx, item in enumerate(items) if idx != index])

    return html.div(
        {"class": "items-editor"},
        *[
            html.div(
                {"class": "item-row", "key": idx},
                html.input({"class": "input", "value": item.get("descripcion", ""), "placeholder": "Descripción", "disabled": disabled,
                            "on_change": lambda event, idx=idx: set_item(idx, "descripcion", event["target"]["value"])}),
                html.input({"class": "input", "type": "number", "min": 1, "value": item.get("cantidad", 1), "disabled": disabled,
                            "on_change": lambda event, idx=idx: set_item(idx, "cantidad", event["target"]["value"])}),
                html.input({"class": "input", "type": "number", "min": 0, "step": "0.01", "value": item.get("precio", 0), "disabled": disabled,
                            "on_change": lambda event, idx=idx: set_item(idx, "precio", event["target"]["value"])}),
                html.span({"class": "num"}, format_currency(totals["items"][idx]["importe"])),
                html.button({"class": "btn danger", "type": "button", "disabled": disabled, "on_click": lambda event, idx=idx: remove_item(idx)}, "×"),
            )
            for idx, item in enumerate(items)
        ],
        html.div(
            {"class": "actions"},
            html.button(
                {"class": "btn", "type": "button", "disabled": disabled,
                 "on_click": lambda event: on_change(list(items) + [{"descripcion": "", "cantidad": 1, "precio": 0}])},
                "Agregar partida",
            ),
        ),
        html.div({"class": "meta"}, f"Subtotal {format_currency(totals['subtotal'])} · IVA {format_currency(totals['iva'])} · Total {format_currency(totals['total'])}"),
    )


def initial_form_values(entity: str, item: Dict[str, Any] | None, duplicate: bool) -> Dict[str, Any]:
    if item is None:
        values = records.default_values_for(entity)
    elif duplicate:
        values = records.duplicate_values(entity, item)
    else:
        values = {field["name"]: item.get(field["name"]) for field in ENTITY_DEFS[entity]["fields"]}
    for field in ENTITY_DEFS[entity]["fields"]:
        name = field["name"]
        value = values.get(name)
        if field["input_type"] == "list":
            values[name] = "\n".join(value or []) if isinstance(value, list) else (value or "")
        elif field["input_type"] == "json":
            values[name] = (value or {}).get("lista_productos", []) if isinstance(value, dict) else (value or [])
        elif field["input_type"] == "bool":
            values[name] = bool(value) and str(value).lower() not in {"0", "false"}
        elif value is None:
            values[name] = ""
        else:
            values[name] = str(value)[:10] if field["input_type"] == "date" else str(value)
    if entity == "incidencias":
        values["_tareas"] = projects.incident_task_ids(int(item["id"])) if item and not duplicate else []
    return values


@component
def EntityForm(entity: str, item: Dict[str, Any] | None, duplicate: bool, on_close: Callable[[], None]):
    definition = ENTITY_DEFS[entity]
    values, set_values = hooks.use_state(lambda: initial_form_values(entity, item, duplicate))
    errors, set_errors = hooks.use_state({})
    message, set_message = hooks.use_state("")
    project_options = hooks.use_state(lambda: safe_call(records.fetch_project_options, [], "projects"))[0]
    task_options = hooks.use_state(lambda: safe_call(records.fetch_task_options, [], "tasks"))[0]
    is_busy, run_mutation = use_busy()
    editing = item is not None and not duplicate

    def set_field(name: str, value: Any) -> None:
        set_values(lambda prev: {**prev, name: value})

    def toggle_task(task_id: int) -> None:
        current = list(values.get("_tareas") or [])
        set_field("_tareas", [tid for tid in current if tid != task_id] if task_id in current else current + [task_id])

    def commit() -> None:
        payload = {key: value for key, value in values.items() if not key.startswith("_")}
        if entity == "cotizaciones":
            payload["items_json"] = {"lista_productos": payload.get("items_json") or []}
        author = (auth.current_user() or {}).get("full_name")
        if editing:
            item_id = int(item["id"])
            records.update_entity(entity, item_id, payload, author=author)
        else:
            item_id = records.insert_entity(entity, payload, author=author)
        if entity == "incidencias":
            projects.link_incident_tasks(item_id, values.get("_tareas") or [])

    def handle_save(event: Dict[str, Any] | None = None) -> None:
        set_errors({})
        try:
            records.prepare_payload(entity, {k: v for k, v in values.items() if k not in {"items_json"} and not k.startswith("_")}, partial=editing)
        except ValidationError as exc:
            set_errors(exc.errors)
            return
        error = run_mutation(commit)
        if error:
            set_message(error)
            return
        on_close()

    def render_field(field: Dict[str, Any]):
        name = field["name"]
        label = field["label"] + (" *" if field.get("required") else "")
        value = values.get(name, "")
        input_type = field["input_type"]
        on_value = lambda event, name=name: set_field(name, event["target"]["value"])
        if input_type == "json":
            control = QuoteItemsEditor(value or [], bool(values.get("requiere_factura")), lambda items: set_field(name, items), is_busy)
        elif input_type == "bool":
            control = html.input({"type": "checkbox", "checked": bool(value), "disabled": is_busy,
                                  "on_change": lambda event, name=name: set_field(name, bool(event["target"]["checked"]))})
        elif input_type in {"select", "project", "task"}:
            if input_type == "select":
                options = [(option, option) for option in field["options"]]
            elif input_type == "project":
                options = [("", "Sin proyecto")] + [(str(row["id"]), row["nombre"]) for row in project_options]
            else:
                options = [("", "Sin tarea")] + [(str(row["id"]), row["titulo"]) for row in task_options]
            control = html.select(
                {"class": "select", "value": value, "disabled": is_busy, "on_change": on_value},
                *[html.option({"value": opt_value, "key": opt_value}, opt_label) for opt_value, opt_label in options],
            )
        elif field.get("widget") == "textarea" or input_type == "list":
            control = html.textarea({"class": "textarea", "value": value, "disabled": is_busy, "on_change": on_value})
        else:
            attrs = {"class": "input", "type": {"number": "number", "date": "date"}.get(input_type, "text"),
                     "value": value, "disabled": is_busy, "on_change": on_value}
            if field.get("step"):
                attrs["step"] = field["step"]
            control = html.input(attrs)
        return html.label(
            {"class": "field", "key": name},
            html.span({"class": "label"}, label),
            control,
            *([html.span({"class": "field-error"}, errors[name])] if errors.get(name) else []),
        )

    linked_tasks = None
    if entity == "incidencias":
        project_id = str(values.get("proyecto_id") or "")
        candidates = [task for task in task_options if not project_id or str(task.get("proyecto_id")) == project_id]
        linked_tasks = html.div(
            {"class": "field"},
            html.span({"class": "label"}, "Tareas relacionadas"),
            *[
                html.label(
                    {"class": "check-item", "key": task["id"]},
                    html.input({"type": "checkbox", "checked": task["id"] in (values.get("_tareas") or []),
                                "on_change": lambda event, tid=task["id"]: toggle_task(tid)}),
                    html.span(task["titulo"]),
                )
                for task in candidates
            ],
        )

    title = ("Editar " if editing else "Nuevo: ") + definition["label"]
    return html.div(
        {"class": "modal"},
        html.div(
            {"class": "modal-card"},
            html.div(
                {"class": "section-head"},
                html.h2(title),
                html.button({"class": "btn", "type": "button", "disabled": is_busy, "on_click": lambda event: on_close()}, "Cerrar"),
            ),
            *([html.div({"class": "error-text"}, message)] if message else []),
            html.div(
                {"class": "form"},
                *[render_field(field) for field in definition["fields"]],
                *([linked_tasks] if linked_tasks else []),
                html.div(
                    {"class": "actions"},
                    html.button({"class": "btn", "type": "button", "disabled": is_busy, "on_click": lambda event: on_close()}, "Cancelar"),
                    html.button({"class": "btn primary", "type": "button", "disabled": is_busy, "on_click": handle_save}, "Guardar"),
                ),
            ),
        ),
    )


@component
def CloseIncidentForm(incident: Dict[str, Any], on_close: Callable[[], None]):
    solution, set_solution = hooks.use_state(incident.get("solucion_final") or "")
    closed_on, set_closed_on = hooks.use_state(date.today().isoformat())
    message, set_message = hooks.use_state("")
    is_busy, run_mutation = use_busy()

    def handle_close(event: Dict[str, Any]) -> None:
        error = run_mutation(lambda: projects.close_incident(int(incident["id"]), solution, closed_on))
        if error:
            set_message(error)
            return
        on_close()

    return html.div(
        {"class": "modal"},
        html.div(
            {"class": "modal-card"},
            html.h2(f"Cerrar incidencia: {incident.get('titulo') or ''}"),
            *([html.div({"class": "error-text"}, message)] if message else []),
            html.label(
                {"class": "field"},
                html.span({"class": "label"}, "Solución final *"),
                html.textarea({"class": "textarea", "value": solution, "on_change": lambda event: set_solution(event["target"]["value"])}),
            ),
            html.label(
                {"class": "field"},
                html.span({"class": "label"}, "Fecha de cierre *"),
                html.input({"class": "input", "type": "date", "value": closed_on, "on_change": lambda event: set_closed_on(event["target"]["value"])}),
            ),
            html.div(
                {"class": "actions"},
                html.button({"class": "btn", "disabled": is_busy, "on_click": lambda event: on_close()}, "Cancelar"),
                html.button({"class": "btn primary", "disabled": is_busy, "on_click": handle_close}, "Marcar como Resuelta"),
            ),
        ),
    )


@component
def BudgetComparison(project_id: int):
    data, set_data = hooks.use_state(lambda: safe_call(lambda: finance.fetch_budget_comparison(project_id), None, "budget comparison"))

    def reload() -> None:
        set_data(safe_call(lambda: finance.fetch_budget_comparison(project_id), None, "budget comparison"))

    use_change_refresh(["gastos"], reload, filter=f"proyecto_id=eq.{project_id}")

    if data is None:
        return html.div({"class": "error-text"}, "No se pudo cargar la comparación de presupuesto.")
    budget = data.get("presupuesto")
    return html.section(
        {"class": "card"},
        html.div(
            {"class": "section-head"},
            html.div(
                html.h2("Presupuesto vs. gasto real"),
                html.div({"class": "meta"}, budget["nombre"] if budget else "Sin presupuesto registrado"),
            ),
            html.div({"class": "meta"}, f"{format_currency(data['total_gastado'])} de {format_currency(data['total_presupuestado'])}"),
        ),
        *[
            bar(
                row["categoria"],
                row["porcentaje"],
                format_percent(row["porcentaje"]),
                "pill-danger" if row["porcentaje"] > 100 else ("pill-warning" if row["porcentaje"] >= 80 else "pill-success"),
                key=row["categoria"],
            )
            for row in data["rows"]
        ],
        html.div(
            {"class": "table-wrap"},
            html.table(
                {"class": "table"},
                html.thead(html.tr(html.th("Categoría"), html.th("Presupuestado"), html.th("Gastado"), html.th("Variación"), html.th("%"))),
                html.tbody(
                    *[
                        html.tr(
                            {"key": row["categoria"]},
                            html.td(row["categoria"]),
                            html.td({"class": "num"}, format_currency(row["presupuestado"])),
                            html.td({"class": "num"}, format_currency(row["gastado"])),
                            html.td({"class": "num"}, format_currency(row["variacion"])),
                            html.td({"class": "num"}, format_percent(row["porcentaje"])),
                        )
                        for row in data["rows"]
                    ],
                    html.tr(
                        {"class": "totals"},
                        html.td("Total"),
                        html.td({"class": "num"}, format_currency(data["total_presupuestado"])),
                        html.td({"class": "num"}, format_currency(data["total_gastado"])),
                        html.td({"class": "num"}, format_currency(data["total_variacion"])),
                        html.td({"class": "num"}, format_percent(data["total_porcentaje"])),
                    ),
                ),
            ),
        ),
    )


@component
def EntityView(entity: str):
    definition = ENTITY_DEFS[entity]
    live, reload = use_live_rows(entity)
    project_options = hooks.use_state(lambda: safe_call(records.fetch_project_options, [], "projects"))[0]
    project_filter, set_project_filter = hooks.use_state(PROJECT_FILTER_ALL)
    form, set_form = hooks.use_state({"open": False})
    closing, set_closing = hooks.use_state(None)
    message, set_message = hooks.use_state("")
    is_busy, run_mutation = use_busy()

    def open_form(item: Dict[str, Any] | None = None, duplicate: bool = False) -> None:
        set_form({"open": True, "item": item, "duplicate": duplicate, "nonce": id(item) + int(duplicate)})

    def close_form() -> None:
        set_form({"open": False})
        reload()

    def handle_delete(row: Dict[str, Any]) -> None:
        set_message(run_mutation(lambda: records.delete_entity(entity, int(row["id"]))))
        reload()

    source_rows = live["rows"]
    rows = records.filter_rows_by_project(source_rows, project_filter)
    columns = definition["columns"]

    def row_actions(row: Dict[str, Any]):
        buttons = [
            html.button({"class": "btn", "disabled": is_busy, "on_click": lambda event, row=row: open_form(row)}, "Editar"),
        ]
        if entity == "proyectos":
            buttons.insert(0, html.a({"class": "btn", "href": f"/projects/{row['id']}"}, "Ver"))
        if entity in {"cotizaciones", "levantamientos"}:
            buttons.append(html.button({"class": "btn", "disabled": is_busy, "on_click": lambda event, row=row: open_form(row, True)}, "Duplicar"))
        if entity == "incidencias" and row.get("estatus") != "Resuelta":
            buttons.append(html.button({"class": "btn", "disabled": is_busy, "on_click": lambda event, row=row: set_closing(row)}, "Cerrar"))
        buttons.append(html.button({"class": "btn danger", "disabled": is_busy, "on_click": lambda event, row=row: handle_delete(row)}, "Eliminar"))
        return html.div({"class": "actions"}, *buttons)

    extras = []
    if entity == "gastos":
        total = sum(to_number(row.get("monto")) for row in rows)
        recent = rows[:3]
        extras.append(
            html.div(
                {"class": "kpis"},
                html.div({"class": "card"}, html.div({"class": "meta"}, "Total filtrado"), html.div({"class": "kpi-value"}, format_currency(total))),
                html.div(
                    {"class": "card"},
                    html.div({"class": "meta"}, "Gastos recientes"),
                    html.ul(
                        {"class": "feed"},
                        *[
                            html.li({"key": row["id"]}, html.span(row.get("concepto") or ""), html.span(format_currency(row.get("monto"))))
                            for row in recent
                        ],
                    ),
                ),
            )
        )
        if project_filter not in {PROJECT_FILTER_ALL, PROJECT_FILTER_NONE}:
            extras.append(BudgetComparison(int(project_filter), key=f"comparison-{project_filter}"))

    table = (
        html.div(
            {"class": "table-wrap"},
            html.table(
                {"class": "table"},
                html.thead(html.tr(*[html.th(column_label(entity, name)) for name in columns], html.th("Acciones"))),
                html.tbody(
                    *[
                        html.tr(
                            {"key": row.get("id", idx)},
                            *[html.td(render_cell(entity, name, row)) for name in columns],
                            html.td(row_actions(row)),
                        )
                        for idx, row in enumerate(rows)
                    ]
                ),
            ),
        )
        if rows
        else html.div({"class": "meta"}, "Sin registros para este filtro." if source_rows else "Sin registros todavía.")
    )

    return html.div(
        {"class": "page-body"},
        html.section(
            {"class": "card"},
            html.div(
                {"class": "section-head"},
                html.div(
                    html.h1(definition["title"]),
                    html.div({"class": "meta"}, ENTITY_DESCRIPTIONS.get(entity, "")),
                ),
                html.div(
                    {"class": "actions"},
                    *(
                        [project_filter_select(project_filter, project_options, set_project_filter, allow_none=entity == "notas")]
                        if "proyecto_id" in records.field_map(entity)
                        else []
                    ),
                    html.button({"class": "btn primary", "disabled": is_busy, "on_click": lambda event: open_form()}, f"Nuevo: {definition['label']}"),
                ),
            ),
            *([html.div({"class": "error-text"}, live["error"])] if live["error"] else []),
            *([html.div({"class": "error-text"}, message)] if message else []),
            html.div({"class": "meta"}, f"Mostrando {len(rows)} de {len(source_rows)} registros."),
            table,
        ),
        *extras,
        *([EntityForm(entity, form.get("item"), bool(form.get("duplicate")), close_form, key=str(form.get("nonce")))] if form.get("open") else []),
        *([CloseIncidentForm(closing, lambda: (set_closing(None), reload()), key=f"close-{closing['id']}")] if closing else []),
    )


@component
def BudgetEditor(project_id: int):
    versions, set_versions = hooks.use_state(lambda: safe_call(lambda: finance.fetch_budget_versions(project_id), [], "budgets"))
    selected_id, set_selected_id = hooks.use_state(lambda: versions[0]["id"] if versions else None)
    budget, set_budget = hooks.use_state(lambda: safe_call(lambda: finance.fetch_budget(selected_id), None, "budget") if selected_id else None)
    new_category, set_new_category = hooks.use_state("")
    message, set_message = hooks.use_state("")
    is_busy, run_mutation = use_busy()

    def reload(budget_id: int | None = None) -> None:
        budget_id = budget_id or selected_id
        set_versions(safe_call(lambda: finance.fetch_budget_versions(project_id), [], "budgets"))
        set_budget(safe_call(lambda: finance.fetch_budget(budget_id), None, "budget") if budget_id else None)

    def select_version(value: str) -> None:
        set_selected_id(int(value))
        reload(int(value))

    def create_version(event: Dict[str, Any]) -> None:
        created: Dict[str, int] = {}

        def action() -> None:
            created["id"] = finance.create_budget_version(project_id)

        set_message(run_mutation(action))
        if created.get("id"):
            set_selected_id(created["id"])
            reload(created["id"])

    def mutate(action: Callable[[], None]) -> None:
        set_message(run_mutation(action))
        reload()

    def item_input(item: Dict[str, Any], name: str, kind: str = "number"):
        return html.input(
            {
                "class": "input",
                "type": kind,
                "default_value": str(item.get(name) if item.get(name) is not None else ""),
                "disabled": is_busy,
                "on_blur": lambda event, item_id=item["id"], name=name: mutate(
                    lambda: finance.update_budget_item(item_id, {name: event["target"]["value"]})
                ),
            }
        )

    summary = (budget or {}).get("resumen") or {}
    return html.section(
        {"class": "card"},
        html.div(
            {"class": "section-head"},
            html.h2("Presupuesto"),
            html.div(
                {"class": "actions"},
                *(
                    [
                        html.select(
                            {"class": "filter", "value": str(selected_id or ""), "on_change": lambda event: select_version(event["target"]["value"])},
                            *[html.option({"value": str(row["id"]), "key": row["id"]}, row.get("nombre") or f"Versión {row['version']}") for row in versions],
                        )
                    ]
                    if versions
                    else []
                ),
                html.button({"class": "btn primary", "disabled": is_busy, "on_click": create_version}, "Nueva versión"),
            ),
        ),
        *([html.div({"class": "error-text"}, message)] if message else []),
        *(
            [html.div({"class": "meta"}, "Este proyecto no tiene presupuesto todavía.")]
            if budget is None
            else [
                html.div(
                    {"class": "actions"},
                    html.label(
                        {"class": "field"},
                        html.span({"class": "label"}, "Indirectos %"),
                        html.input(
                            {
                                "class": "input",
                                "type": "number",
                                "default_value": str(budget.get("indirectos_porcentaje") or 0),
                                "on_blur": lambda event: mutate(
                                    lambda: finance.update_budget_settings(budget["id"], event["target"]["value"], budget.get("iva_porcentaje"))
                                ),
                            }
                        ),
                    ),
                    html.button({"class": "btn", "disabled": is_busy, "on_click": lambda event: mutate(lambda: finance.save_budget_totals(budget["id"]))}, "Guardar totales"),
                ),
                *[
                    html.div(
                        {"key": category["id"]},
                        html.div(
                            {"class": "section-head"},
                            html.h3(f"{category['nombre']} · {format_currency(category['subtotal'])}"),
                            html.div(
                                {"class": "actions"},
                                html.button({"class": "btn", "disabled": is_busy, "on_click": lambda event, cid=category["id"]: mutate(lambda: finance.add_budget_item(cid))}, "Agregar concepto"),
                                html.button({"class": "btn danger", "disabled": is_busy, "on_click": lambda event, cid=category["id"]: mutate(lambda: finance.delete_budget_category(cid))}, "Eliminar"),
                            ),
                        ),
                        html.table(
                            {"class": "table"},
                            html.thead(html.tr(html.th("Concepto"), html.th("Unidad"), html.th("Cantidad"), html.th("Costo unit."), html.th("Venta unit."), html.th("Importe"), html.th(""))),
                            html.tbody(
                                *[
                                    html.tr(
                                        {"key": item["id"]},
                                        html.td(item_input(item, "concepto", "text")),
                                        html.td(item_input(item, "unidad", "text")),
                                        html.td(item_input(item, "cantidad")),
                                        html.td(item_input(item, "costo_unitario")),
                                        html.td(item_input(item, "prec_venta_unitario")),
                                        html.td({"class": "num"}, format_currency(to_number(item.get("cantidad")) * to_number(item.get("prec_venta_unitario")))),
                                        html.td(html.button({"class": "btn danger", "disabled": is_busy, "on_click": lambda event, iid=item["id"]: mutate(lambda: finance.delete_budget_item(iid))}, "×")),
                                    )
                                    for item in category["items"]
                                ]
                            ),
                        ),
                    )
                    for category in budget["categorias"]
                ],
                html.div(
                    {"class": "actions"},
                    html.input({"class": "input", "value": new_category, "placeholder": "Nueva categoría", "on_change": lambda event: set_new_category(event["target"]["value"])}),
                    html.button(
                        {"class": "btn", "disabled": is_busy, "on_click": lambda event: (mutate(lambda: finance.add_budget_category(budget["id"], new_category)), set_new_category(""))},
                        "Agregar categoría",
                    ),
                ),
                html.table(
                    {"class": "table"},
                    html.tbody(
                        *[
                            html.tr({"key": label}, html.td(label), html.td({"class": "num"}, value))
                            for label, value in [
                                ("Costo directo", format_currency(summary.get("costo_directo"))),
                                ("Venta directa", format_currency(summary.get("venta_directa"))),
                                ("Indirectos", format_currency(summary.get("indirectos"))),
                                ("Subtotal", format_currency(summary.get("subtotal"))),
                                ("IVA", format_currency(summary.get("iva"))),
                                ("Total", format_currency(summary.get("total"))),
                                ("Margen", f"{format_currency(summary.get('margen'))} ({format_percent(summary.get('margen_porcentaje'), 1)})"),
                            ]
                        ]
                    ),
                ),
            ]
        ),
    )


@component
def ProjectDetailView(project_id: int):
    details, set_details = hooks.use_state(lambda: projects.fetch_project_details(project_id))
    message, set_message = hooks.use_state("")
    is_busy, run_mutation = use_busy()

    def reload() -> None:
        set_details(projects.fetch_project_details(project_id))

    use_change_refresh(list(projects.DETAIL_SECTIONS), reload, filter=f"proyecto_id=eq.{project_id}")

    project = details["project"]
    if project is None:
        return html.section({"class": "card"}, html.h1("Proyecto no encontrado"), html.a({"href": "/projects"}, "Volver a proyectos"))

    next_status = "Activo" if project.get("status") == "Completado" else "Completado"

    def toggle_status(event: Dict[str, Any]) -> None:
        set_message(run_mutation(lambda: projects.set_project_status(project_id, next_status)))
        reload()

    section_titles = {
        "tareas": ("titulo", "estatus"),
        "incidencias": ("titulo", "severidad"),
        "levantamientos": ("folio", "estatus"),
        "cotizaciones": ("folio", "estatus"),
        "reportes": ("resumen_titulo", "fecha_reporte"),
        "minutas": ("titulo", "fecha"),
        "reuniones_clientes": ("titulo", "fecha"),
    }

    return html.div(
        {"class": "page-body"},
        html.section(
            {"class": "card"},
            html.div(
                {"class": "section-head"},
                html.div(
                    html.div({"class": "meta"}, html.a({"href": "/projects"}, "← Proyectos")),
                    html.h1(project.get("nombre") or "Proyecto"),
                    html.div(
                        {"class": "meta"},
                        f"Cliente: {project.get('cliente') or '-'} · Solicitante: {project.get('solicitante') or '-'} · "
                        f"Ubicación: {project.get('ubicacion') or '-'} · Inicio: {format_date_long(project.get('fecha_inicio'))}",
                    ),
                ),
                html.div(
                    {"class": "actions"},
                    html.span({"class": f"pill {project_status_class(project.get('status'))}"}, project.get("status") or "Activo"),
                    html.button({"class": "btn", "disabled": is_busy, "on_click": toggle_status}, f"Marcar como {next_status}"),
                ),
            ),
            *([html.div({"class": "error-text"}, message)] if message else []),
        ),
        html.div(
            {"class": "grid-2"},
            *[
                html.section(
                    {"class": "card", "key": key},
                    html.h2(f"{section['label']} ({len(section['rows'])})"),
                    *([html.div({"class": "error-text"}, section["error"])] if section["error"] else []),
                    html.ul(
                        {"class": "feed"},
                        *[
                            html.li(
                                {"key": row.get("id", idx)},
                                html.span(str(row.get(section_titles[key][0]) or "Sin título")),
                                html.span({"class": "meta"}, str(row.get(section_titles[key][1]) or "")),
                            )
                            for idx, row in enumerate(section["rows"])
                        ]
                        if section["rows"]
                        else [html.li(html.span({"class": "meta"}, "Sin registros."))],
                    ),
                )
                for key, section in details["sections"].items()
            ],
        ),
        BudgetEditor(project_id, key=f"budget-{project_id}"),
        BudgetComparison(project_id, key=f"comparison-{project_id}"),
    )


@component
def TaskNotesPanel(task: Dict[str, Any]):
    task_id = int(task["id"])
    state, set_state = hooks.use_state(lambda: {"notes": safe_call(lambda: scheduling.fetch_task_notes(task_id), None, "task notes")})
    expanded, set_expanded = hooks.use_state(None)

    def reload() -> None:
        set_state({"notes": safe_call(lambda: scheduling.fetch_task_notes(task_id), None, "task notes")})

    use_change_refresh(["notas"], reload, filter=f"tarea_id=eq.{task_id}")

    notes = state["notes"]
    if notes is None:
        body = [html.div({"class": "error-text"}, "No se pudieron cargar las notas.")]
    elif not notes:
        body = [html.div({"class": "meta"}, "No hay notas asociadas a esta tarea.")]
    else:
        body = [
            html.div(
                {"class": "note", "key": note["id"]},
                html.button(
                    {
                        "class": "note-head",
                        "on_click": lambda event, nid=note["id"]: set_expanded(None if expanded == nid else nid),
                    },
                    html.strong(note.get("titulo") or ""),
                    html.span(
                        {"class": "meta"},
                        f"{format_date_long(note.get('fecha'))} · {note.get('autor') or ''}",
                        f" · {len(note['url_imagenes'])} imágenes" if note.get("url_imagenes") else "",
                    ),
                ),
                *(
                    [
                        html.div({"class": "note-body"}, note.get("contenido") or ""),
                        render_cell("notas", "url_imagenes", note),
                    ]
                    if expanded == note["id"]
                    else []
                ),
            )
            for note in notes
        ]
    return html.section(
        {"class": "card"},
        html.h2(f"Notas Asociadas ({len(notes or [])})"),
        *body,
    )


@component
def ChecklistPanel(task: Dict[str, Any]):
    task_id = int(task["id"])
    checklists, set_checklists = hooks.use_state(lambda: safe_call(lambda: scheduling.fetch_checklists(task_id), [], "checklists"))
    new_list, set_new_list = hooks.use_state("")
    new_items, set_new_items = hooks.use_state({})
    message, set_message = hooks.use_state("")
    is_busy, run_mutation = use_busy()

    def reload() -> None:
        set_checklists(safe_call(lambda: scheduling.fetch_checklists(task_id), [], "checklists"))

    use_change_refresh(["tarea_checklists", "tarea_checklist_items"], reload)

    def mutate(action: Callable[[], None]) -> None:
        set_message(run_mutation(action))
        reload()

    return html.section(
        {"class": "card"},
        html.h2(f"Checklists · {task.get('titulo') or ''}"),
        *([html.div({"class": "error-text"}, message)] if message else []),
        *[
            html.div(
                {"class": "checklist", "key": checklist["id"]},
                html.div(
                    {"class": "section-head"},
                    html.strong(checklist["nombre"]),
                    html.span({"class": "meta"}, f"{checklist['progress']}%"),
                    html.button({"class": "btn danger", "disabled": is_busy, "on_click": lambda event, cid=checklist["id"]: mutate(lambda: scheduling.delete_checklist(cid))}, "Eliminar lista"),
                ),
                bar("Avance", checklist["progress"], f"{checklist['progress']}%", "pill-success"),
                *[
                    html.div(
                        {"class": f"check-item {'done' if item.get('completado') else ''}", "key": item["id"]},
                        html.input(
                            {
                                "type": "checkbox",
                                "checked": bool(item.get("completado")),
                                "disabled": is_busy,
                                "on_change": lambda event, item=item: mutate(lambda: scheduling.toggle_checklist_item(item["id"], not item.get("completado"))),
                            }
                        ),
                        html.span(item.get("texto") or ""),
                        html.button({"class": "btn danger", "disabled": is_busy, "on_click": lambda event, iid=item["id"]: mutate(lambda: scheduling.delete_checklist_item(iid))}, "×"),
                    )
                    for item in checklist["items"]
                ],
                html.div(
                    {"class": "actions"},
                    html.input(
                        {
                            "class": "input",
                            "placeholder": "Nuevo elemento",
                            "value": new_items.get(checklist["id"], ""),
                            "on_change": lambda event, cid=checklist["id"]: set_new_items(lambda prev: {**prev, cid: event["target"]["value"]}),
                        }
                    ),
                    html.button(
                        {
                            "class": "btn",
                            "disabled": is_busy,
                            "on_click": lambda event, cid=checklist["id"]: (
                                mutate(lambda: scheduling.add_checklist_item(cid, new_items.get(cid, ""))),
                                set_new_items(lambda prev: {**prev, cid: ""}),
                            ),
                        },
                        "Agregar",
                    ),
                ),
            )
            for checklist in checklists
        ],
        html.div(
            {"class": "actions"},
            html.input({"class": "input", "placeholder": "Nueva lista", "value": new_list, "on_change": lambda event: set_new_list(event["target"]["value"])}),
            html.button(
                {"class": "btn primary", "disabled": is_busy, "on_click": lambda event: (mutate(lambda: scheduling.create_checklist(task_id, new_list)), set_new_list(""))},
                "Crear lista",
            ),
        ),
    )


def render_gantt(tasks: List[Dict[str, Any]]):
    gantt = scheduling.build_gantt(tasks)
    total_days = gantt["total_days"]
    template = f"220px repeat({total_days}, 28px)"

    def grid(*children, key: str):
        return html.div({"class": "gantt-grid", "style": {"gridTemplateColumns": template}, "key": key}, *children)

    def bar_cell(span: Dict[str, int] | None, css: str):
        if span is None:
            return html.div({"style": {"gridColumn": f"2 / span {total_days}"}})
        return html.div({"class": f"gantt-bar {css}", "style": {"gridColumn": f"{span['offset'] + 2} / span {span['span']}"}})

    return html.div(
        html.div(
            {"class": "gantt"},
            grid(
                html.div({"class": "gantt-label"}, ""),
                *[
                    html.div({"class": "gantt-cell", "style": {"gridColumn": f"{month['offset'] + 2} / span {month['span']}"}, "key": month["label"]}, month["label"])
                    for month in gantt["months"]
                ],
                key="months",
            ),
            grid(
                html.div({"class": "gantt-label"}, "Tarea"),
                *[
                    html.div(
                        {"class": f"gantt-cell {'weekend' if day['weekend'] else ''} {'today' if day['today'] else ''}", "key": idx},
                        html.div(day["letter"]),
                        html.div(str(day["number"])),
                    )
                    for idx, day in enumerate(gantt["days"])
                ],
                key="days",
            ),
            *[
                html.div(
                    {"key": row["task"]["id"]},
                    grid(html.div({"class": "gantt-label"}, row["task"].get("titulo") or ""), bar_cell(row["planned"], row["status"]), key="planned"),
                    grid(html.div({"class": "gantt-label meta"}, "real"), bar_cell(row["real"], "real"), key="real"),
                )
                for row in gantt["rows"]
            ],
        ),
        *(
            [
                html.div(
                    {"class": "meta"},
                    "Sin fechas: " + ", ".join(str(task.get("titulo") or "") for task in gantt["undated"]),
                )
            ]
            if gantt["undated"]
            else []
        ),
    )


@component
def TasksView():
    live, reload = use_live_rows("tareas")
    project_options = hooks.use_state(lambda: safe_call(records.fetch_project_options, [], "projects"))[0]
    project_filter, set_project_filter = hooks.use_state(PROJECT_FILTER_ALL)
    mode, set_mode = hooks.use_state("kanban")
    form, set_form = hooks.use_state({"open": False})
    selected, set_selected = hooks.use_state(None)
    message, set_message = hooks.use_state("")
    is_busy, run_mutation = use_busy()

    tasks = records.filter_rows_by_project(live["rows"], project_filter)
    summary = scheduling.progress_summary(tasks)

    def move(task: Dict[str, Any], step: int) -> None:
        current = task.get("estatus") or scheduling.DEFAULT_STATUS
        index = scheduling.KANBAN_COLUMNS.index(current) if current in scheduling.KANBAN_COLUMNS else 0
        target = scheduling.KANBAN_COLUMNS[max(0, min(len(scheduling.KANBAN_COLUMNS) - 1, index + step))]
        set_message(run_mutation(lambda: records.update_entity("tareas", int(task["id"]), {"estatus": target})))

    def close_form() -> None:
        set_form({"open": False})
        reload()

    def task_buttons(task: Dict[str, Any]):
        return html.div(
            {"class": "actions"},
            html.button({"class": "btn", "disabled": is_busy, "on_click": lambda event, task=task: set_form({"open": True, "item": task})}, "Editar"),
            html.button({"class": "btn", "disabled": is_busy, "on_click": lambda event, task=task: set_selected(task)}, "Checklist"),
            html.button(
                {"class": "btn danger", "disabled": is_busy, "on_click": lambda event, task=task: set_message(run_mutation(lambda: records.delete_entity("tareas", int(task["id"]))))},
                "Eliminar",
            ),
        )

    if mode == "kanban":
        columns = scheduling.group_by_status(tasks)
        body = html.div(
            {"class": "kanban"},
            *[
                html.div(
                    {"class": "kanban-col", "key": status},
                    html.strong(f"{status} ({len(column)})"),
                    *[
                        html.div(
                            {"class": "kanban-card", "key": task["id"]},
                            html.strong(task.get("titulo") or ""),
                            html.div({"class": "meta"}, task.get("proyecto_nombre") or "Sin proyecto"),
                            html.span({"class": f"pill {scheduling.priority_class(task.get('prioridad'))}"}, task.get("prioridad") or "Media"),
                            html.div({"class": "meta"}, f"{format_date_short(task.get('fecha_inicio'))} → {format_date_short(task.get('fecha_fin'))}"),
                            html.div(
                                {"class": "actions"},
                                html.button({"class": "btn", "disabled": is_busy, "on_click": lambda event, task=task: move(task, -1)}, "◀"),
                                html.button({"class": "btn", "disabled": is_busy, "on_click": lambda event, task=task: move(task, 1)}, "▶"),
                            ),
                            task_buttons(task),
                        )
                        for task in column
                    ],
                )
                for status, column in columns.items()
            ],
        )
    elif mode == "gantt":
        body = render_gantt(tasks)
    else:
        columns_list = ENTITY_DEFS["tareas"]["columns"]
        body = html.div(
            {"class": "table-wrap"},
            html.table(
                {"class": "table"},
                html.thead(html.tr(*[html.th(column_label("tareas", name)) for name in columns_list], html.th("Acciones"))),
                html.tbody(
                    *[
                        html.tr({"key": task["id"]}, *[html.td(render_cell("tareas", name, task)) for name in columns_list], html.td(task_buttons(task)))
                        for task in tasks
                    ]
                ),
            ),
        )

    deviation_class = "pill-danger" if summary["deviation_days"] > 0 else ("pill-success" if summary["deviation_days"] < 0 else "pill-muted")
    return html.div(
        {"class": "page-body"},
        html.section(
            {"class": "card"},
            html.div(
                {"class": "section-head"},
                html.div(html.h1("Tareas"), html.div({"class": "meta"}, "Planeación y seguimiento de actividades.")),
                html.div(
                    {"class": "actions"},
                    project_filter_select(project_filter, project_options, set_project_filter),
                    html.div(
                        {"class": "tabs"},
                        *[
                            html.button({"class": f"tab {'active' if mode == key else ''}", "key": key, "on_click": lambda event, key=key: set_mode(key)}, label)
                            for key, label in [("tabla", "Tabla"), ("kanban", "Kanban"), ("gantt", "Gantt")]
                        ],
                    ),
                    html.button({"class": "btn primary", "disabled": is_busy, "on_click": lambda event: set_form({"open": True, "item": None})}, "Nueva tarea"),
                ),
            ),
            *([html.div({"class": "error-text"}, live["error"])] if live["error"] else []),
            *([html.div({"class": "error-text"}, message)] if message else []),
            *(
                [
                    html.div(
                        {"class": "kpis"},
                        html.div(
                            {"class": "card"},
                            html.div({"class": "meta"}, "Progreso general"),
                            html.div({"class": "kpi-value"}, f"{summary['percent']}%"),
                            html.div({"class": "meta"}, f"({summary['completed']} de {summary['total']} tareas)"),
                            bar("", summary["percent"], "", "pill-success" if summary["percent"] == 100 else ""),
                        ),
                        html.div(
                            {"class": "card"},
                            html.div({"class": "meta"}, "Desviación de tiempo"),
                            html.div({"class": "kpi-value"}, html.span({"class": f"pill {deviation_class}"}, summary["deviation_label"])),
                            html.div({"class": "meta"}, summary["deviation_message"]),
                        ),
                        html.div(
                            {"class": "card"},
                            html.div({"class": "meta"}, "Tareas con retraso"),
                            html.div({"class": "kpi-value"}, str(summary["delayed"])),
                        ),
                    )
                ]
                if tasks
                else []
            ),
        ),
        html.section({"class": "card"}, body),
        *([ChecklistPanel(selected, key=f"checklist-{selected['id']}"), TaskNotesPanel(selected, key=f"notes-{selected['id']}")] if selected else []),
        *([EntityForm("tareas", form.get("item"), False, close_form, key=str(id(form.get("item"))))] if form.get("open") else []),
    )


@component
def DashboardView():
    data, set_data = hooks.use_state(dashboard.load_dashboard_data_safe)

    def refresh() -> None:
        set_data(dashboard.load_dashboard_data_safe())

    use_change_refresh(["proyectos", "tareas", "gastos", "incidencias", "reportes", "levantamientos", "cotizaciones"], refresh)

    if data.get("error"):
        return html.section(
            {"class": "card"},
            html.h1("Dashboard no disponible"),
            html.div({"class": "meta"}, "La aplicación inició, pero no se pudieron cargar los datos. Revisa DATABASE_URL y la conexión."),
            html.pre({"class": "error-text"}, data.get("error") or "Error desconocido"),
            html.button({"class": "btn primary", "on_click": lambda event: refresh()}, "Reintentar"),
        )

    kpis = data["kpis"]
    weather = data.get("weather")
    return html.div(
        {"class": "page-body"},
        html.div(
            {"class": "section-head"},
            html.div(html.h1("Dashboard"), html.div({"class": "meta"}, f"Actualizado {data['updated']}")),
        ),
        html.div(
            {"class": "kpis"},
            html.div({"class": "card"}, html.div({"class": "meta"}, "Proyectos activos"), html.div({"class": "kpi-value"}, str(kpis["active_projects"]))),
            html.div({"class": "card"}, html.div({"class": "meta"}, "Incidencias críticas"), html.div({"class": "kpi-value"}, str(kpis["critical_incidents"]))),
            html.div({"class": "card"}, html.div({"class": "meta"}, "Gastos del mes"), html.div({"class": "kpi-value"}, format_currency(kpis["month_expenses"], 0))),
            html.div(
                {"class": "card"},
                html.div({"class": "meta"}, f"Clima · {weather['location']}" if weather else "Clima"),
                html.div({"class": "kpi-value"}, f"{weather['temperature']}°C" if weather else "--"),
                html.div({"class": "meta"}, weather["label"] if weather else "No disponible"),
            ),
        ),
        html.div(
            {"class": "grid-2"},
            html.section(
                {"class": "card"},
                html.h2("Actividad reciente"),
                html.ul(
                    {"class": "feed"},
                    *[
                        html.li({"key": f"{entry['kind']}-{entry['id']}"}, html.span(entry["title"]), html.span({"class": "meta"}, format_date_medium(entry["date"])))
                        for entry in data["activity"]
                    ]
                    if data["activity"]
                    else [html.li(html.span({"class": "meta"}, "Sin actividad reciente."))],
                ),
            ),
            html.section(
                {"class": "card"},
                html.h2("Tareas pendientes"),
                html.ul(
                    {"class": "feed"},
                    *[
                        html.li(
                            {"key": task["id"]},
                            html.span(f"{task.get('titulo') or ''} · {task.get('proyecto_nombre') or 'Sin proyecto'}"),
                            html.span({"class": f"pill {scheduling.task_status_class(task.get('estatus'))}"}, task.get("estatus") or "Pendiente"),
                        )
                        for task in data["pending_tasks"]
                    ]
                    if data["pending_tasks"]
                    else [html.li(html.span({"class": "meta"}, "No hay tareas pendientes."))],
                ),
            ),
            html.section(
                {"class": "card"},
                html.h2("Avance por proyecto"),
                *[bar(row["nombre"] or "", row["percent"], f"{row['percent']}%", key=row["id"]) for row in data["completion"]],
            ),
            html.section(
                {"class": "card"},
                html.h2("Salud del presupuesto"),
                *[
                    bar(row["nombre"] or "", row["percent"], format_percent(row["percent"]), row["status_class"], key=row["id"])
                    for row in data["budget_health"]
                ],
            ),
        ),
    )


@component
def FinanceView():
    data, set_data = hooks.use_state(finance.load_finance_data_safe)
    tab, set_tab = hooks.use_state("balance")

    def refresh() -> None:
        set_data(finance.load_finance_data_safe())

    use_change_refresh(["finanzas_ingresos", "finanzas_gastos_operacion", "finanzas_retiros", "gastos", "presupuestos"], refresh)

    balance = data["balance"]
    monthly = data["monthly"]
    peak = max([1.0] + [max(month["ingresos"], month["gastos_operacion"], month["retiros"]) for month in monthly])
    by_project = data["by_project"]

    tabs = [
        ("balance", "Balance"),
        ("proyectos", "Por proyecto"),
        ("finanzas_ingresos", "Ingresos"),
        ("finanzas_gastos_operacion", "Gastos de operación"),
        ("finanzas_retiros", "Retiros"),
    ]

    if tab == "balance":
        body = html.div(
            {"class": "page-body"},
            html.div(
                {"class": "kpis"},
                *[
                    html.div({"class": "card", "key": label}, html.div({"class": "meta"}, label), html.div({"class": "kpi-value"}, format_currency(value, 0)))
                    for label, value in [
                        ("Total ingresos", balance["ingresos"]),
                        ("Gastos operación", balance["gastos_operacion"]),
                        ("Gastos reales proy.", balance["gastos_proyectos"]),
                        ("Retiro utilidades", balance["retiros"]),
                        ("Pendiente por ingresar", balance["pendiente"]),
                        ("Saldo disponible", balance["saldo"]),
                    ]
                ],
            ),
            html.section(
                {"class": "card"},
                html.h2("Movimientos mensuales (últimos 6 meses)"),
                html.div(
                    {"class": "month-chart"},
                    *[
                        html.div(
                            {"class": "month-col", "key": month["mes"]},
                            html.div(
                                {"class": "month-bars"},
                                html.span({"style": {"height": f"{month['ingresos'] / peak * 100:.0f}%", "background": "#10b981"}, "title": format_currency(month["ingresos"])}),
                                html.span({"style": {"height": f"{month['gastos_operacion'] / peak * 100:.0f}%", "background": "#f43f5e"}, "title": format_currency(month["gastos_operacion"])}),
                                html.span({"style": {"height": f"{month['retiros'] / peak * 100:.0f}%", "background": "#8b5cf6"}, "title": format_currency(month["retiros"])}),
                            ),
                            html.span({"class": "meta"}, month["mes"]),
                        )
                        for month in monthly
                    ],
                ),
            ),
        )
    elif tab == "proyectos":
        money_keys = ["anticipos", "abonos", "liquidacion", "total_ingresos", "costo_real", "utilidad"]
        body = html.section(
            {"class": "card table-wrap"},
            html.table(
                {"class": "table"},
                html.thead(
                    html.tr(
                        html.th("Proyecto"), html.th("Anticipos"), html.th("Abonos"), html.th("Liquidación"),
                        html.th("Total ingresos"), html.th("Costo real"), html.th("Utilidad"), html.th("%"),
                    )
                ),
                html.tbody(
                    *[
                        html.tr(
                            {"key": row["id"]},
                            html.td(row["nombre"] or ""),
                            *[html.td({"class": "num"}, format_currency(row[key], 0) if row[key] else "—") for key in money_keys],
                            html.td({"class": "num"}, format_percent(row["utilidad_porcentaje"], 1)),
                        )
                        for row in by_project["rows"]
                    ]
                    if by_project["rows"]
                    else [html.tr(html.td({"colSpan": 8, "class": "meta"}, "Sin proyectos"))],
                    html.tr(
                        {"class": "totals"},
                        html.td("Total"),
                        *[html.td({"class": "num"}, format_currency(by_project["totals"][key], 0)) for key in money_keys],
                        html.td({"class": "num"}, format_percent(by_project["totals"]["utilidad_porcentaje"], 1)),
                    ),
                ),
            ),
        )
    else:
        body = EntityView(tab, key=tab)

    return html.div(
        {"class": "page-body"},
        html.div(
            {"class": "section-head"},
            html.div(html.h1("Finanzas"), html.div({"class": "meta"}, "Flujo de efectivo de la empresa.")),
            html.div(
                {"class": "tabs"},
                *[
                    html.button({"class": f"tab {'active' if tab == key else ''}", "key": key, "on_click": lambda event, key=key: set_tab(key)}, label)
                    for key, label in tabs
                ],
            ),
        ),
        *([html.div({"class": "error-text"}, data["error"])] if data.get("error") else []),
        body,
    )


@component
def WeatherView():
    result, set_result = hooks.use_state(fetch_forecast)
    body, status = result

    if status >= 400:
        return html.section(
            {"class": "card"},
            html.h1("Clima"),
            html.div({"class": "error-text"}, body.get("error") or "No se pudo consultar el clima."),
            html.button({"class": "btn", "on_click": lambda event: set_result(fetch_forecast())}, "Reintentar"),
        )

    current = body["current"]
    advisory = body["advisory"]
    return html.div(
        {"class": "page-body"},
        html.section(
            {"class": "card"},
            html.div(
                {"class": "section-head"},
                html.div(html.h1(f"Clima · {body['location']}"), html.div({"class": "meta"}, current["label"])),
                html.span({"class": f"pill {'pill-success' if advisory['safe'] else 'pill-danger'}"}, advisory["label"]),
            ),
            html.div(
                {"class": "kpis"},
                html.div({"class": "card"}, html.div({"class": "meta"}, "Temperatura"), html.div({"class": "kpi-value"}, f"{current['temperature']}°C")),
                html.div({"class": "card"}, html.div({"class": "meta"}, "Humedad"), html.div({"class": "kpi-value"}, f"{current['humidity']}%")),
                html.div({"class": "card"}, html.div({"class": "meta"}, "Viento"), html.div({"class": "kpi-value"}, f"{current['wind_speed']} km/h")),
            ),
        ),
        html.section(
            {"class": "card"},
            html.h2("Pronóstico a 5 días"),
            html.div(
                {"class": "weather-days"},
                *[
                    html.div(
                        {"class": "card", "key": day["date"]},
                        html.strong(format_date_short(day["date"])),
                        html.div(day["label"]),
                        html.div({"class": "meta"}, f"{day['max']}° / {day['min']}°"),
                        html.div({"class": "meta"}, f"Lluvia {day['precipitation'] if day['precipitation'] is not None else '-'}%"),
                    )
                    for day in body["daily"]
                ],
            ),
        ),
    )


@component
def UsersView():
    users, set_users = hooks.use_state(lambda: safe_call(auth.fetch_users, [], "users"))
    invite, set_invite = hooks.use_state({"email": "", "full_name": "", "role": "user"})
    message, set_message = hooks.use_state("")
    is_busy, run_mutation = use_busy()

    def reload() -> None:
        set_users(safe_call(auth.fetch_users, [], "users"))

    use_change_refresh(["profiles"], reload)

    def send_invite(event: Dict[str, Any]) -> None:
        error = run_mutation(lambda: auth.invite_user(invite["email"], invite["full_name"], invite["role"]))
        set_message(error or f"Invitación enviada a {invite['email']}")
        if not error:
            set_invite({"email": "", "full_name": "", "role": "user"})
            reload()

    def change(user: Dict[str, Any], role: str, status: str) -> None:
        set_message(run_mutation(lambda: auth.update_user_role(str(user["id"]), role, status)))
        reload()

    def set_invite_field(name: str, value: str) -> None:
        set_invite(lambda prev: {**prev, name: value})

    return html.div(
        {"class": "page-body"},
        html.section(
            {"class": "card"},
            html.div({"class": "section-head"}, html.div(html.h1("Usuarios"), html.div({"class": "meta"}, "Accesos y roles del equipo."))),
            *([html.div({"class": "meta"}, message)] if message else []),
            html.div(
                {"class": "actions"},
                html.input({"class": "input", "placeholder": "Correo", "value": invite["email"], "on_change": lambda event: set_invite_field("email", event["target"]["value"])}),
                html.input({"class": "input", "placeholder": "Nombre completo", "value": invite["full_name"], "on_change": lambda event: set_invite_field("full_name", event["target"]["value"])}),
                html.select(
                    {"class": "filter", "value": invite["role"], "on_change": lambda event: set_invite_field("role", event["target"]["value"])},
                    *[html.option({"value": role, "key": role}, role) for role in auth.ROLES],
                ),
                html.button({"class": "btn primary", "disabled": is_busy, "on_click": send_invite}, "Invitar"),
            ),
        ),
        html.section(
            {"class": "card table-wrap"},
            html.table(
                {"class": "table"},
                html.thead(html.tr(html.th("Nombre"), html.th("Correo"), html.th("Rol"), html.th("Estatus"), html.th("Alta"))),
                html.tbody(
                    *[
                        html.tr(
                            {"key": str(user["id"])},
                            html.td(f"{user.get('full_name') or '-'}{' (tú)' if user.get('is_current') else ''}"),
                            html.td(user.get("email") or ""),
                            html.td(
                                html.select(
                                    {"class": "filter", "value": user.get("role") or "user", "disabled": is_busy or user.get("is_current"),
                                     "on_change": lambda event, user=user: change(user, event["target"]["value"], user.get("status") or "active")},
                                    *[html.option({"value": role, "key": role}, role) for role in auth.ROLES],
                                )
                            ),
                            html.td(
                                html.select(
                                    {"class": "filter", "value": user.get("status") or "active", "disabled": is_busy or user.get("is_current"),
                                     "on_change": lambda event, user=user: change(user, user.get("role") or "user", event["target"]["value"])},
                                    *[html.option({"value": status, "key": status}, status) for status in auth.USER_STATUSES],
                                )
                            ),
                            html.td(format_date_medium(user.get("created_at"))),
                        )
                        for user in users
                    ]
                ),
            ),
        ),
    )


def route_view(path: str):
    if path in {"", "/", "/dashboard"}:
        return DashboardView(key="dashboard")
    if path == "/tasks":
        return TasksView(key="tasks")
    if path == "/finanzas":
        return FinanceView(key="finanzas")
    if path == "/weather":
        return WeatherView(key="weather")
    if path == "/users":
        return UsersView(key="users")
    if path.startswith("/projects/"):
        tail = path.rsplit("/", 1)[-1]
        if tail.isdigit():
            return ProjectDetailView(int(tail), key=path)
    entity = ENTITY_ROUTES.get(path)
    if entity:
        return EntityView(entity, key=entity)
    return html.section({"class": "card"}, html.h1("Página no encontrada"), html.a({"href": "/dashboard"}, "Ir al dashboard"))


@component
def Sidebar(path: str, user: Dict[str, Any]):
    return html.nav(
        {"class": "sidebar"},
        html.div({"class": "brand"}, "Obra Hub"),
        *[
            html.a(
                {"class": f"nav-link {'active' if path == href or path.startswith(href + '/') else ''}", "href": href, "key": href},
                label,
            )
            for href, label in NAV_ITEMS
        ],
        html.div(
            {"class": "nav-foot"},
            html.div(user.get("full_name") or user.get("email") or ""),
            html.div({"class": "meta"}, user.get("role") or ""),
            html.a({"class": "nav-link", "href": "/logout"}, "Cerrar Sesión"),
        ),
    )


@component
def App():
    db.borrow_per_query()
    location = use_location()
    path = (location.pathname or "/").rstrip("/") or "/dashboard"
    user = auth.current_user() or {}
    return html.div(
        {"id": "obra-hub-root", "class": "shell"},
        html.style(APP_CSS),
        Sidebar(path, user),
        html.main({"class": "page"}, route_view(path)),
    )
