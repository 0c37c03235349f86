from __future__ import annotations

import json
import logging
import math
from datetime import date, datetime
from typing import Any, Dict, List, Tuple

from psycopg2.extras import Json

from . import db
from .finance import quote_item_errors, quote_totals
from .formatting import parse_date

logger = logging.getLogger(__name__)

PROJECT_FILTER_ALL = "all"
PROJECT_FILTER_NONE = "none"

PROJECT_STATUSES = ["Activo", "Completado"]
TASK_PRIORITIES = ["Baja", "Media", "Alta", "Urgente"]
TASK_STATUSES = ["Pendiente", "En Proceso", "Revisión", "Completada"]
EXPENSE_CATEGORIES = ["Combustible", "Materiales", "Mano de Obra", "Viáticos", "Administrativo", "Otros"]
INCIDENT_SEVERITIES = ["Baja", "Media", "Alta", "Crítica"]
INCIDENT_STATUSES = ["Abierta", "En Revisión", "Resuelta"]
QUOTE_STATUSES = ["Borrador", "Enviada", "Aprobada", "Rechazada"]
SURVEY_STATUSES = ["Pendiente Cotizar", "Cotizado", "Descartado"]
INCOME_TYPES = ["Anticipo", "Abono", "Liquidación", "Otro"]
OPERATING_EXPENSE_CATEGORIES = ["Salarios", "Renta", "Internet", "Servicios", "Marketing", "Equipo", "Otro"]

TRUTHY = {"1", "true", "yes", "on", "si", "sí"}


def _today() -> str:
    return date.today().isoformat()


ENTITY_DEFS: Dict[str, Dict[str, Any]] = {
    "proyectos": {
        "label": "Proyecto",
        "title": "Proyectos",
        "fields": [
            {"name": "nombre", "label": "Nombre", "input_type": "text", "required": True, "min_length": 2},
            {"name": "cliente", "label": "Cliente", "input_type": "text", "required": True, "min_length": 2},
            {"name": "solicitante", "label": "Solicitante", "input_type": "text"},
            {"name": "ubicacion", "label": "Ubicación", "input_type": "text"},
            {"name": "fecha_inicio", "label": "Fecha de inicio", "input_type": "date", "required": True},
            {"name": "status", "label": "Estatus", "input_type": "select", "options": PROJECT_STATUSES},
        ],
        "columns": ["nombre", "cliente", "ubicacion", "fecha_inicio", "status"],
        "defaults": {"status": "Activo", "fecha_inicio": _today},
        "order": "t.created_at DESC, t.id DESC",
        "join_project": False,
    },
    "tareas": {
        "label": "Tarea",
        "title": "Tareas",
        "fields": [
            {"name": "titulo", "label": "Título", "input_type": "text", "required": True, "min_length": 2},
            {"name": "descripcion", "label": "Descripción", "input_type": "text", "widget": "textarea"},
            {"name": "observaciones", "label": "Observaciones", "input_type": "text", "widget": "textarea"},
            {"name": "proyecto_id", "label": "Proyecto", "input_type": "project"},
            {"name": "prioridad", "label": "Prioridad", "input_type": "select", "options": TASK_PRIORITIES},
            {"name": "estatus", "label": "Estatus", "input_type": "select", "options": TASK_STATUSES},
            {"name": "fecha_inicio", "label": "Inicio planeado", "input_type": "date"},
            {"name": "fecha_fin", "label": "Fin planeado", "input_type": "date"},
            {"name": "fecha_inicio_real", "label": "Inicio real", "input_type": "date"},
            {"name": "fecha_fin_real", "label": "Fin real", "input_type": "date"},
        ],
        "columns": ["titulo", "proyecto_nombre", "prioridad", "estatus", "fecha_inicio", "fecha_fin"],
        "defaults": {"prioridad": "Media", "estatus": "Pendiente"},
        "order": "t.created_at DESC, t.id DESC",
        "join_project": True,
    },
    "gastos": {
        "label": "Gasto",
        "title": "Gastos",
        "fields": [
            {"name": "proyecto_id", "label": "Proyecto", "input_type": "project", "required": True},
            {"name": "fecha", "label": "Fecha", "input_type": "date", "required": True},
            {"name": "concepto", "label": "Concepto", "input_type": "text", "required": True},
            {"name": "monto", "label": "Monto", "input_type": "number", "step": "0.01", "required": True, "min": 0.01},
            {"name": "categoria", "label": "Categoría", "input_type": "select", "options": EXPENSE_CATEGORIES, "required": True},
            {"name": "ticket_url", "label": "Tickets (URL por línea)", "input_type": "list", "widget": "textarea"},
        ],
        "columns": ["fecha", "concepto", "proyecto_nombre", "categoria", "monto"],
        "defaults": {"fecha": _today},
        "order": "t.fecha DESC NULLS LAST, t.id DESC",
        "join_project": True,
    },
    "incidencias": {
        "label": "Incidencia",
        "title": "Incidencias",
        "fields": [
            {"name": "titulo", "label": "Título", "input_type": "text", "required": True},
            {"name": "proyecto_id", "label": "Proyecto", "input_type": "project", "required": True},
            {"name": "fecha_inicio", "label": "Fecha", "input_type": "date", "required": True},
            {"name": "severidad", "label": "Severidad", "input_type": "select", "options": INCIDENT_SEVERITIES, "required": True},
            {"name": "estatus", "label": "Estatus", "input_type": "select", "options": INCIDENT_STATUSES, "required": True},
            {"name": "impacto_costo", "label": "Impacto en costo", "input_type": "number", "step": "0.01"},
            {"name": "impacto_tiempo", "label": "Impacto en tiempo", "input_type": "text"},
            {"name": "descripcion", "label": "Descripción", "input_type": "text", "widget": "textarea"},
            {"name": "evidencia_fotos", "label": "Evidencia (URL por línea)", "input_type": "list", "widget": "textarea"},
        ],
        "columns": ["titulo", "proyecto_nombre", "severidad", "estatus", "fecha_inicio", "impacto_costo"],
        "defaults": {"severidad": "Media", "estatus": "Abierta", "fecha_inicio": _today},
        "order": (
            "t.estatus ASC, "
            "CASE t.severidad WHEN 'Crítica' THEN 4 WHEN 'Alta' THEN 3 WHEN 'Media' THEN 2 WHEN 'Baja' THEN 1 ELSE 0 END DESC, "
            "t.fecha_inicio DESC NULLS LAST"
        ),
        "join_project": True,
    },
    "cotizaciones": {
        "label": "Cotización",
        "title": "Cotizaciones",
        "fields": [
            {"name": "folio", "label": "Folio", "input_type": "text"},
            {"name": "cliente", "label": "Cliente", "input_type": "text", "required": True},
            {"name": "fecha_emision", "label": "Fecha de emisión", "input_type": "date", "required": True},
            {"name": "estatus", "label": "Estatus", "input_type": "select", "options": QUOTE_STATUSES, "required": True},
            {"name": "proyecto_id", "label": "Proyecto", "input_type": "project"},
            {"name": "solicitante", "label": "Solicitante", "input_type": "text"},
            {"name": "ubicacion", "label": "Ubicación", "input_type": "text"},
            {"name": "requiere_factura", "label": "Requiere factura", "input_type": "bool"},
            {"name": "vigencia", "label": "Vigencia", "input_type": "text"},
            {"name": "items_json", "label": "Partidas", "input_type": "json", "widget": "quote_items"},
            {"name": "pdf_url", "label": "PDF", "input_type": "text"},
        ],
        "columns": ["folio", "cliente", "fecha_emision", "estatus", "total"],
        "defaults": {"estatus": "Borrador", "fecha_emision": _today, "requiere_factura": "1"},
        "order": "t.created_at DESC, t.id DESC",
        "join_project": True,
    },
    "levantamientos": {
        "label": "Levantamiento",
        "title": "Levantamientos",
        "fields": [
            {"name": "folio", "label": "Folio", "input_type": "text"},
            {"name": "proyecto_id", "label": "Proyecto", "input_type": "project"},
            {"name": "fecha_visita", "label": "Fecha de visita", "input_type": "date", "required": True},
            {"name": "tipo_servicio", "label": "Tipo de servicio", "input_type": "text"},
            {"name": "cliente_prospecto", "label": "Cliente / prospecto", "input_type": "text"},
            {"name": "ubicacion", "label": "Ubicación", "input_type": "text"},
            {"name": "estatus", "label": "Estatus", "input_type": "select", "options": SURVEY_STATUSES},
            {"name": "detalles_tecnicos", "label": "Detalles técnicos", "input_type": "text", "widget": "textarea"},
            {"name": "requerimientos", "label": "Requerimientos", "input_type": "text", "widget": "textarea"},
            {"name": "medidas_aprox", "label": "Medidas aproximadas", "input_type": "text"},
            {"name": "tecnicos", "label": "Técnicos", "input_type": "text"},
            {"name": "evidencia_fotos", "label": "Evidencia (URL por línea)", "input_type": "list", "widget": "textarea"},
            {"name": "pdf_final_url", "label": "PDF", "input_type": "text"},
        ],
        "columns": ["folio", "cliente_prospecto", "tipo_servicio", "fecha_visita", "estatus"],
        "defaults": {"estatus": "Pendiente Cotizar", "fecha_visita": _today},
        "order": "t.created_at DESC, t.id DESC",
        "join_project": True,
    },
    "reportes": {
        "label": "Reporte",
        "title": "Reportes",
        "fields": [
            {"name": "folio", "label": "Folio", "input_type": "text"},
            {"name": "proyecto_id", "label": "Proyecto", "input_type": "project", "required": True},
            {"name": "fecha_reporte", "label": "Fecha", "input_type": "date", "required": True},
            {"name": "resumen_titulo", "label": "Título", "input_type": "text"},
            {"name": "tipo", "label": "Tipo", "input_type": "text"},
            {"name": "solicitante", "label": "Solicitante", "input_type": "text"},
            {"name": "ubicacion", "label": "Ubicación", "input_type": "text"},
            {"name": "duracion", "label": "Duración", "input_type": "text"},
            {"name": "actividades", "label": "Actividades", "input_type": "text", "widget": "textarea"},
            {"name": "materiales", "label": "Materiales", "input_type": "text", "widget": "textarea"},
            {"name": "observaciones", "label": "Observaciones", "input_type": "text", "widget": "textarea"},
            {"name": "generado_por", "label": "Generado por", "input_type": "text"},
            {"name": "fotos_url", "label": "Fotos (URL por línea)", "input_type": "list", "widget": "textarea"},
            {"name": "pdf_final_url", "label": "PDF", "input_type": "text"},
        ],
        "columns": ["folio", "resumen_titulo", "proyecto_nombre", "fecha_reporte", "generado_por"],
        "defaults": {"fecha_reporte": _today},
        "order": "t.created_at DESC, t.id DESC",
        "join_project": True,
    },
    "minutas": {
        "label": "Minuta",
        "title": "Minutas",
        "fields": [
            {"name": "proyecto_id", "label": "Proyecto", "input_type": "project"},
            {"name": "fecha", "label": "Fecha", "input_type": "date", "required": True},
            {"name": "titulo", "label": "Título", "input_type": "text", "required": True},
            {"name": "participantes", "label": "Participantes", "input_type": "text", "widget": "textarea"},
            {"name": "puntos_tratados", "label": "Puntos tratados", "input_type": "text", "widget": "textarea"},
            {"name": "acuerdos", "label": "Acuerdos", "input_type": "text", "widget": "textarea"},
            {"name": "pendientes", "label": "Pendientes", "input_type": "text", "widget": "textarea"},
            {"name": "siguiente_reunion", "label": "Siguiente reunión", "input_type": "date"},
        ],
        "columns": ["fecha", "titulo", "proyecto_nombre", "siguiente_reunion"],
        "defaults": {"fecha": _today},
        "order": "t.fecha DESC NULLS LAST, t.id DESC",
        "join_project": True,
    },
    "reuniones_clientes": {
        "label": "Reunión con cliente",
        "title": "Reuniones con clientes",
        "fields": [
            {"name": "proyecto_id", "label": "Proyecto", "input_type": "project"},
            {"name": "cliente", "label": "Cliente", "input_type": "text"},
            {"name": "fecha", "label": "Fecha", "input_type": "date", "required": True},
            {"name": "titulo", "label": "Título", "input_type": "text", "required": True},
            {"name": "participantes", "label": "Participantes", "input_type": "text", "widget": "textarea"},
            {"name": "temas_tratados", "label": "Temas tratados", "input_type": "text", "widget": "textarea"},
            {"name": "acuerdos", "label": "Acuerdos", "input_type": "text", "widget": "textarea"},
            {"name": "pendientes", "label": "Seguimiento", "input_type": "text", "widget": "textarea"},
            {"name": "siguiente_reunion", "label": "Siguiente reunión", "input_type": "date"},
        ],
        "columns": ["fecha", "titulo", "cliente", "proyecto_nombre", "siguiente_reunion"],
        "defaults": {"fecha": _today},
        "order": "t.fecha DESC NULLS LAST, t.id DESC",
        "join_project": True,
    },
    "notas": {
        "label": "Nota",
        "title": "Notas",
        "fields": [
            {"name": "titulo", "label": "Título", "input_type": "text", "required": True},
            {"name": "contenido", "label": "Contenido", "input_type": "text", "widget": "textarea"},
            {"name": "fecha", "label": "Fecha", "input_type": "date"},
            {"name": "proyecto_id", "label": "Proyecto", "input_type": "project"},
            {"name": "tarea_id", "label": "Tarea", "input_type": "task"},
            {"name": "url_imagenes", "label": "Imágenes (URL por línea)", "input_type": "list", "widget": "textarea"},
        ],
        "columns": ["fecha", "titulo", "proyecto_nombre", "autor", "autor_ultima_actualizacion"],
        "defaults": {"fecha": _today},
        "order": "t.fecha DESC NULLS LAST, t.created_at DESC",
        "join_project": True,
    },
    "finanzas_ingresos": {
        "label": "Ingreso",
        "title": "Ingresos",
        "fields": [
            {"name": "proyecto_id", "label": "Proyecto", "input_type": "project"},
            {"name": "tipo", "label": "Tipo", "input_type": "select", "options": INCOME_TYPES, "required": True},
            {"name": "monto", "label": "Monto", "input_type": "number", "step": "0.01", "required": True, "min": 0.01},
            {"name": "fecha", "label": "Fecha", "input_type": "date", "required": True},
            {"name": "descripcion", "label": "Descripción", "input_type": "text"},
        ],
        "columns": ["fecha", "tipo", "proyecto_nombre", "monto", "descripcion"],
        "defaults": {"tipo": "Anticipo", "fecha": _today},
        "order": "t.fecha DESC NULLS LAST, t.id DESC",
        "join_project": True,
    },
    "finanzas_gastos_operacion": {
        "label": "Gasto de operación",
        "title": "Gastos de operación",
        "fields": [
            {"name": "categoria", "label": "Categoría", "input_type": "select", "options": OPERATING_EXPENSE_CATEGORIES, "required": True},
            {"name": "concepto", "label": "Concepto", "input_type": "text", "required": True},
            {"name": "monto", "label": "Monto", "input_type": "number", "step": "0.01", "required": True, "min": 0.01},
            {"name": "fecha", "label": "Fecha", "input_type": "date", "required": True},
            {"name": "descripcion", "label": "Descripción", "input_type": "text"},
        ],
        "columns": ["fecha", "categoria", "concepto", "monto"],
        "defaults": {"categoria": "Otro", "fecha": _today},
        "order": "t.fecha DESC NULLS LAST, t.id DESC",
        "join_project": False,
    },
    "finanzas_retiros": {
        "label": "Retiro",
        "title": "Retiros",
        "fields": [
            {"name": "monto", "label": "Monto", "input_type": "number", "step": "0.01", "required": True, "min": 0.01},
            {"name": "fecha", "label": "Fecha", "input_type": "date", "required": True},
            {"name": "descripcion", "label": "Descripción", "input_type": "text"},
        ],
        "columns": ["fecha", "monto", "descripcion"],
        "defaults": {"fecha": _today},
        "order": "t.fecha DESC NULLS LAST, t.id DESC",
        "join_project": False,
    },
}


class ValidationError(ValueError):
    def __init__(self, errors: Dict[str, str]):
        self.errors = errors
        super().__init__("; ".join(f"{name}: {message}" for name, message in errors.items()))


def field_map(entity: str) -> Dict[str, Dict[str, Any]]:
    return {field["name"]: field for field in ENTITY_DEFS[entity]["fields"]}


def empty_values(fields: List[Dict[str, Any]]) -> Dict[str, str]:
    return {field["name"]: "" for field in fields}


def default_values_for(entity: str) -> Dict[str, Any]:
    definition = ENTITY_DEFS[entity]
    values: Dict[str, Any] = empty_values(definition["fields"])
    for name, default in definition.get("defaults", {}).items():
        values[name] = default() if callable(default) else default
    return values


def _coerce(field: Dict[str, Any], value: Any) -> Any:
    input_type = field.get("input_type", "text")
    if input_type == "bool":
        if isinstance(value, bool):
            return value
        return str(value or "").strip().lower() in TRUTHY
    if input_type == "list":
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            items = value
        else:
            items = str(value).replace(",", "\n").splitlines()
        return [str(item).strip() for item in items if str(item).strip()]
    if input_type == "json":
        if value is None or value == "":
            return None
        if isinstance(value, (dict, list)):
            return value
        return json.loads(str(value))

    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if value == "":
            return None

    if input_type in {"project", "task"}:
        if str(value).lower() in {"0", PROJECT_FILTER_NONE, "null"}:
            return None
        return int(value)
    if input_type == "number":
        number = float(str(value).replace(",", "").replace("$", ""))
        if not math.isfinite(number):
            raise ValueError(f"invalid number {value!r}")
        return number
    if input_type == "date":
        parsed = parse_date(value)
        if parsed is None:
            raise ValueError(f"invalid date {value!r}")
        return parsed.isoformat()
    return str(value)


def sanitize_payload(entity: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Coerce the known fields present in ``payload`` to column values.

    Unknown keys are dropped. Fields absent from the payload are left out so
    a partial update never blanks other columns.
    """
    data: Dict[str, Any] = {}
    errors: Dict[str, str] = {}
    for field in ENTITY_DEFS[entity]["fields"]:
        name = field["name"]
        if name not in payload:
            continue
        try:
            data[name] = _coerce(field, payload[name])
        except (TypeError, ValueError):
            errors[name] = "Valor no válido"
    if errors:
        raise ValidationError(errors)
    return data


def validate_payload(entity: str, data: Dict[str, Any], partial: bool = False) -> Dict[str, str]:
    errors: Dict[str, str] = {}
    for field in ENTITY_DEFS[entity]["fields"]:
        name = field["name"]
        if partial and name not in data:
            continue
        value = data.get(name)
        if field.get("required") and (value is None or value == "" or value == []):
            errors[name] = f"{field['label']} es requerido"
            continue
        if value is None:
            continue
        min_length = field.get("min_length")
        if min_length and len(str(value)) < min_length:
            errors[name] = f"{field['label']} debe tener al menos {min_length} caracteres"
            continue
        options = field.get("options")
        if options and value not in options:
            errors[name] = f"{field['label']}: valor no válido"
            continue
        minimum = field.get("min")
        if minimum is not None and isinstance(value, (int, float)) and value < minimum:
            errors[name] = f"{field['label']} debe ser al menos {minimum}"
    return errors


def prepare_payload(entity: str, payload: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    data = sanitize_payload(entity, payload)
    errors = validate_payload(entity, data, partial=partial)
    if errors:
        raise ValidationError(errors)
    return data


def _quote_items(raw_items: Any) -> List[Dict[str, Any]]:
    if isinstance(raw_items, dict):
        return raw_items.get("lista_productos") or []
    return raw_items or []


def _stored_quote(item_id: int | None) -> Dict[str, Any]:
    if item_id is None:
        return {}
    return db.fetch_one("SELECT items_json, requiere_factura FROM cotizaciones WHERE id = %s", (item_id,)) or {}


def _apply_quote_totals(data: Dict[str, Any], creating: bool, item_id: int | None) -> None:
    if creating:
        data["estatus"] = "Borrador"
        data["fecha_emision"] = data.get("fecha_emision") or _today()
    elif "items_json" not in data and "requiere_factura" not in data:
        return

    # A partial update recomputes with whatever the row already stores.
    stored = {} if creating else _stored_quote(item_id)
    items = _quote_items(data["items_json"] if "items_json" in data else stored.get("items_json"))
    if "requiere_factura" in data:
        requiere_factura = bool(data["requiere_factura"])
    else:
        requiere_factura = stored.get("requiere_factura") is not False

    if "items_json" in data:
        item_errors = quote_item_errors(items)
        if item_errors:
            raise ValidationError({"items_json": "; ".join(item_errors)})

    totals = quote_totals(items, requiere_factura)
    data["items_json"] = {"lista_productos": totals["items"]}
    data["subtotal"] = totals["subtotal"]
    data["iva"] = totals["iva"]
    data["total"] = totals["total"]


def _apply_save_hooks(
    entity: str,
    data: Dict[str, Any],
    creating: bool,
    author: str | None,
    item_id: int | None = None,
) -> Dict[str, Any]:
    if entity == "proyectos" and creating:
        data["status"] = "Activo"
    if entity == "proyectos" and not creating and "status" in data:
        # Completion goes through the open-task check.
        from .projects import ensure_status_allowed

        ensure_status_allowed(item_id, data["status"])
    if entity == "incidencias" and "impacto_costo" in data:
        cost = data["impacto_costo"]
        if cost is not None and cost <= 0:
            data["impacto_costo"] = None
    if entity == "cotizaciones":
        _apply_quote_totals(data, creating, item_id)
    if entity == "notas":
        if creating and author:
            data["autor"] = author
        if author:
            data["autor_ultima_actualizacion"] = author
        data["ultima_actualizacion"] = datetime.now().isoformat(timespec="seconds")
    return data


def _adapt(data: Dict[str, Any]) -> List[Any]:
    return [Json(value) if isinstance(value, dict) else value for value in data.values()]


def entity_select(entity: str) -> str:
    if ENTITY_DEFS[entity].get("join_project"):
        return f"SELECT t.*, p.nombre AS proyecto_nombre FROM {entity} t LEFT JOIN proyectos p ON p.id = t.proyecto_id"
    return f"SELECT t.* FROM {entity} t"


def project_filter_clause(project_filter: Any) -> Tuple[str, List[Any]]:
    key = str(project_filter if project_filter is not None else PROJECT_FILTER_ALL).strip().lower()
    if key in {"", PROJECT_FILTER_ALL}:
        return "", []
    if key == PROJECT_FILTER_NONE:
        return " WHERE t.proyecto_id IS NULL", []
    if not key.isdigit():
        raise ValidationError({"proyecto": "Filtro de proyecto no válido"})
    return " WHERE t.proyecto_id = %s", [int(key)]


def fetch_all(entity: str, project_filter: Any = None) -> List[Dict[str, Any]]:
    definition = ENTITY_DEFS[entity]
    where, params = project_filter_clause(project_filter)
    query = f"{entity_select(entity)}{where} ORDER BY {definition['order']}"
    return db.fetch_all_rows(query, params)


def fetch_row(entity: str, item_id: int) -> Dict[str, Any] | None:
    return db.fetch_one(f"{entity_select(entity)} WHERE t.id = %s", (item_id,))


def fetch_all_safe(entity: str, project_filter: Any = None) -> Tuple[List[Dict[str, Any]], str]:
    try:
        return fetch_all(entity, project_filter), ""
    except Exception as exc:
        logger.exception("Failed to load %s", entity)
        return [], str(exc)


def insert_entity(entity: str, payload: Dict[str, Any], author: str | None = None) -> int:
    data = prepare_payload(entity, {**default_values_for(entity), **payload})
    data = _apply_save_hooks(entity, data, creating=True, author=author)
    columns = ", ".join(data.keys())
    placeholders = ", ".join("%s" for _ in data)
    row = db.execute_returning(
        f"INSERT INTO {entity} ({columns}) VALUES ({placeholders}) RETURNING id",
        _adapt(data),
    )
    db.commit()
    return int(row["id"]) if row else 0


def update_entity(entity: str, item_id: int, payload: Dict[str, Any], author: str | None = None) -> None:
    data = prepare_payload(entity, payload, partial=True)
    data = _apply_save_hooks(entity, data, creating=False, author=author, item_id=item_id)
    if not data:
        return
    assignments = ", ".join(f"{key} = %s" for key in data)
    db.execute_sql(
        f"UPDATE {entity} SET {assignments} WHERE id = %s",
        _adapt(data) + [item_id],
    )
    db.commit()


def delete_entity(entity: str, item_id: int) -> None:
    db.execute_sql(f"DELETE FROM {entity} WHERE id = %s", (item_id,))
    db.commit()


def filter_rows_by_project(rows: List[Dict[str, Any]], project_filter: Any) -> List[Dict[str, Any]]:
    key = str(project_filter if project_filter is not None else PROJECT_FILTER_ALL).strip().lower()
    if key in {"", PROJECT_FILTER_ALL}:
        return list(rows)
    if key == PROJECT_FILTER_NONE:
        return [row for row in rows if row.get("proyecto_id") is None]
    return [row for row in rows if str(row.get("proyecto_id")) == key]


def fetch_project_options() -> List[Dict[str, Any]]:
    return db.fetch_all_rows("SELECT id, nombre FROM proyectos ORDER BY nombre")


def fetch_task_options(project_id: int | None = None) -> List[Dict[str, Any]]:
    if project_id:
        return db.fetch_all_rows("SELECT id, titulo, proyecto_id FROM tareas WHERE proyecto_id = %s ORDER BY titulo", (project_id,))
    return db.fetch_all_rows("SELECT id, titulo, proyecto_id FROM tareas ORDER BY titulo")


def duplicate_values(entity: str, row: Dict[str, Any]) -> Dict[str, Any]:
    """Form values for a copy of ``row``: quotes restart as drafts dated today."""
    values = {field["name"]: row.get(field["name"], "") for field in ENTITY_DEFS[entity]["fields"]}
    if entity == "cotizaciones":
        values["estatus"] = "Borrador"
        values["fecha_emision"] = _today()
        values["folio"] = ""
        values["pdf_url"] = ""
    if entity == "levantamientos":
        values["estatus"] = "Pendiente Cotizar"
        values["pdf_final_url"] = ""
    return values
