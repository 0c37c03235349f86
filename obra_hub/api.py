from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from flask import Flask, abort, jsonify, request
from flask.json.provider import DefaultJSONProvider

from . import auth, config, dashboard, db, finance, projects, records, scheduling
from .projects import ProjectCompletionError
from .records import ENTITY_DEFS, ValidationError
from .supabase_api import SupabaseAuthError
from .weather_backend import bp as weather_bp


class RowJSONProvider(DefaultJSONProvider):
    @staticmethod
    def default(o: Any) -> Any:
        if isinstance(o, (datetime, date)):
            return o.isoformat()
        if isinstance(o, Decimal):
            return float(o)
        return DefaultJSONProvider.default(o)


app = Flask("obra_hub")
app.json = RowJSONProvider(app)
app.secret_key = config.SECRET_KEY or None
app.register_blueprint(auth.bp)
app.register_blueprint(weather_bp)
app.before_request(auth.login_gate)
app.teardown_appcontext(db.close_db)

if not app.secret_key:
    app.logger.warning("SECRET_KEY is not configured; sessions will not work")

# Package loggers (obra_hub.*) propagate to app.logger and its handler.
app.logger.setLevel(config.LOG_LEVEL)


def entity_or_404(entity: str) -> dict[str, Any]:
    if entity not in ENTITY_DEFS:
        abort(404)
    return ENTITY_DEFS[entity]


def json_payload() -> dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def author_name() -> str | None:
    user = auth.current_user() or {}
    return user.get("full_name") or user.get("email")


@app.errorhandler(ValidationError)
def handle_validation_error(exc: ValidationError):
    return jsonify({"ok": False, "errors": exc.errors}), 400


@app.errorhandler(ProjectCompletionError)
def handle_completion_error(exc: ProjectCompletionError):
    return jsonify({"ok": False, "error": str(exc)}), 409


@app.errorhandler(SupabaseAuthError)
def handle_auth_error(exc: SupabaseAuthError):
    return jsonify({"ok": False, "error": str(exc)}), exc.status


@app.route("/api/db-health")
def api_db_health():
    row = db.fetch_one("SELECT 1 AS ok")
    return jsonify({"ok": bool(row and row.get("ok") == 1)})


@app.route("/api/dashboard")
def api_dashboard():
    return jsonify(dashboard.load_dashboard_data_safe())


@app.route("/api/finance")
def api_finance():
    return jsonify(finance.load_finance_data_safe())


@app.route("/api/projects/<int:project_id>/details")
def api_project_details(project_id: int):
    details = projects.fetch_project_details(project_id)
    if details["project"] is None:
        abort(404)
    return jsonify(details)


@app.route("/api/projects/<int:project_id>/status", methods=["PUT"])
def api_project_status(project_id: int):
    projects.set_project_status(project_id, str(json_payload().get("status") or ""))
    return jsonify({"ok": True})


@app.route("/api/projects/<int:project_id>/budget-comparison")
def api_budget_comparison(project_id: int):
    return jsonify(finance.fetch_budget_comparison(project_id))


@app.route("/api/projects/<int:project_id>/budgets", methods=["GET", "POST"])
def api_project_budgets(project_id: int):
    if request.method == "GET":
        return jsonify(finance.fetch_budget_versions(project_id))
    presupuesto_id = finance.create_budget_version(project_id)
    return jsonify({"ok": True, "id": presupuesto_id})


@app.route("/api/presupuestos/<int:presupuesto_id>", methods=["GET", "PUT"])
def api_budget(presupuesto_id: int):
    if request.method == "GET":
        budget = finance.fetch_budget(presupuesto_id)
        if budget is None:
            abort(404)
        return jsonify(budget)
    payload = json_payload()
    finance.update_budget_settings(
        presupuesto_id,
        payload.get("indirectos_porcentaje"),
        payload.get("iva_porcentaje", finance.IVA_RATE),
    )
    return jsonify({"ok": True})


@app.route("/api/presupuestos/<int:presupuesto_id>/totals", methods=["POST"])
def api_budget_totals(presupuesto_id: int):
    try:
        summary = finance.save_budget_totals(presupuesto_id)
    except LookupError:
        abort(404)
    return jsonify({"ok": True, "resumen": summary})


@app.route("/api/presupuestos/<int:presupuesto_id>/categorias", methods=["POST"])
def api_budget_category(presupuesto_id: int):
    try:
        finance.add_budget_category(presupuesto_id, str(json_payload().get("nombre") or ""))
    except ValueError as exc:
        return jsonify({"ok": False, "error": str(exc)}), 400
    return jsonify({"ok": True})


@app.route("/api/presupuesto_categorias/<int:categoria_id>", methods=["DELETE"])
def api_budget_category_delete(categoria_id: int):
    finance.delete_budget_category(categoria_id)
    return jsonify({"ok": True})


@app.route("/api/presupuesto_categorias/<int:categoria_id>/items", methods=["POST"])
def api_budget_item_create(categoria_id: int):
    finance.add_budget_item(categoria_id, str(json_payload().get("concepto") or "Nuevo concepto"))
    return jsonify({"ok": True})


@app.route("/api/presupuesto_items/<int:item_id>", methods=["PUT", "DELETE"])
def api_budget_item(item_id: int):
    if request.method == "DELETE":
        finance.delete_budget_item(item_id)
    else:
        finance.update_budget_item(item_id, json_payload())
    return jsonify({"ok": True})


@app.route("/api/incidencias/<int:incident_id>/close", methods=["POST"])
def api_close_incident(incident_id: int):
    payload = json_payload()
    projects.close_incident(incident_id, payload.get("solucion_final"), payload.get("fecha_cierre"))
    return jsonify({"ok": True})


@app.route("/api/incidencias/<int:incident_id>/tareas", methods=["GET", "PUT"])
def api_incident_tasks(incident_id: int):
    if request.method == "GET":
        return jsonify(projects.incident_task_ids(incident_id))
    task_ids = json_payload().get("tareas") or []
    if not isinstance(task_ids, list):
        return jsonify({"ok": False, "error": "Field 'tareas' must be a list"}), 400
    projects.link_incident_tasks(incident_id, task_ids)
    return jsonify({"ok": True})


@app.route("/api/tareas/overview")
def api_tasks_overview():
    tasks = records.fetch_all("tareas", request.args.get("proyecto"))
    columns = scheduling.group_by_status(tasks)
    return jsonify(
        {
            "summary": scheduling.progress_summary(tasks),
            "kanban": {status: len(rows) for status, rows in columns.items()},
        }
    )


@app.route("/api/tareas/<int:task_id>/checklists", methods=["GET", "POST"])
def api_task_checklists(task_id: int):
    if request.method == "GET":
        return jsonify(scheduling.fetch_checklists(task_id))
    try:
        scheduling.create_checklist(task_id, str(json_payload().get("nombre") or ""))
    except ValueError as exc:
        return jsonify({"ok": False, "error": str(exc)}), 400
    return jsonify({"ok": True})


@app.route("/api/checklists/<int:checklist_id>", methods=["DELETE"])
def api_checklist_delete(checklist_id: int):
    scheduling.delete_checklist(checklist_id)
    return jsonify({"ok": True})


@app.route("/api/checklists/<int:checklist_id>/items", methods=["POST"])
def api_checklist_item_create(checklist_id: int):
    try:
        scheduling.add_checklist_item(checklist_id, str(json_payload().get("texto") or ""))
    except ValueError as exc:
        return jsonify({"ok": False, "error": str(exc)}), 400
    return jsonify({"ok": True})


@app.route("/api/checklist_items/<int:item_id>", methods=["PUT", "DELETE"])
def api_checklist_item(item_id: int):
    if request.method == "DELETE":
        scheduling.delete_checklist_item(item_id)
    else:
        scheduling.toggle_checklist_item(item_id, bool(json_payload().get("completado")))
    return jsonify({"ok": True})


@app.route("/api/users", methods=["GET", "POST"])
def api_users():
    if request.method == "GET":
        return jsonify(auth.fetch_users())
    payload = json_payload()
    auth.invite_user(
        str(payload.get("email") or ""),
        str(payload.get("full_name") or ""),
        str(payload.get("role") or ""),
    )
    return jsonify({"ok": True})


@app.route("/api/users/<user_id>", methods=["PUT"])
def api_user_role(user_id: str):
    payload = json_payload()
    try:
        auth.update_user_role(user_id, str(payload.get("role") or ""), str(payload.get("status") or ""))
    except ValueError as exc:
        return jsonify({"ok": False, "error": str(exc)}), 400
    return jsonify({"ok": True})


@app.route("/api/<entity>", methods=["GET", "POST"])
def api_entity_collection(entity: str):
    entity_or_404(entity)
    if request.method == "GET":
        return jsonify(records.fetch_all(entity, request.args.get("proyecto")))
    item_id = records.insert_entity(entity, json_payload(), author=author_name())
    return jsonify({"ok": True, "id": item_id})


@app.route("/api/<entity>/<int:item_id>", methods=["GET", "PUT", "DELETE"])
def api_entity_item(entity: str, item_id: int):
    entity_or_404(entity)
    if request.method == "GET":
        row = records.fetch_row(entity, item_id)
        if row is None:
            abort(404)
        return jsonify(row)
    if request.method == "DELETE":
        records.delete_entity(entity, item_id)
        return jsonify({"ok": True})
    records.update_entity(entity, item_id, json_payload(), author=author_name())
    return jsonify({"ok": True})
