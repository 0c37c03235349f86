from datetime import date
from decimal import Decimal

from obra_hub import api, finance


def test_list_entity_with_project_filter(auth_client, fake_db):
    fake_db.rows["FROM gastos"] = [{"id": 1, "monto": Decimal("150.50"), "fecha": date(2024, 5, 2), "proyecto_id": 3}]
    response = auth_client.get("/api/gastos?proyecto=3")
    assert response.status_code == 200
    assert response.get_json() == [{"id": 1, "monto": 150.5, "fecha": "2024-05-02", "proyecto_id": 3}]
    assert fake_db.calls[-1][2] == [3]


def test_unknown_entity_is_404(auth_client, fake_db):
    assert auth_client.get("/api/usuarios_secretos").status_code == 404


def test_create_entity_returns_id(auth_client, fake_db):
    fake_db.returning = {"id": 12}
    response = auth_client.post(
        "/api/gastos",
        json={"proyecto_id": 3, "fecha": "2024-05-02", "concepto": "Cemento", "monto": 950, "categoria": "Materiales"},
    )
    assert response.status_code == 200
    assert response.get_json() == {"ok": True, "id": 12}


def test_create_entity_validation_errors(auth_client, fake_db):
    response = auth_client.post("/api/gastos", json={"concepto": "Cemento", "monto": -5})
    assert response.status_code == 400
    body = response.get_json()
    assert body["ok"] is False
    assert body["errors"]["monto"] == "Monto debe ser al menos 0.01"
    assert "proyecto_id" in body["errors"]


def test_notes_record_session_author(auth_client, fake_db):
    auth_client.post("/api/notas", json={"titulo": "Pendientes de obra"})
    (_, query, params), = fake_db.writes("INSERT INTO notas")
    assert "Ana López" in params


def test_update_and_delete_entity(auth_client, fake_db):
    assert auth_client.put("/api/tareas/4", json={"estatus": "Completada"}).get_json() == {"ok": True}
    assert auth_client.delete("/api/tareas/4").get_json() == {"ok": True}
    queries = [call[1] for call in fake_db.writes()]
    assert queries == ["UPDATE tareas SET estatus = %s WHERE id = %s", "DELETE FROM tareas WHERE id = %s"]


def test_get_missing_row_is_404(auth_client, fake_db):
    assert auth_client.get("/api/tareas/99").status_code == 404


def test_project_completion_conflict(auth_client, fake_db):
    fake_db.rows["FROM tareas"] = [{"id": 1, "titulo": "Pintura", "estatus": "Pendiente"}]
    response = auth_client.put("/api/projects/2/status", json={"status": "Completado"})
    assert response.status_code == 409
    assert "1 tarea(s) sin completar" in response.get_json()["error"]


def test_close_incident_route(auth_client, fake_db):
    response = auth_client.post("/api/incidencias/5/close", json={"solucion_final": "x"})
    assert response.status_code == 400
    response = auth_client.post("/api/incidencias/5/close", json={"solucion_final": "Reparado", "fecha_cierre": "2024-06-01"})
    assert response.get_json() == {"ok": True}


def test_incident_task_links_must_be_list(auth_client, fake_db):
    response = auth_client.put("/api/incidencias/5/tareas", json={"tareas": "1,2"})
    assert response.status_code == 400
    assert auth_client.put("/api/incidencias/5/tareas", json={"tareas": [1, 2]}).get_json() == {"ok": True}


def test_tasks_overview(auth_client, fake_db):
    fake_db.rows["FROM tareas"] = [
        {"id": 1, "estatus": "Completada"},
        {"id": 2, "estatus": "Pendiente"},
    ]
    body = auth_client.get("/api/tareas/overview").get_json()
    assert body["summary"]["percent"] == 50
    assert body["kanban"] == {"Pendiente": 1, "En Proceso": 0, "Revisión": 0, "Completada": 1}


def test_checklist_routes(auth_client, fake_db):
    response = auth_client.post("/api/tareas/3/checklists", json={"nombre": ""})
    assert response.status_code == 400
    assert auth_client.post("/api/tareas/3/checklists", json={"nombre": "Seguridad"}).get_json() == {"ok": True}
    assert auth_client.put("/api/checklist_items/8", json={"completado": True}).get_json() == {"ok": True}
    assert fake_db.writes("UPDATE tarea_checklist_items")[0][2] == (True, 8)


def test_budget_routes(auth_client, fake_db):
    fake_db.returning = {"id": 30}
    assert auth_client.post("/api/projects/2/budgets").get_json() == {"ok": True, "id": 30}
    assert auth_client.get("/api/presupuestos/99").status_code == 404
    assert auth_client.post("/api/presupuestos/99/totals").status_code == 404
    response = auth_client.post("/api/presupuestos/30/categorias", json={"nombre": ""})
    assert response.status_code == 400


def test_budget_comparison_route(auth_client, monkeypatch):
    monkeypatch.setattr(finance, "fetch_budget_comparison", lambda project_id: {"rows": [], "project": project_id})
    assert auth_client.get("/api/projects/6/budget-comparison").get_json() == {"rows": [], "project": 6}


def test_dashboard_route_survives_database_errors(auth_client, fake_db, monkeypatch):
    monkeypatch.setattr("obra_hub.dashboard.fetch_current_weather", lambda: None)
    fake_db.one["FROM proyectos"] = RuntimeError("db down")
    body = auth_client.get("/api/dashboard").get_json()
    assert body["error"] == "db down"


def test_user_role_route(auth_client, fake_db):
    assert auth_client.put("/api/users/u9", json={"role": "owner", "status": "active"}).status_code == 400
    assert auth_client.put("/api/users/u9", json={"role": "viewer", "status": "active"}).get_json() == {"ok": True}


def test_invite_route_maps_auth_errors(auth_client, fake_db):
    response = auth_client.post("/api/users", json={"email": "bad", "full_name": "Luis", "role": "user"})
    assert response.status_code == 400
    assert response.get_json() == {"ok": False, "error": "Correo inválido"}


def test_json_provider_serializes_rows():
    assert api.RowJSONProvider.default(Decimal("2.5")) == 2.5
    assert api.RowJSONProvider.default(date(2024, 1, 2)) == "2024-01-02"


def test_generic_project_update_respects_completion_guard(auth_client, fake_db):
    fake_db.rows["FROM tareas"] = [{"id": 1, "titulo": "Pintura", "estatus": "Pendiente"}]
    response = auth_client.put("/api/proyectos/2", json={"status": "Completado"})
    assert response.status_code == 409
    assert "Pintura" in response.get_json()["error"]
    assert fake_db.writes("UPDATE proyectos") == []


def test_generic_project_update_completes_when_tasks_are_done(auth_client, fake_db):
    response = auth_client.put("/api/proyectos/2", json={"status": "Completado"})
    assert response.get_json() == {"ok": True}
    (_, query, params), = fake_db.writes("UPDATE proyectos")
    assert query == "UPDATE proyectos SET status = %s WHERE id = %s"
    assert params == ["Completado", 2]


def test_create_quote_rejects_invalid_items(auth_client, fake_db):
    response = auth_client.post(
        "/api/cotizaciones",
        json={"cliente": "Pemex", "estatus": "Aprobada", "items_json": [{"descripcion": "", "cantidad": -3, "precio": -50}]},
    )
    assert response.status_code == 400
    message = response.get_json()["errors"]["items_json"]
    assert "Partida 1: descripción requerida" in message
    assert "Partida 1: cantidad mínima 1" in message
    assert "Partida 1: precio no negativo" in message
    assert fake_db.writes() == []


def test_create_quote_always_starts_as_draft(auth_client, fake_db):
    response = auth_client.post(
        "/api/cotizaciones",
        json={"cliente": "Pemex", "estatus": "Aprobada", "items_json": [{"descripcion": "Pintura", "cantidad": 1, "precio": 100}]},
    )
    assert response.status_code == 200
    (_, query, params), = fake_db.writes("INSERT INTO cotizaciones")
    columns = query.split("(", 1)[1].split(")", 1)[0].split(", ")
    values = dict(zip(columns, params))
    assert values["estatus"] == "Borrador"
    assert values["fecha_emision"] == date.today().isoformat()
    assert values["total"] == 116.0
