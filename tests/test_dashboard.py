from datetime import date, datetime

from obra_hub import dashboard


def test_activity_feed_merges_sources_newest_first():
    sources = {
        "reporte": [{"id": 1, "resumen_titulo": "Avance semanal", "fecha_reporte": "2024-05-10"}],
        "gasto": [{"id": 2, "concepto": "Diesel", "monto": 850, "fecha": "2024-05-12"}],
        "tarea": [{"id": 3, "titulo": "Excavación", "estatus": None, "created_at": datetime(2024, 5, 11, 9, 0)}],
        "incidencia": [{"id": 4, "titulo": "Fuga", "severidad": "Alta", "fecha_inicio": None}],
    }
    feed = dashboard.build_activity_feed(sources)
    assert [entry["kind"] for entry in feed] == ["gasto", "tarea", "reporte"]
    assert feed[0]["title"] == "Gasto: Diesel - $850.00"
    assert feed[1]["title"] == "Tarea: Excavación (Pendiente)"
    assert feed[2]["title"] == "Reporte: Avance semanal"


def test_activity_feed_limit():
    sources = {"gasto": [{"id": n, "concepto": "x", "monto": 1, "fecha": f"2024-05-{n:02d}"} for n in range(1, 11)]}
    feed = dashboard.build_activity_feed(sources)
    assert len(feed) == 7
    assert feed[0]["id"] == 10


def test_pending_tasks_sorted_by_status_weight():
    tasks = [{"id": 1, "estatus": "Revisión"}, {"id": 2, "estatus": "Pendiente"}, {"id": 3, "estatus": "En Proceso"}]
    assert [task["id"] for task in dashboard.sort_pending_tasks(tasks)] == [2, 3, 1]


def test_completion_rates():
    rates = dashboard.completion_rates([{"id": 1, "nombre": "Casa", "total": 3, "completed": 1}, {"id": 2, "nombre": "Vacío", "total": 0, "completed": 0}])
    assert [rate["percent"] for rate in rates] == [33, 0]


def test_budget_health_thresholds():
    rows = [
        {"id": 1, "nombre": "A", "presupuesto": 1000, "gastado": 500},
        {"id": 2, "nombre": "B", "presupuesto": 1000, "gastado": 850},
        {"id": 3, "nombre": "C", "presupuesto": 1000, "gastado": 1200},
        {"id": 4, "nombre": "D", "presupuesto": None, "gastado": 10},
    ]
    health = dashboard.budget_health(rows)
    assert [row["status_class"] for row in health] == ["pill-success", "pill-warning", "pill-danger", "pill-warning"]
    assert health[3]["percent"] == 100.0


def test_critical_incidents_count_falls_back_to_zero(fake_db):
    fake_db.one["FROM incidencias"] = RuntimeError("column missing")
    assert dashboard.count_critical_incidents() == 0


def test_month_expenses_starts_at_first_day(fake_db):
    fake_db.one["FROM gastos"] = {"total": "1520.75"}
    assert dashboard.month_expenses(date(2024, 5, 20)) == 1520.75
    assert fake_db.calls[-1][2] == ("2024-05-01",)


def test_load_dashboard_data_safe(fake_db, monkeypatch):
    monkeypatch.setattr(dashboard, "fetch_current_weather", lambda: {"temperature": 31, "label": "Despejado", "location": "Comalcalco"})
    fake_db.one["FROM proyectos"] = {"total": 4}
    fake_db.one["FROM incidencias"] = {"total": 1}
    fake_db.one["FROM gastos"] = {"total": 0}
    data = dashboard.load_dashboard_data_safe()
    assert data["error"] == ""
    assert data["kpis"] == {"active_projects": 4, "critical_incidents": 1, "month_expenses": 0.0}
    assert data["weather"]["temperature"] == 31


def test_load_dashboard_data_safe_on_failure(fake_db, monkeypatch):
    monkeypatch.setattr(dashboard, "fetch_current_weather", lambda: None)
    fake_db.one["FROM proyectos"] = RuntimeError("could not connect")
    data = dashboard.load_dashboard_data_safe()
    assert data["error"] == "could not connect"
    assert data["activity"] == []
