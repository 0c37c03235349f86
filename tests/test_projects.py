import pytest

from obra_hub import projects
from obra_hub.projects import ProjectCompletionError
from obra_hub.records import ValidationError


def test_completing_project_with_open_tasks_is_blocked(fake_db):
    fake_db.rows["FROM tareas"] = [{"id": 1, "titulo": "Pintura", "estatus": "En Proceso"}, {"id": 2, "titulo": "Limpieza", "estatus": None}]
    with pytest.raises(ProjectCompletionError) as excinfo:
        projects.set_project_status(3, "Completado")
    assert "2 tarea(s) sin completar (Pintura, Limpieza)" in str(excinfo.value)
    assert len(excinfo.value.pending) == 2
    assert fake_db.writes() == []


def test_completing_project_without_open_tasks(fake_db):
    projects.set_project_status(3, "Completado")
    (_, _, params), = fake_db.writes("UPDATE proyectos")
    assert params == ("Completado", 3)
    assert fake_db.commits == 1


def test_reactivating_skips_task_check(fake_db):
    fake_db.rows["FROM tareas"] = [{"id": 1, "titulo": "Pintura"}]
    projects.set_project_status(3, "Activo")
    assert fake_db.writes("UPDATE proyectos")


def test_invalid_project_status(fake_db):
    with pytest.raises(ValidationError):
        projects.set_project_status(3, "Pausado")


def test_project_details_sections_fail_independently(fake_db):
    fake_db.one["FROM proyectos"] = {"id": 3, "nombre": "Casa"}
    fake_db.rows["FROM minutas"] = RuntimeError("relation missing")
    fake_db.rows["FROM tareas"] = [{"id": 9, "titulo": "Pintura"}]
    details = projects.fetch_project_details(3)
    assert details["project"]["nombre"] == "Casa"
    assert details["sections"]["minutas"]["error"] == "relation missing"
    assert details["sections"]["tareas"]["rows"] == [{"id": 9, "titulo": "Pintura"}]
    assert details["sections"]["reuniones_clientes"]["label"] == "Reuniones con clientes"


def test_close_incident_validates_solution_and_date(fake_db):
    with pytest.raises(ValidationError) as excinfo:
        projects.close_incident(4, "ok", "")
    assert set(excinfo.value.errors) == {"solucion_final", "fecha_cierre"}
    assert fake_db.writes() == []


def test_close_incident_marks_resolved(fake_db):
    projects.close_incident(4, "  Se cambió la válvula  ", "2024-06-02")
    (_, query, params), = fake_db.writes("UPDATE incidencias")
    assert "estatus = 'Resuelta'" in query
    assert params == ("Se cambió la válvula", "2024-06-02", 4)


def test_link_incident_tasks_replaces_links(fake_db):
    projects.link_incident_tasks(4, ["3", 3, "", 5])
    writes = fake_db.writes()
    assert "DELETE FROM incidencia_tareas" in writes[0][1]
    assert [call[2] for call in writes[1:]] == [(4, 3), (4, 5)]


def test_incident_classes():
    assert projects.severity_class("Crítica") == "pill-danger"
    assert projects.severity_class("Media") == "pill-warning"
    assert projects.incident_status_class("Abierta") == "pill-danger"
    assert projects.incident_status_class("Resuelta") == "pill-success"
