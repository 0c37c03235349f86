from datetime import date

import pytest

from obra_hub import scheduling


def test_group_by_status_keeps_column_order():
    tasks = [{"id": 1, "estatus": "Revisión"}, {"id": 2, "estatus": None}, {"id": 3, "estatus": "Completada"}]
    columns = scheduling.group_by_status(tasks)
    assert list(columns) == ["Pendiente", "En Proceso", "Revisión", "Completada"]
    assert [task["id"] for task in columns["Pendiente"]] == [2]


def test_progress_summary_deviation():
    today = date(2024, 5, 20)
    tasks = [
        {"estatus": "Completada", "fecha_fin": "2024-05-10", "fecha_fin_real": "2024-05-12"},
        {"estatus": "En Proceso", "fecha_fin": "2024-05-15"},
        {"estatus": "Pendiente", "fecha_fin": "2024-06-01"},
        {"estatus": "Pendiente"},
    ]
    summary = scheduling.progress_summary(tasks, today=today)
    assert summary["total"] == 4
    assert summary["completed"] == 1
    assert summary["percent"] == 25
    assert summary["deviation_days"] == 7
    assert summary["deviation_label"] == "+7 Días"
    assert summary["deviation_message"] == "Retraso acumulado"
    assert summary["delayed"] == 1


def test_progress_summary_ahead_and_empty():
    ahead = scheduling.progress_summary(
        [{"estatus": "Completada", "fecha_fin": "2024-05-10", "fecha_fin_real": "2024-05-07"}],
        today=date(2024, 5, 20),
    )
    assert ahead["deviation_label"] == "-3 Días"
    assert ahead["deviation_message"] == "Adelanto acumulado"
    empty = scheduling.progress_summary([])
    assert empty["percent"] == 0
    assert empty["deviation_label"] == "0 Días"
    assert empty["deviation_message"] == "Al día"


@pytest.mark.parametrize(
    "value, expected",
    [("Completada", "pill-success"), ("En Proceso", "pill-info"), ("Revisión", "pill-warning"), (None, "pill-muted")],
)
def test_task_status_class(value, expected):
    assert scheduling.task_status_class(value) == expected


def test_gantt_range_has_minimum_width():
    start, end = scheduling.gantt_range([], today=date(2024, 5, 20))
    assert (end - start).days >= scheduling.GANTT_MIN_DAYS
    assert start < date(2024, 5, 20) < end


def test_build_gantt_rows_and_bars():
    today = date(2024, 5, 20)
    tasks = [
        {"id": 2, "titulo": "Acabados", "fecha_inicio": "2024-05-25", "fecha_fin": "2024-05-30", "estatus": "Pendiente"},
        {
            "id": 1,
            "titulo": "Cimentación",
            "fecha_inicio": "2024-05-01",
            "fecha_fin": "2024-05-10",
            "fecha_inicio_real": "2024-05-03",
            "estatus": "En Proceso",
        },
        {"id": 3, "titulo": "Sin fechas"},
    ]
    gantt = scheduling.build_gantt(tasks, today=today)
    assert [row["task"]["id"] for row in gantt["rows"]] == [1, 2]
    assert [task["id"] for task in gantt["undated"]] == [3]

    first = gantt["rows"][0]
    assert first["planned"]["span"] == 10
    # Work started but not finished runs up to today.
    assert first["real"]["span"] == (today - date(2024, 5, 3)).days + 1
    assert gantt["rows"][1]["real"] is None

    assert gantt["days"][gantt["today_offset"]]["today"] is True
    assert sum(month["span"] for month in gantt["months"]) == gantt["total_days"]
    assert len(gantt["days"]) == gantt["total_days"]


def test_checklist_progress():
    assert scheduling.checklist_progress([]) == 0
    assert scheduling.checklist_progress([{"completado": True}, {"completado": False}, {"completado": True}]) == 67


def test_fetch_checklists_groups_items(fake_db):
    fake_db.rows["FROM tarea_checklists"] = [{"id": 1, "nombre": "Seguridad"}, {"id": 2, "nombre": "Calidad"}]
    fake_db.rows["FROM tarea_checklist_items"] = [
        {"id": 10, "checklist_id": 1, "texto": "Arnés", "completado": True},
        {"id": 11, "checklist_id": 1, "texto": "Casco", "completado": False},
    ]
    checklists = scheduling.fetch_checklists(7)
    assert [len(checklist["items"]) for checklist in checklists] == [2, 0]
    assert checklists[0]["progress"] == 50
    assert checklists[1]["progress"] == 0


def test_create_checklist_requires_name(fake_db):
    with pytest.raises(ValueError):
        scheduling.create_checklist(1, " ")
    assert fake_db.writes() == []


def test_add_checklist_item_appends_position(fake_db):
    fake_db.one["COUNT(*)"] = {"total": 3}
    scheduling.add_checklist_item(5, "Revisar andamio")
    (_, _, params), = fake_db.writes("INSERT INTO tarea_checklist_items")
    assert params[0] == 5
    assert "Revisar andamio" in params
    assert 3 in params


def test_fetch_task_notes_filters_by_task(fake_db):
    fake_db.rows["FROM notas"] = [{"id": 3, "titulo": "Revisión de trabes", "tarea_id": 9}]
    notes = scheduling.fetch_task_notes(9)
    assert [note["titulo"] for note in notes] == ["Revisión de trabes"]
    (_, query, params), = fake_db.calls
    assert "WHERE tarea_id = %s" in query
    assert "ORDER BY fecha DESC" in query
    assert params == (9,)
