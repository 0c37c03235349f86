import pytest

pytest.importorskip("reactpy")

from obra_hub import components  # noqa: E402


def test_pill_classes_by_entity():
    assert components.pill_class_for("proyectos", "status", "Completado") == "pill-success"
    assert components.pill_class_for("tareas", "prioridad", "Urgente") == "pill-danger"
    assert components.pill_class_for("cotizaciones", "estatus", "Enviada") == "pill-info"
    assert components.pill_class_for("gastos", "concepto", "Cemento") is None


def test_render_cell_formats_money_and_dates():
    assert components.render_cell("gastos", "monto", {"monto": 1500}) == "$1,500.00"
    assert components.render_cell("gastos", "fecha", {"fecha": "2024-09-03"}) == "3 sep 2024"
    assert components.render_cell("incidencias", "impacto_costo", {"impacto_costo": None}) == "-"
    assert components.render_cell("gastos", "concepto", {"concepto": None}) == ""


def test_column_labels():
    assert components.column_label("gastos", "monto") == "Monto"
    assert components.column_label("gastos", "proyecto_nombre") == "Proyecto"
    assert components.column_label("reuniones_clientes", "pendientes") == "Seguimiento"


def test_initial_form_values_for_new_and_existing_rows():
    values = components.initial_form_values("cotizaciones", None, False)
    assert values["estatus"] == "Borrador"
    assert values["requiere_factura"] is True
    assert values["items_json"] == []

    row = {
        "id": 3,
        "folio": "COT-1",
        "cliente": "ACME",
        "fecha_emision": "2024-02-01T00:00:00",
        "requiere_factura": False,
        "items_json": {"lista_productos": [{"descripcion": "Pintura", "cantidad": 2, "precio": 10}]},
    }
    values = components.initial_form_values("cotizaciones", row, False)
    assert values["fecha_emision"] == "2024-02-01"
    assert values["requiere_factura"] is False
    assert values["items_json"][0]["descripcion"] == "Pintura"

    copy = components.initial_form_values("cotizaciones", row, True)
    assert copy["folio"] == ""
    assert copy["estatus"] == "Borrador"


def test_list_fields_become_multiline_text():
    values = components.initial_form_values("gastos", {"id": 1, "ticket_url": ["a.jpg", "b.jpg"], "monto": 10}, False)
    assert values["ticket_url"] == "a.jpg\nb.jpg"
    assert values["monto"] == "10"


def test_incident_form_loads_linked_tasks(fake_db):
    fake_db.rows["FROM incidencia_tareas"] = [{"tarea_id": 4}, {"tarea_id": 9}]
    values = components.initial_form_values("incidencias", {"id": 2, "titulo": "Fuga"}, False)
    assert values["_tareas"] == [4, 9]


def test_every_entity_route_has_a_definition():
    for path, entity in components.ENTITY_ROUTES.items():
        assert entity in components.ENTITY_DEFS
        assert any(href == path for href, _ in components.NAV_ITEMS)
