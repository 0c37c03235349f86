from datetime import date

import pytest
from psycopg2.extras import Json

from obra_hub import records
from obra_hub.records import ValidationError


def test_sanitize_coerces_by_field_type():
    data = records.sanitize_payload(
        "gastos",
        {"proyecto_id": "3", "fecha": "2024-05-02", "concepto": " Cemento ", "monto": "$1,200.50", "extra": "drop"},
    )
    assert data == {"proyecto_id": 3, "fecha": "2024-05-02", "concepto": "Cemento", "monto": 1200.5}


def test_sanitize_reports_invalid_values():
    with pytest.raises(ValidationError) as excinfo:
        records.sanitize_payload("gastos", {"monto": "mucho", "fecha": "ayer"})
    assert excinfo.value.errors == {"fecha": "Valor no válido", "monto": "Valor no válido"}


def test_sanitize_lists_and_bools():
    data = records.sanitize_payload("cotizaciones", {"requiere_factura": "0"})
    assert data == {"requiere_factura": False}
    data = records.sanitize_payload("notas", {"url_imagenes": "a.jpg\n\nb.jpg, c.jpg"})
    assert data == {"url_imagenes": ["a.jpg", "b.jpg", "c.jpg"]}


def test_validate_required_min_length_and_options():
    errors = records.validate_payload("proyectos", {"nombre": "A", "cliente": None, "status": "Pausado"})
    assert errors["nombre"] == "Nombre debe tener al menos 2 caracteres"
    assert errors["cliente"] == "Cliente es requerido"
    assert errors["fecha_inicio"] == "Fecha de inicio es requerido"
    assert errors["status"] == "Estatus: valor no válido"


def test_validate_partial_only_checks_present_fields():
    assert records.validate_payload("gastos", {"concepto": "Arena"}, partial=True) == {}
    errors = records.validate_payload("gastos", {"monto": 0.0}, partial=True)
    assert errors == {"monto": "Monto debe ser al menos 0.01"}


def test_insert_project_forces_active_status(fake_db):
    fake_db.returning = {"id": 42}
    new_id = records.insert_entity(
        "proyectos",
        {"nombre": "Nave industrial", "cliente": "ACME", "fecha_inicio": "2024-01-10", "status": "Completado"},
    )
    assert new_id == 42
    (_, query, params), = fake_db.writes("INSERT INTO proyectos")
    assert query.endswith("RETURNING id")
    columns = query.split("(", 1)[1].split(")", 1)[0].split(", ")
    assert dict(zip(columns, params))["status"] == "Activo"
    assert fake_db.commits == 1


def test_insert_rejects_missing_required(fake_db):
    with pytest.raises(ValidationError) as excinfo:
        records.insert_entity("gastos", {"concepto": "Diesel"})
    assert "proyecto_id" in excinfo.value.errors
    assert "monto" in excinfo.value.errors
    assert fake_db.writes() == []


def test_insert_applies_defaults(fake_db):
    records.insert_entity("tareas", {"titulo": "Colado de losa"})
    (_, query, params), = fake_db.writes("INSERT INTO tareas")
    columns = query.split("(", 1)[1].split(")", 1)[0].split(", ")
    values = dict(zip(columns, params))
    assert values["estatus"] == "Pendiente"
    assert values["prioridad"] == "Media"


def test_incident_non_positive_cost_is_cleared(fake_db):
    records.update_entity("incidencias", 5, {"impacto_costo": "0"})
    (_, query, params), = fake_db.writes("UPDATE incidencias")
    assert query == "UPDATE incidencias SET impacto_costo = %s WHERE id = %s"
    assert params == [None, 5]


def test_quote_totals_are_computed_on_save(fake_db):
    records.insert_entity(
        "cotizaciones",
        {
            "cliente": "Pemex",
            "items_json": {"lista_productos": [{"descripcion": "Pintura", "cantidad": "2", "precio": "500"}]},
        },
    )
    (_, query, params), = fake_db.writes("INSERT INTO cotizaciones")
    columns = query.split("(", 1)[1].split(")", 1)[0].split(", ")
    values = dict(zip(columns, params))
    assert values["subtotal"] == 1000.0
    assert values["iva"] == 160.0
    assert values["total"] == 1160.0
    assert isinstance(values["items_json"], Json)
    assert values["items_json"].adapted["lista_productos"][0]["importe"] == 1000.0


def test_quote_without_invoice_has_no_iva(fake_db):
    records.update_entity(
        "cotizaciones",
        9,
        {"requiere_factura": False, "items_json": [{"descripcion": "Mano de obra", "cantidad": 1, "precio": 300}]},
    )
    (_, query, params), = fake_db.writes("UPDATE cotizaciones")
    assignments = query.split(" SET ", 1)[1].split(" WHERE", 1)[0].split(", ")
    values = dict(zip([item.split(" = ")[0] for item in assignments], params))
    assert values["iva"] == 0.0
    assert values["total"] == 300.0


def test_notes_track_authors(fake_db):
    records.insert_entity("notas", {"titulo": "Revisar planos"}, author="Ana López")
    (_, query, params), = fake_db.writes("INSERT INTO notas")
    columns = query.split("(", 1)[1].split(")", 1)[0].split(", ")
    values = dict(zip(columns, params))
    assert values["autor"] == "Ana López"
    assert values["autor_ultima_actualizacion"] == "Ana López"
    assert values["ultima_actualizacion"]

    records.update_entity("notas", 3, {"contenido": "Nuevo texto"}, author="Luis")
    (_, query, params), = fake_db.writes("UPDATE notas")
    assert "autor =" not in query.replace("autor_ultima_actualizacion", "")
    assert "Luis" in params


def test_update_with_nothing_to_change_is_noop(fake_db):
    records.update_entity("gastos", 1, {"unknown": "x"})
    assert fake_db.writes() == []


def test_fetch_all_with_project_filter(fake_db):
    fake_db.rows["FROM gastos"] = [{"id": 1, "proyecto_id": 2}]
    rows = records.fetch_all("gastos", "2")
    assert rows == [{"id": 1, "proyecto_id": 2}]
    _, query, params = fake_db.calls[-1]
    assert "LEFT JOIN proyectos p" in query
    assert "WHERE t.proyecto_id = %s" in query
    assert params == [2]


def test_fetch_all_without_project_and_invalid_filter(fake_db):
    records.fetch_all("notas", "none")
    assert "t.proyecto_id IS NULL" in fake_db.calls[-1][1]
    with pytest.raises(ValidationError):
        records.fetch_all("notas", "abc")


def test_fetch_all_safe_returns_error_text(fake_db):
    fake_db.rows["FROM reportes"] = RuntimeError("connection refused")
    rows, error = records.fetch_all_safe("reportes")
    assert rows == []
    assert error == "connection refused"


def test_filter_rows_by_project():
    rows = [{"id": 1, "proyecto_id": 1}, {"id": 2, "proyecto_id": None}, {"id": 3, "proyecto_id": 2}]
    assert [row["id"] for row in records.filter_rows_by_project(rows, "all")] == [1, 2, 3]
    assert [row["id"] for row in records.filter_rows_by_project(rows, "none")] == [2]
    assert [row["id"] for row in records.filter_rows_by_project(rows, 2)] == [3]


def test_duplicate_quote_restarts_as_draft():
    row = {"folio": "COT-7", "cliente": "ACME", "estatus": "Aprobada", "fecha_emision": "2023-01-01", "pdf_url": "x.pdf"}
    values = records.duplicate_values("cotizaciones", row)
    assert values["estatus"] == "Borrador"
    assert values["folio"] == ""
    assert values["pdf_url"] == ""
    assert values["fecha_emision"] == date.today().isoformat()
    assert values["cliente"] == "ACME"


def test_default_values_call_factories():
    values = records.default_values_for("proyectos")
    assert values["status"] == "Activo"
    assert values["fecha_inicio"] == date.today().isoformat()
    assert values["nombre"] == ""


def _update_values(fake_db, table):
    (_, query, params), = fake_db.writes(f"UPDATE {table}")
    assignments = query.split(" SET ", 1)[1].split(" WHERE", 1)[0].split(", ")
    return dict(zip([item.split(" = ")[0] for item in assignments], params))


def test_quote_item_edit_keeps_stored_invoice_choice(fake_db):
    fake_db.one["FROM cotizaciones"] = {"items_json": {"lista_productos": []}, "requiere_factura": False}
    records.update_entity("cotizaciones", 7, {"items_json": [{"descripcion": "Pintura", "cantidad": 1, "precio": 100}]})
    values = _update_values(fake_db, "cotizaciones")
    assert values["subtotal"] == 100.0
    assert values["iva"] == 0.0
    assert values["total"] == 100.0


def test_toggling_invoice_recomputes_stored_items(fake_db):
    fake_db.one["FROM cotizaciones"] = {
        "items_json": {"lista_productos": [{"descripcion": "Pintura", "cantidad": 2, "precio": 50}]},
        "requiere_factura": False,
    }
    records.update_entity("cotizaciones", 7, {"requiere_factura": True})
    values = _update_values(fake_db, "cotizaciones")
    assert values["requiere_factura"] is True
    assert values["subtotal"] == 100.0
    assert values["iva"] == 16.0
    assert values["total"] == 116.0
    assert values["items_json"].adapted["lista_productos"][0]["importe"] == 100.0


def test_quote_update_without_item_fields_skips_totals(fake_db):
    records.update_entity("cotizaciones", 7, {"cliente": "ACME"})
    assert _update_values(fake_db, "cotizaciones") == {"cliente": "ACME"}
    assert not [call for call in fake_db.calls if call[0] == "one"]


def test_non_finite_numbers_are_rejected():
    with pytest.raises(records.ValidationError) as excinfo:
        records.sanitize_payload("gastos", {"monto": "nan"})
    assert excinfo.value.errors == {"monto": "Valor no válido"}
    with pytest.raises(records.ValidationError):
        records.sanitize_payload("gastos", {"monto": "inf"})
