from datetime import date

import pytest

from obra_hub import finance


def test_quote_totals_with_and_without_invoice():
    items = [{"descripcion": "Block", "cantidad": "100", "precio": "12.5"}, {"descripcion": "Flete", "cantidad": 1, "precio": 750}]
    totals = finance.quote_totals(items)
    assert [line["importe"] for line in totals["items"]] == [1250.0, 750.0]
    assert totals["subtotal"] == 2000.0
    assert totals["iva"] == 320.0
    assert totals["total"] == 2320.0
    assert finance.quote_totals(items, requiere_factura=False)["total"] == 2000.0


def test_quote_item_errors():
    errors = finance.quote_item_errors([{"descripcion": "", "cantidad": 0, "precio": -1}, {"descripcion": "Ok", "cantidad": 1, "precio": 0}])
    assert errors == [
        "Partida 1: descripción requerida",
        "Partida 1: cantidad mínima 1",
        "Partida 1: precio no negativo",
    ]


def test_budget_summary():
    items = [
        {"cantidad": 10, "costo_unitario": 80, "prec_venta_unitario": 100},
        {"cantidad": 2, "costo_unitario": 300, "prec_venta_unitario": 500},
    ]
    summary = finance.budget_summary(items, 10, 0.16)
    assert summary["costo_directo"] == 1400
    assert summary["venta_directa"] == 2000
    assert summary["indirectos"] == pytest.approx(200)
    assert summary["subtotal"] == pytest.approx(2200)
    assert summary["iva"] == pytest.approx(352)
    assert summary["total"] == pytest.approx(2552)
    assert summary["margen"] == pytest.approx(800)
    assert summary["margen_porcentaje"] == pytest.approx(800 / 2200 * 100)


def test_budget_summary_empty():
    summary = finance.budget_summary([], None, None)
    assert summary["total"] == 0
    assert summary["margen_porcentaje"] == 0.0


def test_compare_budget_to_expenses():
    categories = [
        {"nombre": "Materiales", "items": [{"cantidad": 10, "costo_unitario": 100}]},
        {"nombre": "Mano de Obra", "items": [{"cantidad": 1, "costo_unitario": 500}]},
    ]
    expenses = [
        {"categoria": "Materiales", "monto": 1200},
        {"categoria": "Combustible", "monto": 300},
        {"categoria": None, "monto": 50},
    ]
    result = finance.compare_budget_to_expenses(categories, expenses)
    by_name = {row["categoria"]: row for row in result["rows"]}
    assert [row["categoria"] for row in result["rows"]][0] == "Materiales"
    assert by_name["Materiales"]["porcentaje"] == pytest.approx(120.0)
    assert by_name["Materiales"]["variacion"] == -200
    assert by_name["Mano de Obra"]["gastado"] == 0
    assert by_name["Mano de Obra"]["porcentaje"] == 0.0
    assert by_name["Combustible"]["presupuestado"] == 0
    assert by_name["Combustible"]["porcentaje"] == 100.0
    assert by_name["Sin categoría"]["gastado"] == 50
    assert result["total_presupuestado"] == 1500
    assert result["total_gastado"] == 1550
    assert result["total_variacion"] == -50


def test_fetch_budget_comparison_uses_latest_version(fake_db):
    fake_db.one["FROM presupuestos WHERE proyecto_id"] = {"id": 8, "version": 3, "nombre": "Versión 3"}
    fake_db.rows["FROM presupuesto_categorias"] = [{"id": 1, "nombre": "Obra Civil"}]
    fake_db.rows["FROM presupuesto_items"] = [{"id": 10, "categoria_id": 1, "cantidad": 2, "costo_unitario": 50, "prec_venta_unitario": 80}]
    fake_db.rows["FROM gastos"] = [{"categoria": "Obra Civil", "monto": 60}]
    result = finance.fetch_budget_comparison(4)
    assert result["presupuesto"]["version"] == 3
    assert result["rows"][0]["presupuestado"] == 100
    assert result["rows"][0]["gastado"] == 60


def test_create_budget_version_numbers_and_seeds_categories(fake_db):
    fake_db.one["MAX(version)"] = {"version": 2}
    fake_db.returning = {"id": 77}
    assert finance.create_budget_version(5) == 77
    (_, _, params), = fake_db.writes("INSERT INTO presupuestos")
    assert params[1] == 3
    assert params[2] == "Versión 3"
    seeded = [call[2][1] for call in fake_db.writes("INSERT INTO presupuesto_categorias")]
    assert seeded == ["Diseño", "Obra Civil"]


def test_add_budget_category_requires_name(fake_db):
    with pytest.raises(ValueError):
        finance.add_budget_category(1, "  ")
    fake_db.one["COUNT(*)"] = {"total": 2}
    finance.add_budget_category(1, "Acabados")
    (_, _, params), = fake_db.writes("INSERT INTO presupuesto_categorias")
    assert params == (1, "Acabados", 3)


def test_update_budget_item_only_known_fields(fake_db):
    finance.update_budget_item(4, {"cantidad": "3", "concepto": "Muro", "bogus": 1})
    (_, query, params), = fake_db.writes("UPDATE presupuesto_items")
    assert query == "UPDATE presupuesto_items SET concepto = %s, cantidad = %s WHERE id = %s"
    assert params == ["Muro", 3.0, 4]


def test_save_budget_totals_missing_budget(fake_db):
    with pytest.raises(LookupError):
        finance.save_budget_totals(99)


def test_pending_receivable_ignores_overpaid_projects():
    presupuestos = [
        {"proyecto_id": 1, "total_final": 10000},
        {"proyecto_id": 2, "total_final": 5000},
    ]
    ingresos = [
        {"proyecto_id": 1, "tipo": "Anticipo", "monto": 4000},
        {"proyecto_id": 1, "tipo": "Abono", "monto": 1000},
        {"proyecto_id": 2, "tipo": "Liquidación", "monto": 6000},
        {"proyecto_id": 1, "tipo": "Otro", "monto": 999},
    ]
    assert finance.pending_receivable(presupuestos, ingresos) == 5000


def test_balance_summary():
    balance = finance.balance_summary(
        [{"monto": 10000}],
        [{"monto": 1500}],
        [{"monto": 2000}],
        [{"monto": 3000}],
        [],
    )
    assert balance["saldo"] == 3500
    assert balance["pendiente"] == 0


def test_monthly_movements_last_six_months():
    series = finance.monthly_movements(
        [{"fecha": "2024-03-10", "monto": 100}, {"fecha": "2023-09-01", "monto": 999}],
        [{"fecha": "2024-01-05", "monto": 50}],
        [{"fecha": "2023-10-31", "monto": 20}],
        today=date(2024, 3, 15),
    )
    assert [row["mes"] for row in series] == ["Oct 23", "Nov 23", "Dic 23", "Ene 24", "Feb 24", "Mar 24"]
    assert series[-1]["ingresos"] == 100
    assert series[3]["gastos_operacion"] == 50
    assert series[0]["retiros"] == 20
    assert sum(row["ingresos"] for row in series) == 100


def test_project_finance_rows():
    projects = [{"id": 1, "nombre": "Casa"}, {"id": 2, "nombre": "Bodega"}]
    ingresos = [
        {"proyecto_id": 1, "tipo": "Anticipo", "monto": 5000},
        {"proyecto_id": 1, "tipo": "Liquidación", "monto": 5000},
    ]
    gastos = [{"proyecto_id": 1, "monto": 7500}, {"proyecto_id": 2, "monto": 100}]
    result = finance.project_finance_rows(projects, ingresos, gastos)
    casa, bodega = result["rows"]
    assert casa["total_ingresos"] == 10000
    assert casa["utilidad"] == 2500
    assert casa["utilidad_porcentaje"] == 25.0
    assert bodega["utilidad"] == -100
    assert bodega["utilidad_porcentaje"] == 0.0
    assert result["totals"]["utilidad"] == 2400


def test_load_finance_data_safe_reports_errors(fake_db):
    fake_db.rows["finanzas_ingresos"] = RuntimeError("db down")
    data = finance.load_finance_data_safe()
    assert data["error"] == "db down"
    assert data["balance"]["saldo"] == 0
    assert len(data["monthly"]) == 6
