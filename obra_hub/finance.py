from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, Iterable, List

from . import db
from .formatting import month_label, parse_date, to_number

logger = logging.getLogger(__name__)

IVA_RATE = 0.16
DEFAULT_BUDGET_CATEGORIES = [("Diseño", 1), ("Obra Civil", 2)]
UNCATEGORIZED = "Sin categoría"


def _sum(rows: Iterable[Dict[str, Any]], key: str = "monto") -> float:
    return sum(to_number(row.get(key)) for row in rows)


# Quotes


def quote_totals(items: List[Dict[str, Any]], requiere_factura: bool = True) -> Dict[str, Any]:
    """Line amounts, subtotal, IVA and total for a quote's product list."""
    lines: List[Dict[str, Any]] = []
    for item in items or []:
        cantidad = to_number(item.get("cantidad"))
        precio = to_number(item.get("precio"))
        lines.append(
            {
                "descripcion": str(item.get("descripcion") or "").strip(),
                "cantidad": cantidad,
                "precio": precio,
                "importe": round(cantidad * precio, 2),
            }
        )
    subtotal = round(sum(line["importe"] for line in lines), 2)
    iva = round(subtotal * IVA_RATE, 2) if requiere_factura else 0.0
    return {"items": lines, "subtotal": subtotal, "iva": iva, "total": round(subtotal + iva, 2)}


def quote_item_errors(items: List[Dict[str, Any]]) -> List[str]:
    errors: List[str] = []
    for index, item in enumerate(items or [], start=1):
        if not str(item.get("descripcion") or "").strip():
            errors.append(f"Partida {index}: descripción requerida")
        if to_number(item.get("cantidad")) < 1:
            errors.append(f"Partida {index}: cantidad mínima 1")
        if to_number(item.get("precio")) < 0:
            errors.append(f"Partida {index}: precio no negativo")
    return errors


# Budgets (presupuestos)


def category_subtotal(items: List[Dict[str, Any]]) -> float:
    return sum(to_number(item.get("cantidad")) * to_number(item.get("prec_venta_unitario")) for item in items)


def budget_summary(items: List[Dict[str, Any]], indirectos_porcentaje: Any, iva_porcentaje: Any) -> Dict[str, float]:
    costo_directo = sum(to_number(item.get("cantidad")) * to_number(item.get("costo_unitario")) for item in items)
    venta_directa = category_subtotal(items)
    indirectos = venta_directa * to_number(indirectos_porcentaje) / 100
    subtotal = venta_directa + indirectos
    iva = subtotal * to_number(iva_porcentaje)
    margen = subtotal - costo_directo
    return {
        "costo_directo": costo_directo,
        "venta_directa": venta_directa,
        "indirectos": indirectos,
        "subtotal": subtotal,
        "iva": iva,
        "total": subtotal + iva,
        "margen": margen,
        "margen_porcentaje": (margen / subtotal * 100) if subtotal else 0.0,
    }


def fetch_budget_versions(project_id: int) -> List[Dict[str, Any]]:
    return db.fetch_all_rows(
        "SELECT * FROM presupuestos WHERE proyecto_id = %s ORDER BY version DESC",
        (project_id,),
    )


def fetch_budget_categories(presupuesto_id: int) -> List[Dict[str, Any]]:
    categories = db.fetch_all_rows(
        "SELECT * FROM presupuesto_categorias WHERE presupuesto_id = %s ORDER BY orden, id",
        (presupuesto_id,),
    )
    if not categories:
        return []
    items = db.fetch_all_rows(
        "SELECT * FROM presupuesto_items WHERE categoria_id = ANY(%s) ORDER BY orden, id",
        ([category["id"] for category in categories],),
    )
    by_category: Dict[Any, List[Dict[str, Any]]] = {}
    for item in items:
        by_category.setdefault(item["categoria_id"], []).append(item)
    for category in categories:
        category["items"] = by_category.get(category["id"], [])
        category["subtotal"] = category_subtotal(category["items"])
    return categories


def fetch_budget(presupuesto_id: int) -> Dict[str, Any] | None:
    budget = db.fetch_one("SELECT * FROM presupuestos WHERE id = %s", (presupuesto_id,))
    if budget is None:
        return None
    budget["categorias"] = fetch_budget_categories(presupuesto_id)
    all_items = [item for category in budget["categorias"] for item in category["items"]]
    budget["resumen"] = budget_summary(all_items, budget.get("indirectos_porcentaje"), budget.get("iva_porcentaje"))
    return budget


def create_budget_version(project_id: int) -> int:
    row = db.fetch_one(
        "SELECT MAX(version) AS version FROM presupuestos WHERE proyecto_id = %s",
        (project_id,),
    )
    version = int(row["version"]) + 1 if row and row.get("version") is not None else 1
    created = db.execute_returning(
        "INSERT INTO presupuestos (proyecto_id, version, nombre, estatus, indirectos_porcentaje, iva_porcentaje, "
        "total_costo_directo, total_venta_directa, total_final) "
        "VALUES (%s, %s, %s, 'Borrador', 0, %s, 0, 0, 0) RETURNING id",
        (project_id, version, f"Versión {version}", IVA_RATE),
    )
    presupuesto_id = int(created["id"]) if created else 0
    for nombre, orden in DEFAULT_BUDGET_CATEGORIES:
        db.execute_sql(
            "INSERT INTO presupuesto_categorias (presupuesto_id, nombre, orden) VALUES (%s, %s, %s)",
            (presupuesto_id, nombre, orden),
        )
    db.commit()
    logger.info("Created budget version %s for project %s", version, project_id)
    return presupuesto_id


def add_budget_category(presupuesto_id: int, nombre: str) -> None:
    nombre = (nombre or "").strip()
    if not nombre:
        raise ValueError("El nombre de la categoría es requerido")
    row = db.fetch_one(
        "SELECT COUNT(*) AS total FROM presupuesto_categorias WHERE presupuesto_id = %s",
        (presupuesto_id,),
    )
    db.execute_sql(
        "INSERT INTO presupuesto_categorias (presupuesto_id, nombre, orden) VALUES (%s, %s, %s)",
        (presupuesto_id, nombre, int(row["total"] if row else 0) + 1),
    )
    db.commit()


def delete_budget_category(categoria_id: int) -> None:
    db.execute_sql("DELETE FROM presupuesto_categorias WHERE id = %s", (categoria_id,))
    db.commit()


def add_budget_item(categoria_id: int, concepto: str = "Nuevo concepto") -> None:
    row = db.fetch_one(
        "SELECT COUNT(*) AS total FROM presupuesto_items WHERE categoria_id = %s",
        (categoria_id,),
    )
    db.execute_sql(
        "INSERT INTO presupuesto_items (categoria_id, concepto, unidad, cantidad, costo_unitario, prec_venta_unitario, orden) "
        "VALUES (%s, %s, 'pza', 1, 0, 0, %s)",
        (categoria_id, concepto, int(row["total"] if row else 0) + 1),
    )
    db.commit()


BUDGET_ITEM_FIELDS = {"concepto": str, "unidad": str, "cantidad": to_number, "costo_unitario": to_number, "prec_venta_unitario": to_number}


def update_budget_item(item_id: int, payload: Dict[str, Any]) -> None:
    data = {name: cast(payload[name]) for name, cast in BUDGET_ITEM_FIELDS.items() if name in payload}
    if not data:
        return
    assignments = ", ".join(f"{key} = %s" for key in data)
    db.execute_sql(f"UPDATE presupuesto_items SET {assignments} WHERE id = %s", list(data.values()) + [item_id])
    db.commit()


def delete_budget_item(item_id: int) -> None:
    db.execute_sql("DELETE FROM presupuesto_items WHERE id = %s", (item_id,))
    db.commit()


def update_budget_settings(presupuesto_id: int, indirectos_porcentaje: Any, iva_porcentaje: Any) -> None:
    db.execute_sql(
        "UPDATE presupuestos SET indirectos_porcentaje = %s, iva_porcentaje = %s WHERE id = %s",
        (to_number(indirectos_porcentaje), to_number(iva_porcentaje), presupuesto_id),
    )
    db.commit()


def save_budget_totals(presupuesto_id: int) -> Dict[str, float]:
    budget = fetch_budget(presupuesto_id)
    if budget is None:
        raise LookupError(f"Presupuesto {presupuesto_id} no existe")
    summary = budget["resumen"]
    db.execute_sql(
        "UPDATE presupuestos SET total_costo_directo = %s, total_venta_directa = %s, total_final = %s WHERE id = %s",
        (round(summary["costo_directo"], 2), round(summary["venta_directa"], 2), round(summary["total"], 2), presupuesto_id),
    )
    db.commit()
    return summary


# Budget vs. actual expenses


def compare_budget_to_expenses(categories: List[Dict[str, Any]], expenses: List[Dict[str, Any]]) -> Dict[str, Any]:
    budgeted: Dict[str, float] = {}
    for category in categories:
        name = category.get("nombre") or UNCATEGORIZED
        cost = sum(to_number(item.get("cantidad")) * to_number(item.get("costo_unitario")) for item in category.get("items", []))
        budgeted[name] = budgeted.get(name, 0.0) + cost

    spent: Dict[str, float] = {}
    for expense in expenses:
        name = expense.get("categoria") or UNCATEGORIZED
        spent[name] = spent.get(name, 0.0) + to_number(expense.get("monto"))

    rows: List[Dict[str, Any]] = []
    for name in list(budgeted) + [key for key in spent if key not in budgeted]:
        presupuestado = budgeted.get(name, 0.0)
        gastado = spent.get(name, 0.0)
        if presupuestado > 0:
            porcentaje = gastado / presupuestado * 100
        elif gastado > 0:
            porcentaje = 100.0
        else:
            porcentaje = 0.0
        rows.append(
            {
                "categoria": name,
                "presupuestado": presupuestado,
                "gastado": gastado,
                "variacion": presupuestado - gastado,
                "porcentaje": porcentaje,
            }
        )
    rows.sort(key=lambda row: row["gastado"], reverse=True)

    total_budgeted = sum(budgeted.values())
    total_spent = sum(spent.values())
    return {
        "rows": rows,
        "total_presupuestado": total_budgeted,
        "total_gastado": total_spent,
        "total_variacion": total_budgeted - total_spent,
        "total_porcentaje": (total_spent / total_budgeted * 100) if total_budgeted else (100.0 if total_spent else 0.0),
    }


def fetch_budget_comparison(project_id: int) -> Dict[str, Any]:
    latest = db.fetch_one(
        "SELECT id, version, nombre FROM presupuestos WHERE proyecto_id = %s ORDER BY version DESC LIMIT 1",
        (project_id,),
    )
    categories = fetch_budget_categories(int(latest["id"])) if latest else []
    expenses = db.fetch_all_rows("SELECT categoria, monto FROM gastos WHERE proyecto_id = %s", (project_id,))
    comparison = compare_budget_to_expenses(categories, expenses)
    comparison["presupuesto"] = latest
    return comparison


# Company finances


def _by_type(ingresos: List[Dict[str, Any]], tipo: str) -> float:
    return _sum(row for row in ingresos if row.get("tipo") == tipo)


def pending_receivable(presupuestos: List[Dict[str, Any]], ingresos: List[Dict[str, Any]]) -> float:
    """Sum of what each budgeted project still owes; overpaid projects count as zero."""
    total = 0.0
    project_ids = list(dict.fromkeys(row.get("proyecto_id") for row in presupuestos))
    for project_id in project_ids:
        client_total = _sum((row for row in presupuestos if row.get("proyecto_id") == project_id), "total_final")
        received = [row for row in ingresos if row.get("proyecto_id") == project_id]
        remaining = client_total - _by_type(received, "Anticipo") - _by_type(received, "Abono") - _by_type(received, "Liquidación")
        if remaining > 0:
            total += remaining
    return total


def balance_summary(
    ingresos: List[Dict[str, Any]],
    gastos_operacion: List[Dict[str, Any]],
    retiros: List[Dict[str, Any]],
    gastos_proyectos: List[Dict[str, Any]],
    presupuestos: List[Dict[str, Any]],
) -> Dict[str, float]:
    total_ingresos = _sum(ingresos)
    total_gastos_op = _sum(gastos_operacion)
    total_retiros = _sum(retiros)
    total_gastos_proyectos = _sum(gastos_proyectos)
    return {
        "ingresos": total_ingresos,
        "gastos_operacion": total_gastos_op,
        "gastos_proyectos": total_gastos_proyectos,
        "retiros": total_retiros,
        "pendiente": pending_receivable(presupuestos, ingresos),
        "saldo": total_ingresos - total_gastos_op - total_retiros - total_gastos_proyectos,
    }


def _shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def monthly_movements(
    ingresos: List[Dict[str, Any]],
    gastos_operacion: List[Dict[str, Any]],
    retiros: List[Dict[str, Any]],
    today: date | None = None,
    months: int = 6,
) -> List[Dict[str, Any]]:
    today = today or date.today()

    def month_total(rows: List[Dict[str, Any]], year: int, month: int) -> float:
        total = 0.0
        for row in rows:
            when = parse_date(row.get("fecha"))
            if when is not None and when.year == year and when.month == month:
                total += to_number(row.get("monto"))
        return total

    series: List[Dict[str, Any]] = []
    for offset in range(months - 1, -1, -1):
        year, month = _shift_month(today.year, today.month, -offset)
        series.append(
            {
                "mes": month_label(year, month),
                "ingresos": month_total(ingresos, year, month),
                "gastos_operacion": month_total(gastos_operacion, year, month),
                "retiros": month_total(retiros, year, month),
            }
        )
    return series


def project_finance_rows(
    projects: List[Dict[str, Any]],
    ingresos: List[Dict[str, Any]],
    gastos: List[Dict[str, Any]],
) -> Dict[str, Any]:
    rows: List[Dict[str, Any]] = []
    for project in projects:
        received = [row for row in ingresos if row.get("proyecto_id") == project["id"]]
        anticipos = _by_type(received, "Anticipo")
        abonos = _by_type(received, "Abono")
        liquidacion = _by_type(received, "Liquidación")
        otros = _by_type(received, "Otro")
        total_ingresos = anticipos + abonos + liquidacion + otros
        costo_real = _sum(row for row in gastos if row.get("proyecto_id") == project["id"])
        utilidad = total_ingresos - costo_real
        rows.append(
            {
                "id": project["id"],
                "nombre": project.get("nombre"),
                "anticipos": anticipos,
                "abonos": abonos,
                "liquidacion": liquidacion,
                "otros": otros,
                "total_ingresos": total_ingresos,
                "costo_real": costo_real,
                "utilidad": utilidad,
                "utilidad_porcentaje": (utilidad / total_ingresos * 100) if total_ingresos > 0 else 0.0,
            }
        )

    totals = {
        key: sum(row[key] for row in rows)
        for key in ("anticipos", "abonos", "liquidacion", "otros", "total_ingresos", "costo_real", "utilidad")
    }
    totals["utilidad_porcentaje"] = (
        totals["utilidad"] / totals["total_ingresos"] * 100 if totals["total_ingresos"] > 0 else 0.0
    )
    return {"rows": rows, "totals": totals}


def load_finance_data() -> Dict[str, Any]:
    ingresos = db.fetch_all_rows(
        "SELECT i.*, p.nombre AS proyecto_nombre FROM finanzas_ingresos i "
        "LEFT JOIN proyectos p ON p.id = i.proyecto_id ORDER BY i.fecha DESC NULLS LAST"
    )
    gastos_operacion = db.fetch_all_rows("SELECT * FROM finanzas_gastos_operacion ORDER BY fecha DESC NULLS LAST")
    retiros = db.fetch_all_rows("SELECT * FROM finanzas_retiros ORDER BY fecha DESC NULLS LAST")
    projects = db.fetch_all_rows("SELECT id, nombre FROM proyectos ORDER BY nombre")
    gastos = db.fetch_all_rows("SELECT id, proyecto_id, monto FROM gastos")
    presupuestos = db.fetch_all_rows("SELECT id, proyecto_id, total_final FROM presupuestos")
    return {
        "ingresos": ingresos,
        "gastos_operacion": gastos_operacion,
        "retiros": retiros,
        "projects": projects,
        "balance": balance_summary(ingresos, gastos_operacion, retiros, gastos, presupuestos),
        "monthly": monthly_movements(ingresos, gastos_operacion, retiros),
        "by_project": project_finance_rows(projects, ingresos, gastos),
    }


def empty_finance_data(error: str = "") -> Dict[str, Any]:
    return {
        "ingresos": [],
        "gastos_operacion": [],
        "retiros": [],
        "projects": [],
        "balance": balance_summary([], [], [], [], []),
        "monthly": monthly_movements([], [], []),
        "by_project": project_finance_rows([], [], []),
        "error": error,
    }


def load_finance_data_safe() -> Dict[str, Any]:
    try:
        data = load_finance_data()
    except Exception as exc:
        logger.exception("Failed to load finance data")
        return empty_finance_data(error=str(exc))
    data["error"] = ""
    return data
