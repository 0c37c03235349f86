from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List

from flask import g, has_app_context
from psycopg2 import pool
from psycopg2.extras import RealDictCursor

from . import config

logger = logging.getLogger(__name__)

DB_POOL: pool.ThreadedConnectionPool | None = None

Params = List[Any] | tuple[Any, ...] | None

TRACKED_TABLES = [
    "proyectos",
    "tareas",
    "tarea_checklists",
    "tarea_checklist_items",
    "gastos",
    "incidencias",
    "incidencia_tareas",
    "cotizaciones",
    "levantamientos",
    "reportes",
    "minutas",
    "reuniones_clientes",
    "notas",
    "presupuestos",
    "presupuesto_categorias",
    "presupuesto_items",
    "finanzas_ingresos",
    "finanzas_gastos_operacion",
    "finanzas_retiros",
    "profiles",
]


def get_db_pool() -> pool.ThreadedConnectionPool:
    global DB_POOL
    if DB_POOL is None:
        DB_POOL = pool.ThreadedConnectionPool(minconn=1, maxconn=config.DB_POOL_MAX, dsn=config.database_url())
    return DB_POOL


def _release(conn) -> None:
    try:
        conn.rollback()
    except Exception:
        logger.exception("Rollback failed while returning connection to pool")
    get_db_pool().putconn(conn)


@contextmanager
def connection() -> Iterator[Any]:
    """Borrow a pooled connection for one unit of work.

    Commits when the block exits cleanly, rolls back otherwise, and always
    hands the connection back to the pool.
    """
    conn = get_db_pool().getconn()
    try:
        yield conn
        conn.commit()
    finally:
        _release(conn)


def get_db():
    if "db" not in g:
        g.db = get_db_pool().getconn()
    return g.db


def close_db(exc: BaseException | None = None) -> None:
    conn = g.pop("db", None)
    if conn is not None:
        _release(conn)


def borrow_per_query() -> None:
    """Stop pinning a connection to the current app context.

    A reactpy session keeps its request context open for as long as the
    browser tab stays connected; from here on each query borrows a pooled
    connection and hands it back when done.
    """
    if has_app_context():
        g.db_per_query = True
        close_db()


def _uses_request_connection() -> bool:
    return has_app_context() and not g.get("db_per_query", False)


@contextmanager
def _cursor(**kwargs: Any) -> Iterator[Any]:
    if _uses_request_connection():
        with get_db().cursor(**kwargs) as cursor:
            yield cursor
        return
    with connection() as conn:
        with conn.cursor(**kwargs) as cursor:
            yield cursor


def _to_postgres_placeholders(query: str) -> str:
    return query.replace("?", "%s")


def fetch_one(query: str, params: Params = None) -> Dict[str, Any] | None:
    with _cursor(cursor_factory=RealDictCursor) as cursor:
        cursor.execute(_to_postgres_placeholders(query), params)
        row = cursor.fetchone()
        return dict(row) if row is not None else None


def fetch_all_rows(query: str, params: Params = None) -> List[Dict[str, Any]]:
    with _cursor(cursor_factory=RealDictCursor) as cursor:
        cursor.execute(_to_postgres_placeholders(query), params)
        return [dict(row) for row in cursor.fetchall()]


def execute_sql(query: str, params: Params = None) -> None:
    with _cursor() as cursor:
        cursor.execute(_to_postgres_placeholders(query), params)


def execute_returning(query: str, params: Params = None) -> Dict[str, Any] | None:
    """Run an INSERT/UPDATE ... RETURNING statement and hand back the row."""
    with _cursor(cursor_factory=RealDictCursor) as cursor:
        cursor.execute(_to_postgres_placeholders(query), params)
        row = cursor.fetchone()
        return dict(row) if row is not None else None


def commit() -> None:
    if _uses_request_connection():
        get_db().commit()


def ensure_column(conn, table: str, column: str, col_type: str) -> None:
    with conn.cursor() as cursor:
        cursor.execute(f"ALTER TABLE {table} ADD COLUMN IF NOT EXISTS {column} {col_type}")


SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS profiles (
        id UUID PRIMARY KEY,
        email TEXT,
        full_name TEXT,
        avatar_url TEXT,
        role TEXT DEFAULT 'user',
        status TEXT DEFAULT 'active',
        created_at TIMESTAMPTZ DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS proyectos (
        id BIGSERIAL PRIMARY KEY,
        nombre TEXT NOT NULL,
        cliente TEXT,
        solicitante TEXT,
        ubicacion TEXT,
        fecha_inicio DATE,
        status TEXT DEFAULT 'Activo',
        created_at TIMESTAMPTZ DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tareas (
        id BIGSERIAL PRIMARY KEY,
        titulo TEXT NOT NULL,
        descripcion TEXT,
        observaciones TEXT,
        proyecto_id BIGINT REFERENCES proyectos(id) ON DELETE CASCADE,
        prioridad TEXT DEFAULT 'Media',
        estatus TEXT DEFAULT 'Pendiente',
        fecha_inicio DATE,
        fecha_fin DATE,
        fecha_inicio_real DATE,
        fecha_fin_real DATE,
        created_at TIMESTAMPTZ DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tarea_checklists (
        id BIGSERIAL PRIMARY KEY,
        tarea_id BIGINT REFERENCES tareas(id) ON DELETE CASCADE,
        nombre TEXT NOT NULL,
        created_at TIMESTAMPTZ DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tarea_checklist_items (
        id BIGSERIAL PRIMARY KEY,
        checklist_id BIGINT REFERENCES tarea_checklists(id) ON DELETE CASCADE,
        texto TEXT NOT NULL,
        completado BOOLEAN DEFAULT FALSE,
        posicion INTEGER DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS gastos (
        id BIGSERIAL PRIMARY KEY,
        fecha DATE,
        concepto TEXT,
        monto NUMERIC(14, 2) DEFAULT 0,
        categoria TEXT,
        ticket_url TEXT[],
        proyecto_id BIGINT REFERENCES proyectos(id) ON DELETE SET NULL,
        usuario_id UUID,
        created_at TIMESTAMPTZ DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS incidencias (
        id BIGSERIAL PRIMARY KEY,
        titulo TEXT NOT NULL,
        descripcion TEXT,
        severidad TEXT DEFAULT 'Media',
        estatus TEXT DEFAULT 'Abierta',
        fecha_inicio DATE,
        impacto_costo NUMERIC(14, 2),
        impacto_tiempo TEXT,
        evidencia_fotos TEXT[],
        proyecto_id BIGINT REFERENCES proyectos(id) ON DELETE CASCADE,
        solucion_final TEXT,
        fecha_cierre DATE,
        created_at TIMESTAMPTZ DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS incidencia_tareas (
        incidencia_id BIGINT REFERENCES incidencias(id) ON DELETE CASCADE,
        tarea_id BIGINT REFERENCES tareas(id) ON DELETE CASCADE,
        PRIMARY KEY (incidencia_id, tarea_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS cotizaciones (
        id BIGSERIAL PRIMARY KEY,
        folio TEXT,
        cliente TEXT,
        fecha_emision DATE,
        estatus TEXT DEFAULT 'Borrador',
        proyecto_id BIGINT REFERENCES proyectos(id) ON DELETE SET NULL,
        solicitante TEXT,
        ubicacion TEXT,
        requiere_factura BOOLEAN DEFAULT FALSE,
        items_json JSONB,
        subtotal NUMERIC(14, 2) DEFAULT 0,
        iva NUMERIC(14, 2) DEFAULT 0,
        total NUMERIC(14, 2) DEFAULT 0,
        vigencia TEXT,
        pdf_url TEXT,
        created_at TIMESTAMPTZ DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS levantamientos (
        id BIGSERIAL PRIMARY KEY,
        folio TEXT,
        cliente_prospecto TEXT,
        tipo_servicio TEXT,
        estatus TEXT,
        fecha_visita DATE,
        ubicacion TEXT,
        proyecto_id BIGINT REFERENCES proyectos(id) ON DELETE SET NULL,
        detalles_tecnicos TEXT,
        requerimientos TEXT,
        medidas_aprox TEXT,
        tecnicos TEXT,
        evidencia_fotos TEXT[],
        pdf_final_url TEXT,
        created_at TIMESTAMPTZ DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS reportes (
        id BIGSERIAL PRIMARY KEY,
        folio TEXT,
        resumen_titulo TEXT,
        tipo TEXT,
        fecha_reporte DATE,
        proyecto_id BIGINT REFERENCES proyectos(id) ON DELETE SET NULL,
        solicitante TEXT,
        ubicacion TEXT,
        actividades TEXT,
        materiales TEXT,
        observaciones TEXT,
        duracion TEXT,
        generado_por TEXT,
        fotos_url TEXT[],
        pdf_final_url TEXT,
        created_at TIMESTAMPTZ DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS minutas (
        id BIGSERIAL PRIMARY KEY,
        proyecto_id BIGINT REFERENCES proyectos(id) ON DELETE SET NULL,
        fecha DATE,
        titulo TEXT,
        participantes TEXT,
        puntos_tratados TEXT,
        acuerdos TEXT,
        pendientes TEXT,
        siguiente_reunion DATE,
        created_at TIMESTAMPTZ DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS reuniones_clientes (
        id BIGSERIAL PRIMARY KEY,
        proyecto_id BIGINT REFERENCES proyectos(id) ON DELETE SET NULL,
        cliente TEXT,
        fecha DATE,
        titulo TEXT,
        participantes TEXT,
        temas_tratados TEXT,
        acuerdos TEXT,
        pendientes TEXT,
        siguiente_reunion DATE,
        created_at TIMESTAMPTZ DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS notas (
        id BIGSERIAL PRIMARY KEY,
        titulo TEXT,
        contenido TEXT,
        fecha DATE,
        proyecto_id BIGINT REFERENCES proyectos(id) ON DELETE SET NULL,
        tarea_id BIGINT REFERENCES tareas(id) ON DELETE SET NULL,
        url_imagenes TEXT[],
        autor TEXT,
        autor_ultima_actualizacion TEXT,
        ultima_actualizacion TIMESTAMPTZ,
        created_at TIMESTAMPTZ DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS presupuestos (
        id BIGSERIAL PRIMARY KEY,
        proyecto_id BIGINT REFERENCES proyectos(id) ON DELETE CASCADE,
        version INTEGER NOT NULL DEFAULT 1,
        nombre TEXT,
        estatus TEXT DEFAULT 'Borrador',
        indirectos_porcentaje NUMERIC(6, 2) DEFAULT 0,
        iva_porcentaje NUMERIC(6, 4) DEFAULT 0.16,
        total_costo_directo NUMERIC(14, 2) DEFAULT 0,
        total_venta_directa NUMERIC(14, 2) DEFAULT 0,
        total_final NUMERIC(14, 2) DEFAULT 0,
        created_at TIMESTAMPTZ DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS presupuesto_categorias (
        id BIGSERIAL PRIMARY KEY,
        presupuesto_id BIGINT REFERENCES presupuestos(id) ON DELETE CASCADE,
        nombre TEXT NOT NULL,
        orden INTEGER DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS presupuesto_items (
        id BIGSERIAL PRIMARY KEY,
        categoria_id BIGINT REFERENCES presupuesto_categorias(id) ON DELETE CASCADE,
        concepto TEXT,
        unidad TEXT DEFAULT 'pza',
        cantidad NUMERIC(14, 3) DEFAULT 1,
        costo_unitario NUMERIC(14, 2) DEFAULT 0,
        prec_venta_unitario NUMERIC(14, 2) DEFAULT 0,
        orden INTEGER DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS finanzas_ingresos (
        id BIGSERIAL PRIMARY KEY,
        proyecto_id BIGINT REFERENCES proyectos(id) ON DELETE SET NULL,
        tipo TEXT DEFAULT 'Anticipo',
        monto NUMERIC(14, 2) DEFAULT 0,
        fecha DATE,
        descripcion TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS finanzas_gastos_operacion (
        id BIGSERIAL PRIMARY KEY,
        categoria TEXT DEFAULT 'Otro',
        concepto TEXT,
        monto NUMERIC(14, 2) DEFAULT 0,
        fecha DATE,
        descripcion TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS finanzas_retiros (
        id BIGSERIAL PRIMARY KEY,
        monto NUMERIC(14, 2) DEFAULT 0,
        fecha DATE,
        descripcion TEXT
    )
    """,
]

NOTIFY_FUNCTION = """
CREATE OR REPLACE FUNCTION notify_table_change() RETURNS trigger AS $$
DECLARE
    new_row JSONB := CASE WHEN TG_OP = 'DELETE' THEN NULL ELSE to_jsonb(NEW) END;
    old_row JSONB := CASE WHEN TG_OP = 'INSERT' THEN NULL ELSE to_jsonb(OLD) END;
BEGIN
    PERFORM pg_notify(
        TG_ARGV[0],
        json_build_object(
            'table', TG_TABLE_NAME,
            'type', TG_OP,
            'record', jsonb_strip_nulls(jsonb_build_object(
                'id', new_row -> 'id',
                'proyecto_id', new_row -> 'proyecto_id',
                'tarea_id', new_row -> 'tarea_id',
                'checklist_id', new_row -> 'checklist_id',
                'incidencia_id', new_row -> 'incidencia_id'
            )),
            'old_record', jsonb_strip_nulls(jsonb_build_object(
                'id', old_row -> 'id',
                'proyecto_id', old_row -> 'proyecto_id',
                'tarea_id', old_row -> 'tarea_id',
                'checklist_id', old_row -> 'checklist_id',
                'incidencia_id', old_row -> 'incidencia_id'
            ))
        )::text
    );
    RETURN NULL;
END;
$$ LANGUAGE plpgsql
"""


def init_db(conn) -> None:
    with conn.cursor() as cursor:
        for statement in SCHEMA_STATEMENTS:
            cursor.execute(statement)
        cursor.execute(NOTIFY_FUNCTION)
        for table in TRACKED_TABLES:
            cursor.execute(f"DROP TRIGGER IF EXISTS {table}_notify ON {table}")
            cursor.execute(
                f"CREATE TRIGGER {table}_notify AFTER INSERT OR UPDATE OR DELETE ON {table} "
                f"FOR EACH ROW EXECUTE FUNCTION notify_table_change(%s)",
                (config.REALTIME_CHANNEL,),
            )

    ensure_column(conn, "tareas", "observaciones", "TEXT")
    ensure_column(conn, "tareas", "fecha_inicio_real", "DATE")
    ensure_column(conn, "tareas", "fecha_fin_real", "DATE")
    ensure_column(conn, "incidencias", "solucion_final", "TEXT")
    ensure_column(conn, "incidencias", "fecha_cierre", "DATE")
    ensure_column(conn, "cotizaciones", "vigencia", "TEXT")
    ensure_column(conn, "notas", "autor_ultima_actualizacion", "TEXT")
    ensure_column(conn, "notas", "ultima_actualizacion", "TIMESTAMPTZ")

    conn.commit()


def maybe_init_db_on_startup() -> None:
    """Optionally initialize/upgrade schema at process startup.

    Schema changes never run on the request path. To run once, set
    RUN_DB_INIT=1, restart the app, then set RUN_DB_INIT=0 again.
    """
    if not config.RUN_DB_INIT:
        return

    logger.info("RUN_DB_INIT=1, creating schema and change triggers")
    with connection() as conn:
        init_db(conn)
