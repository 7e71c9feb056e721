"""
Database dialects. A dialect is plain data: the keywords to offer for
completion and highlighting, how to quote an identifier, and the queries
that list tables, columns and databases. Supporting another engine means
adding another Dialect here; nothing else in the shell has to change.
"""

from dataclasses import dataclass
from enum import StrEnum

from sqcl.errors import UnsupportedDriverError


class EngineName(StrEnum):
    """
    SQLAlchemy engine names for which there's a dialect.
    """

    MYSQL = "mysql"
    POSTGRES = "postgresql"
    SQLITE = "sqlite"


@dataclass(frozen=True)
class Dialect:
    """
    One engine's keyword set and introspection queries. `columns_query` takes
    a `:table_name` bind parameter and must return five columns: name, data
    type, "YES"/"NO" nullability, "PRI" for primary key columns, and the
    default value.
    """

    name: str
    keywords: tuple[str, ...]
    identifier_quote: str
    tables_query: str
    columns_query: str
    databases_query: str
    current_database_query: str

    def quote_identifier(self, name: str) -> str:
        """
        Quote an identifier, doubling any embedded quote characters.
        """
        q = self.identifier_quote
        return f"{q}{name.replace(q, q + q)}{q}"


COMMON_KEYWORDS: tuple[str, ...] = (
    "SELECT", "FROM", "WHERE", "AND", "OR", "NOT", "IN", "LIKE",
    "ORDER", "BY", "ASC", "DESC", "LIMIT", "OFFSET", "GROUP",
    "HAVING", "JOIN", "LEFT", "RIGHT", "INNER", "OUTER", "CROSS",
    "ON", "AS", "DISTINCT", "ALL", "UNION", "INTERSECT", "EXCEPT",
    "INSERT", "INTO", "VALUES", "UPDATE", "SET", "DELETE",
    "CREATE", "TABLE", "INDEX", "VIEW", "DROP", "ALTER",
    "ADD", "COLUMN", "PRIMARY", "KEY", "FOREIGN", "REFERENCES",
    "UNIQUE", "CHECK", "DEFAULT", "NULL",
    "IF", "EXISTS", "CASE", "WHEN", "THEN", "ELSE", "END",
    "COUNT", "SUM", "AVG", "MIN", "MAX", "COALESCE", "NULLIF",
    "CAST", "TRUE", "FALSE", "BETWEEN", "IS", "ESCAPE", "EXPLAIN",
    "RENAME", "TO", "BEGIN", "COMMIT", "ROLLBACK", "TRANSACTION",
    "SAVEPOINT", "INTEGER", "TEXT",
)

MYSQL = Dialect(
    name=EngineName.MYSQL.value,
    keywords=COMMON_KEYWORDS
    + (
        "DATABASE", "AUTO_INCREMENT", "CONVERT", "DATE", "TIME",
        "DATETIME", "TIMESTAMP", "YEAR", "MONTH", "DAY", "HOUR", "MINUTE",
        "SECOND", "SHOW", "TABLES", "DATABASES", "COLUMNS", "DESCRIBE",
        "USE", "TRUNCATE", "GRANT", "REVOKE", "INT", "BIGINT", "SMALLINT",
        "TINYINT", "FLOAT", "DOUBLE", "DECIMAL", "NUMERIC", "VARCHAR",
        "CHAR", "BLOB", "BINARY", "VARBINARY", "BOOLEAN", "BOOL", "ENUM",
        "JSON",
    ),
    identifier_quote="`",
    tables_query="SHOW TABLES",
    columns_query=(
        "SELECT column_name, data_type, is_nullable, column_key, "
        "column_default "
        "FROM information_schema.columns "
        "WHERE table_name = :table_name AND table_schema = DATABASE() "
        "ORDER BY ordinal_position"
    ),
    databases_query="SHOW DATABASES",
    current_database_query="SELECT DATABASE()",
)

POSTGRES = Dialect(
    name=EngineName.POSTGRES.value,
    keywords=COMMON_KEYWORDS
    + (
        "DATABASE", "SCHEMA", "RETURNING", "ILIKE", "SERIAL", "BIGSERIAL",
        "VARCHAR", "CHAR", "BOOLEAN", "NUMERIC", "DATE", "TIMESTAMP",
        "TIMESTAMPTZ", "INTERVAL", "JSON", "JSONB", "UUID", "BYTEA",
        "TRUNCATE", "GRANT", "REVOKE", "ANALYZE", "VACUUM",
    ),
    identifier_quote='"',
    tables_query=(
        "SELECT table_name FROM information_schema.tables "
        "WHERE table_schema = current_schema() "
        "ORDER BY table_name"
    ),
    columns_query=(
        "SELECT c.column_name, c.data_type, c.is_nullable, "
        "CASE WHEN EXISTS ("
        "SELECT 1 FROM information_schema.table_constraints AS tc "
        "JOIN information_schema.key_column_usage AS k "
        "ON tc.constraint_name = k.constraint_name "
        "AND tc.table_schema = k.table_schema "
        "WHERE tc.constraint_type = 'PRIMARY KEY' "
        "AND tc.table_schema = c.table_schema "
        "AND k.table_name = c.table_name "
        "AND k.column_name = c.column_name"
        ") THEN 'PRI' ELSE '' END AS column_key, "
        "c.column_default "
        "FROM information_schema.columns AS c "
        "WHERE c.table_name = :table_name "
        "AND c.table_schema = current_schema() "
        "ORDER BY c.ordinal_position"
    ),
    databases_query=(
        "SELECT datname FROM pg_database WHERE NOT datistemplate "
        "ORDER BY datname"
    ),
    current_database_query="SELECT current_database()",
)

SQLITE = Dialect(
    name=EngineName.SQLITE.value,
    keywords=COMMON_KEYWORDS
    + (
        "PRAGMA", "ATTACH", "DETACH", "DATABASE", "VACUUM", "ANALYZE",
        "AUTOINCREMENT", "GLOB", "REPLACE", "WITHOUT", "ROWID", "REAL",
        "BLOB", "NUMERIC",
    ),
    identifier_quote='"',
    tables_query=(
        "SELECT name FROM sqlite_master "
        "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' "
        "ORDER BY name"
    ),
    columns_query=(
        "SELECT name, type, "
        "CASE WHEN \"notnull\" = 0 THEN 'YES' ELSE 'NO' END, "
        "CASE WHEN pk > 0 THEN 'PRI' ELSE '' END, "
        "dflt_value "
        "FROM pragma_table_info(:table_name) "
        "ORDER BY cid"
    ),
    databases_query="SELECT name FROM pragma_database_list ORDER BY seq",
    current_database_query=(
        "SELECT name FROM pragma_database_list WHERE seq = 0"
    ),
)

DIALECTS: dict[str, Dialect] = {
    d.name: d for d in (MYSQL, POSTGRES, SQLITE)
}


def get_dialect(engine_name: str) -> Dialect:
    """
    Look up the dialect for a SQLAlchemy engine name (e.g., "mysql").

    :raises UnsupportedDriverError: if there's no dialect for the engine
    """
    match DIALECTS.get(engine_name):
        case None:
            supported = ", ".join(sorted(DIALECTS))
            raise UnsupportedDriverError(
                f'No dialect for database engine "{engine_name}". '
                f"Supported engines: {supported}."
            )
        case dialect:
            return dialect
