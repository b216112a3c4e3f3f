"""
SQL schema templates for the legacy and target stores.

Tables:
    - legacy: ``dispatch_state`` (the legacy status records)
    - target: ``profiles``, ``orders``, ``order_states`` (lookups),
      ``instruction_states`` and ``order_state_history`` (migration output)

Supported backends:
    - postgresql (default)
    - sqlite

Usage:
    from statetrail.schemas import get_schema, get_schema_statements

    # Whole script, e.g. for aiosqlite's executescript()
    target_sql = get_schema("target", backend="sqlite")

    # One statement at a time, e.g. for asyncpg which rejects multi-statement text
    async with engine.begin() as conn:
        for statement in get_schema_statements("all"):
            await conn.execute(text(statement))
"""

from pathlib import Path
from typing import Literal

SchemaName = Literal["legacy", "target", "all"]

BackendName = Literal["postgresql", "sqlite"]

_TEMPLATES_DIR = Path(__file__).parent / "templates"

_SCHEMA_FILES: dict[str, tuple[str, ...]] = {
    "legacy": ("legacy",),
    "target": ("target",),
    "all": ("legacy", "target"),
}


def list_schemas(backend: BackendName = "postgresql") -> list[str]:
    """
    List the schema templates available for a backend.

    Args:
        backend: The database backend (postgresql, sqlite).

    Returns:
        Sorted schema names, excluding the combined "all".
    """
    backend_dir = _TEMPLATES_DIR / backend
    if not backend_dir.is_dir():
        return []
    return sorted(path.stem for path in backend_dir.glob("*.sql"))


def get_template_path(name: str, backend: BackendName = "postgresql") -> Path:
    """
    Get the path to a single SQL template file.

    Args:
        name: Template name ("legacy" or "target").
        backend: The database backend.

    Returns:
        Path to the SQL template file.

    Raises:
        ValueError: If the template is not available for the backend.
    """
    path = _TEMPLATES_DIR / backend / f"{name}.sql"
    if not path.exists():
        raise ValueError(
            f"Schema '{name}' is not available for backend '{backend}'. "
            f"Available schemas: {list_schemas(backend)}"
        )
    return path


def get_schema(name: SchemaName, backend: BackendName = "postgresql") -> str:
    """
    Load a SQL schema by name and backend.

    Args:
        name: One of "legacy", "target", or "all" (both combined).
        backend: One of "postgresql" (default) or "sqlite".

    Returns:
        SQL schema definition as a string.

    Raises:
        ValueError: If the schema name or backend is unknown.

    Example:
        >>> from statetrail.schemas import get_schema
        >>> sql = get_schema("legacy", backend="sqlite")
    """
    if name not in _SCHEMA_FILES:
        raise ValueError(f"Unknown schema '{name}'. Expected one of {sorted(_SCHEMA_FILES)}")

    parts = [get_template_path(part, backend).read_text() for part in _SCHEMA_FILES[name]]
    return "\n".join(parts)


def get_schema_statements(name: SchemaName, backend: BackendName = "postgresql") -> list[str]:
    """
    Load a SQL schema split into individual statements.

    Args:
        name: One of "legacy", "target", or "all".
        backend: The database backend.

    Returns:
        Non-empty statements without their trailing semicolons.
    """
    statements = []
    for chunk in get_schema(name, backend).split(";"):
        lines = [line for line in chunk.splitlines() if not line.strip().startswith("--")]
        statement = "\n".join(lines).strip()
        if statement:
            statements.append(statement)
    return statements


__all__ = [
    "SchemaName",
    "BackendName",
    "list_schemas",
    "get_template_path",
    "get_schema",
    "get_schema_statements",
]
