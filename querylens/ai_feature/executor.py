"""
EXECUTOR MODULE - Run validated SQL against a target database

Process:
    1. Validate SQL (SELECT only, no dangerous keywords)
    2. Resolve the dialect from the connection profile
    3. Open ONE connection, forced read-only, no pooling
    4. Set the statement timeout (1..300s, default 30s)
    5. Execute, materialize rows in column order
    6. Dispose the engine on every exit path

Failures (timeout, SQL error, connection/auth problems) come back as a failed
QueryResult with an ErrorKind. Only an unsupported database type is raised,
that is a configuration error.
"""

import asyncio
import logging
import time
from datetime import date, datetime, time as dt_time
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.engine import URL
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from querylens.ai_feature import sql_validator
from querylens.core.errors import UnsupportedDialect
from querylens.core.schemas import (
    ConnectionProfile,
    ErrorKind,
    ExecutionStage,
    QueryResult,
    utc_now,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30
MIN_TIMEOUT_SECONDS = 1
MAX_TIMEOUT_SECONDS = 300
CONNECT_TIMEOUT_SECONDS = 10

# Extra time the asyncio deadline gives the driver's own statement timeout
TIMEOUT_GRACE_SECONDS = 1.0

# SQLite VM instructions between two deadline checks
PROGRESS_HANDLER_STEPS = 1000

StageCallback = Callable[[ExecutionStage, Dict[str, Any]], None]


def clamp_timeout(
    timeout_seconds: Optional[int],
    default: int = DEFAULT_TIMEOUT_SECONDS,
    maximum: int = MAX_TIMEOUT_SECONDS,
) -> int:
    """
    Effective statement timeout.

    Example:
        clamp_timeout(None) -> 30
        clamp_timeout(0)    -> 30
        clamp_timeout(500)  -> 300
    """
    if timeout_seconds is None or timeout_seconds <= 0:
        return default
    return max(MIN_TIMEOUT_SECONDS, min(int(timeout_seconds), maximum))


def normalize_value(value: Any) -> Any:
    """
    Make a driver value JSON friendly.

    date/time/datetime -> ISO-8601 string
    Decimal            -> float (precision beyond a double is lost)
    """
    if isinstance(value, (datetime, date, dt_time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return value


# ============================================================================
# DIALECTS
# ============================================================================


class Dialect:
    """How to reach and lock down one database type."""

    name = ""
    drivername = ""
    default_port: Optional[int] = None

    def address(self, profile: ConnectionProfile) -> str:
        raise NotImplementedError

    def url(self, profile: ConnectionProfile) -> URL:
        # Credentials travel as URL fields, never inside the address template
        return URL.create(
            self.drivername,
            username=profile.username,
            password=profile.password or None,
            host=profile.host,
            port=profile.port or self.default_port,
            database=profile.database,
        )

    def connect_args(self, timeout_seconds: int, connect_timeout: int) -> Dict[str, Any]:
        return {}

    def session_statements(self, timeout_seconds: int) -> List[str]:
        return []

    async def prepare(self, connection: AsyncConnection, timeout_seconds: int) -> None:
        """Lock the session down right before the statement runs."""
        for statement in self.session_statements(timeout_seconds):
            await connection.exec_driver_sql(statement)

    def is_timeout(self, error: BaseException) -> bool:
        return False


class PostgresDialect(Dialect):
    name = "postgresql"
    drivername = "postgresql+asyncpg"
    default_port = 5432

    def address(self, profile: ConnectionProfile) -> str:
        port = profile.port or self.default_port
        return f"postgresql://{profile.host}:{port}/{profile.database}"

    def connect_args(self, timeout_seconds: int, connect_timeout: int) -> Dict[str, Any]:
        return {
            "timeout": connect_timeout,
            "server_settings": {
                "default_transaction_read_only": "on",
                "statement_timeout": str(timeout_seconds * 1000),
            },
        }

    def is_timeout(self, error: BaseException) -> bool:
        # 57014 = query_canceled
        return _sqlstate(error) == "57014"


class MySQLDialect(Dialect):
    name = "mysql"
    drivername = "mysql+aiomysql"
    default_port = 3306

    def address(self, profile: ConnectionProfile) -> str:
        port = profile.port or self.default_port
        return (
            f"mysql://{profile.host}:{port}/{profile.database}"
            "?useSSL=false&serverTimezone=UTC"
        )

    def url(self, profile: ConnectionProfile) -> URL:
        return super().url(profile).update_query_dict({"charset": "utf8mb4"})

    def connect_args(self, timeout_seconds: int, connect_timeout: int) -> Dict[str, Any]:
        return {
            "connect_timeout": connect_timeout,
            "init_command": "SET time_zone = '+00:00'",
        }

    def session_statements(self, timeout_seconds: int) -> List[str]:
        return [
            "SET SESSION TRANSACTION READ ONLY",
            f"SET SESSION MAX_EXECUTION_TIME = {timeout_seconds * 1000}",
        ]

    def is_timeout(self, error: BaseException) -> bool:
        # 3024 = max execution time exceeded, 1317 = query interrupted
        return _mysql_code(error) in (3024, 1317)


class SqliteDialect(Dialect):
    """Local database files, opened read-only through a SQLite URI."""

    name = "sqlite"
    drivername = "sqlite+aiosqlite"

    def address(self, profile: ConnectionProfile) -> str:
        return f"sqlite:///{profile.database}"

    def url(self, profile: ConnectionProfile) -> URL:
        return URL.create(
            self.drivername,
            database=f"file:{profile.database}",
            query={"mode": "ro", "uri": "true"},
        )

    def connect_args(self, timeout_seconds: int, connect_timeout: int) -> Dict[str, Any]:
        return {"timeout": connect_timeout}

    def session_statements(self, timeout_seconds: int) -> List[str]:
        return ["PRAGMA query_only = ON"]

    async def prepare(self, connection: AsyncConnection, timeout_seconds: int) -> None:
        await super().prepare(connection, timeout_seconds)

        # No statement timeout in SQLite, the progress handler aborts the VM past the deadline
        deadline = time.monotonic() + timeout_seconds
        raw = await connection.get_raw_connection()
        await raw.driver_connection.set_progress_handler(
            lambda: int(time.monotonic() > deadline), PROGRESS_HANDLER_STEPS
        )

    def is_timeout(self, error: BaseException) -> bool:
        return "interrupted" in str(_driver_error(error)).lower()


_POSTGRES = PostgresDialect()

DIALECTS: Dict[str, Dialect] = {
    "postgresql": _POSTGRES,
    "postgres": _POSTGRES,
    "mysql": MySQLDialect(),
    "sqlite": SqliteDialect(),
}


def get_dialect(database_type: str) -> Dialect:
    """
    Raises:
        UnsupportedDialect: for any type not in DIALECTS
    """
    dialect = DIALECTS.get((database_type or "").strip().lower())
    if dialect is None:
        raise UnsupportedDialect(database_type)
    return dialect


# ============================================================================
# ERROR CLASSIFICATION
# ============================================================================


def _driver_error(error: BaseException) -> BaseException:
    if isinstance(error, DBAPIError) and error.orig is not None:
        return error.orig
    return error


def _sqlstate(error: BaseException) -> Optional[str]:
    orig = _driver_error(error)
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def _mysql_code(error: BaseException) -> Optional[int]:
    args = getattr(_driver_error(error), "args", ())
    if args and isinstance(args[0], int):
        return args[0]
    return None


def classify_error(
    error: BaseException,
    profile: ConnectionProfile,
    dialect: Dialect,
    timeout_seconds: int,
    connected: bool,
) -> Tuple[ErrorKind, str]:
    """Turn a driver/connection failure into an ErrorKind and a message for users."""
    detail = str(_driver_error(error))
    lowered = detail.lower()
    sqlstate = _sqlstate(error)
    mysql_code = _mysql_code(error)
    address = dialect.address(profile)

    if connected and (
        dialect.is_timeout(error)
        or "statement timeout" in lowered
        or "maximum statement execution time exceeded" in lowered
    ):
        return (
            ErrorKind.TIMEOUT,
            f"Query timeout: Query took longer than {timeout_seconds} seconds",
        )

    if sqlstate == "28000" or ("role" in lowered and "does not exist" in lowered):
        return (
            ErrorKind.AUTH,
            f"Database user '{profile.username}' does not exist on {address}. "
            "Check the username of the connection profile.",
        )

    if "password is required" in lowered or "no password supplied" in lowered:
        return (
            ErrorKind.AUTH,
            f"The server at {address} requires a password and the connection "
            "profile has none.",
        )

    if (
        sqlstate == "28P01"
        or mysql_code == 1045
        or "password authentication failed" in lowered
        or "access denied" in lowered
    ):
        return (
            ErrorKind.AUTH,
            f"Authentication failed for user '{profile.username}'. "
            "Check the password of the connection profile.",
        )

    if (
        sqlstate == "3D000"
        or mysql_code == 1049
        or ("database" in lowered and "does not exist" in lowered)
        or "unknown database" in lowered
        or "unable to open database file" in lowered
    ):
        return (
            ErrorKind.CONNECTION,
            f"Database '{profile.database}' does not exist at {address}.",
        )

    if (
        isinstance(error, ConnectionRefusedError)
        or mysql_code == 2003
        or "connection refused" in lowered
        or "can't connect" in lowered
    ):
        return (
            ErrorKind.CONNECTION,
            f"Connection refused by {address}. Check that the database server is "
            "running and reachable.",
        )

    if not connected:
        return ErrorKind.CONNECTION, f"Could not connect to {address}: {detail}"

    return ErrorKind.SQL_ERROR, f"SQL execution error: {detail}"


# ============================================================================
# EXECUTOR
# ============================================================================


class QueryExecutor:
    """
    Executes one SQL statement per call on its own read-only connection.

    Example:
        executor = QueryExecutor()
        result = await executor.execute(profile, "SELECT * FROM orders", 30, request_id)
        result.columns, result.rows, result.row_count
    """

    def __init__(
        self,
        default_timeout: int = DEFAULT_TIMEOUT_SECONDS,
        max_timeout: int = MAX_TIMEOUT_SECONDS,
        connect_timeout: int = CONNECT_TIMEOUT_SECONDS,
        engine_factory: Callable[..., AsyncEngine] = create_async_engine,
    ):
        self.default_timeout = default_timeout
        self.max_timeout = max_timeout
        self.connect_timeout = connect_timeout
        self.engine_factory = engine_factory

    def _create_engine(
        self, dialect: Dialect, profile: ConnectionProfile, timeout: int
    ) -> AsyncEngine:
        return self.engine_factory(
            dialect.url(profile),
            poolclass=NullPool,
            connect_args=dialect.connect_args(timeout, self.connect_timeout),
        )

    async def execute(
        self,
        profile: ConnectionProfile,
        sql: str,
        timeout_seconds: Optional[int] = None,
        request_id: Optional[str] = None,
        on_stage: Optional[StageCallback] = None,
    ) -> QueryResult:
        """
        Validate and run `sql`, returning the materialized result.

        Raises:
            UnsupportedDialect: the profile's database type is not supported
        """
        started = time.perf_counter()
        executed_at = utc_now()

        def failed(kind: ErrorKind, message: str) -> QueryResult:
            return QueryResult(
                success=False,
                execution_time_ms=_elapsed_ms(started),
                executed_at=executed_at,
                error_message=message,
                error_kind=kind,
            )

        # Step 1: validation always comes first
        validation = sql_validator.validate(sql)
        if not validation.is_valid:
            return failed(
                ErrorKind.VALIDATION,
                "SQL validation failed: " + ", ".join(validation.errors),
            )

        # Step 2: dialect, unsupported types are a configuration error
        dialect = get_dialect(profile.type)
        timeout = clamp_timeout(timeout_seconds, self.default_timeout, self.max_timeout)
        address = dialect.address(profile)

        engine = self._create_engine(dialect, profile, timeout)
        connected = False
        try:
            _notify(on_stage, ExecutionStage.CONNECTING, {"address": address})
            async with engine.connect() as connection:
                connected = True
                await dialect.prepare(connection, timeout)

                _notify(
                    on_stage,
                    ExecutionStage.EXECUTING,
                    {"timeoutSeconds": timeout},
                )
                columns, rows = await asyncio.wait_for(
                    self._fetch(connection, sql), timeout + TIMEOUT_GRACE_SECONDS
                )

            logger.info(
                f"[Request {request_id}] {len(rows)} rows from {address} "
                f"in {_elapsed_ms(started)} ms"
            )
            return QueryResult(
                success=True,
                columns=columns,
                rows=rows,
                row_count=len(rows),
                execution_time_ms=_elapsed_ms(started),
                executed_at=executed_at,
            )

        except asyncio.TimeoutError:
            if not connected:
                return failed(
                    ErrorKind.CONNECTION,
                    f"Connection to {address} timed out after {self.connect_timeout} seconds",
                )
            logger.warning(f"[Request {request_id}] Query timed out after {timeout}s")
            return failed(
                ErrorKind.TIMEOUT,
                f"Query timeout: Query took longer than {timeout} seconds",
            )
        except (DBAPIError, OSError) as error:
            kind, message = classify_error(error, profile, dialect, timeout, connected)
            logger.warning(f"[Request {request_id}] {kind.value}: {error}")
            return failed(kind, message)
        except Exception as error:
            logger.exception(f"[Request {request_id}] Unexpected execution error")
            return failed(ErrorKind.UNEXPECTED, f"Unexpected error: {error}")
        finally:
            await engine.dispose()

    async def _fetch(
        self, connection: AsyncConnection, sql: str
    ) -> Tuple[List[str], List[Dict[str, Any]]]:
        # Raw driver SQL, so ':name' in literals is not read as a bind parameter
        result = await connection.exec_driver_sql(sql)
        if not result.returns_rows:
            return [], []

        columns = list(result.keys())
        rows = [
            {column: normalize_value(value) for column, value in zip(columns, row)}
            for row in result.fetchall()
        ]
        return columns, rows

    async def test_connection(self, profile: ConnectionProfile) -> Tuple[bool, str]:
        """Open a read-only connection and run `SELECT 1`."""
        dialect = get_dialect(profile.type)
        timeout = self.default_timeout
        engine = self._create_engine(dialect, profile, timeout)
        connected = False
        try:
            async with engine.connect() as connection:
                connected = True
                await dialect.prepare(connection, timeout)
                await connection.exec_driver_sql("SELECT 1")
            return True, "Database connection successful"
        except asyncio.TimeoutError:
            return False, f"Connection to {dialect.address(profile)} timed out"
        except (DBAPIError, OSError) as error:
            _, message = classify_error(error, profile, dialect, timeout, connected)
            return False, message
        finally:
            await engine.dispose()


def _notify(
    on_stage: Optional[StageCallback], stage: ExecutionStage, data: Dict[str, Any]
) -> None:
    if on_stage is not None:
        on_stage(stage, data)


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
