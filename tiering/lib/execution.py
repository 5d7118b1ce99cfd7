"""Statement execution against SQL Server / Azure SQL Managed Instance.

The engine modules only talk to the ``StatementExecutor`` protocol.
``PyodbcExecutor`` is the production implementation:

- scripts run through ``sp_executesql`` and the return code is checked,
  so a failed batch that does not raise is still reported;
- every result set is drained so errors raised after the first statement
  surface instead of being discarded with the cursor;
- driver errors become ``ExecutionError`` with a category the reconciler
  can act on.

pyodbc is imported when the first connection is opened, so generating
scripts in debug mode works on machines without an ODBC driver manager.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, List, Optional, Protocol, Sequence, Tuple, Type, Union

from tiering.lib.errors import ErrorCategory, ExecutionError
from tiering.lib.sql import Script, Select

logger = logging.getLogger(__name__)

__all__ = [
    "StatementExecutor",
    "PyodbcExecutor",
    "classify_error",
    "translate_driver_error",
    "wrap_with_return_code",
    "NO_CONTENT_ERRORS",
]

# External table location is empty or its directory cannot be listed
NO_CONTENT_ERRORS = frozenset({16561})

TRANSIENT_SQLSTATES = frozenset({"HYT00", "HYT01", "40001"})

NATIVE_ERROR_PATTERN = re.compile(r"\((\d{3,6})\)")

Row = Tuple[Any, ...]


class StatementExecutor(Protocol):
    """Runs generated scripts and read-only queries."""

    def execute(self, script: Script) -> None:
        """Run a script, raising ExecutionError on failure."""
        ...

    def fetch_all(self, query: Select) -> List[Row]:
        """Run a query and return all rows."""
        ...


def classify_error(native_error: Optional[int], sqlstate: Optional[str]) -> ErrorCategory:
    """Map a native error number and SQLSTATE to an ErrorCategory."""
    if native_error in NO_CONTENT_ERRORS:
        return ErrorCategory.NO_CONTENT
    if sqlstate and (sqlstate.startswith("08") or sqlstate in TRANSIENT_SQLSTATES):
        return ErrorCategory.TRANSIENT
    return ErrorCategory.OTHER


def translate_driver_error(
    exc: BaseException,
    statement: Optional[str] = None,
) -> ExecutionError:
    """Build an ExecutionError from a pyodbc error.

    pyodbc errors carry ``(sqlstate, message)`` in ``args``; the native
    error number only appears in the message text, e.g.
    ``"...cannot be listed. (16561) (SQLExecDirectW)"``.
    """
    args = getattr(exc, "args", ())
    sqlstate: Optional[str] = None
    if len(args) >= 2 and isinstance(args[0], str):
        sqlstate = args[0]
        message = str(args[1])
    else:
        message = str(exc)

    # pyodbc joins every diagnostic record into one message; a no-content
    # record wins over whichever record happens to come first
    codes = [int(code) for code in NATIVE_ERROR_PATTERN.findall(message)]
    native_error = next((code for code in codes if code in NO_CONTENT_ERRORS), None)
    if native_error is None and codes:
        native_error = codes[0]

    category = classify_error(native_error, sqlstate)
    return ExecutionError(
        message,
        category=category,
        native_error=native_error,
        sqlstate=sqlstate,
        statement=statement,
        cause=exc,
    )


def wrap_with_return_code(sql: str) -> str:
    """Run ``sql`` as its own batch and select sp_executesql's return code."""
    escaped = sql.replace("'", "''")
    return (
        "SET NOCOUNT ON;\n"
        "DECLARE @return_code INT;\n"
        f"EXEC @return_code = sp_executesql N'{escaped}';\n"
        "SELECT @return_code AS return_code;"
    )


class PyodbcExecutor:
    """StatementExecutor over a single autocommit pyodbc connection.

    Example:
        with PyodbcExecutor(conn_str) as executor:
            executor.execute(script)
    """

    def __init__(
        self,
        connection_string: Union[str, Callable[[], str]],
        *,
        timeout: int = 0,
        connect: Optional[Callable[..., Any]] = None,
        driver_error: Optional[Type[BaseException]] = None,
    ) -> None:
        """Initialize the executor.

        Args:
            connection_string: ODBC connection string, or a callable
                returning it when the connection is first opened
            timeout: Query timeout in seconds (0 = no timeout)
            connect: Connection factory, defaults to pyodbc.connect
            driver_error: Exception type raised by the driver, defaults
                to pyodbc.Error
        """
        self.connection_string = connection_string
        self.timeout = timeout
        self._connect = connect
        self._driver_error = driver_error
        self._connection: Any = None

    def _ensure_driver(self) -> None:
        if self._connect is None or self._driver_error is None:
            import pyodbc

            self._connect = self._connect or pyodbc.connect
            self._driver_error = self._driver_error or pyodbc.Error

    def _resolve_connection_string(self) -> str:
        if callable(self.connection_string):
            return self.connection_string()
        return self.connection_string

    @property
    def connection(self) -> Any:
        if self._connection is None:
            connection_string = self._resolve_connection_string()
            self._ensure_driver()
            assert self._connect is not None and self._driver_error is not None
            logger.debug("Opening database connection")
            try:
                self._connection = self._connect(connection_string, autocommit=True)
            except self._driver_error as e:
                raise translate_driver_error(e) from e
            if self.timeout:
                self._connection.timeout = self.timeout
        return self._connection

    def close(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    def __enter__(self) -> "PyodbcExecutor":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def execute(self, script: Script) -> None:
        sql = script.render()
        logger.debug("Executing script:\n%s", sql)
        return_code = self._run(wrap_with_return_code(sql), (), statement=sql)
        if return_code not in (None, 0):
            raise ExecutionError(
                f"Script returned {return_code}",
                statement=sql,
                details={"return_code": return_code},
                suggestion=(
                    "A non-zero return code usually means access was denied, or the "
                    "storage account endpoint, credential or protocol is invalid"
                ),
            )

    def fetch_all(self, query: Select) -> List[Row]:
        sql = query.render()
        logger.debug("Running query:\n%s", sql)
        return self.query(sql)

    def query(self, sql: str, params: Sequence[Any] = ()) -> List[Row]:
        """Run parameterised SQL and return all rows of the first result set."""
        cursor = self.connection.cursor()
        try:
            cursor.execute(sql, *params)
            rows = [tuple(r) for r in cursor.fetchall()]
            while cursor.nextset():
                pass
            return rows
        except self._driver_error as e:  # type: ignore[misc]
            raise translate_driver_error(e, statement=sql) from e
        finally:
            cursor.close()

    def _run(self, sql: str, params: Sequence[Any], *, statement: str) -> Optional[int]:
        """Execute a batch and drain all result sets, returning the last scalar."""
        cursor = self.connection.cursor()
        last_value: Optional[int] = None
        try:
            cursor.execute(sql, *params)
            while True:
                if cursor.description is not None:
                    rows = cursor.fetchall()
                    if rows:
                        last_value = rows[-1][0]
                if not cursor.nextset():
                    break
        except self._driver_error as e:  # type: ignore[misc]
            raise translate_driver_error(e, statement=statement) from e
        finally:
            cursor.close()
        return last_value
