"""
Database export for full-site backups.

Two strategies produce the same artifact, a plain SQL dump of every table in
the site's schema namespace:

- Strategy A runs the external dump tool (mysqldump) when it is installed and
  the site runs on MySQL/MariaDB.
- Strategy B pages through every table with SQLAlchemy and writes
  DROP/CREATE/INSERT statements. It is always available and is used whenever
  strategy A is unavailable or fails.
"""

import logging
import os
import shutil
import subprocess
import tempfile
from datetime import datetime, timezone
from typing import Callable, List, Optional

from sqlalchemy import MetaData, Table, inspect, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.schema import CreateTable

from .errors import ExportFailed, ExportToolUnavailable, NoTablesFound, WriteError


logger = logging.getLogger(__name__)

MYSQL_DIALECTS = ('mysql', 'mariadb')

_MYSQL_ESCAPES = str.maketrans({
    '\\': '\\\\',
    '\0': '\\0',
    '\n': '\\n',
    '\r': '\\r',
    "'": "\\'",
    '"': '\\"',
    '\x1a': '\\Z',
})


def escape_string(value: str, dialect_name: str) -> str:
    """
    Escape a string literal the way the target engine expects.

    MySQL-family engines use backslash escapes (same set as
    mysql_real_escape_string); everything else doubles single quotes.
    """
    if dialect_name in MYSQL_DIALECTS:
        return value.translate(_MYSQL_ESCAPES)
    return value.replace("'", "''")


def format_value(value, dialect_name: str) -> str:
    """Render one column value as ``NULL`` or a quoted, escaped string."""
    if value is None:
        return 'NULL'
    if isinstance(value, (bytes, bytearray, memoryview)):
        # surrogateescape keeps arbitrary bytes intact through the text sink
        value = bytes(value).decode('utf-8', errors='surrogateescape')
    return "'" + escape_string(str(value), dialect_name) + "'"


def build_dump_command(tool: str, defaults_file: str, host: Optional[str], port: Optional[int],
                       user: Optional[str], database: str) -> List[str]:
    """
    Build the argument list for the external dump tool.

    The password is read by the tool from ``defaults_file`` so it never
    appears in the process list. Every other value is passed as its own
    argument; no shell is involved.

    Returns:
        Argument vector suitable for subprocess.run
    """
    command = [tool, f'--defaults-extra-file={defaults_file}', '--opt']
    if host:
        command.extend(['-h', host])
    if port:
        command.extend(['-P', str(port)])
    if user:
        command.extend(['-u', user])
    command.append(database)
    return command


class SqlDumpWriter:
    """
    Streaming sink for the fallback exporter.

    Statements are written to ``<output_path>.part`` and the file is moved
    into place only when the block exits cleanly, so a failed export never
    leaves a truncated dump at ``output_path``.
    """

    def __init__(self, output_path: str):
        self.output_path = output_path
        self.partial_path = f"{output_path}.part"
        self._handle = None
        self.bytes_written = 0

    def __enter__(self):
        self._handle = open(
            self.partial_path, 'w', encoding='utf-8', errors='surrogateescape', newline='\n'
        )
        return self

    def write(self, chunk: str):
        self._handle.write(chunk)
        self.bytes_written += len(chunk)

    def __exit__(self, exc_type, exc, tb):
        try:
            self._handle.close()
        finally:
            self._handle = None
            if exc_type is None:
                os.replace(self.partial_path, self.output_path)
            elif os.path.exists(self.partial_path):
                try:
                    os.remove(self.partial_path)
                except OSError as e:
                    logger.warning(f"Failed to remove partial dump {self.partial_path}: {e}")
        return False


class DatabaseExporter:
    """
    Dump every table of the site's schema namespace into one SQL file.
    """

    def __init__(
        self,
        engine: Engine,
        table_prefix: str = '',
        dump_tool: Optional[str] = 'mysqldump',
        batch_size: int = 100,
        timeout: int = 600,
        runner: Callable = subprocess.run,
    ):
        """
        Initialize the exporter.

        Args:
            engine: SQLAlchemy engine connected to the site database
            table_prefix: Only tables whose name starts with this prefix are exported
            dump_tool: Executable name of the external dump tool (None disables strategy A)
            batch_size: Rows fetched per page by the fallback exporter
            timeout: Seconds the external dump tool may run
            runner: Process invocation boundary (subprocess.run compatible)
        """
        self.engine = engine
        self.table_prefix = table_prefix or ''
        self.dump_tool = dump_tool
        self.batch_size = batch_size
        self.timeout = timeout
        self._run = runner

    def export(self, output_path: str):
        """
        Export the database to ``output_path``.

        Tries the external dump tool first and falls back to the in-process
        exporter on any failure of the tool.

        Raises:
            NoTablesFound: If the schema namespace holds no tables
            WriteError: If the dump file cannot be written
            ExportFailed: If reading from the database fails
        """
        try:
            self.dump_with_tool(output_path)
            logger.info(f"Database exported with {self.dump_tool}: {output_path}")
            return
        except ExportToolUnavailable as e:
            logger.info(f"Falling back to in-process database export: {e.message}")

        self.dump_with_sqlalchemy(output_path)
        logger.info(f"Database exported in-process: {output_path}")

    # -- Strategy A -------------------------------------------------------

    def tool_available(self) -> bool:
        """Whether the external dump tool can be invoked for this database."""
        if not self.dump_tool:
            return False
        if self.engine.dialect.name not in MYSQL_DIALECTS:
            return False
        return shutil.which(self.dump_tool) is not None

    def dump_with_tool(self, output_path: str):
        """
        Run the external dump tool with stdout redirected to ``output_path``.

        Success requires a non-empty dump and an empty error file. On any
        other outcome both files are removed.

        Raises:
            ExportToolUnavailable: If the tool is missing or its run failed
        """
        if not self.tool_available():
            raise ExportToolUnavailable(f"{self.dump_tool or 'dump tool'} is not available")

        url = self.engine.url
        error_path = f"{output_path}.err"
        defaults_file = None
        failure = None

        try:
            defaults_file = self._write_defaults_file(url.password)
            command = build_dump_command(
                self.dump_tool, defaults_file, url.host, url.port, url.username, url.database
            )
            with open(output_path, 'wb') as out, open(error_path, 'wb') as err:
                self._run(command, stdout=out, stderr=err, timeout=self.timeout, check=False)
        except (OSError, subprocess.SubprocessError) as e:
            failure = str(e)
        finally:
            if defaults_file:
                _remove_quietly(defaults_file)

        if (
            failure is None
            and _file_size(output_path) > 0
            and os.path.exists(error_path)
            and _file_size(error_path) == 0
        ):
            _remove_quietly(error_path)
            return

        if failure is None:
            if _file_size(error_path) > 0:
                with open(error_path, 'r', encoding='utf-8', errors='replace') as f:
                    failure = f.read().strip()
            else:
                failure = f"{self.dump_tool} check failed. File size 0 or error file not created."

        logger.warning(f"{self.dump_tool} failed: {failure}")
        _remove_quietly(error_path)
        _remove_quietly(output_path)
        raise ExportToolUnavailable(f"{self.dump_tool} failed: {failure}")

    @staticmethod
    def _write_defaults_file(password: Optional[str]) -> str:
        fd, path = tempfile.mkstemp(prefix='siteguard_', suffix='.cnf')
        with os.fdopen(fd, 'w') as f:
            f.write('[client]\n')
            if password:
                escaped = password.replace('\\', '\\\\').replace('"', '\\"')
                f.write(f'password="{escaped}"\n')
        return path

    # -- Strategy B -------------------------------------------------------

    def quote_identifier(self, name: str) -> str:
        """Strip embedded quote characters from ``name`` and re-wrap it."""
        quote = self.engine.dialect.identifier_preparer.initial_quote
        cleaned = name.replace(quote, '').replace('`', '')
        return f"{quote}{cleaned}{quote}"

    def list_tables(self, conn: Connection) -> List[str]:
        return [
            name for name in inspect(conn).get_table_names()
            if name.startswith(self.table_prefix)
        ]

    def dump_with_sqlalchemy(self, output_path: str):
        """
        Write the dump by paging through every table.

        Raises:
            NoTablesFound: If the schema namespace holds no tables
            WriteError: If the dump file cannot be written
            ExportFailed: If a query fails
        """
        try:
            with self.engine.connect() as conn:
                tables = self.list_tables(conn)
                if not tables:
                    raise NoTablesFound(
                        f"No tables with prefix '{self.table_prefix}' found to backup."
                    )

                try:
                    with SqlDumpWriter(output_path) as writer:
                        writer.write(self._header())
                        for table_name in tables:
                            self._dump_table(conn, table_name, writer)
                        writer.write("\nCOMMIT;\n")
                    logger.info(f"Wrote {len(tables)} tables, {writer.bytes_written} characters to {output_path}")
                except OSError as e:
                    raise WriteError(f"Could not write SQL file {output_path}: {e}")

        except SQLAlchemyError as e:
            raise ExportFailed(f"Database export failed: {e}")

    def _header(self) -> str:
        url = self.engine.url
        generated = datetime.now(timezone.utc).strftime('%b %d, %Y at %H:%M')
        return (
            "-- SiteGuard Database Backup\n"
            f"-- Host: {url.host or 'localhost'}\n"
            f"-- Database: {url.database or ''}\n"
            f"-- Generation Time: {generated} GMT\n\n"
            "SET SQL_MODE = \"NO_AUTO_VALUE_ON_ZERO\";\n"
            "START TRANSACTION;\n"
            "SET time_zone = \"+00:00\";\n\n"
        )

    def _dump_table(self, conn: Connection, table_name: str, writer: SqlDumpWriter):
        quoted = self.quote_identifier(table_name)
        dialect_name = conn.dialect.name

        create_statement = self._create_statement(conn, table_name, quoted)
        if create_statement:
            writer.write(f"DROP TABLE IF EXISTS {quoted};\n")
            writer.write(f"{create_statement.rstrip().rstrip(';')};\n\n")

        query = text(f"SELECT * FROM {quoted} LIMIT :limit OFFSET :offset")
        offset = 0
        while True:
            rows = conn.execute(query, {'limit': self.batch_size, 'offset': offset}).fetchall()

            if rows:
                values = ",\n".join(
                    '(' + ', '.join(format_value(value, dialect_name) for value in row) + ')'
                    for row in rows
                )
                writer.write(f"INSERT INTO {quoted} VALUES \n{values};\n\n")

            # A short page is the last one
            if len(rows) < self.batch_size:
                break
            offset += self.batch_size

    def _create_statement(self, conn: Connection, table_name: str, quoted: str) -> Optional[str]:
        dialect_name = conn.dialect.name

        if dialect_name in MYSQL_DIALECTS:
            row = conn.execute(text(f"SHOW CREATE TABLE {quoted}")).first()
            return row[1] if row else None

        if dialect_name == 'sqlite':
            return conn.execute(
                text("SELECT sql FROM sqlite_master WHERE type = 'table' AND name = :name"),
                {'name': table_name}
            ).scalar()

        table = Table(table_name, MetaData(), autoload_with=conn)
        return str(CreateTable(table).compile(dialect=conn.dialect)).strip()


def _file_size(path: str) -> int:
    try:
        return os.path.getsize(path)
    except OSError:
        return 0


def _remove_quietly(path: str):
    if path and os.path.exists(path):
        try:
            os.remove(path)
        except OSError as e:
            logger.warning(f"Failed to remove {path}: {e}")
