"""Reconspine Core -- types, errors, persistence and configuration.

Architecture::

    Layer 1 -- Type System & Errors
        errors.py          Structured error hierarchy (ReconError, ConnectorError)
        result.py          Result[T] envelope (Ok / Err / try_result_with)
        enums.py           Closed vocabularies (OperationStatus, DiscrepancyType, ...)
        protocols.py       Connection and Connector protocols
        timestamps.py      UTC helpers, ids, ISO encoding

    Layer 2 -- Database
        dialect.py         SQL dialect abstraction (SQLite, PostgreSQL)
        connection.py      Connection factory + transaction()
        repository.py      BaseRepository with dialect-aware helpers
        repositories/      One repository per aggregate
        schema.py          DDL + create_tables()

    Layer 3 -- Domain & Config
        models.py          Operation, Attempt, Discrepancy, ConflictRecord, ...
        settings.py        ReconSettings (pydantic-settings, RECON_ prefix)
        logging.py         structlog configuration
"""

from reconspine.core.connection import create_connection, transaction
from reconspine.core.errors import ReconError
from reconspine.core.result import Err, Ok, Result
from reconspine.core.settings import ReconSettings, get_settings

__all__ = [
    "Err",
    "Ok",
    "ReconError",
    "ReconSettings",
    "Result",
    "create_connection",
    "get_settings",
    "transaction",
]
