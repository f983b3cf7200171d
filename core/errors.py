"""
core/errors.py -- Exception taxonomy for the access gate.

Where each error is raised and where it stops:

  ConnectivityError   db/readiness.py   -> entry point (fatal, exit / abort startup)
  SchemaError         db/schema.py      -> entry point (fatal)
  QueryError          db/client.py      -> caught by access/ on read paths (denial)
  ConstraintViolation db/client.py      -> caught by the resolver on write-back (logged)
  DirectoryError      directory/graph.py -> caught inside the directory client (lookup returns None)

Every class derives from RadiusAuthzError so entry points can catch the whole
family in one clause without also catching programming errors.

Layer rule: core/ is the kernel. No imports from db/, directory/, access/, api/.
"""


class RadiusAuthzError(Exception):
    """Base class for every error this package raises on purpose."""


class ConnectivityError(RadiusAuthzError, TimeoutError):
    """The database did not answer a ping before the startup deadline."""


class SchemaError(RadiusAuthzError):
    """The authorization table could not be created or migrated."""


class DatabaseError(RadiusAuthzError):
    """Any failure reported by the database layer."""


class QueryError(DatabaseError):
    """A single statement failed to execute."""


class ConstraintViolation(QueryError):
    """An insert or update collided with a unique constraint."""


class DirectoryError(RadiusAuthzError):
    """The identity directory could not answer (transport, auth, or HTTP error)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
