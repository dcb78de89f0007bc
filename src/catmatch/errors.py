from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    CONFIG = "config"
    AUTHORIZATION = "authorization"
    TRANSPORT = "transport"
    UPSTREAM = "upstream"
    PARSE = "parse"
    PERSISTENCE = "persistence"
    JOB_STATE = "job_state"


class CatmatchError(Exception):
    kind: ErrorKind = ErrorKind.UPSTREAM


class ConfigError(CatmatchError):
    """Missing or invalid configuration. Fatal before any work starts."""

    kind = ErrorKind.CONFIG


class AuthorizationError(CatmatchError):
    kind = ErrorKind.AUTHORIZATION


class TransportError(CatmatchError):
    kind = ErrorKind.TRANSPORT


class UpstreamError(CatmatchError):
    kind = ErrorKind.UPSTREAM


class ParseError(CatmatchError):
    kind = ErrorKind.PARSE


class PersistenceError(CatmatchError):
    kind = ErrorKind.PERSISTENCE


class JobStateError(CatmatchError):
    """Raised for an illegal job transition, e.g. starting a running job."""

    kind = ErrorKind.JOB_STATE


FATAL_ERRORS = (ConfigError, AuthorizationError)
