"""
Custom exceptions raised inside the layers.

Services catch these and convert them into typed results (see core/models.py), so they never leave the session boundary.
"""


class GameError(Exception):
    """Top-level exception for anything going wrong in a chess room."""


class InvalidRequestError(GameError):
    """Input at the boundary (room code, square name, ...) could not be interpreted."""


class RulesEngineError(GameError):
    """The rules engine could not read a serialized position."""


class RepositoryError(GameError):
    """Something went wrong in the persistence layer."""


class PersistenceError(RepositoryError):
    """Store unreachable or the write could not be completed."""


class ConditionFailedError(RepositoryError):
    """A conditional write matched no row: a seat or turn race was lost."""


class DuplicateCodeError(RepositoryError):
    """The generated room code is already taken by another room."""
