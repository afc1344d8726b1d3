"""
Phoenix Tracker - Erreurs métier

ValidationError   saisie utilisateur invalide (inscription, filtres, champs)
UnavailableError  base de données non initialisée
NotFoundError     document absent dans l'équipe courante

Les erreurs réseau/requête (TRANSIENT_IO_ERRORS) ne sont interceptées que
dans l'agrégation et la résolution d'identité; le CRUD les propage telles quelles.
"""

import asyncio

from pymongo.errors import PyMongoError


class PhoenixError(Exception):
    """Base des erreurs applicatives"""
    pass


class ValidationError(PhoenixError):
    """Raised when user input is rejected"""
    pass


class UnavailableError(PhoenixError):
    """Raised when the database client is not configured"""
    pass


class NotFoundError(PhoenixError):
    """Raised when a record does not exist in the caller's team"""
    pass


TRANSIENT_IO_ERRORS = (PyMongoError, OSError, asyncio.TimeoutError)
