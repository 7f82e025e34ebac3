"""
Erreurs métier du moteur de planification.

Toutes les erreurs fonctionnelles héritent de ValueError : les routers continuent
d'utiliser `except ValueError` et choisissent le code HTTP selon la sous-classe.
StorageError n'en hérite pas : c'est une panne du stockage, pas une erreur de saisie.
"""


class ClassNotFoundError(ValueError):
    """Le cours (ou l'occurrence) demandé n'existe pas."""


class ScheduleValidationError(ValueError):
    """Champ obligatoire manquant ou règle de planification violée, détectée avant toute écriture."""


class ScopeRequiredError(ScheduleValidationError):
    """Modification ou suppression d'un cours récurrent sans portée explicite."""


class CapacityExceededError(ValueError):
    """Réservation refusée : le cours drop-in est complet."""


class StorageError(RuntimeError):
    """Échec transactionnel du stockage. La session a été annulée, aucune écriture partielle n'est visible."""
