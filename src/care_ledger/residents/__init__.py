"""Residents and houses - lookup entities referenced by contracts and transactions"""

from care_ledger.residents.models import House, Resident

__all__ = ["House", "Resident"]
