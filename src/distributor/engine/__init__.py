"""Distributor engine — root governance, claim ledger, and the factory."""

from distributor.engine.claims import ClaimLedger
from distributor.engine.clock import Clock, ManualClock, SystemClock
from distributor.engine.distributor import Distributor
from distributor.engine.factory import DistributorFactory

__all__ = [
    "ClaimLedger",
    "Clock",
    "Distributor",
    "DistributorFactory",
    "ManualClock",
    "SystemClock",
]
