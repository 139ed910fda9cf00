"""
Care Ledger - Contract balance and transaction posting engine

Keeps residential-care funding contracts and the transactions billed against
them mutually consistent: every posted transaction debits exactly one
contract, every void credits it back, and a contract's balance can always be
recomputed from its ledger.

Fun fact: The oldest surviving ledgers are Sumerian clay tablets from around
3000 BC - mostly records of barley and beer rations owed to workers.
"""

from care_ledger.ledger import CareLedger

__version__ = "0.1.0"
__all__ = ["CareLedger", "__version__"]
