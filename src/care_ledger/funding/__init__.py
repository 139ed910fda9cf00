"""
Funding Module - Contracts that residents draw down

A funding record allocates money from one source (NDIS, government, family
and so on) to one resident. Postings consume its balance and voids give it
back; the record itself never decides whether a post is allowed, the posting
workflow does.
"""

from care_ledger.funding.models import (
    ContractStatus,
    DrawdownRate,
    FundingRecord,
    FundingType,
)

__all__ = [
    "FundingRecord",
    "FundingType",
    "DrawdownRate",
    "ContractStatus",
]
