"""
Compliance Kernel

Filing workflow and credit reconciliation engine for a multi-tenant
tax-compliance platform:
- Two linked sub-returns per period, driven through an explicit state machine
- Append-only step ledger for every transition attempt
- Period lock with a reasoned, privileged amendment path
- Claimed vs counterparty-reported credit reconciliation with review flags
"""

__version__ = "0.1.0"
