"""RoloDojo - an audited personal ledger of facts."""

__version__ = "0.1.0"
