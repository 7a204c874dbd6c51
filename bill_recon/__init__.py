"""JD settlement bill reconciliation toolkit.

Spreadsheet exports are normalized, filtered by order-level business rules
and aggregated per product code. See ``bill_recon.services`` for the pipeline
and ``bill_recon.cli`` for the command line entrypoint.
"""

__version__ = "0.3.0"
