"""
Fee Kernel

A transactional fee ledger and billing engine with:
- Exact GST tax breakdowns (CGST/SGST/IGST/cess)
- Idempotent record generation per billing cycle
- Serializable payment and refund processing
- Sequential per-financial-year receipt numbers
- Read-path triggered reconciliation (overdue sweep, self-heal)
- Best-effort audit trail
"""

__version__ = "0.1.0"
