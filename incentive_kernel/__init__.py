"""
Incentive Kernel

Persistence, domain types and shared infrastructure for incentive plan
evaluation:
- Tenant-scoped row store (SQLAlchemy ORM)
- Plans validated into typed components at load time
- Decimal payouts quantized to cents
- Structured JSON logging and typed errors
"""

__version__ = "0.1.0"
