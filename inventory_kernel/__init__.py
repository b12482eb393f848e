"""
Inventory Kernel

The leaf layer of the inventory core:
- Typed exceptions with machine-readable codes
- Structured JSON logging
- Immutable domain entities and unit-of-measure conversion
- Injectable clock
- SQLAlchemy base, engine and ORM models for the relational store
"""

__version__ = "0.1.0"
