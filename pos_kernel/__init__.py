"""
POS Kernel

Shared infrastructure for the venue point-of-sale back office:
- Structured JSON logging
- Typed exception hierarchy
- SQLAlchemy base classes, engine and immutability guards
- Injectable clock
"""

__version__ = "0.1.0"
