"""
Sincronización incremental PostgreSQL -> índice de búsqueda.
"""

__version__ = "1.0.0"
