"""
Origen PostgreSQL del pipeline: lectura de cambios, watermark persistido y
scripts de aprovisionamiento (tabla + change tracking).
"""
