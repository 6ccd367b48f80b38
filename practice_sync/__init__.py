"""
Motor de sincronizacion entre una API de gestion de despachos (Clio) y
una base de datos local.
"""
__version__ = "1.0.0"
