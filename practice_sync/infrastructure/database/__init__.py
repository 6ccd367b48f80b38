"""
Configuracion de base de datos.

Importa todos los modelos para que se registren con Base
antes de crear las tablas.
"""
from practice_sync.infrastructure.database.models import (
    ConnectionModel,
    SyncWatermarkModel,
    SyncJobModel,
    MatterModel,
    ContactModel,
    ActivityModel,
    TaskModel,
    UserModel,
)
