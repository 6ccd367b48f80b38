"""
Transformador payload remoto -> proyeccion local.

Funcion pura por tipo de entidad:
- No hace llamadas de red.
- Campos opcionales ausentes (o null) -> None.
- Campos requeridos ausentes o valores no convertibles -> MalformedPayload
  con la ruta del campo ofensor.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from practice_sync.domain.entities.remote_entity import TransformedEntity
from practice_sync.shared.constants.sync_constants import EntityType
from practice_sync.shared.exceptions.sync import MalformedPayload

from .entity_mappings import EntityMapping, get_entity_mapping, to_datetime, to_remote_id
from .types import lookup_path


def _convert(mapping: EntityMapping, path: str, value: Any, transform) -> Any:
    if transform is None:
        return value
    try:
        return transform(value)
    except (TypeError, ValueError) as e:
        raise MalformedPayload(mapping.entity_type.value, path, reason=str(e)) from e


def _optional_datetime(mapping: EntityMapping, payload: dict[str, Any], path: str) -> Optional[datetime]:
    found, value = lookup_path(payload, path)
    if not found:
        return None
    return _convert(mapping, path, value, to_datetime)


def transform_record(
    entity_type: EntityType | str,
    payload: dict[str, Any],
    *,
    connection_id: int,
) -> TransformedEntity:
    """
    Mapea un registro remoto a un TransformedEntity listo para UPSERT.

    Reglas:
    - remote_id es obligatorio y se normaliza a string exacto
    - Cada FieldMapping decide como mapear y transformar el valor
    - Campos desconocidos del payload se ignoran
    """
    mapping = get_entity_mapping(entity_type)
    if not isinstance(payload, dict):
        raise MalformedPayload(mapping.entity_type.value, "$", reason="el registro no es un objeto")

    found, raw_id = lookup_path(payload, mapping.remote_id_path)
    if not found:
        raise MalformedPayload(mapping.entity_type.value, mapping.remote_id_path)
    remote_id = _convert(mapping, mapping.remote_id_path, raw_id, to_remote_id)

    values: dict[str, Any] = {}
    for m in mapping.field_mappings:
        found, raw = lookup_path(payload, m.source_path)
        if not found:
            if m.required:
                raise MalformedPayload(mapping.entity_type.value, m.source_path)
            values[m.column] = None
            continue
        values[m.column] = _convert(mapping, m.source_path, raw, m.transform)

    values["remote_created_at"] = _optional_datetime(mapping, payload, mapping.created_at_path)

    return TransformedEntity(
        entity_type=mapping.entity_type,
        connection_id=connection_id,
        remote_id=remote_id,
        values=values,
        remote_updated_at=_optional_datetime(mapping, payload, mapping.updated_at_path),
    )
