"""
Mapeos Clio -> Postgres por tipo de entidad.

Punto unico para controlar:
- que campos se piden a la API remota (parametro `fields`)
- que columnas existen en cada tabla local
- como se transforman los valores remotos
- como se resuelven las relaciones (claves naturales foraneas: client.id, matter.id)

Mantener el DDL (models.py + alembic) alineado con estas definiciones.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from practice_sync.shared.constants.sync_constants import EntityType
from practice_sync.shared.utils.datetime_utils import parse_iso_datetime

from .types import FieldMapping


def to_remote_id(value: Any) -> str:
    """
    Normaliza un identificador remoto a string exacto.

    Acepta int o string de digitos. Rechaza floats y bools: un float ya
    perdio precision antes de llegar aqui.
    """
    if isinstance(value, bool):
        raise TypeError("un booleano no es un identificador")
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        digits = value.strip()
        # Solo digitos ASCII: str.isdigit acepta "²" o digitos arabigos
        if digits.isascii() and digits.isdigit():
            return digits
    raise TypeError(f"identificador no entero: {value!r}")


def to_decimal(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise TypeError("un booleano no es numerico")
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"valor numerico invalido: {value!r}") from e


def to_date(value: Any) -> date:
    # Clio manda fechas "YYYY-MM-DD" y a veces datetimes completos
    text = str(value)
    if len(text) == 10:
        return date.fromisoformat(text)
    return parse_iso_datetime(text).date()


def to_datetime(value: Any) -> datetime:
    return parse_iso_datetime(str(value))


def to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    raise TypeError(f"valor booleano invalido: {value!r}")


def to_text(value: Any) -> str:
    return str(value)


@dataclass(frozen=True)
class EntityMapping:
    """
    Config de un tipo de entidad remota -> una tabla local.

    - endpoint: recurso de la API ("matters" -> /matters.json)
    - webhook_model: nombre del modelo en la suscripcion de webhooks
    - field_mappings: columnas de negocio (las tecnicas las agrega el transformador)
    """

    entity_type: EntityType
    endpoint: str
    webhook_model: str
    field_mappings: tuple[FieldMapping, ...]
    remote_id_path: str = "id"
    updated_at_path: str = "updated_at"
    created_at_path: str = "created_at"

    @property
    def remote_fields(self) -> str:
        """
        Valor del parametro `fields` de Clio: campos de primer nivel y
        anidados con la sintaxis `client{id}`.
        """
        top_level: dict[str, set[str]] = {}
        paths = [self.remote_id_path, self.updated_at_path, self.created_at_path]
        paths.extend(m.source_path for m in self.field_mappings)
        for path in paths:
            head, _, rest = path.partition(".")
            nested = top_level.setdefault(head, set())
            if rest:
                nested.add(rest)
        parts = []
        for head, nested in top_level.items():
            parts.append(f"{head}{{{','.join(sorted(nested))}}}" if nested else head)
        return ",".join(parts)


MATTER_MAPPING = EntityMapping(
    entity_type=EntityType.MATTER,
    endpoint="matters",
    webhook_model="matter",
    field_mappings=(
        FieldMapping("display_number", "display_number", to_text),
        FieldMapping("description", "description", to_text),
        FieldMapping("status", "status", to_text),
        FieldMapping("open_date", "open_date", to_date),
        FieldMapping("close_date", "close_date", to_date),
        FieldMapping("billable", "billable", to_bool),
        FieldMapping("practice_area.name", "practice_area", to_text),
        FieldMapping("client.id", "client_remote_id", to_remote_id),
        FieldMapping("responsible_attorney.id", "responsible_attorney_remote_id", to_remote_id),
    ),
)

CONTACT_MAPPING = EntityMapping(
    entity_type=EntityType.CONTACT,
    endpoint="contacts",
    webhook_model="contact",
    field_mappings=(
        FieldMapping("name", "name", to_text, required=True),
        FieldMapping("type", "contact_type", to_text),
        FieldMapping("primary_email_address", "primary_email_address", to_text),
        FieldMapping("primary_phone_number", "primary_phone_number", to_text),
        FieldMapping("is_client", "is_client", to_bool),
    ),
)

ACTIVITY_MAPPING = EntityMapping(
    entity_type=EntityType.ACTIVITY,
    endpoint="activities",
    webhook_model="activity",
    field_mappings=(
        FieldMapping("type", "activity_type", to_text),
        FieldMapping("date", "activity_date", to_date),
        FieldMapping("quantity", "quantity", to_decimal),
        FieldMapping("price", "price", to_decimal),
        FieldMapping("total", "total", to_decimal),
        FieldMapping("note", "note", to_text),
        FieldMapping("billed", "billed", to_bool),
        FieldMapping("matter.id", "matter_remote_id", to_remote_id),
        FieldMapping("user.id", "user_remote_id", to_remote_id),
    ),
)

TASK_MAPPING = EntityMapping(
    entity_type=EntityType.TASK,
    endpoint="tasks",
    webhook_model="task",
    field_mappings=(
        FieldMapping("name", "name", to_text, required=True),
        FieldMapping("description", "description", to_text),
        FieldMapping("status", "status", to_text),
        FieldMapping("priority", "priority", to_text),
        FieldMapping("due_at", "due_at", to_date),
        FieldMapping("completed_at", "completed_at", to_datetime),
        FieldMapping("matter.id", "matter_remote_id", to_remote_id),
        FieldMapping("assignee.id", "assignee_remote_id", to_remote_id),
    ),
)

USER_MAPPING = EntityMapping(
    entity_type=EntityType.USER,
    endpoint="users",
    webhook_model="user",
    field_mappings=(
        FieldMapping("name", "name", to_text),
        FieldMapping("email", "email", to_text),
        FieldMapping("enabled", "enabled", to_bool),
        FieldMapping("rate", "rate", to_decimal),
    ),
)


ENTITY_MAPPINGS: dict[EntityType, EntityMapping] = {
    m.entity_type: m
    for m in (MATTER_MAPPING, CONTACT_MAPPING, ACTIVITY_MAPPING, TASK_MAPPING, USER_MAPPING)
}


def get_entity_mapping(entity_type: EntityType | str) -> EntityMapping:
    """Retorna el mapeo del tipo de entidad indicado."""
    return ENTITY_MAPPINGS[EntityType(entity_type)]
