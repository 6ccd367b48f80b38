"""
Integracion one-way: Clio -> base de datos local.

Componentes:
- clio_client: requests paginados con rate limit, backoff y refresh de tokens
- credentials / oauth_client: ciclo de vida de las credenciales de cada conexion
- entity_mappings / transformer: mapeo declarativo de payloads a columnas tipadas

Objetivos de diseño:
- Idempotencia: reprocesar una pagina o un webhook no duplica filas.
- Incremental: se apoya en updated_since + marca de agua por tipo de entidad.
- Esquema explicito y tipado (sin blobs JSON).
"""
