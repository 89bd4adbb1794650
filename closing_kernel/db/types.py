"""
Module: closing_kernel.db.types
Responsibility: Annotated type aliases for closing-engine columns.  Centralizes
    identifier widths and quantity types so that every model uses identical
    column definitions.
Architecture position: Kernel > DB.  Registered in Base.type_annotation_map;
    may be imported by models/.  MUST NOT import from any other kernel layer.

Invariants enforced:
    - Quantities are whole units (BigInteger); no floats or decimals.
    - Identifier widths are shared by the ledger and the closing tables so
      that joins on (entity_id, facility_type_code) never truncate.
"""

from typing import Annotated

# Whole-unit inventory quantity
Quantity = Annotated[int, "quantity"]

# Business entity (company / consignee) identifier
EntityId = Annotated[str, "entity_id"]

# Facility type code (e.g., refrigerator, signage)
FacilityTypeCode = Annotated[str, "facility_type_code"]

# Short status / enum codes
ShortCode = Annotated[str, "short_code"]

# Failure messages and free-form references
LongText = Annotated[str, "long_text"]

ENTITY_ID_LENGTH = 64
FACILITY_TYPE_CODE_LENGTH = 50
