from __future__ import annotations

"""
Platform-shipped classification rules, visible to every organization.
"""

import uuid
from typing import List, Tuple

from bastion.core.classification.levels import ClassificationLevel, DataType
from bastion.core.classification.models import ClassificationRule


_NAMESPACE = uuid.UUID("6f1b6a1e-3f55-4c5e-9a57-8b1f3f3c0b11")

R = ClassificationLevel.RESTRICTED
C = ClassificationLevel.CONFIDENTIAL
I = ClassificationLevel.INTERNAL  # noqa: E741
P = ClassificationLevel.PUBLIC

_DEFAULTS: List[Tuple[str, ClassificationLevel, DataType, str]] = [
    # healthcare
    ("**/medical/**", R, DataType.PHI, "Medical records and health information"),
    ("**/health/**", R, DataType.PHI, "Health-related data"),
    ("**/hipaa/**", R, DataType.PHI, "HIPAA regulated data"),
    ("**/patient*/**", R, DataType.PHI, "Patient records"),
    # payment
    ("**/payment/**", R, DataType.PCI, "Payment processing data"),
    ("**/credit*/**", R, DataType.PCI, "Credit card data"),
    ("**/cardholder/**", R, DataType.PCI, "Cardholder data"),
    ("**/pci/**", R, DataType.PCI, "PCI-DSS regulated data"),
    # personal
    ("**/personal/**", C, DataType.PII, "Personal information"),
    ("**/customers/**", C, DataType.PII, "Customer data"),
    ("**/users/**", C, DataType.PII, "User data"),
    ("**/employees/**", C, DataType.PII, "Employee records"),
    ("**/hr/**", C, DataType.PII, "Human resources data"),
    ("**/ssn*", R, DataType.PII, "Social security numbers"),
    # business
    ("**/confidential/**", C, DataType.PROPRIETARY, "Confidential business data"),
    ("**/secrets/**", R, DataType.PROPRIETARY, "Secret data"),
    ("**/proprietary/**", C, DataType.PROPRIETARY, "Proprietary business data"),
    ("**/financial/**", C, DataType.PROPRIETARY, "Financial data"),
    ("**/contracts/**", C, DataType.PROPRIETARY, "Contract documents"),
    ("**/internal/**", I, DataType.PROPRIETARY, "Internal business data"),
    ("**/docs/**", I, DataType.GENERAL, "Documentation"),
    # public
    ("**/public/**", P, DataType.GENERAL, "Publicly accessible data"),
    ("**/www/**", P, DataType.GENERAL, "Web server public files"),
]


def builtin_rule_id(pattern: str) -> str:
    return uuid.uuid5(_NAMESPACE, f"builtin:{pattern}").hex


def default_rules(*, priority: int = 0) -> List[ClassificationRule]:
    # fixed created_at keeps the ranking of built-ins stable across reseeds
    return [
        ClassificationRule(
            id=builtin_rule_id(pattern),
            org_id=None,
            pattern=pattern,
            level=level,
            data_types=[data_type.value],
            description=description,
            is_builtin=True,
            priority=int(priority),
            enabled=True,
            created_at="1970-01-01T00:00:00.000000Z",
            updated_at="1970-01-01T00:00:00.000000Z",
        )
        for pattern, level, data_type, description in _DEFAULTS
    ]
