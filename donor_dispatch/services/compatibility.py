"""
Blood group compatibility.

The table maps each donor group to the recipient groups it may supply and is
fixed at import time.
"""
import enum
from types import MappingProxyType
from typing import FrozenSet, Mapping

from donor_dispatch.services.errors import InvalidBloodGroup


class BloodGroup(str, enum.Enum):
    A_POS = "A+"
    A_NEG = "A-"
    B_POS = "B+"
    B_NEG = "B-"
    O_POS = "O+"
    O_NEG = "O-"
    AB_POS = "AB+"
    AB_NEG = "AB-"

    def __str__(self) -> str:
        return self.value


# Donor group -> recipient groups it can supply
COMPATIBILITY_TABLE: Mapping[BloodGroup, FrozenSet[BloodGroup]] = MappingProxyType({
    BloodGroup.A_POS: frozenset({BloodGroup.A_POS, BloodGroup.AB_POS}),
    BloodGroup.A_NEG: frozenset({BloodGroup.A_POS, BloodGroup.A_NEG, BloodGroup.AB_POS, BloodGroup.AB_NEG}),
    BloodGroup.B_POS: frozenset({BloodGroup.B_POS, BloodGroup.AB_POS}),
    BloodGroup.B_NEG: frozenset({BloodGroup.B_POS, BloodGroup.B_NEG, BloodGroup.AB_POS, BloodGroup.AB_NEG}),
    BloodGroup.O_POS: frozenset({BloodGroup.O_POS, BloodGroup.A_POS, BloodGroup.B_POS, BloodGroup.AB_POS}),
    BloodGroup.O_NEG: frozenset(BloodGroup),
    BloodGroup.AB_POS: frozenset({BloodGroup.AB_POS}),
    BloodGroup.AB_NEG: frozenset({BloodGroup.AB_POS, BloodGroup.AB_NEG}),
})


def parse_blood_group(value) -> BloodGroup:
    """
    Parse user input into a BloodGroup.

    Accepts lower case, surrounding whitespace and the Unicode minus sign
    ("O−" from some keyboards). Raises InvalidBloodGroup for anything else.
    """
    if isinstance(value, BloodGroup):
        return value
    if not isinstance(value, str):
        raise InvalidBloodGroup(value)
    cleaned = value.strip().upper().replace("−", "-").replace(" ", "")
    try:
        return BloodGroup(cleaned)
    except ValueError:
        raise InvalidBloodGroup(value)


def can_donate(donor_group, recipient_group) -> bool:
    """Check if a donor of donor_group may supply a recipient of recipient_group."""
    donor = parse_blood_group(donor_group)
    recipient = parse_blood_group(recipient_group)
    return recipient in COMPATIBILITY_TABLE[donor]


def compatible_donor_groups(recipient_group) -> FrozenSet[BloodGroup]:
    """All donor groups that may supply the given recipient group."""
    recipient = parse_blood_group(recipient_group)
    return frozenset(
        donor for donor, recipients in COMPATIBILITY_TABLE.items()
        if recipient in recipients
    )
