from __future__ import annotations

from enum import Enum


class ViolationType(str, Enum):
    SPEEDING = "speeding"
    RASH_DRIVING = "rash_driving"
    WRONG_PARKING = "wrong_parking"
    RED_LIGHT = "red_light"
    HELMET_VIOLATION = "helmet_violation"
    SEATBELT_VIOLATION = "seatbelt_violation"
    PHONE_USAGE = "phone_usage"
    NO_LICENSE_PLATE = "no_license_plate"
    OTHER = "other"


# Canonical members map to themselves; synonyms are what the vision model tends to say instead.
_VIOLATION_TYPE_MAPPING: dict[str, ViolationType] = {
    **{member.value: member for member in ViolationType},
    "not_wearing_helmet": ViolationType.HELMET_VIOLATION,
    "no_helmet": ViolationType.HELMET_VIOLATION,
    "without_helmet": ViolationType.HELMET_VIOLATION,
    "not_wearing_seatbelt": ViolationType.SEATBELT_VIOLATION,
    "no_seatbelt": ViolationType.SEATBELT_VIOLATION,
    "without_seatbelt": ViolationType.SEATBELT_VIOLATION,
    "overspeeding": ViolationType.SPEEDING,
    "over_speeding": ViolationType.SPEEDING,
    "reckless_driving": ViolationType.RASH_DRIVING,
    "dangerous_driving": ViolationType.RASH_DRIVING,
    "illegal_parking": ViolationType.WRONG_PARKING,
    "no_parking": ViolationType.WRONG_PARKING,
    "red_light_jump": ViolationType.RED_LIGHT,
    "signal_jump": ViolationType.RED_LIGHT,
    "jumping_red_light": ViolationType.RED_LIGHT,
    "mobile_phone_usage": ViolationType.PHONE_USAGE,
    "using_phone": ViolationType.PHONE_USAGE,
    "missing_license_plate": ViolationType.NO_LICENSE_PLATE,
    "no_number_plate": ViolationType.NO_LICENSE_PLATE,
}


def _leading_label(raw_label: str) -> str:
    first = (raw_label or "").split(",")[0]
    return first.strip().lower().replace(" ", "_")


def normalize_violation_type(raw_label: str | None) -> ViolationType:
    """
    Canonical violation type for the first label in a comma-separated model answer.

    Unknown labels fall back to `ViolationType.OTHER`; never raises.
    """
    return _VIOLATION_TYPE_MAPPING.get(_leading_label(raw_label or ""), ViolationType.OTHER)
