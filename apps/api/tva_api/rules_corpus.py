from __future__ import annotations

import logging
from typing import Any

from tva_api.providers.embeddings import EmbeddingProvider
from tva_api.providers.store import ViolationStoreProvider

logger = logging.getLogger(__name__)

# Seed corpus of Motor Vehicle Act rules; fines are in rupees.
MOTOR_VEHICLE_ACT_RULES: list[dict[str, Any]] = [
    {
        "rule_id": "mva-section-3",
        "rule_title": "Driving at dangerous speed",
        "rule_text": (
            "No person shall drive a motor vehicle at a speed which is dangerous to the public having regard "
            "to all circumstances of the case, including the nature, condition, and use of the road and the "
            "amount of traffic which actually is at the time or might reasonably be expected to be thereon."
        ),
        "section": "3",
        "category": "speeding",
        "fine_amount_rupees": 500,
        "violation_types": ["speeding", "rash_driving"],
    },
    {
        "rule_id": "mva-section-5",
        "rule_title": "Violation of traffic signals",
        "rule_text": (
            "Driving through a red traffic signal is prohibited. Traffic signals must be obeyed as per the "
            "Indian Road Signs regulation."
        ),
        "section": "5",
        "category": "red_light",
        "fine_amount_rupees": 1000,
        "violation_types": ["red_light"],
    },
    {
        "rule_id": "mva-section-112",
        "rule_title": "Duty of owner to permit inspection of vehicle",
        "rule_text": (
            "Every owner of a motor vehicle shall allow the vehicle to be inspected to ascertain that it is in "
            "a fit condition for being driven."
        ),
        "section": "112",
        "category": "other",
        "fine_amount_rupees": 500,
        "violation_types": ["other"],
    },
    {
        "rule_id": "mva-section-177",
        "rule_title": "Riding without crash helmet",
        "rule_text": (
            "No motorcycle or scooter rider shall ride without wearing an Indian Standards Institution (ISI) "
            "marked crash helmet or riding jacket."
        ),
        "section": "177",
        "category": "helmet_violation",
        "fine_amount_rupees": 500,
        "violation_types": ["helmet_violation"],
    },
    {
        "rule_id": "mva-section-134",
        "rule_title": "Duty of driver to wear seatbelt",
        "rule_text": (
            "Every person driving a motor car shall wear a seatbelt while driving. The owner shall ensure that "
            "every occupant of the vehicle wears a seatbelt."
        ),
        "section": "134",
        "category": "seatbelt_violation",
        "fine_amount_rupees": 500,
        "violation_types": ["seatbelt_violation"],
    },
    {
        "rule_id": "mva-section-191",
        "rule_title": "Mobile phone usage while driving",
        "rule_text": (
            "No person shall drive a motor vehicle while holding a mobile phone in hand or ear. Hands-free mode "
            "or voice commands are permitted."
        ),
        "section": "191",
        "category": "phone_usage",
        "fine_amount_rupees": 1000,
        "violation_types": ["phone_usage"],
    },
    {
        "rule_id": "mva-section-39",
        "rule_title": "Number plates visibility",
        "rule_text": (
            "Every motor vehicle shall have number plates affixed as required under the law. The registration "
            "mark shall be kept clean and clearly visible."
        ),
        "section": "39",
        "category": "no_license_plate",
        "fine_amount_rupees": 5000,
        "violation_types": ["no_license_plate"],
    },
    {
        "rule_id": "mva-section-49",
        "rule_title": "Rash or negligent driving",
        "rule_text": (
            "Whoever drives a motor vehicle in a manner which is rash or negligent and which endangers human "
            "life shall be liable for punishment."
        ),
        "section": "49",
        "category": "rash_driving",
        "fine_amount_rupees": 1000,
        "violation_types": ["rash_driving"],
    },
    {
        "rule_id": "mva-section-194",
        "rule_title": "Duty of registration for motor vehicles",
        "rule_text": (
            "Every motor vehicle shall be registered with the local transport authority before being driven on "
            "any public road."
        ),
        "section": "194",
        "category": "other",
        "fine_amount_rupees": 500,
        "violation_types": ["other"],
    },
    {
        "rule_id": "mva-regulation-212",
        "rule_title": "Parking violations",
        "rule_text": (
            "No motor vehicle shall be parked at locations where parking is prohibited as indicated by road "
            "signs or road markings."
        ),
        "section": "212",
        "category": "wrong_parking",
        "fine_amount_rupees": 200,
        "violation_types": ["wrong_parking"],
    },
]


def rule_embedding_text(rule: dict[str, Any]) -> str:
    return f"{rule['rule_title']} {rule['rule_text']}"


def seed_rules(
    rules: list[dict[str, Any]],
    *,
    embedder: EmbeddingProvider,
    store: ViolationStoreProvider,
    dry_run: bool = False,
) -> int:
    """
    Embed `rules` in one batch and upsert each with its vector. Returns how many were written.

    Raises:
        RuntimeError: the embedding call failed; nothing is written.
    """
    if not rules:
        return 0
    vectors = embedder.embed_texts([rule_embedding_text(r) for r in rules])
    written = 0
    for rule, vector in zip(rules, vectors):
        if dry_run:
            logger.info("%s: %d dims (dry run)", rule["rule_id"], len(vector))
            continue
        try:
            store.upsert_rule(rule, vector)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to upsert %s", rule["rule_id"])
            continue
        written += 1
    return written
