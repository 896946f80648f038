"""
Seed references: typed, lazily-resolved pointers to who will occupy a match slot.

A reference is a closed variant over SeedType. Every consumer dispatches with a
`match` statement ending in assert_never, so a new kind fails type checking at
each call site until it is handled.

Stored form (Match.seed_a / Match.seed_b):
    {"type": "stageMatchWinner", "ref": {"stage_index": 1, "round": 2, "order": 0}, "label": "W-S1R2#1"}

Lookup keys (Match.seed_a_key / Match.seed_b_key) index the reference target:
    BYE | R:<registration id> | W:<stage>:<round>:<order> | L:<stage>:<round>:<order> | G:<stage>:<CODE>:<rank>
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union, assert_never


class SeedType(str, Enum):
    bye = "bye"
    registration = "registration"
    stage_match_winner = "stageMatchWinner"
    stage_match_loser = "stageMatchLoser"
    group_rank = "groupRank"


class SeedReferenceError(ValueError):
    """Raised for malformed or non-upstream seed references."""


@dataclass(frozen=True)
class RegistrationRef:
    registration_id: Optional[int] = None  # None = placeholder awaiting a draw


@dataclass(frozen=True)
class StageMatchRef:
    stage_index: int
    round: int
    order: int  # 0-based


@dataclass(frozen=True)
class GroupRankRef:
    stage: int
    group_code: str
    rank: int  # 1-based


RefPayload = Union[None, RegistrationRef, StageMatchRef, GroupRankRef]


@dataclass(frozen=True)
class SeedReference:
    type: SeedType
    ref: RefPayload = None
    label: str = field(default="", compare=False)

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def bye(cls) -> "SeedReference":
        return cls(SeedType.bye, None, "BYE")

    @classmethod
    def registration(cls, registration_id: Optional[int], label: str = "") -> "SeedReference":
        if not label:
            label = f"#{registration_id}" if registration_id is not None else "TBD"
        return cls(SeedType.registration, RegistrationRef(registration_id), label)

    @classmethod
    def match_winner(cls, stage_index: int, round_: int, order: int) -> "SeedReference":
        return cls(
            SeedType.stage_match_winner,
            StageMatchRef(stage_index, round_, order),
            f"W-S{stage_index}R{round_}#{order + 1}",
        )

    @classmethod
    def match_loser(cls, stage_index: int, round_: int, order: int) -> "SeedReference":
        return cls(
            SeedType.stage_match_loser,
            StageMatchRef(stage_index, round_, order),
            f"L-S{stage_index}R{round_}#{order + 1}",
        )

    @classmethod
    def group_rank(cls, stage: int, group_code: str, rank: int) -> "SeedReference":
        code = normalize_group_code(group_code)
        return cls(SeedType.group_rank, GroupRankRef(stage, code, rank), f"{code}{rank}-S{stage}")

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    @property
    def key(self) -> str:
        match self.type:
            case SeedType.bye:
                return "BYE"
            case SeedType.registration:
                assert isinstance(self.ref, RegistrationRef)
                return f"R:{self.ref.registration_id if self.ref.registration_id is not None else ''}"
            case SeedType.stage_match_winner:
                assert isinstance(self.ref, StageMatchRef)
                return stage_match_key("W", self.ref.stage_index, self.ref.round, self.ref.order)
            case SeedType.stage_match_loser:
                assert isinstance(self.ref, StageMatchRef)
                return stage_match_key("L", self.ref.stage_index, self.ref.round, self.ref.order)
            case SeedType.group_rank:
                assert isinstance(self.ref, GroupRankRef)
                return f"G:{self.ref.stage}:{self.ref.group_code}:{self.ref.rank}"
            case _:
                assert_never(self.type)

    def to_dict(self) -> Dict[str, Any]:
        ref: Optional[Dict[str, Any]]
        match self.type:
            case SeedType.bye:
                ref = None
            case SeedType.registration:
                assert isinstance(self.ref, RegistrationRef)
                ref = {"registration_id": self.ref.registration_id}
            case SeedType.stage_match_winner | SeedType.stage_match_loser:
                assert isinstance(self.ref, StageMatchRef)
                ref = {"stage_index": self.ref.stage_index, "round": self.ref.round, "order": self.ref.order}
            case SeedType.group_rank:
                assert isinstance(self.ref, GroupRankRef)
                ref = {"stage": self.ref.stage, "group_code": self.ref.group_code, "rank": self.ref.rank}
            case _:
                assert_never(self.type)
        return {"type": self.type.value, "ref": ref, "label": self.label}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["SeedReference"]:
        if not data:
            return None
        try:
            seed_type = SeedType(data.get("type"))
        except ValueError as e:
            raise SeedReferenceError(f"Unknown seed type: {data.get('type')!r}") from e
        ref = data.get("ref") or {}
        label = data.get("label") or ""
        try:
            match seed_type:
                case SeedType.bye:
                    return cls(seed_type, None, label or "BYE")
                case SeedType.registration:
                    rid = ref.get("registration_id")
                    return cls(seed_type, RegistrationRef(int(rid) if rid is not None else None), label)
                case SeedType.stage_match_winner | SeedType.stage_match_loser:
                    payload = StageMatchRef(int(ref["stage_index"]), int(ref["round"]), int(ref["order"]))
                    return cls(seed_type, payload, label)
                case SeedType.group_rank:
                    payload = GroupRankRef(int(ref["stage"]), normalize_group_code(ref["group_code"]), int(ref["rank"]))
                    return cls(seed_type, payload, label)
                case _:
                    assert_never(seed_type)
        except (KeyError, TypeError) as e:
            raise SeedReferenceError(f"Malformed {seed_type.value} reference: {ref!r}") from e


def stage_match_key(prefix: str, stage_index: int, round_: int, order: int) -> str:
    return f"{prefix}:{stage_index}:{round_}:{order}"


def group_rank_key_prefix(stage: int, group_code: str) -> str:
    return f"G:{stage}:{normalize_group_code(group_code)}:"


def normalize_group_code(code: Any) -> str:
    return str(code if code is not None else "").strip().upper()


def coerce_seed(value: Any) -> SeedReference:
    """Accept an entrant id, a SeedReference, a stored dict or None (bye)."""
    if value is None:
        return SeedReference.bye()
    if isinstance(value, SeedReference):
        return value
    if isinstance(value, dict):
        seed = SeedReference.from_dict(value)
        return seed if seed is not None else SeedReference.bye()
    if isinstance(value, bool):
        raise SeedReferenceError(f"Cannot use {value!r} as a seed")
    if isinstance(value, int):
        return SeedReference.registration(value)
    raise SeedReferenceError(f"Cannot use {value!r} as a seed")


def validate_upstream(seed: SeedReference, stage: int, round_: int) -> None:
    """Reject references that are not strictly upstream of (stage, round)."""
    match seed.type:
        case SeedType.bye | SeedType.registration:
            return
        case SeedType.stage_match_winner | SeedType.stage_match_loser:
            assert isinstance(seed.ref, StageMatchRef)
            ref = seed.ref
            if ref.round < 1 or ref.order < 0:
                raise SeedReferenceError(f"{seed.label or seed.key}: round must be >= 1 and order >= 0")
            if ref.stage_index > stage or (ref.stage_index == stage and ref.round >= round_):
                raise SeedReferenceError(
                    f"{seed.label or seed.key} is not upstream of stage {stage} round {round_}"
                )
        case SeedType.group_rank:
            assert isinstance(seed.ref, GroupRankRef)
            if seed.ref.rank < 1 or not seed.ref.group_code:
                raise SeedReferenceError(f"{seed.label or seed.key}: group code and rank >= 1 required")
            if seed.ref.stage >= stage:
                raise SeedReferenceError(f"{seed.label or seed.key} is not upstream of stage {stage}")
        case _:
            assert_never(seed.type)
