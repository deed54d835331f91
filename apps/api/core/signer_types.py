"""Required-signer types on templates and the signer contexts that satisfy them."""

import re
from enum import StrEnum
from typing import Any


class RequiredSignerType(StrEnum):
    PARTICIPANT = "PARTICIPANT"
    PARENT_GUARDIAN = "PARENT_GUARDIAN"
    CHILD = "CHILD"
    PARENT_GUARDIAN_CHILD = "PARENT_GUARDIAN_CHILD"


class SignerContext(StrEnum):
    PARTICIPANT = "participant"
    PARENT_GUARDIAN = "parent_guardian"
    CHILD = "child"


REQUIRED_SIGNER_TYPE_LABELS: dict[RequiredSignerType, str] = {
    RequiredSignerType.PARTICIPANT: "Participant",
    RequiredSignerType.PARENT_GUARDIAN: "Parent/Guardian",
    RequiredSignerType.CHILD: "Child",
    RequiredSignerType.PARENT_GUARDIAN_CHILD: "Parent/Guardian + Child",
}

SIGNER_CONTEXT_LABELS: dict[SignerContext, str] = {
    SignerContext.PARTICIPANT: "Participant",
    SignerContext.PARENT_GUARDIAN: "Parent/Guardian",
    SignerContext.CHILD: "Child",
}

_SEPARATORS = re.compile(r"[\s/-]+")

_REQUIRED_SIGNER_TYPE_ALIASES: dict[str, RequiredSignerType] = {
    "PARENT_GUARDIAN_AND_CHILD": RequiredSignerType.PARENT_GUARDIAN_CHILD,
    "PARENT_GUARDING_CHILD": RequiredSignerType.PARENT_GUARDIAN_CHILD,
}

_SIGNER_CONTEXT_ALIASES: dict[str, SignerContext] = {
    "parent": SignerContext.PARENT_GUARDIAN,
    "guardian": SignerContext.PARENT_GUARDIAN,
    "parent_guardian": SignerContext.PARENT_GUARDIAN,
    "child": SignerContext.CHILD,
    "participant": SignerContext.PARTICIPANT,
    "self": SignerContext.PARTICIPANT,
}


def normalize_required_signer_type(
    value: Any,
    fallback: RequiredSignerType = RequiredSignerType.PARTICIPANT,
) -> RequiredSignerType:
    """Coerce stored template data to a signer type.

    Unrecognized or non-string input falls back to PARTICIPANT, the
    least restrictive single-signer requirement.
    """
    if isinstance(value, RequiredSignerType):
        return value
    if not isinstance(value, str):
        return fallback
    normalized = _SEPARATORS.sub("_", value.strip().upper())
    if normalized in _REQUIRED_SIGNER_TYPE_ALIASES:
        return _REQUIRED_SIGNER_TYPE_ALIASES[normalized]
    try:
        return RequiredSignerType(normalized)
    except ValueError:
        return fallback


def normalize_signer_context(
    value: Any,
    fallback: SignerContext = SignerContext.PARTICIPANT,
) -> SignerContext:
    if isinstance(value, SignerContext):
        return value
    if not isinstance(value, str):
        return fallback
    normalized = _SEPARATORS.sub("_", value.strip().lower())
    return _SIGNER_CONTEXT_ALIASES.get(normalized, fallback)


def contexts_required(required_signer_type: Any) -> frozenset[SignerContext]:
    signer_type = normalize_required_signer_type(required_signer_type)
    if signer_type == RequiredSignerType.PARENT_GUARDIAN:
        return frozenset({SignerContext.PARENT_GUARDIAN})
    if signer_type == RequiredSignerType.CHILD:
        return frozenset({SignerContext.CHILD})
    if signer_type == RequiredSignerType.PARENT_GUARDIAN_CHILD:
        return frozenset({SignerContext.PARENT_GUARDIAN, SignerContext.CHILD})
    # PARTICIPANT and anything that normalized to it.
    return frozenset({SignerContext.PARTICIPANT})


def matches(required_signer_type: Any, signer_context: SignerContext, is_child_registration: bool) -> bool:
    signer_type = normalize_required_signer_type(required_signer_type)
    if signer_type == RequiredSignerType.PARENT_GUARDIAN:
        return is_child_registration and signer_context == SignerContext.PARENT_GUARDIAN
    if signer_type == RequiredSignerType.CHILD:
        return is_child_registration and signer_context == SignerContext.CHILD
    if signer_type == RequiredSignerType.PARENT_GUARDIAN_CHILD:
        return is_child_registration and signer_context in (
            SignerContext.PARENT_GUARDIAN,
            SignerContext.CHILD,
        )
    return not is_child_registration and signer_context == SignerContext.PARTICIPANT


def applicable_contexts(required_signer_type: Any, is_child_registration: bool) -> frozenset[SignerContext]:
    """Signer contexts a template needs for this kind of registration."""
    return frozenset(
        context
        for context in contexts_required(required_signer_type)
        if matches(required_signer_type, context, is_child_registration)
    )


def required_signer_type_label(value: Any) -> str:
    return REQUIRED_SIGNER_TYPE_LABELS[normalize_required_signer_type(value)]


def signer_context_label(context: SignerContext) -> str:
    return SIGNER_CONTEXT_LABELS[context]
