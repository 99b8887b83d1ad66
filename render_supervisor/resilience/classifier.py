"""
Error Classifier

Sorts raw backend failure text into one of the ten ErrorKinds.

Classification is an ordered, data-driven rule table evaluated by a single
pure function. Rules are tried first-match-wins with case-insensitive
substring tests against the failure message; only when no rule matches the
message is the stack text tried with the same table. Anything unmatched is
GENERIC, so classify() is total.

Order matters: "invalid typed array length" must reach PARSING before the
VALIDATION rule sees "invalid", and "load failed: network down" is a
NETWORK failure even though LOADING would also match.
"""

from typing import Optional

from render_supervisor.models.domain import ErrorKind
from render_supervisor.resilience.signatures import format_stack


# =============================================================================
# Rule Table
# =============================================================================

CLASSIFICATION_RULES: tuple[tuple[ErrorKind, tuple[str, ...]], ...] = (
    (ErrorKind.NETWORK, ("network", "fetch", "404", "connection")),
    (
        ErrorKind.PARSING,
        ("gltf", "glb", "invalid typed array length", "unexpected end of data"),
    ),
    (ErrorKind.MEMORY, ("memory", "out of memory", "allocation failed")),
    (ErrorKind.ANIMATION, ("animation", "mixer", "clip", "action")),
    (ErrorKind.MATERIAL, ("material", "shader", "uniform", "attribute")),
    (ErrorKind.TEXTURE, ("texture", "image", "canvas", "webgl")),
    (ErrorKind.GEOMETRY, ("geometry", "buffer", "vertices", "indices")),
    (ErrorKind.VALIDATION, ("validation", "invalid", "missing", "required")),
    (ErrorKind.LOADING, ("load", "import", "file", "path")),
)


# =============================================================================
# Explanations
# =============================================================================

ERROR_EXPLANATIONS: dict[ErrorKind, str] = {
    ErrorKind.NETWORK: "connectivity issue while fetching renderer assets",
    ErrorKind.LOADING: "asset failed to load; the file may be missing",
    ErrorKind.PARSING: "corrupted or unsupported asset",
    ErrorKind.MEMORY: "not enough memory to render at this fidelity",
    ErrorKind.VALIDATION: "asset failed validation; the file may be incomplete",
    ErrorKind.ANIMATION: "animations failed; rendering continues without them",
    ErrorKind.MATERIAL: "materials failed; colours may be incorrect",
    ErrorKind.TEXTURE: "textures failed; surfaces may render untextured",
    ErrorKind.GEOMETRY: "geometry is corrupted",
    ErrorKind.GENERIC: "unexpected renderer failure",
}


def _match(text: str) -> Optional[ErrorKind]:
    lowered = text.lower()
    for kind, tokens in CLASSIFICATION_RULES:
        if any(token in lowered for token in tokens):
            return kind
    return None


def classify(message: str, stack: str = "") -> ErrorKind:
    """
    Classify raw failure text.

    Args:
        message: Failure message reported by the backend
        stack: Optional stack trace, consulted only if the message is silent

    Returns:
        The first matching ErrorKind, GENERIC when nothing matches

    Example:
        >>> classify("Failed to fetch /models/hero.glb")
        <ErrorKind.NETWORK: 'network'>
    """
    kind = _match(message or "")
    if kind is None and stack:
        kind = _match(stack)
    return kind or ErrorKind.GENERIC


def classify_exception(error: BaseException) -> ErrorKind:
    """Classify an exception by its string form and formatted traceback."""
    return classify(str(error), format_stack(error))


def explain(kind: ErrorKind) -> str:
    """Return the fixed human-readable explanation for an ErrorKind."""
    return ERROR_EXPLANATIONS[kind]
