# escrow/core/canon.py
from typing import Any

try:
    import jcs
except ImportError:
    raise ImportError("Please install jcs: pip install jcs")

# RFC 8785 serialises numbers as IEEE doubles; integers past this bound would
# be rounded. Token amounts therefore travel as decimal strings.
MAX_SAFE_INTEGER = 2**53 - 1


def _check_numbers(obj: Any, path: str = "$") -> None:
    if isinstance(obj, bool) or obj is None or isinstance(obj, str):
        return
    if isinstance(obj, float):
        raise ValueError(f"Float at {path} cannot be hashed exactly: {obj!r}")
    if isinstance(obj, int):
        if abs(obj) > MAX_SAFE_INTEGER:
            raise ValueError(f"Integer at {path} exceeds 2**53 - 1; encode it as a string")
        return
    if isinstance(obj, dict):
        for key, value in obj.items():
            _check_numbers(value, f"{path}.{key}")
    elif isinstance(obj, (list, tuple)):
        for i, value in enumerate(obj):
            _check_numbers(value, f"{path}[{i}]")


def canonical_json(obj: Any) -> bytes:
    """
    RFC 8785 bytes for an event record. Every node replaying the same journal
    must compute the same chain, so values that a double cannot hold exactly
    are refused rather than rounded.
    """
    _check_numbers(obj)
    return jcs.canonicalize(obj)


def canonical_json_str(obj: Any) -> str:
    return canonical_json(obj).decode("utf-8")
