"""Coercion and validation helpers for untrusted backend output.

Everything the generative backend returns passes through these helpers
before any stage touches it. Helpers never raise on odd input; they return
``None`` (or a clamped value) and leave the decision to the caller.
Schema enforcement happens in :func:`validate_contract`.
"""

import math
import re
import unicodedata
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from visa_advisor.core.exceptions import ContractValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)

TRUE_WORDS = frozenset({"true", "yes", "sim", "y", "s", "1", "verdadeiro"})
FALSE_WORDS = frozenset({"false", "no", "nao", "n", "0", "falso"})

_PERCENT_RE = re.compile(r"^(\d{1,3}(?:[.,]\d+)?)\s*%$")
_YEARS_RE = re.compile(r"(\d+(?:[.,]\d+)?)\s*(?:anos?|years?|yrs?)\b")
_NUMBER_RE = re.compile(r"-?\d+(?:[.,]\d+)?")


def fold(text: str) -> str:
    """Lowercase and strip diacritics."""
    decomposed = unicodedata.normalize("NFKD", text.lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def collapse_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def is_blank(value: Any) -> bool:
    """True for None, empty/whitespace strings and empty containers."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict, tuple, set)):
        return len(value) == 0
    return False


def strip_nulls(value: Any) -> Any:
    """Recursively drop None, blank strings and empty containers."""
    if isinstance(value, dict):
        cleaned = {}
        for key, item in value.items():
            item = strip_nulls(item)
            if not is_blank(item):
                cleaned[key] = item
        return cleaned
    if isinstance(value, list):
        items = [strip_nulls(item) for item in value]
        return [item for item in items if not is_blank(item)]
    if isinstance(value, str):
        return value.strip()
    return value


def to_bool(value: Any) -> Optional[bool]:
    """Coerce yes/no style values (English and Portuguese) to bool."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if value in (0, 1):
            return bool(value)
        return None
    if isinstance(value, str):
        word = fold(value.strip())
        if word in TRUE_WORDS:
            return True
        if word in FALSE_WORDS:
            return False
    return None


def to_number(value: Any) -> Optional[float]:
    """Coerce numeric-looking values; accepts comma decimals and currency noise."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        cleaned = value.strip().replace("$", "").replace("US", "").replace(" ", "")
        if re.fullmatch(r"-?\d{1,3}(?:[.,]\d{3})+", cleaned):
            # thousands separators only: 150.000 or 150,000
            cleaned = re.sub(r"[.,]", "", cleaned)
        else:
            cleaned = cleaned.replace(",", ".")
        try:
            number = float(cleaned)
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def to_years(value: Any) -> Optional[int]:
    """Coerce to a non-negative whole number of years ("5 anos", "3.5", 4)."""
    number = to_number(value)
    if number is None and isinstance(value, str):
        match = _YEARS_RE.search(fold(value))
        if match:
            number = to_number(match.group(1))
    if number is None:
        return None
    return max(0, int(math.floor(number)))


def clamp01(value: float) -> float:
    if not math.isfinite(value):
        return 0.0
    return max(0.0, min(1.0, value))


def to_confidence(value: Any) -> float:
    """Normalize a confidence into [0, 1].

    Accepts 0-1 floats, 0-100 numbers and ``"NN%"`` strings. Anything else
    becomes 0.
    """
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
        if not math.isfinite(number):
            return 0.0
        return clamp01(number if number <= 1 else number / 100)
    if isinstance(value, str):
        text = value.strip()
        match = _PERCENT_RE.match(text)
        if match:
            return clamp01(float(match.group(1).replace(",", ".")) / 100)
        number = to_number(text)
        if number is not None:
            return clamp01(number if number <= 1 else number / 100)
    return 0.0


def to_str(value: Any) -> Optional[str]:
    if isinstance(value, str):
        text = collapse_whitespace(value)
        return text or None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def to_string_list(value: Any) -> List[str]:
    """Coerce a string or list of scalars to a list of non-empty strings."""
    if isinstance(value, str):
        parts = [value]
    elif isinstance(value, list):
        parts = value
    else:
        return []
    result = []
    for part in parts:
        text = to_str(part)
        if text:
            result.append(text)
    return result


def as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def validate_contract(
    validator: Union[Type[ModelT], Callable[[Dict[str, Any]], Any]],
    data: Dict[str, Any],
) -> Any:
    """Apply a pydantic model or a callable validator to parsed output.

    Args:
        validator: Pydantic model class or callable returning the typed value
        data: Parsed JSON object

    Returns:
        The validated value

    Raises:
        ContractValidationError: If validation fails
    """
    try:
        if isinstance(validator, type) and issubclass(validator, BaseModel):
            return validator.model_validate(data)
        return validator(data)
    except PydanticValidationError as e:
        errors = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
            for err in e.errors()
        ]
        raise ContractValidationError(
            f"Backend output failed validation ({len(errors)} errors)",
            errors=errors,
            original_error=e,
            raw=data,
        ) from e
    except (TypeError, ValueError, KeyError) as e:
        raise ContractValidationError(
            f"Backend output failed validation: {e}",
            errors=[{"loc": [], "msg": str(e), "type": type(e).__name__}],
            original_error=e,
            raw=data,
        ) from e
