"""
Password Generator.

Draws every character from the ``secrets`` CSPRNG. Required digits and
specials are placed first, the remainder is filled from the combined
alphabet, and the result is shuffled so required characters do not sit
at fixed positions.
"""
import secrets
import string
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator
from pydantic import ValidationError as SchemaError

from .exceptions import ValidationError
from .models import schema_error

UPPERCASE = string.ascii_uppercase
LOWERCASE = string.ascii_lowercase
NUMBERS = string.digits
SPECIAL = "@!*&#$%^()_+-=[]{}|;:,.<>?"
AMBIGUOUS = frozenset("il1Lo0O")

_random = secrets.SystemRandom()


class PasswordOptions(BaseModel):
    """Character classes and minimums for a generated password."""

    length: int = Field(default=16, ge=4, le=128)
    uppercase: bool = True
    lowercase: bool = True
    numbers: bool = True
    special: bool = True
    min_numbers: int = Field(default=1, ge=0)
    min_special: int = Field(default=1, ge=0)
    avoid_ambiguous: bool = False

    @model_validator(mode="after")
    def validate_classes(self) -> "PasswordOptions":
        if not (self.uppercase or self.lowercase or self.numbers or self.special):
            raise ValueError("at least one character class must be enabled")
        required = (self.min_numbers if self.numbers else 0) + (
            self.min_special if self.special else 0
        )
        if required > self.length:
            raise ValueError(
                f"length {self.length} is shorter than the {required} required characters"
            )
        return self


def _alphabet(chars: str, avoid_ambiguous: bool) -> str:
    if avoid_ambiguous:
        return "".join(c for c in chars if c not in AMBIGUOUS)
    return chars


def generate_password(options: Optional[PasswordOptions] = None, **kwargs: Any) -> str:
    """Generate a random password.

    Args:
        options: Generation options; keyword arguments build one when omitted.

    Raises:
        ValidationError: On an impossible combination of options.
    """
    if options is None:
        try:
            options = PasswordOptions(**kwargs)
        except SchemaError as err:
            raise schema_error(err, "password options") from None
    elif kwargs:
        raise ValidationError("Pass either options or keyword arguments, not both")

    avoid = options.avoid_ambiguous
    numbers = _alphabet(NUMBERS, avoid)
    special = _alphabet(SPECIAL, avoid)
    charset = ""
    if options.uppercase:
        charset += _alphabet(UPPERCASE, avoid)
    if options.lowercase:
        charset += _alphabet(LOWERCASE, avoid)
    if options.numbers:
        charset += numbers
    if options.special:
        charset += special

    chars: list[str] = []
    if options.numbers:
        chars.extend(secrets.choice(numbers) for _ in range(options.min_numbers))
    if options.special:
        chars.extend(secrets.choice(special) for _ in range(options.min_special))
    chars.extend(secrets.choice(charset) for _ in range(options.length - len(chars)))
    _random.shuffle(chars)
    return "".join(chars)
