"""
Tests for the password generator.
"""
import string

import pytest

from navigator_vault.exceptions import ValidationError
from navigator_vault.generator import (
    AMBIGUOUS,
    SPECIAL,
    PasswordOptions,
    generate_password,
)


class TestGeneratePassword:
    """Generated passwords."""

    def test_default_length(self):
        """Default length is 16."""
        assert len(generate_password()) == 16

    @pytest.mark.parametrize("length", [4, 12, 64, 128])
    def test_length(self, length):
        """Requested length is honoured."""
        assert len(generate_password(length=length)) == length

    def test_minimums_are_met(self):
        """Minimum digit and special counts are met."""
        for _ in range(50):
            password = generate_password(length=8, min_numbers=3, min_special=2)
            assert sum(c in string.digits for c in password) >= 3
            assert sum(c in SPECIAL for c in password) >= 2

    def test_only_enabled_classes(self):
        """Disabled classes never appear."""
        password = generate_password(
            length=40, uppercase=False, numbers=False, special=False,
        )
        assert set(password) <= set(string.ascii_lowercase)

    def test_numbers_only(self):
        """A single class can fill the whole password."""
        options = PasswordOptions(
            length=10, uppercase=False, lowercase=False, special=False, min_numbers=10,
        )
        assert generate_password(options).isdigit()

    def test_avoid_ambiguous(self):
        """Ambiguous characters can be excluded."""
        for _ in range(20):
            password = generate_password(length=128, avoid_ambiguous=True)
            assert not set(password) & AMBIGUOUS

    def test_passwords_differ(self):
        """Consecutive passwords differ."""
        assert len({generate_password() for _ in range(20)}) == 20


class TestOptions:
    """Option validation."""

    def test_no_classes(self):
        """At least one character class is required."""
        with pytest.raises(ValidationError):
            generate_password(uppercase=False, lowercase=False, numbers=False, special=False)

    def test_minimums_exceed_length(self):
        """Minimums must fit in the length."""
        with pytest.raises(ValidationError):
            generate_password(length=4, min_numbers=3, min_special=3)

    def test_disabled_class_minimum_is_ignored(self):
        """Minimums of disabled classes are ignored."""
        password = generate_password(length=4, special=False, min_special=10)
        assert not set(password) & set(SPECIAL)

    def test_length_bounds(self):
        """Length stays within 4..128."""
        with pytest.raises(ValidationError):
            generate_password(length=3)
        with pytest.raises(ValidationError):
            generate_password(length=129)

    def test_options_and_kwargs_conflict(self):
        """Options and keyword overrides cannot be mixed."""
        with pytest.raises(ValidationError):
            generate_password(PasswordOptions(), length=20)
