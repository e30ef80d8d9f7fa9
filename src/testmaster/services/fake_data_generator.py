"""
Fake data generation for form filling and account registration.

Values are random but always structurally valid: emails look like emails,
passwords satisfy common complexity rules, birth dates fall inside an age
range.
"""

import logging
import string
from datetime import date
from typing import Dict, Optional

from faker import Faker

logger = logging.getLogger(__name__)

PASSWORD_SYMBOLS = "!@#$%^&*"


class FakeDataGenerator:
    """Realistic random values backed by Faker."""

    def __init__(self, locale: str = "en_US", seed: Optional[int] = None):
        self.faker = Faker(locale)
        if seed is not None:
            self.faker.seed_instance(seed)

    @property
    def random(self):
        return self.faker.random

    def first_name(self) -> str:
        return self.faker.first_name()

    def last_name(self) -> str:
        return self.faker.last_name()

    def full_name(self) -> str:
        return f"{self.first_name()} {self.last_name()}"

    def username(self) -> str:
        return f"{self.faker.user_name()}{self.random.randint(100, 9999)}"

    def email(self) -> str:
        local = f"{self.faker.user_name()}.{self.random.randint(1000, 99999)}"
        return f"{local}@{self.faker.free_email_domain()}"

    def password(self, length: int = 12) -> str:
        """
        Password with at least one uppercase letter, lowercase letter,
        digit and symbol, shuffled, of exactly ``length`` characters.

        Raises:
            ValueError: If length is below 4
        """
        if length < 4:
            raise ValueError(f"Password length must be at least 4, got {length}")

        rng = self.random
        chars = [
            rng.choice(string.ascii_uppercase),
            rng.choice(string.ascii_lowercase),
            rng.choice(string.digits),
            rng.choice(PASSWORD_SYMBOLS),
        ]
        pool = string.ascii_letters + string.digits + PASSWORD_SYMBOLS
        chars.extend(rng.choice(pool) for _ in range(length - 4))
        rng.shuffle(chars)
        return ''.join(chars)

    def phone(self) -> str:
        return self.faker.numerify("(###) ###-####")

    def street_address(self) -> str:
        return self.faker.street_address()

    def city(self) -> str:
        return self.faker.city()

    def zip_code(self) -> str:
        return self.faker.postcode()

    def company(self) -> str:
        return self.faker.company()

    def date_of_birth(self, min_age: int = 18, max_age: int = 65) -> date:
        return self.faker.date_of_birth(minimum_age=min_age, maximum_age=max_age)

    def age(self, min_age: int = 18, max_age: int = 65) -> int:
        return self.random.randint(min_age, max_age)

    def sentence(self) -> str:
        return self.faker.sentence()

    def auto_fill(self, field_name: str = "", placeholder: str = "",
                  field_type: Optional[str] = None) -> str:
        """
        Value for a form field inferred from its name, placeholder and type.

        Hints are matched in priority order: email, password, username,
        first name, last name, phone, address, city, zip, date/birth,
        company, age. Anything else gets generic text.
        """
        hint = f"{field_name or ''} {placeholder or ''}".lower()
        field_type = (field_type or "").lower()

        if field_type == "email" or "email" in hint or "e-mail" in hint:
            return self.email()
        if field_type == "password" or "password" in hint or "passwd" in hint:
            return self.password()
        if "username" in hint or "user_name" in hint or "login" in hint:
            return self.username()
        if any(key in hint for key in ("first", "fname", "given")):
            return self.first_name()
        if any(key in hint for key in ("last", "lname", "surname", "family")):
            return self.last_name()
        if field_type == "tel" or any(key in hint for key in ("phone", "mobile", "tel")):
            return self.phone()
        if "address" in hint or "street" in hint:
            return self.street_address()
        if "city" in hint or "town" in hint:
            return self.city()
        if any(key in hint for key in ("zip", "postal", "postcode")):
            return self.zip_code()
        if field_type == "date" or any(key in hint for key in ("date", "birth", "dob")):
            return self.date_of_birth().isoformat()
        if "company" in hint or "organization" in hint or "organisation" in hint:
            return self.company()
        if "age" in hint.split() or field_name.lower() == "age":
            return str(self.age())
        if field_type == "number":
            return str(self.random.randint(1, 100))
        if field_type == "url" or "website" in hint or "url" in hint:
            return self.faker.url()
        if "name" in hint:
            return self.full_name()
        if any(key in hint for key in ("message", "comment", "description")):
            return self.sentence()
        return f"Test {field_name or 'input'}".strip()

    def generate_registration_data(self, password_length: int = 12) -> Dict[str, str]:
        """A coherent identity for signing up a new account."""
        first, last = self.first_name(), self.last_name()
        suffix = self.random.randint(1000, 99999)
        return {
            "first_name": first,
            "last_name": last,
            "full_name": f"{first} {last}",
            "username": f"{first.lower()}{last.lower()}{suffix}",
            "email": f"{first.lower()}.{last.lower()}{suffix}@{self.faker.free_email_domain()}",
            "password": self.password(password_length),
            "phone": self.phone(),
            "company": self.company(),
        }
