"""
Deterministic pseudonymization of customer records.

The pseudonyms for a record depend only on its identity and on the fixed
anonymization parameters (salt, token length). Re-anonymizing a record
after a crash therefore yields byte-identical output, which is what lets
the sink treat a replayed record as a harmless duplicate.
"""

import hashlib
import string
from typing import Optional

from faker import Faker

from core.config import settings
from core.exceptions import AnonymizationError
from schemas.customer import Address, Customer

ALPHANUMERIC = string.ascii_letters + string.digits


def derive_seed(record_id: str, salt: str = "") -> int:
    """
    Derive a 64-bit seed from a record identity.
    
    Any stable, collision-resistant mapping works; the identity format
    itself is treated as opaque.
    """
    digest = hashlib.sha256(f"{salt}\x00{record_id}".encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big")


class Anonymizer:
    """
    Replace the PII fields of a Customer with seeded random tokens.
    
    Replaced: first_name, last_name, email local part, address line1,
    address line2, postcode. Everything else passes through unchanged.
    
    Not safe for concurrent use from several threads: the generator is
    reseeded per record.
    """
    
    def __init__(self, salt: str = "", token_length: int = 8):
        if token_length < 1:
            raise ValueError("token_length must be positive")
        self.salt = salt
        self.token_length = token_length
        self._faker = Faker()
    
    def _token(self) -> str:
        return self._faker.lexify("?" * self.token_length, letters=ALPHANUMERIC)
    
    def anonymize(self, customer: Customer) -> Customer:
        """
        Anonymize one record.
        
        Precondition: customer.email contains "@". A violation raises
        AnonymizationError (a ValueError) and the caller drops the record.
        """
        at = customer.email.find("@")
        if at < 0:
            raise AnonymizationError(
                "Email has no \"@\" separator",
                context={"record_id": customer.id}
            )
        # Everything from "@" onward is kept verbatim
        email_provider = customer.email[at:]
        
        self._faker.seed_instance(derive_seed(customer.id, self.salt))
        
        # Generation order is part of the output format
        first_name = self._token()
        last_name = self._token()
        email = f"{self._token()}{email_provider}"
        line1 = self._token()
        line2 = self._token()
        postcode = self._token()
        
        return Customer(
            id=customer.id,
            first_name=first_name,
            last_name=last_name,
            email=email,
            address=Address(
                line1=line1,
                line2=line2,
                postcode=postcode,
                city=customer.address.city,
                state=customer.address.state,
                country=customer.address.country,
            ),
            created_at=customer.created_at,
        )
    
    __call__ = anonymize


_default: Optional[Anonymizer] = None


def anonymize(customer: Customer) -> Customer:
    """Anonymize with the parameters from settings"""
    global _default
    if _default is None:
        _default = Anonymizer(
            salt=settings.ANONYMIZATION_SALT,
            token_length=settings.PSEUDONYM_LENGTH,
        )
    return _default.anonymize(customer)
