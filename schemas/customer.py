"""
Pydantic schemas for customer records moving through the mirror
"""

from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime


class Address(BaseModel):
    """Postal address; line1, line2 and postcode are PII"""
    
    line1: str
    line2: Optional[str] = None
    postcode: str
    city: str
    state: str
    country: str = Field(..., max_length=10)
    
    class Config:
        frozen = True


class Customer(BaseModel):
    """
    A customer record, as read from the source or written to the sink.
    
    Immutable once created. The same shape is used for the anonymized
    copy; only the PII values differ.
    
    Precondition: email contains "@". Producers that break this get
    their record rejected by the anonymizer.
    """
    
    id: str = Field(..., min_length=1, max_length=64)
    first_name: str
    last_name: str
    email: str
    address: Address
    created_at: datetime
    
    class Config:
        frozen = True
    
    @classmethod
    def from_row(cls, row: Any) -> "Customer":
        """Build from a customers / customers_anonymized ORM row"""
        return cls(
            id=row.id,
            first_name=row.first_name,
            last_name=row.last_name,
            email=row.email,
            address=Address(
                line1=row.address_line1,
                line2=row.address_line2,
                postcode=row.postcode,
                city=row.city,
                state=row.state,
                country=row.country,
            ),
            created_at=row.created_at,
        )
    
    def to_row(self) -> Dict[str, Any]:
        """Flatten into column values for the customer tables"""
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "address_line1": self.address.line1,
            "address_line2": self.address.line2,
            "postcode": self.address.postcode,
            "city": self.address.city,
            "state": self.address.state,
            "country": self.address.country,
            "created_at": self.created_at,
        }
