"""
Pydantic schemas for data validation and serialization.

Schemas:
    customer: Customer and Address, the record shape shared by the source
        and the anonymized sink

Usage:
    from schemas.customer import Customer, Address

Example:
    customer = Customer.from_row(orm_row)
    values = customer.to_row()
"""

__all__ = [
    "Customer",
    "Address",
]
