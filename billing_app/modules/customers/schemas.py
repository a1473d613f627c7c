from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Optional, List

# Colecciones del directorio de clientes
CUSTOMERS_COLLECTION = "customers"
CUSTOMER_NAME_CLAIMS_COLLECTION = "customer_names"

CONTACT_FIELDS = ("address", "phone", "email", "gstin")


class CustomerContact(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    address: str = ""
    phone: str = ""
    email: str = ""
    gstin: str = ""

    @field_validator("address", "phone", "email", "gstin", mode="before")
    @classmethod
    def strip_value(cls, v):
        if v is None:
            return ""
        return str(v).strip()


class CustomerInput(BaseModel):
    """Datos de cliente que acompañan a una solicitud de documento"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    customer_id: Optional[str] = None
    customer_name: str = ""
    customer_contact: CustomerContact = Field(default_factory=CustomerContact)
    company_name: Optional[str] = None


class Customer(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    customer_id: str
    customer_name: str
    customer_contact: CustomerContact = Field(default_factory=CustomerContact)
    company: List[str] = Field(default_factory=list)
    created_by: str = "unknown"
    last_updated_by: str = "unknown"
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @field_validator("company", mode="before")
    @classmethod
    def company_as_list(cls, v):
        # Registros heredados guardan una sola empresa como texto
        if v is None:
            return []
        if isinstance(v, str):
            return [v] if v else []
        return list(v)
