from __future__ import annotations

from pydantic import BaseModel


class SignatureRead(BaseModel):
    inspector_name: str
    signature_data: str

    class Config:
        from_attributes = True


class BrandingRead(BaseModel):
    company_name: str | None = None
    logo_url: str | None = None

    class Config:
        from_attributes = True


class FacilityRead(BaseModel):
    id: str
    name: str

    class Config:
        from_attributes = True
