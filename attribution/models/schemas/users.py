"""
Pydantic schemas for user-related operations.
"""
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field, EmailStr, ConfigDict
from ..db.enums import UserRole

class UserCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: EmailStr
    role: UserRole = UserRole.AFFILIATE

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "name": "Jane Smith",
            "email": "jane@example.com",
            "role": "AFFILIATE"
        }
    })

class UserRead(BaseModel):
    id: int
    name: str
    email: str
    api_key: str | None
    is_active: bool
    role: UserRole
    total_commission: Decimal
    available_balance: Decimal
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
