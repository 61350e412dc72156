from pydantic import BaseModel, EmailStr
from typing import Optional, Literal
from datetime import datetime

Role = Literal["customer", "provider", "admin"]

class UserOut(BaseModel):
    id: str
    full_name: str
    email: EmailStr
    role: Role = "customer"
    created_at: Optional[datetime] = None
