from fastapi import APIRouter, Depends, HTTPException, status, Request
from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Literal
from ..db import get_store
from ..security import hash_password, verify_password, create_access_token
from ..schemas.user import UserOut
from ..middleware.rate_limit import apply_rate_limit
from ..utils import utcnow
import logging

logger = logging.getLogger(__name__)

router = APIRouter()

def validate_password_strength(password: str) -> str:
    """Valida que la contraseña tenga al menos 6 caracteres y no sea demasiado común"""
    if len(password) < 6:
        raise ValueError("La contraseña debe tener al menos 6 caracteres")
    if len(password) > 72:  # Límite de bcrypt
        raise ValueError("La contraseña no puede exceder 72 caracteres")
    if password.isdigit() or password.isalpha():
        logger.warning("Contraseña débil detectada (solo números o solo letras)")
    return password

class Signup(BaseModel):
    full_name: str = Field(..., min_length=2, max_length=80, description="Nombre completo del usuario")
    email: EmailStr = Field(..., description="Email válido")
    password: str = Field(..., min_length=6, max_length=72, description="Contraseña (mín. 6 caracteres)")
    # Los administradores no se dan de alta por aquí
    role: Literal["customer", "provider"] = Field("customer", description="Cliente o proveedor de servicios")

    @field_validator('password')
    @classmethod
    def validate_password(cls, v: str) -> str:
        return validate_password_strength(v)

class Login(BaseModel):
    email: EmailStr = Field(..., description="Email del usuario")
    password: str = Field(..., min_length=1, description="Contraseña")

@router.post("/signup", status_code=status.HTTP_201_CREATED, response_model=UserOut)
async def signup(request: Request, payload: Signup, store=Depends(get_store)):
    # Rate limiting: máximo 5 registros por minuto por IP
    apply_rate_limit(request, "5/minute")

    if await store.get_user_by_email(payload.email):
        raise HTTPException(409, "Email ya registrado")

    doc = payload.model_dump()
    doc["password_hash"] = hash_password(doc.pop("password"))
    doc["created_at"] = utcnow()

    created = await store.insert_user(doc)
    logger.info(f"Usuario {created['id']} registrado como {created['role']}")
    return created

@router.post("/login")
async def login(request: Request, payload: Login, store=Depends(get_store)):
    # Rate limiting: máximo 10 intentos de login por minuto por IP
    apply_rate_limit(request, "10/minute")

    user = await store.get_user_by_email(payload.email)
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        raise HTTPException(401, "Credenciales inválidas")
    token = create_access_token(user["id"])
    return {"access_token": token, "token_type": "bearer"}
