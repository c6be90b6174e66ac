# app/api/routes/webauthn.py
from typing import Any, Dict
from fastapi import APIRouter, Depends
from app.core.exceptions import ValidationError
from app.core.schemas.auth import (
    UserResponse,
    WebAuthnRegisterOptionsRequest,
    WebAuthnRegisterRequest,
    WebAuthnLoginRequest,
    WebAuthnCredentialInfo,
    WebAuthnCredentialsResponse,
    WebAuthnLoginResponse,
    SuccessResponse,
)
from app.services.webauthn_service import WebAuthnService
from app.core.utils import get_webauthn_service
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth/webauthn", tags=["webauthn"])


@router.post("/register-options")
async def register_options(
    body: WebAuthnRegisterOptionsRequest,
    service: WebAuthnService = Depends(get_webauthn_service),
) -> Dict[str, Any]:
    """PublicKeyCredentialCreationOptions для navigator.credentials.create()"""
    return await service.registration_options(body.user_id, body.username, body.display_name)


@router.post("/register", response_model=SuccessResponse)
async def register(
    body: WebAuthnRegisterRequest,
    service: WebAuthnService = Depends(get_webauthn_service),
):
    if body.userId is None:
        raise ValidationError("userId is required")
    await service.register(body.userId, body.credential())
    return SuccessResponse(message="Biometric credential registered")


@router.post("/login-options")
async def login_options(service: WebAuthnService = Depends(get_webauthn_service)) -> Dict[str, Any]:
    """Опции входа с пустым allowCredentials и tempId для проверки"""
    return service.login_options()


@router.post("/login", response_model=WebAuthnLoginResponse)
async def login(
    body: WebAuthnLoginRequest,
    service: WebAuthnService = Depends(get_webauthn_service),
):
    user, token = await service.login(body.tempId, body.credential())
    logger.info(f"WebAuthn login for user ID: {user.id}")
    return WebAuthnLoginResponse(token=token, user=UserResponse.model_validate(user))


@router.get("/credentials/{user_id}", response_model=WebAuthnCredentialsResponse)
async def list_credentials(user_id: int, service: WebAuthnService = Depends(get_webauthn_service)):
    credentials = await service.list_credentials(user_id)
    return WebAuthnCredentialsResponse(
        credentials=[WebAuthnCredentialInfo(id=c.credential_id, createdAt=c.created_at) for c in credentials]
    )


@router.delete("/credentials/{user_id}/{credential_id}", response_model=SuccessResponse)
async def delete_credential(
    user_id: int,
    credential_id: str,
    service: WebAuthnService = Depends(get_webauthn_service),
):
    await service.delete_credential(user_id, credential_id)
    return SuccessResponse(message="Credential deleted")
