# app/services/webauthn_service.py
import json
import logging
import secrets
from typing import Any, Dict, List, Tuple
from webauthn import (
    generate_registration_options,
    verify_registration_response,
    generate_authentication_options,
    verify_authentication_response,
    options_to_json,
)
from webauthn.helpers import bytes_to_base64url, base64url_to_bytes
from webauthn.helpers.exceptions import WebAuthnException
from webauthn.helpers.structs import (
    AttestationConveyancePreference,
    AuthenticatorAttachment,
    AuthenticatorSelectionCriteria,
    PublicKeyCredentialDescriptor,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)
from app.core.config import WebAuthnConfig
from app.core.exceptions import ValidationError, NotFoundError, AuthorizationError
from app.core.security import create_access_token
from app.models.user import User, WebAuthnCredential
from app.repositories.user_repository import UserRepository
from app.services.challenge_store import ChallengeStore

logger = logging.getLogger(__name__)

VERIFY_ERRORS = (WebAuthnException, ValueError, KeyError, TypeError)


def _login_key(temp_id: str) -> str:
    return f"auth_{temp_id}"


class WebAuthnService:
    """Регистрация и вход по платформенному аутентификатору"""

    def __init__(self, user_repository: UserRepository, challenges: ChallengeStore, config: WebAuthnConfig):
        self.user_repository = user_repository
        self.challenges = challenges
        self.config = config

    async def _get_user(self, user_id: int) -> User:
        user = await self.user_repository.get_by_id(user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    async def registration_options(self, user_id: int, username: str, display_name: str = None) -> Dict[str, Any]:
        user = await self._get_user(user_id)
        existing = await self.user_repository.get_credentials(user.id)

        options = generate_registration_options(
            rp_id=self.config.RP_ID,
            rp_name=self.config.RP_NAME,
            user_id=str(user.id).encode(),
            user_name=username,
            user_display_name=display_name or username,
            attestation=AttestationConveyancePreference.NONE,
            authenticator_selection=AuthenticatorSelectionCriteria(
                authenticator_attachment=AuthenticatorAttachment.PLATFORM,
                resident_key=ResidentKeyRequirement.PREFERRED,
                user_verification=UserVerificationRequirement.REQUIRED,
            ),
            exclude_credentials=[
                PublicKeyCredentialDescriptor(id=base64url_to_bytes(cred.credential_id))
                for cred in existing
            ],
        )
        self.challenges.put(str(user.id), options.challenge)
        return json.loads(options_to_json(options))

    async def register(self, user_id: int, credential: Dict[str, Any]) -> WebAuthnCredential:
        expected_challenge = self.challenges.get(str(user_id))
        if expected_challenge is None:
            raise ValidationError("Registration session expired")

        user = await self._get_user(user_id)
        try:
            verification = verify_registration_response(
                credential=credential,
                expected_challenge=expected_challenge,
                expected_origin=self.config.ORIGIN,
                expected_rp_id=self.config.RP_ID,
                require_user_verification=True,
            )
        except VERIFY_ERRORS as e:
            logger.warning(f"WebAuthn registration failed for user ID {user_id}: {e}")
            raise ValidationError("Verification failed")

        transports = credential.get("response", {}).get("transports") or ["internal"]
        stored = await self.user_repository.add_credential(
            user_id=user.id,
            credential_id=bytes_to_base64url(verification.credential_id),
            public_key=bytes_to_base64url(verification.credential_public_key),
            counter=verification.sign_count,
            transports=transports,
        )
        self.challenges.pop(str(user_id))
        logger.info(f"WebAuthn credential registered for user ID {user.id}")
        return stored

    def login_options(self) -> Dict[str, Any]:
        options = generate_authentication_options(
            rp_id=self.config.RP_ID,
            allow_credentials=[],
            user_verification=UserVerificationRequirement.REQUIRED,
        )
        temp_id = secrets.token_urlsafe(12)
        self.challenges.put(_login_key(temp_id), options.challenge)
        data = json.loads(options_to_json(options))
        data["tempId"] = temp_id
        return data

    async def login(self, temp_id: str, credential: Dict[str, Any]) -> Tuple[User, str]:
        expected_challenge = self.challenges.get(_login_key(temp_id or ""))
        if expected_challenge is None:
            raise ValidationError("Login session expired")

        credential_id = credential.get("id")
        user = await self.user_repository.get_by_credential_id(credential_id)
        if not user:
            raise NotFoundError("No matching credential")
        stored = next((c for c in user.webauthn_credentials if c.credential_id == credential_id), None)
        if stored is None:
            raise NotFoundError("Credential not found")
        if not user.is_active:
            raise AuthorizationError("Account is disabled")

        try:
            verification = verify_authentication_response(
                credential=credential,
                expected_challenge=expected_challenge,
                expected_rp_id=self.config.RP_ID,
                expected_origin=self.config.ORIGIN,
                credential_public_key=base64url_to_bytes(stored.public_key),
                credential_current_sign_count=stored.counter,
                require_user_verification=True,
            )
        except VERIFY_ERRORS as e:
            logger.warning(f"WebAuthn login failed for user ID {user.id}: {e}")
            raise ValidationError("Verification failed")

        await self.user_repository.update_credential_counter(credential_id, verification.new_sign_count)
        self.challenges.pop(_login_key(temp_id))
        await self.user_repository.update_last_login(user.id)
        return user, create_access_token(data={"sub": str(user.id)})

    async def list_credentials(self, user_id: int) -> List[WebAuthnCredential]:
        user = await self._get_user(user_id)
        return await self.user_repository.get_credentials(user.id)

    async def delete_credential(self, user_id: int, credential_id: str) -> None:
        user = await self._get_user(user_id)
        deleted = await self.user_repository.delete_credential(user.id, credential_id)
        if not deleted:
            raise NotFoundError("Credential not found")
