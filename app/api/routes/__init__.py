from fastapi import APIRouter
from app.api.routes import auth, media, oauth, system, webauthn


api_router = APIRouter()

api_router.include_router(system.router)
api_router.include_router(auth.router)
api_router.include_router(oauth.router)
api_router.include_router(webauthn.router)
api_router.include_router(media.router)
