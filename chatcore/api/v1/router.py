from fastapi import APIRouter

from chatcore.api.v1 import conversations, friends, messages, sync, users, ws

api_router = APIRouter()
api_router.include_router(users.router)
api_router.include_router(friends.router)
api_router.include_router(conversations.router)
api_router.include_router(messages.router)
api_router.include_router(sync.router)
api_router.include_router(ws.router)
