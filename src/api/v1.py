"""Centralized API router: all module routers are included here."""

from fastapi import APIRouter

from src.modules.chatbot.router import router as chatbot_router

api_router = APIRouter(prefix="/api")
api_router.include_router(chatbot_router)
