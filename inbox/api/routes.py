from fastapi import APIRouter

from inbox.api.auto_replies import router as auto_replies_router
from inbox.api.broadcasts import router as broadcasts_router
from inbox.api.channels import router as channels_router
from inbox.api.conversations import router as conversations_router
from inbox.api.events import router as events_router
from inbox.api.messages import router as messages_router
from inbox.api.tags import router as tags_router
from inbox.api.team import router as team_router

router = APIRouter()

router.include_router(channels_router)
router.include_router(conversations_router)
router.include_router(tags_router)
router.include_router(messages_router)
router.include_router(broadcasts_router)
router.include_router(auto_replies_router)
router.include_router(team_router)
router.include_router(events_router)


@router.get("/", tags=["root"])
def read_root() -> dict[str, str]:
    return {"message": "Welcome to the LINE Inbox API"}
