from __future__ import annotations

from pydantic import BaseModel

from ...ports.entities import GenreIndex, GenreTarget
from ...protocol.actions import ActionType, Outcome
from ..context import ActionContext
from .base import ActionHandler


class UpdateGenresParams(BaseModel):
    user_id: str
    target: GenreTarget
    target_id: str


class UpdateGenresHandler(ActionHandler):
    action_type = ActionType.UPDATE_GENRES
    Params = UpdateGenresParams

    def __init__(self, genres: GenreIndex) -> None:
        self.genres = genres

    async def run(self, params: UpdateGenresParams, ctx: ActionContext) -> Outcome:
        if params.target == GenreTarget.artist:
            await self.genres.refresh_artist(params.target_id, user_id=params.user_id)
        elif params.target == GenreTarget.event:
            await self.genres.refresh_event(params.target_id, user_id=params.user_id)
        else:
            await self.genres.refresh_user(params.target_id)
        return Outcome.success({"target": params.target.value, "target_id": params.target_id})
