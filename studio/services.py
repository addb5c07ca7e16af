"""
Process-wide collaborators for the HTTP layer.

One Services instance owns the Supabase store, the upload gateway, the Gemini
client, the per-user ledgers and video gates, and the live wizard sessions.
Routes get it through `get_services`, which tests override.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional
from uuid import uuid4

from . import config
from .assets import AssetRepository
from .config import CostTable
from .creator.pipeline import CreatorPipeline
from .database import SupabaseStore
from .gemini import GeminiClient, VideoAccessGate
from .ledger import CreditLedger
from .storage import R2Storage, UploadGateway
from .tools import StudioTools

logger = logging.getLogger(__name__)


@dataclass
class CreatorSession:
    id: str
    user_id: str
    pipeline: CreatorPipeline
    busy: bool = False


@dataclass
class Services:
    store: SupabaseStore
    assets: AssetRepository
    client: GeminiClient
    costs: CostTable = config.COSTS
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    batch_delay: float = config.IMAGE_BATCH_DELAY
    clip_delay: float = config.CLIP_DELAY
    video_api_key: str = config.VEO_API_KEY
    sessions: dict[str, CreatorSession] = field(default_factory=dict)
    ledgers: dict[str, CreditLedger] = field(default_factory=dict)
    gates: dict[str, VideoAccessGate] = field(default_factory=dict)

    def gate_for(self, user_id: str) -> VideoAccessGate:
        if user_id not in self.gates:
            self.gates[user_id] = VideoAccessGate(self.video_api_key)
        return self.gates[user_id]

    async def ledger_for(self, user_id: str) -> CreditLedger:
        """One ledger per user so every session sees the same balance."""
        ledger = self.ledgers.get(user_id)
        if ledger is None:
            ledger = await CreditLedger.load(self.store, user_id)
            self.ledgers[user_id] = ledger
        return ledger

    async def tools_for(self, user_id: str) -> StudioTools:
        return StudioTools(
            user_id,
            self.client,
            await self.ledger_for(user_id),
            self.assets,
            self.gate_for(user_id),
            self.costs,
        )

    async def open_session(self, user_id: str) -> CreatorSession:
        session_id = str(uuid4())
        pipeline = CreatorPipeline(
            user_id,
            self.client,
            await self.ledger_for(user_id),
            self.assets,
            self.gate_for(user_id),
            costs=self.costs,
            sleep=self.sleep,
            batch_delay=self.batch_delay,
            clip_delay=self.clip_delay,
            session_id=session_id,
        )
        session = CreatorSession(id=session_id, user_id=user_id, pipeline=pipeline)
        self.sessions[session_id] = session
        logger.info(f"Opened creator session {session_id} for user {user_id}")
        return session

    def get_session(self, session_id: str, user_id: str) -> CreatorSession:
        session = self.sessions.get(session_id)
        if session is None:
            raise KeyError(session_id)
        if session.user_id != user_id:
            raise PermissionError("You don't own this session.")
        return session

    def close_session(self, session_id: str) -> None:
        self.sessions.pop(session_id, None)


_services: Optional[Services] = None


def build_services() -> Services:
    store = SupabaseStore()
    gateway = UploadGateway(R2Storage())
    return Services(
        store=store,
        assets=AssetRepository(store, gateway),
        client=GeminiClient(),
    )


def get_services() -> Services:
    """Lazy singleton; FastAPI dependency."""
    global _services
    if _services is None:
        _services = build_services()
    return _services


async def close_services() -> None:
    if _services is not None:
        await _services.client.aclose()
