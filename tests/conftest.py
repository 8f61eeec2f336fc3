"""
Pytest configuration and fixtures.
"""

import os

os.environ.setdefault("SCREENSYNC_ENV", "test")

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import screensync.models  # noqa: F401
from screensync.common.database import Base, get_session
from screensync.models import (
    AdAsset,
    Advertiser,
    ApprovalStatus,
    ContractStatus,
    Location,
    Screen,
)
from screensync.platform.client import PlatformClient
from screensync.playback.config import EngineConfig
from screensync.playback.engine import ReconciliationEngine
from screensync.playback.inventory import AdInventory
from screensync.playback.store import PlaylistStateStore
from screensync.publish.pipeline import PublishPipeline, create_pipeline
from screensync.server.deps import get_clock, get_platform_client, get_storage
from screensync.server.main import app
from screensync.upload.worker import UploadJobWorker
from tests.fakes import (
    API_BASE,
    MP4_BYTES,
    TOKEN,
    FakeSignagePlatform,
    InMemoryObjectStorage,
    ManualClock,
)

# In-memory SQLite shared by every connection of one engine
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def test_db() -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with async_session() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def platform() -> FakeSignagePlatform:
    return FakeSignagePlatform()


@pytest.fixture
def storage() -> InMemoryObjectStorage:
    return InMemoryObjectStorage()


@pytest_asyncio.fixture
async def platform_client(
    platform: FakeSignagePlatform, clock: ManualClock
) -> AsyncGenerator[PlatformClient, None]:
    client = PlatformClient(
        API_BASE,
        TOKEN,
        max_retries=2,
        retry_base_delay_s=1.0,
        clock=clock,
        transport=platform.transport(),
    )
    yield client
    await client.aclose()


@pytest.fixture
def engine_config() -> EngineConfig:
    """Small, fast settings: two baseline media, 1 KiB minimum upload."""
    return EngineConfig(
        baseline_media_ids=(1, 2),
        max_ads_per_screen=5,
        verify_retry_delay_s=1.0,
        inter_screen_delay_s=0.5,
        min_upload_bytes=1024,
        allowed_mime_types=("video/mp4",),
        poll_intervals_s=(2.0,),
        poll_timeout_s=30.0,
        stuck_after_polls=3,
        concurrent_wait_s=10.0,
        concurrent_poll_interval_s=1.0,
        playback_state_ttl_s=0,
    )


@pytest.fixture
def store(test_db: AsyncSession, clock: ManualClock) -> PlaylistStateStore:
    return PlaylistStateStore(test_db, clock)


@pytest.fixture
def inventory(test_db: AsyncSession, clock: ManualClock) -> AdInventory:
    return AdInventory(test_db, clock)


@pytest.fixture
def uploader(
    test_db: AsyncSession,
    platform_client: PlatformClient,
    storage: InMemoryObjectStorage,
    engine_config: EngineConfig,
    clock: ManualClock,
) -> UploadJobWorker:
    return UploadJobWorker(test_db, platform_client, storage, engine_config, clock)


@pytest.fixture
def engine(
    platform_client: PlatformClient,
    store: PlaylistStateStore,
    inventory: AdInventory,
    engine_config: EngineConfig,
    clock: ManualClock,
    uploader: UploadJobWorker,
) -> ReconciliationEngine:
    return ReconciliationEngine(
        platform_client,
        store,
        inventory=inventory,
        config=engine_config,
        clock=clock,
        uploader=uploader,
    )


@pytest.fixture
def pipeline(
    test_db: AsyncSession,
    platform_client: PlatformClient,
    engine_config: EngineConfig,
    clock: ManualClock,
    storage: InMemoryObjectStorage,
) -> PublishPipeline:
    return create_pipeline(
        test_db, platform_client, config=engine_config, clock=clock, storage=storage
    )


class Seed:
    """Creates committed rows and the matching remote objects."""

    def __init__(
        self,
        session: AsyncSession,
        platform: FakeSignagePlatform,
        storage: InMemoryObjectStorage,
    ):
        self.session = session
        self.platform = platform
        self.storage = storage

    async def location(self, name: str = "Venue", city: str | None = None, region_code: str | None = None) -> Location:
        location = Location(name=name, city=city, region_code=region_code)
        self.session.add(location)
        await self.session.commit()
        return location

    async def screen(
        self,
        player_id: str | None,
        location: Location | None = None,
        city: str | None = None,
        remote_source: str | None = "layout",
    ) -> Screen:
        screen = Screen(
            name=f"Screen {player_id}",
            player_id=player_id,
            location_id=location.id if location else None,
            city=city,
        )
        self.session.add(screen)
        await self.session.commit()
        await self.session.refresh(screen, ["location"])
        if player_id is not None:
            self.platform.add_screen(player_id, source_type=remote_source)
        return screen

    async def advertiser(
        self,
        name: str = "Bakkerij Jansen",
        target_cities: list[str] | None = None,
        target_regions: list[str] | None = None,
        canonical_media_id: int | None = None,
        contract_status: str = ContractStatus.SIGNED.value,
        approved: bool = True,
        with_file: bool = True,
        remote_ready: bool = True,
    ) -> Advertiser:
        advertiser = Advertiser(
            name=name,
            contract_status=contract_status,
            target_cities=target_cities,
            target_region_codes=target_regions,
            canonical_media_id=canonical_media_id,
        )
        self.session.add(advertiser)
        await self.session.commit()

        path = f"ads/{advertiser.id}/video.mp4"
        asset = AdAsset(
            advertiser_id=advertiser.id,
            storage_path=path,
            mime_type="video/mp4",
            size_bytes=len(MP4_BYTES),
            approval_status=(
                ApprovalStatus.APPROVED.value if approved else ApprovalStatus.PENDING_REVIEW.value
            ),
            remote_media_id=canonical_media_id,
        )
        self.session.add(asset)
        await self.session.commit()
        await self.session.refresh(advertiser, ["assets"])

        if with_file:
            self.storage.put(path, MP4_BYTES)
        if canonical_media_id is not None and remote_ready:
            self.platform.add_media(canonical_media_id)
        return advertiser


@pytest.fixture
def seed(
    test_db: AsyncSession,
    platform: FakeSignagePlatform,
    storage: InMemoryObjectStorage,
) -> Seed:
    platform.add_media(1)
    platform.add_media(2)
    return Seed(test_db, platform, storage)


@pytest_asyncio.fixture(scope="function")
async def client(
    test_db: AsyncSession,
    platform_client: PlatformClient,
    storage: InMemoryObjectStorage,
    clock: ManualClock,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database and platform overrides."""

    async def override_get_session() -> AsyncGenerator[AsyncSession, None]:
        yield test_db

    async def override_platform_client() -> PlatformClient:
        return platform_client

    async def override_storage() -> InMemoryObjectStorage:
        return storage

    async def override_clock() -> ManualClock:
        return clock

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_platform_client] = override_platform_client
    app.dependency_overrides[get_storage] = override_storage
    app.dependency_overrides[get_clock] = override_clock

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()

