"""
Unit tests for PortfolioService

Normalization is tested on its own; the save pipeline runs against a
temporary SQLite database, a recording broadcaster sender and the fake asset
provider from conftest.
"""
import pytest
import pytest_asyncio

from core.database import Database
from core.exceptions import NotFoundError, UpstreamError, ValidationError
from providers.asset_provider import AssetFile
from services.portfolio_service import PortfolioService, PortfolioUpdate
from services.portfolio_store import PortfolioStore

NOW_MS = 1_700_000_000_000


@pytest_asyncio.fixture
async def portfolio_store(tmp_path):
    db = Database(f"sqlite+aiosqlite:///{tmp_path}/portfolios.db")
    await db.create_all()
    store = PortfolioStore(db.session_factory)
    await store.create_default("carol", "carol")
    yield store
    await db.dispose()


@pytest.fixture
def service(portfolio_store, broadcaster, asset_provider):
    return PortfolioService(portfolio_store, broadcaster, asset_provider)


@pytest.fixture
def room_messages(broadcaster):
    """Messages delivered to a connection joined to carol's room"""
    messages = []

    async def sender(message):
        messages.append(message)

    broadcaster.register("viewer", sender)
    broadcaster.join_room("viewer", "carol")
    return messages


class TestNormalize:
    """Test building the replacement document"""

    @pytest.fixture
    def service(self, broadcaster, asset_provider):
        return PortfolioService(None, broadcaster, asset_provider)

    def test_empty_update_gives_defaults(self, service):
        fields = service.normalize(PortfolioUpdate(), now_ms=NOW_MS)

        assert fields == {
            "display_name": "",
            "title": "",
            "bio": "",
            "theme": "light",
            "is_published": False,
            "contacts": {},
            "skills": [],
            "projects": [],
            "testimonials": [],
        }

    def test_json_strings_are_decoded_and_cleaned(self, service):
        fields = service.normalize(
            PortfolioUpdate(
                contacts='{"email": "c@example.com", "phone": "  ", "x": null}',
                skills='["python", " ", "sql", ""]',
                is_published="true",
                theme="Dark",
            ),
            now_ms=NOW_MS,
        )

        assert fields["contacts"] == {"email": "c@example.com"}
        assert fields["skills"] == ["python", "sql"]
        assert fields["is_published"] is True
        assert fields["theme"] == "dark"

    def test_sub_document_ids_kept_or_assigned(self, service):
        fields = service.normalize(
            PortfolioUpdate(
                projects=[
                    {"id": 7, "name": "kept", "liveDemo": "https://demo.test"},
                    {"name": "new"},
                ],
                testimonials='[{"clientName": "Ann", "comment": "great"}]',
            ),
            now_ms=NOW_MS,
        )

        assert fields["projects"] == [
            {
                "id": 7,
                "name": "kept",
                "description": "",
                "github": "",
                "liveDemo": "https://demo.test",
            },
            {
                "id": NOW_MS + 1,
                "name": "new",
                "description": "",
                "github": "",
                "liveDemo": "",
            },
        ]
        assert fields["testimonials"][0]["id"] == NOW_MS
        assert fields["testimonials"][0]["clientName"] == "Ann"

    def test_unknown_theme_rejected(self, service):
        with pytest.raises(ValidationError) as exc_info:
            service.normalize(PortfolioUpdate(theme="neon"))

        assert exc_info.value.field == "theme"

    @pytest.mark.parametrize(
        "field,value",
        [
            ("skills", "not json"),
            ("skills", '{"a": 1}'),
            ("contacts", "[1, 2]"),
            ("projects", '["just a string"]'),
        ],
    )
    def test_malformed_sub_documents_rejected(self, service, field, value):
        with pytest.raises(ValidationError) as exc_info:
            service.normalize(PortfolioUpdate(**{field: value}))

        assert exc_info.value.field == field

    def test_invalid_boolean_rejected(self, service):
        with pytest.raises(ValidationError):
            service.normalize(PortfolioUpdate(is_published="maybe"))


class TestReads:
    """Test public and private reads"""

    @pytest.mark.asyncio
    async def test_unpublished_is_not_public(self, service):
        with pytest.raises(NotFoundError):
            await service.get_public("carol")

    @pytest.mark.asyncio
    async def test_unknown_username_looks_the_same(self, service):
        with pytest.raises(NotFoundError) as exc_info:
            await service.get_public("nobody")

        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_owner_reads_unpublished(self, service):
        document = await service.get_own("carol")

        assert document.username == "carol"
        assert document.is_published is False


class TestSave:
    """Test the save pipeline"""

    @pytest.mark.asyncio
    async def test_save_replaces_and_publishes(self, service, room_messages):
        document = await service.save(
            "carol",
            PortfolioUpdate(bio="Hello", skills='["python"]', is_published="true"),
        )

        assert document.bio == "Hello"
        assert document.is_published is True
        assert (await service.get_public("carol")).skills == ["python"]

        assert len(room_messages) == 1
        pushed = room_messages[0]
        assert pushed["event"] == "portfolioUpdated"
        assert pushed["data"]["username"] == "carol"
        assert pushed["data"]["portfolio"]["bio"] == "Hello"
        assert pushed["data"]["portfolio"]["isPublished"] is True

    @pytest.mark.asyncio
    async def test_save_is_whole_document_replace(self, service):
        await service.save("carol", PortfolioUpdate(title="Engineer", bio="Bio"))
        document = await service.save("carol", PortfolioUpdate(title="Architect"))

        assert document.title == "Architect"
        assert document.bio == ""

    @pytest.mark.asyncio
    async def test_save_unknown_owner(self, service):
        with pytest.raises(NotFoundError):
            await service.save("nobody", PortfolioUpdate())

    @pytest.mark.asyncio
    async def test_upload_url_wins_over_string(self, service, asset_provider):
        document = await service.save(
            "carol",
            PortfolioUpdate(
                profile_picture_url="https://old.test/p.png",
                profile_picture_file=AssetFile("me.png", b"png", "image/png"),
                resume_url="https://cv.test/cv.pdf",
            ),
        )

        assert document.profile_picture == "https://assets.test/me.png"
        assert document.resume_url == "https://cv.test/cv.pdf"
        assert [f.filename for f in asset_provider.uploads] == ["me.png"]

    @pytest.mark.asyncio
    async def test_failed_upload_keeps_stored_url(
        self, service, asset_provider, room_messages
    ):
        await service.save(
            "carol", PortfolioUpdate(profile_picture_url="https://old.test/p.png")
        )
        asset_provider.fail_assets.add("profilePicture")

        with pytest.raises(UpstreamError) as exc_info:
            await service.save(
                "carol",
                PortfolioUpdate(
                    bio="Still saved",
                    profile_picture_file=AssetFile("me.png", b"png", "image/png"),
                ),
            )

        assert exc_info.value.asset == "profilePicture"
        document = await service.get_own("carol")
        assert document.bio == "Still saved"
        assert document.profile_picture == "https://old.test/p.png"
        assert room_messages[-1]["data"]["portfolio"]["bio"] == "Still saved"

    @pytest.mark.asyncio
    async def test_publish_failure_does_not_fail_save(self, service, broadcaster):
        async def broken(message):
            raise ConnectionError("gone")

        broadcaster.register("broken", broken)
        broadcaster.join_room("broken", "carol")

        document = await service.save("carol", PortfolioUpdate(bio="ok"))

        assert document.bio == "ok"
        assert not broadcaster.is_connected("broken")

    @pytest.mark.asyncio
    async def test_upload_image(self, service):
        url = await service.upload_image(AssetFile("t.png", b"png", "image/png"))
        assert url == "https://assets.test/t.png"

    @pytest.mark.asyncio
    async def test_upload_image_requires_file(self, service):
        with pytest.raises(ValidationError) as exc_info:
            await service.upload_image(None)

        assert exc_info.value.field == "image"
