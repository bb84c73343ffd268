from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from fileshare.exceptions import BadRequest, FeatureDisabled, Forbidden, Gone, NotFound
from fileshare.models.database import File, Permission, Share
from fileshare.services.files import file_service
from fileshare.services.sharing import sharing_service


@pytest.mark.parametrize("granted", list(Permission))
@pytest.mark.parametrize("required", list(Permission))
def test_permission_ordering_is_monotonic(granted, required):
    assert granted.satisfies(required) == (granted.rank >= required.rank)
    if granted.satisfies(Permission.EDIT):
        assert granted.satisfies(Permission.DOWNLOAD)
        assert granted.satisfies(Permission.VIEW)


async def test_owner_and_admin_have_full_access(db, owner, admin, make_file):
    f = await make_file("a.txt", owner)

    grant = await sharing_service.resolve_access(db, "file", f.id, owner, Permission.EDIT)
    assert grant.via == "owner"
    grant = await sharing_service.resolve_access(db, "file", f.id, admin, Permission.EDIT)
    assert grant.via == "admin"


async def test_stranger_gets_not_found(db, owner, other, make_file):
    f = await make_file("private.txt", owner)

    with pytest.raises(NotFound):
        await sharing_service.resolve_access(db, "file", f.id, other, Permission.VIEW)


async def test_view_share_blocks_download_until_upgraded(db, storage, owner, other, make_file):
    f = await make_file("f.txt", owner)
    await sharing_service.create_share(db, "file", f.id, owner, other.email, Permission.VIEW)

    assert (await file_service.get_file(db, f.id, other)).id == f.id
    with pytest.raises(Forbidden):
        await file_service.download_url(db, storage, f.id, other)

    await sharing_service.create_share(db, "file", f.id, owner, other.email, Permission.DOWNLOAD)

    url = await file_service.download_url(db, storage, f.id, other)
    assert f.storage_key in url

    result = await db.execute(select(Share).filter(Share.file_id == f.id))
    shares = result.scalars().all()
    assert len(shares) == 1
    assert shares[0].permission == Permission.DOWNLOAD.value


async def test_grant_never_exceeds_its_level(db, owner, other, make_file):
    f = await make_file("f.txt", owner)
    await sharing_service.create_share(db, "file", f.id, owner, other.email, Permission.DOWNLOAD)

    grant = await sharing_service.resolve_access(db, "file", f.id, other, Permission.DOWNLOAD)
    assert grant.permission == Permission.DOWNLOAD
    with pytest.raises(Forbidden):
        await sharing_service.resolve_access(db, "file", f.id, other, Permission.EDIT)


async def test_folder_share_covers_nested_content(db, owner, other, make_folder, make_file):
    top = await make_folder("top", owner)
    nested = await make_folder("nested", owner, top)
    f = await make_file("deep.txt", owner, nested)
    await sharing_service.create_share(db, "folder", top.id, owner, other.email, Permission.EDIT)

    grant = await sharing_service.resolve_access(db, "file", f.id, other, Permission.EDIT)

    assert grant.via == "share"
    assert grant.owner_id == owner.id


async def test_expired_share_grants_nothing(db, owner, other, make_file):
    f = await make_file("f.txt", owner)
    share = await sharing_service.create_share(db, "file", f.id, owner, other.email, Permission.EDIT)
    share.expires_at = datetime.utcnow() - timedelta(minutes=1)
    await db.commit()

    with pytest.raises(NotFound):
        await sharing_service.resolve_access(db, "file", f.id, other, Permission.VIEW)


async def test_share_validation(db, owner, other, make_file):
    f = await make_file("f.txt", owner)

    with pytest.raises(BadRequest):
        await sharing_service.create_share(db, "file", f.id, owner, owner.email, Permission.VIEW)
    with pytest.raises(NotFound):
        await sharing_service.create_share(db, "file", f.id, owner, "nobody@example.com", Permission.VIEW)
    # Only the owner may share
    with pytest.raises(NotFound):
        await sharing_service.create_share(db, "file", f.id, other, owner.email, Permission.VIEW)


async def test_public_link_regeneration_reuses_one_row(db, owner, make_file):
    f = await make_file("f.txt", owner)

    first = await sharing_service.create_public_link(db, "file", f.id, owner)
    first_token = first.public_token
    second = await sharing_service.create_public_link(db, "file", f.id, owner, Permission.VIEW)

    assert second.id == first.id
    assert second.public_token != first_token
    assert len(second.public_token) == 64

    result = await db.execute(
        select(Share).filter(Share.file_id == f.id, Share.shared_with_id.is_(None))
    )
    assert len(result.scalars().all()) == 1

    refreshed = await db.execute(select(File).filter(File.id == f.id))
    assert refreshed.scalar_one().is_public is True


async def test_public_link_forbidden_when_disabled(db, owner, admin, system, make_file):
    f = await make_file("f.txt", owner)
    system.allow_public_sharing = False
    await db.commit()

    for caller in (owner, admin):
        with pytest.raises(FeatureDisabled) as exc_info:
            await sharing_service.create_public_link(db, "file", f.id, caller)
        assert exc_info.value.status_code == 403


async def test_public_link_for_someone_elses_file(db, owner, other, make_file):
    f = await make_file("f.txt", owner)

    with pytest.raises(NotFound):
        await sharing_service.create_public_link(db, "file", f.id, other)

    await sharing_service.create_share(db, "file", f.id, owner, other.email, Permission.EDIT)
    with pytest.raises(Forbidden):
        await sharing_service.create_public_link(db, "file", f.id, other)


async def test_existing_public_link_survives_disabling(db, storage, owner, system, make_file):
    f = await make_file("f.txt", owner)
    share = await sharing_service.create_public_link(db, "file", f.id, owner)

    system.allow_public_sharing = False
    await db.commit()

    resolved = await sharing_service.resolve_public_link(db, storage, share.public_token)
    assert resolved["resource"].id == f.id
    with pytest.raises(FeatureDisabled):
        await sharing_service.create_public_link(db, "file", f.id, owner)


async def test_view_only_public_link_hides_download(db, storage, owner, make_file):
    f = await make_file("f.txt", owner)
    share = await sharing_service.create_public_link(db, "file", f.id, owner, Permission.VIEW)

    resolved = await sharing_service.resolve_public_link(db, storage, share.public_token)

    assert resolved["permission"] == Permission.VIEW
    assert resolved["download_url"] is None

    share = await sharing_service.create_public_link(db, "file", f.id, owner, Permission.DOWNLOAD)
    resolved = await sharing_service.resolve_public_link(db, storage, share.public_token)
    assert resolved["download_url"]


async def test_public_folder_link_lists_files(db, storage, owner, make_folder, make_file):
    folder = await make_folder("Pics", owner)
    await make_file("b.png", owner, folder)
    await make_file("a.png", owner, folder)
    share = await sharing_service.create_public_link(db, "folder", folder.id, owner)

    resolved = await sharing_service.resolve_public_link(db, storage, share.public_token)

    assert resolved["type"] == "folder"
    assert [f.name for f in resolved["files"]] == ["a.png", "b.png"]
    assert resolved["owner"].id == owner.id


async def test_unknown_and_expired_public_tokens(db, storage, owner, make_file):
    f = await make_file("f.txt", owner)
    share = await sharing_service.create_public_link(db, "file", f.id, owner, expires_hours=1)
    share.expires_at = datetime.utcnow() - timedelta(seconds=1)
    await db.commit()

    with pytest.raises(Gone):
        await sharing_service.resolve_public_link(db, storage, share.public_token)
    with pytest.raises(NotFound):
        await sharing_service.resolve_public_link(db, storage, "0" * 64)


async def test_either_party_can_revoke(db, owner, other, admin, make_file):
    f = await make_file("f.txt", owner)
    share = await sharing_service.create_share(db, "file", f.id, owner, other.email, Permission.VIEW)

    with pytest.raises(Forbidden):
        await sharing_service.revoke_share(db, share.id, admin)

    await sharing_service.revoke_share(db, share.id, other)
    with pytest.raises(NotFound):
        await sharing_service.resolve_access(db, "file", f.id, other, Permission.VIEW)

    share = await sharing_service.create_share(db, "file", f.id, owner, other.email, Permission.VIEW)
    await sharing_service.revoke_share(db, share.id, owner)
    with pytest.raises(NotFound):
        await sharing_service.revoke_share(db, share.id, owner)


async def test_revoking_public_links_clears_visibility(db, owner, make_file):
    f = await make_file("f.txt", owner)
    await sharing_service.create_public_link(db, "file", f.id, owner)

    revoked = await sharing_service.revoke_public_links(db, "file", f.id, owner)

    assert revoked == 1
    result = await db.execute(select(File).filter(File.id == f.id))
    assert result.scalar_one().is_public is False


async def test_shared_with_me(db, owner, other, make_folder, make_file):
    f = await make_file("f.txt", owner)
    folder = await make_folder("D", owner)
    await sharing_service.create_share(db, "file", f.id, owner, other.email, Permission.DOWNLOAD)
    await sharing_service.create_share(db, "folder", folder.id, owner, other.email, Permission.VIEW)

    shared = await sharing_service.shared_with_me(db, other)

    assert [item["resource"].id for item in shared["files"]] == [f.id]
    assert [item["resource"].id for item in shared["folders"]] == [folder.id]
    assert shared["files"][0]["shared_by"].id == owner.id
    assert await sharing_service.shared_with_me(db, owner) == {"files": [], "folders": []}


async def test_expired_public_link_no_longer_marks_resource_public(db, storage, owner, make_file):
    f = await make_file("f.txt", owner)
    file_id = f.id
    share = await sharing_service.create_public_link(db, "file", file_id, owner, expires_hours=1)
    share.expires_at = datetime.utcnow() - timedelta(seconds=1)
    await db.commit()

    await sharing_service.refresh_public_flag(db, "file", file_id)
    await db.commit()
    result = await db.execute(select(File).filter(File.id == file_id))
    assert result.scalar_one().is_public is False


async def test_resolving_expired_link_clears_public_flag(db, storage, owner, make_file):
    f = await make_file("f.txt", owner)
    file_id = f.id
    share = await sharing_service.create_public_link(db, "file", file_id, owner, expires_hours=1)
    token = share.public_token
    share.expires_at = datetime.utcnow() - timedelta(seconds=1)
    await db.commit()

    with pytest.raises(Gone):
        await sharing_service.resolve_public_link(db, storage, token)

    result = await db.execute(select(File).filter(File.id == file_id))
    assert result.scalar_one().is_public is False
