import pytest
from sqlalchemy import select, func

from fileshare.exceptions import BadRequest, InternalError, NotFound
from fileshare.models.database import File, Folder, Permission, Share
from fileshare.services.files import IncomingFile, file_service
from fileshare.services.folders import folder_service
from fileshare.services.sharing import sharing_service
from fileshare.services.tree import MAX_TREE_DEPTH, ancestors


async def count(db, model):
    result = await db.execute(select(func.count()).select_from(model))
    return result.scalar()


async def test_create_folder_under_foreign_parent_is_not_found(db, owner, other, make_folder):
    theirs = await make_folder("theirs", other)
    with pytest.raises(NotFound):
        await folder_service.create_folder(db, "mine", owner, theirs.id)


async def test_list_children_orders_and_breadcrumbs(db, owner, make_folder, make_file):
    top = await make_folder("Top", owner)
    mid = await make_folder("Mid", owner, top)
    await make_folder("b-sub", owner, mid)
    await make_folder("a-sub", owner, mid)
    await make_file("inside.txt", owner, mid)

    folders, files, crumbs = await folder_service.list_children(db, owner, mid.id)

    assert [f.name for f in folders] == ["a-sub", "b-sub"]
    assert [f.name for f in files] == ["inside.txt"]
    assert crumbs == [{"id": top.id, "name": "Top"}, {"id": mid.id, "name": "Mid"}]


async def test_root_listing_only_shows_own_items(db, owner, other, make_folder, make_file):
    await make_folder("mine", owner)
    await make_folder("theirs", other)
    await make_file("root.txt", owner)

    folders, files, crumbs = await folder_service.list_children(db, owner)

    assert [f.name for f in folders] == ["mine"]
    assert [f.name for f in files] == ["root.txt"]
    assert crumbs == []


async def test_breadcrumbs_terminate_on_cyclic_rows(db, owner, make_folder):
    a = await make_folder("a", owner)
    b = await make_folder("b", owner, a)
    # Corrupt the tree behind the service's back
    a.parent_id = b.id
    await db.commit()

    crumbs = await folder_service.breadcrumbs(db, b.id)

    assert len(crumbs) == 2


async def test_breadcrumbs_complete_up_to_the_depth_bound(db, owner, make_folder):
    parent = None
    for i in range(MAX_TREE_DEPTH):
        parent = await make_folder(f"level-{i}", owner, parent)

    crumbs = await folder_service.breadcrumbs(db, parent.id)

    assert len(crumbs) == MAX_TREE_DEPTH
    assert crumbs[0]["name"] == "level-0"
    assert crumbs[-1]["name"] == f"level-{MAX_TREE_DEPTH - 1}"

    with pytest.raises(BadRequest):
        await folder_service.create_folder(db, "too-deep", owner, parent.id)


async def test_ancestor_walk_respects_explicit_bound(db, owner, make_folder):
    parent = None
    for i in range(5):
        parent = await make_folder(f"n{i}", owner, parent)

    chain = await ancestors(db, parent.id, max_depth=3)

    assert [f.name for f in chain] == ["n2", "n3", "n4"]


async def test_move_into_own_descendant_is_rejected(db, owner, make_folder):
    a = await make_folder("a", owner)
    b = await make_folder("b", owner, a)
    c = await make_folder("c", owner, b)

    with pytest.raises(BadRequest):
        await folder_service.update_folder(db, a.id, owner, "a", c.id)
    with pytest.raises(BadRequest):
        await folder_service.update_folder(db, a.id, owner, "a", a.id)


async def test_rename_and_move_keep_existing_keys(db, storage, owner, make_folder):
    docs = await make_folder("Docs", owner)
    archive = await make_folder("Archive", owner)
    [uploaded] = await file_service.upload_files(
        db, storage, owner, [IncomingFile("report.txt", "text/plain", b"data")], docs.id
    )
    original_key = uploaded.storage_key
    assert original_key.startswith(f"{owner.id}/Docs/")

    await folder_service.update_folder(db, docs.id, owner, "Renamed", archive.id)

    result = await db.execute(select(File).filter(File.id == uploaded.id))
    assert result.scalar_one().storage_key == original_key

    # New uploads pick up the new path
    [fresh] = await file_service.upload_files(
        db, storage, owner, [IncomingFile("later.txt", "text/plain", b"x")], docs.id
    )
    assert fresh.storage_key.startswith(f"{owner.id}/Archive/Renamed/")


async def test_cascade_delete_removes_everything(db, storage, owner, other, make_folder, make_file):
    a = await make_folder("A", owner)
    b = await make_folder("B", owner, a)
    f = await make_file("f.txt", owner, b)
    keep = await make_file("keep.txt", owner)
    await sharing_service.create_share(db, "file", f.id, owner, other.email, Permission.VIEW)
    await sharing_service.create_share(db, "folder", b.id, owner, other.email, Permission.EDIT)
    await sharing_service.create_share(db, "file", keep.id, owner, other.email, Permission.VIEW)

    summary = await folder_service.delete_folder(db, storage, a.id, owner)

    assert summary["folders_deleted"] == 2
    assert summary["files_deleted"] == 1
    assert summary["shares_deleted"] == 2
    assert summary["orphaned_objects"] == 0
    assert f.storage_key not in storage.objects
    assert keep.storage_key in storage.objects

    assert await count(db, Folder) == 0
    remaining_files = (await db.execute(select(File.id))).scalars().all()
    assert remaining_files == [keep.id]
    remaining_shares = (await db.execute(select(Share.file_id))).scalars().all()
    assert remaining_shares == [keep.id]


async def test_cascade_continues_when_object_delete_fails(db, storage, owner, make_folder, make_file):
    a = await make_folder("A", owner)
    await make_file("one.txt", owner, a)
    await make_file("two.txt", owner, a)
    storage.fail_on.add("delete")

    summary = await folder_service.delete_folder(db, storage, a.id, owner)

    assert summary["orphaned_objects"] == 2
    assert await count(db, File) == 0
    assert await count(db, Folder) == 0


async def test_cascade_metadata_failure_rolls_back(db, storage, owner, make_folder, make_file, monkeypatch):
    a = await make_folder("A", owner)
    b = await make_folder("B", owner, a)
    await make_file("f.txt", owner, b)

    from sqlalchemy.exc import OperationalError
    original_execute = db.execute

    async def flaky_execute(statement, *args, **kwargs):
        if getattr(statement, "is_delete", False) and statement.table.name == "folders":
            raise OperationalError("DELETE", {}, Exception("disk I/O error"))
        return await original_execute(statement, *args, **kwargs)

    monkeypatch.setattr(db, "execute", flaky_execute)
    with pytest.raises(InternalError):
        await folder_service.delete_folder(db, storage, a.id, owner)
    monkeypatch.undo()

    assert await count(db, Folder) == 2
    assert await count(db, File) == 1


async def test_only_owner_or_admin_can_delete(db, storage, owner, other, admin, make_folder):
    folder = await make_folder("A", owner)

    with pytest.raises(NotFound):
        await folder_service.delete_folder(db, storage, folder.id, other)

    summary = await folder_service.delete_folder(db, storage, folder.id, admin)
    assert summary["folders_deleted"] == 1


async def test_shared_folder_can_be_browsed_by_recipient(db, owner, other, make_folder, make_file):
    shared = await make_folder("Shared", owner)
    await make_file("doc.txt", owner, shared)
    await sharing_service.create_share(db, "folder", shared.id, owner, other.email, Permission.VIEW)

    folders, files, crumbs = await folder_service.list_children(db, other, shared.id)

    assert [f.name for f in files] == ["doc.txt"]
    assert crumbs[-1]["id"] == shared.id


async def test_move_that_would_exceed_depth_bound_is_rejected(db, owner, make_folder):
    parent = None
    for i in range(15):
        parent = await make_folder(f"a{i}", owner, parent)
    subtree = top = await make_folder("x0", owner)
    for i in range(1, 10):
        subtree = await make_folder(f"x{i}", owner, subtree)
    top_id = top.id

    with pytest.raises(BadRequest):
        await folder_service.update_folder(db, top_id, owner, "x0", parent.id)

    result = await db.execute(select(Folder).filter(Folder.id == top_id))
    assert result.scalar_one().parent_id is None

    # A subtree that still fits may move
    await folder_service.update_folder(db, subtree.id, owner, "x9", parent.id)
    crumbs = await folder_service.breadcrumbs(db, subtree.id)
    assert len(crumbs) == 16
    assert crumbs[0]["name"] == "a0"


async def test_recipient_breadcrumbs_start_at_shared_folder(db, owner, other, make_folder):
    private = await make_folder("Private", owner)
    projects = await make_folder("Projects", owner, private)
    nested = await make_folder("Nested", owner, projects)
    await sharing_service.create_share(db, "folder", projects.id, owner, other.email, Permission.VIEW)

    _, _, crumbs = await folder_service.list_children(db, other, nested.id)
    assert [c["name"] for c in crumbs] == ["Projects", "Nested"]

    _, _, owner_crumbs = await folder_service.list_children(db, owner, nested.id)
    assert [c["name"] for c in owner_crumbs] == ["Private", "Projects", "Nested"]
