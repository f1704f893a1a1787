from __future__ import annotations

import asyncio

import pytest

from wallfeed.constants import HOME_FEED, OWN_FEED
from wallfeed.errors import DraftValidationError, EntityBusyError, EntityNotFoundError
from wallfeed.schemas import EntityDraft, EntityKind, EntityPatch, LifecycleState
from wallfeed.services import MutationManager, default_reaction_detector


@pytest.fixture
def local_manager(api, store, ledger, acting_user, settings):
    return MutationManager(api, store, ledger, acting_user, settings=settings)


@pytest.fixture
def thread(seed, make_post):
    seed(
        make_post(
            "1",
            comments=[
                {"comment_id": 10, "comment": "first", "replies": [{"reply_id": 20, "content": "re"}]},
                {"comment_id": 11, "comment": "second"},
            ],
        )
    )


def _hold(api, operation):
    """Make ``api.<operation>`` wait until the returned event is set."""

    gate = asyncio.Event()
    original = getattr(api, operation)

    async def held(*args):
        await gate.wait()
        return await original(*args)

    setattr(api, operation, held)
    return gate


def _children(store, parent_id):
    return [(child.canonical_id, child.lifecycle_state) for child in store.get(parent_id).comments]


# -- create --------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_success_confirms_server_entity(api, store, manager):
    result = await manager.create("Hello")

    assert result.ok
    entity = store.get("101")
    assert entity is not None
    assert result.entity == entity
    assert entity.lifecycle_state is LifecycleState.CONFIRMED
    assert entity.content == "Hello"
    assert entity.author.display_name == "Dana Reyes"
    assert store.ids(HOME_FEED) == ["101"]
    assert api.calls[0][0] == "create"


@pytest.mark.asyncio
async def test_create_failure_restores_store_and_returns_typed_failure(api, store, seed, manager, make_post):
    seed(make_post("A"), make_post("B"))
    before = store.snapshot()
    api.fail_on("create", "Network error")

    result = await manager.create("Hello")

    assert result.ok is False
    assert result.failure.operation == "create"
    assert result.failure.message == "Network error"
    assert result.failure.draft == EntityDraft(content="Hello")
    assert store.snapshot() == before


@pytest.mark.asyncio
async def test_optimistic_post_is_visible_while_create_is_in_flight(api, store, local_manager):
    gate = _hold(api, "create")
    task = asyncio.create_task(local_manager.create("Hello", feed=OWN_FEED))
    await asyncio.sleep(0)

    pending = store.entities(OWN_FEED)
    assert len(pending) == 1
    assert pending[0].lifecycle_state is LifecycleState.OPTIMISTIC
    assert local_manager.is_temporary(pending[0].canonical_id)
    assert local_manager.is_busy(pending[0].canonical_id)

    gate.set()
    await task
    assert store.ids(OWN_FEED) == ["101"]


@pytest.mark.asyncio
async def test_create_reinserts_when_reset_displaced_temp_entity(api, store, local_manager):
    original = api.create

    async def create_after_reset(draft):
        store.clear(HOME_FEED)
        return await original(draft)

    api.create = create_after_reset
    result = await local_manager.create("Hello")
    assert result.ok
    assert store.ids(HOME_FEED) == ["101"]


@pytest.mark.asyncio
async def test_create_without_server_id_keeps_temporary_id(api, store, local_manager):
    api.responses["create"] = {"message": "created"}
    result = await local_manager.create("Hello")
    assert result.ok
    assert local_manager.is_temporary(result.entity.canonical_id)
    assert result.entity.lifecycle_state is LifecycleState.CONFIRMED


@pytest.mark.asyncio
@pytest.mark.parametrize("draft", ["", "   ", {"content": " ", "media": []}])
async def test_create_rejects_empty_drafts(api, store, local_manager, draft):
    with pytest.raises(DraftValidationError):
        await local_manager.create(draft)
    assert api.calls == []
    assert store.ids(HOME_FEED) == []


@pytest.mark.asyncio
async def test_create_accepts_media_only_post(local_manager):
    result = await local_manager.create({"media": [{"url": "https://cdn/a.png"}]})
    assert [item.url for item in result.entity.images] == ["https://cdn/a.png"]


# -- edit ----------------------------------------------------------------


@pytest.mark.asyncio
async def test_edit_success(api, store, seed, local_manager, make_post):
    seed(make_post("A", author_id="u1"))
    result = await local_manager.edit("A", "changed")

    assert result.ok
    entity = store.get("A")
    assert entity.content == "changed"
    assert entity.lifecycle_state is LifecycleState.CONFIRMED
    assert entity.updated_at is not None
    assert api.calls == [("update", "A", EntityPatch(content="changed"))]


@pytest.mark.asyncio
async def test_edit_merges_server_fields(api, store, seed, local_manager, make_post):
    seed(make_post("A"))
    api.responses["update"] = {"post_id": "A", "post_content": "server text", "reaction_counts": {"like": 4}}
    await local_manager.edit("A", {"content": "local text", "tags": ["Announcements"]})

    entity = store.get("A")
    assert entity.canonical_id == "A"
    assert entity.content == "server text"
    assert entity.tags == ("Announcements",)
    assert entity.reaction_count("like") == 4


@pytest.mark.asyncio
async def test_edit_failure_restores_snapshot(api, store, seed, local_manager, make_post):
    seed(make_post("A"))
    before = store.get("A")
    api.fail_on("update")

    result = await local_manager.edit("A", "changed")

    assert result.ok is False
    assert result.failure.draft == EntityPatch(content="changed")
    assert store.get("A") == before
    assert local_manager.is_busy("A") is False


@pytest.mark.asyncio
@pytest.mark.parametrize("edit_fails", [False, True])
async def test_parent_edit_keeps_comment_confirmed_during_the_call(
    api, store, seed, local_manager, make_post, edit_fails
):
    seed(make_post("P"))
    comment_gate = _hold(api, "add_comment")
    update_gate = _hold(api, "update")
    if edit_fails:
        api.fail_on("update")

    comment = asyncio.create_task(local_manager.add_comment("P", "Nice post"))
    await asyncio.sleep(0)
    edit = asyncio.create_task(local_manager.edit("P", "changed"))
    await asyncio.sleep(0)

    comment_gate.set()
    assert (await comment).ok
    update_gate.set()
    result = await edit

    assert result.ok is not edit_fails
    post = store.get("P")
    assert post.content == ("post P" if edit_fails else "changed")
    assert post.lifecycle_state is LifecycleState.CONFIRMED
    assert _children(store, "P") == [("101", LifecycleState.CONFIRMED)]


@pytest.mark.asyncio
async def test_edit_validation(seed, local_manager, make_post):
    seed(make_post("A"))
    with pytest.raises(DraftValidationError):
        await local_manager.edit("A", "  ")
    with pytest.raises(DraftValidationError):
        await local_manager.edit("A", {})
    with pytest.raises(EntityNotFoundError):
        await local_manager.edit("missing", "text")


@pytest.mark.asyncio
async def test_mutations_on_pending_entities_are_refused(store, seed, local_manager, make_post):
    seed(make_post("A", lifecycle_state="updating"))
    with pytest.raises(EntityBusyError):
        await local_manager.edit("A", "again")
    with pytest.raises(EntityBusyError):
        await local_manager.delete("A")
    with pytest.raises(EntityBusyError):
        await local_manager.react("A", "like")


@pytest.mark.asyncio
async def test_edit_applies_to_every_feed(store, seed, local_manager, make_post):
    seed(make_post("A"))
    seed(make_post("A"), feed=OWN_FEED)
    await local_manager.edit("A", "changed")
    assert store.get("A", HOME_FEED).content == "changed"
    assert store.get("A", OWN_FEED).content == "changed"


# -- delete --------------------------------------------------------------


@pytest.mark.asyncio
async def test_delete_success_forgets_ledger(api, store, ledger, seed, local_manager, make_post):
    seed(make_post("A"), make_post("B"))
    ledger.record("B", "like", True)

    result = await local_manager.delete("B")

    assert result.ok
    assert store.ids(HOME_FEED) == ["A"]
    assert ("delete", "B") in api.calls
    assert ledger.entry("B", "like") is None


@pytest.mark.asyncio
async def test_delete_failure_reinserts_at_original_position(api, store, seed, local_manager, make_post):
    seed(make_post("A"), make_post("B"), make_post("C"))
    api.fail_on("delete")

    result = await local_manager.delete("B")

    assert result.ok is False
    assert store.ids(HOME_FEED) == ["A", "B", "C"]


@pytest.mark.asyncio
async def test_delete_wins_over_a_reset_during_the_call(api, store, seed, manager, controller, make_post):
    seed(make_post("A"), make_post("B"))
    api.add_page(HOME_FEED, None, {"posts": [make_post("A"), make_post("B")]})
    original = api.delete

    async def delete_after_reset(post_id):
        await controller.refresh()
        assert store.ids(HOME_FEED) == ["A", "B"]
        await original(post_id)

    api.delete = delete_after_reset
    result = await manager.delete("B")

    assert result.ok
    assert store.ids(HOME_FEED) == ["A"]


@pytest.mark.asyncio
@pytest.mark.parametrize("comment_fails", [False, True])
async def test_failed_delete_restores_comments_settled_meanwhile(
    api, store, seed, local_manager, make_post, comment_fails
):
    seed(make_post("P"), make_post("Q"))
    comment_gate = _hold(api, "add_comment")
    delete_gate = _hold(api, "delete")
    api.fail_on("delete")
    if comment_fails:
        api.fail_on("add_comment")

    comment = asyncio.create_task(local_manager.add_comment("P", "Nice post"))
    await asyncio.sleep(0)
    delete = asyncio.create_task(local_manager.delete("P"))
    await asyncio.sleep(0)
    assert store.ids(HOME_FEED) == ["Q"]

    comment_gate.set()
    assert (await comment).ok is not comment_fails
    delete_gate.set()
    result = await delete

    assert result.ok is False
    assert store.ids(HOME_FEED) == ["P", "Q"]
    expected = [] if comment_fails else [("101", LifecycleState.CONFIRMED)]
    assert _children(store, "P") == expected


@pytest.mark.asyncio
async def test_failed_delete_keeps_comment_still_in_flight(api, store, seed, local_manager, make_post):
    seed(make_post("P"))
    comment_gate = _hold(api, "add_comment")
    api.fail_on("delete")

    comment = asyncio.create_task(local_manager.add_comment("P", "Nice post"))
    await asyncio.sleep(0)
    assert (await local_manager.delete("P")).ok is False
    assert _children(store, "P")[0][1] is LifecycleState.OPTIMISTIC

    comment_gate.set()
    await comment
    assert _children(store, "P") == [("101", LifecycleState.CONFIRMED)]


# -- reactions -----------------------------------------------------------


@pytest.mark.asyncio
async def test_reaction_toggle_symmetry(api, store, ledger, seed, manager, make_post):
    seed(make_post("P", reaction_counts={"like": 2}))
    api.reactions[("P", "like")] = 2
    api.add_page(
        HOME_FEED,
        None,
        lambda: {"posts": [make_post("P", reaction_counts={"like": api.reactions[("P", "like")]})]},
    )

    first = await manager.react("P", "like")
    assert first.ok
    assert ledger.entry("P", "like") is True
    assert store.get("P").reaction_count("like") == 3

    second = await manager.react("P", "like")
    assert second.ok
    assert ledger.has_reacted("P", "like", store.get("P")) is False
    assert api.reactions[("P", "like")] == 2
    assert store.get("P").reaction_count("like") == 2
    assert api.count("list") == 2


@pytest.mark.asyncio
async def test_reaction_failure_reverts_and_still_reconciles(api, store, ledger, seed, manager, make_post):
    seed(make_post("P", reaction_counts={"like": 2}))
    api.add_page(HOME_FEED, None, {"posts": [make_post("P", reaction_counts={"like": 2})]})
    api.fail_on("add_reaction")

    result = await manager.react("P", "like")

    assert result.ok is False
    assert result.failure.operation == "react"
    assert ledger.entry("P", "like") is None
    assert store.get("P").reaction_count("like") == 2
    assert api.count("list") == 1


@pytest.mark.asyncio
async def test_reaction_on_a_later_page_keeps_the_loaded_window(api, store, controller, manager, make_post):
    api.add_page(HOME_FEED, None, {"posts": [make_post("A"), make_post("B")], "nextCursor": "X"})
    api.add_page(
        HOME_FEED,
        "X",
        lambda: {
            "posts": [make_post("C", reaction_counts={"like": api.reactions.get(("C", "like"), 0)}), make_post("D")],
            "nextCursor": None,
        },
    )
    await controller.load_page(reset=True)
    await controller.load_page()

    result = await manager.react("C", "like")

    assert result.ok
    assert result.entity.reaction_count("like") == 1
    assert store.ids(HOME_FEED) == ["A", "B", "C", "D"]
    assert controller.has_more is False
    assert api.count("list") == 4


@pytest.mark.asyncio
async def test_optimistic_reaction_adjusts_local_bucket(store, seed, local_manager, make_post):
    seed(make_post("P", reactions={"wow": {"count": 1, "user_ids": ["u5"]}}))
    await local_manager.react("P", "wow")
    bucket = store.get("P").reactions["wow"]
    assert bucket.count == 2
    assert bucket.user_ids == ("u5", "u1")


@pytest.mark.asyncio
async def test_detector_replaces_reaction_from_same_family(api, ledger, store, seed, local_manager, make_post):
    seed(make_post("P", reactions={"love": {"count": 1, "user_ids": ["u1"]}}))

    await local_manager.react("P", "like", detector=default_reaction_detector(ledger))

    assert api.calls == [("remove_reaction", "P", "love"), ("add_reaction", "P", "like")]
    assert ledger.entry("P", "love") is False
    assert ledger.entry("P", "like") is True
    assert "love" not in store.get("P").reactions


@pytest.mark.asyncio
async def test_comment_reactions_use_comment_endpoints(api, ledger, thread, local_manager):
    await local_manager.react("10", "like")
    assert api.calls == [("add_comment_reaction", "10", "like")]
    assert ledger.entry("comment_10", "like") is True


@pytest.mark.asyncio
async def test_second_mutation_while_reaction_in_flight_is_refused(api, seed, local_manager, make_post):
    seed(make_post("P"))
    gate = _hold(api, "add_reaction")

    task = asyncio.create_task(local_manager.react("P", "like"))
    await asyncio.sleep(0)
    with pytest.raises(EntityBusyError):
        await local_manager.react("P", "love")
    gate.set()

    assert (await task).ok


# -- comments and replies ------------------------------------------------


@pytest.mark.asyncio
async def test_add_comment(api, store, seed, local_manager, make_post):
    seed(make_post("P"))
    result = await local_manager.add_comment("P", "Nice post")

    assert result.ok
    comment = store.get("P").comments[0]
    assert comment.canonical_id == "101"
    assert comment.kind is EntityKind.COMMENT
    assert comment.parent_id == "P"
    assert comment.author.display_name == "Dana Reyes"
    assert api.calls[0][:2] == ("add_comment", "P")


@pytest.mark.asyncio
async def test_add_comment_failure_removes_optimistic_child(api, store, seed, local_manager, make_post):
    seed(make_post("P"))
    api.fail_on("add_comment")
    result = await local_manager.add_comment("P", "Nice post")
    assert result.ok is False
    assert result.failure.draft.content == "Nice post"
    assert store.get("P").comments == ()


@pytest.mark.asyncio
async def test_add_comment_respects_disabled_comments(seed, local_manager, make_post):
    seed(make_post("P", allow_comments=False))
    with pytest.raises(DraftValidationError):
        await local_manager.add_comment("P", "hello")


@pytest.mark.asyncio
async def test_add_reply(api, store, thread, local_manager):
    result = await local_manager.add_reply("10", "thanks")
    assert result.ok
    assert [child.canonical_id for child in store.get("10").comments] == ["20", "101"]
    assert store.get("101").kind is EntityKind.REPLY
    assert api.calls[0][:3] == ("add_reply", "1", "10")


@pytest.mark.asyncio
async def test_edit_comment_uses_comment_endpoint(api, store, thread, local_manager):
    await local_manager.edit_comment("11", "edited")
    assert store.get("11").content == "edited"
    assert api.calls == [("edit_comment", "11", EntityPatch(content="edited"))]


@pytest.mark.asyncio
async def test_delete_reply_passes_thread_ids(api, store, thread, local_manager):
    await local_manager.delete_reply("20")
    assert api.calls == [("delete_reply", "1", "10", "20")]
    assert store.get("20") is None


@pytest.mark.asyncio
async def test_delete_comment_failure_restores_thread(api, store, thread, local_manager):
    api.fail_on("delete_comment")
    result = await local_manager.delete_comment("10")
    assert result.ok is False
    assert [child.canonical_id for child in store.get("1").comments] == ["10", "11"]
    assert store.get("20") is not None


def test_toggle_pin_is_local(api, store, seed, local_manager, make_post):
    seed(make_post("P"))
    pinned = local_manager.toggle_pin("P")
    assert pinned.is_pinned is True
    assert store.get("P").is_pinned is True
    assert api.calls == []
