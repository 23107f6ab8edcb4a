import pytest
from sqlmodel import select

import markpress.promotion as promotion
from conftest import put_image, url
from markpress.core.exceptions import NotFoundError, PublishError
from markpress.models import Comment, DraftSession, Hashtag, Like, Post, UploadedFile
from markpress.schemas import PostCreate, PostUpdate
from markpress.services import posts as post_service


def _create(content, hashtags=("python",), draft_id=None, title="Hello"):
    return PostCreate(title=title, content=content, hashtags=list(hashtags), draft_id=draft_id)


def test_publish_promotes_rewrites_and_sweeps(session, store):
    put_image(store, "temp/d1/image/a.png")
    put_image(store, "temp/d1/image/b.png")
    put_image(store, "temp/d1/image/unused.png")
    put_image(store, "temp/d2/image/other.png")
    session.add(DraftSession(id="d1"))
    session.commit()
    content = f"![a]({url('temp/d1/image/a.png')})\n\n![b]({url('temp/d1/image/b.png')})"

    result = post_service.publish_post(session, store, _create(content, draft_id="d1"))

    post = result.post
    assert "temp/" not in post.content_markdown
    assert url("permanent/image/a.png") in post.content_markdown
    assert url("permanent/image/b.png") in post.content_markdown
    assert post.thumbnail_url == url("permanent/image/a.png")
    assert result.retained_temp_paths == []
    assert result.warnings == []
    assert store.exists("permanent/image/a.png")
    # Draft scope swept, other drafts untouched
    assert store.list("temp/d1/") == []
    assert store.exists("temp/d2/image/other.png")
    assert session.get(DraftSession, "d1") is None


def test_publish_without_images_stores_content_verbatim(session, store):
    result = post_service.publish_post(session, store, _create("Plain text only."))

    assert result.post.content_markdown == "Plain text only."
    assert result.post.thumbnail_url is None
    assert not any(call[0] in ("copy", "delete") for call in store.calls)


def test_already_permanent_images_are_left_alone(session, store):
    put_image(store, "permanent/image/a.png")
    content = f"![a]({url('permanent/image/a.png')})"

    result = post_service.publish_post(session, store, _create(content))

    assert result.post.content_markdown == content
    assert result.post.thumbnail_url == url("permanent/image/a.png")
    assert store.calls == []


def test_copy_failure_keeps_temp_url_and_still_publishes(session, store):
    put_image(store, "temp/image/ok.png")
    put_image(store, "temp/image/bad.png")
    store.fail_copy.add("temp/image/bad.png")
    content = f"![bad]({url('temp/image/bad.png')}) ![ok]({url('temp/image/ok.png')})"

    result = post_service.publish_post(session, store, _create(content))

    assert result.retained_temp_paths == ["temp/image/bad.png"]
    assert url("temp/image/bad.png") in result.post.content_markdown
    assert url("permanent/image/ok.png") in result.post.content_markdown
    # Thumbnail skips the image that is still in temp
    assert result.post.thumbnail_url == url("permanent/image/ok.png")
    assert store.exists("temp/image/bad.png")


def test_strict_mode_rejects_partial_promotion(session, store):
    put_image(store, "temp/image/bad.png")
    store.fail_copy.add("temp/image/bad.png")
    content = f"![bad]({url('temp/image/bad.png')})"

    with pytest.raises(PublishError) as excinfo:
        post_service.publish_post(session, store, _create(content), strict=True)

    assert excinfo.value.paths == ["temp/image/bad.png"]
    assert session.exec(select(Post)).all() == []


def test_fatal_promotion_writes_no_post(session, store):
    put_image(store, "temp/image/a.png")
    store.fail_delete.add("temp/image/a.png")
    content = f"![a]({url('temp/image/a.png')})"

    with pytest.raises(promotion.PromotionError):
        post_service.publish_post(session, store, _create(content, hashtags=["fresh"]))

    assert session.exec(select(Post)).all() == []
    assert session.exec(select(Hashtag)).all() == []


def test_single_failed_image_leaves_content_unchanged_without_thumbnail(session, store):
    put_image(store, "temp/image/a.png")
    store.fail_copy.add("temp/image/a.png")
    content = f"![a]({url('temp/image/a.png')})"

    result = post_service.publish_post(session, store, _create(content))

    assert result.post.content_markdown == content
    assert result.post.thumbnail_url is None
    assert result.retained_temp_paths == ["temp/image/a.png"]


def _upload_record(session, file_id, path):
    session.add(UploadedFile(id=file_id, name=f"{file_id}.png", path=path, content_type="image/png", size=4))
    session.commit()


def test_strict_failure_moves_images_back_so_the_draft_can_be_republished(session, store):
    put_image(store, "temp/image/ok.png")
    put_image(store, "temp/image/bad.png")
    _upload_record(session, "ok", "temp/image/ok.png")
    store.fail_copy.add("temp/image/bad.png")
    content = f"![ok]({url('temp/image/ok.png')}) ![bad]({url('temp/image/bad.png')})"

    with pytest.raises(PublishError) as excinfo:
        post_service.publish_post(session, store, _create(content), strict=True)

    assert excinfo.value.promoted == {}
    assert store.exists("temp/image/ok.png")
    assert not store.exists("permanent/image/ok.png")
    assert session.get(UploadedFile, "ok").path == "temp/image/ok.png"

    store.fail_copy.clear()
    result = post_service.publish_post(session, store, _create(content), strict=True)

    assert result.report.succeeded_paths == ["temp/image/ok.png", "temp/image/bad.png"]
    assert "temp/" not in result.post.content_markdown
    assert session.get(UploadedFile, "ok").path == "permanent/image/ok.png"


def test_strict_failure_records_moves_that_could_not_be_undone(session, store):
    put_image(store, "temp/image/ok.png")
    put_image(store, "temp/image/bad.png")
    _upload_record(session, "ok", "temp/image/ok.png")
    store.fail_copy.update({"temp/image/bad.png", "permanent/image/ok.png"})
    content = f"![ok]({url('temp/image/ok.png')}) ![bad]({url('temp/image/bad.png')})"

    with pytest.raises(PublishError) as excinfo:
        post_service.publish_post(session, store, _create(content), strict=True)

    assert excinfo.value.promoted == {"temp/image/ok.png": "permanent/image/ok.png"}
    assert store.exists("permanent/image/ok.png")
    record = session.get(UploadedFile, "ok")
    assert record.path == "permanent/image/ok.png"
    assert record.is_temporary is False


def test_fatal_abort_records_moves_already_made(session, store):
    put_image(store, "temp/image/a.png")
    put_image(store, "temp/image/b.png")
    _upload_record(session, "a", "temp/image/a.png")
    _upload_record(session, "b", "temp/image/b.png")
    store.fail_delete.add("temp/image/b.png")
    content = f"![a]({url('temp/image/a.png')}) ![b]({url('temp/image/b.png')})"

    with pytest.raises(promotion.PromotionError):
        post_service.publish_post(session, store, _create(content))

    assert session.exec(select(Post)).all() == []
    moved = session.get(UploadedFile, "a")
    assert moved.path == "permanent/image/a.png"
    assert moved.is_temporary is False
    assert store.exists("permanent/image/a.png")
    # The temp original of b could not be removed, so it is still where the record says
    assert session.get(UploadedFile, "b").path == "temp/image/b.png"
    assert store.exists("temp/image/b.png")


def test_sweep_failure_after_commit_becomes_a_warning(session, store):
    put_image(store, "temp/d1/image/a.png")
    put_image(store, "temp/d1/image/stale.png")
    store.fail_delete.add("temp/d1/image/stale.png")
    content = f"![a]({url('temp/d1/image/a.png')})"

    result = post_service.publish_post(session, store, _create(content, draft_id="d1"))

    assert result.post.id is not None
    assert len(result.warnings) == 1
    assert session.get(Post, result.post.id) is not None


def test_promoted_upload_records_follow_their_objects(session, store):
    put_image(store, "temp/d1/image/a.png")
    session.add(
        UploadedFile(id="a", name="a.png", path="temp/d1/image/a.png", content_type="image/png", size=4, draft_id="d1")
    )
    session.commit()

    post_service.publish_post(session, store, _create(f"![a]({url('temp/d1/image/a.png')})", draft_id="d1"))

    record = session.get(UploadedFile, "a")
    assert record.path == "permanent/image/a.png"
    assert record.is_temporary is False
    assert record.draft_id is None


def test_hashtags_are_normalized_and_shared(session, store):
    first = post_service.publish_post(session, store, _create("one", hashtags=["Python", " fastapi "]))
    second = post_service.publish_post(session, store, _create("two", hashtags=["python"]))

    assert sorted(h.name for h in first.post.hashtags) == ["fastapi", "python"]
    assert [h.name for h in second.post.hashtags] == ["python"]
    assert len(session.exec(select(Hashtag)).all()) == 2


def test_update_promotes_new_images_and_removes_dropped_ones(session, store):
    put_image(store, "temp/image/a.png")
    created = post_service.publish_post(session, store, _create(f"![a]({url('temp/image/a.png')})"))
    put_image(store, "temp/image/b.png")

    result = post_service.update_post(
        session,
        store,
        created.post.id,
        PostUpdate(title="Renamed", content=f"![b]({url('temp/image/b.png')})"),
    )

    assert result.post.title == "Renamed"
    assert result.post.content_markdown == f"![b]({url('permanent/image/b.png')})"
    assert result.post.thumbnail_url == url("permanent/image/b.png")
    assert store.exists("permanent/image/b.png")
    assert not store.exists("permanent/image/a.png")


def test_update_of_missing_post_raises(session, store):
    with pytest.raises(NotFoundError):
        post_service.update_post(session, store, 999, PostUpdate(title="x"))


def test_delete_removes_post_dependents_and_images(session, store):
    put_image(store, "temp/image/a.png")
    created = post_service.publish_post(session, store, _create(f"![a]({url('temp/image/a.png')})"))
    post_id = created.post.id
    session.add(Comment(post_id=post_id, author_id="u1", content="hi"))
    session.add(Like(post_id=post_id, user_id="u1"))
    session.commit()

    warnings = post_service.delete_post(session, store, post_id)

    assert warnings == []
    assert session.get(Post, post_id) is None
    assert session.exec(select(Comment)).all() == []
    assert session.exec(select(Like)).all() == []
    assert not store.exists("permanent/image/a.png")


def test_images_shared_with_another_post_survive_delete(session, store):
    put_image(store, "permanent/image/shared.png")
    content = f"![s]({url('permanent/image/shared.png')})"
    first = post_service.publish_post(session, store, _create(content, title="First"))
    second = post_service.publish_post(session, store, _create(content, title="Second"))

    post_service.delete_post(session, store, first.post.id)
    assert store.exists("permanent/image/shared.png")

    post_service.delete_post(session, store, second.post.id)
    assert not store.exists("permanent/image/shared.png")


def test_images_shared_with_another_post_survive_update(session, store):
    put_image(store, "permanent/image/shared.png")
    content = f"![s]({url('permanent/image/shared.png')})"
    first = post_service.publish_post(session, store, _create(content, title="First"))
    post_service.publish_post(session, store, _create(content, title="Second"))

    post_service.update_post(session, store, first.post.id, PostUpdate(content="No images any more."))

    assert store.exists("permanent/image/shared.png")


def test_timestamps_are_timezone_aware():
    post = Post(title="t", content_markdown="c")
    assert post.created_at.tzinfo is not None
    assert post.updated_at.tzinfo is not None


def test_list_posts_filters_and_sorts(session, store):
    post_service.publish_post(session, store, _create("about snakes", hashtags=["python"], title="First"))
    post_service.publish_post(session, store, _create("about web", hashtags=["fastapi"], title="Second"))
    post_service.publish_post(session, store, _create("snakes again", hashtags=["python"], title="Third"))

    posts, total = post_service.list_posts(session, hashtag="Python")
    assert total == 2
    assert [p.title for p in posts] == ["Third", "First"]

    posts, total = post_service.list_posts(session, query="snakes", sort="oldest")
    assert [p.title for p in posts] == ["First", "Third"]

    posts, total = post_service.list_posts(session, page=2, limit=2)
    assert total == 3
    assert [p.title for p in posts] == ["First"]


def test_get_post_counts_views(session, store):
    created = post_service.publish_post(session, store, _create("text"))

    post_service.get_post(session, created.post.id, count_view=True)
    post = post_service.get_post(session, created.post.id, count_view=True)

    assert post.view_count == 2
