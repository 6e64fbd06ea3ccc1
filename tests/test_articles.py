"""
Article endpoint tests: the CRUD lifecycle, slug handling, filters,
pagination, favorites, the personal feed and the tag list.

Each test creates the users and articles it needs through the API, so
test order does not matter.
"""
import pytest
from httpx import AsyncClient

from conftest import auth, create_article, register


# ---------------------------------------------------------------------------
# Infrastructure / health
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_health(async_client: AsyncClient):
    resp = await async_client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["cache"]["enabled"] is False


@pytest.mark.asyncio
async def test_cors_no_credentials_with_wildcard_origin(async_client: AsyncClient):
    resp = await async_client.options(
        "/api/articles",
        headers={"Origin": "https://example.com", "Access-Control-Request-Method": "GET"},
    )
    assert resp.headers.get("access-control-allow-credentials", "").lower() != "true"


# ---------------------------------------------------------------------------
# Create + get
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_and_get_article(async_client: AsyncClient):
    alice = await register(async_client, "alice")
    article = await create_article(async_client, alice, "  How to Train Your Dragon ", [" Dragons", "training", "dragons "])

    assert article["slug"] == "how-to-train-your-dragon"
    assert article["title"] == "How to Train Your Dragon"
    assert article["tagList"] == ["dragons", "training"]
    assert article["favorited"] is False
    assert article["favoritesCount"] == 0
    assert article["author"] == {"username": "alice", "bio": None, "image": None, "following": False}
    assert article["createdAt"] == article["updatedAt"]
    assert article["createdAt"].endswith("Z")

    resp = await async_client.get("/api/articles/how-to-train-your-dragon")
    assert resp.status_code == 200
    assert resp.json()["article"] == article


@pytest.mark.asyncio
async def test_create_requires_auth(async_client: AsyncClient):
    resp = await async_client.post("/api/articles", json={
        "article": {"title": "T", "description": "d", "body": "b"}
    })
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_create_missing_title(async_client: AsyncClient):
    alice = await register(async_client, "alice")
    resp = await async_client.post(
        "/api/articles", json={"article": {"description": "d", "body": "b"}}, headers=auth(alice)
    )
    assert resp.status_code == 422
    assert resp.json()["errors"]["body"] == ['"article.title" is required']


@pytest.mark.asyncio
async def test_create_duplicate_slug(async_client: AsyncClient):
    alice = await register(async_client, "alice")
    bob = await register(async_client, "bob")
    await create_article(async_client, alice, "Same Title")
    resp = await async_client.post("/api/articles", json={
        "article": {"title": "same title!", "description": "d", "body": "b"}
    }, headers=auth(bob))
    assert resp.status_code == 422
    assert resp.json()["errors"]["body"] == ['"slug" is taken']


@pytest.mark.asyncio
async def test_create_title_without_letters(async_client: AsyncClient):
    alice = await register(async_client, "alice")
    resp = await async_client.post("/api/articles", json={
        "article": {"title": "???", "description": "d", "body": "b"}
    }, headers=auth(alice))
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_create_with_long_transliterated_title(async_client: AsyncClient):
    alice = await register(async_client, "alice")
    article = await create_article(async_client, alice, "\u4e2d" * 300)
    assert article["title"] == "\u4e2d" * 300
    assert 0 < len(article["slug"]) <= 350

    resp = await async_client.get(f"/api/articles/{article['slug']}")
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_create_with_over_long_tag(async_client: AsyncClient):
    alice = await register(async_client, "alice")
    resp = await async_client.post("/api/articles", json={
        "article": {"title": "Tagged", "description": "d", "body": "b", "tagList": ["t" * 150]}
    }, headers=auth(alice))
    assert resp.status_code == 422
    assert resp.json()["errors"]["body"] == ['"tagList" items must contain at most 100 characters']
    assert (await async_client.get("/api/articles/tagged")).status_code == 404


@pytest.mark.asyncio
async def test_get_unknown_article(async_client: AsyncClient):
    resp = await async_client.get("/api/articles/nope")
    assert resp.status_code == 404
    assert resp.json() == {"errors": {"body": ['slug "nope" not found']}}


# ---------------------------------------------------------------------------
# Update + delete
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_update_article_title_changes_slug(async_client: AsyncClient):
    alice = await register(async_client, "alice")
    original = await create_article(async_client, alice, "Old Title", ["a"])

    resp = await async_client.put("/api/articles/old-title", json={
        "article": {"title": "New Title", "tagList": ["B", "a"]}
    }, headers=auth(alice))
    assert resp.status_code == 200
    updated = resp.json()["article"]
    assert updated["slug"] == "new-title"
    assert updated["tagList"] == ["a", "b"]
    assert updated["description"] == original["description"]
    assert updated["createdAt"] == original["createdAt"]
    assert updated["updatedAt"] >= original["updatedAt"]

    assert (await async_client.get("/api/articles/old-title")).status_code == 404
    assert (await async_client.get("/api/articles/new-title")).status_code == 200


@pytest.mark.asyncio
async def test_update_without_changes_keeps_timestamp(async_client: AsyncClient):
    alice = await register(async_client, "alice")
    original = await create_article(async_client, alice, "Stable")
    resp = await async_client.put("/api/articles/stable", json={
        "article": {"title": "Stable", "body": original["body"]}
    }, headers=auth(alice))
    assert resp.status_code == 200
    assert resp.json()["article"]["updatedAt"] == original["updatedAt"]


@pytest.mark.asyncio
async def test_update_by_non_author_is_unauthorized(async_client: AsyncClient):
    alice = await register(async_client, "alice")
    bob = await register(async_client, "bob")
    await create_article(async_client, alice, "Mine")
    resp = await async_client.put("/api/articles/mine", json={"article": {"body": "hijacked"}}, headers=auth(bob))
    assert resp.status_code == 401
    resp = await async_client.delete("/api/articles/mine", headers=auth(bob))
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_update_to_taken_slug(async_client: AsyncClient):
    alice = await register(async_client, "alice")
    await create_article(async_client, alice, "First")
    await create_article(async_client, alice, "Second")
    resp = await async_client.put("/api/articles/second", json={"article": {"title": "FIRST"}}, headers=auth(alice))
    assert resp.status_code == 422
    assert resp.json()["errors"]["body"] == ['"slug" is taken']


@pytest.mark.asyncio
async def test_delete_article(async_client: AsyncClient):
    alice = await register(async_client, "alice")
    await create_article(async_client, alice, "Short Lived", ["gone"])

    resp = await async_client.delete("/api/articles/short-lived", headers=auth(alice))
    assert resp.status_code == 204
    assert (await async_client.get("/api/articles/short-lived")).status_code == 404
    assert (await async_client.get("/api/tags")).json() == {"tags": []}

    resp = await async_client.delete("/api/articles/short-lived", headers=auth(alice))
    assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_list_articles_empty(async_client: AsyncClient):
    resp = await async_client.get("/api/articles")
    assert resp.status_code == 200
    assert resp.json() == {"articles": [], "articlesCount": 0}


@pytest.mark.asyncio
async def test_list_articles_newest_first_with_filters(async_client: AsyncClient):
    alice = await register(async_client, "alice")
    bob = await register(async_client, "bob")
    await create_article(async_client, alice, "One", ["python"])
    await create_article(async_client, bob, "Two", ["rust"])
    await create_article(async_client, alice, "Three", ["python"])

    resp = await async_client.get("/api/articles")
    assert [a["slug"] for a in resp.json()["articles"]] == ["three", "two", "one"]
    assert resp.json()["articlesCount"] == 3

    resp = await async_client.get("/api/articles", params={"tag": "python"})
    assert [a["slug"] for a in resp.json()["articles"]] == ["three", "one"]

    resp = await async_client.get("/api/articles", params={"author": "bob"})
    assert [a["slug"] for a in resp.json()["articles"]] == ["two"]

    resp = await async_client.get("/api/articles", params={"author": "ghost"})
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_list_articles_pagination(async_client: AsyncClient):
    alice = await register(async_client, "alice")
    for title in ("A1", "A2", "A3", "A4", "A5"):
        await create_article(async_client, alice, title)

    resp = await async_client.get("/api/articles", params={"limit": 2, "offset": 1})
    data = resp.json()
    assert [a["slug"] for a in data["articles"]] == ["a4", "a3"]
    assert data["articlesCount"] == 2

    resp = await async_client.get("/api/articles", params={"limit": -1})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_list_articles_viewer_flags(async_client: AsyncClient):
    alice = await register(async_client, "alice")
    bob = await register(async_client, "bob")
    await create_article(async_client, alice, "Flagged")
    await async_client.post("/api/profiles/alice/follow", headers=auth(bob))
    await async_client.post("/api/articles/flagged/favorite", headers=auth(bob))

    resp = await async_client.get("/api/articles", headers=auth(bob))
    article = resp.json()["articles"][0]
    assert article["favorited"] is True
    assert article["author"]["following"] is True

    resp = await async_client.get("/api/articles")
    article = resp.json()["articles"][0]
    assert article["favorited"] is False
    assert article["author"]["following"] is False
    assert article["favoritesCount"] == 1


# ---------------------------------------------------------------------------
# Favorites
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_favorite_and_unfavorite(async_client: AsyncClient):
    alice = await register(async_client, "alice")
    bob = await register(async_client, "bob")
    original = await create_article(async_client, alice, "Liked")

    resp = await async_client.post("/api/articles/liked/favorite", headers=auth(bob))
    assert resp.status_code == 200
    favorited = resp.json()["article"]
    assert favorited["favorited"] is True
    assert favorited["favoritesCount"] == 1
    assert favorited["updatedAt"] >= original["updatedAt"]

    resp = await async_client.post("/api/articles/liked/favorite", headers=auth(bob))
    assert resp.json()["article"]["favoritesCount"] == 1
    assert resp.json()["article"]["updatedAt"] == favorited["updatedAt"]

    resp = await async_client.get("/api/articles", params={"favorited": "bob"})
    assert [a["slug"] for a in resp.json()["articles"]] == ["liked"]

    resp = await async_client.delete("/api/articles/liked/favorite", headers=auth(bob))
    assert resp.status_code == 200
    assert resp.json()["article"]["favorited"] is False
    assert resp.json()["article"]["favoritesCount"] == 0


@pytest.mark.asyncio
async def test_favorite_unknown_article(async_client: AsyncClient):
    alice = await register(async_client, "alice")
    resp = await async_client.post("/api/articles/nope/favorite", headers=auth(alice))
    assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Feed
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_feed_shows_followed_authors_only(async_client: AsyncClient):
    reader = await register(async_client, "reader")
    writer = await register(async_client, "writer")
    other = await register(async_client, "other")
    await create_article(async_client, writer, "Followed Post")
    await create_article(async_client, other, "Unfollowed Post")

    resp = await async_client.get("/api/articles/feed", headers=auth(reader))
    assert resp.json() == {"articles": [], "articlesCount": 0}

    await async_client.post("/api/profiles/writer/follow", headers=auth(reader))
    resp = await async_client.get("/api/articles/feed", headers=auth(reader))
    data = resp.json()
    assert [a["slug"] for a in data["articles"]] == ["followed-post"]
    assert data["articles"][0]["author"]["following"] is True


@pytest.mark.asyncio
async def test_feed_requires_auth(async_client: AsyncClient):
    resp = await async_client.get("/api/articles/feed")
    assert resp.status_code == 401


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_tags_union(async_client: AsyncClient):
    alice = await register(async_client, "alice")
    await create_article(async_client, alice, "One", ["zeta", "Alpha"])
    await create_article(async_client, alice, "Two", ["alpha", "mid"])

    resp = await async_client.get("/api/tags")
    assert resp.status_code == 200
    assert resp.json() == {"tags": ["alpha", "mid", "zeta"]}
