"""Blog example: users liking and disliking posts.

Run against a local database with::

    NEO4J_URI=bolt://localhost:7687 NEO4J_USER=neo4j NEO4J_PASSWORD=secret \
        python examples/blog.py
"""

import asyncio
from typing import Annotated

import structlog
from pydantic import Field

from graphrepo.config import configure_logging, get_settings
from graphrepo.graph import (
    BaseGraphRepository,
    BaseNode,
    GraphConnection,
    GraphField,
    GraphRelationship,
    NodeConverter,
    RelationshipDirection,
    SearchModel,
    graph_entity,
)

logger = structlog.get_logger(__name__)

LIKE = "LIKE"
DISLIKE = "DISLIKE"


# =============================================================================
# Entities
# =============================================================================


@graph_entity
class User(BaseNode):
    name: Annotated[str, GraphField(searchable=True)] = ""
    email: Annotated[str, GraphField(searchable=True)] = ""
    liked_posts: Annotated[
        list["Post"],
        GraphRelationship(LIKE, target_label="Post", direction=RelationshipDirection.OUTGOING),
    ] = Field(default_factory=list)
    disliked_posts: Annotated[
        list["Post"],
        GraphRelationship(DISLIKE, target_label="Post", direction=RelationshipDirection.OUTGOING),
    ] = Field(default_factory=list)


@graph_entity
class Post(BaseNode):
    title: Annotated[str, GraphField(searchable=True)] = ""
    content: str = ""
    liked_by: Annotated[
        list[User],
        GraphRelationship(LIKE, target_label="User", direction=RelationshipDirection.INCOMING),
    ] = Field(default_factory=list)
    disliked_by: Annotated[
        list[User],
        GraphRelationship(DISLIKE, target_label="User", direction=RelationshipDirection.INCOMING),
    ] = Field(default_factory=list)


User.model_rebuild()
Post.model_rebuild()


class PostSearch(SearchModel):
    """Posts filtered by title and by the names of users who liked them."""

    title: str | None = None
    liked_by_names: Annotated[
        list[str] | None,
        GraphRelationship(
            LIKE, target_label="User", direction=RelationshipDirection.INCOMING, target_field="name"
        ),
    ] = None


# =============================================================================
# Converters
# =============================================================================


class UserConverter(NodeConverter[User]):
    """Hydrates liked and disliked posts from the expanded columns."""

    def __init__(self) -> None:
        posts = NodeConverter(Post)
        super().__init__(User, related={"liked_posts": posts, "disliked_posts": posts})


class PostConverter(NodeConverter[Post]):
    """Hydrates the users who liked or disliked a post."""

    def __init__(self) -> None:
        users = NodeConverter(User)
        super().__init__(Post, related={"liked_by": users, "disliked_by": users})


# =============================================================================
# Repositories
# =============================================================================


class UserRepository(BaseGraphRepository[User]):
    entity_type = User

    def __init__(self, connection: GraphConnection) -> None:
        super().__init__(connection, converter=UserConverter())


class PostRepository(BaseGraphRepository[Post]):
    entity_type = Post

    def __init__(self, connection: GraphConnection) -> None:
        super().__init__(connection, converter=PostConverter())


async def main() -> None:
    configure_logging()
    settings = get_settings()

    async with GraphConnection.from_settings(settings) as connection:
        users = UserRepository(connection)
        posts = PostRepository(connection)

        alice = await users.create(User(name="Alice", email="alice@example.com"))
        bob = await users.create(User(name="Bob", email="bob@example.com"))
        post = await posts.create(Post(title="Hello graphs", content="First post"))

        await posts.sync_relationships(
            post.id, LIKE, [alice.id, bob.id], RelationshipDirection.INCOMING
        )

        page = await posts.get_all(PostSearch(page_size=10, liked_by_names=["alice"]))
        logger.info("Found posts", total=page.total_results)
        for found in page.results:
            logger.info(
                "Post",
                title=found.title,
                likes=len(found.liked_by),
                dislikes=len(found.disliked_by),
            )

        all_users = await users.get_all()
        for user in all_users.results:
            logger.info("User", name=user.name, liked=len(user.liked_posts))


if __name__ == "__main__":
    asyncio.run(main())
