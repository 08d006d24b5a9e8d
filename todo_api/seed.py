"""Sample data for local development: `python -m todo_api.seed`.

Users whose email already exists are skipped, so the script can be re-run.
"""

import argparse
import asyncio

from .config import settings
from .db import Database
from .logger import logger
from .repositories import NewTodo, NewUser, SqlAlchemyTodoRepository, SqlAlchemyUserRepository
from .schemas import UserConfig

SEED_USERS = [
    {
        "name": "Alice",
        "email": "alice@prisma.io",
        "todos": [{"title": "Read book", "completed": True}],
    },
    {
        "name": "Bob",
        "email": "bob@prisma.io",
        "todos": [{"title": "Buy groceries", "completed": True}],
    },
    {
        "name": "Michael",
        "email": "michael@prisma.io",
        "todos": [
            {"title": "Finish project", "completed": True},
            {"title": "Go for a run", "completed": False},
        ],
    },
]


async def seed(database: Database) -> int:
    """Insert the sample users and their todos. Returns how many users were created."""
    users = SqlAlchemyUserRepository(database.session_factory)
    todos = SqlAlchemyTodoRepository(database.session_factory)
    created = 0

    for entry in SEED_USERS:
        if await users.get_by_email(entry["email"]) is not None:
            logger.info(f"Seed user already present, skipping: {entry['email']}")
            continue

        user = await users.create(
            NewUser(name=entry["name"], email=entry["email"], config=UserConfig().to_storage())
        )
        for todo in entry["todos"]:
            await todos.create(NewTodo(user_id=user.id, **todo))
        logger.info(f"Created user with id: {user.id}")
        created += 1

    return created


async def run(create_tables: bool = False) -> None:
    database = Database.from_settings(settings)
    try:
        if create_tables:
            await database.create_all()
        logger.info("Start seeding ...")
        created = await seed(database)
        logger.info(f"Seeding finished: {created} user(s) created")
    finally:
        await database.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed the database with sample users and todos.")
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="create tables from the ORM models first (instead of running Alembic)",
    )
    args = parser.parse_args()
    asyncio.run(run(create_tables=args.create_tables))


if __name__ == "__main__":
    main()
