"""Admin commands.

Usage:
  python -m app.cli init-db
  python -m app.cli add-user ALIAS {google,github,facebook}
  python -m app.cli list-users
  python -m app.cli revoke ALIAS
  python -m app.cli seed

DATABASE_URL (or .env) selects the database, as for the web app.
"""
import argparse
import asyncio
import logging
import sys

from app import config
from app.database import AsyncSessionLocal, init_db
from app.exceptions import TodoAppError
from app.models.todo import Todo
from app.repositories.todo_repo import TodoRepository
from app.services.auth_service import AuthService

SAMPLE_TODOS = (
    ("Welcome to Todo Multi-Users",
     "This is a shared todo app where all users can see and manage todos together.",
     ["welcome"]),
    ("Add your first todo",
     "Fill in the form at the top of the list to create your first todo item.",
     ["getting-started"]),
    ("Use tags to organize",
     "Add tags to categorize your todos. Click on tags to filter the list.",
     ["tips", "organization"]),
)


async def add_user(alias: str, provider: str) -> int:
    async with AsyncSessionLocal() as db:
        user, auth_url = await AuthService().authorize(db, alias, provider)
    print(f"Created pending user {user.alias} (ID: {user.id}, provider: {user.provider})")
    print(f"Send this link to finish authorization:\n  {auth_url}")
    return 0


async def list_users() -> int:
    async with AsyncSessionLocal() as db:
        users = await AuthService().list_users(db)
    if not users:
        print("No users found in DB.")
        return 0
    for u in users:
        if u.is_authorized:
            state = "authorized"
        elif u.is_revoked:
            state = "revoked"
        else:
            state = "pending" if u.is_pending else "linked, not finalized"
        print(f"{u.alias:<20} {u.provider:<9} {state:<22} {u.email or '-'}")
    return 0


async def revoke(alias: str) -> int:
    async with AsyncSessionLocal() as db:
        user = await AuthService().revoke(db, alias)
    print(f"Revoked {user.alias}: is_authorized={user.is_authorized}")
    return 0


async def seed() -> int:
    repo = TodoRepository()
    async with AsyncSessionLocal() as db:
        if await repo.count(db):
            print("Todos already present, nothing to seed.")
            return 0
        n = await repo.bulk_create(
            db, (Todo(title=t, description=d, tags=tags) for t, d, tags in SAMPLE_TODOS)
        )
        await db.commit()
    print(f"Seeded {n} todos")
    return 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="todo-admin", description="Todo Multi-Users admin commands")
    sub = ap.add_subparsers(dest="command", required=True)
    sub.add_parser("init-db", help="create tables")
    p = sub.add_parser("add-user", help="pre-register an alias awaiting OAuth")
    p.add_argument("alias")
    p.add_argument("provider", choices=config.SUPPORTED_PROVIDERS)
    sub.add_parser("list-users", help="list registered users")
    p = sub.add_parser("revoke", help="deauthorize a user")
    p.add_argument("alias")
    sub.add_parser("seed", help="insert sample todos into an empty list")
    return ap


async def run(args: argparse.Namespace) -> int:
    if args.command == "init-db":
        await init_db()
        print("Tables created")
        return 0
    if args.command == "add-user":
        return await add_user(args.alias, args.provider)
    if args.command == "list-users":
        return await list_users()
    if args.command == "revoke":
        return await revoke(args.alias)
    return await seed()


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=config.LOG_LEVEL, format="%(levelname)s %(name)s: %(message)s")
    try:
        return asyncio.run(run(args))
    except TodoAppError as e:
        print(f"error: {e.message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
