"""Maintenance commands: bootstrap an admin account and purge expired sessions."""

import argparse
import getpass
import logging
import sys
from typing import List, Optional

from .auth import AuthService
from .config import Settings, get_settings
from .database import create_db_engine, create_session_factory, init_db
from .exceptions import BizDataError
from .models.user import ROLE_ADMIN
from .store import SqlAlchemyStore

logger = logging.getLogger(__name__)


def _auth_service(settings: Settings) -> AuthService:
    engine = create_db_engine(settings.database_url)
    init_db(engine)
    return AuthService(SqlAlchemyStore(create_session_factory(engine)), settings)


def create_admin(auth: AuthService, email: str, password: str, name: str) -> str:
    """Create an admin account, or promote and reactivate an existing one.

    Returns the id of the admin account.
    """
    existing = auth.store.get_user_by_email(email)
    if existing is not None:
        auth.update_user(existing.id, role=ROLE_ADMIN, is_active=True)
        logger.info("promoted existing user id=%s to admin", existing.id)
        return existing.id
    user = auth.create_user(email, password, name, role=ROLE_ADMIN)
    return user.id


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="bizdata-manage", description=__doc__)
    commands = parser.add_subparsers(dest="command", required=True)

    admin = commands.add_parser("create-admin", help="create or promote an admin account")
    admin.add_argument("--email", required=True)
    admin.add_argument("--name", default="Administrator")
    admin.add_argument("--password", help="prompted for when omitted")

    commands.add_parser("clean-sessions", help="delete expired sessions")
    return parser


def main(argv: Optional[List[str]] = None, settings: Optional[Settings] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    auth = _auth_service(settings or get_settings())

    try:
        if args.command == "create-admin":
            password = args.password or getpass.getpass("Password: ")
            user_id = create_admin(auth, args.email, password, args.name)
            print(f"admin account ready: {user_id}")
        else:
            removed = auth.clean_expired_sessions()
            print(f"removed {removed} expired sessions")
    except BizDataError as exc:
        print(f"error: {exc.message}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
