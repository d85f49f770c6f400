# make_admin.py
# Usage:
#   python make_admin.py create <username> <password> [--role owner|"super owner"]
#   python make_admin.py rebuild-hierarchy
#   python make_admin.py check-key <username> <key> <device_uuid> [--base-url URL]

import argparse
import sys

from flask import current_app
from sqlalchemy.exc import IntegrityError

from app import create_app
from extensions import db
from models import User, Role, SYSTEM_ACTOR, SUPER_OWNER_BALANCE
from licensing.connect_client import ConnectClient, ConnectClientError
from licensing.connect_service import ApiCredentialStore
from licensing.hierarchy import HierarchyHelper


def make_admin(username, password, role):
    user = User.query.filter_by(username=username).first()

    if user:
        print(f"Found user id={user.id}, username={user.username}. Setting role to '{role.value}'...")
        user.role = role.value
        user.set_password(password)
        user.is_active = True
        if role is Role.SUPER_OWNER:
            user.balance = SUPER_OWNER_BALANCE
        db.session.commit()
        return user

    print(f"No user named {username} found, creating a new {role.value}.")
    try:
        user = User(
            username=username,
            role=role.value,
            balance=SUPER_OWNER_BALANCE if role is Role.SUPER_OWNER else 0,
            created_by=SYSTEM_ACTOR,
            is_active=True,
            server_status=True,
        )
        user.set_password(password)
        db.session.add(user)
        db.session.flush()
        HierarchyHelper.add_root(user.id)
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        raise RuntimeError(f"Failed to create {username}") from e

    print(f"Created user id={user.id} with role '{user.role}'.")
    return user


def check_key(username, key, device_uuid, base_url=None, session=None):
    """One connect round trip against a running panel, signed with the stored API credentials."""
    credential = ApiCredentialStore.get_or_create()
    client = ConnectClient(
        base_url or current_app.config["CONNECT_BASE_URL"],
        username,
        credential.api_key,
        credential.secret_key,
        session=session,
    )
    return client.connect(key, device_uuid)


def main(argv=None):
    parser = argparse.ArgumentParser(description="License panel account maintenance")
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create", help="create or promote an owner account")
    create.add_argument("username")
    create.add_argument("password")
    create.add_argument("--role", default=Role.OWNER.value,
                        choices=[Role.OWNER.value, Role.SUPER_OWNER.value])

    sub.add_parser("rebuild-hierarchy", help="recompute user_hierarchy from users.created_by")

    check = sub.add_parser("check-key", help="validate a key through the connect endpoint")
    check.add_argument("username")
    check.add_argument("key")
    check.add_argument("device_uuid")
    check.add_argument("--base-url", default=None, help="defaults to CONNECT_BASE_URL")

    args = parser.parse_args(argv)

    app = create_app()
    with app.app_context():
        if args.command == "create":
            if len(args.password) < 4:
                parser.error("password must be at least 4 characters")
            make_admin(args.username, args.password, Role.parse(args.role))
        elif args.command == "check-key":
            try:
                data = check_key(args.username, args.key, args.device_uuid, base_url=args.base_url)
            except ConnectClientError as e:
                print(f"Refused ({e.status_code}): {e.reason}")
                return 1
            print(f"Key {data['key']} valid until {data.get('expirydate')} "
                  f"({data.get('devices_left')} of {data.get('total_devices')} device slots left)")
        else:
            written = HierarchyHelper.rebuild()
            db.session.commit()
            print(f"Hierarchy rebuilt: {written} rows.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
