from typing import List, Optional, Tuple
from sqlalchemy import text
from extensions import db
from models import User, UserHierarchy, SYSTEM_ACTOR
import logging


logger = logging.getLogger(__name__)

MAX_HIERARCHY_DEPTH = 64


class HierarchyHelper:
    """
    createdBy tree kept as a closure table.
    Table: user_hierarchy(ancestor_id, descendant_id, depth); depth 0 is the self row.
    None of these methods commit; callers own the transaction.
    """

    @staticmethod
    def add_root(user_id: int) -> None:
        """Insert the self row for a user with no panel parent (bootstrap accounts)."""
        db.session.execute(
            text(
                """
                INSERT INTO user_hierarchy (ancestor_id, descendant_id, depth)
                VALUES (:uid, :uid, 0)
                ON CONFLICT (ancestor_id, descendant_id) DO NOTHING
                """
            ),
            {"uid": user_id},
        )

    @staticmethod
    def add_child(user_id: int, parent_id: int) -> None:
        """Attach a freshly created user under parent_id."""
        if user_id == parent_id:
            raise ValueError("A user cannot be its own parent")

        if HierarchyHelper.is_descendant(user_id, parent_id):
            raise ValueError(f"Cycle detected: {parent_id} is below {user_id}")

        HierarchyHelper.add_root(user_id)
        HierarchyHelper.add_root(parent_id)

        # Every ancestor of the parent (parent included via its self row)
        db.session.execute(
            text(
                """
                INSERT INTO user_hierarchy (ancestor_id, descendant_id, depth)
                SELECT ancestor_id, :new_id, depth + 1
                FROM user_hierarchy
                WHERE descendant_id = :parent_id AND depth < :max_depth
                ON CONFLICT (ancestor_id, descendant_id) DO NOTHING
                """
            ),
            {"new_id": user_id, "parent_id": parent_id, "max_depth": MAX_HIERARCHY_DEPTH},
        )

    @staticmethod
    def attach(user: User) -> None:
        """Place a user by its created_by; unknown or system creators make it a root."""
        parent = None
        if user.created_by and user.created_by not in (SYSTEM_ACTOR, user.username):
            parent = User.query.filter_by(username=user.created_by).first()
        if parent is None:
            HierarchyHelper.add_root(user.id)
        else:
            HierarchyHelper.add_child(user.id, parent.id)

    @staticmethod
    def is_descendant(ancestor_id: int, descendant_id: int) -> bool:
        row = db.session.execute(
            text(
                """
                SELECT 1 FROM user_hierarchy
                WHERE ancestor_id = :ancestor AND descendant_id = :descendant AND depth >= 1
                LIMIT 1
                """
            ),
            {"ancestor": ancestor_id, "descendant": descendant_id},
        ).scalar()
        return bool(row)

    @staticmethod
    def descendant_ids(user_id: int, include_self: bool = True) -> List[int]:
        min_depth = 0 if include_self else 1
        rows = db.session.execute(
            text(
                """
                SELECT descendant_id FROM user_hierarchy
                WHERE ancestor_id = :uid AND depth >= :min_depth
                ORDER BY depth
                """
            ),
            {"uid": user_id, "min_depth": min_depth},
        ).fetchall()
        return [r[0] for r in rows]

    @staticmethod
    def ancestors(user_id: int) -> List[Tuple[User, int]]:
        """(user, depth) pairs from self (depth 0) upwards."""
        rows = (
            db.session.query(User, UserHierarchy.depth)
            .join(UserHierarchy, UserHierarchy.ancestor_id == User.id)
            .filter(UserHierarchy.descendant_id == user_id)
            .order_by(UserHierarchy.depth)
            .all()
        )
        return [(user, depth) for user, depth in rows]

    @staticmethod
    def server_block_reason(user: Optional[User], blocked_action: str = "Key usage") -> Optional[str]:
        """
        Message explaining why the user's effective server status is OFF, or None.
        Effective status is OFF when the user or any ancestor is OFF.
        """
        if user is None:
            return None

        chain = HierarchyHelper.ancestors(user.id)
        if not chain:
            chain = [(user, 0)]

        for node, depth in chain:
            if node.server_status is False:
                if depth == 0:
                    return (f"Your server is turned OFF. {blocked_action} is blocked. "
                            "Please contact administrator.")
                return (f"Your parent user's server is turned OFF. {blocked_action} is blocked. "
                        "Please contact administrator.")
        return None

    @staticmethod
    def set_server_status(user: User, status: bool) -> int:
        """Set server_status on the user and every descendant. Returns rows touched."""
        ids = HierarchyHelper.descendant_ids(user.id, include_self=True)
        if user.id not in ids:
            ids.append(user.id)
        affected = (
            User.query.filter(User.id.in_(ids))
            .update({User.server_status: status}, synchronize_session="fetch")
        )
        return affected

    @staticmethod
    def detach(user_id: int) -> None:
        """Drop every closure row that mentions the user."""
        UserHierarchy.query.filter(
            (UserHierarchy.ancestor_id == user_id) | (UserHierarchy.descendant_id == user_id)
        ).delete(synchronize_session=False)

    @staticmethod
    def rebuild() -> int:
        """Recompute the whole table from users.created_by. Returns rows written."""
        UserHierarchy.query.delete(synchronize_session=False)

        users = User.query.all()
        by_name = {u.username: u for u in users}
        written = 0

        for user in users:
            db.session.add(UserHierarchy(ancestor_id=user.id, descendant_id=user.id, depth=0))
            written += 1

            visited = {user.username}
            depth = 1
            parent_name = user.created_by
            while parent_name and parent_name != SYSTEM_ACTOR and depth <= MAX_HIERARCHY_DEPTH:
                parent = by_name.get(parent_name)
                if parent is None or parent.username in visited:
                    break
                visited.add(parent.username)
                db.session.add(UserHierarchy(ancestor_id=parent.id, descendant_id=user.id, depth=depth))
                written += 1
                parent_name = parent.created_by
                depth += 1

        db.session.flush()
        logger.info(f"Rebuilt user hierarchy: {written} rows for {len(users)} users")
        return written
