from extensions import db
from models import Role, User, UserHierarchy
from licensing.hierarchy import HierarchyHelper


def test_closure_rows_for_chain(make_user):
    owner = User.query.filter_by(username="admin").first()
    admin1 = make_user("admin1", Role.ADMIN)
    res1 = make_user("res1", created_by="admin1")

    ancestors = [(u.username, depth) for u, depth in HierarchyHelper.ancestors(res1.id)]
    assert ancestors == [("res1", 0), ("admin1", 1), ("admin", 2)]
    assert HierarchyHelper.is_descendant(owner.id, res1.id)
    assert not HierarchyHelper.is_descendant(res1.id, admin1.id)
    assert set(HierarchyHelper.descendant_ids(admin1.id)) == {admin1.id, res1.id}


def test_cycle_is_refused(make_user):
    admin1 = make_user("admin1", Role.ADMIN)
    res1 = make_user("res1", created_by="admin1")

    try:
        HierarchyHelper.add_child(admin1.id, res1.id)
    except ValueError as e:
        assert "Cycle" in str(e)
    else:
        raise AssertionError("cycle was accepted")


def test_parent_server_off_message(make_user):
    admin1 = make_user("admin1", Role.ADMIN)
    res1 = make_user("res1", created_by="admin1")
    admin1.server_status = False
    db.session.commit()

    assert HierarchyHelper.server_block_reason(res1, "Key usage") == (
        "Your parent user's server is turned OFF. Key usage is blocked. Please contact administrator."
    )
    assert HierarchyHelper.server_block_reason(admin1, "Key usage").startswith("Your server is turned OFF.")
    assert HierarchyHelper.server_block_reason(User.query.filter_by(username="admin").first()) is None


def test_rebuild_matches_incremental(make_user):
    make_user("admin1", Role.ADMIN)
    make_user("res1", created_by="admin1")
    before = sorted((r.ancestor_id, r.descendant_id, r.depth) for r in UserHierarchy.query.all())

    HierarchyHelper.rebuild()
    db.session.commit()

    after = sorted((r.ancestor_id, r.descendant_id, r.depth) for r in UserHierarchy.query.all())
    assert after == before
