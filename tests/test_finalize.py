"""
Tests for ordering, caps and orphan extraction
"""
from smartpair.config import OutputSettings, ResolverSettings
from smartpair.finalize import OrderingFinalizer, empty_group_warning
from smartpair.index import InsightIndex
from smartpair.models import AssignmentCandidate, Image, ProductGroup
from smartpair.resolver import Assignment
from smartpair.scoring import ScoringEngine


def make_finalizer(keys, output=None, resolver=None):
    index = InsightIndex()
    for key in keys:
        index.add_image(Image(key=key, url=key, name=key))
    return index, OrderingFinalizer(index, ScoringEngine(index), output, resolver)


def sims(gid, table):
    return {key: AssignmentCandidate(key, gid, similarity=sim) for key, sim in table.items()}


def test_order_members():
    """Hero first, back second, then by similarity"""
    _, finalizer = make_finalizer(["c1", "b", "h", "c2"])
    group = ProductGroup("g", hero_image_key="h", back_image_key="b")

    ordered = finalizer.order_members(group, ["c1", "b", "h", "c2", "c1"], sims("g", {"c1": 0.5, "c2": 0.9, "b": 0.7}))

    assert ordered == ["h", "b", "c2", "c1"]


def test_order_members_tie_breaks():
    """Equal similarity falls back to file name bias, then scan order"""
    _, finalizer = make_finalizer(["x.jpg", "back.jpg", "front.jpg"])
    group = ProductGroup("g")

    ordered = finalizer.order_members(group, ["x.jpg", "back.jpg", "front.jpg"], {})

    assert ordered == ["front.jpg", "x.jpg", "back.jpg"]


def test_cap():
    """Groups never exceed the image cap"""
    keys = [f"k{i:02d}" for i in range(15)]
    _, finalizer = make_finalizer(keys)
    group = ProductGroup("g", hero_image_key="k14", back_image_key="k13")
    scores = sims("g", {key: 1.0 - i * 0.01 for i, key in enumerate(keys)})

    ordered = finalizer.order_members(group, keys, scores)

    assert len(ordered) == 12
    assert ordered[:3] == ["k14", "k13", "k00"]


def test_small_pool_fill():
    """Small eligible pools yield exactly min(2, eligible) images"""
    _, finalizer = make_finalizer(["a", "b", "c"])
    group = ProductGroup("g")

    assert finalizer.apply_small_pool(group, ["a"], ["a", "b"], {}, {}) == ["a", "b"]
    assert finalizer.apply_small_pool(group, ["a", "b", "c"], ["a", "b", "c"], {}, {}) == ["a", "b", "c"]
    assert finalizer.apply_small_pool(group, [], ["c"], {}, {}) == ["c"]


def test_small_pool_respects_duplicate_budget():
    """Images claimed elsewhere are only taken within the budget"""
    _, finalizer = make_finalizer(["a", "b"], resolver=ResolverSettings(duplicate_budget=1))
    group = ProductGroup("g")

    duplicates = {}
    assert finalizer.apply_small_pool(group, ["a"], ["a", "b"], {"b": "other"}, duplicates) == ["a", "b"]
    assert duplicates == {"g": 1}

    spent = {"g": 1}
    assert finalizer.apply_small_pool(group, ["a"], ["a", "b"], {"b": "other"}, spent) == ["a"]


def test_finalize_promotes_and_warns():
    """Groups without a hero promote their best member; empty groups warn"""
    index, finalizer = make_finalizer(["a", "b", "c", "d"])
    lost = ProductGroup("lost", brand="Acme")
    empty = ProductGroup("empty", brand="Zeta", product_name="Drops", hero_image_key="d")
    assignment = Assignment(
        members={"lost": ["a", "b", "c"], "empty": []},
        owner={"a": "lost", "b": "lost", "c": "lost"},
    )
    scores = {"lost": sims("lost", {"a": 0.4, "b": 0.8, "c": 0.6})}

    groups, warnings = finalizer.finalize([lost, empty], assignment, {"lost": ["a", "b", "c"]}, scores)

    assert lost.hero_image_key == "b"
    assert lost.member_image_keys == ["b", "c", "a"]
    assert index.insight("b").role == "front"
    assert empty.member_image_keys == []
    assert empty.hero_image_key is None
    assert warnings == [empty_group_warning(empty)]
    assert "Zeta Drops" in warnings[0]


def test_finalize_back_claimed_elsewhere():
    """A back owned by another group is dropped rather than duplicated"""
    _, finalizer = make_finalizer(["h", "b", "x", "y"])
    group = ProductGroup("g1", hero_image_key="h", back_image_key="b")
    assignment = Assignment(
        members={"g1": ["h", "x", "y"], "g2": ["b"]},
        owner={"h": "g1", "x": "g1", "y": "g1", "b": "g2"},
    )

    finalizer.finalize([group], assignment, {"g1": ["h", "b", "x", "y"]}, {})

    assert group.back_image_key is None
    assert "b" not in group.member_image_keys


def test_finalize_degraded():
    """Without embeddings claims are exclusive and heroes lock first"""
    _, finalizer = make_finalizer(["h", "a", "c", "d"])
    g1 = ProductGroup("g1", hero_image_key="h")
    g2 = ProductGroup("g2", hero_image_key="h")
    pools = {"g1": ["h", "a"], "g2": ["h", "c", "d"]}

    groups, warnings = finalizer.finalize_degraded([g1, g2], pools, {})

    assert g1.member_image_keys == ["h", "a"]
    assert g2.hero_image_key == "c"
    assert g2.member_image_keys == ["c", "d"]
    assert len(warnings) == 1
    assert "already the hero of g1" in warnings[0]


def test_orphan_reasons():
    """Each left-out image says why"""
    _, finalizer = make_finalizer(["kept", "capped", "gated", "loose"])
    group = ProductGroup("g", member_image_keys=["kept"])
    raw_pools = {"g": ["kept", "capped", "gated"]}
    pools = {"g": ["kept", "capped"]}
    assignment = Assignment(members={"g": ["kept", "capped"]})

    orphans = finalizer.orphans([group], raw_pools, pools, assignment)

    assert {o.image_key: o.reason for o in orphans} == {
        "capped": "capped",
        "gated": "gated-out",
        "loose": "unassigned",
    }

    degraded = finalizer.orphans([group], raw_pools, pools)
    assert {o.image_key: o.reason for o in degraded}["capped"] == "lost-conflict"


def test_custom_output_settings():
    _, finalizer = make_finalizer(["a", "b", "c", "d"], output=OutputSettings(max_images=3, small_pool=1))
    group = ProductGroup("g", hero_image_key="a")

    ordered = finalizer.order_members(group, ["a", "b", "c", "d"], {})

    assert ordered == ["a", "b", "c"]
    assert finalizer.apply_small_pool(group, ["a", "b"], ["a"], {}, {}) == ["a"]
