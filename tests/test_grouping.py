"""
Tests for candidate group building
"""
import math
import hashlib
import pytest
from smartpair.config import PairingConfig
from smartpair.grouping import CandidateGroupBuilder, FOLDER_FALLBACK_WARNING, cluster_name
from smartpair.index import InsightIndex
from smartpair.models import Image, ImageInsight, ProductGroup


def make_index(specs):
    """Build an index from (key, folder, insight kwargs or None) tuples"""
    index = InsightIndex()
    for key, folder, insight in specs:
        name = key.split('/')[-1]
        index.add_image(Image(key=key, url=key, folder=folder, name=name))
        if insight is not None:
            index.add_insight(ImageInsight(image_key=key, **insight))
    return index


def cluster_vector(center: int, i: int, dim: int = 8):
    """Unit vector sharing 0.95 similarity with others of the same center"""
    vec = [0.0] * dim
    vec[center] = math.sqrt(0.95)
    vec[2 + i] = math.sqrt(0.05)
    return vec


def angle_vector(degrees: float):
    rad = math.radians(degrees)
    return [math.cos(rad), math.sin(rad)]


def test_identity_groups():
    """Images with the same normalized brand/product share a group"""
    index = make_index([
        ("a.jpg", "", {"brand": "Acme", "product": "Widget", "role_confidence": 0.8}),
        ("b.jpg", "", {"brand": "Other", "product": "Thing", "role_confidence": 0.5}),
        ("c.jpg", "", {"brand": " ACME ", "product": "widget", "role_confidence": 0.4}),
        ("d.jpg", "", {"brand": "unknown", "product": "Widget"}),
        ("e.jpg", "", None),
    ])

    groups = CandidateGroupBuilder(index).from_identities()

    assert [g.member_image_keys for g in groups] == [["a.jpg", "c.jpg"], ["b.jpg"]]
    acme = groups[0]
    assert acme.brand == "Acme"
    assert acme.product_name == "Widget"
    assert acme.seed_image_key == "a.jpg"
    assert acme.confidence == pytest.approx(0.6)
    assert acme.group_id == "vision_" + hashlib.sha1(b"acme|widget").hexdigest()[:10]
    assert acme.source == "classification"


def test_identity_from_ocr_patterns():
    """Caller patterns identify images the classifier could not"""
    config = PairingConfig.from_dict({'classification': {
        'brand_patterns': [r"brand:\s*(\w+)"],
        'product_patterns': [r"product:\s*(\w+)"],
    }})
    index = make_index([
        ("a.jpg", "", {"ocr_text": "Brand: Zeta  Product: Drops"}),
        ("b.jpg", "", {"ocr_text": "brand: zeta"}),
        ("c.jpg", "", {"ocr_text": "nothing useful"}),
    ])
    builder = CandidateGroupBuilder(index, config)

    assert builder.identity_of("a.jpg") == ("Zeta", "Drops")
    assert builder.identity_of("b.jpg") == ("zeta", "zeta")
    assert builder.identity_of("c.jpg") == ("", "")


def test_proposals_used_when_no_identities():
    """Bundled proposals resolve URLs onto canonical keys"""
    index = make_index([("a.jpg", "", None), ("b.jpg", "", None)])
    proposal = ProductGroup(
        group_id="g1",
        brand="Acme",
        member_image_keys=["https://cdn.example.com/x/A.jpg", "missing.jpg", "b.jpg"],
        seed_image_key="https://cdn.example.com/x/b.jpg",
    )

    groups, warnings = CandidateGroupBuilder(index).build([proposal])

    assert warnings == []
    assert len(groups) == 1
    assert groups[0].member_image_keys == ["a.jpg", "b.jpg"]
    assert groups[0].seed_image_key == "b.jpg"
    assert groups[0].source == "proposal"


def test_two_tight_clusters():
    """Six images in two tight clusters give two groups of three"""
    order = [("a1", 0, 0), ("b1", 1, 1), ("a2", 0, 2), ("b2", 1, 3), ("a3", 0, 4), ("b3", 1, 5)]
    index = make_index([(key, "", {"embedding": cluster_vector(c, i)}) for key, c, i in order])

    groups, warnings = CandidateGroupBuilder(index).build()

    assert warnings == []
    assert [g.member_image_keys for g in groups] == [["a1", "a2", "a3"], ["b1", "b2", "b3"]]
    assert all(g.group_id.startswith("clip_") for g in groups)
    assert all(g.source == "clustering" for g in groups)
    assert groups[0].confidence == pytest.approx(0.95)
    assert [g.product_name for g in groups] == ["a1", "b1"]


def test_complete_linkage_does_not_chain():
    """A joins only when similar to every member, not just the nearest"""
    index = make_index([
        ("a", "", {"embedding": angle_vector(0)}),
        ("b", "", {"embedding": angle_vector(25.84)}),
        ("c", "", {"embedding": angle_vector(51.68)}),
    ])

    groups = CandidateGroupBuilder(index).cluster_by_embeddings()

    assert [g.member_image_keys for g in groups] == [["a", "b"], ["c"]]
    assert groups[1].confidence == 0.0


def test_color_penalty_and_text_blend():
    """Differing colours dampen similarity; shared OCR lifts it"""
    text = "acme omega fish oil softgels"
    index = make_index([
        ("a", "", {"embedding": angle_vector(0), "dominant_color": "red"}),
        ("b", "", {"embedding": angle_vector(math.degrees(math.acos(0.9))), "dominant_color": "blue"}),
        ("c", "", {"embedding": angle_vector(math.degrees(math.acos(0.8))), "ocr_text": text}),
        ("d", "", {"embedding": angle_vector(0), "ocr_text": text, "dominant_color": "multi"}),
    ])

    matrix = CandidateGroupBuilder(index).pair_similarity(["a", "b", "c", "d"])

    assert matrix[0, 1] == pytest.approx(0.81)
    assert matrix[2, 3] == pytest.approx(0.8 * 0.7 + 0.3)
    # 'multi' never triggers the colour penalty
    assert matrix[0, 3] == pytest.approx(1.0)


def test_degenerate_embeddings_fall_back_to_folders():
    """Identical vectors never produce one giant cluster"""
    index = make_index([
        (f"p{i}/img{i}.jpg", f"p{i}", {"embedding": [0.3, 0.4, 0.5]}) for i in range(4)
    ])
    builder = CandidateGroupBuilder(index)

    assert builder.cluster_by_embeddings() == []
    groups, warnings = builder.build()

    assert len(groups) == 4
    assert all(g.source == "folder" for g in groups)
    assert any("degenerate" in w for w in warnings)
    assert FOLDER_FALLBACK_WARNING in warnings


def test_no_embeddings_skip_clustering():
    """Clustering without vectors returns nothing and warns nothing"""
    index = make_index([("a.jpg", "", {}), ("b.jpg", "", None)])
    builder = CandidateGroupBuilder(index)

    assert builder.cluster_by_embeddings() == []
    assert builder.warnings == []


def test_folder_groups():
    """One group per folder, sorted by file name and capped"""
    specs = [("acme/b.jpg", "acme", None), ("acme/A.jpg", "acme", None), ("root.jpg", "", None)]
    specs += [(f"bulk/img{i:02d}.jpg", "bulk", None) for i in range(14, 0, -1)]
    index = make_index(specs)

    groups = CandidateGroupBuilder(index).folder_groups()

    by_folder = {g.folder_hint: g for g in groups}
    assert by_folder["acme"].member_image_keys == ["acme/A.jpg", "acme/b.jpg"]
    assert by_folder["acme"].product_name == "acme"
    assert by_folder["acme"].confidence == 0.1
    assert by_folder[""].product_name == "(root)"
    bulk = by_folder["bulk"].member_image_keys
    assert len(bulk) == 12
    assert bulk[0] == "bulk/img01.jpg"
    assert all(g.group_id.startswith("fallback_") for g in groups)


def test_cluster_name():
    """Cluster groups are named after their first file"""
    assert cluster_name("serum_03.jpg") == "serum"
    assert cluster_name("Fish_Oil_front.png") == "Fish_Oil_front"
    assert cluster_name("IMG_1234") == "IMG"
    assert cluster_name("") == ""
