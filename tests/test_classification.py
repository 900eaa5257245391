"""
Tests for vision classifier output parsing
"""
import json
from smartpair.classification import parse_classification, load_classification


def test_parse_camel_case_records():
    """Classifier camelCase keys map onto insights"""
    insights, proposals = parse_classification({
        "imageInsights": [
            {
                "url": "https://cdn.example.com/acme/front.jpg",
                "role": "Front",
                "roleConfidence": 0.9,
                "hasVisibleText": True,
                "dominantColor": "Red",
                "textExtracted": "ACME Widget",
                "visualDescription": "red box",
                "categoryPath": "Health > Vitamins",
                "brand": "ACME",
                "product": "Widget",
                "embedding": [0.1, 0.2, 0.3],
            },
            {"url": "back.jpg", "role": "panel", "hasVisibleText": "false", "ocrText": "Supplement Facts"},
            {"role": "front"},
        ],
    })

    assert proposals == []
    assert len(insights) == 2
    front, back = insights
    assert front.image_key == "https://cdn.example.com/acme/front.jpg"
    assert front.role == "front"
    assert front.role_confidence == 0.9
    assert front.has_visible_text is True
    assert front.dominant_color == "red"
    assert front.ocr_text == "ACME Widget"
    assert front.category == "Health > Vitamins"
    assert front.embedding == [0.1, 0.2, 0.3]
    # Unknown role names collapse to 'other'
    assert back.role == "other"
    assert back.has_visible_text is False
    assert back.role_confidence == 0.0


def test_parse_keyed_map_and_groups():
    """Insights keyed by URL plus bundled group proposals"""
    insights, proposals = parse_classification({
        "imageInsights": {"a.jpg": {"role": "back"}},
        "groups": [
            {
                "groupId": "g-acme",
                "brand": "ACME",
                "product": "Widget",
                "folder": "acme",
                "claims": ["vegan", ""],
                "images": ["a.jpg", "b.jpg"],
                "scanSourceImageUrl": "b.jpg",
                "confidence": "0.8",
            },
            {"brand": "Other"},
        ],
    })

    assert insights[0].image_key == "a.jpg"
    assert insights[0].role == "back"
    assert [p.group_id for p in proposals] == ["g-acme", "group_2"]
    acme = proposals[0]
    assert acme.member_image_keys == ["a.jpg", "b.jpg"]
    assert acme.seed_image_key == "b.jpg"
    assert acme.claims == ["vegan"]
    assert acme.confidence == 0.8
    assert acme.folder_hint == "acme"


def test_parse_empty_and_list():
    """Empty payloads and bare lists are accepted"""
    assert parse_classification(None) == ([], [])
    insights, proposals = parse_classification([{"key": "x.jpg", "role": "side"}])
    assert insights[0].role == "side"
    assert proposals == []


def test_load_classification(tmp_path):
    """Test loading classifier output from disk"""
    path = tmp_path / "classification.json"
    path.write_text(json.dumps([{"url": "x.jpg", "role": "front"}]))

    insights, proposals = load_classification(str(path))

    assert insights[0].image_key == "x.jpg"
    assert insights[0].role == "front"
