"""
Tests for configuration loading and typed settings
"""
import pytest
from pathlib import Path
from smartpair.config import load_config, PairingConfig, DEFAULT_ROLE_WEIGHTS


def test_defaults():
    """Missing configuration falls back to the documented defaults"""
    config = PairingConfig.from_dict(None)

    assert config.clustering.threshold == 0.87
    assert config.clustering.degenerate_cutoff == 0.98
    assert config.gates.ocr_brand_min == 1
    assert config.scoring.embedding_weight == 20.0
    assert config.scoring.min_similarity == 0.12
    assert config.hero_back.back_min_similarity == 0.35
    assert config.resolver.margin == 0.06
    assert config.resolver.min_members == 3
    assert config.resolver.duplicate_budget == 1
    assert config.resolver.rank_by == 'similarity'
    assert config.output.max_images == 12
    assert config.scoring.role_weights == DEFAULT_ROLE_WEIGHTS


def test_overrides_are_coerced():
    """String values from YAML/env are coerced to the setting's type"""
    config = PairingConfig.from_dict({
        'clustering': {'threshold': '0.9'},
        'resolver': {'rank_by': 'total', 'min_members': '2'},
        'gates': {'brand': 'false'},
        'network': {'timeout': 10},
        'mystery': {'ignored': True},
    })

    assert config.clustering.threshold == 0.9
    assert config.resolver.rank_by == 'total'
    assert config.resolver.min_members == 2
    assert config.gates.brand is False
    assert config.network.timeout == 10.0


def test_partial_weight_tables_extend_defaults():
    """Overriding one role weight keeps the rest of the table"""
    config = PairingConfig.from_dict({'scoring': {
        'role_weights': {'Front': 20},
        'resolution_tiers': [[1, 2], [3, 5]],
    }})

    assert config.scoring.role_weights['front'] == 20.0
    assert config.scoring.role_weights['back'] == -8
    assert config.scoring.resolution_tiers == [(3.0, 5.0), (1.0, 2.0)]


def test_load_config_substitutes_env(tmp_path, monkeypatch):
    """Environment variables are expanded before parsing"""
    monkeypatch.setenv('SMARTPAIR_TEST_TOKEN', 'secret')
    path = tmp_path / "config.yaml"
    path.write_text("embeddings:\n  provider: http\n  token: ${SMARTPAIR_TEST_TOKEN}\n")

    config = PairingConfig.from_dict(load_config(str(path)))

    assert config.embeddings.provider == 'http'
    assert config.embeddings.token == 'secret'


def test_load_config_missing_file(tmp_path):
    """Unreadable configuration fails fast"""
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "missing.yaml"))


def test_shipped_config_matches_defaults():
    """The repository config.yaml spells out the defaults"""
    path = Path(__file__).resolve().parent.parent / "config.yaml"
    config = PairingConfig.from_dict(load_config(str(path)))
    defaults = PairingConfig()

    assert config.clustering == defaults.clustering
    assert config.gates == defaults.gates
    assert config.resolver == defaults.resolver
    assert config.hero_back == defaults.hero_back
    assert config.scoring.resolution_tiers == defaults.scoring.resolution_tiers
    assert config.scoring.role_weights == defaults.scoring.role_weights
    assert config.embeddings.provider == 'none'
