import pytest

from src.config import TimingConfig, UnmaskConfig, apply_env_overrides, load_config
from src.errors import ConfigError


def test_defaults_without_file():
    cfg = load_config(None, environ={})
    assert cfg.timing.settle_ms == 2000
    assert cfg.timing.item_pacing_s == (2.0, 5.0)
    assert cfg.timing.click_pacing_ms == (300, 500)
    assert cfg.browser.headless is False
    assert cfg.store.backend == "supabase"
    assert "{item_id}" in cfg.page.detail_url_template


def test_yaml_values_override_defaults(tmp_path):
    p = tmp_path / "unmasker.yaml"
    p.write_text(
        "timing:\n"
        "  item_pacing_s: [0, 1]\n"
        "  settle_ms: 500\n"
        "page:\n"
        "  detail_url_template: 'https://seller.example/detail/{item_id}'\n"
        "store:\n"
        "  backend: sqlite\n"
        "  db_path: ./out/db.sqlite\n",
        encoding="utf-8",
    )
    cfg = load_config(p, environ={})
    assert cfg.timing.item_pacing_s == (0.0, 1.0)
    assert cfg.timing.settle_ms == 500
    assert cfg.store.backend == "sqlite"
    assert cfg.page.detail_url_template.endswith("{item_id}")


def test_env_overrides():
    cfg = apply_env_overrides(UnmaskConfig(), {
        "UNMASK_STORE_URL": "https://proj.supabase.co",
        "UNMASK_STORE_KEY": "k",
        "UNMASK_OPS_JSON": "1",
    })
    assert cfg.store.url == "https://proj.supabase.co"
    assert cfg.store.key == "k"
    assert cfg.ops.ops_json is True


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError):
        load_config(tmp_path / "nope.yaml", environ={})


@pytest.mark.parametrize("content", [
    "timing: [unclosed\n",                              # invalid YAML
    "- just\n- a list\n",                               # not a mapping
    "timing:\n  item_pacing_s: [5, 1]\n",               # inverted range
    "page:\n  detail_url_template: https://x/detail\n",  # no placeholder
])
def test_invalid_config(tmp_path, content):
    p = tmp_path / "bad.yaml"
    p.write_text(content, encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(p, environ={})


def test_negative_pacing_rejected():
    with pytest.raises(ValueError):
        TimingConfig(click_pacing_ms=(-1, 10))
