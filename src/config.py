"""
Run configuration.

Loaded from an optional YAML file (PyYAML) into pydantic models, then a few
environment overrides are applied. Every value has a working default so a
run with no config file behaves like the browser extension did.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional, Tuple

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from src.errors import ConfigError


class TimingConfig(BaseModel):
    """All delays in milliseconds unless the name says seconds."""
    navigation_timeout_ms: int = 15000
    settle_ms: int = 2000
    landing_wait_ms: int = 3000
    after_disclosure_ms: int = 2000
    click_pacing_ms: Tuple[int, int] = (300, 500)
    item_pacing_s: Tuple[float, float] = (2.0, 5.0)

    @model_validator(mode='after')
    def check_ranges(self):
        for name in ('click_pacing_ms', 'item_pacing_s'):
            lo, hi = getattr(self, name)
            if lo < 0 or hi < lo:
                raise ValueError(f'{name} must be a non-negative (low, high) range')
        return self


class PageConfig(BaseModel):
    landing_url: str = "https://seller-my.tiktok.com/order"
    detail_url_template: str = "https://seller-my.tiktok.com/order/detail?order_no={item_id}&shop_region=MY"
    detail_selectors: List[str] = Field(default_factory=lambda: ['[class*="order-detail"]'])
    detail_url_marker: str = "order/detail"
    login_url_markers: List[str] = Field(default_factory=lambda: ["login", "signin", "passport"])

    @model_validator(mode='after')
    def check_template(self):
        if '{item_id}' not in self.detail_url_template:
            raise ValueError('detail_url_template must contain {item_id}')
        return self


class ExtractionConfig(BaseModel):
    phone_country_code: str = "60"
    address_keywords: List[str] = Field(default_factory=lambda: [
        "jalan", "jln", "lorong", "taman", "blok", "unit", "no.", "floor",
        "lot", "persiaran", "street", "road", "avenue",
    ])
    section_labels: List[str] = Field(default_factory=lambda: [
        "shipping to", "shipping address", "recipient", "recipient info",
        "buyer", "buyer info", "customer", "customer info", "contact",
        "name", "phone", "phone number", "mobile", "address", "full address",
        "delivery address", "copy", "edit", "view", "show", "reveal",
    ])


class StoreConfig(BaseModel):
    backend: str = "supabase"
    url: Optional[str] = None
    key: Optional[str] = None
    timeout_s: float = 15.0
    db_path: Optional[str] = None


class BrowserConfig(BaseModel):
    headless: bool = False
    user_data_dir: Optional[str] = None
    timeout_ms: int = 20000
    user_agent: Optional[str] = None


class OpsConfig(BaseModel):
    ops_json: bool = False
    log_path: Optional[str] = None


class UnmaskConfig(BaseModel):
    timing: TimingConfig = Field(default_factory=TimingConfig)
    page: PageConfig = Field(default_factory=PageConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    ops: OpsConfig = Field(default_factory=OpsConfig)


def apply_env_overrides(cfg: UnmaskConfig, environ: Optional[dict] = None) -> UnmaskConfig:
    env = os.environ if environ is None else environ
    if env.get("UNMASK_STORE_URL"):
        cfg.store.url = env["UNMASK_STORE_URL"]
    if env.get("UNMASK_STORE_KEY"):
        cfg.store.key = env["UNMASK_STORE_KEY"]
    if env.get("UNMASK_OPS_JSON", "0") == "1":
        cfg.ops.ops_json = True
    return cfg


def load_config(path: Optional[Path] = None, environ: Optional[dict] = None) -> UnmaskConfig:
    """Read YAML config (if given) and apply environment overrides.

    Raises ConfigError when an explicit path is missing, is not valid YAML,
    or does not validate.
    """
    data: dict = {}
    if path is not None:
        path = Path(path)
        if not path.exists() or not path.is_file():
            raise ConfigError(f"file not found: {path}")
        try:
            with path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"invalid YAML in {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"top level of {path} must be a mapping")
    try:
        cfg = UnmaskConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(str(e)) from e
    return apply_env_overrides(cfg, environ)
