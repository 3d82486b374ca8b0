#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Settings - Centralized configuration management
"""

from pathlib import Path
from typing import Optional
from pydantic_settings import BaseSettings

from .constants import (
    BATCH_DEFAULT_CONCURRENCY,
    BATCH_MAX_ATTEMPTS,
    BATCH_BACKOFF_BASE_SECONDS,
    BATCH_ITEM_TIMEOUT_SECONDS,
    BATCH_ERROR_LIST_LIMIT,
    BATCH_DB_PATH,
    FREE_TIER_CAPACITY,
    FREE_TIER_REFILL_MS,
    FREE_TIER_TOKENS_PER_REFILL,
    PAID_TIER_CAPACITY,
    PAID_TIER_REFILL_MS,
    PAID_TIER_TOKENS_PER_REFILL,
    WORK_UNIT_TIMEOUT_SECONDS,
)


# Base directory
BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings"""

    # ========== Rate Limiting ==========
    rate_limit_tier: str = "paid"  # free | paid

    free_tier_capacity: int = FREE_TIER_CAPACITY
    free_tier_refill_ms: int = FREE_TIER_REFILL_MS
    free_tier_tokens_per_refill: int = FREE_TIER_TOKENS_PER_REFILL

    paid_tier_capacity: int = PAID_TIER_CAPACITY
    paid_tier_refill_ms: int = PAID_TIER_REFILL_MS
    paid_tier_tokens_per_refill: int = PAID_TIER_TOKENS_PER_REFILL

    # ========== Batch Processing ==========
    batch_default_concurrency: int = BATCH_DEFAULT_CONCURRENCY
    batch_max_attempts: int = BATCH_MAX_ATTEMPTS
    batch_backoff_base_seconds: float = BATCH_BACKOFF_BASE_SECONDS
    batch_item_timeout_seconds: float = BATCH_ITEM_TIMEOUT_SECONDS  # 0 = no timeout
    batch_error_list_limit: int = BATCH_ERROR_LIST_LIMIT

    # ========== Work Unit ==========
    # Endpoint for the HTTP work unit (e.g. the annotation service)
    work_unit_url: Optional[str] = None
    work_unit_api_key: Optional[str] = None
    work_unit_timeout_seconds: float = WORK_UNIT_TIMEOUT_SECONDS

    # ========== Directories ==========
    data_dir: Path = BASE_DIR / "data"
    batch_db_path: Path = BASE_DIR / BATCH_DB_PATH

    class Config:
        env_file = str(BASE_DIR / ".env")
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"  # Allow extra fields from .env that aren't defined in model

    def get_tier_config(self, tier: Optional[str] = None) -> dict:
        """Get rate limiter parameters for a tier (defaults to rate_limit_tier)"""
        tier = tier or self.rate_limit_tier
        tiers = {
            "free": {
                "capacity": self.free_tier_capacity,
                "refill_interval_ms": self.free_tier_refill_ms,
                "tokens_per_refill": self.free_tier_tokens_per_refill,
            },
            "paid": {
                "capacity": self.paid_tier_capacity,
                "refill_interval_ms": self.paid_tier_refill_ms,
                "tokens_per_refill": self.paid_tier_tokens_per_refill,
            },
        }
        if tier not in tiers:
            raise ValueError(f"Unsupported rate limit tier: {tier}")
        return tiers[tier]

    @property
    def item_timeout(self) -> Optional[float]:
        """Per-item timeout in seconds, or None when disabled"""
        if self.batch_item_timeout_seconds and self.batch_item_timeout_seconds > 0:
            return self.batch_item_timeout_seconds
        return None

    def print_config(self):
        """Print configuration summary"""
        print("\n" + "="*70)
        print("CONFIGURATION")
        print("="*70)
        print(f"Rate Limit Tier: {self.rate_limit_tier}")
        print(f"Concurrency:     {self.batch_default_concurrency}")
        print(f"Max Attempts:    {self.batch_max_attempts}")
        print(f"Backoff Base:    {self.batch_backoff_base_seconds}s")
        print(f"Item Timeout:    {self.item_timeout or 'none'}")
        print(f"Database:        {self.batch_db_path}")
        print(f"Work Unit URL:   {self.work_unit_url or 'not set'}")
        print("="*70 + "\n")


# Global settings instance
settings = Settings()
