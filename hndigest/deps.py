"""Shared FastAPI dependencies. Tests replace these through app.dependency_overrides."""

from functools import lru_cache

from hndigest.core.config import Settings, get_settings as _get_settings, get_strategy_config as _get_strategy_config
from hndigest.models import StrategyConfig
from hndigest.services.captcha import CaptchaVerifier, TurnstileVerifier
from hndigest.services.fetcher import AlgoliaContentSource, ContentSource
from hndigest.services.mailer import GmailMailer, Mailer
from hndigest.storage.base import Storage, get_storage as _get_storage


def get_settings() -> Settings:
    return _get_settings()


def get_strategy_config() -> StrategyConfig:
    return _get_strategy_config()


def get_storage() -> Storage:
    return _get_storage()


@lru_cache
def get_mailer() -> Mailer:
    return GmailMailer(_get_settings())


@lru_cache
def get_captcha() -> CaptchaVerifier:
    return TurnstileVerifier(_get_settings())


@lru_cache
def get_content_source() -> ContentSource:
    return AlgoliaContentSource(_get_settings())
