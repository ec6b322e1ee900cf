"""Ingestion helpers."""

from __future__ import annotations

import os
import pathlib

import yaml
from pydantic import ValidationError

from medsignal.ingest.criteria import CriteriaError, ProductConfig
from medsignal.logic.normalizer import KeywordDictionary

DICTIONARY_PATH = pathlib.Path(os.environ.get("DICTIONARY_PATH", pathlib.Path(__file__).with_name("dictionary.yml")))
PRODUCTS_PATH = pathlib.Path(os.environ.get("PRODUCTS_PATH", pathlib.Path(__file__).with_name("products.yml")))


def load_dictionary(path: pathlib.Path | None = None) -> KeywordDictionary:
    data = yaml.safe_load((path or DICTIONARY_PATH).read_text(encoding="utf-8"))
    return KeywordDictionary.from_config(data or {})


def load_products(path: pathlib.Path | None = None, limit: int | None = None) -> list[ProductConfig]:
    data = yaml.safe_load((path or PRODUCTS_PATH).read_text(encoding="utf-8")) or []
    products = []
    for item in data:
        try:
            products.append(ProductConfig.model_validate(item))
        except ValidationError as exc:
            raise CriteriaError(f"product {item.get('id', '?')}: {exc}") from exc
    if limit:
        return products[:limit]
    return products
