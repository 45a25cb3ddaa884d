"""Declarative test catalogs: typed records, locator candidates and datasets."""

from .catalog import TestCatalog, load_catalog, load_dataset
from .dsl import models, registry
from .params import ParameterResolver

__all__ = ["registry", "models", "TestCatalog", "ParameterResolver", "load_catalog", "load_dataset"]
