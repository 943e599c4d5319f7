from subly.business.catalog.models import CatalogProduct, CatalogTax

__all__ = ["CatalogProduct", "CatalogTax"]
