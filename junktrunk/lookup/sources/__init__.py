"""External product sources, in resolution priority order."""

from junktrunk.lookup.sources.upcitemdb import UPCItemDBSource
from junktrunk.lookup.sources.openfoodfacts import OpenFoodFactsSource
from junktrunk.lookup.sources.ebay import EbaySource
from junktrunk.lookup.sources.google_search import GoogleSearchSource

__all__ = [
    "UPCItemDBSource",
    "OpenFoodFactsSource",
    "EbaySource",
    "GoogleSearchSource",
]
