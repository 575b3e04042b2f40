from .ebay import EbayAdapter
from .amazon import AmazonAdapter
from .facebook import FacebookAdapter

__all__ = ["EbayAdapter", "AmazonAdapter", "FacebookAdapter"]
