"""Vendor registry and public exports."""

from .base import FetchRequest, VendorClient
from .csv import CsvVendor
from .frame import FrameVendor
from .splice import SplicedVendor

__all__ = [
    "VendorClient",
    "FetchRequest",
    "CsvVendor",
    "FrameVendor",
    "SplicedVendor",
]
