from parcel_locator.generators.address import AddressGenerator
from parcel_locator.generators.base import CandidateGenerator
from parcel_locator.generators.parcel_scan import ParcelScanGenerator

__all__ = ["AddressGenerator", "CandidateGenerator", "ParcelScanGenerator"]
