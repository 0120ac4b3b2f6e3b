"""PhyloGeo: spatial, genetic and viability analytics for conservation planning."""

__version__ = "0.1.0"
