"""
This package computes Earth Mover's Distances between weighted point sets ("events"), one pair at a time
or for all pairs of large event collections.

"""

__version__ = "0.1.0.dev0"

import logging

from eventmover import (  # noqa:F401
    distances,
    emd,
    events,
    handlers,
    interfaces,
    network_simplex,
    pairwise,
    preprocessing,
    utils,
)
from eventmover.distances import CallableDistance, EuclideanDistance, PrecomputedDistance, YPhiDistance  # noqa:F401
from eventmover.emd import EMD, EMDError, ExtraParticle, check_emd_status  # noqa:F401
from eventmover.events import ArrayEventProducer, Event, Particle, as_event, events_from_producer  # noqa:F401
from eventmover.handlers import CorrelationDimension, Histogram1DHandler  # noqa:F401
from eventmover.network_simplex import EMDStatus, NetworkSimplex  # noqa:F401
from eventmover.pairwise import EMDPairsStorage, PairwiseEMD, PairwiseEMDError  # noqa:F401
from eventmover.preprocessing import CenterWeightedCentroid  # noqa:F401

logger = logging.getLogger("eventmover")
if not logger.handlers:  # To ensure reload() doesn't add another one
    logger.addHandler(logging.NullHandler())
