#!/usr/bin/env python
# -*- coding: utf-8 -*-
#
# Copyright (C) 2021 RaRe Technologies s.r.o.
# Licensed under the GNU LGPL v2.1 - http://www.gnu.org/licenses/lgpl.html

"""External EMD handlers: accumulate statistics of EMD values on the fly instead of storing them.

Handlers are plugged into :class:`~eventmover.pairwise.PairwiseEMD`, which then keeps memory use constant
no matter how many pairs are computed:

.. sourcecode:: pycon

    >>> from eventmover.handlers import CorrelationDimension
    >>> from eventmover.pairwise import PairwiseEMD
    >>> from eventmover.test.utils import random_events
    >>>
    >>> corrdim = CorrelationDimension(nbins=20, axis_min=0.01, axis_max=2.0)
    >>> pairwise = PairwiseEMD(random_events(20), external_handler=corrdim)
    >>> dims, errs = corrdim.corrdims()

Both handlers guard their state with a lock, so they can be fed from all sweep threads at once.

"""

import logging
import threading

import numpy as np

from eventmover.interfaces import ExternalEMDHandlerABC


logger = logging.getLogger(__name__)


class Histogram1DHandler(ExternalEMDHandlerABC):
    """Weighted histogram of EMD values, with linear or logarithmic bins.

    Parameters
    ----------
    nbins : int
        Number of bins between `axis_min` and `axis_max`.
    axis_min : float
        Lower edge of the first bin.
    axis_max : float
        Upper edge of the last bin.
    log : bool, optional
        Space the bins logarithmically; `axis_min` must then be positive.

    Notes
    -----
    Two extra bins collect the underflow (values below `axis_min`) and the overflow (values at or above
    `axis_max`). Besides the sum of weights, each bin tracks the sum of squared weights, the variance estimate
    of the bin content.

    """
    def __init__(self, nbins, axis_min, axis_max, log=False):
        super(Histogram1DHandler, self).__init__()
        if nbins < 1:
            raise ValueError("nbins must be positive, got %r" % nbins)
        if not axis_max > axis_min:
            raise ValueError("axis_max must be larger than axis_min, got %r <= %r" % (axis_max, axis_min))
        if log and not axis_min > 0:
            raise ValueError("log axis needs a positive axis_min, got %r" % axis_min)
        self.nbins = int(nbins)
        self.axis_min = float(axis_min)
        self.axis_max = float(axis_max)
        self.log = bool(log)
        if self.log:
            self._edges = np.geomspace(self.axis_min, self.axis_max, self.nbins + 1)
        else:
            self._edges = np.linspace(self.axis_min, self.axis_max, self.nbins + 1)
        # index 0 is the underflow, index nbins + 1 the overflow
        self._vals = np.zeros(self.nbins + 2)
        self._vars = np.zeros(self.nbins + 2)
        self._lock = threading.Lock()

    def _bin_indices(self, values):
        return np.searchsorted(self._edges, values, side='right')

    def observe(self, value, weight=1.0):
        index = int(self._bin_indices(value))
        with self._lock:
            self._vals[index] += weight
            self._vars[index] += weight * weight
            self.num_calls += 1

    def observe_many(self, values, weights=None):
        values = np.asarray(values, dtype=np.float64).reshape(-1)
        weights = np.ones_like(values) if weights is None else np.asarray(weights, dtype=np.float64).reshape(-1)
        indices = self._bin_indices(values)
        vals = np.bincount(indices, weights=weights, minlength=self.nbins + 2)
        variances = np.bincount(indices, weights=weights * weights, minlength=self.nbins + 2)
        with self._lock:
            self._vals += vals
            self._vars += variances
            self.num_calls += len(values)

    def bin_edges(self):
        """Get the `nbins + 1` bin edges."""
        return self._edges.copy()

    def bin_centers(self):
        """Get the bin centers, geometric for logarithmic bins."""
        if self.log:
            return np.sqrt(self._edges[:-1] * self._edges[1:])
        return (self._edges[:-1] + self._edges[1:]) / 2

    def hist_vals_vars(self, overflows=True):
        """Get the bin contents and their variances.

        Parameters
        ----------
        overflows : bool, optional
            Include the underflow and overflow bins, first and last.

        Returns
        -------
        (numpy.ndarray, numpy.ndarray)
            Sums of weights and sums of squared weights per bin.

        """
        with self._lock:
            vals, variances = self._vals.copy(), self._vars.copy()
        if overflows:
            return vals, variances
        return vals[1:-1], variances[1:-1]

    def description(self):
        return "%s(%i %s bins in [%g, %g))" % (
            self.__class__.__name__, self.nbins, 'log' if self.log else 'linear', self.axis_min, self.axis_max,
        )


class CorrelationDimension(Histogram1DHandler):
    """Correlation dimension of a collection of events, from the EMDs between all their pairs.

    The cumulative number of pairs closer than `Q` scales as `Q ** dim` for small `Q`; the correlation
    dimension is the local slope of `log(cumulative count)` versus `log(Q)`, computed between adjacent
    logarithmic bin edges.

    Parameters
    ----------
    nbins : int
        Number of logarithmic bins between `axis_min` and `axis_max`.
    axis_min : float
        Smallest EMD of interest, positive.
    axis_max : float
        Largest EMD of interest.

    """
    def __init__(self, nbins, axis_min, axis_max):
        super(CorrelationDimension, self).__init__(nbins, axis_min, axis_max, log=True)

    def cumulative_vals_vars(self):
        """Get the cumulative counts and variances at each of the `nbins + 1` bin edges.

        The count at an edge is the total weight of all pairs with an EMD below that edge, underflow included.

        """
        vals, variances = self.hist_vals_vars(overflows=True)
        return np.cumsum(vals)[:-1], np.cumsum(variances)[:-1]

    def corrdim_bins(self):
        """Get the `nbins` positions at which :meth:`corrdims` are evaluated: the geometric bin centers."""
        return self.bin_centers()

    def corrdims(self):
        """Get the correlation dimensions and their errors, one per bin.

        Returns
        -------
        (numpy.ndarray, numpy.ndarray)
            Slopes of the log cumulative count between adjacent bin edges, and their statistical errors.
            Bins where the cumulative count is still zero get NaN.

        """
        cumulative, variances = self.cumulative_vals_vars()
        log_edges = np.log(self._edges)
        dlog_q = np.diff(log_edges)
        with np.errstate(divide='ignore', invalid='ignore'):
            log_counts = np.log(cumulative)
            dims = np.diff(log_counts) / dlog_q
            rel_vars = variances / cumulative ** 2
            errs = np.sqrt(rel_vars[1:] + rel_vars[:-1]) / dlog_q
        invalid = (cumulative[:-1] <= 0) | (cumulative[1:] <= 0)
        dims[invalid] = np.nan
        errs[invalid] = np.nan
        return dims, errs
