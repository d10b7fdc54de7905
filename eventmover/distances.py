#!/usr/bin/env python
# -*- coding: utf-8 -*-
#
# Copyright (C) 2021 RaRe Technologies s.r.o.
# Licensed under the GNU LGPL v2.1 - http://www.gnu.org/licenses/lgpl.html

"""Ground distances: the cost of moving a unit of weight between two particles.

All ground distances compute the full `(n0, n1)` matrix of particle distances between two events in one
vectorized call, which is what the :class:`~eventmover.network_simplex.NetworkSimplex` solver prices against.

.. sourcecode:: pycon

    >>> import numpy as np
    >>> from eventmover.distances import EuclideanDistance
    >>>
    >>> dist = EuclideanDistance(dim=2)
    >>> dist(np.array([[0.0, 0.0]]), np.array([[3.0, 4.0]]))
    array([[5.]])

"""

import logging

import numpy as np
from scipy.spatial.distance import cdist, squareform

from eventmover.interfaces import GroundDistanceABC


logger = logging.getLogger(__name__)

TWOPI = 2 * np.pi


class EuclideanDistance(GroundDistanceABC):
    """Euclidean distance between particle coordinates in any number of dimensions.

    Parameters
    ----------
    dim : int, optional
        Expected coordinate dimension. None accepts any dimension, as long as both events agree.

    """
    def __init__(self, dim=None):
        self.dim = dim

    def __call__(self, coords0, coords1):
        self.check_dim(coords0)
        self.check_dim(coords1)
        if len(coords0) == 0 or len(coords1) == 0:
            return np.zeros((len(coords0), len(coords1)))
        if coords0.shape[1] != coords1.shape[1]:
            raise ValueError(
                "events have different coordinate dimensions, %i vs %i" % (coords0.shape[1], coords1.shape[1])
            )
        return cdist(coords0, coords1, metric='euclidean')

    def description(self):
        if self.dim is None:
            return "EuclideanDistance"
        return "EuclideanDistance%iD" % self.dim


class YPhiDistance(GroundDistanceABC):
    """Distance in the rapidity-azimuth plane, with the azimuth (second coordinate) periodic in `2 pi`.

    Differences in azimuth are wrapped into `[0, pi]` before the Euclidean norm is taken.

    """
    dim = 2

    def __call__(self, coords0, coords1):
        self.check_dim(coords0)
        self.check_dim(coords1)
        if len(coords0) == 0 or len(coords1) == 0:
            return np.zeros((len(coords0), len(coords1)))
        dy = coords0[:, 0, None] - coords1[None, :, 0]
        dphi = np.abs(coords0[:, 1, None] - coords1[None, :, 1])
        dphi = np.mod(dphi, TWOPI)
        dphi = np.where(dphi > np.pi, TWOPI - dphi, dphi)
        return np.sqrt(dy ** 2 + dphi ** 2)


class CallableDistance(GroundDistanceABC):
    """Ground distance from an arbitrary function of two coordinate vectors.

    The function is evaluated for every pair of particles, which is slow compared to the vectorized
    distances; use it for prototyping metrics.

    Parameters
    ----------
    func : function
        Maps two 1d coordinate arrays to a non-negative float.
    dim : int, optional
        Expected coordinate dimension.

    """
    def __init__(self, func, dim=None):
        self.func = func
        self.dim = dim

    def __call__(self, coords0, coords1):
        self.check_dim(coords0)
        self.check_dim(coords1)
        dists = np.empty((len(coords0), len(coords1)), dtype=np.float64)
        for i, x0 in enumerate(coords0):
            for j, x1 in enumerate(coords1):
                dists[i, j] = self.func(x0, x1)
        if np.any(dists < 0):
            raise ValueError("ground distance %r returned negative values" % self.func)
        return dists

    def description(self):
        return "CallableDistance(%s)" % getattr(self.func, '__name__', repr(self.func))


class PrecomputedDistance(GroundDistanceABC):
    """Externally supplied distances between the particles of two fixed-size events.

    Events are then plain weight vectors; their particles are identified by position.

    Parameters
    ----------
    dists : array-like of float
        Either a `(n0, n1)` matrix, a flat array of length `n0 * n1` (row-major), or, for `n0 == n1 == n`,
        a flat array of length `n * (n - 1) / 2` (condensed, zero diagonal, as produced by
        :func:`scipy.spatial.distance.pdist`) or `n * (n + 1) / 2` (upper triangle including the diagonal).
    n0 : int, optional
        Number of particles of the first event. Inferred for square inputs when left out.
    n1 : int, optional
        Number of particles of the second event.

    Raises
    ------
    ValueError
        If the length of `dists` doesn't match any of the accepted layouts, or distances are negative.

    """
    def __init__(self, dists, n0=None, n1=None):
        self.dists = self._as_matrix(np.asarray(dists, dtype=np.float64), n0, n1)
        if np.any(self.dists < 0):
            raise ValueError("precomputed distances must be non-negative")
        self.dists.setflags(write=False)
        self.n0, self.n1 = self.dists.shape

    @staticmethod
    def _as_matrix(dists, n0, n1):
        if dists.ndim == 2:
            if (n0 is not None and dists.shape[0] != n0) or (n1 is not None and dists.shape[1] != n1):
                raise ValueError("distance matrix of shape %s doesn't match (%s, %s)" % (dists.shape, n0, n1))
            return dists.copy()
        if dists.ndim != 1:
            raise ValueError("distances must be a matrix or a flat array, got shape %s" % (dists.shape,))

        size = len(dists)
        if n0 is not None and n1 is not None:
            if size == n0 * n1:
                return dists.reshape(n0, n1).copy()
            if n0 == n1:
                square = PrecomputedDistance._from_triangle(dists, n0)
                if square is not None:
                    return square
            raise ValueError(
                "got %i precomputed distances, expected %i for %i x %i particles" % (size, n0 * n1, n0, n1)
            )

        # infer a square layout: n*n, n*(n-1)/2 or n*(n+1)/2
        n = int(round(np.sqrt(size)))
        if n * n == size and (n0 is None or n0 == n) and (n1 is None or n1 == n):
            return dists.reshape(n, n).copy()
        n = n0 if n0 is not None else n1
        candidates = [n] if n is not None else range(int(np.sqrt(2 * size)) - 1, int(np.sqrt(2 * size)) + 3)
        # the condensed layout takes precedence when a length fits both triangles
        for diagonal in (False, True):
            for n in candidates:
                square = PrecomputedDistance._from_triangle(dists, n, diagonal=diagonal)
                if square is not None:
                    return square
        raise ValueError("cannot interpret %i precomputed distances as a distance matrix" % size)

    @staticmethod
    def _from_triangle(dists, n, diagonal=None):
        if n < 1:
            return None
        if diagonal is not True and len(dists) == n * (n - 1) // 2:
            return squareform(dists, checks=False) if n > 1 else np.zeros((1, 1))
        if diagonal is not False and len(dists) == n * (n + 1) // 2:
            square = np.zeros((n, n), dtype=np.float64)
            rows, cols = np.triu_indices(n)
            square[rows, cols] = dists
            square[cols, rows] = dists
            return square
        return None

    def __call__(self, coords0, coords1):
        n0, n1 = len(coords0), len(coords1)
        if (n0, n1) != (self.n0, self.n1):
            raise ValueError(
                "precomputed distances are for %i x %i particles, got events of %i and %i particles" %
                (self.n0, self.n1, n0, n1)
            )
        return self.dists

    def description(self):
        return "PrecomputedDistance(%i x %i)" % (self.n0, self.n1)
