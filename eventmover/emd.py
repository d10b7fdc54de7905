#!/usr/bin/env python
# -*- coding: utf-8 -*-
#
# Copyright (C) 2021 RaRe Technologies s.r.o.
# Licensed under the GNU LGPL v2.1 - http://www.gnu.org/licenses/lgpl.html

"""Earth Mover's Distance between two events.

The :class:`~eventmover.emd.EMD` class turns two weighted point sets and a ground distance into a balanced
transportation problem and solves it with the :class:`~eventmover.network_simplex.NetworkSimplex` solver.

.. sourcecode:: pycon

    >>> from eventmover.emd import EMD
    >>>
    >>> emd = EMD(R=1.0, beta=1.0)
    >>> emd(([1.0], [[0.0, 0.0]]), ([1.0], [[1.0, 0.0]]))
    1.0

Events with different total weights are balanced with a dummy ("extra") particle on the lighter side,
carrying the weight difference. Transporting weight to or from the dummy costs `R ** beta` with the default
`extra_particle_policy='cutoff'`, or nothing with `extra_particle_policy='zero'`:

.. sourcecode:: pycon

    >>> emd = EMD(R=5.0)
    >>> emd(([2.0], [[0.0, 0.0]]), ([1.0], [[0.0, 0.0]]))
    5.0
    >>> emd.extra
    <ExtraParticle.One: 1>

With `norm=True` the result is divided by the larger of the two total weights.

The low-level :meth:`~eventmover.emd.EMD.compute` returns the value together with an
:class:`~eventmover.network_simplex.EMDStatus`; calling the object directly raises
:class:`~eventmover.emd.EMDError` for anything but a successful solve.

"""

import enum
import logging
from timeit import default_timer

import numpy as np

from eventmover import utils
from eventmover.distances import EuclideanDistance
from eventmover.events import as_event
from eventmover.network_simplex import (  # noqa:F401
    DEFAULT_EPSILON_LARGE_FACTOR, DEFAULT_N_ITER_MAX, EMDStatus, NetworkSimplex,
)


logger = logging.getLogger(__name__)

DEFAULT_EPSILON_SMALL_FACTOR = 1.0
EXTRA_PARTICLE_POLICIES = ('cutoff', 'zero')

STATUS_MESSAGES = {
    EMDStatus.Empty: "EMDStatus - Empty",
    EMDStatus.SupplyMismatch: "EMDStatus - SupplyMismatch, consider increasing epsilon_large_factor",
    EMDStatus.Unbounded: "EMDStatus - Unbounded",
    EMDStatus.MaxIterReached: "EMDStatus - MaxIterReached, consider increasing n_iter_max",
    EMDStatus.Infeasible: "EMDStatus - Infeasible",
}


class ExtraParticle(enum.IntEnum):
    """Which event, if any, received the dummy particle in the last computation."""
    Neither = -1
    Zero = 0
    One = 1


class EMDError(RuntimeError):
    """An EMD computation ended with a status other than :attr:`EMDStatus.Success`.

    Attributes
    ----------
    status : :class:`~eventmover.network_simplex.EMDStatus`
        The status reported by the solver.

    """
    def __init__(self, status, message=None):
        self.status = EMDStatus(status)
        super(EMDError, self).__init__(message or STATUS_MESSAGES.get(self.status, "EMDStatus - Unknown"))


def check_emd_status(status):
    """Raise :class:`~eventmover.emd.EMDError` with a remediation hint if `status` is not a success.

    Parameters
    ----------
    status : :class:`~eventmover.network_simplex.EMDStatus`
        Status of a solve.

    Raises
    ------
    :class:`~eventmover.emd.EMDError`
        For any status other than :attr:`EMDStatus.Success`.

    """
    if status != EMDStatus.Success:
        raise EMDError(status)


class EMD(utils.SaveLoad):
    """Earth Mover's Distance between pairs of events.

    Parameters
    ----------
    R : float, optional
        Cutoff distance; transporting a unit of weight to or from the dummy particle costs `R ** beta` under
        the 'cutoff' policy. Should be at least half the largest ground distance for the EMD to be a metric.
    beta : float, optional
        Exponent applied to the ground distances before they are used as transportation costs.
    norm : bool, optional
        Divide the result by the larger of the two total event weights.
    ground_distance : :class:`~eventmover.interfaces.GroundDistanceABC`, optional
        Particle distance, :class:`~eventmover.distances.EuclideanDistance` by default. Use
        :class:`~eventmover.distances.PrecomputedDistance` to supply the distances externally.
    extra_particle_policy : {'cutoff', 'zero'}, optional
        Transportation cost to and from the dummy particle: `R ** beta`, or zero.
    do_timing : bool, optional
        Record the wall time of each computation in :attr:`duration`.
    n_iter_max : int, optional
        Maximum number of network simplex pivots.
    epsilon_large_factor : float, optional
        Tolerance factor of the network simplex, see :class:`~eventmover.network_simplex.NetworkSimplex`.
    epsilon_small_factor : float, optional
        Total weights closer than this many machine epsilons (relative) are considered equal, and no dummy
        particle is added.
    preprocessors : iterable of :class:`~eventmover.interfaces.PreprocessorABC`, optional
        Transformations applied to both events before computing distances.

    """
    def __init__(self, R=1.0, beta=1.0, norm=False, ground_distance=None, extra_particle_policy='cutoff',
                 do_timing=False, n_iter_max=DEFAULT_N_ITER_MAX, epsilon_large_factor=DEFAULT_EPSILON_LARGE_FACTOR,
                 epsilon_small_factor=DEFAULT_EPSILON_SMALL_FACTOR, preprocessors=()):
        self.set_R(R)
        self.set_beta(beta)
        self.set_norm(norm)
        if extra_particle_policy not in EXTRA_PARTICLE_POLICIES:
            raise ValueError(
                "extra_particle_policy must be one of %s, got %r" % (EXTRA_PARTICLE_POLICIES, extra_particle_policy)
            )
        self.extra_particle_policy = extra_particle_policy
        self.ground_distance = ground_distance if ground_distance is not None else EuclideanDistance()
        self.do_timing = bool(do_timing)
        self.network_simplex = NetworkSimplex(n_iter_max=n_iter_max, epsilon_large_factor=epsilon_large_factor)
        self.set_network_simplex_params(epsilon_small_factor=epsilon_small_factor)
        self.preprocessors = list(preprocessors)

        self.emd = 0.0
        self.status = None
        self.extra = ExtraParticle.Neither
        self.weightdiff = 0.0
        self.scale = 1.0
        self.duration = 0.0
        self._costs = np.zeros((0, 0))
        self._flows = np.zeros((0, 0))

    def set_R(self, R):
        if not R > 0:
            raise ValueError("R must be positive, got %r" % R)
        self.R = float(R)

    def set_beta(self, beta):
        if not beta >= 0:
            raise ValueError("beta must be non-negative, got %r" % beta)
        self.beta = float(beta)

    def set_norm(self, norm):
        self.norm = bool(norm)

    def set_network_simplex_params(self, n_iter_max=None, epsilon_large_factor=None, epsilon_small_factor=None):
        """Change the solver's iteration cap and numerical tolerances; parameters left as None are kept."""
        if n_iter_max is not None or epsilon_large_factor is not None:
            self.network_simplex = NetworkSimplex(
                n_iter_max=n_iter_max if n_iter_max is not None else self.n_iter_max,
                epsilon_large_factor=(
                    epsilon_large_factor if epsilon_large_factor is not None else self.epsilon_large_factor
                ),
            )
        if epsilon_small_factor is not None:
            if not epsilon_small_factor > 0:
                raise ValueError("epsilon_small_factor must be positive, got %r" % epsilon_small_factor)
            self.epsilon_small_factor = float(epsilon_small_factor)

    @property
    def n_iter_max(self):
        return self.network_simplex.n_iter_max

    @property
    def epsilon_large_factor(self):
        return self.network_simplex.epsilon_large_factor

    def preprocess(self, preprocessor):
        """Add `preprocessor` to the transformations applied to every event; returns `self` for chaining."""
        self.preprocessors.append(preprocessor)
        return self

    def preprocess_event(self, event):
        """Convert `event` to an :class:`~eventmover.events.Event` and apply all preprocessors to it."""
        event = as_event(event)
        for preprocessor in self.preprocessors:
            event = preprocessor(event)
        return event

    def clone(self):
        """Get a new instance with the same configuration and independent solver state.

        The ground distance and the preprocessors are shared, they must not be mutated.

        """
        return EMD(
            R=self.R, beta=self.beta, norm=self.norm, ground_distance=self.ground_distance,
            extra_particle_policy=self.extra_particle_policy, do_timing=self.do_timing,
            n_iter_max=self.n_iter_max, epsilon_large_factor=self.epsilon_large_factor,
            epsilon_small_factor=self.epsilon_small_factor, preprocessors=self.preprocessors,
        )

    @property
    def extra_cost(self):
        """Transportation cost of a unit of weight to or from the dummy particle."""
        if self.extra_particle_policy == 'zero':
            return 0.0
        return self.R ** self.beta

    def _transport_costs(self, dists):
        if self.beta == 1.0:
            return dists
        if self.beta == 0.0:
            return np.where(dists > 0, 1.0, 0.0)
        return np.power(dists, self.beta)

    def compute(self, event0, event1):
        """Compute the EMD between two events, without raising on solver failures.

        Parameters
        ----------
        event0 : {:class:`~eventmover.events.Event`, tuple, numpy.ndarray}
            First event, any format accepted by :func:`~eventmover.events.as_event`.
        event1 : {:class:`~eventmover.events.Event`, tuple, numpy.ndarray}
            Second event.

        Returns
        -------
        (float, :class:`~eventmover.network_simplex.EMDStatus`)
            The EMD and the solver status. The value is 0 for :attr:`EMDStatus.Empty` and NaN
            for the other failures.

        Raises
        ------
        ValueError
            If the events don't fit the ground distance (dimension or size mismatch).

        """
        return self.compute_preprocessed(self.preprocess_event(event0), self.preprocess_event(event1))

    def compute_preprocessed(self, event0, event1):
        """Same as :meth:`compute`, for events that already went through :meth:`preprocess_event`."""
        start = default_timer() if self.do_timing else None

        w0, w1 = event0.total_weight, event1.total_weight
        dists = self.ground_distance(event0.coords, event1.coords)
        costs = self._transport_costs(np.asarray(dists, dtype=np.float64))
        supplies, demands = event0.weights, event1.weights

        # balance the total weights with a dummy particle on the lighter side
        self.weightdiff = w1 - w0
        threshold = self.epsilon_small_factor * np.finfo(np.float64).eps * max(w0, w1)
        if self.weightdiff > threshold:
            self.extra = ExtraParticle.Zero
            supplies = np.append(supplies, self.weightdiff)
            costs = np.vstack([costs, np.full((1, costs.shape[1]), self.extra_cost)])
        elif self.weightdiff < -threshold:
            self.extra = ExtraParticle.One
            demands = np.append(demands, -self.weightdiff)
            costs = np.hstack([costs, np.full((costs.shape[0], 1), self.extra_cost)])
        else:
            self.extra = ExtraParticle.Neither

        self.scale = max(w0, w1) if self.norm and max(w0, w1) > 0 else 1.0
        status, cost = self.network_simplex.solve(supplies, demands, costs)
        self._costs = costs
        self._flows = self.network_simplex.flows() / self.scale

        if status == EMDStatus.Success:
            value = cost / self.scale
        elif status == EMDStatus.Empty:
            value = 0.0
        else:
            value = float('nan')
            logger.debug("EMD computation failed with %s", status.name)

        self.emd, self.status = value, status
        if self.do_timing:
            self.duration = default_timer() - start
        return value, status

    def __call__(self, event0, event1):
        """Compute the EMD between two events.

        Parameters
        ----------
        event0 : {:class:`~eventmover.events.Event`, tuple, numpy.ndarray}
            First event, any format accepted by :func:`~eventmover.events.as_event`.
        event1 : {:class:`~eventmover.events.Event`, tuple, numpy.ndarray}
            Second event.

        Returns
        -------
        float
            The EMD.

        Raises
        ------
        :class:`~eventmover.emd.EMDError`
            If the solve did not succeed; the message suggests a remedy where one exists.

        """
        value, status = self.compute(event0, event1)
        check_emd_status(status)
        return value

    @property
    def n0(self):
        """Number of supply nodes of the last problem, including the dummy particle."""
        return self._costs.shape[0]

    @property
    def n1(self):
        """Number of demand nodes of the last problem, including the dummy particle."""
        return self._costs.shape[1]

    def dists(self):
        """Get the transportation costs of the last problem, shape `(n0, n1)`, dummy row or column included."""
        return self._costs

    def flows(self):
        """Get the optimal flows of the last problem, shape `(n0, n1)`, divided by :attr:`scale`."""
        return self._flows

    def description(self):
        lines = [
            "EMD",
            "  %s" % self.network_simplex,
            "    R - %g" % self.R,
            "    beta - %g" % self.beta,
            "    norm - %s" % str(self.norm).lower(),
            "    extra particle policy - %s" % self.extra_particle_policy,
            "    epsilon_small_factor - %g" % self.epsilon_small_factor,
            "  Ground distance - %s" % self.ground_distance.description(),
        ]
        for preprocessor in self.preprocessors:
            lines.append("  Preprocessor - %s" % preprocessor.description())
        if self.do_timing:
            lines.append("  timing enabled")
        return '\n'.join(lines)

    def __str__(self):
        return "%s<R=%g, beta=%g, norm=%s, ground_distance=%s>" % (
            self.__class__.__name__, self.R, self.beta, self.norm, self.ground_distance,
        )
