#!/usr/bin/env python
# -*- coding: utf-8 -*-
#
# Copyright (C) 2021 RaRe Technologies s.r.o.
# Licensed under the GNU LGPL v2.1 - http://www.gnu.org/licenses/lgpl.html

"""Basic interfaces used across the whole eventmover package.

These interfaces are used for supplying events, computing ground distances, preprocessing events
and consuming computed EMDs.

The interfaces are realized as abstract base classes. This means some functionality is already
provided in the interface itself, and subclasses should inherit from these interfaces
and implement the missing methods.

"""

import logging

import numpy as np

from eventmover import utils


logger = logging.getLogger(__name__)


class EventProducerABC(utils.SaveLoad):
    """Interface for sequential event sources, such as readers of event files.

    A producer is rewound with :meth:`reset`, advanced with :meth:`next` and queried for the
    particles of the current event with :meth:`particles`:

    .. sourcecode:: pycon

        >>> from eventmover.events import ArrayEventProducer
        >>>
        >>> producer = ArrayEventProducer([[(1.0, (0.0, 0.0))], [(2.0, (0.5, 0.5))]])
        >>> producer.reset()
        >>> while producer.next():
        ...     particles = producer.particles()  # do something with the particles...

    Iterating over a producer yields the particle sequences of all accepted events, from the start.

    """
    def reset(self):
        """Rewind the producer to before the first event."""
        raise NotImplementedError('cannot instantiate abstract base class')

    def next(self):
        """Advance to the next event.

        Returns
        -------
        bool
            False once the producer is exhausted.

        """
        raise NotImplementedError('cannot instantiate abstract base class')

    def particles(self):
        """Get the particles of the current event.

        Returns
        -------
        list of (float, sequence of float)
            The `(weight, coords)` pairs of the current event.

        """
        raise NotImplementedError('cannot instantiate abstract base class')

    @property
    def num_accepted(self):
        """Number of events accepted by this producer so far."""
        raise NotImplementedError('cannot instantiate abstract base class')

    def __iter__(self):
        self.reset()
        while self.next():
            yield self.particles()


class GroundDistanceABC:
    """Interface for ground distances, the cost of transporting a unit of weight between two particles.

    A ground distance maps the coordinates of two events to the matrix of their pairwise particle distances.
    It must be deterministic and symmetric, otherwise the symmetric storage modes of
    :class:`~eventmover.pairwise.PairwiseEMD` are not valid.

    Attributes
    ----------
    dim : int or None
        Expected dimension of the particle coordinates, None if any dimension is accepted.

    """
    dim = None

    def __call__(self, coords0, coords1):
        """Compute the distances between all particles of two events.

        Parameters
        ----------
        coords0 : numpy.ndarray
            Coordinates of the first event, shape `(n0, dim)`.
        coords1 : numpy.ndarray
            Coordinates of the second event, shape `(n1, dim)`.

        Returns
        -------
        numpy.ndarray
            Non-negative distances, shape `(n0, n1)`.

        """
        raise NotImplementedError('cannot instantiate abstract base class')

    def check_dim(self, coords):
        """Raise ValueError if `coords` have a dimension different from :attr:`dim`."""
        if self.dim is None or coords.shape[0] == 0:
            return
        if coords.ndim != 2 or coords.shape[1] != self.dim:
            raise ValueError(
                "%s expects %i-dimensional particle coordinates, got array of shape %s" %
                (self.__class__.__name__, self.dim, coords.shape)
            )

    def description(self):
        return self.__class__.__name__

    def __str__(self):
        return self.description()


class PreprocessorABC:
    """Interface for transformations applied to each event before any distance is computed.

    Preprocessors are called with an :class:`~eventmover.events.Event` and return the transformed event.
    They must not depend on other events, so that :class:`~eventmover.pairwise.PairwiseEMD`
    can apply them once per event.

    """
    def __call__(self, event):
        """Transform `event`.

        Parameters
        ----------
        event : :class:`~eventmover.events.Event`
            Input event.

        Returns
        -------
        :class:`~eventmover.events.Event`
            Transformed event.

        """
        raise NotImplementedError('cannot instantiate abstract base class')

    def description(self):
        return self.__class__.__name__

    def __str__(self):
        return self.description()


class ExternalEMDHandlerABC:
    """Interface for observers of computed EMD values.

    :class:`~eventmover.pairwise.PairwiseEMD` can push every EMD it computes into a handler instead
    of storing it, which keeps the memory use of a sweep constant.

    Warnings
    --------
    :meth:`observe` is called from the sweep's worker threads, concurrently and in no particular order.
    Synchronization is the responsibility of the handler, the driver does not lock around it.

    """
    def __init__(self):
        self.num_calls = 0

    def observe(self, value, weight=1.0):
        """Consume one EMD value.

        Parameters
        ----------
        value : float
            The EMD of one pair of events.
        weight : float, optional
            Weight of the pair, the product of the two event weights.

        """
        raise NotImplementedError('cannot instantiate abstract base class')

    def observe_many(self, values, weights=None):
        """Consume a batch of EMD values, by default one :meth:`observe` call per value."""
        values = np.asarray(values, dtype=np.float64)
        if weights is None:
            weights = np.ones_like(values)
        for value, weight in zip(values, np.asarray(weights, dtype=np.float64)):
            self.observe(value, weight)

    def __call__(self, value, weight=1.0):
        self.observe(value, weight)

    def description(self):
        return self.__class__.__name__

    def __str__(self):
        return self.description()
