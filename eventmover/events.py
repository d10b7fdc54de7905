#!/usr/bin/env python
# -*- coding: utf-8 -*-
#
# Copyright (C) 2021 RaRe Technologies s.r.o.
# Licensed under the GNU LGPL v2.1 - http://www.gnu.org/licenses/lgpl.html

"""Events: weighted point sets in a feature space, the inputs of every EMD computation.

An :class:`~eventmover.events.Event` holds the particle weights as a 1d array and the particle
coordinates as a 2d array, one row per particle, together with the cached total weight.

.. sourcecode:: pycon

    >>> from eventmover.events import Event
    >>>
    >>> event = Event([1.0, 2.0], [[0.0, 0.0], [1.0, 0.5]])
    >>> event.total_weight
    3.0
    >>> len(event)
    2

Events are usually constructed implicitly, by :func:`~eventmover.events.as_event`, from any of
the accepted input formats: `(weights, coords)` pairs, 2d arrays with the weights in the first column,
sequences of `(weight, coords)` particles, or plain weight vectors for precomputed ground distances.

"""

import logging
from collections import namedtuple

import numpy as np

from eventmover import interfaces


logger = logging.getLogger(__name__)

Particle = namedtuple('Particle', ['weight', 'coords'])
"""A single weighted point. Immutable."""


class Event:
    """Ordered collection of particles with a cached total weight.

    Parameters
    ----------
    weights : array-like of float
        Non-negative particle weights, shape `(n,)`.
    coords : array-like of float, optional
        Particle coordinates, shape `(n, dim)`. Leave out for events used with
        :class:`~eventmover.distances.PrecomputedDistance`, where only the weights matter.

    Raises
    ------
    ValueError
        If the weights are negative or not finite, or the shapes of `weights` and `coords` don't agree.

    """
    __slots__ = ('weights', 'coords', 'total_weight')

    def __init__(self, weights, coords=None):
        weights = np.array(weights, dtype=np.float64).reshape(-1)
        if not np.all(np.isfinite(weights)):
            raise ValueError("event weights must be finite")
        if np.any(weights < 0):
            raise ValueError("event weights must be non-negative")

        if coords is None:
            coords = np.zeros((len(weights), 0), dtype=np.float64)
        else:
            coords = np.array(coords, dtype=np.float64)
            if coords.ndim == 1:
                coords = coords.reshape(len(weights), -1) if len(weights) else coords.reshape(0, 0)
            if coords.ndim != 2 or coords.shape[0] != len(weights):
                raise ValueError(
                    "coords of shape %s don't match %i particle weights" % (coords.shape, len(weights))
                )

        weights.setflags(write=False)
        coords.setflags(write=False)
        self.weights = weights
        self.coords = coords
        self.total_weight = float(weights.sum())

    @classmethod
    def from_particles(cls, particles, dim=None):
        """Build an event from a sequence of `(weight, coords)` pairs.

        Parameters
        ----------
        particles : iterable of (float, sequence of float)
            The particles.
        dim : int, optional
            Coordinate dimension, used to shape the coordinates of an empty event.

        Returns
        -------
        :class:`~eventmover.events.Event`
            The event.

        """
        particles = list(particles)
        if not particles:
            return cls(np.zeros(0), np.zeros((0, dim or 0)))
        weights = [float(weight) for weight, _ in particles]
        coords = [np.atleast_1d(np.asarray(x, dtype=np.float64)) for _, x in particles]
        return cls(weights, np.vstack(coords))

    def with_coords(self, coords):
        """Get a new event with the same weights and new coordinates."""
        return Event(self.weights, coords)

    @property
    def dim(self):
        """Dimension of the particle coordinates."""
        return self.coords.shape[1]

    def __len__(self):
        return len(self.weights)

    def __iter__(self):
        for weight, coords in zip(self.weights, self.coords):
            yield Particle(float(weight), tuple(coords))

    def __getitem__(self, i):
        return Particle(float(self.weights[i]), tuple(self.coords[i]))

    def __eq__(self, other):
        if not isinstance(other, Event):
            return NotImplemented
        return (
            np.array_equal(self.weights, other.weights)
            and self.coords.shape == other.coords.shape
            and np.array_equal(self.coords, other.coords)
        )

    __hash__ = None

    def __getstate__(self):
        return {'weights': self.weights, 'coords': self.coords}

    def __setstate__(self, state):
        self.__init__(state['weights'], state['coords'])

    def __repr__(self):
        return "Event(%i particles, dim=%i, total_weight=%g)" % (len(self), self.dim, self.total_weight)


def _is_weight_vector(obj):
    if isinstance(obj, np.ndarray):
        return obj.ndim == 1
    if np.isscalar(obj):
        return False
    try:
        return all(np.isscalar(item) for item in obj)
    except TypeError:
        return False


def as_event(obj):
    """Convert any of the accepted event formats to an :class:`~eventmover.events.Event`.

    Parameters
    ----------
    obj : {:class:`~eventmover.events.Event`, (array-like, array-like), numpy.ndarray, list of (float, coords)}
        * an event, returned as is;
        * a `(weights, coords)` pair;
        * a 2d array with the particle weights in column 0 and the coordinates in the remaining columns;
        * a 1d array of weights only (for precomputed ground distances);
        * a sequence of `(weight, coords)` particles.

    Returns
    -------
    :class:`~eventmover.events.Event`
        The converted event.

    Raises
    ------
    TypeError
        If `obj` is not in any of the accepted formats.

    """
    if isinstance(obj, Event):
        return obj
    if isinstance(obj, np.ndarray):
        if obj.ndim == 1:
            return Event(obj)
        if obj.ndim == 2:
            return Event(obj[:, 0], obj[:, 1:])
        raise TypeError("cannot interpret array of shape %s as an event" % (obj.shape,))
    if isinstance(obj, tuple) and len(obj) == 2 and _is_weight_vector(obj[0]):
        return Event(obj[0], obj[1])
    try:
        items = list(obj)
    except TypeError:
        raise TypeError("cannot interpret %r as an event" % type(obj).__name__)
    if all(np.isscalar(item) for item in items):
        return Event(items)
    return Event.from_particles(items)


class ArrayEventProducer(interfaces.EventProducerABC):
    """In-memory event source over a list of events, in any format accepted by :func:`as_event`.

    Parameters
    ----------
    events : iterable
        The events.
    max_events : int, optional
        Accept at most this many events.

    """
    def __init__(self, events, max_events=None):
        self.events = [as_event(event) for event in events]
        if max_events is not None:
            self.events = self.events[:max_events]
        self.reset()

    def reset(self):
        self._position = -1

    def next(self):
        if self._position + 1 >= len(self.events):
            self._position = len(self.events)
            return False
        self._position += 1
        return True

    def particles(self):
        if not 0 <= self._position < len(self.events):
            raise IndexError("producer is not positioned on an event, call next() first")
        return list(self.events[self._position])

    @property
    def num_accepted(self):
        return len(self.events)

    def __len__(self):
        return len(self.events)


def events_from_producer(producer, dim=None):
    """Read all events of an :class:`~eventmover.interfaces.EventProducerABC` into a list.

    Parameters
    ----------
    producer : :class:`~eventmover.interfaces.EventProducerABC`
        Event source, rewound before reading.
    dim : int, optional
        Coordinate dimension, used for empty events.

    Returns
    -------
    list of :class:`~eventmover.events.Event`
        The events, in producer order.

    """
    events = []
    producer.reset()
    while producer.next():
        events.append(Event.from_particles(producer.particles(), dim=dim))
    if len(events) != producer.num_accepted:
        logger.warning("producer reported %i accepted events but yielded %i", producer.num_accepted, len(events))
    logger.info("read %i events from %s", len(events), producer.__class__.__name__)
    return events
