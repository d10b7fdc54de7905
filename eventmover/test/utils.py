#!/usr/bin/env python
# encoding: utf-8

"""Module contains common utilities used in automated code tests for eventmover modules.

Attributes:
-----------
common_events : list of :class:`~eventmover.events.Event`
    Toy dataset of small two-dimensional events with integer coordinates.


Examples:
---------
It's easy to keep objects in temporary folder and reuse'em if needed:

>>> from eventmover.pairwise import PairwiseEMD
>>> from eventmover.test.utils import get_tmpfile, common_events
>>>
>>> pairwise = PairwiseEMD(common_events, num_threads=1)
>>> temp_path = get_tmpfile('toy_pairwise')
>>> pairwise.save(temp_path)
>>>
>>> loaded = PairwiseEMD.load(temp_path)

"""

import contextlib
import os
import shutil
import tempfile

import numpy as np

from eventmover.events import Event

module_path = os.path.dirname(__file__)


def get_tmpfile(suffix):
    """Get full path to file `suffix` in temporary folder.
    This function doesn't create the file (only generates a unique name).

    Parameters
    ----------
    suffix : str
        Suffix of file.

    Returns
    -------
    str
        Path to `suffix` file in temporary folder.

    """
    return os.path.join(tempfile.gettempdir(), suffix)


@contextlib.contextmanager
def temporary_file(name=""):
    """This context manager creates file `name` in temporary directory and returns its full path.
    Temporary directory with included files will be deleted at the end of context. Note, it won't create file.

    Parameters
    ----------
    name : str
        Filename.

    Yields
    ------
    str
        Path to file `name` in temporary directory.

    """
    tmp = tempfile.mkdtemp()
    try:
        yield os.path.join(tmp, name)
    finally:
        shutil.rmtree(tmp, ignore_errors=True)


def random_event(num_particles, dim=2, seed=None, total_weight=None, spread=1.0):
    """Generate an event with uniformly distributed weights and coordinates.

    Parameters
    ----------
    num_particles : int
        Number of particles.
    dim : int, optional
        Coordinate dimension.
    seed : {int, numpy.random.Generator}, optional
        Random seed or generator.
    total_weight : float, optional
        Rescale the weights to sum to this value.
    spread : float, optional
        Coordinates are drawn from `[0, spread)` in every dimension.

    Returns
    -------
    :class:`~eventmover.events.Event`
        The event.

    """
    rng = np.random.default_rng(seed)
    weights = rng.uniform(0.1, 1.0, size=num_particles)
    if total_weight is not None:
        weights *= total_weight / weights.sum()
    coords = rng.uniform(0.0, spread, size=(num_particles, dim))
    return Event(weights, coords)


def random_events(num_events, min_particles=3, max_particles=8, dim=2, seed=42, equal_weights=False, spread=1.0):
    """Generate a list of random events of varying sizes, see :func:`random_event`.

    With `equal_weights=True` every event has a total weight of 1.

    """
    rng = np.random.default_rng(seed)
    sizes = rng.integers(min_particles, max_particles + 1, size=num_events)
    total_weight = 1.0 if equal_weights else None
    return [random_event(int(size), dim=dim, seed=rng, total_weight=total_weight, spread=spread) for size in sizes]


# small hand-made events with integer coordinates
common_events = [
    Event([1.0], [[0.0, 0.0]]),
    Event([1.0], [[1.0, 0.0]]),
    Event([0.5, 0.5], [[0.0, 0.0], [0.0, 1.0]]),
    Event([1.0, 1.0], [[1.0, 1.0], [2.0, 0.0]]),
    Event([0.25, 0.25, 0.5], [[0.0, 2.0], [1.0, 2.0], [2.0, 2.0]]),
    Event([2.0, 1.0], [[0.0, 1.0], [1.0, 1.0]]),
]
