#!/usr/bin/env python
# -*- coding: utf-8 -*-
#
# Copyright (C) 2021 RaRe Technologies s.r.o.
# Licensed under the GNU LGPL v2.1 - http://www.gnu.org/licenses/lgpl.html

"""Compute Earth Mover's Distances between all pairs of events in a collection, or across two collections.

The main class is :class:`~eventmover.pairwise.PairwiseEMD`. Given one collection of events it computes the EMD
of every unordered pair `{i, j}`, `i < j`, once; given two collections it computes the full cross product:

.. sourcecode:: pycon

    >>> from eventmover.pairwise import PairwiseEMD
    >>> from eventmover.test.utils import random_events
    >>>
    >>> events = random_events(10, seed=1)
    >>> pairwise = PairwiseEMD(events, R=1.0, norm=True, num_threads=2)
    >>> pairwise.emds().shape
    (10, 10)
    >>> pairwise.emds(raw=True).shape  # only the 45 independent values are stored
    (45,)


How It Works
------------
The pairs are numbered by their *rank*: row-major over the strict upper triangle for a single collection
(see :func:`~eventmover.utils.pair_rank`), row-major over the `nevA x nevB` matrix for two collections.
The ranks are cut into contiguous chunks and handed out to a pool of worker threads through a job queue.
Every worker owns a private :class:`~eventmover.emd.EMD` clone, and the storage slot of a pair depends on
its rank only, so the workers never write to the same slot and no locking is needed.

Storage is selected with `storage`, see :class:`~eventmover.pairwise.EMDPairsStorage`. With an
`external_handler`, nothing is stored: every value is pushed to the handler as soon as it is computed, which is
the way to go for collections too large for `n ** 2` memory:

.. sourcecode:: pycon

    >>> from eventmover.handlers import Histogram1DHandler
    >>>
    >>> hist = Histogram1DHandler(nbins=10, axis_min=0.0, axis_max=1.0)
    >>> pairwise = PairwiseEMD(events, R=1.0, norm=True, external_handler=hist)
    >>> vals, variances = hist.hist_vals_vars()

Events are preprocessed once each, before the sweep starts, not once per pair.

"""

import enum
import logging
import math
import threading
from queue import Queue
from timeit import default_timer

import numpy as np
from scipy.spatial.distance import squareform

from eventmover import utils
from eventmover.distances import PrecomputedDistance
from eventmover.emd import EMD, EMDError, STATUS_MESSAGES
from eventmover.events import events_from_producer
from eventmover.interfaces import EventProducerABC
from eventmover.network_simplex import EMDStatus


logger = logging.getLogger(__name__)


class EMDPairsStorage(enum.Enum):
    """Layout of the results of a :class:`~eventmover.pairwise.PairwiseEMD` sweep.

    * `Full`: dense `nevA x nevB` matrix. For a single collection both symmetric entries are written as each
      pair completes.
    * `FullSymmetric`: dense `nev x nev` matrix for a single collection; the workers fill the upper triangle,
      the lower one is mirrored after the sweep.
    * `FlattenedSymmetric`: only the `nev * (nev - 1) / 2` independent values of a single collection, indexed by
      pair rank.
    * `External`: nothing is stored, every value goes to an external handler.

    """
    Full = 'Full'
    FullSymmetric = 'FullSymmetric'
    FlattenedSymmetric = 'FlattenedSymmetric'
    External = 'External'


class PairwiseEMDError(EMDError):
    """Some pairs of a sweep failed and the sweep was configured with `throw_on_error=True`.

    Attributes
    ----------
    num_errors : int
        Number of failed pairs (a lower bound, the sweep stops early).
    num_emds : int
        Number of pairs in the sweep.

    """
    def __init__(self, status, num_errors, num_emds, message=None):
        self.num_errors = num_errors
        self.num_emds = num_emds
        if message is None:
            message = "%i of %i pairs failed, first failure: %s" % (num_errors, num_emds, STATUS_MESSAGES[status])
        super(PairwiseEMDError, self).__init__(status, message)


class _Sweep:
    """State shared by the worker threads of one sweep; read-only except for the result slots."""
    def __init__(self, eventsA, eventsB, weightsA, weightsB, two_event_sets, storage, emds, handler):
        self.eventsA = eventsA
        self.eventsB = eventsB
        self.weightsA = weightsA
        self.weightsB = weightsB
        self.two_event_sets = two_event_sets
        self.storage = storage
        self.emds = emds
        self.handler = handler
        self.abort = threading.Event()


class PairwiseEMD(utils.SaveLoad):
    """Earth Mover's Distances between all pairs of events, computed in parallel.

    Parameters
    ----------
    eventsA : {iterable, :class:`~eventmover.interfaces.EventProducerABC`}, optional
        Events, in any format accepted by :func:`~eventmover.events.as_event`. If given, the EMDs are
        computed right away, see :meth:`compute`.
    eventsB : {iterable, :class:`~eventmover.interfaces.EventProducerABC`}, optional
        Second collection of events. If None, the pairs within `eventsA` are computed.
    emd : :class:`~eventmover.emd.EMD`, optional
        Configured EMD object; each worker thread uses its own clone. Mutually exclusive with `emd_kwargs`.
    num_threads : int, optional
        Number of worker threads, -1 for one per CPU.
    storage : {:class:`~eventmover.pairwise.EMDPairsStorage`, str}, optional
        Result layout. Defaults to `FlattenedSymmetric` for one collection, `Full` for two and `External`
        when an `external_handler` is set.
    throw_on_error : bool, optional
        Abort the sweep and raise :class:`~eventmover.pairwise.PairwiseEMDError` on the first failed pair. If
        False, failed pairs are stored as NaN and reported by :meth:`errored` and :meth:`error_messages`.
    print_every : int, optional
        Log progress every `print_every` pairs if positive, about `-print_every` times per sweep if negative,
        never if zero.
    chunksize : int, optional
        Number of consecutive pairs per job. Chosen from `num_threads` and `print_every` if None.
    external_handler : :class:`~eventmover.interfaces.ExternalEMDHandlerABC`, optional
        Handler receiving every computed value instead of storing it.
    event_weightsA : array-like of float, optional
        Weights of the events in `eventsA`, passed (as products) to the external handler.
    event_weightsB : array-like of float, optional
        Weights of the events in `eventsB`.
    **emd_kwargs
        Parameters of a new :class:`~eventmover.emd.EMD`, such as `R`, `beta`, `norm`, `ground_distance`.

    """
    def __init__(self, eventsA=None, eventsB=None, emd=None, num_threads=-1, storage=None, throw_on_error=False,
                 print_every=-10, chunksize=None, external_handler=None, event_weightsA=None, event_weightsB=None,
                 **emd_kwargs):
        if emd is not None and emd_kwargs:
            raise ValueError("pass either a configured `emd` or EMD parameters, not both")
        self.emd_obj = emd if emd is not None else EMD(**emd_kwargs)
        self.num_threads = utils.effective_n_jobs(num_threads)
        self.requested_storage = EMDPairsStorage(storage) if storage is not None else None
        self.throw_on_error = bool(throw_on_error)
        self.print_every = int(print_every)
        self.chunksize = chunksize
        self.external_handler = external_handler
        self.clear()

        if eventsA is not None:
            self.compute(eventsA, eventsB, event_weightsA=event_weightsA, event_weightsB=event_weightsB)

    def clear(self):
        """Forget the results of the previous sweep."""
        self.nevA = 0
        self.nevB = 0
        self.num_emds = 0
        self.two_event_sets = False
        self.storage = None
        self.errored_pairs = []
        self.duration = 0.0
        self._emds = None
        self._stats = None

    def set_external_handler(self, handler):
        """Push every value of the following sweeps to `handler` instead of storing them."""
        self.external_handler = handler

    def preprocess(self, preprocessor):
        """Add a preprocessor, applied once to every event before the sweep; returns `self` for chaining."""
        self.emd_obj.preprocess(preprocessor)
        return self

    @property
    def num_errors(self):
        return len(self.errored_pairs)

    def _resolve_storage(self, two_event_sets):
        requested = self.requested_storage
        if self.external_handler is not None:
            if requested not in (None, EMDPairsStorage.External):
                raise ValueError("an external handler requires External storage, got %s" % requested.value)
            return EMDPairsStorage.External
        if requested is EMDPairsStorage.External:
            raise ValueError("External storage requires an external handler, see set_external_handler()")
        if requested is None:
            return EMDPairsStorage.Full if two_event_sets else EMDPairsStorage.FlattenedSymmetric
        if two_event_sets and requested is not EMDPairsStorage.Full:
            raise ValueError("%s storage is only valid for a single collection of events" % requested.value)
        return requested

    def _prepare_events(self, events):
        if isinstance(events, EventProducerABC):
            events = events_from_producer(events)
        return [self.emd_obj.preprocess_event(event) for event in events]

    @staticmethod
    def _prepare_weights(weights, nev, name):
        if weights is None:
            return np.ones(nev)
        weights = np.asarray(weights, dtype=np.float64).reshape(-1)
        if len(weights) != nev:
            raise ValueError("got %i %s for %i events" % (len(weights), name, nev))
        return weights

    def _check_events(self, eventsA, eventsB):
        """Fail fast on events the ground distance cannot handle, before any pair is computed."""
        ground_distance = self.emd_obj.ground_distance
        if isinstance(ground_distance, PrecomputedDistance):
            for events, n, name in ((eventsA, ground_distance.n0, 'A'), (eventsB, ground_distance.n1, 'B')):
                for index, event in enumerate(events):
                    if len(event) != n:
                        raise ValueError(
                            "event %i of group %s has %i particles, the precomputed distances expect %i" %
                            (index, name, len(event), n)
                        )
            return

        dims = set()
        for events in (eventsA, eventsB):
            for event in events:
                if len(event):
                    ground_distance.check_dim(event.coords)
                    dims.add(event.dim)
        if len(dims) > 1:
            raise ValueError("events have different coordinate dimensions: %s" % sorted(dims))

    def compute(self, eventsA, eventsB=None, event_weightsA=None, event_weightsB=None):
        """Compute the EMDs of all pairs of `eventsA`, or of all pairs across `eventsA` and `eventsB`.

        Parameters
        ----------
        eventsA : {iterable, :class:`~eventmover.interfaces.EventProducerABC`}
            Events, in any format accepted by :func:`~eventmover.events.as_event`.
        eventsB : {iterable, :class:`~eventmover.interfaces.EventProducerABC`}, optional
            Second collection of events.
        event_weightsA : array-like of float, optional
            Event weights for the external handler.
        event_weightsB : array-like of float, optional
            Event weights for the external handler.

        Raises
        ------
        ValueError
            For events that don't fit the ground distance, or an invalid storage configuration.
        :class:`~eventmover.pairwise.PairwiseEMDError`
            If a pair failed and `throw_on_error` is set.

        """
        self.clear()
        start = default_timer()

        self.two_event_sets = eventsB is not None
        eventsA = self._prepare_events(eventsA)
        eventsB = self._prepare_events(eventsB) if self.two_event_sets else eventsA
        self.nevA, self.nevB = len(eventsA), len(eventsB)
        weightsA = self._prepare_weights(event_weightsA, self.nevA, 'event_weightsA')
        if self.two_event_sets:
            weightsB = self._prepare_weights(event_weightsB, self.nevB, 'event_weightsB')
        else:
            weightsB = weightsA
        self._check_events(eventsA, eventsB)

        self.storage = self._resolve_storage(self.two_event_sets)
        if self.two_event_sets:
            self.num_emds = self.nevA * self.nevB
        else:
            self.num_emds = utils.num_symmetric_pairs(self.nevA)

        if self.storage is EMDPairsStorage.FlattenedSymmetric:
            emds = np.zeros(self.num_emds)
        elif self.storage is EMDPairsStorage.External:
            emds = None
        else:
            emds = np.zeros((self.nevA, self.nevB))

        logger.info(
            "computing %i EMDs between %i and %i events with %i threads, %s storage",
            self.num_emds, self.nevA, self.nevB, self.num_threads, self.storage.value,
        )
        sweep = _Sweep(eventsA, eventsB, weightsA, weightsB, self.two_event_sets, self.storage, emds,
                       self.external_handler)
        errors, exception = self._run_sweep(sweep)

        if self.storage is EMDPairsStorage.FullSymmetric:
            lower = np.tril_indices(self.nevA, -1)
            emds[lower] = emds.T[lower]
        self._emds = emds
        self.errored_pairs = sorted(errors)
        self.duration = default_timer() - start

        if exception is not None:
            raise exception
        if self.errored_pairs:
            if self.throw_on_error:
                raise PairwiseEMDError(self.errored_pairs[0][2], self.num_errors, self.num_emds)
            logger.warning("%i of %i pairs failed, see error_messages()", self.num_errors, self.num_emds)
        logger.info("computed %i EMDs in %.3fs", self.num_emds, self.duration)
        return self

    def _chunksize(self):
        if self.chunksize:
            return int(self.chunksize)
        num_chunks = 4 * self.num_threads
        if self.print_every < 0:
            num_chunks = max(num_chunks, -self.print_every)
        chunksize = int(math.ceil(self.num_emds / num_chunks))
        if self.print_every > 0:
            chunksize = min(chunksize, self.print_every)
        return max(chunksize, 1)

    def _run_sweep(self, sweep, queue_factor=2):
        """Run the worker threads over all pair ranks; return the failed pairs and the first worker exception."""
        if self.num_emds == 0:
            return [], None

        num_workers = min(self.num_threads, self.num_emds)
        job_queue = Queue(maxsize=queue_factor * num_workers)
        progress_queue = Queue(maxsize=(queue_factor + 1) * num_workers)

        workers = [
            threading.Thread(target=self._worker_loop, args=(sweep, job_queue, progress_queue))
            for _ in range(num_workers)
        ]
        workers.append(threading.Thread(
            target=self._job_producer, args=(job_queue, num_workers), kwargs={'chunksize': self._chunksize()},
        ))
        for thread in workers:
            thread.daemon = True  # make interrupting the process with ctrl+c easier
            thread.start()

        errors, exception = self._log_sweep_progress(progress_queue, num_workers)
        for thread in workers:
            thread.join()
        return errors, exception

    def _job_producer(self, job_queue, num_workers, chunksize):
        """Fill the job queue with contiguous ranges of pair ranks."""
        job_no = 0
        for job in utils.chunk_ranges(self.num_emds, chunksize):
            job_queue.put(job)
            job_no += 1

        # give the workers heads up that they can finish -- no more work!
        for _ in range(num_workers):
            job_queue.put(None)
        logger.debug("job loop exiting, total %i jobs", job_no)

    def _iter_pairs(self, start, stop):
        """Yield `(rank, i, j)` for the pair ranks in `[start, stop)`."""
        if self.two_event_sets:
            for k in range(start, stop):
                i, j = divmod(k, self.nevB)
                yield k, i, j
            return

        n = self.nevA
        i, j = utils.pair_unrank(start, n)
        for k in range(start, stop):
            yield k, i, j
            j += 1
            if j == n:
                i += 1
                j = i + 1

    def _worker_loop(self, sweep, job_queue, progress_queue):
        """Compute EMDs for the rank ranges lifted from the job queue."""
        emd_obj = self.emd_obj.clone()
        jobs_processed = 0
        while True:
            job = job_queue.get()
            if job is None:
                progress_queue.put(None)
                break  # no more jobs => quit this worker

            start, stop = job
            errors, exception = [], None
            if not sweep.abort.is_set():
                try:
                    errors = self._do_job(emd_obj, sweep, start, stop)
                except Exception as err:
                    logger.exception("worker failed on pairs %i-%i", start, stop)
                    sweep.abort.set()
                    exception = err
            progress_queue.put((stop - start, errors, exception))  # report back progress
            jobs_processed += 1
        logger.debug("worker exiting, processed %i jobs", jobs_processed)

    def _do_job(self, emd_obj, sweep, start, stop):
        errors = []
        emds, storage, handler = sweep.emds, sweep.storage, sweep.handler
        for k, i, j in self._iter_pairs(start, stop):
            value, status = emd_obj.compute_preprocessed(sweep.eventsA[i], sweep.eventsB[j])
            if status != EMDStatus.Success:
                errors.append((i, j, status))
                value = np.nan
                if self.throw_on_error:
                    sweep.abort.set()
                    break

            if storage is EMDPairsStorage.External:
                if status == EMDStatus.Success:
                    handler.observe(value, sweep.weightsA[i] * sweep.weightsB[j])
            elif storage is EMDPairsStorage.FlattenedSymmetric:
                emds[k] = value
            else:
                emds[i, j] = value
                if storage is EMDPairsStorage.Full and not sweep.two_event_sets:
                    emds[j, i] = value
        return errors

    def _log_sweep_progress(self, progress_queue, num_workers):
        """Collect worker reports until all workers finish, logging progress along the way."""
        errors, exception = [], None
        done = 0
        if self.print_every > 0:
            report_step = self.print_every
        elif self.print_every < 0:
            report_step = max(int(math.ceil(self.num_emds / -self.print_every)), 1)
        else:
            report_step = None
        next_report = report_step
        start = default_timer()

        unfinished_worker_count = num_workers
        while unfinished_worker_count > 0:
            report = progress_queue.get()  # blocks if workers too slow
            if report is None:  # a thread reporting that it finished
                unfinished_worker_count -= 1
                logger.debug("worker thread finished; awaiting finish of %i more threads", unfinished_worker_count)
                continue
            num_pairs, job_errors, job_exception = report
            done += num_pairs
            errors.extend(job_errors)
            if job_exception is not None and exception is None:
                exception = job_exception

            if report_step is not None and (done >= next_report or done == self.num_emds):
                elapsed = default_timer() - start
                logger.info(
                    "PROGRESS: %i/%i EMDs (%.1f%%), %i errors, %.2fs elapsed",
                    done, self.num_emds, 100.0 * done / self.num_emds, len(errors), elapsed,
                )
                while next_report <= done:
                    next_report += report_step
        return errors, exception

    def _check_stored(self):
        if self.storage is None:
            raise ValueError("no EMDs computed yet, call compute() first")
        if self.storage is EMDPairsStorage.External:
            raise ValueError("EMDs were passed to an external handler and not stored")

    def emds(self, raw=False):
        """Get the computed EMDs.

        Parameters
        ----------
        raw : bool, optional
            Return the storage as is: the flat array of pair-ranked values for `FlattenedSymmetric`.
            Otherwise a `nevA x nevB` matrix is returned in all storage modes.

        Returns
        -------
        numpy.ndarray
            EMDs, NaN for failed pairs.

        Raises
        ------
        ValueError
            If nothing was stored.

        """
        self._check_stored()
        if self.storage is EMDPairsStorage.FlattenedSymmetric and not raw:
            if self.nevA < 2:
                return np.zeros((self.nevA, self.nevA))
            return squareform(self._emds, checks=False)
        return self._emds

    def emd(self, i, j):
        """Get the EMD between event `i` of group A and event `j` of group B (or of the single collection)."""
        self._check_stored()
        if not (0 <= i < self.nevA and 0 <= j < self.nevB):
            raise IndexError("pair (%i, %i) out of range for %i x %i events" % (i, j, self.nevA, self.nevB))
        if self.storage is EMDPairsStorage.FlattenedSymmetric:
            if i == j:
                return 0.0
            return float(self._emds[utils.pair_rank(i, j, self.nevA)])
        return float(self._emds[i, j])

    def __getitem__(self, pair):
        i, j = pair
        return self.emd(i, j)

    def _independent_values(self):
        self._check_stored()
        if self.storage is EMDPairsStorage.FlattenedSymmetric or self.two_event_sets:
            return np.asarray(self._emds).reshape(-1)
        return self._emds[np.triu_indices(self.nevA, 1)]

    def _summary(self):
        if self._stats is None:
            values = self._independent_values()
            values = values[~np.isnan(values)]
            if not len(values):
                raise ValueError("no successfully computed EMDs")
            self._stats = (float(values.min()), float(values.max()))
        return self._stats

    def emd_min(self):
        """Smallest stored EMD, failed pairs excluded. Computed on first request."""
        return self._summary()[0]

    def emd_max(self):
        """Largest stored EMD, failed pairs excluded. Computed on first request."""
        return self._summary()[1]

    def errored(self):
        """Did any pair of the last sweep fail?"""
        return bool(self.errored_pairs)

    def error_messages(self):
        """Get one message per failed pair of the last sweep."""
        return ["pair (%i, %i): %s" % (i, j, STATUS_MESSAGES[status]) for i, j, status in self.errored_pairs]

    def description(self):
        storage = self.storage or self.requested_storage
        lines = [
            "PairwiseEMD",
            "  num_threads - %i" % self.num_threads,
            "  storage - %s" % (storage.value if storage is not None else 'default'),
            "  throw_on_error - %s" % str(self.throw_on_error).lower(),
        ]
        if self.external_handler is not None:
            lines.append("  external handler - %s" % self.external_handler.description())
        lines.append('')
        lines.append(self.emd_obj.description())
        return '\n'.join(lines)

    def __str__(self):
        return "%s<%i x %i events, %i EMDs, %s>" % (
            self.__class__.__name__, self.nevA, self.nevB, self.num_emds,
            self.storage.value if self.storage is not None else 'not computed',
        )

    def save(self, *args, **kwargs):
        """Save the results to a file, see :meth:`~eventmover.utils.SaveLoad.save`.

        The external handler is not stored.

        """
        handler, self.external_handler = self.external_handler, None
        try:
            super(PairwiseEMD, self).save(*args, **kwargs)
        finally:
            self.external_handler = handler
