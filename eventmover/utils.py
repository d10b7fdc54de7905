#!/usr/bin/env python
# -*- coding: utf-8 -*-
#
# Copyright (C) 2021 RaRe Technologies s.r.o.
# Licensed under the GNU LGPL v2.1 - http://www.gnu.org/licenses/lgpl.html

"""This module contains various general utility functions: persistence, pair ranking and chunking."""

import logging
import math
import os
import pickle as _pickle

import numpy as np
from smart_open import open


logger = logging.getLogger(__name__)


def pair_rank(i, j, n):
    """Get the position of the unordered pair `{i, j}` in the condensed (flattened symmetric) storage.

    The ordering is the one used by :func:`scipy.spatial.distance.squareform`: row-major over the
    strict upper triangle of an `n x n` matrix.

    Parameters
    ----------
    i : int
        First index.
    j : int
        Second index, must differ from `i`.
    n : int
        Number of items in the collection.

    Returns
    -------
    int
        Offset of the pair, in `[0, n * (n - 1) / 2)`.

    Raises
    ------
    ValueError
        If `i == j` or either index is out of range.

    """
    if i == j:
        raise ValueError("diagonal pair (%i, %i) has no condensed rank" % (i, j))
    if i > j:
        i, j = j, i
    if i < 0 or j >= n:
        raise ValueError("pair (%i, %i) out of range for %i items" % (i, j, n))
    return n * i - i * (i + 1) // 2 + (j - i - 1)


def pair_unrank(k, n):
    """Inverse of :func:`~eventmover.utils.pair_rank`: get the pair `(i, j)`, `i < j`, stored at offset `k`."""
    num_pairs = n * (n - 1) // 2
    if not 0 <= k < num_pairs:
        raise ValueError("rank %i out of range for %i items" % (k, n))
    # number of pairs at or after row i is (n - i) * (n - i - 1) / 2
    remaining = num_pairs - k
    m = (1 + math.isqrt(8 * remaining - 7)) // 2
    while m * (m - 1) // 2 < remaining:
        m += 1
    while (m - 1) * (m - 2) // 2 >= remaining:
        m -= 1
    i = n - m
    j = k - (n * i - i * (i + 1) // 2) + i + 1
    return i, j


def num_symmetric_pairs(n):
    """Number of unordered pairs of distinct items in a collection of `n` items."""
    return n * (n - 1) // 2


def chunk_ranges(total, chunksize):
    """Split `range(total)` into contiguous `(start, stop)` ranges of at most `chunksize` items.

    Parameters
    ----------
    total : int
        Number of items.
    chunksize : int
        Maximum number of items per range.

    Yields
    ------
    (int, int)
        Half-open ranges covering `[0, total)` in order.

    """
    chunksize = max(int(chunksize), 1)
    for start in range(0, total, chunksize):
        yield start, min(start + chunksize, total)


def effective_n_jobs(num_threads):
    """Resolve the requested number of worker threads, `-1` (or any non-positive value) meaning all CPUs."""
    if num_threads is None or num_threads <= 0:
        return os.cpu_count() or 1
    return int(num_threads)


def pickle(obj, fname, protocol=4):
    """Pickle object `obj` to file `fname`, which can be a local path or any URI supported by `smart_open`.

    Parameters
    ----------
    obj : object
        Any python object.
    fname : str
        Path to pickle file.
    protocol : int, optional
        Pickle protocol number.

    """
    with open(fname, 'wb') as fout:  # 'b' for binary, needed on Windows
        _pickle.dump(obj, fout, protocol=protocol)


def unpickle(fname):
    """Load object from `fname`.

    Parameters
    ----------
    fname : str
        Path to pickle file.

    Returns
    -------
    object
        Python object loaded from `fname`.

    """
    with open(fname, 'rb') as f:
        return _pickle.load(f, encoding='latin1')


class SaveLoad:
    """Serialize/deserialize objects to disk, by equipping them with the `save()` / `load()` methods.

    Large numpy arrays are stored in separate `.npy` files next to the pickle, so that they can be
    memory-mapped back on load.

    Warnings
    --------
    This uses pickle internally (among other techniques), so objects must not contain unpicklable attributes
    such as lambda functions or thread locks. Use `ignore` for those.

    """
    @classmethod
    def load(cls, fname, mmap=None):
        """Load an object previously saved using :meth:`~eventmover.utils.SaveLoad.save` from a file.

        Parameters
        ----------
        fname : str
            Path to file that contains needed object.
        mmap : str, optional
            Memory-map option. If the object was saved with large arrays stored separately, you can load these
            arrays via mmap (shared memory) using `mmap='r'`. If the file being loaded is compressed
            (either '.gz' or '.bz2'), then `mmap=None` **must be** set.

        Returns
        -------
        object
            Object loaded from `fname`.

        Raises
        ------
        AttributeError
            When called on an object instance instead of class (this is a class method).

        """
        logger.info("loading %s object from %s", cls.__name__, fname)

        compress, subname = SaveLoad._adapt_by_suffix(fname)

        obj = unpickle(fname)
        obj._load_specials(fname, mmap, compress, subname)
        logger.info("loaded %s", fname)
        return obj

    def _load_specials(self, fname, mmap, compress, subname):
        """Load attributes that were stored separately, recursing into included SaveLoad instances."""
        for attrib in getattr(self, '__recursive_saveloads', []):
            cfname = '.'.join((fname, attrib))
            logger.info("loading %s recursively from %s.* with mmap=%s", attrib, cfname, mmap)
            getattr(self, attrib)._load_specials(cfname, mmap, compress, subname)

        for attrib in getattr(self, '__numpys', []):
            logger.info("loading %s from %s with mmap=%s", attrib, subname(fname, attrib), mmap)

            if compress:
                if mmap:
                    raise IOError(
                        'Cannot mmap compressed object %s in file %s. ' % (attrib, subname(fname, attrib)) +
                        'Use `load(fname, mmap=None)` or uncompress files manually.'
                    )
                val = np.load(subname(fname, attrib))['val']
            else:
                val = np.load(subname(fname, attrib), mmap_mode=mmap)

            setattr(self, attrib, val)

        for attrib in getattr(self, '__ignoreds', []):
            logger.info("setting ignored attribute %s to None", attrib)
            setattr(self, attrib, None)

    @staticmethod
    def _adapt_by_suffix(fname):
        """Get compress setting and filename for numpy file compression.

        Returns
        -------
        (bool, function)
            First argument will be True if `fname` compressed.

        """
        compress, suffix = (True, 'npz') if fname.endswith('.gz') or fname.endswith('.bz2') else (False, 'npy')
        return compress, lambda *args: '.'.join(args + (suffix,))

    def _smart_save(self, fname, separately=None, sep_limit=10 * 1024**2, ignore=frozenset(), pickle_protocol=4):
        """Save the object to a file, storing large arrays separately."""
        logger.info("saving %s object under %s, separately %s", self.__class__.__name__, fname, separately)

        compress, subname = SaveLoad._adapt_by_suffix(fname)

        restores = self._save_specials(fname, separately, sep_limit, ignore, pickle_protocol, compress, subname)
        try:
            pickle(self, fname, protocol=pickle_protocol)
        finally:
            # restore attribs handled specially
            for obj, asides in restores:
                for attrib, val in asides.items():
                    setattr(obj, attrib, val)
        logger.info("saved %s", fname)

    def _save_specials(self, fname, separately, sep_limit, ignore, pickle_protocol, compress, subname):
        """Save aside any attributes that need to be handled separately.

        Returns
        -------
        list of (obj, {attrib: value, ...})
            Settings that the caller should use to restore each object's attributes that were set aside
            during the default :func:`~eventmover.utils.pickle`.

        """
        asides = {}
        if separately is None:
            separately = []
            for attrib, val in self.__dict__.items():
                if isinstance(val, np.ndarray) and val.size >= sep_limit:
                    separately.append(attrib)

        # whatever's in `separately` or `ignore` at this point won't get pickled
        for attrib in list(separately) + list(ignore):
            if hasattr(self, attrib):
                asides[attrib] = getattr(self, attrib)
                delattr(self, attrib)

        recursive_saveloads = []
        restores = []
        for attrib, val in self.__dict__.items():
            if hasattr(val, '_save_specials'):
                recursive_saveloads.append(attrib)
                cfname = '.'.join((fname, attrib))
                restores.extend(val._save_specials(cfname, None, sep_limit, ignore, pickle_protocol, compress, subname))

        try:
            numpys, ignoreds = [], []
            for attrib, val in asides.items():
                if isinstance(val, np.ndarray) and attrib not in ignore:
                    numpys.append(attrib)
                    logger.info("storing np array '%s' to %s", attrib, subname(fname, attrib))

                    if compress:
                        np.savez_compressed(subname(fname, attrib), val=np.ascontiguousarray(val))
                    else:
                        np.save(subname(fname, attrib), np.ascontiguousarray(val))
                else:
                    logger.info("not storing attribute %s", attrib)
                    ignoreds.append(attrib)

            self.__dict__['__numpys'] = numpys
            self.__dict__['__ignoreds'] = ignoreds
            self.__dict__['__recursive_saveloads'] = recursive_saveloads
        except Exception:
            # restore the attributes if exception-interrupted
            for attrib, val in asides.items():
                setattr(self, attrib, val)
            raise
        return restores + [(self, asides)]

    def save(self, fname_or_handle, separately=None, sep_limit=10 * 1024**2, ignore=frozenset(), pickle_protocol=4):
        """Save the object to a file.

        Parameters
        ----------
        fname_or_handle : str or file-like
            Path to output file or already opened file-like object. If the object is a file handle,
            no special array handling will be performed, all attributes will be saved to the same file.
        separately : list of str or None, optional
            If None, automatically detect large numpy arrays in the object being stored, and store
            them into separate files. If list of str, store these attributes into separate files.
        sep_limit : int, optional
            Don't store arrays smaller than this separately. In bytes.
        ignore : frozenset of str, optional
            Attributes that shouldn't be stored at all.
        pickle_protocol : int, optional
            Protocol number for pickle.

        See Also
        --------
        :meth:`~eventmover.utils.SaveLoad.load`
            Load object from file.

        """
        try:
            _pickle.dump(self, fname_or_handle, protocol=pickle_protocol)
            logger.info("saved %s object", self.__class__.__name__)
        except TypeError:  # `fname_or_handle` does not have write attribute
            self._smart_save(fname_or_handle, separately, sep_limit, ignore, pickle_protocol=pickle_protocol)
