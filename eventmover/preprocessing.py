#!/usr/bin/env python
# -*- coding: utf-8 -*-
#
# Copyright (C) 2021 RaRe Technologies s.r.o.
# Licensed under the GNU LGPL v2.1 - http://www.gnu.org/licenses/lgpl.html

"""Event preprocessors, applied to every event before any ground distance is computed."""

import logging

import numpy as np

from eventmover.interfaces import PreprocessorABC


logger = logging.getLogger(__name__)


class CenterWeightedCentroid(PreprocessorABC):
    """Translate an event so that its weighted centroid sits at the origin.

    The particle weights are left untouched. Events without weight have no centroid and are returned as is.

    .. sourcecode:: pycon

        >>> from eventmover.events import Event
        >>> from eventmover.preprocessing import CenterWeightedCentroid
        >>>
        >>> event = CenterWeightedCentroid()(Event([1.0, 3.0], [[0.0, 0.0], [4.0, 0.0]]))
        >>> event.coords.tolist()
        [[-3.0, 0.0], [1.0, 0.0]]

    """
    def __call__(self, event):
        if event.total_weight <= 0 or event.dim == 0:
            return event
        centroid = np.dot(event.weights, event.coords) / event.total_weight
        return event.with_coords(event.coords - centroid)
